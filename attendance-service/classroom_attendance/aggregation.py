import asyncio
import logging
from typing import Dict, Iterable, List

from classroom_attendance.domain import (
    AttendanceDecision,
    AttendanceStatus,
    EnrolledStudent,
    StudentDetection,
)

logger = logging.getLogger(__name__)


class DetectionAggregator:
    """Best detection per student across one resolution call.

    This is the only state shared between concurrently processed photos, so
    every write goes through a single lock.
    """

    def __init__(self):
        self._detections: Dict[str, StudentDetection] = {}
        self._lock = asyncio.Lock()

    async def offer(self, detection: StudentDetection) -> bool:
        """Record ``detection`` if it is better evidence than what we have. Returns True when kept."""
        async with self._lock:
            existing = self._detections.get(detection.student_id)
            if existing is not None and not detection.supersedes(existing):
                return False
            if existing is not None:
                logger.debug(
                    "Detection of %s at %.2f%% (photo %d) supersedes %.2f%% (photo %d)",
                    detection.student_id,
                    detection.confidence,
                    detection.photo_index,
                    existing.confidence,
                    existing.photo_index,
                )
            self._detections[detection.student_id] = detection
            return True

    def snapshot(self) -> Dict[str, StudentDetection]:
        return dict(self._detections)


def assemble_decisions(
    roster: Iterable[EnrolledStudent],
    detections: Dict[str, StudentDetection],
) -> List[AttendanceDecision]:
    """One decision per roster student, in roster order."""
    decisions = []
    for student in roster:
        detection = detections.get(student.id)
        if detection is None:
            decisions.append(AttendanceDecision(student=student, status=AttendanceStatus.ABSENT))
        else:
            decisions.append(
                AttendanceDecision(
                    student=student,
                    status=AttendanceStatus.PRESENT,
                    confidence=detection.confidence,
                    evidence_face_ref=detection.evidence_face_ref,
                )
            )
    return decisions
