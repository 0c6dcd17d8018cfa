import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from classroom_attendance.aggregation import DetectionAggregator, assemble_decisions
from classroom_attendance.config import Settings, settings
from classroom_attendance.domain import (
    AttendanceResult,
    EnrolledStudent,
    FaceTrace,
    GalleryMatch,
    IndexedFace,
    PhotoTrace,
    RejectionReason,
    ResolutionState,
    Session,
    StudentDetection,
)
from classroom_attendance.errors import DetectionError, SearchError
from classroom_attendance.gallery import temp_label, temporary_registrations
from classroom_attendance.matching import decide, exclude_self, index_roster, roster_candidates
from classroom_attendance.ports import FaceRecognitionPort, GalleryIndex, RosterProvider

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    return f"session-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


@dataclass
class _Resolution:
    """Everything one resolution call shares between its photos."""

    session: Session
    roster: Dict[str, EnrolledStudent]
    threshold: float
    max_faces: Optional[int]
    collect_trace: bool
    aggregator: DetectionAggregator
    photo_slots: asyncio.Semaphore
    search_slots: asyncio.Semaphore


class AttendanceResolutionEngine:
    """Turns a batch of classroom photos and a class roster into attendance decisions.

    Every face found in a photo is temporarily registered in the gallery so it
    can be searched against enrolled faces, and is deleted again before the
    photo is done, whether processing succeeded or not. Failures are isolated
    per photo and per face: they reduce detections but never fail the call.
    Only a missing roster (or a failure to load it) aborts a resolution.
    Cancellation is not absorbed, but temporary faces are still deleted.
    """

    def __init__(
        self,
        face_port: FaceRecognitionPort,
        gallery_index: GalleryIndex,
        roster_provider: RosterProvider,
        config: Settings = settings,
    ):
        self.face_port = face_port
        self.gallery_index = gallery_index
        self.roster_provider = roster_provider
        self.config = config

    async def resolve(
        self,
        class_id: str,
        teacher_id: str,
        photos: Sequence[bytes],
        timestamp: Optional[datetime] = None,
        match_threshold: Optional[float] = None,
        max_faces: Optional[int] = None,
        diagnostics: bool = False,
    ) -> AttendanceResult:
        if not photos:
            raise ValueError("At least one photo is required")
        if len(photos) > self.config.MAX_PHOTOS_PER_SESSION:
            raise ValueError(f"Maximum {self.config.MAX_PHOTOS_PER_SESSION} photos allowed per session")

        threshold = self.config.MATCH_THRESHOLD if match_threshold is None else match_threshold

        # Raises RosterNotFound before anything is registered in the gallery.
        students = await self.roster_provider.enrolled_students(class_id)

        session = Session(
            id=new_session_id(),
            class_id=class_id,
            teacher_id=teacher_id,
            timestamp=timestamp or datetime.now(timezone.utc),
            photo_count=len(photos),
            expected_count=len(students),
        )
        self._log_state(session, ResolutionState.STARTED)
        logger.info(
            f"Resolving attendance for class {class_id}: {len(photos)} photos, "
            f"{len(students)} enrolled students, threshold {threshold}%"
        )

        run = _Resolution(
            session=session,
            roster=index_roster(students),
            threshold=threshold,
            max_faces=max_faces,
            collect_trace=diagnostics or self.config.ATTENDANCE_DIAGNOSTICS,
            aggregator=DetectionAggregator(),
            photo_slots=asyncio.Semaphore(self.config.MAX_CONCURRENT_PHOTOS),
            search_slots=asyncio.Semaphore(self.config.MAX_CONCURRENT_SEARCHES),
        )

        self._log_state(session, ResolutionState.PROCESSING_PHOTOS)
        photo_traces: List[PhotoTrace] = await asyncio.gather(
            *(self._process_photo(run, index, image) for index, image in enumerate(photos, 1))
        )

        self._log_state(session, ResolutionState.AGGREGATING)
        detections = run.aggregator.snapshot()
        result = AttendanceResult(
            session=session,
            decisions=assemble_decisions(students, detections),
            detections=detections,
            total_faces_detected=sum(trace.total_faces for trace in photo_traces),
            match_threshold=threshold,
            trace=photo_traces if run.collect_trace else None,
        )

        self._log_state(session, result.state)
        logger.info(
            f"Session {session.id}: {result.present_count} present, {result.absent_count} absent, "
            f"{result.total_faces_detected} faces detected"
        )
        return result

    async def _process_photo(self, run: _Resolution, photo_index: int, image_bytes: bytes) -> PhotoTrace:
        trace = PhotoTrace(photo_index=photo_index)
        label = temp_label(run.session.id, photo_index)

        async with run.photo_slots:
            async with temporary_registrations(self.face_port, label) as registrations:
                try:
                    faces = await registrations.index(image_bytes, run.max_faces)
                except DetectionError as exc:
                    logger.error(f"Error indexing faces in photo {photo_index}: {exc}")
                    trace.rejection = RejectionReason.INDEX_FAILED
                    trace.error = str(exc)
                    return trace
                except Exception as exc:
                    logger.error(f"Unexpected error indexing faces in photo {photo_index}: {exc}")
                    trace.rejection = RejectionReason.INDEX_FAILED
                    trace.error = str(exc)
                    return trace

                trace.total_faces = len(faces)
                logger.debug(f"Photo {photo_index}: indexed {len(faces)} faces as {label}")

                face_traces = await asyncio.gather(
                    *(
                        self._process_face(run, photo_index, face_index, face)
                        for face_index, face in enumerate(faces, 1)
                    )
                )
                if run.collect_trace:
                    trace.faces = list(face_traces)

        return trace

    async def _process_face(
        self,
        run: _Resolution,
        photo_index: int,
        face_index: int,
        face: IndexedFace,
    ) -> FaceTrace:
        trace = FaceTrace(
            face_index=face_index,
            face_ref=face.face_ref,
            bounding_box=face.bounding_box,
            detector_confidence=face.detector_confidence,
        )

        async with run.search_slots:
            try:
                matches = await self.face_port.search_similar(
                    face.face_ref,
                    self.config.SEARCH_THRESHOLD,
                    self.config.SEARCH_MAX_RESULTS,
                )
                matches = exclude_self(face.face_ref, matches)
                face_to_student = await self._resolve_students(matches)
            except SearchError as exc:
                logger.warning(f"Error searching face {face_index} of photo {photo_index}: {exc}")
                trace.rejection = RejectionReason.SEARCH_FAILED
                trace.error = str(exc)
                return trace
            except Exception as exc:
                logger.error(f"Unexpected error searching face {face_index} of photo {photo_index}: {exc}")
                trace.rejection = RejectionReason.SEARCH_FAILED
                trace.error = str(exc)
                return trace

        decision = decide(roster_candidates(matches, face_to_student, run.roster), run.threshold, len(matches))
        trace.top_candidates = decision.candidates[: self.config.TRACE_TOP_CANDIDATES]

        if decision.accepted is None:
            trace.rejection = decision.rejection
            return trace

        trace.matched = decision.accepted
        await run.aggregator.offer(
            StudentDetection(
                student_id=decision.accepted.student.id,
                confidence=decision.accepted.similarity,
                evidence_face_ref=decision.accepted.face_ref,
                bounding_box=face.bounding_box,
                photo_index=photo_index,
                face_index=face_index,
            )
        )
        return trace

    async def _resolve_students(self, matches: List[GalleryMatch]) -> Dict[str, Optional[str]]:
        face_refs = list(dict.fromkeys(m.face_ref for m in matches))
        student_ids = await asyncio.gather(*(self.gallery_index.resolve_student(ref) for ref in face_refs))
        return dict(zip(face_refs, student_ids))

    @staticmethod
    def _log_state(session: Session, state: ResolutionState) -> None:
        logger.debug("Session %s -> %s", session.id, state.value)
