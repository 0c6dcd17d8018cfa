"""Candidate filtering and the accept/reject policy for a single face."""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional

from classroom_attendance.domain import (
    CandidateMatch,
    EnrolledStudent,
    GalleryMatch,
    RejectionReason,
)


@dataclass(frozen=True)
class FaceDecision:
    candidates: List[CandidateMatch]
    accepted: Optional[CandidateMatch] = None
    rejection: Optional[RejectionReason] = None

    @property
    def best(self) -> Optional[CandidateMatch]:
        return self.candidates[0] if self.candidates else None


def exclude_self(face_ref: str, matches: Iterable[GalleryMatch]) -> List[GalleryMatch]:
    """Drop the searched face itself; a temporary face always matches itself at 100%."""
    return [m for m in matches if m.face_ref != face_ref]


def roster_candidates(
    matches: Iterable[GalleryMatch],
    face_to_student: Mapping[str, Optional[str]],
    roster: Mapping[str, EnrolledStudent],
) -> List[CandidateMatch]:
    """Keep matches that resolve to a student on the roster, best first."""
    candidates = []
    for match in matches:
        student_id = face_to_student.get(match.face_ref)
        if student_id is None:
            continue
        student = roster.get(student_id)
        if student is None:
            continue
        candidates.append(CandidateMatch(student=student, similarity=match.similarity, face_ref=match.face_ref))

    # Stable sort keeps gallery order for equal similarities.
    candidates.sort(key=lambda c: c.similarity, reverse=True)
    return candidates


def decide(candidates: List[CandidateMatch], threshold: float, gallery_hits: int) -> FaceDecision:
    if candidates and candidates[0].meets(threshold):
        return FaceDecision(candidates=candidates, accepted=candidates[0])

    if gallery_hits == 0:
        reason = RejectionReason.NO_GALLERY_MATCH
    elif not candidates:
        reason = RejectionReason.NOT_ENROLLED_IN_CLASS
    else:
        reason = RejectionReason.BELOW_THRESHOLD
    return FaceDecision(candidates=candidates, rejection=reason)


def index_roster(students: Iterable[EnrolledStudent]) -> Dict[str, EnrolledStudent]:
    return {student.id: student for student in students}
