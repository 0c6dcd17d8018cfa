"""Renders engine results into API payloads, including human-readable trace text."""
from typing import List, Optional

from classroom_attendance.domain import (
    AttendanceResult,
    BoundingBox,
    FaceTrace,
    PhotoTrace,
    RejectionReason,
)
from classroom_attendance.models import (
    AttendanceDecisionOut,
    AttendanceSessionResponse,
    BoundingBoxOut,
    CandidateOut,
    FaceTraceOut,
    MatchedStudentOut,
    PhotoTraceOut,
)


def describe_rejection(face: FaceTrace, threshold: float) -> Optional[str]:
    if face.rejection is None:
        return None
    if face.rejection == RejectionReason.NO_GALLERY_MATCH:
        return "No registered faces in the gallery match this face"
    if face.rejection == RejectionReason.NOT_ENROLLED_IN_CLASS:
        return "Face does not match any student enrolled in this class"
    if face.rejection == RejectionReason.BELOW_THRESHOLD and face.top_candidates:
        best = face.top_candidates[0]
        return (
            f"Best match: {best.student.name} at {best.similarity:.2f}% "
            f"(requires >= {threshold:g}%)"
        )
    if face.rejection == RejectionReason.SEARCH_FAILED:
        return f"Error searching face: {face.error or 'unknown error'}"
    return face.rejection.value


def _bounding_box(box: Optional[BoundingBox]) -> Optional[BoundingBoxOut]:
    if box is None:
        return None
    return BoundingBoxOut(left=box.left, top=box.top, width=box.width, height=box.height)


def render_face(face: FaceTrace, threshold: float) -> FaceTraceOut:
    matched = None
    if face.matched is not None:
        matched = MatchedStudentOut(
            id=face.matched.student.id,
            name=face.matched.student.name,
            similarity=face.matched.similarity,
            face_id=face.matched.face_ref,
        )
    return FaceTraceOut(
        face_index=face.face_index,
        bounding_box=_bounding_box(face.bounding_box),
        confidence=face.detector_confidence,
        matched_student=matched,
        top_matches=[
            CandidateOut(
                student_id=c.student.id,
                student_name=c.student.name,
                similarity=c.similarity,
                below_threshold=not c.meets(threshold),
            )
            for c in face.top_candidates
        ],
        no_match_reason=describe_rejection(face, threshold),
        reason_code=face.rejection.value if face.rejection else None,
    )


def render_photo(photo: PhotoTrace, threshold: float) -> PhotoTraceOut:
    error = None
    if photo.rejection == RejectionReason.INDEX_FAILED:
        error = f"Error indexing faces: {photo.error or 'unknown error'}"
    return PhotoTraceOut(
        photo_index=photo.photo_index,
        total_faces_in_photo=photo.total_faces,
        faces=[render_face(face, threshold) for face in photo.faces],
        error=error,
        reason_code=photo.rejection.value if photo.rejection else None,
    )


def render_result(result: AttendanceResult) -> AttendanceSessionResponse:
    session = result.session
    trace: Optional[List[PhotoTraceOut]] = None
    if result.trace is not None:
        trace = [render_photo(photo, result.match_threshold) for photo in result.trace]

    return AttendanceSessionResponse(
        session_id=session.id,
        class_id=session.class_id,
        teacher_id=session.teacher_id,
        timestamp=session.timestamp,
        photos_processed=session.photo_count,
        expected_count=result.expected_count,
        present_count=result.present_count,
        absent_count=result.absent_count,
        total_faces_detected=result.total_faces_detected,
        decisions=[
            AttendanceDecisionOut(
                student_id=d.student.id,
                name=d.student.name,
                identification=d.student.identification,
                status=d.status.value,
                confidence=d.confidence,
                evidence_face_ref=d.evidence_face_ref,
            )
            for d in result.decisions
        ],
        trace=trace,
    )
