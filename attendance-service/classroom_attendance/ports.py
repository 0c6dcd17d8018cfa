"""Boundary contracts the attendance engine depends on.

Adapters live in ``rekognition_service``, ``face_recognition`` and
``firebase_service``; tests provide in-memory fakes.
"""
from typing import List, Optional, Protocol, Sequence

from classroom_attendance.domain import (
    AttendanceResult,
    EnrolledStudent,
    GalleryMatch,
    IndexedFace,
)


class FaceRecognitionPort(Protocol):
    async def index_faces(
        self, image_bytes: bytes, temp_label: str, max_faces: Optional[int] = None
    ) -> List[IndexedFace]:
        """Register up to ``max_faces`` faces of the image under ``temp_label``. Raises DetectionError."""

    async def search_similar(self, face_ref: str, threshold: float, max_results: int) -> List[GalleryMatch]:
        """Search the gallery for faces similar to ``face_ref``. Raises SearchError."""

    async def search_by_image(self, image_bytes: bytes, threshold: float, max_results: int) -> List[GalleryMatch]:
        """Search the gallery with the largest face of an image, without registering it.

        Returns an empty list when the image has no face. Raises SearchError.
        """

    async def delete_faces(self, face_refs: Sequence[str]) -> int:
        """Remove faces from the gallery, returning how many were deleted. Raises CleanupError."""


class GalleryIndex(Protocol):
    async def resolve_student(self, face_ref: str) -> Optional[str]:
        ...


class RosterProvider(Protocol):
    async def enrolled_students(self, class_id: str) -> List[EnrolledStudent]:
        """Active enrollments of ``class_id``. Raises RosterNotFound."""


class AttendanceStore(Protocol):
    async def save_session(self, result: AttendanceResult) -> None:
        ...


class PhotoStore(Protocol):
    async def fetch_photo(self, key: str) -> Optional[bytes]:
        ...
