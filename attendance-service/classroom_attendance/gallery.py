import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional
import logging

from classroom_attendance.domain import IndexedFace
from classroom_attendance.ports import FaceRecognitionPort

logger = logging.getLogger(__name__)


def temp_label(session_id: str, photo_index: int) -> str:
    """External label for faces registered from one photo of one session."""
    return f"temp_attendance_{session_id}_photo{photo_index}"


class TemporaryRegistrations:
    """Faces a photo has put into the gallery and still owes a delete for."""

    def __init__(self, port: FaceRecognitionPort, label: str):
        self.port = port
        self.label = label
        self.faces: List[IndexedFace] = []

    async def index(self, image_bytes: bytes, max_faces: Optional[int] = None) -> List[IndexedFace]:
        """Register the faces of one photo under this label.

        The registration is shielded from cancellation: if the caller is
        cancelled mid-call, the indexing still finishes and its faces are
        recorded so that release() can delete them.
        """
        pending = asyncio.ensure_future(self.port.index_faces(image_bytes, self.label, max_faces))
        try:
            faces = await asyncio.shield(pending)
        except asyncio.CancelledError:
            try:
                self.faces.extend(await pending)
            except Exception as exc:
                logger.error("Indexing for %s failed after cancellation: %s", self.label, exc)
            raise
        self.faces.extend(faces)
        return faces

    @property
    def face_refs(self) -> List[str]:
        return [face.face_ref for face in self.faces]

    async def release(self) -> None:
        face_refs = self.face_refs
        if not face_refs:
            return

        logger.debug("Cleaning up %d temporary faces for %s", len(face_refs), self.label)
        try:
            deleted = await self.port.delete_faces(face_refs)
        except Exception as exc:
            # A leaked registration must never fail the session.
            logger.error("Failed to clean up temporary faces for %s: %s", self.label, exc)
            return

        if deleted < len(face_refs):
            logger.warning(
                "Only %d of %d temporary faces deleted for %s",
                deleted,
                len(face_refs),
                self.label,
            )
        else:
            logger.debug("Cleaned up temporary faces for %s", self.label)


@asynccontextmanager
async def temporary_registrations(port: FaceRecognitionPort, label: str) -> AsyncIterator[TemporaryRegistrations]:
    """Hold a photo's temporary gallery faces; they are deleted on every exit path."""
    registrations = TemporaryRegistrations(port, label)
    try:
        yield registrations
    finally:
        await registrations.release()
