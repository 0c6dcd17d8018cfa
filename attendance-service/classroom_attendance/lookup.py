import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from classroom_attendance.config import Settings, settings
from classroom_attendance.domain import GalleryMatch
from classroom_attendance.ports import FaceRecognitionPort, GalleryIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IdentifiedFace:
    face_ref: str
    similarity: float
    student_id: Optional[str] = None


class FaceLookup:
    """Identifies students from a single photo without registering anything.

    Unlike a resolution, a lookup is not scoped to a class roster: any
    enrolled student the gallery knows about can be returned.
    """

    def __init__(self, face_port: FaceRecognitionPort, gallery_index: GalleryIndex, config: Settings = settings):
        self.face_port = face_port
        self.gallery_index = gallery_index
        self.config = config

    async def _identify(self, matches: List[GalleryMatch]) -> List[IdentifiedFace]:
        student_ids = await asyncio.gather(*(self.gallery_index.resolve_student(m.face_ref) for m in matches))
        return [
            IdentifiedFace(face_ref=m.face_ref, similarity=m.similarity, student_id=student_id)
            for m, student_id in zip(matches, student_ids)
        ]

    async def capture(
        self,
        image_bytes: bytes,
        match_threshold: Optional[float] = None,
        max_faces: Optional[int] = None,
    ) -> List[IdentifiedFace]:
        """
        Students whose enrolled faces match the photo, best similarity per student.
        Matches whose face belongs to no student are kept at the end.
        """
        threshold = self.config.MATCH_THRESHOLD if match_threshold is None else match_threshold
        matches = await self.face_port.search_by_image(
            image_bytes, threshold, max_faces or self.config.MAX_FACES_PER_PHOTO
        )
        identified = await self._identify(matches)

        by_student: Dict[str, IdentifiedFace] = {}
        unknown: List[IdentifiedFace] = []
        for face in identified:
            if face.student_id is None:
                unknown.append(face)
                continue
            previous = by_student.get(face.student_id)
            if previous is None or face.similarity > previous.similarity:
                by_student[face.student_id] = face

        logger.info(f"Capture lookup matched {len(by_student)} students ({len(unknown)} unknown faces)")
        return list(by_student.values()) + unknown

    async def match_face(self, image_bytes: bytes, match_threshold: Optional[float] = None) -> Optional[IdentifiedFace]:
        """The best enrolled student for a cropped face, or None."""
        threshold = self.config.MATCH_THRESHOLD if match_threshold is None else match_threshold
        matches = await self.face_port.search_by_image(image_bytes, threshold, 1)
        if not matches:
            return None

        best = (await self._identify(matches[:1]))[0]
        if best.student_id is None:
            return None
        return best
