import os
import pickle
import uuid
import numpy as np
from dataclasses import dataclass
from typing import List, Dict, Optional, Sequence
from io import BytesIO
from PIL import Image, UnidentifiedImageError
from fastapi.concurrency import run_in_threadpool
from classroom_attendance.config import settings
from classroom_attendance.domain import BoundingBox, GalleryMatch, IndexedFace
from classroom_attendance.errors import DetectionError, SearchError
import logging

# Configure logging
logger = logging.getLogger(__name__)


@dataclass
class GalleryFace:
    embedding: List[float]
    label: str
    enrolled: bool = False


class FaceRecognizer:
    """Local gallery of face embeddings, searched with DeepFace.

    Enrolled faces are pre-computed embeddings stored on disk as
    ``{student_id}.pkl``; their face ref is ``enrolled-{student_id}``.
    Faces indexed from attendance photos live only in memory until deleted.
    """

    def __init__(self, embeddings_dir: Optional[str] = None):
        self.embeddings_dir = embeddings_dir or settings.EMBEDDINGS_DIR
        self.faces: Dict[str, GalleryFace] = {}
        self.load_embeddings()

    def load_embeddings(self):
        """Load pre-computed student embeddings from disk into the gallery."""
        if not os.path.exists(self.embeddings_dir):
            os.makedirs(self.embeddings_dir)
            return

        loaded = 0
        for filename in os.listdir(self.embeddings_dir):
            if filename.endswith(".pkl"):
                student_id = filename[:-4]
                try:
                    with open(os.path.join(self.embeddings_dir, filename), "rb") as f:
                        embedding = pickle.load(f)
                    self.enroll(student_id, embedding)
                    loaded += 1
                except Exception as e:
                    logger.error(f"Failed to load embedding for {student_id}: {e}")

        logger.info(f"Loaded {loaded} pre-computed embeddings from disk")

    def enroll(self, student_id: str, embedding: List[float]) -> str:
        face_ref = f"enrolled-{student_id}"
        self.faces[face_ref] = GalleryFace(embedding=embedding, label=student_id, enrolled=True)
        return face_ref

    @staticmethod
    def _bytes_to_image(image_bytes: bytes) -> np.ndarray:
        """Convert raw image bytes to a numpy array (RGB)."""
        image = Image.open(BytesIO(image_bytes))

        # Convert to RGB (DeepFace expects RGB/BGR)
        if image.mode != "RGB":
            image = image.convert("RGB")

        return np.array(image)

    @staticmethod
    def compute_cosine_distance(embedding1: List[float], embedding2: List[float]) -> float:
        """Calculate cosine distance between two embeddings."""
        a = np.array(embedding1)
        b = np.array(embedding2)
        return 1 - (np.dot(a, b) / (np.linalg.norm(a) * np.linalg.norm(b)))

    @classmethod
    def similarity(cls, embedding1: List[float], embedding2: List[float]) -> float:
        """Similarity as a percentage, comparable with the match threshold."""
        return float((1 - cls.compute_cosine_distance(embedding1, embedding2)) * 100)

    def extract_faces(self, image_input: np.ndarray) -> List[dict]:
        """Detect every face in the image and compute its embedding."""
        from deepface import DeepFace

        try:
            return DeepFace.represent(
                img_path=image_input,
                model_name=settings.MODEL_NAME,
                enforce_detection=True,
                detector_backend=settings.DETECTOR_BACKEND,
            )
        except ValueError as e:
            # Face could not be detected
            logger.warning(f"Face detection failed: {e}")
            return []

    @staticmethod
    def _face_area(representation: Dict) -> float:
        area = representation.get("facial_area") or {}
        return area.get("w", 0) * area.get("h", 0)

    def _index_sync(self, image_bytes: bytes, temp_label: str, max_faces: Optional[int] = None) -> List[IndexedFace]:
        try:
            image = self._bytes_to_image(image_bytes)
        except (UnidentifiedImageError, OSError) as e:
            raise DetectionError(f"Unsupported image: {e}") from e

        try:
            representations = self.extract_faces(image)
        except Exception as e:
            raise DetectionError(f"Error extracting embeddings: {e}") from e

        # Like Rekognition, keep the largest faces when there are too many
        limit = max_faces or settings.MAX_FACES_PER_PHOTO
        if len(representations) > limit:
            representations = sorted(
                representations,
                key=self._face_area,
                reverse=True,
            )[:limit]

        height, width = image.shape[:2]
        indexed = []
        for representation in representations:
            area = representation.get("facial_area") or {}
            face_ref = str(uuid.uuid4())
            self.faces[face_ref] = GalleryFace(embedding=representation["embedding"], label=temp_label)
            indexed.append(
                IndexedFace(
                    face_ref=face_ref,
                    bounding_box=BoundingBox(
                        left=area.get("x", 0) / width,
                        top=area.get("y", 0) / height,
                        width=area.get("w", 0) / width,
                        height=area.get("h", 0) / height,
                    ),
                    detector_confidence=float(representation.get("face_confidence", 1.0)) * 100,
                )
            )
        return indexed

    async def index_faces(
        self, image_bytes: bytes, temp_label: str, max_faces: Optional[int] = None
    ) -> List[IndexedFace]:
        return await run_in_threadpool(self._index_sync, image_bytes, temp_label, max_faces)

    async def search_similar(self, face_ref: str, threshold: float, max_results: int) -> List[GalleryMatch]:
        probe = self.faces.get(face_ref)
        if probe is None:
            raise SearchError(f"Face {face_ref} is not in the gallery")

        matches = []
        for candidate_ref, candidate in list(self.faces.items()):
            similarity = self.similarity(probe.embedding, candidate.embedding)
            if similarity >= threshold:
                matches.append(GalleryMatch(face_ref=candidate_ref, similarity=similarity))

        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:max_results]

    def _search_image_sync(self, image_bytes: bytes, threshold: float, max_results: int) -> List[GalleryMatch]:
        try:
            image = self._bytes_to_image(image_bytes)
            representations = self.extract_faces(image)
        except Exception as e:
            raise SearchError(f"Error extracting embeddings: {e}") from e

        if not representations:
            return []
        probe = max(representations, key=self._face_area)

        matches = []
        for candidate_ref, candidate in list(self.faces.items()):
            if not candidate.enrolled:
                continue
            similarity = self.similarity(probe["embedding"], candidate.embedding)
            if similarity >= threshold:
                matches.append(GalleryMatch(face_ref=candidate_ref, similarity=similarity))

        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:max_results]

    async def search_by_image(self, image_bytes: bytes, threshold: float, max_results: int) -> List[GalleryMatch]:
        return await run_in_threadpool(self._search_image_sync, image_bytes, threshold, max_results)

    async def delete_faces(self, face_refs: Sequence[str]) -> int:
        deleted = 0
        for face_ref in face_refs:
            if self.faces.pop(face_ref, None) is not None:
                deleted += 1
        return deleted

    async def resolve_student(self, face_ref: str) -> Optional[str]:
        face = self.faces.get(face_ref)
        if face is None or not face.enrolled:
            return None
        return face.label
