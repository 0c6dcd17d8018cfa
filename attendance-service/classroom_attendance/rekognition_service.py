import logging
from typing import List, Optional, Sequence

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from fastapi.concurrency import run_in_threadpool

from classroom_attendance.config import settings
from classroom_attendance.domain import BoundingBox, GalleryMatch, IndexedFace
from classroom_attendance.errors import CleanupError, DetectionError, SearchError

logger = logging.getLogger(__name__)

AWS_ERRORS = (BotoCoreError, ClientError)


class RekognitionFaceService:
    """Face recognition port backed by an AWS Rekognition collection."""

    def __init__(self, client=None, collection_id: Optional[str] = None):
        self.client = client or boto3.client("rekognition", region_name=settings.AWS_REGION)
        self.collection_id = collection_id or settings.AWS_REKOGNITION_COLLECTION

    @staticmethod
    def _bounding_box(raw: Optional[dict]) -> Optional[BoundingBox]:
        if not raw:
            return None
        return BoundingBox(
            left=raw.get("Left", 0.0),
            top=raw.get("Top", 0.0),
            width=raw.get("Width", 0.0),
            height=raw.get("Height", 0.0),
        )

    @staticmethod
    def _matches(response: dict) -> List[GalleryMatch]:
        matches = []
        for match in response.get("FaceMatches", []):
            face_id = (match.get("Face") or {}).get("FaceId")
            if face_id:
                matches.append(GalleryMatch(face_ref=face_id, similarity=match.get("Similarity", 0.0)))
        return matches

    async def index_faces(
        self, image_bytes: bytes, temp_label: str, max_faces: Optional[int] = None
    ) -> List[IndexedFace]:
        try:
            response = await run_in_threadpool(
                self.client.index_faces,
                CollectionId=self.collection_id,
                Image={"Bytes": image_bytes},
                ExternalImageId=temp_label,
                MaxFaces=max_faces or settings.MAX_FACES_PER_PHOTO,
                QualityFilter="AUTO",
                DetectionAttributes=["DEFAULT"],
            )
        except AWS_ERRORS as exc:
            raise DetectionError(f"Failed to index faces: {exc}") from exc

        faces = []
        for position, record in enumerate(response.get("FaceRecords", []), 1):
            face = record.get("Face") or {}
            face_id = face.get("FaceId")
            if not face_id:
                logger.warning(f"Face {position} indexed as {temp_label} has no face ID, skipping")
                continue
            detail = record.get("FaceDetail") or {}
            faces.append(
                IndexedFace(
                    face_ref=face_id,
                    bounding_box=self._bounding_box(face.get("BoundingBox")),
                    detector_confidence=detail.get("Confidence", 100.0),
                )
            )
        return faces

    async def search_similar(self, face_ref: str, threshold: float, max_results: int) -> List[GalleryMatch]:
        try:
            response = await run_in_threadpool(
                self.client.search_faces,
                CollectionId=self.collection_id,
                FaceId=face_ref,
                FaceMatchThreshold=threshold,
                MaxFaces=max_results,
            )
        except AWS_ERRORS as exc:
            raise SearchError(f"Failed to search face {face_ref}: {exc}") from exc

        return self._matches(response)

    async def search_by_image(self, image_bytes: bytes, threshold: float, max_results: int) -> List[GalleryMatch]:
        try:
            response = await run_in_threadpool(
                self.client.search_faces_by_image,
                CollectionId=self.collection_id,
                Image={"Bytes": image_bytes},
                FaceMatchThreshold=threshold,
                MaxFaces=max_results,
                QualityFilter="AUTO",
            )
        except ClientError as exc:
            # Rekognition reports an image without any face as an invalid parameter
            if exc.response.get("Error", {}).get("Code") == "InvalidParameterException":
                logger.info(f"No face found in searched image: {exc}")
                return []
            raise SearchError(f"Failed to search image: {exc}") from exc
        except BotoCoreError as exc:
            raise SearchError(f"Failed to search image: {exc}") from exc

        return self._matches(response)

    async def delete_faces(self, face_refs: Sequence[str]) -> int:
        if not face_refs:
            return 0
        try:
            response = await run_in_threadpool(
                self.client.delete_faces,
                CollectionId=self.collection_id,
                FaceIds=list(face_refs),
            )
        except AWS_ERRORS as exc:
            raise CleanupError(f"Failed to delete {len(face_refs)} faces: {exc}") from exc
        return len(response.get("DeletedFaces", []))
