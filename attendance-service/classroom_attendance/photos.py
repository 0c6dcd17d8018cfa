import base64
import binascii
import logging
from typing import List, Optional, Sequence

from classroom_attendance.config import settings
from classroom_attendance.errors import PhotoAcquisitionError
from classroom_attendance.ports import PhotoStore

logger = logging.getLogger(__name__)


def decode_base64_photo(data: str) -> bytes:
    """Decode a base64 photo, with or without a ``data:image/...;base64,`` prefix."""
    if "," in data:
        data = data.split(",", 1)[1]
    try:
        image_bytes = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise PhotoAcquisitionError(f"Invalid base64 photo: {exc}") from exc
    if not image_bytes:
        raise PhotoAcquisitionError("Empty photo")
    return image_bytes


class PhotoAcquisition:
    """Resolves the photos of an attendance request to raw image bytes."""

    def __init__(self, photo_store: Optional[PhotoStore] = None, key_prefix: Optional[str] = None):
        self.photo_store = photo_store
        self.key_prefix = key_prefix or settings.PHOTO_KEY_PREFIX

    async def resolve(
        self,
        photos: Optional[Sequence[str]] = None,
        photo_keys: Optional[Sequence[str]] = None,
    ) -> List[bytes]:
        if photo_keys:
            return [await self._fetch(key) for key in photo_keys]
        if photos:
            return [decode_base64_photo(photo) for photo in photos]
        raise PhotoAcquisitionError("Either photos or photo_keys is required")

    async def _fetch(self, key: str) -> bytes:
        if not key.startswith(self.key_prefix):
            raise PhotoAcquisitionError(f"Invalid photo key: {key}")
        if self.photo_store is None:
            raise PhotoAcquisitionError("Photo storage is not configured")

        image_bytes = await self.photo_store.fetch_photo(key)
        if not image_bytes:
            raise PhotoAcquisitionError(f"Photo not found: {key}")
        logger.debug("Fetched photo %s (%d bytes)", key, len(image_bytes))
        return image_bytes
