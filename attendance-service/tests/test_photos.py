from __future__ import annotations

import asyncio
import base64

import pytest

from classroom_attendance.errors import PhotoAcquisitionError
from classroom_attendance.photos import PhotoAcquisition, decode_base64_photo

from fakes import FakePhotoStore

PREFIX = "uploads/tmp/attendance/"


def test_decode_accepts_data_urls_and_raw_base64():
    encoded = base64.b64encode(b"jpeg-bytes").decode()

    assert decode_base64_photo(encoded) == b"jpeg-bytes"
    assert decode_base64_photo(f"data:image/jpeg;base64,{encoded}") == b"jpeg-bytes"


@pytest.mark.parametrize("value", ["not base64!!", ""])
def test_decode_rejects_invalid_photos(value):
    with pytest.raises(PhotoAcquisitionError):
        decode_base64_photo(value)


def test_photo_keys_are_fetched_in_order():
    store = FakePhotoStore({f"{PREFIX}a.jpg": b"a", f"{PREFIX}b.jpg": b"b"})
    acquisition = PhotoAcquisition(store, key_prefix=PREFIX)

    photos = asyncio.run(acquisition.resolve(photo_keys=[f"{PREFIX}b.jpg", f"{PREFIX}a.jpg"]))

    assert photos == [b"b", b"a"]


def test_photo_keys_outside_the_upload_area_are_rejected():
    store = FakePhotoStore({"attendance/other/photo-1.jpg": b"a"})
    acquisition = PhotoAcquisition(store, key_prefix=PREFIX)

    with pytest.raises(PhotoAcquisitionError, match="Invalid photo key"):
        asyncio.run(acquisition.resolve(photo_keys=["attendance/other/photo-1.jpg"]))


def test_missing_uploaded_photo_is_rejected():
    acquisition = PhotoAcquisition(FakePhotoStore({}), key_prefix=PREFIX)

    with pytest.raises(PhotoAcquisitionError, match="Photo not found"):
        asyncio.run(acquisition.resolve(photo_keys=[f"{PREFIX}gone.jpg"]))


def test_request_without_photos_is_rejected():
    with pytest.raises(PhotoAcquisitionError):
        asyncio.run(PhotoAcquisition(key_prefix=PREFIX).resolve())
