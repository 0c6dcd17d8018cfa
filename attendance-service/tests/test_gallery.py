from __future__ import annotations

import asyncio
import logging

import pytest

from classroom_attendance.errors import CleanupError
from classroom_attendance.gallery import temp_label, temporary_registrations

from fakes import ENROLLED_GALLERY, FakeFace, FakeFaceRecognition


def _recognition(faces: int = 2) -> FakeFaceRecognition:
    return FakeFaceRecognition(gallery=ENROLLED_GALLERY, photos={b"img": [FakeFace() for _ in range(faces)]})


def test_temp_label_is_scoped_to_session_and_photo():
    assert temp_label("session-1", 3) == "temp_attendance_session-1_photo3"


def test_registrations_are_deleted_on_normal_exit():
    recognition = _recognition()

    async def scenario():
        async with temporary_registrations(recognition, "label") as registrations:
            faces = await registrations.index(b"img")
            assert all(face.face_ref in recognition.gallery for face in faces)
            return faces

    faces = asyncio.run(scenario())

    assert recognition.gallery == ENROLLED_GALLERY
    assert recognition.delete_calls == [[face.face_ref for face in faces]]


def test_registrations_are_deleted_when_search_step_raises():
    recognition = _recognition()

    async def scenario():
        async with temporary_registrations(recognition, "label") as registrations:
            await registrations.index(b"img")
            raise RuntimeError("search exploded")

    with pytest.raises(RuntimeError, match="search exploded"):
        asyncio.run(scenario())

    assert recognition.gallery == ENROLLED_GALLERY
    assert len(recognition.delete_calls) == 1


def test_no_delete_when_nothing_was_registered():
    recognition = _recognition(faces=0)

    async def scenario():
        async with temporary_registrations(recognition, "label") as registrations:
            await registrations.index(b"img")

    asyncio.run(scenario())

    assert recognition.delete_calls == []


def test_cleanup_failure_is_logged_not_raised(caplog):
    recognition = _recognition()
    recognition.delete_error = CleanupError("collection unavailable")

    async def scenario():
        async with temporary_registrations(recognition, "label") as registrations:
            await registrations.index(b"img")
            return "done"

    with caplog.at_level(logging.ERROR, logger="classroom_attendance.gallery"):
        assert asyncio.run(scenario()) == "done"

    assert "collection unavailable" in caplog.text
    assert len(recognition.delete_calls) == 1


def test_partial_delete_is_reported(caplog):
    recognition = _recognition()

    async def scenario():
        async with temporary_registrations(recognition, "label") as registrations:
            faces = await registrations.index(b"img")
            # Someone else already removed one of our faces.
            recognition.gallery.pop(faces[0].face_ref)

    with caplog.at_level(logging.WARNING, logger="classroom_attendance.gallery"):
        asyncio.run(scenario())

    assert "Only 1 of 2 temporary faces deleted" in caplog.text


def test_faces_registered_during_cancelled_index_are_deleted():
    recognition = _recognition()
    recognition.index_delay = 0.2

    async def photo():
        async with temporary_registrations(recognition, "label") as registrations:
            await registrations.index(b"img")

    async def scenario():
        task = asyncio.ensure_future(photo())
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    assert recognition.gallery == ENROLLED_GALLERY
    assert recognition.delete_calls == [["temp-1", "temp-2"]]
