from __future__ import annotations

import pytest

from classroom_attendance.config import Settings
from classroom_attendance.engine import AttendanceResolutionEngine

from fakes import ALICE, BRUNO, CARLA, ENROLLED_GALLERY, FakeGalleryIndex, FakeRoster, scenario_recognition


@pytest.fixture
def engine_settings():
    return Settings(MATCH_THRESHOLD=95.0, ATTENDANCE_DIAGNOSTICS=False)


@pytest.fixture
def roster():
    return FakeRoster({"class-1": [ALICE, BRUNO, CARLA]})


@pytest.fixture
def gallery_index():
    return FakeGalleryIndex(dict(ENROLLED_GALLERY))


@pytest.fixture
def recognition():
    return scenario_recognition()


@pytest.fixture
def engine(recognition, gallery_index, roster, engine_settings):
    return AttendanceResolutionEngine(recognition, gallery_index, roster, config=engine_settings)
