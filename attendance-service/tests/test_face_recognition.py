from __future__ import annotations

import asyncio
import pickle
from io import BytesIO

import pytest
from PIL import Image

from classroom_attendance.errors import DetectionError, SearchError
from classroom_attendance.face_recognition import FaceRecognizer


@pytest.fixture
def recognizer(tmp_path):
    for student_id, embedding in {"stu-a": [1.0, 0.0, 0.0], "stu-b": [0.0, 1.0, 0.0]}.items():
        with open(tmp_path / f"{student_id}.pkl", "wb") as f:
            pickle.dump(embedding, f)
    return FaceRecognizer(embeddings_dir=str(tmp_path))


def _png(width: int = 200, height: int = 100) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", (width, height), color=(120, 120, 120)).save(buffer, format="PNG")
    return buffer.getvalue()


def _index(recognizer, monkeypatch, representations):
    monkeypatch.setattr(recognizer, "extract_faces", lambda image: representations)
    return asyncio.run(recognizer.index_faces(_png(), "temp_attendance_s1_photo1"))


def test_enrolled_embeddings_resolve_to_students(recognizer):
    assert asyncio.run(recognizer.resolve_student("enrolled-stu-a")) == "stu-a"
    assert asyncio.run(recognizer.resolve_student("missing")) is None


def test_indexed_faces_carry_relative_boxes(recognizer, monkeypatch):
    faces = _index(
        recognizer,
        monkeypatch,
        [{"embedding": [0.9, 0.1, 0.0], "facial_area": {"x": 20, "y": 10, "w": 50, "h": 40}, "face_confidence": 0.98}],
    )

    assert len(faces) == 1
    box = faces[0].bounding_box
    assert (box.left, box.top, box.width, box.height) == (0.1, 0.1, 0.25, 0.4)
    assert faces[0].detector_confidence == pytest.approx(98.0)
    # Temporary faces are searchable but never resolve to a student.
    assert asyncio.run(recognizer.resolve_student(faces[0].face_ref)) is None


def test_search_ranks_gallery_by_similarity(recognizer, monkeypatch):
    faces = _index(recognizer, monkeypatch, [{"embedding": [0.9, 0.1, 0.0], "facial_area": {}}])
    face_ref = faces[0].face_ref

    matches = asyncio.run(recognizer.search_similar(face_ref, 50.0, 5))

    assert [m.face_ref for m in matches] == [face_ref, "enrolled-stu-a"]
    assert matches[0].similarity == pytest.approx(100.0)
    assert matches[1].similarity == pytest.approx(99.39, abs=0.01)


def test_search_unknown_face_fails(recognizer):
    with pytest.raises(SearchError):
        asyncio.run(recognizer.search_similar("nope", 50.0, 5))


def test_delete_removes_temporary_faces(recognizer, monkeypatch):
    before = set(recognizer.faces)
    faces = _index(recognizer, monkeypatch, [{"embedding": [0.0, 0.0, 1.0]}, {"embedding": [0.0, 1.0, 1.0]}])

    deleted = asyncio.run(recognizer.delete_faces([face.face_ref for face in faces]))

    assert deleted == 2
    assert set(recognizer.faces) == before


def test_unreadable_image_is_a_detection_error(recognizer):
    with pytest.raises(DetectionError):
        asyncio.run(recognizer.index_faces(b"definitely not an image", "label"))


def test_index_keeps_largest_faces_up_to_limit(recognizer, monkeypatch):
    monkeypatch.setattr(
        recognizer,
        "extract_faces",
        lambda image: [
            {"embedding": [1.0, 0.0, 0.0], "facial_area": {"x": 0, "y": 0, "w": 10, "h": 10}},
            {"embedding": [0.0, 1.0, 0.0], "facial_area": {"x": 0, "y": 0, "w": 40, "h": 40}},
            {"embedding": [0.0, 0.0, 1.0], "facial_area": {"x": 0, "y": 0, "w": 20, "h": 20}},
        ],
    )

    faces = asyncio.run(recognizer.index_faces(_png(), "label", max_faces=2))

    assert [face.bounding_box.width for face in faces] == [0.2, 0.1]


def test_search_by_image_matches_enrolled_faces_only(recognizer, monkeypatch):
    _index(recognizer, monkeypatch, [{"embedding": [0.0, 1.0, 0.0], "facial_area": {"w": 10, "h": 10}}])
    monkeypatch.setattr(
        recognizer,
        "extract_faces",
        lambda image: [
            {"embedding": [1.0, 0.0, 0.0], "facial_area": {"w": 5, "h": 5}},
            {"embedding": [0.0, 1.0, 0.0], "facial_area": {"w": 30, "h": 30}},
        ],
    )

    matches = asyncio.run(recognizer.search_by_image(_png(), 90.0, 5))

    assert [m.face_ref for m in matches] == ["enrolled-stu-b"]
    assert matches[0].similarity == pytest.approx(100.0)


def test_search_by_image_without_face_is_empty(recognizer, monkeypatch):
    monkeypatch.setattr(recognizer, "extract_faces", lambda image: [])

    assert asyncio.run(recognizer.search_by_image(_png(), 50.0, 5)) == []
