from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from classroom_attendance.domain import (
    AttendanceDecision,
    AttendanceResult,
    AttendanceStatus,
    EnrolledStudent,
    Session,
)
from classroom_attendance.errors import RosterNotFound
from classroom_attendance.firebase_service import FirebaseService


def _doc(doc_id, data):
    return SimpleNamespace(id=doc_id, to_dict=lambda: data)


@pytest.fixture
def service():
    service = FirebaseService.__new__(FirebaseService)
    service.db = MagicMock()
    return service


def test_unknown_class_raises_roster_not_found(service):
    service.db.collection.return_value.document.return_value.get.return_value = SimpleNamespace(exists=False)

    with pytest.raises(RosterNotFound):
        service.get_students_by_class("class-9")


def test_roster_merges_field_variants_and_skips_inactive(service):
    service.db.collection.return_value.document.return_value.get.return_value = SimpleNamespace(exists=True)
    by_field = {
        "Classe": [_doc("stu-b", {"prenom": "Bruno", "nom": "Diaz", "CIN": 222})],
        "classe": [
            _doc("stu-b", {"prenom": "Bruno", "nom": "Diaz"}),
            _doc("stu-a", {"nom": "Martin", "cin": "111"}),
            _doc("stu-z", {"nom": "Gone", "status": "withdrawn"}),
        ],
    }
    service.db.collection.return_value.where.side_effect = lambda field, op, value: SimpleNamespace(
        stream=lambda: iter(by_field[field])
    )

    students = service.get_students_by_class("class-1")

    assert students == [
        EnrolledStudent(id="stu-a", name="Martin", identification="111"),
        EnrolledStudent(id="stu-b", name="Bruno Diaz", identification="222"),
    ]


def test_face_lookup_accepts_references_and_plain_ids(service):
    documents = {
        "face-1": SimpleNamespace(exists=True, to_dict=lambda: {"Etudiant_id": SimpleNamespace(id="stu-a")}),
        "face-2": SimpleNamespace(exists=True, to_dict=lambda: {"student_id": "stu-b"}),
        "face-3": SimpleNamespace(exists=False, to_dict=lambda: None),
    }
    service.db.collection.return_value.document.side_effect = lambda face_id: SimpleNamespace(
        get=lambda: documents[face_id]
    )

    assert service.get_student_for_face("face-1") == "stu-a"
    assert service.get_student_for_face("face-2") == "stu-b"
    assert service.get_student_for_face("face-3") is None


def test_save_attendance_writes_session_and_one_record_per_student(service):
    alice = EnrolledStudent(id="stu-a", name="Alice")
    bruno = EnrolledStudent(id="stu-b", name="Bruno")
    session = Session(
        id="session-1",
        class_id="class-1",
        teacher_id="teacher-1",
        timestamp=datetime(2026, 3, 2, 8, 30, tzinfo=timezone.utc),
        photo_count=2,
        expected_count=2,
    )
    result = AttendanceResult(
        session=session,
        decisions=[
            AttendanceDecision(alice, AttendanceStatus.PRESENT, 97.0, "face-a"),
            AttendanceDecision(bruno, AttendanceStatus.ABSENT),
        ],
        detections={},
        total_faces_detected=3,
        match_threshold=95.0,
    )
    batch = service.db.batch.return_value

    service.save_attendance(result)

    assert batch.set.call_count == 3
    session_fields = batch.set.call_args_list[0].args[1]
    assert session_fields["present_count"] == 1
    assert session_fields["absent_count"] == 1
    assert session_fields["faces_detected"] == 3
    statuses = [call.args[1]["status"] for call in batch.set.call_args_list[1:]]
    assert statuses == ["present", "absent"]
    batch.commit.assert_called_once()
