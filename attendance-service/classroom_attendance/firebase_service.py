import firebase_admin
from firebase_admin import credentials, firestore, storage
from fastapi.concurrency import run_in_threadpool
from google.api_core.exceptions import GoogleAPIError, NotFound
from typing import List, Dict, Optional
import logging
from classroom_attendance.config import settings
from classroom_attendance.domain import AttendanceResult, EnrolledStudent
from classroom_attendance.errors import PhotoAcquisitionError, RosterNotFound, SearchError

logger = logging.getLogger(__name__)

class FirebaseService:
    """Roster, gallery index, attendance store and photo store backed by Firebase."""

    def __init__(self):
        """Initialize Firebase Admin SDK."""
        self.db = None
        self.initialize_firebase()

    def initialize_firebase(self):
        """Initialize Firebase connection."""
        try:
            if not firebase_admin._apps:
                options = {}
                if settings.FIREBASE_STORAGE_BUCKET:
                    options['storageBucket'] = settings.FIREBASE_STORAGE_BUCKET

                if settings.FIREBASE_CREDENTIALS_PATH:
                    cred = credentials.Certificate(settings.FIREBASE_CREDENTIALS_PATH)
                    firebase_admin.initialize_app(cred, options)
                else:
                    # Use default credentials (for deployment environments)
                    firebase_admin.initialize_app(options=options)

                logger.info("Firebase Admin SDK initialized successfully")

            self.db = firestore.client()

        except Exception as e:
            logger.error(f"Failed to initialize Firebase: {e}")
            raise

    @staticmethod
    def _student_from_document(student_id: str, data: Dict) -> EnrolledStudent:
        name_parts = [
            data.get('prenom') or data.get('Prenom'),
            data.get('nom') or data.get('Nom') or data.get('name'),
        ]
        name = " ".join(part for part in name_parts if part) or 'Unknown'
        identification = data.get('CIN') or data.get('cin')
        return EnrolledStudent(
            id=student_id,
            name=name,
            identification=str(identification) if identification is not None else None,
        )

    def get_students_by_class(self, classe: str) -> List[EnrolledStudent]:
        """
        Fetch the students actively enrolled in a class.
        Handles both 'classe' and 'Classe' field names.
        """
        class_doc = self.db.collection(settings.CLASSES_COLLECTION).document(classe).get()
        if not class_doc.exists:
            raise RosterNotFound(classe)

        students: List[EnrolledStudent] = []
        seen_ids = set()
        students_ref = self.db.collection(settings.STUDENTS_COLLECTION)

        for field in ('Classe', 'classe'):
            for doc in students_ref.where(field, '==', classe).stream():
                if doc.id in seen_ids:
                    continue
                seen_ids.add(doc.id)

                student_data = doc.to_dict() or {}
                status = student_data.get('status')
                if status and status != 'active':
                    logger.debug("Skipping student %s with enrollment status %s", doc.id, status)
                    continue
                students.append(self._student_from_document(doc.id, student_data))

        # Deterministic roster order
        students.sort(key=lambda s: s.id)
        logger.info(f"Found {len(students)} students in class '{classe}'")
        return students

    async def enrolled_students(self, class_id: str) -> List[EnrolledStudent]:
        return await run_in_threadpool(self.get_students_by_class, class_id)

    def get_student_for_face(self, face_id: str) -> Optional[str]:
        """Look up which student an enrolled gallery face belongs to."""
        try:
            doc = self.db.collection(settings.FACES_COLLECTION).document(face_id).get()
        except GoogleAPIError as e:
            raise SearchError(f"Failed to resolve face {face_id}: {e}") from e

        if not doc.exists:
            return None
        data = doc.to_dict() or {}
        student_id = data.get('Etudiant_id') or data.get('student_id')
        # Stored either as a document reference or as a plain id
        if student_id is not None and hasattr(student_id, 'id'):
            student_id = student_id.id
        return student_id

    async def resolve_student(self, face_ref: str) -> Optional[str]:
        return await run_in_threadpool(self.get_student_for_face, face_ref)

    def save_attendance(self, result: AttendanceResult) -> None:
        """
        Persist a resolved session and one Presence record per enrolled student.
        Everything is written in a single batch.
        """
        session = result.session
        batch = self.db.batch()

        session_ref = self.db.collection(settings.SESSIONS_COLLECTION).document(session.id)
        batch.set(session_ref, {
            'classe': session.class_id,
            'prof': session.teacher_id,
            'date': session.timestamp,
            'photos_processed': session.photo_count,
            'expected_students': result.expected_count,
            'present_count': result.present_count,
            'absent_count': result.absent_count,
            'faces_detected': result.total_faces_detected,
            'match_threshold': result.match_threshold,
        })

        presence_collection = self.db.collection(settings.ATTENDANCE_COLLECTION)
        for decision in result.decisions:
            student_ref = self.db.collection(settings.STUDENTS_COLLECTION).document(decision.student.id)
            batch.set(presence_collection.document(f"{session.id}_{decision.student.id}"), {
                'Seance_id': session_ref,
                'Etudiant_id': student_ref,
                'status': decision.status.value,
                'confidence': decision.confidence,
                'face_id': decision.evidence_face_ref,
                'marked_at': session.timestamp,
                'marked_by': 'auto',
                'corrected': False,
            })

        batch.commit()
        logger.info(
            f"✓ Saved session {session.id} with {len(result.decisions)} attendance records"
        )

    async def save_session(self, result: AttendanceResult) -> None:
        await run_in_threadpool(self.save_attendance, result)

    def download_photo(self, key: str) -> Optional[bytes]:
        """Download an uploaded attendance photo from Firebase Storage."""
        if not settings.FIREBASE_STORAGE_BUCKET:
            raise PhotoAcquisitionError("Photo storage bucket is not configured")

        blob = storage.bucket().blob(key)
        try:
            return blob.download_as_bytes()
        except NotFound:
            logger.warning(f"Photo not found in storage: {key}")
            return None

    async def fetch_photo(self, key: str) -> Optional[bytes]:
        return await run_in_threadpool(self.download_photo, key)
