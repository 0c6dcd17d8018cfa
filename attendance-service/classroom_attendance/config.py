import os
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # App Settings
    APP_NAME: str = "Classroom Attendance Service"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # Face recognition backend: "rekognition" (AWS) or "deepface" (local gallery)
    FACE_BACKEND: str = "rekognition"
    AWS_REGION: str = os.getenv("AWS_REGION", "us-east-1")
    AWS_REKOGNITION_COLLECTION: str = "classroom-attendance-default"

    # Matching policy (similarities are percentages, 0-100)
    MATCH_THRESHOLD: float = 95.0
    SEARCH_THRESHOLD: float = 50.0  # Low on purpose so the trace shows near-misses
    SEARCH_MAX_RESULTS: int = 5
    MAX_FACES_PER_PHOTO: int = 50
    MAX_PHOTOS_PER_SESSION: int = 10

    # Resolution scheduling
    MAX_CONCURRENT_PHOTOS: int = 4
    MAX_CONCURRENT_SEARCHES: int = 5
    RESOLUTION_TIMEOUT_SECONDS: float = 60.0

    # Diagnostics
    ATTENDANCE_DIAGNOSTICS: bool = False
    TRACE_TOP_CANDIDATES: int = 3

    # Local (DeepFace) backend
    MODEL_NAME: str = "VGG-Face"
    DETECTOR_BACKEND: str = "opencv"
    EMBEDDINGS_DIR: str = os.path.join(os.path.dirname(os.path.dirname(__file__)), "embeddings")

    # Firebase Settings
    FIREBASE_CREDENTIALS_PATH: str = os.getenv("FIREBASE_CREDENTIALS_PATH", "")
    FIREBASE_STORAGE_BUCKET: str = ""
    PHOTO_KEY_PREFIX: str = "uploads/tmp/attendance/"

    # Firestore collections
    CLASSES_COLLECTION: str = "Classe"
    STUDENTS_COLLECTION: str = "Etudiant"
    FACES_COLLECTION: str = "EtudiantVisage"
    SESSIONS_COLLECTION: str = "Seance"
    ATTENDANCE_COLLECTION: str = "Presence"

    class Config:
        case_sensitive = True

settings = Settings()
