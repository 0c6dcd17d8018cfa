from pydantic import BaseModel, Field, model_validator
from typing import List, Optional
from datetime import datetime
from classroom_attendance.config import settings

# Models for attendance sessions
class AttendanceSessionRequest(BaseModel):
    class_id: str = Field(..., min_length=1, description="Class to take attendance for")
    teacher_id: str = Field(..., min_length=1, description="Teacher taking attendance")
    photos: Optional[List[str]] = Field(None, description="Base64 encoded classroom photos")
    photo_keys: Optional[List[str]] = Field(None, description="Storage keys of uploaded photos")
    timestamp: Optional[datetime] = None
    match_threshold: Optional[float] = Field(None, ge=0.0, le=100.0, description="Minimum similarity (%) to mark present")
    max_faces: Optional[int] = Field(None, ge=1, le=100, description="Maximum faces registered per photo")
    diagnostics: bool = Field(default=False, description="Include the per-photo diagnostic trace")

    @model_validator(mode="after")
    def check_photo_source(self):
        if not self.photos and not self.photo_keys:
            raise ValueError("Either photos or photo_keys array is required")
        if self.photos and self.photo_keys:
            raise ValueError("Provide photos or photo_keys, not both")
        photo_count = len(self.photos or self.photo_keys)
        if photo_count > settings.MAX_PHOTOS_PER_SESSION:
            raise ValueError(f"Maximum {settings.MAX_PHOTOS_PER_SESSION} photos allowed per session")
        return self


class BoundingBoxOut(BaseModel):
    left: float
    top: float
    width: float
    height: float


class CandidateOut(BaseModel):
    student_id: str
    student_name: str
    similarity: float
    below_threshold: bool


class MatchedStudentOut(BaseModel):
    id: str
    name: str
    similarity: float
    face_id: str


class FaceTraceOut(BaseModel):
    face_index: int
    bounding_box: Optional[BoundingBoxOut] = None
    confidence: float
    matched_student: Optional[MatchedStudentOut] = None
    top_matches: List[CandidateOut] = []
    no_match_reason: Optional[str] = None
    reason_code: Optional[str] = None


class PhotoTraceOut(BaseModel):
    photo_index: int
    total_faces_in_photo: int
    faces: List[FaceTraceOut] = []
    error: Optional[str] = None
    reason_code: Optional[str] = None


class AttendanceDecisionOut(BaseModel):
    student_id: str
    name: str
    identification: Optional[str] = None
    status: str = Field(..., description="present or absent")
    confidence: Optional[float] = None
    evidence_face_ref: Optional[str] = None


class AttendanceSessionResponse(BaseModel):
    session_id: str
    class_id: str
    teacher_id: str
    timestamp: datetime
    photos_processed: int
    expected_count: int
    present_count: int
    absent_count: int
    total_faces_detected: int
    decisions: List[AttendanceDecisionOut]
    trace: Optional[List[PhotoTraceOut]] = None


# Models for single-photo lookups
class CaptureRequest(BaseModel):
    photo: str = Field(..., min_length=1, description="Base64 encoded photo")
    match_threshold: Optional[float] = Field(None, ge=0.0, le=100.0)
    max_faces: Optional[int] = Field(None, ge=1, le=100, description="Maximum gallery matches returned")


class IdentifiedFaceOut(BaseModel):
    face_id: str
    similarity: float
    student_id: Optional[str] = None


class CaptureResponse(BaseModel):
    detected_students: List[IdentifiedFaceOut]
    present_count: int


class MatchFaceRequest(BaseModel):
    face: str = Field(..., min_length=1, description="Base64 encoded cropped face")
    match_threshold: Optional[float] = Field(None, ge=0.0, le=100.0)


class MatchFaceResponse(BaseModel):
    match: Optional[IdentifiedFaceOut] = None
