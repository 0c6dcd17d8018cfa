from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


class AttendanceStatus(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"


class RejectionReason(str, Enum):
    """Why a face or photo produced no detection. Rendered to text at the API boundary."""

    NO_GALLERY_MATCH = "no_gallery_match"
    NOT_ENROLLED_IN_CLASS = "not_enrolled_in_class"
    BELOW_THRESHOLD = "below_threshold"
    SEARCH_FAILED = "search_failed"
    INDEX_FAILED = "index_failed"


class ResolutionState(str, Enum):
    STARTED = "started"
    PROCESSING_PHOTOS = "processing_photos"
    AGGREGATING = "aggregating"
    COMPLETED = "completed"


@dataclass(frozen=True)
class BoundingBox:
    """Face position as ratios of the image width/height."""

    left: float
    top: float
    width: float
    height: float


@dataclass(frozen=True)
class EnrolledStudent:
    id: str
    name: str
    identification: Optional[str] = None


@dataclass(frozen=True)
class Session:
    id: str
    class_id: str
    teacher_id: str
    timestamp: datetime
    photo_count: int
    expected_count: int


@dataclass(frozen=True)
class IndexedFace:
    """A face temporarily registered in the gallery from one photo."""

    face_ref: str
    bounding_box: Optional[BoundingBox] = None
    detector_confidence: float = 100.0


@dataclass(frozen=True)
class GalleryMatch:
    face_ref: str
    similarity: float


@dataclass(frozen=True)
class CandidateMatch:
    student: EnrolledStudent
    similarity: float
    face_ref: str

    def meets(self, threshold: float) -> bool:
        return self.similarity >= threshold


@dataclass(frozen=True)
class StudentDetection:
    student_id: str
    confidence: float
    evidence_face_ref: str
    bounding_box: Optional[BoundingBox]
    photo_index: int
    face_index: int

    def supersedes(self, other: "StudentDetection") -> bool:
        if self.confidence != other.confidence:
            return self.confidence > other.confidence
        # Equal confidence: earliest evidence wins regardless of scheduling order.
        return (self.photo_index, self.face_index) < (other.photo_index, other.face_index)


@dataclass(frozen=True)
class AttendanceDecision:
    student: EnrolledStudent
    status: AttendanceStatus
    confidence: Optional[float] = None
    evidence_face_ref: Optional[str] = None


@dataclass
class FaceTrace:
    face_index: int
    face_ref: str
    bounding_box: Optional[BoundingBox]
    detector_confidence: float
    matched: Optional[CandidateMatch] = None
    top_candidates: List[CandidateMatch] = field(default_factory=list)
    rejection: Optional[RejectionReason] = None
    error: Optional[str] = None


@dataclass
class PhotoTrace:
    photo_index: int
    total_faces: int = 0
    faces: List[FaceTrace] = field(default_factory=list)
    rejection: Optional[RejectionReason] = None
    error: Optional[str] = None


@dataclass
class AttendanceResult:
    session: Session
    decisions: List[AttendanceDecision]
    detections: Dict[str, StudentDetection]
    total_faces_detected: int
    match_threshold: float
    trace: Optional[List[PhotoTrace]] = None
    state: ResolutionState = ResolutionState.COMPLETED

    @property
    def expected_count(self) -> int:
        return len(self.decisions)

    @property
    def present_count(self) -> int:
        return sum(1 for d in self.decisions if d.status == AttendanceStatus.PRESENT)

    @property
    def absent_count(self) -> int:
        return self.expected_count - self.present_count
