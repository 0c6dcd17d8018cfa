class AttendanceError(Exception):
    """Base exception for attendance resolution failures."""


class RosterNotFound(AttendanceError):
    """Raised when the class to take attendance for does not exist."""

    def __init__(self, class_id: str):
        super().__init__(f"Class '{class_id}' not found")
        self.class_id = class_id


class DetectionError(AttendanceError):
    """Raised when faces cannot be indexed from a photo."""


class SearchError(AttendanceError):
    """Raised when a face cannot be searched or resolved against the gallery."""


class CleanupError(AttendanceError):
    """Raised when temporary faces cannot be removed from the gallery."""


class PhotoAcquisitionError(AttendanceError):
    """Raised when the photos of a request cannot be resolved to image bytes."""
