from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from classroom_attendance.config import settings
from classroom_attendance.diagnostics import render_result
from classroom_attendance.engine import AttendanceResolutionEngine
from classroom_attendance.errors import PhotoAcquisitionError, RosterNotFound, SearchError
from classroom_attendance.firebase_service import FirebaseService
from classroom_attendance.lookup import FaceLookup, IdentifiedFace
from classroom_attendance.models import (
    AttendanceSessionRequest,
    AttendanceSessionResponse,
    CaptureRequest,
    CaptureResponse,
    IdentifiedFaceOut,
    MatchFaceRequest,
    MatchFaceResponse,
)
from classroom_attendance.photos import PhotoAcquisition, decode_base64_photo
from classroom_attendance.ports import AttendanceStore
import asyncio
import logging
from typing import Optional

# Configure logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger("attendance_service")

app = FastAPI(
    title=settings.APP_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json"
)

# CORS config
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize global instances
firebase_service: Optional[FirebaseService] = None
engine: Optional[AttendanceResolutionEngine] = None
face_lookup: Optional[FaceLookup] = None


def build_face_service(gallery_index):
    """Face recognition port for the configured backend, plus the gallery index to use with it."""
    if settings.FACE_BACKEND == "deepface":
        from classroom_attendance.face_recognition import FaceRecognizer

        recognizer = FaceRecognizer()
        return recognizer, recognizer
    if settings.FACE_BACKEND == "rekognition":
        from classroom_attendance.rekognition_service import RekognitionFaceService

        return RekognitionFaceService(), gallery_index
    raise ValueError(f"Unknown FACE_BACKEND '{settings.FACE_BACKEND}'")


@app.on_event("startup")
async def startup_event():
    """Initialize Firebase and the face recognition backend on startup."""
    global firebase_service, engine, face_lookup
    try:
        firebase_service = FirebaseService()
        logger.info("Firebase service initialized")
    except Exception as e:
        logger.error(f"Failed to initialize Firebase service: {e}")
        logger.warning("Attendance sessions will not be available")
        return

    try:
        face_service, gallery_index = build_face_service(firebase_service)
    except Exception as e:
        logger.error(f"Failed to initialize face recognition backend '{settings.FACE_BACKEND}': {e}")
        return

    engine = AttendanceResolutionEngine(face_service, gallery_index, firebase_service)
    face_lookup = FaceLookup(face_service, gallery_index)
    logger.info(f"Attendance engine ready (backend: {settings.FACE_BACKEND})")


def get_engine() -> AttendanceResolutionEngine:
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Attendance engine not available"
        )
    return engine


def get_face_lookup() -> FaceLookup:
    if face_lookup is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Face recognition not available"
        )
    return face_lookup


def get_attendance_store() -> AttendanceStore:
    if firebase_service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Firebase service not available"
        )
    return firebase_service


def get_photo_acquisition() -> PhotoAcquisition:
    return PhotoAcquisition(photo_store=firebase_service)


@app.get("/", tags=["Health"])
async def health_check():
    return {"status": "ok", "service": settings.APP_NAME}


@app.post("/attendance/session", response_model=AttendanceSessionResponse, tags=["Attendance"])
async def create_attendance_session(
    request: AttendanceSessionRequest,
    resolver: AttendanceResolutionEngine = Depends(get_engine),
    store: AttendanceStore = Depends(get_attendance_store),
    acquisition: PhotoAcquisition = Depends(get_photo_acquisition),
):
    """
    Take attendance for a class from 1-10 classroom photos.

    Workflow:
    1. Resolve the photos (base64 or uploaded storage keys)
    2. Fetch the class roster
    3. Index, search and clean up the faces of every photo
    4. Mark every enrolled student present or absent and persist the session
    """
    logger.info(f"Processing attendance session for class: {request.class_id}, teacher: {request.teacher_id}")

    try:
        photos = await acquisition.resolve(request.photos, request.photo_keys)
    except PhotoAcquisitionError as e:
        logger.warning(f"Rejected attendance photos: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        result = await asyncio.wait_for(
            resolver.resolve(
                request.class_id,
                request.teacher_id,
                photos,
                timestamp=request.timestamp,
                match_threshold=request.match_threshold,
                max_faces=request.max_faces,
                diagnostics=request.diagnostics,
            ),
            timeout=settings.RESOLUTION_TIMEOUT_SECONDS,
        )
    except RosterNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except asyncio.TimeoutError:
        logger.error(f"Attendance resolution for class {request.class_id} timed out")
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail="Attendance resolution timed out"
        )
    except Exception as e:
        logger.error(f"Error resolving attendance for class {request.class_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to resolve attendance session"
        )

    try:
        await store.save_session(result)
    except Exception as e:
        logger.error(f"Failed to persist attendance session {result.session.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save attendance session"
        )

    return render_result(result)


def _identified_out(face: IdentifiedFace) -> IdentifiedFaceOut:
    return IdentifiedFaceOut(face_id=face.face_ref, similarity=face.similarity, student_id=face.student_id)


@app.post("/attendance/capture", response_model=CaptureResponse, tags=["Attendance"])
async def capture_attendance(
    request: CaptureRequest,
    lookup: FaceLookup = Depends(get_face_lookup),
):
    """Identify enrolled students in a single photo, without a class roster or a session."""
    try:
        image_bytes = decode_base64_photo(request.photo)
    except PhotoAcquisitionError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        faces = await lookup.capture(image_bytes, request.match_threshold, request.max_faces)
    except SearchError as e:
        logger.error(f"Capture lookup failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to search photo"
        )

    return CaptureResponse(
        detected_students=[_identified_out(face) for face in faces],
        present_count=sum(1 for face in faces if face.student_id is not None),
    )


@app.post("/attendance/match-face", response_model=MatchFaceResponse, tags=["Attendance"])
async def match_face(
    request: MatchFaceRequest,
    lookup: FaceLookup = Depends(get_face_lookup),
):
    """Return the best enrolled student for a cropped face, or null."""
    try:
        image_bytes = decode_base64_photo(request.face)
    except PhotoAcquisitionError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        match = await lookup.match_face(image_bytes, request.match_threshold)
    except SearchError as e:
        logger.error(f"Face match failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to match face"
        )

    return MatchFaceResponse(match=_identified_out(match) if match else None)
