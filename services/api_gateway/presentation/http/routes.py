import base64
import binascii
import logging
from dataclasses import asdict

from fastapi import APIRouter, File, Header, HTTPException, UploadFile
from pydantic import BaseModel, Field

from libs.core.domain.entities import (
    AnalysisSession,
    Analytic,
    Camera,
    CameraStatus,
    ReportEvent,
)
from libs.core.domain.errors import (
    InferenceError,
    InferenceFatal,
    NoSubjectSelected,
    RateLimited,
    SessionAlreadyRunning,
    Unauthenticated,
)
from services.api_gateway.dependencies import (
    get_analysis_service,
    get_settings,
    get_video_analyzer,
    get_vision_model,
)

logger = logging.getLogger(__name__)

router = APIRouter()

DATA_URL_SEPARATOR = ";base64,"


class CameraRequest(BaseModel):
    name: str = Field(min_length=1)
    location: str = ""
    ip_address: str = ""


class CameraUpdateRequest(CameraRequest):
    status: CameraStatus = "Offline"
    video_url: str = "/videos/default.mp4"


class ApplyAnalyticRequest(BaseModel):
    camera_ids: list[str] = Field(default_factory=list)


class FileAnalysisRequest(BaseModel):
    video_path: str
    max_samples: int | None = Field(default=None, ge=1)


class PromptRequest(BaseModel):
    prompt: str = Field(min_length=1)


class FrameInferenceRequest(BaseModel):
    image: str = Field(min_length=1)
    prompt: str = Field(min_length=1)


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/ready")
def ready() -> dict[str, str]:
    return {"status": "ready"}


@router.get("/version")
def version() -> dict[str, str]:
    return {"version": "0.1.0"}


@router.get("/v1/cameras")
def list_cameras() -> list[dict[str, object]]:
    service = get_analysis_service()
    return [_camera_to_dict(camera) for camera in service.list_cameras()]


@router.post("/v1/cameras")
def create_camera(payload: CameraRequest) -> dict[str, object]:
    service = get_analysis_service()
    camera = service.create_camera(
        {
            "name": payload.name,
            "location": payload.location,
            "ip_address": payload.ip_address,
        }
    )
    return _camera_to_dict(camera)


@router.put("/v1/cameras/{camera_id}")
def update_camera(camera_id: str, payload: CameraUpdateRequest) -> dict[str, object]:
    service = get_analysis_service()
    camera = service.update_camera(
        camera_id=camera_id,
        fields={
            "name": payload.name,
            "location": payload.location,
            "ip_address": payload.ip_address,
        },
        status=payload.status,
        video_url=payload.video_url,
    )
    if camera is None:
        raise HTTPException(status_code=404, detail="Camera not found")
    return _camera_to_dict(camera)


@router.delete("/v1/cameras/{camera_id}")
def delete_camera(camera_id: str) -> dict[str, object]:
    service = get_analysis_service()
    if not service.delete_camera(camera_id):
        raise HTTPException(status_code=404, detail="Camera not found")
    return {"camera_id": camera_id, "deleted": True}


@router.get("/v1/analytics")
def list_analytics() -> list[dict[str, object]]:
    service = get_analysis_service()
    return [_analytic_to_dict(analytic) for analytic in service.list_analytics()]


@router.post("/v1/analytics/{analytic_id}/apply")
def apply_analytic(analytic_id: str, payload: ApplyAnalyticRequest) -> dict[str, object]:
    service = get_analysis_service()
    try:
        changed = service.apply_analytic(analytic_id, payload.camera_ids)
    except ValueError as error:
        raise HTTPException(status_code=404, detail=str(error)) from error
    return {
        "analytic_id": analytic_id,
        "camera_ids": payload.camera_ids,
        "cameras_changed": [camera.camera_id for camera in changed],
    }


@router.get("/v1/events")
def list_events() -> list[dict[str, object]]:
    service = get_analysis_service()
    return [asdict(event) for event in service.list_events()]


@router.get("/v1/events/{event_id}")
def get_event(event_id: str) -> dict[str, object]:
    service = get_analysis_service()
    event: ReportEvent | None = service.get_event(event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return asdict(event)


@router.post("/v1/cameras/{camera_id}/analysis")
def start_live_analysis(camera_id: str) -> dict[str, object]:
    service = get_analysis_service()
    if service.get_camera(camera_id) is None:
        raise HTTPException(status_code=404, detail="Camera not found")
    try:
        session = service.start_live_analysis(camera_id)
    except SessionAlreadyRunning as error:
        raise HTTPException(status_code=409, detail=str(error)) from error
    except NoSubjectSelected as error:
        raise HTTPException(status_code=404, detail=str(error)) from error
    return _session_to_dict(session)


@router.post("/v1/analysis/file")
def start_file_analysis(payload: FileAnalysisRequest) -> dict[str, object]:
    service = get_analysis_service()
    try:
        session = service.start_file_analysis(
            video_path=payload.video_path,
            max_samples=payload.max_samples,
        )
    except SessionAlreadyRunning as error:
        raise HTTPException(status_code=409, detail=str(error)) from error
    except NoSubjectSelected as error:
        raise HTTPException(status_code=400, detail=str(error)) from error
    return _session_to_dict(session)


@router.post("/v1/analysis/{session_id}/stop")
def stop_analysis(session_id: str) -> dict[str, object]:
    service = get_analysis_service()
    session = service.stop_analysis(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return _session_to_dict(session)


@router.get("/v1/analysis/{session_id}")
def get_analysis_session(session_id: str) -> dict[str, object]:
    service = get_analysis_service()
    session = service.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return _session_to_dict(session)


@router.post("/v1/inference/test")
def test_connectivity(
    payload: PromptRequest,
    authorization: str | None = Header(default=None),
) -> dict[str, str]:
    _require_token(authorization)
    model = get_vision_model()
    try:
        text = model.generate_text(payload.prompt)
    except InferenceError as error:
        raise _inference_http_error(error) from error
    return {"response": text}


@router.post("/v1/inference/frame")
def analyze_frame(
    payload: FrameInferenceRequest,
    authorization: str | None = Header(default=None),
) -> dict[str, str]:
    _require_token(authorization)
    image = _decode_image(payload.image)
    model = get_vision_model()
    try:
        description = model.analyze_frame(image, payload.prompt)
    except InferenceError as error:
        raise _inference_http_error(error) from error
    return {"description": description}


@router.post("/v1/inference/video")
def analyze_video(
    video: UploadFile = File(...),
    authorization: str | None = Header(default=None),
) -> dict[str, object]:
    _require_token(authorization)
    data = video.file.read()
    if not data:
        raise HTTPException(status_code=400, detail="No video file uploaded")
    analyzer = get_video_analyzer()
    try:
        annotations = analyzer.analyze_video(data, video.filename or "upload")
    except InferenceFatal as error:
        logger.error("Video analysis rejected upstream: %s", error)
        raise HTTPException(status_code=502, detail=str(error)) from error
    except InferenceError as error:
        logger.error("Video analysis failed: %s", error)
        raise _inference_http_error(error) from error
    except ValueError as error:
        raise HTTPException(status_code=400, detail=str(error)) from error
    return {"results": [asdict(item) for item in annotations]}


def _require_token(authorization: str | None) -> None:
    token = get_settings().inference_api_token
    if not token:
        return
    if authorization != f"Bearer {token}":
        raise HTTPException(status_code=401, detail="Missing or invalid credentials")


def _decode_image(value: str) -> bytes:
    if DATA_URL_SEPARATOR in value:
        value = value.split(DATA_URL_SEPARATOR, 1)[1]
    try:
        image = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as error:
        raise HTTPException(status_code=400, detail="Image is not valid base64") from error
    if not image:
        raise HTTPException(status_code=400, detail="Image is empty")
    return image


def _inference_http_error(error: InferenceError) -> HTTPException:
    if isinstance(error, Unauthenticated):
        return HTTPException(status_code=401, detail=str(error))
    if isinstance(error, InferenceFatal):
        return HTTPException(status_code=502, detail=str(error))
    if isinstance(error, RateLimited):
        return HTTPException(status_code=429, detail=str(error))
    return HTTPException(status_code=503, detail=str(error))


def _camera_to_dict(camera: Camera) -> dict[str, object]:
    return asdict(camera)


def _analytic_to_dict(analytic: Analytic) -> dict[str, object]:
    return asdict(analytic)


def _session_to_dict(session: AnalysisSession) -> dict[str, object]:
    latest = session.samples[-1].description if session.samples else None
    return {
        "session_id": session.session_id,
        "subject_id": session.subject_id,
        "mode": session.mode,
        "video_url": session.video_url,
        "state": session.state,
        "sample_count": session.sample_count,
        "max_samples": session.max_samples,
        "sample_interval_sec": session.sample_interval_sec,
        "error": session.error,
        "created_at": session.created_at,
        "latest_description": latest,
        "samples": [
            {
                "frame_number": sample.frame_number,
                "timestamp_sec": sample.timestamp_sec,
                "description": sample.description,
            }
            for sample in session.samples
        ],
    }
