from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from libs.core.application.analysis_service import (
    AnalysisService,
    Launcher,
    SamplingPolicy,
    SourceFactory,
)
from libs.core.application.contracts import (
    FrameAnalyzer,
    FrameSource,
    VideoAnalyzer,
    VisionModel,
)
from libs.core.application.video_analysis import VideoAnalysisService
from libs.infra.genai.gemini import GeminiClient
from libs.infra.genai.video_intelligence import VideoIntelligenceClient
from libs.infra.inference.http_client import HttpInferenceClient
from libs.infra.vision.frame_extractor import OpenCvFrameSource
from services.api_gateway.infrastructure.memory_store import (
    InMemoryAnalyticRepository,
    InMemoryCameraRepository,
    InMemoryDatabase,
    InMemoryEventRepository,
    seed_demo_data,
)
from services.api_gateway.infrastructure.session_runner import thread_launcher
from services.api_gateway.settings import Settings, load_settings

settings = load_settings()
db = InMemoryDatabase()
camera_repository = InMemoryCameraRepository(db)
analytic_repository = InMemoryAnalyticRepository(db)
event_repository = InMemoryEventRepository(db)


def _open_source(locator: str, live: bool) -> FrameSource:
    return OpenCvFrameSource(locator, live=live, jpeg_quality=settings.jpeg_quality)


def _build_frame_analyzer(config: Settings, gemini: VisionModel) -> FrameAnalyzer:
    if config.inference_base_url:
        return HttpInferenceClient(
            base_url=config.inference_base_url,
            api_token=config.inference_api_token or None,
            timeout=config.inference_timeout_sec,
        )
    return gemini


def _build_analysis_service(
    analyzer: FrameAnalyzer,
    source_factory: SourceFactory,
    launcher: Launcher,
    clock: Callable[[], float] = time.monotonic,
) -> AnalysisService:
    return AnalysisService(
        camera_repository=camera_repository,
        analytic_repository=analytic_repository,
        event_repository=event_repository,
        analyzer=analyzer,
        source_factory=source_factory,
        launcher=launcher,
        policy=SamplingPolicy(
            live_interval_sec=settings.live_sample_interval_sec,
            file_interval_sec=settings.file_sample_interval_sec,
            file_max_samples=settings.file_max_samples,
            retained_sessions=settings.retained_sessions,
        ),
        clock=clock,
    )


@dataclass
class _Runtime:
    gemini: VisionModel
    video_analyzer: VideoAnalyzer
    analysis_service: AnalysisService


_gemini = GeminiClient(
    api_key=settings.gemini_api_key,
    text_model=settings.gemini_text_model,
    vision_model=settings.gemini_vision_model,
    base_url=settings.gemini_base_url,
    timeout=settings.inference_timeout_sec,
)
_runtime = _Runtime(
    gemini=_gemini,
    video_analyzer=VideoAnalysisService(
        annotator=VideoIntelligenceClient(
            api_key=settings.video_intelligence_api_key,
            timeout=settings.video_annotation_timeout_sec,
        ),
        staging_dir=settings.staging_dir,
    ),
    analysis_service=_build_analysis_service(
        analyzer=_build_frame_analyzer(settings, _gemini),
        source_factory=_open_source,
        launcher=thread_launcher(settings.tick_interval_sec),
    ),
)


def get_settings() -> Settings:
    return settings


def get_analysis_service() -> AnalysisService:
    return _runtime.analysis_service


def get_vision_model() -> VisionModel:
    return _runtime.gemini


def get_video_analyzer() -> VideoAnalyzer:
    return _runtime.video_analyzer


def configure_runtime(
    analyzer: FrameAnalyzer | None = None,
    source_factory: SourceFactory | None = None,
    launcher: Launcher | None = None,
    vision_model: VisionModel | None = None,
    video_analyzer: VideoAnalyzer | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    """Swap inference backends and session wiring (used by tests and tools)."""
    _runtime.analysis_service.reset_runtime_state()
    if vision_model is not None:
        _runtime.gemini = vision_model
    if video_analyzer is not None:
        _runtime.video_analyzer = video_analyzer
    _runtime.analysis_service = _build_analysis_service(
        analyzer=analyzer or _build_frame_analyzer(settings, _runtime.gemini),
        source_factory=source_factory or _open_source,
        launcher=launcher or thread_launcher(settings.tick_interval_sec),
        clock=clock,
    )


def reset_state() -> None:
    _runtime.analysis_service.reset_runtime_state()
    db.clear()
    if settings.seed_demo_data:
        seed_demo_data(camera_repository, analytic_repository, event_repository)
