"""Environment-driven settings for the API gateway."""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass(frozen=True)
class Settings:
    """Gateway configuration resolved once at start-up."""

    gemini_api_key: str = ""
    gemini_text_model: str = "gemini-2.5-flash"
    gemini_vision_model: str = "gemini-2.5-flash"
    gemini_base_url: str = ""
    video_intelligence_api_key: str = ""
    inference_base_url: str = ""
    inference_api_token: str = ""
    inference_timeout_sec: float = 20.0
    live_sample_interval_sec: float = 3.0
    file_sample_interval_sec: float = 2.0
    file_max_samples: int = 10
    retained_sessions: int = 50
    tick_interval_sec: float = 0.1
    jpeg_quality: int = 80
    video_annotation_timeout_sec: float = 600.0
    staging_dir: Path = Path(tempfile.gettempdir()) / "surveillance-staging"
    log_level: str = "INFO"
    seed_demo_data: bool = True


def load_settings() -> Settings:
    load_dotenv()
    defaults = Settings()
    return Settings(
        gemini_api_key=_env("GEMINI_API_KEY", defaults.gemini_api_key),
        gemini_text_model=_env("GEMINI_TEXT_MODEL", defaults.gemini_text_model),
        gemini_vision_model=_env("GEMINI_VISION_MODEL", defaults.gemini_vision_model),
        gemini_base_url=_env("GEMINI_BASE_URL", defaults.gemini_base_url),
        video_intelligence_api_key=_env(
            "VIDEO_INTELLIGENCE_API_KEY", defaults.video_intelligence_api_key
        ),
        inference_base_url=_env("INFERENCE_BASE_URL", defaults.inference_base_url),
        inference_api_token=_env("INFERENCE_API_TOKEN", defaults.inference_api_token),
        inference_timeout_sec=float(
            _env("INFERENCE_TIMEOUT_SEC", str(defaults.inference_timeout_sec))
        ),
        live_sample_interval_sec=float(
            _env("LIVE_SAMPLE_INTERVAL_SEC", str(defaults.live_sample_interval_sec))
        ),
        file_sample_interval_sec=float(
            _env("FILE_SAMPLE_INTERVAL_SEC", str(defaults.file_sample_interval_sec))
        ),
        file_max_samples=int(_env("FILE_MAX_SAMPLES", str(defaults.file_max_samples))),
        retained_sessions=int(
            _env("RETAINED_SESSIONS", str(defaults.retained_sessions))
        ),
        tick_interval_sec=float(
            _env("TICK_INTERVAL_SEC", str(defaults.tick_interval_sec))
        ),
        jpeg_quality=int(_env("JPEG_QUALITY", str(defaults.jpeg_quality))),
        video_annotation_timeout_sec=float(
            _env(
                "VIDEO_ANNOTATION_TIMEOUT_SEC", str(defaults.video_annotation_timeout_sec)
            )
        ),
        staging_dir=Path(_env("STAGING_DIR", str(defaults.staging_dir))),
        log_level=_env("LOG_LEVEL", defaults.log_level).upper(),
        seed_demo_data=_env("SEED_DEMO_DATA", "true").lower() in {"1", "true", "yes"},
    )


def configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)


def _env(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value not in (None, "") else default
