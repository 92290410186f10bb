"""Whole-file video analysis: staging, annotation and result normalization."""

from __future__ import annotations

import logging
import re
import tempfile
from pathlib import Path
from typing import Any, Protocol
from uuid import uuid4

from libs.core.domain.entities import VideoAnnotation

logger = logging.getLogger(__name__)

EMPTY_IMAGE_URL = "data:image/png;base64,"
EXPLICIT_LIKELIHOODS = frozenset({"POSSIBLE", "LIKELY", "VERY_LIKELY"})
NO_RESULTS_DESCRIPTION = (
    "No annotation results returned for this video. The video might be too "
    "short or have no detectable content for the selected features."
)
NO_INSIGHTS_DESCRIPTION = (
    "No specific visual insights found for this video. Consider adding more "
    "detection features."
)

_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")


class VideoAnnotator(Protocol):
    def annotate(self, video_path: Path) -> dict[str, Any] | None: ...


def parse_offset(value: object) -> float:
    """Parse protobuf JSON durations such as ``"12.500s"`` or ``{"seconds": 3}``."""
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip().rstrip("s")
        try:
            return float(text) if text else 0.0
        except ValueError:
            return 0.0
    if isinstance(value, dict):
        seconds = float(value.get("seconds", 0) or 0)
        nanos = float(value.get("nanos", 0) or 0)
        return seconds + nanos / 1e9
    return 0.0


def normalize_annotations(result: dict[str, Any] | None) -> list[VideoAnnotation]:
    """Flatten shot, label and explicit-content annotations into one timeline."""
    if result is None:
        return [_synthetic(NO_RESULTS_DESCRIPTION)]

    entries: list[tuple[float, str]] = []
    for shot in result.get("shot_annotations") or []:
        start = parse_offset(shot.get("start_time_offset"))
        entries.append((start, f"Shot detected starting at {start:g} seconds."))

    for label in result.get("segment_label_annotations") or []:
        name = (label.get("entity") or {}).get("description")
        if not name:
            continue
        segments = label.get("segments") or []
        starts = [
            parse_offset((item.get("segment") or {}).get("start_time_offset"))
            for item in segments
        ]
        entries.append((min(starts) if starts else 0.0, f"Video contains: {name}"))

    explicit_frames = (result.get("explicit_annotation") or {}).get("frames") or []
    flagged = [
        frame
        for frame in explicit_frames
        if frame.get("pornography_likelihood") in EXPLICIT_LIKELIHOODS
    ]
    if flagged:
        at = parse_offset(flagged[0].get("time_offset"))
        entries.append(
            (at, f"Potentially explicit content detected at {at:g} seconds.")
        )

    if not entries:
        return [_synthetic(NO_INSIGHTS_DESCRIPTION)]

    entries.sort(key=lambda item: item[0])
    return [
        VideoAnnotation(
            frame_number=index,
            timestamp_sec=timestamp,
            image_url=EMPTY_IMAGE_URL,
            description=description,
        )
        for index, (timestamp, description) in enumerate(entries, start=1)
    ]


class VideoAnalysisService:
    """Stages an upload, annotates it and always removes the staged copy."""

    def __init__(self, annotator: VideoAnnotator, staging_dir: Path | None = None) -> None:
        self._annotator = annotator
        self._staging_dir = staging_dir or Path(tempfile.gettempdir())

    def analyze_video(self, data: bytes, filename: str) -> list[VideoAnnotation]:
        if not data:
            raise ValueError("Video upload is empty")
        self._staging_dir.mkdir(parents=True, exist_ok=True)
        staged = self._staging_dir / f"video-{uuid4()}-{_safe_name(filename)}"
        try:
            staged.write_bytes(data)
            logger.info("Staged upload %s as %s", filename, staged)
            result = self._annotator.annotate(staged)
            return normalize_annotations(result)
        finally:
            _cleanup(staged)


def _cleanup(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
        logger.info("Cleaned up staged video %s", path)
    except OSError:
        logger.exception("Failed to delete staged video %s", path)


def _safe_name(filename: str) -> str:
    name = _SAFE_NAME.sub("_", Path(filename or "upload").name)
    return name or "upload"


def _synthetic(description: str) -> VideoAnnotation:
    return VideoAnnotation(
        frame_number=1,
        timestamp_sec=0.0,
        image_url=EMPTY_IMAGE_URL,
        description=description,
    )
