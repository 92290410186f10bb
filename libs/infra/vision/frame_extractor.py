"""OpenCV-backed frame extraction for camera streams and video files."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import cv2
import numpy as np

from libs.core.domain.entities import CapturedFrame
from libs.core.domain.errors import DrawSurfaceUnavailable, EndOfSource, SourceNotReady

logger = logging.getLogger(__name__)

DEFAULT_JPEG_QUALITY = 80


def encode_frame(frame: np.ndarray, jpeg_quality: int = DEFAULT_JPEG_QUALITY) -> bytes:
    """Encode a BGR frame as JPEG at its native resolution."""
    if frame is None or frame.size == 0:
        raise SourceNotReady("Frame has no pixel data")
    ok, buffer = cv2.imencode(
        ".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(jpeg_quality)]
    )
    if not ok:
        raise DrawSurfaceUnavailable(
            f"Could not encode {frame.shape[1]}x{frame.shape[0]} frame as JPEG"
        )
    return buffer.tobytes()


class OpenCvFrameSource:
    """Frame source over ``cv2.VideoCapture``.

    Live sources return the most recent decodable frame, timestamped with the
    time elapsed since the stream was opened. File sources play back in step
    with ``clock``: each capture seeks to the elapsed playback position and
    raises ``EndOfSource`` once it passes the file duration.
    """

    def __init__(
        self,
        locator: str,
        live: bool,
        jpeg_quality: int = DEFAULT_JPEG_QUALITY,
        clock: Callable[[], float] = time.monotonic,
        capture_factory: Callable[[str], Any] = cv2.VideoCapture,
    ) -> None:
        self._locator = locator
        self._live = live
        self._jpeg_quality = jpeg_quality
        self._clock = clock
        self._capture_factory = capture_factory
        self._capture: Any = None
        self._opened_at: float | None = None
        self._duration_sec: float | None = None
        self._closed = False

    def capture(self) -> CapturedFrame:
        if self._closed:
            raise SourceNotReady(f"Source {self._locator} is closed")
        capture = self._ensure_open()
        position_sec = self._clock() - (self._opened_at or 0.0)

        if not self._live:
            if self._duration_sec is not None and position_sec >= self._duration_sec:
                raise EndOfSource(f"Reached end of {self._locator}")
            capture.set(cv2.CAP_PROP_POS_MSEC, position_sec * 1000.0)

        ok, frame = capture.read()
        if not ok or frame is None:
            if not self._live and self._duration_sec is None:
                raise EndOfSource(f"No more frames in {self._locator}")
            raise SourceNotReady(f"No frame available from {self._locator}")

        image = encode_frame(frame, self._jpeg_quality)
        height, width = frame.shape[:2]
        return CapturedFrame(
            image=image,
            timestamp_sec=round(position_sec, 3),
            width=int(width),
            height=int(height),
        )

    def close(self) -> None:
        self._closed = True
        if self._capture is not None:
            self._capture.release()
            self._capture = None
            logger.debug("Released video source %s", self._locator)

    def _ensure_open(self) -> Any:
        if self._capture is not None:
            return self._capture
        capture = self._capture_factory(self._locator)
        if not capture.isOpened():
            capture.release()
            raise SourceNotReady(f"Could not open video source {self._locator}")
        self._capture = capture
        self._opened_at = self._clock()
        if not self._live:
            self._duration_sec = _file_duration(capture)
        logger.info(
            "Opened %s source %s",
            "live" if self._live else "file",
            self._locator,
        )
        return capture


def _file_duration(capture: Any) -> float | None:
    fps = capture.get(cv2.CAP_PROP_FPS)
    frame_count = capture.get(cv2.CAP_PROP_FRAME_COUNT)
    if not fps or fps <= 0 or not frame_count or frame_count <= 0:
        return None
    return float(frame_count) / float(fps)
