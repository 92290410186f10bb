from __future__ import annotations

from typing import Callable, Optional, Protocol, TypedDict

from libs.core.domain.entities import (
    Analytic,
    Camera,
    CapturedFrame,
    EventSeverity,
    ReportEvent,
    VideoAnnotation,
)

Unsubscribe = Callable[[], None]


class CameraFields(TypedDict):
    """Editable camera attributes passed to repositories."""

    name: str
    location: str
    ip_address: str


class CameraRepository(Protocol):
    """Camera persistence contract."""

    def add(self, fields: CameraFields) -> Camera: ...

    def get(self, camera_id: str) -> Camera | None: ...

    def list(self) -> list[Camera]: ...

    def update(self, camera: Camera) -> Camera | None: ...

    def delete(self, camera_id: str) -> bool: ...

    def subscribe(self, listener: Callable[[list[Camera]], None]) -> Unsubscribe: ...


class AnalyticRepository(Protocol):
    """Analytic catalog persistence contract."""

    def add(self, analytic: Analytic) -> None: ...

    def get(self, analytic_id: str) -> Analytic | None: ...

    def list(self) -> list[Analytic]: ...

    def subscribe(
        self, listener: Callable[[list[Analytic]], None]
    ) -> Unsubscribe: ...


class EventRepository(Protocol):
    """Report event persistence contract. Events are append-only."""

    def add(self, event: ReportEvent) -> None: ...

    def get(self, event_id: str) -> ReportEvent | None: ...

    def list(self) -> list[ReportEvent]: ...

    def subscribe(
        self, listener: Callable[[list[ReportEvent]], None]
    ) -> Unsubscribe: ...


class FrameSource(Protocol):
    """Video source that yields encoded stills."""

    def capture(self) -> CapturedFrame: ...

    def close(self) -> None: ...


class FrameAnalyzer(Protocol):
    """Vision model boundary for single frames."""

    def analyze_frame(self, image: bytes, prompt: str) -> str: ...


class VideoAnalyzer(Protocol):
    """Video model boundary for whole uploads."""

    def analyze_video(self, data: bytes, filename: str) -> list[VideoAnnotation]: ...


class EventClassifier(Protocol):
    """Maps an inference description to a severity, or None for no event."""

    def classify(self, description: str) -> Optional[EventSeverity]: ...


class VisionModel(FrameAnalyzer, Protocol):
    """Generative model answering text prompts and frame prompts."""

    def generate_text(self, prompt: str) -> str: ...
