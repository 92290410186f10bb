from dataclasses import dataclass, field
from typing import Literal, Optional

SessionState = Literal["idle", "running", "stopping", "stopped", "errored"]
SessionMode = Literal["live", "file"]
EventSeverity = Literal["Low", "Medium", "High", "Critical"]
CameraStatus = Literal["Online", "Offline", "Recording"]

TERMINAL_STATES: frozenset[str] = frozenset({"stopped", "errored"})


@dataclass
class Camera:
    """Camera registered in the dashboard."""

    camera_id: str
    name: str
    location: str
    ip_address: str
    status: CameraStatus = "Offline"
    video_url: str = "/videos/default.mp4"
    analytic_ids: list[str] = field(default_factory=list)


@dataclass
class Analytic:
    """Analytic catalog entry that can be applied to cameras."""

    analytic_id: str
    name: str
    description: str
    version: str
    icon_name: str = "DefaultAnalyticIcon"
    tags: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ReportEvent:
    """Incident record persisted by event derivation."""

    event_id: str
    timestamp: str
    camera_name: str
    analytic_name: str
    severity: EventSeverity
    video_url: str
    details: str


@dataclass(frozen=True)
class CapturedFrame:
    """Encoded still produced by a frame source."""

    image: bytes
    timestamp_sec: float
    width: int = 0
    height: int = 0


@dataclass
class FrameSample:
    """One captured and analyzed still of a session."""

    frame_number: int
    timestamp_sec: float
    image_data: bytes
    description: Optional[str] = None


@dataclass
class AnalysisSession:
    """State of one live or file analysis run."""

    session_id: str
    subject_id: str
    mode: SessionMode
    video_url: str
    sample_interval_sec: float
    max_samples: int | None = None
    state: SessionState = "idle"
    sample_count: int = 0
    last_sample_at: float | None = None
    samples: list[FrameSample] = field(default_factory=list)
    error: str | None = None
    created_at: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


@dataclass(frozen=True)
class VideoAnnotation:
    """Timestamped insight produced by whole-video analysis."""

    frame_number: int
    timestamp_sec: float
    image_url: str
    description: str
