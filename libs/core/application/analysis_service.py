from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable
from uuid import uuid4

from libs.core.application.contracts import (
    AnalyticRepository,
    CameraFields,
    CameraRepository,
    EventClassifier,
    EventRepository,
    FrameAnalyzer,
    FrameSource,
)
from libs.core.application.event_derivation import EventContext, EventDeriver
from libs.core.application.prompts import build_frame_prompt
from libs.core.application.sampling_scheduler import SamplingScheduler
from libs.core.domain.entities import (
    AnalysisSession,
    Analytic,
    Camera,
    CameraStatus,
    ReportEvent,
    SessionMode,
)
from libs.core.domain.errors import NoSubjectSelected, SessionAlreadyRunning

logger = logging.getLogger(__name__)

SourceFactory = Callable[[str, bool], FrameSource]
Launcher = Callable[[SamplingScheduler], None]


@dataclass
class SamplingPolicy:
    """Cadence limits for new sessions and how many finished ones stay queryable."""

    live_interval_sec: float = 3.0
    file_interval_sec: float = 2.0
    file_max_samples: int = 10
    retained_sessions: int = 50


class AnalysisService:
    """Application service for cameras, analytics, events and analysis sessions."""

    def __init__(
        self,
        camera_repository: CameraRepository,
        analytic_repository: AnalyticRepository,
        event_repository: EventRepository,
        analyzer: FrameAnalyzer,
        source_factory: SourceFactory,
        launcher: Launcher,
        policy: SamplingPolicy | None = None,
        classifier: EventClassifier | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cameras = camera_repository
        self._analytics = analytic_repository
        self._events = event_repository
        self._analyzer = analyzer
        self._source_factory = source_factory
        self._launcher = launcher
        self._policy = policy or SamplingPolicy()
        self._deriver = EventDeriver(event_repository, classifier)
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: dict[str, SamplingScheduler] = {}
        self._active_by_subject: dict[str, str] = {}

    def list_cameras(self) -> list[Camera]:
        return self._cameras.list()

    def get_camera(self, camera_id: str) -> Camera | None:
        return self._cameras.get(camera_id)

    def create_camera(self, fields: CameraFields) -> Camera:
        return self._cameras.add(fields)

    def update_camera(
        self,
        camera_id: str,
        fields: CameraFields,
        status: CameraStatus,
        video_url: str,
    ) -> Camera | None:
        camera = self._cameras.get(camera_id)
        if camera is None:
            return None
        camera.name = fields["name"]
        camera.location = fields["location"]
        camera.ip_address = fields["ip_address"]
        camera.status = status
        camera.video_url = video_url
        return self._cameras.update(camera)

    def delete_camera(self, camera_id: str) -> bool:
        self._stop_subject(camera_id)
        return self._cameras.delete(camera_id)

    def list_analytics(self) -> list[Analytic]:
        return self._analytics.list()

    def apply_analytic(self, analytic_id: str, camera_ids: list[str]) -> list[Camera]:
        """Make ``camera_ids`` exactly the set of cameras carrying the analytic."""
        if self._analytics.get(analytic_id) is None:
            raise ValueError("Analytic not found")
        cameras = self._cameras.list()
        known = {camera.camera_id for camera in cameras}
        missing = sorted(set(camera_ids) - known)
        if missing:
            raise ValueError(f"Unknown cameras: {', '.join(missing)}")

        selected = set(camera_ids)
        changed: list[Camera] = []
        for camera in cameras:
            has_analytic = analytic_id in camera.analytic_ids
            if camera.camera_id in selected and not has_analytic:
                camera.analytic_ids = [*camera.analytic_ids, analytic_id]
            elif camera.camera_id not in selected and has_analytic:
                camera.analytic_ids = [
                    item for item in camera.analytic_ids if item != analytic_id
                ]
            else:
                continue
            self._cameras.update(camera)
            changed.append(camera)
        return changed

    def list_events(self) -> list[ReportEvent]:
        return sorted(self._events.list(), key=lambda item: item.timestamp, reverse=True)

    def get_event(self, event_id: str) -> ReportEvent | None:
        return self._events.get(event_id)

    def start_live_analysis(self, camera_id: str | None) -> AnalysisSession:
        if not camera_id:
            raise NoSubjectSelected("No camera selected for live analysis")
        camera = self._cameras.get(camera_id)
        if camera is None:
            raise NoSubjectSelected(f"Camera {camera_id} not found")

        context = EventContext(
            camera_name=camera.name,
            video_url=camera.video_url,
            analytic_names=self._analytic_names(camera.analytic_ids),
        )
        scheduler = self._build_scheduler(
            subject_id=camera.camera_id,
            mode="live",
            video_url=camera.video_url,
            interval_sec=self._policy.live_interval_sec,
            max_samples=None,
            context=context,
            prompt=build_frame_prompt(camera.analytic_ids),
        )
        return self._launch(scheduler)

    def start_file_analysis(
        self,
        video_path: str | None,
        max_samples: int | None = None,
    ) -> AnalysisSession:
        if not video_path:
            raise NoSubjectSelected("Please upload a video file first")
        path = Path(video_path)
        if not path.is_file():
            raise NoSubjectSelected(f"Video file not found: {path}")

        limit = max_samples if max_samples is not None else self._policy.file_max_samples
        scheduler = self._build_scheduler(
            subject_id=str(path),
            mode="file",
            video_url=str(path),
            interval_sec=self._policy.file_interval_sec,
            max_samples=limit,
            context=EventContext(camera_name=path.name, video_url=str(path)),
            prompt=build_frame_prompt([]),
        )
        return self._launch(scheduler)

    def stop_analysis(self, session_id: str) -> AnalysisSession | None:
        with self._lock:
            scheduler = self._sessions.get(session_id)
        if scheduler is None:
            return None
        scheduler.stop()
        return scheduler.snapshot()

    def get_session(self, session_id: str) -> AnalysisSession | None:
        with self._lock:
            scheduler = self._sessions.get(session_id)
        return scheduler.snapshot() if scheduler is not None else None

    def stop_all(self) -> None:
        with self._lock:
            schedulers = list(self._sessions.values())
        for scheduler in schedulers:
            scheduler.stop()

    def reset_runtime_state(self) -> None:
        self.stop_all()
        with self._lock:
            self._sessions.clear()
            self._active_by_subject.clear()

    def _build_scheduler(
        self,
        subject_id: str,
        mode: SessionMode,
        video_url: str,
        interval_sec: float,
        max_samples: int | None,
        context: EventContext,
        prompt: str,
    ) -> SamplingScheduler:
        session = AnalysisSession(
            session_id=str(uuid4()),
            subject_id=subject_id,
            mode=mode,
            video_url=video_url,
            sample_interval_sec=interval_sec,
            max_samples=max_samples,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        return SamplingScheduler(
            session=session,
            source=self._source_factory(video_url, mode == "live"),
            analyzer=self._analyzer,
            deriver=self._deriver,
            context=context,
            prompt=prompt,
            clock=self._clock,
        )

    def _launch(self, scheduler: SamplingScheduler) -> AnalysisSession:
        with self._lock:
            active_id = self._active_by_subject.get(scheduler.subject_id)
            active = self._sessions.get(active_id) if active_id else None
            if active is not None and active.is_active():
                raise SessionAlreadyRunning(
                    f"Analysis already running for {scheduler.subject_id}"
                )
            self._evict_finished_locked(scheduler.subject_id)
            scheduler.start()
            self._sessions[scheduler.session_id] = scheduler
            self._active_by_subject[scheduler.subject_id] = scheduler.session_id

        self._launcher(scheduler)
        return scheduler.snapshot()

    def _stop_subject(self, subject_id: str) -> None:
        with self._lock:
            session_id = self._active_by_subject.pop(subject_id, None)
            scheduler = self._sessions.get(session_id) if session_id else None
        if scheduler is not None:
            scheduler.stop()

    def _evict_finished_locked(self, subject_id: str) -> None:
        """Drop finished sessions of ``subject_id`` and the oldest ones over the cap."""
        finished = [
            scheduler
            for scheduler in self._sessions.values()
            if not scheduler.is_active()
        ]
        kept = [item for item in finished if item.subject_id != subject_id]
        overflow = max(0, len(kept) - self._policy.retained_sessions)
        evicted = [item for item in finished if item.subject_id == subject_id]
        evicted.extend(kept[:overflow])
        for scheduler in evicted:
            del self._sessions[scheduler.session_id]
            if self._active_by_subject.get(scheduler.subject_id) == scheduler.session_id:
                del self._active_by_subject[scheduler.subject_id]
        if evicted:
            logger.debug("Evicted %d finished analysis session(s)", len(evicted))

    def _analytic_names(self, analytic_ids: list[str]) -> list[str]:
        """Names of the applied analytics, in catalog order."""
        applied = set(analytic_ids)
        return [
            analytic.name
            for analytic in self._analytics.list()
            if analytic.analytic_id in applied
        ]
