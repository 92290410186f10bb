"""Cooperative sampling loop shared by live and file analysis sessions."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import replace
from typing import Callable

from libs.core.application.contracts import FrameAnalyzer, FrameSource
from libs.core.application.event_derivation import EventContext, EventDeriver
from libs.core.domain.entities import AnalysisSession, FrameSample, SessionState
from libs.core.domain.errors import (
    DrawSurfaceUnavailable,
    EndOfSource,
    InferenceFatal,
    InferenceTransient,
    NoSubjectSelected,
    SourceNotReady,
)

logger = logging.getLogger(__name__)

FALLBACK_DESCRIPTION = "Analysis failed for this frame"


class SamplingScheduler:
    """Drives extract -> infer -> derive cycles for one analysis session.

    ``tick`` performs at most one cycle and never overlaps with another tick,
    so a session has at most one inference call in flight. ``stop`` only
    flips the cancellation token; a call already in flight is allowed to
    settle and its result is discarded.
    """

    def __init__(
        self,
        session: AnalysisSession,
        source: FrameSource,
        analyzer: FrameAnalyzer,
        deriver: EventDeriver,
        context: EventContext,
        prompt: str,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session = session
        self._source = source
        self._analyzer = analyzer
        self._deriver = deriver
        self._context = context
        self._prompt = prompt
        self._clock = clock
        self._lock = threading.Lock()
        self._cancelled = threading.Event()
        self._in_cycle = False

    @property
    def session_id(self) -> str:
        return self._session.session_id

    @property
    def subject_id(self) -> str:
        return self._session.subject_id

    def snapshot(self) -> AnalysisSession:
        with self._lock:
            return replace(self._session, samples=list(self._session.samples))

    def is_active(self) -> bool:
        with self._lock:
            return self._session.state in ("running", "stopping")

    def start(self) -> None:
        if not self._session.subject_id:
            raise NoSubjectSelected("No camera or file selected for analysis")
        with self._lock:
            if self._session.state != "idle":
                raise ValueError("Session already started")
            self._session.state = "running"
        logger.info(
            "Analysis session %s started for %s (%s mode)",
            self._session.session_id,
            self._session.subject_id,
            self._session.mode,
        )

    def stop(self) -> None:
        with self._lock:
            self._cancelled.set()
            if self._session.state not in ("idle", "running"):
                return
            if self._in_cycle:
                self._session.state = "stopping"
                return
            self._session.state = "stopped"
        self._source.close()
        logger.info("Analysis session %s stopped", self._session.session_id)

    def run(self, tick_interval_sec: float) -> None:
        try:
            while self.tick():
                self._cancelled.wait(tick_interval_sec)
        except Exception as error:
            logger.exception(
                "Analysis session %s crashed", self._session.session_id
            )
            self._finish("errored", str(error))

    def tick(self) -> bool:
        """Run one scheduling step; return True while more ticks are needed."""
        with self._lock:
            if self._session.state != "running":
                return False
            if self._in_cycle:
                return True
            now = self._clock()
            last = self._session.last_sample_at
            if last is not None and now - last < self._session.sample_interval_sec:
                return True
            limit_reached = self._limit_reached()
            if not limit_reached:
                self._in_cycle = True

        if limit_reached:
            self._finish("stopped")
            return False

        try:
            return self._run_cycle(now)
        finally:
            with self._lock:
                self._in_cycle = False

    def _run_cycle(self, now: float) -> bool:
        try:
            frame = self._source.capture()
        except SourceNotReady:
            logger.debug(
                "Source not ready for session %s, skipping tick",
                self._session.session_id,
            )
            return self._keep_going()
        except EndOfSource:
            logger.info("Session %s reached end of source", self._session.session_id)
            self._finish("stopped")
            return False
        except DrawSurfaceUnavailable as error:
            logger.error(
                "Frame extraction failed for session %s: %s",
                self._session.session_id,
                error,
            )
            self._finish("errored", str(error))
            return False

        with self._lock:
            self._session.last_sample_at = now
        if not self._keep_going():
            return False

        failed = False
        try:
            description = self._analyzer.analyze_frame(frame.image, self._prompt)
        except InferenceTransient as error:
            logger.warning(
                "Inference failed for session %s frame at %.2fs: %s",
                self._session.session_id,
                frame.timestamp_sec,
                error,
            )
            description = FALLBACK_DESCRIPTION
            failed = True
        except InferenceFatal as error:
            if self._cancelled.is_set():
                self._finish("stopped")
                return False
            logger.error(
                "Inference rejected for session %s: %s",
                self._session.session_id,
                error,
            )
            self._finish("errored", str(error))
            return False
        except Exception:
            logger.exception(
                "Unexpected inference failure for session %s frame at %.2fs",
                self._session.session_id,
                frame.timestamp_sec,
            )
            description = FALLBACK_DESCRIPTION
            failed = True

        with self._lock:
            discarded = self._cancelled.is_set()
            if not discarded:
                self._session.sample_count += 1
                self._session.samples.append(
                    FrameSample(
                        frame_number=self._session.sample_count,
                        timestamp_sec=frame.timestamp_sec,
                        image_data=frame.image,
                        description=description,
                    )
                )
        if discarded:
            logger.info(
                "Discarding late inference result for stopped session %s",
                self._session.session_id,
            )
            self._finish("stopped")
            return False

        if not failed:
            self._deriver.derive(description, self._context)

        with self._lock:
            limit_reached = self._limit_reached()
        if limit_reached:
            logger.info(
                "Session %s analyzed %s frames, stopping",
                self._session.session_id,
                self._session.max_samples,
            )
            self._finish("stopped")
            return False
        return True

    def _keep_going(self) -> bool:
        if self._cancelled.is_set():
            self._finish("stopped")
            return False
        return True

    def _limit_reached(self) -> bool:
        max_samples = self._session.max_samples
        return max_samples is not None and self._session.sample_count >= max_samples

    def _finish(self, state: SessionState, error: str | None = None) -> None:
        with self._lock:
            self._cancelled.set()
            current = self._session.state
            if current == "stopping":
                self._session.state = "stopped"
            elif current in ("idle", "running"):
                self._session.state = state
                self._session.error = error
        self._source.close()
