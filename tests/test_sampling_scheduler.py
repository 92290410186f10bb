"""Sampling scheduler state machine tests."""

import http.client
import io
import json
import threading
import time
from typing import Union
from urllib.error import HTTPError, URLError

import pytest

from libs.core.application.event_derivation import EventContext, EventDeriver
from libs.core.application.sampling_scheduler import (
    FALLBACK_DESCRIPTION,
    SamplingScheduler,
)
from libs.core.domain.entities import AnalysisSession, CapturedFrame, ReportEvent
from libs.core.domain.errors import (
    DrawSurfaceUnavailable,
    EndOfSource,
    NoSubjectSelected,
    RateLimited,
    SourceNotReady,
    Unauthenticated,
)
from libs.infra.inference import http_support
from libs.infra.inference.http_client import HttpInferenceClient
from services.api_gateway.infrastructure.memory_store import (
    InMemoryDatabase,
    InMemoryEventRepository,
)
from services.api_gateway.infrastructure.session_runner import thread_launcher

Scripted = Union[str, Exception]


class FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class FakeSource:
    def __init__(self, failures: list[Exception] | None = None) -> None:
        self.failures = list(failures or [])
        self.captures = 0
        self.close_count = 0

    def capture(self) -> CapturedFrame:
        if self.failures:
            raise self.failures.pop(0)
        self.captures += 1
        return CapturedFrame(
            image=f"jpeg-{self.captures}".encode(),
            timestamp_sec=float(self.captures),
        )

    def close(self) -> None:
        self.close_count += 1


class ScriptedAnalyzer:
    def __init__(self, script: list[Scripted] | None = None) -> None:
        self.script = list(script or [])
        self.calls: list[tuple[bytes, str]] = []

    def analyze_frame(self, image: bytes, prompt: str) -> str:
        self.calls.append((image, prompt))
        step = self.script.pop(0) if self.script else "A quiet corridor"
        if isinstance(step, Exception):
            raise step
        return step


class GatedAnalyzer:
    def __init__(self, description: str) -> None:
        self.description = description
        self.entered = threading.Event()
        self.release = threading.Event()
        self.calls = 0

    def analyze_frame(self, image: bytes, prompt: str) -> str:
        self.calls += 1
        self.entered.set()
        self.release.wait(timeout=5)
        return self.description


class ConcurrencyTracker:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.active = 0
        self.max_active = 0
        self.calls = 0

    def analyze_frame(self, image: bytes, prompt: str) -> str:
        with self._lock:
            self.active += 1
            self.calls += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(0.005)
        with self._lock:
            self.active -= 1
        return "A quiet corridor"


def _scheduler(
    source: FakeSource,
    analyzer: object,
    clock: object,
    interval_sec: float = 3.0,
    max_samples: int | None = None,
    subject_id: str = "cam-1",
    events: InMemoryEventRepository | None = None,
) -> tuple[SamplingScheduler, InMemoryEventRepository]:
    if events is None:
        events = InMemoryEventRepository(InMemoryDatabase())
    session = AnalysisSession(
        session_id="session-1",
        subject_id=subject_id,
        mode="live" if max_samples is None else "file",
        video_url="/videos/cam1.mp4",
        sample_interval_sec=interval_sec,
        max_samples=max_samples,
    )
    scheduler = SamplingScheduler(
        session=session,
        source=source,
        analyzer=analyzer,  # type: ignore[arg-type]
        deriver=EventDeriver(events),
        context=EventContext(
            camera_name="Main Entrance",
            video_url="/videos/cam1.mp4",
            analytic_names=["Fire & Smoke Detection"],
        ),
        prompt="Describe the scene.",
        clock=clock,  # type: ignore[arg-type]
    )
    return scheduler, events


def test_samples_respect_interval_and_number_contiguously() -> None:
    clock = FakeClock()
    analyzer = ScriptedAnalyzer()
    scheduler, _ = _scheduler(FakeSource(), analyzer, clock)
    scheduler.start()

    assert scheduler.tick() is True
    assert scheduler.tick() is True
    clock.advance(2.5)
    assert scheduler.tick() is True
    assert len(analyzer.calls) == 1

    clock.advance(0.5)
    assert scheduler.tick() is True

    session = scheduler.snapshot()
    assert len(analyzer.calls) == 2
    assert session.state == "running"
    assert [sample.frame_number for sample in session.samples] == [1, 2]
    assert session.samples[1].image_data == b"jpeg-2"
    assert session.last_sample_at == 3.0


def test_file_session_stops_after_sample_limit() -> None:
    clock = FakeClock()
    source = FakeSource()
    analyzer = ScriptedAnalyzer()
    scheduler, _ = _scheduler(source, analyzer, clock, interval_sec=2.0, max_samples=10)
    scheduler.start()

    ticks = 0
    while scheduler.tick():
        clock.advance(2.0)
        ticks += 1
        assert ticks < 50

    session = scheduler.snapshot()
    assert session.state == "stopped"
    assert session.sample_count == 10
    assert [sample.frame_number for sample in session.samples] == list(range(1, 11))
    assert len(analyzer.calls) == 10
    assert source.close_count == 1


def test_stop_during_in_flight_call_discards_late_result() -> None:
    clock = FakeClock()
    source = FakeSource()
    analyzer = GatedAnalyzer("Fire in the server room")
    scheduler, events = _scheduler(source, analyzer, clock)
    scheduler.start()

    worker = threading.Thread(target=scheduler.tick)
    worker.start()
    assert analyzer.entered.wait(timeout=5)

    scheduler.stop()
    assert scheduler.snapshot().state == "stopping"
    assert scheduler.tick() is False
    assert source.close_count == 0

    analyzer.release.set()
    worker.join(timeout=5)

    session = scheduler.snapshot()
    assert session.state == "stopped"
    assert session.sample_count == 0
    assert session.samples == []
    assert events.list() == []
    assert analyzer.calls == 1
    assert source.close_count == 1


def test_stop_is_idempotent_and_blocks_new_cycles() -> None:
    clock = FakeClock()
    source = FakeSource()
    analyzer = ScriptedAnalyzer()
    scheduler, _ = _scheduler(source, analyzer, clock)
    scheduler.start()

    scheduler.stop()
    scheduler.stop()

    assert scheduler.snapshot().state == "stopped"
    assert scheduler.tick() is False
    assert source.captures == 0
    assert analyzer.calls == []
    assert source.close_count == 1


def test_transient_failure_records_fallback_and_keeps_running() -> None:
    clock = FakeClock()
    analyzer = ScriptedAnalyzer([RateLimited("quota exceeded"), "Fire near the exit"])
    scheduler, events = _scheduler(FakeSource(), analyzer, clock)
    scheduler.start()

    assert scheduler.tick() is True
    clock.advance(3.0)
    assert scheduler.tick() is True

    session = scheduler.snapshot()
    assert session.state == "running"
    assert session.sample_count == 2
    assert session.samples[0].description == FALLBACK_DESCRIPTION
    assert session.samples[1].description == "Fire near the exit"
    assert len(events.list()) == 1


def test_unreachable_inference_service_yields_fallback(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def refuse(*args: object, **kwargs: object) -> None:
        raise URLError("connection refused")

    monkeypatch.setattr(http_support.request, "urlopen", refuse)
    clock = FakeClock()
    client = HttpInferenceClient(base_url="http://inference.invalid")
    scheduler, events = _scheduler(FakeSource(), client, clock)
    scheduler.start()

    assert scheduler.tick() is True

    session = scheduler.snapshot()
    assert session.state == "running"
    assert session.sample_count == 1
    assert session.samples[0].description == FALLBACK_DESCRIPTION
    assert events.list() == []


def test_unauthenticated_inference_errors_session() -> None:
    clock = FakeClock()
    source = FakeSource()
    analyzer = ScriptedAnalyzer([Unauthenticated("API key rejected")])
    scheduler, _ = _scheduler(source, analyzer, clock)
    scheduler.start()

    assert scheduler.tick() is False
    clock.advance(10.0)
    assert scheduler.tick() is False

    session = scheduler.snapshot()
    assert session.state == "errored"
    assert session.error == "API key rejected"
    assert session.sample_count == 0
    assert len(analyzer.calls) == 1
    assert source.close_count == 1


def test_at_most_one_inference_call_in_flight() -> None:
    tracker = ConcurrencyTracker()
    scheduler, _ = _scheduler(
        FakeSource(), tracker, time.monotonic, interval_sec=0.0, max_samples=5
    )
    scheduler.start()

    runner = threading.Thread(target=scheduler.run, args=(0.0,))
    runner.start()
    deadline = time.monotonic() + 5
    while runner.is_alive() and time.monotonic() < deadline:
        scheduler.tick()
    runner.join(timeout=5)

    session = scheduler.snapshot()
    assert tracker.max_active == 1
    assert tracker.calls == 5
    assert session.sample_count == 5
    assert session.state == "stopped"


def test_source_not_ready_skips_tick() -> None:
    clock = FakeClock()
    source = FakeSource([SourceNotReady("stream warming up")])
    analyzer = ScriptedAnalyzer()
    scheduler, _ = _scheduler(source, analyzer, clock)
    scheduler.start()

    assert scheduler.tick() is True
    assert analyzer.calls == []
    assert scheduler.snapshot().last_sample_at is None

    assert scheduler.tick() is True
    assert scheduler.snapshot().sample_count == 1


def test_end_of_source_stops_session() -> None:
    source = FakeSource([EndOfSource("done")])
    scheduler, _ = _scheduler(source, ScriptedAnalyzer(), FakeClock(), max_samples=10)
    scheduler.start()

    assert scheduler.tick() is False

    session = scheduler.snapshot()
    assert session.state == "stopped"
    assert session.error is None
    assert source.close_count == 1


def test_draw_surface_failure_errors_session() -> None:
    source = FakeSource([DrawSurfaceUnavailable("encoder missing")])
    scheduler, _ = _scheduler(source, ScriptedAnalyzer(), FakeClock())
    scheduler.start()

    assert scheduler.tick() is False

    session = scheduler.snapshot()
    assert session.state == "errored"
    assert session.error == "encoder missing"


def test_unexpected_analyzer_failure_records_fallback_and_keeps_running() -> None:
    analyzer = ScriptedAnalyzer([RuntimeError("boom"), "Fire near the exit"])
    clock = FakeClock()
    scheduler, events = _scheduler(FakeSource(), analyzer, clock)
    scheduler.start()

    assert scheduler.tick() is True
    clock.advance(3.0)
    assert scheduler.tick() is True

    session = scheduler.snapshot()
    assert session.state == "running"
    assert [sample.description for sample in session.samples] == [
        FALLBACK_DESCRIPTION,
        "Fire near the exit",
    ]
    assert len(events.list()) == 1


def test_truncated_inference_response_yields_fallback(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def truncated(*args: object, **kwargs: object) -> None:
        raise http.client.IncompleteRead(b'{"cand')

    monkeypatch.setattr(http_support.request, "urlopen", truncated)
    client = HttpInferenceClient(base_url="http://inference.invalid")
    scheduler, events = _scheduler(FakeSource(), client, FakeClock())
    scheduler.start()

    assert scheduler.tick() is True

    session = scheduler.snapshot()
    assert session.state == "running"
    assert session.samples[0].description == FALLBACK_DESCRIPTION
    assert events.list() == []


def test_rejected_api_key_errors_session(monkeypatch: pytest.MonkeyPatch) -> None:
    body = {
        "error": {
            "code": 400,
            "message": "API key not valid. Please pass a valid API key.",
            "status": "INVALID_ARGUMENT",
            "details": [{"reason": "API_KEY_INVALID"}],
        }
    }

    def reject(*args: object, **kwargs: object) -> None:
        raise HTTPError(
            "http://inference.invalid",
            400,
            "Bad Request",
            {},  # type: ignore[arg-type]
            io.BytesIO(json.dumps(body).encode("utf-8")),
        )

    monkeypatch.setattr(http_support.request, "urlopen", reject)
    client = HttpInferenceClient(base_url="http://inference.invalid")
    source = FakeSource()
    scheduler, _ = _scheduler(source, client, FakeClock())
    scheduler.start()

    assert scheduler.tick() is False

    session = scheduler.snapshot()
    assert session.state == "errored"
    assert "API key not valid" in (session.error or "")
    assert session.sample_count == 0
    assert source.close_count == 1


class FailingEventRepository(InMemoryEventRepository):
    def add(self, event: ReportEvent) -> None:
        raise RuntimeError("event store offline")


def test_unexpected_failure_outside_inference_errors_session() -> None:
    analyzer = ScriptedAnalyzer(["Fire near the exit"])
    events = FailingEventRepository(InMemoryDatabase())
    scheduler, _ = _scheduler(FakeSource(), analyzer, FakeClock(), events=events)
    scheduler.start()

    scheduler.run(tick_interval_sec=0.0)

    session = scheduler.snapshot()
    assert session.state == "errored"
    assert session.error == "event store offline"


def test_start_requires_subject() -> None:
    scheduler, _ = _scheduler(FakeSource(), ScriptedAnalyzer(), FakeClock(), subject_id="")

    with pytest.raises(NoSubjectSelected):
        scheduler.start()
    assert scheduler.snapshot().state == "idle"


def test_finished_session_cannot_restart() -> None:
    scheduler, _ = _scheduler(FakeSource(), ScriptedAnalyzer(), FakeClock())
    scheduler.start()
    scheduler.stop()

    with pytest.raises(ValueError):
        scheduler.start()


def test_matching_description_logs_event_with_context() -> None:
    analyzer = ScriptedAnalyzer(["Suspicious person near the gate"])
    scheduler, events = _scheduler(FakeSource(), analyzer, FakeClock())
    scheduler.start()

    scheduler.tick()

    [event] = events.list()
    assert event.camera_name == "Main Entrance"
    assert event.analytic_name == "Fire & Smoke Detection"
    assert event.video_url == "/videos/cam1.mp4"
    assert event.severity == "Medium"
    assert event.details == "Live analysis detected: Suspicious person near the gate"


def test_thread_launcher_runs_session_in_background() -> None:
    scheduler, _ = _scheduler(
        FakeSource(), ScriptedAnalyzer(), time.monotonic, interval_sec=0.0, max_samples=3
    )
    scheduler.start()

    thread_launcher(tick_interval_sec=0.0)(scheduler)

    deadline = time.monotonic() + 5
    while scheduler.is_active() and time.monotonic() < deadline:
        time.sleep(0.01)
    session = scheduler.snapshot()
    assert session.state == "stopped"
    assert session.sample_count == 3
