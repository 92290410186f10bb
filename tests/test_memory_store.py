"""In-memory repository and change feed tests."""

from typing import get_type_hints

import pytest

from libs.core.application.contracts import (
    AnalyticRepository,
    CameraRepository,
    EventRepository,
)
from libs.core.domain.entities import Camera, ReportEvent
from services.api_gateway.infrastructure.memory_store import (
    InMemoryAnalyticRepository,
    InMemoryCameraRepository,
    InMemoryDatabase,
    InMemoryEventRepository,
    seed_demo_data,
)


def _event(event_id: str, timestamp: str) -> ReportEvent:
    return ReportEvent(
        event_id=event_id,
        timestamp=timestamp,
        camera_name="Loading Dock",
        analytic_name="General Anomaly",
        severity="Medium",
        video_url="/videos/cam3.mp4",
        details="Live analysis detected: unusual vehicle",
    )


def test_camera_subscription_receives_snapshots_until_unsubscribed() -> None:
    cameras = InMemoryCameraRepository(InMemoryDatabase())
    snapshots: list[list[Camera]] = []

    unsubscribe = cameras.subscribe(snapshots.append)
    created = cameras.add({"name": "Lobby", "location": "Ground", "ip_address": "10.0.0.5"})
    unsubscribe()
    cameras.delete(created.camera_id)

    assert len(snapshots) == 2
    assert snapshots[0] == []
    assert [camera.name for camera in snapshots[1]] == ["Lobby"]


def test_subscribers_get_copies() -> None:
    cameras = InMemoryCameraRepository(InMemoryDatabase())
    cameras.add({"name": "Lobby", "location": "Ground", "ip_address": "10.0.0.5"})
    received: list[list[Camera]] = []

    cameras.subscribe(received.append)
    received[0][0].name = "Tampered"

    assert cameras.list()[0].name == "Lobby"


def test_failing_listener_does_not_block_others() -> None:
    events = InMemoryEventRepository(InMemoryDatabase())
    delivered: list[int] = []

    def broken(snapshot: list[ReportEvent]) -> None:
        raise RuntimeError("listener crashed")

    events.subscribe(broken)
    events.subscribe(lambda snapshot: delivered.append(len(snapshot)))
    events.add(_event("e-1", "2026-01-01T10:00:00+00:00"))

    assert delivered == [0, 1]


def test_events_listed_newest_first() -> None:
    events = InMemoryEventRepository(InMemoryDatabase())
    events.add(_event("older", "2026-01-01T10:00:00+00:00"))
    events.add(_event("newer", "2026-01-01T12:00:00+00:00"))

    assert [event.event_id for event in events.list()] == ["newer", "older"]


def test_duplicate_event_id_rejected() -> None:
    events = InMemoryEventRepository(InMemoryDatabase())
    events.add(_event("e-1", "2026-01-01T10:00:00+00:00"))

    with pytest.raises(ValueError):
        events.add(_event("e-1", "2026-01-01T11:00:00+00:00"))
    assert len(events.list()) == 1


def test_update_unknown_camera_returns_none() -> None:
    cameras = InMemoryCameraRepository(InMemoryDatabase())
    ghost = Camera(camera_id="missing", name="Ghost", location="", ip_address="")

    assert cameras.update(ghost) is None
    assert cameras.delete("missing") is False


def test_seed_demo_data_is_idempotent() -> None:
    db = InMemoryDatabase()
    cameras = InMemoryCameraRepository(db)
    analytics = InMemoryAnalyticRepository(db)
    events = InMemoryEventRepository(db)

    seed_demo_data(cameras, analytics, events)
    seed_demo_data(cameras, analytics, events)

    assert [analytic.analytic_id for analytic in analytics.list()] == [
        "FaceRecognition",
        "LPR",
        "ObjectDetection",
        "AnomalyDetection",
        "FireSmokeDetection",
        "IntrusionDetection",
    ]
    assert len(cameras.list()) == 4
    assert len(events.list()) == 4
    assert events.list()[0].camera_name == "Main Entrance"


@pytest.mark.parametrize(
    "contract", [CameraRepository, AnalyticRepository, EventRepository]
)
def test_repository_subscribe_annotations_resolve(contract: type) -> None:
    hints = get_type_hints(contract.subscribe)

    assert set(hints) == {"listener", "return"}
