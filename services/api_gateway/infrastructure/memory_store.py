"""In-memory storage for cameras, analytics and report events."""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Generic, TypeVar
from uuid import uuid4

from libs.core.application.contracts import CameraFields, Unsubscribe
from libs.core.domain.entities import Analytic, Camera, ReportEvent

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChangeFeed(Generic[T]):
    """Pushes a fresh snapshot to every listener after each change."""

    def __init__(self, snapshot: Callable[[], list[T]]) -> None:
        self._snapshot = snapshot
        self._lock = threading.Lock()
        self._listeners: dict[int, Callable[[list[T]], None]] = {}
        self._next_token = 0

    def subscribe(self, listener: Callable[[list[T]], None]) -> Unsubscribe:
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._listeners[token] = listener
        self._deliver(listener, self._snapshot())

        def unsubscribe() -> None:
            with self._lock:
                self._listeners.pop(token, None)

        return unsubscribe

    def publish(self) -> None:
        with self._lock:
            listeners = list(self._listeners.values())
        if not listeners:
            return
        snapshot = self._snapshot()
        for listener in listeners:
            self._deliver(listener, snapshot)

    @staticmethod
    def _deliver(listener: Callable[[list[T]], None], snapshot: list[T]) -> None:
        try:
            listener(copy.deepcopy(snapshot))
        except Exception:
            logger.exception("Change listener %r failed", listener)


@dataclass
class InMemoryDatabase:
    cameras: dict[str, Camera] = field(default_factory=dict)
    analytics: dict[str, Analytic] = field(default_factory=dict)
    events: dict[str, ReportEvent] = field(default_factory=dict)
    lock: threading.RLock = field(default_factory=threading.RLock)

    def clear(self) -> None:
        with self.lock:
            self.cameras.clear()
            self.analytics.clear()
            self.events.clear()


class InMemoryCameraRepository:
    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db
        self._feed: ChangeFeed[Camera] = ChangeFeed(self.list)

    def add(self, fields: CameraFields) -> Camera:
        camera = Camera(
            camera_id=str(uuid4()),
            name=fields["name"],
            location=fields["location"],
            ip_address=fields["ip_address"],
        )
        with self._db.lock:
            self._db.cameras[camera.camera_id] = copy.deepcopy(camera)
        self._feed.publish()
        return camera

    def get(self, camera_id: str) -> Camera | None:
        with self._db.lock:
            camera = self._db.cameras.get(camera_id)
            return copy.deepcopy(camera) if camera is not None else None

    def list(self) -> list[Camera]:
        with self._db.lock:
            cameras = copy.deepcopy(list(self._db.cameras.values()))
        return sorted(cameras, key=lambda item: item.name)

    def update(self, camera: Camera) -> Camera | None:
        with self._db.lock:
            if camera.camera_id not in self._db.cameras:
                return None
            self._db.cameras[camera.camera_id] = copy.deepcopy(camera)
        self._feed.publish()
        return camera

    def delete(self, camera_id: str) -> bool:
        with self._db.lock:
            removed = self._db.cameras.pop(camera_id, None)
        if removed is None:
            return False
        self._feed.publish()
        return True

    def subscribe(self, listener: Callable[[list[Camera]], None]) -> Unsubscribe:
        return self._feed.subscribe(listener)

    def insert(self, camera: Camera) -> None:
        with self._db.lock:
            self._db.cameras[camera.camera_id] = copy.deepcopy(camera)
        self._feed.publish()


class InMemoryAnalyticRepository:
    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db
        self._feed: ChangeFeed[Analytic] = ChangeFeed(self.list)

    def add(self, analytic: Analytic) -> None:
        with self._db.lock:
            self._db.analytics[analytic.analytic_id] = copy.deepcopy(analytic)
        self._feed.publish()

    def get(self, analytic_id: str) -> Analytic | None:
        with self._db.lock:
            analytic = self._db.analytics.get(analytic_id)
            return copy.deepcopy(analytic) if analytic is not None else None

    def list(self) -> list[Analytic]:
        with self._db.lock:
            return copy.deepcopy(list(self._db.analytics.values()))

    def subscribe(self, listener: Callable[[list[Analytic]], None]) -> Unsubscribe:
        return self._feed.subscribe(listener)


class InMemoryEventRepository:
    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db
        self._feed: ChangeFeed[ReportEvent] = ChangeFeed(self.list)

    def add(self, event: ReportEvent) -> None:
        with self._db.lock:
            if event.event_id in self._db.events:
                raise ValueError(f"Event {event.event_id} already exists")
            self._db.events[event.event_id] = event
        self._feed.publish()

    def get(self, event_id: str) -> ReportEvent | None:
        with self._db.lock:
            return self._db.events.get(event_id)

    def list(self) -> list[ReportEvent]:
        with self._db.lock:
            events = list(self._db.events.values())
        return sorted(events, key=lambda item: item.timestamp, reverse=True)

    def subscribe(
        self, listener: Callable[[list[ReportEvent]], None]
    ) -> Unsubscribe:
        return self._feed.subscribe(listener)


def seed_demo_data(
    cameras: InMemoryCameraRepository,
    analytics: InMemoryAnalyticRepository,
    events: InMemoryEventRepository,
) -> None:
    """Populate empty collections with the demo catalog."""
    if not analytics.list():
        for analytic in _DEMO_ANALYTICS:
            analytics.add(analytic)
    if not cameras.list():
        for name, location, ip_address, status, video_url in _DEMO_CAMERAS:
            cameras.insert(
                Camera(
                    camera_id=str(uuid4()),
                    name=name,
                    location=location,
                    ip_address=ip_address,
                    status=status,
                    video_url=video_url,
                )
            )
    if not events.list():
        now = datetime.now(timezone.utc)
        for hours_ago, camera, analytic, severity, video_url, details in _DEMO_EVENTS:
            events.add(
                ReportEvent(
                    event_id=str(uuid4()),
                    timestamp=(now - timedelta(hours=hours_ago)).isoformat(),
                    camera_name=camera,
                    analytic_name=analytic,
                    severity=severity,
                    video_url=video_url,
                    details=details,
                )
            )
    logger.info("Demo catalog ready")


_DEMO_ANALYTICS = (
    Analytic(
        analytic_id="FaceRecognition",
        name="Facial Recognition",
        description="Identifies known individuals and detects unknown faces.",
        version="1.2.0",
        icon_name="FaceRecognitionIcon",
        tags=["Security", "Access Control"],
    ),
    Analytic(
        analytic_id="LPR",
        name="License Plate Recognition (LPR)",
        description="Reads and logs vehicle license plates for vehicle tracking.",
        version="2.0.1",
        icon_name="LPROIcon",
        tags=["Traffic", "Parking"],
    ),
    Analytic(
        analytic_id="ObjectDetection",
        name="Object Detection & Tracking",
        description="Detects and tracks specific objects within the video feed.",
        version="1.5.3",
        icon_name="ObjectDetectionIcon",
        tags=["Inventory", "Safety"],
    ),
    Analytic(
        analytic_id="AnomalyDetection",
        name="Behavioral Anomaly Detection",
        description="Flags unusual activities or deviations from normal patterns.",
        version="1.0.0",
        icon_name="AnomalyDetectionIcon",
        tags=["Security", "Compliance"],
    ),
    Analytic(
        analytic_id="FireSmokeDetection",
        name="Fire & Smoke Detection",
        description="Detects presence of fire or smoke for early warning.",
        version="1.1.0",
        tags=["Safety", "Emergency"],
    ),
    Analytic(
        analytic_id="IntrusionDetection",
        name="Intrusion Detection",
        description="Alerts on unauthorized entry into defined zones.",
        version="1.0.5",
        tags=["Security", "Perimeter"],
    ),
)

_DEMO_CAMERAS = (
    ("Main Entrance", "Lobby", "192.168.1.101", "Online", "/videos/cam1.mp4"),
    ("Warehouse Aisle 3", "Warehouse", "192.168.1.102", "Recording", "/videos/cam2.mp4"),
    ("Loading Dock", "Exterior", "192.168.1.103", "Offline", "/videos/cam3.mp4"),
    ("Server Room", "Data Center", "192.168.1.104", "Online", "/videos/cam4.mp4"),
)

_DEMO_EVENTS = (
    (
        1,
        "Main Entrance",
        "Facial Recognition",
        "High",
        "/videos/event1.mp4",
        "Unknown person detected entering restricted area.",
    ),
    (
        2,
        "Warehouse Aisle 3",
        "Object Detection & Tracking",
        "Low",
        "/videos/event2.mp4",
        "Pallet moved to incorrect location.",
    ),
    (
        3,
        "Loading Dock",
        "License Plate Recognition (LPR)",
        "Medium",
        "/videos/event3.mp4",
        "Vehicle without registered plate detected.",
    ),
    (
        4,
        "Server Room",
        "Behavioral Anomaly Detection",
        "Critical",
        "/videos/event4.mp4",
        "Unusual activity detected after hours.",
    ),
)
