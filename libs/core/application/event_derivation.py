"""Keyword heuristics that turn frame descriptions into report events."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4

from libs.core.application.contracts import EventClassifier, EventRepository
from libs.core.domain.entities import EventSeverity, ReportEvent

logger = logging.getLogger(__name__)

TRIGGER_KEYWORDS = ("unusual", "alert", "intruder", "fire", "smoke", "suspicious")
CRITICAL_KEYWORDS = ("critical", "fire")
HIGH_KEYWORDS = ("high priority", "intruder")
FALLBACK_ANALYTIC_NAME = "General Anomaly"


@dataclass
class EventContext:
    """Subject data copied into every event derived for it."""

    camera_name: str
    video_url: str
    analytic_names: list[str] = field(default_factory=list)


class KeywordSeverityClassifier:
    """Case-insensitive trigger vocabulary with a fixed severity priority.

    ``Low`` is never produced here; it is reserved for manually logged events.
    """

    def __init__(
        self,
        triggers: tuple[str, ...] = TRIGGER_KEYWORDS,
        critical: tuple[str, ...] = CRITICAL_KEYWORDS,
        high: tuple[str, ...] = HIGH_KEYWORDS,
    ) -> None:
        self._triggers = triggers
        self._critical = critical
        self._high = high

    def classify(self, description: str) -> EventSeverity | None:
        text = description.lower()
        if not any(keyword in text for keyword in self._triggers):
            return None
        if any(keyword in text for keyword in self._critical):
            return "Critical"
        if any(keyword in text for keyword in self._high):
            return "High"
        return "Medium"


class EventDeriver:
    """Creates at most one report event per analyzed description."""

    def __init__(
        self,
        event_repository: EventRepository,
        classifier: EventClassifier | None = None,
    ) -> None:
        self._events = event_repository
        self._classifier = classifier or KeywordSeverityClassifier()

    def derive(self, description: str, context: EventContext) -> ReportEvent | None:
        if not description:
            return None
        severity = self._classifier.classify(description)
        if severity is None:
            return None

        analytic_name = (
            context.analytic_names[0]
            if context.analytic_names
            else FALLBACK_ANALYTIC_NAME
        )
        event = ReportEvent(
            event_id=str(uuid4()),
            timestamp=datetime.now(timezone.utc).isoformat(),
            camera_name=context.camera_name,
            analytic_name=analytic_name,
            severity=severity,
            video_url=context.video_url,
            details=f"Live analysis detected: {description}",
        )
        self._events.add(event)
        logger.info(
            "Event %s logged for %s with severity %s",
            event.event_id,
            context.camera_name,
            severity,
        )
        return event
