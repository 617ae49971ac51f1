"""
Event publisher implementations.

``LoggingEventPublisher`` writes each domain event as a structured log line
and is the default wiring.  ``RecordingEventPublisher`` keeps events in
memory for tests and can be told to fail or stall so timeout and failure
paths are reachable.
"""

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from compliance_kernel.domain.clock import Clock, SystemClock
from compliance_kernel.domain.collaborators import EventPublisher, EventType
from compliance_kernel.domain.period_key import PeriodKey
from compliance_kernel.logging_config import get_logger

logger = get_logger("services.events")


@dataclass(frozen=True)
class PublishedEvent:
    """One event as seen by a publisher."""

    event_type: EventType
    period_key: PeriodKey
    payload: dict[str, Any]
    published_at: datetime


class LoggingEventPublisher(EventPublisher):
    """Publishes events to the ``compliance_kernel.services.events`` logger."""

    def publish(
        self,
        event_type: EventType,
        period_key: PeriodKey,
        payload: dict[str, Any],
    ) -> None:
        logger.info(
            "domain_event",
            extra={
                "event_type": EventType(event_type).value,
                "client_id": period_key.client_id,
                "period": period_key.period,
                "fiscal_year": period_key.fiscal_year,
                "payload": payload,
            },
        )


@dataclass
class RecordingEventPublisher(EventPublisher):
    """
    In-memory publisher.

    ``fail_with`` raises the given exception on every publish;
    ``delay_seconds`` sleeps before recording.  Events are only recorded
    when publish returns normally.
    """

    clock: Clock = field(default_factory=SystemClock)
    fail_with: Exception | None = None
    delay_seconds: float = 0.0
    events: list[PublishedEvent] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def publish(
        self,
        event_type: EventType,
        period_key: PeriodKey,
        payload: dict[str, Any],
    ) -> None:
        if self.delay_seconds:
            time.sleep(self.delay_seconds)
        if self.fail_with is not None:
            raise self.fail_with
        with self._lock:
            self.events.append(
                PublishedEvent(
                    event_type=EventType(event_type),
                    period_key=period_key,
                    payload=dict(payload),
                    published_at=self.clock.now(),
                )
            )

    def of_type(self, event_type: EventType) -> list[PublishedEvent]:
        with self._lock:
            return [e for e in self.events if e.event_type == event_type]

    def types(self) -> list[EventType]:
        with self._lock:
            return [e.event_type for e in self.events]

    def clear(self) -> None:
        with self._lock:
            self.events.clear()
