"""
compliance_services._events -- bounded event publication.

Every domain event leaves through ``publish_event`` so publication is
logged and time-bounded the same way from the orchestrator and the
reconciliation service.
"""

from typing import Any

from compliance_kernel.domain.collaborators import EventPublisher, EventType
from compliance_kernel.domain.period_key import PeriodKey
from compliance_kernel.logging_config import get_logger
from compliance_kernel.utils.timeouts import bounded_call

logger = get_logger("services.events")


def publish_event(
    publisher: EventPublisher,
    event_type: EventType,
    period_key: PeriodKey,
    payload: dict[str, Any],
    *,
    timeout_seconds: float,
) -> None:
    """Publish through ``bounded_call``; a raise fails the calling operation."""
    bounded_call(
        publisher.publish,
        event_type,
        period_key,
        payload,
        collaborator="event_publisher",
        timeout_seconds=timeout_seconds,
    )
    logger.info(
        "domain_event_published",
        extra={"event_type": event_type.value, "period_key": str(period_key)},
    )
