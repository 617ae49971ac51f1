"""
External collaborator interfaces.

Responsibility:
    The engine consumes two outside systems and implements neither:

    * ``SourceLedgerReader`` -- read-only queries over purchase/sale records.
    * ``EventPublisher`` -- fire-and-forget publication of domain events.

    Services receive concrete implementations at construction; there are no
    process-wide singletons.  Calls are wrapped in
    ``compliance_kernel.utils.timeouts.bounded_call`` by the caller.

Architecture position:
    Kernel > Domain -- interfaces only, zero I/O.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from compliance_kernel.domain.dtos import SourceLedgerRecord
from compliance_kernel.domain.period_key import PeriodKey


class EventType(str, Enum):
    """Domain events emitted by the engine."""

    FILING_CREATED = "filing.created"
    FILING_STATUS_CHANGED = "filing.status_changed"
    FILING_LOCKED = "filing.locked"
    FILING_UNLOCKED = "filing.unlocked"
    FILING_AMENDMENT_STARTED = "filing.amendment_started"
    FILING_PENALTIES_CALCULATED = "filing.penalties_calculated"
    RECONCILIATION_CLAIMED_COMPUTED = "reconciliation.claimed_computed"
    RECONCILIATION_SYNCED = "reconciliation.synced"
    RECONCILIATION_DISCREPANCY_DETECTED = "reconciliation.discrepancy_detected"
    RECONCILIATION_RESOLVED = "reconciliation.resolved"


class SourceLedgerReader(ABC):
    """
    Read-only access to a client's source records.

    Contract:
        ``query_records`` returns every record for the client and period.
        Implementations never write.
    """

    @abstractmethod
    def query_records(self, client_id: str, period: str) -> list[SourceLedgerRecord]:
        ...


class EventPublisher(ABC):
    """
    Domain event sink.

    Contract:
        ``publish`` either returns or raises; delivery guarantees belong to
        the implementation.  A raise fails the calling operation.
    """

    @abstractmethod
    def publish(
        self,
        event_type: EventType,
        period_key: PeriodKey,
        payload: dict[str, Any],
    ) -> None:
        ...
