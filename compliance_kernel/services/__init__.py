"""Services for the compliance kernel (write side)."""

from compliance_kernel.services.event_publisher import (
    LoggingEventPublisher,
    PublishedEvent,
    RecordingEventPublisher,
)
from compliance_kernel.services.source_ledger import (
    InMemorySourceLedgerReader,
    SqlSourceLedgerReader,
)
from compliance_kernel.services.step_ledger_service import StepLedgerService

__all__ = [
    "InMemorySourceLedgerReader",
    "LoggingEventPublisher",
    "PublishedEvent",
    "RecordingEventPublisher",
    "SqlSourceLedgerReader",
    "StepLedgerService",
]
