"""
Pure domain layer.

Value types, enumerations, the filing workflow table, the clock and the
external collaborator interfaces.  NO dependencies on the ORM, the database
or any I/O.
"""

from compliance_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from compliance_kernel.domain.collaborators import (
    EventPublisher,
    EventType,
    SourceLedgerReader,
)
from compliance_kernel.domain.dtos import (
    ClaimBreakdown,
    CounterpartySync,
    DiscrepancyReason,
    FilingFrequency,
    FilingRecordInfo,
    FilingStatus,
    ReconciliationInfo,
    SourceLedgerRecord,
    SourceRecordType,
    StepEntryInfo,
    StepStatus,
    StepType,
    SubReturn,
    SubReturnInfo,
    TaxFigures,
    WorkflowStatus,
)
from compliance_kernel.domain.filing_workflow import FILING_WORKFLOW
from compliance_kernel.domain.period_key import PeriodKey

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "EventPublisher",
    "EventType",
    "SourceLedgerReader",
    "ClaimBreakdown",
    "CounterpartySync",
    "DiscrepancyReason",
    "FilingFrequency",
    "FilingRecordInfo",
    "FilingStatus",
    "ReconciliationInfo",
    "SourceLedgerRecord",
    "SourceRecordType",
    "StepEntryInfo",
    "StepStatus",
    "StepType",
    "SubReturn",
    "SubReturnInfo",
    "TaxFigures",
    "WorkflowStatus",
    "FILING_WORKFLOW",
    "PeriodKey",
]
