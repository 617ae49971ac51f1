"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Enumerations and immutable snapshots that cross the service boundary:
    FilingRecordInfo, StepEntryInfo, ReconciliationInfo and their parts.
    Services never hand ORM entities to callers.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() boundary converters live on the ORM models (to_dto), not
    here, so this module imports nothing from SQLAlchemy.

Invariants enforced:
    - Every status-like field is a closed ``str`` Enum.  ``parse_enum``
      rejects unknown values with ValidationError at the boundary.
    - Money is Decimal, never float.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, TypeVar
from uuid import UUID

from compliance_kernel.domain.period_key import PeriodKey
from compliance_kernel.exceptions import ValidationError

ZERO = Decimal("0")

E = TypeVar("E", bound=Enum)


class WorkflowStatus(str, Enum):
    """Authoritative lifecycle status of a filing record."""

    DRAFT = "draft"
    SUB_RETURN_A_FILED = "sub_return_a_filed"
    SUB_RETURN_B_FILED = "sub_return_b_filed"
    LOCKED = "locked"
    AMENDMENT_IN_PROGRESS = "amendment_in_progress"


class FilingStatus(str, Enum):
    """Derived timeliness projection, recomputed on every write."""

    PENDING = "pending"
    FILED = "filed"
    LATE = "late"
    OVERDUE = "overdue"


class FilingFrequency(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class SubReturn(str, Enum):
    A = "a"
    B = "b"


class StepType(str, Enum):
    """Kinds of step ledger entries."""

    PREPARE_A = "prepare_a"
    VALIDATE_A = "validate_a"
    FILE_A = "file_a"
    PREPARE_B = "prepare_b"
    VALIDATE_B = "validate_b"
    FILE_B = "file_b"
    AMENDMENT = "amendment"
    LOCK = "lock"
    UNLOCK = "unlock"
    CALCULATE_PENALTIES = "calculate_penalties"


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED)


class DiscrepancyReason(str, Enum):
    EXCESS_CLAIMED = "excess_claimed"
    UNCLAIMED = "unclaimed"
    COUNTERPARTY_REJECTED = "counterparty_rejected"
    PENDING_ACCEPTANCE = "pending_acceptance"
    RECONCILED = "reconciled"
    AWAITING_SYNC = "awaiting_sync"


class SourceRecordType(str, Enum):
    PURCHASE = "purchase"
    SALE = "sale"


def parse_enum(enum_cls: type[E], value: Any, field_name: str) -> E:
    """Coerce ``value`` into ``enum_cls`` or raise ValidationError."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(
            f"Unknown {field_name} {value!r}; expected one of: {allowed}",
            field=field_name,
        ) from None


def to_decimal(value: Any, field_name: str, *, allow_negative: bool = False) -> Decimal:
    """Coerce a money value into Decimal, rejecting floats and negatives."""
    if isinstance(value, float):
        raise ValidationError(f"{field_name} must not be a float", field=field_name)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, TypeError):
        raise ValidationError(
            f"{field_name} is not a valid amount: {value!r}", field=field_name
        ) from None
    if not amount.is_finite():
        raise ValidationError(f"{field_name} must be finite", field=field_name)
    if amount < ZERO and not allow_negative:
        raise ValidationError(f"{field_name} must not be negative", field=field_name)
    return amount


@dataclass(frozen=True)
class TaxFigures:
    """
    Tax payload attached when sub-return B is filed.

    Guarantees:
        - All components are non-negative Decimals.
        - ``tax_paid`` is required; components default to zero.
    """

    tax_paid: Decimal
    central: Decimal = ZERO
    state: Decimal = ZERO
    integrated: Decimal = ZERO
    cess: Decimal = ZERO

    def __post_init__(self) -> None:
        for name in ("tax_paid", "central", "state", "integrated", "cess"):
            object.__setattr__(self, name, to_decimal(getattr(self, name), name))

    @property
    def total_components(self) -> Decimal:
        return self.central + self.state + self.integrated + self.cess


@dataclass(frozen=True)
class SubReturnInfo:
    filed: bool
    filed_date: date | None
    reference_number: str | None
    due_date: date | None


@dataclass(frozen=True)
class FilingRecordInfo:
    """
    Pure snapshot of a filing record.

    Contract:
        Returned by every orchestrator operation and every filing selector.

    Non-goals:
        - Does NOT enforce the lock; the orchestrator and the ORM listeners
          do that.
    """

    id: UUID
    period_key: PeriodKey
    workflow_status: WorkflowStatus
    filing_frequency: FilingFrequency
    sub_return_a: SubReturnInfo
    sub_return_b: SubReturnInfo
    tax_figures: TaxFigures | None
    late_fee: Decimal
    late_fee_calculated: bool
    interest: Decimal
    interest_calculated: bool
    filing_status: FilingStatus
    is_locked: bool
    locked_at: datetime | None
    locked_by_id: UUID | None
    lock_reason: str | None
    amendment_count: int
    current_step: StepType | None
    version: int

    @property
    def both_filed(self) -> bool:
        return self.sub_return_a.filed and self.sub_return_b.filed


@dataclass(frozen=True)
class StepEntryInfo:
    """Pure snapshot of one step ledger entry."""

    id: UUID
    filing_id: UUID
    seq: int
    step_type: StepType
    status: StepStatus
    performed_by_id: UUID
    actor_role: str | None
    started_at: datetime | None
    completed_at: datetime | None
    comments: str | None
    changes: dict[str, dict[str, Any]] = field(default_factory=dict)
    error_code: str | None = None
    error_message: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass(frozen=True)
class ClaimBreakdown:
    """Claimed credit split by tax component."""

    central: Decimal = ZERO
    state: Decimal = ZERO
    integrated: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.central + self.state + self.integrated


@dataclass(frozen=True)
class CounterpartySync:
    """
    Counterparty-reported figures delivered by an external sync.

    Guarantees:
        - Amounts are non-negative Decimals.
    """

    reported_credit: Decimal
    pending_credit: Decimal = ZERO
    rejected_credit: Decimal = ZERO

    def __post_init__(self) -> None:
        for name in ("reported_credit", "pending_credit", "rejected_credit"):
            object.__setattr__(self, name, to_decimal(getattr(self, name), name))


@dataclass(frozen=True)
class SourceLedgerRecord:
    """One purchase/sale line as returned by a Source Ledger Reader."""

    document_number: str
    record_type: SourceRecordType
    central_tax: Decimal = ZERO
    state_tax: Decimal = ZERO
    integrated_tax: Decimal = ZERO
    taxable_amount: Decimal = ZERO
    total_amount: Decimal = ZERO
    counterparty_ref: str | None = None
    document_date: date | None = None

    @property
    def credit(self) -> Decimal:
        return self.central_tax + self.state_tax + self.integrated_tax


@dataclass(frozen=True)
class ReconciliationInfo:
    """Pure snapshot of a credit reconciliation record."""

    id: UUID
    period_key: PeriodKey
    claimed_credit: Decimal
    claimed_source_count: int
    claimed_breakdown: ClaimBreakdown
    counterparty_reported_credit: Decimal | None
    pending_credit: Decimal | None
    rejected_credit: Decimal | None
    discrepancy: Decimal
    discrepancy_percentage: Decimal
    discrepancy_reason: DiscrepancyReason
    has_discrepancy: bool
    needs_review: bool
    resolution: str | None
    resolved_at: datetime | None
    resolved_by_id: UUID | None
    last_synced_at: datetime | None
    synced_after_lock: bool

    @property
    def is_synced(self) -> bool:
        return self.counterparty_reported_credit is not None
