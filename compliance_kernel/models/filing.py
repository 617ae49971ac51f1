"""
Module: compliance_kernel.models.filing
Responsibility: ORM persistence for the filing record -- one period's
    compliance obligation with its two linked sub-returns.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - At most one filing record per (client_id, period, fiscal_year)
      (uq_filing_period_key).
    - Optimistic concurrency: ``version`` is the SQLAlchemy version_id_col,
      so a stale UPDATE raises StaleDataError instead of overwriting.
    - Locked records are immutable and records are never deleted
      (db/immutability.py).
    - The record holds no collection of steps; FilingStep rows carry the
      back-reference.

Enum fields are stored as String(50) containing the enum .value string.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import Boolean, Date, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from compliance_kernel.db.base import TrackedBase, UUIDString
from compliance_kernel.domain.dtos import (
    FilingFrequency,
    FilingRecordInfo,
    FilingStatus,
    StepType,
    SubReturn,
    SubReturnInfo,
    TaxFigures,
    WorkflowStatus,
)
from compliance_kernel.domain.period_key import PeriodKey, start_month_for

# Columns captured in a step's ``changes`` map
TRACKED_FIELDS = (
    "workflow_status",
    "filing_status",
    "sub_return_a_filed",
    "sub_return_a_filed_date",
    "sub_return_a_reference",
    "sub_return_a_due_date",
    "sub_return_b_filed",
    "sub_return_b_filed_date",
    "sub_return_b_reference",
    "sub_return_b_due_date",
    "tax_paid",
    "tax_central",
    "tax_state",
    "tax_integrated",
    "tax_cess",
    "late_fee",
    "late_fee_calculated",
    "interest",
    "interest_calculated",
    "is_locked",
    "locked_at",
    "locked_by_id",
    "lock_reason",
    "amendment_count",
)


def _jsonable(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, UUID):
        return str(value)
    return getattr(value, "value", value)


class FilingRecord(TrackedBase):
    """
    A client's filing record for one period.

    Contract:
        Mutated only by FilingWorkflowOrchestrator.  ``filing_status`` is a
        projection and is recomputed on every state-changing write.

    Guarantees:
        - (client_id, period, fiscal_year) is unique.
        - ``version`` increments on every UPDATE.
    """

    __tablename__ = "filing_records"
    __table_args__ = (
        UniqueConstraint("client_id", "period", "fiscal_year", name="uq_filing_period_key"),
        Index("idx_filing_client_fy", "client_id", "fiscal_year"),
        Index("idx_filing_workflow_status", "workflow_status"),
        Index("idx_filing_due_a", "sub_return_a_due_date"),
        Index("idx_filing_due_b", "sub_return_b_due_date"),
    )

    client_id: Mapped[str] = mapped_column(String(64), nullable=False)
    period: Mapped[str] = mapped_column(String(7), nullable=False)
    fiscal_year: Mapped[str] = mapped_column(String(7), nullable=False)

    filing_frequency: Mapped[str] = mapped_column(
        String(50), nullable=False, default=FilingFrequency.MONTHLY.value
    )
    workflow_status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=WorkflowStatus.DRAFT.value
    )
    filing_status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=FilingStatus.PENDING.value
    )
    current_step: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Sub-return A
    sub_return_a_filed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sub_return_a_filed_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    sub_return_a_reference: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sub_return_a_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Sub-return B
    sub_return_b_filed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sub_return_b_filed_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    sub_return_b_reference: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sub_return_b_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Tax figures attached with sub-return B
    tax_paid: Mapped[Decimal | None] = mapped_column(nullable=True)
    tax_central: Mapped[Decimal | None] = mapped_column(nullable=True)
    tax_state: Mapped[Decimal | None] = mapped_column(nullable=True)
    tax_integrated: Mapped[Decimal | None] = mapped_column(nullable=True)
    tax_cess: Mapped[Decimal | None] = mapped_column(nullable=True)

    late_fee: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    late_fee_calculated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    interest: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    interest_calculated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    locked_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    lock_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    amendment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<FilingRecord {self.client_id}/{self.period}: {self.workflow_status}>"

    @property
    def period_key(self) -> PeriodKey:
        return PeriodKey(
            client_id=self.client_id,
            period=self.period,
            fiscal_year=self.fiscal_year,
            fy_start_month=start_month_for(self.period, self.fiscal_year),
        )

    @property
    def status(self) -> WorkflowStatus:
        return WorkflowStatus(self.workflow_status)

    def sub_return(self, which: SubReturn) -> SubReturnInfo:
        prefix = f"sub_return_{SubReturn(which).value}"
        return SubReturnInfo(
            filed=bool(getattr(self, f"{prefix}_filed")),
            filed_date=getattr(self, f"{prefix}_filed_date"),
            reference_number=getattr(self, f"{prefix}_reference"),
            due_date=getattr(self, f"{prefix}_due_date"),
        )

    def mark_filed(self, which: SubReturn, reference: str, filed_date: date) -> None:
        prefix = f"sub_return_{SubReturn(which).value}"
        setattr(self, f"{prefix}_filed", True)
        setattr(self, f"{prefix}_filed_date", filed_date)
        setattr(self, f"{prefix}_reference", reference)

    def clear_filed(self, which: SubReturn) -> None:
        prefix = f"sub_return_{SubReturn(which).value}"
        setattr(self, f"{prefix}_filed", False)
        setattr(self, f"{prefix}_filed_date", None)
        setattr(self, f"{prefix}_reference", None)

    def tracked_values(self) -> dict[str, Any]:
        """JSON-safe snapshot of the fields a step records as changes."""
        return {name: _jsonable(getattr(self, name)) for name in TRACKED_FIELDS}

    def tax_figures(self) -> TaxFigures | None:
        if self.tax_paid is None:
            return None
        return TaxFigures(
            tax_paid=self.tax_paid,
            central=self.tax_central or Decimal("0"),
            state=self.tax_state or Decimal("0"),
            integrated=self.tax_integrated or Decimal("0"),
            cess=self.tax_cess or Decimal("0"),
        )

    def to_dto(self) -> FilingRecordInfo:
        return FilingRecordInfo(
            id=self.id,
            period_key=self.period_key,
            workflow_status=WorkflowStatus(self.workflow_status),
            filing_frequency=FilingFrequency(self.filing_frequency),
            sub_return_a=self.sub_return(SubReturn.A),
            sub_return_b=self.sub_return(SubReturn.B),
            tax_figures=self.tax_figures(),
            late_fee=self.late_fee,
            late_fee_calculated=bool(self.late_fee_calculated),
            interest=self.interest,
            interest_calculated=bool(self.interest_calculated),
            filing_status=FilingStatus(self.filing_status),
            is_locked=bool(self.is_locked),
            locked_at=self.locked_at,
            locked_by_id=self.locked_by_id,
            lock_reason=self.lock_reason,
            amendment_count=self.amendment_count,
            current_step=StepType(self.current_step) if self.current_step else None,
            version=self.version,
        )
