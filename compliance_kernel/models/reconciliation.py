"""
Module: compliance_kernel.models.reconciliation
Responsibility: ORM persistence for the credit reconciliation record --
    claimed credit (from the source ledger) vs counterparty-reported credit
    for one period key.
Architecture position: Kernel > Models.

Invariants enforced:
    - At most one record per (client_id, period, fiscal_year)
      (uq_reconciliation_period_key).
    - Independent of the filing record: may exist before it, and is never
      blocked by the filing lock.  A sync that lands while the filing is
      locked sets ``synced_after_lock``.
    - ``claimed_credit`` is a cache; it is always recomputable from the
      source ledger.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from compliance_kernel.db.base import TrackedBase, UUIDString
from compliance_kernel.domain.dtos import (
    ClaimBreakdown,
    DiscrepancyReason,
    ReconciliationInfo,
)
from compliance_kernel.domain.period_key import PeriodKey, start_month_for


class CreditReconciliation(TrackedBase):
    """Claimed vs counterparty-reported credit for one period."""

    __tablename__ = "credit_reconciliations"
    __table_args__ = (
        UniqueConstraint(
            "client_id", "period", "fiscal_year", name="uq_reconciliation_period_key"
        ),
        Index("idx_reconciliation_client_fy", "client_id", "fiscal_year"),
        Index("idx_reconciliation_review", "needs_review"),
    )

    client_id: Mapped[str] = mapped_column(String(64), nullable=False)
    period: Mapped[str] = mapped_column(String(7), nullable=False)
    fiscal_year: Mapped[str] = mapped_column(String(7), nullable=False)

    claimed_credit: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    claimed_source_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    claimed_central: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    claimed_state: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    claimed_integrated: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    claimed_computed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    counterparty_reported_credit: Mapped[Decimal | None] = mapped_column(nullable=True)
    pending_credit: Mapped[Decimal | None] = mapped_column(nullable=True)
    rejected_credit: Mapped[Decimal | None] = mapped_column(nullable=True)

    discrepancy: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    discrepancy_percentage: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    discrepancy_reason: Mapped[str] = mapped_column(
        String(50), nullable=False, default=DiscrepancyReason.AWAITING_SYNC.value
    )
    has_discrepancy: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    needs_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    resolution: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    synced_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    synced_after_lock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return (
            f"<CreditReconciliation {self.client_id}/{self.period}: "
            f"{self.discrepancy_reason}>"
        )

    @property
    def period_key(self) -> PeriodKey:
        return PeriodKey(
            client_id=self.client_id,
            period=self.period,
            fiscal_year=self.fiscal_year,
            fy_start_month=start_month_for(self.period, self.fiscal_year),
        )

    def to_dto(self) -> ReconciliationInfo:
        return ReconciliationInfo(
            id=self.id,
            period_key=self.period_key,
            claimed_credit=self.claimed_credit,
            claimed_source_count=self.claimed_source_count,
            claimed_breakdown=ClaimBreakdown(
                central=self.claimed_central,
                state=self.claimed_state,
                integrated=self.claimed_integrated,
            ),
            counterparty_reported_credit=self.counterparty_reported_credit,
            pending_credit=self.pending_credit,
            rejected_credit=self.rejected_credit,
            discrepancy=self.discrepancy,
            discrepancy_percentage=self.discrepancy_percentage,
            discrepancy_reason=DiscrepancyReason(self.discrepancy_reason),
            has_discrepancy=bool(self.has_discrepancy),
            needs_review=bool(self.needs_review),
            resolution=self.resolution,
            resolved_at=self.resolved_at,
            resolved_by_id=self.resolved_by_id,
            last_synced_at=self.last_synced_at,
            synced_after_lock=bool(self.synced_after_lock),
        )
