"""
Reconciliation query selector.

Read-only access to credit reconciliation records.  Returns
ReconciliationInfo DTOs and uses the caller's Session.
"""

from sqlalchemy import select

from compliance_kernel.domain.dtos import DiscrepancyReason, ReconciliationInfo
from compliance_kernel.domain.period_key import PeriodKey
from compliance_kernel.models.reconciliation import CreditReconciliation
from compliance_kernel.selectors.base import BaseSelector


class ReconciliationSelector(BaseSelector[CreditReconciliation]):
    """Selector for reconciliation queries."""

    def get_by_period_key(self, period_key: PeriodKey) -> ReconciliationInfo | None:
        record = self.session.scalars(
            select(CreditReconciliation).where(
                CreditReconciliation.client_id == period_key.client_id,
                CreditReconciliation.period == period_key.period,
                CreditReconciliation.fiscal_year == period_key.fiscal_year,
            )
        ).one_or_none()
        return record.to_dto() if record is not None else None

    def list_by_client_fy(self, client_id: str, fiscal_year: str) -> list[ReconciliationInfo]:
        rows = self.session.scalars(
            select(CreditReconciliation)
            .where(
                CreditReconciliation.client_id == client_id,
                CreditReconciliation.fiscal_year == fiscal_year,
            )
            .order_by(CreditReconciliation.period)
        ).all()
        return [row.to_dto() for row in rows]

    def list_discrepancies(
        self,
        reason: DiscrepancyReason | None = None,
        client_id: str | None = None,
    ) -> list[ReconciliationInfo]:
        """Records with an open discrepancy, optionally filtered by reason."""
        stmt = select(CreditReconciliation).where(
            CreditReconciliation.has_discrepancy.is_(True)
        )
        if reason is not None:
            stmt = stmt.where(
                CreditReconciliation.discrepancy_reason == DiscrepancyReason(reason).value
            )
        if client_id is not None:
            stmt = stmt.where(CreditReconciliation.client_id == client_id)
        rows = self.session.scalars(
            stmt.order_by(CreditReconciliation.client_id, CreditReconciliation.period)
        ).all()
        return [row.to_dto() for row in rows]

    def list_pending_review(self, client_id: str | None = None) -> list[ReconciliationInfo]:
        stmt = select(CreditReconciliation).where(CreditReconciliation.needs_review.is_(True))
        if client_id is not None:
            stmt = stmt.where(CreditReconciliation.client_id == client_id)
        rows = self.session.scalars(
            stmt.order_by(CreditReconciliation.client_id, CreditReconciliation.period)
        ).all()
        return [row.to_dto() for row in rows]
