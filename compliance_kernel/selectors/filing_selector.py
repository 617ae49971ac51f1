"""
Filing query selector.

Read-only access to filing records.

- Returns frozen FilingRecordInfo DTOs, not ORM models.
- Uses the caller's Session; never flushes or commits.
- Overdue and due-soon queries work off the due-date columns and the
  caller's as-of date, so they do not depend on when ``filing_status`` was
  last projected.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import and_, func, or_, select

from compliance_kernel.domain.dtos import FilingRecordInfo, FilingStatus, WorkflowStatus
from compliance_kernel.domain.period_key import PeriodKey
from compliance_kernel.exceptions import FilingNotFoundError
from compliance_kernel.models.filing import FilingRecord
from compliance_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class FilingStatusReport:
    """Counts for one client's fiscal year."""

    client_id: str
    fiscal_year: str
    total: int
    by_filing_status: dict[str, int] = field(default_factory=dict)
    by_workflow_status: dict[str, int] = field(default_factory=dict)
    locked: int = 0
    overdue: int = 0


def _overdue_clause(as_of: date):
    return or_(
        and_(
            FilingRecord.sub_return_a_filed.is_(False),
            FilingRecord.sub_return_a_due_date < as_of,
        ),
        and_(
            FilingRecord.sub_return_b_filed.is_(False),
            FilingRecord.sub_return_b_due_date < as_of,
        ),
    )


class FilingSelector(BaseSelector[FilingRecord]):
    """Selector for filing record queries."""

    def get(self, filing_id: UUID) -> FilingRecordInfo | None:
        record = self.session.get(FilingRecord, filing_id)
        return record.to_dto() if record is not None else None

    def get_or_raise(self, filing_id: UUID) -> FilingRecordInfo:
        info = self.get(filing_id)
        if info is None:
            raise FilingNotFoundError(str(filing_id))
        return info

    def get_by_period_key(self, period_key: PeriodKey) -> FilingRecordInfo | None:
        record = self.session.scalars(
            select(FilingRecord).where(
                FilingRecord.client_id == period_key.client_id,
                FilingRecord.period == period_key.period,
                FilingRecord.fiscal_year == period_key.fiscal_year,
            )
        ).one_or_none()
        return record.to_dto() if record is not None else None

    def list_by_client_fy(self, client_id: str, fiscal_year: str) -> list[FilingRecordInfo]:
        """Filings for a client's fiscal year, in period order."""
        rows = self.session.scalars(
            select(FilingRecord)
            .where(
                FilingRecord.client_id == client_id,
                FilingRecord.fiscal_year == fiscal_year,
            )
            .order_by(FilingRecord.period)
        ).all()
        return [row.to_dto() for row in rows]

    def list_overdue(self, as_of: date, client_id: str | None = None) -> list[FilingRecordInfo]:
        """Filings with an unfiled sub-return past its due date."""
        stmt = select(FilingRecord).where(_overdue_clause(as_of))
        if client_id is not None:
            stmt = stmt.where(FilingRecord.client_id == client_id)
        rows = self.session.scalars(
            stmt.order_by(FilingRecord.client_id, FilingRecord.period)
        ).all()
        return [row.to_dto() for row in rows]

    def list_due_within(
        self, as_of: date, days: int, client_id: str | None = None
    ) -> list[FilingRecordInfo]:
        """Filings with an unfiled sub-return due in [as_of, as_of + days]."""
        if days < 0:
            raise ValueError("days cannot be negative")
        horizon = as_of + timedelta(days=days)
        stmt = select(FilingRecord).where(
            or_(
                and_(
                    FilingRecord.sub_return_a_filed.is_(False),
                    FilingRecord.sub_return_a_due_date.between(as_of, horizon),
                ),
                and_(
                    FilingRecord.sub_return_b_filed.is_(False),
                    FilingRecord.sub_return_b_due_date.between(as_of, horizon),
                ),
            )
        )
        if client_id is not None:
            stmt = stmt.where(FilingRecord.client_id == client_id)
        rows = self.session.scalars(
            stmt.order_by(FilingRecord.client_id, FilingRecord.period)
        ).all()
        return [row.to_dto() for row in rows]

    def status_report(self, client_id: str, fiscal_year: str, as_of: date) -> FilingStatusReport:
        """Counts by filing status and workflow status for a client's fiscal year."""
        scope = and_(
            FilingRecord.client_id == client_id,
            FilingRecord.fiscal_year == fiscal_year,
        )

        by_filing = {s.value: 0 for s in FilingStatus}
        for status, count in self.session.execute(
            select(FilingRecord.filing_status, func.count())
            .where(scope)
            .group_by(FilingRecord.filing_status)
        ):
            by_filing[status] = count

        by_workflow = {s.value: 0 for s in WorkflowStatus}
        for status, count in self.session.execute(
            select(FilingRecord.workflow_status, func.count())
            .where(scope)
            .group_by(FilingRecord.workflow_status)
        ):
            by_workflow[status] = count

        locked = self.session.scalar(
            select(func.count()).select_from(FilingRecord).where(
                scope, FilingRecord.is_locked.is_(True)
            )
        ) or 0
        overdue = self.session.scalar(
            select(func.count()).select_from(FilingRecord).where(
                scope, _overdue_clause(as_of)
            )
        ) or 0

        return FilingStatusReport(
            client_id=client_id,
            fiscal_year=fiscal_year,
            total=sum(by_workflow.values()),
            by_filing_status=by_filing,
            by_workflow_status=by_workflow,
            locked=locked,
            overdue=overdue,
        )
