"""
compliance_services.reconciliation_service -- claimed vs counterparty credit.

Responsibility:
    Maintains one CreditReconciliation record per period key: computes the
    claimed credit from the Source Ledger, merges counterparty figures,
    evaluates the discrepancy and review flag, records resolutions, and
    produces month analyses and fiscal-year reports.

Architecture position:
    Services -- stateful orchestration over engines + kernel.  Composes the
    pure reconciliation/reporting engines with the Source Ledger Reader,
    the Event Publisher and the caller's session.  Owns commit/rollback.

Invariants enforced:
    - At most one reconciliation record per period key
      (uq_reconciliation_period_key).
    - Claimed credit computation never touches counterparty figures and is
      idempotent for unchanged source records.
    - The discrepancy projection is recomputed on every write that changes
      its inputs.
    - A sync that lands on a locked period is recorded and flagged
      (``synced_after_lock``), never discarded.
    - Writes only the reconciliation record; never the filing record.

Failure modes:
    - ReconciliationNotFoundError: sync / resolve / analysis without a record.
    - ValidationError: empty resolution.
    - UpstreamTimeoutError / UpstreamUnavailableError: Source Ledger or
      Event Publisher failure; the write is rolled back.
    - StorageConflictError: a concurrent writer created the record first.
"""

from __future__ import annotations

import time
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from compliance_config.schema import ComplianceConfig
from compliance_engines.reconciliation import (
    DiscrepancyEvaluation,
    compute_claimed_credit,
    evaluate_discrepancy,
)
from compliance_engines.reporting import (
    MonthAnalysis,
    ReconciliationReport,
    build_month_analysis,
    build_report,
)
from compliance_kernel.domain.clock import Clock, SystemClock
from compliance_kernel.domain.collaborators import (
    EventPublisher,
    EventType,
    SourceLedgerReader,
)
from compliance_kernel.domain.dtos import (
    CounterpartySync,
    DiscrepancyReason,
    ReconciliationInfo,
    SourceLedgerRecord,
)
from compliance_kernel.domain.period_key import PeriodKey, fiscal_year_periods
from compliance_kernel.exceptions import (
    ComplianceKernelError,
    ReconciliationNotFoundError,
    StorageConflictError,
    ValidationError,
)
from compliance_kernel.logging_config import LogContext, get_logger
from compliance_kernel.models.reconciliation import CreditReconciliation
from compliance_kernel.selectors.filing_selector import FilingSelector
from compliance_kernel.selectors.reconciliation_selector import ReconciliationSelector
from compliance_kernel.utils.timeouts import bounded_call
from compliance_services._events import publish_event

logger = get_logger("services.reconciliation")


class ReconciliationService:
    """
    Credit reconciliation operations over one session.

    Contract:
        Receives a Session, ComplianceConfig, SourceLedgerReader,
        EventPublisher and optional Clock.  Mutations commit on success and
        roll back on any ComplianceKernelError.

    Non-goals:
        - Does NOT fetch counterparty data; callers deliver it to
          ``merge_counterparty_data``.
    """

    def __init__(
        self,
        session: Session,
        config: ComplianceConfig,
        reader: SourceLedgerReader,
        publisher: EventPublisher,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._config = config
        self._reader = reader
        self._publisher = publisher
        self._clock = clock or SystemClock()
        self._thresholds = config.thresholds

        self.reconciliations = ReconciliationSelector(session)
        self.filings = FilingSelector(session)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def compute_claimed_credit(self, period_key: PeriodKey, actor_id: UUID) -> ReconciliationInfo:
        """
        Recompute claimed credit from the Source Ledger.

        Creates the record (``awaiting_sync``) when absent.  Counterparty
        figures are left as they are; when they exist and the record is
        unresolved the discrepancy is re-evaluated.
        """
        with self._context(period_key, actor_id):
            t0 = time.monotonic()
            records = self._read_records(period_key)
            totals = compute_claimed_credit(records=records)

            try:
                record = self._get_record(period_key)
                created = record is None
                if record is None:
                    record = CreditReconciliation(
                        client_id=period_key.client_id,
                        period=period_key.period,
                        fiscal_year=period_key.fiscal_year,
                        discrepancy_reason=DiscrepancyReason.AWAITING_SYNC.value,
                        created_by_id=actor_id,
                    )
                    self._session.add(record)

                record.claimed_credit = totals.credit
                record.claimed_central = totals.breakdown.central
                record.claimed_state = totals.breakdown.state
                record.claimed_integrated = totals.breakdown.integrated
                record.claimed_source_count = totals.source_count
                record.claimed_computed_at = self._clock.now()
                record.updated_by_id = actor_id

                if record.counterparty_reported_credit is not None and record.resolved_at is None:
                    self._apply_evaluation(record)
                self._session.flush()

                self._publish(
                    EventType.RECONCILIATION_CLAIMED_COMPUTED,
                    period_key,
                    {
                        "reconciliation_id": str(record.id),
                        "claimed_credit": str(totals.credit),
                        "source_count": totals.source_count,
                        "created": created,
                    },
                )
                self._session.commit()
            except IntegrityError:
                self._session.rollback()
                raise StorageConflictError("CreditReconciliation", str(period_key)) from None
            except ComplianceKernelError:
                self._session.rollback()
                raise

            logger.info(
                "claimed_credit_computed",
                extra={
                    "claimed_credit": str(totals.credit),
                    "source_count": totals.source_count,
                    "created": created,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            return record.to_dto()

    def merge_counterparty_data(
        self,
        period_key: PeriodKey,
        sync: CounterpartySync,
        actor_id: UUID,
    ) -> ReconciliationInfo:
        """
        Merge counterparty-reported figures and evaluate the discrepancy.

        New counterparty data supersedes an earlier resolution.
        """
        with self._context(period_key, actor_id):
            record = self._require_record(period_key)
            try:
                record.counterparty_reported_credit = sync.reported_credit
                record.pending_credit = sync.pending_credit
                record.rejected_credit = sync.rejected_credit
                record.last_synced_at = self._clock.now()
                record.synced_by_id = actor_id
                record.updated_by_id = actor_id
                record.resolution = None
                record.resolved_at = None
                record.resolved_by_id = None

                filing = self.filings.get_by_period_key(period_key)
                if filing is not None and filing.is_locked:
                    record.synced_after_lock = True
                    logger.warning(
                        "reconciliation_synced_after_lock",
                        extra={"filing_id": str(filing.id)},
                    )

                evaluation = self._apply_evaluation(record)
                self._session.flush()

                payload = {
                    "reconciliation_id": str(record.id),
                    "claimed_credit": str(record.claimed_credit),
                    "reported_credit": str(sync.reported_credit),
                    "discrepancy": str(evaluation.discrepancy),
                    "discrepancy_percentage": str(evaluation.percentage),
                    "reason": evaluation.reason.value,
                    "needs_review": evaluation.needs_review,
                    "synced_after_lock": bool(record.synced_after_lock),
                }
                self._publish(EventType.RECONCILIATION_SYNCED, period_key, payload)
                if evaluation.needs_review:
                    self._publish(
                        EventType.RECONCILIATION_DISCREPANCY_DETECTED,
                        period_key,
                        {**payload, "triggers": [t.value for t in evaluation.triggers]},
                    )
                self._session.commit()
            except ComplianceKernelError:
                self._session.rollback()
                raise

            logger.info(
                "counterparty_data_merged",
                extra={
                    "reason": evaluation.reason.value,
                    "needs_review": evaluation.needs_review,
                    "triggers": [t.value for t in evaluation.triggers],
                },
            )
            return record.to_dto()

    sync = merge_counterparty_data

    def resolve_discrepancy(
        self,
        period_key: PeriodKey,
        resolution: str,
        actor_id: UUID,
    ) -> ReconciliationInfo:
        """Record how a discrepancy was settled and clear the review flags."""
        if resolution is None or not resolution.strip():
            raise ValidationError("resolution is required", field="resolution")

        with self._context(period_key, actor_id):
            record = self._require_record(period_key)
            try:
                previous_reason = record.discrepancy_reason
                record.resolution = resolution.strip()
                record.resolved_at = self._clock.now()
                record.resolved_by_id = actor_id
                record.has_discrepancy = False
                record.needs_review = False
                record.discrepancy_reason = DiscrepancyReason.RECONCILED.value
                record.updated_by_id = actor_id
                self._session.flush()

                self._publish(
                    EventType.RECONCILIATION_RESOLVED,
                    period_key,
                    {
                        "reconciliation_id": str(record.id),
                        "previous_reason": previous_reason,
                        "resolution": record.resolution,
                    },
                )
                self._session.commit()
            except ComplianceKernelError:
                self._session.rollback()
                raise

            logger.info("discrepancy_resolved", extra={"previous_reason": previous_reason})
            return record.to_dto()

    def mark_for_review(self, period_key: PeriodKey, actor_id: UUID) -> ReconciliationInfo:
        with self._context(period_key, actor_id):
            record = self._require_record(period_key)
            record.needs_review = True
            record.updated_by_id = actor_id
            self._session.commit()
            logger.info("reconciliation_marked_for_review")
            return record.to_dto()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, period_key: PeriodKey) -> ReconciliationInfo | None:
        return self.reconciliations.get_by_period_key(period_key)

    def get_month_analysis(self, period_key: PeriodKey) -> MonthAnalysis:
        """Stored figures plus a live recomputation of the claim."""
        info = self.reconciliations.get_by_period_key(period_key)
        if info is None:
            raise ReconciliationNotFoundError(str(period_key))
        records = self._read_records(period_key)
        return build_month_analysis(
            reconciliation=info, records=records, thresholds=self._thresholds
        )

    def generate_report(self, client_id: str, fiscal_year: str) -> ReconciliationReport:
        reconciliations = self.reconciliations.list_by_client_fy(client_id, fiscal_year)
        return build_report(
            client_id=client_id,
            fiscal_year=fiscal_year,
            reconciliations=reconciliations,
            fiscal_periods=fiscal_year_periods(
                fiscal_year, self._config.workflow.fiscal_year_start_month
            ),
            thresholds=self._thresholds,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _context(period_key: PeriodKey, actor_id: UUID):
        return LogContext.bind(
            correlation_id=uuid4(),
            actor_id=actor_id,
            client_id=period_key.client_id,
            period=period_key.period,
        )

    def _get_record(self, period_key: PeriodKey) -> CreditReconciliation | None:
        return self._session.scalars(
            select(CreditReconciliation).where(
                CreditReconciliation.client_id == period_key.client_id,
                CreditReconciliation.period == period_key.period,
                CreditReconciliation.fiscal_year == period_key.fiscal_year,
            )
        ).one_or_none()

    def _require_record(self, period_key: PeriodKey) -> CreditReconciliation:
        record = self._get_record(period_key)
        if record is None:
            raise ReconciliationNotFoundError(str(period_key))
        return record

    def _apply_evaluation(self, record: CreditReconciliation) -> DiscrepancyEvaluation:
        evaluation = evaluate_discrepancy(
            claimed=record.claimed_credit,
            reported=record.counterparty_reported_credit,
            pending=record.pending_credit,
            rejected=record.rejected_credit,
            thresholds=self._thresholds,
        )
        record.discrepancy = evaluation.discrepancy
        record.discrepancy_percentage = evaluation.percentage
        record.discrepancy_reason = evaluation.reason.value
        record.has_discrepancy = evaluation.has_discrepancy
        record.needs_review = evaluation.needs_review
        return evaluation

    def _read_records(self, period_key: PeriodKey) -> list[SourceLedgerRecord]:
        return bounded_call(
            self._reader.query_records,
            period_key.client_id,
            period_key.period,
            collaborator="source_ledger",
            timeout_seconds=self._config.timeouts.source_ledger_seconds,
        )

    def _publish(self, event_type: EventType, period_key: PeriodKey, payload: dict[str, Any]) -> None:
        publish_event(
            self._publisher,
            event_type,
            period_key,
            payload,
            timeout_seconds=self._config.timeouts.event_publish_seconds,
        )
