"""
Tests for ReconciliationService.

Covers:
- Claimed credit from the Source Ledger, idempotent recomputation
- Counterparty sync: discrepancy, percentage, reason, review flag, events
- Sync after lock is recorded and flagged
- Resolution and re-sync
- Month analysis and fiscal-year report
"""

from decimal import Decimal

import pytest

from compliance_kernel.domain.collaborators import EventType
from compliance_kernel.domain.dtos import CounterpartySync, DiscrepancyReason
from compliance_kernel.domain.period_key import PeriodKey
from compliance_kernel.exceptions import ReconciliationNotFoundError, ValidationError
from tests.conftest import purchase, sale


@pytest.fixture
def ledger_records(source_ledger, period_key):
    """Purchases worth 100000 in credit plus one sale."""
    source_ledger.add(
        period_key.client_id,
        period_key.period,
        purchase("P-1", "60000"),
        purchase("P-2", "10000", "10000"),
        purchase("P-3", "0", "0", "20000"),
        sale("S-1", "5000"),
    )
    return source_ledger


@pytest.fixture
def claimed(reconciliation_service, ledger_records, period_key, test_actor_id):
    return reconciliation_service.compute_claimed_credit(period_key, test_actor_id)


class TestComputeClaimedCredit:
    def test_creates_record_awaiting_sync(self, claimed, publisher):
        assert claimed.claimed_credit == Decimal("100000")
        assert claimed.claimed_source_count == 3
        assert claimed.claimed_breakdown.central == Decimal("70000")
        assert claimed.claimed_breakdown.state == Decimal("10000")
        assert claimed.claimed_breakdown.integrated == Decimal("20000")
        assert claimed.discrepancy_reason == DiscrepancyReason.AWAITING_SYNC
        assert not claimed.needs_review
        assert not claimed.is_synced

        (event,) = publisher.of_type(EventType.RECONCILIATION_CLAIMED_COMPUTED)
        assert event.payload["created"] is True
        assert event.payload["claimed_credit"] == "100000"

    def test_idempotent(self, reconciliation_service, claimed, period_key, test_actor_id):
        again = reconciliation_service.compute_claimed_credit(period_key, test_actor_id)

        assert again.id == claimed.id
        assert again.claimed_credit == claimed.claimed_credit
        assert again.claimed_source_count == claimed.claimed_source_count

    def test_empty_ledger(self, reconciliation_service, period_key, test_actor_id):
        info = reconciliation_service.compute_claimed_credit(period_key, test_actor_id)

        assert info.claimed_credit == Decimal("0")
        assert info.claimed_source_count == 0

    def test_recompute_re_evaluates_synced_record(
        self, reconciliation_service, claimed, source_ledger, period_key, test_actor_id
    ):
        reconciliation_service.merge_counterparty_data(
            period_key, CounterpartySync(reported_credit=Decimal("90000")), test_actor_id
        )
        source_ledger.add(period_key.client_id, period_key.period, purchase("P-4", "-10000"))

        info = reconciliation_service.compute_claimed_credit(period_key, test_actor_id)

        assert info.claimed_credit == Decimal("90000")
        assert info.counterparty_reported_credit == Decimal("90000")
        assert info.discrepancy_reason == DiscrepancyReason.RECONCILED
        assert not info.needs_review


class TestMergeCounterpartyData:
    def test_excess_claim_flagged(self, reconciliation_service, claimed, publisher, period_key, test_actor_id):
        info = reconciliation_service.merge_counterparty_data(
            period_key, CounterpartySync(reported_credit=Decimal("90000")), test_actor_id
        )

        assert info.discrepancy == Decimal("10000")
        assert info.discrepancy_percentage == Decimal("11.11")
        assert info.discrepancy_reason == DiscrepancyReason.EXCESS_CLAIMED
        assert info.has_discrepancy
        assert info.needs_review
        assert info.last_synced_at is not None
        assert not info.synced_after_lock

        (detected,) = publisher.of_type(EventType.RECONCILIATION_DISCREPANCY_DETECTED)
        assert detected.payload["triggers"] == ["percentage"]
        assert detected.payload["discrepancy"] == "10000"
        assert len(publisher.of_type(EventType.RECONCILIATION_SYNCED)) == 1

    def test_matching_figures_reconciled(self, reconciliation_service, claimed, publisher, period_key, test_actor_id):
        info = reconciliation_service.sync(
            period_key, CounterpartySync(reported_credit=Decimal("100000.00")), test_actor_id
        )

        assert info.discrepancy_reason == DiscrepancyReason.RECONCILED
        assert not info.has_discrepancy
        assert not info.needs_review
        assert publisher.of_type(EventType.RECONCILIATION_DISCREPANCY_DETECTED) == []

    def test_rejected_credit_explains_discrepancy(self, reconciliation_service, claimed, period_key, test_actor_id):
        info = reconciliation_service.merge_counterparty_data(
            period_key,
            CounterpartySync(
                reported_credit=Decimal("70000"),
                pending_credit=Decimal("0"),
                rejected_credit=Decimal("30000"),
            ),
            test_actor_id,
        )

        assert info.discrepancy_reason == DiscrepancyReason.COUNTERPARTY_REJECTED
        assert info.rejected_credit == Decimal("30000")
        assert info.needs_review

    def test_unclaimed_credit(self, reconciliation_service, claimed, period_key, test_actor_id):
        info = reconciliation_service.merge_counterparty_data(
            period_key, CounterpartySync(reported_credit=Decimal("101000")), test_actor_id
        )

        assert info.discrepancy == Decimal("-1000")
        assert info.discrepancy_reason == DiscrepancyReason.UNCLAIMED
        assert not info.needs_review

    def test_requires_record(self, reconciliation_service, period_key, test_actor_id):
        with pytest.raises(ReconciliationNotFoundError):
            reconciliation_service.merge_counterparty_data(
                period_key, CounterpartySync(reported_credit=Decimal("1")), test_actor_id
            )

    def test_sync_after_lock_recorded(
        self, reconciliation_service, claimed, locked_filing, captured_logs, period_key, test_actor_id
    ):
        info = reconciliation_service.merge_counterparty_data(
            period_key, CounterpartySync(reported_credit=Decimal("90000")), test_actor_id
        )

        assert info.synced_after_lock
        assert info.counterparty_reported_credit == Decimal("90000")
        assert any(r["message"] == "reconciliation_synced_after_lock" for r in captured_logs())

    def test_sync_does_not_touch_filing(
        self, reconciliation_service, orchestrator, claimed, locked_filing, period_key, test_actor_id
    ):
        reconciliation_service.merge_counterparty_data(
            period_key, CounterpartySync(reported_credit=Decimal("90000")), test_actor_id
        )

        filing = orchestrator.get_filing(locked_filing.id)
        assert filing.version == locked_filing.version
        assert filing.is_locked


class TestResolution:
    @pytest.fixture
    def flagged(self, reconciliation_service, claimed, period_key, test_actor_id):
        return reconciliation_service.merge_counterparty_data(
            period_key, CounterpartySync(reported_credit=Decimal("90000")), test_actor_id
        )

    def test_resolve_clears_flags(self, reconciliation_service, flagged, publisher, period_key, test_actor_id):
        info = reconciliation_service.resolve_discrepancy(
            period_key, "supplier filed late; accepted next month", test_actor_id
        )

        assert info.resolution == "supplier filed late; accepted next month"
        assert info.resolved_at is not None
        assert info.resolved_by_id == test_actor_id
        assert not info.needs_review
        assert not info.has_discrepancy
        assert info.discrepancy_reason == DiscrepancyReason.RECONCILED
        assert info.discrepancy == Decimal("10000")

        (event,) = publisher.of_type(EventType.RECONCILIATION_RESOLVED)
        assert event.payload["previous_reason"] == "excess_claimed"

    def test_blank_resolution_rejected(self, reconciliation_service, flagged, period_key, test_actor_id):
        with pytest.raises(ValidationError):
            reconciliation_service.resolve_discrepancy(period_key, "  ", test_actor_id)

    def test_resolve_requires_record(self, reconciliation_service, period_key, test_actor_id):
        with pytest.raises(ReconciliationNotFoundError):
            reconciliation_service.resolve_discrepancy(period_key, "done", test_actor_id)

    def test_recompute_keeps_resolution(self, reconciliation_service, flagged, period_key, test_actor_id):
        reconciliation_service.resolve_discrepancy(period_key, "explained", test_actor_id)

        info = reconciliation_service.compute_claimed_credit(period_key, test_actor_id)

        assert info.resolution == "explained"
        assert not info.needs_review

    def test_new_sync_supersedes_resolution(self, reconciliation_service, flagged, period_key, test_actor_id):
        reconciliation_service.resolve_discrepancy(period_key, "explained", test_actor_id)

        info = reconciliation_service.merge_counterparty_data(
            period_key, CounterpartySync(reported_credit=Decimal("80000")), test_actor_id
        )

        assert info.resolution is None
        assert info.resolved_at is None
        assert info.needs_review

    def test_mark_for_review(self, reconciliation_service, claimed, period_key, test_actor_id):
        info = reconciliation_service.mark_for_review(period_key, test_actor_id)

        assert info.needs_review


class TestAnalysisAndReport:
    def test_month_analysis(self, reconciliation_service, claimed, source_ledger, period_key):
        source_ledger.add(period_key.client_id, period_key.period, purchase("P-9", "500"))

        analysis = reconciliation_service.get_month_analysis(period_key)

        assert analysis.reconciliation.claimed_credit == Decimal("100000")
        assert analysis.live_claim.credit == Decimal("100500")
        assert analysis.claim_is_stale
        assert analysis.recommendations == (
            "Sync counterparty data to complete reconciliation",
        )

    def test_month_analysis_requires_record(self, reconciliation_service, period_key):
        with pytest.raises(ReconciliationNotFoundError):
            reconciliation_service.get_month_analysis(period_key)

    def test_report(self, reconciliation_service, claimed, source_ledger, period_key, test_actor_id):
        reconciliation_service.merge_counterparty_data(
            period_key, CounterpartySync(reported_credit=Decimal("90000")), test_actor_id
        )
        june = PeriodKey.for_period("C001", "2024-06")
        source_ledger.add("C001", "2024-06", purchase("P-10", "5000"))
        reconciliation_service.compute_claimed_credit(june, test_actor_id)
        reconciliation_service.merge_counterparty_data(
            june, CounterpartySync(reported_credit=Decimal("5000")), test_actor_id
        )

        report = reconciliation_service.generate_report("C001", "2024-25")

        assert report.months_tracked == 2
        assert report.months_with_discrepancy == 1
        assert report.total_claimed == Decimal("105000")
        assert report.total_reported == Decimal("95000")
        assert report.total_discrepancy == Decimal("10000")
        assert report.average_discrepancy_percentage == Decimal("11.11")
        assert report.flagged_for_review == 1
        assert report.breakdown_by_reason[DiscrepancyReason.RECONCILED] == 1
        assert "2024-05" not in report.untracked_periods
        assert len(report.untracked_periods) == 10

    def test_get(self, reconciliation_service, claimed, period_key):
        assert reconciliation_service.get(period_key).id == claimed.id
        assert reconciliation_service.get(PeriodKey.for_period("C404", "2024-05")) is None
