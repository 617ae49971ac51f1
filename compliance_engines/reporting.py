"""
Reconciliation reporting -- month analysis, fiscal-year report and
recommendations.

Architecture: compliance_engines -- pure calculation, zero I/O.  Inputs are
ReconciliationInfo snapshots (and, for month analysis, the live source
records); outputs are frozen dataclasses.

Recommendations are fixed text templates keyed off which conditions fired.
They are never free-form.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from compliance_engines.reconciliation import (
    ClaimTotals,
    ReviewThresholds,
    ReviewTrigger,
    compute_claimed_credit,
    discrepancy_ratio,
    review_triggers,
)
from compliance_engines.tracer import traced_engine
from compliance_kernel.domain.dtos import (
    DiscrepancyReason,
    ReconciliationInfo,
    SourceLedgerRecord,
)
from compliance_kernel.domain.period_key import PeriodKey

ZERO = Decimal("0")


class RecommendationKey(str, Enum):
    POSITIVE_DISCREPANCY = "positive_discrepancy"
    NEGATIVE_DISCREPANCY = "negative_discrepancy"
    PENDING_CREDIT = "pending_credit"
    REJECTED_CREDIT = "rejected_credit"
    PERCENTAGE_BREACH = "percentage_breach"
    ABSOLUTE_BREACH = "absolute_breach"
    AWAITING_SYNC = "awaiting_sync"
    NO_ACTION = "no_action"


RECOMMENDATION_TEMPLATES: dict[RecommendationKey, str] = {
    RecommendationKey.POSITIVE_DISCREPANCY: (
        "Verify source records were reported by counterparties within the filing window"
    ),
    RecommendationKey.NEGATIVE_DISCREPANCY: (
        "Claim eligible credit reported by counterparties but missing from purchase records"
    ),
    RecommendationKey.PENDING_CREDIT: "Follow up on pending acceptances with counterparties",
    RecommendationKey.REJECTED_CREDIT: (
        "Review rejected records for compliance issues and resubmit corrected documents"
    ),
    RecommendationKey.PERCENTAGE_BREACH: (
        "Discrepancy exceeds {percentage}% of reported credit; escalate for review"
    ),
    RecommendationKey.ABSOLUTE_BREACH: (
        "Discrepancy exceeds {absolute} in absolute terms; escalate for review"
    ),
    RecommendationKey.AWAITING_SYNC: "Sync counterparty data to complete reconciliation",
    RecommendationKey.NO_ACTION: "Reconciliation is complete - no action needed",
}

_ORDER = (
    RecommendationKey.POSITIVE_DISCREPANCY,
    RecommendationKey.NEGATIVE_DISCREPANCY,
    RecommendationKey.PENDING_CREDIT,
    RecommendationKey.REJECTED_CREDIT,
    RecommendationKey.PERCENTAGE_BREACH,
    RecommendationKey.ABSOLUTE_BREACH,
    RecommendationKey.AWAITING_SYNC,
)


def _keys_for(record: ReconciliationInfo, thresholds: ReviewThresholds) -> set[RecommendationKey]:
    if not record.is_synced:
        return {RecommendationKey.AWAITING_SYNC}

    keys: set[RecommendationKey] = set()
    if record.has_discrepancy and record.discrepancy > ZERO:
        keys.add(RecommendationKey.POSITIVE_DISCREPANCY)
    if record.has_discrepancy and record.discrepancy < ZERO:
        keys.add(RecommendationKey.NEGATIVE_DISCREPANCY)
    if (record.pending_credit or ZERO) > ZERO:
        keys.add(RecommendationKey.PENDING_CREDIT)
    if (record.rejected_credit or ZERO) > ZERO:
        keys.add(RecommendationKey.REJECTED_CREDIT)

    fired = review_triggers(
        percentage=discrepancy_ratio(record.discrepancy, record.counterparty_reported_credit),
        discrepancy=record.discrepancy,
        pending=record.pending_credit or ZERO,
        rejected=record.rejected_credit or ZERO,
        thresholds=thresholds,
    )
    if ReviewTrigger.PERCENTAGE in fired:
        keys.add(RecommendationKey.PERCENTAGE_BREACH)
    if ReviewTrigger.ABSOLUTE in fired:
        keys.add(RecommendationKey.ABSOLUTE_BREACH)
    return keys


def recommendations_for(
    records: Iterable[ReconciliationInfo], thresholds: ReviewThresholds
) -> tuple[str, ...]:
    """Render recommendations for one or more records, in a fixed order.

    Resolved records contribute nothing.  When no condition fired the result
    is the single no-action line.
    """
    keys: set[RecommendationKey] = set()
    for record in records:
        if record.resolved_at is not None:
            continue
        keys |= _keys_for(record, thresholds)

    ordered = [k for k in _ORDER if k in keys] or [RecommendationKey.NO_ACTION]
    return tuple(
        RECOMMENDATION_TEMPLATES[k].format(
            percentage=thresholds.percentage, absolute=thresholds.absolute
        )
        for k in ordered
    )


@dataclass(frozen=True)
class MonthAnalysis:
    """Month-level discrepancy analysis for one period key."""

    period_key: PeriodKey
    reconciliation: ReconciliationInfo
    live_claim: ClaimTotals
    claim_is_stale: bool
    recommendations: tuple[str, ...]


@dataclass(frozen=True)
class ReconciliationReport:
    """Fiscal-year aggregate over one client's reconciliation records."""

    client_id: str
    fiscal_year: str
    months_tracked: int
    months_with_discrepancy: int
    total_claimed: Decimal
    total_reported: Decimal
    total_discrepancy: Decimal
    average_discrepancy_percentage: Decimal
    breakdown_by_reason: dict[DiscrepancyReason, int]
    flagged_for_review: int
    resolved: int
    untracked_periods: tuple[str, ...]
    recommendations: tuple[str, ...]


@traced_engine("month_analysis", "1.0")
def build_month_analysis(
    *,
    reconciliation: ReconciliationInfo,
    records: Sequence[SourceLedgerRecord],
    thresholds: ReviewThresholds,
) -> MonthAnalysis:
    """Combine the stored record with a live recomputation of the claim."""
    live = compute_claimed_credit(records=records)
    return MonthAnalysis(
        period_key=reconciliation.period_key,
        reconciliation=reconciliation,
        live_claim=live,
        claim_is_stale=live.credit != reconciliation.claimed_credit,
        recommendations=recommendations_for([reconciliation], thresholds),
    )


@traced_engine("reconciliation_report", "1.0", fingerprint_fields=("client_id", "fiscal_year"))
def build_report(
    *,
    client_id: str,
    fiscal_year: str,
    reconciliations: Sequence[ReconciliationInfo],
    fiscal_periods: Sequence[str],
    thresholds: ReviewThresholds,
) -> ReconciliationReport:
    """Aggregate a fiscal year.

    The average discrepancy percentage is the mean over months that carry a
    discrepancy.  ``fiscal_periods`` lists the year's months so periods
    without a record can be reported as untracked.
    """
    breakdown = {reason: 0 for reason in DiscrepancyReason}
    total_claimed = total_reported = total_discrepancy = ZERO
    flagged = resolved = 0
    discrepancy_percentages: list[Decimal] = []

    for record in reconciliations:
        breakdown[record.discrepancy_reason] += 1
        total_claimed += record.claimed_credit
        total_reported += record.counterparty_reported_credit or ZERO
        total_discrepancy += record.discrepancy
        if record.has_discrepancy:
            discrepancy_percentages.append(record.discrepancy_percentage)
        if record.needs_review:
            flagged += 1
        if record.resolved_at is not None:
            resolved += 1

    average = ZERO
    if discrepancy_percentages:
        average = (
            sum(discrepancy_percentages, ZERO) / Decimal(len(discrepancy_percentages))
        ).quantize(thresholds.quantum, ROUND_HALF_UP)

    tracked = {r.period_key.period for r in reconciliations}
    return ReconciliationReport(
        client_id=client_id,
        fiscal_year=fiscal_year,
        months_tracked=len(reconciliations),
        months_with_discrepancy=len(discrepancy_percentages),
        total_claimed=total_claimed,
        total_reported=total_reported,
        total_discrepancy=total_discrepancy,
        average_discrepancy_percentage=average,
        breakdown_by_reason=breakdown,
        flagged_for_review=flagged,
        resolved=resolved,
        untracked_periods=tuple(p for p in fiscal_periods if p not in tracked),
        recommendations=recommendations_for(reconciliations, thresholds),
    )
