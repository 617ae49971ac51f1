"""
Credit reconciliation engine -- claimed vs counterparty-reported credit.

Architecture: compliance_engines -- pure calculation, zero I/O, zero DB
access.  All inputs are frozen dataclasses populated by the service layer.

Definitions
-----------
    discrepancy            = claimed - reported
    discrepancy_percentage = discrepancy / reported * 100   (rounded)
                             100 when reported == 0 and discrepancy != 0
                             0   when both are zero
    has_discrepancy        = |discrepancy| > tolerance
    needs_review           = any review trigger fired

Review triggers (all thresholds tunable, see ReviewThresholds):
    PERCENTAGE  |discrepancy_percentage| > percentage
    ABSOLUTE    |discrepancy|            > absolute
    PENDING     pending credit           > pending
    REJECTED    rejected credit          > rejected

When counterparty figures are absent the record is ``awaiting_sync``: no
discrepancy, no review.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from compliance_engines.tracer import traced_engine
from compliance_kernel.domain.dtos import (
    ClaimBreakdown,
    DiscrepancyReason,
    SourceLedgerRecord,
    SourceRecordType,
)
from compliance_kernel.logging_config import get_logger

logger = get_logger("engines.reconciliation")

ZERO = Decimal("0")
HUNDRED = Decimal("100")


class ReviewTrigger(str, Enum):
    PERCENTAGE = "percentage"
    ABSOLUTE = "absolute"
    PENDING = "pending"
    REJECTED = "rejected"


@dataclass(frozen=True)
class ReviewThresholds:
    """Auto-review thresholds.

    Contract: all amounts are non-negative ``Decimal``; percentages are in
    percent (5 means 5%).
    Guarantees: validated at construction via ``__post_init__``.
    """
    percentage: Decimal = Decimal("5")
    absolute: Decimal = Decimal("10000")
    pending: Decimal = Decimal("50000")
    rejected: Decimal = Decimal("25000")
    tolerance: Decimal = Decimal("0.01")
    percentage_places: int = 2

    def __post_init__(self):
        for name in ("percentage", "absolute", "pending", "rejected", "tolerance"):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                raise ValueError(f"{name} must be a Decimal, got {type(value).__name__}")
            if value < 0:
                raise ValueError(f"{name} cannot be negative")
        if not 0 <= self.percentage_places <= 9:
            raise ValueError("percentage_places must be between 0 and 9")
        logger.debug(
            "review_thresholds_initialized",
            extra={
                "percentage": str(self.percentage),
                "absolute": str(self.absolute),
                "pending": str(self.pending),
                "rejected": str(self.rejected),
            },
        )

    @property
    def quantum(self) -> Decimal:
        return Decimal(1).scaleb(-self.percentage_places)


@dataclass(frozen=True)
class ClaimTotals:
    credit: Decimal
    breakdown: ClaimBreakdown
    source_count: int


@dataclass(frozen=True)
class DiscrepancyEvaluation:
    discrepancy: Decimal
    percentage: Decimal
    reason: DiscrepancyReason
    has_discrepancy: bool
    needs_review: bool
    triggers: tuple[ReviewTrigger, ...]


@traced_engine("claimed_credit", "1.0")
def compute_claimed_credit(*, records: Iterable[SourceLedgerRecord]) -> ClaimTotals:
    """Sum the three tax components over purchase records.

    Sale records carry no input credit and are ignored.
    """
    central = state = integrated = ZERO
    count = 0
    for record in records:
        if record.record_type != SourceRecordType.PURCHASE:
            continue
        central += record.central_tax
        state += record.state_tax
        integrated += record.integrated_tax
        count += 1
    breakdown = ClaimBreakdown(central=central, state=state, integrated=integrated)
    return ClaimTotals(credit=breakdown.total, breakdown=breakdown, source_count=count)


def discrepancy_ratio(discrepancy: Decimal, reported: Decimal) -> Decimal:
    """Unrounded discrepancy as a percentage of reported credit."""
    if reported == ZERO:
        return HUNDRED if discrepancy != ZERO else ZERO
    return discrepancy / reported * HUNDRED


def discrepancy_percentage(
    discrepancy: Decimal, reported: Decimal, thresholds: ReviewThresholds
) -> Decimal:
    """The stored percentage: ``discrepancy_ratio`` rounded to the configured places."""
    return discrepancy_ratio(discrepancy, reported).quantize(thresholds.quantum, ROUND_HALF_UP)


def classify_reason(
    *,
    discrepancy: Decimal,
    pending: Decimal,
    rejected: Decimal,
    thresholds: ReviewThresholds,
) -> DiscrepancyReason:
    """Classify a discrepancy.

    Positive: rejected credit explains it first, then pending credit, else
    the client claimed more than reported.  Negative: credit left unclaimed.
    """
    if abs(discrepancy) <= thresholds.tolerance:
        return DiscrepancyReason.RECONCILED
    if discrepancy < ZERO:
        return DiscrepancyReason.UNCLAIMED
    if rejected > ZERO and rejected >= discrepancy:
        return DiscrepancyReason.COUNTERPARTY_REJECTED
    if pending > ZERO and pending >= discrepancy:
        return DiscrepancyReason.PENDING_ACCEPTANCE
    return DiscrepancyReason.EXCESS_CLAIMED


def review_triggers(
    *,
    percentage: Decimal,
    discrepancy: Decimal,
    pending: Decimal,
    rejected: Decimal,
    thresholds: ReviewThresholds,
) -> tuple[ReviewTrigger, ...]:
    """Return every review trigger that fired, in a fixed order."""
    fired: list[ReviewTrigger] = []
    if abs(percentage) > thresholds.percentage:
        fired.append(ReviewTrigger.PERCENTAGE)
    if abs(discrepancy) > thresholds.absolute:
        fired.append(ReviewTrigger.ABSOLUTE)
    if pending > thresholds.pending:
        fired.append(ReviewTrigger.PENDING)
    if rejected > thresholds.rejected:
        fired.append(ReviewTrigger.REJECTED)
    return tuple(fired)


@traced_engine(
    "discrepancy",
    "1.0",
    fingerprint_fields=("claimed", "reported", "pending", "rejected"),
)
def evaluate_discrepancy(
    *,
    claimed: Decimal,
    reported: Decimal | None,
    pending: Decimal | None,
    rejected: Decimal | None,
    thresholds: ReviewThresholds,
) -> DiscrepancyEvaluation:
    """Compute the discrepancy projection for one reconciliation record."""
    if reported is None:
        return DiscrepancyEvaluation(
            discrepancy=ZERO,
            percentage=ZERO,
            reason=DiscrepancyReason.AWAITING_SYNC,
            has_discrepancy=False,
            needs_review=False,
            triggers=(),
        )

    pending = pending or ZERO
    rejected = rejected or ZERO
    discrepancy = claimed - reported
    # Thresholds compare against the unrounded ratio; only the stored value is rounded
    ratio = discrepancy_ratio(discrepancy, reported)
    triggers = review_triggers(
        percentage=ratio,
        discrepancy=discrepancy,
        pending=pending,
        rejected=rejected,
        thresholds=thresholds,
    )
    return DiscrepancyEvaluation(
        discrepancy=discrepancy,
        percentage=discrepancy_percentage(discrepancy, reported, thresholds),
        reason=classify_reason(
            discrepancy=discrepancy,
            pending=pending,
            rejected=rejected,
            thresholds=thresholds,
        ),
        has_discrepancy=abs(discrepancy) > thresholds.tolerance,
        needs_review=bool(triggers),
        triggers=triggers,
    )
