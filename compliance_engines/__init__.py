"""
Module: compliance_engines
Responsibility:
    Re-exports the pure calculation engines: filing status projection, due
    dates, penalty strategies, claimed-credit aggregation, discrepancy
    evaluation and reconciliation reporting.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import compliance_kernel.domain (and sibling engine modules)
    plus kernel logging.  MUST NOT import compliance_services or
    compliance_config.

Invariants enforced:
    - Purity: engines never read the clock.  As-of dates are parameters.
    - Decimal-only arithmetic for money.
    - Determinism: identical inputs always produce identical outputs.

Every engine invocation is traced via ``@traced_engine``
(see ``compliance_engines.tracer``).
"""

from compliance_engines.due_dates import DueDateRules, DueDates, compute_due_dates
from compliance_engines.filing_status import compute_filing_status, days_late
from compliance_engines.penalties import (
    NoPenaltyStrategy,
    PenaltyAssessment,
    PenaltyStrategy,
    PerDayPenaltyStrategy,
)
from compliance_engines.reconciliation import (
    ClaimTotals,
    DiscrepancyEvaluation,
    ReviewThresholds,
    ReviewTrigger,
    compute_claimed_credit,
    discrepancy_ratio,
    evaluate_discrepancy,
)
from compliance_engines.reporting import (
    MonthAnalysis,
    ReconciliationReport,
    build_month_analysis,
    build_report,
    recommendations_for,
)

__all__ = [
    "DueDateRules",
    "DueDates",
    "compute_due_dates",
    "compute_filing_status",
    "days_late",
    "NoPenaltyStrategy",
    "PenaltyAssessment",
    "PenaltyStrategy",
    "PerDayPenaltyStrategy",
    "ClaimTotals",
    "DiscrepancyEvaluation",
    "ReviewThresholds",
    "ReviewTrigger",
    "compute_claimed_credit",
    "discrepancy_ratio",
    "evaluate_discrepancy",
    "MonthAnalysis",
    "ReconciliationReport",
    "build_month_analysis",
    "build_report",
    "recommendations_for",
]
