"""
Penalty strategies -- late fee and interest for a filing record.

Architecture: compliance_engines -- pure calculation, zero I/O.

Statutory schedules are not hardcoded.  A strategy is chosen and
parameterized by configuration (``compliance_config``):

    NoPenaltyStrategy      -- always zero
    PerDayPenaltyStrategy  -- per-day late fee per sub-return, capped, plus
                              simple annual interest on tax paid for the days
                              sub-return B was late
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from compliance_engines.filing_status import days_late
from compliance_engines.tracer import traced_engine
from compliance_kernel.domain.dtos import FilingRecordInfo

ZERO = Decimal("0")
_CENT = Decimal("0.01")
_DAYS_PER_YEAR = Decimal("365")


@dataclass(frozen=True)
class PenaltyAssessment:
    late_fee: Decimal
    interest: Decimal
    days_late_a: int
    days_late_b: int
    strategy: str


class PenaltyStrategy(ABC):
    """Computes late fee and interest for a filing snapshot."""

    name: str = "abstract"

    @abstractmethod
    def calculate(self, *, filing: FilingRecordInfo, as_of: date) -> PenaltyAssessment:
        ...


class NoPenaltyStrategy(PenaltyStrategy):
    """Assesses nothing.  Default when no schedule is configured."""

    name = "none"

    @traced_engine("penalty_none", "1.0")
    def calculate(self, *, filing: FilingRecordInfo, as_of: date) -> PenaltyAssessment:
        return PenaltyAssessment(
            late_fee=ZERO,
            interest=ZERO,
            days_late_a=days_late(filing.sub_return_a, as_of),
            days_late_b=days_late(filing.sub_return_b, as_of),
            strategy=self.name,
        )


class PerDayPenaltyStrategy(PenaltyStrategy):
    """
    Per-day late fee with a per-sub-return cap, plus simple interest.

    Contract:
        late_fee = sum over sub-returns of min(days_late * per_day, cap)
        interest = tax_paid * rate / 100 * days_late_b / 365, rounded to cents
    """

    name = "per_day"

    def __init__(
        self,
        late_fee_per_day: Decimal,
        late_fee_cap: Decimal,
        annual_interest_rate: Decimal,
    ):
        if late_fee_per_day < 0 or late_fee_cap < 0 or annual_interest_rate < 0:
            raise ValueError("Penalty parameters cannot be negative")
        self.late_fee_per_day = late_fee_per_day
        self.late_fee_cap = late_fee_cap
        self.annual_interest_rate = annual_interest_rate

    def _fee(self, days: int) -> Decimal:
        return min(self.late_fee_per_day * days, self.late_fee_cap)

    @traced_engine("penalty_per_day", "1.0", fingerprint_fields=("filing", "as_of"))
    def calculate(self, *, filing: FilingRecordInfo, as_of: date) -> PenaltyAssessment:
        late_a = days_late(filing.sub_return_a, as_of)
        late_b = days_late(filing.sub_return_b, as_of)

        late_fee = (self._fee(late_a) + self._fee(late_b)).quantize(_CENT, ROUND_HALF_UP)

        interest = ZERO
        if filing.tax_figures is not None and late_b:
            interest = (
                filing.tax_figures.tax_paid
                * self.annual_interest_rate
                / Decimal("100")
                * Decimal(late_b)
                / _DAYS_PER_YEAR
            ).quantize(_CENT, ROUND_HALF_UP)

        return PenaltyAssessment(
            late_fee=late_fee,
            interest=interest,
            days_late_a=late_a,
            days_late_b=late_b,
            strategy=self.name,
        )
