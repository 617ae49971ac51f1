"""
Due date engine -- statutory due dates for a period's two sub-returns.

Architecture: compliance_engines -- pure calculation, zero I/O.

Both sub-returns fall due in the month after the period:

    frequency  | period month         | sub-return A | sub-return B
    -----------|----------------------|--------------|-------------
    monthly    | any                  | a_day        | b_day
    quarterly  | quarter end (3,6,9,12)| quarterly_a  | quarterly_b
    quarterly  | other months         | quarterly_a  | quarterly_interim_b

Day numbers are clamped to the length of the due month.  The reminder date
is ``reminder_days_before`` days before sub-return B's due date.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta

from compliance_engines.tracer import traced_engine
from compliance_kernel.domain.dtos import FilingFrequency
from compliance_kernel.domain.period_key import PeriodKey
from compliance_kernel.logging_config import get_logger

logger = get_logger("engines.due_dates")

QUARTER_END_MONTHS = frozenset({3, 6, 9, 12})


@dataclass(frozen=True)
class DueDateRules:
    """Day-of-month rules for sub-return due dates.

    Contract: every day is in 1..31.
    Guarantees: validated at construction via ``__post_init__``.
    """
    monthly_a_day: int = 11
    monthly_b_day: int = 20
    quarterly_a_day: int = 13
    quarterly_b_day: int = 24
    quarterly_interim_b_day: int = 25
    reminder_days_before: int = 5

    def __post_init__(self):
        for name in (
            "monthly_a_day",
            "monthly_b_day",
            "quarterly_a_day",
            "quarterly_b_day",
            "quarterly_interim_b_day",
        ):
            day = getattr(self, name)
            if not 1 <= day <= 31:
                raise ValueError(f"{name} must be between 1 and 31, got {day}")
        if self.reminder_days_before < 0:
            raise ValueError("reminder_days_before cannot be negative")
        logger.debug(
            "due_date_rules_initialized",
            extra={
                "monthly": [self.monthly_a_day, self.monthly_b_day],
                "quarterly": [self.quarterly_a_day, self.quarterly_b_day],
                "quarterly_interim_b_day": self.quarterly_interim_b_day,
            },
        )


@dataclass(frozen=True)
class DueDates:
    sub_return_a: date
    sub_return_b: date
    reminder: date


def _day_in_month(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


@traced_engine("due_dates", "1.0", fingerprint_fields=("period_key", "frequency"))
def compute_due_dates(
    *,
    period_key: PeriodKey,
    frequency: FilingFrequency,
    rules: DueDateRules,
) -> DueDates:
    """Due dates for sub-returns A and B of ``period_key``."""
    year, month = period_key.year, period_key.month
    due_year, due_month = (year + 1, 1) if month == 12 else (year, month + 1)

    if FilingFrequency(frequency) == FilingFrequency.MONTHLY:
        a_day, b_day = rules.monthly_a_day, rules.monthly_b_day
    elif month in QUARTER_END_MONTHS:
        a_day, b_day = rules.quarterly_a_day, rules.quarterly_b_day
    else:
        a_day, b_day = rules.quarterly_a_day, rules.quarterly_interim_b_day

    due_a = _day_in_month(due_year, due_month, a_day)
    due_b = _day_in_month(due_year, due_month, b_day)
    return DueDates(
        sub_return_a=due_a,
        sub_return_b=due_b,
        reminder=due_b - timedelta(days=rules.reminder_days_before),
    )
