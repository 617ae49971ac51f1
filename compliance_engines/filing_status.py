"""
FilingStatus engine -- timeliness projection for a filing record.

Architecture: compliance_engines -- pure calculation, zero I/O.  The
as-of date is always passed in by the caller (from its injected Clock).

Precedence, first match wins:
    1. overdue -- a sub-return is unfiled and the as-of date is past its due date
    2. late    -- a sub-return was filed after its due date
    3. filed   -- both sub-returns filed on or before their due dates
    4. pending -- otherwise
"""

from __future__ import annotations

from datetime import date

from compliance_engines.tracer import traced_engine
from compliance_kernel.domain.dtos import FilingStatus, SubReturnInfo


def is_overdue(sub_return: SubReturnInfo, as_of: date) -> bool:
    return (
        not sub_return.filed
        and sub_return.due_date is not None
        and as_of > sub_return.due_date
    )


def is_late(sub_return: SubReturnInfo) -> bool:
    return (
        sub_return.filed
        and sub_return.filed_date is not None
        and sub_return.due_date is not None
        and sub_return.filed_date > sub_return.due_date
    )


def days_late(sub_return: SubReturnInfo, as_of: date) -> int:
    """Days past due: up to the filed date if filed, else up to ``as_of``."""
    if sub_return.due_date is None:
        return 0
    end = sub_return.filed_date if sub_return.filed and sub_return.filed_date else as_of
    return max((end - sub_return.due_date).days, 0)


@traced_engine(
    "filing_status", "1.0", fingerprint_fields=("sub_return_a", "sub_return_b", "as_of")
)
def compute_filing_status(
    *,
    sub_return_a: SubReturnInfo,
    sub_return_b: SubReturnInfo,
    as_of: date,
) -> FilingStatus:
    """Derive ``filing_status`` from the two sub-returns and the as-of date."""
    pair = (sub_return_a, sub_return_b)
    if any(is_overdue(s, as_of) for s in pair):
        return FilingStatus.OVERDUE
    if any(is_late(s) for s in pair):
        return FilingStatus.LATE
    if all(s.filed for s in pair):
        return FilingStatus.FILED
    return FilingStatus.PENDING
