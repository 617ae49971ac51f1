"""Selectors for the compliance kernel (read side)."""

from compliance_kernel.selectors.filing_selector import FilingSelector, FilingStatusReport
from compliance_kernel.selectors.reconciliation_selector import ReconciliationSelector

__all__ = [
    "FilingSelector",
    "FilingStatusReport",
    "ReconciliationSelector",
]
