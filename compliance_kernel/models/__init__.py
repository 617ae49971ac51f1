"""ORM models for the compliance kernel."""

from compliance_kernel.models.filing import FilingRecord
from compliance_kernel.models.filing_step import FilingStep
from compliance_kernel.models.reconciliation import CreditReconciliation
from compliance_kernel.models.source_record import SourceRecord

__all__ = [
    "FilingRecord",
    "FilingStep",
    "CreditReconciliation",
    "SourceRecord",
]
