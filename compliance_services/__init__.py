"""
compliance_services -- Package init and public API.

Responsibility:
    Stateful orchestration that composes the pure engines
    (compliance_engines/) with database sessions, configuration and the
    external collaborators.  This is the layer that owns commit/rollback.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        compliance_services/ -> compliance_config/   (allowed)
        compliance_services/ -> compliance_engines/  (allowed)
        compliance_services/ -> compliance_kernel/   (allowed)
        compliance_engines/  -> compliance_services/ (FORBIDDEN)
        compliance_kernel/   -> compliance_services/ (FORBIDDEN)
"""

from compliance_services.filing_workflow import FilingWorkflowOrchestrator
from compliance_services.reconciliation_batch import (
    BatchItemResult,
    BatchResult,
    ReconciliationBatchRunner,
)
from compliance_services.reconciliation_service import ReconciliationService

__all__ = [
    "BatchItemResult",
    "BatchResult",
    "FilingWorkflowOrchestrator",
    "ReconciliationBatchRunner",
    "ReconciliationService",
]
