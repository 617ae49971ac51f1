"""
StepLedgerService -- append-only audit trail of filing transition attempts.

Responsibility:
    Opens a non-terminal entry before a transition is attempted, moves it
    exactly once to completed / failed / skipped, lists a filing's entries
    in ``seq`` order, and replays completed entries through the workflow
    table to re-derive the filing's status.

Architecture position:
    Kernel > Services -- imperative shell.  Flushes only; the orchestrator
    owns commit/rollback.

Invariants enforced:
    - A second terminal update raises StepAlreadyFinalizedError here, and
      the ORM listener (db/immutability.py) rejects any change to a
      terminal row that bypasses this service.
    - ``seq`` is max(seq) + 1 per filing; the unique constraint
      (uq_filing_step_seq) catches concurrent openers.
    - Replaying completed steps in ``seq`` order through the workflow yields
      the stored ``workflow_status`` (checked by ``replay_status``).

Failure modes:
    - NotFoundError if the step does not exist.
    - AuditOrderViolationError if a completed step is not allowed from the
      replayed status.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from compliance_kernel.domain.clock import Clock, SystemClock
from compliance_kernel.domain.dtos import StepEntryInfo, StepStatus, StepType, WorkflowStatus
from compliance_kernel.domain.filing_workflow import FILING_WORKFLOW
from compliance_kernel.domain.workflow import Workflow
from compliance_kernel.exceptions import (
    AuditOrderViolationError,
    NotFoundError,
    StepAlreadyFinalizedError,
)
from compliance_kernel.logging_config import get_logger
from compliance_kernel.models.filing_step import FilingStep
from compliance_kernel.services.base import BaseService

logger = get_logger("services.step_ledger")


class StepLedgerService(BaseService[FilingStep]):
    """
    Write side of the step ledger.

    Contract:
        Entries are created non-terminal and finalized once.  Entries are
        never deleted.

    Non-goals:
        - Does NOT validate workflow transitions on open; the orchestrator
          records failed attempts too.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def _next_seq(self, filing_id: UUID) -> int:
        current = self.session.scalar(
            select(func.max(FilingStep.seq)).where(FilingStep.filing_id == filing_id)
        )
        return (current or 0) + 1

    def _get(self, step_id: UUID) -> FilingStep:
        step = self.session.get(FilingStep, step_id)
        if step is None:
            raise NotFoundError("FilingStep", str(step_id))
        return step

    def open_step(
        self,
        filing_id: UUID,
        step_type: StepType,
        actor_id: UUID,
        actor_role: str | None = None,
        comments: str | None = None,
        status: StepStatus = StepStatus.IN_PROGRESS,
    ) -> StepEntryInfo:
        """Append a non-terminal entry for a transition attempt."""
        if StepStatus(status).is_terminal:
            raise ValueError(f"Steps open non-terminal, got {status}")

        step = FilingStep(
            filing_id=filing_id,
            seq=self._next_seq(filing_id),
            step_type=StepType(step_type).value,
            status=StepStatus(status).value,
            performed_by_id=actor_id,
            actor_role=actor_role,
            started_at=self._clock.now(),
            comments=comments,
        )
        self.session.add(step)
        self.session.flush()

        logger.info(
            "step_opened",
            extra={
                "step_id": str(step.id),
                "filing_id": str(filing_id),
                "seq": step.seq,
                "step_type": step.step_type,
            },
        )
        return step.to_dto()

    def _finalize(self, step_id: UUID, status: StepStatus, **fields: Any) -> StepEntryInfo:
        step = self._get(step_id)
        if step.is_terminal:
            raise StepAlreadyFinalizedError(str(step_id), step.status)

        step.status = status.value
        step.completed_at = self._clock.now()
        for name, value in fields.items():
            if value is not None:
                setattr(step, name, value)
        self.session.flush()

        logger.info(
            "step_finalized",
            extra={
                "step_id": str(step.id),
                "filing_id": str(step.filing_id),
                "seq": step.seq,
                "step_type": step.step_type,
                "status": step.status,
                "error_code": step.error_code,
            },
        )
        return step.to_dto()

    def complete_step(
        self,
        step_id: UUID,
        changes: dict[str, dict[str, Any]] | None = None,
        comments: str | None = None,
    ) -> StepEntryInfo:
        """Mark a step completed, recording field changes as {field: {before, after}}."""
        return self._finalize(
            step_id, StepStatus.COMPLETED, changes=changes or {}, comments=comments
        )

    def fail_step(self, step_id: UUID, error_code: str, error_message: str) -> StepEntryInfo:
        """Mark a step failed with the error that stopped it."""
        return self._finalize(
            step_id,
            StepStatus.FAILED,
            error_code=error_code,
            error_message=error_message,
        )

    def skip_step(self, step_id: UUID, reason: str) -> StepEntryInfo:
        """Mark a step skipped (nothing to do)."""
        return self._finalize(step_id, StepStatus.SKIPPED, comments=reason)

    def list_steps(self, filing_id: UUID) -> list[StepEntryInfo]:
        """All entries for a filing, in ``seq`` order."""
        rows = self.session.scalars(
            select(FilingStep)
            .where(FilingStep.filing_id == filing_id)
            .order_by(FilingStep.seq)
        ).all()
        return [row.to_dto() for row in rows]

    def replay_status(
        self, filing_id: UUID, workflow: Workflow = FILING_WORKFLOW
    ) -> WorkflowStatus:
        """
        Re-derive ``workflow_status`` by folding completed steps in order.

        Raises:
            AuditOrderViolationError: a completed step is not allowed from
                the status replayed so far.
        """
        status = workflow.initial_state
        for step in self.list_steps(filing_id):
            if step.status != StepStatus.COMPLETED:
                continue
            transition = workflow.find(status, step.step_type.value)
            if transition is None:
                raise AuditOrderViolationError(
                    str(filing_id), step.seq, step.step_type.value, status
                )
            status = transition.to_state
        return WorkflowStatus(status)

    def verify_order(self, filing_id: UUID, workflow: Workflow = FILING_WORKFLOW) -> bool:
        """True when completed steps respect the workflow table order."""
        try:
            self.replay_status(filing_id, workflow)
        except AuditOrderViolationError:
            return False
        return True
