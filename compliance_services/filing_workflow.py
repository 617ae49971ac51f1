"""
compliance_services.filing_workflow -- FilingWorkflowOrchestrator.

Responsibility:
    Drives a filing record through the filing workflow.  Every operation
    runs one unit of work:

        open step (commit) -> re-read filing -> validate transition, guard
        and privilege -> mutate -> recompute filing_status -> flush ->
        publish event -> complete step -> commit

    A typed failure rolls the mutation back, marks the step ``failed`` with
    the error code and message, commits that, and re-raises.  Callers never
    observe a step left ``in_progress``.

Architecture position:
    Services -- stateful orchestration over engines + kernel.  Owns
    commit/rollback for the session it is given.

Invariants enforced:
    - One filing record per period key (checked, backed by
      uq_filing_period_key).
    - A failed operation never changes ``workflow_status``.
    - Only unlock and amendment apply to a locked record; both require an
      elevated actor role.
    - Stale concurrent writes: the loser is rolled back and re-read; it
      gets InvalidTransitionError when its transition is no longer valid,
      StorageConflictError otherwise.

Failure modes:
    - FilingNotFoundError before any step is written.
    - FilingAlreadyExistsError on a duplicate period key.
    - ValidationError / PrivilegeRequiredError / InvalidTransitionError /
      UpstreamTimeoutError / UpstreamUnavailableError /
      StorageConflictError, each with a ``failed`` step behind it.

Usage:
    orchestrator = FilingWorkflowOrchestrator(
        session=session,
        config=get_active_config(),
        publisher=LoggingEventPublisher(),
        clock=clock,
    )
    filing = orchestrator.create_filing(period_key, actor_id)
    filing = orchestrator.file_sub_return_a(filing.id, "ARN-000123", date(2024, 5, 10), actor_id)
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from compliance_config.bridges import build_penalty_strategy
from compliance_config.schema import ComplianceConfig
from compliance_engines.due_dates import compute_due_dates
from compliance_engines.filing_status import compute_filing_status
from compliance_engines.penalties import PenaltyStrategy
from compliance_kernel.domain.clock import Clock, SystemClock
from compliance_kernel.domain.collaborators import EventPublisher, EventType
from compliance_kernel.domain.dtos import (
    FilingFrequency,
    FilingRecordInfo,
    FilingStatus,
    StepEntryInfo,
    StepType,
    SubReturn,
    TaxFigures,
    WorkflowStatus,
    parse_enum,
)
from compliance_kernel.domain.filing_workflow import available_steps, find_transition
from compliance_kernel.domain.period_key import PeriodKey
from compliance_kernel.domain.workflow import Transition
from compliance_kernel.exceptions import (
    ComplianceKernelError,
    FilingAlreadyExistsError,
    FilingNotFoundError,
    InvalidTransitionError,
    PrivilegeRequiredError,
    StorageConflictError,
    ValidationError,
)
from compliance_kernel.logging_config import LogContext, get_logger
from compliance_kernel.models.filing import FilingRecord
from compliance_kernel.selectors.filing_selector import FilingSelector
from compliance_kernel.services.step_ledger_service import StepLedgerService
from compliance_services._events import publish_event

logger = get_logger("services.filing_workflow")

INTERNAL_ERROR_CODE = "INTERNAL_ERROR"

_SUB_RETURN_STEPS: dict[SubReturn, tuple[StepType, StepType, StepType]] = {
    SubReturn.A: (StepType.PREPARE_A, StepType.VALIDATE_A, StepType.FILE_A),
    SubReturn.B: (StepType.PREPARE_B, StepType.VALIDATE_B, StepType.FILE_B),
}


@dataclass(frozen=True)
class _StepResult:
    """What a step's mutation produced."""

    event_type: EventType | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    skip_reason: str | None = None


def _diff(before: dict[str, Any], after: dict[str, Any]) -> dict[str, dict[str, Any]]:
    return {
        name: {"before": before.get(name), "after": value}
        for name, value in after.items()
        if before.get(name) != value
    }


def _require_text(value: str | None, field_name: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field_name} is required", field=field_name)
    return str(value).strip()


class FilingWorkflowOrchestrator:
    """
    Filing workflow operations over one session.

    Contract:
        Receives a Session, ComplianceConfig, EventPublisher and optional
        Clock / PenaltyStrategy.  Every public mutation returns a frozen
        FilingRecordInfo or raises a ComplianceKernelError subclass.

    Guarantees:
        - Each operation commits exactly its own unit of work.
        - Every attempt against an existing filing leaves one terminal step.

    Non-goals:
        - Does NOT authenticate ``actor_role``; the caller supplies it.
    """

    def __init__(
        self,
        session: Session,
        config: ComplianceConfig,
        publisher: EventPublisher,
        clock: Clock | None = None,
        penalty_strategy: PenaltyStrategy | None = None,
    ) -> None:
        self._session = session
        self._config = config
        self._publisher = publisher
        self._clock = clock or SystemClock()
        self._penalty_strategy = penalty_strategy or build_penalty_strategy(config)
        self._reference_re = re.compile(config.workflow.reference_pattern)

        self.steps = StepLedgerService(session, self._clock)
        self.filings = FilingSelector(session)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_filing(
        self,
        period_key: PeriodKey,
        actor_id: UUID,
        filing_frequency: FilingFrequency | str | None = None,
        sub_return_a_due: date | None = None,
        sub_return_b_due: date | None = None,
    ) -> FilingRecordInfo:
        """Create the filing record for ``period_key`` in ``draft``."""
        frequency = parse_enum(
            FilingFrequency,
            filing_frequency or self._config.workflow.default_filing_frequency,
            "filing_frequency",
        )

        with LogContext.bind(
            correlation_id=uuid4(),
            actor_id=actor_id,
            client_id=period_key.client_id,
            period=period_key.period,
        ):
            if self.filings.get_by_period_key(period_key) is not None:
                raise FilingAlreadyExistsError(str(period_key))

            due = compute_due_dates(
                period_key=period_key, frequency=frequency, rules=self._config.due_dates
            )
            record = FilingRecord(
                client_id=period_key.client_id,
                period=period_key.period,
                fiscal_year=period_key.fiscal_year,
                filing_frequency=frequency.value,
                workflow_status=WorkflowStatus.DRAFT.value,
                sub_return_a_due_date=sub_return_a_due or due.sub_return_a,
                sub_return_b_due_date=sub_return_b_due or due.sub_return_b,
                created_by_id=actor_id,
            )
            record.filing_status = self._project_status(record).value

            try:
                self._session.add(record)
                self._session.flush()
            except IntegrityError:
                self._session.rollback()
                raise FilingAlreadyExistsError(str(period_key)) from None

            try:
                self._publish(
                    EventType.FILING_CREATED,
                    period_key,
                    {
                        "filing_id": str(record.id),
                        "filing_frequency": frequency.value,
                        "sub_return_a_due": record.sub_return_a_due_date.isoformat(),
                        "sub_return_b_due": record.sub_return_b_due_date.isoformat(),
                    },
                )
            except ComplianceKernelError:
                self._session.rollback()
                raise
            self._session.commit()

            logger.info(
                "filing_created",
                extra={
                    "filing_id": str(record.id),
                    "period_key": str(period_key),
                    "filing_frequency": frequency.value,
                },
            )
            return record.to_dto()

    # ------------------------------------------------------------------
    # Sub-return steps
    # ------------------------------------------------------------------

    def prepare_sub_return(
        self,
        filing_id: UUID,
        sub_return: SubReturn | str,
        actor_id: UUID,
        comments: str | None = None,
    ) -> FilingRecordInfo:
        which = parse_enum(SubReturn, sub_return, "sub_return")
        step_type = _SUB_RETURN_STEPS[which][0]

        def apply(record: FilingRecord) -> _StepResult:
            return _StepResult()

        return self._execute(filing_id, step_type, actor_id, apply, comments=comments)

    def validate_sub_return(
        self,
        filing_id: UUID,
        sub_return: SubReturn | str,
        reference_number: str,
        actor_id: UUID,
    ) -> FilingRecordInfo:
        """Check a reference number against the configured pattern."""
        which = parse_enum(SubReturn, sub_return, "sub_return")
        step_type = _SUB_RETURN_STEPS[which][1]

        def apply(record: FilingRecord) -> _StepResult:
            self._check_reference(reference_number)
            return _StepResult()

        return self._execute(
            filing_id,
            step_type,
            actor_id,
            apply,
            comments=f"reference {reference_number}",
        )

    def file_sub_return_a(
        self,
        filing_id: UUID,
        reference: str,
        filed_date: date,
        actor_id: UUID,
    ) -> FilingRecordInfo:
        def apply(record: FilingRecord) -> _StepResult:
            ref = self._check_reference(reference)
            self._check_filed_date(filed_date)
            record.mark_filed(SubReturn.A, ref, filed_date)
            return _StepResult(
                EventType.FILING_STATUS_CHANGED,
                {"reference_number": ref, "filed_date": filed_date.isoformat()},
            )

        return self._execute(filing_id, StepType.FILE_A, actor_id, apply)

    def file_sub_return_b(
        self,
        filing_id: UUID,
        reference: str,
        filed_date: date,
        tax_figures: TaxFigures,
        actor_id: UUID,
    ) -> FilingRecordInfo:
        def apply(record: FilingRecord) -> _StepResult:
            ref = self._check_reference(reference)
            self._check_filed_date(filed_date)
            if not isinstance(tax_figures, TaxFigures):
                raise ValidationError("tax_figures are required", field="tax_figures")
            record.mark_filed(SubReturn.B, ref, filed_date)
            record.tax_paid = tax_figures.tax_paid
            record.tax_central = tax_figures.central
            record.tax_state = tax_figures.state
            record.tax_integrated = tax_figures.integrated
            record.tax_cess = tax_figures.cess
            return _StepResult(
                EventType.FILING_STATUS_CHANGED,
                {
                    "reference_number": ref,
                    "filed_date": filed_date.isoformat(),
                    "tax_paid": str(tax_figures.tax_paid),
                },
            )

        return self._execute(filing_id, StepType.FILE_B, actor_id, apply)

    # ------------------------------------------------------------------
    # Lock / unlock / amendment
    # ------------------------------------------------------------------

    def lock(
        self,
        filing_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> FilingRecordInfo:
        def apply(record: FilingRecord) -> _StepResult:
            if not (record.sub_return_a_filed and record.sub_return_b_filed):
                # Unreachable through the workflow table; a row edited outside it
                raise StorageConflictError("FilingRecord", str(record.id))
            record.is_locked = True
            record.locked_at = self._clock.now()
            record.locked_by_id = actor_id
            record.lock_reason = reason
            return _StepResult(EventType.FILING_LOCKED, {"reason": reason})

        return self._execute(filing_id, StepType.LOCK, actor_id, apply, comments=reason)

    def unlock(
        self,
        filing_id: UUID,
        actor_id: UUID,
        reason: str,
        actor_role: str | None,
    ) -> FilingRecordInfo:
        """Reopen a locked record for amendment.  Elevated role required."""

        def apply(record: FilingRecord) -> _StepResult:
            text = _require_text(reason, "reason")
            record.is_locked = False
            record.locked_at = None
            record.locked_by_id = None
            record.lock_reason = None
            return _StepResult(
                EventType.FILING_UNLOCKED, {"reason": text, "actor_role": actor_role}
            )

        return self._execute(
            filing_id,
            StepType.UNLOCK,
            actor_id,
            apply,
            actor_role=actor_role,
            comments=reason,
        )

    def start_amendment(
        self,
        filing_id: UUID,
        actor_id: UUID,
        reason: str,
        actor_role: str | None,
    ) -> FilingRecordInfo:
        """
        Record an amendment and return the filing to ``draft``.

        A locked record is unlocked first (its own ``unlock`` step); both
        sub-returns are reset and ``amendment_count`` increments.
        """
        record = self._session.get(FilingRecord, filing_id)
        if record is None:
            raise FilingNotFoundError(str(filing_id))
        if record.workflow_status == WorkflowStatus.LOCKED.value:
            self.unlock(filing_id, actor_id, reason, actor_role)

        def apply(record: FilingRecord) -> _StepResult:
            text = _require_text(reason, "reason")
            previous = {
                "sub_return_a_reference": record.sub_return_a_reference,
                "sub_return_b_reference": record.sub_return_b_reference,
            }
            record.clear_filed(SubReturn.A)
            record.clear_filed(SubReturn.B)
            record.late_fee_calculated = False
            record.interest_calculated = False
            record.amendment_count = record.amendment_count + 1
            return _StepResult(
                EventType.FILING_AMENDMENT_STARTED,
                {
                    "reason": text,
                    "amendment_count": record.amendment_count,
                    "previous": previous,
                },
            )

        return self._execute(
            filing_id,
            StepType.AMENDMENT,
            actor_id,
            apply,
            actor_role=actor_role,
            comments=reason,
        )

    # ------------------------------------------------------------------
    # Penalties
    # ------------------------------------------------------------------

    def calculate_penalties(
        self,
        filing_id: UUID,
        actor_id: UUID,
        force: bool = False,
    ) -> FilingRecordInfo:
        """Apply the configured penalty strategy.  Skipped when already done."""

        def apply(record: FilingRecord) -> _StepResult:
            if record.late_fee_calculated and record.interest_calculated and not force:
                return _StepResult(skip_reason="penalties already calculated")
            assessment = self._penalty_strategy.calculate(
                filing=record.to_dto(), as_of=self._clock.today()
            )
            record.late_fee = assessment.late_fee
            record.interest = assessment.interest
            record.late_fee_calculated = True
            record.interest_calculated = True
            return _StepResult(
                EventType.FILING_PENALTIES_CALCULATED,
                {
                    "strategy": assessment.strategy,
                    "late_fee": str(assessment.late_fee),
                    "interest": str(assessment.interest),
                    "days_late_a": assessment.days_late_a,
                    "days_late_b": assessment.days_late_b,
                },
            )

        return self._execute(filing_id, StepType.CALCULATE_PENALTIES, actor_id, apply)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_filing(self, filing_id: UUID) -> FilingRecordInfo:
        return self.filings.get_or_raise(filing_id)

    def get_available_next_steps(self, filing_id: UUID) -> list[StepType]:
        """Step types the workflow allows from the filing's current status."""
        return available_steps(self.filings.get_or_raise(filing_id).workflow_status)

    def list_steps(self, filing_id: UUID) -> list[StepEntryInfo]:
        return self.steps.list_steps(filing_id)

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    def _execute(
        self,
        filing_id: UUID,
        step_type: StepType,
        actor_id: UUID,
        apply: Callable[[FilingRecord], _StepResult],
        *,
        actor_role: str | None = None,
        comments: str | None = None,
    ) -> FilingRecordInfo:
        with LogContext.bind(
            correlation_id=uuid4(), actor_id=actor_id, filing_id=filing_id
        ):
            if self._session.get(FilingRecord, filing_id) is None:
                raise FilingNotFoundError(str(filing_id))

            step = self._open_step(filing_id, step_type, actor_id, actor_role, comments)
            t0 = time.monotonic()
            try:
                result = self._apply(step, step_type, actor_id, actor_role, apply)
            except ComplianceKernelError as exc:
                self._record_failure(step, exc.code, str(exc), t0)
                raise
            except Exception as exc:
                self._record_failure(step, INTERNAL_ERROR_CODE, f"{type(exc).__name__}: {exc}", t0)
                raise

            logger.info(
                "filing_step_finished",
                extra={
                    "step_type": step_type.value,
                    "seq": step.seq,
                    "workflow_status": result.workflow_status.value,
                    "filing_status": result.filing_status.value,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            return result

    def _open_step(
        self,
        filing_id: UUID,
        step_type: StepType,
        actor_id: UUID,
        actor_role: str | None,
        comments: str | None,
    ) -> StepEntryInfo:
        # One retry when a concurrent opener takes the same seq
        retried = False
        while True:
            try:
                step = self.steps.open_step(
                    filing_id, step_type, actor_id, actor_role=actor_role, comments=comments
                )
                self._session.commit()
                return step
            except IntegrityError:
                self._session.rollback()
                if retried:
                    raise StorageConflictError("FilingStep", str(filing_id)) from None
                retried = True

    def _record_failure(self, step: StepEntryInfo, error_code: str, message: str, t0: float) -> None:
        """Roll the mutation back and leave the step ``failed`` with the error details."""
        self._session.rollback()
        self.steps.fail_step(step.id, error_code, message)
        self._session.commit()
        logger.warning(
            "filing_step_failed",
            extra={
                "step_type": step.step_type.value,
                "seq": step.seq,
                "error_code": error_code,
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            },
        )

    def _apply(
        self,
        step: StepEntryInfo,
        step_type: StepType,
        actor_id: UUID,
        actor_role: str | None,
        apply: Callable[[FilingRecord], _StepResult],
    ) -> FilingRecordInfo:
        filing_id = step.filing_id
        try:
            record = self._load_for_update(filing_id)
            transition = self._check_transition(record, step_type, actor_role)
            previous_status = record.status
            before = record.tracked_values()

            result = apply(record)
            if result.skip_reason is not None:
                self.steps.skip_step(step.id, result.skip_reason)
                self._session.commit()
                return record.to_dto()

            record.workflow_status = transition.to_state
            record.current_step = step_type.value
            record.updated_by_id = actor_id
            record.filing_status = self._project_status(record).value
            self._session.flush()

            if result.event_type is not None:
                payload = {
                    "filing_id": str(filing_id),
                    "step": step_type.value,
                    "previous_status": previous_status.value,
                    "new_status": record.workflow_status,
                    "filing_status": record.filing_status,
                    "period": record.period,
                    "fiscal_year": record.fiscal_year,
                    **result.payload,
                }
                self._publish(result.event_type, record.period_key, payload)

            self.steps.complete_step(step.id, changes=_diff(before, record.tracked_values()))
            self._session.commit()
        except StaleDataError:
            self._session.rollback()
            raise self._stale_write_error(filing_id, step_type) from None
        return record.to_dto()

    def _load_for_update(self, filing_id: UUID) -> FilingRecord:
        record = self._session.scalars(
            select(FilingRecord).where(FilingRecord.id == filing_id).with_for_update()
        ).one_or_none()
        if record is None:
            raise FilingNotFoundError(str(filing_id))
        return record

    def _check_transition(
        self,
        record: FilingRecord,
        step_type: StepType,
        actor_role: str | None,
    ) -> Transition:
        transition = find_transition(record.workflow_status, step_type)
        if transition is None:
            raise InvalidTransitionError(
                str(record.id), record.workflow_status, step_type.value
            )
        if transition.requires_privilege and actor_role not in self._config.workflow.elevated_roles:
            raise PrivilegeRequiredError(step_type.value, actor_role)
        return transition

    def _stale_write_error(self, filing_id: UUID, step_type: StepType) -> ComplianceKernelError:
        record = self._session.get(FilingRecord, filing_id)
        if record is None:
            return FilingNotFoundError(str(filing_id))
        logger.warning(
            "filing_stale_write",
            extra={"step_type": step_type.value, "current_status": record.workflow_status},
        )
        if find_transition(record.workflow_status, step_type) is None:
            return InvalidTransitionError(str(filing_id), record.workflow_status, step_type.value)
        return StorageConflictError("FilingRecord", str(filing_id))

    def _project_status(self, record: FilingRecord) -> FilingStatus:
        return compute_filing_status(
            sub_return_a=record.sub_return(SubReturn.A),
            sub_return_b=record.sub_return(SubReturn.B),
            as_of=self._clock.today(),
        )

    def _check_reference(self, reference: str | None) -> str:
        ref = _require_text(reference, "reference_number")
        if not self._reference_re.match(ref):
            raise ValidationError(
                f"Reference number {ref!r} does not match the configured pattern",
                field="reference_number",
            )
        return ref

    @staticmethod
    def _check_filed_date(filed_date: date | None) -> None:
        # datetime is a date subclass but cannot be compared with the due dates
        if not isinstance(filed_date, date) or isinstance(filed_date, datetime):
            raise ValidationError("filed_date must be a calendar date", field="filed_date")

    def _publish(self, event_type: EventType, period_key: PeriodKey, payload: dict[str, Any]) -> None:
        publish_event(
            self._publisher,
            event_type,
            period_key,
            payload,
            timeout_seconds=self._config.timeouts.event_publish_seconds,
        )
