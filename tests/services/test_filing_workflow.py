"""
Tests for FilingWorkflowOrchestrator.

Covers:
- Creation: due dates, duplicate period keys, frequency defaults
- The happy path: file A, file B, lock
- Late and overdue projections
- Invalid transitions and validation failures leave a failed step and no
  state change
- Unlock and amendment: privilege, reason, counters
- Penalty calculation: strategy, skip when already calculated, force
- Step ledger replay agrees with the stored status
- Unexpected errors and step sequence collisions never leave a step in progress
"""

import dataclasses
from datetime import date, datetime
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from compliance_config.schema import PenaltySettings
from compliance_engines.penalties import PenaltyStrategy
from compliance_kernel.domain.collaborators import EventType
from compliance_kernel.domain.dtos import (
    FilingFrequency,
    FilingStatus,
    StepStatus,
    StepType,
    SubReturn,
    WorkflowStatus,
)
from compliance_kernel.domain.period_key import PeriodKey
from compliance_kernel.exceptions import (
    FilingAlreadyExistsError,
    FilingNotFoundError,
    InvalidTransitionError,
    PrivilegeRequiredError,
    StorageConflictError,
    ValidationError,
)
from compliance_kernel.models.filing import FilingRecord
from compliance_services.filing_workflow import FilingWorkflowOrchestrator
from tests.conftest import ADMIN_ROLE


def step_types(steps):
    return [s.step_type for s in steps]


class TestCreateFiling:
    def test_created_in_draft_with_due_dates(self, draft_filing):
        assert draft_filing.workflow_status == WorkflowStatus.DRAFT
        assert draft_filing.filing_status == FilingStatus.PENDING
        assert draft_filing.filing_frequency == FilingFrequency.MONTHLY
        assert draft_filing.sub_return_a.due_date == date(2024, 6, 11)
        assert draft_filing.sub_return_b.due_date == date(2024, 6, 20)
        assert draft_filing.amendment_count == 0
        assert draft_filing.version == 1

    def test_publishes_created_event(self, draft_filing, publisher, period_key):
        events = publisher.of_type(EventType.FILING_CREATED)

        assert len(events) == 1
        assert events[0].period_key == period_key
        assert events[0].payload["filing_id"] == str(draft_filing.id)

    def test_no_step_written(self, draft_filing, orchestrator):
        assert orchestrator.list_steps(draft_filing.id) == []

    def test_duplicate_period_key_rejected(self, orchestrator, draft_filing, period_key, test_actor_id):
        with pytest.raises(FilingAlreadyExistsError):
            orchestrator.create_filing(period_key, test_actor_id)

    def test_same_period_other_client_allowed(self, orchestrator, draft_filing, test_actor_id):
        other = orchestrator.create_filing(PeriodKey.for_period("C002", "2024-05"), test_actor_id)

        assert other.id != draft_filing.id

    def test_quarterly_frequency(self, orchestrator, test_actor_id):
        filing = orchestrator.create_filing(
            PeriodKey.for_period("C001", "2024-06"), test_actor_id, filing_frequency="quarterly"
        )

        assert filing.filing_frequency == FilingFrequency.QUARTERLY
        assert filing.sub_return_a.due_date == date(2024, 7, 13)
        assert filing.sub_return_b.due_date == date(2024, 7, 24)

    def test_explicit_due_dates_override(self, orchestrator, period_key, test_actor_id):
        filing = orchestrator.create_filing(
            period_key,
            test_actor_id,
            sub_return_a_due=date(2024, 6, 30),
            sub_return_b_due=date(2024, 7, 5),
        )

        assert filing.sub_return_a.due_date == date(2024, 6, 30)
        assert filing.sub_return_b.due_date == date(2024, 7, 5)

    def test_unknown_frequency_rejected(self, orchestrator, period_key, test_actor_id):
        with pytest.raises(ValidationError):
            orchestrator.create_filing(period_key, test_actor_id, filing_frequency="weekly")


class TestHappyPath:
    def test_file_lock_sequence(self, orchestrator, locked_filing, publisher):
        assert locked_filing.workflow_status == WorkflowStatus.LOCKED
        assert locked_filing.filing_status == FilingStatus.FILED
        assert locked_filing.is_locked
        assert locked_filing.lock_reason == "period closed"
        assert locked_filing.current_step == StepType.LOCK

        steps = orchestrator.list_steps(locked_filing.id)
        assert step_types(steps) == [StepType.FILE_A, StepType.FILE_B, StepType.LOCK]
        assert [s.seq for s in steps] == [1, 2, 3]
        assert all(s.status == StepStatus.COMPLETED for s in steps)

        assert publisher.types() == [
            EventType.FILING_CREATED,
            EventType.FILING_STATUS_CHANGED,
            EventType.FILING_STATUS_CHANGED,
            EventType.FILING_LOCKED,
        ]

    def test_sub_return_b_carries_tax_figures(self, filed_filing, tax_figures):
        assert filed_filing.workflow_status == WorkflowStatus.SUB_RETURN_B_FILED
        assert filed_filing.sub_return_b.reference_number == "ARN-B-000001"
        assert filed_filing.tax_figures == tax_figures

    def test_step_records_changes(self, orchestrator, filed_filing):
        file_a = orchestrator.list_steps(filed_filing.id)[0]

        assert file_a.changes["workflow_status"] == {
            "before": "draft",
            "after": "sub_return_a_filed",
        }
        assert file_a.changes["sub_return_a_reference"] == {
            "before": None,
            "after": "ARN-A-000001",
        }
        assert file_a.changes["sub_return_a_filed_date"]["after"] == "2024-06-10"
        assert "sub_return_b_filed" not in file_a.changes

    def test_status_event_payload(self, filed_filing, publisher):
        event = publisher.of_type(EventType.FILING_STATUS_CHANGED)[-1]

        assert event.payload["step"] == "file_b"
        assert event.payload["previous_status"] == "sub_return_a_filed"
        assert event.payload["new_status"] == "sub_return_b_filed"
        assert event.payload["filing_status"] == "filed"
        assert event.payload["tax_paid"] == "18000.00"

    def test_prepare_and_validate_keep_status(self, orchestrator, draft_filing, test_actor_id):
        prepared = orchestrator.prepare_sub_return(draft_filing.id, SubReturn.A, test_actor_id)
        validated = orchestrator.validate_sub_return(
            draft_filing.id, "a", "ARN-A-000001", test_actor_id
        )

        assert prepared.workflow_status == WorkflowStatus.DRAFT
        assert validated.workflow_status == WorkflowStatus.DRAFT
        assert validated.current_step == StepType.VALIDATE_A
        assert step_types(orchestrator.list_steps(draft_filing.id)) == [
            StepType.PREPARE_A,
            StepType.VALIDATE_A,
        ]

    def test_replay_matches_stored_status(self, orchestrator, locked_filing):
        assert orchestrator.steps.replay_status(locked_filing.id) == locked_filing.workflow_status

    def test_available_next_steps(self, orchestrator, locked_filing):
        assert orchestrator.get_available_next_steps(locked_filing.id) == [StepType.UNLOCK]

    def test_available_next_steps_after_a(self, orchestrator, draft_filing, test_actor_id):
        orchestrator.file_sub_return_a(draft_filing.id, "ARN-A-000001", date(2024, 5, 30), test_actor_id)

        assert orchestrator.get_available_next_steps(draft_filing.id) == [
            StepType.PREPARE_B,
            StepType.VALIDATE_B,
            StepType.CALCULATE_PENALTIES,
            StepType.FILE_B,
        ]


class TestTimeliness:
    def test_late_sub_return_a(self, orchestrator, draft_filing, test_actor_id, deterministic_clock):
        deterministic_clock.set_date(date(2024, 6, 14))

        filing = orchestrator.file_sub_return_a(
            draft_filing.id, "ARN-A-000001", date(2024, 6, 14), test_actor_id
        )

        assert filing.filing_status == FilingStatus.LATE

    def test_overdue_recomputed_on_write(self, orchestrator, draft_filing, test_actor_id, deterministic_clock):
        deterministic_clock.set_date(date(2024, 6, 10))
        orchestrator.file_sub_return_a(draft_filing.id, "ARN-A-000001", date(2024, 6, 10), test_actor_id)

        deterministic_clock.set_date(date(2024, 6, 25))
        filing = orchestrator.prepare_sub_return(draft_filing.id, SubReturn.B, test_actor_id)

        assert filing.filing_status == FilingStatus.OVERDUE
        assert filing.workflow_status == WorkflowStatus.SUB_RETURN_A_FILED

    def test_filing_after_overdue_becomes_late(
        self, orchestrator, draft_filing, tax_figures, test_actor_id, deterministic_clock
    ):
        deterministic_clock.set_date(date(2024, 6, 10))
        orchestrator.file_sub_return_a(draft_filing.id, "ARN-A-000001", date(2024, 6, 10), test_actor_id)
        deterministic_clock.set_date(date(2024, 6, 26))

        filing = orchestrator.file_sub_return_b(
            draft_filing.id, "ARN-B-000001", date(2024, 6, 26), tax_figures, test_actor_id
        )

        assert filing.filing_status == FilingStatus.LATE


class TestFailedOperations:
    def test_file_b_from_draft_is_invalid(self, orchestrator, draft_filing, tax_figures, test_actor_id):
        with pytest.raises(InvalidTransitionError):
            orchestrator.file_sub_return_b(
                draft_filing.id, "ARN-B-000001", date(2024, 6, 1), tax_figures, test_actor_id
            )

        filing = orchestrator.get_filing(draft_filing.id)
        assert filing.workflow_status == WorkflowStatus.DRAFT
        assert filing.version == draft_filing.version

        (step,) = orchestrator.list_steps(draft_filing.id)
        assert step.step_type == StepType.FILE_B
        assert step.status == StepStatus.FAILED
        assert step.error_code == "INVALID_TRANSITION"
        assert step.completed_at is not None

    def test_file_a_on_locked_is_invalid(self, orchestrator, locked_filing, test_actor_id):
        with pytest.raises(InvalidTransitionError):
            orchestrator.file_sub_return_a(
                locked_filing.id, "ARN-A-000002", date(2024, 7, 1), test_actor_id
            )

        filing = orchestrator.get_filing(locked_filing.id)
        assert filing.workflow_status == WorkflowStatus.LOCKED
        assert filing.sub_return_a.reference_number == "ARN-A-000001"
        assert orchestrator.list_steps(locked_filing.id)[-1].status == StepStatus.FAILED

    def test_bad_reference_fails_validation(self, orchestrator, draft_filing, test_actor_id):
        with pytest.raises(ValidationError) as exc_info:
            orchestrator.file_sub_return_a(draft_filing.id, "bad ref", date(2024, 6, 1), test_actor_id)

        assert exc_info.value.field == "reference_number"
        filing = orchestrator.get_filing(draft_filing.id)
        assert not filing.sub_return_a.filed
        assert filing.workflow_status == WorkflowStatus.DRAFT
        step = orchestrator.list_steps(draft_filing.id)[-1]
        assert step.error_code == "VALIDATION_ERROR"

    def test_validate_step_rejects_bad_reference(self, orchestrator, draft_filing, test_actor_id):
        with pytest.raises(ValidationError):
            orchestrator.validate_sub_return(draft_filing.id, SubReturn.A, "x", test_actor_id)

    def test_missing_filed_date(self, orchestrator, draft_filing, test_actor_id):
        with pytest.raises(ValidationError) as exc_info:
            orchestrator.file_sub_return_a(draft_filing.id, "ARN-A-000001", None, test_actor_id)

        assert exc_info.value.field == "filed_date"

    def test_missing_tax_figures(self, orchestrator, draft_filing, test_actor_id):
        orchestrator.file_sub_return_a(draft_filing.id, "ARN-A-000001", date(2024, 5, 30), test_actor_id)

        with pytest.raises(ValidationError) as exc_info:
            orchestrator.file_sub_return_b(
                draft_filing.id, "ARN-B-000001", date(2024, 5, 30), None, test_actor_id
            )

        assert exc_info.value.field == "tax_figures"

    def test_unknown_filing_writes_nothing(self, orchestrator, step_ledger, test_actor_id):
        missing = uuid4()

        with pytest.raises(FilingNotFoundError):
            orchestrator.lock(missing, test_actor_id)

        assert step_ledger.list_steps(missing) == []

    def test_lock_before_filing_is_invalid(self, orchestrator, draft_filing, test_actor_id):
        with pytest.raises(InvalidTransitionError):
            orchestrator.lock(draft_filing.id, test_actor_id)

    def test_failed_steps_do_not_break_replay(self, orchestrator, locked_filing, test_actor_id):
        with pytest.raises(InvalidTransitionError):
            orchestrator.lock(locked_filing.id, test_actor_id)

        assert orchestrator.steps.replay_status(locked_filing.id) == WorkflowStatus.LOCKED


class TestUnlockAndAmendment:
    def test_unlock_requires_elevated_role(self, orchestrator, locked_filing, test_actor_id):
        with pytest.raises(PrivilegeRequiredError):
            orchestrator.unlock(locked_filing.id, test_actor_id, "correction", actor_role="preparer")

        step = orchestrator.list_steps(locked_filing.id)[-1]
        assert step.step_type == StepType.UNLOCK
        assert step.error_code == "PRIVILEGE_REQUIRED"
        assert step.actor_role == "preparer"
        assert orchestrator.get_filing(locked_filing.id).is_locked

    def test_unlock_requires_reason(self, orchestrator, locked_filing, test_actor_id):
        with pytest.raises(ValidationError):
            orchestrator.unlock(locked_filing.id, test_actor_id, "   ", actor_role=ADMIN_ROLE)

        assert orchestrator.get_filing(locked_filing.id).workflow_status == WorkflowStatus.LOCKED

    def test_unlock(self, orchestrator, locked_filing, publisher, test_actor_id):
        filing = orchestrator.unlock(
            locked_filing.id, test_actor_id, "correction", actor_role=ADMIN_ROLE
        )

        assert filing.workflow_status == WorkflowStatus.AMENDMENT_IN_PROGRESS
        assert not filing.is_locked
        assert filing.locked_at is None
        assert filing.lock_reason is None
        assert publisher.types()[-1] == EventType.FILING_UNLOCKED

    def test_amendment_from_locked(self, orchestrator, locked_filing, publisher, test_actor_id):
        filing = orchestrator.start_amendment(
            locked_filing.id, test_actor_id, "wrong tax figures", actor_role=ADMIN_ROLE
        )

        assert filing.workflow_status == WorkflowStatus.DRAFT
        assert filing.amendment_count == 1
        assert not filing.sub_return_a.filed
        assert not filing.sub_return_b.filed
        assert filing.sub_return_a.reference_number is None
        assert filing.sub_return_a.due_date == date(2024, 6, 11)
        assert step_types(orchestrator.list_steps(locked_filing.id))[-2:] == [
            StepType.UNLOCK,
            StepType.AMENDMENT,
        ]

        event = publisher.of_type(EventType.FILING_AMENDMENT_STARTED)[0]
        assert event.payload["previous"]["sub_return_a_reference"] == "ARN-A-000001"
        assert event.payload["amendment_count"] == 1

    def test_amendment_needs_privilege(self, orchestrator, locked_filing, test_actor_id):
        with pytest.raises(PrivilegeRequiredError):
            orchestrator.start_amendment(locked_filing.id, test_actor_id, "fix", actor_role=None)

        assert orchestrator.get_filing(locked_filing.id).workflow_status == WorkflowStatus.LOCKED

    def test_amendment_cycle_refiles(self, orchestrator, locked_filing, tax_figures, test_actor_id):
        orchestrator.start_amendment(locked_filing.id, test_actor_id, "fix", actor_role=ADMIN_ROLE)
        orchestrator.file_sub_return_a(locked_filing.id, "ARN-A-000002", date(2024, 6, 18), test_actor_id)
        orchestrator.file_sub_return_b(
            locked_filing.id, "ARN-B-000002", date(2024, 6, 18), tax_figures, test_actor_id
        )
        filing = orchestrator.lock(locked_filing.id, test_actor_id)

        assert filing.workflow_status == WorkflowStatus.LOCKED
        assert filing.sub_return_a.reference_number == "ARN-A-000002"
        # A refiled after its due date
        assert filing.filing_status == FilingStatus.LATE
        assert orchestrator.steps.replay_status(filing.id) == WorkflowStatus.LOCKED

    def test_amendment_count_accumulates(self, orchestrator, locked_filing, tax_figures, test_actor_id):
        orchestrator.start_amendment(locked_filing.id, test_actor_id, "first", actor_role=ADMIN_ROLE)
        orchestrator.file_sub_return_a(locked_filing.id, "ARN-A-000002", date(2024, 6, 18), test_actor_id)
        orchestrator.file_sub_return_b(
            locked_filing.id, "ARN-B-000002", date(2024, 6, 18), tax_figures, test_actor_id
        )
        orchestrator.lock(locked_filing.id, test_actor_id)

        filing = orchestrator.start_amendment(
            locked_filing.id, test_actor_id, "second", actor_role="super_admin"
        )

        assert filing.amendment_count == 2


@pytest.fixture
def per_day_orchestrator(session, config, publisher, deterministic_clock):
    per_day = dataclasses.replace(
        config,
        penalties=PenaltySettings(
            strategy="per_day",
            late_fee_per_day=Decimal("50"),
            late_fee_cap=Decimal("5000"),
            annual_interest_rate=Decimal("18"),
        ),
    )
    return FilingWorkflowOrchestrator(
        session=session, config=per_day, publisher=publisher, clock=deterministic_clock
    )


@pytest.fixture
def late_filing(per_day_orchestrator, period_key, tax_figures, test_actor_id, deterministic_clock):
    """A filed 3 days late, B filed 10 days late."""
    filing = per_day_orchestrator.create_filing(period_key, test_actor_id)
    deterministic_clock.set_date(date(2024, 6, 14))
    per_day_orchestrator.file_sub_return_a(filing.id, "ARN-A-000001", date(2024, 6, 14), test_actor_id)
    deterministic_clock.set_date(date(2024, 6, 30))
    return per_day_orchestrator.file_sub_return_b(
        filing.id, "ARN-B-000001", date(2024, 6, 30), tax_figures, test_actor_id
    )


class TestPenalties:
    def test_default_strategy_assesses_nothing(self, orchestrator, filed_filing, test_actor_id):
        filing = orchestrator.calculate_penalties(filed_filing.id, test_actor_id)

        assert filing.late_fee == Decimal("0")
        assert filing.interest == Decimal("0")
        assert filing.late_fee_calculated
        assert filing.interest_calculated

    def test_per_day_strategy(self, per_day_orchestrator, late_filing, publisher, test_actor_id):
        filing = per_day_orchestrator.calculate_penalties(late_filing.id, test_actor_id)

        assert filing.filing_status == FilingStatus.LATE
        assert filing.late_fee == Decimal("650.00")
        assert filing.interest == Decimal("88.77")
        assert filing.workflow_status == WorkflowStatus.SUB_RETURN_B_FILED

        event = publisher.of_type(EventType.FILING_PENALTIES_CALCULATED)[0]
        assert event.payload["strategy"] == "per_day"
        assert event.payload["days_late_a"] == 3
        assert event.payload["days_late_b"] == 10

    def test_second_calculation_skipped(self, per_day_orchestrator, late_filing, publisher, test_actor_id):
        per_day_orchestrator.calculate_penalties(late_filing.id, test_actor_id)
        published = len(publisher.events)

        filing = per_day_orchestrator.calculate_penalties(late_filing.id, test_actor_id)

        step = per_day_orchestrator.list_steps(late_filing.id)[-1]
        assert step.status == StepStatus.SKIPPED
        assert step.comments == "penalties already calculated"
        assert len(publisher.events) == published
        assert filing.late_fee == Decimal("650.00")

    def test_force_recalculates(self, per_day_orchestrator, late_filing, test_actor_id):
        per_day_orchestrator.calculate_penalties(late_filing.id, test_actor_id)

        filing = per_day_orchestrator.calculate_penalties(late_filing.id, test_actor_id, force=True)

        step = per_day_orchestrator.list_steps(late_filing.id)[-1]
        assert step.status == StepStatus.COMPLETED
        assert filing.late_fee == Decimal("650.00")

    def test_not_allowed_once_locked(self, orchestrator, locked_filing, test_actor_id):
        with pytest.raises(InvalidTransitionError):
            orchestrator.calculate_penalties(locked_filing.id, test_actor_id)

    def test_amendment_resets_flags(self, orchestrator, filed_filing, test_actor_id):
        orchestrator.calculate_penalties(filed_filing.id, test_actor_id)
        orchestrator.lock(filed_filing.id, test_actor_id)

        filing = orchestrator.start_amendment(
            filed_filing.id, test_actor_id, "recheck", actor_role=ADMIN_ROLE
        )

        assert not filing.late_fee_calculated
        assert not filing.interest_calculated


class ExplodingStrategy(PenaltyStrategy):
    name = "exploding"

    def calculate(self, *, filing, as_of):
        raise RuntimeError("rate table unavailable")


class TestUnexpectedErrors:
    def test_strategy_error_leaves_failed_step(
        self, session, config, publisher, deterministic_clock, filed_filing, test_actor_id
    ):
        orchestrator = FilingWorkflowOrchestrator(
            session=session,
            config=config,
            publisher=publisher,
            clock=deterministic_clock,
            penalty_strategy=ExplodingStrategy(),
        )

        with pytest.raises(RuntimeError):
            orchestrator.calculate_penalties(filed_filing.id, test_actor_id)

        step = orchestrator.list_steps(filed_filing.id)[-1]
        assert step.step_type == StepType.CALCULATE_PENALTIES
        assert step.status == StepStatus.FAILED
        assert step.error_code == "INTERNAL_ERROR"
        assert "RuntimeError" in step.error_message
        filing = orchestrator.get_filing(filed_filing.id)
        assert not filing.late_fee_calculated
        assert filing.version == filed_filing.version
        assert not publisher.of_type(EventType.FILING_PENALTIES_CALCULATED)

    def test_datetime_filed_date_rejected(self, orchestrator, draft_filing, test_actor_id):
        with pytest.raises(ValidationError) as exc_info:
            orchestrator.file_sub_return_a(
                draft_filing.id, "ARN-A-000001", datetime(2024, 5, 10, 9, 0), test_actor_id
            )

        assert exc_info.value.field == "filed_date"
        step = orchestrator.list_steps(draft_filing.id)[-1]
        assert step.status == StepStatus.FAILED
        assert step.error_code == "VALIDATION_ERROR"
        assert orchestrator.get_filing(draft_filing.id).workflow_status == WorkflowStatus.DRAFT

    def test_lock_with_inconsistent_row_is_a_conflict(
        self, orchestrator, session, filed_filing, test_actor_id
    ):
        record = session.get(FilingRecord, filed_filing.id)
        record.clear_filed(SubReturn.A)
        session.commit()

        with pytest.raises(StorageConflictError):
            orchestrator.lock(filed_filing.id, test_actor_id)

        step = orchestrator.list_steps(filed_filing.id)[-1]
        assert step.status == StepStatus.FAILED
        assert step.error_code == "STORAGE_CONFLICT"
        assert orchestrator.get_filing(filed_filing.id).workflow_status == WorkflowStatus.SUB_RETURN_B_FILED


class TestStepSequenceRetry:
    def test_one_seq_collision_is_retried(self, orchestrator, draft_filing, test_actor_id, monkeypatch):
        real_open = orchestrator.steps.open_step
        calls = []

        def collide_once(*args, **kwargs):
            calls.append(1)
            if len(calls) == 1:
                raise IntegrityError("INSERT INTO filing_steps", {}, Exception("uq_filing_step_seq"))
            return real_open(*args, **kwargs)

        monkeypatch.setattr(orchestrator.steps, "open_step", collide_once)

        filing = orchestrator.file_sub_return_a(
            draft_filing.id, "ARN-A-000001", date(2024, 6, 10), test_actor_id
        )

        assert len(calls) == 2
        assert filing.workflow_status == WorkflowStatus.SUB_RETURN_A_FILED

    def test_repeated_collision_is_a_conflict(self, orchestrator, draft_filing, test_actor_id, monkeypatch):
        def always_collide(*args, **kwargs):
            raise IntegrityError("INSERT INTO filing_steps", {}, Exception("uq_filing_step_seq"))

        monkeypatch.setattr(orchestrator.steps, "open_step", always_collide)

        with pytest.raises(StorageConflictError):
            orchestrator.file_sub_return_a(
                draft_filing.id, "ARN-A-000001", date(2024, 6, 10), test_actor_id
            )

        assert orchestrator.get_filing(draft_filing.id).workflow_status == WorkflowStatus.DRAFT
