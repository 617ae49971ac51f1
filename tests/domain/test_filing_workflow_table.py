"""
Tests for the filing workflow table and the Workflow value object.
"""

import pytest

from compliance_kernel.domain.dtos import StepType, WorkflowStatus
from compliance_kernel.domain.filing_workflow import (
    FILING_WORKFLOW,
    available_steps,
    find_transition,
)
from compliance_kernel.domain.workflow import Transition, Workflow


class TestFilingTransitions:
    @pytest.mark.parametrize(
        "status, step, target",
        [
            (WorkflowStatus.DRAFT, StepType.FILE_A, WorkflowStatus.SUB_RETURN_A_FILED),
            (WorkflowStatus.SUB_RETURN_A_FILED, StepType.FILE_B, WorkflowStatus.SUB_RETURN_B_FILED),
            (WorkflowStatus.SUB_RETURN_B_FILED, StepType.LOCK, WorkflowStatus.LOCKED),
            (WorkflowStatus.LOCKED, StepType.UNLOCK, WorkflowStatus.AMENDMENT_IN_PROGRESS),
            (WorkflowStatus.AMENDMENT_IN_PROGRESS, StepType.AMENDMENT, WorkflowStatus.DRAFT),
        ],
    )
    def test_state_changing_transitions(self, status, step, target):
        transition = find_transition(status, step)

        assert transition is not None
        assert transition.to_state == target.value
        assert transition.changes_state

    @pytest.mark.parametrize(
        "status, step",
        [
            (WorkflowStatus.DRAFT, StepType.PREPARE_A),
            (WorkflowStatus.DRAFT, StepType.VALIDATE_A),
            (WorkflowStatus.SUB_RETURN_A_FILED, StepType.PREPARE_B),
            (WorkflowStatus.SUB_RETURN_A_FILED, StepType.VALIDATE_B),
            (WorkflowStatus.SUB_RETURN_A_FILED, StepType.CALCULATE_PENALTIES),
            (WorkflowStatus.SUB_RETURN_B_FILED, StepType.CALCULATE_PENALTIES),
        ],
    )
    def test_self_loop_steps_keep_status(self, status, step):
        transition = find_transition(status, step)

        assert transition is not None
        assert not transition.changes_state

    @pytest.mark.parametrize(
        "status, step",
        [
            (WorkflowStatus.DRAFT, StepType.FILE_B),
            (WorkflowStatus.DRAFT, StepType.LOCK),
            (WorkflowStatus.SUB_RETURN_A_FILED, StepType.FILE_A),
            (WorkflowStatus.LOCKED, StepType.FILE_A),
            (WorkflowStatus.LOCKED, StepType.CALCULATE_PENALTIES),
            (WorkflowStatus.LOCKED, StepType.AMENDMENT),
            (WorkflowStatus.SUB_RETURN_B_FILED, StepType.UNLOCK),
        ],
    )
    def test_disallowed_steps(self, status, step):
        assert find_transition(status, step) is None

    def test_privileged_transitions(self):
        privileged = {t.action for t in FILING_WORKFLOW.transitions if t.requires_privilege}

        assert privileged == {StepType.UNLOCK.value, StepType.AMENDMENT.value}

    def test_locked_is_terminal(self):
        assert FILING_WORKFLOW.terminal_states == (WorkflowStatus.LOCKED.value,)

    def test_available_steps_from_locked(self):
        assert available_steps(WorkflowStatus.LOCKED) == [StepType.UNLOCK]

    def test_available_steps_from_draft(self):
        assert available_steps("draft") == [
            StepType.PREPARE_A,
            StepType.VALIDATE_A,
            StepType.FILE_A,
        ]


class TestWorkflowValidation:
    def test_unknown_initial_state_rejected(self):
        with pytest.raises(ValueError):
            Workflow(
                name="broken",
                description="",
                initial_state="missing",
                states=("a",),
                transitions=(),
            )

    def test_transition_to_unknown_state_rejected(self):
        with pytest.raises(ValueError):
            Workflow(
                name="broken",
                description="",
                initial_state="a",
                states=("a",),
                transitions=(Transition("a", "b", action="go"),),
            )

    def test_duplicate_transition_rejected(self):
        with pytest.raises(ValueError):
            Workflow(
                name="broken",
                description="",
                initial_state="a",
                states=("a", "b"),
                transitions=(
                    Transition("a", "b", action="go"),
                    Transition("a", "a", action="go"),
                ),
            )

    def test_sources_of(self):
        assert set(FILING_WORKFLOW.sources_of(StepType.CALCULATE_PENALTIES.value)) == {
            WorkflowStatus.SUB_RETURN_A_FILED.value,
            WorkflowStatus.SUB_RETURN_B_FILED.value,
        }
