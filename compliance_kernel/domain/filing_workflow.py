"""Filing Workflow.

State machine for a period's two linked sub-returns.  Self-loop transitions
(prepare, validate, penalty calculation) are recorded in the step ledger but
leave ``workflow_status`` unchanged.
"""

from compliance_kernel.domain.dtos import StepType, WorkflowStatus
from compliance_kernel.domain.workflow import Guard, Transition, Workflow
from compliance_kernel.logging_config import get_logger

logger = get_logger("domain.filing_workflow")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

SUB_RETURN_A_DETAILS = Guard(
    name="sub_return_a_details",
    description="Reference number and filed date supplied for sub-return A",
)

SUB_RETURN_B_DETAILS = Guard(
    name="sub_return_b_details",
    description="Reference number, filed date and tax figures supplied for sub-return B",
)

BOTH_SUB_RETURNS_FILED = Guard(
    name="both_sub_returns_filed",
    description="Sub-returns A and B are both filed",
)

UNLOCK_REASON = Guard(
    name="unlock_reason",
    description="Non-empty reason supplied by an elevated actor",
)

AMENDMENT_RECORDED = Guard(
    name="amendment_recorded",
    description="Amendment reason recorded as a step",
)

logger.debug(
    "filing_workflow_guards_defined",
    extra={
        "guards": [
            SUB_RETURN_A_DETAILS.name,
            SUB_RETURN_B_DETAILS.name,
            BOTH_SUB_RETURNS_FILED.name,
            UNLOCK_REASON.name,
            AMENDMENT_RECORDED.name,
        ],
    },
)


# -----------------------------------------------------------------------------
# Filing Workflow
# -----------------------------------------------------------------------------

_DRAFT = WorkflowStatus.DRAFT.value
_A_FILED = WorkflowStatus.SUB_RETURN_A_FILED.value
_B_FILED = WorkflowStatus.SUB_RETURN_B_FILED.value
_LOCKED = WorkflowStatus.LOCKED.value
_AMENDING = WorkflowStatus.AMENDMENT_IN_PROGRESS.value

FILING_WORKFLOW = Workflow(
    name="periodic_filing",
    description="Sub-return A, sub-return B, lock, and the amendment back-edge",
    initial_state=_DRAFT,
    states=(_DRAFT, _A_FILED, _B_FILED, _LOCKED, _AMENDING),
    transitions=(
        Transition(_DRAFT, _DRAFT, action=StepType.PREPARE_A.value),
        Transition(_DRAFT, _DRAFT, action=StepType.VALIDATE_A.value),
        Transition(_DRAFT, _A_FILED, action=StepType.FILE_A.value, guard=SUB_RETURN_A_DETAILS),
        Transition(_A_FILED, _A_FILED, action=StepType.PREPARE_B.value),
        Transition(_A_FILED, _A_FILED, action=StepType.VALIDATE_B.value),
        Transition(_A_FILED, _A_FILED, action=StepType.CALCULATE_PENALTIES.value),
        Transition(_A_FILED, _B_FILED, action=StepType.FILE_B.value, guard=SUB_RETURN_B_DETAILS),
        Transition(_B_FILED, _B_FILED, action=StepType.CALCULATE_PENALTIES.value),
        Transition(_B_FILED, _LOCKED, action=StepType.LOCK.value, guard=BOTH_SUB_RETURNS_FILED),
        Transition(
            _LOCKED,
            _AMENDING,
            action=StepType.UNLOCK.value,
            guard=UNLOCK_REASON,
            requires_privilege=True,
        ),
        Transition(
            _AMENDING,
            _DRAFT,
            action=StepType.AMENDMENT.value,
            guard=AMENDMENT_RECORDED,
            requires_privilege=True,
        ),
    ),
    terminal_states=(_LOCKED,),
)


def find_transition(status: WorkflowStatus | str, step_type: StepType | str) -> Transition | None:
    """Look up the filing transition for ``step_type`` out of ``status``."""
    return FILING_WORKFLOW.find(
        getattr(status, "value", status), getattr(step_type, "value", step_type)
    )


def available_steps(status: WorkflowStatus | str) -> list[StepType]:
    """Step types allowed from ``status``, in table order."""
    return [StepType(a) for a in FILING_WORKFLOW.actions_from(getattr(status, "value", status))]
