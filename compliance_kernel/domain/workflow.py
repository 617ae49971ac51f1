"""
Canonical workflow types (``compliance_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for workflow state machines.  Guard, Transition and
Workflow are defined once; the filing lifecycle table is declared with
them in ``compliance_kernel.domain.filing_workflow``.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* A (from_state, action) pair maps to at most one transition.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the orchestrator does.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid step in a workflow.

    Contract: frozen.  ``from_state == to_state`` marks a step that is
    recorded in the ledger without changing status (prepare, validate).
    ``requires_privilege=True`` gates the step on an elevated actor role.
    """
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    requires_privilege: bool = False

    @property
    def changes_state(self) -> bool:
        return self.from_state != self.to_state


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state} not in states"
            )
        seen: set[tuple[str, str]] = set()
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.action} references unknown state"
                )
            if (t.from_state, t.action) in seen:
                raise ValueError(
                    f"Workflow {self.name}: duplicate transition {t.action} from {t.from_state}"
                )
            seen.add((t.from_state, t.action))

    def find(self, from_state: str, action: str) -> Transition | None:
        """Return the transition for ``action`` out of ``from_state``, if any."""
        for t in self.transitions:
            if t.from_state == from_state and t.action == action:
                return t
        return None

    def actions_from(self, state: str) -> tuple[str, ...]:
        """Actions available from ``state``, in declaration order."""
        return tuple(t.action for t in self.transitions if t.from_state == state)

    def sources_of(self, action: str) -> tuple[str, ...]:
        """States from which ``action`` may be taken."""
        return tuple(t.from_state for t in self.transitions if t.action == action)
