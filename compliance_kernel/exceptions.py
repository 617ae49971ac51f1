"""
Typed Exception Hierarchy for the Compliance Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ComplianceKernelError:

    ComplianceKernelError (base)
    |
    +-- ValidationError
    |   +-- PrivilegeRequiredError
    |
    +-- WorkflowError
    |   +-- InvalidTransitionError
    |
    +-- IdentityError
    |   +-- AlreadyExistsError
    |   |   +-- FilingAlreadyExistsError
    |   +-- NotFoundError
    |       +-- FilingNotFoundError
    |       +-- ReconciliationNotFoundError
    |
    +-- ConcurrencyError
    |   +-- StorageConflictError
    |
    +-- UpstreamError
    |   +-- UpstreamTimeoutError
    |   +-- UpstreamUnavailableError
    |
    +-- AuditError
    |   +-- StepAlreadyFinalizedError
    |   +-- AuditOrderViolationError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                     | When Raised
----------------|--------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR         | Missing or malformed input (not retried)
                | PRIVILEGE_REQUIRED       | Unlock/amend without an elevated role
----------------|--------------------------|-----------------------------------------
Workflow        | INVALID_TRANSITION       | Current state disallows the step
----------------|--------------------------|-----------------------------------------
Identity        | ALREADY_EXISTS           | Second record for the same period key
                | NOT_FOUND                | Filing / reconciliation does not exist
----------------|--------------------------|-----------------------------------------
Concurrency     | STORAGE_CONFLICT         | Concurrent write lost (retry once)
----------------|--------------------------|-----------------------------------------
Upstream        | UPSTREAM_TIMEOUT         | Source ledger / publisher exceeded budget
                | UPSTREAM_UNAVAILABLE     | Collaborator raised instead of answering
----------------|--------------------------|-----------------------------------------
Audit           | STEP_ALREADY_FINALIZED   | Second terminal update of a step
                | AUDIT_ORDER_VIOLATION    | Completed steps out of table order
----------------|--------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION   | Changing a locked filing / terminal step

===============================================================================
HANDLING PATTERNS
===============================================================================

    try:
        orchestrator.lock(filing_id, actor_id, reason="period closed")
    except InvalidTransitionError as e:
        # Re-fetch the filing and decide
        return {"error": e.code, "current": e.current_status}
    except StorageConflictError:
        # Safe to retry once after re-reading state
        ...

A failed workflow operation never changes ``workflow_status``; the
corresponding step ledger entry carries the exception ``code`` and message.
"""


class ComplianceKernelError(Exception):
    """
    Base exception for all compliance kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "COMPLIANCE_KERNEL_ERROR"


# Validation exceptions


class ValidationError(ComplianceKernelError):
    """Missing or malformed input. Caller's fault, never retried."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class PrivilegeRequiredError(ValidationError):
    """Operation requires an elevated actor role."""

    code: str = "PRIVILEGE_REQUIRED"

    def __init__(self, operation: str, actor_role: str | None):
        self.operation = operation
        self.actor_role = actor_role
        super().__init__(
            f"Operation {operation} requires an elevated role, got {actor_role!r}",
            field="actor_role",
        )


# Workflow exceptions


class WorkflowError(ComplianceKernelError):
    """Base exception for state machine errors."""

    code: str = "WORKFLOW_ERROR"


class InvalidTransitionError(WorkflowError):
    """The filing's current state does not permit the requested step."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, filing_id: str, current_status: str, step_type: str):
        self.filing_id = filing_id
        self.current_status = current_status
        self.step_type = step_type
        super().__init__(
            f"Step {step_type} not allowed for filing {filing_id} "
            f"in status {current_status}"
        )


# Identity exceptions


class IdentityError(ComplianceKernelError):
    """Base exception for record identity errors."""

    code: str = "IDENTITY_ERROR"


class AlreadyExistsError(IdentityError):
    """A record already exists for the given key."""

    code: str = "ALREADY_EXISTS"

    def __init__(self, entity_type: str, key: str):
        self.entity_type = entity_type
        self.key = key
        super().__init__(f"{entity_type} already exists for {key}")


class FilingAlreadyExistsError(AlreadyExistsError):
    """A filing record already exists for the period key."""

    def __init__(self, period_key: str):
        self.period_key = period_key
        super().__init__("FilingRecord", period_key)


class NotFoundError(IdentityError):
    """The requested record does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, key: str):
        self.entity_type = entity_type
        self.key = key
        super().__init__(f"{entity_type} not found: {key}")


class FilingNotFoundError(NotFoundError):
    """Filing record does not exist."""

    def __init__(self, filing_id: str):
        self.filing_id = filing_id
        super().__init__("FilingRecord", filing_id)


class ReconciliationNotFoundError(NotFoundError):
    """Reconciliation record does not exist for the period key."""

    def __init__(self, period_key: str):
        self.period_key = period_key
        super().__init__("CreditReconciliation", period_key)


# Concurrency exceptions


class ConcurrencyError(ComplianceKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class StorageConflictError(ConcurrencyError):
    """A concurrent write won the race. Safe to retry once after re-reading."""

    code: str = "STORAGE_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Storage conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Upstream collaborator exceptions


class UpstreamError(ComplianceKernelError):
    """Base exception for external collaborator failures."""

    code: str = "UPSTREAM_ERROR"


class UpstreamTimeoutError(UpstreamError):
    """Source ledger or event publisher did not answer within its budget."""

    code: str = "UPSTREAM_TIMEOUT"

    def __init__(self, collaborator: str, timeout_seconds: float):
        self.collaborator = collaborator
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"{collaborator} did not respond within {timeout_seconds}s"
        )


class UpstreamUnavailableError(UpstreamError):
    """Collaborator raised instead of answering."""

    code: str = "UPSTREAM_UNAVAILABLE"

    def __init__(self, collaborator: str, cause: str):
        self.collaborator = collaborator
        self.cause = cause
        super().__init__(f"{collaborator} unavailable: {cause}")


# Audit exceptions


class AuditError(ComplianceKernelError):
    """Base exception for step ledger errors."""

    code: str = "AUDIT_ERROR"


class StepAlreadyFinalizedError(AuditError):
    """A step ledger entry already reached a terminal status."""

    code: str = "STEP_ALREADY_FINALIZED"

    def __init__(self, step_id: str, status: str):
        self.step_id = step_id
        self.status = status
        super().__init__(f"Step {step_id} already finalized as {status}")


class AuditOrderViolationError(AuditError):
    """Completed transition steps do not follow the workflow order."""

    code: str = "AUDIT_ORDER_VIOLATION"

    def __init__(self, filing_id: str, seq: int, step_type: str, replayed_status: str):
        self.filing_id = filing_id
        self.seq = seq
        self.step_type = step_type
        self.replayed_status = replayed_status
        super().__init__(
            f"Filing {filing_id} step #{seq} ({step_type}) cannot follow "
            f"status {replayed_status}"
        )


# Immutability exceptions


class ImmutabilityError(ComplianceKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Locked filing records and terminal step ledger entries are immutable.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
