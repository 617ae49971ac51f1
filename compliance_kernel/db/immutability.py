"""
ORM-Level Immutability Enforcement.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners registered here check two invariants:

    session.flush()
         |
         v
    [before_update] --> _check_*_immutability() --> ImmutabilityViolationError
         |
         v
    [before_delete] --> _check_*_delete() --------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | When Immutable                        | Exception
------------------|---------------------------------------|--------------------------
FilingRecord      | While is_locked stays True            | Unlock (is_locked -> False)
FilingRecord      | DELETE always                         | none
FilingStep        | After status is terminal              | none
FilingStep        | DELETE always                         | none

updated_at / updated_by_id / version are bookkeeping columns and may always
change.

===============================================================================
USAGE
===============================================================================

    from compliance_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from compliance_kernel.exceptions import ImmutabilityViolationError
from compliance_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

ALWAYS_MUTABLE_FIELDS = frozenset({"updated_at", "updated_by_id", "version"})

TERMINAL_STEP_STATUSES = frozenset({"completed", "failed", "skipped"})


def _block(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _first_changed_field(target) -> str | None:
    for attr in inspect(target).attrs:
        if attr.key in ALWAYS_MUTABLE_FIELDS:
            continue
        if attr.history.has_changes():
            return attr.key
    return None


def _check_filing_record_immutability(mapper, connection, target):
    """
    Prevent field changes on a locked FilingRecord.

    A record that was locked before this flush and stays locked may not
    change.  The unlock transition flips is_locked to False in the same
    flush that clears the lock fields, which is allowed.
    """
    from compliance_kernel.models.filing import FilingRecord

    if not isinstance(target, FilingRecord):
        return

    lock_history = get_history(target, "is_locked")
    if lock_history.deleted:
        was_locked = bool(lock_history.deleted[0])
        stays_locked = bool(target.is_locked)
    else:
        was_locked = bool(target.is_locked)
        stays_locked = was_locked

    if not (was_locked and stays_locked):
        return

    field = _first_changed_field(target)
    if field is not None:
        _block(
            "FilingRecord",
            target.id,
            "UPDATE",
            f"Cannot modify field '{field}' on locked filing record",
            field=field,
        )


def _check_filing_record_delete(mapper, connection, target):
    """Filing records are never physically deleted."""
    from compliance_kernel.models.filing import FilingRecord

    if not isinstance(target, FilingRecord):
        return

    _block("FilingRecord", target.id, "DELETE", "Filing records cannot be deleted")


def _check_filing_step_immutability(mapper, connection, target):
    """
    Prevent updates to step ledger entries after they reach a terminal status.

    The single pending/in_progress -> terminal update is allowed.
    """
    from compliance_kernel.models.filing_step import FilingStep

    if not isinstance(target, FilingStep):
        return

    status_history = get_history(target, "status")
    if status_history.deleted:
        previous = status_history.deleted[0]
    else:
        previous = target.status

    if str(getattr(previous, "value", previous)) not in TERMINAL_STEP_STATUSES:
        return

    field = _first_changed_field(target)
    if field is not None:
        _block(
            "FilingStep",
            target.id,
            "UPDATE",
            f"Cannot modify field '{field}' on finalized step",
            field=field,
        )


def _check_filing_step_delete(mapper, connection, target):
    """Step ledger entries are append-only."""
    from compliance_kernel.models.filing_step import FilingStep

    if not isinstance(target, FilingStep):
        return

    _block("FilingStep", target.id, "DELETE", "Step ledger entries cannot be deleted")


_LISTENERS = (
    ("FilingRecord", "before_update", _check_filing_record_immutability),
    ("FilingRecord", "before_delete", _check_filing_record_delete),
    ("FilingStep", "before_update", _check_filing_step_immutability),
    ("FilingStep", "before_delete", _check_filing_step_delete),
)


def _models():
    from compliance_kernel.models.filing import FilingRecord
    from compliance_kernel.models.filing_step import FilingStep

    return {"FilingRecord": FilingRecord, "FilingStep": FilingStep}


def register_immutability_listeners():
    """Register all immutability enforcement event listeners (idempotent)."""
    models = _models()
    for model_name, event_name, fn in _LISTENERS:
        target = models[model_name]
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that must violate immutability rules
    intentionally.
    """
    models = _models()
    for model_name, event_name, fn in _LISTENERS:
        target = models[model_name]
        if event.contains(target, event_name, fn):
            event.remove(target, event_name, fn)
