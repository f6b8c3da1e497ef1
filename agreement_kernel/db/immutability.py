"""
ORM-level append-only enforcement for the status audit trail.

===============================================================================
WHY THIS EXISTS
===============================================================================

Status records are the system of record for "who changed what, when".
Current status is computed from them, and so is the history shown to
schedulers and auditors.  A record that can be edited after the fact makes
both unreliable, so the two audit tables are append-only:

    session.flush()
         |
         v
    [before_update event] --> _reject_update() --> ImmutabilityViolationError
         |                                                 ^
         v                                                 |
    [before_delete event] --> _reject_delete() ------------+
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity          | When Immutable         | Notes
----------------|------------------------|-----------------------------------
StatusRecord    | ALWAYS (from creation) | Corrections are new records
ActivityRecord  | ALWAYS (from creation) | Human-readable feed, append-only

Agreement, SubAgreement and LineItem stay mutable: they hold the
cached derived state that the sync engine rewrites.

===============================================================================
USAGE
===============================================================================

    from agreement_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event

from agreement_kernel.exceptions import ImmutabilityViolationError
from agreement_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _reject(target, operation: str) -> None:
    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=f"{entity_type} rows are append-only and cannot be {operation.lower()}d",
    )


def _reject_update(mapper, connection, target):
    """Prevent any UPDATE of an append-only record."""
    _reject(target, "UPDATE")


def _reject_delete(mapper, connection, target):
    """Prevent any DELETE of an append-only record."""
    _reject(target, "DELETE")


def _protected_models():
    from agreement_kernel.models.activity import ActivityRecord
    from agreement_kernel.models.status_record import StatusRecord

    return (StatusRecord, ActivityRecord)


def register_immutability_listeners() -> None:
    """
    Register the append-only listeners.  Safe to call more than once.

    Call this after all models are imported but before any database
    operations begin.
    """
    for model in _protected_models():
        if not event.contains(model, "before_update", _reject_update):
            event.listen(model, "before_update", _reject_update)
        if not event.contains(model, "before_delete", _reject_delete):
            event.listen(model, "before_delete", _reject_delete)


def unregister_immutability_listeners() -> None:
    """
    Remove the append-only listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for model in _protected_models():
        if event.contains(model, "before_update", _reject_update):
            event.remove(model, "before_update", _reject_update)
        if event.contains(model, "before_delete", _reject_delete):
            event.remove(model, "before_delete", _reject_delete)
