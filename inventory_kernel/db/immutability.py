"""
ORM-Level Immutability Enforcement for the movement ledger.

===============================================================================
WHAT IS PROTECTED
===============================================================================

Movement records are append-only facts.  Once inserted:

Entity            | Mutable fields                  | Delete
------------------|---------------------------------|--------
MovementRecord    | status, BORROW only, OPEN->CLOSED | never
LedgerGuard       | version, strictly increasing    | never

Every other column is write-once.  The CHECK (quantity > 0) constraint on
movement_records backs the positive-quantity rule at the database level.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires events before UPDATE/DELETE operations reach the database:

    session.flush()
         |
         v
    [before_update] --> _check_movement_update() --> ImmutabilityViolationError
         |
         v
    [before_delete] --> _check_movement_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

A failed check aborts the flush; the database is never modified.

===============================================================================
USAGE
===============================================================================

    from inventory_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
    # ... do forbidden operation ...
    register_immutability_listeners()

===============================================================================
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from inventory_kernel.exceptions import ImmutabilityViolationError
from inventory_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _status_value(value) -> str:
    return value.value if hasattr(value, "value") else str(value)


def _blocked(entity_type: str, entity_id: str, operation: str, field: str | None, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
            "field": field,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type, entity_id=entity_id, reason=reason
    )


def _check_movement_update(mapper, connection, target):
    """
    Allow only the BORROW status transition OPEN -> CLOSED.

    Any other changed attribute, a status change on a non-BORROW record,
    or a CLOSED -> OPEN transition is rejected.
    """
    entity_id = str(target.id)
    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key == "status" or not attr.history.has_changes():
            continue
        raise _blocked(
            "MovementRecord", entity_id, "UPDATE", attr.key,
            f"Cannot modify field '{attr.key}' on a movement record",
        )

    status_history = get_history(target, "status")
    if not status_history.has_changes():
        return

    if _status_value(target.kind) != "borrow":
        raise _blocked(
            "MovementRecord", entity_id, "UPDATE", "status",
            "Only BORROW records carry a status",
        )

    old = status_history.deleted[0] if status_history.deleted else None
    new = status_history.added[0] if status_history.added else None
    if _status_value(old) != "open" or _status_value(new) != "closed":
        raise _blocked(
            "MovementRecord", entity_id, "UPDATE", "status",
            f"Borrow status may only move open -> closed, not {old} -> {new}",
        )


def _check_movement_delete(mapper, connection, target):
    raise _blocked(
        "MovementRecord", str(target.id), "DELETE", None,
        "Movement records cannot be deleted",
    )


def _check_guard_update(mapper, connection, target):
    entity_id = target.guard_key
    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key == "version" or not attr.history.has_changes():
            continue
        raise _blocked(
            "LedgerGuard", entity_id, "UPDATE", attr.key,
            f"Cannot modify field '{attr.key}' on a ledger guard",
        )
    history = get_history(target, "version")
    if history.deleted and history.added and history.added[0] <= history.deleted[0]:
        raise _blocked(
            "LedgerGuard", entity_id, "UPDATE", "version",
            "Guard version must increase",
        )


def _check_guard_delete(mapper, connection, target):
    raise _blocked(
        "LedgerGuard", target.guard_key, "DELETE", None,
        "Ledger guards cannot be deleted",
    )


_LISTENERS = (
    ("MovementRecordModel", "before_update", _check_movement_update),
    ("MovementRecordModel", "before_delete", _check_movement_delete),
    ("LedgerGuardModel", "before_update", _check_guard_update),
    ("LedgerGuardModel", "before_delete", _check_guard_delete),
)


def _models():
    from inventory_kernel.models.guard import LedgerGuardModel
    from inventory_kernel.models.movement import MovementRecordModel

    return {
        "MovementRecordModel": MovementRecordModel,
        "LedgerGuardModel": LedgerGuardModel,
    }


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners (idempotent).

    Call after models are importable and before any database operations.
    """
    models = _models()
    for model_name, event_name, listener_fn in _LISTENERS:
        target = models[model_name]
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    models = _models()
    for model_name, event_name, listener_fn in _LISTENERS:
        target = models[model_name]
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
