"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

A closed cash session is the employee's signed statement of what was in the
drawer.  Ledger rows are the evidence behind it.  Neither may be edited after
the fact: corrections happen by recording new adjustment transactions in a
new session, leaving a visible trail.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
Listeners registered here intercept ORM flushes and raise
ImmutabilityViolationError before any SQL is sent:

    session.flush()
         |
         v
    [before_update] --> _check_*_update() --> ImmutabilityViolationError
         |
         v
    [before_delete] --> _check_*_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Guarded statements issued with ``session.execute(update(...))`` do not pass
through mapper events; those carry their own ``WHERE status = 'open'``
predicate instead.

===============================================================================
PROTECTION KINDS
===============================================================================

Kind            | Registered with            | Rule
----------------|----------------------------|----------------------------------
Append-only     | @append_only(...)          | No UPDATE, no DELETE, ever
Frozen-after    | @frozen_after(...)         | No UPDATE/DELETE once the status
                |                            | attribute holds the frozen value

Models are registered by the module that defines them (pos_cash.orm), so the
kernel never imports upward.

===============================================================================
DESIGN DECISIONS
===============================================================================

1. updated_at / updated_by_id may always change.  They are audit metadata,
   not cash data.

2. Frozen-after checks the value the row HAD, not the value it is getting,
   so the transition open -> closed itself is allowed.

===============================================================================
USAGE
===============================================================================

    from pos_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup, after ORM import

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from pos_kernel.exceptions import ImmutabilityViolationError
from pos_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

AUDIT_METADATA_FIELDS = frozenset({"updated_at", "updated_by_id"})

# model class -> entity type label
_APPEND_ONLY: dict[type, str] = {}
# model class -> (status attribute, frozen value, entity type label)
_FROZEN_AFTER: dict[type, tuple[str, str, str]] = {}


def append_only(entity_type: str):
    """Class decorator: rows of this model can never be updated or deleted."""

    def decorator(cls):
        _APPEND_ONLY[cls] = entity_type
        return cls

    return decorator


def frozen_after(status_attr: str, frozen_value: str, entity_type: str):
    """Class decorator: rows become immutable once ``status_attr == frozen_value``."""

    def decorator(cls):
        _FROZEN_AFTER[cls] = (status_attr, frozen_value, entity_type)
        return cls

    return decorator


def _plain(value):
    return getattr(value, "value", value)


def _changed_fields(target) -> set[str]:
    """Attribute keys with pending changes, excluding audit metadata."""
    state = inspect(target)
    changed = {
        attr.key
        for attr in state.attrs
        if attr.history.has_changes()
    }
    return changed - AUDIT_METADATA_FIELDS


def _blocked(entity_type: str, target, operation: str, reason: str):
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
        reason=reason,
    )


# =============================================================================
# Append-only models
# =============================================================================


def _check_append_only_update(mapper, connection, target):
    entity_type = _APPEND_ONLY.get(type(target))
    if entity_type is None:
        return
    if not _changed_fields(target):
        return
    _blocked(entity_type, target, "UPDATE", f"{entity_type} records are append-only")


def _check_append_only_delete(mapper, connection, target):
    entity_type = _APPEND_ONLY.get(type(target))
    if entity_type is None:
        return
    _blocked(entity_type, target, "DELETE", f"{entity_type} records cannot be deleted")


# =============================================================================
# Frozen-after-status models
# =============================================================================


def _previous_status(target, status_attr: str):
    history = get_history(target, status_attr)
    if history.deleted:
        return _plain(history.deleted[0])
    return _plain(getattr(target, status_attr))


def _check_frozen_update(mapper, connection, target):
    rule = _FROZEN_AFTER.get(type(target))
    if rule is None:
        return
    status_attr, frozen_value, entity_type = rule
    if _previous_status(target, status_attr) != frozen_value:
        return
    if not _changed_fields(target):
        return
    _blocked(entity_type, target, "UPDATE", f"{entity_type} is {frozen_value} and immutable")


def _check_frozen_delete(mapper, connection, target):
    rule = _FROZEN_AFTER.get(type(target))
    if rule is None:
        return
    status_attr, frozen_value, entity_type = rule
    if _previous_status(target, status_attr) == frozen_value:
        _blocked(entity_type, target, "DELETE", f"{entity_type} is {frozen_value} and cannot be deleted")


# =============================================================================
# Registration
# =============================================================================


def register_immutability_listeners():
    """
    Register immutability listeners for every decorated model.

    Call after all ORM modules are imported (decorators run at import time).
    Registering twice is harmless.
    """
    for model in _APPEND_ONLY:
        _safe_add_listener(model, "before_update", _check_append_only_update)
        _safe_add_listener(model, "before_delete", _check_append_only_delete)
    for model in _FROZEN_AFTER:
        _safe_add_listener(model, "before_update", _check_frozen_update)
        _safe_add_listener(model, "before_delete", _check_frozen_delete)

    logger.debug(
        "immutability_listeners_registered",
        extra={
            "append_only": sorted(_APPEND_ONLY.values()),
            "frozen_after": sorted(rule[2] for rule in _FROZEN_AFTER.values()),
        },
    )


def _safe_add_listener(target, event_name, listener_fn):
    if not event.contains(target, event_name, listener_fn):
        event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally violate the rules.
    """
    for model in _APPEND_ONLY:
        _safe_remove_listener(model, "before_update", _check_append_only_update)
        _safe_remove_listener(model, "before_delete", _check_append_only_delete)
    for model in _FROZEN_AFTER:
        _safe_remove_listener(model, "before_update", _check_frozen_update)
        _safe_remove_listener(model, "before_delete", _check_frozen_delete)
