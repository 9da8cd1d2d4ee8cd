"""
ORM-level append-only enforcement.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | When Immutable                    | Why
------------------|-----------------------------------|------------------------------
AuditRecordModel  | ALWAYS (from creation)            | Status history is evidence
PaymentModel      | After state leaves ``active``     | Reversed/failed payments are
                  |                                   | kept as history, never edited

SQLAlchemy fires ``before_update`` / ``before_delete`` mapper events before
the SQL is sent.  The listeners below raise ``ImmutabilityViolationError``
and the flush is aborted; the database is never modified.

Payments are never deleted through the ORM at all: "deleting" a payment is
a reversal (state -> reversed), so the audit trail survives.

Usage:

    from receivables_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup, idempotent
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from receivables_kernel.exceptions import ImmutabilityViolationError
from receivables_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Audit metadata may change on otherwise frozen rows.
_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _block(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_audit_record_update(mapper, connection, target):
    _block("AuditRecord", target, "UPDATE", "Audit records are immutable and cannot be modified")


def _check_audit_record_delete(mapper, connection, target):
    _block("AuditRecord", target, "DELETE", "Audit records cannot be deleted")


def _check_payment_update(mapper, connection, target):
    """
    Block edits to a payment that was already reversed or failed.

    The transition active -> reversed/failed itself is allowed; we look at the
    attribute history to tell "being reversed now" from "was reversed before".
    """
    from receivables_kernel.models.payment import PaymentState

    state_history = get_history(target, "state")
    if state_history.deleted:
        previous = state_history.deleted[0]
    elif not state_history.added:
        previous = target.state
    else:
        previous = PaymentState.ACTIVE

    if PaymentState(previous) is PaymentState.ACTIVE:
        return

    for attr in inspect(target).attrs:
        if attr.key in _AUDIT_FIELDS:
            continue
        if attr.history.has_changes():
            _block(
                "Payment", target, "UPDATE",
                f"Cannot modify field '{attr.key}' on a {PaymentState(previous).value} payment",
                field=attr.key,
            )


def _check_payment_delete(mapper, connection, target):
    _block("Payment", target, "DELETE", "Payments are reversed, never deleted")


_LISTENERS = (
    ("AuditRecordModel", "before_update", _check_audit_record_update),
    ("AuditRecordModel", "before_delete", _check_audit_record_delete),
    ("PaymentModel", "before_update", _check_payment_update),
    ("PaymentModel", "before_delete", _check_payment_delete),
)


def _models():
    from receivables_kernel.models.audit_record import AuditRecordModel
    from receivables_kernel.models.payment import PaymentModel

    return {"AuditRecordModel": AuditRecordModel, "PaymentModel": PaymentModel}


def register_immutability_listeners() -> None:
    """Register all append-only listeners.  Safe to call more than once."""
    models = _models()
    for model_name, event_name, fn in _LISTENERS:
        model = models[model_name]
        if not event.contains(model, event_name, fn):
            event.listen(model, event_name, fn)


def unregister_immutability_listeners() -> None:
    """Remove the listeners.  TESTS ONLY."""
    models = _models()
    for model_name, event_name, fn in _LISTENERS:
        model = models[model_name]
        if event.contains(model, event_name, fn):
            event.remove(model, event_name, fn)
