"""
Module: receivables_engines.invoice_status
Responsibility:
    The invoice status state machine.  Given the current status, a status
    event and the facts it depends on (remaining balance, due date, today),
    decide the next status.

Architecture position:
    Engines -- pure calculation layer, zero I/O, no clock access.  "Today"
    is part of the ``TransitionContext`` supplied by the caller.

Invariants enforced:
    - Total: every (status, event) pair yields a ``StatusDecision``; illegal
      pairs come back with ``transitioned=False`` and a ``RejectionCode``.
      Nothing here raises.
    - ``transitioned`` is True only when ``new_status != current``.
    - A zero remaining balance always resolves a payment to PAID; over-payment
      is not a separate status.
    - Disputes never consult or change the ledger.

Transition table:

    current               | event              | condition                   | next
    ----------------------|--------------------|-----------------------------|------------------
    SENT, OVERDUE         | PAYMENT_RECEIVED   | remaining == 0              | PAID
    SENT, OVERDUE         | PAYMENT_RECEIVED   | remaining > 0               | OVERDUE if past due else SENT
    PAID                  | PAYMENT_REVERSED   | remaining > 0               | OVERDUE if past due else SENT
    SENT                  | OVERDUE_DETECTED   | past due                    | OVERDUE
    SENT, OVERDUE         | DISPUTE_RAISED     |                             | DISPUTED
    DISPUTED              | DISPUTE_RESOLVED   | target allowed (PAID needs  | target
                          |                    | remaining == 0)             |
    DRAFT                 | INVOICE_SENT       |                             | SENT
    SENT, OVERDUE,        | WRITTEN_OFF        |                             | WRITTEN_OFF
    DISPUTED              |                    |                             |
    any                   | MANUAL_OVERRIDE    | actor may override          | target

"Past due" means ``due_date < today - grace_days``; the overdue sweep selects
invoices with the same cutoff.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum

from receivables_kernel.domain.receivables import InvoiceStatus


class StatusEvent(str, Enum):
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_REVERSED = "payment_reversed"
    OVERDUE_DETECTED = "overdue_detected"
    DISPUTE_RAISED = "dispute_raised"
    DISPUTE_RESOLVED = "dispute_resolved"
    MANUAL_OVERRIDE = "manual_override"
    INVOICE_SENT = "invoice_sent"
    WRITTEN_OFF = "written_off"


class RejectionCode(str, Enum):
    NOT_APPLICABLE = "NOT_APPLICABLE"
    ALREADY_IN_STATUS = "ALREADY_IN_STATUS"
    MISSING_TARGET = "MISSING_TARGET"
    INVALID_TARGET = "INVALID_TARGET"
    OVERRIDE_NOT_AUTHORIZED = "OVERRIDE_NOT_AUTHORIZED"
    BALANCE_OUTSTANDING = "BALANCE_OUTSTANDING"
    BALANCE_STILL_SETTLED = "BALANCE_STILL_SETTLED"
    NOT_YET_DUE = "NOT_YET_DUE"


DISPUTE_RESOLUTION_TARGETS: frozenset[InvoiceStatus] = frozenset({
    InvoiceStatus.SENT,
    InvoiceStatus.OVERDUE,
    InvoiceStatus.PAID,
    InvoiceStatus.WRITTEN_OFF,
})

_OPEN = frozenset({InvoiceStatus.SENT, InvoiceStatus.OVERDUE})


@dataclass(frozen=True)
class TransitionContext:
    """Facts a transition may depend on.  ``remaining`` is never negative."""

    remaining: Decimal
    due_date: date
    today: date
    is_disputed: bool = False
    target_status: InvoiceStatus | None = None
    actor_can_override: bool = False
    grace_days: int = 0

    @property
    def overdue_cutoff(self) -> date:
        return self.today - timedelta(days=self.grace_days)

    @property
    def is_past_due(self) -> bool:
        return self.due_date < self.overdue_cutoff


@dataclass(frozen=True)
class StatusDecision:
    new_status: InvoiceStatus
    transitioned: bool
    reason_code: RejectionCode | None = None
    reason: str = ""

    @property
    def rejected(self) -> bool:
        return self.reason_code is not None


def _move(current: InvoiceStatus, target: InvoiceStatus, reason: str) -> StatusDecision:
    if target == current:
        return StatusDecision(current, False, None, f"already {current.value}")
    return StatusDecision(target, True, None, reason)


def _reject(current: InvoiceStatus, code: RejectionCode, reason: str) -> StatusDecision:
    return StatusDecision(current, False, code, reason)


def _open_status_for(context: TransitionContext) -> InvoiceStatus:
    return InvoiceStatus.OVERDUE if context.is_past_due else InvoiceStatus.SENT


def _payment_received(current: InvoiceStatus, ctx: TransitionContext) -> StatusDecision:
    if current not in _OPEN:
        return _reject(current, RejectionCode.NOT_APPLICABLE,
                       f"payments do not move a {current.value} invoice")
    if ctx.remaining <= 0:
        return _move(current, InvoiceStatus.PAID, "balance settled")
    return _move(current, _open_status_for(ctx), "partial payment; balance outstanding")


def _payment_reversed(current: InvoiceStatus, ctx: TransitionContext) -> StatusDecision:
    if current is not InvoiceStatus.PAID:
        return _reject(current, RejectionCode.NOT_APPLICABLE,
                       f"reversal only reopens paid invoices, not {current.value}")
    if ctx.remaining <= 0:
        return _reject(current, RejectionCode.BALANCE_STILL_SETTLED,
                       "remaining payments still cover the invoice")
    return _move(current, _open_status_for(ctx), "payment reversed; balance reopened")


def _overdue_detected(current: InvoiceStatus, ctx: TransitionContext) -> StatusDecision:
    if current is InvoiceStatus.OVERDUE:
        return _reject(current, RejectionCode.ALREADY_IN_STATUS, "already overdue")
    if current is not InvoiceStatus.SENT:
        return _reject(current, RejectionCode.NOT_APPLICABLE,
                       f"{current.value} invoices do not become overdue")
    if not ctx.is_past_due:
        return _reject(current, RejectionCode.NOT_YET_DUE,
                       f"due {ctx.due_date.isoformat()}, today {ctx.today.isoformat()}, "
                       f"grace {ctx.grace_days} days")
    return _move(current, InvoiceStatus.OVERDUE, "due date passed")


def _dispute_raised(current: InvoiceStatus, ctx: TransitionContext) -> StatusDecision:
    if current is InvoiceStatus.DISPUTED:
        return _reject(current, RejectionCode.ALREADY_IN_STATUS, "already disputed")
    if current not in _OPEN:
        return _reject(current, RejectionCode.NOT_APPLICABLE,
                       f"a {current.value} invoice cannot be disputed")
    return _move(current, InvoiceStatus.DISPUTED, "customer dispute raised")


def _dispute_resolved(current: InvoiceStatus, ctx: TransitionContext) -> StatusDecision:
    if current is not InvoiceStatus.DISPUTED:
        return _reject(current, RejectionCode.NOT_APPLICABLE,
                       f"{current.value} invoice is not in dispute")
    target = ctx.target_status
    if target is None:
        return _reject(current, RejectionCode.MISSING_TARGET,
                       "dispute resolution needs a target status")
    if target not in DISPUTE_RESOLUTION_TARGETS:
        return _reject(current, RejectionCode.INVALID_TARGET,
                       f"cannot resolve a dispute to {target.value}")
    if target is InvoiceStatus.PAID and ctx.remaining > 0:
        return _reject(current, RejectionCode.BALANCE_OUTSTANDING,
                       f"{ctx.remaining} still outstanding")
    return _move(current, target, "dispute resolved")


def _invoice_sent(current: InvoiceStatus, ctx: TransitionContext) -> StatusDecision:
    if current is InvoiceStatus.SENT:
        return _reject(current, RejectionCode.ALREADY_IN_STATUS, "already sent")
    if current is not InvoiceStatus.DRAFT:
        return _reject(current, RejectionCode.NOT_APPLICABLE,
                       f"only drafts can be sent, not {current.value}")
    return _move(current, InvoiceStatus.SENT, "invoice sent to customer")


def _written_off(current: InvoiceStatus, ctx: TransitionContext) -> StatusDecision:
    if current is InvoiceStatus.WRITTEN_OFF:
        return _reject(current, RejectionCode.ALREADY_IN_STATUS, "already written off")
    if current not in (_OPEN | {InvoiceStatus.DISPUTED}):
        return _reject(current, RejectionCode.NOT_APPLICABLE,
                       f"a {current.value} invoice cannot be written off")
    return _move(current, InvoiceStatus.WRITTEN_OFF, "balance written off")


def _manual_override(current: InvoiceStatus, ctx: TransitionContext) -> StatusDecision:
    if not ctx.actor_can_override:
        return _reject(current, RejectionCode.OVERRIDE_NOT_AUTHORIZED,
                       "actor may not override invoice status")
    if ctx.target_status is None:
        return _reject(current, RejectionCode.MISSING_TARGET,
                       "override needs a target status")
    if ctx.target_status == current:
        return _reject(current, RejectionCode.ALREADY_IN_STATUS,
                       f"already {current.value}")
    return _move(current, ctx.target_status, "manual override")


_HANDLERS = {
    StatusEvent.PAYMENT_RECEIVED: _payment_received,
    StatusEvent.PAYMENT_REVERSED: _payment_reversed,
    StatusEvent.OVERDUE_DETECTED: _overdue_detected,
    StatusEvent.DISPUTE_RAISED: _dispute_raised,
    StatusEvent.DISPUTE_RESOLVED: _dispute_resolved,
    StatusEvent.INVOICE_SENT: _invoice_sent,
    StatusEvent.WRITTEN_OFF: _written_off,
    StatusEvent.MANUAL_OVERRIDE: _manual_override,
}


def next_status(
    current: InvoiceStatus, event: StatusEvent, context: TransitionContext
) -> StatusDecision:
    """Decide the next status.  Never raises for known statuses and events."""
    return _HANDLERS[StatusEvent(event)](InvoiceStatus(current), context)
