"""
receivables_services.payment_workflow -- PaymentWorkflowService.

Responsibility:
    Drives one invoice through the status state machine in response to a
    payment-side event.  One call is one unit of work:

        lock invoice -> tenant check -> payment side effect -> ledger
        -> status decision -> compare-and-set write -> audit record

    and everything commits or rolls back together.

Architecture position:
    Services -- stateful orchestration over engines + kernel.  Owns the
    transaction boundary (``transaction_scope``); the engines it calls are
    pure and the kernel services it calls only flush.

Invariants enforced:
    - Tenant isolation: an actor never reads or writes another tenant's
      invoice.  The check happens before any mutation.
    - Idempotence: replaying an event finds the invoice already in the
      target status and changes nothing.
    - Batch isolation: each batch event runs in its own transaction; a
      failure fills its own slot and the batch continues.
    - ``reconcile`` is read-only.

Failure modes:
    - AccessDeniedError on cross-tenant access (logged as a warning).
    - PaymentNotFoundError / InvoiceNotFoundError for unknown ids.
    - ConcurrencyConflictError when the invoice changed between read and
      write; retried once, then surfaced.
    - IllegalTransitionError only when the caller passes
      ``require_transition=True``.
    - BatchTooLargeError before any batch work begins.

Usage:
    service = PaymentWorkflowService(session_factory, clock=clock,
                                     settings=config.settings,
                                     calendars=config.calendars)
    result = service.process_single(payment_id, "received", actor)
"""

from __future__ import annotations

import time
from collections import Counter
from collections.abc import Callable, Mapping, Sequence
from datetime import date, datetime
from typing import Any, TypeVar
from uuid import UUID, uuid4
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from receivables_config.schema import TenantCalendars, WorkflowSettings
from receivables_engines.business_calendar import CalendarConfig
from receivables_engines.invoice_status import (
    RejectionCode,
    StatusDecision,
    StatusEvent,
    TransitionContext,
    next_status,
)
from receivables_engines.ledger import LedgerSummary, summarize
from receivables_engines.reconciliation import (
    PaymentLine,
    ReconciliationResult,
    reconcile_invoice,
)
from receivables_engines.workflow_rules import compliance_flags, recommended_actions
from receivables_kernel.db.engine import SessionFactory, read_only_scope, transaction_scope
from receivables_kernel.domain.clock import Clock, SystemClock
from receivables_kernel.domain.receivables import (
    Actor,
    InvoiceStatus,
    PaymentMethod,
    PaymentState,
    WorkflowEvent,
    WorkflowEventKind,
)
from receivables_kernel.domain.values import Money
from receivables_kernel.exceptions import (
    AccessDeniedError,
    BatchTooLargeError,
    ConcurrencyConflictError,
    CurrencyMismatchError,
    IllegalTransitionError,
    InvoiceNotFoundError,
    MissingFieldError,
    PaymentNotFoundError,
    PaymentValidationError,
    UnsupportedNotificationStatusError,
    error_code_for,
    is_transient,
)
from receivables_kernel.logging_config import LogContext, get_logger
from receivables_kernel.models.invoice import InvoiceModel
from receivables_kernel.models.payment import PaymentModel
from receivables_kernel.selectors.invoice_selector import InvoiceSelector
from receivables_kernel.services.audit_sink import AuditSink
from receivables_kernel.services.invoice_status_writer import InvoiceStatusWriter
from receivables_services.workflow_types import (
    BatchItemResult,
    BatchItemStatus,
    BatchResult,
    NotificationStatus,
    PaymentNotification,
    WorkflowResult,
)

logger = get_logger("services.payment_workflow")

T = TypeVar("T")

# First attempt plus one retry after a version conflict.
MAX_ATTEMPTS = 2

_RECEIPT_KINDS = frozenset({
    WorkflowEventKind.RECEIVED,
    WorkflowEventKind.COMPLETED,
    WorkflowEventKind.PARTIAL,
})

_PAYMENT_STATE_FOR_KIND = {
    WorkflowEventKind.REVERSED: PaymentState.REVERSED,
    WorkflowEventKind.FAILED: PaymentState.FAILED,
}

_KIND_FOR_NOTIFICATION = {
    NotificationStatus.SUCCESS: WorkflowEventKind.RECEIVED,
    NotificationStatus.FAILED: WorkflowEventKind.FAILED,
}


def status_event_for(
    kind: WorkflowEventKind,
    current: InvoiceStatus,
    ledger: LedgerSummary,
) -> StatusEvent | None:
    """
    Map a payment-side event kind onto a state machine event.

    Returns None when the kind does not apply to the invoice at all
    (``overdue_cleared`` on an invoice that is not overdue).
    """
    if kind in _RECEIPT_KINDS:
        return StatusEvent.PAYMENT_RECEIVED
    if kind is WorkflowEventKind.OVERDUE_CLEARED:
        if current is InvoiceStatus.OVERDUE:
            return StatusEvent.PAYMENT_RECEIVED
        return None
    if kind in _PAYMENT_STATE_FOR_KIND:
        return StatusEvent.PAYMENT_REVERSED
    # corrected: direction depends on where the corrected ledger lands
    if ledger.is_fully_paid:
        return StatusEvent.PAYMENT_RECEIVED
    return StatusEvent.PAYMENT_REVERSED


def ensure_tenant_access(invoice: InvoiceModel, tenant_id: UUID | Actor) -> None:
    """Raise AccessDeniedError unless ``invoice`` belongs to the tenant."""
    if isinstance(tenant_id, Actor):
        tenant_id = tenant_id.tenant_id
    if invoice.tenant_id != tenant_id:
        logger.warning(
            "tenant_access_denied",
            extra={
                "invoice_id": str(invoice.id),
                "actor_tenant_id": str(tenant_id),
            },
        )
        raise AccessDeniedError(str(tenant_id), f"invoice:{invoice.id}")


class PaymentWorkflowService:
    """
    Orchestrates payment events against invoices.

    The service holds no per-call state; one instance may be shared by the
    cron runner, the webhook endpoint and the recording services.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        clock: Clock | None = None,
        settings: WorkflowSettings | None = None,
        calendars: TenantCalendars | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._settings = settings or WorkflowSettings()
        self._calendars = calendars or TenantCalendars()

    @property
    def session_factory(self) -> SessionFactory:
        return self._session_factory

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def settings(self) -> WorkflowSettings:
        return self._settings

    def calendar_for(self, tenant_id: UUID) -> CalendarConfig:
        return self._calendars.for_tenant(tenant_id)

    def local_today(self, tenant_id: UUID) -> date:
        """Today's date in the tenant's business timezone."""
        zone = self.calendar_for(tenant_id).timezone
        try:
            ZoneInfo(zone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(
                "tenant_timezone_unusable",
                extra={"tenant_id": str(tenant_id), "timezone": zone},
            )
            zone = self._settings.default_timezone
        return self._clock.today_in(zone)

    # ------------------------------------------------------------------
    # Single event
    # ------------------------------------------------------------------

    def process_single(
        self,
        payment_id: UUID,
        kind: WorkflowEventKind | str,
        actor: Actor,
        reason: str = "",
        metadata: Mapping[str, Any] | None = None,
        require_transition: bool = False,
    ) -> WorkflowResult:
        """
        Apply one payment event in its own transaction.

        Args:
            payment_id: The payment the event concerns.
            kind: Workflow event kind (enum or its string value).
            actor: Caller identity; scopes the call to ``actor.tenant_id``.
            reason: Free text stored on the audit record.
            metadata: Opaque key/values stored on the audit record.
            require_transition: Raise IllegalTransitionError (and roll
                back) when the state machine declines to move the invoice.
        """
        kind = WorkflowEventKind.parse(kind)
        with LogContext.bind(
            tenant_id=str(actor.tenant_id),
            actor_id=str(actor.actor_id),
            payment_id=str(payment_id),
        ):
            return self.run_unit_of_work(
                lambda session: self.apply_in_session(
                    session,
                    payment_id,
                    kind,
                    actor,
                    reason=reason,
                    metadata=metadata,
                    require_transition=require_transition,
                ),
                operation="process_single",
            )

    def run_unit_of_work(self, unit: Callable[[Session], T], operation: str) -> T:
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                with transaction_scope(self._session_factory) as session:
                    return unit(session)
            except ConcurrencyConflictError as exc:
                if attempt >= MAX_ATTEMPTS:
                    logger.error(
                        "workflow_conflict_exhausted",
                        extra={
                            "operation": operation,
                            "invoice_id": exc.invoice_id,
                            "attempts": attempt,
                        },
                    )
                    raise
                logger.warning(
                    "workflow_conflict_retry",
                    extra={
                        "operation": operation,
                        "invoice_id": exc.invoice_id,
                        "attempt": attempt,
                    },
                )
        raise AssertionError("unreachable")

    def run_read_only(self, unit: Callable[[Session], T]) -> T:
        """Run ``unit`` in a session that is always rolled back."""
        with read_only_scope(self._session_factory) as session:
            return unit(session)

    def apply_in_session(
        self,
        session: Session,
        payment_id: UUID,
        kind: WorkflowEventKind | str,
        actor: Actor,
        reason: str = "",
        metadata: Mapping[str, Any] | None = None,
        require_transition: bool = False,
    ) -> WorkflowResult:
        """
        Apply one payment event inside the caller's transaction.

        Used by ``process_single`` and by services that must record a
        payment and move the invoice atomically.  Flushes; never commits.
        """
        kind = WorkflowEventKind.parse(kind)
        selector = InvoiceSelector(session)

        payment = selector.get_payment(payment_id)
        if payment is None:
            raise PaymentNotFoundError(str(payment_id))

        invoice = selector.lock_invoice(payment.invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(str(payment.invoice_id))

        ensure_tenant_access(invoice, actor)
        read_version = invoice.version
        current = InvoiceStatus.parse(invoice.status)
        audit = AuditSink(session, self._clock)

        self._apply_payment_side_effect(audit, payment, invoice, kind, actor, reason)

        ledger = self.ledger_for(selector, invoice)
        event = status_event_for(kind, current, ledger)

        if event is None:
            decision = StatusDecision(
                current, False, RejectionCode.NOT_APPLICABLE,
                f"{kind.value} applies only to overdue invoices",
            )
        else:
            context = TransitionContext(
                remaining=ledger.remaining.amount,
                due_date=invoice.due_date,
                today=self.local_today(actor.tenant_id),
                is_disputed=invoice.is_disputed,
                grace_days=self._settings.overdue_grace_days,
            )
            decision = next_status(current, event, context)

        if require_transition and not decision.transitioned:
            logger.info(
                "required_transition_declined",
                extra={
                    "invoice_id": str(invoice.id),
                    "status": current.value,
                    "reason_code": decision.reason_code.value if decision.reason_code else None,
                },
            )
            raise IllegalTransitionError(
                str(invoice.id),
                current.value,
                event.value if event else kind.value,
                decision.reason_code.value if decision.reason_code else None,
                decision.reason,
            )

        if decision.transitioned:
            InvoiceStatusWriter(session, self._clock).write(
                invoice,
                decision.new_status,
                expected_version=read_version,
                actor_id=actor.actor_id,
            )

        record = audit.record(
            tenant_id=invoice.tenant_id,
            actor_id=actor.actor_id,
            entity_type="Invoice",
            entity_id=invoice.id,
            event_kind=event.value if event else kind.value,
            old_status=current.value,
            new_status=decision.new_status.value,
            reason=reason or decision.reason,
            metadata={
                "payment_id": str(payment.id),
                "workflow_event": kind.value,
                "transitioned": decision.transitioned,
                "reason_code": decision.reason_code.value if decision.reason_code else None,
                "remaining": str(ledger.remaining.amount),
                "event_metadata": dict(metadata or {}),
            },
        )

        processed_at = self._clock.now()
        flags = compliance_flags(
            trn_number=invoice.trn_number,
            method=payment.method,
            reference=payment.reference,
            processed_at=processed_at,
            calendar=self.calendar_for(invoice.tenant_id),
        )

        logger.info(
            "payment_workflow_applied",
            extra={
                "invoice_id": str(invoice.id),
                "payment_id": str(payment.id),
                "kind": kind.value,
                "from_status": current.value,
                "to_status": decision.new_status.value,
                "transitioned": decision.transitioned,
                "reason_code": decision.reason_code.value if decision.reason_code else None,
                "remaining": str(ledger.remaining.amount),
            },
        )

        return WorkflowResult(
            payment_id=payment.id,
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            kind=kind,
            status_event=event,
            previous_status=current,
            new_status=decision.new_status,
            transitioned=decision.transitioned,
            reason_code=decision.reason_code,
            reason=decision.reason,
            ledger=ledger,
            compliance_flags=flags,
            recommended_actions=tuple(recommended_actions(ledger, kind)),
            audit_record_id=record.id,
            processed_at=processed_at,
        )

    def _apply_payment_side_effect(
        self,
        audit: AuditSink,
        payment: PaymentModel,
        invoice: InvoiceModel,
        kind: WorkflowEventKind,
        actor: Actor,
        reason: str,
    ) -> None:
        target = _PAYMENT_STATE_FOR_KIND.get(kind)
        if target is None or not payment.is_active:
            return

        payment.state = target.value
        payment.updated_by_id = actor.actor_id
        audit.record(
            tenant_id=invoice.tenant_id,
            actor_id=actor.actor_id,
            entity_type="Payment",
            entity_id=payment.id,
            event_kind=f"payment_{target.value}",
            old_status=PaymentState.ACTIVE.value,
            new_status=target.value,
            reason=reason or None,
        )

    def ledger_for(self, selector: InvoiceSelector, invoice: InvoiceModel) -> LedgerSummary:
        currency = invoice.currency
        amounts = selector.active_payment_amounts(invoice.id)
        return summarize(
            Money(invoice.total_amount, currency),
            [Money(amount, currency) for amount in amounts],
        )

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def process_batch(
        self,
        events: Sequence[WorkflowEvent | Mapping[str, Any]],
        actor: Actor,
    ) -> BatchResult:
        """
        Apply a batch of events, one transaction per event.

        Slots are returned in input order.  An event that fails (bad kind,
        unknown payment, foreign tenant, conflict) records its error in its
        own slot and never aborts its siblings.

        Raises:
            BatchTooLargeError: More than ``max_batch_size`` events.  Nothing
                is processed.
        """
        self.check_batch_size(len(events), operation="process_batch")

        correlation_id = str(uuid4())
        started_at = self._clock.now()
        batch_start = time.monotonic()
        items: list[BatchItemResult] = []

        with LogContext.bind(correlation_id=correlation_id, tenant_id=str(actor.tenant_id)):
            logger.info("payment_batch_started", extra={"total_items": len(events)})

            for index, raw in enumerate(events):
                item_start = time.monotonic()
                payment_id: UUID | None = None
                try:
                    event = self._coerce_event(raw)
                    payment_id = event.payment_id
                    result = self.process_single(
                        event.payment_id,
                        event.kind,
                        actor,
                        reason=event.reason,
                        metadata=event.metadata,
                    )
                    items.append(BatchItemResult(
                        index=index,
                        payment_id=payment_id,
                        status=BatchItemStatus.SUCCEEDED,
                        result=result,
                        duration_ms=int((time.monotonic() - item_start) * 1000),
                    ))
                except Exception as exc:
                    logger.warning(
                        "payment_batch_item_failed",
                        extra={
                            "item_index": index,
                            "payment_id": str(payment_id) if payment_id else None,
                            "error_code": error_code_for(exc),
                            "error": str(exc),
                        },
                    )
                    items.append(BatchItemResult(
                        index=index,
                        payment_id=payment_id,
                        status=BatchItemStatus.FAILED,
                        error_code=error_code_for(exc),
                        error_message=str(exc),
                        retryable=is_transient(exc),
                        duration_ms=int((time.monotonic() - item_start) * 1000),
                    ))

            batch = self.build_batch_result(
                items, started_at=started_at, batch_start=batch_start,
                correlation_id=correlation_id,
            )

            logger.info(
                "payment_batch_completed",
                extra={
                    "total_items": batch.total,
                    "succeeded": batch.succeeded,
                    "failed": batch.failed,
                    "transitions_triggered": batch.transitions_triggered,
                    "duration_ms": batch.duration_ms,
                },
            )
        return batch

    def check_batch_size(self, size: int, operation: str) -> None:
        """Raise BatchTooLargeError when ``size`` exceeds ``max_batch_size``."""
        if size > self._settings.max_batch_size:
            logger.warning(
                "payment_batch_rejected",
                extra={
                    "operation": operation,
                    "size": size,
                    "max_batch_size": self._settings.max_batch_size,
                },
            )
            raise BatchTooLargeError(size, self._settings.max_batch_size)

    def build_batch_result(
        self,
        items: Sequence[BatchItemResult],
        *,
        started_at: datetime,
        batch_start: float,
        correlation_id: str,
    ) -> BatchResult:
        results = [item.result for item in items if item.result is not None]
        rollup = Counter(
            r.transition.key for r in results if r.transition is not None
        )
        return BatchResult(
            total=len(items),
            succeeded=sum(1 for item in items if item.status is BatchItemStatus.SUCCEEDED),
            failed=sum(1 for item in items if item.status is BatchItemStatus.FAILED),
            fully_paid=sum(1 for r in results if r.ledger.is_fully_paid),
            partially_paid=sum(1 for r in results if r.ledger.is_partial),
            transitions_triggered=sum(1 for r in results if r.transitioned),
            transition_rollup=dict(rollup),
            items=tuple(items),
            started_at=started_at,
            completed_at=self._clock.now(),
            duration_ms=int((time.monotonic() - batch_start) * 1000),
            correlation_id=correlation_id,
        )

    @staticmethod
    def _coerce_event(raw: WorkflowEvent | Mapping[str, Any]) -> WorkflowEvent:
        """
        Turn one batch slot into a ``WorkflowEvent``.

        Raises:
            MissingFieldError: ``payment_id`` or ``kind`` absent.
            PaymentValidationError: Not a mapping, ``payment_id`` is not a
                UUID, or ``metadata`` is not a mapping.
            InvalidEventKindError: Unknown ``kind``.
        """
        if isinstance(raw, WorkflowEvent):
            return raw
        if not isinstance(raw, Mapping):
            raise PaymentValidationError(
                "event", f"Batch event must be a mapping, got {type(raw).__name__}"
            )
        for name in ("payment_id", "kind"):
            if raw.get(name) in (None, ""):
                raise MissingFieldError(name, source="batch event")

        payment_id = raw["payment_id"]
        if not isinstance(payment_id, UUID):
            try:
                payment_id = UUID(str(payment_id).strip())
            except ValueError as e:
                raise PaymentValidationError(
                    "payment_id", f"payment_id {raw['payment_id']!r} is not a UUID"
                ) from e

        metadata = raw.get("metadata") or {}
        if not isinstance(metadata, Mapping):
            raise PaymentValidationError("metadata", "Batch event metadata must be a mapping")

        return WorkflowEvent(
            payment_id=payment_id,
            kind=raw["kind"],
            reason=str(raw.get("reason") or ""),
            metadata=metadata,
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(self, invoice_id: UUID, tenant_id: UUID) -> ReconciliationResult:
        """Compare recorded payments with the invoice total.  Never writes."""
        with LogContext.bind(tenant_id=str(tenant_id), invoice_id=str(invoice_id)):
            with read_only_scope(self._session_factory) as session:
                selector = InvoiceSelector(session)
                invoice = selector.get_invoice(invoice_id)
                if invoice is None:
                    raise InvoiceNotFoundError(str(invoice_id))
                ensure_tenant_access(invoice, tenant_id)

                currency = invoice.currency
                lines = [
                    PaymentLine(
                        payment_id=p.id,
                        amount=Money(p.amount, currency),
                        method=PaymentMethod(p.method),
                        payment_date=p.payment_date,
                        state=PaymentState(p.state),
                        reference=p.reference,
                    )
                    for p in selector.payments_for(invoice.id)
                ]
                result = reconcile_invoice(
                    invoice_id=invoice.id,
                    invoice_number=invoice.invoice_number,
                    invoice_status=InvoiceStatus.parse(invoice.status),
                    invoice_total=Money(invoice.total_amount, currency),
                    payments=lines,
                    tolerance_percent=self._settings.reconciliation_tolerance_percent,
                )

            logger.info(
                "invoice_reconciled",
                extra={
                    "reconciliation_status": result.status.value,
                    "difference": str(result.difference.amount),
                    "payment_count": result.ledger.payment_count,
                },
            )
        return result

    # ------------------------------------------------------------------
    # Gateway notifications
    # ------------------------------------------------------------------

    def process_notification(
        self, notification: PaymentNotification, tenant_id: UUID
    ) -> WorkflowResult:
        """
        Apply a payment gateway notification as the system actor.

        The payment is looked up by ``reference == external_payment_id`` on
        the invoice named in the notification and created when absent, so a
        redelivered notification lands on the same payment and changes
        nothing the second time.
        """
        status = NotificationStatus(notification.status)
        kind = _KIND_FOR_NOTIFICATION.get(status)
        if kind is None:
            logger.info(
                "notification_ignored",
                extra={
                    "external_payment_id": notification.external_payment_id,
                    "notification_status": status.value,
                },
            )
            raise UnsupportedNotificationStatusError(
                status.value, notification.external_payment_id
            )

        actor = Actor.system(tenant_id)

        def unit(session: Session) -> WorkflowResult:
            payment = self._payment_for_notification(session, notification, actor)
            return self.apply_in_session(
                session,
                payment.id,
                kind,
                actor,
                reason=f"gateway notification: {status.value}",
                metadata={
                    "external_payment_id": notification.external_payment_id,
                    "gateway_reference": notification.reference,
                },
            )

        with LogContext.bind(tenant_id=str(tenant_id), actor_id=str(actor.actor_id)):
            return self.run_unit_of_work(unit, operation="process_notification")

    def _payment_for_notification(
        self,
        session: Session,
        notification: PaymentNotification,
        actor: Actor,
    ) -> PaymentModel:
        selector = InvoiceSelector(session)
        invoice = selector.find_by_number(actor.tenant_id, notification.invoice_number)
        if invoice is None:
            raise InvoiceNotFoundError(notification.invoice_number)

        currency = notification.currency.upper()
        if currency != invoice.currency:
            raise CurrencyMismatchError(invoice.currency, currency)

        payment = selector.find_payment_by_reference(
            invoice.id, notification.external_payment_id
        )
        if payment is not None:
            return payment

        payment = PaymentModel(
            invoice_id=invoice.id,
            amount=notification.amount,
            payment_date=notification.payment_date,
            method=PaymentMethod(notification.method).value,
            reference=notification.external_payment_id,
            notes=(
                f"Gateway reference: {notification.reference}"
                if notification.reference else None
            ),
            state=PaymentState.ACTIVE.value,
            created_by_id=actor.actor_id,
        )
        session.add(payment)
        session.flush()

        AuditSink(session, self._clock).record(
            tenant_id=invoice.tenant_id,
            actor_id=actor.actor_id,
            entity_type="Payment",
            entity_id=payment.id,
            event_kind="payment_recorded",
            new_status=PaymentState.ACTIVE.value,
            reason="recorded from gateway notification",
            metadata={
                "external_payment_id": notification.external_payment_id,
                "amount": str(notification.amount),
                "currency": currency,
            },
        )
        logger.info(
            "notification_payment_recorded",
            extra={
                "payment_id": str(payment.id),
                "invoice_id": str(invoice.id),
                "external_payment_id": notification.external_payment_id,
            },
        )
        return payment
