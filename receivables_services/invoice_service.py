"""
receivables_services.invoice_service -- invoice lifecycle operations.

Responsibility:
    Creation in ``draft`` and every status change that is not driven by a
    payment: sending, disputes, write-off and manual override, singly or in
    bulk.  Reminder pause/resume lives here too since disputes pause
    reminders.  ``status_insights`` reports counts, overdue ageing and
    recent changes per tenant.

Architecture position:
    Services.  Shares the unit-of-work runner, clock and calendars of the
    ``PaymentWorkflowService`` it is built on, so both services retry
    version conflicts the same way.

Invariants enforced:
    - Every status change goes through ``next_status`` and the
      compare-and-set ``InvoiceStatusWriter``; nothing here assigns
      ``invoice.status`` directly.
    - Every operation, accepted or rejected, leaves one audit record.
    - Manual override requires an actor with the admin or finance role.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from receivables_engines.invoice_status import StatusEvent, TransitionContext, next_status
from receivables_kernel.domain.currency import CurrencyRegistry
from receivables_kernel.domain.receivables import Actor, InvoiceStatus
from receivables_kernel.domain.values import Money
from receivables_kernel.exceptions import (
    AccessDeniedError,
    DuplicateInvoiceError,
    InvalidAmountError,
    InvoiceNotFoundError,
    MissingFieldError,
    PaymentValidationError,
    error_code_for,
    is_transient,
)
from receivables_kernel.logging_config import LogContext, get_logger
from receivables_kernel.models.invoice import InvoiceModel
from receivables_kernel.selectors.invoice_selector import InvoiceSelector
from receivables_kernel.services.audit_sink import AuditSink
from receivables_kernel.services.invoice_status_writer import InvoiceStatusWriter
from receivables_services.payment_workflow import PaymentWorkflowService, ensure_tenant_access
from receivables_services.workflow_types import (
    BatchItemStatus,
    BulkStatusItemResult,
    BulkStatusResult,
    InvoiceSnapshot,
    InvoiceStatusResult,
    OverdueAnalysis,
    StatusChange,
    StatusInsights,
)

logger = get_logger("services.invoice_service")


def snapshot(invoice: InvoiceModel) -> InvoiceSnapshot:
    return InvoiceSnapshot(
        invoice_id=invoice.id,
        tenant_id=invoice.tenant_id,
        invoice_number=invoice.invoice_number,
        status=InvoiceStatus.parse(invoice.status),
        total=Money(invoice.total_amount, invoice.currency),
        due_date=invoice.due_date,
        is_disputed=invoice.is_disputed,
        reminders_paused=invoice.reminders_paused,
        version=invoice.version,
    )


class InvoiceService:

    def __init__(self, workflow: PaymentWorkflowService):
        self._workflow = workflow

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_invoice(
        self,
        actor: Actor,
        invoice_number: str,
        total_amount: Decimal | str | int,
        due_date: date,
        currency: str | None = None,
        customer_name: str | None = None,
        customer_email: str | None = None,
        trn_number: str | None = None,
    ) -> InvoiceSnapshot:
        """
        Create a ``draft`` invoice.

        Raises:
            DuplicateInvoiceError: The number is already used in the tenant.
            InvalidAmountError: Negative or unparseable total.
            PaymentValidationError: Unknown currency code (rule ``currency``).
        """
        code = (currency or self._workflow.settings.default_currency).strip().upper()
        if not CurrencyRegistry.is_valid(code):
            raise PaymentValidationError("currency", f"Unknown currency {code!r}")
        if isinstance(total_amount, (bool, float)):
            raise InvalidAmountError(total_amount, "invoice total must be a Decimal, str or int")
        try:
            total = Money.of(total_amount, code)
        except (InvalidOperation, ValueError) as e:
            raise InvalidAmountError(total_amount, "invoice total is not a number") from e
        if total.amount < 0:
            raise InvalidAmountError(total.amount, "invoice total must not be negative")

        def unit(session: Session) -> InvoiceSnapshot:
            selector = InvoiceSelector(session)
            if selector.find_by_number(actor.tenant_id, invoice_number) is not None:
                raise DuplicateInvoiceError(invoice_number, str(actor.tenant_id))

            invoice = InvoiceModel(
                tenant_id=actor.tenant_id,
                invoice_number=invoice_number,
                customer_name=customer_name,
                customer_email=customer_email,
                total_amount=total.amount,
                currency=total.currency.code,
                due_date=due_date,
                status=InvoiceStatus.DRAFT.value,
                trn_number=trn_number,
                version=1,
                created_by_id=actor.actor_id,
            )
            session.add(invoice)
            session.flush()

            AuditSink(session, self._workflow.clock).record(
                tenant_id=actor.tenant_id,
                actor_id=actor.actor_id,
                entity_type="Invoice",
                entity_id=invoice.id,
                event_kind="invoice_created",
                new_status=InvoiceStatus.DRAFT.value,
                metadata={"total": str(total.amount), "currency": total.currency.code},
            )
            logger.info(
                "invoice_created",
                extra={
                    "invoice_id": str(invoice.id),
                    "invoice_number": invoice_number,
                    "total": str(total.amount),
                    "currency": total.currency.code,
                },
            )
            return snapshot(invoice)

        with LogContext.bind(tenant_id=str(actor.tenant_id), actor_id=str(actor.actor_id)):
            return self._workflow.run_unit_of_work(unit, operation="create_invoice")

    # ------------------------------------------------------------------
    # Status operations
    # ------------------------------------------------------------------

    def mark_sent(self, invoice_id: UUID, actor: Actor) -> InvoiceStatusResult:
        return self._transition(invoice_id, actor, StatusEvent.INVOICE_SENT)

    def detect_overdue(
        self, invoice_id: UUID, actor: Actor, grace_days: int | None = None
    ) -> InvoiceStatusResult:
        """
        Apply ``overdue_detected``; a no-op unless sent and past due.

        ``grace_days`` defaults to ``settings.overdue_grace_days``.
        """
        return self._transition(
            invoice_id, actor, StatusEvent.OVERDUE_DETECTED, grace_days=grace_days
        )

    def raise_dispute(self, invoice_id: UUID, actor: Actor, reason: str) -> InvoiceStatusResult:
        """Move to ``disputed`` and pause reminders while the dispute is open."""

        def on_transition(invoice: InvoiceModel) -> None:
            invoice.is_disputed = True
            invoice.dispute_reason = reason
            invoice.reminders_paused = True
            invoice.reminders_paused_reason = f"dispute: {reason}"

        return self._transition(
            invoice_id, actor, StatusEvent.DISPUTE_RAISED,
            reason=reason, on_transition=on_transition,
        )

    def resolve_dispute(
        self,
        invoice_id: UUID,
        actor: Actor,
        target: InvoiceStatus | str,
        reason: str = "",
    ) -> InvoiceStatusResult:
        """Leave ``disputed`` for ``target``; resumes reminders on success."""

        def on_transition(invoice: InvoiceModel) -> None:
            invoice.is_disputed = False
            invoice.reminders_paused = False
            invoice.reminders_paused_reason = None

        return self._transition(
            invoice_id, actor, StatusEvent.DISPUTE_RESOLVED,
            target=InvoiceStatus.parse(target), reason=reason,
            on_transition=on_transition,
        )

    def write_off(self, invoice_id: UUID, actor: Actor, reason: str) -> InvoiceStatusResult:
        """Terminal; the reason is kept on the audit record."""
        if not reason or not reason.strip():
            raise MissingFieldError("reason", source="write_off")

        def on_transition(invoice: InvoiceModel) -> None:
            invoice.is_disputed = False
            invoice.reminders_paused = True
            invoice.reminders_paused_reason = "written off"

        return self._transition(
            invoice_id, actor, StatusEvent.WRITTEN_OFF,
            reason=reason, on_transition=on_transition,
        )

    def override_status(
        self,
        invoice_id: UUID,
        actor: Actor,
        target: InvoiceStatus | str,
        reason: str,
    ) -> InvoiceStatusResult:
        """
        Force the invoice into ``target``.

        Raises:
            AccessDeniedError: The actor holds neither the admin nor the
                finance role.
        """
        if not actor.can_override:
            logger.warning(
                "status_override_denied",
                extra={"invoice_id": str(invoice_id), "roles": sorted(actor.roles)},
            )
            raise AccessDeniedError(
                str(actor.tenant_id),
                f"invoice:{invoice_id}",
                reason="status override requires the admin or finance role",
            )

        target_status = InvoiceStatus.parse(target)

        def on_transition(invoice: InvoiceModel) -> None:
            invoice.is_disputed = target_status is InvoiceStatus.DISPUTED

        return self._transition(
            invoice_id, actor, StatusEvent.MANUAL_OVERRIDE,
            target=target_status, reason=reason, on_transition=on_transition,
        )

    def _transition(
        self,
        invoice_id: UUID,
        actor: Actor,
        event: StatusEvent,
        *,
        target: InvoiceStatus | None = None,
        reason: str = "",
        on_transition: Callable[[InvoiceModel], None] | None = None,
        grace_days: int | None = None,
    ) -> InvoiceStatusResult:
        if grace_days is None:
            grace_days = self._workflow.settings.overdue_grace_days

        def unit(session: Session) -> InvoiceStatusResult:
            selector = InvoiceSelector(session)
            invoice = self._lock(selector, invoice_id, actor)
            read_version = invoice.version
            current = InvoiceStatus.parse(invoice.status)
            ledger = self._workflow.ledger_for(selector, invoice)

            context = TransitionContext(
                remaining=ledger.remaining.amount,
                due_date=invoice.due_date,
                today=self._workflow.local_today(actor.tenant_id),
                is_disputed=invoice.is_disputed,
                target_status=target,
                actor_can_override=actor.can_override,
                grace_days=grace_days,
            )
            decision = next_status(current, event, context)

            version = read_version
            if decision.transitioned:
                if on_transition is not None:
                    on_transition(invoice)
                invoice.updated_by_id = actor.actor_id
                version = InvoiceStatusWriter(session, self._workflow.clock).write(
                    invoice,
                    decision.new_status,
                    expected_version=read_version,
                    actor_id=actor.actor_id,
                )

            record = AuditSink(session, self._workflow.clock).record(
                tenant_id=invoice.tenant_id,
                actor_id=actor.actor_id,
                entity_type="Invoice",
                entity_id=invoice.id,
                event_kind=event.value,
                old_status=current.value,
                new_status=decision.new_status.value,
                reason=reason or decision.reason,
                metadata={
                    "transitioned": decision.transitioned,
                    "reason_code": decision.reason_code.value if decision.reason_code else None,
                    "target_status": target.value if target else None,
                },
            )

            if decision.rejected:
                logger.info(
                    "invoice_transition_rejected",
                    extra={
                        "invoice_id": str(invoice.id),
                        "event": event.value,
                        "status": current.value,
                        "reason_code": decision.reason_code.value,
                    },
                )

            return InvoiceStatusResult(
                invoice_id=invoice.id,
                event=event,
                previous_status=current,
                new_status=decision.new_status,
                transitioned=decision.transitioned,
                reason_code=decision.reason_code,
                reason=decision.reason,
                version=version,
                audit_record_id=record.id,
            )

        with LogContext.bind(
            tenant_id=str(actor.tenant_id),
            actor_id=str(actor.actor_id),
            invoice_id=str(invoice_id),
        ):
            return self._workflow.run_unit_of_work(unit, operation=event.value)

    # ------------------------------------------------------------------
    # Bulk status update
    # ------------------------------------------------------------------

    def bulk_update_status(
        self,
        invoice_ids: Sequence[UUID | str],
        actor: Actor,
        target: InvoiceStatus | str,
        reason: str = "",
    ) -> BulkStatusResult:
        """
        Override the status of several invoices, one transaction each.

        Every id is checked against the actor's tenant before anything is
        written.  After that, an invoice that fails (conflict, rejected
        override) records its error in its own slot and never aborts the
        others.

        Raises:
            AccessDeniedError: The actor may not override statuses.
            MissingFieldError: ``invoice_ids`` is empty.
            BatchTooLargeError: More than ``max_batch_size`` ids.
            PaymentValidationError: An id is not a UUID (rule ``invoice_ids``).
            InvoiceNotFoundError: An id is unknown or owned by another tenant.
        """
        target_status = InvoiceStatus.parse(target)
        if not actor.can_override:
            logger.warning(
                "bulk_status_update_denied",
                extra={"target": target_status.value, "roles": sorted(actor.roles)},
            )
            raise AccessDeniedError(
                str(actor.tenant_id),
                "invoices:bulk",
                reason="status override requires the admin or finance role",
            )
        if not invoice_ids:
            raise MissingFieldError("invoice_ids", source="bulk status update")
        self._workflow.check_batch_size(len(invoice_ids), operation="bulk_update_status")

        ids = [self._coerce_invoice_id(raw) for raw in invoice_ids]
        owned = self._workflow.run_read_only(
            lambda session: InvoiceSelector(session).owned_invoice_ids(actor.tenant_id, ids)
        )
        unknown = [invoice_id for invoice_id in ids if invoice_id not in owned]
        if unknown:
            logger.warning(
                "bulk_status_update_rejected",
                extra={"unknown_invoice_ids": [str(i) for i in unknown]},
            )
            raise InvoiceNotFoundError(", ".join(str(i) for i in unknown))

        reason = reason or f"bulk status update to {target_status.value}"
        correlation_id = str(uuid4())
        start = time.monotonic()
        items: list[BulkStatusItemResult] = []

        with LogContext.bind(correlation_id=correlation_id, tenant_id=str(actor.tenant_id)):
            logger.info(
                "bulk_status_update_started",
                extra={"total_items": len(ids), "target": target_status.value},
            )
            for index, invoice_id in enumerate(ids):
                item_start = time.monotonic()
                try:
                    result = self.override_status(invoice_id, actor, target_status, reason)
                except Exception as exc:
                    logger.warning(
                        "bulk_status_update_item_failed",
                        extra={
                            "invoice_id": str(invoice_id),
                            "error_code": error_code_for(exc),
                            "error": str(exc),
                        },
                    )
                    items.append(BulkStatusItemResult(
                        index=index,
                        invoice_id=invoice_id,
                        status=BatchItemStatus.FAILED,
                        error_code=error_code_for(exc),
                        error_message=str(exc),
                        retryable=is_transient(exc),
                        duration_ms=int((time.monotonic() - item_start) * 1000),
                    ))
                    continue

                items.append(BulkStatusItemResult(
                    index=index,
                    invoice_id=invoice_id,
                    status=BatchItemStatus.SUCCEEDED,
                    result=result,
                    duration_ms=int((time.monotonic() - item_start) * 1000),
                ))

            succeeded = [i for i in items if i.status is BatchItemStatus.SUCCEEDED]
            bulk = BulkStatusResult(
                target=target_status,
                total=len(items),
                succeeded=len(succeeded),
                failed=len(items) - len(succeeded),
                transitioned=sum(1 for i in succeeded if i.result.transitioned),
                items=tuple(items),
                duration_ms=int((time.monotonic() - start) * 1000),
                correlation_id=correlation_id,
            )
            logger.info(
                "bulk_status_update_completed",
                extra={
                    "total_items": bulk.total,
                    "succeeded": bulk.succeeded,
                    "failed": bulk.failed,
                    "transitioned": bulk.transitioned,
                    "duration_ms": bulk.duration_ms,
                },
            )
        return bulk

    @staticmethod
    def _coerce_invoice_id(raw: UUID | str) -> UUID:
        if isinstance(raw, UUID):
            return raw
        try:
            return UUID(str(raw).strip())
        except ValueError as e:
            raise PaymentValidationError("invoice_ids", f"{raw!r} is not an invoice id") from e

    # ------------------------------------------------------------------
    # Insights
    # ------------------------------------------------------------------

    def status_insights(
        self,
        tenant_id: UUID,
        recent_days: int = 7,
        recent_limit: int = 10,
    ) -> StatusInsights:
        """
        Status counts, overdue analysis and the latest status changes of one
        tenant.  Read-only.

        Days overdue are counted from the due date to the tenant-local today;
        the overdue amount is the invoice total, summed per currency.
        """
        today = self._workflow.local_today(tenant_id)
        since = self._workflow.clock.now_utc() - timedelta(days=recent_days)

        def unit(session: Session) -> StatusInsights:
            selector = InvoiceSelector(session)
            raw_counts = selector.status_counts(tenant_id)
            counts = {status: raw_counts.get(status.value, 0) for status in InvoiceStatus}

            overdue_rows = selector.overdue_invoices(tenant_id)
            amounts: dict[str, Decimal] = {}
            total_days = 0
            for due_date, total_amount, currency in overdue_rows:
                total_days += (today - due_date).days
                amounts[currency] = amounts.get(currency, Decimal("0")) + total_amount
            average_days = 0
            if overdue_rows:
                average_days = int(
                    (Decimal(total_days) / len(overdue_rows)).quantize(
                        Decimal("1"), rounding=ROUND_HALF_UP
                    )
                )

            changes = tuple(
                StatusChange(
                    invoice_id=record.entity_id,
                    invoice_number=number,
                    event_kind=record.event_kind,
                    old_status=InvoiceStatus.parse(record.old_status),
                    new_status=InvoiceStatus.parse(record.new_status),
                    reason=record.reason,
                    actor_id=record.actor_id,
                    occurred_at=record.occurred_at,
                )
                for record, number in selector.recent_status_changes(
                    tenant_id, since, recent_limit
                )
            )

            return StatusInsights(
                tenant_id=tenant_id,
                as_of=today,
                status_counts=counts,
                overdue=OverdueAnalysis(
                    total_overdue=len(overdue_rows),
                    average_days_overdue=average_days,
                    overdue_amounts=tuple(
                        Money(amounts[code], code).round() for code in sorted(amounts)
                    ),
                ),
                recent_changes=changes,
            )

        with LogContext.bind(tenant_id=str(tenant_id)):
            insights = self._workflow.run_read_only(unit)
            logger.info(
                "status_insights_computed",
                extra={
                    "overdue": insights.overdue.total_overdue,
                    "recent_changes": len(insights.recent_changes),
                },
            )
        return insights

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    def pause_reminders(self, invoice_id: UUID, actor: Actor, reason: str) -> InvoiceSnapshot:
        return self._set_reminders_paused(invoice_id, actor, paused=True, reason=reason)

    def resume_reminders(self, invoice_id: UUID, actor: Actor) -> InvoiceSnapshot:
        return self._set_reminders_paused(invoice_id, actor, paused=False, reason=None)

    def _set_reminders_paused(
        self, invoice_id: UUID, actor: Actor, *, paused: bool, reason: str | None
    ) -> InvoiceSnapshot:

        def unit(session: Session) -> InvoiceSnapshot:
            invoice = self._lock(InvoiceSelector(session), invoice_id, actor)
            if invoice.reminders_paused == paused:
                return snapshot(invoice)

            invoice.reminders_paused = paused
            invoice.reminders_paused_reason = reason
            invoice.updated_by_id = actor.actor_id
            session.flush()

            AuditSink(session, self._workflow.clock).record(
                tenant_id=invoice.tenant_id,
                actor_id=actor.actor_id,
                entity_type="Invoice",
                entity_id=invoice.id,
                event_kind="reminders_paused" if paused else "reminders_resumed",
                reason=reason,
            )
            return snapshot(invoice)

        with LogContext.bind(tenant_id=str(actor.tenant_id), invoice_id=str(invoice_id)):
            return self._workflow.run_unit_of_work(unit, operation="set_reminders_paused")

    def get_invoice(self, invoice_id: UUID, tenant_id: UUID) -> InvoiceSnapshot:
        with LogContext.bind(tenant_id=str(tenant_id), invoice_id=str(invoice_id)):
            def unit(session: Session) -> InvoiceSnapshot:
                invoice = InvoiceSelector(session).get_invoice(invoice_id)
                if invoice is None:
                    raise InvoiceNotFoundError(str(invoice_id))
                ensure_tenant_access(invoice, tenant_id)
                return snapshot(invoice)

            return self._workflow.run_read_only(unit)

    @staticmethod
    def _lock(selector: InvoiceSelector, invoice_id: UUID, actor: Actor) -> InvoiceModel:
        invoice = selector.lock_invoice(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        ensure_tenant_access(invoice, actor)
        return invoice
