"""
receivables_services.payment_recording -- validated payment mutations.

Responsibility:
    Records (singly or in batches), corrects and reverses payments.  Each
    mutation and the workflow evaluation it triggers share one
    transaction: either the payment row, its audit record and the invoice
    status change all commit, or none do.

Architecture position:
    Services.  Delegates the status half of the work to
    ``PaymentWorkflowService.apply_in_session``.

Failure modes:
    - InvalidAmountError for amounts <= 0 or amounts that do not parse.
    - PaymentValidationError naming the violated rule:
      ``minimum_amount``, ``maximum_amount``, ``future_date``,
      ``reference_required``, ``overpayment``, ``payment_inactive``,
      ``method``.
    - AccessDeniedError / InvoiceNotFoundError / PaymentNotFoundError.
"""

from __future__ import annotations

import time
from collections.abc import Mapping, Sequence
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from receivables_config.schema import PaymentValidationRules
from receivables_engines.ledger import summarize
from receivables_kernel.domain.receivables import (
    Actor,
    PaymentMethod,
    PaymentState,
    WorkflowEventKind,
)
from receivables_kernel.domain.values import Money, format_money
from receivables_kernel.exceptions import (
    InvalidAmountError,
    InvoiceNotFoundError,
    MissingFieldError,
    PaymentNotFoundError,
    PaymentValidationError,
    error_code_for,
    is_transient,
)
from receivables_kernel.logging_config import LogContext, get_logger
from receivables_kernel.models.invoice import InvoiceModel
from receivables_kernel.models.payment import PaymentModel
from receivables_kernel.selectors.invoice_selector import InvoiceSelector
from receivables_kernel.services.audit_sink import AuditSink
from receivables_services.payment_workflow import (
    PaymentWorkflowService,
    ensure_tenant_access,
)
from receivables_services.workflow_types import (
    BatchItemResult,
    BatchItemStatus,
    BatchResult,
    PaymentRequest,
    WorkflowResult,
)

logger = get_logger("services.payment_recording")


def parse_payment_amount(amount: Decimal | str | int, currency: str) -> Money:
    """Money in the invoice currency; unparseable or float amounts raise InvalidAmountError."""
    if isinstance(amount, (bool, float)):
        raise InvalidAmountError(amount, "amount must be a Decimal, str or int")
    try:
        return Money.of(amount, currency)
    except (InvalidOperation, ValueError) as e:
        raise InvalidAmountError(amount, "amount is not a number") from e


def validate_payment(
    amount: Money,
    payment_date: date,
    method: PaymentMethod,
    reference: str | None,
    rules: PaymentValidationRules,
    today: date,
) -> None:
    """Apply the recording rules to one payment.  Pure; raises on the first violation."""
    if amount.amount <= 0:
        raise InvalidAmountError(amount.amount, "payment amount must be positive")

    if amount.amount < rules.minimum_amount:
        raise PaymentValidationError(
            "minimum_amount",
            f"Payment amount must be at least {format_money(Money(rules.minimum_amount, amount.currency))}",
        )

    if rules.maximum_amount is not None and amount.amount > rules.maximum_amount:
        raise PaymentValidationError(
            "maximum_amount",
            f"Payment amount cannot exceed {format_money(Money(rules.maximum_amount, amount.currency))}",
        )

    if not rules.allow_future_dates and payment_date > today:
        raise PaymentValidationError(
            "future_date",
            f"Payment date {payment_date.isoformat()} is in the future",
        )

    if method in rules.reference_required_for and not (reference and reference.strip()):
        raise PaymentValidationError(
            "reference_required",
            f"{method.value} payments require a reference",
        )


class PaymentRecordingService:
    """Create, correct and reverse payments under ``PaymentValidationRules``."""

    def __init__(
        self,
        workflow: PaymentWorkflowService,
        rules: PaymentValidationRules | None = None,
    ):
        self._workflow = workflow
        self._rules = rules or PaymentValidationRules()

    def record_payment(
        self,
        invoice_id: UUID,
        amount: Decimal | str | int,
        payment_date: date,
        actor: Actor,
        method: PaymentMethod | str = PaymentMethod.BANK_TRANSFER,
        reference: str | None = None,
        notes: str | None = None,
    ) -> WorkflowResult:
        """Record a new payment and re-evaluate the invoice status."""
        method = PaymentMethod.parse(method)

        def unit(session: Session) -> WorkflowResult:
            selector = InvoiceSelector(session)
            invoice = self._load_invoice(selector, invoice_id, actor)
            money = parse_payment_amount(amount, invoice.currency)

            validate_payment(
                money, payment_date, method, reference, self._rules,
                today=self._workflow.local_today(actor.tenant_id),
            )
            self._check_overpayment(selector, invoice, money, replacing=None)

            payment = PaymentModel(
                invoice_id=invoice.id,
                amount=money.amount,
                payment_date=payment_date,
                method=method.value,
                reference=reference,
                notes=notes,
                state=PaymentState.ACTIVE.value,
                created_by_id=actor.actor_id,
            )
            session.add(payment)
            session.flush()

            AuditSink(session, self._workflow.clock).record(
                tenant_id=invoice.tenant_id,
                actor_id=actor.actor_id,
                entity_type="Payment",
                entity_id=payment.id,
                event_kind="payment_recorded",
                new_status=PaymentState.ACTIVE.value,
                metadata={
                    "invoice_id": str(invoice.id),
                    "amount": str(money.amount),
                    "currency": invoice.currency,
                    "method": method.value,
                },
            )
            logger.info(
                "payment_recorded",
                extra={
                    "payment_id": str(payment.id),
                    "invoice_id": str(invoice.id),
                    "amount": str(money.amount),
                    "method": method.value,
                },
            )

            return self._workflow.apply_in_session(
                session,
                payment.id,
                WorkflowEventKind.RECEIVED,
                actor,
                reason=f"payment of {format_money(money)} recorded",
            )

        with LogContext.bind(tenant_id=str(actor.tenant_id), actor_id=str(actor.actor_id)):
            return self._workflow.run_unit_of_work(unit, operation="record_payment")

    def record_payments(
        self,
        payments: Sequence[PaymentRequest | Mapping[str, Any]],
        actor: Actor,
    ) -> BatchResult:
        """
        Record several payments, one transaction per payment.

        A payment that fails validation records its error in its own slot;
        the others still commit.  Slots carry the new payment id on success.

        Raises:
            BatchTooLargeError: More than ``max_batch_size`` payments.
                Nothing is recorded.
        """
        self._workflow.check_batch_size(len(payments), operation="record_payments")

        correlation_id = str(uuid4())
        started_at = self._workflow.clock.now()
        batch_start = time.monotonic()
        items: list[BatchItemResult] = []

        with LogContext.bind(correlation_id=correlation_id, tenant_id=str(actor.tenant_id)):
            logger.info("payment_recording_batch_started", extra={"total_items": len(payments)})

            for index, raw in enumerate(payments):
                item_start = time.monotonic()
                try:
                    request = self._coerce_request(raw)
                    result = self.record_payment(
                        request.invoice_id,
                        request.amount,
                        request.payment_date,
                        actor,
                        method=request.method,
                        reference=request.reference,
                        notes=request.notes,
                    )
                except Exception as exc:
                    logger.warning(
                        "payment_recording_item_failed",
                        extra={
                            "item_index": index,
                            "error_code": error_code_for(exc),
                            "error": str(exc),
                        },
                    )
                    items.append(BatchItemResult(
                        index=index,
                        payment_id=None,
                        status=BatchItemStatus.FAILED,
                        error_code=error_code_for(exc),
                        error_message=str(exc),
                        retryable=is_transient(exc),
                        duration_ms=int((time.monotonic() - item_start) * 1000),
                    ))
                    continue

                items.append(BatchItemResult(
                    index=index,
                    payment_id=result.payment_id,
                    status=BatchItemStatus.SUCCEEDED,
                    result=result,
                    duration_ms=int((time.monotonic() - item_start) * 1000),
                ))

            batch = self._workflow.build_batch_result(
                items, started_at=started_at, batch_start=batch_start,
                correlation_id=correlation_id,
            )
            logger.info(
                "payment_recording_batch_completed",
                extra={
                    "total_items": batch.total,
                    "succeeded": batch.succeeded,
                    "failed": batch.failed,
                    "fully_paid": batch.fully_paid,
                    "duration_ms": batch.duration_ms,
                },
            )
        return batch

    @staticmethod
    def _coerce_request(raw: PaymentRequest | Mapping[str, Any]) -> PaymentRequest:
        if isinstance(raw, PaymentRequest):
            return raw
        if not isinstance(raw, Mapping):
            raise PaymentValidationError(
                "payment", f"Payment must be a mapping, got {type(raw).__name__}"
            )
        for name in ("invoice_id", "amount", "payment_date"):
            if raw.get(name) in (None, ""):
                raise MissingFieldError(name, source="payment batch")

        invoice_id = raw["invoice_id"]
        if not isinstance(invoice_id, UUID):
            try:
                invoice_id = UUID(str(invoice_id).strip())
            except ValueError as e:
                raise PaymentValidationError(
                    "invoice_id", f"invoice_id {raw['invoice_id']!r} is not a UUID"
                ) from e

        payment_date = raw["payment_date"]
        if not isinstance(payment_date, date):
            try:
                payment_date = date.fromisoformat(str(payment_date).strip())
            except ValueError as e:
                raise PaymentValidationError(
                    "payment_date", f"payment_date {raw['payment_date']!r} is not an ISO date"
                ) from e

        return PaymentRequest(
            invoice_id=invoice_id,
            amount=raw["amount"],
            payment_date=payment_date,
            method=raw.get("method") or PaymentMethod.BANK_TRANSFER,
            reference=raw.get("reference"),
            notes=raw.get("notes"),
        )

    def correct_payment(
        self,
        payment_id: UUID,
        actor: Actor,
        amount: Decimal | str | int | None = None,
        payment_date: date | None = None,
        method: PaymentMethod | str | None = None,
        reference: str | None = None,
        notes: str | None = None,
        reason: str = "",
    ) -> WorkflowResult:
        """
        Correct an active payment in place.

        Fields left as None keep their value.  The invoice is re-evaluated
        with the ``corrected`` kind, so a correction that leaves the invoice
        short reopens a Paid invoice and one that settles it marks it Paid.
        """

        def unit(session: Session) -> WorkflowResult:
            selector = InvoiceSelector(session)
            payment = self._load_active_payment(selector, payment_id)
            invoice = self._load_invoice(selector, payment.invoice_id, actor)

            new_amount = parse_payment_amount(
                amount if amount is not None else payment.amount, invoice.currency
            )
            new_date = payment_date or payment.payment_date
            new_method = PaymentMethod.parse(method or payment.method)
            new_reference = reference if reference is not None else payment.reference

            validate_payment(
                new_amount, new_date, new_method, new_reference, self._rules,
                today=self._workflow.local_today(actor.tenant_id),
            )
            self._check_overpayment(selector, invoice, new_amount, replacing=payment)

            before = {
                "amount": str(payment.amount),
                "payment_date": payment.payment_date.isoformat(),
                "method": str(PaymentMethod(payment.method).value),
                "reference": payment.reference,
            }
            payment.amount = new_amount.amount
            payment.payment_date = new_date
            payment.method = new_method.value
            payment.reference = new_reference
            if notes is not None:
                payment.notes = notes
            payment.updated_by_id = actor.actor_id
            session.flush()

            AuditSink(session, self._workflow.clock).record(
                tenant_id=invoice.tenant_id,
                actor_id=actor.actor_id,
                entity_type="Payment",
                entity_id=payment.id,
                event_kind="payment_corrected",
                old_status=PaymentState.ACTIVE.value,
                new_status=PaymentState.ACTIVE.value,
                reason=reason or None,
                metadata={
                    "before": before,
                    "after": {
                        "amount": str(new_amount.amount),
                        "payment_date": new_date.isoformat(),
                        "method": new_method.value,
                        "reference": new_reference,
                    },
                },
            )

            return self._workflow.apply_in_session(
                session,
                payment.id,
                WorkflowEventKind.CORRECTED,
                actor,
                reason=reason or "payment corrected",
            )

        with LogContext.bind(
            tenant_id=str(actor.tenant_id),
            actor_id=str(actor.actor_id),
            payment_id=str(payment_id),
        ):
            return self._workflow.run_unit_of_work(unit, operation="correct_payment")

    def reverse_payment(self, payment_id: UUID, actor: Actor, reason: str = "") -> WorkflowResult:
        """
        Reverse an active payment.  Payments are never deleted; the row stays
        with ``state == reversed`` and stops counting towards the ledger.
        """

        def unit(session: Session) -> WorkflowResult:
            selector = InvoiceSelector(session)
            payment = self._load_active_payment(selector, payment_id)
            self._load_invoice(selector, payment.invoice_id, actor)
            return self._workflow.apply_in_session(
                session,
                payment.id,
                WorkflowEventKind.REVERSED,
                actor,
                reason=reason or "payment reversed",
            )

        with LogContext.bind(
            tenant_id=str(actor.tenant_id),
            actor_id=str(actor.actor_id),
            payment_id=str(payment_id),
        ):
            return self._workflow.run_unit_of_work(unit, operation="reverse_payment")

    @staticmethod
    def _load_invoice(selector: InvoiceSelector, invoice_id: UUID, actor: Actor) -> InvoiceModel:
        invoice = selector.lock_invoice(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        ensure_tenant_access(invoice, actor)
        return invoice

    @staticmethod
    def _load_active_payment(selector: InvoiceSelector, payment_id: UUID) -> PaymentModel:
        payment = selector.get_payment(payment_id)
        if payment is None:
            raise PaymentNotFoundError(str(payment_id))
        if not payment.is_active:
            raise PaymentValidationError(
                "payment_inactive",
                f"Payment {payment_id} is {PaymentState(payment.state).value} and cannot change",
            )
        return payment

    def _check_overpayment(
        self,
        selector: InvoiceSelector,
        invoice: InvoiceModel,
        amount: Money,
        replacing: PaymentModel | None,
    ) -> None:
        if self._rules.allow_overpayment:
            return
        others = [
            Money(p.amount, invoice.currency)
            for p in selector.payments_for(invoice.id)
            if p.is_active and (replacing is None or p.id != replacing.id)
        ]
        ledger = summarize(Money(invoice.total_amount, invoice.currency), others + [amount])
        if ledger.is_overpaid:
            raise PaymentValidationError(
                "overpayment",
                f"Payment would overpay invoice {invoice.invoice_number} by "
                f"{format_money(ledger.overpaid_amount)}",
            )
