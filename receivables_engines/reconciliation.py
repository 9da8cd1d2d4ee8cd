"""
Module: receivables_engines.reconciliation
Responsibility:
    Compare an invoice's total with its recorded payments and classify the
    invoice as reconciled, over-paid, under-paid or discrepant, with a
    per-payment breakdown and operator recommendations.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Diagnostic only: nothing in
    here (or in its caller) changes invoice status.

Classification (evaluated top to bottom, tolerance = total * percent / 100):

    DISCREPANT  status contradicts the ledger: PAID with more than the
                tolerance outstanding, or DRAFT with active payments
    OVERPAID    paid - total > tolerance
    UNDERPAID   total - paid > tolerance
    RECONCILED  otherwise

Failure modes:
    - InvalidAmountError / CurrencyMismatchError from the ledger aggregator.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Sequence
from uuid import UUID

from receivables_engines.ledger import LedgerSummary, summarize
from receivables_engines.tracer import traced_engine
from receivables_kernel.domain.receivables import InvoiceStatus, PaymentMethod, PaymentState
from receivables_kernel.domain.values import Money, format_money


class ReconciliationStatus(str, Enum):
    RECONCILED = "reconciled"
    OVERPAID = "overpaid"
    UNDERPAID = "underpaid"
    DISCREPANT = "discrepant"


@dataclass(frozen=True)
class PaymentLine:
    payment_id: UUID
    amount: Money
    method: PaymentMethod
    payment_date: date
    state: PaymentState
    reference: str | None = None


@dataclass(frozen=True)
class ReconciliationResult:
    invoice_id: UUID
    invoice_number: str
    invoice_status: InvoiceStatus
    status: ReconciliationStatus
    ledger: LedgerSummary
    # paid - total; positive means over-paid
    difference: Money
    tolerance: Money
    breakdown: tuple[PaymentLine, ...]

    @property
    def recommended_actions(self) -> list[str]:
        return recommendations_for(self)


def tolerance_for(total: Money, tolerance_percent: Decimal) -> Money:
    return Money(total.amount * Decimal(tolerance_percent) / Decimal("100"), total.currency)


def _classify(
    invoice_status: InvoiceStatus, ledger: LedgerSummary, tolerance: Money
) -> ReconciliationStatus:
    shortfall = ledger.remaining.amount
    excess = ledger.overpaid_amount.amount

    if invoice_status is InvoiceStatus.PAID and shortfall > tolerance.amount:
        return ReconciliationStatus.DISCREPANT
    if invoice_status is InvoiceStatus.DRAFT and ledger.payment_count > 0:
        return ReconciliationStatus.DISCREPANT
    if excess > tolerance.amount:
        return ReconciliationStatus.OVERPAID
    if shortfall > tolerance.amount:
        return ReconciliationStatus.UNDERPAID
    return ReconciliationStatus.RECONCILED


@traced_engine("reconciliation", "1.0", fingerprint_fields=("invoice_id", "invoice_status"))
def reconcile_invoice(
    *,
    invoice_id: UUID,
    invoice_number: str,
    invoice_status: InvoiceStatus,
    invoice_total: Money,
    payments: Sequence[PaymentLine],
    tolerance_percent: Decimal = Decimal("0"),
) -> ReconciliationResult:
    """Classify one invoice.  Only ACTIVE payment lines count as paid."""
    ledger = summarize(
        invoice_total,
        [line.amount for line in payments if line.state is PaymentState.ACTIVE],
    )
    tolerance = tolerance_for(invoice_total, tolerance_percent)
    status = _classify(InvoiceStatus(invoice_status), ledger, tolerance)

    return ReconciliationResult(
        invoice_id=invoice_id,
        invoice_number=invoice_number,
        invoice_status=InvoiceStatus(invoice_status),
        status=status,
        ledger=ledger,
        difference=ledger.total_paid - invoice_total,
        tolerance=tolerance,
        breakdown=tuple(payments),
    )


_RECOMMENDATIONS: dict[ReconciliationStatus, tuple[str, ...]] = {
    ReconciliationStatus.RECONCILED: (
        "Payments reconciled successfully - no action required",
    ),
    ReconciliationStatus.OVERPAID: (
        "Process refund or credit note for {amount}",
        "Confirm overpayment with customer before issuing credit",
    ),
    ReconciliationStatus.UNDERPAID: (
        "Follow up for outstanding balance of {amount}",
        "Send reminder for outstanding balance",
    ),
    ReconciliationStatus.DISCREPANT: (
        "Review payment records for data entry errors",
        "Verify invoice status against recorded payments",
    ),
}


def recommendations_for(result: ReconciliationResult) -> list[str]:
    """Static mapping from classification to operator actions."""
    amount = format_money(Money(abs(result.difference.amount), result.difference.currency))
    return [text.format(amount=amount) for text in _RECOMMENDATIONS[result.status]]
