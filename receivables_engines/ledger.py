"""
Module: receivables_engines.ledger
Responsibility:
    Aggregate the active payments of an invoice into a ``LedgerSummary``:
    amount paid, remaining balance, and the partial / full / over-paid
    flags the status machine and the recommendations depend on.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Decimal-only arithmetic; the result does not depend on payment order.
    - remaining = max(total - paid, 0); over-payment shows up in
      ``overpaid_amount``, never as a negative balance.
    - Every payment amount is strictly positive and in the invoice currency.

Failure modes:
    - InvalidAmountError for a negative total or a non-positive payment.
    - CurrencyMismatchError when a payment is in another currency.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from receivables_engines.tracer import traced_engine
from receivables_kernel.domain.values import Money
from receivables_kernel.exceptions import CurrencyMismatchError, InvalidAmountError

_HUNDRED = Decimal("100")
_PERCENT_QUANTUM = Decimal("0.01")


@dataclass(frozen=True)
class LedgerSummary:
    invoice_total: Money
    total_paid: Money
    remaining: Money
    payment_count: int
    overpaid_amount: Money

    @property
    def is_fully_paid(self) -> bool:
        return self.remaining.is_zero

    @property
    def is_partial(self) -> bool:
        return self.total_paid.is_positive and self.remaining.is_positive

    @property
    def is_overpaid(self) -> bool:
        return self.overpaid_amount.is_positive

    @property
    def paid_percentage(self) -> Decimal:
        """Presentation only: percent paid, 2 dp, ROUND_HALF_UP.  A zero total counts as 100."""
        if self.invoice_total.is_zero:
            return _HUNDRED.quantize(_PERCENT_QUANTUM)
        ratio = self.total_paid.amount / self.invoice_total.amount * _HUNDRED
        return ratio.quantize(_PERCENT_QUANTUM, rounding=ROUND_HALF_UP)


@traced_engine("ledger", "1.0", fingerprint_fields=("invoice_total", "payments"))
def summarize(invoice_total: Money, payments: Iterable[Money]) -> LedgerSummary:
    if invoice_total.amount < 0:
        raise InvalidAmountError(invoice_total.amount, "invoice total must not be negative")

    currency = invoice_total.currency
    paid = Decimal("0")
    count = 0
    for payment in payments:
        if payment.currency != currency:
            raise CurrencyMismatchError(currency.code, payment.currency.code)
        if payment.amount <= 0:
            raise InvalidAmountError(payment.amount, "payment amount must be positive")
        paid += payment.amount
        count += 1

    difference = invoice_total.amount - paid
    return LedgerSummary(
        invoice_total=invoice_total,
        total_paid=Money(paid, currency),
        remaining=Money(max(difference, Decimal("0")), currency),
        payment_count=count,
        overpaid_amount=Money(max(-difference, Decimal("0")), currency),
    )
