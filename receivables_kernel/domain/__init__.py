"""
Pure domain layer.

No ORM, database, wall-clock or I/O dependencies.  All value objects are
immutable.
"""

from receivables_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from receivables_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from receivables_kernel.domain.receivables import (
    Actor,
    InvoiceStatus,
    PaymentMethod,
    PaymentState,
    WorkflowEvent,
    WorkflowEventKind,
)
from receivables_kernel.domain.values import Currency, Money, format_money

__all__ = [
    "Actor",
    "Clock",
    "Currency",
    "CurrencyInfo",
    "CurrencyRegistry",
    "DeterministicClock",
    "InvoiceStatus",
    "Money",
    "PaymentMethod",
    "PaymentState",
    "SystemClock",
    "WorkflowEvent",
    "WorkflowEventKind",
    "format_money",
]
