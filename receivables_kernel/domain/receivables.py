"""
Receivables domain vocabulary -- closed enums and event DTOs.

Responsibility:
    The status, event-kind, payment method and payment state vocabularies
    shared by the ORM models, the pure engines and the services.  Parsing
    from untrusted strings happens here, once, at the boundary.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Imported by models and engines.

Invariants enforced:
    - Every enum is closed: unknown strings raise a ValidationError subtype
      (``InvalidEventKindError``, ``InvalidStatusError``, or
      ``PaymentValidationError`` for methods) instead of being silently
      accepted.
    - ``WorkflowEvent.metadata`` is opaque; nothing in the core reads it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping
from uuid import UUID

from receivables_kernel.exceptions import (
    InvalidEventKindError,
    InvalidStatusError,
    PaymentValidationError,
)


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status."""

    DRAFT = "draft"
    SENT = "sent"
    OVERDUE = "overdue"
    PAID = "paid"
    DISPUTED = "disputed"
    WRITTEN_OFF = "written_off"

    @classmethod
    def parse(cls, value: str | InvoiceStatus) -> InvoiceStatus:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidStatusError(value, [s.value for s in cls]) from None


class WorkflowEventKind(str, Enum):
    """Payment-side event kinds accepted by the workflow orchestrator."""

    RECEIVED = "received"
    FAILED = "failed"
    REVERSED = "reversed"
    PARTIAL = "partial"
    COMPLETED = "completed"
    OVERDUE_CLEARED = "overdue_cleared"
    CORRECTED = "corrected"

    @classmethod
    def parse(cls, value: str | WorkflowEventKind) -> WorkflowEventKind:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidEventKindError(value, [k.value for k in cls]) from None


class PaymentMethod(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    CARD = "card"
    CASH = "cash"
    CHEQUE = "cheque"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str | PaymentMethod) -> PaymentMethod:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise PaymentValidationError(
                "method",
                f"Unknown payment method {value!r}; expected one of {[m.value for m in cls]}",
            ) from None


class PaymentState(str, Enum):
    """Only ACTIVE payments count towards the ledger."""

    ACTIVE = "active"
    REVERSED = "reversed"
    FAILED = "failed"


def _freeze(metadata: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(metadata or {}))


@dataclass(frozen=True)
class WorkflowEvent:
    """One payment-side event for ``process_single`` / ``process_batch``."""

    payment_id: UUID
    kind: WorkflowEventKind
    reason: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", WorkflowEventKind.parse(self.kind))
        object.__setattr__(self, "metadata", _freeze(self.metadata))


@dataclass(frozen=True)
class Actor:
    """
    Who is driving a workflow call.

    ``tenant_id`` scopes every read and write; ``roles`` gate manual
    overrides.  The webhook path uses ``Actor.system(tenant_id)``.
    """

    actor_id: UUID
    tenant_id: UUID
    roles: frozenset[str] = frozenset()

    SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")
    OVERRIDE_ROLES = frozenset({"admin", "finance"})

    @classmethod
    def system(cls, tenant_id: UUID) -> Actor:
        return cls(actor_id=cls.SYSTEM_ACTOR_ID, tenant_id=tenant_id, roles=frozenset({"system"}))

    @property
    def can_override(self) -> bool:
        return bool(self.roles & self.OVERRIDE_ROLES)
