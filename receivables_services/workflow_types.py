"""
receivables_services.workflow_types -- frozen result DTOs for the workflow.

ZERO I/O.  Everything returned across the service boundary is one of these
(or an engine DTO), never an ORM row.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from receivables_engines.invoice_status import RejectionCode, StatusEvent
from receivables_engines.ledger import LedgerSummary
from receivables_engines.workflow_rules import ComplianceFlag
from receivables_kernel.domain.receivables import (
    InvoiceStatus,
    PaymentMethod,
    WorkflowEventKind,
)
from receivables_kernel.domain.values import Money


@dataclass(frozen=True)
class StatusTransition:
    from_status: InvoiceStatus
    to_status: InvoiceStatus

    @property
    def key(self) -> str:
        return f"{self.from_status.value}->{self.to_status.value}"


@dataclass(frozen=True)
class WorkflowResult:
    """Outcome of one workflow evaluation for one payment event."""

    payment_id: UUID
    invoice_id: UUID
    invoice_number: str
    kind: WorkflowEventKind
    status_event: StatusEvent | None
    previous_status: InvoiceStatus
    new_status: InvoiceStatus
    transitioned: bool
    reason_code: RejectionCode | None
    reason: str
    ledger: LedgerSummary
    compliance_flags: tuple[ComplianceFlag, ...] = ()
    recommended_actions: tuple[str, ...] = ()
    audit_record_id: UUID | None = None
    processed_at: datetime | None = None

    @property
    def transition(self) -> StatusTransition | None:
        if not self.transitioned:
            return None
        return StatusTransition(self.previous_status, self.new_status)


@dataclass(frozen=True)
class InvoiceSnapshot:
    invoice_id: UUID
    tenant_id: UUID
    invoice_number: str
    status: InvoiceStatus
    total: Money
    due_date: date
    is_disputed: bool
    reminders_paused: bool
    version: int


@dataclass(frozen=True)
class InvoiceStatusResult:
    """Outcome of a non-payment status operation (send, dispute, write-off, override)."""

    invoice_id: UUID
    event: StatusEvent
    previous_status: InvoiceStatus
    new_status: InvoiceStatus
    transitioned: bool
    reason_code: RejectionCode | None
    reason: str
    version: int
    audit_record_id: UUID | None = None


class BatchItemStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class BatchItemResult:
    """
    One slot of a batch.  A failed slot carries the error instead of a
    result; sibling slots are unaffected.
    """

    index: int
    payment_id: UUID | None
    status: BatchItemStatus
    result: WorkflowResult | None = None
    error_code: str | None = None
    error_message: str | None = None
    retryable: bool = False
    duration_ms: int = 0


@dataclass(frozen=True)
class BatchResult:
    total: int
    succeeded: int
    failed: int
    fully_paid: int
    partially_paid: int
    transitions_triggered: int
    # "from->to" -> count
    transition_rollup: dict[str, int] = field(default_factory=dict)
    items: tuple[BatchItemResult, ...] = ()
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0
    correlation_id: str | None = None


class NotificationStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


@dataclass(frozen=True)
class PaymentNotification:
    """Normalized payment gateway notification."""

    external_payment_id: str
    invoice_number: str
    amount: Decimal
    currency: str
    method: PaymentMethod
    payment_date: date
    status: NotificationStatus
    reference: str | None = None


@dataclass(frozen=True)
class PaymentRequest:
    """One payment for ``PaymentRecordingService.record_payments``."""

    invoice_id: UUID
    amount: Decimal | str | int
    payment_date: date
    method: PaymentMethod | str = PaymentMethod.BANK_TRANSFER
    reference: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class BulkStatusItemResult:
    index: int
    invoice_id: UUID
    status: BatchItemStatus
    result: InvoiceStatusResult | None = None
    error_code: str | None = None
    error_message: str | None = None
    retryable: bool = False
    duration_ms: int = 0


@dataclass(frozen=True)
class BulkStatusResult:
    """Outcome of ``InvoiceService.bulk_update_status``; slots in input order."""

    target: InvoiceStatus
    total: int
    succeeded: int
    failed: int
    transitioned: int
    items: tuple[BulkStatusItemResult, ...] = ()
    duration_ms: int = 0
    correlation_id: str | None = None


@dataclass(frozen=True)
class StatusChange:
    invoice_id: UUID
    invoice_number: str
    event_kind: str
    old_status: InvoiceStatus
    new_status: InvoiceStatus
    reason: str | None
    actor_id: UUID
    occurred_at: datetime


@dataclass(frozen=True)
class OverdueAnalysis:
    total_overdue: int
    average_days_overdue: int
    # one entry per currency, ordered by code
    overdue_amounts: tuple[Money, ...] = ()


@dataclass(frozen=True)
class StatusInsights:
    tenant_id: UUID
    as_of: date
    status_counts: dict[InvoiceStatus, int]
    overdue: OverdueAnalysis
    recent_changes: tuple[StatusChange, ...] = ()
