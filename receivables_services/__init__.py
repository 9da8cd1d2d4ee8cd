"""
receivables_services -- transactional orchestration for the receivables workflow.

Owns every transaction boundary.  Calls the pure engines for decisions and
the kernel services (status writer, audit sink) for persistence.
"""

from receivables_services.invoice_service import InvoiceService
from receivables_services.overdue_sweep import OverdueSweepResult, OverdueSweepService
from receivables_services.payment_recording import PaymentRecordingService, validate_payment
from receivables_services.payment_workflow import PaymentWorkflowService, status_event_for
from receivables_services.webhook import parse_notification, verify_shared_secret
from receivables_services.workflow_types import (
    BatchItemResult,
    BatchItemStatus,
    BatchResult,
    BulkStatusItemResult,
    BulkStatusResult,
    InvoiceSnapshot,
    InvoiceStatusResult,
    NotificationStatus,
    OverdueAnalysis,
    PaymentNotification,
    PaymentRequest,
    StatusChange,
    StatusInsights,
    StatusTransition,
    WorkflowResult,
)

__all__ = [
    "BatchItemResult",
    "BatchItemStatus",
    "BatchResult",
    "BulkStatusItemResult",
    "BulkStatusResult",
    "InvoiceService",
    "InvoiceSnapshot",
    "InvoiceStatusResult",
    "NotificationStatus",
    "OverdueAnalysis",
    "OverdueSweepResult",
    "OverdueSweepService",
    "PaymentNotification",
    "PaymentRecordingService",
    "PaymentRequest",
    "PaymentWorkflowService",
    "StatusChange",
    "StatusInsights",
    "StatusTransition",
    "WorkflowResult",
    "parse_notification",
    "status_event_for",
    "validate_payment",
    "verify_shared_secret",
]
