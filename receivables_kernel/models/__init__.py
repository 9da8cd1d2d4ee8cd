"""ORM models for the receivables kernel."""

from receivables_kernel.models.audit_record import AuditRecordModel
from receivables_kernel.models.invoice import InvoiceModel
from receivables_kernel.models.payment import PaymentModel

__all__ = [
    "AuditRecordModel",
    "InvoiceModel",
    "PaymentModel",
]
