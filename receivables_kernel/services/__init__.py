"""Services for the receivables kernel (write side)."""

from receivables_kernel.services.audit_sink import AuditSink
from receivables_kernel.services.invoice_status_writer import InvoiceStatusWriter

__all__ = [
    "AuditSink",
    "InvoiceStatusWriter",
]
