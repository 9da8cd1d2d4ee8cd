"""Selectors for the receivables kernel (read side)."""

from receivables_kernel.selectors.invoice_selector import AuditEntryDTO, InvoiceSelector

__all__ = [
    "AuditEntryDTO",
    "InvoiceSelector",
]
