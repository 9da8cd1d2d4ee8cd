"""
Receivables Kernel

Persistence, time, money and audit primitives for the invoice payment
workflow:
- Tenant-scoped invoices and payments
- Optimistic compare-and-set status writes
- Append-only audit trail
- Structured JSON logging
"""

__version__ = "0.1.0"
