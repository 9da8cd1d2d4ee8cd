"""
Module: receivables_engines
Responsibility:
    Re-exports the pure rule engines used by the workflow services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  May import
    receivables_kernel.domain and receivables_kernel.exceptions only.
    MUST NOT import receivables_services.

Invariants enforced:
    - Engines never read the clock; "today" and "now" are parameters.
    - Decimal-only arithmetic for money.
"""

from receivables_engines.business_calendar import (
    CalendarConfig,
    QuietPeriod,
    is_eligible_for_automated_contact,
    next_eligible_instant,
)
from receivables_engines.invoice_status import (
    RejectionCode,
    StatusDecision,
    StatusEvent,
    TransitionContext,
    next_status,
)
from receivables_engines.ledger import LedgerSummary, summarize
from receivables_engines.reconciliation import (
    PaymentLine,
    ReconciliationResult,
    ReconciliationStatus,
    reconcile_invoice,
    recommendations_for,
)
from receivables_engines.workflow_rules import (
    ComplianceFlag,
    compliance_flags,
    recommended_actions,
)

__all__ = [
    "CalendarConfig",
    "ComplianceFlag",
    "LedgerSummary",
    "PaymentLine",
    "QuietPeriod",
    "ReconciliationResult",
    "ReconciliationStatus",
    "RejectionCode",
    "StatusDecision",
    "StatusEvent",
    "TransitionContext",
    "compliance_flags",
    "is_eligible_for_automated_contact",
    "next_eligible_instant",
    "next_status",
    "recommendations_for",
    "recommended_actions",
    "reconcile_invoice",
    "summarize",
]
