"""
Module: receivables_engines.workflow_rules
Responsibility:
    Advisory output attached to every workflow result: UAE compliance flags
    and human-readable recommended next actions for the notification
    collaborator.  Neither influences the status decision.

Architecture position:
    Engines -- pure, zero I/O.  Business-hours evaluation goes through the
    calendar engine with an explicit config and instant.
"""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum

from receivables_engines.business_calendar import (
    CalendarConfig,
    is_eligible_for_automated_contact,
)
from receivables_engines.ledger import LedgerSummary
from receivables_kernel.domain.receivables import PaymentMethod, WorkflowEventKind

_TRN_PATTERN = re.compile(r"^\d{15}$")


class ComplianceFlag(str, Enum):
    TRN_COMPLIANT = "TRN_COMPLIANT"
    BANK_TRANSFER_TRACEABLE = "BANK_TRANSFER_TRACEABLE"
    REFERENCE_PROVIDED = "REFERENCE_PROVIDED"
    PROCESSED_BUSINESS_HOURS = "PROCESSED_BUSINESS_HOURS"


def is_valid_trn(trn_number: str | None) -> bool:
    """UAE tax registration numbers are exactly 15 digits."""
    return bool(trn_number) and bool(_TRN_PATTERN.match(trn_number.strip()))


def compliance_flags(
    *,
    trn_number: str | None,
    method: PaymentMethod | str | None,
    reference: str | None,
    processed_at: datetime,
    calendar: CalendarConfig | None,
) -> tuple[ComplianceFlag, ...]:
    flags: list[ComplianceFlag] = []
    if is_valid_trn(trn_number):
        flags.append(ComplianceFlag.TRN_COMPLIANT)
    if method is not None and PaymentMethod(method) is PaymentMethod.BANK_TRANSFER:
        flags.append(ComplianceFlag.BANK_TRANSFER_TRACEABLE)
    if reference and reference.strip():
        flags.append(ComplianceFlag.REFERENCE_PROVIDED)
    if is_eligible_for_automated_contact(processed_at, calendar):
        flags.append(ComplianceFlag.PROCESSED_BUSINESS_HOURS)
    return tuple(flags)


_REVERSAL_KINDS = frozenset({WorkflowEventKind.REVERSED, WorkflowEventKind.FAILED})


def recommended_actions(ledger: LedgerSummary, kind: WorkflowEventKind) -> list[str]:
    actions: list[str] = []

    if kind in _REVERSAL_KINDS:
        actions.extend([
            "Investigate payment reversal",
            "Contact customer for alternative payment",
            "Resume collection activities if necessary",
        ])
    elif ledger.is_fully_paid:
        actions.extend([
            "Send payment confirmation to customer",
            "Archive invoice",
            "Update accounting records",
        ])
    elif ledger.is_partial:
        actions.extend([
            "Send partial payment acknowledgment",
            "Schedule follow-up for remaining balance",
            "Monitor payment completion",
        ])

    if kind is WorkflowEventKind.OVERDUE_CLEARED:
        actions.extend([
            "Remove from overdue tracking",
            "Cancel pending reminder emails",
        ])

    if ledger.is_overpaid:
        actions.append("Review overpayment for refund or credit note")

    return actions
