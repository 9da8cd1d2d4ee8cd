"""
Receivables configuration schema.

Frozen dataclasses the YAML configuration set is parsed into.  Nothing here
reads files; see ``receivables_config.loader``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping
from uuid import UUID

from receivables_engines.business_calendar import CalendarConfig
from receivables_kernel.domain.receivables import PaymentMethod


@dataclass(frozen=True)
class WorkflowSettings:
    """Limits and tolerances for the payment workflow."""

    max_batch_size: int = 100
    reconciliation_tolerance_percent: Decimal = Decimal("0")
    overdue_grace_days: int = 0
    overdue_sweep_batch_size: int = 500
    default_currency: str = "AED"
    # Zone used to decide "today" when a tenant has no calendar override
    default_timezone: str = "Asia/Dubai"


@dataclass(frozen=True)
class PaymentValidationRules:
    """Rules applied when a payment is recorded or corrected."""

    minimum_amount: Decimal = Decimal("0.01")
    maximum_amount: Decimal | None = None
    allow_future_dates: bool = False
    reference_required_for: frozenset[PaymentMethod] = frozenset({
        PaymentMethod.BANK_TRANSFER,
        PaymentMethod.CHEQUE,
    })
    allow_overpayment: bool = True


@dataclass(frozen=True)
class TenantCalendars:
    """Default business calendar plus per-tenant overrides."""

    default: CalendarConfig = field(default_factory=CalendarConfig)
    overrides: Mapping[UUID, CalendarConfig] = field(default_factory=dict)

    def for_tenant(self, tenant_id: UUID | str | None) -> CalendarConfig:
        if tenant_id is None:
            return self.default
        key = tenant_id if isinstance(tenant_id, UUID) else UUID(str(tenant_id))
        return self.overrides.get(key, self.default)


@dataclass(frozen=True)
class ReceivablesConfiguration:
    """The assembled, validated configuration set."""

    config_id: str
    version: int
    settings: WorkflowSettings
    payment_rules: PaymentValidationRules
    calendars: TenantCalendars
    checksum: str = ""
