"""
Configuration Loader (``receivables_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into the frozen dataclasses
of ``receivables_config.schema``.  Services never call this directly; the
runtime entry point is ``receivables_config.get_active_settings()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Out-of-range values, unknown currency, bad tenant id  -> ``ValueError``.
* Invalid date or time strings  -> ``ValueError`` from ``fromisoformat``.
"""

from __future__ import annotations

import hashlib
import json
from datetime import date, time
from decimal import Decimal
from pathlib import Path
from typing import Any
from uuid import UUID

import yaml

from receivables_config.schema import (
    PaymentValidationRules,
    ReceivablesConfiguration,
    TenantCalendars,
    WorkflowSettings,
)
from receivables_engines.business_calendar import CalendarConfig, QuietPeriod
from receivables_kernel.domain.currency import CurrencyRegistry
from receivables_kernel.domain.receivables import PaymentMethod


def load_yaml_file(path: Path) -> dict[str, Any]:
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value)
    raise ValueError(f"Cannot parse date from {value!r}")


def parse_time(value: Any) -> time:
    if isinstance(value, time):
        return value
    # YAML 1.1 reads unquoted 08:00 as sexagesimal minutes (480)
    if isinstance(value, int):
        return time(value // 60, value % 60)
    if isinstance(value, str):
        return time.fromisoformat(value)
    raise ValueError(f"Cannot parse time from {value!r}")


def parse_decimal(value: Any) -> Decimal:
    if isinstance(value, float):
        value = repr(value)
    return Decimal(str(value))


def parse_settings(data: dict[str, Any]) -> WorkflowSettings:
    defaults = WorkflowSettings()
    settings = WorkflowSettings(
        max_batch_size=int(data.get("max_batch_size", defaults.max_batch_size)),
        reconciliation_tolerance_percent=parse_decimal(
            data.get("reconciliation_tolerance_percent", defaults.reconciliation_tolerance_percent)
        ),
        overdue_grace_days=int(data.get("overdue_grace_days", defaults.overdue_grace_days)),
        overdue_sweep_batch_size=int(
            data.get("overdue_sweep_batch_size", defaults.overdue_sweep_batch_size)
        ),
        default_currency=str(data.get("default_currency", defaults.default_currency)).upper(),
        default_timezone=str(data.get("default_timezone", defaults.default_timezone)),
    )

    if settings.max_batch_size < 1:
        raise ValueError(f"max_batch_size must be >= 1, got {settings.max_batch_size}")
    if settings.reconciliation_tolerance_percent < 0:
        raise ValueError("reconciliation_tolerance_percent must not be negative")
    if settings.overdue_grace_days < 0:
        raise ValueError("overdue_grace_days must not be negative")
    if settings.overdue_sweep_batch_size < 1:
        raise ValueError("overdue_sweep_batch_size must be >= 1")
    if not CurrencyRegistry.is_valid(settings.default_currency):
        raise ValueError(f"Unknown default_currency {settings.default_currency!r}")
    return settings


def parse_payment_rules(data: dict[str, Any]) -> PaymentValidationRules:
    defaults = PaymentValidationRules()
    maximum = data.get("maximum_amount")
    required = data.get("reference_required_for")
    return PaymentValidationRules(
        minimum_amount=parse_decimal(data.get("minimum_amount", defaults.minimum_amount)),
        maximum_amount=parse_decimal(maximum) if maximum is not None else None,
        allow_future_dates=bool(data.get("allow_future_dates", defaults.allow_future_dates)),
        reference_required_for=(
            frozenset(PaymentMethod(m) for m in required)
            if required is not None
            else defaults.reference_required_for
        ),
        allow_overpayment=bool(data.get("allow_overpayment", defaults.allow_overpayment)),
    )


def parse_quiet_period(data: dict[str, Any]) -> QuietPeriod:
    return QuietPeriod(
        start=parse_time(data["start"]),
        end=parse_time(data["end"]),
        label=str(data.get("label", "")),
    )


def parse_calendar(data: dict[str, Any], base: CalendarConfig | None = None) -> CalendarConfig:
    """Parse a calendar; keys absent from ``data`` are taken from ``base``."""
    base = base or CalendarConfig()
    return CalendarConfig(
        timezone=str(data.get("timezone", base.timezone)),
        working_days=(
            frozenset(int(d) for d in data["working_days"])
            if "working_days" in data
            else base.working_days
        ),
        work_start=parse_time(data["work_start"]) if "work_start" in data else base.work_start,
        work_end=parse_time(data["work_end"]) if "work_end" in data else base.work_end,
        holidays=(
            frozenset(parse_date(h) for h in data["holidays"])
            if "holidays" in data
            else base.holidays
        ),
        quiet_periods=(
            tuple(parse_quiet_period(q) for q in data["quiet_periods"])
            if "quiet_periods" in data
            else base.quiet_periods
        ),
    )


def parse_calendars(data: dict[str, Any]) -> TenantCalendars:
    default = parse_calendar(data.get("default", {}))
    overrides: dict[UUID, CalendarConfig] = {}
    for tenant_id, tenant_data in (data.get("tenants") or {}).items():
        overrides[UUID(str(tenant_id))] = parse_calendar(tenant_data or {}, base=default)
    return TenantCalendars(default=default, overrides=overrides)


def compute_checksum(data: dict[str, Any]) -> str:
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_configuration(data: dict[str, Any]) -> ReceivablesConfiguration:
    return ReceivablesConfiguration(
        config_id=str(data.get("config_id", "unnamed")),
        version=int(data.get("version", 1)),
        settings=parse_settings(data.get("workflow", {})),
        payment_rules=parse_payment_rules(data.get("payment_rules", {})),
        calendars=parse_calendars(data.get("calendars", {})),
        checksum=compute_checksum(data),
    )


def load_configuration(path: Path) -> ReceivablesConfiguration:
    return parse_configuration(load_yaml_file(path))
