"""
Tests for the YAML configuration loader and get_active_settings().
"""

from datetime import date, time
from decimal import Decimal
from uuid import uuid4

import pytest
import yaml

from receivables_config import get_active_settings
from receivables_config.loader import (
    compute_checksum,
    parse_calendar,
    parse_configuration,
    parse_settings,
    parse_time,
)
from receivables_engines.business_calendar import CalendarConfig
from receivables_kernel.domain.receivables import PaymentMethod


class TestPackagedDefault:

    def test_loads(self):
        config = get_active_settings()

        assert config.config_id == "uae_default"
        assert config.settings.max_batch_size == 100
        assert config.settings.reconciliation_tolerance_percent == Decimal("0")
        assert config.settings.default_currency == "AED"
        assert config.payment_rules.minimum_amount == Decimal("0.01")
        assert config.payment_rules.reference_required_for == frozenset({
            PaymentMethod.BANK_TRANSFER, PaymentMethod.CHEQUE,
        })
        assert config.checksum

    def test_default_calendar_matches_uae_week(self):
        calendar = get_active_settings().calendars.default

        assert calendar.timezone == "Asia/Dubai"
        assert calendar.working_days == frozenset({7, 1, 2, 3, 4})
        assert calendar.work_start == time(8, 0)
        assert calendar.work_end == time(18, 0)
        assert date(2025, 12, 2) in calendar.holidays
        assert {q.label for q in calendar.quiet_periods} >= {"lunch", "asr"}

    def test_logs_config_trace(self, captured_logs):
        get_active_settings()
        traces = [r for r in captured_logs() if r["message"] == "RECEIVABLES_CONFIG_TRACE"]
        assert traces[0]["config_id"] == "uae_default"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_settings(tmp_path / "absent.yaml")


class TestCustomFile:

    def test_tenant_override_inherits_default(self, tmp_path):
        tenant = uuid4()
        path = tmp_path / "custom.yaml"
        path.write_text(yaml.safe_dump({
            "config_id": "custom",
            "version": 3,
            "workflow": {"max_batch_size": 10, "reconciliation_tolerance_percent": "0.5"},
            "calendars": {
                "default": {"work_start": "09:00"},
                "tenants": {str(tenant): {"working_days": [1, 2, 3, 4, 5]}},
            },
        }))

        config = get_active_settings(path)

        assert config.version == 3
        assert config.settings.max_batch_size == 10
        assert config.settings.reconciliation_tolerance_percent == Decimal("0.5")
        override = config.calendars.for_tenant(tenant)
        assert override.working_days == frozenset({1, 2, 3, 4, 5})
        assert override.work_start == time(9, 0)
        assert config.calendars.for_tenant(uuid4()) == config.calendars.default
        assert config.calendars.for_tenant(str(tenant)) == override

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        config = get_active_settings(path)

        assert config.config_id == "unnamed"
        assert config.calendars.default == CalendarConfig()


class TestValidation:

    @pytest.mark.parametrize("data", [
        {"max_batch_size": 0},
        {"reconciliation_tolerance_percent": "-1"},
        {"overdue_grace_days": -2},
        {"overdue_sweep_batch_size": 0},
        {"default_currency": "ZZZ"},
    ])
    def test_bad_settings(self, data):
        with pytest.raises(ValueError):
            parse_settings(data)

    def test_bad_tenant_id(self):
        with pytest.raises(ValueError):
            parse_configuration({"calendars": {"tenants": {"not-a-uuid": {}}}})

    def test_unknown_payment_method(self):
        with pytest.raises(ValueError):
            parse_configuration({"payment_rules": {"reference_required_for": ["barter"]}})

    def test_float_tolerance_keeps_decimal_text(self):
        assert parse_settings({"reconciliation_tolerance_percent": 0.1}).reconciliation_tolerance_percent == Decimal("0.1")


class TestParsers:

    @pytest.mark.parametrize("value,expected", [
        ("08:30", time(8, 30)),
        (480, time(8, 0)),
        (time(7, 15), time(7, 15)),
    ])
    def test_parse_time(self, value, expected):
        assert parse_time(value) == expected

    def test_parse_calendar_quiet_periods(self):
        calendar = parse_calendar({
            "quiet_periods": [{"start": "13:00", "end": "14:00", "label": "siesta"}],
            "holidays": ["2025-05-01"],
        })
        assert calendar.quiet_periods[0].label == "siesta"
        assert calendar.holidays == frozenset({date(2025, 5, 1)})

    def test_checksum_is_key_order_independent(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})
