"""
Tests for scripts/receivables_cron.py.

The database engine is swapped for the in-memory test session factory;
everything else (config loading, argument parsing, exit codes) is real.
"""

import importlib.util
import json
from datetime import date
from pathlib import Path
from uuid import uuid4

import pytest

import receivables_kernel.db.engine as engine_module
from receivables_kernel.models.invoice import InvoiceModel

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "receivables_cron.py"


@pytest.fixture(scope="module")
def cron():
    spec = importlib.util.spec_from_file_location("receivables_cron", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def test_database(monkeypatch, session_factory):
    monkeypatch.setattr(engine_module, "init_engine_from_url", lambda url: None)
    monkeypatch.setattr(engine_module, "get_session_factory", lambda: session_factory)


class TestArguments:

    def test_tenant_id_is_required(self, cron):
        with pytest.raises(SystemExit) as exc_info:
            cron.main(["overdue"])
        assert exc_info.value.code == 2

    def test_bad_tenant_id(self, cron):
        with pytest.raises(SystemExit):
            cron.main(["--tenant-id", "nope", "overdue"])

    def test_missing_config_exits_1(self, cron, tenant_id, tmp_path, capsys):
        code = cron.main([
            "--tenant-id", str(tenant_id), "--config", str(tmp_path / "absent.yaml"), "overdue",
        ])
        assert code == 1
        assert "Failed to load config" in capsys.readouterr().err


class TestPayments:

    def test_batch_file(self, cron, test_database, tenant_id, seed_invoice, seed_payment, tmp_path, capsys, fetch_row):
        invoice_id = seed_invoice(total="100.00")
        payment_id = seed_payment(invoice_id, "100.00")
        events = tmp_path / "events.json"
        events.write_text(json.dumps([{"payment_id": str(payment_id), "kind": "received"}]))

        code = cron.main(["--tenant-id", str(tenant_id), "payments", "--file", str(events)])

        assert code == 0
        out = capsys.readouterr().out
        assert "1 succeeded, 0 failed, 1 status changes" in out
        assert "sent->paid: 1" in out
        assert fetch_row(InvoiceModel, invoice_id).status == "paid"

    def test_item_failure_exits_2(self, cron, test_database, tenant_id, tmp_path, capsys):
        events = tmp_path / "events.json"
        events.write_text(json.dumps([{"payment_id": str(uuid4()), "kind": "received"}]))

        code = cron.main(["--tenant-id", str(tenant_id), "payments", "--file", str(events)])

        assert code == 2
        assert "PAYMENT_NOT_FOUND" in capsys.readouterr().err

    def test_events_file_must_hold_a_list(self, cron, test_database, tenant_id, tmp_path):
        events = tmp_path / "events.json"
        events.write_text(json.dumps({"payment_id": "x"}))

        assert cron.main(["--tenant-id", str(tenant_id), "payments", "--file", str(events)]) == 1


class TestOverdue:

    def test_sweep(self, cron, test_database, tenant_id, seed_invoice, capsys, fetch_row):
        invoice_id = seed_invoice(due_date=date(2020, 1, 31))

        code = cron.main(["--tenant-id", str(tenant_id), "overdue"])

        assert code == 0
        assert "1 marked overdue" in capsys.readouterr().out
        assert fetch_row(InvoiceModel, invoice_id).status == "overdue"

    def test_negative_grace_exits_1(self, cron, test_database, tenant_id, seed_invoice, capsys, fetch_row):
        invoice_id = seed_invoice(due_date=date(2020, 1, 31))

        code = cron.main(["--tenant-id", str(tenant_id), "overdue", "--grace-days", "-2"])

        assert code == 1
        assert "grace_days must not be negative" in capsys.readouterr().err
        assert fetch_row(InvoiceModel, invoice_id).status == "sent"
