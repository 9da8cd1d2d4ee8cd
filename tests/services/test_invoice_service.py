"""
InvoiceService tests: creation, sending, disputes, write-off, manual
override (single and bulk), status insights and reminder pausing.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from receivables_config.schema import WorkflowSettings
from receivables_engines.invoice_status import RejectionCode, StatusEvent
from receivables_kernel.domain.receivables import Actor, InvoiceStatus
from receivables_kernel.exceptions import (
    AccessDeniedError,
    BatchTooLargeError,
    DuplicateInvoiceError,
    InvalidAmountError,
    InvalidStatusError,
    InvoiceNotFoundError,
    MissingFieldError,
    PaymentValidationError,
)
from receivables_kernel.models.audit_record import AuditRecordModel
from receivables_kernel.models.invoice import InvoiceModel
from receivables_services.invoice_service import InvoiceService
from receivables_services.payment_workflow import PaymentWorkflowService
from receivables_services.workflow_types import BatchItemStatus

DUE = date(2025, 3, 31)
PAST_DUE = date(2025, 3, 1)


class TestCreateInvoice:

    def test_creates_draft(self, invoice_service, actor, count_rows):
        snap = invoice_service.create_invoice(
            actor, "INV-2025-001", "12500.50", DUE,
            customer_name="Gulf Logistics FZE", trn_number="100123456700003",
        )

        assert snap.status is InvoiceStatus.DRAFT
        assert snap.version == 1
        assert snap.total.amount == Decimal("12500.50")
        assert snap.total.currency.code == "AED"
        assert snap.tenant_id == actor.tenant_id
        assert count_rows(AuditRecordModel, event_kind="invoice_created") == 1

    def test_explicit_currency(self, invoice_service, actor):
        snap = invoice_service.create_invoice(actor, "INV-USD-1", "100", DUE, currency="usd")
        assert snap.total.currency.code == "USD"

    def test_duplicate_number_in_tenant(self, invoice_service, actor):
        invoice_service.create_invoice(actor, "INV-1", "100", DUE)
        with pytest.raises(DuplicateInvoiceError):
            invoice_service.create_invoice(actor, "INV-1", "200", DUE)

    def test_same_number_in_other_tenant(self, invoice_service, actor, foreign_actor):
        invoice_service.create_invoice(actor, "INV-1", "100", DUE)
        snap = invoice_service.create_invoice(foreign_actor, "INV-1", "100", DUE)
        assert snap.tenant_id == foreign_actor.tenant_id

    def test_negative_total(self, invoice_service, actor, count_rows):
        with pytest.raises(InvalidAmountError):
            invoice_service.create_invoice(actor, "INV-1", "-1", DUE)
        assert count_rows(InvoiceModel) == 0

    def test_unknown_currency(self, invoice_service, actor, count_rows):
        with pytest.raises(PaymentValidationError) as exc_info:
            invoice_service.create_invoice(actor, "INV-1", "100", DUE, currency="ZZZ")
        assert exc_info.value.rule == "currency"
        assert count_rows(InvoiceModel) == 0

    @pytest.mark.parametrize("total", ["abc", "", 12.5])
    def test_unparseable_total(self, invoice_service, actor, total):
        with pytest.raises(InvalidAmountError):
            invoice_service.create_invoice(actor, "INV-1", total, DUE)

    def test_zero_total_allowed(self, invoice_service, actor):
        assert invoice_service.create_invoice(actor, "INV-0", "0", DUE).total.is_zero


class TestSendAndOverdue:

    def test_mark_sent(self, invoice_service, actor, seed_invoice, fetch_row):
        invoice_id = seed_invoice(status=InvoiceStatus.DRAFT)

        result = invoice_service.mark_sent(invoice_id, actor)

        assert result.transitioned
        assert result.event is StatusEvent.INVOICE_SENT
        assert result.new_status is InvoiceStatus.SENT
        assert result.version == 2
        assert fetch_row(InvoiceModel, invoice_id).status == "sent"

    def test_rejected_transition_is_audited(self, invoice_service, actor, seed_invoice, fetch_row, captured_logs):
        invoice_id = seed_invoice(status=InvoiceStatus.SENT)

        result = invoice_service.mark_sent(invoice_id, actor)

        assert not result.transitioned
        assert result.reason_code is RejectionCode.ALREADY_IN_STATUS
        assert result.version == 1
        record = fetch_row(AuditRecordModel, result.audit_record_id)
        assert record.details["transitioned"] is False
        assert record.details["reason_code"] == "ALREADY_IN_STATUS"
        assert any(r["message"] == "invoice_transition_rejected" for r in captured_logs())

    def test_detect_overdue(self, invoice_service, actor, seed_invoice):
        invoice_id = seed_invoice(due_date=PAST_DUE)
        assert invoice_service.detect_overdue(invoice_id, actor).new_status is InvoiceStatus.OVERDUE

    def test_due_today_is_not_overdue(self, invoice_service, actor, seed_invoice):
        invoice_id = seed_invoice(due_date=date(2025, 3, 10))
        result = invoice_service.detect_overdue(invoice_id, actor)
        assert result.reason_code is RejectionCode.NOT_YET_DUE

    def test_detect_overdue_honours_grace(self, invoice_service, actor, seed_invoice):
        invoice_id = seed_invoice(due_date=date(2025, 3, 5))

        within = invoice_service.detect_overdue(invoice_id, actor, grace_days=5)
        beyond = invoice_service.detect_overdue(invoice_id, actor, grace_days=4)

        assert within.reason_code is RejectionCode.NOT_YET_DUE
        assert "grace 5 days" in within.reason
        assert beyond.new_status is InvoiceStatus.OVERDUE


class TestDisputes:

    def test_raise_dispute_pauses_reminders(self, invoice_service, actor, seed_invoice, fetch_row):
        invoice_id = seed_invoice()

        result = invoice_service.raise_dispute(invoice_id, actor, "wrong quantity")

        assert result.new_status is InvoiceStatus.DISPUTED
        row = fetch_row(InvoiceModel, invoice_id)
        assert row.is_disputed
        assert row.dispute_reason == "wrong quantity"
        assert row.reminders_paused
        assert row.reminders_paused_reason == "dispute: wrong quantity"

    def test_rejected_dispute_changes_no_flags(self, invoice_service, actor, seed_invoice, fetch_row):
        invoice_id = seed_invoice(status=InvoiceStatus.PAID)

        result = invoice_service.raise_dispute(invoice_id, actor, "late")

        assert result.reason_code is RejectionCode.NOT_APPLICABLE
        row = fetch_row(InvoiceModel, invoice_id)
        assert not row.is_disputed
        assert not row.reminders_paused

    def test_resolve_to_sent_resumes_reminders(self, invoice_service, actor, seed_invoice, fetch_row):
        invoice_id = seed_invoice()
        invoice_service.raise_dispute(invoice_id, actor, "wrong quantity")

        result = invoice_service.resolve_dispute(invoice_id, actor, "sent", reason="credit note issued")

        assert result.new_status is InvoiceStatus.SENT
        row = fetch_row(InvoiceModel, invoice_id)
        assert not row.is_disputed
        assert not row.reminders_paused
        assert row.version == 3

    def test_resolve_to_paid_with_balance(self, invoice_service, actor, seed_invoice, fetch_row):
        invoice_id = seed_invoice(status=InvoiceStatus.DISPUTED, is_disputed=True)

        result = invoice_service.resolve_dispute(invoice_id, actor, InvoiceStatus.PAID)

        assert result.reason_code is RejectionCode.BALANCE_OUTSTANDING
        assert fetch_row(InvoiceModel, invoice_id).status == "disputed"

    def test_resolve_to_paid_when_settled(self, invoice_service, actor, seed_invoice, seed_payment):
        invoice_id = seed_invoice(total="100.00", status=InvoiceStatus.DISPUTED, is_disputed=True)
        seed_payment(invoice_id, "100.00")

        result = invoice_service.resolve_dispute(invoice_id, actor, "paid")

        assert result.new_status is InvoiceStatus.PAID


class TestWriteOffAndOverride:

    def test_write_off(self, invoice_service, actor, seed_invoice, fetch_row):
        invoice_id = seed_invoice(status=InvoiceStatus.OVERDUE, due_date=PAST_DUE)

        result = invoice_service.write_off(invoice_id, actor, reason="customer insolvent")

        assert result.new_status is InvoiceStatus.WRITTEN_OFF
        row = fetch_row(InvoiceModel, invoice_id)
        assert row.reminders_paused
        assert row.reminders_paused_reason == "written off"

    @pytest.mark.parametrize("reason", ["", "   "])
    def test_write_off_needs_a_reason(self, invoice_service, actor, seed_invoice, fetch_row, count_rows, reason):
        invoice_id = seed_invoice(status=InvoiceStatus.OVERDUE, due_date=PAST_DUE)

        with pytest.raises(MissingFieldError) as exc_info:
            invoice_service.write_off(invoice_id, actor, reason)

        assert exc_info.value.field_name == "reason"
        assert fetch_row(InvoiceModel, invoice_id).status == "overdue"
        assert count_rows(AuditRecordModel) == 0

    def test_write_off_reason_is_audited(self, invoice_service, actor, seed_invoice, fetch_row):
        invoice_id = seed_invoice(status=InvoiceStatus.OVERDUE, due_date=PAST_DUE)

        result = invoice_service.write_off(invoice_id, actor, "customer insolvent")

        assert fetch_row(AuditRecordModel, result.audit_record_id).reason == "customer insolvent"

    def test_override_requires_role(self, invoice_service, actor, seed_invoice, count_rows, captured_logs):
        invoice_id = seed_invoice(status=InvoiceStatus.PAID)

        with pytest.raises(AccessDeniedError):
            invoice_service.override_status(invoice_id, actor, "sent", reason="bank recalled funds")

        assert count_rows(AuditRecordModel) == 0
        assert any(r["message"] == "status_override_denied" for r in captured_logs())

    def test_admin_override(self, invoice_service, admin_actor, seed_invoice, fetch_row):
        invoice_id = seed_invoice(status=InvoiceStatus.PAID)

        result = invoice_service.override_status(
            invoice_id, admin_actor, "sent", reason="bank recalled funds"
        )

        assert result.transitioned
        record = fetch_row(AuditRecordModel, result.audit_record_id)
        assert record.event_kind == "manual_override"
        assert record.reason == "bank recalled funds"
        assert record.details["target_status"] == "sent"

    def test_override_to_disputed_sets_flag(self, invoice_service, admin_actor, seed_invoice, fetch_row):
        invoice_id = seed_invoice()
        invoice_service.override_status(invoice_id, admin_actor, "disputed", reason="legal hold")
        assert fetch_row(InvoiceModel, invoice_id).is_disputed

    def test_override_other_tenant(self, invoice_service, seed_invoice, other_tenant_id):
        invoice_id = seed_invoice()
        outsider = Actor(actor_id=uuid4(), tenant_id=other_tenant_id, roles=frozenset({"finance"}))
        with pytest.raises(AccessDeniedError):
            invoice_service.override_status(invoice_id, outsider, "paid", reason="x")


class TestReminders:

    def test_pause_and_resume(self, invoice_service, actor, seed_invoice, count_rows):
        invoice_id = seed_invoice()

        paused = invoice_service.pause_reminders(invoice_id, actor, "customer on leave")
        again = invoice_service.pause_reminders(invoice_id, actor, "customer on leave")
        resumed = invoice_service.resume_reminders(invoice_id, actor)

        assert paused.reminders_paused
        assert again.reminders_paused
        assert not resumed.reminders_paused
        assert count_rows(AuditRecordModel, event_kind="reminders_paused") == 1
        assert count_rows(AuditRecordModel, event_kind="reminders_resumed") == 1

    def test_pausing_does_not_bump_version(self, invoice_service, actor, seed_invoice):
        invoice_id = seed_invoice()
        assert invoice_service.pause_reminders(invoice_id, actor, "x").version == 1


class TestGetInvoice:

    def test_get(self, invoice_service, tenant_id, seed_invoice):
        invoice_id = seed_invoice(total="42.00", number="INV-42")
        snap = invoice_service.get_invoice(invoice_id, tenant_id)
        assert snap.invoice_number == "INV-42"
        assert snap.status is InvoiceStatus.SENT

    def test_other_tenant(self, invoice_service, other_tenant_id, seed_invoice):
        with pytest.raises(AccessDeniedError):
            invoice_service.get_invoice(seed_invoice(), other_tenant_id)

    def test_missing(self, invoice_service, tenant_id):
        with pytest.raises(InvoiceNotFoundError):
            invoice_service.get_invoice(uuid4(), tenant_id)


class TestBulkUpdateStatus:

    def test_overrides_each_invoice(self, invoice_service, admin_actor, seed_invoice, fetch_row):
        sent = seed_invoice()
        overdue = seed_invoice(status=InvoiceStatus.OVERDUE, due_date=PAST_DUE)
        already = seed_invoice(status=InvoiceStatus.WRITTEN_OFF)

        result = invoice_service.bulk_update_status(
            [sent, str(overdue), already], admin_actor, "written_off", reason="year-end clean-up"
        )

        assert result.target is InvoiceStatus.WRITTEN_OFF
        assert result.total == 3
        assert result.succeeded == 3
        assert result.failed == 0
        assert result.transitioned == 2
        assert [item.invoice_id for item in result.items] == [sent, overdue, already]
        assert result.items[2].result.reason_code is RejectionCode.ALREADY_IN_STATUS
        assert fetch_row(InvoiceModel, sent).status == "written_off"
        assert fetch_row(InvoiceModel, overdue).status == "written_off"
        record = fetch_row(AuditRecordModel, result.items[0].result.audit_record_id)
        assert record.event_kind == "manual_override"
        assert record.reason == "year-end clean-up"

    def test_default_reason(self, invoice_service, admin_actor, seed_invoice, fetch_row):
        result = invoice_service.bulk_update_status([seed_invoice()], admin_actor, InvoiceStatus.PAID)
        record = fetch_row(AuditRecordModel, result.items[0].result.audit_record_id)
        assert record.reason == "bulk status update to paid"

    def test_requires_override_role(self, invoice_service, actor, seed_invoice, count_rows, captured_logs):
        with pytest.raises(AccessDeniedError):
            invoice_service.bulk_update_status([seed_invoice()], actor, "paid")
        assert count_rows(AuditRecordModel) == 0
        assert any(r["message"] == "bulk_status_update_denied" for r in captured_logs())

    def test_foreign_or_unknown_id_rejects_the_whole_request(
        self, invoice_service, admin_actor, seed_invoice, other_tenant_id, fetch_row, count_rows
    ):
        own = seed_invoice()
        foreign = seed_invoice(tenant=other_tenant_id)
        missing = uuid4()

        with pytest.raises(InvoiceNotFoundError) as exc_info:
            invoice_service.bulk_update_status([own, foreign, missing], admin_actor, "paid")

        assert str(foreign) in exc_info.value.invoice_ref
        assert str(missing) in exc_info.value.invoice_ref
        assert str(own) not in exc_info.value.invoice_ref
        assert fetch_row(InvoiceModel, own).status == "sent"
        assert fetch_row(InvoiceModel, foreign).status == "sent"
        assert count_rows(AuditRecordModel) == 0

    def test_malformed_id(self, invoice_service, admin_actor):
        with pytest.raises(PaymentValidationError) as exc_info:
            invoice_service.bulk_update_status(["INV-0001"], admin_actor, "paid")
        assert exc_info.value.rule == "invoice_ids"

    def test_empty_ids(self, invoice_service, admin_actor):
        with pytest.raises(MissingFieldError):
            invoice_service.bulk_update_status([], admin_actor, "paid")

    def test_unknown_target(self, invoice_service, admin_actor, seed_invoice):
        with pytest.raises(InvalidStatusError):
            invoice_service.bulk_update_status([seed_invoice()], admin_actor, "closed")

    def test_respects_max_batch_size(
        self, session_factory, clock, calendars, admin_actor, seed_invoice, count_rows
    ):
        small = InvoiceService(PaymentWorkflowService(
            session_factory, clock=clock,
            settings=WorkflowSettings(max_batch_size=1), calendars=calendars,
        ))

        with pytest.raises(BatchTooLargeError):
            small.bulk_update_status([seed_invoice(), seed_invoice()], admin_actor, "paid")
        assert count_rows(AuditRecordModel) == 0

    def test_failure_is_isolated(self, invoice_service, admin_actor, seed_invoice, fetch_row, monkeypatch):
        broken = seed_invoice()
        healthy = seed_invoice()
        original = invoice_service.override_status

        def flaky(invoice_id, actor, target, reason):
            if invoice_id == broken:
                raise RuntimeError("connection reset")
            return original(invoice_id, actor, target, reason)

        monkeypatch.setattr(invoice_service, "override_status", flaky)

        result = invoice_service.bulk_update_status([broken, healthy], admin_actor, "paid")

        assert result.succeeded == 1
        assert result.failed == 1
        assert result.items[0].status is BatchItemStatus.FAILED
        assert result.items[0].error_code == "UNHANDLED_EXCEPTION"
        assert fetch_row(InvoiceModel, healthy).status == "paid"


class TestStatusInsights:

    def test_counts_overdue_analysis_and_recent_changes(
        self, invoice_service, actor, tenant_id, other_tenant_id, seed_invoice, clock
    ):
        draft = seed_invoice(status=InvoiceStatus.DRAFT, number="INV-D")
        disputed = seed_invoice(number="INV-X")
        still_sent = seed_invoice(number="INV-S")
        seed_invoice(status=InvoiceStatus.OVERDUE, total="1000.00", due_date=date(2025, 3, 1))
        seed_invoice(status=InvoiceStatus.OVERDUE, total="500.00", due_date=date(2025, 2, 28))
        seed_invoice(status=InvoiceStatus.OVERDUE, total="200.00", currency="USD", due_date=date(2025, 3, 8))
        seed_invoice(status=InvoiceStatus.PAID)
        seed_invoice(status=InvoiceStatus.OVERDUE, tenant=other_tenant_id, due_date=date(2024, 1, 1))

        invoice_service.mark_sent(draft, actor)
        clock.advance(60)
        invoice_service.raise_dispute(disputed, actor, "wrong quantity")
        invoice_service.mark_sent(still_sent, actor)

        insights = invoice_service.status_insights(tenant_id)

        assert insights.as_of == date(2025, 3, 10)
        assert insights.status_counts == {
            InvoiceStatus.DRAFT: 0,
            InvoiceStatus.SENT: 2,
            InvoiceStatus.OVERDUE: 3,
            InvoiceStatus.PAID: 1,
            InvoiceStatus.DISPUTED: 1,
            InvoiceStatus.WRITTEN_OFF: 0,
        }
        # 9, 10 and 2 days past due
        assert insights.overdue.total_overdue == 3
        assert insights.overdue.average_days_overdue == 7
        assert [str(m) for m in insights.overdue.overdue_amounts] == ["AED 1,500.00", "USD 200.00"]

        changes = insights.recent_changes
        assert [(c.invoice_number, c.old_status, c.new_status) for c in changes] == [
            ("INV-X", InvoiceStatus.SENT, InvoiceStatus.DISPUTED),
            ("INV-D", InvoiceStatus.DRAFT, InvoiceStatus.SENT),
        ]
        assert changes[0].reason == "wrong quantity"
        assert changes[0].actor_id == actor.actor_id

    def test_old_changes_fall_out_of_the_window(self, invoice_service, actor, tenant_id, seed_invoice, clock):
        invoice_service.mark_sent(seed_invoice(status=InvoiceStatus.DRAFT), actor)
        clock.advance_days(8)

        assert invoice_service.status_insights(tenant_id).recent_changes == ()
        assert len(invoice_service.status_insights(tenant_id, recent_days=9).recent_changes) == 1

    def test_recent_limit(self, invoice_service, actor, tenant_id, seed_invoice):
        for _ in range(3):
            invoice_service.mark_sent(seed_invoice(status=InvoiceStatus.DRAFT), actor)

        assert len(invoice_service.status_insights(tenant_id, recent_limit=2).recent_changes) == 2

    def test_empty_tenant(self, invoice_service, tenant_id):
        insights = invoice_service.status_insights(tenant_id)

        assert set(insights.status_counts.values()) == {0}
        assert insights.overdue.total_overdue == 0
        assert insights.overdue.average_days_overdue == 0
        assert insights.overdue.overdue_amounts == ()
