"""
Batch processing tests for PaymentWorkflowService.process_batch.

Verifies:
- Per-event isolation: a failed slot never aborts its siblings
- Slots come back in input order with machine-readable error codes
- Aggregate counters and the transition rollup
- Oversize batches are rejected before any work
- Malformed slots fail with validation codes, never UNHANDLED_EXCEPTION
"""

from uuid import uuid4

import pytest

from receivables_config.schema import WorkflowSettings
from receivables_kernel.domain.receivables import InvoiceStatus, WorkflowEvent
from receivables_kernel.exceptions import BatchTooLargeError
from receivables_kernel.models.invoice import InvoiceModel
from receivables_services.payment_workflow import PaymentWorkflowService
from receivables_services.workflow_types import BatchItemStatus


class TestBatchIsolation:

    def test_failures_fill_their_own_slots(self, workflow, actor, seed_invoice, seed_payment, fetch_row):
        first_invoice = seed_invoice(total="1000.00")
        second_invoice = seed_invoice(total="2000.00")
        first = seed_payment(first_invoice, "1000.00")
        second = seed_payment(second_invoice, "500.00")

        batch = workflow.process_batch(
            [
                WorkflowEvent(payment_id=first, kind="received"),
                {"payment_id": str(uuid4()), "kind": "received"},
                {"payment_id": str(second), "kind": "partial", "reason": "instalment 1"},
                {"payment_id": str(second), "kind": "refunded"},
            ],
            actor,
        )

        assert batch.total == 4
        assert batch.succeeded == 2
        assert batch.failed == 2
        assert [item.index for item in batch.items] == [0, 1, 2, 3]
        assert [item.status for item in batch.items] == [
            BatchItemStatus.SUCCEEDED,
            BatchItemStatus.FAILED,
            BatchItemStatus.SUCCEEDED,
            BatchItemStatus.FAILED,
        ]
        assert batch.items[1].error_code == "PAYMENT_NOT_FOUND"
        assert batch.items[3].error_code == "INVALID_EVENT_KIND"
        assert batch.items[3].payment_id is None
        assert not batch.items[1].retryable

        assert fetch_row(InvoiceModel, first_invoice).status == "paid"
        assert fetch_row(InvoiceModel, second_invoice).status == "sent"

    def test_foreign_tenant_item_is_denied(self, workflow, actor, seed_invoice, seed_payment, other_tenant_id):
        own = seed_payment(seed_invoice(total="100.00"), "100.00")
        foreign = seed_payment(seed_invoice(total="100.00", tenant=other_tenant_id), "100.00")

        batch = workflow.process_batch(
            [{"payment_id": own, "kind": "received"}, {"payment_id": foreign, "kind": "received"}],
            actor,
        )

        assert batch.items[0].status is BatchItemStatus.SUCCEEDED
        assert batch.items[1].error_code == "ACCESS_DENIED"

    def test_empty_batch(self, workflow, actor):
        batch = workflow.process_batch([], actor)
        assert batch.total == 0
        assert batch.items == ()
        assert batch.transition_rollup == {}


class TestMalformedEvents:

    @pytest.mark.parametrize("raw,field", [
        ({"kind": "received"}, "payment_id"),
        ({"payment_id": "", "kind": "received"}, "payment_id"),
        ({"payment_id": str(uuid4())}, "kind"),
    ])
    def test_missing_field_is_a_validation_failure(self, workflow, actor, seed_invoice, seed_payment, raw, field):
        good = seed_payment(seed_invoice(total="100.00"), "100.00")

        batch = workflow.process_batch([raw, {"payment_id": good, "kind": "received"}], actor)

        assert batch.items[0].status is BatchItemStatus.FAILED
        assert batch.items[0].error_code == "MISSING_FIELD"
        assert field in batch.items[0].error_message
        assert not batch.items[0].retryable
        assert batch.items[1].status is BatchItemStatus.SUCCEEDED

    def test_non_uuid_payment_id(self, workflow, actor):
        batch = workflow.process_batch([{"payment_id": "not-a-uuid", "kind": "received"}], actor)

        assert batch.items[0].error_code == "PAYMENT_VALIDATION_FAILED"
        assert "not-a-uuid" in batch.items[0].error_message
        assert batch.items[0].payment_id is None

    @pytest.mark.parametrize("raw", [
        "received",
        {"payment_id": str(uuid4()), "kind": "received", "metadata": ["a", "b"]},
    ])
    def test_malformed_slot_never_reports_unhandled(self, workflow, actor, raw):
        batch = workflow.process_batch([raw], actor)

        assert batch.failed == 1
        assert batch.items[0].error_code == "PAYMENT_VALIDATION_FAILED"


class TestBatchAggregates:

    def test_counters_and_rollup(self, workflow, actor, seed_invoice, seed_payment):
        paid_a = seed_payment(seed_invoice(total="100.00"), "100.00")
        paid_b = seed_payment(seed_invoice(total="200.00"), "200.00")
        partial = seed_payment(seed_invoice(total="300.00"), "50.00")
        reopened = seed_payment(
            seed_invoice(total="400.00", status=InvoiceStatus.PAID), "400.00"
        )

        batch = workflow.process_batch(
            [
                {"payment_id": paid_a, "kind": "received"},
                {"payment_id": paid_b, "kind": "completed"},
                {"payment_id": partial, "kind": "partial"},
                {"payment_id": reopened, "kind": "reversed"},
            ],
            actor,
        )

        assert batch.succeeded == 4
        assert batch.fully_paid == 2
        assert batch.partially_paid == 1
        assert batch.transitions_triggered == 3
        assert batch.transition_rollup == {"sent->paid": 2, "paid->sent": 1}
        assert batch.correlation_id
        assert batch.started_at is not None and batch.completed_at is not None

    def test_batch_logs_share_a_correlation_id(self, workflow, actor, seed_invoice, seed_payment, captured_logs):
        payment_id = seed_payment(seed_invoice(), "10.00")

        batch = workflow.process_batch([{"payment_id": payment_id, "kind": "partial"}], actor)

        records = captured_logs()
        started = [r for r in records if r["message"] == "payment_batch_started"]
        completed = [r for r in records if r["message"] == "payment_batch_completed"]
        applied = [r for r in records if r["message"] == "payment_workflow_applied"]
        assert started[0]["correlation_id"] == batch.correlation_id
        assert completed[0]["correlation_id"] == batch.correlation_id
        assert applied[0]["correlation_id"] == batch.correlation_id
        assert completed[0]["succeeded"] == 1


class TestBatchLimits:

    def test_oversize_batch_is_rejected_before_any_work(
        self, session_factory, clock, calendars, actor, seed_invoice, seed_payment, fetch_row
    ):
        small = PaymentWorkflowService(
            session_factory, clock=clock,
            settings=WorkflowSettings(max_batch_size=2), calendars=calendars,
        )
        invoice_id = seed_invoice(total="10.00")
        payment_id = seed_payment(invoice_id, "10.00")

        with pytest.raises(BatchTooLargeError) as exc_info:
            small.process_batch([{"payment_id": payment_id, "kind": "received"}] * 3, actor)

        assert exc_info.value.size == 3
        assert exc_info.value.max_size == 2
        assert fetch_row(InvoiceModel, invoice_id).status == "sent"

    def test_batch_at_the_limit_runs(self, session_factory, clock, calendars, actor, seed_invoice, seed_payment):
        small = PaymentWorkflowService(
            session_factory, clock=clock,
            settings=WorkflowSettings(max_batch_size=2), calendars=calendars,
        )
        payment_id = seed_payment(seed_invoice(total="10.00"), "10.00")

        batch = small.process_batch([{"payment_id": payment_id, "kind": "received"}] * 2, actor)

        assert batch.succeeded == 2
        assert batch.transitions_triggered == 1
