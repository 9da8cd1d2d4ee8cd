"""
receivables_services.overdue_sweep -- periodic overdue detection.

Responsibility:
    Finds ``sent`` invoices of one tenant whose due date plus the grace
    period lies before the tenant-local today and feeds each one an
    ``overdue_detected`` event.

Architecture position:
    Services.  Scheduled by ``scripts/receivables_cron.py overdue``.

Invariants enforced:
    - One transaction per invoice; one failure never blocks the others.
    - A run touches at most ``settings.overdue_sweep_batch_size`` invoices;
      the next run picks up the rest.
    - Re-running on the same day is a no-op for invoices already overdue
      (they are no longer selected as ``sent``).
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date, timedelta
from uuid import UUID

from receivables_kernel.domain.receivables import Actor
from receivables_kernel.exceptions import (
    AccessDeniedError,
    PaymentValidationError,
    error_code_for,
    is_transient,
)
from receivables_kernel.logging_config import LogContext, get_logger
from receivables_kernel.selectors.invoice_selector import InvoiceSelector
from receivables_services.invoice_service import InvoiceService
from receivables_services.payment_workflow import PaymentWorkflowService
from receivables_services.workflow_types import BatchItemStatus, InvoiceStatusResult

logger = get_logger("services.overdue_sweep")


@dataclass(frozen=True)
class SweepItemResult:
    invoice_id: UUID
    status: BatchItemStatus
    result: InvoiceStatusResult | None = None
    error_code: str | None = None
    error_message: str | None = None
    retryable: bool = False
    duration_ms: int = 0


@dataclass(frozen=True)
class OverdueSweepResult:
    tenant_id: UUID
    today: date
    cutoff: date
    candidates: int
    marked_overdue: int
    unchanged: int
    failed: int
    items: tuple[SweepItemResult, ...] = ()
    duration_ms: int = 0


class OverdueSweepService:

    def __init__(
        self,
        workflow: PaymentWorkflowService,
        invoices: InvoiceService | None = None,
    ):
        self._workflow = workflow
        self._invoices = invoices or InvoiceService(workflow)

    def run(
        self,
        tenant_id: UUID,
        actor: Actor,
        grace_days: int | None = None,
    ) -> OverdueSweepResult:
        """
        Mark past-due invoices of ``tenant_id`` as overdue.

        Args:
            tenant_id: Tenant to sweep; must match ``actor.tenant_id``.
            actor: Usually ``Actor.system(tenant_id)``.
            grace_days: Days after the due date before an invoice counts as
                overdue.  Defaults to ``settings.overdue_grace_days``.
        """
        if actor.tenant_id != tenant_id:
            logger.warning(
                "tenant_access_denied",
                extra={"actor_tenant_id": str(actor.tenant_id), "sweep_tenant_id": str(tenant_id)},
            )
            raise AccessDeniedError(str(actor.tenant_id), f"tenant:{tenant_id}")

        settings = self._workflow.settings
        grace = settings.overdue_grace_days if grace_days is None else grace_days
        if grace < 0:
            raise PaymentValidationError(
                "grace_days", f"grace_days must not be negative, got {grace}"
            )

        start = time.monotonic()
        today = self._workflow.local_today(tenant_id)
        # due_date + grace < today  <=>  due_date < today - grace
        cutoff = today - timedelta(days=grace)

        with LogContext.bind(tenant_id=str(tenant_id), actor_id=str(actor.actor_id)):
            candidate_ids = self._workflow.run_read_only(
                lambda session: InvoiceSelector(session).sent_invoices_due_before(
                    tenant_id, cutoff, settings.overdue_sweep_batch_size
                )
            )
            logger.info(
                "overdue_sweep_started",
                extra={
                    "today": today.isoformat(),
                    "cutoff": cutoff.isoformat(),
                    "candidates": len(candidate_ids),
                },
            )

            items: list[SweepItemResult] = []
            marked = unchanged = failed = 0
            for invoice_id in candidate_ids:
                item_start = time.monotonic()
                try:
                    result = self._invoices.detect_overdue(invoice_id, actor, grace_days=grace)
                except Exception as exc:
                    logger.warning(
                        "overdue_sweep_item_failed",
                        extra={
                            "invoice_id": str(invoice_id),
                            "error_code": error_code_for(exc),
                            "error": str(exc),
                        },
                    )
                    items.append(SweepItemResult(
                        invoice_id=invoice_id,
                        status=BatchItemStatus.FAILED,
                        error_code=error_code_for(exc),
                        error_message=str(exc),
                        retryable=is_transient(exc),
                        duration_ms=int((time.monotonic() - item_start) * 1000),
                    ))
                    failed += 1
                    continue

                if result.transitioned:
                    marked += 1
                else:
                    unchanged += 1
                items.append(SweepItemResult(
                    invoice_id=invoice_id,
                    status=BatchItemStatus.SUCCEEDED,
                    result=result,
                    duration_ms=int((time.monotonic() - item_start) * 1000),
                ))

            sweep = OverdueSweepResult(
                tenant_id=tenant_id,
                today=today,
                cutoff=cutoff,
                candidates=len(candidate_ids),
                marked_overdue=marked,
                unchanged=unchanged,
                failed=failed,
                items=tuple(items),
                duration_ms=int((time.monotonic() - start) * 1000),
            )
            logger.info(
                "overdue_sweep_completed",
                extra={
                    "candidates": sweep.candidates,
                    "marked_overdue": sweep.marked_overdue,
                    "unchanged": sweep.unchanged,
                    "failed": sweep.failed,
                    "duration_ms": sweep.duration_ms,
                },
            )
        return sweep
