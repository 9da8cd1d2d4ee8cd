"""
Module: receivables_kernel.selectors.invoice_selector
Responsibility: Tenant-scoped reads of invoices, payments and audit history.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Every lookup that takes a tenant_id filters on it in SQL; rows owned by
      another tenant are indistinguishable from missing rows.
    - ``lock_invoice`` issues SELECT ... FOR UPDATE so concurrent workflow
      calls on one invoice serialize at the row.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from receivables_kernel.domain.receivables import InvoiceStatus, PaymentState
from receivables_kernel.models.audit_record import AuditRecordModel
from receivables_kernel.models.invoice import InvoiceModel
from receivables_kernel.models.payment import PaymentModel
from receivables_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class AuditEntryDTO:
    event_kind: str
    old_status: str | None
    new_status: str | None
    reason: str | None
    actor_id: UUID
    occurred_at: datetime


class InvoiceSelector(BaseSelector):
    """Read access for the workflow services."""

    def get_invoice(self, invoice_id: UUID) -> InvoiceModel | None:
        return self.session.get(InvoiceModel, invoice_id)

    def lock_invoice(self, invoice_id: UUID) -> InvoiceModel | None:
        stmt = (
            select(InvoiceModel)
            .where(InvoiceModel.id == invoice_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def find_by_number(self, tenant_id: UUID, invoice_number: str) -> InvoiceModel | None:
        stmt = select(InvoiceModel).where(
            InvoiceModel.tenant_id == tenant_id,
            InvoiceModel.invoice_number == invoice_number,
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def get_payment(self, payment_id: UUID) -> PaymentModel | None:
        return self.session.get(PaymentModel, payment_id)

    def find_payment_by_reference(self, invoice_id: UUID, reference: str) -> PaymentModel | None:
        stmt = (
            select(PaymentModel)
            .where(
                PaymentModel.invoice_id == invoice_id,
                PaymentModel.reference == reference,
            )
            .order_by(PaymentModel.created_at)
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def payments_for(self, invoice_id: UUID) -> list[PaymentModel]:
        """All payments on the invoice, any state, oldest first."""
        stmt = (
            select(PaymentModel)
            .where(PaymentModel.invoice_id == invoice_id)
            .order_by(PaymentModel.payment_date, PaymentModel.created_at)
        )
        return list(self.session.execute(stmt).scalars())

    def active_payment_amounts(self, invoice_id: UUID) -> list[Decimal]:
        stmt = select(PaymentModel.amount).where(
            PaymentModel.invoice_id == invoice_id,
            PaymentModel.state == PaymentState.ACTIVE.value,
        )
        return list(self.session.execute(stmt).scalars())

    def sent_invoices_due_before(
        self, tenant_id: UUID, cutoff: date, limit: int
    ) -> list[UUID]:
        """Ids of ``sent`` invoices whose due date is strictly before ``cutoff``."""
        stmt = (
            select(InvoiceModel.id)
            .where(
                InvoiceModel.tenant_id == tenant_id,
                InvoiceModel.status == InvoiceStatus.SENT.value,
                InvoiceModel.due_date < cutoff,
            )
            .order_by(InvoiceModel.due_date, InvoiceModel.invoice_number)
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars())

    def owned_invoice_ids(self, tenant_id: UUID, invoice_ids: Iterable[UUID]) -> set[UUID]:
        """The subset of ``invoice_ids`` that exist and belong to ``tenant_id``."""
        ids = list(invoice_ids)
        if not ids:
            return set()
        stmt = select(InvoiceModel.id).where(
            InvoiceModel.tenant_id == tenant_id,
            InvoiceModel.id.in_(ids),
        )
        return set(self.session.execute(stmt).scalars())

    def status_counts(self, tenant_id: UUID) -> dict[str, int]:
        stmt = (
            select(InvoiceModel.status, func.count())
            .where(InvoiceModel.tenant_id == tenant_id)
            .group_by(InvoiceModel.status)
        )
        return {status: count for status, count in self.session.execute(stmt)}

    def overdue_invoices(self, tenant_id: UUID) -> list[tuple[date, Decimal, str]]:
        """``(due_date, total_amount, currency)`` of every overdue invoice."""
        stmt = select(
            InvoiceModel.due_date, InvoiceModel.total_amount, InvoiceModel.currency
        ).where(
            InvoiceModel.tenant_id == tenant_id,
            InvoiceModel.status == InvoiceStatus.OVERDUE.value,
        )
        return [tuple(row) for row in self.session.execute(stmt)]

    def recent_status_changes(
        self, tenant_id: UUID, since: datetime, limit: int
    ) -> list[tuple[AuditRecordModel, str]]:
        """
        Invoice audit records that changed the status, newest first, paired
        with the invoice number.  Rejected evaluations and creation records
        are excluded.
        """
        stmt = (
            select(AuditRecordModel, InvoiceModel.invoice_number)
            .join(InvoiceModel, InvoiceModel.id == AuditRecordModel.entity_id)
            .where(
                AuditRecordModel.tenant_id == tenant_id,
                AuditRecordModel.entity_type == "Invoice",
                AuditRecordModel.old_status.is_not(None),
                AuditRecordModel.new_status.is_not(None),
                AuditRecordModel.old_status != AuditRecordModel.new_status,
                AuditRecordModel.occurred_at >= since,
            )
            .order_by(AuditRecordModel.occurred_at.desc())
            .limit(limit)
        )
        return [(record, number) for record, number in self.session.execute(stmt)]

    def audit_trail(self, entity_id: UUID) -> list[AuditEntryDTO]:
        stmt = (
            select(AuditRecordModel)
            .where(AuditRecordModel.entity_id == entity_id)
            .order_by(AuditRecordModel.occurred_at)
        )
        return [
            AuditEntryDTO(
                event_kind=row.event_kind,
                old_status=row.old_status,
                new_status=row.new_status,
                reason=row.reason,
                actor_id=row.actor_id,
                occurred_at=row.occurred_at,
            )
            for row in self.session.execute(stmt).scalars()
        ]
