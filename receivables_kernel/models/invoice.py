"""
Module: receivables_kernel.models.invoice
Responsibility: ORM persistence for customer invoices and their lifecycle
    status.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain enums only.

Invariants enforced:
    - invoice_number is unique per tenant (uq_invoice_tenant_number).
    - total_amount >= 0 (ck_invoice_total_non_negative).
    - status is only changed through InvoiceStatusWriter, which bumps
      ``version`` with a compare-and-set UPDATE.

Failure modes:
    - IntegrityError on duplicate invoice number within a tenant.
"""

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Date, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from receivables_kernel.db.base import TrackedBase, UUIDString
from receivables_kernel.domain.receivables import InvoiceStatus

if TYPE_CHECKING:
    from receivables_kernel.models.payment import PaymentModel


class InvoiceModel(TrackedBase):
    """
    A customer invoice owned by exactly one tenant.

    Guarantees:
        - ``version`` starts at 1 and increases by one on every status write.
        - ``is_disputed`` mirrors whether the invoice is (or was last) in
          dispute; the status machine reads it but the ledger never does.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("tenant_id", "invoice_number", name="uq_invoice_tenant_number"),
        CheckConstraint("total_amount >= 0", name="ck_invoice_total_non_negative"),
        Index("idx_invoice_tenant_status", "tenant_id", "status"),
        Index("idx_invoice_due_date", "due_date"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)

    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    total_amount: Mapped[Decimal] = mapped_column(nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[InvoiceStatus] = mapped_column(
        String(20),
        nullable=False,
        default=InvoiceStatus.DRAFT,
    )

    is_disputed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    dispute_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    reminders_paused: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    reminders_paused_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # UAE tax registration number, 15 digits
    trn_number: Mapped[str | None] = mapped_column(String(15), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    payments: Mapped[list["PaymentModel"]] = relationship(
        back_populates="invoice",
        order_by="PaymentModel.payment_date",
    )

    def __repr__(self) -> str:
        return f"<Invoice {self.invoice_number}: {self.total_amount} {self.currency} ({self.status})>"
