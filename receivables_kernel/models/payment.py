"""
Module: receivables_kernel.models.payment
Responsibility: ORM persistence for payments recorded against invoices.
Architecture position: Kernel > Models.

Invariants enforced:
    - amount > 0 (ck_payment_amount_positive); refunds are not payments.
    - Rows are never deleted; a reversed or failed payment keeps its row and
      is frozen by the immutability listeners.
    - (invoice_id, reference) identifies a gateway payment, so a replayed
      notification finds the existing row.
"""

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from receivables_kernel.db.base import TrackedBase, UUIDString
from receivables_kernel.domain.receivables import PaymentMethod, PaymentState

if TYPE_CHECKING:
    from receivables_kernel.models.invoice import InvoiceModel


class PaymentModel(TrackedBase):
    """A single payment.  Only ``state == active`` rows count as paid."""

    __tablename__ = "payments"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
        Index("idx_payment_invoice", "invoice_id"),
        Index("idx_payment_invoice_reference", "invoice_id", "reference"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("invoices.id"),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    payment_date: Mapped[date] = mapped_column(Date, nullable=False)

    method: Mapped[PaymentMethod] = mapped_column(
        String(20),
        nullable=False,
        default=PaymentMethod.BANK_TRANSFER,
    )

    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    state: Mapped[PaymentState] = mapped_column(
        String(20),
        nullable=False,
        default=PaymentState.ACTIVE,
    )

    invoice: Mapped["InvoiceModel"] = relationship(back_populates="payments")

    @property
    def is_active(self) -> bool:
        return PaymentState(self.state) is PaymentState.ACTIVE

    def __repr__(self) -> str:
        return f"<Payment {self.id}: {self.amount} ({self.state})>"
