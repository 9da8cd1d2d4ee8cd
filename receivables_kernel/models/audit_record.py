"""
Module: receivables_kernel.models.audit_record
Responsibility: ORM persistence for the append-only status/payment audit trail.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: UPDATE and DELETE raise ImmutabilityViolationError
      (see db/immutability.py).

Minimum coverage:
    - every invoice status change (workflow, dispute, write-off, override)
    - every payment recorded, corrected, reversed or failed
    - every rejected workflow evaluation
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from receivables_kernel.db.base import Base, UUIDString


class AuditRecordModel(Base):
    """One immutable audit entry."""

    __tablename__ = "audit_records"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_tenant_occurred", "tenant_id", "occurred_at"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # Workflow event kind, status event, or payment action
    event_kind: Mapped[str] = mapped_column(String(50), nullable=False)

    old_status: Mapped[str | None] = mapped_column(String(20), nullable=True)

    new_status: Mapped[str | None] = mapped_column(String(20), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # "metadata" is reserved on declarative classes
    details: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditRecord {self.entity_type}:{self.entity_id} {self.event_kind}>"
