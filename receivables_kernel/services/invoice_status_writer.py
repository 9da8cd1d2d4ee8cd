"""
InvoiceStatusWriter -- the only code path that changes ``invoices.status``.

Responsibility:
    Persists a status decision with an optimistic compare-and-set:

        UPDATE invoices
           SET status = :new, version = version + 1, updated_by_id = :actor
         WHERE id = :id AND version = :read_version

    Zero affected rows means another transaction changed the invoice after
    we read it; the writer raises ``ConcurrencyConflictError`` and the
    orchestrator retries the whole unit of work once.

Architecture position:
    Kernel > Services.  Flushes inside the caller's transaction.

Invariants enforced:
    - ``version`` increases by exactly one per status write.
    - A status write never happens without the caller having read the
      version it is based on.
"""

from uuid import UUID

from sqlalchemy import update

from receivables_kernel.domain.receivables import InvoiceStatus
from receivables_kernel.exceptions import ConcurrencyConflictError
from receivables_kernel.logging_config import get_logger
from receivables_kernel.models.invoice import InvoiceModel
from receivables_kernel.services.base import BaseService

logger = get_logger("services.invoice_status_writer")


class InvoiceStatusWriter(BaseService):

    def write(
        self,
        invoice: InvoiceModel,
        new_status: InvoiceStatus,
        *,
        expected_version: int,
        actor_id: UUID,
    ) -> int:
        """Compare-and-set the status.  Returns the new version."""
        old_status = invoice.status
        # Pending attribute changes (dispute flag, reminder pause) go first.
        self.session.flush()

        stmt = (
            update(InvoiceModel)
            .where(
                InvoiceModel.id == invoice.id,
                InvoiceModel.version == expected_version,
            )
            .values(
                status=new_status.value,
                version=InvoiceModel.version + 1,
                updated_by_id=actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)

        if result.rowcount != 1:
            logger.warning(
                "invoice_status_conflict",
                extra={
                    "invoice_id": str(invoice.id),
                    "expected_version": expected_version,
                    "attempted_status": new_status.value,
                },
            )
            raise ConcurrencyConflictError(str(invoice.id), expected_version)

        self.session.refresh(invoice)

        logger.info(
            "invoice_status_changed",
            extra={
                "invoice_id": str(invoice.id),
                "from_status": str(InvoiceStatus.parse(old_status).value),
                "to_status": new_status.value,
                "version": invoice.version,
            },
        )
        return invoice.version
