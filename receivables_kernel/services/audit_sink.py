"""
AuditSink -- append-only audit records in the caller's transaction.

Responsibility:
    Persists one ``AuditRecordModel`` per status change, payment mutation or
    rejected evaluation.  The record shares the caller's transaction, so a
    rolled-back workflow leaves no audit row behind.

Failure modes:
    - ImmutabilityViolationError if anything later tries to edit the row.
"""

import json
from typing import Any, Mapping
from uuid import UUID

from receivables_kernel.logging_config import get_logger
from receivables_kernel.models.audit_record import AuditRecordModel
from receivables_kernel.services.base import BaseService

logger = get_logger("services.audit_sink")


def _json_safe(metadata: Mapping[str, Any] | None) -> dict | None:
    # Metadata is opaque to the core; only make sure the JSON column accepts it.
    if not metadata:
        return None
    return json.loads(json.dumps(dict(metadata), default=str))


class AuditSink(BaseService):
    """Writes audit records.  Flushes; never commits."""

    def record(
        self,
        *,
        tenant_id: UUID,
        actor_id: UUID,
        entity_type: str,
        entity_id: UUID,
        event_kind: str,
        old_status: str | None = None,
        new_status: str | None = None,
        reason: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> AuditRecordModel:
        record = AuditRecordModel(
            tenant_id=tenant_id,
            actor_id=actor_id,
            entity_type=entity_type,
            entity_id=entity_id,
            event_kind=event_kind,
            old_status=old_status,
            new_status=new_status,
            reason=(reason or None) and reason[:500],
            occurred_at=self.clock.now_utc(),
            details=_json_safe(metadata),
        )
        self.session.add(record)
        self.session.flush()

        logger.info(
            "audit_record_written",
            extra={
                "audit_record_id": str(record.id),
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "event_kind": event_kind,
                "old_status": old_status,
                "new_status": new_status,
            },
        )
        return record
