"""
AuditLogger -- best-effort, append-only fee event trail.

Responsibility:
    Writes one FeeAuditLog row per mutating fee operation (entity, event,
    actor or SYSTEM, before/after snapshots) and builds JSON-safe
    snapshots of ORM rows.

Architecture position:
    Kernel > Services -- cross-cutting.  Invoked by RecordFactory,
    PaymentProcessor, StructureService, ReconciliationSweep and the
    reminder flow, always inside the caller's session.

Invariants enforced:
    - Every write happens in a savepoint of the caller's session, so a
      failed audit insert rolls back only itself.
    - A failed write is logged as ``audit_write_failed`` and swallowed;
      it never aborts the triggering operation.

Failure modes:
    - None propagated.  AuditWriteError is raised internally and logged.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import inspect

from fee_kernel.domain.fee_types import ActorType, AuditEventType
from fee_kernel.exceptions import AuditWriteError
from fee_kernel.logging_config import get_logger
from fee_kernel.models.audit_log import FeeAuditLog
from fee_kernel.services.base import BaseService

logger = get_logger("services.audit")


def _json_safe(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


class AuditLogger(BaseService):
    """
    Fire-and-forget audit writer.

    Contract:
        ``log`` returns the flushed FeeAuditLog, or None when the write
        failed.  It never raises.
    """

    def log(
        self,
        coaching_id: str,
        entity_type: str,
        entity_id,
        event: AuditEventType,
        actor_id: str | None = None,
        before: dict | None = None,
        after: dict | None = None,
        meta: dict | None = None,
        note: str | None = None,
        structure_id=None,
    ) -> FeeAuditLog | None:
        event = AuditEventType(event)
        try:
            return self._write(
                coaching_id,
                entity_type,
                entity_id,
                event,
                actor_id,
                before,
                after,
                meta,
                note,
                structure_id,
            )
        except AuditWriteError as exc:
            logger.error(
                "audit_write_failed",
                extra={
                    "entity_type": entity_type,
                    "entity_id": str(entity_id),
                    "event": event.value,
                    "cause": repr(exc.__cause__),
                },
                exc_info=True,
            )
            return None

    def _write(
        self,
        coaching_id,
        entity_type,
        entity_id,
        event,
        actor_id,
        before,
        after,
        meta,
        note,
        structure_id,
    ) -> FeeAuditLog:
        try:
            with self.session.begin_nested():
                entry = FeeAuditLog(
                    coaching_id=str(coaching_id),
                    entity_type=entity_type,
                    entity_id=str(entity_id),
                    structure_id=structure_id,
                    event=event.value,
                    actor_type=(
                        ActorType.ADMIN.value if actor_id else ActorType.SYSTEM.value
                    ),
                    actor_id=str(actor_id) if actor_id else None,
                    before=_json_safe(before),
                    after=_json_safe(after),
                    meta=_json_safe(meta),
                    note=note,
                    created_at=self.clock.now_utc(),
                )
                self.session.add(entry)
        except Exception as exc:
            raise AuditWriteError(entity_type, str(entity_id), event.value) from exc

        logger.debug(
            "audit_written",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "event": event.value,
            },
        )
        return entry

    @staticmethod
    def snapshot(entity) -> dict[str, Any]:
        """JSON-safe dict of an ORM row's column values."""
        mapper = inspect(entity).mapper
        return {
            attr.key: _json_safe(getattr(entity, attr.key))
            for attr in mapper.column_attrs
        }
