"""
Module: fee_kernel.models.audit_log
Responsibility: Append-only trail of fee events (who changed what, with
    before/after snapshots).
Architecture position: Kernel > Models.  Written only by AuditLogger.

Invariants enforced:
    - Rows are inserted, never updated or deleted.
    - A failed audit write never aborts the operation that triggered it
      (AuditLogger writes inside a savepoint and swallows the failure).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from fee_kernel.db.base import Base, UUIDString
from fee_kernel.domain.fee_types import ActorType, AuditEventType


class FeeAuditLog(Base):
    """One audited fee event."""

    __tablename__ = "fee_audit_logs"

    __table_args__ = (
        Index("idx_fee_audit_entity", "entity_type", "entity_id"),
        Index("idx_fee_audit_coaching", "coaching_id", "created_at"),
        Index("idx_fee_audit_structure", "structure_id"),
    )

    coaching_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # e.g. "FeeStructure", "FeeAssignment", "FeeRecord"
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)

    structure_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    event: Mapped[AuditEventType] = mapped_column(String(50), nullable=False)

    actor_type: Mapped[ActorType] = mapped_column(String(10), nullable=False)

    actor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    before: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    after: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<FeeAuditLog {self.event} on {self.entity_type}:{self.entity_id}>"
