"""
BaseService -- abstract base for all fee kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every service in the kernel layer.  All concrete services receive a
    SQLAlchemy ``Session`` that they use via ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or roll back themselves.  The caller
      (FeeBillingEngine or a test harness) owns commit/rollback.
    - Money-moving services additionally require a session opened by
      ``serializable_scope()``.
"""

from abc import ABC

from sqlalchemy import select
from sqlalchemy.orm import Session

from fee_kernel.db.base import as_uuid
from fee_kernel.domain.clock import Clock, SystemClock
from fee_kernel.exceptions import (
    AssignmentNotFoundError,
    RecordNotFoundError,
    StructureNotFoundError,
)
from fee_kernel.models.assignment import FeeAssignment
from fee_kernel.models.record import FeeRecord
from fee_kernel.models.structure import FeeStructure


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide query-only projections -- those belong in
          ``fee_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        """
        Args:
            session: SQLAlchemy session for database operations.
            clock: Time source; defaults to the system clock.
        """
        self.session = session
        self.clock = clock or SystemClock()

    def _load_record(self, record_id, coaching_id: str | None = None, *, lock: bool = False):
        """Fetch a FeeRecord (optionally ``FOR UPDATE``) or raise RecordNotFoundError."""
        stmt = select(FeeRecord).where(FeeRecord.id == as_uuid(record_id))
        if coaching_id is not None:
            stmt = stmt.where(FeeRecord.coaching_id == coaching_id)
        if lock:
            stmt = stmt.with_for_update()
        record = self.session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if record is None:
            raise RecordNotFoundError(str(record_id))
        return record

    def _load_assignment(self, assignment_id, coaching_id: str | None = None):
        assignment = self.session.get(
            FeeAssignment, as_uuid(assignment_id), populate_existing=True
        )
        if assignment is None or (
            coaching_id is not None and assignment.coaching_id != coaching_id
        ):
            raise AssignmentNotFoundError(str(assignment_id))
        return assignment

    def _load_structure(self, structure_id, coaching_id: str | None = None):
        structure = self.session.get(
            FeeStructure, as_uuid(structure_id), populate_existing=True
        )
        if structure is None or (
            coaching_id is not None and structure.coaching_id != coaching_id
        ):
            raise StructureNotFoundError(str(structure_id))
        return structure
