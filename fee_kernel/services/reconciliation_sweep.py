"""
ReconciliationSweep -- debounced, read-triggered record maintenance.

Responsibility:
    There is no scheduler.  Records are corrected lazily, on the read
    path, by two passes per coaching tenant:

    Self-heal (default window 60 s)
        PENDING / OVERDUE records that are not fully paid are recomputed
        from the live structure; stored amounts drifting by more than a
        cent are rewritten.
    Overdue sweep (default window 300 s)
        PENDING / PARTIALLY_PAID records past their due date become
        OVERDUE with fine and tax recomputed; OVERDUE records get their
        accrued fine and tax refreshed.

Architecture position:
    Kernel > Services.  Triggered by the billing facade before every read
    projection, inside a READ COMMITTED session_scope().

Invariants enforced:
    - Idempotent: a second run with nothing changed writes nothing.
    - Never moves a record backward (OVERDUE is never reverted) and never
      touches PAID or WAIVED records.
    - Per-record isolation: each record is re-read under a row lock and
      processed in its own savepoint.  A record settled after the pass
      listed it is skipped; a failure is logged and the pass continues.
    - Debounce state lives in an injected DebounceRegistry whose
      check-and-set is atomic.  It is process-local and resets on restart.
"""

import threading
from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Hashable

from sqlalchemy import select

from fee_kernel.db.types import MONEY_EPSILON, to_decimal
from fee_kernel.domain.fee_types import AuditEventType, FeeStatus
from fee_kernel.logging_config import get_logger
from fee_kernel.models.record import FeeRecord
from fee_kernel.services.audit_logger import AuditLogger
from fee_kernel.services.base import BaseService
from fee_kernel.services.record_factory import RecordFactory

logger = get_logger("services.sweep")

SELF_HEAL_PASS = "self_heal"
OVERDUE_PASS = "overdue"


class DebounceRegistry:
    """
    Last-run timestamps per key, with an atomic check-and-set.

    Contract:
        ``try_acquire`` returns True (and records ``now``) only when the
        key has not run within ``window_seconds``.  Two threads racing on
        the same key cannot both acquire it.

    State is held in memory and is lost on process restart, after which
    the first request for each tenant triggers a full sweep.
    """

    def __init__(self):
        self._last_run: dict[Hashable, datetime] = {}
        self._lock = threading.Lock()

    def try_acquire(self, key: Hashable, window_seconds: float, now: datetime) -> bool:
        with self._lock:
            last = self._last_run.get(key)
            if last is not None and (now - last).total_seconds() < window_seconds:
                return False
            self._last_run[key] = now
            return True

    def last_run(self, key: Hashable) -> datetime | None:
        with self._lock:
            return self._last_run.get(key)

    def reset(self, key: Hashable | None = None) -> None:
        with self._lock:
            if key is None:
                self._last_run.clear()
            else:
                self._last_run.pop(key, None)


@dataclass
class SweepResult:
    healed: int = 0
    marked_overdue: int = 0
    refreshed: int = 0
    failed: int = 0
    skipped: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class ReconciliationSweep(BaseService):
    """
    Self-heal and overdue passes for one coaching tenant.

    Args:
        registry: Shared DebounceRegistry (one per process).
        self_heal_window: Seconds between self-heal passes per tenant.
        overdue_window: Seconds between overdue passes per tenant.
    """

    def __init__(
        self,
        session,
        registry: DebounceRegistry,
        clock=None,
        audit: AuditLogger | None = None,
        factory: RecordFactory | None = None,
        self_heal_window: float = 60,
        overdue_window: float = 300,
        epsilon: Decimal = MONEY_EPSILON,
    ):
        super().__init__(session, clock)
        self.registry = registry
        self.audit = audit or AuditLogger(session, self.clock)
        self.factory = factory or RecordFactory(session, self.clock, audit=self.audit)
        self.self_heal_window = self_heal_window
        self.overdue_window = overdue_window
        self.epsilon = to_decimal(epsilon)

    def run(self, coaching_id: str, force: bool = False) -> SweepResult:
        """
        Run both passes for ``coaching_id`` unless debounced.

        ``force=True`` bypasses the debounce windows (administrative use).
        """
        result = SweepResult()
        now = self.clock.now_utc()

        if force or self.registry.try_acquire(
            (SELF_HEAL_PASS, coaching_id), self.self_heal_window, now
        ):
            self._self_heal(coaching_id, result)
        else:
            result.skipped += 1

        if force or self.registry.try_acquire(
            (OVERDUE_PASS, coaching_id), self.overdue_window, now
        ):
            self._mark_overdue(coaching_id, result)
        else:
            result.skipped += 1

        if result.skipped < 2:
            logger.info(
                "sweep_completed",
                extra={"coaching_id": coaching_id, "forced": force, **result.as_dict()},
            )
        return result

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def _self_heal(self, coaching_id: str, result: SweepResult) -> None:
        records = self._records(
            coaching_id, [FeeStatus.PENDING, FeeStatus.OVERDUE]
        )
        for record in records:
            if to_decimal(record.paid_amount) >= to_decimal(record.final_amount) - self.epsilon:
                continue
            if self._isolated(record.id, self._heal_record, result):
                result.healed += 1

    def _mark_overdue(self, coaching_id: str, result: SweepResult) -> None:
        today = self.clock.today()
        records = self._records(
            coaching_id,
            [FeeStatus.PENDING, FeeStatus.PARTIALLY_PAID, FeeStatus.OVERDUE],
        )
        for record in records:
            if FeeStatus(record.status) == FeeStatus.OVERDUE:
                if self._isolated(record.id, self._refresh_overdue, result):
                    result.refreshed += 1
            elif record.due_date < today:
                if self._isolated(record.id, self._transition_overdue, result):
                    result.marked_overdue += 1

    # ------------------------------------------------------------------
    # Per-record handlers; each receives the row re-read under lock and
    # returns True when it changed the record
    # ------------------------------------------------------------------

    def _heal_record(self, record: FeeRecord) -> bool:
        if FeeStatus(record.status) not in (FeeStatus.PENDING, FeeStatus.OVERDUE):
            return False
        if to_decimal(record.paid_amount) >= to_decimal(record.final_amount) - self.epsilon:
            return False
        assignment, structure = self._pricing_sources(record)
        quote = self.factory.quote(record, assignment, structure)
        if not quote.drifts_from(record, self.epsilon):
            return False
        before = AuditLogger.snapshot(record)
        self.factory.apply_quote(record, structure, quote)
        self.session.flush()
        self.audit.log(
            record.coaching_id,
            "FeeRecord",
            record.id,
            AuditEventType.RECORD_SELF_HEALED,
            before=before,
            after=AuditLogger.snapshot(record),
            structure_id=structure.id,
        )
        return True

    def _transition_overdue(self, record: FeeRecord) -> bool:
        if FeeStatus(record.status) not in (FeeStatus.PENDING, FeeStatus.PARTIALLY_PAID):
            return False
        if record.due_date >= self.clock.today():
            return False
        assignment, structure = self._pricing_sources(record)
        quote = self.factory.quote(record, assignment, structure)
        before = AuditLogger.snapshot(record)
        self.factory.apply_quote(record, structure, quote)
        record.status = FeeStatus.OVERDUE.value
        self.session.flush()
        self.audit.log(
            record.coaching_id,
            "FeeRecord",
            record.id,
            AuditEventType.RECORD_MARKED_OVERDUE,
            before=before,
            after=AuditLogger.snapshot(record),
            structure_id=structure.id,
        )
        return True

    def _refresh_overdue(self, record: FeeRecord) -> bool:
        if FeeStatus(record.status) != FeeStatus.OVERDUE:
            return False
        assignment, structure = self._pricing_sources(record)
        quote = self.factory.quote(record, assignment, structure)
        if not quote.drifts_from(record, self.epsilon):
            return False
        self.factory.apply_quote(record, structure, quote)
        self.session.flush()
        logger.debug(
            "overdue_record_refreshed",
            extra={
                "record_id": str(record.id),
                "fine_amount": str(record.fine_amount),
                "final_amount": str(record.final_amount),
            },
        )
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _records(self, coaching_id: str, statuses: list[FeeStatus]) -> list[FeeRecord]:
        return list(
            self.session.execute(
                select(FeeRecord)
                .where(
                    FeeRecord.coaching_id == coaching_id,
                    FeeRecord.status.in_([s.value for s in statuses]),
                )
                .order_by(FeeRecord.due_date)
            ).scalars()
        )

    def _pricing_sources(self, record: FeeRecord):
        assignment = self._load_assignment(record.assignment_id)
        structure = self._load_structure(record.structure_id or assignment.structure_id)
        return assignment, structure

    def _isolated(
        self,
        record_id,
        handler: Callable[[FeeRecord], bool],
        result: SweepResult,
    ) -> bool:
        """Re-read the record under a row lock and run ``handler`` in a savepoint."""
        try:
            with self.session.begin_nested():
                return handler(self._load_record(record_id, lock=True))
        except Exception:
            result.failed += 1
            logger.exception("sweep_record_failed", extra={"record_id": str(record_id)})
            return False
