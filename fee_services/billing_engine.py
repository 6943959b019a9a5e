"""
fee_services.billing_engine -- FeeBillingEngine, the public facade.

Responsibility:
    Exposes every fee ledger operation with transaction ownership.  Each
    mutating call opens its own scope, commits it, and only then runs its
    side effects (period rollover, notifications).  Each read first gives
    the reconciliation sweep a chance to run (debounced per tenant) and
    then projects.

Architecture position:
    Services -- the only layer that opens transactions.  Kernel services
    flush; this module commits.

Invariants enforced:
    - record_payment, record_refund and waive_fee run in
      serializable_scope() and are retried as a whole on serialization
      conflicts (up to ``payment_max_retries`` attempts).
    - Rollover after a settling payment runs in its own transaction after
      the payment commits.  A failed rollover never undoes the payment.
    - Notifications are dispatched after commit and never fail the call.

Usage:
    engine = build_billing_engine(get_active_config(), directory=directory)
    structure = engine.create_structure("coach-1", {...})
    engine.assign_fee("coach-1", "member-7", structure.id)
    outcome = engine.record_payment("coach-1", record_id, "1180.00", "UPI")
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID, uuid4

from fee_config import LedgerConfig, get_active_config
from fee_kernel.db.engine import (
    create_tables,
    init_engine_from_url,
    run_with_conflict_retry,
    serializable_scope,
    session_scope,
)
from fee_kernel.domain.clock import Clock, SystemClock
from fee_kernel.domain.fee_types import FeeStatus, PaymentMode
from fee_kernel.logging_config import LogContext, configure_logging, get_logger
from fee_kernel.models.assignment import FeeAssignment
from fee_kernel.models.structure import FeeStructure
from fee_kernel.selectors import (
    CalendarDay,
    CoachingSummary,
    IntegrityReport,
    MemberLedger,
    OverdueMemberRow,
    Page,
    RecordView,
    StudentLedger,
)
from fee_kernel.services import (
    AssignmentOutcome,
    BulkReminderResult,
    DebounceRegistry,
    PaymentResult,
    RefundResult,
    ReminderNotice,
    StructureUpdate,
    SweepResult,
)
from fee_services.kernel_services import KernelServices
from fee_services.notifications import NotificationDispatcher
from fee_services.ports import InMemoryMemberDirectory, LoggingNotifier, MemberDirectory, Notifier

logger = get_logger("services.billing")

T = TypeVar("T")


@dataclass(frozen=True)
class PaymentOutcome:
    """A committed payment, plus the record it rolled over to (if any)."""

    payment: PaymentResult
    next_record_id: UUID | None = None
    next_due_date: date | None = None

    @property
    def receipt_no(self) -> str:
        return self.payment.receipt_no

    @property
    def status(self) -> FeeStatus:
        return self.payment.status


class FeeBillingEngine:
    """
    Fee ledger facade.

    Args:
        config: Runtime settings; defaults to ``get_active_config()``.
        directory: Member directory used to validate assignments and to
            find who receives reminders and confirmations.
        notifier: Delivery backend, wrapped in a NotificationDispatcher.
        clock: Time source; defaults to SystemClock in ``config.timezone``.
        registry: Debounce state for the reconciliation sweep.  One per
            process; share it between engines that serve the same tenants.
        synchronous_notifications: Deliver notifications inline (tests).
    """

    def __init__(
        self,
        config: LedgerConfig | None = None,
        *,
        directory: MemberDirectory | None = None,
        notifier: Notifier | None = None,
        clock: Clock | None = None,
        registry: DebounceRegistry | None = None,
        synchronous_notifications: bool = False,
    ):
        self.config = config or get_active_config()
        self.directory = directory if directory is not None else InMemoryMemberDirectory()
        self.clock = clock or SystemClock(self.config.timezone)
        self.registry = registry or DebounceRegistry()
        self.dispatcher = NotificationDispatcher(
            notifier or LoggingNotifier(),
            max_workers=self.config.notification_workers,
            synchronous=synchronous_notifications,
        )

    def close(self) -> None:
        self.dispatcher.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Transaction helpers
    # ------------------------------------------------------------------

    def _services(self, session) -> KernelServices:
        return KernelServices(
            session, self.clock, self.config, self.directory, self.registry
        )

    def _write(
        self,
        operation: str,
        fn: Callable[[KernelServices], T],
        *,
        entity_id=None,
        serializable: bool = False,
    ) -> T:
        scope = serializable_scope if serializable else session_scope

        def unit() -> T:
            with scope() as session:
                return fn(self._services(session))

        return run_with_conflict_retry(
            unit,
            operation=operation,
            entity_id=entity_id,
            max_retries=self.config.payment_max_retries,
            base_delay_ms=self.config.retry_base_delay_ms,
        )

    def _read(self, coaching_id: str, fn: Callable[[KernelServices], T]) -> T:
        self._sweep(coaching_id)
        with session_scope() as session:
            return fn(self._services(session))

    def _sweep(self, coaching_id: str, force: bool = False) -> SweepResult:
        with session_scope() as session:
            return self._services(session).sweep.run(coaching_id, force=force)

    def _context(self, coaching_id: str, actor_id: str | None = None, record_id=None):
        return LogContext.bind(
            correlation_id=str(uuid4()),
            coaching_id=coaching_id,
            actor_id=actor_id,
            record_id=str(record_id) if record_id is not None else None,
        )

    # ------------------------------------------------------------------
    # Structures
    # ------------------------------------------------------------------

    def create_structure(
        self, coaching_id: str, data: dict[str, Any], actor_id: str | None = None
    ) -> FeeStructure:
        with self._context(coaching_id, actor_id):
            return self._write(
                "create_structure",
                lambda s: s.structures.create_structure(coaching_id, data, actor_id),
            )

    def update_structure(
        self,
        coaching_id: str,
        structure_id,
        changes: dict[str, Any],
        actor_id: str | None = None,
    ) -> StructureUpdate:
        """Apply changes; price or tax changes re-price every unpaid record."""
        with self._context(coaching_id, actor_id):
            return self._write(
                "update_structure",
                lambda s: s.structures.update_structure(
                    structure_id, changes, actor_id, coaching_id
                ),
                entity_id=structure_id,
            )

    def delete_structure(
        self, coaching_id: str, structure_id, actor_id: str | None = None
    ) -> str:
        """Returns "deactivated" when records exist, else "deleted"."""
        with self._context(coaching_id, actor_id):
            return self._write(
                "delete_structure",
                lambda s: s.structures.delete_structure(structure_id, actor_id, coaching_id),
                entity_id=structure_id,
            )

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    def assign_fee(
        self,
        coaching_id: str,
        member_id: str,
        structure_id,
        *,
        custom_amount=None,
        discount_amount=Decimal("0"),
        discount_reason: str | None = None,
        scholarship_amount=None,
        scholarship_tag: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        actor_id: str | None = None,
    ) -> AssignmentOutcome:
        with self._context(coaching_id, actor_id):
            return self._write(
                "assign_fee",
                lambda s: s.structures.assign_fee(
                    coaching_id,
                    member_id,
                    structure_id,
                    custom_amount=custom_amount,
                    discount_amount=discount_amount,
                    discount_reason=discount_reason,
                    scholarship_amount=scholarship_amount,
                    scholarship_tag=scholarship_tag,
                    start_date=start_date,
                    end_date=end_date,
                    actor_id=actor_id,
                ),
                entity_id=member_id,
                serializable=True,
            )

    def remove_assignment(
        self, coaching_id: str, assignment_id, actor_id: str | None = None
    ) -> FeeAssignment:
        with self._context(coaching_id, actor_id):
            return self._write(
                "remove_assignment",
                lambda s: s.structures.remove_assignment(assignment_id, actor_id, coaching_id),
                entity_id=assignment_id,
            )

    def toggle_pause(
        self,
        coaching_id: str,
        assignment_id,
        pause: bool,
        note: str | None = None,
        actor_id: str | None = None,
    ) -> FeeAssignment:
        with self._context(coaching_id, actor_id):
            return self._write(
                "toggle_pause",
                lambda s: s.structures.toggle_pause(
                    assignment_id, pause, note, actor_id, coaching_id
                ),
                entity_id=assignment_id,
            )

    # ------------------------------------------------------------------
    # Money movements
    # ------------------------------------------------------------------

    def record_payment(
        self,
        coaching_id: str,
        record_id,
        amount,
        mode: PaymentMode | str,
        transaction_ref: str | None = None,
        notes: str | None = None,
        paid_at: datetime | None = None,
        actor_id: str | None = None,
    ) -> PaymentOutcome:
        """
        Record a confirmed payment.

        When the payment settles the record, the next period's record is
        created after commit and the payer is sent a confirmation.
        """
        with self._context(coaching_id, actor_id, record_id):
            result = self._write(
                "record_payment",
                lambda s: s.processor.record_payment(
                    record_id,
                    amount,
                    mode,
                    transaction_ref=transaction_ref,
                    notes=notes,
                    paid_at=paid_at,
                    actor_id=actor_id,
                    coaching_id=coaching_id,
                ),
                entity_id=record_id,
                serializable=True,
            )

            outcome = PaymentOutcome(payment=result)
            if result.settled:
                outcome = self._roll_over(result, actor_id)
            self._confirm_payment(result)
            return outcome

    def _roll_over(self, result: PaymentResult, actor_id: str | None) -> PaymentOutcome:
        def create_next(s: KernelServices):
            next_record = s.factory.roll_over(result.record_id, actor_id=actor_id)
            if next_record is None:
                return None
            return next_record.id, next_record.due_date

        try:
            created = self._write("rollover", create_next, entity_id=result.record_id)
        except Exception:
            logger.exception("rollover_failed", extra={"record_id": str(result.record_id)})
            return PaymentOutcome(payment=result)

        if created is None:
            return PaymentOutcome(payment=result)
        next_id, next_due = created
        return PaymentOutcome(payment=result, next_record_id=next_id, next_due_date=next_due)

    def _confirm_payment(self, result: PaymentResult) -> None:
        member = self.directory.get_member(result.coaching_id, result.member_id)
        user_id = None
        if member is not None:
            user_id = member.user_id or member.ward_parent_id
        if not user_id:
            logger.info(
                "payment_confirmation_skipped",
                extra={"record_id": str(result.record_id), "member_id": result.member_id},
            )
            return
        self.dispatcher.dispatch(
            user_id,
            "Payment received",
            f"INR {result.amount:.2f} received. Receipt {result.receipt_no}.",
            {
                "type": "FEE_PAYMENT_CONFIRMED",
                "coaching_id": result.coaching_id,
                "record_id": str(result.record_id),
                "receipt_no": result.receipt_no,
                "amount": f"{result.amount:.2f}",
                "status": result.status.value,
            },
        )

    def record_refund(
        self,
        coaching_id: str,
        record_id,
        amount,
        reason: str | None = None,
        mode: PaymentMode | str = PaymentMode.CASH,
        actor_id: str | None = None,
    ) -> RefundResult:
        with self._context(coaching_id, actor_id, record_id):
            return self._write(
                "record_refund",
                lambda s: s.processor.record_refund(
                    record_id,
                    amount,
                    reason=reason,
                    mode=mode,
                    actor_id=actor_id,
                    coaching_id=coaching_id,
                ),
                entity_id=record_id,
                serializable=True,
            )

    def waive_fee(
        self,
        coaching_id: str,
        record_id,
        notes: str | None = None,
        actor_id: str | None = None,
    ) -> RecordView:
        def waive(s: KernelServices) -> RecordView:
            record = s.processor.waive_fee(
                record_id, notes=notes, actor_id=actor_id, coaching_id=coaching_id
            )
            return RecordView.from_row(record, self.clock.today())

        with self._context(coaching_id, actor_id, record_id):
            return self._write("waive_fee", waive, entity_id=record_id, serializable=True)

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    def send_reminder(
        self, coaching_id: str, record_id, actor_id: str | None = None
    ) -> ReminderNotice:
        with self._context(coaching_id, actor_id, record_id):
            notice = self._write(
                "send_reminder",
                lambda s: s.reminders.send_reminder(record_id, coaching_id, actor_id),
                entity_id=record_id,
            )
            self._dispatch(notice)
            return notice

    def bulk_remind(
        self,
        coaching_id: str,
        record_ids: list | None = None,
        actor_id: str | None = None,
    ) -> BulkReminderResult:
        """Remind every OVERDUE record of the tenant, or only ``record_ids``."""
        with self._context(coaching_id, actor_id):
            result = self._write(
                "bulk_remind",
                lambda s: s.reminders.bulk_remind(coaching_id, record_ids, actor_id),
            )
            for notice in result.notices:
                self._dispatch(notice)
            return result

    def _dispatch(self, notice: ReminderNotice) -> None:
        self.dispatcher.dispatch(notice.user_id, notice.title, notice.message, notice.payload)

    # ------------------------------------------------------------------
    # Read projections
    # ------------------------------------------------------------------

    def list_records(
        self,
        coaching_id: str,
        member_id: str | None = None,
        status: FeeStatus | str | None = None,
        from_date: date | None = None,
        to_date: date | None = None,
        page: int = 1,
        limit: int = 30,
    ) -> Page:
        return self._read(
            coaching_id,
            lambda s: s.records.list_records(
                coaching_id, member_id, status, from_date, to_date, page, limit
            ),
        )

    def get_record(self, coaching_id: str, record_id) -> RecordView:
        return self._read(coaching_id, lambda s: s.records.get_record(coaching_id, record_id))

    def get_member_ledger(self, coaching_id: str, member_id: str) -> MemberLedger:
        return self._read(
            coaching_id, lambda s: s.projector.member_ledger(coaching_id, member_id)
        )

    def get_summary(self, coaching_id: str) -> CoachingSummary:
        return self._read(coaching_id, lambda s: s.projector.coaching_summary(coaching_id))

    def get_overdue_report(self, coaching_id: str) -> list[OverdueMemberRow]:
        return self._read(coaching_id, lambda s: s.records.overdue_report(coaching_id))

    def get_student_ledger(self, coaching_id: str, user_id: str) -> list[StudentLedger]:
        return self._read(
            coaching_id,
            lambda s: s.records.student_ledger(coaching_id, user_id, self.directory),
        )

    def get_calendar(self, coaching_id: str, year: int, month: int) -> list[CalendarDay]:
        return self._read(
            coaching_id, lambda s: s.records.calendar(coaching_id, year, month)
        )

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def run_reconciliation(self, coaching_id: str, force: bool = True) -> SweepResult:
        """Run the self-heal and overdue passes now, bypassing debounce by default."""
        with self._context(coaching_id):
            return self._sweep(coaching_id, force=force)

    def check_integrity(self, coaching_id: str | None = None) -> IntegrityReport:
        with session_scope() as session:
            return self._services(session).integrity.check(
                coaching_id, epsilon=self.config.money_epsilon
            )


def build_billing_engine(
    config: LedgerConfig | None = None,
    *,
    create_schema: bool = True,
    **kwargs: Any,
) -> FeeBillingEngine:
    """
    Initialize logging and the database engine from ``config``, then
    build a FeeBillingEngine.  Remaining keyword arguments go to the
    FeeBillingEngine constructor.
    """
    config = config or get_active_config()
    configure_logging(level=config.log_level)
    init_engine_from_url(config.database_url)
    if create_schema:
        create_tables()
    return FeeBillingEngine(config, **kwargs)
