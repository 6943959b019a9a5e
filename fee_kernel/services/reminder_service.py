"""
ReminderService -- fee reminders for open records.

Responsibility:
    Resolves who should hear about an outstanding record (the member's
    own user, else the ward's parent), stamps reminder_count and
    reminder_sent_at, audits REMINDER_SENT, and hands back the message to
    deliver.  Delivery itself is the caller's concern: the billing facade
    dispatches the returned notifications after commit, fire-and-forget.

Architecture position:
    Kernel > Services.  The member directory is duck-typed
    (``get_member(coaching_id, member_id)``) so the kernel does not depend
    on the outer ports module.
"""

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select

from fee_kernel.db.types import to_decimal
from fee_kernel.domain.fee_types import AuditEventType, FeeStatus
from fee_kernel.exceptions import (
    FeeKernelError,
    FeeValidationError,
    MemberNotFoundError,
    RecordAlreadySettledError,
)
from fee_kernel.logging_config import get_logger
from fee_kernel.models.record import FeeRecord
from fee_kernel.services.audit_logger import AuditLogger
from fee_kernel.services.base import BaseService

logger = get_logger("services.reminder")


@dataclass(frozen=True)
class ReminderNotice:
    """A reminder ready to be dispatched."""

    record_id: str
    user_id: str
    title: str
    message: str
    payload: dict[str, Any]


@dataclass
class BulkReminderResult:
    sent: int = 0
    skipped: int = 0
    notices: list[ReminderNotice] = field(default_factory=list)


class ReminderService(BaseService):
    def __init__(self, session, directory, clock=None, audit: AuditLogger | None = None):
        super().__init__(session, clock)
        self.directory = directory
        self.audit = audit or AuditLogger(session, self.clock)

    def resolve_recipient(self, coaching_id: str, member_id: str) -> str | None:
        """User to notify for a member: the member's user, else the ward's parent."""
        member = self.directory.get_member(coaching_id, member_id)
        if member is None:
            raise MemberNotFoundError(member_id, coaching_id)
        return member.user_id or member.ward_parent_id

    def send_reminder(
        self,
        record_id,
        coaching_id: str | None = None,
        actor_id: str | None = None,
    ) -> ReminderNotice:
        """
        Stamp a reminder on an open record and build its notice.

        Raises:
            RecordNotFoundError, RecordAlreadySettledError (PAID / WAIVED),
            MemberNotFoundError, FeeValidationError (nobody to notify).
        """
        record = self._load_record(record_id, coaching_id, lock=True)
        status = FeeStatus(record.status)
        if record.is_settled:
            raise RecordAlreadySettledError(str(record.id), status.value)

        user_id = self.resolve_recipient(record.coaching_id, record.member_id)
        if user_id is None:
            raise FeeValidationError(
                f"Member {record.member_id} has no linked user or parent to remind"
            )

        before = AuditLogger.snapshot(record)
        record.reminder_count = (record.reminder_count or 0) + 1
        record.reminder_sent_at = self.clock.now_utc()
        self.session.flush()

        balance = to_decimal(record.final_amount) - to_decimal(record.paid_amount)
        notice = ReminderNotice(
            record_id=str(record.id),
            user_id=user_id,
            title="Fee reminder",
            message=(
                f"{record.title}: INR {balance:.2f} is "
                f"{'overdue' if status == FeeStatus.OVERDUE else 'due'} "
                f"(due date {record.due_date.isoformat()})."
            ),
            payload={
                "type": "FEE_REMINDER",
                "coaching_id": record.coaching_id,
                "record_id": str(record.id),
                "amount_due": f"{balance:.2f}",
                "due_date": record.due_date.isoformat(),
                "status": status.value,
            },
        )

        self.audit.log(
            record.coaching_id,
            "FeeRecord",
            record.id,
            AuditEventType.REMINDER_SENT,
            actor_id=actor_id,
            before=before,
            after=AuditLogger.snapshot(record),
            meta={"user_id": user_id, "reminder_count": record.reminder_count},
            structure_id=record.structure_id,
        )
        logger.info(
            "reminder_sent",
            extra={
                "record_id": str(record.id),
                "user_id": user_id,
                "reminder_count": record.reminder_count,
            },
        )
        return notice

    def bulk_remind(
        self,
        coaching_id: str,
        record_ids: list | None = None,
        actor_id: str | None = None,
    ) -> BulkReminderResult:
        """
        Remind every OVERDUE record of the tenant, or only ``record_ids``.

        Records that cannot be reminded (settled, unknown member, nobody
        to notify) are counted as skipped.
        """
        if record_ids is None:
            record_ids = list(
                self.session.execute(
                    select(FeeRecord.id)
                    .where(
                        FeeRecord.coaching_id == coaching_id,
                        FeeRecord.status == FeeStatus.OVERDUE.value,
                    )
                    .order_by(FeeRecord.due_date)
                ).scalars()
            )

        result = BulkReminderResult()
        for record_id in record_ids:
            try:
                notice = self.send_reminder(record_id, coaching_id, actor_id)
            except FeeKernelError as exc:
                result.skipped += 1
                logger.info(
                    "reminder_skipped",
                    extra={"record_id": str(record_id), "reason": exc.code},
                )
                continue
            result.sent += 1
            result.notices.append(notice)

        logger.info(
            "bulk_reminders_sent",
            extra={"coaching_id": coaching_id, "sent": result.sent, "skipped": result.skipped},
        )
        return result
