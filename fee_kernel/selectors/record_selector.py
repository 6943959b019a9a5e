"""
Module: fee_kernel.selectors.record_selector
Responsibility: Read projections over fee records: paginated listing, a
    single record with its payments and refunds, the per-member overdue
    report, the due-date calendar and the student/parent ledger view.
Architecture position: Kernel > Selectors.  MUST NOT import from services/.
    The member directory is duck-typed (``members_for_user``).
"""

import calendar as _calendar
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import selectinload

from fee_kernel.db.base import as_uuid
from fee_kernel.db.types import ZERO
from fee_kernel.domain.fee_types import FeeStatus
from fee_kernel.exceptions import FeeValidationError, RecordNotFoundError
from fee_kernel.models.record import FeeRecord
from fee_kernel.selectors.base import BaseSelector
from fee_kernel.selectors.ledger_projector import LedgerProjector, MemberLedger
from fee_kernel.selectors.views import RecordView

DEFAULT_PAGE_SIZE = 30
MAX_PAGE_SIZE = 200


@dataclass
class Page:
    items: list[RecordView]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.total else 0


@dataclass
class OverdueMemberRow:
    """Outstanding overdue money for one member."""

    member_id: str
    record_count: int
    total_outstanding: Decimal
    oldest_due_date: date
    max_days_overdue: int


@dataclass
class CalendarDay:
    day: date
    records: list[RecordView] = field(default_factory=list)

    @property
    def total_due(self) -> Decimal:
        return sum((r.balance for r in self.records), ZERO)


@dataclass
class StudentLedger:
    member_id: str
    name: str | None
    relation: str
    ledger: MemberLedger
    records: list[RecordView]


class RecordSelector(BaseSelector):
    """Record queries scoped to one coaching tenant."""

    def list_records(
        self,
        coaching_id: str,
        member_id: str | None = None,
        status: FeeStatus | str | None = None,
        from_date: date | None = None,
        to_date: date | None = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Page:
        """
        Records newest due date first, filtered and paginated.

        ``page`` is 1-based; ``limit`` is clamped to 1..MAX_PAGE_SIZE.
        """
        page = max(int(page), 1)
        limit = min(max(int(limit), 1), MAX_PAGE_SIZE)

        filters = [FeeRecord.coaching_id == coaching_id]
        if member_id is not None:
            filters.append(FeeRecord.member_id == member_id)
        if status is not None:
            try:
                status = FeeStatus(status)
            except ValueError as exc:
                raise FeeValidationError(f"Unknown fee status: {status!r}") from exc
            filters.append(FeeRecord.status == status.value)
        if from_date is not None:
            filters.append(FeeRecord.due_date >= from_date)
        if to_date is not None:
            filters.append(FeeRecord.due_date <= to_date)

        total = self.session.execute(
            select(func.count(FeeRecord.id)).where(*filters)
        ).scalar_one()

        rows = self.session.execute(
            select(FeeRecord)
            .where(*filters)
            .options(selectinload(FeeRecord.payments))
            .order_by(FeeRecord.due_date.desc(), FeeRecord.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars()

        today = self.clock.today()
        items = [RecordView.from_row(r, today, payments=r.payments) for r in rows]
        return Page(items=items, total=total, page=page, limit=limit)

    def get_record(self, coaching_id: str, record_id) -> RecordView:
        """
        One record with its payments, refunds and days overdue.

        Raises:
            RecordNotFoundError: Unknown id, or a record of another tenant.
        """
        record = self.session.execute(
            select(FeeRecord)
            .where(FeeRecord.id == as_uuid(record_id))
            .options(
                selectinload(FeeRecord.payments),
                selectinload(FeeRecord.refunds),
            )
        ).scalar_one_or_none()
        if record is None or record.coaching_id != coaching_id:
            raise RecordNotFoundError(str(record_id))
        return RecordView.from_row(
            record,
            self.clock.today(),
            payments=record.payments,
            refunds=record.refunds,
        )

    def overdue_report(self, coaching_id: str) -> list[OverdueMemberRow]:
        """OVERDUE records grouped per member, largest outstanding first."""
        records = self.session.execute(
            select(FeeRecord).where(
                FeeRecord.coaching_id == coaching_id,
                FeeRecord.status == FeeStatus.OVERDUE.value,
            )
        ).scalars()

        today = self.clock.today()
        grouped: dict[str, OverdueMemberRow] = {}
        for record in records:
            days = max((today - record.due_date).days, 0)
            row = grouped.get(record.member_id)
            if row is None:
                grouped[record.member_id] = OverdueMemberRow(
                    member_id=record.member_id,
                    record_count=1,
                    total_outstanding=record.balance,
                    oldest_due_date=record.due_date,
                    max_days_overdue=days,
                )
                continue
            row.record_count += 1
            row.total_outstanding += record.balance
            row.oldest_due_date = min(row.oldest_due_date, record.due_date)
            row.max_days_overdue = max(row.max_days_overdue, days)

        return sorted(
            grouped.values(),
            key=lambda r: (-r.total_outstanding, r.member_id),
        )

    def calendar(self, coaching_id: str, year: int, month: int) -> list[CalendarDay]:
        """Days of a month that have records due, in date order."""
        if not 1 <= month <= 12:
            raise FeeValidationError(f"Month must be between 1 and 12, got {month}")
        first = date(year, month, 1)
        last = date(year, month, _calendar.monthrange(year, month)[1])

        records = self.session.execute(
            select(FeeRecord)
            .where(
                FeeRecord.coaching_id == coaching_id,
                FeeRecord.due_date >= first,
                FeeRecord.due_date <= last,
            )
            .order_by(FeeRecord.due_date, FeeRecord.member_id)
        ).scalars()

        today = self.clock.today()
        days: dict[date, CalendarDay] = {}
        for record in records:
            day = days.setdefault(record.due_date, CalendarDay(day=record.due_date))
            day.records.append(RecordView.from_row(record, today))
        return list(days.values())

    def student_ledger(self, coaching_id: str, user_id: str, directory) -> list[StudentLedger]:
        """
        Ledgers visible to a user: their own member, plus every ward whose
        parent is that user.
        """
        projector = LedgerProjector(self.session, self.clock)
        ledgers = []
        for member in directory.members_for_user(coaching_id, user_id):
            records = self.list_records(
                coaching_id, member_id=member.member_id, limit=MAX_PAGE_SIZE
            ).items
            ledgers.append(
                StudentLedger(
                    member_id=member.member_id,
                    name=member.name,
                    relation="self" if member.user_id == user_id else "ward",
                    ledger=projector.member_ledger(coaching_id, member.member_id),
                    records=records,
                )
            )
        return ledgers
