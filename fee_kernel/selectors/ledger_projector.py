"""
Module: fee_kernel.selectors.ledger_projector
Responsibility: Per-member ledger summaries and running-balance timelines,
    and tenant-wide collection summaries.  A pure read-side aggregation
    over records, payments and refunds that are already consistent.
Architecture position: Kernel > Selectors.  May import from db/, domain/,
    models/ and selectors/.  MUST NOT import from services/.

Invariants enforced:
    - balance = total_fee - total_paid.  paid_amount is already reduced by
      refunds, so total_refunded is informational and is never subtracted
      a second time.
    - Timeline running balance: RECORD adds final_amount, PAYMENT subtracts
      the amount, REFUND adds it back.  Its closing value equals balance.
    - No writes.

Failure modes:
    - A member with no records yields a zero summary and an empty timeline.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from fee_kernel.db.types import ZERO, to_decimal
from fee_kernel.domain.clock import as_utc
from fee_kernel.domain.fee_types import FeeStatus
from fee_kernel.domain.schedule import add_months
from fee_kernel.models.record import FeePayment, FeeRecord, FeeRefund
from fee_kernel.selectors.base import BaseSelector

RECORD_EVENT = "RECORD"
PAYMENT_EVENT = "PAYMENT"
REFUND_EVENT = "REFUND"

_EVENT_ORDER = {RECORD_EVENT: 0, PAYMENT_EVENT: 1, REFUND_EVENT: 2}


@dataclass
class LedgerSummary:
    """Flat money totals for one member."""

    total_fee: Decimal = ZERO
    total_paid: Decimal = ZERO
    total_refunded: Decimal = ZERO
    total_overdue: Decimal = ZERO

    @property
    def balance(self) -> Decimal:
        return self.total_fee - self.total_paid


@dataclass
class TimelineEntry:
    """One event on a member's ledger."""

    type: str
    date: datetime
    label: str
    amount: Decimal
    running_balance: Decimal
    record_id: UUID
    reference: str | None = None


@dataclass
class MemberLedger:
    coaching_id: str
    member_id: str
    summary: LedgerSummary
    timeline: list[TimelineEntry] = field(default_factory=list)


@dataclass
class StatusBucket:
    status: str
    count: int
    total_amount: Decimal


@dataclass
class ModeBucket:
    mode: str
    count: int
    total_amount: Decimal


@dataclass
class MonthlyCollection:
    month: str
    amount: Decimal


@dataclass
class CoachingSummary:
    """Tenant-wide collection figures."""

    coaching_id: str
    total_collected: Decimal
    total_refunded: Decimal
    total_pending: Decimal
    total_overdue: Decimal
    status_breakdown: list[StatusBucket]
    payment_modes: list[ModeBucket]
    monthly_collection: list[MonthlyCollection]


class LedgerProjector(BaseSelector):
    """
    Read-side projections of the fee ledger.

    Contract:
        Methods return dataclass DTOs; nothing is written.
    """

    def member_ledger(self, coaching_id: str, member_id: str) -> MemberLedger:
        """
        Build the ledger summary and timeline for one member.

        WAIVED records contribute their final amount, which a waiver with a
        partial payment has already reduced to the paid amount. A record is
        dated at the earlier of its creation and its first payment.
        """
        records = list(
            self.session.execute(
                select(FeeRecord)
                .where(
                    FeeRecord.coaching_id == coaching_id,
                    FeeRecord.member_id == member_id,
                )
                .order_by(FeeRecord.due_date)
            ).scalars()
        )
        record_ids = [r.id for r in records]
        payments = self._payments_for(record_ids)
        refunds = self._refunds_for(record_ids)

        # A backdated payment must not sort ahead of the bill it settles
        first_paid: dict[UUID, datetime] = {}
        for payment in payments:
            paid_at = as_utc(payment.paid_at)
            current = first_paid.get(payment.record_id)
            if current is None or paid_at < current:
                first_paid[payment.record_id] = paid_at

        summary = LedgerSummary()
        events: list[tuple[datetime, int, str, str, Decimal, UUID, str | None]] = []

        for record in records:
            final_amount = to_decimal(record.final_amount)
            summary.total_fee += final_amount
            summary.total_paid += to_decimal(record.paid_amount)
            if FeeStatus(record.status) == FeeStatus.OVERDUE:
                summary.total_overdue += record.balance
            created_at = as_utc(record.created_at)
            events.append((
                min(created_at, first_paid.get(record.id, created_at)),
                _EVENT_ORDER[RECORD_EVENT],
                RECORD_EVENT,
                record.title,
                final_amount,
                record.id,
                record.installment_label,
            ))

        for payment in payments:
            events.append((
                as_utc(payment.paid_at),
                _EVENT_ORDER[PAYMENT_EVENT],
                PAYMENT_EVENT,
                f"Payment {payment.receipt_no}",
                to_decimal(payment.amount),
                payment.record_id,
                payment.receipt_no,
            ))

        for refund in refunds:
            amount = to_decimal(refund.amount)
            summary.total_refunded += amount
            events.append((
                as_utc(refund.refunded_at),
                _EVENT_ORDER[REFUND_EVENT],
                REFUND_EVENT,
                refund.reason or "Refund",
                amount,
                refund.record_id,
                None,
            ))

        events.sort(key=lambda e: (e[0], e[1]))

        timeline = []
        running = ZERO
        for when, _, kind, label, amount, record_id, reference in events:
            if kind == PAYMENT_EVENT:
                running -= amount
            else:
                running += amount
            timeline.append(
                TimelineEntry(
                    type=kind,
                    date=when,
                    label=label,
                    amount=amount,
                    running_balance=running,
                    record_id=record_id,
                    reference=reference,
                )
            )

        return MemberLedger(
            coaching_id=coaching_id,
            member_id=member_id,
            summary=summary,
            timeline=timeline,
        )

    def coaching_summary(self, coaching_id: str, months: int = 12) -> CoachingSummary:
        """
        Collection summary for a tenant.

        total_pending is the outstanding balance of PENDING and
        PARTIALLY_PAID records; total_overdue that of OVERDUE records.
        monthly_collection covers the last ``months`` calendar months,
        oldest first, with empty months reported as zero.
        """
        status_rows = self.session.execute(
            select(
                FeeRecord.status,
                func.count(FeeRecord.id),
                func.coalesce(func.sum(FeeRecord.final_amount), 0),
                func.coalesce(func.sum(FeeRecord.paid_amount), 0),
            )
            .where(FeeRecord.coaching_id == coaching_id)
            .group_by(FeeRecord.status)
            .order_by(FeeRecord.status)
        ).all()

        breakdown = []
        pending = ZERO
        overdue = ZERO
        for status, count, final_sum, paid_sum in status_rows:
            final_sum = to_decimal(final_sum)
            outstanding = final_sum - to_decimal(paid_sum)
            breakdown.append(StatusBucket(status=status, count=count, total_amount=final_sum))
            if status in (FeeStatus.PENDING.value, FeeStatus.PARTIALLY_PAID.value):
                pending += outstanding
            elif status == FeeStatus.OVERDUE.value:
                overdue += outstanding

        mode_rows = self.session.execute(
            select(
                FeePayment.mode,
                func.count(FeePayment.id),
                func.coalesce(func.sum(FeePayment.amount), 0),
            )
            .where(FeePayment.coaching_id == coaching_id)
            .group_by(FeePayment.mode)
            .order_by(FeePayment.mode)
        ).all()
        payment_modes = [
            ModeBucket(mode=mode, count=count, total_amount=to_decimal(total))
            for mode, count, total in mode_rows
        ]
        total_paid_in = sum((m.total_amount for m in payment_modes), ZERO)

        total_refunded = to_decimal(
            self.session.execute(
                select(func.coalesce(func.sum(FeeRefund.amount), 0)).where(
                    FeeRefund.coaching_id == coaching_id
                )
            ).scalar_one()
        )

        return CoachingSummary(
            coaching_id=coaching_id,
            total_collected=total_paid_in - total_refunded,
            total_refunded=total_refunded,
            total_pending=pending,
            total_overdue=overdue,
            status_breakdown=breakdown,
            payment_modes=payment_modes,
            monthly_collection=self._monthly_collection(coaching_id, months),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _payments_for(self, record_ids: list) -> list[FeePayment]:
        if not record_ids:
            return []
        return list(
            self.session.execute(
                select(FeePayment).where(FeePayment.record_id.in_(record_ids))
            ).scalars()
        )

    def _refunds_for(self, record_ids: list) -> list[FeeRefund]:
        if not record_ids:
            return []
        return list(
            self.session.execute(
                select(FeeRefund).where(FeeRefund.record_id.in_(record_ids))
            ).scalars()
        )

    def _monthly_collection(self, coaching_id: str, months: int) -> list[MonthlyCollection]:
        # Bucketed in Python so the same code runs on SQLite and PostgreSQL.
        first_month = add_months(self.clock.today().replace(day=1), -(months - 1))
        keys = [add_months(first_month, i).strftime("%Y-%m") for i in range(months)]
        totals: dict[str, Decimal] = defaultdict(lambda: ZERO)

        since = datetime(first_month.year, first_month.month, 1, tzinfo=timezone.utc)
        rows = self.session.execute(
            select(FeePayment.paid_at, FeePayment.amount).where(
                FeePayment.coaching_id == coaching_id,
                FeePayment.paid_at >= since,
            )
        ).all()
        for paid_at, amount in rows:
            key = as_utc(paid_at).strftime("%Y-%m")
            totals[key] += to_decimal(amount)

        return [MonthlyCollection(month=k, amount=totals[k]) for k in keys]
