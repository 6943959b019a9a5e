"""
Read-side DTOs shared by the fee selectors.

Frozen dataclasses built from ORM rows; callers never receive a live
ORM instance from a selector.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from fee_kernel.db.types import to_decimal
from fee_kernel.domain.schedule import CycleScheduler
from fee_kernel.models.record import FeePayment, FeeRecord, FeeRefund


@dataclass(frozen=True)
class PaymentView:
    payment_id: UUID
    amount: Decimal
    mode: str
    receipt_no: str
    transaction_ref: str | None
    notes: str | None
    paid_at: datetime
    recorded_by_id: str | None

    @classmethod
    def from_row(cls, row: FeePayment) -> "PaymentView":
        return cls(
            payment_id=row.id,
            amount=to_decimal(row.amount),
            mode=row.mode,
            receipt_no=row.receipt_no,
            transaction_ref=row.transaction_ref,
            notes=row.notes,
            paid_at=row.paid_at,
            recorded_by_id=row.recorded_by_id,
        )


@dataclass(frozen=True)
class RefundView:
    refund_id: UUID
    amount: Decimal
    mode: str
    reason: str | None
    refunded_at: datetime
    processed_by_id: str | None

    @classmethod
    def from_row(cls, row: FeeRefund) -> "RefundView":
        return cls(
            refund_id=row.id,
            amount=to_decimal(row.amount),
            mode=row.mode,
            reason=row.reason,
            refunded_at=row.refunded_at,
            processed_by_id=row.processed_by_id,
        )


@dataclass(frozen=True)
class RecordView:
    """A fee record as seen by readers, with derived balance and days overdue."""

    record_id: UUID
    coaching_id: str
    member_id: str
    assignment_id: UUID
    structure_id: UUID | None
    title: str
    status: str
    due_date: date
    base_amount: Decimal
    discount_amount: Decimal
    tax_type: str
    tax_amount: Decimal
    cgst_amount: Decimal
    sgst_amount: Decimal
    igst_amount: Decimal
    cess_amount: Decimal
    fine_amount: Decimal
    final_amount: Decimal
    paid_amount: Decimal
    balance: Decimal
    days_overdue: int
    receipt_no: str | None
    installment_label: str | None
    reminder_count: int
    reminder_sent_at: datetime | None
    paid_at: datetime | None
    notes: str | None
    payments: tuple[PaymentView, ...] = field(default_factory=tuple)
    refunds: tuple[RefundView, ...] = field(default_factory=tuple)

    @classmethod
    def from_row(
        cls,
        row: FeeRecord,
        today: date,
        payments=(),
        refunds=(),
    ) -> "RecordView":
        final_amount = to_decimal(row.final_amount)
        paid_amount = to_decimal(row.paid_amount)
        open_record = not row.is_settled
        return cls(
            record_id=row.id,
            coaching_id=row.coaching_id,
            member_id=row.member_id,
            assignment_id=row.assignment_id,
            structure_id=row.structure_id,
            title=row.title,
            status=row.status,
            due_date=row.due_date,
            base_amount=to_decimal(row.base_amount),
            discount_amount=to_decimal(row.discount_amount),
            tax_type=row.tax_type,
            tax_amount=to_decimal(row.tax_amount),
            cgst_amount=to_decimal(row.cgst_amount),
            sgst_amount=to_decimal(row.sgst_amount),
            igst_amount=to_decimal(row.igst_amount),
            cess_amount=to_decimal(row.cess_amount),
            fine_amount=to_decimal(row.fine_amount),
            final_amount=final_amount,
            paid_amount=paid_amount,
            balance=final_amount - paid_amount,
            days_overdue=(
                CycleScheduler.days_overdue(row.due_date, today) if open_record else 0
            ),
            receipt_no=row.receipt_no,
            installment_label=row.installment_label,
            reminder_count=row.reminder_count or 0,
            reminder_sent_at=row.reminder_sent_at,
            paid_at=row.paid_at,
            notes=row.notes,
            payments=tuple(PaymentView.from_row(p) for p in payments),
            refunds=tuple(RefundView.from_row(r) for r in refunds),
        )
