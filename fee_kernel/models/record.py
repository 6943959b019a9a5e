"""
Module: fee_kernel.models.record
Responsibility: ORM persistence for billable obligations (FeeRecord) and
    the append-only money movements against them (FeePayment, FeeRefund).
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - One record per (assignment, due date): uq_fee_record_due_date.
    - final_amount = (base_amount - discount_amount) + exclusive tax + fine.
    - paid_amount <= final_amount + 0.01 (enforced by PaymentProcessor).
    - FeePayment.amount > 0 and FeeRefund.amount > 0 (check constraints).
    - FeePayment.receipt_no is globally unique (uq_fee_payment_receipt).
    - Payments and refunds are never updated or deleted by the kernel.

Failure modes:
    - IntegrityError on a duplicate (assignment_id, due_date); RecordFactory
      turns this into "return the existing record".
    - IntegrityError on a duplicate receipt number.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fee_kernel.db.base import Base, TrackedBase, UUIDString
from fee_kernel.db.types import Money, Rate, to_decimal
from fee_kernel.domain.fee_types import (
    SETTLED_STATUSES,
    FeeStatus,
    PaymentMode,
    TaxType,
)


class FeeRecord(TrackedBase):
    """
    One bill: the amount a member owes for a due date.

    Contract:
        Created by RecordFactory, mutated only by PaymentProcessor,
        StructureService (re-pricing) and ReconciliationSweep.

    Guarantees:
        - balance is final_amount - paid_amount; refunds reduce paid_amount
          and are never subtracted a second time.
        - Tax and line-item fields are a snapshot of the structure at
          creation (or at the last re-pricing), not a live reference.
    """

    __tablename__ = "fee_records"

    __table_args__ = (
        UniqueConstraint("assignment_id", "due_date", name="uq_fee_record_due_date"),
        Index("idx_fee_record_coaching_status", "coaching_id", "status"),
        Index("idx_fee_record_member", "coaching_id", "member_id"),
        Index("idx_fee_record_due", "coaching_id", "due_date"),
    )

    coaching_id: Mapped[str] = mapped_column(String(64), nullable=False)

    assignment_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("fee_assignments.id"),
        nullable=False,
    )

    # Structure the record was priced from (assignments can be re-pointed)
    structure_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("fee_structures.id"),
        nullable=True,
    )

    member_id: Mapped[str] = mapped_column(String(64), nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)

    # Gross before discount, and discount + scholarship
    base_amount: Mapped[Money] = mapped_column(nullable=False)
    discount_amount: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))

    # Tax snapshot
    tax_type: Mapped[TaxType] = mapped_column(
        String(20),
        nullable=False,
        default=TaxType.NONE.value,
    )
    gst_rate: Mapped[Rate] = mapped_column(nullable=False, default=Decimal("0"))
    tax_amount: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))
    cgst_amount: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))
    sgst_amount: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))
    igst_amount: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))
    cess_amount: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))
    sac_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    hsn_code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    line_items: Mapped[list | None] = mapped_column(JSON, nullable=True)

    fine_amount: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))
    final_amount: Mapped[Money] = mapped_column(nullable=False)
    paid_amount: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))

    due_date: Mapped[date] = mapped_column(nullable=False)

    status: Mapped[FeeStatus] = mapped_column(
        String(20),
        nullable=False,
        default=FeeStatus.PENDING.value,
    )

    # Last settlement details
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    payment_mode: Mapped[str | None] = mapped_column(String(20), nullable=True)
    transaction_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    receipt_no: Mapped[str | None] = mapped_column(String(50), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    reminder_sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reminder_count: Mapped[int] = mapped_column(nullable=False, default=0)

    installment_label: Mapped[str | None] = mapped_column(String(100), nullable=True)

    marked_by_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    assignment = relationship("FeeAssignment")
    payments = relationship(
        "FeePayment",
        back_populates="record",
        order_by="FeePayment.paid_at",
    )
    refunds = relationship(
        "FeeRefund",
        back_populates="record",
        order_by="FeeRefund.refunded_at",
    )

    def __repr__(self) -> str:
        return f"<FeeRecord {self.title} {self.status} {self.paid_amount}/{self.final_amount}>"

    @property
    def net_amount(self) -> Decimal:
        return to_decimal(self.base_amount) - to_decimal(self.discount_amount)

    @property
    def balance(self) -> Decimal:
        return to_decimal(self.final_amount) - to_decimal(self.paid_amount)

    @property
    def is_settled(self) -> bool:
        return FeeStatus(self.status) in SETTLED_STATUSES


class FeePayment(Base):
    """
    Immutable record of money received against a FeeRecord.

    Guarantees:
        - receipt_no is TXR/<financial year>/<sequence>, allocated from
          ReceiptSequence inside the payment transaction.
    """

    __tablename__ = "fee_payments"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_fee_payment_amount"),
        UniqueConstraint("receipt_no", name="uq_fee_payment_receipt"),
        Index("idx_fee_payment_record", "record_id"),
        Index("idx_fee_payment_coaching_paid", "coaching_id", "paid_at"),
    )

    coaching_id: Mapped[str] = mapped_column(String(64), nullable=False)

    record_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("fee_records.id"),
        nullable=False,
    )

    amount: Mapped[Money] = mapped_column(nullable=False)

    mode: Mapped[PaymentMode] = mapped_column(String(20), nullable=False)

    transaction_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)

    receipt_no: Mapped[str] = mapped_column(String(50), nullable=False)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    paid_at: Mapped[datetime] = mapped_column(nullable=False)

    recorded_by_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    record = relationship("FeeRecord", back_populates="payments")

    def __repr__(self) -> str:
        return f"<FeePayment {self.receipt_no} {self.amount}>"


class FeeRefund(Base):
    """Immutable record of money returned against a FeeRecord."""

    __tablename__ = "fee_refunds"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_fee_refund_amount"),
        Index("idx_fee_refund_record", "record_id"),
        Index("idx_fee_refund_coaching", "coaching_id", "refunded_at"),
    )

    coaching_id: Mapped[str] = mapped_column(String(64), nullable=False)

    record_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("fee_records.id"),
        nullable=False,
    )

    amount: Mapped[Money] = mapped_column(nullable=False)

    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    mode: Mapped[PaymentMode] = mapped_column(String(20), nullable=False)

    refunded_at: Mapped[datetime] = mapped_column(nullable=False)

    processed_by_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    record = relationship("FeeRecord", back_populates="refunds")

    def __repr__(self) -> str:
        return f"<FeeRefund {self.amount} on {self.record_id}>"
