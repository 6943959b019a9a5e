"""
Module: fee_kernel.models.assignment
Responsibility: ORM persistence for fee assignments, the binding of one
    fee structure to one member with per-member overrides (custom amount,
    discount, scholarship, start/end dates, pause state).
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - Exactly one assignment per (coaching, member): uq_fee_assignment_member.
      Reassigning a member to another structure updates this row.
    - discount_amount + scholarship_amount <= effective amount (validated
      by StructureService before flush).
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fee_kernel.db.base import TrackedBase, UUIDString
from fee_kernel.db.types import ZERO, Money, to_decimal


class FeeAssignment(TrackedBase):
    """
    One member's subscription to a fee structure.

    Guarantees:
        - effective_amount(structure) is custom_amount when set, else the
          structure amount.
        - total_discount is discount plus scholarship.
    """

    __tablename__ = "fee_assignments"

    __table_args__ = (
        UniqueConstraint("coaching_id", "member_id", name="uq_fee_assignment_member"),
        Index("idx_fee_assignment_structure", "structure_id"),
    )

    coaching_id: Mapped[str] = mapped_column(String(64), nullable=False)

    structure_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("fee_structures.id"),
        nullable=False,
    )

    member_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Per-member price override
    custom_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(38, 9),
        nullable=True,
    )

    discount_amount: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))
    discount_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    scholarship_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(38, 9),
        nullable=True,
    )
    scholarship_tag: Mapped[str | None] = mapped_column(String(100), nullable=True)

    start_date: Mapped[date] = mapped_column(nullable=False)
    end_date: Mapped[date | None] = mapped_column(nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    is_paused: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    paused_at: Mapped[datetime | None] = mapped_column(nullable=True)
    pause_note: Mapped[str | None] = mapped_column(String(500), nullable=True)

    structure = relationship("FeeStructure", back_populates="assignments")

    def __repr__(self) -> str:
        return f"<FeeAssignment member={self.member_id} structure={self.structure_id}>"

    @property
    def total_discount(self) -> Decimal:
        return to_decimal(self.discount_amount) + to_decimal(self.scholarship_amount)

    def effective_amount(self, structure) -> Decimal:
        if self.custom_amount is not None:
            return to_decimal(self.custom_amount)
        return to_decimal(structure.amount)

    def net_amount(self, structure) -> Decimal:
        """Effective amount less discount and scholarship, floored at zero."""
        return max(ZERO, self.effective_amount(structure) - self.total_discount)
