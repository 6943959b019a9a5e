"""
Module: fee_kernel.models.receipt_sequence
Responsibility: Per-(coaching, financial year) receipt counter rows.
Architecture position: Kernel > Models.  Read and incremented only by
    ReceiptSequenceService, under a row lock, inside the payment
    transaction.

Invariants enforced:
    - One counter per (coaching_id, financial_year): uq_receipt_sequence.
    - last_number only increases.  MAX(receipt)+1 is never used.
"""

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fee_kernel.db.base import TrackedBase


class ReceiptSequence(TrackedBase):
    """Receipt counter for one coaching tenant and financial year."""

    __tablename__ = "fee_receipt_sequences"

    __table_args__ = (
        UniqueConstraint("coaching_id", "financial_year", name="uq_receipt_sequence"),
    )

    coaching_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # e.g. "2025-26"
    financial_year: Mapped[str] = mapped_column(String(7), nullable=False)

    last_number: Mapped[int] = mapped_column(nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<ReceiptSequence {self.coaching_id} {self.financial_year}={self.last_number}>"
