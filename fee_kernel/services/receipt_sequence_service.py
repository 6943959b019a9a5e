"""
ReceiptSequenceService -- gap-free receipt numbers via locked counter rows.

Responsibility:
    Allocates the next receipt number for a (coaching, financial year)
    pair and formats it as ``TXR/<fy>/<seq>``.  Uses a counter row with
    row-level locking (``SELECT ... FOR UPDATE``) to guarantee uniqueness
    and ordering under concurrent payments.

Architecture position:
    Kernel > Services -- called by PaymentProcessor inside the payment's
    serializable transaction.

Invariants enforced:
    - The locked counter row is the sole source of truth for the next
      value.  MAX(receipt_no)+1 is never used.
    - The increment is only visible once the payment transaction commits;
      a rollback returns the number, so committed receipts have no gaps.

Failure modes:
    - IntegrityError: concurrent creation of the first counter row for a
      financial year (handled via savepoint rollback and re-read).
"""

from datetime import date

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from fee_kernel.domain.schedule import financial_year, format_receipt_no
from fee_kernel.logging_config import get_logger
from fee_kernel.models.receipt_sequence import ReceiptSequence
from fee_kernel.services.base import BaseService

logger = get_logger("services.receipt_sequence")


class ReceiptSequenceService(BaseService):
    """
    Transactional receipt counters.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.

    Usage:
        with serializable_scope() as session:
            receipts = ReceiptSequenceService(session)
            receipt_no = receipts.next_receipt_no(coaching_id, today)
    """

    def __init__(self, session, clock=None, prefix: str = "TXR", padding: int = 4):
        super().__init__(session, clock)
        self.prefix = prefix
        self.padding = padding

    def _locked_counter(self, coaching_id: str, fy: str) -> ReceiptSequence | None:
        return self.session.execute(
            select(ReceiptSequence)
            .where(
                ReceiptSequence.coaching_id == coaching_id,
                ReceiptSequence.financial_year == fy,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_number(self, coaching_id: str, fy: str) -> int:
        """
        Increment and return the counter for (coaching_id, fy).

        Postconditions:
            - Returns an integer > 0 strictly greater than any value
              previously committed for this pair.
            - The counter row stays locked until the transaction ends.
        """
        counter = self._locked_counter(coaching_id, fy)

        if counter is None:
            # First receipt of the year.  Another transaction may be
            # creating the same row, so insert inside a savepoint.
            savepoint = self.session.begin_nested()
            try:
                counter = ReceiptSequence(
                    coaching_id=coaching_id,
                    financial_year=fy,
                    last_number=1,
                )
                self.session.add(counter)
                self.session.flush()
                savepoint.commit()
                logger.debug(
                    "receipt_number_allocated",
                    extra={"coaching_id": coaching_id, "financial_year": fy, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "receipt_counter_race_retry",
                    extra={"coaching_id": coaching_id, "financial_year": fy},
                )
                savepoint.rollback()
                counter = self._locked_counter(coaching_id, fy)
                if counter is None:
                    raise

        counter.last_number += 1
        self.session.flush()
        logger.debug(
            "receipt_number_allocated",
            extra={
                "coaching_id": coaching_id,
                "financial_year": fy,
                "value": counter.last_number,
            },
        )
        return counter.last_number

    def next_receipt_no(self, coaching_id: str, on_date: date) -> str:
        """Allocate and format the next receipt number for ``on_date``'s FY."""
        fy = financial_year(on_date)
        number = self.next_number(coaching_id, fy)
        return format_receipt_no(fy, number, self.prefix, self.padding)

    def current_number(self, coaching_id: str, fy: str) -> int | None:
        """Current counter value without incrementing; None if unused."""
        counter = self.session.execute(
            select(ReceiptSequence).where(
                ReceiptSequence.coaching_id == coaching_id,
                ReceiptSequence.financial_year == fy,
            )
        ).scalar_one_or_none()
        return counter.last_number if counter else None
