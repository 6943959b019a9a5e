"""
PaymentProcessor -- transactional state transitions of fee records.

Responsibility:
    Records payments and refunds, waives fees, and pauses or removes
    assignments.  Payments and refunds are the only money-moving
    operations in the kernel.

Architecture position:
    Kernel > Services.  Uses ReceiptSequenceService, RecordFactory (for
    live pricing), TaxCalculator and AuditLogger.  The billing facade
    opens the transaction, retries it on conflicts, and performs the
    post-commit rollover and notification.

State machine per FeeRecord:
    PENDING <-> PARTIALLY_PAID <-> PAID
    PENDING / PARTIALLY_PAID -> OVERDUE          (sweep only)
    OVERDUE -> PARTIALLY_PAID / PAID             (payment)
    PENDING / PARTIALLY_PAID / OVERDUE -> WAIVED (explicit)
    PAID / PARTIALLY_PAID recomputed on refund

Invariants enforced:
    - record_payment / record_refund run only in a serializable_scope()
      session, with the record row locked and every input re-read inside
      the transaction.
    - paid_amount <= final_amount + 0.01 after every payment.
    - A refund never exceeds paid_amount and never changes final_amount.
    - The receipt counter increments in the same transaction as the
      payment insert.

Failure modes:
    - InvalidAmountError: amount <= 0.
    - RecordAlreadySettledError / RecordAlreadyWaivedError.
    - AmountExceedsBalanceError / RefundExceedsPaidError.
    - RecordNotFoundError / AssignmentNotFoundError.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from fee_kernel.db.engine import require_serializable
from fee_kernel.db.types import MONEY_EPSILON, ZERO, to_decimal
from fee_kernel.domain.clock import as_utc
from fee_kernel.domain.fee_types import (
    AuditEventType,
    FeeStatus,
    PaymentMode,
)
from fee_kernel.domain.tax import TaxCalculator
from fee_kernel.exceptions import (
    AmountExceedsBalanceError,
    FeeValidationError,
    InvalidAmountError,
    RecordAlreadySettledError,
    RecordAlreadyWaivedError,
    RefundExceedsPaidError,
)
from fee_kernel.logging_config import get_logger
from fee_kernel.models.assignment import FeeAssignment
from fee_kernel.models.record import FeePayment, FeeRecord, FeeRefund
from fee_kernel.services.audit_logger import AuditLogger
from fee_kernel.services.base import BaseService
from fee_kernel.services.receipt_sequence_service import ReceiptSequenceService
from fee_kernel.services.record_factory import RecordFactory

logger = get_logger("services.payment")


def _payment_mode(mode) -> PaymentMode:
    try:
        return PaymentMode(mode)
    except ValueError as exc:
        raise FeeValidationError(f"Unknown payment mode: {mode!r}") from exc


@dataclass(frozen=True)
class PaymentResult:
    """Outcome of a committed payment."""

    record_id: UUID
    payment_id: UUID
    coaching_id: str
    member_id: str
    receipt_no: str
    amount: Decimal
    paid_amount: Decimal
    final_amount: Decimal
    status: FeeStatus

    @property
    def settled(self) -> bool:
        return self.status == FeeStatus.PAID


@dataclass(frozen=True)
class RefundResult:
    record_id: UUID
    refund_id: UUID
    amount: Decimal
    paid_amount: Decimal
    final_amount: Decimal
    status: FeeStatus


class PaymentProcessor(BaseService):
    """
    Guarded transitions for payments, refunds, waivers and pauses.

    Contract:
        Never commits.  Money-moving methods raise RuntimeError when the
        session did not come from serializable_scope().
    """

    def __init__(
        self,
        session,
        clock=None,
        audit: AuditLogger | None = None,
        receipts: ReceiptSequenceService | None = None,
        factory: RecordFactory | None = None,
        tax_calculator: TaxCalculator | None = None,
        epsilon: Decimal = MONEY_EPSILON,
    ):
        super().__init__(session, clock)
        self.audit = audit or AuditLogger(session, self.clock)
        self.receipts = receipts or ReceiptSequenceService(session, self.clock)
        self.tax = tax_calculator or TaxCalculator()
        self.factory = factory or RecordFactory(
            session, self.clock, audit=self.audit, tax_calculator=self.tax
        )
        self.epsilon = to_decimal(epsilon)

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def record_payment(
        self,
        record_id,
        amount,
        mode: PaymentMode | str,
        transaction_ref: str | None = None,
        notes: str | None = None,
        paid_at: datetime | None = None,
        actor_id: str | None = None,
        coaching_id: str | None = None,
    ) -> PaymentResult:
        """
        Apply a confirmed payment to a record.

        The late fine is locked in as of today and tax is recomputed from
        the live structure before the balance check, so records created
        before a price or tax change settle at the current price.

        Raises:
            InvalidAmountError, RecordAlreadySettledError,
            AmountExceedsBalanceError, RecordNotFoundError.
        """
        amount = to_decimal(amount)
        mode = _payment_mode(mode)
        if amount <= ZERO:
            raise InvalidAmountError(amount)

        require_serializable(self.session)
        record = self._load_record(record_id, coaching_id, lock=True)
        status = FeeStatus(record.status)
        if status in (FeeStatus.PAID, FeeStatus.WAIVED):
            raise RecordAlreadySettledError(str(record.id), status.value)

        before = AuditLogger.snapshot(record)
        assignment = self._load_assignment(record.assignment_id)
        structure = self._load_structure(record.structure_id or assignment.structure_id)
        quote = self.factory.quote(record, assignment, structure)
        paid = to_decimal(record.paid_amount)
        final_locked = quote.final_amount

        balance = final_locked - paid
        if amount > balance + self.epsilon:
            raise AmountExceedsBalanceError(str(record.id), amount, balance)

        paid_at = paid_at or self.clock.now_utc()
        receipt_date = paid_at.date() if paid_at.tzinfo is None else as_utc(paid_at).date()
        receipt_no = self.receipts.next_receipt_no(record.coaching_id, receipt_date)

        payment = FeePayment(
            coaching_id=record.coaching_id,
            record_id=record.id,
            amount=amount,
            mode=mode.value,
            transaction_ref=transaction_ref,
            receipt_no=receipt_no,
            notes=notes,
            paid_at=paid_at,
            recorded_by_id=actor_id,
        )
        self.session.add(payment)

        new_paid = paid + amount
        settled = new_paid >= final_locked - self.epsilon
        new_status = FeeStatus.PAID if settled else FeeStatus.PARTIALLY_PAID

        self.factory.apply_quote(record, structure, quote)
        record.paid_amount = new_paid
        record.status = new_status.value
        record.payment_mode = mode.value
        record.transaction_ref = transaction_ref
        record.receipt_no = receipt_no
        record.marked_by_id = actor_id
        if settled:
            record.paid_at = paid_at
        self.session.flush()

        self.audit.log(
            record.coaching_id,
            "FeeRecord",
            record.id,
            AuditEventType.PAYMENT_RECORDED,
            actor_id=actor_id,
            before=before,
            after=AuditLogger.snapshot(record),
            meta={
                "payment_id": payment.id,
                "receipt_no": receipt_no,
                "amount": amount,
                "mode": mode.value,
            },
            structure_id=structure.id,
        )
        logger.info(
            "payment_recorded",
            extra={
                "record_id": str(record.id),
                "payment_id": str(payment.id),
                "receipt_no": receipt_no,
                "amount": str(amount),
                "paid_amount": str(new_paid),
                "final_amount": str(final_locked),
                "status": new_status.value,
            },
        )
        return PaymentResult(
            record_id=record.id,
            payment_id=payment.id,
            coaching_id=record.coaching_id,
            member_id=record.member_id,
            receipt_no=receipt_no,
            amount=amount,
            paid_amount=new_paid,
            final_amount=final_locked,
            status=new_status,
        )

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    def record_refund(
        self,
        record_id,
        amount,
        reason: str | None = None,
        mode: PaymentMode | str = PaymentMode.CASH,
        actor_id: str | None = None,
        coaching_id: str | None = None,
    ) -> RefundResult:
        """
        Return money against a record.

        final_amount is left alone (a waived record is the exception: its
        final follows paid_amount so its balance stays zero).

        Raises:
            InvalidAmountError, RefundExceedsPaidError, RecordNotFoundError.
        """
        amount = to_decimal(amount)
        mode = _payment_mode(mode)
        if amount <= ZERO:
            raise InvalidAmountError(amount)

        require_serializable(self.session)
        record = self._load_record(record_id, coaching_id, lock=True)
        paid = to_decimal(record.paid_amount)
        if amount > paid:
            raise RefundExceedsPaidError(str(record.id), amount, paid)

        before = AuditLogger.snapshot(record)
        new_paid = paid - amount
        if FeeStatus(record.status) == FeeStatus.WAIVED:
            record.final_amount = new_paid
            new_status = FeeStatus.WAIVED
        else:
            new_status = self._status_after_refund(
                new_paid, to_decimal(record.final_amount), record.due_date
            )

        refund = FeeRefund(
            coaching_id=record.coaching_id,
            record_id=record.id,
            amount=amount,
            reason=reason,
            mode=mode.value,
            refunded_at=self.clock.now_utc(),
            processed_by_id=actor_id,
        )
        self.session.add(refund)

        record.paid_amount = new_paid
        record.status = new_status.value
        if new_status != FeeStatus.PAID and new_status != FeeStatus.WAIVED:
            record.paid_at = None
        record.updated_at = self.clock.now_utc()
        self.session.flush()

        self.audit.log(
            record.coaching_id,
            "FeeRecord",
            record.id,
            AuditEventType.REFUND_RECORDED,
            actor_id=actor_id,
            before=before,
            after=AuditLogger.snapshot(record),
            meta={"refund_id": refund.id, "amount": amount, "mode": mode.value},
            note=reason,
            structure_id=record.structure_id,
        )
        logger.info(
            "refund_recorded",
            extra={
                "record_id": str(record.id),
                "refund_id": str(refund.id),
                "amount": str(amount),
                "paid_amount": str(new_paid),
                "status": new_status.value,
            },
        )
        return RefundResult(
            record_id=record.id,
            refund_id=refund.id,
            amount=amount,
            paid_amount=new_paid,
            final_amount=to_decimal(record.final_amount),
            status=new_status,
        )

    def _status_after_refund(
        self, new_paid: Decimal, final_amount: Decimal, due_date: date
    ) -> FeeStatus:
        if new_paid > ZERO and new_paid >= final_amount - self.epsilon:
            return FeeStatus.PAID
        if due_date < self.clock.today():
            return FeeStatus.OVERDUE
        if new_paid <= ZERO:
            return FeeStatus.PENDING
        return FeeStatus.PARTIALLY_PAID

    # ------------------------------------------------------------------
    # Simple guarded transitions
    # ------------------------------------------------------------------

    def waive_fee(
        self,
        record_id,
        notes: str | None = None,
        actor_id: str | None = None,
        coaching_id: str | None = None,
    ) -> FeeRecord:
        """
        Waive the outstanding balance of a record.

        Collected money is kept: with a partial payment, final_amount
        becomes paid_amount so the balance is exactly zero.
        """
        record = self._load_record(record_id, coaching_id, lock=True)
        status = FeeStatus(record.status)
        if status == FeeStatus.WAIVED:
            raise RecordAlreadyWaivedError(str(record.id))
        if status == FeeStatus.PAID:
            raise RecordAlreadySettledError(str(record.id), status.value)

        before = AuditLogger.snapshot(record)
        paid = to_decimal(record.paid_amount)
        if paid > ZERO:
            record.final_amount = paid
        record.status = FeeStatus.WAIVED.value
        record.notes = notes
        record.marked_by_id = actor_id
        record.updated_at = self.clock.now_utc()
        self.session.flush()

        self.audit.log(
            record.coaching_id,
            "FeeRecord",
            record.id,
            AuditEventType.FEE_WAIVED,
            actor_id=actor_id,
            before=before,
            after=AuditLogger.snapshot(record),
            note=notes,
            structure_id=record.structure_id,
        )
        logger.info(
            "fee_waived",
            extra={
                "record_id": str(record.id),
                "paid_amount": str(paid),
                "final_amount": str(record.final_amount),
            },
        )
        return record

    def toggle_pause(
        self,
        assignment_id,
        pause: bool,
        note: str | None = None,
        actor_id: str | None = None,
        coaching_id: str | None = None,
    ) -> FeeAssignment:
        """Pause or resume an assignment; a paused assignment does not roll over."""
        assignment = self._load_assignment(assignment_id, coaching_id)
        before = AuditLogger.snapshot(assignment)
        assignment.is_paused = pause
        if pause:
            assignment.paused_at = self.clock.now_utc()
            assignment.pause_note = note
        else:
            assignment.paused_at = None
            assignment.pause_note = None
        self.session.flush()

        self.audit.log(
            assignment.coaching_id,
            "FeeAssignment",
            assignment.id,
            AuditEventType.ASSIGNMENT_PAUSED if pause else AuditEventType.ASSIGNMENT_RESUMED,
            actor_id=actor_id,
            before=before,
            after=AuditLogger.snapshot(assignment),
            note=note,
            structure_id=assignment.structure_id,
        )
        logger.info(
            "assignment_paused" if pause else "assignment_resumed",
            extra={"assignment_id": str(assignment.id)},
        )
        return assignment

    def remove_assignment(
        self,
        assignment_id,
        actor_id: str | None = None,
        coaching_id: str | None = None,
    ) -> FeeAssignment:
        """Deactivate an assignment.  Existing records are kept."""
        assignment = self._load_assignment(assignment_id, coaching_id)
        before = AuditLogger.snapshot(assignment)
        assignment.is_active = False
        self.session.flush()

        self.audit.log(
            assignment.coaching_id,
            "FeeAssignment",
            assignment.id,
            AuditEventType.ASSIGNMENT_REMOVED,
            actor_id=actor_id,
            before=before,
            after=AuditLogger.snapshot(assignment),
            structure_id=assignment.structure_id,
        )
        logger.info("assignment_removed", extra={"assignment_id": str(assignment.id)})
        return assignment
