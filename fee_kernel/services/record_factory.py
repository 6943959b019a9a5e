"""
RecordFactory -- deduplicated creation of fee records.

Responsibility:
    Given an assignment, its structure, a net amount and a due date,
    produces exactly one FeeRecord, or returns the one that already exists
    for that (assignment, due date).  Seeds the first record(s) of an
    assignment and rolls a settled record over to the next period.

Architecture position:
    Kernel > Services.  Uses TaxCalculator and CycleScheduler from the
    domain layer; invoked by StructureService (seeding) and by the billing
    facade after a payment settles a record (rollover).

Invariants enforced:
    - Dedup key is the exact due date per assignment, backed by the
      uq_fee_record_due_date constraint.  QUARTERLY and YEARLY records
      never share a month, so a month-bucket match would not be enough.
    - final_amount = total_with_tax for both inclusive and exclusive tax.
    - Tax configuration and line items are snapshotted onto the record.

Failure modes:
    - Concurrent creators racing on the same key: the insert runs in a
      savepoint and an IntegrityError falls back to reading the winner.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from fee_kernel.db.types import MONEY_EPSILON, ZERO, money_equal, round_money, to_decimal
from fee_kernel.domain.fee_types import (
    AuditEventType,
    BillingCycle,
    FeeStatus,
    TaxBreakdown,
)
from fee_kernel.domain.pricing import (
    PeriodPrice,
    price_installment,
    price_installments,
    price_period,
)
from fee_kernel.domain.schedule import CycleScheduler
from fee_kernel.domain.tax import TaxCalculator
from fee_kernel.logging_config import get_logger
from fee_kernel.models.assignment import FeeAssignment
from fee_kernel.models.record import FeeRecord
from fee_kernel.models.structure import FeeStructure
from fee_kernel.services.audit_logger import AuditLogger
from fee_kernel.services.base import BaseService

logger = get_logger("services.record_factory")


@dataclass(frozen=True)
class RecordQuote:
    """Live price of a record: amounts, tax and fine as they stand today."""

    price: PeriodPrice
    breakdown: TaxBreakdown
    fine_amount: Decimal
    final_amount: Decimal

    def drifts_from(self, record: FeeRecord, epsilon: Decimal = MONEY_EPSILON) -> bool:
        """True when any stored amount differs from the quote by more than epsilon."""
        pairs = (
            (record.base_amount, self.price.gross_amount),
            (record.discount_amount, self.price.discount_amount),
            (record.tax_amount, self.breakdown.tax_amount),
            (record.fine_amount, self.fine_amount),
            (record.final_amount, self.final_amount),
        )
        return any(not money_equal(stored, live, epsilon) for stored, live in pairs)


def apply_tax_snapshot(record: FeeRecord, structure: FeeStructure, breakdown: TaxBreakdown) -> None:
    """Copy a structure's tax configuration and a fresh breakdown onto a record."""
    record.tax_type = structure.tax_type
    record.gst_rate = to_decimal(structure.gst_rate)
    record.tax_amount = breakdown.tax_amount
    record.cgst_amount = breakdown.cgst_amount
    record.sgst_amount = breakdown.sgst_amount
    record.igst_amount = breakdown.igst_amount
    record.cess_amount = breakdown.cess_amount
    record.sac_code = structure.sac_code
    record.hsn_code = structure.hsn_code


class RecordFactory(BaseService):
    """
    Creates FeeRecords from (assignment, structure, due date).

    Contract:
        ``create_record`` is idempotent per (assignment, due date): the
        second call returns the first call's record with created=False.
    """

    def __init__(
        self,
        session,
        clock=None,
        audit: AuditLogger | None = None,
        tax_calculator: TaxCalculator | None = None,
    ):
        super().__init__(session, clock)
        self.audit = audit or AuditLogger(session, self.clock)
        self.tax = tax_calculator or TaxCalculator()

    def find_record(self, assignment_id, due_date: date) -> FeeRecord | None:
        return self.session.execute(
            select(FeeRecord).where(
                FeeRecord.assignment_id == assignment_id,
                FeeRecord.due_date == due_date,
            )
        ).scalar_one_or_none()

    def create_record(
        self,
        assignment: FeeAssignment,
        structure: FeeStructure,
        net_amount: Decimal,
        due_date: date,
        *,
        discount_amount: Decimal | None = None,
        installment_label: str | None = None,
        actor_id: str | None = None,
    ) -> tuple[FeeRecord, bool]:
        """
        Create the record for ``due_date`` unless one already exists.

        Args:
            net_amount: Amount after discount and scholarship.
            discount_amount: Discount applied to this period; defaults to
                the assignment's full discount plus scholarship.

        Returns:
            (record, created)
        """
        existing = self.find_record(assignment.id, due_date)
        if existing is not None:
            return existing, False

        net = to_decimal(net_amount)
        if discount_amount is None:
            discount = assignment.total_discount
        else:
            discount = to_decimal(discount_amount)
        breakdown = self.tax.calculate_for_config(net, structure.tax_config)

        record = FeeRecord(
            coaching_id=assignment.coaching_id,
            assignment_id=assignment.id,
            structure_id=structure.id,
            member_id=assignment.member_id,
            title=CycleScheduler.record_title(
                structure.name, due_date, structure.cycle, installment_label
            ),
            base_amount=net + discount,
            discount_amount=discount,
            tax_type=structure.tax_type,
            gst_rate=to_decimal(structure.gst_rate),
            tax_amount=breakdown.tax_amount,
            cgst_amount=breakdown.cgst_amount,
            sgst_amount=breakdown.sgst_amount,
            igst_amount=breakdown.igst_amount,
            cess_amount=breakdown.cess_amount,
            sac_code=structure.sac_code,
            hsn_code=structure.hsn_code,
            line_items=[item.to_dict() for item in structure.line_item_entries] or None,
            fine_amount=ZERO,
            final_amount=breakdown.total_with_tax,
            paid_amount=ZERO,
            due_date=due_date,
            status=FeeStatus.PENDING.value,
            reminder_count=0,
            installment_label=installment_label,
            created_at=self.clock.now_utc(),
            updated_at=self.clock.now_utc(),
        )

        try:
            with self.session.begin_nested():
                self.session.add(record)
        except IntegrityError:
            logger.info(
                "record_create_race_lost",
                extra={"assignment_id": str(assignment.id), "due_date": due_date},
            )
            winner = self.find_record(assignment.id, due_date)
            if winner is None:
                raise
            return winner, False

        self.audit.log(
            assignment.coaching_id,
            "FeeRecord",
            record.id,
            AuditEventType.RECORD_CREATED,
            actor_id=actor_id,
            after=AuditLogger.snapshot(record),
            structure_id=structure.id,
        )
        logger.info(
            "record_created",
            extra={
                "record_id": str(record.id),
                "assignment_id": str(assignment.id),
                "due_date": due_date,
                "final_amount": str(record.final_amount),
            },
        )
        return record, True

    def seed_records(
        self,
        assignment: FeeAssignment,
        structure: FeeStructure,
        actor_id: str | None = None,
    ) -> list[FeeRecord]:
        """
        Create the first record(s) of an assignment.

        INSTALLMENT: one record per plan entry, due ``start_date + offset``.
        Every other cycle: one record due on ``start_date``.
        """
        effective = assignment.effective_amount(structure)
        if BillingCycle(structure.cycle) == BillingCycle.INSTALLMENT:
            records = []
            for entry, price in price_installments(
                structure.plan_entries, effective, assignment.total_discount
            ):
                record, _ = self.create_record(
                    assignment,
                    structure,
                    price.net_amount,
                    assignment.start_date + timedelta(days=entry.due_day_offset),
                    discount_amount=price.discount_amount,
                    installment_label=entry.label,
                    actor_id=actor_id,
                )
                records.append(record)
            return records

        price = price_period(effective, assignment.total_discount)
        record, _ = self.create_record(
            assignment,
            structure,
            price.net_amount,
            assignment.start_date,
            discount_amount=price.discount_amount,
            actor_id=actor_id,
        )
        return [record]

    def live_price(
        self,
        record: FeeRecord,
        assignment: FeeAssignment,
        structure: FeeStructure,
    ) -> PeriodPrice:
        """
        Current gross/discount for ``record`` from the live assignment and
        structure.  An installment whose label is no longer in the plan
        keeps its stored amounts.
        """
        effective = assignment.effective_amount(structure)
        if record.installment_label:
            price = price_installment(
                structure.plan_entries,
                record.installment_label,
                effective,
                assignment.total_discount,
            )
            if price is None:
                return PeriodPrice(
                    gross_amount=to_decimal(record.base_amount),
                    discount_amount=to_decimal(record.discount_amount),
                )
            return price
        return price_period(effective, assignment.total_discount)

    def create_next_record(
        self,
        record: FeeRecord,
        assignment: FeeAssignment,
        structure: FeeStructure,
        actor_id: str | None = None,
    ) -> FeeRecord | None:
        """
        Roll a settled record over to the next period.

        Returns None when the assignment is inactive or paused, the cycle
        does not roll over, or the next due date is past end_date.
        """
        if not assignment.is_active or assignment.is_paused:
            return None
        if not structure.is_active or not CycleScheduler.rolls_over(structure.cycle):
            return None
        due_date = CycleScheduler.next_due_date(record.due_date, structure.cycle)
        if assignment.end_date is not None and due_date > assignment.end_date:
            logger.info(
                "rollover_past_end_date",
                extra={"record_id": str(record.id), "next_due_date": due_date},
            )
            return None

        price = price_period(
            assignment.effective_amount(structure), assignment.total_discount
        )
        next_record, _ = self.create_record(
            assignment,
            structure,
            price.net_amount,
            due_date,
            discount_amount=price.discount_amount,
            actor_id=actor_id,
        )
        return next_record

    def roll_over(self, record_id, actor_id: str | None = None) -> FeeRecord | None:
        """Create the next period for a PAID record; None if it is not PAID or does not roll over."""
        record = self._load_record(record_id, lock=True)
        if FeeStatus(record.status) != FeeStatus.PAID:
            return None
        assignment = self._load_assignment(record.assignment_id)
        structure = self._load_structure(record.structure_id or assignment.structure_id)
        return self.create_next_record(record, assignment, structure, actor_id=actor_id)

    def quote(
        self,
        record: FeeRecord,
        assignment: FeeAssignment,
        structure: FeeStructure,
        fine_amount: Decimal | None = None,
    ) -> RecordQuote:
        """
        Recompute a record from the live assignment and structure.

        The fine defaults to ``late_fine_per_day * days_overdue`` when the
        record is past due, otherwise the stored fine is carried forward.
        final_amount never drops below what has already been paid.
        """
        if fine_amount is None:
            days = CycleScheduler.days_overdue(record.due_date, self.clock.today())
            if days > 0:
                fine_amount = round_money(to_decimal(structure.late_fine_per_day) * days)
            else:
                fine_amount = to_decimal(record.fine_amount)
        price = self.live_price(record, assignment, structure)
        breakdown = self.tax.calculate_for_config(price.net_amount, structure.tax_config)
        final_amount = max(
            round_money(breakdown.total_with_tax + fine_amount),
            to_decimal(record.paid_amount),
        )
        return RecordQuote(
            price=price,
            breakdown=breakdown,
            fine_amount=fine_amount,
            final_amount=final_amount,
        )

    def apply_quote(self, record: FeeRecord, structure: FeeStructure, quote: RecordQuote) -> None:
        record.base_amount = quote.price.gross_amount
        record.discount_amount = quote.price.discount_amount
        apply_tax_snapshot(record, structure, quote.breakdown)
        record.fine_amount = quote.fine_amount
        record.final_amount = quote.final_amount
        record.updated_at = self.clock.now_utc()
