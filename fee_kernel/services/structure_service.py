"""
StructureService -- lifecycle of fee structures and assignments.

Responsibility:
    Creates, updates and deletes fee structures, assigns structures to
    members, and keeps existing records consistent with those changes:
    a price or tax change re-prices every unpaid record, and moving a
    member to a different structure cleans up the old structure's open
    records before seeding new ones.

Architecture position:
    Kernel > Services.  Uses RecordFactory for seeding and re-pricing,
    PaymentProcessor for pause/remove, and AuditLogger.  Runs in a
    READ COMMITTED session_scope(); these paths are corrective and
    idempotent, not money-moving.

Invariants enforced:
    - amount >= 0; installment_plan present iff cycle == INSTALLMENT.
    - discount + scholarship <= effective amount of an assignment.
    - Re-pricing never sets final_amount below paid_amount.
    - A structure with records is deactivated, never deleted.
    - One assignment per (coaching, member).

Failure modes:
    - StructureNotFoundError, AssignmentNotFoundError, MemberNotFoundError.
    - InactiveStructureError when assigning a deactivated structure.
    - InvalidAmountError / DiscountExceedsAmountError / FeeValidationError
      on invalid input.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import func, or_, select

from fee_kernel.db.types import ZERO, to_decimal
from fee_kernel.domain.fee_types import (
    OPEN_STATUSES,
    AuditEventType,
    BillingCycle,
    FeeStatus,
    TaxConfig,
    parse_installment_plan,
    parse_line_items,
)
from fee_kernel.exceptions import (
    DiscountExceedsAmountError,
    FeeValidationError,
    InactiveStructureError,
    InvalidAmountError,
    MemberNotFoundError,
)
from fee_kernel.logging_config import get_logger
from fee_kernel.models.assignment import FeeAssignment
from fee_kernel.models.record import FeePayment, FeeRecord, FeeRefund
from fee_kernel.models.structure import FeeStructure
from fee_kernel.services.audit_logger import AuditLogger
from fee_kernel.services.base import BaseService
from fee_kernel.services.payment_processor import PaymentProcessor
from fee_kernel.services.record_factory import RecordFactory

logger = get_logger("services.structure")

# Fields whose change re-prices unpaid records
PRICE_FIELDS = frozenset(
    {"amount", "tax_type", "gst_rate", "supply_type", "cess_rate", "installment_plan"}
)

STRUCTURE_FIELDS = (
    "name",
    "description",
    "amount",
    "cycle",
    "late_fine_per_day",
    "tax_type",
    "gst_rate",
    "supply_type",
    "cess_rate",
    "sac_code",
    "hsn_code",
    "installment_plan",
    "line_items",
    "discounts",
    "is_active",
)

AUTO_WAIVE_NOTE = "Auto-waived: member moved to a different fee structure"

_REPRICEABLE = (
    FeeStatus.PENDING.value,
    FeeStatus.PARTIALLY_PAID.value,
    FeeStatus.OVERDUE.value,
)


@dataclass(frozen=True)
class StructureUpdate:
    structure: FeeStructure
    repriced: int = 0


@dataclass(frozen=True)
class AssignmentOutcome:
    """Result of assign_fee."""

    assignment: FeeAssignment
    created: bool
    seeded: list[FeeRecord] = field(default_factory=list)
    deleted_records: int = 0
    waived_records: int = 0


def _non_negative(value, name: str) -> Decimal:
    amount = to_decimal(value)
    if amount < ZERO:
        raise InvalidAmountError(amount, field=name)
    return amount


def normalize_structure(data: dict[str, Any]) -> dict[str, Any]:
    """
    Validate structure input and convert it to column values.

    Raises:
        FeeValidationError (or a subclass) on any invalid field.
    """
    unknown = set(data) - set(STRUCTURE_FIELDS)
    if unknown:
        raise FeeValidationError(f"Unknown structure fields: {sorted(unknown)}")

    name = (data.get("name") or "").strip()
    if not name:
        raise FeeValidationError("Structure name cannot be empty")

    try:
        cycle = BillingCycle(data.get("cycle") or BillingCycle.MONTHLY)
        tax = TaxConfig(
            tax_type=data.get("tax_type") or "NONE",
            gst_rate=data.get("gst_rate") or ZERO,
            supply_type=data.get("supply_type") or "INTRA_STATE",
            cess_rate=data.get("cess_rate") or ZERO,
            sac_code=data.get("sac_code"),
            hsn_code=data.get("hsn_code"),
        )
    except ValueError as exc:
        raise FeeValidationError(str(exc)) from exc

    plan = parse_installment_plan(data.get("installment_plan"))
    if cycle == BillingCycle.INSTALLMENT and not plan:
        raise FeeValidationError("INSTALLMENT structures require an installment plan")
    if cycle != BillingCycle.INSTALLMENT and plan:
        raise FeeValidationError(
            f"Installment plan is only allowed for INSTALLMENT cycle, not {cycle.value}"
        )
    if plan and len({entry.label for entry in plan}) != len(plan):
        raise FeeValidationError("Installment labels must be unique")
    line_items = parse_line_items(data.get("line_items"))

    amount = _non_negative(data.get("amount"), "amount")
    if plan:
        # An installment structure costs exactly its plan total
        amount = sum((entry.amount for entry in plan), ZERO)

    return {
        "name": name,
        "description": data.get("description"),
        "amount": amount,
        "cycle": cycle.value,
        "late_fine_per_day": _non_negative(
            data.get("late_fine_per_day"), "late_fine_per_day"
        ),
        "tax_type": tax.tax_type.value,
        "gst_rate": tax.gst_rate,
        "supply_type": tax.supply_type.value,
        "cess_rate": tax.cess_rate,
        "sac_code": tax.sac_code,
        "hsn_code": tax.hsn_code,
        "installment_plan": [entry.to_dict() for entry in plan] if plan else None,
        "line_items": [item.to_dict() for item in line_items] if line_items else None,
        "discounts": data.get("discounts"),
        "is_active": bool(data.get("is_active", True)),
    }


class StructureService(BaseService):
    """
    Structure and assignment lifecycle.

    Args:
        directory: Optional member directory with
            ``get_member(coaching_id, member_id)``; when given, assign_fee
            rejects unknown members.
    """

    def __init__(
        self,
        session,
        clock=None,
        audit: AuditLogger | None = None,
        factory: RecordFactory | None = None,
        processor: PaymentProcessor | None = None,
        directory=None,
    ):
        super().__init__(session, clock)
        self.audit = audit or AuditLogger(session, self.clock)
        self.factory = factory or RecordFactory(session, self.clock, audit=self.audit)
        self.processor = processor or PaymentProcessor(
            session, self.clock, audit=self.audit, factory=self.factory
        )
        self.directory = directory

    # ------------------------------------------------------------------
    # Structures
    # ------------------------------------------------------------------

    def create_structure(
        self, coaching_id: str, data: dict[str, Any], actor_id: str | None = None
    ) -> FeeStructure:
        values = normalize_structure(data)
        structure = FeeStructure(coaching_id=coaching_id, **values)
        self.session.add(structure)
        self.session.flush()

        self.audit.log(
            coaching_id,
            "FeeStructure",
            structure.id,
            AuditEventType.STRUCTURE_CREATED,
            actor_id=actor_id,
            after=AuditLogger.snapshot(structure),
            structure_id=structure.id,
        )
        logger.info(
            "structure_created",
            extra={
                "structure_id": str(structure.id),
                "amount": str(structure.amount),
                "cycle": structure.cycle,
            },
        )
        return structure

    def update_structure(
        self,
        structure_id,
        changes: dict[str, Any],
        actor_id: str | None = None,
        coaching_id: str | None = None,
    ) -> StructureUpdate:
        """
        Apply ``changes`` to a structure.

        When the amount, any tax field or the installment plan changes,
        every unpaid record priced from this structure is re-priced.
        """
        structure = self._load_structure(structure_id, coaching_id)
        current = {name: getattr(structure, name) for name in STRUCTURE_FIELDS}
        values = normalize_structure({**current, **changes})

        changed = {
            name
            for name, value in values.items()
            if _differs(getattr(structure, name), value)
        }
        if not changed:
            return StructureUpdate(structure=structure)

        before = AuditLogger.snapshot(structure)
        for name in changed:
            setattr(structure, name, values[name])
        self.session.flush()

        deactivated = "is_active" in changed and not structure.is_active
        self.audit.log(
            structure.coaching_id,
            "FeeStructure",
            structure.id,
            (
                AuditEventType.STRUCTURE_DEACTIVATED
                if deactivated
                else AuditEventType.STRUCTURE_UPDATED
            ),
            actor_id=actor_id,
            before=before,
            after=AuditLogger.snapshot(structure),
            meta={"changed": sorted(changed)},
            structure_id=structure.id,
        )

        repriced = 0
        if changed & PRICE_FIELDS:
            repriced = self.reprice_records(structure, actor_id=actor_id)

        logger.info(
            "structure_updated",
            extra={
                "structure_id": str(structure.id),
                "changed": sorted(changed),
                "repriced": repriced,
            },
        )
        return StructureUpdate(structure=structure, repriced=repriced)

    def reprice_records(self, structure: FeeStructure, actor_id: str | None = None) -> int:
        """
        Re-price unpaid records of ``structure`` from the live configuration.

        Unpaid means PENDING, PARTIALLY_PAID or OVERDUE with nothing paid
        or a balance left.  Each record is re-read under a row lock before
        it is written.  The accrued fine is kept; final never drops below
        paid_amount.
        """
        candidates = self.session.execute(
            select(FeeRecord.id)
            .where(
                FeeRecord.structure_id == structure.id,
                FeeRecord.status.in_(_REPRICEABLE),
                or_(
                    FeeRecord.paid_amount == 0,
                    FeeRecord.paid_amount < FeeRecord.final_amount,
                ),
            )
            .order_by(FeeRecord.due_date)
        ).scalars().all()

        repriced = 0
        for record_id in candidates:
            record = self._load_record(record_id, lock=True)
            if record.status not in _REPRICEABLE:
                continue
            assignment = self._load_assignment(record.assignment_id)
            quote = self.factory.quote(
                record, assignment, structure, fine_amount=to_decimal(record.fine_amount)
            )
            if not quote.drifts_from(record) and record.tax_type == structure.tax_type:
                continue
            before = AuditLogger.snapshot(record)
            self.factory.apply_quote(record, structure, quote)
            self.session.flush()
            repriced += 1
            self.audit.log(
                record.coaching_id,
                "FeeRecord",
                record.id,
                AuditEventType.RECORD_REPRICED,
                actor_id=actor_id,
                before=before,
                after=AuditLogger.snapshot(record),
                structure_id=structure.id,
            )
        return repriced

    def delete_structure(
        self,
        structure_id,
        actor_id: str | None = None,
        coaching_id: str | None = None,
    ) -> str:
        """
        Delete a structure, or deactivate it when records depend on it.

        Returns:
            "deactivated" or "deleted".
        """
        structure = self._load_structure(structure_id, coaching_id)
        assignment_ids = select(FeeAssignment.id).where(
            FeeAssignment.structure_id == structure.id
        )
        record_count = self.session.execute(
            select(func.count(FeeRecord.id)).where(
                or_(
                    FeeRecord.structure_id == structure.id,
                    FeeRecord.assignment_id.in_(assignment_ids),
                )
            )
        ).scalar_one()
        before = AuditLogger.snapshot(structure)

        if record_count > 0:
            structure.is_active = False
            self.session.flush()
            self.audit.log(
                structure.coaching_id,
                "FeeStructure",
                structure.id,
                AuditEventType.STRUCTURE_DEACTIVATED,
                actor_id=actor_id,
                before=before,
                after=AuditLogger.snapshot(structure),
                meta={"record_count": record_count},
                structure_id=structure.id,
            )
            logger.info(
                "structure_deactivated",
                extra={"structure_id": str(structure.id), "record_count": record_count},
            )
            return "deactivated"

        for assignment in self.session.execute(
            select(FeeAssignment).where(FeeAssignment.structure_id == structure.id)
        ).scalars():
            self.session.delete(assignment)
        self.session.delete(structure)
        self.session.flush()
        self.audit.log(
            structure.coaching_id,
            "FeeStructure",
            structure.id,
            AuditEventType.STRUCTURE_DELETED,
            actor_id=actor_id,
            before=before,
            structure_id=structure.id,
        )
        logger.info("structure_deleted", extra={"structure_id": str(structure.id)})
        return "deleted"

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    def assign_fee(
        self,
        coaching_id: str,
        member_id: str,
        structure_id,
        custom_amount=None,
        discount_amount=ZERO,
        discount_reason: str | None = None,
        scholarship_amount=None,
        scholarship_tag: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        actor_id: str | None = None,
    ) -> AssignmentOutcome:
        """
        Create or update the member's single assignment and seed records.

        Moving the member to a different structure deletes the old
        structure's open records that carry no payment history and
        auto-waives those with money collected.  Records are seeded only
        when the assignment has no open record left.
        """
        if self.directory is not None:
            if self.directory.get_member(coaching_id, member_id) is None:
                raise MemberNotFoundError(member_id, coaching_id)

        structure = self._load_structure(structure_id, coaching_id)
        if not structure.is_active:
            raise InactiveStructureError(str(structure.id))

        custom = None if custom_amount is None else _non_negative(custom_amount, "custom_amount")
        discount = _non_negative(discount_amount, "discount_amount")
        scholarship = (
            None
            if scholarship_amount is None
            else _non_negative(scholarship_amount, "scholarship_amount")
        )
        effective = custom if custom is not None else to_decimal(structure.amount)
        total_discount = discount + (scholarship or ZERO)
        if total_discount > effective:
            raise DiscountExceedsAmountError(total_discount, effective)
        if start_date and end_date and end_date < start_date:
            raise FeeValidationError("end_date cannot be before start_date")

        assignment = self.session.execute(
            select(FeeAssignment).where(
                FeeAssignment.coaching_id == coaching_id,
                FeeAssignment.member_id == member_id,
            )
        ).scalar_one_or_none()

        created = assignment is None
        structure_changed = False
        if created:
            assignment = FeeAssignment(
                coaching_id=coaching_id,
                member_id=member_id,
                structure_id=structure.id,
                start_date=start_date or self.clock.today(),
                is_paused=False,
            )
            self.session.add(assignment)
            before = None
        else:
            before = AuditLogger.snapshot(assignment)
            structure_changed = assignment.structure_id != structure.id
            assignment.structure_id = structure.id
            if start_date is not None:
                assignment.start_date = start_date
            elif structure_changed:
                assignment.start_date = self.clock.today()

        assignment.custom_amount = custom
        assignment.discount_amount = discount
        assignment.discount_reason = discount_reason
        assignment.scholarship_amount = scholarship
        assignment.scholarship_tag = scholarship_tag
        assignment.end_date = end_date
        assignment.is_active = True
        self.session.flush()

        self.audit.log(
            coaching_id,
            "FeeAssignment",
            assignment.id,
            AuditEventType.ASSIGNMENT_CREATED if created else AuditEventType.ASSIGNMENT_UPDATED,
            actor_id=actor_id,
            before=before,
            after=AuditLogger.snapshot(assignment),
            meta={"structure_changed": structure_changed},
            structure_id=structure.id,
        )

        deleted = waived = 0
        if structure_changed:
            deleted, waived = self._clean_up_open_records(assignment, structure, actor_id)

        seeded: list[FeeRecord] = []
        if not self._has_open_record(assignment):
            self._check_seed_dates(assignment, structure)
            seeded = self.factory.seed_records(assignment, structure, actor_id=actor_id)

        logger.info(
            "fee_assigned",
            extra={
                "assignment_id": str(assignment.id),
                "structure_id": str(structure.id),
                "assignment_created": created,
                "structure_changed": structure_changed,
                "seeded": len(seeded),
                "deleted_records": deleted,
                "waived_records": waived,
            },
        )
        return AssignmentOutcome(
            assignment=assignment,
            created=created,
            seeded=seeded,
            deleted_records=deleted,
            waived_records=waived,
        )

    def remove_assignment(
        self, assignment_id, actor_id: str | None = None, coaching_id: str | None = None
    ) -> FeeAssignment:
        return self.processor.remove_assignment(assignment_id, actor_id, coaching_id)

    def toggle_pause(
        self,
        assignment_id,
        pause: bool,
        note: str | None = None,
        actor_id: str | None = None,
        coaching_id: str | None = None,
    ) -> FeeAssignment:
        return self.processor.toggle_pause(assignment_id, pause, note, actor_id, coaching_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _open_records(self, assignment: FeeAssignment) -> list[FeeRecord]:
        return list(
            self.session.execute(
                select(FeeRecord).where(
                    FeeRecord.assignment_id == assignment.id,
                    FeeRecord.status.in_([s.value for s in OPEN_STATUSES]),
                )
            ).scalars()
        )

    def _has_open_record(self, assignment: FeeAssignment) -> bool:
        return bool(self._open_records(assignment))

    def _has_money_history(self, record: FeeRecord) -> bool:
        payments = self.session.execute(
            select(func.count(FeePayment.id)).where(FeePayment.record_id == record.id)
        ).scalar_one()
        refunds = self.session.execute(
            select(func.count(FeeRefund.id)).where(FeeRefund.record_id == record.id)
        ).scalar_one()
        return payments + refunds > 0

    def _clean_up_open_records(
        self,
        assignment: FeeAssignment,
        new_structure: FeeStructure,
        actor_id: str | None,
    ) -> tuple[int, int]:
        deleted = waived = 0
        for record in self._open_records(assignment):
            if record.structure_id == new_structure.id:
                continue
            before = AuditLogger.snapshot(record)
            if to_decimal(record.paid_amount) == ZERO and not self._has_money_history(record):
                self.session.delete(record)
                self.session.flush()
                deleted += 1
                self.audit.log(
                    record.coaching_id,
                    "FeeRecord",
                    record.id,
                    AuditEventType.RECORD_DELETED,
                    actor_id=actor_id,
                    before=before,
                    structure_id=record.structure_id,
                )
                continue

            record.final_amount = to_decimal(record.paid_amount)
            record.status = FeeStatus.WAIVED.value
            record.notes = AUTO_WAIVE_NOTE
            record.marked_by_id = actor_id
            record.updated_at = self.clock.now_utc()
            self.session.flush()
            waived += 1
            self.audit.log(
                record.coaching_id,
                "FeeRecord",
                record.id,
                AuditEventType.RECORD_AUTO_WAIVED,
                actor_id=actor_id,
                before=before,
                after=AuditLogger.snapshot(record),
                note=AUTO_WAIVE_NOTE,
                structure_id=record.structure_id,
            )
        return deleted, waived

    def _check_seed_dates(self, assignment: FeeAssignment, structure: FeeStructure) -> None:
        """Reject a seed due date already taken by a record of another structure."""
        if BillingCycle(structure.cycle) == BillingCycle.INSTALLMENT:
            due_dates = [
                assignment.start_date + timedelta(days=entry.due_day_offset)
                for entry in structure.plan_entries
            ]
        else:
            due_dates = [assignment.start_date]
        for due_date in due_dates:
            existing = self.factory.find_record(assignment.id, due_date)
            if existing is not None and existing.structure_id != structure.id:
                raise FeeValidationError(
                    f"A record of another fee structure is already due on {due_date}; "
                    "choose a different start date"
                )


def _differs(current, new) -> bool:
    if isinstance(current, Decimal) or isinstance(new, Decimal):
        if current is None or new is None:
            return current is not new
        return to_decimal(current) != to_decimal(new)
    return current != new
