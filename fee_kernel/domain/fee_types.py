"""
Fee Types -- enums and immutable, self-validating value objects.

Responsibility:
    Provides the vocabulary of the fee ledger: billing cycles, tax and supply
    types, record statuses, payment modes, and the tagged dataclasses that
    replace opaque JSON for installment plans, line items and tax settings.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - All monetary fields are Decimal (floats are converted through str).
    - InstallmentEntry amounts are strictly positive; offsets non-negative.
    - TaxConfig rates are non-negative.

Failure modes:
    - FeeValidationError on construction with invalid values.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

from fee_kernel.db.types import ZERO, to_decimal
from fee_kernel.exceptions import FeeValidationError


class BillingCycle(str, Enum):
    """Billing recurrence of a fee structure."""

    ONCE = "ONCE"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    HALF_YEARLY = "HALF_YEARLY"
    YEARLY = "YEARLY"
    CUSTOM = "CUSTOM"
    INSTALLMENT = "INSTALLMENT"


class TaxType(str, Enum):
    NONE = "NONE"
    GST_INCLUSIVE = "GST_INCLUSIVE"
    GST_EXCLUSIVE = "GST_EXCLUSIVE"


class SupplyType(str, Enum):
    INTRA_STATE = "INTRA_STATE"
    INTER_STATE = "INTER_STATE"


class FeeStatus(str, Enum):
    """FeeRecord lifecycle states.

    PENDING <-> PARTIALLY_PAID <-> PAID
    PENDING / PARTIALLY_PAID -> OVERDUE   (sweep only)
    OVERDUE -> PARTIALLY_PAID / PAID      (payment)
    PENDING / PARTIALLY_PAID / OVERDUE -> WAIVED
    """

    PENDING = "PENDING"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    WAIVED = "WAIVED"


SETTLED_STATUSES = frozenset({FeeStatus.PAID, FeeStatus.WAIVED})
OPEN_STATUSES = frozenset(
    {FeeStatus.PENDING, FeeStatus.PARTIALLY_PAID, FeeStatus.OVERDUE}
)


class PaymentMode(str, Enum):
    CASH = "CASH"
    ONLINE = "ONLINE"
    UPI = "UPI"
    BANK_TRANSFER = "BANK_TRANSFER"
    CHEQUE = "CHEQUE"
    RAZORPAY = "RAZORPAY"
    OTHER = "OTHER"


class ActorType(str, Enum):
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class AuditEventType(str, Enum):
    """Events written to the fee audit trail."""

    STRUCTURE_CREATED = "STRUCTURE_CREATED"
    STRUCTURE_UPDATED = "STRUCTURE_UPDATED"
    STRUCTURE_DEACTIVATED = "STRUCTURE_DEACTIVATED"
    STRUCTURE_DELETED = "STRUCTURE_DELETED"
    ASSIGNMENT_CREATED = "ASSIGNMENT_CREATED"
    ASSIGNMENT_UPDATED = "ASSIGNMENT_UPDATED"
    ASSIGNMENT_REMOVED = "ASSIGNMENT_REMOVED"
    ASSIGNMENT_PAUSED = "ASSIGNMENT_PAUSED"
    ASSIGNMENT_RESUMED = "ASSIGNMENT_RESUMED"
    RECORD_CREATED = "RECORD_CREATED"
    RECORD_DELETED = "RECORD_DELETED"
    RECORD_AUTO_WAIVED = "RECORD_AUTO_WAIVED"
    RECORD_REPRICED = "RECORD_REPRICED"
    PAYMENT_RECORDED = "PAYMENT_RECORDED"
    REFUND_RECORDED = "REFUND_RECORDED"
    FEE_WAIVED = "FEE_WAIVED"
    RECORD_MARKED_OVERDUE = "RECORD_MARKED_OVERDUE"
    RECORD_SELF_HEALED = "RECORD_SELF_HEALED"
    REMINDER_SENT = "REMINDER_SENT"


@dataclass(frozen=True, slots=True)
class InstallmentEntry:
    """One row of an installment plan.

    The due date is ``assignment.start_date + due_day_offset`` days.
    """

    label: str
    amount: Decimal
    due_day_offset: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", to_decimal(self.amount))
        if not self.label or not self.label.strip():
            raise FeeValidationError("Installment label cannot be empty")
        if self.amount <= ZERO:
            raise FeeValidationError(
                f"Installment '{self.label}' amount must be positive"
            )
        if self.due_day_offset < 0:
            raise FeeValidationError(
                f"Installment '{self.label}' due_day_offset cannot be negative"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "amount": str(self.amount),
            "due_day_offset": self.due_day_offset,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InstallmentEntry:
        return cls(
            label=data["label"],
            amount=to_decimal(data["amount"]),
            due_day_offset=int(data.get("due_day_offset", 0)),
        )


@dataclass(frozen=True, slots=True)
class LineItem:
    """Informational breakdown line of a fee (e.g. "Tuition", "Lab")."""

    label: str
    amount: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", to_decimal(self.amount))
        if self.amount < ZERO:
            raise FeeValidationError(f"Line item '{self.label}' cannot be negative")

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label, "amount": str(self.amount)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LineItem:
        return cls(label=data["label"], amount=to_decimal(data["amount"]))


@dataclass(frozen=True, slots=True)
class TaxConfig:
    """Tax settings of a structure, snapshotted onto each record."""

    tax_type: TaxType = TaxType.NONE
    gst_rate: Decimal = ZERO
    supply_type: SupplyType = SupplyType.INTRA_STATE
    cess_rate: Decimal = ZERO
    sac_code: str | None = None
    hsn_code: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "tax_type", TaxType(self.tax_type))
        object.__setattr__(self, "supply_type", SupplyType(self.supply_type))
        object.__setattr__(self, "gst_rate", to_decimal(self.gst_rate))
        object.__setattr__(self, "cess_rate", to_decimal(self.cess_rate))
        if self.gst_rate < ZERO or self.cess_rate < ZERO:
            raise FeeValidationError("Tax rates cannot be negative")


@dataclass(frozen=True, slots=True)
class TaxBreakdown:
    """Result of a tax computation."""

    taxable_amount: Decimal
    tax_amount: Decimal
    cgst_amount: Decimal
    sgst_amount: Decimal
    igst_amount: Decimal
    cess_amount: Decimal
    total_with_tax: Decimal

    @property
    def gst_amount(self) -> Decimal:
        """GST portion only (tax_amount minus cess)."""
        return self.tax_amount - self.cess_amount


def parse_installment_plan(raw) -> tuple[InstallmentEntry, ...] | None:
    """Hydrate an installment plan from JSON-like input or pass through entries."""
    if raw is None:
        return None
    return tuple(
        e if isinstance(e, InstallmentEntry) else InstallmentEntry.from_dict(e)
        for e in raw
    )


def parse_line_items(raw) -> tuple[LineItem, ...] | None:
    if raw is None:
        return None
    return tuple(
        e if isinstance(e, LineItem) else LineItem.from_dict(e) for e in raw
    )
