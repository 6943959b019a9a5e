"""
Module: fee_kernel.models.structure
Responsibility: ORM persistence for fee structures, the reusable billing
    templates (amount, cycle, late fine, tax configuration, installment plan)
    from which assignments and records are derived.
Architecture position: Kernel > Models.  May import from db/ and domain/
    value types only.  MUST NOT import from services/ or selectors/.

Invariants enforced:
    - amount >= 0 (ck_fee_structure_amount).
    - installment_plan is present iff cycle == INSTALLMENT (validated by
      StructureService; the JSON column stores InstallmentEntry.to_dict()).
    - A structure with any record is deactivated, never deleted.

Failure modes:
    - IntegrityError on a negative amount.
"""

from decimal import Decimal

from sqlalchemy import JSON, Boolean, CheckConstraint, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fee_kernel.db.base import TrackedBase
from fee_kernel.db.types import Money, Rate
from fee_kernel.domain.fee_types import (
    BillingCycle,
    InstallmentEntry,
    LineItem,
    SupplyType,
    TaxConfig,
    TaxType,
    parse_installment_plan,
    parse_line_items,
)


class FeeStructure(TrackedBase):
    """
    Reusable fee template owned by one coaching tenant.

    Guarantees:
        - tax_config is always a valid TaxConfig built from the columns.
        - plan_entries / line_item_entries hydrate the JSON columns into
          frozen value objects.
    """

    __tablename__ = "fee_structures"

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_fee_structure_amount"),
        Index("idx_fee_structure_coaching", "coaching_id", "is_active"),
    )

    coaching_id: Mapped[str] = mapped_column(String(64), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Gross amount per period (or plan total for INSTALLMENT)
    amount: Mapped[Money] = mapped_column(nullable=False)

    cycle: Mapped[BillingCycle] = mapped_column(
        String(20),
        nullable=False,
        default=BillingCycle.MONTHLY.value,
    )

    late_fine_per_day: Mapped[Money] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    # Tax configuration
    tax_type: Mapped[TaxType] = mapped_column(
        String(20),
        nullable=False,
        default=TaxType.NONE.value,
    )
    gst_rate: Mapped[Rate] = mapped_column(nullable=False, default=Decimal("0"))
    supply_type: Mapped[SupplyType] = mapped_column(
        String(20),
        nullable=False,
        default=SupplyType.INTRA_STATE.value,
    )
    cess_rate: Mapped[Rate] = mapped_column(nullable=False, default=Decimal("0"))
    sac_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    hsn_code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # [{"label", "amount", "due_day_offset"}]
    installment_plan: Mapped[list | None] = mapped_column(JSON, nullable=True)

    # [{"label", "amount"}]
    line_items: Mapped[list | None] = mapped_column(JSON, nullable=True)

    # Free-form discount presets shown to administrators
    discounts: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    assignments = relationship("FeeAssignment", back_populates="structure")

    def __repr__(self) -> str:
        return f"<FeeStructure {self.name} {self.amount} {self.cycle}>"

    @property
    def tax_config(self) -> TaxConfig:
        return TaxConfig(
            tax_type=self.tax_type,
            gst_rate=self.gst_rate,
            supply_type=self.supply_type,
            cess_rate=self.cess_rate,
            sac_code=self.sac_code,
            hsn_code=self.hsn_code,
        )

    @property
    def plan_entries(self) -> tuple[InstallmentEntry, ...]:
        return parse_installment_plan(self.installment_plan) or ()

    @property
    def line_item_entries(self) -> tuple[LineItem, ...]:
        return parse_line_items(self.line_items) or ()
