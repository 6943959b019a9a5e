"""
TaxCalculator -- GST computation for fee amounts.

Responsibility:
    Turns a base amount and a tax configuration into a TaxBreakdown:
    taxable amount, whole-unit GST split into CGST/SGST (intra-state) or
    IGST (inter-state), cess, and the total payable.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Called by RecordFactory at creation time and re-invoked live by
    PaymentProcessor, StructureService and ReconciliationSweep, which
    all rely on identical inputs producing identical outputs.

Invariants enforced:
    - GST and cess each round to a whole currency unit (half up) before
      any split.
    - CGST is floor(gst / 2) and SGST is the remainder, so
      cgst + sgst == gst exactly.  Never two independent roundings.
    - INTER_STATE routes the whole GST to IGST.
    - taxable_amount and total_with_tax carry two decimal places.

Failure modes:
    - FeeValidationError on a negative base amount or negative rates.

Usage:
    calc = TaxCalculator()
    breakdown = calc.calculate(
        Decimal("1000"), TaxType.GST_EXCLUSIVE, Decimal("18"),
    )
    breakdown.total_with_tax  # Decimal("1180.00")
"""

from decimal import Decimal

from fee_kernel.db.types import ZERO, floor_whole, round_money, round_whole, to_decimal
from fee_kernel.domain.fee_types import SupplyType, TaxBreakdown, TaxConfig, TaxType
from fee_kernel.exceptions import FeeValidationError
from fee_kernel.logging_config import get_logger

logger = get_logger("domain.tax")

_HUNDRED = Decimal("100")


class TaxCalculator:
    """
    Stateless GST calculator.

    Contract:
        ``calculate`` is a pure function of its arguments.

    Guarantees:
        - Tax-exclusive: total = base + gst + cess.
        - Tax-inclusive: total = base; taxable is the pre-tax portion.
        - No tax (NONE or zero rates): taxable = total = base.
    """

    def calculate(
        self,
        base_amount: Decimal,
        tax_type: TaxType | str = TaxType.NONE,
        gst_rate: Decimal = ZERO,
        supply_type: SupplyType | str = SupplyType.INTRA_STATE,
        cess_rate: Decimal = ZERO,
    ) -> TaxBreakdown:
        """
        Compute the tax breakdown for ``base_amount``.

        Args:
            base_amount: Net amount after discounts.
            tax_type: NONE, GST_INCLUSIVE or GST_EXCLUSIVE.
            gst_rate: GST percentage (18 means 18%).
            supply_type: INTRA_STATE (CGST+SGST) or INTER_STATE (IGST).
            cess_rate: Cess percentage, levied on the same taxable amount.

        Raises:
            FeeValidationError: negative amount or rate.
        """
        base = to_decimal(base_amount)
        rate = to_decimal(gst_rate)
        cess = to_decimal(cess_rate)
        tax_type = TaxType(tax_type)
        supply_type = SupplyType(supply_type)

        if base < ZERO:
            raise FeeValidationError(f"Taxable base cannot be negative: {base}")
        if rate < ZERO or cess < ZERO:
            raise FeeValidationError(
                f"Tax rates cannot be negative: gst={rate} cess={cess}"
            )

        if tax_type == TaxType.NONE or (rate == ZERO and cess == ZERO):
            return self._no_tax(base)

        if tax_type == TaxType.GST_INCLUSIVE:
            taxable = base / (1 + (rate + cess) / _HUNDRED)
        else:
            taxable = base

        gst_amount = round_whole(taxable * rate / _HUNDRED)
        cess_amount = round_whole(taxable * cess / _HUNDRED)

        if supply_type == SupplyType.INTER_STATE:
            cgst, sgst, igst = ZERO, ZERO, gst_amount
        else:
            cgst = floor_whole(gst_amount / 2)
            sgst = gst_amount - cgst
            igst = ZERO

        if tax_type == TaxType.GST_INCLUSIVE:
            total = base
        else:
            total = base + gst_amount + cess_amount

        breakdown = TaxBreakdown(
            taxable_amount=round_money(taxable),
            tax_amount=gst_amount + cess_amount,
            cgst_amount=cgst,
            sgst_amount=sgst,
            igst_amount=igst,
            cess_amount=cess_amount,
            total_with_tax=round_money(total),
        )

        logger.debug(
            "tax_calculated",
            extra={
                "base_amount": str(base),
                "tax_type": tax_type.value,
                "supply_type": supply_type.value,
                "gst_rate": str(rate),
                "cess_rate": str(cess),
                "tax_amount": str(breakdown.tax_amount),
                "total_with_tax": str(breakdown.total_with_tax),
            },
        )
        return breakdown

    def calculate_for_config(
        self, base_amount: Decimal, config: TaxConfig
    ) -> TaxBreakdown:
        """Compute the breakdown for a structure's TaxConfig."""
        return self.calculate(
            base_amount,
            config.tax_type,
            config.gst_rate,
            config.supply_type,
            config.cess_rate,
        )

    @staticmethod
    def _no_tax(base: Decimal) -> TaxBreakdown:
        amount = round_money(base)
        return TaxBreakdown(
            taxable_amount=amount,
            tax_amount=ZERO,
            cgst_amount=ZERO,
            sgst_amount=ZERO,
            igst_amount=ZERO,
            cess_amount=ZERO,
            total_with_tax=amount,
        )

    @staticmethod
    def payable_tax(breakdown: TaxBreakdown, tax_type: TaxType | str) -> Decimal:
        """Portion of tax that is added on top of the net amount.

        Inclusive tax is already inside the base, so it adds nothing.
        """
        if TaxType(tax_type) == TaxType.GST_EXCLUSIVE:
            return breakdown.tax_amount
        return ZERO
