"""
Tests for TaxCalculator.

GST is rounded to whole rupees half-up; CGST takes the floor of half and
SGST the remainder, so the two halves always add back to the rounded GST.
"""

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from fee_kernel.db.types import round_money, round_whole
from fee_kernel.domain.fee_types import SupplyType, TaxConfig, TaxType
from fee_kernel.domain.tax import TaxCalculator
from fee_kernel.exceptions import FeeValidationError

calc = TaxCalculator()

amounts = st.decimals(
    min_value=Decimal("0"),
    max_value=Decimal("10000000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)
rates = st.one_of(
    st.sampled_from([Decimal(r) for r in ("0", "5", "12", "18", "28")]),
    st.decimals(
        min_value=Decimal("0"),
        max_value=Decimal("40"),
        places=2,
        allow_nan=False,
        allow_infinity=False,
    ),
)


class TestExclusive:
    def test_intra_state_18_percent(self):
        result = calc.calculate(Decimal("1000"), TaxType.GST_EXCLUSIVE, Decimal("18"))

        assert result.taxable_amount == Decimal("1000.00")
        assert result.tax_amount == Decimal("180")
        assert result.cgst_amount == Decimal("90")
        assert result.sgst_amount == Decimal("90")
        assert result.igst_amount == Decimal("0")
        assert result.total_with_tax == Decimal("1180.00")

    def test_odd_gst_gives_extra_rupee_to_sgst(self):
        # 1050 * 18% = 189
        result = calc.calculate(Decimal("1050"), TaxType.GST_EXCLUSIVE, Decimal("18"))

        assert result.tax_amount == Decimal("189")
        assert result.cgst_amount == Decimal("94")
        assert result.sgst_amount == Decimal("95")

    def test_half_rupee_rounds_up(self):
        # 25 * 18% = 4.50
        result = calc.calculate(Decimal("25"), TaxType.GST_EXCLUSIVE, Decimal("18"))

        assert result.tax_amount == Decimal("5")
        assert result.cgst_amount == Decimal("2")
        assert result.sgst_amount == Decimal("3")
        assert result.total_with_tax == Decimal("30.00")

    def test_inter_state_is_all_igst(self):
        result = calc.calculate(
            Decimal("1000"),
            TaxType.GST_EXCLUSIVE,
            Decimal("18"),
            SupplyType.INTER_STATE,
        )

        assert result.igst_amount == Decimal("180")
        assert result.cgst_amount == Decimal("0")
        assert result.sgst_amount == Decimal("0")
        assert result.total_with_tax == Decimal("1180.00")

    def test_cess_is_added_on_the_same_base(self):
        result = calc.calculate(
            Decimal("1000"),
            TaxType.GST_EXCLUSIVE,
            Decimal("18"),
            cess_rate=Decimal("1"),
        )

        assert result.cess_amount == Decimal("10")
        assert result.gst_amount == Decimal("180")
        assert result.tax_amount == Decimal("190")
        assert result.total_with_tax == Decimal("1190.00")


class TestInclusive:
    def test_1180_at_18_percent(self):
        result = calc.calculate(Decimal("1180"), TaxType.GST_INCLUSIVE, Decimal("18"))

        assert result.taxable_amount == Decimal("1000.00")
        assert result.tax_amount == Decimal("180")
        assert result.cgst_amount == Decimal("90")
        assert result.sgst_amount == Decimal("90")
        assert result.total_with_tax == Decimal("1180.00")

    def test_inclusive_with_cess_extracts_both(self):
        # 1190 / 1.19 = 1000
        result = calc.calculate(
            Decimal("1190"),
            TaxType.GST_INCLUSIVE,
            Decimal("18"),
            cess_rate=Decimal("1"),
        )

        assert result.taxable_amount == Decimal("1000.00")
        assert result.tax_amount == Decimal("190")
        assert result.total_with_tax == Decimal("1190.00")

    def test_payable_tax_is_zero_for_inclusive(self):
        result = calc.calculate(Decimal("1180"), TaxType.GST_INCLUSIVE, Decimal("18"))

        assert TaxCalculator.payable_tax(result, TaxType.GST_INCLUSIVE) == Decimal("0")
        assert TaxCalculator.payable_tax(result, TaxType.GST_EXCLUSIVE) == Decimal("180")


class TestNoTax:
    def test_none_passes_base_through(self):
        result = calc.calculate(Decimal("999.5"), TaxType.NONE, Decimal("18"))

        assert result.tax_amount == Decimal("0")
        assert result.taxable_amount == Decimal("999.50")
        assert result.total_with_tax == Decimal("999.50")

    def test_zero_rates_mean_no_tax(self):
        result = calc.calculate(Decimal("500"), TaxType.GST_EXCLUSIVE, Decimal("0"))

        assert result.tax_amount == Decimal("0")
        assert result.total_with_tax == Decimal("500.00")

    def test_zero_base(self):
        result = calc.calculate(Decimal("0"), TaxType.GST_EXCLUSIVE, Decimal("18"))

        assert result.tax_amount == Decimal("0")
        assert result.total_with_tax == Decimal("0.00")


class TestValidation:
    def test_negative_base_rejected(self):
        with pytest.raises(FeeValidationError):
            calc.calculate(Decimal("-1"), TaxType.GST_EXCLUSIVE, Decimal("18"))

    def test_negative_rate_rejected(self):
        with pytest.raises(FeeValidationError):
            calc.calculate(Decimal("100"), TaxType.GST_EXCLUSIVE, Decimal("-5"))

    def test_unknown_tax_type_rejected(self):
        with pytest.raises(ValueError):
            calc.calculate(Decimal("100"), "VAT", Decimal("5"))

    def test_calculate_for_config(self):
        config = TaxConfig(tax_type="GST_EXCLUSIVE", gst_rate="18", supply_type="INTER_STATE")

        result = calc.calculate_for_config(Decimal("1000"), config)

        assert result.igst_amount == Decimal("180")


class TestSplitProperties:
    @settings(max_examples=300, deadline=None)
    @given(base=amounts, rate=rates, cess=rates)
    def test_intra_state_halves_add_up_to_rounded_gst(self, base, rate, cess):
        result = calc.calculate(base, TaxType.GST_EXCLUSIVE, rate, SupplyType.INTRA_STATE, cess)

        assert result.cgst_amount + result.sgst_amount == round_whole(base * rate / 100)
        assert result.gst_amount == result.cgst_amount + result.sgst_amount
        assert result.sgst_amount - result.cgst_amount in (Decimal("0"), Decimal("1"))
        assert result.igst_amount == Decimal("0")

    @settings(max_examples=300, deadline=None)
    @given(base=amounts, rate=rates)
    def test_exclusive_total_is_base_plus_tax(self, base, rate):
        result = calc.calculate(base, TaxType.GST_EXCLUSIVE, rate)

        assert result.total_with_tax == round_money(base + result.tax_amount)

    @settings(max_examples=300, deadline=None)
    @given(base=amounts, rate=rates, cess=rates)
    def test_inclusive_total_is_the_base(self, base, rate, cess):
        result = calc.calculate(base, TaxType.GST_INCLUSIVE, rate, cess_rate=cess)

        assert result.total_with_tax == round_money(base)
        assert result.taxable_amount <= round_money(base)

    @settings(max_examples=200, deadline=None)
    @given(base=amounts, rate=rates)
    def test_inter_state_never_splits(self, base, rate):
        result = calc.calculate(base, TaxType.GST_EXCLUSIVE, rate, SupplyType.INTER_STATE)

        assert result.cgst_amount == Decimal("0")
        assert result.sgst_amount == Decimal("0")
        assert result.igst_amount == result.gst_amount
