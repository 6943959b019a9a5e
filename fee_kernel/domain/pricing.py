"""
Pricing -- gross, discount and net amounts for a billing period.

Responsibility:
    Splits an assignment's effective amount and total discount across the
    periods it is billed in: one period for recurring and one-time
    structures, one per plan entry for INSTALLMENT structures.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - net_amount is never negative.
    - Installment gross amounts and discount shares are rounded to two
      places; the last entry absorbs the rounding remainder, so the
      shares always sum to the assignment totals exactly.
"""

from dataclasses import dataclass
from decimal import Decimal

from fee_kernel.db.types import ZERO, round_money, to_decimal
from fee_kernel.domain.fee_types import InstallmentEntry


@dataclass(frozen=True, slots=True)
class PeriodPrice:
    """Gross amount and discount of one billing period."""

    gross_amount: Decimal
    discount_amount: Decimal

    @property
    def net_amount(self) -> Decimal:
        return max(ZERO, self.gross_amount - self.discount_amount)


def price_period(effective_amount: Decimal, total_discount: Decimal) -> PeriodPrice:
    return PeriodPrice(
        gross_amount=to_decimal(effective_amount),
        discount_amount=to_decimal(total_discount),
    )


def price_installments(
    plan: tuple[InstallmentEntry, ...],
    effective_amount: Decimal,
    total_discount: Decimal,
) -> list[tuple[InstallmentEntry, PeriodPrice]]:
    """
    Price every entry of an installment plan.

    Entry amounts are scaled when the effective amount differs from the
    plan total (a custom per-member amount); the discount is shared in
    proportion to each entry's amount.
    """
    if not plan:
        return []
    effective_amount = to_decimal(effective_amount)
    total_discount = to_decimal(total_discount)
    plan_total = sum((entry.amount for entry in plan), ZERO)

    priced: list[tuple[InstallmentEntry, PeriodPrice]] = []
    gross_left = effective_amount
    discount_left = total_discount
    for index, entry in enumerate(plan):
        if index == len(plan) - 1:
            gross, discount = gross_left, discount_left
        else:
            weight = entry.amount / plan_total
            gross = round_money(effective_amount * weight)
            discount = round_money(total_discount * weight)
        gross_left -= gross
        discount_left -= discount
        priced.append((entry, PeriodPrice(gross_amount=gross, discount_amount=discount)))
    return priced


def price_installment(
    plan: tuple[InstallmentEntry, ...],
    label: str,
    effective_amount: Decimal,
    total_discount: Decimal,
) -> PeriodPrice | None:
    """Price of the plan entry named ``label``; None if the plan has no such entry."""
    for entry, price in price_installments(plan, effective_amount, total_discount):
        if entry.label == label:
            return price
    return None
