"""
CycleScheduler -- due-date advancement and record titles by billing cycle.

Responsibility:
    Pure date arithmetic for recurring fees: the next due date of a cycle,
    the display title of a record, days overdue, and the April-March
    financial year used to scope receipt numbers.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  The current date
    is always passed in by the caller (see domain/clock.py).

Invariants enforced:
    - Month arithmetic clamps to the last day of a shorter month
      (31 Jan + 1 month = 28/29 Feb).
    - CUSTOM advances 100 years, a sentinel that lands beyond any
      realistic end_date so that no rollover happens.
    - ONCE and INSTALLMENT have no next due date.
"""

import calendar
from datetime import date

from fee_kernel.domain.fee_types import BillingCycle
from fee_kernel.exceptions import FeeValidationError

_CYCLE_MONTHS = {
    BillingCycle.MONTHLY: 1,
    BillingCycle.QUARTERLY: 3,
    BillingCycle.HALF_YEARLY: 6,
    BillingCycle.YEARLY: 12,
    BillingCycle.CUSTOM: 1200,
}

RECURRING_CYCLES = frozenset(_CYCLE_MONTHS)

# Financial year starts in April
FY_START_MONTH = 4


def add_months(value: date, months: int) -> date:
    """Add calendar months, clamping the day to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def financial_year(value: date) -> str:
    """April-March financial year label, e.g. 2025-06-15 -> "2025-26"."""
    start = value.year if value.month >= FY_START_MONTH else value.year - 1
    return f"{start}-{(start + 1) % 100:02d}"


def format_receipt_no(
    fy: str, number: int, prefix: str = "TXR", padding: int = 4
) -> str:
    """Receipt number for a financial year, e.g. TXR/2025-26/0007."""
    return f"{prefix}/{fy}/{number:0{padding}d}"


class CycleScheduler:
    """
    Billing-cycle date rules.

    All methods are deterministic; the scheduler holds no state.
    """

    financial_year = staticmethod(financial_year)
    format_receipt_no = staticmethod(format_receipt_no)

    @staticmethod
    def is_recurring(cycle: BillingCycle | str) -> bool:
        return BillingCycle(cycle) in RECURRING_CYCLES

    @staticmethod
    def rolls_over(cycle: BillingCycle | str) -> bool:
        """True when settling a record should create the next period's record.

        CUSTOM is recurring but never rolled over automatically.
        """
        cycle = BillingCycle(cycle)
        return cycle in RECURRING_CYCLES and cycle != BillingCycle.CUSTOM

    @staticmethod
    def next_due_date(from_date: date, cycle: BillingCycle | str) -> date:
        """
        Due date of the period following ``from_date``.

        Raises:
            FeeValidationError: for ONCE and INSTALLMENT cycles.
        """
        cycle = BillingCycle(cycle)
        months = _CYCLE_MONTHS.get(cycle)
        if months is None:
            raise FeeValidationError(
                f"Billing cycle {cycle.value} has no next due date"
            )
        return add_months(from_date, months)

    @staticmethod
    def record_title(
        structure_name: str,
        due_date: date,
        cycle: BillingCycle | str,
        installment_label: str | None = None,
    ) -> str:
        """Display title of a record.

        ONCE / INSTALLMENT: "<name>" or "<name> - <label>".
        Recurring: "<Month YYYY> - <name>".
        """
        cycle = BillingCycle(cycle)
        if cycle in (BillingCycle.ONCE, BillingCycle.INSTALLMENT):
            if installment_label:
                return f"{structure_name} - {installment_label}"
            return structure_name
        month = f"{calendar.month_name[due_date.month]} {due_date.year}"
        return f"{month} - {structure_name}"

    @staticmethod
    def days_overdue(due_date: date, today: date) -> int:
        """Whole days past due; zero when not yet due."""
        return max(0, (today - due_date).days)
