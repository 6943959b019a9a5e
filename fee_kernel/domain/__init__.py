"""Pure domain layer: fee vocabulary, tax and schedule rules, clock."""

from fee_kernel.domain.clock import Clock, DeterministicClock, SystemClock, as_utc
from fee_kernel.domain.fee_types import (
    OPEN_STATUSES,
    SETTLED_STATUSES,
    ActorType,
    AuditEventType,
    BillingCycle,
    FeeStatus,
    InstallmentEntry,
    LineItem,
    PaymentMode,
    SupplyType,
    TaxBreakdown,
    TaxConfig,
    TaxType,
)
from fee_kernel.domain.pricing import (
    PeriodPrice,
    price_installment,
    price_installments,
    price_period,
)
from fee_kernel.domain.schedule import (
    CycleScheduler,
    add_months,
    financial_year,
    format_receipt_no,
)
from fee_kernel.domain.tax import TaxCalculator

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "as_utc",
    "BillingCycle",
    "TaxType",
    "SupplyType",
    "FeeStatus",
    "PaymentMode",
    "ActorType",
    "AuditEventType",
    "OPEN_STATUSES",
    "SETTLED_STATUSES",
    "InstallmentEntry",
    "LineItem",
    "TaxConfig",
    "TaxBreakdown",
    "TaxCalculator",
    "PeriodPrice",
    "price_period",
    "price_installments",
    "price_installment",
    "CycleScheduler",
    "add_months",
    "financial_year",
    "format_receipt_no",
]
