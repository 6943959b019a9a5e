"""Read-only query selectors for the fee ledger."""

from fee_kernel.selectors.base import BaseSelector
from fee_kernel.selectors.integrity_selector import (
    IntegrityIssue,
    IntegrityReport,
    IntegritySelector,
)
from fee_kernel.selectors.ledger_projector import (
    CoachingSummary,
    LedgerProjector,
    LedgerSummary,
    MemberLedger,
    ModeBucket,
    MonthlyCollection,
    StatusBucket,
    TimelineEntry,
)
from fee_kernel.selectors.record_selector import (
    CalendarDay,
    OverdueMemberRow,
    Page,
    RecordSelector,
    StudentLedger,
)
from fee_kernel.selectors.views import PaymentView, RecordView, RefundView

__all__ = [
    "BaseSelector",
    "CalendarDay",
    "CoachingSummary",
    "IntegrityIssue",
    "IntegrityReport",
    "IntegritySelector",
    "LedgerProjector",
    "LedgerSummary",
    "MemberLedger",
    "ModeBucket",
    "MonthlyCollection",
    "OverdueMemberRow",
    "Page",
    "PaymentView",
    "RecordSelector",
    "RecordView",
    "RefundView",
    "StatusBucket",
    "StudentLedger",
    "TimelineEntry",
]
