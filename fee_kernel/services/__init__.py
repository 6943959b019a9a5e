"""Kernel services: every write path of the fee ledger."""

from fee_kernel.services.audit_logger import AuditLogger
from fee_kernel.services.base import BaseService
from fee_kernel.services.payment_processor import (
    PaymentProcessor,
    PaymentResult,
    RefundResult,
)
from fee_kernel.services.receipt_sequence_service import ReceiptSequenceService
from fee_kernel.services.reconciliation_sweep import (
    DebounceRegistry,
    ReconciliationSweep,
    SweepResult,
)
from fee_kernel.services.record_factory import RecordFactory, RecordQuote
from fee_kernel.services.reminder_service import (
    BulkReminderResult,
    ReminderNotice,
    ReminderService,
)
from fee_kernel.services.structure_service import (
    AssignmentOutcome,
    StructureService,
    StructureUpdate,
)

__all__ = [
    "BaseService",
    "AuditLogger",
    "ReceiptSequenceService",
    "RecordFactory",
    "RecordQuote",
    "PaymentProcessor",
    "PaymentResult",
    "RefundResult",
    "StructureService",
    "StructureUpdate",
    "AssignmentOutcome",
    "ReconciliationSweep",
    "DebounceRegistry",
    "SweepResult",
    "ReminderService",
    "ReminderNotice",
    "BulkReminderResult",
]
