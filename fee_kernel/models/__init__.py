"""ORM models for the fee kernel."""

from fee_kernel.models.assignment import FeeAssignment
from fee_kernel.models.audit_log import FeeAuditLog
from fee_kernel.models.receipt_sequence import ReceiptSequence
from fee_kernel.models.record import FeePayment, FeeRecord, FeeRefund
from fee_kernel.models.structure import FeeStructure

__all__ = [
    "FeeStructure",
    "FeeAssignment",
    "FeeRecord",
    "FeePayment",
    "FeeRefund",
    "FeeAuditLog",
    "ReceiptSequence",
]
