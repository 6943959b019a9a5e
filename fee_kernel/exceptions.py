"""
Typed Exception Hierarchy for the Fee Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from FeeKernelError:

    FeeKernelError (base)
    |
    +-- NotFoundError
    |   +-- StructureNotFoundError
    |   +-- AssignmentNotFoundError
    |   +-- RecordNotFoundError
    |   +-- MemberNotFoundError
    |
    +-- FeeValidationError
    |   +-- InvalidAmountError
    |   +-- AmountExceedsBalanceError
    |   +-- RefundExceedsPaidError
    |   +-- DiscountExceedsAmountError
    |   +-- RecordAlreadySettledError
    |   +-- RecordAlreadyWaivedError
    |   +-- InactiveStructureError
    |
    +-- ConcurrencyConflictError
    |
    +-- AuditWriteError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
NotFound        | STRUCTURE_NOT_FOUND         | Structure ID unknown for the coaching
                | ASSIGNMENT_NOT_FOUND        | Assignment ID unknown for the coaching
                | RECORD_NOT_FOUND            | Record ID unknown for the coaching
                | MEMBER_NOT_FOUND            | Directory has no such member
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_FAILED           | Generic invariant violation
                | INVALID_AMOUNT              | Non-positive payment/refund amount
                | AMOUNT_EXCEEDS_BALANCE      | Payment larger than outstanding balance
                | REFUND_EXCEEDS_PAID         | Refund larger than paid amount
                | DISCOUNT_EXCEEDS_AMOUNT     | Discount + scholarship > fee
                | RECORD_ALREADY_SETTLED      | Record is PAID or WAIVED
                | RECORD_ALREADY_WAIVED       | Second waive on same record
                | STRUCTURE_INACTIVE          | Assigning a deactivated structure
----------------|-----------------------------|-----------------------------------------
Conflict        | CONCURRENCY_CONFLICT        | Serialization failure, retry once more
----------------|-----------------------------|-----------------------------------------
Audit           | AUDIT_WRITE_FAILED          | Logged and swallowed, never surfaced

===============================================================================
HANDLING PATTERNS
===============================================================================

    try:
        engine.record_payment(coaching_id, record_id, amount, mode, actor_id)
    except AmountExceedsBalanceError as e:
        return {"error": e.code, "balance": str(e.balance)}
    except NotFoundError as e:
        return {"error": e.code}

ConcurrencyConflictError is the only retryable category.  The billing
facade retries the whole transaction; callers see it only once retries
are exhausted.
"""


class FeeKernelError(Exception):
    """
    Base exception for all fee kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "FEE_KERNEL_ERROR"


# Not-found exceptions


class NotFoundError(FeeKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class StructureNotFoundError(NotFoundError):
    """Fee structure with given ID was not found."""

    code: str = "STRUCTURE_NOT_FOUND"

    def __init__(self, structure_id: str):
        self.structure_id = str(structure_id)
        super().__init__(f"Fee structure not found: {structure_id}")


class AssignmentNotFoundError(NotFoundError):
    """Fee assignment with given ID was not found."""

    code: str = "ASSIGNMENT_NOT_FOUND"

    def __init__(self, assignment_id: str):
        self.assignment_id = str(assignment_id)
        super().__init__(f"Fee assignment not found: {assignment_id}")


class RecordNotFoundError(NotFoundError):
    """Fee record with given ID was not found."""

    code: str = "RECORD_NOT_FOUND"

    def __init__(self, record_id: str):
        self.record_id = str(record_id)
        super().__init__(f"Fee record not found: {record_id}")


class MemberNotFoundError(NotFoundError):
    """Member is not known to the directory for this coaching."""

    code: str = "MEMBER_NOT_FOUND"

    def __init__(self, member_id: str, coaching_id: str | None = None):
        self.member_id = str(member_id)
        self.coaching_id = str(coaching_id) if coaching_id is not None else None
        super().__init__(f"Member not found: {member_id}")


# Validation exceptions


class FeeValidationError(FeeKernelError):
    """Base exception for rejected inputs and forbidden transitions."""

    code: str = "VALIDATION_FAILED"


class InvalidAmountError(FeeValidationError):
    """Amount must be strictly positive."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount, field: str = "amount"):
        self.amount = amount
        self.field = field
        super().__init__(f"{field} must be positive, got {amount}")


class AmountExceedsBalanceError(FeeValidationError):
    """Payment is larger than the outstanding balance."""

    code: str = "AMOUNT_EXCEEDS_BALANCE"

    def __init__(self, record_id: str, amount, balance):
        self.record_id = str(record_id)
        self.amount = amount
        self.balance = balance
        super().__init__(
            f"Payment {amount} exceeds outstanding balance {balance} "
            f"on record {record_id}"
        )


class RefundExceedsPaidError(FeeValidationError):
    """Refund is larger than the amount paid on the record."""

    code: str = "REFUND_EXCEEDS_PAID"

    def __init__(self, record_id: str, amount, paid_amount):
        self.record_id = str(record_id)
        self.amount = amount
        self.paid_amount = paid_amount
        super().__init__(
            f"Refund {amount} exceeds paid amount {paid_amount} "
            f"on record {record_id}"
        )


class DiscountExceedsAmountError(FeeValidationError):
    """Discount plus scholarship exceeds the effective fee amount."""

    code: str = "DISCOUNT_EXCEEDS_AMOUNT"

    def __init__(self, discount, amount):
        self.discount = discount
        self.amount = amount
        super().__init__(
            f"Discount and scholarship ({discount}) exceed fee amount ({amount})"
        )


class RecordAlreadySettledError(FeeValidationError):
    """Record is PAID or WAIVED and cannot take this action."""

    code: str = "RECORD_ALREADY_SETTLED"

    def __init__(self, record_id: str, status: str):
        self.record_id = str(record_id)
        self.status = status
        super().__init__(f"Record {record_id} is already {status}")


class RecordAlreadyWaivedError(FeeValidationError):
    """Record has already been waived."""

    code: str = "RECORD_ALREADY_WAIVED"

    def __init__(self, record_id: str):
        self.record_id = str(record_id)
        super().__init__(f"Record {record_id} is already waived")


class InactiveStructureError(FeeValidationError):
    """Structure is deactivated and cannot be assigned."""

    code: str = "STRUCTURE_INACTIVE"

    def __init__(self, structure_id: str):
        self.structure_id = str(structure_id)
        super().__init__(f"Fee structure {structure_id} is inactive")


# Concurrency


class ConcurrencyConflictError(FeeKernelError):
    """
    Concurrent transaction conflict (serialization failure or lock timeout).

    Safe to retry the whole transaction.
    """

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, operation: str, entity_id: str | None = None, attempts: int = 1):
        self.operation = operation
        self.entity_id = str(entity_id) if entity_id is not None else None
        self.attempts = attempts
        super().__init__(
            f"Concurrent modification during {operation}"
            + (f" on {entity_id}" if entity_id else "")
            + f" after {attempts} attempt(s)"
        )


# Audit


class AuditWriteError(FeeKernelError):
    """Audit trail write failed.  Logged and swallowed by AuditLogger."""

    code: str = "AUDIT_WRITE_FAILED"

    def __init__(self, entity_type: str, entity_id: str, event: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.event = event
        super().__init__(
            f"Failed to write audit event {event} for {entity_type} {entity_id}"
        )
