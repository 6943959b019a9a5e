"""
Tests for PaymentProcessor: payments, refunds, waivers, pauses and removals.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from fee_kernel.domain.fee_types import FeeStatus
from fee_kernel.exceptions import (
    AmountExceedsBalanceError,
    FeeValidationError,
    InvalidAmountError,
    RecordAlreadySettledError,
    RecordAlreadyWaivedError,
    RecordNotFoundError,
    RefundExceedsPaidError,
)
from fee_kernel.models.assignment import FeeAssignment
from fee_kernel.models.record import FeeRecord
from tests.conftest import ADMIN_ID, COACHING_ID, TODAY


def pay(billing, record_id, amount, mode="CASH", **kwargs):
    return billing.record_payment(COACHING_ID, record_id, Decimal(amount), mode, **kwargs)


class TestRecordPayment:
    def test_full_payment_settles_record(self, billing, fetch, gst_record):
        outcome = pay(billing, gst_record.id, "1180", mode="UPI", transaction_ref="UPI-77")

        assert outcome.status == FeeStatus.PAID
        assert outcome.receipt_no == "TXR/2025-26/0001"
        assert outcome.payment.paid_amount == Decimal("1180")

        record = fetch(FeeRecord, gst_record.id)
        assert record.status == FeeStatus.PAID.value
        assert record.paid_amount == Decimal("1180")
        assert record.payment_mode == "UPI"
        assert record.transaction_ref == "UPI-77"
        assert record.receipt_no == "TXR/2025-26/0001"
        assert record.paid_at is not None

    def test_partial_payment(self, billing, fetch, gst_record):
        outcome = pay(billing, gst_record.id, "500")

        assert outcome.status == FeeStatus.PARTIALLY_PAID
        assert outcome.next_record_id is None
        record = fetch(FeeRecord, gst_record.id)
        assert record.balance == Decimal("680")
        assert record.paid_at is None

    def test_partial_payments_accumulate_to_paid(self, billing, gst_record):
        pay(billing, gst_record.id, "500")
        pay(billing, gst_record.id, "500")
        outcome = pay(billing, gst_record.id, "180")

        assert outcome.status == FeeStatus.PAID
        assert outcome.receipt_no == "TXR/2025-26/0003"

    def test_overpayment_rejected(self, billing, fetch, gst_record):
        with pytest.raises(AmountExceedsBalanceError) as exc_info:
            pay(billing, gst_record.id, "1200")

        assert exc_info.value.balance == Decimal("1180")
        assert fetch(FeeRecord, gst_record.id).paid_amount == Decimal("0")

    def test_payment_within_a_cent_of_balance_is_accepted(self, billing, gst_record):
        outcome = pay(billing, gst_record.id, "1180.01")
        assert outcome.status == FeeStatus.PAID

    @pytest.mark.parametrize("amount", ["0", "-5"])
    def test_non_positive_amount_rejected(self, billing, gst_record, amount):
        with pytest.raises(InvalidAmountError):
            pay(billing, gst_record.id, amount)

    def test_unknown_mode_rejected(self, billing, gst_record):
        with pytest.raises(FeeValidationError, match="Unknown payment mode"):
            pay(billing, gst_record.id, "100", mode="BARTER")

    def test_paid_record_rejects_payment(self, billing, gst_record):
        pay(billing, gst_record.id, "1180")
        with pytest.raises(RecordAlreadySettledError):
            pay(billing, gst_record.id, "1")

    def test_waived_record_rejects_payment(self, billing, gst_record):
        billing.waive_fee(COACHING_ID, gst_record.id)
        with pytest.raises(RecordAlreadySettledError):
            pay(billing, gst_record.id, "1")

    def test_unknown_record(self, billing, db_engine):
        with pytest.raises(RecordNotFoundError):
            pay(billing, uuid4(), "100")

    def test_other_tenant_cannot_pay(self, billing, gst_record):
        with pytest.raises(RecordNotFoundError):
            billing.record_payment("coach-2", gst_record.id, Decimal("100"), "CASH")

    def test_requires_serializable_session(self, kernel, gst_record):
        with pytest.raises(RuntimeError, match="serializable_scope"):
            with kernel(serializable=False) as k:
                k.processor.record_payment(gst_record.id, Decimal("100"), "CASH")

    def test_late_fine_locked_in_at_payment(self, billing, clock, fetch, make_structure, assign):
        record = assign(make_structure(late_fine_per_day=Decimal("10"))).seeded[0]
        clock.advance_days(5)

        outcome = pay(billing, record.id, "1000")

        assert outcome.status == FeeStatus.PARTIALLY_PAID
        assert outcome.payment.final_amount == Decimal("1050")
        stored = fetch(FeeRecord, record.id)
        assert stored.fine_amount == Decimal("50")
        assert stored.balance == Decimal("50")

    def test_payment_uses_current_structure_price(
        self, billing, fetch, kernel, make_structure, assign
    ):
        structure = make_structure()
        record = assign(structure).seeded[0]
        # Simulate a structure edited without re-pricing its records
        with kernel() as k:
            k.session.get(type(structure), structure.id).amount = Decimal("1100")

        with pytest.raises(AmountExceedsBalanceError):
            pay(billing, record.id, "1200")
        outcome = pay(billing, record.id, "1100")

        assert outcome.status == FeeStatus.PAID
        assert fetch(FeeRecord, record.id).final_amount == Decimal("1100")

    def test_payment_audited(self, billing, audit_events, gst_record):
        pay(billing, gst_record.id, "500", actor_id=ADMIN_ID)
        assert "PAYMENT_RECORDED" in audit_events(gst_record.id)

    def test_explicit_paid_at_drives_receipt_year(self, billing, gst_record):
        paid_at = datetime(2026, 4, 2, 9, 0, tzinfo=timezone.utc)
        outcome = pay(billing, gst_record.id, "100", paid_at=paid_at)
        assert outcome.receipt_no == "TXR/2026-27/0001"


class TestRecordRefund:
    def test_refund_before_due_date_reverts_to_pending(
        self, billing, make_structure, assign
    ):
        record = assign(make_structure(), start_date=TODAY + timedelta(days=10)).seeded[0]
        pay(billing, record.id, "500")

        result = billing.record_refund(COACHING_ID, record.id, Decimal("500"), reason="Duplicate")

        assert result.status == FeeStatus.PENDING
        assert result.paid_amount == Decimal("0")
        assert result.final_amount == Decimal("1000")

    def test_refund_after_due_date_marks_overdue(self, billing, make_structure, assign):
        record = assign(make_structure(), start_date=TODAY - timedelta(days=5)).seeded[0]
        pay(billing, record.id, "500")

        result = billing.record_refund(COACHING_ID, record.id, Decimal("500"))

        assert result.status == FeeStatus.OVERDUE

    def test_partial_refund_of_paid_record(self, billing, fetch, make_structure, assign):
        record = assign(make_structure(), start_date=TODAY + timedelta(days=10)).seeded[0]
        pay(billing, record.id, "1000")

        result = billing.record_refund(COACHING_ID, record.id, Decimal("200"), mode="UPI")

        assert result.status == FeeStatus.PARTIALLY_PAID
        stored = fetch(FeeRecord, record.id)
        assert stored.paid_amount == Decimal("800")
        assert stored.final_amount == Decimal("1000")
        assert stored.paid_at is None

    def test_refund_exceeding_paid_rejected(self, billing, gst_record):
        pay(billing, gst_record.id, "100")
        with pytest.raises(RefundExceedsPaidError):
            billing.record_refund(COACHING_ID, gst_record.id, Decimal("100.01"))

    def test_refund_on_unpaid_record_rejected(self, billing, gst_record):
        with pytest.raises(RefundExceedsPaidError):
            billing.record_refund(COACHING_ID, gst_record.id, Decimal("1"))

    def test_refund_on_waived_record_keeps_it_waived(self, billing, fetch, gst_record):
        pay(billing, gst_record.id, "500")
        billing.waive_fee(COACHING_ID, gst_record.id)

        result = billing.record_refund(COACHING_ID, gst_record.id, Decimal("200"))

        assert result.status == FeeStatus.WAIVED
        stored = fetch(FeeRecord, gst_record.id)
        assert stored.paid_amount == Decimal("300")
        assert stored.final_amount == Decimal("300")
        assert stored.balance == Decimal("0")

    def test_refund_audited(self, billing, audit_events, gst_record):
        pay(billing, gst_record.id, "500")
        billing.record_refund(COACHING_ID, gst_record.id, Decimal("100"), reason="Overcharge")
        assert "REFUND_RECORDED" in audit_events(gst_record.id)


class TestWaiveFee:
    def test_waive_unpaid_record_keeps_final(self, billing, gst_record):
        view = billing.waive_fee(COACHING_ID, gst_record.id, notes="Hardship", actor_id=ADMIN_ID)

        assert view.status == FeeStatus.WAIVED.value
        assert view.final_amount == Decimal("1180")
        assert view.notes == "Hardship"
        assert view.days_overdue == 0

    def test_waive_partially_paid_zeroes_balance(self, billing, gst_record):
        pay(billing, gst_record.id, "500")
        view = billing.waive_fee(COACHING_ID, gst_record.id)

        assert view.final_amount == Decimal("500")
        assert view.paid_amount == Decimal("500")
        assert view.balance == Decimal("0")

    def test_waive_twice_rejected(self, billing, gst_record):
        billing.waive_fee(COACHING_ID, gst_record.id)
        with pytest.raises(RecordAlreadyWaivedError):
            billing.waive_fee(COACHING_ID, gst_record.id)

    def test_waive_paid_record_rejected(self, billing, gst_record):
        pay(billing, gst_record.id, "1180")
        with pytest.raises(RecordAlreadySettledError):
            billing.waive_fee(COACHING_ID, gst_record.id)

    def test_waive_audited(self, billing, audit_events, gst_record):
        billing.waive_fee(COACHING_ID, gst_record.id)
        assert "FEE_WAIVED" in audit_events(gst_record.id)


class TestPauseAndRemove:
    def test_pause_and_resume(self, billing, fetch, audit_events, make_structure, assign):
        outcome = assign(make_structure())
        assignment_id = outcome.assignment.id

        paused = billing.toggle_pause(COACHING_ID, assignment_id, True, note="Exams")
        assert paused.is_paused is True
        assert paused.pause_note == "Exams"
        assert paused.paused_at is not None

        resumed = billing.toggle_pause(COACHING_ID, assignment_id, False)
        assert resumed.is_paused is False
        assert resumed.paused_at is None
        assert resumed.pause_note is None

        events = audit_events(assignment_id)
        assert "ASSIGNMENT_PAUSED" in events
        assert "ASSIGNMENT_RESUMED" in events

    def test_remove_keeps_records(self, billing, fetch, make_structure, assign):
        outcome = assign(make_structure())
        billing.remove_assignment(COACHING_ID, outcome.assignment.id)

        assert fetch(FeeAssignment, outcome.assignment.id).is_active is False
        assert fetch(FeeRecord, outcome.seeded[0].id) is not None
