"""
Tests for ReceiptSequenceService: per-tenant, per-financial-year counters.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from fee_kernel.services.receipt_sequence_service import ReceiptSequenceService
from tests.conftest import COACHING_ID


class TestReceiptSequence:
    def test_numbers_are_sequential(self, kernel):
        with kernel() as k:
            numbers = [k.receipts.next_number(COACHING_ID, "2025-26") for _ in range(3)]
        assert numbers == [1, 2, 3]

    def test_counter_survives_transactions(self, kernel):
        with kernel() as k:
            k.receipts.next_number(COACHING_ID, "2025-26")
        with kernel() as k:
            assert k.receipts.next_number(COACHING_ID, "2025-26") == 2
            assert k.receipts.current_number(COACHING_ID, "2025-26") == 2

    def test_rolled_back_number_is_reused(self, kernel):
        with pytest.raises(RuntimeError):
            with kernel() as k:
                k.receipts.next_number(COACHING_ID, "2025-26")
                raise RuntimeError("payment failed")

        with kernel() as k:
            assert k.receipts.next_number(COACHING_ID, "2025-26") == 1

    def test_independent_per_tenant_and_year(self, kernel):
        with kernel() as k:
            k.receipts.next_number(COACHING_ID, "2025-26")
            k.receipts.next_number(COACHING_ID, "2025-26")
            assert k.receipts.next_number("coach-2", "2025-26") == 1
            assert k.receipts.next_number(COACHING_ID, "2026-27") == 1
            assert k.receipts.current_number("coach-3", "2025-26") is None

    def test_receipt_number_format(self, kernel):
        with kernel() as k:
            assert k.receipts.next_receipt_no(COACHING_ID, date(2026, 3, 31)) == "TXR/2025-26/0001"
            assert k.receipts.next_receipt_no(COACHING_ID, date(2026, 4, 1)) == "TXR/2026-27/0001"

    def test_custom_prefix_and_padding(self, kernel):
        with kernel() as k:
            receipts = ReceiptSequenceService(k.session, prefix="RCP", padding=6)
            assert receipts.next_receipt_no(COACHING_ID, date(2025, 6, 1)) == "RCP/2025-26/000001"

    def test_payments_across_the_year_boundary(self, billing, make_structure, assign):
        record = assign(make_structure(amount=Decimal("900"))).seeded[0]

        march = billing.record_payment(
            COACHING_ID, record.id, Decimal("300"), "CASH",
            paid_at=datetime(2026, 3, 31, 12, 0, tzinfo=timezone.utc),
        )
        april = billing.record_payment(
            COACHING_ID, record.id, Decimal("300"), "CASH",
            paid_at=datetime(2026, 4, 1, 12, 0, tzinfo=timezone.utc),
        )
        april_again = billing.record_payment(
            COACHING_ID, record.id, Decimal("300"), "CASH",
            paid_at=datetime(2026, 4, 2, 12, 0, tzinfo=timezone.utc),
        )

        assert march.receipt_no == "TXR/2025-26/0001"
        assert april.receipt_no == "TXR/2026-27/0001"
        assert april_again.receipt_no == "TXR/2026-27/0002"
