"""
Tests for IntegritySelector: paid_amount against the payment and refund rows.
"""

from decimal import Decimal

from fee_kernel.models.record import FeeRecord
from tests.conftest import COACHING_ID


class TestIntegrityCheck:
    def test_clean_ledger(self, billing, gst_record):
        billing.record_payment(COACHING_ID, gst_record.id, Decimal("500"), "CASH")
        billing.record_refund(COACHING_ID, gst_record.id, Decimal("100"))

        report = billing.check_integrity(COACHING_ID)

        assert report.is_clean
        assert report.checked == 1

    def test_paid_amount_drift_detected(self, billing, kernel, captured_logs, gst_record):
        billing.record_payment(COACHING_ID, gst_record.id, Decimal("500"), "CASH")
        with kernel() as k:
            k.session.get(FeeRecord, gst_record.id).paid_amount = Decimal("650")

        report = billing.check_integrity(COACHING_ID)

        [issue] = report.drifted
        assert issue.record_id == gst_record.id
        assert issue.paid_amount == Decimal("650")
        assert issue.net_collected == Decimal("500")
        assert report.overpaid == []
        assert any(r["message"] == "ledger_integrity_issues" for r in captured_logs())

    def test_overpaid_record_detected(self, billing, kernel, gst_record):
        billing.record_payment(COACHING_ID, gst_record.id, Decimal("500"), "CASH")
        with kernel() as k:
            k.session.get(FeeRecord, gst_record.id).final_amount = Decimal("400")

        report = billing.check_integrity(COACHING_ID)

        assert [i.record_id for i in report.overpaid] == [gst_record.id]
        assert report.drifted == []

    def test_all_tenants_when_unscoped(self, billing, gst_record):
        assert billing.check_integrity().checked == 1
        assert billing.check_integrity("coach-2").checked == 0
