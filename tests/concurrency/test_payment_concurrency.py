"""
Concurrent payments, assignments and sweeps against one database.

Each worker thread goes through the public FeeBillingEngine, so every
operation opens its own transaction exactly as it would in production.

On SQLite every transaction starts with BEGIN IMMEDIATE, so writers queue
on the database lock.  Against PostgreSQL (DATABASE_URL) the payments run
at SERIALIZABLE with row locks and conflict retries.

Expected Behavior:
- 60 payments of 23.60 against a 1180.00 record: exactly 50 succeed, one of
  them settles the record, and every later payment is rejected
- Receipt numbers are unique and gap-free across concurrent payments
- Concurrent assignment of the same structure creates one assignment and
  one record
- Concurrent reads trigger the overdue sweep once per debounce window
"""

import dataclasses
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier

import pytest
from sqlalchemy import func, select

from fee_kernel.db.engine import session_scope
from fee_kernel.domain.fee_types import FeeStatus
from fee_kernel.exceptions import RecordAlreadySettledError
from fee_kernel.models.assignment import FeeAssignment
from fee_kernel.models.audit_log import FeeAuditLog
from fee_kernel.models.record import FeePayment, FeeRecord
from fee_services import FeeBillingEngine, MemberInfo
from tests.conftest import COACHING_ID, TODAY, structure_data

pytestmark = pytest.mark.slow_locks


@pytest.fixture
def contended_billing(db_engine, config, directory, notifier, clock, registry):
    """Billing engine with enough retries for heavy contention on PostgreSQL."""
    engine = FeeBillingEngine(
        dataclasses.replace(config, payment_max_retries=100, retry_base_delay_ms=5),
        directory=directory,
        notifier=notifier,
        clock=clock,
        registry=registry,
        synchronous_notifications=True,
    )
    yield engine
    engine.close()


def run_concurrently(fn, args_list, workers):
    """Run ``fn`` once per args tuple, releasing all workers together.

    Returns a list of (result, exception) pairs in submission order.
    """
    barrier = Barrier(len(args_list), timeout=60)

    def call(args):
        barrier.wait()
        try:
            return fn(*args), None
        except Exception as exc:
            return None, exc

    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(call, args_list))


class TestConcurrentPayments:
    def test_sixty_payments_against_fifty_slots(self, contended_billing, notifier):
        billing = contended_billing
        structure = billing.create_structure(
            COACHING_ID,
            structure_data(tax_type="GST_EXCLUSIVE", gst_rate=Decimal("18")),
        )
        record = billing.assign_fee(
            COACHING_ID, "m-1", structure.id, start_date=TODAY
        ).seeded[0]
        assert record.final_amount == Decimal("1180")

        results = run_concurrently(
            lambda: billing.record_payment(COACHING_ID, record.id, Decimal("23.60"), "UPI"),
            [()] * 60,
            workers=60,
        )

        successes = [r for r, exc in results if exc is None]
        failures = [exc for r, exc in results if exc is not None]
        assert len(successes) == 50
        assert len(failures) == 10
        assert all(isinstance(exc, RecordAlreadySettledError) for exc in failures)

        settled = [o for o in successes if o.status == FeeStatus.PAID]
        assert len(settled) == 1
        assert settled[0].next_record_id is not None

        receipts = sorted(o.receipt_no for o in successes)
        assert receipts == [f"TXR/2025-26/{n:04d}" for n in range(1, 51)]

        with session_scope() as session:
            stored = session.get(FeeRecord, record.id)
            assert stored.status == FeeStatus.PAID.value
            assert stored.paid_amount == Decimal("1180")
            payment_total = session.execute(
                select(func.sum(FeePayment.amount)).where(FeePayment.record_id == record.id)
            ).scalar_one()
            assert Decimal(payment_total) == Decimal("1180")
            records = session.execute(
                select(func.count(FeeRecord.id)).where(FeeRecord.member_id == "m-1")
            ).scalar_one()
            assert records == 2

        assert len(notifier.of_type("FEE_PAYMENT_CONFIRMED")) == 50
        assert contended_billing.check_integrity(COACHING_ID).is_clean

    def test_receipts_gap_free_across_records(self, contended_billing, directory):
        billing = contended_billing
        structure = billing.create_structure(COACHING_ID, structure_data(cycle="ONCE"))
        record_ids = []
        for i in range(20):
            directory.add_member(MemberInfo(f"m-c{i}", COACHING_ID, user_id=f"u-c{i}"))
            outcome = billing.assign_fee(COACHING_ID, f"m-c{i}", structure.id, start_date=TODAY)
            record_ids.append(outcome.seeded[0].id)

        results = run_concurrently(
            lambda record_id: billing.record_payment(
                COACHING_ID, record_id, Decimal("1000"), "CASH"
            ),
            [(record_id,) for record_id in record_ids],
            workers=20,
        )

        assert [exc for _, exc in results if exc is not None] == []
        receipts = sorted(outcome.receipt_no for outcome, _ in results)
        assert receipts == [f"TXR/2025-26/{n:04d}" for n in range(1, 21)]


class TestConcurrentAssignment:
    def test_same_assignment_created_once(self, contended_billing):
        billing = contended_billing
        structure = billing.create_structure(COACHING_ID, structure_data())

        results = run_concurrently(
            lambda: billing.assign_fee(COACHING_ID, "m-2", structure.id, start_date=TODAY),
            [()] * 10,
            workers=10,
        )

        assert [exc for _, exc in results if exc is not None] == []
        assert sum(1 for outcome, _ in results if outcome.created) == 1
        assert sum(len(outcome.seeded) for outcome, _ in results) == 1

        with session_scope() as session:
            assignments = session.execute(
                select(func.count(FeeAssignment.id)).where(FeeAssignment.member_id == "m-2")
            ).scalar_one()
            records = session.execute(
                select(func.count(FeeRecord.id)).where(FeeRecord.member_id == "m-2")
            ).scalar_one()
        assert assignments == 1
        assert records == 1


class TestConcurrentSweep:
    def test_overdue_transition_happens_once(self, contended_billing):
        billing = contended_billing
        structure = billing.create_structure(
            COACHING_ID, structure_data(late_fine_per_day=Decimal("10"))
        )
        record = billing.assign_fee(
            COACHING_ID, "m-1", structure.id, start_date=TODAY.replace(day=1)
        ).seeded[0]

        results = run_concurrently(
            lambda: billing.get_record(COACHING_ID, record.id),
            [()] * 20,
            workers=20,
        )

        assert all(exc is None for _, exc in results)
        with session_scope() as session:
            events = Counter(
                session.execute(
                    select(FeeAuditLog.event).where(FeeAuditLog.entity_id == str(record.id))
                ).scalars()
            )
            stored = session.get(FeeRecord, record.id)
        assert events["RECORD_MARKED_OVERDUE"] == 1
        assert stored.status == FeeStatus.OVERDUE.value
        assert stored.fine_amount == Decimal("140")
