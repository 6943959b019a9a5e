"""
Module: fee_kernel.selectors.integrity_selector
Responsibility: Cross-check stored record totals against the append-only
    payment and refund rows.
Architecture position: Kernel > Selectors.  Read-only.

Checks:
    drifted   |paid_amount - (sum(payments) - sum(refunds))| > epsilon
    overpaid  paid_amount > final_amount + epsilon
"""

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from fee_kernel.db.types import MONEY_EPSILON, to_decimal
from fee_kernel.logging_config import get_logger
from fee_kernel.models.record import FeePayment, FeeRecord, FeeRefund
from fee_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.integrity")


@dataclass
class IntegrityIssue:
    record_id: UUID
    coaching_id: str
    paid_amount: Decimal
    final_amount: Decimal
    net_collected: Decimal


@dataclass
class IntegrityReport:
    checked: int = 0
    drifted: list[IntegrityIssue] = field(default_factory=list)
    overpaid: list[IntegrityIssue] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.drifted and not self.overpaid


class IntegritySelector(BaseSelector):
    def check(
        self,
        coaching_id: str | None = None,
        epsilon: Decimal = MONEY_EPSILON,
    ) -> IntegrityReport:
        """Check every record, or only those of ``coaching_id``."""
        epsilon = to_decimal(epsilon)

        paid_in = (
            select(FeePayment.record_id, func.sum(FeePayment.amount).label("total"))
            .group_by(FeePayment.record_id)
            .subquery()
        )
        paid_out = (
            select(FeeRefund.record_id, func.sum(FeeRefund.amount).label("total"))
            .group_by(FeeRefund.record_id)
            .subquery()
        )
        stmt = (
            select(
                FeeRecord.id,
                FeeRecord.coaching_id,
                FeeRecord.paid_amount,
                FeeRecord.final_amount,
                func.coalesce(paid_in.c.total, 0),
                func.coalesce(paid_out.c.total, 0),
            )
            .outerjoin(paid_in, paid_in.c.record_id == FeeRecord.id)
            .outerjoin(paid_out, paid_out.c.record_id == FeeRecord.id)
        )
        if coaching_id is not None:
            stmt = stmt.where(FeeRecord.coaching_id == coaching_id)

        report = IntegrityReport()
        for record_id, tenant, paid, final, total_in, total_out in self.session.execute(stmt):
            report.checked += 1
            paid = to_decimal(paid)
            final = to_decimal(final)
            issue = IntegrityIssue(
                record_id=record_id,
                coaching_id=tenant,
                paid_amount=paid,
                final_amount=final,
                net_collected=to_decimal(total_in) - to_decimal(total_out),
            )
            if abs(paid - issue.net_collected) > epsilon:
                report.drifted.append(issue)
            if paid > final + epsilon:
                report.overpaid.append(issue)

        if not report.is_clean:
            logger.warning(
                "ledger_integrity_issues",
                extra={
                    "coaching_id": coaching_id,
                    "checked": report.checked,
                    "drifted": len(report.drifted),
                    "overpaid": len(report.overpaid),
                },
            )
        return report
