"""
fee_services.kernel_services -- per-transaction DI container for kernel services.

Responsibility:
    Creates every kernel service for one session exactly once and wires
    them together.  No kernel service constructs a collaborator the
    container already holds.

Architecture position:
    Services.  Built by FeeBillingEngine inside each transaction scope.

Usage:
    with session_scope() as session:
        services = KernelServices(session, clock, config, directory, registry)
        services.structures.create_structure(...)
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from fee_config import LedgerConfig
from fee_kernel.domain.clock import Clock
from fee_kernel.domain.tax import TaxCalculator
from fee_kernel.selectors import IntegritySelector, LedgerProjector, RecordSelector
from fee_kernel.services import (
    AuditLogger,
    DebounceRegistry,
    PaymentProcessor,
    ReceiptSequenceService,
    ReconciliationSweep,
    RecordFactory,
    ReminderService,
    StructureService,
)


class KernelServices:
    def __init__(
        self,
        session: Session,
        clock: Clock,
        config: LedgerConfig,
        directory=None,
        registry: DebounceRegistry | None = None,
    ):
        self.session = session
        self.clock = clock

        tax = TaxCalculator()
        self.audit = AuditLogger(session, clock)
        self.receipts = ReceiptSequenceService(
            session,
            clock,
            prefix=config.receipt_prefix,
            padding=config.receipt_padding,
        )
        self.factory = RecordFactory(session, clock, audit=self.audit, tax_calculator=tax)
        self.processor = PaymentProcessor(
            session,
            clock,
            audit=self.audit,
            receipts=self.receipts,
            factory=self.factory,
            tax_calculator=tax,
            epsilon=config.money_epsilon,
        )
        self.structures = StructureService(
            session,
            clock,
            audit=self.audit,
            factory=self.factory,
            processor=self.processor,
            directory=directory,
        )
        self.sweep = ReconciliationSweep(
            session,
            registry or DebounceRegistry(),
            clock,
            audit=self.audit,
            factory=self.factory,
            self_heal_window=config.self_heal_debounce_seconds,
            overdue_window=config.overdue_debounce_seconds,
            epsilon=config.money_epsilon,
        )
        self.reminders = ReminderService(session, directory, clock, audit=self.audit)

        self.projector = LedgerProjector(session, clock)
        self.records = RecordSelector(session, clock)
        self.integrity = IntegritySelector(session, clock)
