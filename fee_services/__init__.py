"""
fee_services -- Package init and public API.

Responsibility:
    Transaction-owning orchestration over the fee kernel: the
    FeeBillingEngine facade, the per-transaction service container, the
    collaborator ports and the notification dispatcher.

Architecture position:
    Services.  Dependency direction:
        fee_services/ -> fee_kernel/  (allowed)
        fee_services/ -> fee_config/  (allowed)
        fee_kernel/   -> fee_services/ (FORBIDDEN)
"""

from fee_services.billing_engine import FeeBillingEngine, PaymentOutcome, build_billing_engine
from fee_services.kernel_services import KernelServices
from fee_services.notifications import NotificationDispatcher
from fee_services.ports import (
    InMemoryMemberDirectory,
    LoggingNotifier,
    MemberDirectory,
    MemberInfo,
    Notifier,
)

__all__ = [
    "FeeBillingEngine",
    "PaymentOutcome",
    "build_billing_engine",
    "KernelServices",
    "NotificationDispatcher",
    "InMemoryMemberDirectory",
    "LoggingNotifier",
    "MemberDirectory",
    "MemberInfo",
    "Notifier",
]
