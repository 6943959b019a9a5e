"""
fee_services.notifications -- fire-and-forget notification dispatch.

Responsibility:
    Wraps a Notifier so that delivering a reminder or a payment
    confirmation can never fail or delay the operation that produced it.

Invariants enforced:
    - ``dispatch()`` never raises and never blocks on delivery.
    - Delivery failures are logged (``notification_failed``) and dropped.
    - Dispatch happens only after the producing transaction has committed;
      the billing engine is responsible for that ordering.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

from fee_kernel.logging_config import get_logger
from fee_services.ports import Notifier

logger = get_logger("services.notifications")


class NotificationDispatcher:
    """
    Args:
        notifier: Delivery backend.
        max_workers: Size of the delivery thread pool.
        synchronous: Deliver inline on the calling thread (tests).  Failures
            are still swallowed.
    """

    def __init__(self, notifier: Notifier, max_workers: int = 4, synchronous: bool = False):
        self.notifier = notifier
        self.synchronous = synchronous
        self._executor = (
            None
            if synchronous
            else ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="fee-notify")
        )

    def dispatch(
        self,
        user_id: str,
        title: str,
        message: str,
        payload: dict[str, Any] | None = None,
    ) -> Future | None:
        payload = payload or {}
        if self._executor is None:
            self._deliver(user_id, title, message, payload)
            return None
        try:
            return self._executor.submit(self._deliver, user_id, title, message, payload)
        except RuntimeError:
            # Executor already shut down.
            logger.warning(
                "notification_dropped",
                extra={"user_id": user_id, "type": payload.get("type")},
            )
            return None

    def _deliver(self, user_id: str, title: str, message: str, payload: dict[str, Any]) -> None:
        try:
            self.notifier.notify(user_id, title, message, payload)
        except Exception:
            logger.exception(
                "notification_failed",
                extra={"user_id": user_id, "type": payload.get("type")},
            )
            return
        logger.debug(
            "notification_delivered",
            extra={"user_id": user_id, "type": payload.get("type")},
        )

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
