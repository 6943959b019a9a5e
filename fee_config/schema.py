"""
Configuration schema (``fee_config.schema``).

Responsibility
--------------
The frozen ``LedgerConfig`` dataclass and its construction from a parsed,
merged YAML mapping.  Validation happens here, once; the rest of the
system trusts a ``LedgerConfig`` it is handed.

Failure modes
-------------
* Unknown top-level or section keys  -> ``ValueError``.
* Wrong type or out-of-range value   -> ``ValueError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

_SECTIONS: dict[str, dict[str, str]] = {
    "reconciliation": {
        "self_heal_debounce_seconds": "self_heal_debounce_seconds",
        "overdue_debounce_seconds": "overdue_debounce_seconds",
    },
    "payments": {
        "max_retries": "payment_max_retries",
        "retry_base_delay_ms": "retry_base_delay_ms",
        "money_epsilon": "money_epsilon",
    },
    "receipts": {
        "prefix": "receipt_prefix",
        "padding": "receipt_padding",
    },
    "notifications": {
        "workers": "notification_workers",
    },
}

_SCALARS = ("database_url", "timezone", "log_level")


@dataclass(frozen=True)
class LedgerConfig:
    """Runtime settings for the fee ledger."""

    database_url: str = "sqlite:///fee_ledger.db"
    self_heal_debounce_seconds: int = 60
    overdue_debounce_seconds: int = 300
    payment_max_retries: int = 3
    retry_base_delay_ms: int = 50
    money_epsilon: Decimal = Decimal("0.01")
    receipt_prefix: str = "TXR"
    receipt_padding: int = 4
    notification_workers: int = 4
    timezone: str = "Asia/Kolkata"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        for name in (
            "self_heal_debounce_seconds",
            "overdue_debounce_seconds",
            "retry_base_delay_ms",
        ):
            _require_int(name, getattr(self, name), minimum=0)
        _require_int("payment_max_retries", self.payment_max_retries, minimum=1)
        _require_int("receipt_padding", self.receipt_padding, minimum=1)
        _require_int("notification_workers", self.notification_workers, minimum=1)

        if not isinstance(self.money_epsilon, Decimal) or self.money_epsilon < 0:
            raise ValueError(f"money_epsilon must be a non-negative Decimal, got {self.money_epsilon!r}")
        if not self.database_url:
            raise ValueError("database_url must not be empty")
        if not self.receipt_prefix or "/" in self.receipt_prefix:
            raise ValueError(f"receipt_prefix must be non-empty and contain no '/', got {self.receipt_prefix!r}")
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(f"Unknown log_level: {self.log_level!r}")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {self.timezone!r}") from exc


def _require_int(name: str, value: Any, minimum: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")


def config_from_dict(data: dict[str, Any]) -> LedgerConfig:
    """
    Flatten a merged YAML mapping into a ``LedgerConfig``.

    Raises:
        ValueError: Unknown keys, or values ``LedgerConfig`` rejects.
    """
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        if key in _SCALARS:
            kwargs[key] = value
            continue
        section = _SECTIONS.get(key)
        if section is None:
            raise ValueError(f"Unknown configuration key: {key!r}")
        if not isinstance(value, dict):
            raise ValueError(f"Configuration section {key!r} must be a mapping")
        for sub_key, sub_value in value.items():
            field_name = section.get(sub_key)
            if field_name is None:
                raise ValueError(f"Unknown configuration key: {key}.{sub_key}")
            kwargs[field_name] = sub_value

    if "money_epsilon" in kwargs:
        try:
            kwargs["money_epsilon"] = Decimal(str(kwargs["money_epsilon"]))
        except InvalidOperation as exc:
            raise ValueError(f"money_epsilon is not a number: {kwargs['money_epsilon']!r}") from exc
    if "log_level" in kwargs and isinstance(kwargs["log_level"], str):
        kwargs["log_level"] = kwargs["log_level"].upper()

    return LedgerConfig(**kwargs)
