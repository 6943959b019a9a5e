"""
fee_config -- single public entrypoint for fee ledger configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Other components receive a ``LedgerConfig``
    and never read configuration files or environment variables directly.

Architecture position:
    Configuration.  Sits above ``fee_kernel`` and below ``fee_services``.
    The kernel MUST NEVER import from ``fee_config``; the billing facade
    hands individual settings to kernel services.

Resolution order (later wins):
    1. ``fee_config/defaults.yaml``
    2. The YAML file given as ``path``, else the one named by the
       ``FEE_LEDGER_CONFIG`` environment variable
    3. ``DATABASE_URL`` environment variable (database_url only)

Failure modes:
    - ``FileNotFoundError`` -- an override file does not exist.
    - ``ValueError`` -- unknown keys or invalid values.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from fee_config.loader import DEFAULTS_PATH, load_yaml_file, merge
from fee_config.schema import LedgerConfig, config_from_dict

_logger = logging.getLogger("fee_kernel.config")

CONFIG_ENV_VAR = "FEE_LEDGER_CONFIG"
DATABASE_URL_ENV_VAR = "DATABASE_URL"


def get_active_config(path: str | Path | None = None) -> LedgerConfig:
    """The ONLY public configuration entrypoint.

    Guarantees:
        - The returned ``LedgerConfig`` is frozen and validated.
        - A ``FEE_CONFIG_TRACE`` log entry is emitted on every call.

    Args:
        path: Optional override YAML file.  Defaults to
            ``$FEE_LEDGER_CONFIG`` when set.

    Raises:
        FileNotFoundError: If the override file does not exist.
        ValueError: If the merged configuration is invalid.
    """
    data = load_yaml_file(DEFAULTS_PATH)

    override_path = path or os.environ.get(CONFIG_ENV_VAR)
    if override_path:
        data = merge(data, load_yaml_file(Path(override_path)))

    database_url = os.environ.get(DATABASE_URL_ENV_VAR)
    if database_url:
        data["database_url"] = database_url

    config = config_from_dict(data)

    _logger.info(
        "FEE_CONFIG_TRACE",
        extra={
            "override_path": str(override_path) if override_path else None,
            "database_backend": config.database_url.split(":", 1)[0],
            "timezone": config.timezone,
            "payment_max_retries": config.payment_max_retries,
        },
    )
    return config


def load_config(path: str | Path) -> LedgerConfig:
    """Build a config from defaults plus one file, ignoring the environment."""
    return config_from_dict(merge(load_yaml_file(DEFAULTS_PATH), load_yaml_file(Path(path))))


__all__ = [
    "CONFIG_ENV_VAR",
    "DATABASE_URL_ENV_VAR",
    "LedgerConfig",
    "get_active_config",
    "load_config",
]
