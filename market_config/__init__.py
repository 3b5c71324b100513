"""
market_config -- single public entrypoint for marketplace configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration
    files or environment variables directly.

Architecture position:
    Configuration -- sits beside ``market_kernel`` and below
    ``market_services``.  The kernel never imports from ``market_config``;
    services receive the parsed sections through their constructors.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``KeyError`` / ``ValueError`` -- missing or malformed values.

Every successful ``get_active_config()`` call emits a
``market_config_loaded`` log entry carrying the configuration checksum.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from market_config.loader import compute_checksum, load_yaml_file, parse_config
from market_config.schema import (
    DatabaseConfig,
    DepositConfig,
    IdempotencyConfig,
    MarketplaceConfig,
    OrderConfig,
    RetryConfig,
    TransferConfig,
    WalletConfig,
    WithdrawalConfig,
)

_logger = logging.getLogger("market_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"

DATABASE_URL_ENV = "MARKETPLACE_DATABASE_URL"


def get_active_config(config_path: Path | None = None) -> MarketplaceConfig:
    """The ONLY public configuration entrypoint.

    Loads ``config_path`` (default: the packaged defaults.yaml).  The
    database URL may be overridden with ``MARKETPLACE_DATABASE_URL``.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        KeyError: If a required key is missing.
        ValueError: If a value is malformed.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    data = load_yaml_file(path)

    override = os.environ.get(DATABASE_URL_ENV)
    if override:
        data = dict(data)
        data["database"] = {**(data.get("database") or {}), "url": override}

    config = parse_config(data)

    _logger.info(
        "market_config_loaded",
        extra={
            "config_path": str(path),
            "checksum": config.checksum,
            "database_dialect": config.database.url.split(":", 1)[0],
            "database_url_overridden": bool(override),
        },
    )
    return config


__all__ = [
    "get_active_config",
    "parse_config",
    "compute_checksum",
    "DATABASE_URL_ENV",
    "DEFAULT_CONFIG_PATH",
    "MarketplaceConfig",
    "DatabaseConfig",
    "OrderConfig",
    "WalletConfig",
    "DepositConfig",
    "WithdrawalConfig",
    "TransferConfig",
    "RetryConfig",
    "IdempotencyConfig",
]
