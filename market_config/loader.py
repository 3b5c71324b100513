"""
Configuration Loader (``market_config.loader``).

Responsibility
--------------
Loads the YAML configuration document and parses it into the frozen
``market_config.schema`` dataclasses.  The single public entry point for
runtime config is ``market_config.get_active_config()``.

Invariants enforced
-------------------
* Malformed values raise ``ValueError`` and missing required keys raise
  ``KeyError``, both with descriptive messages.  Optional keys that are
  absent take the schema default; a present key is never replaced by a
  default.
* Cross-field rules are checked here: minimum <= maximum, the daily cap
  covers at least one maximum withdrawal, fee rates in [0, 1), a
  deposit method is either instant or manual, never both.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

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

_MISSING = object()


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key, {})
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"Config section '{key}' must be a mapping, got {type(value).__name__}")
    return value


def _int(data: dict[str, Any], key: str, default: Any = _MISSING, minimum: int = 0) -> int:
    if key not in data:
        if default is _MISSING:
            raise KeyError(f"Missing required config key '{key}'")
        return default
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Config key '{key}' must be an integer, got {value!r}")
    if value < minimum:
        raise ValueError(f"Config key '{key}' must be >= {minimum}, got {value}")
    return value


def _float(data: dict[str, Any], key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Config key '{key}' must be a number, got {value!r}")
    if value < 0:
        raise ValueError(f"Config key '{key}' must not be negative, got {value}")
    return float(value)


def _bool(data: dict[str, Any], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"Config key '{key}' must be true or false, got {value!r}")
    return value


def _str(data: dict[str, Any], key: str, default: Any = _MISSING) -> str:
    if key not in data:
        if default is _MISSING:
            raise KeyError(f"Missing required config key '{key}'")
        return default
    value = data[key]
    if not isinstance(value, str) or not value:
        raise ValueError(f"Config key '{key}' must be a non-empty string, got {value!r}")
    return value


def _str_tuple(data: dict[str, Any], key: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = data.get(key, default)
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"Config key '{key}' must be a list of strings, got {value!r}")
    return tuple(value)


def parse_rate(data: dict[str, Any], key: str, default: Decimal) -> Decimal:
    """
    Parse a fee rate.  Strings are preferred in YAML so the value is exact.

    Raises:
        ValueError: not a number, or outside [0, 1).
    """
    value = data.get(key, default)
    if isinstance(value, bool):
        raise ValueError(f"Config key '{key}' must be a decimal rate, got {value!r}")
    try:
        rate = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Config key '{key}' must be a decimal rate, got {value!r}") from None
    if not Decimal(0) <= rate < Decimal(1):
        raise ValueError(f"Config key '{key}' must be in [0, 1), got {rate}")
    return rate


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    return DatabaseConfig(
        url=_str(data, "url"),
        echo=_bool(data, "echo", False),
        pool_size=_int(data, "pool_size", 20, minimum=1),
        max_overflow=_int(data, "max_overflow", 10),
        busy_timeout_seconds=_float(data, "busy_timeout_seconds", 30.0),
    )


def parse_orders(data: dict[str, Any]) -> OrderConfig:
    return OrderConfig(
        wash_fee_per_unit=_int(data, "wash_fee_per_unit", 500),
        order_code_prefix=_str(data, "order_code_prefix", "QAT"),
        shipping_address_max_length=_int(data, "shipping_address_max_length", 200, minimum=1),
        estimated_delivery_minutes=_int(data, "estimated_delivery_minutes", 120),
    )


def parse_deposit(data: dict[str, Any]) -> DepositConfig:
    config = DepositConfig(
        minimum=_int(data, "minimum", 1000, minimum=1),
        maximum=_int(data, "maximum", 10_000_000, minimum=1),
        instant_methods=_str_tuple(data, "instant_methods", ("wallet",)),
        manual_methods=_str_tuple(data, "manual_methods", ("manual", "bank")),
    )
    if config.minimum > config.maximum:
        raise ValueError("wallet.deposit.minimum must not exceed wallet.deposit.maximum")
    overlap = set(config.instant_methods) & set(config.manual_methods)
    if overlap:
        raise ValueError(
            f"Deposit methods cannot be both instant and manual: {sorted(overlap)}"
        )
    return config


def parse_withdrawal(data: dict[str, Any]) -> WithdrawalConfig:
    config = WithdrawalConfig(
        minimum=_int(data, "minimum", 1000, minimum=1),
        maximum=_int(data, "maximum", 1_000_000, minimum=1),
        daily_cap=_int(data, "daily_cap", 2_000_000, minimum=1),
        fee_rate=parse_rate(data, "fee_rate", Decimal("0.01")),
        fee_minimum=_int(data, "fee_minimum", 100),
        methods=_str_tuple(data, "methods", ("bank", "wallet")),
    )
    if config.minimum > config.maximum:
        raise ValueError("wallet.withdrawal.minimum must not exceed wallet.withdrawal.maximum")
    if config.daily_cap < config.maximum:
        raise ValueError("wallet.withdrawal.daily_cap must be at least wallet.withdrawal.maximum")
    return config


def parse_transfer(data: dict[str, Any]) -> TransferConfig:
    return TransferConfig(
        minimum=_int(data, "minimum", 100, minimum=1),
        fee_rate=parse_rate(data, "fee_rate", Decimal("0.01")),
        fee_minimum=_int(data, "fee_minimum", 100),
        code_ttl_hours=_int(data, "code_ttl_hours", 24, minimum=1),
    )


def parse_retry(data: dict[str, Any]) -> RetryConfig:
    config = RetryConfig(
        max_attempts=_int(data, "max_attempts", 3, minimum=1),
        backoff_seconds=_float(data, "backoff_seconds", 0.05),
        backoff_multiplier=_float(data, "backoff_multiplier", 2.0),
    )
    if config.max_attempts > 10:
        raise ValueError("retry.max_attempts must be at most 10")
    return config


def parse_config(data: dict[str, Any]) -> MarketplaceConfig:
    """
    Parse a full configuration document.

    Raises:
        KeyError: the database section or its url is missing.
        ValueError: any malformed value.
    """
    if "database" not in data:
        raise KeyError("Missing required config section 'database'")
    wallet = _section(data, "wallet")
    config = MarketplaceConfig(
        database=parse_database(_section(data, "database")),
        orders=parse_orders(_section(data, "orders")),
        wallet=WalletConfig(
            deposit=parse_deposit(_section(wallet, "deposit")),
            withdrawal=parse_withdrawal(_section(wallet, "withdrawal")),
            transfer=parse_transfer(_section(wallet, "transfer")),
        ),
        retry=parse_retry(_section(data, "retry")),
        idempotency=IdempotencyConfig(
            ttl_seconds=_int(_section(data, "idempotency"), "ttl_seconds", 86400, minimum=1),
        ),
    )
    return MarketplaceConfig(
        database=config.database,
        orders=config.orders,
        wallet=config.wallet,
        retry=config.retry,
        idempotency=config.idempotency,
        checksum=compute_checksum(asdict(config)),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
