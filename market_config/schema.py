"""
MarketplaceConfig schema.

Frozen dataclasses for the marketplace runtime configuration.  YAML is
parsed into these types by the loader; services receive the sections they
need through constructor injection and never read files or environment
variables themselves.

All amounts are integer minor currency units; rates are Decimals.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    busy_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class OrderConfig:
    wash_fee_per_unit: int = 500
    order_code_prefix: str = "QAT"
    shipping_address_max_length: int = 200
    estimated_delivery_minutes: int = 120


@dataclass(frozen=True)
class DepositConfig:
    minimum: int = 1000
    maximum: int = 10_000_000
    instant_methods: tuple[str, ...] = ("wallet",)
    manual_methods: tuple[str, ...] = ("manual", "bank")

    @property
    def methods(self) -> tuple[str, ...]:
        return self.instant_methods + self.manual_methods


@dataclass(frozen=True)
class WithdrawalConfig:
    minimum: int = 1000
    maximum: int = 1_000_000
    daily_cap: int = 2_000_000
    fee_rate: Decimal = Decimal("0.01")
    fee_minimum: int = 100
    methods: tuple[str, ...] = ("bank", "wallet")


@dataclass(frozen=True)
class TransferConfig:
    minimum: int = 100
    fee_rate: Decimal = Decimal("0.01")
    fee_minimum: int = 100
    code_ttl_hours: int = 24


@dataclass(frozen=True)
class WalletConfig:
    deposit: DepositConfig = field(default_factory=DepositConfig)
    withdrawal: WithdrawalConfig = field(default_factory=WithdrawalConfig)
    transfer: TransferConfig = field(default_factory=TransferConfig)


@dataclass(frozen=True)
class RetryConfig:
    """Bounded retry of units of work that lost a concurrency race."""

    max_attempts: int = 3
    backoff_seconds: float = 0.05
    backoff_multiplier: float = 2.0


@dataclass(frozen=True)
class IdempotencyConfig:
    ttl_seconds: int = 86400


@dataclass(frozen=True)
class MarketplaceConfig:
    """The complete runtime configuration."""

    database: DatabaseConfig
    orders: OrderConfig = field(default_factory=OrderConfig)
    wallet: WalletConfig = field(default_factory=WalletConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    idempotency: IdempotencyConfig = field(default_factory=IdempotencyConfig)
    checksum: str = ""
