"""Domain models for the market kernel."""

from market_kernel.models.driver import Driver, DriverStatus
from market_kernel.models.idempotency import IdempotencyRecord
from market_kernel.models.ledger import (
    LedgerEntry,
    LedgerEntryStatus,
    LedgerEntryType,
    LedgerMethod,
)
from market_kernel.models.order import Order, OrderItem, OrderStatus, PaymentMethod
from market_kernel.models.product import Product, ProductStatus
from market_kernel.models.transfer_code import TransferCode
from market_kernel.models.user import User, UserRole, UserStatus
from market_kernel.models.wallet import Wallet

__all__ = [
    "User",
    "UserRole",
    "UserStatus",
    "Wallet",
    "Product",
    "ProductStatus",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentMethod",
    "LedgerEntry",
    "LedgerEntryType",
    "LedgerEntryStatus",
    "LedgerMethod",
    "Driver",
    "DriverStatus",
    "TransferCode",
    "IdempotencyRecord",
]
