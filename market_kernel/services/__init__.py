"""Kernel services -- the only writers of balances, stock and driver status."""

from market_kernel.services.account_service import AccountService
from market_kernel.services.base import BaseService
from market_kernel.services.driver_coordinator import DriverAssignmentCoordinator
from market_kernel.services.idempotency_store import IdempotencyStore
from market_kernel.services.inventory_guard import InventoryGuard
from market_kernel.services.ledger_store import LedgerStore

__all__ = [
    "AccountService",
    "BaseService",
    "DriverAssignmentCoordinator",
    "IdempotencyStore",
    "InventoryGuard",
    "LedgerStore",
]
