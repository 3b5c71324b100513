"""
Kernel Invariants Contract.

These invariants are safety properties of the marketplace core. No
configuration value may switch them off.

This module only declares them. Enforcement is distributed across
LedgerStore, InventoryGuard, DriverAssignmentCoordinator, the order
lifecycle table and the database check constraints.
"""

from enum import Enum, unique


@unique
class MarketInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel."""

    NON_NEGATIVE_BALANCE = "non_negative_balance"
    """Wallet balance is never below zero. Enforced by the conditional
    debit in LedgerStore and by a CHECK constraint on wallets."""

    NON_NEGATIVE_STOCK = "non_negative_stock"
    """Product quantity is never below zero. Enforced by the conditional
    reservation in InventoryGuard and by a CHECK constraint on products."""

    LEDGER_RECONCILIATION = "ledger_reconciliation"
    """Opening balance plus the sum of completed ledger amounts equals the
    wallet balance. Every balance mutation writes its ledger entry in the
    same unit of work."""

    EXACTLY_ONCE_CREDIT = "exactly_once_credit"
    """A pending deposit is credited at most once. Enforced by the
    pending-to-completed conditional update."""

    ONE_WAY_LIFECYCLE = "one_way_lifecycle"
    """Order status only moves forward, except cancellation from pending or
    paid. Enforced by the transition table in domain.lifecycle."""

    DRIVER_LOCKSTEP = "driver_lockstep"
    """A driver is busy exactly while an order assigned to them is shipping."""
