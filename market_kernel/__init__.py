"""
Market Kernel - order fulfilment and wallet ledger core.

A transactional core for a marketplace with:
- Atomic order placement and cancellation
- Non-negative wallet balances and stock levels
- A reconciled ledger of every money movement
- Driver assignment in lock-step with order status
"""

__version__ = "0.1.0"
