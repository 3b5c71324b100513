"""Read-only selectors."""

from market_kernel.selectors.base import BaseSelector
from market_kernel.selectors.ledger_selector import LedgerSelector
from market_kernel.selectors.order_selector import OrderSelector

__all__ = ["BaseSelector", "LedgerSelector", "OrderSelector"]
