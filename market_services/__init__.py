"""
market_services -- Package init and public API.

Responsibility:
    The Order Lifecycle Engine and the Wallet Operations Engine, the
    units of work they run in, notification delivery and the command
    gateway.  This is the **only** layer that commits transactions.

Architecture position:
    Services -- orchestration over market_kernel.

    Dependency direction:
        market_services/ -> market_kernel/   (allowed)
        market_services/ -> market_config/   (allowed)
        market_kernel/   -> market_services/ (FORBIDDEN)
"""

from market_services.commands import CommandGateway
from market_services.container import MarketplaceServices
from market_services.notifications import (
    LoggingNotificationSink,
    NotificationEmitter,
    NotificationEvent,
    RecordingNotificationSink,
)
from market_services.order_lifecycle import OrderLifecycleEngine
from market_services.unit_of_work import TransactionRunner, UnitOfWork
from market_services.wallet_operations import WalletOperationsEngine

__all__ = [
    "CommandGateway",
    "LoggingNotificationSink",
    "MarketplaceServices",
    "NotificationEmitter",
    "NotificationEvent",
    "OrderLifecycleEngine",
    "RecordingNotificationSink",
    "TransactionRunner",
    "UnitOfWork",
    "WalletOperationsEngine",
]
