"""
market_services.container -- MarketplaceServices, the DI container.

Responsibility:
    Builds the TransactionRunner, both engines and the CommandGateway
    exactly once from a MarketplaceConfig and wires them together.  No
    engine constructs another engine or its own runner.

Architecture position:
    Services -- top of the service layer; the only place where the
    runtime object graph is assembled.

Usage:
    services = MarketplaceServices.from_config(get_active_config())
    seller = services.register_user("Amal", "seller")
    services.gateway.execute(ctx, "order.place", {...})
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from market_config.schema import MarketplaceConfig
from market_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from market_kernel.domain.clock import Clock, SystemClock
from market_kernel.logging_config import get_logger
from market_kernel.models.product import Product
from market_kernel.models.user import User, UserRole
from market_kernel.services.account_service import AccountService
from market_kernel.services.inventory_guard import InventoryGuard
from market_services.commands import CommandGateway
from market_services.notifications import NotificationEmitter
from market_services.order_lifecycle import OrderLifecycleEngine
from market_services.unit_of_work import TransactionRunner
from market_services.wallet_operations import WalletOperationsEngine

logger = get_logger("services.container")


class MarketplaceServices:
    """
    The wired service graph.

    Attributes:
        runner: shared TransactionRunner (one retry policy for everything).
        orders: OrderLifecycleEngine.
        wallet: WalletOperationsEngine.
        gateway: CommandGateway over both engines.
    """

    def __init__(
        self,
        config: MarketplaceConfig,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        emitter: NotificationEmitter | None = None,
    ):
        self.config = config
        self.clock = clock or SystemClock()
        self.emitter = emitter or NotificationEmitter()
        self.runner = TransactionRunner(session_factory, self.emitter, config.retry)
        self.orders = OrderLifecycleEngine(
            self.runner, config.orders, config.idempotency, self.clock
        )
        self.wallet = WalletOperationsEngine(
            self.runner, config.wallet, config.idempotency, self.clock
        )
        self.gateway = CommandGateway(self.orders, self.wallet)

    @classmethod
    def from_config(
        cls,
        config: MarketplaceConfig,
        clock: Clock | None = None,
        emitter: NotificationEmitter | None = None,
    ) -> MarketplaceServices:
        """Initialise the engine from ``config.database`` and create the schema."""
        db = config.database
        init_engine_from_url(
            db.url,
            echo=db.echo,
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            busy_timeout_seconds=db.busy_timeout_seconds,
        )
        create_tables()
        logger.info("marketplace_services_ready", extra={"config_checksum": config.checksum})
        return cls(config, get_session_factory(), clock=clock, emitter=emitter)

    # Provisioning.  These run outside any caller context: they back
    # account sign-up and the seller catalog, which live elsewhere.

    def register_user(
        self,
        name: str,
        role: UserRole | str,
        email: str | None = None,
        phone: str | None = None,
        opening_balance: int = 0,
        vehicle_type: str | None = None,
        market_id: UUID | None = None,
    ) -> User:
        return self.runner.run(
            "account.register",
            lambda uow: AccountService(uow.session, self.clock).register_user(
                name,
                role,
                email=email,
                phone=phone,
                opening_balance=opening_balance,
                vehicle_type=vehicle_type,
                market_id=market_id,
            ),
        )

    def register_product(
        self,
        seller_id: UUID,
        name: str,
        price: int,
        quantity: int,
        market_id: UUID | None = None,
    ) -> Product:
        return self.runner.run(
            "catalog.register_product",
            lambda uow: InventoryGuard(uow.session, self.clock).register_product(
                seller_id, name, price, quantity, market_id=market_id
            ),
        )

    def restock(self, product_id: UUID, quantity: int) -> Product:
        return self.runner.run(
            "catalog.restock",
            lambda uow: InventoryGuard(uow.session, self.clock).restock(product_id, quantity),
        )

    def deactivate(self, product_id: UUID) -> Product:
        return self.runner.run(
            "catalog.deactivate",
            lambda uow: InventoryGuard(uow.session, self.clock).deactivate(product_id),
        )
