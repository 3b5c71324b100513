"""
market_services.order_lifecycle -- Order Lifecycle Engine.

Responsibility:
    Orchestrates order placement, cancellation and every status
    transition (paid, preparing, shipping, delivered), plus the driver
    rating and driver availability operations that hang off the delivery
    flow.  Each public method is one unit of work run by the
    TransactionRunner.

Architecture position:
    Services -- stateless orchestration over kernel services.  All money
    moves through LedgerStore, all stock through InventoryGuard, all driver
    status through DriverAssignmentCoordinator.

Invariants enforced:
    - Atomic placement: stock reservations, the order row, its items and
      the wallet debit commit together; any failure leaves no trace.
    - Round trip: cancellation releases exactly the item snapshot
      quantities and refunds exactly the order total.
    - One-way lifecycle: every status write is a conditional UPDATE on the
      allowed source statuses from ``domain.lifecycle``.
    - Reservations are taken in product-id order so concurrent multi-item
      orders lock rows in the same order.

Failure modes:
    - AuthorizationError before any unit of work opens, or after an
      ownership check fails.
    - ValidationError, OutOfStockError, ProductNotFoundError,
      InsufficientBalanceError, NotCancellableError,
      InvalidTransitionError, DriverUnavailableError and NotFoundError
      subclasses from inside the unit of work (always rolled back).
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any
from uuid import UUID

from sqlalchemy import and_, select, update

from market_config.schema import IdempotencyConfig, OrderConfig
from market_kernel.domain import lifecycle
from market_kernel.domain.authorization import Action, authorize, deny
from market_kernel.domain.caller import CallerContext
from market_kernel.domain.clock import Clock, SystemClock
from market_kernel.domain.codes import generate_order_code
from market_kernel.domain.dtos import (
    DriverAssignment,
    DriverAvailability,
    DriverRating,
    OrderLine,
    OrderStatusChange,
    OrderView,
    PlacedOrder,
)
from market_kernel.domain.fees import wash_fee
from market_kernel.domain.validation import (
    require_choice,
    require_int,
    require_non_negative_int,
    require_positive_int,
    require_text,
    require_uuid,
)
from market_kernel.exceptions import (
    ConcurrencyConflictError,
    NotCancellableError,
    OrderNotFoundError,
    ValidationError,
)
from market_kernel.logging_config import get_logger
from market_kernel.models.ledger import LedgerEntryType, LedgerMethod
from market_kernel.models.order import Order, OrderItem, OrderStatus, PaymentMethod
from market_kernel.models.user import UserRole
from market_kernel.selectors.order_selector import OrderSelector
from market_kernel.services.account_service import AccountService
from market_kernel.services.driver_coordinator import DriverAssignmentCoordinator
from market_kernel.services.idempotency_store import IdempotencyStore
from market_kernel.services.inventory_guard import InventoryGuard
from market_kernel.services.ledger_store import LedgerStore
from market_services.notifications import NotificationEvent
from market_services.unit_of_work import TransactionRunner, UnitOfWork

logger = get_logger("services.order_lifecycle")

PLACE_ORDER_OPERATION = "order.place"

PAYMENT_METHODS = tuple(m.value for m in PaymentMethod)


def parse_order_lines(items: Iterable[OrderLine | Mapping[str, Any]]) -> list[OrderLine]:
    """
    Normalize cart lines.  Accepts OrderLine instances or
    ``{"productId"|"product_id": ..., "quantity": ...}`` mappings.
    """
    if isinstance(items, (str, bytes)) or not isinstance(items, Iterable):
        raise ValidationError("items", "must be a list of order lines")
    lines: list[OrderLine] = []
    for index, item in enumerate(items):
        if isinstance(item, OrderLine):
            product_id, quantity = item.product_id, item.quantity
        elif isinstance(item, Mapping):
            product_id = item.get("productId", item.get("product_id"))
            quantity = item.get("quantity")
        else:
            raise ValidationError(f"items[{index}]", "must be an order line")
        lines.append(
            OrderLine(
                product_id=require_uuid(f"items[{index}].productId", product_id),
                quantity=require_positive_int(f"items[{index}].quantity", quantity),
            )
        )
    if not lines:
        raise ValidationError("items", "must contain at least one line")
    return lines


class OrderLifecycleEngine:
    """
    Order placement, cancellation and status transitions.

    Contract:
        Every public method takes an explicit CallerContext, checks the
        role gate, then runs one unit of work.  Results are frozen DTOs.
    """

    def __init__(
        self,
        runner: TransactionRunner,
        config: OrderConfig | None = None,
        idempotency: IdempotencyConfig | None = None,
        clock: Clock | None = None,
    ):
        self._runner = runner
        self.config = config or OrderConfig()
        self.idempotency = idempotency or IdempotencyConfig()
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lock_order(self, uow: UnitOfWork, order_id: UUID) -> Order:
        order = uow.session.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    def _move(self, uow: UnitOfWork, order: Order, target: OrderStatus, **values: Any) -> None:
        """Apply a validated transition as a conditional update."""
        lifecycle.validate_transition(order.id, order.status, target.value)
        now = self._clock.now()
        result = uow.session.execute(
            update(Order)
            .where(
                and_(
                    Order.id == order.id,
                    Order.status.in_([s.value for s in lifecycle.sources_for(target)]),
                )
            )
            .values(status=target.value, updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrencyConflictError(
                f"order.{target.value}", f"order {order.id} changed concurrently"
            )
        logger.info(
            "order_status_changed",
            extra={
                "order_id": str(order.id),
                "from_status": order.status,
                "to_status": target.value,
            },
        )

    def _require_seller_or_admin(self, ctx: CallerContext, order: Order, action: Action) -> None:
        if ctx.is_admin:
            return
        if ctx.user_id not in order.seller_ids:
            raise deny(ctx, action, "seller has no items in this order")

    def _notify_parties(
        self,
        uow: UnitOfWork,
        order: Order,
        event_type: str,
        title: str,
        message: str,
        include_sellers: bool = False,
        amount: int | None = None,
    ) -> None:
        uow.add_event(
            NotificationEvent(
                type=event_type,
                user_id=order.buyer_id,
                title=title,
                message=message,
                kind="order",
                order_id=order.id,
                amount=amount,
            )
        )
        if include_sellers:
            for seller_id in order.seller_ids:
                uow.add_event(
                    NotificationEvent(
                        type=event_type,
                        user_id=seller_id,
                        title=title,
                        message=message,
                        kind="order",
                        order_id=order.id,
                    )
                )

    # ------------------------------------------------------------------
    # Placement and cancellation
    # ------------------------------------------------------------------

    def place_order(
        self,
        ctx: CallerContext,
        items: Iterable[OrderLine | Mapping[str, Any]],
        shipping_address: str,
        payment_method: str,
        wash_quantity: int = 0,
        idempotency_key: str | None = None,
    ) -> PlacedOrder:
        """
        Create an order, reserving stock and (for wallet payment) debiting
        the buyer, all in one unit of work.

        Not idempotent unless ``idempotency_key`` is given: a repeated key
        returns the first result without creating another order.

        Raises:
            ValidationError, ProductNotFoundError, OutOfStockError,
            InsufficientBalanceError, AuthorizationError.
        """
        authorize(ctx, Action.PLACE_ORDER)
        lines = parse_order_lines(items)
        shipping_address = require_text(
            "shippingAddress", shipping_address, self.config.shipping_address_max_length
        )
        payment_method = require_choice("paymentMethod", payment_method, PAYMENT_METHODS)
        wash_quantity = require_non_negative_int("washQuantity", wash_quantity)

        def work(uow: UnitOfWork) -> PlacedOrder:
            store = IdempotencyStore(uow.session, self._clock, self.idempotency.ttl_seconds)
            if idempotency_key is not None:
                stored = store.lookup(ctx.user_id, PLACE_ORDER_OPERATION, idempotency_key)
                if stored is not None:
                    return PlacedOrder.from_payload(stored)

            AccountService(uow.session, self._clock).require_active_user(ctx.user_id)
            inventory = InventoryGuard(uow.session, self._clock)

            snapshots: dict[int, tuple] = {}
            for index, line in sorted(enumerate(lines), key=lambda p: str(p[1].product_id)):
                product = inventory.reserve(line.product_id, line.quantity)
                snapshots[index] = (product.price, product.seller_id, product.name)

            now = self._clock.now()
            fee = wash_fee(wash_quantity, self.config.wash_fee_per_unit)
            order = Order(
                order_code=generate_order_code(self.config.order_code_prefix, now),
                buyer_id=ctx.user_id,
                total=0,
                wash_quantity=wash_quantity,
                wash_fee=fee,
                shipping_address=shipping_address,
                payment_method=payment_method,
                status=OrderStatus.PENDING.value,
                created_at=now,
                updated_at=now,
            )
            subtotal = 0
            for index, line in enumerate(lines):
                price, seller_id, name = snapshots[index]
                line_total = price * line.quantity
                subtotal += line_total
                order.items.append(
                    OrderItem(
                        line_number=index + 1,
                        product_id=line.product_id,
                        seller_id=seller_id,
                        product_name=name,
                        quantity=line.quantity,
                        unit_price=price,
                        total_price=line_total,
                    )
                )
            order.total = subtotal + fee
            uow.session.add(order)
            uow.session.flush()

            if payment_method == PaymentMethod.WALLET.value:
                LedgerStore(uow.session, self._clock).debit(
                    ctx.user_id,
                    order.total,
                    LedgerEntryType.PURCHASE,
                    LedgerMethod.WALLET.value,
                    order_id=order.id,
                    reference=order.order_code,
                )

            self._notify_parties(
                uow,
                order,
                "order_placed",
                "Order placed",
                f"Order #{order.order_code} was placed",
                include_sellers=True,
                amount=order.total,
            )
            logger.info(
                "order_placed",
                extra={
                    "order_id": str(order.id),
                    "order_code": order.order_code,
                    "buyer_id": str(ctx.user_id),
                    "total": order.total,
                    "payment_method": payment_method,
                    "line_count": len(lines),
                },
            )

            result = PlacedOrder(
                order_id=order.id,
                order_code=order.order_code,
                total=order.total,
                status=OrderStatus.PENDING.value,
            )
            if idempotency_key is not None:
                store.remember(
                    ctx.user_id, PLACE_ORDER_OPERATION, idempotency_key, result.to_payload()
                )
            return result

        return self._runner.run(PLACE_ORDER_OPERATION, work, **ctx.log_fields())

    def cancel_order(self, ctx: CallerContext, order_id: UUID) -> OrderStatusChange:
        """
        Cancel a pending or paid order of the calling buyer, restoring
        stock from the item snapshots and refunding a wallet payment.

        Raises:
            OrderNotFoundError, NotCancellableError, AuthorizationError.
        """
        authorize(ctx, Action.CANCEL_ORDER)

        def work(uow: UnitOfWork) -> OrderStatusChange:
            order = self._lock_order(uow, order_id)
            if order.buyer_id != ctx.user_id:
                raise NotCancellableError(order_id, order.status, "order belongs to another buyer")
            if OrderStatus(order.status) not in lifecycle.CANCELLABLE_STATUSES:
                raise NotCancellableError(
                    order_id, order.status, f"order is already {order.status}"
                )

            now = self._clock.now()
            result = uow.session.execute(
                update(Order)
                .where(
                    and_(
                        Order.id == order_id,
                        Order.status.in_([s.value for s in lifecycle.CANCELLABLE_STATUSES]),
                    )
                )
                .values(status=OrderStatus.CANCELLED.value, cancelled_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConcurrencyConflictError("order.cancel", f"order {order_id} changed concurrently")

            inventory = InventoryGuard(uow.session, self._clock)
            for item in sorted(order.items, key=lambda i: str(i.product_id)):
                inventory.release(item.product_id, item.quantity)

            refunded = None
            if order.is_wallet_paid:
                LedgerStore(uow.session, self._clock).credit(
                    order.buyer_id,
                    order.total,
                    LedgerEntryType.REFUND,
                    LedgerMethod.WALLET.value,
                    order_id=order.id,
                    reference=order.order_code,
                )
                refunded = order.total

            self._notify_parties(
                uow,
                order,
                "order_cancelled",
                "Order cancelled",
                f"Order #{order.order_code} was cancelled",
                amount=refunded,
            )
            logger.info(
                "order_cancelled",
                extra={
                    "order_id": str(order_id),
                    "from_status": order.status,
                    "refunded": refunded or 0,
                },
            )
            return OrderStatusChange(order_id=order_id, status=OrderStatus.CANCELLED.value)

        return self._runner.run("order.cancel", work, **ctx.log_fields(), order_id=order_id)

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def mark_paid(self, ctx: CallerContext, order_id: UUID) -> OrderStatusChange:
        """pending -> paid, by a seller in the order or an admin."""
        authorize(ctx, Action.MARK_PAID)

        def work(uow: UnitOfWork) -> OrderStatusChange:
            order = self._lock_order(uow, order_id)
            self._require_seller_or_admin(ctx, order, Action.MARK_PAID)
            self._move(uow, order, OrderStatus.PAID)
            self._notify_parties(
                uow, order, "order_paid", "Payment received",
                f"Payment for order #{order.order_code} was received",
            )
            return OrderStatusChange(order_id=order_id, status=OrderStatus.PAID.value)

        return self._runner.run("order.mark_paid", work, **ctx.log_fields(), order_id=order_id)

    def mark_preparing(self, ctx: CallerContext, order_id: UUID) -> OrderStatusChange:
        """pending | paid -> preparing, by a seller in the order or an admin."""
        authorize(ctx, Action.MARK_PREPARING)

        def work(uow: UnitOfWork) -> OrderStatusChange:
            order = self._lock_order(uow, order_id)
            self._require_seller_or_admin(ctx, order, Action.MARK_PREPARING)
            self._move(uow, order, OrderStatus.PREPARING)
            self._notify_parties(
                uow, order, "order_preparing", "Order in preparation",
                f"Order #{order.order_code} is being prepared",
            )
            return OrderStatusChange(order_id=order_id, status=OrderStatus.PREPARING.value)

        return self._runner.run("order.mark_preparing", work, **ctx.log_fields(), order_id=order_id)

    def assign_driver(self, ctx: CallerContext, order_id: UUID, driver_id: UUID) -> DriverAssignment:
        """
        preparing -> shipping with ``driver_id`` (admin).  Assigning a
        shipping order again reassigns it and releases the previous driver.

        Raises:
            OrderNotFoundError, DriverNotFoundError, InvalidTransitionError,
            DriverUnavailableError, AuthorizationError.
        """
        authorize(ctx, Action.ASSIGN_DRIVER)

        def work(uow: UnitOfWork) -> DriverAssignment:
            coordinator = DriverAssignmentCoordinator(uow.session, self._clock)
            order, driver, previous_driver_id = coordinator.assign(order_id, driver_id)
            summary = OrderSelector(uow.session).get_driver_summary(driver.id)

            self._notify_parties(
                uow, order, "driver_assigned", "Order on its way",
                f"Driver {summary.name} is delivering order #{order.order_code}",
            )
            uow.add_event(
                NotificationEvent(
                    type="delivery_assigned",
                    user_id=driver.user_id,
                    title="New delivery",
                    message=f"Order #{order.order_code} to {order.shipping_address}",
                    kind="delivery",
                    order_id=order.id,
                )
            )
            if previous_driver_id is not None and previous_driver_id != driver.id:
                previous = coordinator.get_driver(previous_driver_id)
                uow.add_event(
                    NotificationEvent(
                        type="delivery_reassigned",
                        user_id=previous.user_id,
                        title="Delivery reassigned",
                        message=f"Order #{order.order_code} was reassigned",
                        kind="delivery",
                        order_id=order.id,
                    )
                )
            return DriverAssignment(
                order_id=order.id,
                status=order.status,
                driver=summary,
                previous_driver_id=previous_driver_id,
            )

        return self._runner.run("order.assign_driver", work, **ctx.log_fields(), order_id=order_id)

    def mark_delivered(self, ctx: CallerContext, order_id: UUID) -> OrderStatusChange:
        """
        shipping -> delivered, by the assigned driver or an admin.  The
        driver returns to available in the same unit of work.
        """
        authorize(ctx, Action.MARK_DELIVERED)

        def work(uow: UnitOfWork) -> OrderStatusChange:
            coordinator = DriverAssignmentCoordinator(uow.session, self._clock)
            order = self._lock_order(uow, order_id)
            if not ctx.is_admin:
                driver = coordinator.driver_for_user(ctx.user_id)
                if order.driver_id != driver.id:
                    raise deny(ctx, Action.MARK_DELIVERED, "order is assigned to another driver")

            now = self._clock.now()
            self._move(uow, order, OrderStatus.DELIVERED, delivered_at=now)
            coordinator.release(order.driver_id)

            self._notify_parties(
                uow, order, "order_delivered", "Order delivered",
                f"Order #{order.order_code} was delivered",
                include_sellers=True,
            )
            return OrderStatusChange(order_id=order_id, status=OrderStatus.DELIVERED.value)

        return self._runner.run("order.mark_delivered", work, **ctx.log_fields(), order_id=order_id)

    # ------------------------------------------------------------------
    # Drivers
    # ------------------------------------------------------------------

    def rate_driver(
        self,
        ctx: CallerContext,
        order_id: UUID,
        rating: int,
        comment: str | None = None,
    ) -> DriverRating:
        """Rate the driver of a delivered order, once, by its buyer."""
        authorize(ctx, Action.RATE_DRIVER)
        rating = require_int("rating", rating)
        if not 1 <= rating <= 5:
            raise ValidationError("rating", "must be between 1 and 5")
        if comment is not None:
            comment = require_text("comment", comment, max_length=500)

        def work(uow: UnitOfWork) -> DriverRating:
            order = self._lock_order(uow, order_id)
            if order.buyer_id != ctx.user_id:
                raise deny(ctx, Action.RATE_DRIVER, "order belongs to another buyer")
            if order.status != OrderStatus.DELIVERED.value or order.driver_id is None:
                raise ValidationError("orderId", "only delivered orders can be rated")

            result = uow.session.execute(
                update(Order)
                .where(and_(Order.id == order_id, Order.driver_rating.is_(None)))
                .values(
                    driver_rating=rating,
                    driver_comment=comment,
                    updated_at=self._clock.now(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ValidationError("rating", "order was already rated")

            driver = DriverAssignmentCoordinator(uow.session, self._clock).record_rating(
                order.driver_id, rating
            )
            uow.add_event(
                NotificationEvent(
                    type="driver_rated",
                    user_id=driver.user_id,
                    title="New rating",
                    message=f"You were rated {rating}/5 for order #{order.order_code}",
                    kind="delivery",
                    order_id=order.id,
                )
            )
            logger.info(
                "driver_rated",
                extra={"order_id": str(order_id), "driver_id": str(driver.id), "rating": rating},
            )
            return DriverRating(
                order_id=order_id, driver_id=driver.id, rating=rating, average=driver.rating
            )

        return self._runner.run("order.rate_driver", work, **ctx.log_fields(), order_id=order_id)

    def set_driver_availability(self, ctx: CallerContext, status: str) -> DriverAvailability:
        """The calling driver goes available or offline; refused while busy."""
        authorize(ctx, Action.SET_AVAILABILITY)

        def work(uow: UnitOfWork) -> DriverAvailability:
            coordinator = DriverAssignmentCoordinator(uow.session, self._clock)
            driver = coordinator.driver_for_user(ctx.user_id)
            driver = coordinator.set_availability(driver.id, status)
            return DriverAvailability(driver_id=driver.id, status=driver.status)

        return self._runner.run("driver.set_availability", work, **ctx.log_fields())

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_order(self, ctx: CallerContext, order_id: UUID) -> OrderView:
        """
        The order with items, driver and tracking data.  Visible to its
        buyer, sellers with items in it, its assigned driver and admins.
        """
        authorize(ctx, Action.VIEW_ORDER)

        def work(uow: UnitOfWork) -> OrderView:
            view = OrderSelector(uow.session).get_order(
                order_id, self.config.estimated_delivery_minutes
            )
            if ctx.is_admin or view.buyer_id == ctx.user_id:
                return view
            if ctx.role == UserRole.SELLER and any(
                item.seller_id == ctx.user_id for item in view.items
            ):
                return view
            if (
                ctx.role == UserRole.DRIVER
                and view.driver is not None
                and view.driver.user_id == ctx.user_id
            ):
                return view
            raise deny(ctx, Action.VIEW_ORDER, "not a party to this order")

        return self._runner.run("order.get", work, **ctx.log_fields(), order_id=order_id)
