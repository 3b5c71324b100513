"""
DriverAssignmentCoordinator -- driver availability in lock-step with orders.

Responsibility:
    The only code path that writes ``drivers.status``.  Assigning a driver
    moves the order to shipping and the driver to busy in the same unit of
    work; delivery (or reassignment) releases the driver back to
    available.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the order lifecycle
    engine and by the driver availability command.

Invariants enforced:
    - A driver is busy exactly while an order assigned to them is
      shipping.  ``assign`` claims the driver with a conditional UPDATE
      ``WHERE status = 'available'`` so two concurrent assignments cannot
      both win the same driver.
    - A busy driver cannot go offline or available on their own.

Failure modes:
    - OrderNotFoundError / DriverNotFoundError for missing rows.
    - InvalidTransitionError when the order is not preparing or shipping.
    - DriverUnavailableError when the driver is busy or offline.
"""

from uuid import UUID

from sqlalchemy import and_, select, update

from market_kernel.domain import lifecycle
from market_kernel.exceptions import (
    ConcurrencyConflictError,
    DriverNotFoundError,
    DriverUnavailableError,
    InvalidTransitionError,
    OrderNotFoundError,
    ValidationError,
)
from market_kernel.invariants import MarketInvariant
from market_kernel.logging_config import get_logger
from market_kernel.models.driver import Driver, DriverStatus
from market_kernel.models.order import Order, OrderStatus
from market_kernel.services.base import BaseService

logger = get_logger("services.driver_coordinator")

SELF_SERVICE_STATUSES = (DriverStatus.AVAILABLE.value, DriverStatus.OFFLINE.value)


class DriverAssignmentCoordinator(BaseService):

    def register_driver(
        self,
        user_id: UUID,
        vehicle_type: str | None = None,
        market_id: UUID | None = None,
    ) -> Driver:
        now = self.clock.now()
        driver = Driver(
            user_id=user_id,
            vehicle_type=vehicle_type,
            market_id=market_id,
            status=DriverStatus.OFFLINE.value,
            rating_sum=0,
            rating_count=0,
            created_at=now,
            updated_at=now,
        )
        self.session.add(driver)
        self.session.flush()
        logger.info(
            "driver_registered",
            extra={"driver_id": str(driver.id), "user_id": str(user_id)},
        )
        return driver

    def get_driver(self, driver_id: UUID) -> Driver:
        driver = self.session.execute(
            select(Driver)
            .where(Driver.id == driver_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if driver is None:
            raise DriverNotFoundError(driver_id)
        return driver

    def driver_for_user(self, user_id: UUID) -> Driver:
        driver = self.session.execute(
            select(Driver)
            .where(Driver.user_id == user_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if driver is None:
            raise DriverNotFoundError(user_id)
        return driver

    def _lock_order(self, order_id: UUID) -> Order:
        order = self.session.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    def assign(self, order_id: UUID, driver_id: UUID) -> tuple[Order, Driver, UUID | None]:
        """
        Put ``driver_id`` on the order and move the order to shipping.

        A shipping order may be reassigned; the previous driver is released
        in the same unit of work.

        Returns:
            (order, driver, previous_driver_id)
        """
        order = self._lock_order(order_id)
        lifecycle.validate_transition(order.id, order.status, OrderStatus.SHIPPING.value)

        now = self.clock.now()
        claimed = self.session.execute(
            update(Driver)
            .where(
                and_(
                    Driver.id == driver_id,
                    Driver.status == DriverStatus.AVAILABLE.value,
                )
            )
            .values(status=DriverStatus.BUSY.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            driver = self.session.get(Driver, driver_id, populate_existing=True)
            if driver is None:
                raise DriverNotFoundError(driver_id)
            logger.info(
                "driver_assignment_rejected",
                extra={
                    "order_id": str(order_id),
                    "driver_id": str(driver_id),
                    "driver_status": driver.status,
                },
            )
            raise DriverUnavailableError(driver_id=driver_id, status=driver.status)

        previous_driver_id = order.driver_id
        moved = self.session.execute(
            update(Order)
            .where(
                and_(
                    Order.id == order_id,
                    Order.status.in_(
                        [s.value for s in lifecycle.sources_for(OrderStatus.SHIPPING)]
                    ),
                )
            )
            .values(
                status=OrderStatus.SHIPPING.value,
                driver_id=driver_id,
                shipped_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if moved.rowcount != 1:
            raise ConcurrencyConflictError("assign_driver", "order status changed concurrently")

        if previous_driver_id is not None and previous_driver_id != driver_id:
            self.release(previous_driver_id)

        order = self.session.get(Order, order_id, populate_existing=True)
        driver = self.get_driver(driver_id)
        logger.info(
            "driver_assigned",
            extra={
                "order_id": str(order_id),
                "driver_id": str(driver_id),
                "previous_driver_id": str(previous_driver_id) if previous_driver_id else None,
                "invariant": MarketInvariant.DRIVER_LOCKSTEP.value,
            },
        )
        return order, driver, previous_driver_id

    def release(self, driver_id: UUID) -> bool:
        """
        Return a busy driver to available.

        Returns False when the driver was not busy; that is logged since it
        means the lock-step between order and driver was already broken.
        """
        result = self.session.execute(
            update(Driver)
            .where(
                and_(Driver.id == driver_id, Driver.status == DriverStatus.BUSY.value)
            )
            .values(status=DriverStatus.AVAILABLE.value, updated_at=self.clock.now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "driver_release_not_busy",
                extra={
                    "driver_id": str(driver_id),
                    "invariant": MarketInvariant.DRIVER_LOCKSTEP.value,
                },
            )
            return False
        logger.info("driver_released", extra={"driver_id": str(driver_id)})
        return True

    def set_availability(self, driver_id: UUID, status: str) -> Driver:
        """
        Driver-initiated switch between available and offline.

        Raises:
            ValidationError: status is not available/offline.
            InvalidTransitionError: the driver is busy with a delivery.
        """
        if status not in SELF_SERVICE_STATUSES:
            raise ValidationError("status", f"must be one of {', '.join(SELF_SERVICE_STATUSES)}")

        result = self.session.execute(
            update(Driver)
            .where(and_(Driver.id == driver_id, Driver.status.in_(SELF_SERVICE_STATUSES)))
            .values(status=status, updated_at=self.clock.now())
            .execution_options(synchronize_session=False)
        )
        driver = self.get_driver(driver_id)
        if result.rowcount != 1:
            raise InvalidTransitionError(
                entity_id=driver_id, current=driver.status, target=status
            )
        logger.info(
            "driver_availability_changed",
            extra={"driver_id": str(driver_id), "driver_status": status},
        )
        return driver

    def record_rating(self, driver_id: UUID, rating: int) -> Driver:
        self.session.execute(
            update(Driver)
            .where(Driver.id == driver_id)
            .values(
                rating_sum=Driver.rating_sum + rating,
                rating_count=Driver.rating_count + 1,
                updated_at=self.clock.now(),
            )
            .execution_options(synchronize_session=False)
        )
        return self.get_driver(driver_id)
