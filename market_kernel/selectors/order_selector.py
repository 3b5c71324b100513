"""
Module: market_kernel.selectors.order_selector
Responsibility: Read model for a single order with its item snapshots,
    assigned driver and tracking timestamps.
"""

from datetime import timedelta
from uuid import UUID

from sqlalchemy import select

from market_kernel.domain.dtos import DriverSummary, OrderItemView, OrderView
from market_kernel.exceptions import OrderNotFoundError
from market_kernel.models.driver import Driver
from market_kernel.models.order import Order
from market_kernel.models.user import User
from market_kernel.selectors.base import BaseSelector


def driver_summary(driver: Driver, name: str) -> DriverSummary:
    return DriverSummary(
        driver_id=driver.id,
        user_id=driver.user_id,
        name=name,
        vehicle_type=driver.vehicle_type,
        status=driver.status,
        rating=driver.rating,
    )


class OrderSelector(BaseSelector):

    def get_driver_summary(self, driver_id: UUID) -> DriverSummary | None:
        row = self.session.execute(
            select(Driver, User.name)
            .join(User, User.id == Driver.user_id)
            .where(Driver.id == driver_id)
            .execution_options(populate_existing=True)
        ).first()
        if row is None:
            return None
        return driver_summary(row[0], row[1])

    def get_order(self, order_id: UUID, estimated_delivery_minutes: int = 120) -> OrderView:
        """
        Raises:
            OrderNotFoundError: no such order.
        """
        order = self.session.execute(
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(order_id)

        driver = self.get_driver_summary(order.driver_id) if order.driver_id else None
        items = tuple(
            OrderItemView(
                product_id=item.product_id,
                seller_id=item.seller_id,
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total_price=item.total_price,
            )
            for item in order.items
        )
        return OrderView(
            order_id=order.id,
            order_code=order.order_code,
            buyer_id=order.buyer_id,
            status=order.status,
            total=order.total,
            wash_quantity=order.wash_quantity,
            wash_fee=order.wash_fee,
            payment_method=order.payment_method,
            shipping_address=order.shipping_address,
            created_at=order.created_at,
            estimated_delivery=order.created_at + timedelta(minutes=estimated_delivery_minutes),
            items=items,
            driver=driver,
            shipped_at=order.shipped_at,
            delivered_at=order.delivered_at,
            cancelled_at=order.cancelled_at,
            driver_rating=order.driver_rating,
        )
