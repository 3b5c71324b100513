"""
Module: market_kernel.models.order
Responsibility: ORM persistence for orders and their item snapshots.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - order_code is unique and never changes after creation.
    - Order items are written together with the order and never updated.
      They snapshot price and seller at order time and deliberately carry
      no foreign key to products, so history survives product edits and
      deletions.
    - driver_id is only set when the order enters shipping.
    - Status changes go through domain.lifecycle and conditional updates in
      the order engine; see OrderStatus for the allowed graph.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from market_kernel.db.base import Base, TrackedBase, UUIDString


class OrderStatus(str, Enum):
    """
    Order lifecycle status.

        pending -> paid -> preparing -> shipping -> delivered
        pending -> preparing
        pending | paid -> cancelled
    """

    PENDING = "pending"
    PAID = "paid"
    PREPARING = "preparing"
    SHIPPING = "shipping"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    WALLET = "wallet"
    CASH = "cash"


class Order(TrackedBase):
    """A buyer's order across one or more sellers."""

    __tablename__ = "orders"

    __table_args__ = (
        UniqueConstraint("order_code", name="uq_order_code"),
        CheckConstraint("total > 0", name="ck_order_total_positive"),
        CheckConstraint("wash_quantity >= 0", name="ck_order_wash_non_negative"),
        Index("idx_order_buyer", "buyer_id"),
        Index("idx_order_status", "status"),
        Index("idx_order_driver", "driver_id"),
    )

    order_code: Mapped[str] = mapped_column(String(32), nullable=False)

    buyer_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("users.id"),
        nullable=False,
    )

    total: Mapped[int] = mapped_column(nullable=False)

    wash_quantity: Mapped[int] = mapped_column(nullable=False, default=0)

    wash_fee: Mapped[int] = mapped_column(nullable=False, default=0)

    shipping_address: Mapped[str] = mapped_column(String(500), nullable=False)

    payment_method: Mapped[PaymentMethod] = mapped_column(String(20), nullable=False)

    status: Mapped[OrderStatus] = mapped_column(
        String(20),
        nullable=False,
        default=OrderStatus.PENDING,
    )

    driver_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("drivers.id"),
        nullable=True,
    )

    shipped_at: Mapped[datetime | None] = mapped_column(nullable=True)

    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    driver_rating: Mapped[int | None] = mapped_column(nullable=True)

    driver_comment: Mapped[str | None] = mapped_column(String(500), nullable=True)

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order",
        order_by="OrderItem.line_number",
        lazy="selectin",
    )

    @property
    def is_wallet_paid(self) -> bool:
        return self.payment_method == PaymentMethod.WALLET

    @property
    def seller_ids(self) -> list[UUID]:
        """Distinct sellers in item order."""
        seen: list[UUID] = []
        for item in self.items:
            if item.seller_id not in seen:
                seen.append(item.seller_id)
        return seen

    def __repr__(self) -> str:
        return f"<Order {self.order_code} {self.status} total={self.total}>"


class OrderItem(Base):
    """Snapshot of one ordered product line."""

    __tablename__ = "order_items"

    __table_args__ = (
        UniqueConstraint("order_id", "line_number", name="uq_order_item_line"),
        CheckConstraint("quantity > 0", name="ck_order_item_quantity_positive"),
        Index("idx_order_item_seller", "seller_id"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=False,
    )

    line_number: Mapped[int] = mapped_column(nullable=False)

    product_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    seller_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    product_name: Mapped[str] = mapped_column(String(200), nullable=False)

    quantity: Mapped[int] = mapped_column(nullable=False)

    unit_price: Mapped[int] = mapped_column(nullable=False)

    total_price: Mapped[int] = mapped_column(nullable=False)

    order: Mapped[Order] = relationship(back_populates="items")
