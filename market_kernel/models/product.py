"""
Module: market_kernel.models.product
Responsibility: ORM persistence for sellable products and their stock level.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - quantity >= 0 (ck_product_quantity_non_negative).
    - price > 0 (ck_product_price_positive).
    - status is derived from quantity (active iff quantity > 0, otherwise
      out_of_stock) unless the product was manually deactivated.  Only
      InventoryGuard writes quantity and status.
"""

from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from market_kernel.db.base import TrackedBase, UUIDString


class ProductStatus(str, Enum):
    ACTIVE = "active"
    OUT_OF_STOCK = "out_of_stock"
    INACTIVE = "inactive"


class Product(TrackedBase):
    """A seller's product listed in a market."""

    __tablename__ = "products"

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_product_quantity_non_negative"),
        CheckConstraint("price > 0", name="ck_product_price_positive"),
        Index("idx_product_seller", "seller_id"),
        Index("idx_product_status", "status"),
    )

    seller_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("users.id"),
        nullable=False,
    )

    market_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    price: Mapped[int] = mapped_column(nullable=False)

    quantity: Mapped[int] = mapped_column(nullable=False, default=0)

    status: Mapped[ProductStatus] = mapped_column(
        String(20),
        nullable=False,
        default=ProductStatus.ACTIVE,
    )

    def __repr__(self) -> str:
        return f"<Product {self.name} qty={self.quantity} ({self.status})>"
