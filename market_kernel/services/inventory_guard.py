"""
InventoryGuard -- product stock and stock-derived status.

Responsibility:
    The only code path that writes ``products.quantity`` or
    ``products.status``.  ``reserve`` and ``release`` run inside a larger
    unit of work (order placement and cancellation); the catalog
    primitives ``register_product``, ``restock`` and ``deactivate`` are
    used by catalog management.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - Non-negative stock: ``reserve`` is one conditional UPDATE
      ``SET quantity = quantity - :n WHERE quantity >= :n AND status = 'active'``.
      There is no read-then-write window.
    - Derived status: the same UPDATE recomputes status from the new
      quantity; a manually deactivated product stays inactive when stock
      is released back to it.

Failure modes:
    - ProductNotFoundError from reserve/restock/deactivate on a missing row.
    - OutOfStockError from reserve when the product is inactive, out of
      stock, or short.
    - release on a deleted product is a logged no-op.
"""

from uuid import UUID

from sqlalchemy import and_, case, select, update

from market_kernel.domain.validation import (
    require_non_negative_int,
    require_positive_int,
    require_text,
)
from market_kernel.exceptions import (
    OutOfStockError,
    ProductNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from market_kernel.invariants import MarketInvariant
from market_kernel.logging_config import get_logger
from market_kernel.models.product import Product, ProductStatus
from market_kernel.models.user import User, UserRole
from market_kernel.services.base import BaseService

logger = get_logger("services.inventory_guard")


def _status_for_quantity(quantity):
    return case(
        (quantity > 0, ProductStatus.ACTIVE.value),
        else_=ProductStatus.OUT_OF_STOCK.value,
    )


class InventoryGuard(BaseService):
    """Stock reservations, releases and catalog stock changes."""

    def get_product(self, product_id: UUID) -> Product:
        product = self.session.execute(
            select(Product)
            .where(Product.id == product_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if product is None:
            raise ProductNotFoundError(product_id)
        return product

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def register_product(
        self,
        seller_id: UUID,
        name: str,
        price: int,
        quantity: int,
        market_id: UUID | None = None,
    ) -> Product:
        """Create a product with its initial stock; status follows quantity."""
        name = require_text("name", name, max_length=200)
        price = require_positive_int("price", price)
        quantity = require_non_negative_int("quantity", quantity)

        seller = self.session.get(User, seller_id)
        if seller is None:
            raise UserNotFoundError(seller_id)
        if seller.role != UserRole.SELLER.value:
            raise ValidationError("seller_id", "user is not a seller")

        now = self.clock.now()
        product = Product(
            seller_id=seller_id,
            market_id=market_id,
            name=name,
            price=price,
            quantity=quantity,
            status=(
                ProductStatus.ACTIVE.value if quantity > 0
                else ProductStatus.OUT_OF_STOCK.value
            ),
            created_at=now,
            updated_at=now,
        )
        self.session.add(product)
        self.session.flush()
        logger.info(
            "product_registered",
            extra={
                "product_id": str(product.id),
                "seller_id": str(seller_id),
                "price": price,
                "quantity": quantity,
            },
        )
        return product

    def restock(self, product_id: UUID, quantity: int) -> Product:
        """Add stock.  Raises ProductNotFoundError for a missing product."""
        quantity = require_positive_int("quantity", quantity)
        if not self._increment(product_id, quantity):
            raise ProductNotFoundError(product_id)
        product = self.get_product(product_id)
        logger.info(
            "product_restocked",
            extra={
                "product_id": str(product_id),
                "added": quantity,
                "quantity": product.quantity,
            },
        )
        return product

    def deactivate(self, product_id: UUID) -> Product:
        """Withdraw a product from sale.  Its stock is kept."""
        result = self.session.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(status=ProductStatus.INACTIVE.value, updated_at=self.clock.now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ProductNotFoundError(product_id)
        logger.info("product_deactivated", extra={"product_id": str(product_id)})
        return self.get_product(product_id)

    # ------------------------------------------------------------------
    # Reservations
    # ------------------------------------------------------------------

    def reserve(self, product_id: UUID, quantity: int) -> Product:
        """
        Atomically take ``quantity`` units out of stock.

        Returns the product as it is after the reservation, for the caller
        to snapshot price and seller.

        Raises:
            ProductNotFoundError: no such product.
            OutOfStockError: inactive, out of stock, or short.
        """
        quantity = require_positive_int("quantity", quantity)
        result = self.session.execute(
            update(Product)
            .where(
                and_(
                    Product.id == product_id,
                    Product.status == ProductStatus.ACTIVE.value,
                    Product.quantity >= quantity,
                )
            )
            .values(
                quantity=Product.quantity - quantity,
                status=_status_for_quantity(Product.quantity - quantity),
                updated_at=self.clock.now(),
            )
            .execution_options(synchronize_session=False)
        )
        product = self.session.execute(
            select(Product)
            .where(Product.id == product_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if result.rowcount != 1:
            if product is None:
                raise ProductNotFoundError(product_id)
            available = product.quantity if product.status == ProductStatus.ACTIVE.value else 0
            logger.info(
                "stock_reservation_rejected",
                extra={
                    "product_id": str(product_id),
                    "requested": quantity,
                    "available": available,
                    "product_status": product.status,
                    "invariant": MarketInvariant.NON_NEGATIVE_STOCK.value,
                },
            )
            raise OutOfStockError(
                product_id=product_id, requested=quantity, available=available
            )

        logger.debug(
            "stock_reserved",
            extra={
                "product_id": str(product_id),
                "reserved": quantity,
                "remaining": product.quantity,
            },
        )
        return product

    def release(self, product_id: UUID, quantity: int) -> bool:
        """
        Return ``quantity`` units to stock.

        Returns False, after logging a warning, when the product no longer
        exists.
        """
        quantity = require_positive_int("quantity", quantity)
        if not self._increment(product_id, quantity):
            logger.warning(
                "stock_release_skipped_missing_product",
                extra={"product_id": str(product_id), "quantity": quantity},
            )
            return False
        logger.debug(
            "stock_released",
            extra={"product_id": str(product_id), "released": quantity},
        )
        return True

    def _increment(self, product_id: UUID, quantity: int) -> bool:
        result = self.session.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(
                quantity=Product.quantity + quantity,
                status=case(
                    (
                        Product.status == ProductStatus.INACTIVE.value,
                        ProductStatus.INACTIVE.value,
                    ),
                    else_=_status_for_quantity(Product.quantity + quantity),
                ),
                updated_at=self.clock.now(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
