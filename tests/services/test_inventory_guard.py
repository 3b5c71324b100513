"""Tests for InventoryGuard: conditional reservations and catalog stock."""

from uuid import uuid4

import pytest

from market_kernel.exceptions import OutOfStockError, ProductNotFoundError, ValidationError
from market_kernel.models.product import ProductStatus
from market_kernel.models.user import UserRole
from market_kernel.services.account_service import AccountService
from market_kernel.services.inventory_guard import InventoryGuard


@pytest.fixture
def guard(session, deterministic_clock):
    return InventoryGuard(session, deterministic_clock)


@pytest.fixture
def shop(session, deterministic_clock):
    return AccountService(session, deterministic_clock).register_user("Fresh Co", UserRole.SELLER)


@pytest.fixture
def product(guard, shop):
    return guard.register_product(shop.id, "Dates", price=2_000, quantity=5)


class TestCatalog:

    def test_initial_status_follows_quantity(self, guard, shop):
        assert guard.register_product(shop.id, "A", 100, 3).status == ProductStatus.ACTIVE.value
        assert (
            guard.register_product(shop.id, "B", 100, 0).status
            == ProductStatus.OUT_OF_STOCK.value
        )

    def test_only_sellers_list_products(self, session, deterministic_clock, guard):
        buyer = AccountService(session, deterministic_clock).register_user("Huda", "buyer")
        with pytest.raises(ValidationError):
            guard.register_product(buyer.id, "Dates", 100, 1)

    def test_restock_reactivates(self, guard, product):
        guard.reserve(product.id, 5)
        restocked = guard.restock(product.id, 2)
        assert restocked.quantity == 2
        assert restocked.status == ProductStatus.ACTIVE.value

    def test_restock_missing_product(self, guard):
        with pytest.raises(ProductNotFoundError):
            guard.restock(uuid4(), 1)

    def test_deactivated_product_cannot_be_reserved(self, guard, product):
        guard.deactivate(product.id)
        with pytest.raises(OutOfStockError) as exc_info:
            guard.reserve(product.id, 1)
        assert exc_info.value.available == 0


class TestReserve:

    def test_reserve_decrements(self, guard, product):
        after = guard.reserve(product.id, 2)
        assert after.quantity == 3
        assert after.status == ProductStatus.ACTIVE.value

    def test_reserving_last_unit_marks_out_of_stock(self, guard, product):
        after = guard.reserve(product.id, 5)
        assert after.quantity == 0
        assert after.status == ProductStatus.OUT_OF_STOCK.value

    def test_short_stock_rejected_without_change(self, guard, product):
        with pytest.raises(OutOfStockError) as exc_info:
            guard.reserve(product.id, 6)
        assert exc_info.value.requested == 6
        assert exc_info.value.available == 5
        assert guard.get_product(product.id).quantity == 5

    def test_unknown_product(self, guard):
        with pytest.raises(ProductNotFoundError):
            guard.reserve(uuid4(), 1)

    def test_quantity_must_be_positive(self, guard, product):
        with pytest.raises(ValidationError):
            guard.reserve(product.id, 0)


class TestRelease:

    def test_release_restores_stock_and_status(self, guard, product):
        guard.reserve(product.id, 5)
        assert guard.release(product.id, 5)
        after = guard.get_product(product.id)
        assert after.quantity == 5
        assert after.status == ProductStatus.ACTIVE.value

    def test_release_keeps_inactive_status(self, guard, product):
        guard.reserve(product.id, 1)
        guard.deactivate(product.id)
        guard.release(product.id, 1)
        after = guard.get_product(product.id)
        assert after.quantity == 5
        assert after.status == ProductStatus.INACTIVE.value

    def test_release_of_missing_product_is_logged(self, guard, captured_logs):
        assert guard.release(uuid4(), 2) is False
        assert any(
            r["message"] == "stock_release_skipped_missing_product" for r in captured_logs()
        )
