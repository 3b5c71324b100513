"""AccountService registration and the IdempotencyStore."""

import pytest

from market_kernel.exceptions import (
    ConcurrencyConflictError,
    UserNotFoundError,
    ValidationError,
)
from market_kernel.models.driver import DriverStatus
from market_kernel.models.user import UserRole
from market_kernel.services.account_service import AccountService
from market_kernel.services.driver_coordinator import DriverAssignmentCoordinator
from market_kernel.services.idempotency_store import IdempotencyStore
from market_kernel.services.ledger_store import LedgerStore


@pytest.fixture
def accounts(session, deterministic_clock):
    return AccountService(session, deterministic_clock)


class TestRegistration:

    def test_buyer_gets_wallet(self, session, deterministic_clock, accounts):
        user = accounts.register_user("Rami", UserRole.BUYER, opening_balance=700)
        assert user.role == "buyer"
        assert LedgerStore(session, deterministic_clock).balance_of(user.id) == 700

    def test_driver_gets_offline_profile(self, session, deterministic_clock, accounts):
        user = accounts.register_user("Yousef", "driver", vehicle_type="bike")
        driver = DriverAssignmentCoordinator(session, deterministic_clock).driver_for_user(user.id)
        assert driver.status == DriverStatus.OFFLINE.value
        assert driver.vehicle_type == "bike"
        assert driver.rating is None

    def test_email_is_unique_case_insensitively(self, accounts):
        accounts.register_user("A", "buyer", email="Mona@Example.test")
        with pytest.raises(ValidationError) as exc_info:
            accounts.register_user("B", "buyer", email="mona@example.test")
        assert exc_info.value.field == "email"

    def test_unknown_role(self, accounts):
        with pytest.raises(ValidationError):
            accounts.register_user("A", "courier")

    def test_negative_opening_balance(self, accounts):
        with pytest.raises(ValidationError):
            accounts.register_user("A", "buyer", opening_balance=-1)

    @pytest.mark.parametrize(
        "kwargs, field",
        [
            ({"phone": "9" * 31}, "phone"),
            ({"phone": 97455512345}, "phone"),
            ({"vehicle_type": "v" * 51}, "vehicle_type"),
            ({"vehicle_type": 4}, "vehicle_type"),
        ],
    )
    def test_contact_and_vehicle_fields_are_checked(self, accounts, kwargs, field):
        with pytest.raises(ValidationError) as exc_info:
            accounts.register_user("A", "driver", **kwargs)
        assert exc_info.value.field == field

    def test_get_unknown_user(self, accounts):
        from uuid import uuid4

        with pytest.raises(UserNotFoundError):
            accounts.get_user(uuid4())


class TestIdempotencyStore:

    @pytest.fixture
    def user(self, accounts):
        return accounts.register_user("Lina", UserRole.BUYER)

    @pytest.fixture
    def store(self, session, deterministic_clock):
        return IdempotencyStore(session, deterministic_clock, ttl_seconds=3600)

    def test_lookup_miss(self, store, user):
        assert store.lookup(user.id, "wallet.deposit", "k1") is None

    def test_remember_then_lookup(self, store, user):
        store.remember(user.id, "wallet.deposit", "k1", {"transactionId": "TXN1"})
        assert store.lookup(user.id, "wallet.deposit", "k1") == {"transactionId": "TXN1"}

    def test_keys_are_scoped_by_operation_and_user(self, accounts, store, user):
        other = accounts.register_user("Omar", UserRole.BUYER)
        store.remember(user.id, "wallet.deposit", "k1", {"a": 1})
        assert store.lookup(user.id, "order.place", "k1") is None
        assert store.lookup(other.id, "wallet.deposit", "k1") is None

    def test_expired_key_is_ignored_and_replaced(self, store, user, deterministic_clock):
        store.remember(user.id, "wallet.deposit", "k1", {"a": 1})
        deterministic_clock.advance(3601)
        assert store.lookup(user.id, "wallet.deposit", "k1") is None
        store.remember(user.id, "wallet.deposit", "k1", {"a": 2})
        assert store.lookup(user.id, "wallet.deposit", "k1") == {"a": 2}

    def test_duplicate_live_key_is_a_conflict(self, store, user):
        store.remember(user.id, "wallet.deposit", "k1", {"a": 1})
        with pytest.raises(ConcurrencyConflictError):
            store.remember(user.id, "wallet.deposit", "k1", {"a": 2})
