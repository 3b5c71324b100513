"""Role gate and caller context."""

from uuid import uuid4

import pytest

from market_kernel.domain.authorization import (
    ROLE_CAPABILITIES,
    Action,
    authorize,
    deny,
    is_authorized,
)
from market_kernel.domain.caller import CallerContext
from market_kernel.exceptions import AuthorizationError
from market_kernel.models.user import UserRole


def ctx(role) -> CallerContext:
    return CallerContext(user_id=uuid4(), role=role)


class TestRoleGate:

    @pytest.mark.parametrize("role", list(UserRole))
    def test_every_role_holds_a_wallet(self, role):
        for action in (Action.DEPOSIT, Action.WITHDRAW, Action.TRANSFER, Action.VIEW_WALLET):
            assert is_authorized(ctx(role), action)

    def test_only_buyers_place_orders(self):
        allowed = {r for r in UserRole if is_authorized(ctx(r), Action.PLACE_ORDER)}
        assert allowed == {UserRole.BUYER}

    def test_only_admins_assign_drivers_and_confirm_deposits(self):
        for action in (Action.ASSIGN_DRIVER, Action.CONFIRM_DEPOSIT, Action.RECONCILE):
            allowed = {r for r in UserRole if is_authorized(ctx(r), action)}
            assert allowed == {UserRole.ADMIN}

    def test_drivers_and_admins_mark_delivered(self):
        allowed = {r for r in UserRole if is_authorized(ctx(r), Action.MARK_DELIVERED)}
        assert allowed == {UserRole.DRIVER, UserRole.ADMIN}

    def test_every_role_is_mapped(self):
        assert set(ROLE_CAPABILITIES) == set(UserRole)

    def test_authorize_raises_forbidden(self):
        caller = ctx(UserRole.SELLER)
        with pytest.raises(AuthorizationError) as exc_info:
            authorize(caller, Action.PLACE_ORDER)
        error = exc_info.value
        assert error.code == "FORBIDDEN"
        assert error.action == "order.place"
        assert error.role == "seller"
        assert error.user_id == caller.user_id

    def test_deny_builds_error_with_reason(self):
        error = deny(ctx(UserRole.DRIVER), Action.MARK_DELIVERED, "not your order")
        assert isinstance(error, AuthorizationError)
        assert error.reason == "not your order"


class TestCallerContext:

    def test_role_string_is_coerced(self):
        assert ctx("admin").role is UserRole.ADMIN
        assert ctx("admin").is_admin

    def test_unknown_role_rejected(self):
        with pytest.raises(ValueError):
            ctx("superuser")

    def test_user_id_must_be_uuid(self):
        with pytest.raises(ValueError):
            CallerContext(user_id="not-a-uuid", role=UserRole.BUYER)

    def test_log_fields(self):
        caller = CallerContext(user_id=uuid4(), role=UserRole.BUYER, correlation_id="req-1")
        assert caller.log_fields() == {
            "actor_id": str(caller.user_id),
            "actor_role": "buyer",
            "correlation_id": "req-1",
        }
