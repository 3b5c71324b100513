"""
Authorization -- role capability table.

``authorize(context, action)`` is a pure function of the caller's role and
the requested action.  Ownership rules (the buyer owns the order, the
driver is the assigned driver, ...) depend on loaded rows and are checked
by the engines after the role gate.
"""

from enum import Enum

from market_kernel.domain.caller import CallerContext
from market_kernel.exceptions import AuthorizationError
from market_kernel.models.user import UserRole


class Action(str, Enum):
    PLACE_ORDER = "order.place"
    CANCEL_ORDER = "order.cancel"
    VIEW_ORDER = "order.view"
    MARK_PAID = "order.mark_paid"
    MARK_PREPARING = "order.mark_preparing"
    ASSIGN_DRIVER = "order.assign_driver"
    MARK_DELIVERED = "order.mark_delivered"
    RATE_DRIVER = "order.rate_driver"
    SET_AVAILABILITY = "driver.set_availability"
    DEPOSIT = "wallet.deposit"
    WITHDRAW = "wallet.withdraw"
    TRANSFER = "wallet.transfer"
    ISSUE_TRANSFER_CODE = "wallet.issue_transfer_code"
    VIEW_WALLET = "wallet.view"
    CONFIRM_DEPOSIT = "wallet.confirm_deposit"
    REJECT_DEPOSIT = "wallet.reject_deposit"
    RECONCILE = "wallet.reconcile"


_WALLET_HOLDER_ACTIONS = frozenset({
    Action.DEPOSIT,
    Action.WITHDRAW,
    Action.TRANSFER,
    Action.ISSUE_TRANSFER_CODE,
    Action.VIEW_WALLET,
})

ROLE_CAPABILITIES: dict[UserRole, frozenset[Action]] = {
    UserRole.BUYER: _WALLET_HOLDER_ACTIONS | {
        Action.PLACE_ORDER,
        Action.CANCEL_ORDER,
        Action.VIEW_ORDER,
        Action.RATE_DRIVER,
    },
    UserRole.SELLER: _WALLET_HOLDER_ACTIONS | {
        Action.VIEW_ORDER,
        Action.MARK_PAID,
        Action.MARK_PREPARING,
    },
    UserRole.DRIVER: _WALLET_HOLDER_ACTIONS | {
        Action.VIEW_ORDER,
        Action.MARK_DELIVERED,
        Action.SET_AVAILABILITY,
    },
    UserRole.ADMIN: _WALLET_HOLDER_ACTIONS | {
        Action.VIEW_ORDER,
        Action.MARK_PAID,
        Action.MARK_PREPARING,
        Action.ASSIGN_DRIVER,
        Action.MARK_DELIVERED,
        Action.CONFIRM_DEPOSIT,
        Action.REJECT_DEPOSIT,
        Action.RECONCILE,
    },
}


def is_authorized(context: CallerContext, action: Action) -> bool:
    return action in ROLE_CAPABILITIES.get(context.role, frozenset())


def authorize(context: CallerContext, action: Action) -> None:
    """
    Raise AuthorizationError unless the caller's role may perform action.
    """
    if not is_authorized(context, action):
        raise AuthorizationError(
            user_id=context.user_id,
            role=context.role.value,
            action=action.value,
            reason="role not permitted",
        )


def deny(context: CallerContext, action: Action, reason: str) -> AuthorizationError:
    """Build the error for a failed ownership check."""
    return AuthorizationError(
        user_id=context.user_id,
        role=context.role.value,
        action=action.value,
        reason=reason,
    )
