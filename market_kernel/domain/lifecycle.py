"""
Order lifecycle -- the transition table for order status.

    pending   -> paid | preparing | cancelled
    paid      -> preparing | cancelled
    preparing -> shipping
    shipping  -> shipping (driver reassignment) | delivered
    delivered, cancelled: terminal

The engine applies every transition as a conditional UPDATE whose WHERE
clause is ``status IN sources_for(target)``, so a transition that lost a
race with another writer affects zero rows and is reported, never applied
twice.
"""

from uuid import UUID

from market_kernel.exceptions import InvalidTransitionError
from market_kernel.models.order import OrderStatus

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({
        OrderStatus.PAID,
        OrderStatus.PREPARING,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.PAID: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.SHIPPING}),
    OrderStatus.SHIPPING: frozenset({OrderStatus.SHIPPING, OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in ORDER_TRANSITIONS.items() if not targets
)

CANCELLABLE_STATUSES = frozenset(
    status
    for status, targets in ORDER_TRANSITIONS.items()
    if OrderStatus.CANCELLED in targets
)


def is_valid_transition(current: str, target: str) -> bool:
    return OrderStatus(target) in ORDER_TRANSITIONS[OrderStatus(current)]


def sources_for(target: OrderStatus) -> frozenset[OrderStatus]:
    """Statuses from which ``target`` may be entered."""
    return frozenset(
        status for status, targets in ORDER_TRANSITIONS.items() if target in targets
    )


def validate_transition(order_id: UUID, current: str, target: str) -> None:
    if not is_valid_transition(current, target):
        raise InvalidTransitionError(
            entity_id=order_id,
            current=OrderStatus(current).value,
            target=OrderStatus(target).value,
        )
