"""
Fee arithmetic in integer minor units.

Withdrawal fees are informational: the payout channel deducts them, the
wallet is debited exactly the requested amount.  Transfer fees are added
on top of the transferred amount and retained by the platform.
"""

from decimal import ROUND_HALF_UP, Decimal


def proportional_fee(amount: int, rate: Decimal, minimum: int) -> int:
    """
    max(minimum, amount * rate) rounded half-up to a whole minor unit.

    >>> proportional_fee(1000, Decimal("0.01"), 100)
    100
    >>> proportional_fee(50_000, Decimal("0.01"), 100)
    500
    """
    if amount < 0:
        raise ValueError(f"amount must be non-negative, got {amount}")
    scaled = (Decimal(amount) * rate).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return max(minimum, int(scaled))


def wash_fee(wash_quantity: int, per_unit: int) -> int:
    if wash_quantity < 0:
        raise ValueError(f"wash_quantity must be non-negative, got {wash_quantity}")
    return wash_quantity * per_unit
