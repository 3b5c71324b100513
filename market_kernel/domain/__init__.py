"""Domain primitives: clock, caller context, authorization, lifecycle, fees and DTOs."""

from market_kernel.domain.authorization import Action, authorize, is_authorized
from market_kernel.domain.caller import CallerContext
from market_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = [
    "Action",
    "authorize",
    "is_authorized",
    "CallerContext",
    "Clock",
    "DeterministicClock",
    "SystemClock",
]
