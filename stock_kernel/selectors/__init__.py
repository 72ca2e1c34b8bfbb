"""Read-only selectors for the stock kernel."""

from stock_kernel.selectors.base import BaseSelector
from stock_kernel.selectors.movement_selector import (
    MovementSelector,
    MovementTotals,
    RecentMovement,
)

__all__ = [
    "BaseSelector",
    "MovementSelector",
    "MovementTotals",
    "RecentMovement",
]
