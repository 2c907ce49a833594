"""Read-only query helpers over the kernel models."""

from inventory_kernel.selectors.base import BaseSelector
from inventory_kernel.selectors.stock_selector import (
    AllocationEntry,
    BalanceEntry,
    StockDrift,
    StockSelector,
)

__all__ = [
    "AllocationEntry",
    "BalanceEntry",
    "BaseSelector",
    "StockDrift",
    "StockSelector",
]
