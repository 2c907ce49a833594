"""
Inventory engines -- pure calculation layer.

Engines take frozen snapshots and return frozen results.  They never touch
the database, the clock or configuration; services gather inputs and
persist outputs.

    allocation  FEFO and manual lot selection
    costing     weighted-average / FIFO unit cost, valuation
    reporting   report arithmetic and the closed ReportKind enum
"""

from inventory_engines.allocation import (
    AllocationEngine,
    AllocationResult,
    AllocationStrategy,
    LotDraw,
    LotSnapshot,
    ManualPick,
    fefo_sort_key,
)
from inventory_engines.costing import CostingEngine, IssueCost, LotCost, Valuation
from inventory_engines.reporting import GroupBy, ReportCalculator, ReportKind, TurnoverCategory

__all__ = [
    "AllocationEngine",
    "AllocationResult",
    "AllocationStrategy",
    "LotDraw",
    "LotSnapshot",
    "ManualPick",
    "fefo_sort_key",
    "CostingEngine",
    "IssueCost",
    "LotCost",
    "Valuation",
    "GroupBy",
    "ReportCalculator",
    "ReportKind",
    "TurnoverCategory",
]
