"""Pure domain types for the inventory kernel (zero I/O)."""

from inventory_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from inventory_kernel.domain.values import (
    POSTED_STATUS,
    CostingMethod,
    DocumentStatus,
    DocumentType,
    LotAction,
)
from inventory_kernel.domain.workflow import Transition, Workflow

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "CostingMethod",
    "DocumentStatus",
    "DocumentType",
    "LotAction",
    "POSTED_STATUS",
    "Transition",
    "Workflow",
]
