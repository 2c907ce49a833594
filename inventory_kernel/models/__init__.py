"""ORM models for the inventory kernel."""

from inventory_kernel.models.catalog import Material, Warehouse
from inventory_kernel.models.counters import DocumentNumberCounter, SequenceCounter
from inventory_kernel.models.documents import (
    StockAdjustment,
    StockAdjustmentAllocation,
    StockAdjustmentLine,
    StockIssue,
    StockIssueAllocation,
    StockIssueLine,
    StockReceipt,
    StockReceiptLine,
    StockTransfer,
    StockTransferAllocation,
    StockTransferLine,
)
from inventory_kernel.models.notification import Notification
from inventory_kernel.models.stock import LotHistory, Stock, StockBalance, StockLot

__all__ = [
    "Warehouse",
    "Material",
    "Stock",
    "StockLot",
    "StockBalance",
    "LotHistory",
    "StockReceipt",
    "StockReceiptLine",
    "StockIssue",
    "StockIssueLine",
    "StockIssueAllocation",
    "StockTransfer",
    "StockTransferLine",
    "StockTransferAllocation",
    "StockAdjustment",
    "StockAdjustmentLine",
    "StockAdjustmentAllocation",
    "SequenceCounter",
    "DocumentNumberCounter",
    "Notification",
]
