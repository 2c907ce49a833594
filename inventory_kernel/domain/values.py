"""
Shared value types for the inventory kernel.

Pure enums used by models, engines and services alike.  Statuses are stored
as plain strings; these str-Enums compare equal to the stored values.
"""

from enum import Enum


class CostingMethod(str, Enum):
    """Per-material costing method.  Unset means WEIGHTED_AVERAGE."""

    WEIGHTED_AVERAGE = "weighted_average"
    FIFO = "fifo"


class DocumentType(str, Enum):
    """Kinds of stock document that move inventory."""

    STOCK_RECEIPT = "stock_receipt"
    STOCK_ISSUE = "stock_issue"
    STOCK_TRANSFER = "stock_transfer"
    STOCK_ADJUSTMENT = "stock_adjustment"


class DocumentStatus(str, Enum):
    """
    Document lifecycle status.

    NEW -> CONFIRMED -> {RECEIVED | ISSUED | TRANSFERRED | ADJUSTED}
    Any of those -> CANCELLED (absorbing).
    """

    NEW = "new"
    CONFIRMED = "confirmed"
    RECEIVED = "received"
    ISSUED = "issued"
    TRANSFERRED = "transferred"
    ADJUSTED = "adjusted"
    CANCELLED = "cancelled"


POSTED_STATUS: dict[DocumentType, DocumentStatus] = {
    DocumentType.STOCK_RECEIPT: DocumentStatus.RECEIVED,
    DocumentType.STOCK_ISSUE: DocumentStatus.ISSUED,
    DocumentType.STOCK_TRANSFER: DocumentStatus.TRANSFERRED,
    DocumentType.STOCK_ADJUSTMENT: DocumentStatus.ADJUSTED,
}


class LotAction(str, Enum):
    """Lot maintenance actions recorded in lot history."""

    SPLIT = "split"
    SPLIT_FROM = "split_from"
    MERGE = "merge"
    MERGED_INTO = "merged_into"
    RESERVE = "reserve"
    RELEASE = "release"
