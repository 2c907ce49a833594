"""Kernel services: sequences, the lot ledger and the daily balance ledger."""

from inventory_kernel.services.balance_ledger import DailyBalanceLedger, MovementTotal
from inventory_kernel.services.base import BaseService
from inventory_kernel.services.lot_ledger import LotLedger, StockKey
from inventory_kernel.services.sequence_service import SequenceService

__all__ = [
    "BaseService",
    "DailyBalanceLedger",
    "LotLedger",
    "MovementTotal",
    "SequenceService",
    "StockKey",
]
