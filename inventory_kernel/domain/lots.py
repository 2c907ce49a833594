"""
Lot snapshot value object.

The read-only view of a lot handed from the lot ledger to the allocation
and costing engines.  Pure, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

_ZERO = Decimal("0")


@dataclass(frozen=True, slots=True)
class LotSnapshot:
    """
    Point-in-time view of one lot, as read under the posting lock.

    Contract:
        Immutable input to the engines; the persistent StockLot is only
        touched by the lot ledger.
    """

    lot_id: UUID
    warehouse_id: UUID
    material_id: UUID
    remaining_quantity: Decimal
    lot_seq: int
    unit_cost: Decimal | None = None
    expiry_date: date | None = None
    manufacture_date: date | None = None
    lot_number: str | None = None
    received_on: date | None = None
    reserved_for_issue_id: UUID | None = None
    is_reserved: bool = False

    def __post_init__(self) -> None:
        if self.remaining_quantity < _ZERO:
            raise ValueError(
                f"Lot {self.lot_id} has negative remaining quantity "
                f"{self.remaining_quantity}"
            )

    def is_eligible_for(self, issue_id: UUID | None = None) -> bool:
        """Positive quantity and not held for a different issue."""
        if self.remaining_quantity <= _ZERO:
            return False
        if self.is_reserved and self.reserved_for_issue_id != issue_id:
            return False
        return True
