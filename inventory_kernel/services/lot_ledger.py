"""
LotLedger -- the single write path for lot quantities and the Stock snapshot.

Responsibility:
    Creates lots, draws from them, restores them and retires them, keeping
    ``Stock.quantity`` equal to the sum of remaining lot quantities for
    every (warehouse, material) it touches.  Also acquires the posting
    locks.

Architecture position:
    Kernel > Services.  Called by PostingService (documents) and
    LotService (split/merge).  No other code writes
    ``StockLot.remaining_quantity`` or ``Stock.quantity``.

Invariants enforced:
    S1 -- remaining_quantity never goes below zero (LotOverdrawnError).
    S2 -- remaining_quantity never exceeds original_quantity on restore.
    S3 -- Stock.quantity == sum(remaining) after every call.
    L1 -- Stock rows are locked with SELECT ... FOR UPDATE in sorted
          (warehouse_id, material_id) order, so concurrent postings that
          share buckets acquire locks in the same order.

Failure modes:
    - LotNotFoundError if a lot id does not exist.
    - LotOverdrawnError on over-draw / over-restore.
    - LotAlreadyConsumedError when retiring a lot that has been drawn.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.lots import LotSnapshot
from inventory_kernel.exceptions import (
    LotAlreadyConsumedError,
    LotNotFoundError,
    LotOverdrawnError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.stock import Stock, StockLot
from inventory_kernel.services.base import BaseService
from inventory_kernel.services.sequence_service import SequenceService

logger = get_logger("services.lot_ledger")

_ZERO = Decimal("0")


@dataclass(frozen=True, order=True)
class StockKey:
    """(warehouse, material) bucket.  Orders by string form for lock order."""

    warehouse_key: str
    material_key: str

    @classmethod
    def of(cls, warehouse_id: UUID, material_id: UUID) -> "StockKey":
        return cls(str(warehouse_id), str(material_id))

    @property
    def warehouse_id(self) -> UUID:
        return UUID(self.warehouse_key)

    @property
    def material_id(self) -> UUID:
        return UUID(self.material_key)


class LotLedger(BaseService):
    """
    Lot and on-hand mutation primitives.

    Contract:
        Every mutating method flushes and leaves S1-S3 true.  Callers lock
        the buckets they will touch (``lock_stock``) before validating
        availability.

    Non-goals:
        - Does not decide which lots to draw (AllocationEngine).
        - Does not write the daily balance ledger (DailyBalanceLedger).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        sequence_service: SequenceService | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._sequences = sequence_service or SequenceService(session)
        self._locked: dict[StockKey, Stock] = {}

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def lock_stock(self, keys: Iterable[StockKey]) -> dict[StockKey, Stock]:
        """
        Lock (creating if needed) the Stock row of every key, in sorted order.

        On PostgreSQL this is SELECT ... FOR UPDATE; SQLite ignores the
        clause and relies on its database-level write lock.
        """
        locked: dict[StockKey, Stock] = {}
        for key in sorted(set(keys)):
            locked[key] = self._stock_row(key)
        logger.debug("stock_locked", extra={"bucket_count": len(locked)})
        return locked

    def _stock_row(self, key: StockKey) -> Stock:
        cached = self._locked.get(key)
        if cached is not None:
            return cached

        stock = self.session.execute(
            select(Stock)
            .where(
                Stock.warehouse_id == key.warehouse_id,
                Stock.material_id == key.material_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if stock is None:
            stock = Stock(
                warehouse_id=key.warehouse_id,
                material_id=key.material_id,
                quantity=_ZERO,
                last_updated=self._clock.now(),
            )
            self.session.add(stock)
            self.session.flush()

        self._locked[key] = stock
        return stock

    # ------------------------------------------------------------------
    # Reads under lock
    # ------------------------------------------------------------------

    def get_lot(self, lot_id: UUID) -> StockLot:
        lot = self.session.execute(
            select(StockLot).where(StockLot.id == lot_id).with_for_update()
        ).scalar_one_or_none()
        if lot is None:
            raise LotNotFoundError(lot_id)
        return lot

    def open_lots(self, warehouse_id: UUID, material_id: UUID) -> list[StockLot]:
        """Lots with stock in the bucket, locked, in creation order."""
        return list(self.session.execute(
            select(StockLot)
            .where(
                StockLot.warehouse_id == warehouse_id,
                StockLot.material_id == material_id,
                StockLot.remaining_quantity > 0,
            )
            .order_by(StockLot.lot_seq)
            .with_for_update()
        ).scalars())

    def snapshots(self, warehouse_id: UUID, material_id: UUID) -> list[LotSnapshot]:
        return [lot.snapshot() for lot in self.open_lots(warehouse_id, material_id)]

    def available(
        self,
        warehouse_id: UUID,
        material_id: UUID,
        for_issue: UUID | None = None,
    ) -> list[LotSnapshot]:
        """Snapshots eligible to be drawn by ``for_issue`` (or by anyone)."""
        return [
            snap for snap in self.snapshots(warehouse_id, material_id)
            if snap.is_eligible_for(for_issue)
        ]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_lot(
        self,
        *,
        warehouse_id: UUID,
        material_id: UUID,
        quantity: Decimal,
        unit_cost: Decimal | None,
        received_on: date,
        lot_number: str | None = None,
        manufacture_date: date | None = None,
        expiry_date: date | None = None,
        source_document_type: str | None = None,
        source_document_id: UUID | None = None,
        source_line_id: UUID | None = None,
        parent_lot_id: UUID | None = None,
    ) -> StockLot:
        """Create a lot holding ``quantity`` and raise on-hand by the same."""
        if quantity <= _ZERO:
            raise ValueError(f"Lot quantity must be positive, got {quantity}")

        stock = self._stock_row(StockKey.of(warehouse_id, material_id))
        lot = StockLot(
            warehouse_id=warehouse_id,
            material_id=material_id,
            lot_number=lot_number,
            manufacture_date=manufacture_date,
            expiry_date=expiry_date,
            original_quantity=quantity,
            remaining_quantity=quantity,
            unit_cost=unit_cost,
            received_on=received_on,
            lot_seq=self._sequences.next_value(SequenceService.STOCK_LOT),
            created_at=self._clock.now(),
            source_document_type=source_document_type,
            source_document_id=source_document_id,
            source_line_id=source_line_id,
            parent_lot_id=parent_lot_id,
            is_reserved=False,
        )
        self.session.add(lot)
        stock.quantity += quantity
        stock.last_updated = self._clock.now()
        self.session.flush()

        logger.info("lot_created", extra={
            "lot_id": str(lot.id),
            "lot_seq": lot.lot_seq,
            "warehouse_id": str(warehouse_id),
            "material_id": str(material_id),
            "quantity": str(quantity),
            "unit_cost": str(unit_cost) if unit_cost is not None else None,
        })
        return lot

    def draw(self, lot: StockLot, quantity: Decimal) -> None:
        """Take ``quantity`` out of ``lot`` and out of on-hand."""
        if quantity <= _ZERO:
            raise ValueError(f"Draw quantity must be positive, got {quantity}")
        # INVARIANT S1
        if quantity > lot.remaining_quantity:
            raise LotOverdrawnError(lot.id, quantity, lot.remaining_quantity)

        stock = self._stock_row(StockKey.of(lot.warehouse_id, lot.material_id))
        lot.remaining_quantity -= quantity
        stock.quantity -= quantity
        stock.last_updated = self._clock.now()
        self.session.flush()

        logger.debug("lot_drawn", extra={
            "lot_id": str(lot.id),
            "quantity": str(quantity),
            "remaining": str(lot.remaining_quantity),
        })

    def restore(self, lot: StockLot, quantity: Decimal) -> None:
        """Exact inverse of ``draw``."""
        if quantity <= _ZERO:
            raise ValueError(f"Restore quantity must be positive, got {quantity}")
        # INVARIANT S2
        if lot.remaining_quantity + quantity > lot.original_quantity:
            raise LotOverdrawnError(lot.id, -quantity, lot.remaining_quantity)

        stock = self._stock_row(StockKey.of(lot.warehouse_id, lot.material_id))
        lot.remaining_quantity += quantity
        stock.quantity += quantity
        stock.last_updated = self._clock.now()
        self.session.flush()

        logger.debug("lot_restored", extra={
            "lot_id": str(lot.id),
            "quantity": str(quantity),
            "remaining": str(lot.remaining_quantity),
        })

    def retire(self, lot: StockLot) -> Decimal:
        """
        Exact inverse of ``add_lot``: zero an untouched lot.

        Raises:
            LotAlreadyConsumedError: if anything has been drawn from the lot.
        """
        if lot.remaining_quantity != lot.original_quantity:
            raise LotAlreadyConsumedError(lot.id, lot.original_quantity, lot.remaining_quantity)

        quantity = lot.remaining_quantity
        stock = self._stock_row(StockKey.of(lot.warehouse_id, lot.material_id))
        lot.remaining_quantity = _ZERO
        stock.quantity -= quantity
        stock.last_updated = self._clock.now()
        self.session.flush()

        logger.info("lot_retired", extra={"lot_id": str(lot.id), "quantity": str(quantity)})
        return quantity
