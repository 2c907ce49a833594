"""
Module: inventory_engines.allocation
Responsibility:
    Decide which lots satisfy an outgoing quantity: FEFO
    (first-expiring-first-out) by default, or a caller-supplied manual lot
    pick that is validated against the same lot snapshot.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import inventory_kernel domain values, exceptions and logging.

Invariants enforced:
    - sum(draw.quantity) == requested quantity on every returned result.
    - No draw exceeds its lot's remaining quantity.
    - All-or-nothing: if eligible stock is short, InsufficientStockError is
      raised and no partial result exists.
    - FEFO order: lots with an expiry date before lots without; earliest
      expiry first; then earliest manufacture date (unknown last); then
      creation order (lot_seq).

Failure modes:
    - InsufficientStockError when eligible lots total less than requested.
    - AllocationMismatchError when manual picks do not sum to the request.
    - LotNotFoundError when a manual pick names a lot outside the
      (warehouse, material) bucket.
    - LotReservedError when a manual pick names a lot held for another issue.
    - LotOverdrawnError when a manual pick exceeds a lot's remaining quantity.

Usage:
    from inventory_engines.allocation import AllocationEngine, LotSnapshot

    engine = AllocationEngine()
    result = engine.allocate_fefo(
        warehouse_id=wh_id,
        material_id=mat_id,
        quantity=Decimal("12"),
        lots=snapshots,
    )
    for draw in result.draws:
        ...
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from inventory_engines.tracer import traced_engine
from inventory_kernel.domain.lots import LotSnapshot
from inventory_kernel.exceptions import (
    AllocationMismatchError,
    InsufficientStockError,
    LotNotFoundError,
    LotOverdrawnError,
    LotReservedError,
)
from inventory_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")

_ZERO = Decimal("0")


class AllocationStrategy(str, Enum):
    FEFO = "fefo"
    MANUAL = "manual"


@dataclass(frozen=True, slots=True)
class ManualPick:
    """One caller-chosen (lot, quantity) pair."""

    lot_id: UUID
    quantity: Decimal


@dataclass(frozen=True, slots=True)
class LotDraw:
    """Quantity taken from one lot."""

    lot: LotSnapshot
    quantity: Decimal

    @property
    def lot_id(self) -> UUID:
        return self.lot.lot_id

    @property
    def unit_cost(self) -> Decimal | None:
        return self.lot.unit_cost


@dataclass(frozen=True)
class AllocationResult:
    """
    Ordered lot draws covering exactly the requested quantity.

    Guarantees:
        - ``total_drawn == requested``.
        - Draw order is consumption order (FEFO or caller order).
    """

    warehouse_id: UUID
    material_id: UUID
    requested: Decimal
    strategy: AllocationStrategy
    draws: tuple[LotDraw, ...]

    @property
    def total_drawn(self) -> Decimal:
        return sum((d.quantity for d in self.draws), _ZERO)

    @property
    def lot_count(self) -> int:
        return len(self.draws)


def fefo_sort_key(lot: LotSnapshot) -> tuple:
    """Sort key giving FEFO consumption order."""
    return (
        lot.expiry_date is None,
        lot.expiry_date or date.max,
        lot.manufacture_date is None,
        lot.manufacture_date or date.max,
        lot.lot_seq,
    )


def order_fefo(lots: Iterable[LotSnapshot]) -> list[LotSnapshot]:
    return sorted(lots, key=fefo_sort_key)


def eligible_lots(
    lots: Iterable[LotSnapshot],
    warehouse_id: UUID,
    material_id: UUID,
    issue_id: UUID | None = None,
) -> list[LotSnapshot]:
    return [
        lot for lot in lots
        if lot.warehouse_id == warehouse_id
        and lot.material_id == material_id
        and lot.is_eligible_for(issue_id)
    ]


def available_quantity(lots: Iterable[LotSnapshot], issue_id: UUID | None = None) -> Decimal:
    """Total quantity eligible for ``issue_id``."""
    return sum(
        (lot.remaining_quantity for lot in lots if lot.is_eligible_for(issue_id)),
        _ZERO,
    )


class AllocationEngine:
    """
    Select lots for an outgoing quantity.

    Contract:
        Pure functions over LotSnapshot sequences.  No I/O, no clock.
    Guarantees:
        - Results sum exactly to the requested quantity, or an error is
          raised and nothing is returned.
    Non-goals:
        - Does not lock or mutate lots; PostingService does that through
          the lot ledger using the returned draws.
    """

    @traced_engine("allocation_fefo", "1.0", fingerprint_fields=("quantity",))
    def allocate_fefo(
        self,
        *,
        warehouse_id: UUID,
        material_id: UUID,
        quantity: Decimal,
        lots: Sequence[LotSnapshot],
        issue_id: UUID | None = None,
        material_code: str | None = None,
    ) -> AllocationResult:
        """
        Greedy FEFO draw.

        Args:
            warehouse_id: Bucket warehouse.
            material_id: Bucket material.
            quantity: Quantity needed (> 0).
            lots: Candidate lots; ineligible or foreign lots are ignored.
            issue_id: Issue being posted; lots reserved for it are eligible.
            material_code: Used in the InsufficientStockError message only.

        Raises:
            InsufficientStockError: if eligible lots total less than quantity.
        """
        t0 = time.monotonic()
        if quantity <= _ZERO:
            raise ValueError(f"Allocation quantity must be positive, got {quantity}")

        candidates = order_fefo(eligible_lots(lots, warehouse_id, material_id, issue_id))
        available = sum((lot.remaining_quantity for lot in candidates), _ZERO)

        if available < quantity:
            logger.warning("allocation_insufficient_stock", extra={
                "warehouse_id": str(warehouse_id),
                "material_id": str(material_id),
                "requested": str(quantity),
                "available": str(available),
            })
            raise InsufficientStockError(
                material_id, warehouse_id, quantity, available, material_code
            )

        draws: list[LotDraw] = []
        outstanding = quantity
        for lot in candidates:
            if outstanding <= _ZERO:
                break
            take = min(lot.remaining_quantity, outstanding)
            draws.append(LotDraw(lot=lot, quantity=take))
            outstanding -= take

        result = AllocationResult(
            warehouse_id=warehouse_id,
            material_id=material_id,
            requested=quantity,
            strategy=AllocationStrategy.FEFO,
            draws=tuple(draws),
        )
        logger.info("allocation_completed", extra={
            "strategy": AllocationStrategy.FEFO.value,
            "material_id": str(material_id),
            "requested": str(quantity),
            "lot_count": result.lot_count,
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        return result

    @traced_engine("allocation_manual", "1.0", fingerprint_fields=("quantity", "picks"))
    def allocate_manual(
        self,
        *,
        warehouse_id: UUID,
        material_id: UUID,
        quantity: Decimal,
        lots: Sequence[LotSnapshot],
        picks: Sequence[ManualPick],
        issue_id: UUID | None = None,
        material_code: str | None = None,
    ) -> AllocationResult:
        """
        Validate a caller-supplied lot pick and return it as draws.

        Picks naming the same lot twice are combined.  Draw order follows the
        caller's order of first mention.

        Raises:
            InsufficientStockError: eligible lots total less than quantity.
            AllocationMismatchError: picks do not sum to quantity.
            LotNotFoundError: pick names a lot outside the bucket.
            LotReservedError: pick names a lot held for another issue.
            LotOverdrawnError: pick exceeds the lot's remaining quantity.
        """
        if quantity <= _ZERO:
            raise ValueError(f"Allocation quantity must be positive, got {quantity}")

        bucket = {
            lot.lot_id: lot for lot in lots
            if lot.warehouse_id == warehouse_id and lot.material_id == material_id
        }
        available = available_quantity(bucket.values(), issue_id)
        if available < quantity:
            raise InsufficientStockError(
                material_id, warehouse_id, quantity, available, material_code
            )

        combined: dict[UUID, Decimal] = {}
        for pick in picks:
            if pick.quantity <= _ZERO:
                raise ValueError(f"Pick quantity for lot {pick.lot_id} must be positive")
            combined[pick.lot_id] = combined.get(pick.lot_id, _ZERO) + pick.quantity

        picked_total = sum(combined.values(), _ZERO)
        if picked_total != quantity:
            raise AllocationMismatchError(material_id, quantity, picked_total)

        draws: list[LotDraw] = []
        for lot_id, qty in combined.items():
            lot = bucket.get(lot_id)
            if lot is None:
                raise LotNotFoundError(lot_id)
            if lot.is_reserved and lot.reserved_for_issue_id != issue_id:
                raise LotReservedError(lot_id, lot.reserved_for_issue_id)
            if qty > lot.remaining_quantity:
                raise LotOverdrawnError(lot_id, qty, lot.remaining_quantity)
            draws.append(LotDraw(lot=lot, quantity=qty))

        logger.info("allocation_completed", extra={
            "strategy": AllocationStrategy.MANUAL.value,
            "material_id": str(material_id),
            "requested": str(quantity),
            "lot_count": len(draws),
        })
        return AllocationResult(
            warehouse_id=warehouse_id,
            material_id=material_id,
            requested=quantity,
            strategy=AllocationStrategy.MANUAL,
            draws=tuple(draws),
        )
