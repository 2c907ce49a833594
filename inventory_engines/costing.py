"""
Module: inventory_engines.costing
Responsibility:
    Pure costing calculations over lot snapshots: weighted-average unit
    cost, FIFO unit cost, blended cost of an actual set of lot draws, and
    point-in-time valuation.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Every monetary output is rounded to 2 places (ROUND_HALF_EVEN) via
      round_money(); intermediate sums keep full precision.
    - Weighted average considers only lots with positive quantity and a
      known (or fallback) unit cost, received on or before ``as_of``.
      Zero total quantity gives zero cost.
    - FIFO age is creation order (lot_seq), never expiry.
    - An issue spanning several lots costs the quantity-weighted mean of the
      lots actually drawn, not the oldest lot's price.

Failure modes:
    - ValueError if blended cost is requested for an empty draw set.

Usage:
    engine = CostingEngine()
    avg = engine.weighted_average_cost(lots=snapshots)
    issue = engine.issue_cost(
        method=CostingMethod.FIFO,
        draws=allocation.draws,
        lots_before=snapshots,
    )
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from inventory_engines.allocation import LotDraw, LotSnapshot
from inventory_engines.tracer import traced_engine
from inventory_kernel.db.types import round_money
from inventory_kernel.domain.values import CostingMethod
from inventory_kernel.logging_config import get_logger

logger = get_logger("engines.costing")

_ZERO = Decimal("0")


@dataclass(frozen=True, slots=True)
class IssueCost:
    """
    Cost attributed to an outgoing quantity.

    Guarantees:
        - unit_cost and total_cost are rounded to 2 places.
        - For FIFO, total_cost is the rounded sum of draw quantity x lot
          cost, so it can differ from quantity x unit_cost by rounding.
    """

    method: CostingMethod
    quantity: Decimal
    unit_cost: Decimal
    total_cost: Decimal


@dataclass(frozen=True, slots=True)
class LotCost:
    """Per-lot cost breakdown row."""

    lot_id: UUID
    lot_number: str | None
    quantity: Decimal
    unit_cost: Decimal | None
    value: Decimal


@dataclass(frozen=True, slots=True)
class Valuation:
    """On-hand quantity and value for one (warehouse, material)."""

    quantity: Decimal
    unit_cost: Decimal
    total_value: Decimal


def _cost_of(lot: LotSnapshot, fallback: Decimal | None) -> Decimal | None:
    return lot.unit_cost if lot.unit_cost is not None else fallback


def _live_lots(lots: Iterable[LotSnapshot], as_of: date | None) -> list[LotSnapshot]:
    return [
        lot for lot in lots
        if lot.remaining_quantity > _ZERO
        and (as_of is None or lot.received_on is None or lot.received_on <= as_of)
    ]


class CostingEngine:
    """
    Unit cost and valuation calculator.

    Contract:
        Pure functions over LotSnapshot / LotDraw values.  No I/O, no clock.
    Non-goals:
        - Does not decide the method; callers pass the material's
          effective costing method.
        - Does not replay history.  ``as_of`` filters by receipt date over
          live remaining quantities only.
    """

    @traced_engine("weighted_average_cost", "1.0")
    def weighted_average_cost(
        self,
        *,
        lots: Sequence[LotSnapshot],
        fallback_unit_cost: Decimal | None = None,
        as_of: date | None = None,
    ) -> Decimal:
        """Sum(qty x cost) / sum(qty) over live, costed lots; 0 when empty."""
        total_qty = _ZERO
        total_value = _ZERO
        for lot in _live_lots(lots, as_of):
            cost = _cost_of(lot, fallback_unit_cost)
            if cost is None:
                continue
            total_qty += lot.remaining_quantity
            total_value += lot.remaining_quantity * cost

        if total_qty == _ZERO:
            return round_money(_ZERO)
        return round_money(total_value / total_qty)

    @traced_engine("fifo_unit_cost", "1.0")
    def fifo_unit_cost(
        self,
        *,
        lots: Sequence[LotSnapshot],
        fallback_unit_cost: Decimal | None = None,
        as_of: date | None = None,
    ) -> Decimal:
        """Unit cost of the oldest lot that still has stock; 0 when none."""
        for lot in sorted(_live_lots(lots, as_of), key=lambda l: l.lot_seq):
            cost = _cost_of(lot, fallback_unit_cost)
            if cost is not None:
                return round_money(cost)
        return round_money(_ZERO)

    def unit_cost(
        self,
        *,
        method: CostingMethod,
        lots: Sequence[LotSnapshot],
        fallback_unit_cost: Decimal | None = None,
        as_of: date | None = None,
    ) -> Decimal:
        """Unit cost under ``method``; material fallback when no lots."""
        if not _live_lots(lots, as_of):
            return round_money(fallback_unit_cost or _ZERO)
        match method:
            case CostingMethod.FIFO:
                return self.fifo_unit_cost(
                    lots=lots, fallback_unit_cost=fallback_unit_cost, as_of=as_of
                )
            case CostingMethod.WEIGHTED_AVERAGE:
                return self.weighted_average_cost(
                    lots=lots, fallback_unit_cost=fallback_unit_cost, as_of=as_of
                )
            case _:
                raise ValueError(f"Unknown costing method: {method}")

    def blended_cost(
        self,
        draws: Sequence[LotDraw],
        fallback_unit_cost: Decimal | None = None,
    ) -> tuple[Decimal, Decimal]:
        """
        Quantity-weighted cost of the draws actually taken.

        Lots with no cost and no fallback contribute at zero.

        Returns:
            (unit_cost, total_cost), both rounded to 2 places.
        """
        if not draws:
            raise ValueError("blended_cost requires at least one draw")
        qty = _ZERO
        value = _ZERO
        for draw in draws:
            cost = _cost_of(draw.lot, fallback_unit_cost) or _ZERO
            qty += draw.quantity
            value += draw.quantity * cost
        return round_money(value / qty), round_money(value)

    def issue_cost(
        self,
        *,
        method: CostingMethod,
        draws: Sequence[LotDraw],
        lots_before: Sequence[LotSnapshot],
        fallback_unit_cost: Decimal | None = None,
    ) -> IssueCost:
        """
        Cost for one issue line.

        FIFO blends the draws; weighted average prices the whole quantity
        at the average of ``lots_before`` (the bucket before this draw).
        """
        quantity = sum((d.quantity for d in draws), _ZERO)
        if method == CostingMethod.FIFO:
            unit, total = self.blended_cost(draws, fallback_unit_cost)
        else:
            unit = self.unit_cost(
                method=CostingMethod.WEIGHTED_AVERAGE,
                lots=lots_before,
                fallback_unit_cost=fallback_unit_cost,
            )
            total = round_money(unit * quantity)

        logger.debug("issue_cost_computed", extra={
            "method": method.value,
            "quantity": str(quantity),
            "unit_cost": str(unit),
            "total_cost": str(total),
        })
        return IssueCost(method=method, quantity=quantity, unit_cost=unit, total_cost=total)

    def lot_costs(
        self,
        lots: Sequence[LotSnapshot],
        fallback_unit_cost: Decimal | None = None,
    ) -> tuple[LotCost, ...]:
        """Per-lot breakdown of live lots in creation order."""
        rows = []
        for lot in sorted(_live_lots(lots, None), key=lambda l: l.lot_seq):
            cost = _cost_of(lot, fallback_unit_cost)
            rows.append(LotCost(
                lot_id=lot.lot_id,
                lot_number=lot.lot_number,
                quantity=lot.remaining_quantity,
                unit_cost=round_money(cost) if cost is not None else None,
                value=round_money(lot.remaining_quantity * (cost or _ZERO)),
            ))
        return tuple(rows)

    def valuation(
        self,
        *,
        method: CostingMethod,
        lots: Sequence[LotSnapshot],
        fallback_unit_cost: Decimal | None = None,
    ) -> Valuation:
        """Current on-hand value: live quantity at the method's unit cost."""
        live = _live_lots(lots, None)
        quantity = sum((lot.remaining_quantity for lot in live), _ZERO)
        if method == CostingMethod.FIFO:
            # Each FIFO layer is carried at its own cost
            value = sum(
                (lot.remaining_quantity * (_cost_of(lot, fallback_unit_cost) or _ZERO) for lot in live),
                _ZERO,
            )
            unit = round_money(value / quantity) if quantity else round_money(_ZERO)
            return Valuation(quantity=quantity, unit_cost=unit, total_value=round_money(value))

        unit = self.unit_cost(method=method, lots=lots, fallback_unit_cost=fallback_unit_cost)
        return Valuation(
            quantity=quantity,
            unit_cost=unit,
            total_value=round_money(quantity * unit),
        )
