"""
Module: inventory_engines.reporting
Responsibility:
    Pure report arithmetic: movement totals, begin/in/out/end inventory,
    revenue and COGS by period, profit & loss, and stock turnover.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  ReportService gathers the
    facts (ledger sums, live on-hand, issued lines) and hands them here.

Invariants enforced:
    - ReportKind is a closed enum; ReportService must handle every member.
    - Begin-of-period quantity is derived, not replayed:
      begin = end - in + out, with end taken from live on-hand.
    - Monetary outputs are rounded to 2 places.
    - Turnover rows are sorted by rate descending, then material code.

Failure modes:
    - ValueError on a non-positive period length for turnover.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from inventory_kernel.db.types import round_money
from inventory_kernel.logging_config import get_logger

logger = get_logger("engines.reporting")

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


class ReportKind(str, Enum):
    """Every report the back office can produce."""

    MOVEMENTS = "movements"
    INVENTORY = "inventory"
    VALUATION = "valuation"
    REVENUE = "revenue"
    COGS = "cogs"
    PROFIT_LOSS = "profit_loss"
    TURNOVER = "turnover"


class GroupBy(str, Enum):
    DAY = "day"
    MONTH = "month"
    YEAR = "year"


class TurnoverCategory(str, Enum):
    FAST = "fast"
    MEDIUM = "medium"
    SLOW = "slow"


def period_key(day: date, group_by: GroupBy) -> str:
    match group_by:
        case GroupBy.DAY:
            return day.isoformat()
        case GroupBy.MONTH:
            return f"{day.year:04d}-{day.month:02d}"
        case GroupBy.YEAR:
            return f"{day.year:04d}"
        case _:
            raise ValueError(f"Unknown grouping: {group_by}")


# ---------------------------------------------------------------------------
# Facts (inputs)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MaterialMovement:
    """Ledger in/out totals for one material over a date range."""

    material_id: UUID
    material_code: str
    material_name: str
    unit: str
    qty_in: Decimal
    value_in: Decimal
    qty_out: Decimal
    value_out: Decimal


@dataclass(frozen=True, slots=True)
class OnHand:
    """Live on-hand quantity and value for one material."""

    material_id: UUID
    material_code: str
    material_name: str
    unit: str
    quantity: Decimal
    value: Decimal


@dataclass(frozen=True, slots=True)
class SaleLine:
    """One posted issue line, as revenue/COGS input."""

    issue_date: date
    material_id: UUID
    material_code: str
    material_name: str
    quantity: Decimal
    unit_price: Decimal
    cost_price: Decimal


# ---------------------------------------------------------------------------
# Rows (outputs)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class InventoryRow:
    material_id: UUID
    material_code: str
    material_name: str
    unit: str
    begin_qty: Decimal
    begin_value: Decimal
    qty_in: Decimal
    value_in: Decimal
    qty_out: Decimal
    value_out: Decimal
    end_qty: Decimal
    end_value: Decimal


@dataclass(frozen=True, slots=True)
class PeriodAmountRow:
    period: str
    quantity: Decimal
    amount: Decimal
    line_count: int
    material_code: str | None = None


@dataclass(frozen=True, slots=True)
class ProfitLossRow:
    period: str
    revenue: Decimal
    cogs: Decimal
    gross_profit: Decimal
    gross_margin_pct: Decimal

    @property
    def net_profit(self) -> Decimal:
        # No operating expenses are tracked
        return self.gross_profit


@dataclass(frozen=True, slots=True)
class TurnoverRow:
    material_id: UUID
    material_code: str
    material_name: str
    begin_qty: Decimal
    end_qty: Decimal
    average_qty: Decimal
    issued_qty: Decimal
    turnover_rate: Decimal
    days_to_turnover: Decimal | None
    category: TurnoverCategory


@dataclass(frozen=True, slots=True)
class ValuationRow:
    warehouse_id: UUID
    warehouse_name: str
    material_id: UUID
    material_code: str
    material_name: str
    quantity: Decimal
    unit_cost: Decimal
    total_value: Decimal


# ---------------------------------------------------------------------------
# Calculator
# ---------------------------------------------------------------------------


class ReportCalculator:
    """
    Pure report arithmetic.

    Contract:
        Inputs are frozen fact records; outputs are frozen row records.
    Non-goals:
        - No I/O and no time-travel: historical balances use the documented
          end - in + out derivation.
    """

    def inventory(
        self,
        movements: Sequence[MaterialMovement],
        on_hand: Sequence[OnHand],
    ) -> tuple[InventoryRow, ...]:
        """Begin/in/out/end per material; begin = end - in + out."""
        moves = {m.material_id: m for m in movements}
        stock = {s.material_id: s for s in on_hand}

        rows = []
        for material_id in sorted(set(moves) | set(stock), key=str):
            m = moves.get(material_id)
            s = stock.get(material_id)
            ref = s or m
            qty_in = m.qty_in if m else _ZERO
            qty_out = m.qty_out if m else _ZERO
            value_in = m.value_in if m else _ZERO
            value_out = m.value_out if m else _ZERO
            end_qty = s.quantity if s else _ZERO
            end_value = s.value if s else _ZERO
            rows.append(InventoryRow(
                material_id=material_id,
                material_code=ref.material_code,
                material_name=ref.material_name,
                unit=ref.unit,
                begin_qty=end_qty - qty_in + qty_out,
                begin_value=round_money(end_value - value_in + value_out),
                qty_in=qty_in,
                value_in=round_money(value_in),
                qty_out=qty_out,
                value_out=round_money(value_out),
                end_qty=end_qty,
                end_value=round_money(end_value),
            ))
        return tuple(sorted(rows, key=lambda r: r.material_code))

    def _by_period(
        self,
        lines: Iterable[SaleLine],
        group_by: GroupBy,
        price: str,
        detail: bool,
    ) -> tuple[PeriodAmountRow, ...]:
        qty: dict[tuple, Decimal] = defaultdict(lambda: _ZERO)
        amount: dict[tuple, Decimal] = defaultdict(lambda: _ZERO)
        count: dict[tuple, int] = defaultdict(int)
        for line in lines:
            key = (period_key(line.issue_date, group_by), line.material_code if detail else None)
            qty[key] += line.quantity
            amount[key] += line.quantity * getattr(line, price)
            count[key] += 1
        return tuple(
            PeriodAmountRow(
                period=key[0],
                quantity=qty[key],
                amount=round_money(amount[key]),
                line_count=count[key],
                material_code=key[1],
            )
            for key in sorted(qty, key=lambda k: (k[0], k[1] or ""))
        )

    def revenue(
        self, lines: Sequence[SaleLine], group_by: GroupBy, detail: bool = False
    ) -> tuple[PeriodAmountRow, ...]:
        """Quantity x sale price per period (optionally per material)."""
        return self._by_period(lines, group_by, "unit_price", detail)

    def cogs(
        self, lines: Sequence[SaleLine], group_by: GroupBy, detail: bool = False
    ) -> tuple[PeriodAmountRow, ...]:
        """Quantity x computed cost price per period."""
        return self._by_period(lines, group_by, "cost_price", detail)

    def profit_loss(
        self, lines: Sequence[SaleLine], group_by: GroupBy
    ) -> tuple[ProfitLossRow, ...]:
        revenue = {r.period: r.amount for r in self.revenue(lines, group_by)}
        cogs = {r.period: r.amount for r in self.cogs(lines, group_by)}
        rows = []
        for period in sorted(revenue):
            rev = revenue[period]
            cost = cogs.get(period, _ZERO)
            gross = rev - cost
            margin = round_money(gross / rev * _HUNDRED) if rev else round_money(_ZERO)
            rows.append(ProfitLossRow(
                period=period,
                revenue=rev,
                cogs=cost,
                gross_profit=gross,
                gross_margin_pct=margin,
            ))
        return tuple(rows)

    def turnover(
        self,
        movements: Sequence[MaterialMovement],
        on_hand: Sequence[OnHand],
        days: int,
        fast_threshold: Decimal,
        medium_threshold: Decimal,
    ) -> tuple[TurnoverRow, ...]:
        """
        Stock turnover per material.

        begin = max(end - in + out, 0); average = (begin + end) / 2;
        rate = issued / average (0 when average is 0);
        days_to_turnover = days / rate (None when rate is 0).
        """
        if days <= 0:
            raise ValueError(f"Turnover period must span at least one day, got {days}")

        moves = {m.material_id: m for m in movements}
        stock = {s.material_id: s for s in on_hand}
        rows = []
        for material_id in set(moves) | set(stock):
            m = moves.get(material_id)
            s = stock.get(material_id)
            ref = s or m
            end_qty = s.quantity if s else _ZERO
            qty_in = m.qty_in if m else _ZERO
            issued = m.qty_out if m else _ZERO
            begin_qty = max(end_qty - qty_in + issued, _ZERO)
            average = (begin_qty + end_qty) / 2
            rate = round_money(issued / average) if average > _ZERO else round_money(_ZERO)
            days_to_turn = round_money(Decimal(days) / rate) if rate > _ZERO else None

            if rate > fast_threshold:
                category = TurnoverCategory.FAST
            elif rate >= medium_threshold:
                category = TurnoverCategory.MEDIUM
            else:
                category = TurnoverCategory.SLOW

            rows.append(TurnoverRow(
                material_id=material_id,
                material_code=ref.material_code,
                material_name=ref.material_name,
                begin_qty=begin_qty,
                end_qty=end_qty,
                average_qty=average,
                issued_qty=issued,
                turnover_rate=rate,
                days_to_turnover=days_to_turn,
                category=category,
            ))
        rows.sort(key=lambda r: (-r.turnover_rate, r.material_code))
        logger.debug("turnover_computed", extra={"material_count": len(rows), "days": days})
        return tuple(rows)
