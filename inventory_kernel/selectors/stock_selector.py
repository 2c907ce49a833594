"""
Module: inventory_kernel.selectors.stock_selector
Responsibility: Read-only queries over lots, the on-hand snapshot, the daily
    balance ledger and issue allocations.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Read-only.  ``drift()`` reports, but never repairs, any bucket where
      Stock.quantity differs from the sum of remaining lot quantities.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from inventory_kernel.domain.lots import LotSnapshot
from inventory_kernel.models.documents import StockIssueAllocation
from inventory_kernel.models.stock import Stock, StockBalance, StockLot
from inventory_kernel.selectors.base import BaseSelector

_ZERO = Decimal("0")


@dataclass(frozen=True)
class StockDrift:
    """A bucket whose snapshot disagrees with its lots."""

    warehouse_id: UUID
    material_id: UUID
    stock_quantity: Decimal
    lot_quantity: Decimal


@dataclass(frozen=True)
class BalanceEntry:
    """One daily balance ledger row."""

    warehouse_id: UUID
    material_id: UUID
    balance_date: date
    qty_in: Decimal
    value_in: Decimal
    qty_out: Decimal
    value_out: Decimal


@dataclass(frozen=True)
class AllocationEntry:
    issue_line_id: UUID
    lot_id: UUID
    quantity: Decimal
    unit_cost: Decimal | None


class StockSelector(BaseSelector):
    """Read side of the lot ledger."""

    def on_hand(self, warehouse_id: UUID, material_id: UUID) -> Decimal:
        qty = self.session.execute(
            select(Stock.quantity).where(
                Stock.warehouse_id == warehouse_id,
                Stock.material_id == material_id,
            )
        ).scalar_one_or_none()
        return qty if qty is not None else _ZERO

    def lot_total(self, warehouse_id: UUID, material_id: UUID) -> Decimal:
        total = self.session.execute(
            select(func.coalesce(func.sum(StockLot.remaining_quantity), 0)).where(
                StockLot.warehouse_id == warehouse_id,
                StockLot.material_id == material_id,
            )
        ).scalar_one()
        return Decimal(str(total))

    def lots(
        self,
        warehouse_id: UUID,
        material_id: UUID,
        include_empty: bool = False,
    ) -> list[LotSnapshot]:
        """Lots in creation order; zero lots only when ``include_empty``."""
        stmt = select(StockLot).where(
            StockLot.warehouse_id == warehouse_id,
            StockLot.material_id == material_id,
        )
        if not include_empty:
            stmt = stmt.where(StockLot.remaining_quantity > 0)
        return [lot.snapshot() for lot in self.session.execute(stmt.order_by(StockLot.lot_seq)).scalars()]

    def lot(self, lot_id: UUID) -> LotSnapshot | None:
        lot = self.session.get(StockLot, lot_id)
        return lot.snapshot() if lot is not None else None

    def drift(self) -> list[StockDrift]:
        """Buckets where Stock.quantity != sum(remaining lot quantity)."""
        lot_sums = dict(
            ((wh, mat), qty)
            for wh, mat, qty in self.session.execute(
                select(
                    StockLot.warehouse_id,
                    StockLot.material_id,
                    func.sum(StockLot.remaining_quantity),
                ).group_by(StockLot.warehouse_id, StockLot.material_id)
            )
        )
        stocks = {
            (s.warehouse_id, s.material_id): s.quantity
            for s in self.session.execute(select(Stock)).scalars()
        }
        drifts = []
        for key in set(lot_sums) | set(stocks):
            stock_qty = stocks.get(key, _ZERO)
            lot_qty = Decimal(str(lot_sums.get(key) or 0))
            if stock_qty != lot_qty:
                drifts.append(StockDrift(key[0], key[1], stock_qty, lot_qty))
        return drifts

    def balances(
        self,
        warehouse_id: UUID | None = None,
        material_id: UUID | None = None,
    ) -> list[BalanceEntry]:
        stmt = select(StockBalance)
        if warehouse_id is not None:
            stmt = stmt.where(StockBalance.warehouse_id == warehouse_id)
        if material_id is not None:
            stmt = stmt.where(StockBalance.material_id == material_id)
        return [
            BalanceEntry(
                warehouse_id=row.warehouse_id,
                material_id=row.material_id,
                balance_date=row.balance_date,
                qty_in=row.qty_in,
                value_in=row.value_in,
                qty_out=row.qty_out,
                value_out=row.value_out,
            )
            for row in self.session.execute(stmt.order_by(StockBalance.balance_date)).scalars()
        ]

    def allocations_for_line(self, issue_line_id: UUID) -> list[AllocationEntry]:
        return [
            AllocationEntry(a.issue_line_id, a.lot_id, a.quantity, a.unit_cost)
            for a in self.session.execute(
                select(StockIssueAllocation).where(
                    StockIssueAllocation.issue_line_id == issue_line_id
                )
            ).scalars()
        ]

    def allocated_against_lot(self, lot_id: UUID) -> Decimal:
        total = self.session.execute(
            select(func.coalesce(func.sum(StockIssueAllocation.quantity), 0)).where(
                StockIssueAllocation.lot_id == lot_id
            )
        ).scalar_one()
        return Decimal(str(total))
