"""
DailyBalanceLedger -- per-day, per-(warehouse, material) movement rollup.

Responsibility:
    Accumulates quantity and value moved in and out for each calendar day.
    Reports read it for movement totals and derived begin-of-period
    balances.

Architecture position:
    Kernel > Services.  Written only by PostingService, inside the same
    transaction as the lot ledger mutation it mirrors.

Invariants enforced:
    S4 -- one row per (warehouse, material, day); every write adds to it.
    B1 -- values are rounded to 2 places before they are added.
    B2 -- reversals write an offsetting entry on the same side (negative
          quantity and value) dated the reversal day; the original day's
          row is never edited.

Failure modes:
    - IntegrityError on a concurrent first-write race is absorbed by a
      savepoint rollback and a locked re-read.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inventory_kernel.db.types import round_money
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.stock import StockBalance
from inventory_kernel.services.base import BaseService

logger = get_logger("services.balance_ledger")

_ZERO = Decimal("0")


class DailyBalanceLedger(BaseService):
    """
    Additive daily rollup writer.

    Guarantees:
        - ``record_in``/``record_out`` never create a second row for a key.
        - Never commits.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def _locked_row(self, warehouse_id: UUID, material_id: UUID, day: date) -> StockBalance | None:
        return self.session.execute(
            select(StockBalance)
            .where(
                StockBalance.warehouse_id == warehouse_id,
                StockBalance.material_id == material_id,
                StockBalance.balance_date == day,
            )
            .with_for_update()
        ).scalar_one_or_none()

    def _row(self, warehouse_id: UUID, material_id: UUID, day: date) -> StockBalance:
        row = self._locked_row(warehouse_id, material_id, day)
        if row is not None:
            return row

        savepoint = self.session.begin_nested()
        try:
            row = StockBalance(
                warehouse_id=warehouse_id,
                material_id=material_id,
                balance_date=day,
                qty_in=_ZERO,
                value_in=_ZERO,
                qty_out=_ZERO,
                value_out=_ZERO,
                updated_at=self._clock.now(),
            )
            self.session.add(row)
            self.session.flush()
            savepoint.commit()
            return row
        except IntegrityError:
            logger.debug("balance_row_race_retry", extra={
                "warehouse_id": str(warehouse_id),
                "material_id": str(material_id),
                "balance_date": day.isoformat(),
            })
            savepoint.rollback()
            row = self._locked_row(warehouse_id, material_id, day)
            if row is None:
                raise
            return row

    def record_in(
        self,
        warehouse_id: UUID,
        material_id: UUID,
        quantity: Decimal,
        value: Decimal,
        day: date | None = None,
    ) -> StockBalance:
        """Add to the in side of (warehouse, material, day)."""
        day = day or self._clock.today()
        row = self._row(warehouse_id, material_id, day)
        row.qty_in += quantity
        row.value_in += round_money(value)
        row.updated_at = self._clock.now()
        self.session.flush()
        logger.debug("balance_in_recorded", extra={
            "warehouse_id": str(warehouse_id),
            "material_id": str(material_id),
            "balance_date": day.isoformat(),
            "quantity": str(quantity),
            "value": str(round_money(value)),
        })
        return row

    def record_out(
        self,
        warehouse_id: UUID,
        material_id: UUID,
        quantity: Decimal,
        value: Decimal,
        day: date | None = None,
    ) -> StockBalance:
        """Add to the out side of (warehouse, material, day)."""
        day = day or self._clock.today()
        row = self._row(warehouse_id, material_id, day)
        row.qty_out += quantity
        row.value_out += round_money(value)
        row.updated_at = self._clock.now()
        self.session.flush()
        logger.debug("balance_out_recorded", extra={
            "warehouse_id": str(warehouse_id),
            "material_id": str(material_id),
            "balance_date": day.isoformat(),
            "quantity": str(quantity),
            "value": str(round_money(value)),
        })
        return row

    def reverse_in(
        self,
        warehouse_id: UUID,
        material_id: UUID,
        quantity: Decimal,
        value: Decimal,
        day: date | None = None,
    ) -> StockBalance:
        """Offsetting entry for an earlier ``record_in`` (INVARIANT B2)."""
        return self.record_in(warehouse_id, material_id, -quantity, -value, day)

    def reverse_out(
        self,
        warehouse_id: UUID,
        material_id: UUID,
        quantity: Decimal,
        value: Decimal,
        day: date | None = None,
    ) -> StockBalance:
        """Offsetting entry for an earlier ``record_out`` (INVARIANT B2)."""
        return self.record_out(warehouse_id, material_id, -quantity, -value, day)

    def movements(
        self,
        date_from: date,
        date_to: date,
        warehouse_id: UUID | None = None,
        material_id: UUID | None = None,
    ) -> list[MovementTotal]:
        """
        Summed in/out per (warehouse, material) over [date_from, date_to].

        Buckets with no rows in the range are absent.
        """
        if date_from > date_to:
            raise ValueError(f"Empty range: {date_from} > {date_to}")

        stmt = (
            select(
                StockBalance.warehouse_id,
                StockBalance.material_id,
                func.sum(StockBalance.qty_in),
                func.sum(StockBalance.value_in),
                func.sum(StockBalance.qty_out),
                func.sum(StockBalance.value_out),
            )
            .where(
                StockBalance.balance_date >= date_from,
                StockBalance.balance_date <= date_to,
            )
            .group_by(StockBalance.warehouse_id, StockBalance.material_id)
        )
        if warehouse_id is not None:
            stmt = stmt.where(StockBalance.warehouse_id == warehouse_id)
        if material_id is not None:
            stmt = stmt.where(StockBalance.material_id == material_id)

        return [
            MovementTotal(
                warehouse_id=wh,
                material_id=mat,
                qty_in=_dec(qty_in),
                value_in=round_money(_dec(value_in)),
                qty_out=_dec(qty_out),
                value_out=round_money(_dec(value_out)),
            )
            for wh, mat, qty_in, value_in, qty_out, value_out in self.session.execute(stmt)
        ]


@dataclass(frozen=True)
class MovementTotal:
    """Ledger totals for one (warehouse, material) over a date range."""

    warehouse_id: UUID
    material_id: UUID
    qty_in: Decimal
    value_in: Decimal
    qty_out: Decimal
    value_out: Decimal


def _dec(value) -> Decimal:
    # SUM over Numeric comes back as float on SQLite
    if value is None:
        return _ZERO
    return value if isinstance(value, Decimal) else Decimal(str(value))
