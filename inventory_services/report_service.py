"""
inventory_services.report_service -- Stock and financial reports.

Responsibility:
    Gathers report facts (balance ledger sums, live stock, posted issue
    lines), hands them to the pure ReportCalculator, and wraps the rows in
    a frozen ``Report`` with totals and the filters it was run with.

Architecture position:
    Services.  Read-only: never writes, never locks.  Warehouse names come
    from the injected WarehouseDirectory so repeated reports do not re-query
    them.

Invariants enforced:
    - Every ReportKind member has exactly one handler; construction fails
      otherwise, so adding a kind without a handler cannot ship silently.
    - ``generated_at`` comes from the injected clock.
    - Revenue and COGS read only issues in ISSUED status, dated by the day
      they were posted.

Failure modes:
    - ValueError on an empty date range.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_config.schema import ReportSettings
from inventory_engines.reporting import (
    GroupBy,
    MaterialMovement,
    OnHand,
    ReportCalculator,
    ReportKind,
    SaleLine,
    ValuationRow,
)
from inventory_kernel.db.types import round_money
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.values import DocumentStatus
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.catalog import Material
from inventory_kernel.models.documents import StockIssue, StockIssueLine
from inventory_kernel.models.stock import Stock
from inventory_kernel.services.balance_ledger import DailyBalanceLedger
from inventory_services.costing_service import CostingService
from inventory_services.lookup_cache import WarehouseDirectory

logger = get_logger("services.reports")

_ZERO = Decimal("0")


@dataclass(frozen=True)
class ReportRequest:
    """What to report on.  ``date_from``/``date_to`` are inclusive."""

    kind: ReportKind
    date_from: date | None = None
    date_to: date | None = None
    warehouse_id: UUID | None = None
    material_id: UUID | None = None
    group_by: GroupBy = GroupBy.MONTH
    detail: bool = False

    def filters(self) -> dict[str, str]:
        values = {
            "date_from": self.date_from.isoformat() if self.date_from else None,
            "date_to": self.date_to.isoformat() if self.date_to else None,
            "warehouse_id": str(self.warehouse_id) if self.warehouse_id else None,
            "material_id": str(self.material_id) if self.material_id else None,
            "group_by": self.group_by.value,
            "detail": str(self.detail).lower(),
        }
        return {k: v for k, v in values.items() if v is not None}


@dataclass(frozen=True)
class Report:
    kind: ReportKind
    rows: tuple[Any, ...]
    totals: dict[str, Decimal]
    generated_at: datetime
    filters: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class _MaterialInfo:
    code: str
    name: str
    unit: str


class ReportService:
    """
    One handler per ReportKind, dispatched by ``generate``.

    Contract:
        Receives collaborators via constructor injection.  Handlers are
        pure with respect to the database.
    """

    def __init__(
        self,
        session: Session,
        costing: CostingService,
        directory: WarehouseDirectory,
        settings: ReportSettings | None = None,
        clock: Clock | None = None,
        calculator: ReportCalculator | None = None,
    ):
        self._session = session
        self._costing = costing
        self._directory = directory
        self._settings = settings or ReportSettings()
        self._clock = clock or SystemClock()
        self._calculator = calculator or ReportCalculator()
        self._ledger = DailyBalanceLedger(session, self._clock)

        self._handlers: dict[ReportKind, Callable[[ReportRequest], tuple[tuple, dict]]] = {
            ReportKind.MOVEMENTS: self._movements_report,
            ReportKind.INVENTORY: self._inventory_report,
            ReportKind.VALUATION: self._valuation_report,
            ReportKind.REVENUE: self._revenue_report,
            ReportKind.COGS: self._cogs_report,
            ReportKind.PROFIT_LOSS: self._profit_loss_report,
            ReportKind.TURNOVER: self._turnover_report,
        }
        missing = set(ReportKind) - set(self._handlers)
        if missing:
            raise RuntimeError(
                f"No report handler for: {sorted(k.value for k in missing)}"
            )

    @property
    def kinds(self) -> tuple[ReportKind, ...]:
        return tuple(self._handlers)

    def generate(self, request: ReportRequest) -> Report:
        rows, totals = self._handlers[request.kind](request)
        report = Report(
            kind=request.kind,
            rows=rows,
            totals=totals,
            generated_at=self._clock.now(),
            filters=request.filters(),
        )
        logger.info("report_generated", extra={
            "kind": request.kind.value,
            "row_count": len(rows),
            **report.filters,
        })
        return report

    # ------------------------------------------------------------------
    # Facts
    # ------------------------------------------------------------------

    def _range(self, request: ReportRequest) -> tuple[date, date]:
        date_to = request.date_to or self._clock.today()
        date_from = request.date_from or date_to.replace(day=1)
        if date_from > date_to:
            raise ValueError(f"Empty range: {date_from} > {date_to}")
        return date_from, date_to

    def _materials(self, ids: set[UUID]) -> dict[UUID, _MaterialInfo]:
        if not ids:
            return {}
        return {
            m.id: _MaterialInfo(m.code, m.name, m.unit)
            for m in self._session.execute(
                select(Material).where(Material.id.in_(ids))
            ).scalars()
        }

    def _material_movements(self, request: ReportRequest) -> list[MaterialMovement]:
        date_from, date_to = self._range(request)
        totals = self._ledger.movements(
            date_from, date_to, request.warehouse_id, request.material_id
        )
        sums: dict[UUID, list[Decimal]] = defaultdict(lambda: [_ZERO, _ZERO, _ZERO, _ZERO])
        for t in totals:
            acc = sums[t.material_id]
            acc[0] += t.qty_in
            acc[1] += t.value_in
            acc[2] += t.qty_out
            acc[3] += t.value_out
        materials = self._materials(set(sums))
        return [
            MaterialMovement(
                material_id=material_id,
                material_code=materials[material_id].code,
                material_name=materials[material_id].name,
                unit=materials[material_id].unit,
                qty_in=acc[0],
                value_in=acc[1],
                qty_out=acc[2],
                value_out=acc[3],
            )
            for material_id, acc in sums.items()
        ]

    def _stock_rows(self, request: ReportRequest) -> list[Stock]:
        stmt = select(Stock)
        if request.warehouse_id is not None:
            stmt = stmt.where(Stock.warehouse_id == request.warehouse_id)
        if request.material_id is not None:
            stmt = stmt.where(Stock.material_id == request.material_id)
        return list(self._session.execute(stmt).scalars())

    def _on_hand(self, request: ReportRequest) -> list[OnHand]:
        qty: dict[UUID, Decimal] = defaultdict(lambda: _ZERO)
        value: dict[UUID, Decimal] = defaultdict(lambda: _ZERO)
        for stock in self._stock_rows(request):
            if stock.quantity <= _ZERO:
                continue
            valuation = self._costing.valuation(stock.warehouse_id, stock.material_id)
            qty[stock.material_id] += stock.quantity
            value[stock.material_id] += valuation.total_value
        materials = self._materials(set(qty))
        return [
            OnHand(
                material_id=material_id,
                material_code=materials[material_id].code,
                material_name=materials[material_id].name,
                unit=materials[material_id].unit,
                quantity=qty[material_id],
                value=value[material_id],
            )
            for material_id in qty
        ]

    def _sale_lines(self, request: ReportRequest) -> list[SaleLine]:
        date_from, date_to = self._range(request)
        # Half-open UTC range: [date_from 00:00, date_to + 1 day 00:00)
        start = datetime.combine(date_from, time.min, tzinfo=timezone.utc)
        end = datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=timezone.utc)
        stmt = (
            select(StockIssueLine, StockIssue.posted_at, Material)
            .join(StockIssue, StockIssueLine.issue_id == StockIssue.id)
            .join(Material, StockIssueLine.material_id == Material.id)
            .where(
                StockIssue.status == DocumentStatus.ISSUED.value,
                StockIssue.posted_at >= start,
                StockIssue.posted_at < end,
            )
        )
        if request.warehouse_id is not None:
            stmt = stmt.where(StockIssue.warehouse_id == request.warehouse_id)
        if request.material_id is not None:
            stmt = stmt.where(StockIssueLine.material_id == request.material_id)

        return [
            SaleLine(
                issue_date=posted_at.date(),
                material_id=material.id,
                material_code=material.code,
                material_name=material.name,
                quantity=line.quantity,
                unit_price=line.unit_price or _ZERO,
                cost_price=line.cost_price or _ZERO,
            )
            for line, posted_at, material in self._session.execute(stmt)
        ]

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _movements_report(self, request: ReportRequest) -> tuple[tuple, dict]:
        rows = tuple(sorted(self._material_movements(request), key=lambda r: r.material_code))
        return rows, {
            "qty_in": sum((r.qty_in for r in rows), _ZERO),
            "value_in": round_money(sum((r.value_in for r in rows), _ZERO)),
            "qty_out": sum((r.qty_out for r in rows), _ZERO),
            "value_out": round_money(sum((r.value_out for r in rows), _ZERO)),
        }

    def _inventory_report(self, request: ReportRequest) -> tuple[tuple, dict]:
        rows = self._calculator.inventory(
            movements=self._material_movements(request),
            on_hand=self._on_hand(request),
        )
        return rows, {
            "begin_value": round_money(sum((r.begin_value for r in rows), _ZERO)),
            "value_in": round_money(sum((r.value_in for r in rows), _ZERO)),
            "value_out": round_money(sum((r.value_out for r in rows), _ZERO)),
            "end_value": round_money(sum((r.end_value for r in rows), _ZERO)),
        }

    def _valuation_report(self, request: ReportRequest) -> tuple[tuple, dict]:
        stocks = [s for s in self._stock_rows(request) if s.quantity > _ZERO]
        materials = self._materials({s.material_id for s in stocks})
        rows = []
        for stock in stocks:
            valuation = self._costing.valuation(stock.warehouse_id, stock.material_id)
            material = materials[stock.material_id]
            rows.append(ValuationRow(
                warehouse_id=stock.warehouse_id,
                warehouse_name=self._directory.name(stock.warehouse_id),
                material_id=stock.material_id,
                material_code=material.code,
                material_name=material.name,
                quantity=valuation.quantity,
                unit_cost=valuation.unit_cost,
                total_value=valuation.total_value,
            ))
        rows.sort(key=lambda r: (r.warehouse_name, r.material_code))
        return tuple(rows), {
            "quantity": sum((r.quantity for r in rows), _ZERO),
            "total_value": round_money(sum((r.total_value for r in rows), _ZERO)),
        }

    def _revenue_report(self, request: ReportRequest) -> tuple[tuple, dict]:
        rows = self._calculator.revenue(self._sale_lines(request), request.group_by, request.detail)
        return rows, {"amount": round_money(sum((r.amount for r in rows), _ZERO))}

    def _cogs_report(self, request: ReportRequest) -> tuple[tuple, dict]:
        rows = self._calculator.cogs(self._sale_lines(request), request.group_by, request.detail)
        return rows, {"amount": round_money(sum((r.amount for r in rows), _ZERO))}

    def _profit_loss_report(self, request: ReportRequest) -> tuple[tuple, dict]:
        rows = self._calculator.profit_loss(self._sale_lines(request), request.group_by)
        revenue = sum((r.revenue for r in rows), _ZERO)
        cogs = sum((r.cogs for r in rows), _ZERO)
        gross = revenue - cogs
        margin = round_money(gross / revenue * 100) if revenue else round_money(_ZERO)
        return rows, {
            "revenue": round_money(revenue),
            "cogs": round_money(cogs),
            "gross_profit": round_money(gross),
            "gross_margin_pct": margin,
        }

    def _turnover_report(self, request: ReportRequest) -> tuple[tuple, dict]:
        date_from, date_to = self._range(request)
        rows = self._calculator.turnover(
            movements=self._material_movements(request),
            on_hand=self._on_hand(request),
            days=(date_to - date_from).days + 1,
            fast_threshold=self._settings.turnover_fast_threshold,
            medium_threshold=self._settings.turnover_medium_threshold,
        )
        return rows, {"issued_qty": sum((r.issued_qty for r in rows), _ZERO)}
