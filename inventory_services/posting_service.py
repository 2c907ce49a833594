"""
inventory_services.posting_service -- Stock effect of documents and their reversal.

Responsibility:
    Turns a confirmed document into lot, on-hand and daily-ledger
    movements, and undoes exactly those movements on cancellation.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Composes AllocationEngine and CostingEngine (pure) with LotLedger and
    DailyBalanceLedger (kernel writers).  Called only by
    DocumentWorkflowService, which owns the savepoint around each call.

Posting flow (issue; transfer and adjustment reuse steps 1-4):
    1. Validate every line (fields, materials, manual picks).
    2. Lock the Stock rows of every bucket touched, in sorted key order.
    3. Compare the whole document's demand per material with eligible
       lots and raise InsufficientStockError before any mutation.
    4. Plan each line's allocation and cost against an in-memory copy of
       the lots, so manual-pick errors also surface before any mutation.
    5. Draw the planned lots, write allocation rows, set cost_price.
    6. record_out at the computed cost.
    7. Release every lot still reserved for the posted issue.

Invariants enforced:
    - Validation and stock errors are raised before the first write.
    - sum(allocations of a line) == line quantity.
    - Stock.quantity == sum(remaining lot quantity) after every call
      (delegated to LotLedger).
    - Each line's ``posted_value`` is exactly what went to the ledger;
      reversal writes the negation of it on the reversal day.
    - Reversal retires created lots only when untouched; all of them are
      checked before the first retire.

Failure modes:
    - DocumentValidationError: empty document, bad quantity, unknown
      material, malformed manual allocation, same-warehouse transfer.
    - InsufficientStockError: demand exceeds eligible lots.
    - AllocationMismatchError / LotNotFoundError / LotReservedError /
      LotOverdrawnError: manual pick problems.
    - LotAlreadyConsumedError: reversal of a document whose lots were
      drawn since.
"""

from __future__ import annotations

import time
from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_engines.allocation import (
    AllocationEngine,
    AllocationResult,
    ManualPick,
    available_quantity,
)
from inventory_engines.costing import CostingEngine, IssueCost
from inventory_kernel.db.types import round_money
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.lots import LotSnapshot
from inventory_kernel.domain.values import DocumentType
from inventory_kernel.exceptions import (
    DocumentValidationError,
    InsufficientStockError,
    LotAlreadyConsumedError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.catalog import Material
from inventory_kernel.models.documents import (
    StockAdjustment,
    StockAdjustmentAllocation,
    StockIssue,
    StockIssueAllocation,
    StockReceipt,
    StockTransfer,
    StockTransferAllocation,
)
from inventory_kernel.models.stock import StockLot
from inventory_kernel.services.balance_ledger import DailyBalanceLedger
from inventory_kernel.services.lot_ledger import LotLedger, StockKey
from inventory_kernel.services.sequence_service import SequenceService
from inventory_services.costing_service import CostingService

logger = get_logger("services.posting")

_ZERO = Decimal("0")


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LinePosting:
    """Stock effect of one line."""

    line_id: UUID
    material_id: UUID
    quantity: Decimal
    unit_cost: Decimal
    value: Decimal
    lot_ids: tuple[UUID, ...] = ()


@dataclass(frozen=True)
class PostingSummary:
    document_type: DocumentType
    document_id: UUID
    reversal: bool
    lines: tuple[LinePosting, ...]

    @property
    def total_quantity(self) -> Decimal:
        return sum((line.quantity for line in self.lines), _ZERO)

    @property
    def total_value(self) -> Decimal:
        return sum((line.value for line in self.lines), _ZERO)


@dataclass(frozen=True)
class _Demand:
    line: Any
    material: Material
    quantity: Decimal
    picks: tuple[ManualPick, ...] | None = None


@dataclass(frozen=True)
class _PlannedDraw:
    demand: _Demand
    allocation: AllocationResult
    cost: IssueCost


# ---------------------------------------------------------------------------
# Manual allocation payload
# ---------------------------------------------------------------------------


def parse_manual_allocation(raw: Any) -> tuple[ManualPick, ...]:
    """
    Parse ``[{"lot_id": str, "quantity": str}, ...]``.

    Raises:
        ValueError: malformed entry, non-positive quantity or a lot listed
            twice.
    """
    if not isinstance(raw, list) or not raw:
        raise ValueError("Manual allocation must be a non-empty list of lot picks")
    picks: list[ManualPick] = []
    seen: set[UUID] = set()
    for entry in raw:
        try:
            pick = ManualPick(
                lot_id=UUID(str(entry["lot_id"])),
                quantity=Decimal(str(entry["quantity"])),
            )
        except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
            raise ValueError(f"Malformed lot pick: {entry!r}") from exc
        if pick.quantity <= _ZERO:
            raise ValueError(f"Lot pick quantity must be positive: {entry!r}")
        if pick.lot_id in seen:
            raise ValueError(f"Lot {pick.lot_id} is picked more than once")
        seen.add(pick.lot_id)
        picks.append(pick)
    return tuple(picks)


def _after_draws(lots: Sequence[LotSnapshot], allocation: AllocationResult) -> list[LotSnapshot]:
    taken: dict[UUID, Decimal] = defaultdict(lambda: _ZERO)
    for draw in allocation.draws:
        taken[draw.lot_id] += draw.quantity
    return [
        replace(lot, remaining_quantity=lot.remaining_quantity - taken[lot.lot_id])
        if lot.lot_id in taken else lot
        for lot in lots
    ]


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class PostingService:
    """
    Applies and reverses the stock effect of documents.

    Contract:
        Runs inside the caller's transaction and only flushes.  A fresh
        LotLedger is built per call so locked Stock rows never outlive the
        posting that locked them.

    Non-goals:
        - Does not change document status (DocumentWorkflowService).
        - Does not commit.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        costing: CostingService | None = None,
        allocator: AllocationEngine | None = None,
        costing_engine: CostingEngine | None = None,
        sequence_service: SequenceService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._costing = costing or CostingService(session)
        self._allocator = allocator or AllocationEngine()
        self._costing_engine = costing_engine or CostingEngine()
        self._sequences = sequence_service or SequenceService(session)
        self._balances = DailyBalanceLedger(session, self._clock)

    def _ledger(self) -> LotLedger:
        return LotLedger(self._session, self._clock, self._sequences)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate(
        self,
        document_type: DocumentType,
        lines: Sequence[Any],
        quantity_of: Callable[[Any], Decimal | None],
        *,
        signed: bool = False,
        with_picks: bool = False,
        extra_errors: Iterable[dict[str, str]] = (),
    ) -> tuple[dict[UUID, Material], dict[int, tuple[ManualPick, ...]]]:
        errors = list(extra_errors)
        if not lines:
            errors.append({"field": "lines", "message": "Document has no lines"})

        material_ids = {line.material_id for line in lines if line.material_id is not None}
        materials: dict[UUID, Material] = {}
        if material_ids:
            materials = {
                m.id: m for m in self._session.execute(
                    select(Material).where(Material.id.in_(material_ids))
                ).scalars()
            }

        picks: dict[int, tuple[ManualPick, ...]] = {}
        for idx, line in enumerate(lines):
            prefix = f"lines[{idx}]"
            if line.material_id not in materials:
                errors.append({"field": f"{prefix}.material_id", "message": "Unknown material"})
            qty = quantity_of(line)
            if qty is None or (qty == _ZERO if signed else qty <= _ZERO):
                errors.append({
                    "field": f"{prefix}.quantity",
                    "message": "Quantity must be non-zero" if signed else "Quantity must be positive",
                })
            if with_picks and line.manual_allocation:
                try:
                    picks[idx] = parse_manual_allocation(line.manual_allocation)
                except ValueError as exc:
                    errors.append({"field": f"{prefix}.manual_allocation", "message": str(exc)})

        if errors:
            logger.warning("posting_validation_failed", extra={
                "document_type": document_type.value,
                "error_count": len(errors),
            })
            raise DocumentValidationError(document_type.value, errors)
        return materials, picks

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _value_cost(self, unit_cost: Decimal | None, material: Material) -> Decimal:
        if unit_cost is not None:
            return unit_cost
        return self._costing.fallback_for(material) or _ZERO

    def _plan_draws(
        self,
        ledger: LotLedger,
        warehouse_id: UUID,
        demands: Sequence[_Demand],
        issue_id: UUID | None = None,
    ) -> list[_PlannedDraw]:
        """Allocate and cost every demand without touching the lots."""
        pools: dict[UUID, list[LotSnapshot]] = {}
        requested: dict[UUID, Decimal] = defaultdict(lambda: _ZERO)
        materials: dict[UUID, Material] = {}
        for demand in demands:
            material_id = demand.material.id
            materials[material_id] = demand.material
            requested[material_id] += demand.quantity
            if material_id not in pools:
                pools[material_id] = ledger.snapshots(warehouse_id, material_id)

        # Whole-document availability before any line is allocated
        for material_id, quantity in requested.items():
            available = available_quantity(pools[material_id], issue_id)
            if available < quantity:
                logger.warning("posting_insufficient_stock", extra={
                    "warehouse_id": str(warehouse_id),
                    "material_id": str(material_id),
                    "requested": str(quantity),
                    "available": str(available),
                })
                raise InsufficientStockError(
                    material_id, warehouse_id, quantity, available,
                    materials[material_id].code,
                )

        plans: list[_PlannedDraw] = []
        for demand in demands:
            material = demand.material
            lots_before = pools[material.id]
            if demand.picks:
                allocation = self._allocator.allocate_manual(
                    warehouse_id=warehouse_id,
                    material_id=material.id,
                    quantity=demand.quantity,
                    lots=lots_before,
                    picks=demand.picks,
                    issue_id=issue_id,
                    material_code=material.code,
                )
            else:
                allocation = self._allocator.allocate_fefo(
                    warehouse_id=warehouse_id,
                    material_id=material.id,
                    quantity=demand.quantity,
                    lots=lots_before,
                    issue_id=issue_id,
                    material_code=material.code,
                )
            cost = self._costing_engine.issue_cost(
                method=self._costing.method_for(material),
                draws=allocation.draws,
                lots_before=lots_before,
                fallback_unit_cost=self._costing.fallback_for(material),
            )
            pools[material.id] = _after_draws(lots_before, allocation)
            plans.append(_PlannedDraw(demand, allocation, cost))
        return plans

    def _draw(self, ledger: LotLedger, plan: _PlannedDraw) -> list[StockLot]:
        drawn = []
        for draw in plan.allocation.draws:
            lot = ledger.get_lot(draw.lot_id)
            ledger.draw(lot, draw.quantity)
            drawn.append(lot)
        return drawn

    def _release_reservations(self, issue_id: UUID) -> int:
        """Lots held for a posted issue are free again, drawn or not."""
        held = self._session.execute(
            select(StockLot).where(StockLot.reserved_for_issue_id == issue_id)
        ).scalars().all()
        for lot in held:
            lot.is_reserved = False
            lot.reserved_for_issue_id = None
            lot.reserved_at = None
            lot.reserved_by_id = None
        if held:
            logger.info("issue_reservations_released", extra={
                "issue_id": str(issue_id),
                "lot_count": len(held),
            })
        return len(held)

    @staticmethod
    def _ensure_untouched(lots: Iterable[StockLot]) -> None:
        for lot in lots:
            if lot.remaining_quantity != lot.original_quantity:
                raise LotAlreadyConsumedError(lot.id, lot.original_quantity, lot.remaining_quantity)

    def _finish(
        self,
        document_type: DocumentType,
        document_id: UUID,
        lines: list[LinePosting],
        t0: float,
        reversal: bool = False,
    ) -> PostingSummary:
        self._session.flush()
        summary = PostingSummary(
            document_type=document_type,
            document_id=document_id,
            reversal=reversal,
            lines=tuple(lines),
        )
        logger.info("document_reversed" if reversal else "document_posted", extra={
            "document_type": document_type.value,
            "document_id": str(document_id),
            "line_count": len(lines),
            "total_quantity": str(summary.total_quantity),
            "total_value": str(summary.total_value),
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        return summary

    # ------------------------------------------------------------------
    # Receipt
    # ------------------------------------------------------------------

    def post_receipt(self, receipt: StockReceipt) -> PostingSummary:
        """One lot per line; record_in at the line's unit cost."""
        t0 = time.monotonic()
        materials, _ = self._validate(
            DocumentType.STOCK_RECEIPT,
            receipt.lines,
            lambda line: line.quantity,
            extra_errors=[
                {"field": f"lines[{i}].unit_cost", "message": "Unit cost cannot be negative"}
                for i, line in enumerate(receipt.lines)
                if line.unit_cost is not None and line.unit_cost < _ZERO
            ],
        )
        ledger = self._ledger()
        ledger.lock_stock(StockKey.of(receipt.warehouse_id, line.material_id) for line in receipt.lines)

        today = self._clock.today()
        postings = []
        for line in receipt.lines:
            material = materials[line.material_id]
            lot = ledger.add_lot(
                warehouse_id=receipt.warehouse_id,
                material_id=line.material_id,
                quantity=line.quantity,
                unit_cost=line.unit_cost,
                received_on=today,
                lot_number=line.lot_number,
                manufacture_date=line.manufacture_date,
                expiry_date=line.expiry_date,
                source_document_type=DocumentType.STOCK_RECEIPT.value,
                source_document_id=receipt.id,
                source_line_id=line.id,
            )
            cost = self._value_cost(line.unit_cost, material)
            value = round_money(line.quantity * cost)
            line.lot_id = lot.id
            line.posted_value = value
            self._balances.record_in(receipt.warehouse_id, line.material_id, line.quantity, value)
            postings.append(LinePosting(line.id, line.material_id, line.quantity, round_money(cost), value, (lot.id,)))

        return self._finish(DocumentType.STOCK_RECEIPT, receipt.id, postings, t0)

    def reverse_receipt(self, receipt: StockReceipt) -> PostingSummary:
        """Retire every lot the receipt created; fails if any was drawn."""
        t0 = time.monotonic()
        ledger = self._ledger()
        ledger.lock_stock(StockKey.of(receipt.warehouse_id, line.material_id) for line in receipt.lines)

        lots = [(line, ledger.get_lot(line.lot_id)) for line in receipt.lines]
        self._ensure_untouched(lot for _, lot in lots)

        postings = []
        for line, lot in lots:
            quantity = ledger.retire(lot)
            value = line.posted_value or _ZERO
            self._balances.reverse_in(receipt.warehouse_id, line.material_id, quantity, value)
            postings.append(LinePosting(line.id, line.material_id, quantity, lot.unit_cost or _ZERO, value, (lot.id,)))

        return self._finish(DocumentType.STOCK_RECEIPT, receipt.id, postings, t0, reversal=True)

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def post_issue(self, issue: StockIssue) -> PostingSummary:
        """Draw FEFO (or as picked), cost the draw, record_out at cost."""
        t0 = time.monotonic()
        materials, picks = self._validate(
            DocumentType.STOCK_ISSUE, issue.lines, lambda line: line.quantity, with_picks=True
        )
        ledger = self._ledger()
        ledger.lock_stock(StockKey.of(issue.warehouse_id, line.material_id) for line in issue.lines)

        demands = [
            _Demand(line, materials[line.material_id], line.quantity, picks.get(idx))
            for idx, line in enumerate(issue.lines)
        ]
        plans = self._plan_draws(ledger, issue.warehouse_id, demands, issue_id=issue.id)

        postings = []
        for plan in plans:
            line = plan.demand.line
            fallback = self._costing.fallback_for(plan.demand.material)
            lots = self._draw(ledger, plan)
            for draw in plan.allocation.draws:
                line.allocations.append(StockIssueAllocation(
                    lot_id=draw.lot_id,
                    quantity=draw.quantity,
                    unit_cost=draw.unit_cost if draw.unit_cost is not None else fallback,
                ))
            line.cost_price = plan.cost.unit_cost
            line.posted_value = plan.cost.total_cost
            self._balances.record_out(issue.warehouse_id, line.material_id, line.quantity, plan.cost.total_cost)
            postings.append(LinePosting(
                line.id, line.material_id, line.quantity,
                plan.cost.unit_cost, plan.cost.total_cost,
                tuple(lot.id for lot in lots),
            ))

        self._release_reservations(issue.id)
        return self._finish(DocumentType.STOCK_ISSUE, issue.id, postings, t0)

    def reverse_issue(self, issue: StockIssue) -> PostingSummary:
        """Restore every lot drawn, per the allocation rows."""
        t0 = time.monotonic()
        ledger = self._ledger()
        ledger.lock_stock(StockKey.of(issue.warehouse_id, line.material_id) for line in issue.lines)

        postings = []
        for line in issue.lines:
            lot_ids = []
            for allocation in line.allocations:
                lot = ledger.get_lot(allocation.lot_id)
                ledger.restore(lot, allocation.quantity)
                lot_ids.append(lot.id)
            value = line.posted_value or _ZERO
            self._balances.reverse_out(issue.warehouse_id, line.material_id, line.quantity, value)
            line.allocations.clear()
            postings.append(LinePosting(
                line.id, line.material_id, line.quantity,
                line.cost_price or _ZERO, value, tuple(lot_ids),
            ))

        return self._finish(DocumentType.STOCK_ISSUE, issue.id, postings, t0, reversal=True)

    # ------------------------------------------------------------------
    # Transfer
    # ------------------------------------------------------------------

    def post_transfer(self, transfer: StockTransfer) -> PostingSummary:
        """
        Issue at the source and receipt at the destination, in one unit.

        Each source draw becomes a destination lot carrying the source
        lot's number, dates and cost.  Both ledger sides use the blended
        cost of the lots actually moved.
        """
        t0 = time.monotonic()
        same_warehouse = []
        if transfer.from_warehouse_id == transfer.to_warehouse_id:
            same_warehouse.append({
                "field": "to_warehouse_id",
                "message": "Source and destination warehouses must differ",
            })
        materials, picks = self._validate(
            DocumentType.STOCK_TRANSFER,
            transfer.lines,
            lambda line: line.quantity,
            with_picks=True,
            extra_errors=same_warehouse,
        )
        source, destination = transfer.from_warehouse_id, transfer.to_warehouse_id
        ledger = self._ledger()
        ledger.lock_stock(
            StockKey.of(warehouse_id, line.material_id)
            for line in transfer.lines
            for warehouse_id in (source, destination)
        )

        demands = [
            _Demand(line, materials[line.material_id], line.quantity, picks.get(idx))
            for idx, line in enumerate(transfer.lines)
        ]
        plans = self._plan_draws(ledger, source, demands)

        today = self._clock.today()
        postings = []
        for plan in plans:
            line = plan.demand.line
            fallback = self._costing.fallback_for(plan.demand.material)
            unit_cost, total = self._costing_engine.blended_cost(plan.allocation.draws, fallback)
            created = []
            for draw, lot in zip(plan.allocation.draws, self._draw(ledger, plan)):
                moved = ledger.add_lot(
                    warehouse_id=destination,
                    material_id=line.material_id,
                    quantity=draw.quantity,
                    unit_cost=lot.unit_cost,
                    received_on=today,
                    lot_number=lot.lot_number,
                    manufacture_date=lot.manufacture_date,
                    expiry_date=lot.expiry_date,
                    source_document_type=DocumentType.STOCK_TRANSFER.value,
                    source_document_id=transfer.id,
                    source_line_id=line.id,
                )
                line.allocations.append(StockTransferAllocation(
                    source_lot_id=lot.id,
                    destination_lot_id=moved.id,
                    quantity=draw.quantity,
                    unit_cost=lot.unit_cost if lot.unit_cost is not None else fallback,
                ))
                created.append(moved.id)
            line.unit_cost = unit_cost
            line.posted_value = total
            self._balances.record_out(source, line.material_id, line.quantity, total)
            self._balances.record_in(destination, line.material_id, line.quantity, total)
            postings.append(LinePosting(line.id, line.material_id, line.quantity, unit_cost, total, tuple(created)))

        return self._finish(DocumentType.STOCK_TRANSFER, transfer.id, postings, t0)

    def reverse_transfer(self, transfer: StockTransfer) -> PostingSummary:
        """Retire destination lots (all must be untouched), restore sources."""
        t0 = time.monotonic()
        source, destination = transfer.from_warehouse_id, transfer.to_warehouse_id
        ledger = self._ledger()
        ledger.lock_stock(
            StockKey.of(warehouse_id, line.material_id)
            for line in transfer.lines
            for warehouse_id in (source, destination)
        )

        moves = [
            (line, allocation, ledger.get_lot(allocation.destination_lot_id))
            for line in transfer.lines
            for allocation in line.allocations
        ]
        self._ensure_untouched(moved for _, _, moved in moves)

        for _, allocation, moved in moves:
            ledger.retire(moved)
            ledger.restore(ledger.get_lot(allocation.source_lot_id), allocation.quantity)

        postings = []
        for line in transfer.lines:
            value = line.posted_value or _ZERO
            self._balances.reverse_in(destination, line.material_id, line.quantity, value)
            self._balances.reverse_out(source, line.material_id, line.quantity, value)
            lot_ids = tuple(a.source_lot_id for a in line.allocations)
            line.allocations.clear()
            postings.append(LinePosting(
                line.id, line.material_id, line.quantity, line.unit_cost or _ZERO, value, lot_ids,
            ))

        return self._finish(DocumentType.STOCK_TRANSFER, transfer.id, postings, t0, reversal=True)

    # ------------------------------------------------------------------
    # Adjustment
    # ------------------------------------------------------------------

    def post_adjustment(self, adjustment: StockAdjustment) -> PostingSummary:
        """Negative lines draw FEFO first; positive lines then add lots."""
        t0 = time.monotonic()
        materials, _ = self._validate(
            DocumentType.STOCK_ADJUSTMENT,
            adjustment.lines,
            lambda line: line.quantity_diff,
            signed=True,
        )
        warehouse_id = adjustment.warehouse_id
        ledger = self._ledger()
        ledger.lock_stock(StockKey.of(warehouse_id, line.material_id) for line in adjustment.lines)

        shortages = [
            _Demand(line, materials[line.material_id], -line.quantity_diff)
            for line in adjustment.lines
            if line.quantity_diff < _ZERO
        ]
        plans = self._plan_draws(ledger, warehouse_id, shortages) if shortages else []

        postings = []
        for plan in plans:
            line = plan.demand.line
            fallback = self._costing.fallback_for(plan.demand.material)
            lots = self._draw(ledger, plan)
            for draw in plan.allocation.draws:
                line.allocations.append(StockAdjustmentAllocation(
                    lot_id=draw.lot_id,
                    quantity=draw.quantity,
                    unit_cost=draw.unit_cost if draw.unit_cost is not None else fallback,
                ))
            line.unit_cost = plan.cost.unit_cost
            line.posted_value = plan.cost.total_cost
            self._balances.record_out(warehouse_id, line.material_id, plan.demand.quantity, plan.cost.total_cost)
            postings.append(LinePosting(
                line.id, line.material_id, line.quantity_diff,
                plan.cost.unit_cost, plan.cost.total_cost,
                tuple(lot.id for lot in lots),
            ))

        today = self._clock.today()
        for line in adjustment.lines:
            if line.quantity_diff < _ZERO:
                continue
            material = materials[line.material_id]
            lot = ledger.add_lot(
                warehouse_id=warehouse_id,
                material_id=line.material_id,
                quantity=line.quantity_diff,
                unit_cost=line.unit_cost,
                received_on=today,
                lot_number=line.lot_number,
                expiry_date=line.expiry_date,
                source_document_type=DocumentType.STOCK_ADJUSTMENT.value,
                source_document_id=adjustment.id,
                source_line_id=line.id,
            )
            cost = self._value_cost(line.unit_cost, material)
            value = round_money(line.quantity_diff * cost)
            line.lot_id = lot.id
            line.posted_value = value
            self._balances.record_in(warehouse_id, line.material_id, line.quantity_diff, value)
            postings.append(LinePosting(
                line.id, line.material_id, line.quantity_diff, round_money(cost), value, (lot.id,),
            ))

        return self._finish(DocumentType.STOCK_ADJUSTMENT, adjustment.id, postings, t0)

    def reverse_adjustment(self, adjustment: StockAdjustment) -> PostingSummary:
        t0 = time.monotonic()
        warehouse_id = adjustment.warehouse_id
        ledger = self._ledger()
        ledger.lock_stock(StockKey.of(warehouse_id, line.material_id) for line in adjustment.lines)

        found = [
            (line, ledger.get_lot(line.lot_id))
            for line in adjustment.lines
            if line.quantity_diff > _ZERO
        ]
        self._ensure_untouched(lot for _, lot in found)

        postings = []
        for line, lot in found:
            quantity = ledger.retire(lot)
            value = line.posted_value or _ZERO
            self._balances.reverse_in(warehouse_id, line.material_id, quantity, value)
            postings.append(LinePosting(
                line.id, line.material_id, line.quantity_diff, line.unit_cost or _ZERO, value, (lot.id,),
            ))

        for line in adjustment.lines:
            if line.quantity_diff > _ZERO:
                continue
            lot_ids = []
            for allocation in line.allocations:
                lot = ledger.get_lot(allocation.lot_id)
                ledger.restore(lot, allocation.quantity)
                lot_ids.append(lot.id)
            value = line.posted_value or _ZERO
            self._balances.reverse_out(warehouse_id, line.material_id, -line.quantity_diff, value)
            line.allocations.clear()
            postings.append(LinePosting(
                line.id, line.material_id, line.quantity_diff, line.unit_cost or _ZERO, value, tuple(lot_ids),
            ))

        return self._finish(DocumentType.STOCK_ADJUSTMENT, adjustment.id, postings, t0, reversal=True)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def post(self, document_type: DocumentType, document: Any) -> PostingSummary:
        match document_type:
            case DocumentType.STOCK_RECEIPT:
                return self.post_receipt(document)
            case DocumentType.STOCK_ISSUE:
                return self.post_issue(document)
            case DocumentType.STOCK_TRANSFER:
                return self.post_transfer(document)
            case DocumentType.STOCK_ADJUSTMENT:
                return self.post_adjustment(document)
        raise ValueError(f"Unknown document type: {document_type}")

    def reverse(self, document_type: DocumentType, document: Any) -> PostingSummary:
        match document_type:
            case DocumentType.STOCK_RECEIPT:
                return self.reverse_receipt(document)
            case DocumentType.STOCK_ISSUE:
                return self.reverse_issue(document)
            case DocumentType.STOCK_TRANSFER:
                return self.reverse_transfer(document)
            case DocumentType.STOCK_ADJUSTMENT:
                return self.reverse_adjustment(document)
        raise ValueError(f"Unknown document type: {document_type}")
