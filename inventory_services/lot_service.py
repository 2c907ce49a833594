"""
inventory_services.lot_service -- Lot maintenance: split, merge, reserve, release, expiry.

Responsibility:
    Reshapes lots inside one (warehouse, material) bucket without changing
    its on-hand total, and holds lots for a specific issue.  Every change
    is written to LotHistory.  Lists lots past or near their expiry date.

Architecture position:
    Services.  Moves quantity only through LotLedger (draw / add_lot) so
    the Stock snapshot invariant holds; flushes, never commits.

Invariants enforced:
    - split and merge leave Stock.quantity and the bucket's lot total
      unchanged.
    - Reserved lots are never split or merged.
    - A merged lot takes the earliest expiry and manufacture dates of its
      sources and the quantity-weighted mean of their known unit costs.

Failure modes:
    - LotNotFoundError for an unknown lot id.
    - LotOperationError for any precondition that does not hold.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from inventory_kernel.db.types import round_money
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.values import LotAction
from inventory_kernel.exceptions import LotOperationError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.catalog import Material
from inventory_kernel.models.stock import LotHistory, StockLot
from inventory_kernel.services.lot_ledger import LotLedger, StockKey
from inventory_kernel.services.sequence_service import SequenceService

logger = get_logger("services.lots")

_ZERO = Decimal("0")


@dataclass(frozen=True)
class SplitResult:
    parent_lot_id: UUID
    parent_remaining: Decimal
    child_lot_ids: tuple[UUID, ...]
    child_lot_numbers: tuple[str, ...]


@dataclass(frozen=True)
class MergeResult:
    merged_lot_id: UUID
    lot_number: str
    quantity: Decimal
    unit_cost: Decimal | None
    source_lot_ids: tuple[UUID, ...]
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class LotHistoryEntry:
    lot_id: UUID
    action: LotAction
    quantity_before: Decimal
    quantity_after: Decimal
    related_lot_id: UUID | None
    note: str | None
    actor_id: UUID
    occurred_at: datetime


@dataclass(frozen=True)
class ExpiringLot:
    lot_id: UUID
    warehouse_id: UUID
    material_id: UUID
    material_code: str
    lot_number: str | None
    expiry_date: date
    remaining_quantity: Decimal
    days_remaining: int


@dataclass(frozen=True)
class ExpiryReport:
    """Lots with stock past or near their expiry date, soonest first."""

    as_of: date
    within_days: int
    expired: tuple[ExpiringLot, ...]
    expiring_soon: tuple[ExpiringLot, ...]


class LotService:
    """Lot maintenance operations."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        sequence_service: SequenceService | None = None,
        expiry_warning_days: int = 30,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequences = sequence_service or SequenceService(session)
        self._expiry_warning_days = expiry_warning_days

    def _ledger(self) -> LotLedger:
        return LotLedger(self._session, self._clock, self._sequences)

    def _lock_bucket_of(self, ledger: LotLedger, lot_ids: Sequence[UUID]) -> None:
        """Lock the Stock rows behind ``lot_ids`` before any lot row, as posting does."""
        keys = []
        for lot_id in lot_ids:
            lot = self._session.get(StockLot, lot_id)
            if lot is not None:
                keys.append(StockKey.of(lot.warehouse_id, lot.material_id))
        ledger.lock_stock(keys)

    def _record(
        self,
        lot: StockLot,
        action: LotAction,
        before: Decimal,
        actor_id: UUID,
        related_lot_id: UUID | None = None,
        note: str | None = None,
    ) -> None:
        self._session.add(LotHistory(
            lot_id=lot.id,
            action=action.value,
            quantity_before=before,
            quantity_after=lot.remaining_quantity,
            related_lot_id=related_lot_id,
            note=note,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
        ))

    # ------------------------------------------------------------------
    # Split
    # ------------------------------------------------------------------

    def can_split(self, lot_id: UUID) -> bool:
        lot = self._session.get(StockLot, lot_id)
        return lot is not None and not lot.is_reserved and lot.remaining_quantity > _ZERO

    def split(
        self,
        lot_id: UUID,
        quantities: Sequence[Decimal],
        actor_id: UUID,
        note: str | None = None,
    ) -> SplitResult:
        """
        Carve child lots out of ``lot_id``.

        Children are numbered ``<parent>-1``, ``<parent>-2``, ... (``LOT-n``
        when the parent has no number) and keep the parent's dates and cost.
        """
        ledger = self._ledger()
        self._lock_bucket_of(ledger, [lot_id])
        parent = ledger.get_lot(lot_id)

        if parent.is_reserved:
            raise LotOperationError("split", "lot is reserved", (lot_id,))
        if not quantities or any(q <= _ZERO for q in quantities):
            raise LotOperationError("split", "split quantities must be positive", (lot_id,))
        total = sum(quantities, _ZERO)
        if total > parent.remaining_quantity:
            raise LotOperationError(
                "split",
                f"split quantities ({total}) exceed lot quantity ({parent.remaining_quantity})",
                (lot_id,),
            )

        before = parent.remaining_quantity
        ledger.draw(parent, total)

        base = parent.lot_number or "LOT"
        existing = self._session.execute(
            select(func.count()).select_from(StockLot).where(StockLot.parent_lot_id == parent.id)
        ).scalar_one()

        children = []
        for n, quantity in enumerate(quantities, start=existing + 1):
            child = ledger.add_lot(
                warehouse_id=parent.warehouse_id,
                material_id=parent.material_id,
                quantity=quantity,
                unit_cost=parent.unit_cost,
                received_on=parent.received_on,
                lot_number=f"{base}-{n}",
                manufacture_date=parent.manufacture_date,
                expiry_date=parent.expiry_date,
                source_document_type=parent.source_document_type,
                source_document_id=parent.source_document_id,
                source_line_id=parent.source_line_id,
                parent_lot_id=parent.id,
            )
            self._record(child, LotAction.SPLIT_FROM, _ZERO, actor_id, parent.id, f"Split from {base}")
            children.append(child)

        self._record(
            parent, LotAction.SPLIT, before, actor_id,
            note=note or f"Split into {len(children)} lots",
        )
        self._session.flush()

        logger.info("lot_split", extra={
            "lot_id": str(parent.id),
            "child_count": len(children),
            "quantity": str(total),
        })
        return SplitResult(
            parent_lot_id=parent.id,
            parent_remaining=parent.remaining_quantity,
            child_lot_ids=tuple(c.id for c in children),
            child_lot_numbers=tuple(c.lot_number for c in children),
        )

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def _merge_problem(self, lots: Sequence[StockLot], requested: int) -> str | None:
        if requested < 2:
            return "need at least 2 lots to merge"
        if len(lots) != requested:
            return "some lots do not exist"
        if any(lot.is_reserved for lot in lots):
            return "cannot merge reserved lots"
        if any(lot.remaining_quantity <= _ZERO for lot in lots):
            return "cannot merge empty lots"
        first = lots[0]
        if any(lot.material_id != first.material_id for lot in lots):
            return "all lots must be the same material"
        if any(lot.warehouse_id != first.warehouse_id for lot in lots):
            return "all lots must be in the same warehouse"
        return None

    def can_merge(self, lot_ids: Sequence[UUID]) -> bool:
        ids = set(lot_ids)
        lots = list(self._session.execute(
            select(StockLot).where(StockLot.id.in_(ids))
        ).scalars()) if ids else []
        return self._merge_problem(lots, len(ids)) is None

    def _merged_lot_number(self) -> str:
        stamp = f"{self._clock.today():%Y%m%d}"
        count = self._session.execute(
            select(func.count()).select_from(StockLot).where(
                StockLot.lot_number.like(f"MERGED-{stamp}-%")
            )
        ).scalar_one()
        return f"MERGED-{stamp}-{count + 1:03d}"

    def merge(
        self,
        lot_ids: Sequence[UUID],
        actor_id: UUID,
        note: str | None = None,
    ) -> MergeResult:
        """Combine lots of one bucket into a new lot; the sources go to zero."""
        ids = list(dict.fromkeys(lot_ids))
        ledger = self._ledger()
        self._lock_bucket_of(ledger, ids)
        lots = [
            ledger.get_lot(lot_id)
            for lot_id in sorted(ids, key=str)
            if self._session.get(StockLot, lot_id) is not None
        ]
        problem = self._merge_problem(lots, len(ids))
        if problem:
            raise LotOperationError("merge", problem, tuple(ids))
        first = lots[0]

        warnings = []
        if len({lot.expiry_date for lot in lots}) > 1:
            warnings.append("Merged lots have different expiry dates; the earliest is kept")
            logger.warning("lot_merge_expiry_mismatch", extra={"lot_count": len(lots)})

        quantity = sum((lot.remaining_quantity for lot in lots), _ZERO)
        costed = [lot for lot in lots if lot.unit_cost is not None]
        costed_qty = sum((lot.remaining_quantity for lot in costed), _ZERO)
        unit_cost = (
            round_money(sum((lot.remaining_quantity * lot.unit_cost for lot in costed), _ZERO) / costed_qty)
            if costed_qty > _ZERO else None
        )
        expiries = [lot.expiry_date for lot in lots if lot.expiry_date is not None]
        made = [lot.manufacture_date for lot in lots if lot.manufacture_date is not None]
        lot_number = self._merged_lot_number()

        befores = {}
        for lot in lots:
            befores[lot.id] = lot.remaining_quantity
            ledger.draw(lot, lot.remaining_quantity)

        merged = ledger.add_lot(
            warehouse_id=first.warehouse_id,
            material_id=first.material_id,
            quantity=quantity,
            unit_cost=unit_cost,
            received_on=min(lot.received_on for lot in lots),
            lot_number=lot_number,
            manufacture_date=min(made) if made else None,
            expiry_date=min(expiries) if expiries else None,
        )

        for lot in lots:
            self._record(lot, LotAction.MERGED_INTO, befores[lot.id], actor_id, merged.id, note)
        self._record(
            merged, LotAction.MERGE, _ZERO, actor_id,
            note=f"Merged from {len(lots)} lots",
        )
        self._session.flush()

        logger.info("lots_merged", extra={
            "merged_lot_id": str(merged.id),
            "lot_number": lot_number,
            "lot_count": len(lots),
            "quantity": str(quantity),
        })
        return MergeResult(
            merged_lot_id=merged.id,
            lot_number=lot_number,
            quantity=quantity,
            unit_cost=unit_cost,
            source_lot_ids=tuple(lot.id for lot in lots),
            warnings=tuple(warnings),
        )

    # ------------------------------------------------------------------
    # Reservation
    # ------------------------------------------------------------------

    def reserve(self, lot_id: UUID, issue_id: UUID, actor_id: UUID) -> None:
        """Hold a lot for one issue; other issues and transfers skip it."""
        lot = self._ledger().get_lot(lot_id)
        if lot.is_reserved:
            raise LotOperationError(
                "reserve", f"lot already reserved for issue {lot.reserved_for_issue_id}", (lot_id,)
            )
        if lot.remaining_quantity <= _ZERO:
            raise LotOperationError("reserve", "lot is empty", (lot_id,))

        lot.is_reserved = True
        lot.reserved_for_issue_id = issue_id
        lot.reserved_at = self._clock.now()
        lot.reserved_by_id = actor_id
        self._record(lot, LotAction.RESERVE, lot.remaining_quantity, actor_id, note=f"Reserved for issue {issue_id}")
        self._session.flush()
        logger.info("lot_reserved", extra={"lot_id": str(lot_id), "issue_id": str(issue_id)})

    def release(self, lot_id: UUID, actor_id: UUID) -> None:
        lot = self._ledger().get_lot(lot_id)
        if not lot.is_reserved:
            raise LotOperationError("release", "lot is not reserved", (lot_id,))

        previous = lot.reserved_for_issue_id
        lot.is_reserved = False
        lot.reserved_for_issue_id = None
        lot.reserved_at = None
        lot.reserved_by_id = None
        self._record(lot, LotAction.RELEASE, lot.remaining_quantity, actor_id, note=f"Released from issue {previous}")
        self._session.flush()
        logger.info("lot_released", extra={"lot_id": str(lot_id), "issue_id": str(previous)})

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def expiring(
        self,
        warehouse_id: UUID | None = None,
        as_of: date | None = None,
        within_days: int | None = None,
    ) -> ExpiryReport:
        """
        Lots with stock that have expired, or expire within ``within_days``.

        A lot expiring on ``as_of`` itself is expiring soon, not expired.
        ``within_days`` defaults to the configured warning window.
        """
        as_of = as_of or self._clock.today()
        days = self._expiry_warning_days if within_days is None else within_days
        if days < 0:
            raise ValueError(f"within_days must be >= 0, got {days}")

        stmt = (
            select(StockLot, Material.code)
            .join(Material, StockLot.material_id == Material.id)
            .where(
                StockLot.remaining_quantity > 0,
                StockLot.expiry_date.is_not(None),
                StockLot.expiry_date <= as_of + timedelta(days=days),
            )
            .order_by(StockLot.expiry_date, StockLot.lot_seq)
        )
        if warehouse_id is not None:
            stmt = stmt.where(StockLot.warehouse_id == warehouse_id)

        expired, soon = [], []
        for lot, material_code in self._session.execute(stmt):
            entry = ExpiringLot(
                lot_id=lot.id,
                warehouse_id=lot.warehouse_id,
                material_id=lot.material_id,
                material_code=material_code,
                lot_number=lot.lot_number,
                expiry_date=lot.expiry_date,
                remaining_quantity=lot.remaining_quantity,
                days_remaining=(lot.expiry_date - as_of).days,
            )
            (expired if lot.expiry_date < as_of else soon).append(entry)

        logger.info("expiring_lots_listed", extra={
            "as_of": as_of.isoformat(),
            "within_days": days,
            "expired_count": len(expired),
            "expiring_soon_count": len(soon),
        })
        return ExpiryReport(
            as_of=as_of,
            within_days=days,
            expired=tuple(expired),
            expiring_soon=tuple(soon),
        )

    def history(self, lot_id: UUID) -> list[LotHistoryEntry]:
        """Newest first."""
        rows = self._session.execute(
            select(LotHistory)
            .where(LotHistory.lot_id == lot_id)
            .order_by(LotHistory.occurred_at.desc())
        ).scalars()
        return [
            LotHistoryEntry(
                lot_id=row.lot_id,
                action=LotAction(row.action),
                quantity_before=row.quantity_before,
                quantity_after=row.quantity_after,
                related_lot_id=row.related_lot_id,
                note=row.note,
                actor_id=row.actor_id,
                occurred_at=row.occurred_at,
            )
            for row in rows
        ]
