"""
Module: inventory_kernel.models.stock
Responsibility: ORM persistence for the lot ledger (StockLot), the on-hand
    snapshot (Stock), the daily balance ledger (StockBalance) and lot history.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    S1 -- StockLot.remaining_quantity >= 0 (CHECK constraint + LotLedger).
    S2 -- StockLot.remaining_quantity <= original_quantity (CHECK).
    S3 -- Stock.quantity == sum(StockLot.remaining_quantity) per
          (warehouse, material).  Maintained by LotLedger, the only writer.
    S4 -- Exactly one StockBalance row per (warehouse, material, balance_date)
          (UNIQUE).  Rows are updated additively.
    S5 -- Lots are never deleted; a lot at zero is inert history.

Failure modes:
    - IntegrityError on a second StockBalance/Stock row for the same key.
    - IntegrityError if a CHECK constraint is violated (should be
      unreachable: LotLedger raises typed errors first).
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import Base, UUIDString
from inventory_kernel.domain.lots import LotSnapshot


class Stock(Base):
    """
    Current on-hand snapshot per (warehouse, material).

    Contract:
        Denormalized copy of the lot ledger total, kept in step by LotLedger.
        The row doubles as the lock target for posting (SELECT ... FOR UPDATE).
    """

    __tablename__ = "stocks"

    __table_args__ = (
        UniqueConstraint("warehouse_id", "material_id", name="uq_stock_wh_material"),
        CheckConstraint("quantity >= 0", name="ck_stock_quantity_non_negative"),
    )

    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False
    )

    material_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("materials.id"), nullable=False
    )

    # INVARIANT S3: equals the sum of remaining lot quantities
    quantity: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0")
    )

    last_updated: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<Stock wh={self.warehouse_id} mat={self.material_id} qty={self.quantity}>"


class StockLot(Base):
    """
    A physical batch of one material in one warehouse.

    Contract:
        Created by receipt / transfer-in / positive adjustment / split / merge
        postings.  Only LotLedger changes remaining_quantity.

    Guarantees:
        - lot_seq is a strictly increasing creation order (SequenceService),
          the final FEFO tie-breaker and the FIFO age.
        - source_document_type/id/line_id trace the lot to what created it.
    """

    __tablename__ = "stock_lots"

    __table_args__ = (
        # FEFO / FIFO candidate scan
        Index("idx_stock_lot_bucket", "warehouse_id", "material_id", "remaining_quantity"),
        Index("idx_stock_lot_expiry", "expiry_date"),
        Index("idx_stock_lot_source", "source_document_type", "source_document_id"),
        UniqueConstraint("lot_seq", name="uq_stock_lot_seq"),
        # INVARIANT S1
        CheckConstraint("remaining_quantity >= 0", name="ck_lot_remaining_non_negative"),
        # INVARIANT S2
        CheckConstraint(
            "remaining_quantity <= original_quantity", name="ck_lot_remaining_le_original"
        ),
    )

    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False
    )

    material_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("materials.id"), nullable=False
    )

    lot_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    manufacture_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    original_quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    remaining_quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    # NULL when received without a price
    unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    received_on: Mapped[date] = mapped_column(Date, nullable=False)

    lot_seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    source_document_type: Mapped[str | None] = mapped_column(String(30), nullable=True)

    source_document_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    source_line_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    parent_lot_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("stock_lots.id"), nullable=True
    )

    is_reserved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    reserved_for_issue_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    reserved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    reserved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    parent_lot: Mapped["StockLot | None"] = relationship(
        remote_side="StockLot.id",
        foreign_keys=[parent_lot_id],
    )

    def snapshot(self) -> LotSnapshot:
        """Frozen view for the allocation and costing engines."""
        return LotSnapshot(
            lot_id=self.id,
            warehouse_id=self.warehouse_id,
            material_id=self.material_id,
            remaining_quantity=self.remaining_quantity,
            lot_seq=self.lot_seq,
            unit_cost=self.unit_cost,
            expiry_date=self.expiry_date,
            manufacture_date=self.manufacture_date,
            lot_number=self.lot_number,
            received_on=self.received_on,
            reserved_for_issue_id=self.reserved_for_issue_id,
            is_reserved=self.is_reserved,
        )

    @property
    def consumed_quantity(self) -> Decimal:
        return self.original_quantity - self.remaining_quantity

    def __repr__(self) -> str:
        return (
            f"<StockLot {self.lot_number or self.id} seq={self.lot_seq} "
            f"remaining={self.remaining_quantity}/{self.original_quantity}>"
        )


class StockBalance(Base):
    """
    Daily balance ledger row: movement for one (warehouse, material, day).

    Contract:
        Additive.  Reversals write offsetting amounts on the same side on the
        reversal day rather than editing the original day.
    """

    __tablename__ = "stock_balances"

    __table_args__ = (
        # INVARIANT S4
        UniqueConstraint(
            "warehouse_id", "material_id", "balance_date", name="uq_stock_balance_day"
        ),
        Index("idx_stock_balance_date", "balance_date"),
    )

    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False
    )

    material_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("materials.id"), nullable=False
    )

    balance_date: Mapped[date] = mapped_column(Date, nullable=False)

    qty_in: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))

    value_in: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))

    qty_out: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))

    value_out: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))

    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<StockBalance {self.balance_date} in={self.qty_in}/{self.value_in} "
            f"out={self.qty_out}/{self.value_out}>"
        )


class LotHistory(Base):
    """Audit trail of lot maintenance (split, merge, reserve, release)."""

    __tablename__ = "lot_history"

    __table_args__ = (
        Index("idx_lot_history_lot", "lot_id", "occurred_at"),
    )

    lot_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("stock_lots.id"), nullable=False
    )

    action: Mapped[str] = mapped_column(String(20), nullable=False)

    quantity_before: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    quantity_after: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    related_lot_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    note: Mapped[str | None] = mapped_column(String(500), nullable=True)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
