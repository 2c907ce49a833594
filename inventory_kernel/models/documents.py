"""
Module: inventory_kernel.models.documents
Responsibility: ORM persistence for stock documents (receipts, issues,
    transfers, adjustments), their lines, and the per-lot allocation records
    that make every posting exactly reversible.
Architecture position: Kernel > Models.  May import from db/ and
    domain/values only.

Invariants enforced:
    D1 -- status is one of DocumentStatus; transitions are enforced by the
          workflow service, not the ORM.
    D2 -- For a posted issue, sum(StockIssueAllocation.quantity) per line ==
          the line's quantity.  Written once by PostingService.
    D3 -- Allocation rows record the unit cost actually drawn so that
          reversal restores value as well as quantity.
    D4 -- number is unique per document table.
    D5 -- posted_value on a line is the exact amount written to the daily
          balance ledger at posting; reversal offsets that amount.

Failure modes:
    - IntegrityError on a duplicate document number.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import Base, TrackedBase, UUIDString
from inventory_kernel.domain.values import DocumentStatus


class DocumentHeaderMixin:
    """Columns shared by every stock document header."""

    number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    document_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DocumentStatus.NEW.value
    )

    note: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    posted_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    cancelled_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def document_status(self) -> DocumentStatus:
        return DocumentStatus(self.status)


# ---------------------------------------------------------------------------
# Receipts
# ---------------------------------------------------------------------------


class StockReceipt(DocumentHeaderMixin, TrackedBase):
    """Inbound goods document.  Posting creates one lot per line."""

    __tablename__ = "stock_receipts"

    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False
    )

    supplier_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    lines: Mapped[list["StockReceiptLine"]] = relationship(
        back_populates="receipt",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="StockReceiptLine.line_no",
    )

    def __repr__(self) -> str:
        return f"<StockReceipt {self.number} status={self.status}>"


class StockReceiptLine(Base):

    __tablename__ = "stock_receipt_lines"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_receipt_line_quantity_positive"),
    )

    receipt_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("stock_receipts.id"), nullable=False
    )

    line_no: Mapped[int] = mapped_column(nullable=False)

    material_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("materials.id"), nullable=False
    )

    quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    lot_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    manufacture_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Set when posted: the lot this line created
    lot_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("stock_lots.id"), nullable=True
    )

    posted_value: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    receipt: Mapped[StockReceipt] = relationship(back_populates="lines")


# ---------------------------------------------------------------------------
# Issues
# ---------------------------------------------------------------------------


class StockIssue(DocumentHeaderMixin, TrackedBase):
    """Outbound goods document.  Posting draws lots FEFO or as picked."""

    __tablename__ = "stock_issues"

    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False
    )

    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    lines: Mapped[list["StockIssueLine"]] = relationship(
        back_populates="issue",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="StockIssueLine.line_no",
    )

    def __repr__(self) -> str:
        return f"<StockIssue {self.number} status={self.status}>"


class StockIssueLine(Base):
    """
    One material on an issue.

    unit_price is the sale price (revenue); cost_price is the computed unit
    cost written at posting (COGS).  manual_allocation holds caller-picked
    lots as ``[{"lot_id": str, "quantity": str}, ...]``.
    """

    __tablename__ = "stock_issue_lines"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_issue_line_quantity_positive"),
    )

    issue_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("stock_issues.id"), nullable=False
    )

    line_no: Mapped[int] = mapped_column(nullable=False)

    material_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("materials.id"), nullable=False
    )

    quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    unit_price: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    cost_price: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    manual_allocation: Mapped[list | None] = mapped_column(JSON, nullable=True)

    posted_value: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    issue: Mapped[StockIssue] = relationship(back_populates="lines")

    allocations: Mapped[list["StockIssueAllocation"]] = relationship(
        back_populates="line",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class StockIssueAllocation(Base):
    """Quantity of one lot drawn by one issue line (INVARIANT D2, D3)."""

    __tablename__ = "stock_issue_allocations"

    __table_args__ = (
        Index("idx_issue_alloc_lot", "lot_id"),
        CheckConstraint("quantity > 0", name="ck_issue_alloc_quantity_positive"),
    )

    issue_line_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("stock_issue_lines.id"), nullable=False
    )

    lot_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("stock_lots.id"), nullable=False
    )

    quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    line: Mapped[StockIssueLine] = relationship(back_populates="allocations")


# ---------------------------------------------------------------------------
# Transfers
# ---------------------------------------------------------------------------


class StockTransfer(DocumentHeaderMixin, TrackedBase):
    """Warehouse-to-warehouse move.  Posts as one atomic issue + receipt."""

    __tablename__ = "stock_transfers"

    __table_args__ = (
        CheckConstraint(
            "from_warehouse_id <> to_warehouse_id", name="ck_transfer_distinct_warehouses"
        ),
    )

    from_warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False
    )

    to_warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False
    )

    lines: Mapped[list["StockTransferLine"]] = relationship(
        back_populates="transfer",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="StockTransferLine.line_no",
    )

    @property
    def warehouse_id(self) -> UUID:
        """Numbering and logging key: the source warehouse."""
        return self.from_warehouse_id

    def __repr__(self) -> str:
        return f"<StockTransfer {self.number} status={self.status}>"


class StockTransferLine(Base):

    __tablename__ = "stock_transfer_lines"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_transfer_line_quantity_positive"),
    )

    transfer_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("stock_transfers.id"), nullable=False
    )

    line_no: Mapped[int] = mapped_column(nullable=False)

    material_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("materials.id"), nullable=False
    )

    quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    # Blended cost of the source lots drawn, written at posting
    unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    manual_allocation: Mapped[list | None] = mapped_column(JSON, nullable=True)

    posted_value: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    transfer: Mapped[StockTransfer] = relationship(back_populates="lines")

    allocations: Mapped[list["StockTransferAllocation"]] = relationship(
        back_populates="line",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class StockTransferAllocation(Base):
    """One source-lot draw and the destination lot it became."""

    __tablename__ = "stock_transfer_allocations"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_transfer_alloc_quantity_positive"),
    )

    transfer_line_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("stock_transfer_lines.id"), nullable=False
    )

    source_lot_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("stock_lots.id"), nullable=False
    )

    destination_lot_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("stock_lots.id"), nullable=False
    )

    quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    line: Mapped[StockTransferLine] = relationship(back_populates="allocations")


# ---------------------------------------------------------------------------
# Adjustments
# ---------------------------------------------------------------------------


class StockAdjustment(DocumentHeaderMixin, TrackedBase):
    """Stock-count correction.  Positive lines add a lot; negative lines draw FEFO."""

    __tablename__ = "stock_adjustments"

    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("warehouses.id"), nullable=False
    )

    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    lines: Mapped[list["StockAdjustmentLine"]] = relationship(
        back_populates="adjustment",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="StockAdjustmentLine.line_no",
    )

    def __repr__(self) -> str:
        return f"<StockAdjustment {self.number} status={self.status}>"


class StockAdjustmentLine(Base):

    __tablename__ = "stock_adjustment_lines"

    __table_args__ = (
        CheckConstraint("quantity_diff <> 0", name="ck_adjustment_line_non_zero"),
    )

    adjustment_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("stock_adjustments.id"), nullable=False
    )

    line_no: Mapped[int] = mapped_column(nullable=False)

    material_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("materials.id"), nullable=False
    )

    # Signed: > 0 found stock, < 0 missing stock
    quantity_diff: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    lot_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Positive lines: the lot created at posting
    lot_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("stock_lots.id"), nullable=True
    )

    posted_value: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    adjustment: Mapped[StockAdjustment] = relationship(back_populates="lines")

    allocations: Mapped[list["StockAdjustmentAllocation"]] = relationship(
        back_populates="line",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class StockAdjustmentAllocation(Base):
    """Lot drawn by a negative adjustment line."""

    __tablename__ = "stock_adjustment_allocations"

    adjustment_line_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("stock_adjustment_lines.id"), nullable=False
    )

    lot_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("stock_lots.id"), nullable=False
    )

    quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    line: Mapped[StockAdjustmentLine] = relationship(back_populates="allocations")
