"""
Module: inventory_kernel.models.catalog
Responsibility: ORM persistence for warehouses and the material catalog.
Architecture position: Kernel > Models.  May import from db/ and domain/values
    only.

Invariants enforced:
    - Warehouse.code and Material.code are unique.
    - Material.costing_method is nullable; NULL means weighted average
      (see effective_costing_method).
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Boolean, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import TrackedBase
from inventory_kernel.domain.values import CostingMethod


class Warehouse(TrackedBase):
    """A physical stock location."""

    __tablename__ = "warehouses"

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    address: Mapped[str | None] = mapped_column(String(500), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Warehouse {self.code}: {self.name}>"


class Material(TrackedBase):
    """
    A stocked material (catalog item).

    Contract:
        purchase_price is the fallback unit cost for lots received without
        a cost and for materials with no lots at all.  selling_price is the
        default sale price on issue lines.
    """

    __tablename__ = "materials"

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="EA")

    purchase_price: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    selling_price: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    # NULL -> weighted average
    costing_method: Mapped[str | None] = mapped_column(String(20), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def effective_costing_method(self) -> CostingMethod:
        if not self.costing_method:
            return CostingMethod.WEIGHTED_AVERAGE
        return CostingMethod(self.costing_method)

    def __repr__(self) -> str:
        return f"<Material {self.code}: {self.name}>"
