"""
inventory_services.costing_service -- Costing queries over live lots.

Responsibility:
    Resolves a material's costing method and fallback price, reads its
    lots, and delegates the arithmetic to the pure CostingEngine.

Architecture position:
    Services.  Read-only: uses StockSelector, never the lot ledger, so
    previews never take posting locks.  PostingService reuses
    ``method_for`` / ``fallback_for`` so previews and postings agree.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from inventory_config.schema import CostingSettings
from inventory_engines.allocation import AllocationEngine
from inventory_engines.costing import CostingEngine, IssueCost, LotCost, Valuation
from inventory_kernel.domain.values import CostingMethod
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.catalog import Material
from inventory_kernel.selectors.stock_selector import StockSelector

logger = get_logger("services.costing")


class CostingService:
    """Unit cost, issue-cost preview, valuation and per-lot breakdown."""

    def __init__(
        self,
        session: Session,
        settings: CostingSettings | None = None,
        engine: CostingEngine | None = None,
    ):
        self._session = session
        self._settings = settings or CostingSettings()
        self._engine = engine or CostingEngine()
        self._allocator = AllocationEngine()
        self._selector = StockSelector(session)

    def material(self, material_id: UUID) -> Material:
        material = self._session.get(Material, material_id)
        if material is None:
            raise ValueError(f"Unknown material: {material_id}")
        return material

    def method_for(self, material: Material) -> CostingMethod:
        if material.costing_method:
            return CostingMethod(material.costing_method)
        return self._settings.default_method

    def fallback_for(self, material: Material) -> Decimal | None:
        if self._settings.fallback_to_purchase_price:
            return material.purchase_price
        return None

    def unit_cost(
        self, warehouse_id: UUID, material_id: UUID, as_of: date | None = None
    ) -> Decimal:
        material = self.material(material_id)
        return self._engine.unit_cost(
            method=self.method_for(material),
            lots=self._selector.lots(warehouse_id, material_id),
            fallback_unit_cost=self.fallback_for(material),
            as_of=as_of,
        )

    def issue_cost(
        self, warehouse_id: UUID, material_id: UUID, quantity: Decimal
    ) -> IssueCost:
        """
        What issuing ``quantity`` now would cost, using the FEFO draw a
        posting would make.

        Raises:
            InsufficientStockError: if the bucket cannot cover ``quantity``.
        """
        material = self.material(material_id)
        lots = self._selector.lots(warehouse_id, material_id)
        allocation = self._allocator.allocate_fefo(
            warehouse_id=warehouse_id,
            material_id=material_id,
            quantity=quantity,
            lots=lots,
            material_code=material.code,
        )
        return self._engine.issue_cost(
            method=self.method_for(material),
            draws=allocation.draws,
            lots_before=lots,
            fallback_unit_cost=self.fallback_for(material),
        )

    def valuation(self, warehouse_id: UUID, material_id: UUID) -> Valuation:
        material = self.material(material_id)
        return self._engine.valuation(
            method=self.method_for(material),
            lots=self._selector.lots(warehouse_id, material_id),
            fallback_unit_cost=self.fallback_for(material),
        )

    def lot_costs(self, warehouse_id: UUID, material_id: UUID) -> tuple[LotCost, ...]:
        material = self.material(material_id)
        return self._engine.lot_costs(
            self._selector.lots(warehouse_id, material_id),
            self.fallback_for(material),
        )
