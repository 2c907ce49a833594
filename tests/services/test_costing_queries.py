"""
Read-only costing queries through the facade.

Two lots throughout: 10 at 100 expiring in September (received first) and
10 at 120 expiring in May.
"""

import dataclasses
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from inventory_config.schema import CostingSettings
from inventory_kernel.domain.values import CostingMethod
from inventory_kernel.exceptions import InsufficientStockError
from inventory_kernel.selectors.stock_selector import StockSelector
from inventory_services.facade import InventoryFacade


@pytest.fixture
def two_lots(warehouse, receive):
    def _stock(material):
        receive(warehouse, material, "10", "100", expiry=date(2024, 9, 1))
        receive(warehouse, material, "10", "120", expiry=date(2024, 5, 1))
        return material

    return _stock


class TestUnitCost:

    def test_weighted_average(self, facade, warehouse, material, two_lots):
        two_lots(material)
        assert facade.unit_cost(warehouse.id, material.id) == Decimal("110.00")

    def test_fifo_uses_oldest_lot(self, facade, warehouse, make_material, two_lots):
        material = two_lots(make_material(costing_method=CostingMethod.FIFO.value))
        assert facade.unit_cost(warehouse.id, material.id) == Decimal("100.00")

    def test_falls_back_to_purchase_price_without_lots(self, facade, warehouse, make_material):
        material = make_material(purchase_price=Decimal("80"))
        assert facade.unit_cost(warehouse.id, material.id) == Decimal("80.00")

    def test_lots_received_after_as_of_ignored(self, facade, warehouse, make_material, two_lots):
        material = two_lots(make_material(purchase_price=Decimal("80")))
        assert facade.unit_cost(warehouse.id, material.id, as_of=date(2024, 3, 14)) == Decimal("80.00")

    def test_fallback_disabled(self, session, config, clock, warehouse, make_material):
        strict = dataclasses.replace(config, costing=CostingSettings(fallback_to_purchase_price=False))
        facade = InventoryFacade(session, config=strict, clock=clock)
        material = make_material(purchase_price=Decimal("80"))

        assert facade.unit_cost(warehouse.id, material.id) == Decimal("0.00")

    def test_default_method_from_config(self, session, config, clock, warehouse, material, two_lots):
        two_lots(material)
        fifo = dataclasses.replace(config, costing=CostingSettings(default_method=CostingMethod.FIFO))
        facade = InventoryFacade(session, config=fifo, clock=clock)

        assert facade.unit_cost(warehouse.id, material.id) == Decimal("100.00")

    def test_unknown_material(self, facade, warehouse):
        with pytest.raises(ValueError, match="Unknown material"):
            facade.unit_cost(warehouse.id, uuid4())


class TestIssueCost:

    def test_weighted_average_prices_whole_quantity(self, facade, warehouse, material, two_lots):
        two_lots(material)

        cost = facade.issue_cost(warehouse.id, material.id, Decimal("12"))

        assert (cost.method, cost.unit_cost, cost.total_cost) == (
            CostingMethod.WEIGHTED_AVERAGE, Decimal("110.00"), Decimal("1320.00"),
        )

    def test_fifo_blends_the_fefo_draw(self, facade, warehouse, make_material, two_lots):
        material = two_lots(make_material(costing_method=CostingMethod.FIFO.value))

        cost = facade.issue_cost(warehouse.id, material.id, Decimal("12"))

        # 10 from the May lot at 120, 2 from the September lot at 100
        assert (cost.unit_cost, cost.total_cost) == (Decimal("116.67"), Decimal("1400.00"))

    def test_preview_moves_nothing(self, facade, session, warehouse, material, two_lots):
        two_lots(material)
        facade.issue_cost(warehouse.id, material.id, Decimal("5"))
        assert StockSelector(session).on_hand(warehouse.id, material.id) == Decimal("20")

    def test_more_than_on_hand(self, facade, warehouse, material, two_lots):
        two_lots(material)

        with pytest.raises(InsufficientStockError) as exc_info:
            facade.issue_cost(warehouse.id, material.id, Decimal("25"))

        assert exc_info.value.shortfall == Decimal("5")


class TestValuation:

    def test_weighted_average(self, facade, warehouse, material, two_lots):
        two_lots(material)
        valuation = facade.valuation(warehouse.id, material.id)
        assert (valuation.quantity, valuation.unit_cost, valuation.total_value) == (
            Decimal("20"), Decimal("110.00"), Decimal("2200.00"),
        )

    def test_fifo_layers_keep_their_cost(self, facade, warehouse, make_material, receive):
        material = make_material(costing_method=CostingMethod.FIFO.value)
        receive(warehouse, material, "1", "100")
        receive(warehouse, material, "2", "130")

        valuation = facade.valuation(warehouse.id, material.id)

        assert (valuation.unit_cost, valuation.total_value) == (Decimal("120.00"), Decimal("360.00"))

    def test_lot_costs_in_receipt_order(self, facade, warehouse, make_material, receive):
        material = make_material(purchase_price=None)
        receive(warehouse, material, "3", "100", lot_number="A")
        receive(warehouse, material, "2", None, lot_number="B")

        rows = facade.lot_costs(warehouse.id, material.id)

        assert [(r.lot_number, r.unit_cost, r.value) for r in rows] == [
            ("A", Decimal("100.00"), Decimal("300.00")),
            ("B", None, Decimal("0.00")),
        ]
