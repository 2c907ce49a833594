"""
Tests for DailyBalanceLedger.

Covers:
- One row per (warehouse, material, day), additive writes
- Value rounding
- Reversal offsets on the same side
- Range sums
"""

from datetime import date
from decimal import Decimal

import pytest

from inventory_kernel.selectors.stock_selector import StockSelector
from inventory_kernel.services.balance_ledger import DailyBalanceLedger

DAY = date(2024, 3, 15)


@pytest.fixture
def balances(session, clock):
    return DailyBalanceLedger(session, clock)


class TestOneRowPerDay:

    def test_writes_accumulate_on_one_row(self, balances, session, warehouse, material):
        balances.record_in(warehouse.id, material.id, Decimal("10"), Decimal("1000"))
        balances.record_in(warehouse.id, material.id, Decimal("5"), Decimal("650"))
        balances.record_out(warehouse.id, material.id, Decimal("12"), Decimal("1260"))

        rows = StockSelector(session).balances(warehouse.id, material.id)

        assert len(rows) == 1
        row = rows[0]
        assert row.balance_date == DAY
        assert (row.qty_in, row.value_in) == (Decimal("15"), Decimal("1650"))
        assert (row.qty_out, row.value_out) == (Decimal("12"), Decimal("1260"))

    def test_other_day_gets_its_own_row(self, balances, session, clock, warehouse, material):
        balances.record_in(warehouse.id, material.id, Decimal("1"), Decimal("1"))
        clock.advance_days(1)
        balances.record_in(warehouse.id, material.id, Decimal("1"), Decimal("1"))

        rows = StockSelector(session).balances(warehouse.id, material.id)
        assert [r.balance_date for r in rows] == [DAY, date(2024, 3, 16)]

    def test_value_is_rounded_before_adding(self, balances, warehouse, material):
        row = balances.record_in(warehouse.id, material.id, Decimal("3"), Decimal("10.005"))
        assert row.value_in == Decimal("10.00")


class TestReversal:

    def test_reverse_in_offsets_same_side(self, balances, warehouse, material):
        balances.record_in(warehouse.id, material.id, Decimal("10"), Decimal("1000"))
        row = balances.reverse_in(warehouse.id, material.id, Decimal("10"), Decimal("1000"))

        assert row.qty_in == Decimal("0")
        assert row.value_in == Decimal("0")
        assert row.qty_out == Decimal("0")

    def test_reverse_on_later_day_leaves_original_row(self, balances, clock, warehouse, material):
        original = balances.record_out(warehouse.id, material.id, Decimal("4"), Decimal("400"))
        clock.advance_days(2)
        offset = balances.reverse_out(warehouse.id, material.id, Decimal("4"), Decimal("400"))

        assert original.qty_out == Decimal("4")
        assert offset.balance_date == date(2024, 3, 17)
        assert offset.qty_out == Decimal("-4")
        assert offset.value_out == Decimal("-400")


class TestMovements:

    def test_sums_over_range(self, balances, clock, warehouse, material):
        balances.record_in(warehouse.id, material.id, Decimal("10"), Decimal("100"))
        clock.advance_days(1)
        balances.record_out(warehouse.id, material.id, Decimal("3"), Decimal("30"))
        clock.advance_days(10)
        balances.record_out(warehouse.id, material.id, Decimal("1"), Decimal("10"))

        totals = balances.movements(DAY, date(2024, 3, 20))

        assert len(totals) == 1
        t = totals[0]
        assert (t.qty_in, t.value_in) == (Decimal("10"), Decimal("100.00"))
        assert (t.qty_out, t.value_out) == (Decimal("3"), Decimal("30.00"))

    def test_filters(self, balances, make_warehouse, material):
        other = make_warehouse()
        wh = make_warehouse()
        balances.record_in(wh.id, material.id, Decimal("1"), Decimal("1"))
        balances.record_in(other.id, material.id, Decimal("2"), Decimal("2"))

        totals = balances.movements(DAY, DAY, warehouse_id=other.id)

        assert [t.warehouse_id for t in totals] == [other.id]

    def test_empty_range_rejected(self, balances):
        with pytest.raises(ValueError):
            balances.movements(date(2024, 3, 2), date(2024, 3, 1))
