"""
Tests for LotLedger, the only writer of lot and on-hand quantities.

Covers:
- Stock.quantity == sum(remaining) after every mutation
- draw / restore bounds
- retire only untouched lots
- lot_seq creation order
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from inventory_kernel.exceptions import LotAlreadyConsumedError, LotNotFoundError, LotOverdrawnError
from inventory_kernel.selectors.stock_selector import StockSelector
from inventory_kernel.services.lot_ledger import LotLedger, StockKey


@pytest.fixture
def ledger(session, clock):
    return LotLedger(session, clock)


@pytest.fixture
def selector(session):
    return StockSelector(session)


def _add(ledger, wh, mat, qty, cost="10", **kwargs):
    return ledger.add_lot(
        warehouse_id=wh.id,
        material_id=mat.id,
        quantity=Decimal(qty),
        unit_cost=Decimal(cost) if cost is not None else None,
        received_on=date(2024, 3, 15),
        **kwargs,
    )


class TestSnapshotInvariant:
    """On-hand always equals the sum of remaining lot quantities."""

    def test_add_draw_restore_retire(self, ledger, selector, warehouse, material):
        a = _add(ledger, warehouse, material, "10")
        b = _add(ledger, warehouse, material, "5")
        assert selector.on_hand(warehouse.id, material.id) == Decimal("15")

        ledger.draw(a, Decimal("4"))
        assert selector.on_hand(warehouse.id, material.id) == Decimal("11")

        ledger.restore(a, Decimal("4"))
        ledger.retire(b)

        assert selector.on_hand(warehouse.id, material.id) == Decimal("10")
        assert selector.lot_total(warehouse.id, material.id) == Decimal("10")
        assert selector.drift() == []

    def test_buckets_are_independent(self, ledger, selector, make_warehouse, material):
        wh1, wh2 = make_warehouse(), make_warehouse()
        _add(ledger, wh1, material, "3")
        _add(ledger, wh2, material, "7")

        assert selector.on_hand(wh1.id, material.id) == Decimal("3")
        assert selector.on_hand(wh2.id, material.id) == Decimal("7")

    def test_unknown_bucket_is_zero(self, selector):
        assert selector.on_hand(uuid4(), uuid4()) == Decimal("0")


class TestBounds:

    def test_draw_beyond_remaining(self, ledger, warehouse, material):
        lot = _add(ledger, warehouse, material, "5")
        with pytest.raises(LotOverdrawnError) as exc_info:
            ledger.draw(lot, Decimal("6"))
        assert exc_info.value.remaining == Decimal("5")
        assert lot.remaining_quantity == Decimal("5")

    def test_restore_beyond_original(self, ledger, warehouse, material):
        lot = _add(ledger, warehouse, material, "5")
        ledger.draw(lot, Decimal("2"))
        with pytest.raises(LotOverdrawnError):
            ledger.restore(lot, Decimal("3"))

    def test_retire_drawn_lot(self, ledger, warehouse, material):
        lot = _add(ledger, warehouse, material, "5")
        ledger.draw(lot, Decimal("1"))
        with pytest.raises(LotAlreadyConsumedError):
            ledger.retire(lot)

    @pytest.mark.parametrize("qty", ["0", "-1"])
    def test_non_positive_quantities_rejected(self, ledger, warehouse, material, qty):
        with pytest.raises(ValueError):
            _add(ledger, warehouse, material, qty)

    def test_get_lot_unknown(self, ledger):
        with pytest.raises(LotNotFoundError):
            ledger.get_lot(uuid4())


class TestLotOrdering:

    def test_lot_seq_is_monotonic(self, ledger, warehouse, material):
        lots = [_add(ledger, warehouse, material, "1") for _ in range(3)]
        seqs = [lot.lot_seq for lot in lots]
        assert seqs == sorted(seqs)
        assert len(set(seqs)) == 3

    def test_snapshots_skip_empty_lots(self, ledger, warehouse, material):
        drained = _add(ledger, warehouse, material, "2")
        kept = _add(ledger, warehouse, material, "3", expiry_date=date(2024, 12, 1))
        ledger.draw(drained, Decimal("2"))

        snaps = ledger.snapshots(warehouse.id, material.id)

        assert [s.lot_id for s in snaps] == [kept.id]
        assert snaps[0].expiry_date == date(2024, 12, 1)

    def test_available_excludes_other_reservations(self, ledger, warehouse, material):
        lot = _add(ledger, warehouse, material, "2")
        mine = uuid4()
        lot.is_reserved = True
        lot.reserved_for_issue_id = uuid4()

        assert ledger.available(warehouse.id, material.id, for_issue=mine) == []

        lot.reserved_for_issue_id = mine
        assert [s.lot_id for s in ledger.available(warehouse.id, material.id, for_issue=mine)] == [lot.id]


class TestStockLocking:

    def test_lock_creates_missing_rows_in_key_order(self, ledger, warehouse, make_material):
        m1, m2 = make_material(), make_material()
        keys = [StockKey.of(warehouse.id, m2.id), StockKey.of(warehouse.id, m1.id)]

        locked = ledger.lock_stock(keys)

        assert list(locked) == sorted(keys)
        assert all(row.quantity == Decimal("0") for row in locked.values())
