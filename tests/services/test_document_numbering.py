"""Tests for document number formatting and counter allocation."""

from datetime import UTC, date, datetime
from decimal import Decimal
from uuid import UUID

import pytest

from inventory_config.schema import NumberingSettings
from inventory_kernel.domain.values import DocumentType
from inventory_kernel.exceptions import DocumentNumberingError
from inventory_services.lookup_cache import TTLCache, WarehouseDirectory
from inventory_services.numbering_service import (
    SHARED_COUNTER_SCOPE,
    DocumentNumberingService,
    format_number,
)
from inventory_services.workflow_service import ReceiptLineInput

RECEIPT = DocumentType.STOCK_RECEIPT


@pytest.fixture
def numbering_for(session, clock):
    def _make(**overrides) -> DocumentNumberingService:
        directory = WarehouseDirectory(session, TTLCache(300, clock))
        return DocumentNumberingService(session, NumberingSettings(**overrides), clock, directory)

    return _make


class TestFormatNumber:

    def test_date_and_padding_tokens(self):
        number = format_number(
            "{Prefix}-{yyyy}{MM}{dd}-{No:00000}",
            prefix="PX", day=date(2024, 3, 5), sequence=42,
        )
        assert number == "PX-20240305-00042"

    def test_short_date_tokens(self):
        day = date(2024, 11, 9)
        assert format_number("{yy}|{yyMM}|{yyMMdd}", prefix="", day=day, sequence=1) == "24|2411|241109"

    def test_unpadded_sequence_and_overflow(self):
        day = date(2024, 1, 1)
        assert format_number("{No}", prefix="", day=day, sequence=123456) == "123456"
        assert format_number("{No:00}", prefix="", day=day, sequence=123) == "123"

    def test_warehouse_tokens(self):
        wid = UUID(int=7)
        number = format_number(
            "{WH}/{WHID}/{No}", prefix="", day=date(2024, 1, 1), sequence=1,
            warehouse_name="Main", warehouse_id=wid,
        )
        assert number == f"Main/{wid}/1"

    def test_unknown_tokens_left_alone(self):
        assert format_number("{Foo}-{No}", prefix="", day=date(2024, 1, 1), sequence=3) == "{Foo}-3"


class TestNextNumber:

    def test_sequence_per_type(self, numbering_for, warehouse):
        numbering = numbering_for()
        assert numbering.next_number(RECEIPT, warehouse.id) == "PN240315-0001"
        assert numbering.next_number(RECEIPT, warehouse.id) == "PN240315-0002"
        assert numbering.next_number(DocumentType.STOCK_ISSUE, warehouse.id) == "PX240315-0001"

    def test_peek_does_not_consume(self, numbering_for, warehouse):
        numbering = numbering_for()
        assert numbering.peek(RECEIPT, warehouse.id) == "PN240315-0001"
        assert numbering.peek(RECEIPT, warehouse.id) == "PN240315-0001"
        assert numbering.next_number(RECEIPT, warehouse.id) == "PN240315-0001"
        assert numbering.peek(RECEIPT, warehouse.id) == "PN240315-0002"

    def test_counter_restarts_each_year(self, numbering_for, clock, warehouse):
        numbering = numbering_for(format="{Prefix}{yyyy}-{No:000}")
        numbering.next_number(RECEIPT, warehouse.id)
        numbering.next_number(RECEIPT, warehouse.id)

        clock.set_time(datetime(2025, 1, 2, 8, 0, tzinfo=UTC))

        assert numbering.next_number(RECEIPT, warehouse.id) == "PN2025-001"

    def test_formats_without_warehouse_share_a_counter(self, numbering_for, make_warehouse):
        numbering = numbering_for()
        first, second = make_warehouse(), make_warehouse()

        assert numbering.counter_scope(first.id) == SHARED_COUNTER_SCOPE
        assert numbering.next_number(RECEIPT, first.id) == "PN240315-0001"
        assert numbering.next_number(RECEIPT, second.id) == "PN240315-0002"

    def test_warehouse_formats_count_per_warehouse(self, numbering_for, make_warehouse):
        numbering = numbering_for(format="{Prefix}-{WH}-{No:000}")
        north, south = make_warehouse(name="North"), make_warehouse(name="South")

        assert numbering.counter_scope(north.id) == north.id
        assert numbering.next_number(RECEIPT, north.id) == "PN-North-001"
        assert numbering.next_number(RECEIPT, south.id) == "PN-South-001"
        assert numbering.next_number(RECEIPT, north.id) == "PN-North-002"

    def test_taken_numbers_are_skipped(self, numbering_for, warehouse):
        numbering = numbering_for()
        taken = {"PN240315-0001"}

        assert numbering.next_number(RECEIPT, warehouse.id, is_taken=taken.__contains__) == "PN240315-0002"

    def test_gives_up_after_max_retries(self, numbering_for, warehouse, captured_logs):
        numbering = numbering_for(max_retries=2)

        with pytest.raises(DocumentNumberingError) as exc_info:
            numbering.next_number(RECEIPT, warehouse.id, is_taken=lambda number: True)

        assert exc_info.value.attempts == 2
        collisions = [r for r in captured_logs() if r["message"] == "numbering_collision"]
        assert [r["attempt"] for r in collisions] == [1, 2]

    def test_default_prefix_for_unlisted_type(self, numbering_for, warehouse):
        numbering = numbering_for(prefixes={}, default_prefix="CT")
        assert numbering.next_number(RECEIPT, warehouse.id) == "CT240315-0001"


class TestDocumentNumbers:

    def test_unique_across_many_warehouses(self, facade, make_warehouse, material, actor_id):
        warehouses = [make_warehouse() for _ in range(facade.config.numbering.max_retries + 2)]

        numbers = [
            facade.create_receipt(
                wh.id,
                [ReceiptLineInput(material_id=material.id, quantity=Decimal("1"), unit_cost=Decimal("1"))],
                actor_id,
            ).number
            for wh in warehouses
        ]

        assert numbers == [f"PN240315-{n:04d}" for n in range(1, len(warehouses) + 1)]
