"""
Document lifecycle: creation, validation and status transitions.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from inventory_engines.allocation import ManualPick
from inventory_kernel.domain.values import DocumentStatus, DocumentType
from inventory_kernel.exceptions import (
    DocumentNotFoundError,
    DocumentValidationError,
    InvalidTransitionError,
)
from inventory_kernel.models.documents import StockIssue
from inventory_services.workflow_service import (
    WORKFLOWS,
    AdjustmentLineInput,
    IssueLineInput,
    ReceiptLineInput,
    TransferLineInput,
)


def _receipt(facade, warehouse, material, actor_id, **header):
    return facade.create_receipt(
        warehouse.id,
        [ReceiptLineInput(material_id=material.id, quantity=Decimal("5"), unit_cost=Decimal("10"))],
        actor_id,
        **header,
    )


class TestWorkflowDeclarations:

    @pytest.mark.parametrize("document_type", list(DocumentType))
    def test_every_type_has_the_same_shape(self, document_type):
        workflow = WORKFLOWS[document_type]
        assert workflow.initial_state == DocumentStatus.NEW.value
        assert workflow.terminal_states == (DocumentStatus.CANCELLED.value,)
        assert [t for t in workflow.transitions if t.moves_stock][0].action == "post"
        assert [t for t in workflow.transitions if t.reverses_stock][0].action == "cancel"
        assert workflow.actions_from(DocumentStatus.CANCELLED.value) == ()


class TestCreation:

    def test_receipt_created_new_with_number(self, facade, warehouse, material, actor_id, clock):
        receipt = _receipt(facade, warehouse, material, actor_id, supplier_name="Acme")

        assert receipt.status == DocumentStatus.NEW.value
        assert receipt.number == "PN240315-0001"
        assert receipt.document_date == clock.today()
        assert receipt.supplier_name == "Acme"
        assert receipt.created_by_id == actor_id
        assert [line.line_no for line in receipt.lines] == [1]

    def test_numbers_increase(self, facade, warehouse, material, actor_id):
        first = _receipt(facade, warehouse, material, actor_id)
        second = _receipt(facade, warehouse, material, actor_id)
        assert (first.number, second.number) == ("PN240315-0001", "PN240315-0002")

    def test_all_field_errors_reported_together(self, facade, make_warehouse, material, actor_id):
        closed = make_warehouse(is_active=False)

        with pytest.raises(DocumentValidationError) as exc_info:
            facade.create_receipt(
                closed.id,
                [
                    ReceiptLineInput(material_id=material.id, quantity=Decimal("0")),
                    ReceiptLineInput(material_id=uuid4(), quantity=Decimal("1"), unit_cost=Decimal("-1")),
                ],
                actor_id,
            )

        fields = [e["field"] for e in exc_info.value.field_errors]
        assert fields == [
            "warehouse_id",
            "lines[1].material_id",
            "lines[0].quantity",
            "lines[1].unit_cost",
        ]

    def test_empty_document_rejected(self, facade, warehouse, actor_id):
        with pytest.raises(DocumentValidationError) as exc_info:
            facade.create_issue(warehouse.id, [], actor_id)
        assert exc_info.value.field_errors == [
            {"field": "lines", "message": "At least one line is required"}
        ]

    def test_inactive_material_rejected(self, facade, warehouse, make_material, actor_id):
        material = make_material(is_active=False)
        with pytest.raises(DocumentValidationError) as exc_info:
            facade.create_issue(
                warehouse.id, [IssueLineInput(material_id=material.id, quantity=Decimal("1"))], actor_id
            )
        assert exc_info.value.field_errors[0]["message"] == "Material is inactive"

    def test_picks_must_add_up(self, facade, warehouse, material, actor_id):
        line = IssueLineInput(
            material_id=material.id,
            quantity=Decimal("5"),
            lots=(ManualPick(uuid4(), Decimal("2")),),
        )
        with pytest.raises(DocumentValidationError) as exc_info:
            facade.create_issue(warehouse.id, [line], actor_id)
        assert exc_info.value.field_errors[0]["field"] == "lines[0].lots"

    def test_duplicate_picks_rejected(self, facade, warehouse, material, actor_id):
        lot_id = uuid4()
        line = IssueLineInput(
            material_id=material.id,
            quantity=Decimal("4"),
            lots=(ManualPick(lot_id, Decimal("2")), ManualPick(lot_id, Decimal("2"))),
        )
        with pytest.raises(DocumentValidationError) as exc_info:
            facade.create_issue(warehouse.id, [line], actor_id)
        assert exc_info.value.field_errors[0]["message"] == "A lot may be picked only once per line"

    def test_transfer_needs_two_warehouses(self, facade, warehouse, material, actor_id):
        with pytest.raises(DocumentValidationError) as exc_info:
            facade.create_transfer(
                warehouse.id, warehouse.id,
                [TransferLineInput(material_id=material.id, quantity=Decimal("1"))],
                actor_id,
            )
        assert {"field": "to_warehouse_id", "message": "Source and destination warehouses must differ"} \
            in exc_info.value.field_errors

    def test_zero_adjustment_rejected(self, facade, warehouse, material, actor_id):
        with pytest.raises(DocumentValidationError) as exc_info:
            facade.create_adjustment(
                warehouse.id,
                [AdjustmentLineInput(material_id=material.id, quantity_diff=Decimal("0"))],
                actor_id,
            )
        assert exc_info.value.field_errors[0]["field"] == "lines[0].quantity_diff"

    def test_rejected_document_is_not_persisted(self, facade, session, warehouse, actor_id):
        with pytest.raises(DocumentValidationError):
            facade.create_issue(warehouse.id, [], actor_id)
        assert session.execute(select(func.count()).select_from(StockIssue)).scalar_one() == 0


class TestTransitions:

    def test_confirm_records_approver(self, facade, warehouse, material, actor_id, clock):
        receipt = _receipt(facade, warehouse, material, actor_id)

        result = facade.confirm(DocumentType.STOCK_RECEIPT, receipt.id, actor_id)

        assert (result.from_status, result.to_status) == ("new", "confirmed")
        assert result.posting is None
        assert receipt.approved_by_id == actor_id
        assert receipt.approved_at == clock.now()

    def test_available_actions_follow_status(self, facade, warehouse, material, actor_id):
        receipt = _receipt(facade, warehouse, material, actor_id)
        assert facade.available_actions(DocumentType.STOCK_RECEIPT, receipt.id) == ("confirm", "cancel")

        facade.confirm(DocumentType.STOCK_RECEIPT, receipt.id, actor_id)
        assert facade.available_actions(DocumentType.STOCK_RECEIPT, receipt.id) == ("post", "cancel")

        facade.post(DocumentType.STOCK_RECEIPT, receipt.id, actor_id)
        assert facade.available_actions(DocumentType.STOCK_RECEIPT, receipt.id) == ("cancel",)

        facade.cancel(DocumentType.STOCK_RECEIPT, receipt.id, actor_id)
        assert facade.available_actions(DocumentType.STOCK_RECEIPT, receipt.id) == ()

    def test_post_requires_confirmation(self, facade, warehouse, material, actor_id):
        receipt = _receipt(facade, warehouse, material, actor_id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            facade.post(DocumentType.STOCK_RECEIPT, receipt.id, actor_id)

        assert exc_info.value.current_status == "new"
        assert exc_info.value.action == "post"
        assert receipt.status == DocumentStatus.NEW.value

    def test_cancelled_is_absorbing(self, facade, warehouse, material, actor_id):
        receipt = _receipt(facade, warehouse, material, actor_id)
        facade.cancel(DocumentType.STOCK_RECEIPT, receipt.id, actor_id)

        for action in (facade.confirm, facade.post, facade.cancel):
            with pytest.raises(InvalidTransitionError):
                action(DocumentType.STOCK_RECEIPT, receipt.id, actor_id)

    def test_cancel_unposted_has_no_stock_effect(self, facade, warehouse, material, actor_id):
        receipt = _receipt(facade, warehouse, material, actor_id)
        facade.confirm(DocumentType.STOCK_RECEIPT, receipt.id, actor_id)

        result = facade.cancel(DocumentType.STOCK_RECEIPT, receipt.id, actor_id, reason="wrong supplier")

        assert result.posting is None
        assert receipt.status == DocumentStatus.CANCELLED.value
        assert receipt.cancelled_by_id == actor_id
        assert receipt.note == "[CANCELLED] wrong supplier"

    def test_cancel_reason_appended_to_note(self, facade, warehouse, material, actor_id):
        receipt = _receipt(facade, warehouse, material, actor_id, note="pallet 4")
        facade.cancel(DocumentType.STOCK_RECEIPT, receipt.id, actor_id, reason="duplicate")
        assert receipt.note == "pallet 4\n[CANCELLED] duplicate"

    def test_unknown_document(self, facade, actor_id):
        with pytest.raises(DocumentNotFoundError):
            facade.confirm(DocumentType.STOCK_ISSUE, uuid4(), actor_id)

    def test_transition_trace_logged(self, facade, warehouse, material, actor_id, captured_logs):
        receipt = _receipt(facade, warehouse, material, actor_id)
        facade.confirm(DocumentType.STOCK_RECEIPT, receipt.id, actor_id)

        [trace] = [r for r in captured_logs() if r["message"] == "document_transition"]
        assert trace["trace_type"] == "DOCUMENT_TRANSITION"
        assert trace["workflow"] == "stock_receipt"
        assert (trace["from_state"], trace["to_state"]) == ("new", "confirmed")
        assert trace["document_id"] == str(receipt.id)
        assert trace["warehouse_id"] == str(warehouse.id)
        assert "correlation_id" in trace
