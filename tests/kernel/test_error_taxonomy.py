"""
Error taxonomy: every error is an InventoryError with a stable code and
structured attributes.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from inventory_kernel import exceptions as exc


class TestHierarchy:

    @pytest.mark.parametrize("cls,base", [
        (exc.DocumentValidationError, exc.ValidationError),
        (exc.AllocationMismatchError, exc.ValidationError),
        (exc.InsufficientStockError, exc.StockError),
        (exc.LotNotFoundError, exc.StockError),
        (exc.LotOverdrawnError, exc.StockError),
        (exc.LotAlreadyConsumedError, exc.StockError),
        (exc.LotReservedError, exc.StockError),
        (exc.DocumentNotFoundError, exc.WorkflowError),
        (exc.InvalidTransitionError, exc.WorkflowError),
        (exc.PostingFailedError, exc.InventoryError),
        (exc.DocumentNumberingError, exc.InventoryError),
        (exc.LotOperationError, exc.InventoryError),
    ])
    def test_subclassing(self, cls, base):
        assert issubclass(cls, base)
        assert issubclass(cls, exc.InventoryError)

    def test_codes_are_unique(self):
        classes = [
            obj for obj in vars(exc).values()
            if isinstance(obj, type) and issubclass(obj, exc.InventoryError)
        ]
        codes = [c.code for c in classes]
        assert len(codes) == len(set(codes))


class TestAttributes:

    def test_validation_errors_listed(self):
        err = exc.DocumentValidationError("stock_issue", [
            {"field": "lines[0].quantity", "message": "Quantity must be positive"},
            {"field": "warehouse_id", "message": "Unknown warehouse"},
        ])
        assert err.code == "DOCUMENT_VALIDATION_FAILED"
        assert [e["field"] for e in err.field_errors] == ["lines[0].quantity", "warehouse_id"]
        assert "2 error(s)" in str(err)

    def test_insufficient_stock_shortfall(self):
        err = exc.InsufficientStockError(uuid4(), uuid4(), Decimal("12"), Decimal("4.5"))
        assert err.shortfall == Decimal("7.5")
        assert err.material_code is None

    def test_invalid_transition(self):
        doc_id = uuid4()
        err = exc.InvalidTransitionError("stock_receipt", doc_id, "cancelled", "post")
        assert err.current_status == "cancelled"
        assert err.action == "post"
        assert str(doc_id) in str(err)
