"""
Typed Exception Hierarchy for the Inventory Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Stock postings fail for a small number of well-understood reasons, and each
one demands different handling from the caller:

  - A validation failure is the user's to fix (show the field errors).
  - Insufficient stock is a business outcome (show material + shortfall).
  - A workflow violation is a stale screen (reload the document).
  - A persistence failure is operational (retry later, page someone).

Callers catch by TYPE and read structured ATTRIBUTES; nobody parses
message strings.

    try:
        workflow.post(DocumentType.STOCK_ISSUE, issue_id, actor_id)
    except InsufficientStockError as e:
        return {"error": e.code, "material": e.material_code,
                "shortfall": str(e.shortfall)}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    InventoryError (base)
    |
    +-- ValidationError
    |   +-- DocumentValidationError
    |   +-- AllocationMismatchError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |   +-- LotNotFoundError
    |   +-- LotOverdrawnError
    |   +-- LotAlreadyConsumedError
    |   +-- LotReservedError
    |
    +-- WorkflowError
    |   +-- DocumentNotFoundError
    |   +-- InvalidTransitionError
    |
    +-- PostingFailedError
    |
    +-- DocumentNumberingError
    |
    +-- LotOperationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | DOCUMENT_VALIDATION_FAILED  | Missing field, quantity <= 0, ...
                | ALLOCATION_MISMATCH         | Manual lot picks don't sum to the line
----------------|-----------------------------|-----------------------------------------
Stock           | INSUFFICIENT_STOCK          | Eligible lots can't cover the request
                | LOT_NOT_FOUND               | Lot ID doesn't exist / wrong bucket
                | LOT_OVERDRAWN               | Draw exceeds a lot's remaining qty
                | LOT_ALREADY_CONSUMED        | Reversal would retire a drawn lot
                | LOT_RESERVED                | Lot held for another issue
----------------|-----------------------------|-----------------------------------------
Workflow        | DOCUMENT_NOT_FOUND          | Document ID doesn't exist
                | INVALID_TRANSITION          | Action not legal from current status
----------------|-----------------------------|-----------------------------------------
Posting         | POSTING_FAILED              | Persistence failure mid-transition
----------------|-----------------------------|-----------------------------------------
Numbering       | DOCUMENT_NUMBERING_FAILED   | Counter contention exhausted retries
----------------|-----------------------------|-----------------------------------------
Lots            | LOT_OPERATION_INVALID       | Split / merge / reserve precondition

===============================================================================
"""

from decimal import Decimal
from typing import Any


class InventoryError(Exception):
    """
    Base exception for all inventory kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "INVENTORY_ERROR"


# Validation


class ValidationError(InventoryError):
    """Base exception for input that is rejected before any mutation."""

    code: str = "VALIDATION_ERROR"


class DocumentValidationError(ValidationError):
    """
    Document failed field-level validation.

    ``field_errors`` is a list of ``{"field": ..., "message": ...}`` dicts,
    one per problem, in the order they were found.
    """

    code: str = "DOCUMENT_VALIDATION_FAILED"

    def __init__(self, document_type: str, field_errors: list[dict[str, str]]):
        self.document_type = document_type
        self.field_errors = field_errors
        super().__init__(
            f"{document_type} failed validation: {len(field_errors)} error(s)"
        )


class AllocationMismatchError(ValidationError):
    """Caller-supplied lot allocation does not match the requested quantity."""

    code: str = "ALLOCATION_MISMATCH"

    def __init__(self, material_id: Any, requested: Decimal, allocated: Decimal):
        self.material_id = material_id
        self.requested = requested
        self.allocated = allocated
        super().__init__(
            f"Allocation for material {material_id} totals {allocated}, "
            f"expected {requested}"
        )


# Stock


class StockError(InventoryError):
    """Base exception for stock and lot availability errors."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """Eligible lots cannot cover the requested quantity."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        material_id: Any,
        warehouse_id: Any,
        requested: Decimal,
        available: Decimal,
        material_code: str | None = None,
    ):
        self.material_id = material_id
        self.warehouse_id = warehouse_id
        self.material_code = material_code
        self.requested = requested
        self.available = available
        self.shortfall = requested - available
        label = material_code or str(material_id)
        super().__init__(
            f"Insufficient stock for material {label} in warehouse "
            f"{warehouse_id}: requested {requested}, available {available}, "
            f"short by {self.shortfall}"
        )


class LotNotFoundError(StockError):
    """Lot does not exist or belongs to a different warehouse/material."""

    code: str = "LOT_NOT_FOUND"

    def __init__(self, lot_id: Any):
        self.lot_id = lot_id
        super().__init__(f"Lot not found: {lot_id}")


class LotOverdrawnError(StockError):
    """A draw or restore would take a lot outside [0, original quantity]."""

    code: str = "LOT_OVERDRAWN"

    def __init__(self, lot_id: Any, requested: Decimal, remaining: Decimal):
        self.lot_id = lot_id
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Lot {lot_id} cannot move {requested}: remaining {remaining}"
        )


class LotAlreadyConsumedError(StockError):
    """A lot created by a document was drawn down, so it cannot be retired."""

    code: str = "LOT_ALREADY_CONSUMED"

    def __init__(self, lot_id: Any, original: Decimal, remaining: Decimal):
        self.lot_id = lot_id
        self.original = original
        self.remaining = remaining
        super().__init__(
            f"Lot {lot_id} has been consumed ({remaining} of {original} left)"
        )


class LotReservedError(StockError):
    """Lot is reserved for a different issue."""

    code: str = "LOT_RESERVED"

    def __init__(self, lot_id: Any, reserved_for_issue_id: Any):
        self.lot_id = lot_id
        self.reserved_for_issue_id = reserved_for_issue_id
        super().__init__(
            f"Lot {lot_id} is reserved for issue {reserved_for_issue_id}"
        )


# Workflow


class WorkflowError(InventoryError):
    """Base exception for document lifecycle errors."""

    code: str = "WORKFLOW_ERROR"


class DocumentNotFoundError(WorkflowError):

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_type: str, document_id: Any):
        self.document_type = document_type
        self.document_id = document_id
        super().__init__(f"{document_type} not found: {document_id}")


class InvalidTransitionError(WorkflowError):
    """Requested action is not legal from the document's current status."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        document_type: str,
        document_id: Any,
        current_status: str,
        action: str,
    ):
        self.document_type = document_type
        self.document_id = document_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} {document_type} {document_id} "
            f"in status {current_status}"
        )


# Posting


class PostingFailedError(InventoryError):
    """
    Persistence failed while a transition was in progress.

    The transition has been rolled back; the document is unchanged.
    """

    code: str = "POSTING_FAILED"

    def __init__(self, document_type: str, document_id: Any, action: str, reason: str):
        self.document_type = document_type
        self.document_id = document_id
        self.action = action
        self.reason = reason
        super().__init__(
            f"Failed to {action} {document_type} {document_id}: {reason}"
        )


# Numbering


class DocumentNumberingError(InventoryError):

    code: str = "DOCUMENT_NUMBERING_FAILED"

    def __init__(self, document_type: str, warehouse_id: Any, attempts: int):
        self.document_type = document_type
        self.warehouse_id = warehouse_id
        self.attempts = attempts
        super().__init__(
            f"Could not allocate a {document_type} number for warehouse "
            f"{warehouse_id} after {attempts} attempt(s)"
        )


# Lot maintenance


class LotOperationError(InventoryError):
    """Split / merge / reserve precondition not met."""

    code: str = "LOT_OPERATION_INVALID"

    def __init__(self, operation: str, reason: str, lot_ids: tuple = ()):
        self.operation = operation
        self.reason = reason
        self.lot_ids = lot_ids
        super().__init__(f"Cannot {operation}: {reason}")
