"""
inventory_services.workflow_service -- Document creation and lifecycle.

Responsibility:
    Creates stock documents with field-level validation and a number,
    then moves them through new -> confirmed -> posted -> cancelled.
    Posting and cancelling a posted document delegate the stock effect to
    PostingService.

Architecture position:
    Services.  The lifecycle of every document type is declared as a
    frozen ``Workflow``; this service only looks transitions up and runs
    them.  Flushes, never commits (InventoryFacade owns the transaction).

Invariants enforced:
    - Only transitions declared in the workflow run; anything else raises
      InvalidTransitionError before any change.
    - Each transition runs inside a savepoint.  On failure the savepoint is
      rolled back and the document keeps its pre-transition status.
    - ``post`` is the only transition that moves stock; ``cancel`` from a
      posted status reverses it first.
    - CANCELLED is absorbing.
    - Notifications are queued only after the savepoint is released; the
      facade delivers them once the enclosing transaction commits.

Failure modes:
    - DocumentValidationError from create_* (all field errors at once).
    - DocumentNotFoundError / InvalidTransitionError.
    - Stock errors from PostingService propagate unchanged.
    - SQLAlchemyError during a transition is raised as PostingFailedError.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inventory_engines.allocation import ManualPick
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.values import POSTED_STATUS, DocumentStatus, DocumentType
from inventory_kernel.domain.workflow import Transition, Workflow
from inventory_kernel.exceptions import (
    DocumentNotFoundError,
    DocumentValidationError,
    InvalidTransitionError,
    PostingFailedError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.catalog import Material, Warehouse
from inventory_kernel.models.documents import (
    StockAdjustment,
    StockAdjustmentLine,
    StockIssue,
    StockIssueLine,
    StockReceipt,
    StockReceiptLine,
    StockTransfer,
    StockTransferLine,
)
from inventory_services.notification_service import DocumentEvent, NotificationDispatcher
from inventory_services.numbering_service import DocumentNumberingService
from inventory_services.posting_service import PostingService, PostingSummary

logger = get_logger("services.workflow")

TRACE_TYPE_DOCUMENT_TRANSITION = "DOCUMENT_TRANSITION"

ACTION_CONFIRM = "confirm"
ACTION_POST = "post"
ACTION_CANCEL = "cancel"

_ZERO = Decimal("0")


# ---------------------------------------------------------------------------
# Lifecycle declarations
# ---------------------------------------------------------------------------


def _document_workflow(document_type: DocumentType) -> Workflow:
    new = DocumentStatus.NEW.value
    confirmed = DocumentStatus.CONFIRMED.value
    posted = POSTED_STATUS[document_type].value
    cancelled = DocumentStatus.CANCELLED.value
    return Workflow(
        name=document_type.value,
        description=f"{document_type.value} lifecycle",
        initial_state=new,
        states=(new, confirmed, posted, cancelled),
        transitions=(
            Transition(new, confirmed, ACTION_CONFIRM),
            Transition(confirmed, posted, ACTION_POST, moves_stock=True),
            Transition(new, cancelled, ACTION_CANCEL),
            Transition(confirmed, cancelled, ACTION_CANCEL),
            Transition(posted, cancelled, ACTION_CANCEL, reverses_stock=True),
        ),
        terminal_states=(cancelled,),
    )


WORKFLOWS: dict[DocumentType, Workflow] = {
    document_type: _document_workflow(document_type) for document_type in DocumentType
}

DOCUMENT_MODELS: dict[DocumentType, type] = {
    DocumentType.STOCK_RECEIPT: StockReceipt,
    DocumentType.STOCK_ISSUE: StockIssue,
    DocumentType.STOCK_TRANSFER: StockTransfer,
    DocumentType.STOCK_ADJUSTMENT: StockAdjustment,
}


# ---------------------------------------------------------------------------
# Inputs and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReceiptLineInput:
    material_id: UUID
    quantity: Decimal
    unit_cost: Decimal | None = None
    lot_number: str | None = None
    manufacture_date: date | None = None
    expiry_date: date | None = None


@dataclass(frozen=True)
class IssueLineInput:
    """``unit_price`` defaults to the material's selling price; ``lots`` pins the draw."""

    material_id: UUID
    quantity: Decimal
    unit_price: Decimal | None = None
    lots: tuple[ManualPick, ...] = ()


@dataclass(frozen=True)
class TransferLineInput:
    material_id: UUID
    quantity: Decimal
    lots: tuple[ManualPick, ...] = ()


@dataclass(frozen=True)
class AdjustmentLineInput:
    """``quantity_diff`` > 0 adds a lot at ``unit_cost``; < 0 draws FEFO."""

    material_id: UUID
    quantity_diff: Decimal
    unit_cost: Decimal | None = None
    lot_number: str | None = None
    expiry_date: date | None = None


@dataclass(frozen=True)
class TransitionResult:
    document_type: DocumentType
    document_id: UUID
    number: str
    action: str
    from_status: str
    to_status: str
    posting: PostingSummary | None = None


@dataclass
class _Errors:
    items: list[dict[str, str]] = field(default_factory=list)

    def add(self, field_name: str, message: str) -> None:
        self.items.append({"field": field_name, "message": message})

    def raise_if_any(self, document_type: DocumentType) -> None:
        if self.items:
            logger.warning("document_validation_failed", extra={
                "document_type": document_type.value,
                "error_count": len(self.items),
            })
            raise DocumentValidationError(document_type.value, self.items)


def _picks_payload(picks: Sequence[ManualPick]) -> list[dict[str, str]] | None:
    if not picks:
        return None
    return [{"lot_id": str(p.lot_id), "quantity": str(p.quantity)} for p in picks]


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class DocumentWorkflowService:
    """
    Creates documents and runs their transitions.

    Contract:
        Receives collaborators via constructor injection.  Every public
        method flushes; none commits.
    """

    def __init__(
        self,
        session: Session,
        posting: PostingService,
        numbering: DocumentNumberingService,
        notifications: NotificationDispatcher | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._posting = posting
        self._numbering = numbering
        self._notifications = notifications or NotificationDispatcher()
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    def _check_warehouse(self, warehouse_id: UUID | None, field_name: str, errors: _Errors) -> None:
        if warehouse_id is None:
            errors.add(field_name, "Warehouse is required")
            return
        warehouse = self._session.get(Warehouse, warehouse_id)
        if warehouse is None:
            errors.add(field_name, "Unknown warehouse")
        elif not warehouse.is_active:
            errors.add(field_name, "Warehouse is inactive")

    def _materials(self, lines: Sequence[Any], errors: _Errors) -> dict[UUID, Material]:
        if not lines:
            errors.add("lines", "At least one line is required")
            return {}
        ids = {line.material_id for line in lines if line.material_id is not None}
        materials = {
            m.id: m for m in self._session.execute(
                select(Material).where(Material.id.in_(ids))
            ).scalars()
        } if ids else {}
        for idx, line in enumerate(lines):
            material = materials.get(line.material_id)
            if material is None:
                errors.add(f"lines[{idx}].material_id", "Unknown material")
            elif not material.is_active:
                errors.add(f"lines[{idx}].material_id", "Material is inactive")
        return materials

    @staticmethod
    def _check_quantity(value: Decimal | None, field_name: str, errors: _Errors, signed: bool = False) -> None:
        if value is None:
            errors.add(field_name, "Quantity is required")
        elif signed and value == _ZERO:
            errors.add(field_name, "Quantity difference cannot be zero")
        elif not signed and value <= _ZERO:
            errors.add(field_name, "Quantity must be positive")

    @staticmethod
    def _check_cost(value: Decimal | None, field_name: str, errors: _Errors) -> None:
        if value is not None and value < _ZERO:
            errors.add(field_name, "Amount cannot be negative")

    @staticmethod
    def _check_picks(line: Any, prefix: str, errors: _Errors) -> None:
        if not line.lots:
            return
        if len({p.lot_id for p in line.lots}) != len(line.lots):
            errors.add(f"{prefix}.lots", "A lot may be picked only once per line")
        if any(p.quantity <= _ZERO for p in line.lots):
            errors.add(f"{prefix}.lots", "Picked quantities must be positive")
        elif line.quantity is not None and sum((p.quantity for p in line.lots), _ZERO) != line.quantity:
            errors.add(f"{prefix}.lots", "Picked quantities must add up to the line quantity")

    def _number(self, document_type: DocumentType, warehouse_id: UUID) -> str:
        model = DOCUMENT_MODELS[document_type]

        def is_taken(number: str) -> bool:
            return self._session.execute(
                select(model.id).where(model.number == number)
            ).first() is not None

        return self._numbering.next_number(document_type, warehouse_id, is_taken=is_taken)

    def _created(self, document_type: DocumentType, document: Any) -> Any:
        self._session.add(document)
        self._session.flush()
        logger.info("document_created", extra={
            "document_type": document_type.value,
            "document_id": str(document.id),
            "number": document.number,
            "line_count": len(document.lines),
        })
        return document

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_receipt(
        self,
        warehouse_id: UUID,
        lines: Sequence[ReceiptLineInput],
        actor_id: UUID,
        document_date: date | None = None,
        supplier_name: str | None = None,
        note: str | None = None,
    ) -> StockReceipt:
        errors = _Errors()
        self._check_warehouse(warehouse_id, "warehouse_id", errors)
        self._materials(lines, errors)
        for idx, line in enumerate(lines):
            prefix = f"lines[{idx}]"
            self._check_quantity(line.quantity, f"{prefix}.quantity", errors)
            self._check_cost(line.unit_cost, f"{prefix}.unit_cost", errors)
            if line.manufacture_date and line.expiry_date and line.expiry_date < line.manufacture_date:
                errors.add(f"{prefix}.expiry_date", "Expiry date precedes manufacture date")
        errors.raise_if_any(DocumentType.STOCK_RECEIPT)

        receipt = StockReceipt(
            number=self._number(DocumentType.STOCK_RECEIPT, warehouse_id),
            document_date=document_date or self._clock.today(),
            status=DocumentStatus.NEW.value,
            warehouse_id=warehouse_id,
            supplier_name=supplier_name,
            note=note,
            created_by_id=actor_id,
            lines=[
                StockReceiptLine(
                    line_no=n,
                    material_id=line.material_id,
                    quantity=line.quantity,
                    unit_cost=line.unit_cost,
                    lot_number=line.lot_number,
                    manufacture_date=line.manufacture_date,
                    expiry_date=line.expiry_date,
                )
                for n, line in enumerate(lines, start=1)
            ],
        )
        return self._created(DocumentType.STOCK_RECEIPT, receipt)

    def create_issue(
        self,
        warehouse_id: UUID,
        lines: Sequence[IssueLineInput],
        actor_id: UUID,
        document_date: date | None = None,
        customer_name: str | None = None,
        note: str | None = None,
    ) -> StockIssue:
        errors = _Errors()
        self._check_warehouse(warehouse_id, "warehouse_id", errors)
        materials = self._materials(lines, errors)
        for idx, line in enumerate(lines):
            prefix = f"lines[{idx}]"
            self._check_quantity(line.quantity, f"{prefix}.quantity", errors)
            self._check_cost(line.unit_price, f"{prefix}.unit_price", errors)
            self._check_picks(line, prefix, errors)
        errors.raise_if_any(DocumentType.STOCK_ISSUE)

        issue = StockIssue(
            number=self._number(DocumentType.STOCK_ISSUE, warehouse_id),
            document_date=document_date or self._clock.today(),
            status=DocumentStatus.NEW.value,
            warehouse_id=warehouse_id,
            customer_name=customer_name,
            note=note,
            created_by_id=actor_id,
            lines=[
                StockIssueLine(
                    line_no=n,
                    material_id=line.material_id,
                    quantity=line.quantity,
                    unit_price=(
                        line.unit_price if line.unit_price is not None
                        else materials[line.material_id].selling_price
                    ),
                    manual_allocation=_picks_payload(line.lots),
                )
                for n, line in enumerate(lines, start=1)
            ],
        )
        return self._created(DocumentType.STOCK_ISSUE, issue)

    def create_transfer(
        self,
        from_warehouse_id: UUID,
        to_warehouse_id: UUID,
        lines: Sequence[TransferLineInput],
        actor_id: UUID,
        document_date: date | None = None,
        note: str | None = None,
    ) -> StockTransfer:
        errors = _Errors()
        self._check_warehouse(from_warehouse_id, "from_warehouse_id", errors)
        self._check_warehouse(to_warehouse_id, "to_warehouse_id", errors)
        if from_warehouse_id is not None and from_warehouse_id == to_warehouse_id:
            errors.add("to_warehouse_id", "Source and destination warehouses must differ")
        self._materials(lines, errors)
        for idx, line in enumerate(lines):
            prefix = f"lines[{idx}]"
            self._check_quantity(line.quantity, f"{prefix}.quantity", errors)
            self._check_picks(line, prefix, errors)
        errors.raise_if_any(DocumentType.STOCK_TRANSFER)

        transfer = StockTransfer(
            number=self._number(DocumentType.STOCK_TRANSFER, from_warehouse_id),
            document_date=document_date or self._clock.today(),
            status=DocumentStatus.NEW.value,
            from_warehouse_id=from_warehouse_id,
            to_warehouse_id=to_warehouse_id,
            note=note,
            created_by_id=actor_id,
            lines=[
                StockTransferLine(
                    line_no=n,
                    material_id=line.material_id,
                    quantity=line.quantity,
                    manual_allocation=_picks_payload(line.lots),
                )
                for n, line in enumerate(lines, start=1)
            ],
        )
        return self._created(DocumentType.STOCK_TRANSFER, transfer)

    def create_adjustment(
        self,
        warehouse_id: UUID,
        lines: Sequence[AdjustmentLineInput],
        actor_id: UUID,
        reason: str | None = None,
        document_date: date | None = None,
        note: str | None = None,
    ) -> StockAdjustment:
        errors = _Errors()
        self._check_warehouse(warehouse_id, "warehouse_id", errors)
        self._materials(lines, errors)
        for idx, line in enumerate(lines):
            prefix = f"lines[{idx}]"
            self._check_quantity(line.quantity_diff, f"{prefix}.quantity_diff", errors, signed=True)
            self._check_cost(line.unit_cost, f"{prefix}.unit_cost", errors)
        errors.raise_if_any(DocumentType.STOCK_ADJUSTMENT)

        adjustment = StockAdjustment(
            number=self._number(DocumentType.STOCK_ADJUSTMENT, warehouse_id),
            document_date=document_date or self._clock.today(),
            status=DocumentStatus.NEW.value,
            warehouse_id=warehouse_id,
            reason=reason,
            note=note,
            created_by_id=actor_id,
            lines=[
                StockAdjustmentLine(
                    line_no=n,
                    material_id=line.material_id,
                    quantity_diff=line.quantity_diff,
                    unit_cost=line.unit_cost,
                    lot_number=line.lot_number,
                    expiry_date=line.expiry_date,
                )
                for n, line in enumerate(lines, start=1)
            ],
        )
        return self._created(DocumentType.STOCK_ADJUSTMENT, adjustment)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, document_type: DocumentType, document_id: UUID) -> Any:
        document = self._session.get(DOCUMENT_MODELS[document_type], document_id)
        if document is None:
            raise DocumentNotFoundError(document_type.value, document_id)
        return document

    def available_actions(self, document_type: DocumentType, document_id: UUID) -> tuple[str, ...]:
        document = self.get(document_type, document_id)
        return WORKFLOWS[document_type].actions_from(document.status)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def confirm(self, document_type: DocumentType, document_id: UUID, actor_id: UUID) -> TransitionResult:
        """new -> confirmed.  Records the approver; no stock effect."""
        return self._transition(document_type, document_id, ACTION_CONFIRM, actor_id)

    def post(self, document_type: DocumentType, document_id: UUID, actor_id: UUID) -> TransitionResult:
        """confirmed -> received / issued / transferred / adjusted."""
        return self._transition(document_type, document_id, ACTION_POST, actor_id)

    def cancel(
        self,
        document_type: DocumentType,
        document_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> TransitionResult:
        """Any non-cancelled status -> cancelled, reversing stock if posted."""
        return self._transition(document_type, document_id, ACTION_CANCEL, actor_id, reason)

    def _apply(self, document: Any, transition: Transition, actor_id: UUID, reason: str | None) -> None:
        now = self._clock.now()
        document.status = transition.to_state
        document.updated_by_id = actor_id
        if transition.action == ACTION_CONFIRM:
            document.approved_by_id = actor_id
            document.approved_at = now
        elif transition.action == ACTION_POST:
            document.posted_by_id = actor_id
            document.posted_at = now
        elif transition.action == ACTION_CANCEL:
            document.cancelled_by_id = actor_id
            document.cancelled_at = now
            if reason and reason.strip():
                entry = f"[CANCELLED] {reason.strip()}"
                document.note = f"{document.note}\n{entry}" if document.note else entry

    def _transition(
        self,
        document_type: DocumentType,
        document_id: UUID,
        action: str,
        actor_id: UUID,
        reason: str | None = None,
    ) -> TransitionResult:
        document = self.get(document_type, document_id)
        workflow = WORKFLOWS[document_type]
        from_state = document.status
        transition = workflow.find(from_state, action)
        if transition is None:
            logger.warning("document_transition_rejected", extra={
                "document_type": document_type.value,
                "document_id": str(document_id),
                "from_state": from_state,
                "action": action,
            })
            raise InvalidTransitionError(document_type.value, document_id, from_state, action)

        with LogContext.bind(
            actor_id=actor_id,
            document_id=document_id,
            document_type=document_type.value,
            warehouse_id=document.warehouse_id,
        ):
            t0 = time.monotonic()
            posting: PostingSummary | None = None
            savepoint = self._session.begin_nested()
            try:
                if transition.reverses_stock:
                    posting = self._posting.reverse(document_type, document)
                elif transition.moves_stock:
                    posting = self._posting.post(document_type, document)
                self._apply(document, transition, actor_id, reason)
                self._session.flush()
                savepoint.commit()
            except SQLAlchemyError as exc:
                savepoint.rollback()
                logger.error(
                    "document_transition_failed",
                    extra={"action": action, "from_state": from_state},
                    exc_info=True,
                )
                raise PostingFailedError(document_type.value, document_id, action, str(exc)) from exc
            except Exception:
                savepoint.rollback()
                logger.warning(
                    "document_transition_failed",
                    extra={"action": action, "from_state": from_state},
                    exc_info=True,
                )
                raise

            duration_ms = round((time.monotonic() - t0) * 1000, 2)
            logger.info("document_transition", extra={
                "trace_type": TRACE_TYPE_DOCUMENT_TRANSITION,
                "workflow": workflow.name,
                "action": action,
                "from_state": from_state,
                "to_state": transition.to_state,
                "moves_stock": transition.moves_stock,
                "reverses_stock": transition.reverses_stock,
                "duration_ms": duration_ms,
            })

            self._notifications.enqueue(DocumentEvent(
                document_type=document_type.value,
                document_id=document.id,
                number=document.number,
                action=action,
                to_status=transition.to_state,
                actor_id=actor_id,
                occurred_at=self._clock.now(),
            ))

        return TransitionResult(
            document_type=document_type,
            document_id=document.id,
            number=document.number,
            action=action,
            from_status=from_state,
            to_status=transition.to_state,
            posting=posting,
        )
