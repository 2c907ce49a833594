"""
inventory_services.facade -- Single entry point for the back office core.

Responsibility:
    Wires the services together from one ``InventoryConfig`` and owns the
    transaction boundary: every state-changing call commits on success and
    rolls back on failure when ``auto_commit=True``.

Architecture position:
    Services -- outermost layer.  Callers (HTTP handlers, jobs, tests) hold
    a session and a facade; nothing below the facade commits.

Invariants enforced:
    - One correlation id per call, bound into LogContext for every log
      record the call produces.
    - With ``auto_commit=False`` the facade never commits or rolls back;
      the caller owns the transaction and calls ``flush_notifications()``
      after its own commit.
    - Transition notices reach sinks only after the commit succeeds; a
      rolled-back call delivers nothing.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from datetime import date
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inventory_config import default_config
from inventory_config.schema import InventoryConfig
from inventory_engines.costing import IssueCost, LotCost, Valuation
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.values import DocumentType
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.services.sequence_service import SequenceService
from inventory_services.costing_service import CostingService
from inventory_services.export import to_csv
from inventory_services.lookup_cache import TTLCache, WarehouseDirectory
from inventory_services.lot_service import (
    ExpiryReport,
    LotHistoryEntry,
    LotService,
    MergeResult,
    SplitResult,
)
from inventory_services.notification_service import NotificationDispatcher, default_dispatcher
from inventory_services.numbering_service import DocumentNumberingService
from inventory_services.posting_service import PostingService
from inventory_services.report_service import Report, ReportRequest, ReportService
from inventory_services.workflow_service import (
    AdjustmentLineInput,
    DocumentWorkflowService,
    IssueLineInput,
    ReceiptLineInput,
    TransferLineInput,
    TransitionResult,
)

logger = get_logger("services.facade")

T = TypeVar("T")


class InventoryFacade:
    """
    Warehouse back office operations behind one transaction boundary.

    Args:
        session: SQLAlchemy session.
        config: Active configuration.  Defaults to the builtin set.
        clock: Clock for timestamps and ledger days.  Defaults to SystemClock.
        auto_commit: If True (default), commits on success and rolls back on
            failure.  Set False when the caller manages the transaction.
        notifications: Dispatcher override.  Defaults to a logging sink plus
            an in-app sink, per ``config.notifications``.
    """

    def __init__(
        self,
        session: Session,
        config: InventoryConfig | None = None,
        clock: Clock | None = None,
        auto_commit: bool = True,
        notifications: NotificationDispatcher | None = None,
    ):
        self._session = session
        self._config = config or default_config()
        self._clock = clock or SystemClock()
        self._auto_commit = auto_commit

        self._cache: TTLCache = TTLCache(self._config.cache.lookup_ttl_seconds, self._clock)
        self._directory = WarehouseDirectory(session, self._cache)
        self._sequences = SequenceService(session)
        self._costing = CostingService(session, self._config.costing)
        self._posting = PostingService(
            session,
            self._clock,
            costing=self._costing,
            sequence_service=self._sequences,
        )
        self._numbering = DocumentNumberingService(
            session, self._config.numbering, self._clock, self._directory
        )
        self._notifications = notifications or default_dispatcher(
            session,
            self._clock,
            enabled=self._config.notifications.enabled,
            in_app=self._config.notifications.in_app,
        )
        self._workflow = DocumentWorkflowService(
            session, self._posting, self._numbering, self._notifications, self._clock
        )
        self._lots = LotService(
            session,
            self._clock,
            self._sequences,
            expiry_warning_days=self._config.lots.expiry_warning_days,
        )
        self._reports = ReportService(
            session, self._costing, self._directory, self._config.reports, self._clock
        )

    @property
    def config(self) -> InventoryConfig:
        return self._config

    @property
    def notifications(self) -> NotificationDispatcher:
        return self._notifications

    @property
    def directory(self) -> WarehouseDirectory:
        return self._directory

    # ------------------------------------------------------------------
    # Transaction boundary
    # ------------------------------------------------------------------

    def _run(self, operation: str, actor_id: UUID, fn: Callable[[], T]) -> T:
        with LogContext.bind(correlation_id=str(uuid4()), actor_id=str(actor_id)):
            logger.info("inventory_operation_started", extra={"operation": operation})
            t0 = time.monotonic()
            try:
                result = fn()
                if self._auto_commit:
                    self._session.commit()
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                logger.info("inventory_operation_completed", extra={
                    "operation": operation,
                    "duration_ms": duration_ms,
                })
            except Exception:
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                if self._auto_commit:
                    self._notifications.discard()
                    self._session.rollback()
                logger.error(
                    "inventory_operation_failed",
                    extra={"operation": operation, "duration_ms": duration_ms},
                    exc_info=True,
                )
                raise
            if self._auto_commit:
                self._deliver_notifications()
            return result

    def _deliver_notifications(self) -> None:
        if not self._notifications.pending:
            return
        self._notifications.flush()
        try:
            self._session.commit()
        except SQLAlchemyError:
            # The stock movement is already committed; only in-app rows are lost
            self._session.rollback()
            logger.warning("notification_commit_failed", exc_info=True)

    def flush_notifications(self) -> int:
        """
        Deliver notices queued by earlier calls.

        Only needed with ``auto_commit=False``: call it after committing the
        transaction those calls ran in, then commit again to keep in-app rows.
        """
        return self._notifications.flush()

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def create_receipt(
        self,
        warehouse_id: UUID,
        lines: Sequence[ReceiptLineInput],
        actor_id: UUID,
        **header: Any,
    ):
        return self._run(
            "create_receipt", actor_id,
            lambda: self._workflow.create_receipt(warehouse_id, lines, actor_id, **header),
        )

    def create_issue(
        self,
        warehouse_id: UUID,
        lines: Sequence[IssueLineInput],
        actor_id: UUID,
        **header: Any,
    ):
        return self._run(
            "create_issue", actor_id,
            lambda: self._workflow.create_issue(warehouse_id, lines, actor_id, **header),
        )

    def create_transfer(
        self,
        from_warehouse_id: UUID,
        to_warehouse_id: UUID,
        lines: Sequence[TransferLineInput],
        actor_id: UUID,
        **header: Any,
    ):
        return self._run(
            "create_transfer", actor_id,
            lambda: self._workflow.create_transfer(
                from_warehouse_id, to_warehouse_id, lines, actor_id, **header
            ),
        )

    def create_adjustment(
        self,
        warehouse_id: UUID,
        lines: Sequence[AdjustmentLineInput],
        actor_id: UUID,
        **header: Any,
    ):
        return self._run(
            "create_adjustment", actor_id,
            lambda: self._workflow.create_adjustment(warehouse_id, lines, actor_id, **header),
        )

    def confirm(self, document_type: DocumentType, document_id: UUID, actor_id: UUID) -> TransitionResult:
        return self._run(
            "confirm", actor_id,
            lambda: self._workflow.confirm(document_type, document_id, actor_id),
        )

    def post(self, document_type: DocumentType, document_id: UUID, actor_id: UUID) -> TransitionResult:
        return self._run(
            "post", actor_id,
            lambda: self._workflow.post(document_type, document_id, actor_id),
        )

    def cancel(
        self,
        document_type: DocumentType,
        document_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> TransitionResult:
        return self._run(
            "cancel", actor_id,
            lambda: self._workflow.cancel(document_type, document_id, actor_id, reason),
        )

    def get_document(self, document_type: DocumentType, document_id: UUID):
        return self._workflow.get(document_type, document_id)

    def available_actions(self, document_type: DocumentType, document_id: UUID) -> tuple[str, ...]:
        return self._workflow.available_actions(document_type, document_id)

    # ------------------------------------------------------------------
    # Lots
    # ------------------------------------------------------------------

    def split_lot(
        self, lot_id: UUID, quantities: Sequence[Decimal], actor_id: UUID, note: str | None = None
    ) -> SplitResult:
        return self._run(
            "split_lot", actor_id,
            lambda: self._lots.split(lot_id, quantities, actor_id, note),
        )

    def merge_lots(
        self, lot_ids: Sequence[UUID], actor_id: UUID, note: str | None = None
    ) -> MergeResult:
        return self._run(
            "merge_lots", actor_id,
            lambda: self._lots.merge(lot_ids, actor_id, note),
        )

    def reserve_lot(self, lot_id: UUID, issue_id: UUID, actor_id: UUID) -> None:
        self._run("reserve_lot", actor_id, lambda: self._lots.reserve(lot_id, issue_id, actor_id))

    def release_lot(self, lot_id: UUID, actor_id: UUID) -> None:
        self._run("release_lot", actor_id, lambda: self._lots.release(lot_id, actor_id))

    def lot_history(self, lot_id: UUID) -> list[LotHistoryEntry]:
        return self._lots.history(lot_id)

    def can_split(self, lot_id: UUID) -> bool:
        return self._lots.can_split(lot_id)

    def can_merge(self, lot_ids: Sequence[UUID]) -> bool:
        return self._lots.can_merge(lot_ids)

    def expiring_lots(
        self,
        warehouse_id: UUID | None = None,
        as_of: date | None = None,
        within_days: int | None = None,
    ) -> ExpiryReport:
        return self._lots.expiring(warehouse_id, as_of, within_days)

    # ------------------------------------------------------------------
    # Costing and reports (read-only)
    # ------------------------------------------------------------------

    def unit_cost(self, warehouse_id: UUID, material_id: UUID, as_of: date | None = None) -> Decimal:
        return self._costing.unit_cost(warehouse_id, material_id, as_of)

    def issue_cost(self, warehouse_id: UUID, material_id: UUID, quantity: Decimal) -> IssueCost:
        return self._costing.issue_cost(warehouse_id, material_id, quantity)

    def valuation(self, warehouse_id: UUID, material_id: UUID) -> Valuation:
        return self._costing.valuation(warehouse_id, material_id)

    def lot_costs(self, warehouse_id: UUID, material_id: UUID) -> tuple[LotCost, ...]:
        return self._costing.lot_costs(warehouse_id, material_id)

    def report(self, request: ReportRequest) -> Report:
        return self._reports.generate(request)

    def report_csv(self, request: ReportRequest) -> str:
        return to_csv(self._reports.generate(request))
