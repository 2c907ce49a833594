"""
inventory_services -- Package init and public API.

Responsibility:
    Stateful orchestration over the pure engines and the kernel ledgers:
    document workflow, posting, costing queries, numbering, lot
    maintenance, notifications, the lookup cache and reports.

Architecture position:
    Services -- the only layer that composes engines with sessions.

    Dependency direction (enforced by tests/architecture):
        inventory_services/ -> inventory_engines/  (allowed)
        inventory_services/ -> inventory_kernel/   (allowed)
        inventory_engines/  -> inventory_services/ (FORBIDDEN)
        inventory_kernel/   -> inventory_services/ (FORBIDDEN)

Invariants enforced:
    - Nothing in this package commits except InventoryFacade.
"""

from inventory_services.costing_service import CostingService
from inventory_services.export import render_value, to_csv, to_dict
from inventory_services.facade import InventoryFacade
from inventory_services.lookup_cache import TTLCache, WarehouseDirectory, WarehouseInfo
from inventory_services.lot_service import (
    ExpiringLot,
    ExpiryReport,
    LotHistoryEntry,
    LotService,
    MergeResult,
    SplitResult,
)
from inventory_services.notification_service import (
    DeliveryFailure,
    DocumentEvent,
    InAppSink,
    LoggingSink,
    NotificationDispatcher,
    NotificationSink,
    default_dispatcher,
)
from inventory_services.numbering_service import DocumentNumberingService, format_number
from inventory_services.posting_service import (
    LinePosting,
    PostingService,
    PostingSummary,
    parse_manual_allocation,
)
from inventory_services.report_service import Report, ReportRequest, ReportService
from inventory_services.workflow_service import (
    DOCUMENT_MODELS,
    WORKFLOWS,
    AdjustmentLineInput,
    DocumentWorkflowService,
    IssueLineInput,
    ReceiptLineInput,
    TransferLineInput,
    TransitionResult,
)

__all__ = [
    # Facade
    "InventoryFacade",
    # Workflow
    "DocumentWorkflowService",
    "WORKFLOWS",
    "DOCUMENT_MODELS",
    "ReceiptLineInput",
    "IssueLineInput",
    "TransferLineInput",
    "AdjustmentLineInput",
    "TransitionResult",
    # Posting
    "PostingService",
    "PostingSummary",
    "LinePosting",
    "parse_manual_allocation",
    # Costing
    "CostingService",
    # Numbering
    "DocumentNumberingService",
    "format_number",
    # Lots
    "LotService",
    "SplitResult",
    "ExpiringLot",
    "ExpiryReport",
    "MergeResult",
    "LotHistoryEntry",
    # Notifications
    "NotificationDispatcher",
    "NotificationSink",
    "LoggingSink",
    "InAppSink",
    "DocumentEvent",
    "DeliveryFailure",
    "default_dispatcher",
    # Cache
    "TTLCache",
    "WarehouseDirectory",
    "WarehouseInfo",
    # Reports
    "ReportService",
    "ReportRequest",
    "Report",
    "to_csv",
    "to_dict",
    "render_value",
]
