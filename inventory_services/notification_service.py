"""
inventory_services.notification_service -- Fire-and-forget transition notices.

Responsibility:
    Tells interested sinks that a document transition succeeded.  Delivery
    is best effort: a failing sink is logged and recorded, never raised.

Architecture position:
    Services.  DocumentWorkflowService enqueues an event once the transition's
    savepoint has been released; InventoryFacade flushes the queue after its
    commit succeeds and discards it on rollback.  Never participates in the
    posting.

Invariants enforced:
    - No event is delivered for a transaction that did not commit.
    - A sink failure never propagates to the caller and never rolls back
      the stock movement it reports on.
    - Every failure is observable twice: a WARNING log with exc_info and
      a ``DeliveryFailure`` in ``NotificationDispatcher.failures``.
    - The in-app sink writes inside its own savepoint, so a failed insert
      leaves the enclosing transaction usable.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy.orm import Session

from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.notification import Notification

logger = get_logger("services.notifications")


@dataclass(frozen=True)
class DocumentEvent:
    """What happened to which document."""

    document_type: str
    document_id: UUID
    number: str
    action: str
    to_status: str
    actor_id: UUID
    occurred_at: datetime

    @property
    def title(self) -> str:
        return f"{self.document_type} {self.number} {self.to_status}"

    @property
    def message(self) -> str:
        return f"{self.document_type} {self.number} was {self.to_status} ({self.action})"


@dataclass(frozen=True)
class DeliveryFailure:
    sink: str
    document_type: str
    document_id: UUID
    action: str
    error_type: str
    error: str
    occurred_at: datetime


@runtime_checkable
class NotificationSink(Protocol):
    name: str

    def deliver(self, event: DocumentEvent) -> None: ...


class LoggingSink:
    """Emits one structured log record per event."""

    name = "log"

    def deliver(self, event: DocumentEvent) -> None:
        logger.info("document_notification", extra={
            "document_type": event.document_type,
            "document_id": str(event.document_id),
            "number": event.number,
            "action": event.action,
            "to_status": event.to_status,
        })


class InAppSink:
    """Writes a Notification row in its own savepoint."""

    name = "in_app"

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def deliver(self, event: DocumentEvent) -> None:
        with self._session.begin_nested():
            self._session.add(Notification(
                title=event.title,
                message=event.message,
                category=event.action,
                document_type=event.document_type,
                document_id=event.document_id,
                created_at=self._clock.now(),
                is_read=False,
            ))
            self._session.flush()


class NotificationDispatcher:
    """Fans an event out to every sink, capturing failures."""

    def __init__(
        self,
        sinks: Sequence[NotificationSink] = (),
        clock: Clock | None = None,
        enabled: bool = True,
    ):
        self._sinks = tuple(sinks)
        self._clock = clock or SystemClock()
        self._enabled = enabled
        self._pending: list[DocumentEvent] = []
        self.failures: list[DeliveryFailure] = []

    @property
    def sinks(self) -> tuple[NotificationSink, ...]:
        return self._sinks

    @property
    def pending(self) -> tuple[DocumentEvent, ...]:
        return tuple(self._pending)

    def enqueue(self, event: DocumentEvent) -> None:
        """Hold ``event`` until the transaction that produced it commits."""
        if self._enabled:
            self._pending.append(event)

    def flush(self) -> int:
        """Dispatch every queued event in order.  Returns successful deliveries."""
        events, self._pending = self._pending, []
        return sum(self.dispatch(event) for event in events)

    def discard(self) -> int:
        """Drop queued events; their transaction rolled back."""
        dropped = len(self._pending)
        self._pending = []
        if dropped:
            logger.debug("notifications_discarded", extra={"event_count": dropped})
        return dropped

    def dispatch(self, event: DocumentEvent) -> int:
        """Deliver to all sinks.  Returns the number of successful deliveries."""
        if not self._enabled:
            return 0
        delivered = 0
        for sink in self._sinks:
            try:
                sink.deliver(event)
                delivered += 1
            except Exception as exc:
                # Captured, not raised: the transition has already succeeded
                logger.warning(
                    "notification_delivery_failed",
                    extra={
                        "sink": sink.name,
                        "document_type": event.document_type,
                        "document_id": str(event.document_id),
                        "action": event.action,
                    },
                    exc_info=True,
                )
                self.failures.append(DeliveryFailure(
                    sink=sink.name,
                    document_type=event.document_type,
                    document_id=event.document_id,
                    action=event.action,
                    error_type=type(exc).__name__,
                    error=str(exc),
                    occurred_at=self._clock.now(),
                ))
        return delivered


def default_dispatcher(
    session: Session,
    clock: Clock | None = None,
    enabled: bool = True,
    in_app: bool = True,
) -> NotificationDispatcher:
    sinks: list[NotificationSink] = [LoggingSink()]
    if in_app:
        sinks.append(InAppSink(session, clock))
    return NotificationDispatcher(sinks, clock=clock, enabled=enabled)
