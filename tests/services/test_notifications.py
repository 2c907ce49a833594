"""
Transition notifications are best effort, delivered only once the transition
commits, and never undo a transition.
"""

import dataclasses
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from inventory_config.schema import NotificationSettings
from inventory_kernel.domain.values import DocumentStatus, DocumentType
from inventory_kernel.models.notification import Notification
from inventory_kernel.selectors.stock_selector import StockSelector
from inventory_services.facade import InventoryFacade
from inventory_services.notification_service import (
    DocumentEvent,
    InAppSink,
    LoggingSink,
    NotificationDispatcher,
)
from inventory_services.workflow_service import ReceiptLineInput


class FailingSink:
    name = "pager"

    def deliver(self, event):
        raise ConnectionError("pager gateway unreachable")


class RecordingSink:
    name = "recorder"

    def __init__(self):
        self.events = []

    def deliver(self, event):
        self.events.append(event)


def _post_receipt(facade, warehouse, material, actor_id):
    receipt = facade.create_receipt(
        warehouse.id,
        [ReceiptLineInput(material_id=material.id, quantity=Decimal("3"), unit_cost=Decimal("10"))],
        actor_id,
    )
    facade.confirm(DocumentType.STOCK_RECEIPT, receipt.id, actor_id)
    facade.post(DocumentType.STOCK_RECEIPT, receipt.id, actor_id)
    return receipt


class TestDelivery:

    def test_every_transition_notifies(self, session, config, clock, warehouse, material, actor_id):
        recorder = RecordingSink()
        facade = InventoryFacade(
            session, config=config, clock=clock,
            notifications=NotificationDispatcher([recorder], clock=clock),
        )

        receipt = _post_receipt(facade, warehouse, material, actor_id)

        assert [(e.action, e.to_status) for e in recorder.events] == [
            ("confirm", "confirmed"),
            ("post", "received"),
        ]
        assert recorder.events[-1].number == receipt.number
        assert recorder.events[-1].occurred_at == clock.now()

    def test_in_app_sink_writes_a_row(self, session, config, clock, warehouse, material, actor_id):
        facade = InventoryFacade(
            session, config=config, clock=clock,
            notifications=NotificationDispatcher([InAppSink(session, clock)], clock=clock),
        )

        receipt = _post_receipt(facade, warehouse, material, actor_id)

        rows = {r.category: r for r in session.execute(select(Notification)).scalars()}
        assert sorted(rows) == ["confirm", "post"]
        posted = rows["post"]
        assert posted.document_id == receipt.id
        assert posted.title == f"stock_receipt {receipt.number} received"
        assert posted.is_read is False

    def test_default_dispatcher_follows_config(self, facade):
        assert [s.name for s in facade.notifications.sinks] == ["log", "in_app"]

    def test_logging_sink_emits_record(self, facade, warehouse, material, actor_id, captured_logs):
        _post_receipt(facade, warehouse, material, actor_id)

        notices = [r for r in captured_logs() if r["message"] == "document_notification"]
        assert [r["action"] for r in notices] == ["confirm", "post"]
        assert isinstance(facade.notifications.sinks[0], LoggingSink)


class TestFailures:

    def test_failing_sink_does_not_undo_posting(
        self, session, config, clock, warehouse, material, actor_id, captured_logs
    ):
        dispatcher = NotificationDispatcher([FailingSink(), InAppSink(session, clock)], clock=clock)
        facade = InventoryFacade(session, config=config, clock=clock, notifications=dispatcher)

        _post_receipt(facade, warehouse, material, actor_id)

        assert StockSelector(session).on_hand(warehouse.id, material.id) == Decimal("3")
        assert [f.action for f in dispatcher.failures] == ["confirm", "post"]
        failure = dispatcher.failures[-1]
        assert failure.sink == "pager"
        assert failure.error_type == "ConnectionError"
        assert failure.error == "pager gateway unreachable"

        warnings = [r for r in captured_logs() if r["message"] == "notification_delivery_failed"]
        assert len(warnings) == 2
        assert warnings[0]["level"] == "WARNING"
        assert warnings[0]["sink"] == "pager"

        # Sinks after the failing one still run
        assert len(session.execute(select(Notification)).scalars().all()) == 2

    def test_dispatch_counts_successful_deliveries(self, clock, actor_id):
        recorder = RecordingSink()
        dispatcher = NotificationDispatcher([FailingSink(), recorder], clock=clock)
        event = _event(clock, actor_id)

        assert dispatcher.dispatch(event) == 1
        assert recorder.events == [event]


class TestDisabled:

    def test_disabled_dispatcher_sends_nothing(self, clock, actor_id):
        recorder = RecordingSink()
        dispatcher = NotificationDispatcher([recorder], clock=clock, enabled=False)

        assert dispatcher.dispatch(_event(clock, actor_id)) == 0
        assert recorder.events == []

    def test_disabled_in_config(self, session, config, clock, warehouse, material, actor_id):
        quiet = dataclasses.replace(config, notifications=NotificationSettings(enabled=False))
        facade = InventoryFacade(session, config=quiet, clock=clock)

        _post_receipt(facade, warehouse, material, actor_id)

        assert session.execute(select(Notification)).scalars().all() == []

    @pytest.mark.parametrize("in_app, expected", [(True, ["log", "in_app"]), (False, ["log"])])
    def test_in_app_toggle(self, session, config, clock, in_app, expected):
        settings = NotificationSettings(enabled=True, in_app=in_app)
        facade = InventoryFacade(
            session, config=dataclasses.replace(config, notifications=settings), clock=clock
        )
        assert [s.name for s in facade.notifications.sinks] == expected


class TestDeferredDelivery:

    def test_enqueued_events_wait_for_flush(self, clock, actor_id):
        recorder = RecordingSink()
        dispatcher = NotificationDispatcher([recorder], clock=clock)
        event = _event(clock, actor_id)

        dispatcher.enqueue(event)

        assert recorder.events == []
        assert dispatcher.pending == (event,)
        assert dispatcher.flush() == 1
        assert recorder.events == [event]
        assert dispatcher.pending == ()

    def test_discard_drops_queued_events(self, clock, actor_id):
        recorder = RecordingSink()
        dispatcher = NotificationDispatcher([recorder], clock=clock)
        dispatcher.enqueue(_event(clock, actor_id))

        assert dispatcher.discard() == 1
        assert dispatcher.flush() == 0
        assert recorder.events == []

    def test_disabled_dispatcher_queues_nothing(self, clock, actor_id):
        dispatcher = NotificationDispatcher([RecordingSink()], clock=clock, enabled=False)
        dispatcher.enqueue(_event(clock, actor_id))

        assert dispatcher.pending == ()

    def test_failed_commit_delivers_nothing(
        self, facade, session, warehouse, material, actor_id, captured_logs, monkeypatch
    ):
        receipt = facade.create_receipt(
            warehouse.id,
            [ReceiptLineInput(material_id=material.id, quantity=Decimal("3"), unit_cost=Decimal("10"))],
            actor_id,
        )

        def failing_commit():
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(session, "commit", failing_commit)
        with pytest.raises(OperationalError):
            facade.confirm(DocumentType.STOCK_RECEIPT, receipt.id, actor_id)

        assert facade.notifications.pending == ()
        assert [r for r in captured_logs() if r["message"] == "document_notification"] == []
        assert session.execute(select(Notification)).scalars().all() == []
        reloaded = facade.get_document(DocumentType.STOCK_RECEIPT, receipt.id)
        assert reloaded.status == DocumentStatus.NEW.value

    def test_failed_notification_commit_keeps_the_transition(
        self, facade, session, warehouse, material, actor_id, captured_logs, monkeypatch
    ):
        receipt = facade.create_receipt(
            warehouse.id,
            [ReceiptLineInput(material_id=material.id, quantity=Decimal("3"), unit_cost=Decimal("10"))],
            actor_id,
        )
        real_commit = session.commit
        calls = []

        def commit_then_fail():
            calls.append(1)
            if len(calls) > 1:
                raise OperationalError("COMMIT", {}, Exception("database is locked"))
            real_commit()

        monkeypatch.setattr(session, "commit", commit_then_fail)
        result = facade.confirm(DocumentType.STOCK_RECEIPT, receipt.id, actor_id)

        assert result.to_status == DocumentStatus.CONFIRMED.value
        assert session.execute(select(Notification)).scalars().all() == []
        warnings = [r for r in captured_logs() if r["message"] == "notification_commit_failed"]
        assert [r["level"] for r in warnings] == ["WARNING"]
        reloaded = facade.get_document(DocumentType.STOCK_RECEIPT, receipt.id)
        assert reloaded.status == DocumentStatus.CONFIRMED.value

    def test_caller_managed_transaction_flushes_after_commit(
        self, session, config, clock, warehouse, material, actor_id
    ):
        recorder = RecordingSink()
        facade = InventoryFacade(
            session, config=config, clock=clock, auto_commit=False,
            notifications=NotificationDispatcher([recorder], clock=clock),
        )

        _post_receipt(facade, warehouse, material, actor_id)
        assert recorder.events == []

        session.commit()

        assert facade.flush_notifications() == 2
        assert [e.action for e in recorder.events] == ["confirm", "post"]


def _event(clock, actor_id):
    return DocumentEvent(
        document_type="stock_issue",
        document_id=uuid4(),
        number="PX240315-0001",
        action="post",
        to_status="issued",
        actor_id=actor_id,
        occurred_at=clock.now(),
    )
