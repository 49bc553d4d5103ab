"""Tests for the event outbox — publishing, delivery, retries and dispute subscribers."""

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from src.database.base import Base
from src.models.enums import EventStatus
from src.models.event_outbox import EventOutbox
from src.models.processed_event import ProcessedEvent
from src.modules.dispute import subscribers
from src.modules.events.handlers import EventHandlerRegistry
from src.modules.events.outbox_processor import OutboxProcessor
from src.modules.events.outbox_service import OutboxService

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def clean_registry():
    EventHandlerRegistry.clear()
    yield
    EventHandlerRegistry.clear()


@pytest.fixture
def sync_engine():
    engine = create_engine(
        "sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def processor(sync_engine):
    return OutboxProcessor(engine=sync_engine, clock=lambda: NOW)


def _insert(engine, event_type="activity.log", payload=None, **fields) -> uuid.UUID:
    with Session(engine) as session:
        event = EventOutbox(
            event_type=event_type,
            aggregate_type="dispute",
            aggregate_id=str(uuid.uuid4()),
            payload=payload if payload is not None else {"event": {"type": "dispute.filed"}},
            status=EventStatus.PENDING,
            **fields,
        )
        session.add(event)
        session.commit()
        return event.id


def _load(engine, event_id) -> EventOutbox:
    with Session(engine) as session:
        return session.execute(select(EventOutbox).where(EventOutbox.id == event_id)).scalar_one()


class TestOutboxServicePublish:
    """Tests for OutboxService.publish_event."""

    @pytest.mark.asyncio
    async def test_publish_event_creates_pending_event(self, db):
        service = OutboxService(db)

        event = await service.publish_event(
            event_type="notification.send",
            aggregate_type="dispute",
            aggregate_id="d-1",
            payload={"user_id": "shop-001", "event": {"type": "dispute.filed"}},
        )

        assert event.id is not None
        assert event.status == EventStatus.PENDING
        assert event.retry_count == 0
        assert event.schema_version == 1
        assert event.payload["user_id"] == "shop-001"

    @pytest.mark.asyncio
    async def test_publish_event_with_custom_schema_version(self, db):
        event = await OutboxService(db).publish_event(
            event_type="activity.log",
            aggregate_type="dispute",
            aggregate_id="d-1",
            payload={},
            schema_version=2,
        )
        assert event.schema_version == 2

    @pytest.mark.asyncio
    async def test_rows_disappear_with_rollback(self, db):
        service = OutboxService(db)
        await service.publish_event("activity.log", "dispute", "d-2", {})

        await db.rollback()

        assert await service.list_for_aggregate("dispute", "d-2") == []


class TestOutboxServiceList:
    """Tests for OutboxService.list_for_aggregate."""

    @pytest.mark.asyncio
    async def test_lists_only_the_aggregate(self, db):
        service = OutboxService(db)
        await service.publish_event("activity.log", "dispute", "d-1", {})
        await service.publish_event("notification.send", "dispute", "d-1", {})
        await service.publish_event("activity.log", "dispute", "d-2", {})

        rows = await service.list_for_aggregate("dispute", "d-1")

        assert sorted(r.event_type for r in rows) == ["activity.log", "notification.send"]

    @pytest.mark.asyncio
    async def test_filters_by_status(self, db):
        service = OutboxService(db)
        event = await service.publish_event("activity.log", "dispute", "d-1", {})
        event.status = EventStatus.COMPLETED
        await service.publish_event("notification.send", "dispute", "d-1", {})
        await db.flush()

        pending = await service.list_for_aggregate("dispute", "d-1", status=EventStatus.PENDING)

        assert [r.event_type for r in pending] == ["notification.send"]


class TestEventHandlerRegistry:
    """Tests for EventHandlerRegistry."""

    def test_register_is_idempotent(self):
        handler = MagicMock()
        handler.__name__ = "handler"
        EventHandlerRegistry.register("activity.log", handler)
        EventHandlerRegistry.register("activity.log", handler)

        assert EventHandlerRegistry.get_handlers("activity.log") == [handler]

    def test_dispatch_reports_failures_without_stopping(self):
        calls = []

        @EventHandlerRegistry.on("notification.send")
        def broken(payload):
            raise ConnectionError("push gateway down")

        @EventHandlerRegistry.on("notification.send")
        def working(payload):
            calls.append(payload)

        results = EventHandlerRegistry.dispatch("notification.send", {"user_id": "u"})

        assert [r["status"] for r in results] == ["error", "ok"]
        assert results[0]["error"] == "push gateway down"
        assert calls == [{"user_id": "u"}]


class TestOutboxProcessor:
    """Tests for OutboxProcessor against a synchronous SQLite engine."""

    def test_delivers_and_marks_completed(self, processor, sync_engine):
        delivered = []
        EventHandlerRegistry.register("activity.log", delivered.append)
        event_id = _insert(sync_engine)

        result = processor.process_batch()

        assert result == {"processed": 1, "failed": 0}
        assert delivered == [{"event": {"type": "dispute.filed"}}]
        row = _load(sync_engine, event_id)
        assert row.status == EventStatus.COMPLETED
        assert row.processed_at == NOW
        with Session(sync_engine) as session:
            processed = session.execute(select(ProcessedEvent)).scalar_one()
        assert processed.event_id == event_id
        assert processed.expires_at == NOW + timedelta(days=7)

    def test_already_processed_event_is_not_redelivered(self, processor, sync_engine):
        handler = MagicMock()
        handler.__name__ = "handler"
        EventHandlerRegistry.register("activity.log", handler)
        event_id = _insert(sync_engine)
        with Session(sync_engine) as session:
            session.add(ProcessedEvent(
                event_id=event_id,
                event_type="activity.log",
                handler_name="handler",
                expires_at=NOW + timedelta(days=7),
            ))
            session.commit()

        result = processor.process_batch()

        assert result == {"processed": 1, "failed": 0}
        handler.assert_not_called()
        assert _load(sync_engine, event_id).status == EventStatus.COMPLETED

    def test_failed_delivery_is_retried_then_marked_failed(self, processor, sync_engine):
        def flaky(payload):
            raise TimeoutError("activity service timed out")

        EventHandlerRegistry.register("activity.log", flaky)
        event_id = _insert(sync_engine, max_retries=2)

        assert processor.process_batch() == {"processed": 0, "failed": 1}
        row = _load(sync_engine, event_id)
        assert row.status == EventStatus.PENDING
        assert row.retry_count == 1
        assert "timed out" in row.last_error

        assert processor.process_batch() == {"processed": 0, "failed": 1}
        row = _load(sync_engine, event_id)
        assert row.status == EventStatus.FAILED
        assert row.retry_count == 2

        # Failed rows are left for inspection
        assert processor.process_batch() == {"processed": 0, "failed": 0}

    def test_one_failing_row_does_not_block_the_rest(self, processor, sync_engine):
        def picky(payload):
            if payload.get("user_id") == "bad":
                raise ValueError("unknown user")

        EventHandlerRegistry.register("notification.send", picky)
        bad = _insert(sync_engine, "notification.send", {"user_id": "bad", "event": {}})
        good = _insert(sync_engine, "notification.send", {"user_id": "cust-001", "event": {}})

        assert processor.process_batch() == {"processed": 1, "failed": 1}
        assert _load(sync_engine, bad).status == EventStatus.PENDING
        assert _load(sync_engine, good).status == EventStatus.COMPLETED

    def test_respects_batch_size(self, processor, sync_engine):
        EventHandlerRegistry.register("activity.log", lambda payload: None)
        for _ in range(3):
            _insert(sync_engine)

        assert processor.process_batch(batch_size=2) == {"processed": 2, "failed": 0}
        assert processor.process_batch(batch_size=2) == {"processed": 1, "failed": 0}

    def test_cleanup_removes_expired_records(self, processor, sync_engine):
        old = _insert(sync_engine)
        recent = _insert(sync_engine)
        with Session(sync_engine) as session:
            session.execute(
                EventOutbox.__table__.update()
                .where(EventOutbox.id == old)
                .values(status=EventStatus.COMPLETED, processed_at=NOW - timedelta(days=31))
            )
            session.execute(
                EventOutbox.__table__.update()
                .where(EventOutbox.id == recent)
                .values(status=EventStatus.COMPLETED, processed_at=NOW - timedelta(days=2))
            )
            session.add(ProcessedEvent(
                event_id=old,
                event_type="activity.log",
                handler_name="h",
                expires_at=NOW - timedelta(days=1),
            ))
            session.commit()

        assert processor.cleanup_expired() == 2
        with Session(sync_engine) as session:
            remaining = session.execute(select(EventOutbox.id)).scalars().all()
        assert remaining == [recent]


class TestDisputeSubscribers:
    """Delivery handlers route outbox payloads to the right collaborator."""

    def test_handlers_are_registered_once(self):
        subscribers.register_dispute_handlers()
        subscribers.register_dispute_handlers()

        assert EventHandlerRegistry.get_handlers("activity.log") == [subscribers.deliver_activity]
        assert EventHandlerRegistry.get_handlers("notification.send") == [subscribers.deliver_notification]
        assert EventHandlerRegistry.get_handlers("reputation.strike") == [subscribers.deliver_strike]

    def test_outbox_rows_reach_collaborators(self, processor, sync_engine):
        recorder = MagicMock()
        notifier = MagicMock()
        reputation = MagicMock()
        event = {"type": "dispute.resolved", "dispute_id": "d-9"}
        _insert(sync_engine, "activity.log", {"event": event})
        _insert(sync_engine, "notification.send", {"user_id": "cust-001", "event": event})
        _insert(
            sync_engine,
            "reputation.strike",
            {"user_id": "shop-001", "dispute_id": "d-9", "reason": "Item never shipped"},
        )
        subscribers.register_dispute_handlers()

        with (
            patch.object(subscribers, "get_activity_recorder", return_value=recorder),
            patch.object(subscribers, "get_notification_service", return_value=notifier),
            patch.object(subscribers, "get_reputation_service", return_value=reputation),
        ):
            result = processor.process_batch()

        assert result == {"processed": 3, "failed": 0}
        recorder.log.assert_called_once_with(event)
        notifier.notify.assert_called_once_with("cust-001", event)
        reputation.issue_strike.assert_called_once_with("shop-001", "d-9", "Item never shipped")

    def test_collaborator_error_leaves_row_for_retry(self, processor, sync_engine):
        notifier = MagicMock()
        notifier.notify.side_effect = ConnectionError("notification service unreachable")
        event_id = _insert(sync_engine, "notification.send", {"user_id": "cust-001", "event": {}})
        subscribers.register_dispute_handlers()

        with patch.object(subscribers, "get_notification_service", return_value=notifier):
            assert processor.process_batch() == {"processed": 0, "failed": 1}

        row = _load(sync_engine, event_id)
        assert row.status == EventStatus.PENDING
        assert row.retry_count == 1
