"""OutboxProcessor — synchronous batch processor for Celery workers."""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from src.models.enums import EventStatus
from src.models.event_outbox import EventOutbox
from src.models.processed_event import ProcessedEvent
from src.modules.events.handlers import EventHandlerRegistry

logger = logging.getLogger(__name__)

PROCESSED_EVENT_TTL = timedelta(days=7)
COMPLETED_EVENT_RETENTION = timedelta(days=30)


class OutboxProcessor:
    """Delivers pending outbox events using sync sessions (for Celery workers).

    Uses SELECT ... FOR UPDATE SKIP LOCKED for safe multi-worker concurrency
    and records every delivered event in processed_events, so a row that was
    delivered but not marked completed is skipped on the next pass.
    """

    def __init__(
        self,
        engine: Engine | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if engine is None:
            from src.database.engine import sync_engine

            engine = sync_engine
        self.engine = engine
        self.clock = clock or (lambda: datetime.now(UTC))

    def process_batch(self, batch_size: int = 50) -> dict:
        """Process a batch of pending events.

        Returns dict with 'processed' and 'failed' counts.
        """
        processed_count = 0
        failed_count = 0

        with Session(self.engine) as session:
            pending = session.execute(
                select(EventOutbox)
                .where(EventOutbox.status == EventStatus.PENDING)
                .order_by(EventOutbox.created_at.asc())
                .limit(batch_size)
                .with_for_update(skip_locked=True)
            ).scalars().all()

            # Plain values survive the rollbacks below
            batch = [
                (e.id, e.event_type, dict(e.payload or {}), e.retry_count, e.max_retries)
                for e in pending
            ]

            for event_id, event_type, payload, retry_count, max_retries in batch:
                try:
                    already_processed = session.execute(
                        select(ProcessedEvent.id).where(ProcessedEvent.event_id == event_id).limit(1)
                    ).first()

                    if already_processed:
                        self._mark_completed(session, event_id)
                        session.commit()
                        processed_count += 1
                        continue

                    # Not committed: a crash mid-delivery leaves the row PENDING
                    session.execute(
                        update(EventOutbox)
                        .where(EventOutbox.id == event_id)
                        .values(status=EventStatus.PROCESSING)
                    )

                    results = EventHandlerRegistry.dispatch(event_type, payload)

                    handler_errors = [r for r in results if r["status"] == "error"]
                    if handler_errors:
                        error_messages = "; ".join(
                            f"{r['handler']}: {r['error']}" for r in handler_errors
                        )
                        raise RuntimeError(f"Handler errors: {error_messages}")

                    now = self.clock()
                    session.add(ProcessedEvent(
                        event_id=event_id,
                        event_type=event_type,
                        handler_name=",".join(r["handler"] for r in results) if results else "no_handlers",
                        processed_at=now,
                        expires_at=now + PROCESSED_EVENT_TTL,
                    ))
                    self._mark_completed(session, event_id)
                    session.commit()
                    processed_count += 1

                except Exception as exc:
                    session.rollback()
                    logger.exception(
                        "Failed to deliver event %s (type=%s)", event_id, event_type
                    )

                    new_retry_count = retry_count + 1
                    new_status = (
                        EventStatus.FAILED if new_retry_count >= max_retries else EventStatus.PENDING
                    )
                    session.execute(
                        update(EventOutbox)
                        .where(EventOutbox.id == event_id)
                        .values(status=new_status, retry_count=new_retry_count, last_error=str(exc))
                    )
                    session.commit()
                    failed_count += 1

        if processed_count or failed_count:
            logger.info(
                "Outbox batch done: %d delivered, %d failed", processed_count, failed_count
            )
        return {"processed": processed_count, "failed": failed_count}

    def _mark_completed(self, session: Session, event_id) -> None:
        session.execute(
            update(EventOutbox)
            .where(EventOutbox.id == event_id)
            .values(status=EventStatus.COMPLETED, processed_at=self.clock())
        )

    def cleanup_expired(self) -> int:
        """Delete expired processed_events and old completed outbox events.

        Returns total number of rows deleted.
        """
        now = self.clock()
        total_deleted = 0

        with Session(self.engine) as session:
            result = session.execute(
                delete(ProcessedEvent).where(ProcessedEvent.expires_at < now)
            )
            total_deleted += result.rowcount

            result = session.execute(
                delete(EventOutbox).where(
                    EventOutbox.status == EventStatus.COMPLETED,
                    EventOutbox.processed_at < now - COMPLETED_EVENT_RETENTION,
                )
            )
            total_deleted += result.rowcount

            session.commit()

        logger.info("Cleaned up %d expired event records", total_deleted)
        return total_deleted
