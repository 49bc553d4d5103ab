"""OutboxService — writes delivery rows in the caller's database transaction."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.enums import EventStatus
from src.models.event_outbox import EventOutbox


class OutboxService:
    """Publishes outbox rows on the caller's session.

    Nothing here commits: a row becomes visible to the outbox worker only when
    the state change that produced it commits, and disappears with it on
    rollback.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def publish_event(
        self,
        event_type: str,
        aggregate_type: str,
        aggregate_id: str,
        payload: dict,
        schema_version: int = 1,
    ) -> EventOutbox:
        """Create a new event in the outbox with PENDING status."""
        event = EventOutbox(
            event_type=event_type,
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            payload=payload,
            status=EventStatus.PENDING,
            schema_version=schema_version,
        )
        self.session.add(event)
        await self.session.flush()
        return event

    async def list_for_aggregate(
        self, aggregate_type: str, aggregate_id: str, status: EventStatus | None = None
    ) -> list[EventOutbox]:
        """Outbox rows for one aggregate, oldest first."""
        statement = (
            select(EventOutbox)
            .where(
                EventOutbox.aggregate_type == aggregate_type,
                EventOutbox.aggregate_id == aggregate_id,
            )
            .order_by(EventOutbox.created_at.asc())
        )
        if status is not None:
            statement = statement.where(EventOutbox.status == status)
        result = await self.session.execute(statement)
        return list(result.scalars().all())
