"""Dispute event publishing — one outbox row per delivery."""

from __future__ import annotations

import logging
from datetime import datetime

from src.modules.dispute.constants import (
    AGGREGATE_TYPE,
    DELIVERY_ACTIVITY_LOG,
    DELIVERY_NOTIFICATION,
    DELIVERY_STRIKE,
)
from src.modules.dispute.domain import DisputeCase
from src.modules.events.outbox_service import OutboxService

logger = logging.getLogger(__name__)


def build_event(
    event_type: str, case: DisputeCase, actor: str, occurred_at: datetime, data: dict | None = None
) -> dict:
    """The event document shared by the activity log and notifications."""
    return {
        "type": event_type,
        "dispute_id": str(case.id),
        "transaction": {"kind": case.transaction.kind.value, "id": case.transaction.id},
        "actor": actor,
        "stage": case.stage.value,
        "status": case.status.value,
        "version": case.version,
        "occurred_at": occurred_at.isoformat(),
        "data": data or {},
    }


class DisputeEventPublisher:
    """Writes the activity, notification and strike rows for a dispute event.

    Each delivery is its own outbox row so that a failing notification is
    retried without re-logging the activity.
    """

    def __init__(self, outbox: OutboxService) -> None:
        self.outbox = outbox

    async def publish(
        self,
        event_type: str,
        case: DisputeCase,
        actor: str,
        occurred_at: datetime,
        data: dict | None = None,
        strike_reason: str | None = None,
    ) -> dict:
        event = build_event(event_type, case, actor, occurred_at, data)
        aggregate_id = str(case.id)

        await self.outbox.publish_event(
            event_type=DELIVERY_ACTIVITY_LOG,
            aggregate_type=AGGREGATE_TYPE,
            aggregate_id=aggregate_id,
            payload={"event": event},
        )
        for user_id in (case.filed_by, case.counterparty_id):
            await self.outbox.publish_event(
                event_type=DELIVERY_NOTIFICATION,
                aggregate_type=AGGREGATE_TYPE,
                aggregate_id=aggregate_id,
                payload={"user_id": user_id, "event": event},
            )
        if strike_reason is not None:
            # The counterparty is the accused party
            await self.outbox.publish_event(
                event_type=DELIVERY_STRIKE,
                aggregate_type=AGGREGATE_TYPE,
                aggregate_id=aggregate_id,
                payload={
                    "user_id": case.counterparty_id,
                    "dispute_id": aggregate_id,
                    "reason": strike_reason,
                },
            )
            logger.info("Queued strike against %s for dispute %s", case.counterparty_id, case.id)

        logger.debug("Queued %s deliveries for dispute %s", event_type, case.id)
        return event
