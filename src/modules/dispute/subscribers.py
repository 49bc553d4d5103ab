"""Outbox handlers that deliver dispute events to the audit, notification and reputation services."""

from __future__ import annotations

import logging

from src.modules.dispute.constants import (
    DELIVERY_ACTIVITY_LOG,
    DELIVERY_NOTIFICATION,
    DELIVERY_STRIKE,
)
from src.modules.dispute.providers.factory import (
    get_activity_recorder,
    get_notification_service,
    get_reputation_service,
)
from src.modules.events.handlers import EventHandlerRegistry

logger = logging.getLogger(__name__)


def deliver_activity(payload: dict) -> None:
    get_activity_recorder().log(payload["event"])


def deliver_notification(payload: dict) -> None:
    get_notification_service().notify(payload["user_id"], payload["event"])


def deliver_strike(payload: dict) -> None:
    get_reputation_service().issue_strike(
        payload["user_id"], payload["dispute_id"], payload["reason"]
    )


def register_dispute_handlers() -> None:
    """Register the delivery handlers; safe to call more than once."""
    EventHandlerRegistry.register(DELIVERY_ACTIVITY_LOG, deliver_activity)
    EventHandlerRegistry.register(DELIVERY_NOTIFICATION, deliver_notification)
    EventHandlerRegistry.register(DELIVERY_STRIKE, deliver_strike)
