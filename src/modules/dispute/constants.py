"""Dispute categories, qualifying transaction statuses, evidence limits and event types."""

from __future__ import annotations

from src.models.enums import DisputeCategory, DisputeStage, TransactionKind

# Categories valid for each transaction phase
CATEGORIES_BY_KIND: dict[TransactionKind, frozenset[DisputeCategory]] = {
    TransactionKind.CUSTOMIZATION_REQUEST: frozenset({
        DisputeCategory.DESIGN_GHOSTING,
        DisputeCategory.DESIGN_QUALITY_MISMATCH,
        DisputeCategory.DESIGN_COPYRIGHT_INFRINGEMENT,
    }),
    TransactionKind.ORDER: frozenset({
        DisputeCategory.SHIPPING_NOT_RECEIVED,
        DisputeCategory.SHIPPING_DAMAGED,
        DisputeCategory.SHIPPING_WRONG_ITEM,
        DisputeCategory.SHIPPING_PRINT_QUALITY,
        DisputeCategory.SHIPPING_LATE_DELIVERY,
        DisputeCategory.SHIPPING_INCOMPLETE_ORDER,
    }),
}

# Transaction statuses from which a dispute may be filed
QUALIFYING_STATUSES: dict[TransactionKind, frozenset[str]] = {
    TransactionKind.ORDER: frozenset({"shipped", "delivered"}),
    TransactionKind.CUSTOMIZATION_REQUEST: frozenset({"in_progress", "awaiting_customer_approval"}),
}

# Stage order; stages only ever move forward
STAGE_ORDER: dict[DisputeStage, int] = {
    DisputeStage.NEGOTIATION: 0,
    DisputeStage.ADMIN_REVIEW: 1,
    DisputeStage.RESOLVED: 2,
}

# Evidence formats
IMAGE_CONTENT_TYPES: frozenset[str] = frozenset({"image/jpeg", "image/jpg", "image/png", "image/webp"})
VIDEO_CONTENT_TYPE_PREFIX = "video/"

# Fixed resolution reason for an accepted offer
MUTUAL_NEGOTIATION_REASON = "mutual negotiation"

# Fixed resolution reason when the accused party concedes
DISPUTE_ACCEPTED_REASON = "accepted by the accused party"

# Actor recorded for lazy deadline escalation
SYSTEM_ACTOR = "system"

# Event type strings for the outbox
EVENT_DISPUTE_FILED = "dispute.filed"
EVENT_OFFER_PROPOSED = "dispute.partial_refund_offered"
EVENT_OFFER_REJECTED = "dispute.partial_refund_rejected"
EVENT_OFFER_ACCEPTED = "dispute.partial_refund_accepted"
EVENT_DISPUTE_ACCEPTED = "dispute.accepted"
EVENT_DISPUTE_ESCALATED = "dispute.escalated"
EVENT_DISPUTE_WITHDRAWN = "dispute.withdrawn"
EVENT_DISPUTE_RESOLVED = "dispute.resolved"

# Delivery event types (one outbox row per concern)
DELIVERY_ACTIVITY_LOG = "activity.log"
DELIVERY_NOTIFICATION = "notification.send"
DELIVERY_STRIKE = "reputation.strike"

AGGREGATE_TYPE = "dispute"
