# Import all models so SQLAlchemy metadata is populated for Alembic autogenerate
from src.models.dispute import Dispute
from src.models.dispute_transition import DisputeTransition
from src.models.enums import (
    DisputeCategory,
    DisputeStage,
    DisputeStatus,
    EventStatus,
    OfferDecision,
    OfferStatus,
    ResolutionOutcome,
    SettlementAction,
    TransactionKind,
)
from src.models.event_outbox import EventOutbox
from src.models.processed_event import ProcessedEvent

__all__ = [
    "Dispute",
    "DisputeCategory",
    "DisputeStage",
    "DisputeStatus",
    "DisputeTransition",
    "EventOutbox",
    "EventStatus",
    "OfferDecision",
    "OfferStatus",
    "ProcessedEvent",
    "ResolutionOutcome",
    "SettlementAction",
    "TransactionKind",
]
