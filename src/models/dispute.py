"""Dispute model — one row per dispute filed against an order or customization request."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, Numeric, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database.base import Base, JSONDocument, TimestampMixin, UTCDateTime, UUIDPrimaryKeyMixin
from src.models.enums import (
    DisputeCategory,
    DisputeStage,
    DisputeStatus,
    OfferStatus,
    ResolutionOutcome,
)

if TYPE_CHECKING:
    from src.models.dispute_transition import DisputeTransition

_OPEN_ONLY = text("status = 'OPEN'")


class Dispute(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "disputes"

    # Transaction reference (exactly one is set)
    order_id: Mapped[str | None] = mapped_column(String(255))
    customization_request_id: Mapped[str | None] = mapped_column(String(255))

    # Parties
    filed_by: Mapped[str] = mapped_column(String(255), nullable=False)
    counterparty_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Details
    category: Mapped[DisputeCategory] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    evidence_images: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    evidence_video: Mapped[dict | None] = mapped_column(JSONDocument)

    # Lifecycle
    stage: Mapped[DisputeStage] = mapped_column(nullable=False)
    status: Mapped[DisputeStatus] = mapped_column(nullable=False)
    negotiation_deadline: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    escalated_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Partial refund offer (negotiation stage only)
    offer_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2))
    offer_proposed_by: Mapped[str | None] = mapped_column(String(255))
    offer_status: Mapped[OfferStatus | None] = mapped_column()
    offer_proposed_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    offer_responded_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    # Claimed-but-unfinished ledger disposition
    settlement_intent: Mapped[dict | None] = mapped_column(JSONDocument)
    settlement_requested_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    # Resolution (resolved stage only)
    resolution_outcome: Mapped[ResolutionOutcome | None] = mapped_column()
    resolution_reason: Mapped[str | None] = mapped_column(Text)
    partial_refund_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2))
    issue_strike: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    admin_notes: Mapped[str | None] = mapped_column(Text)
    resolved_by: Mapped[str | None] = mapped_column(String(255))
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    # Relationships
    transitions: Mapped[list[DisputeTransition]] = relationship(
        "DisputeTransition", back_populates="dispute", lazy="noload", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "(order_id IS NULL) <> (customization_request_id IS NULL)",
            name="ck_disputes_single_transaction",
        ),
        Index("ix_disputes_filed_by", "filed_by"),
        Index("ix_disputes_counterparty_id", "counterparty_id"),
        Index("ix_disputes_stage_status", "stage", "status"),
        Index(
            "uq_disputes_open_order",
            "order_id",
            unique=True,
            postgresql_where=_OPEN_ONLY,
            sqlite_where=_OPEN_ONLY,
        ),
        Index(
            "uq_disputes_open_customization_request",
            "customization_request_id",
            unique=True,
            postgresql_where=_OPEN_ONLY,
            sqlite_where=_OPEN_ONLY,
        ),
        Index(
            "ix_disputes_pending_settlement",
            "settlement_requested_at",
            postgresql_where=text("settlement_intent IS NOT NULL"),
        ),
    )

    def __repr__(self) -> str:
        return f"<Dispute id={self.id} stage={self.stage} status={self.status} v{self.version}>"
