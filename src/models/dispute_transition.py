"""DisputeTransition model — stage transition audit log for disputes."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Index, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database.base import Base, UTCDateTime, UUIDPrimaryKeyMixin
from src.models.enums import DisputeStage

if TYPE_CHECKING:
    from src.models.dispute import Dispute


class DisputeTransition(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "dispute_transitions"

    dispute_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("disputes.id", ondelete="CASCADE"),
        nullable=False,
    )
    from_stage: Mapped[DisputeStage | None] = mapped_column()
    to_stage: Mapped[DisputeStage] = mapped_column(nullable=False)
    # Actor id, or "system" for lazy deadline escalation
    transitioned_by: Mapped[str] = mapped_column(String(255), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    # Dispute version produced by this transition
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(UTC), server_default=func.now()
    )

    dispute: Mapped[Dispute] = relationship(
        "Dispute", back_populates="transitions", lazy="noload"
    )

    __table_args__ = (
        Index("ix_dispute_transitions_dispute_id", "dispute_id"),
    )
