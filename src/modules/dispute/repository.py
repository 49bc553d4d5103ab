"""Dispute persistence — row/aggregate mapping and versioned writes."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy import case as sql_case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.exceptions import EligibilityException, NotFoundException, StateConflictException
from src.models.dispute import Dispute
from src.models.dispute_transition import DisputeTransition
from src.models.enums import (
    DisputeCategory,
    DisputeStage,
    DisputeStatus,
    ResolutionOutcome,
)
from src.modules.dispute.domain import (
    AdminReview,
    DisputeCase,
    EvidenceFile,
    Negotiation,
    PartialRefundOffer,
    Resolution,
    Resolved,
    SettlementIntent,
    TransactionRef,
)

logger = logging.getLogger(__name__)


@dataclass
class DisputeFilters:
    filed_by: str | None = None
    counterparty_id: str | None = None
    # Either side of the dispute
    party: str | None = None
    stage: DisputeStage | None = None
    status: DisputeStatus | None = None
    category: DisputeCategory | None = None
    order_id: str | None = None
    customization_request_id: str | None = None
    outcome: ResolutionOutcome | None = None


# ---------------------------------------------------------------------------
# Row <-> aggregate mapping
# ---------------------------------------------------------------------------


def to_case(row: Dispute) -> DisputeCase:
    settlement = (
        SettlementIntent.from_dict(row.settlement_intent) if row.settlement_intent else None
    )
    if row.stage == DisputeStage.NEGOTIATION:
        offer = None
        if row.offer_amount is not None:
            offer = PartialRefundOffer(
                amount=row.offer_amount,
                proposed_by=row.offer_proposed_by,
                proposed_at=row.offer_proposed_at,
                status=row.offer_status,
                responded_at=row.offer_responded_at,
            )
        state = Negotiation(offer=offer, settlement=settlement)
    elif row.stage == DisputeStage.ADMIN_REVIEW:
        state = AdminReview(escalated_at=row.escalated_at, settlement=settlement)
    else:
        state = Resolved(
            resolution=Resolution(
                outcome=row.resolution_outcome,
                reason=row.resolution_reason,
                resolved_by=row.resolved_by,
                resolved_at=row.resolved_at,
                partial_refund_amount=row.partial_refund_amount,
                issue_strike=row.issue_strike,
                admin_notes=row.admin_notes,
            ),
            escalated_at=row.escalated_at,
        )

    return DisputeCase(
        id=row.id,
        transaction=TransactionRef.from_ids(row.order_id, row.customization_request_id),
        filed_by=row.filed_by,
        counterparty_id=row.counterparty_id,
        category=row.category,
        description=row.description,
        evidence_images=tuple(EvidenceFile.from_dict(d) for d in row.evidence_images or []),
        evidence_video=EvidenceFile.from_dict(row.evidence_video) if row.evidence_video else None,
        negotiation_deadline=row.negotiation_deadline,
        created_at=row.created_at,
        state=state,
        version=row.version,
    )


def _state_values(case: DisputeCase) -> dict:
    """Columns that change across transitions."""
    offer = case.offer
    resolution = case.resolution
    settlement = case.settlement
    return {
        "stage": case.stage,
        "status": case.status,
        "escalated_at": case.escalated_at,
        "version": case.version,
        "offer_amount": offer.amount if offer else None,
        "offer_proposed_by": offer.proposed_by if offer else None,
        "offer_status": offer.status if offer else None,
        "offer_proposed_at": offer.proposed_at if offer else None,
        "offer_responded_at": offer.responded_at if offer else None,
        "settlement_intent": settlement.to_dict() if settlement else None,
        "settlement_requested_at": settlement.requested_at if settlement else None,
        "resolution_outcome": resolution.outcome if resolution else None,
        "resolution_reason": resolution.reason if resolution else None,
        "partial_refund_amount": resolution.partial_refund_amount if resolution else None,
        "issue_strike": resolution.issue_strike if resolution else False,
        "admin_notes": resolution.admin_notes if resolution else None,
        "resolved_by": resolution.resolved_by if resolution else None,
        "resolved_at": resolution.resolved_at if resolution else None,
    }


def _expired_negotiation(now: datetime):
    """SQL predicate: stored as negotiation but effectively in admin review."""
    return and_(
        Dispute.stage == DisputeStage.NEGOTIATION,
        Dispute.negotiation_deadline < now,
        Dispute.settlement_intent.is_(None),
    )


class DisputeRepository:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def add(self, case: DisputeCase) -> None:
        """Insert a newly filed dispute.

        A concurrent filing that got there first trips the one-open-dispute
        unique index; that surfaces as an eligibility failure.
        """
        row = Dispute(
            id=case.id,
            order_id=case.transaction.order_id,
            customization_request_id=case.transaction.customization_request_id,
            filed_by=case.filed_by,
            counterparty_id=case.counterparty_id,
            category=case.category,
            description=case.description,
            evidence_images=[e.to_dict() for e in case.evidence_images],
            evidence_video=case.evidence_video.to_dict() if case.evidence_video else None,
            negotiation_deadline=case.negotiation_deadline,
            created_at=case.created_at,
            updated_at=case.created_at,
            **_state_values(case),
        )
        self.db.add(row)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            await self.db.rollback()
            logger.info("Duplicate open dispute rejected for %s", case.transaction)
            raise EligibilityException(
                f"An open dispute already exists for {case.transaction}"
            ) from exc

    async def save(self, case: DisputeCase, expected_version: int) -> None:
        """Persist *case* only if the stored version is still *expected_version*."""
        result = await self.db.execute(
            update(Dispute)
            .where(Dispute.id == case.id, Dispute.version == expected_version)
            .values(**_state_values(case), updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StateConflictException(
                f"Dispute {case.id} was modified concurrently (expected version {expected_version})"
            )

    async def record_transition(
        self,
        case: DisputeCase,
        from_stage: DisputeStage | None,
        actor: str,
        reason: str | None,
        at: datetime,
    ) -> DisputeTransition:
        transition = DisputeTransition(
            dispute_id=case.id,
            from_stage=from_stage,
            to_stage=case.stage,
            transitioned_by=actor,
            reason=reason,
            version=case.version,
            created_at=at,
        )
        self.db.add(transition)
        await self.db.flush()
        return transition

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _fetch(self, dispute_id: uuid.UUID) -> Dispute | None:
        result = await self.db.execute(
            select(Dispute)
            .where(Dispute.id == dispute_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get(self, dispute_id: uuid.UUID) -> DisputeCase:
        row = await self._fetch(dispute_id)
        if row is None:
            raise NotFoundException(f"Dispute {dispute_id} not found")
        return to_case(row)

    async def has_open_dispute(self, transaction: TransactionRef) -> bool:
        column = (
            Dispute.order_id if transaction.order_id is not None else Dispute.customization_request_id
        )
        result = await self.db.execute(
            select(Dispute.id)
            .where(column == transaction.id, Dispute.status == DisputeStatus.OPEN)
            .limit(1)
        )
        return result.first() is not None

    def _apply_filters(self, query, filters: DisputeFilters, now: datetime):
        if filters.filed_by is not None:
            query = query.where(Dispute.filed_by == filters.filed_by)
        if filters.counterparty_id is not None:
            query = query.where(Dispute.counterparty_id == filters.counterparty_id)
        if filters.party is not None:
            query = query.where(
                or_(Dispute.filed_by == filters.party, Dispute.counterparty_id == filters.party)
            )
        if filters.status is not None:
            query = query.where(Dispute.status == filters.status)
        if filters.category is not None:
            query = query.where(Dispute.category == filters.category)
        if filters.order_id is not None:
            query = query.where(Dispute.order_id == filters.order_id)
        if filters.customization_request_id is not None:
            query = query.where(Dispute.customization_request_id == filters.customization_request_id)
        if filters.outcome is not None:
            query = query.where(Dispute.resolution_outcome == filters.outcome)

        if filters.stage == DisputeStage.ADMIN_REVIEW:
            query = query.where(
                or_(Dispute.stage == DisputeStage.ADMIN_REVIEW, _expired_negotiation(now))
            )
        elif filters.stage == DisputeStage.NEGOTIATION:
            query = query.where(
                Dispute.stage == DisputeStage.NEGOTIATION,
                or_(
                    Dispute.negotiation_deadline >= now,
                    Dispute.settlement_intent.is_not(None),
                ),
            )
        elif filters.stage == DisputeStage.RESOLVED:
            query = query.where(Dispute.stage == DisputeStage.RESOLVED)
        return query

    async def find(
        self,
        filters: DisputeFilters,
        now: datetime,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[DisputeCase], int]:
        """Page through disputes; the admin-review queue comes oldest first."""
        query = self._apply_filters(select(Dispute), filters, now)
        count_query = self._apply_filters(select(func.count()).select_from(Dispute), filters, now)

        total = (await self.db.execute(count_query)).scalar() or 0

        if filters.stage == DisputeStage.ADMIN_REVIEW:
            order = (
                func.coalesce(Dispute.escalated_at, Dispute.negotiation_deadline).asc(),
                Dispute.created_at.asc(),
            )
        else:
            order = (Dispute.created_at.desc(),)
        result = await self.db.execute(
            query.order_by(*order)
            .offset(offset)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return [to_case(row) for row in result.scalars().all()], total

    async def list_transitions(self, dispute_id: uuid.UUID) -> list[DisputeTransition]:
        result = await self.db.execute(
            select(DisputeTransition)
            .where(DisputeTransition.dispute_id == dispute_id)
            .order_by(DisputeTransition.version.asc())
        )
        return list(result.scalars().all())

    async def find_pending_settlements(
        self, older_than: datetime, limit: int = 50
    ) -> list[uuid.UUID]:
        """Ids of disputes whose settlement claim has been waiting since before *older_than*."""
        result = await self.db.execute(
            select(Dispute.id)
            .where(
                Dispute.settlement_intent.is_not(None),
                Dispute.settlement_requested_at <= older_than,
            )
            .order_by(Dispute.settlement_requested_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def stats(self, now: datetime) -> dict:
        """Counts by status, effective stage, category and outcome."""
        by_status = dict(
            (await self.db.execute(
                select(Dispute.status, func.count()).group_by(Dispute.status)
            )).all()
        )

        expired = sql_case((_expired_negotiation(now), 1), else_=0).label("expired")
        by_stage: dict[str, int] = {stage.value: 0 for stage in DisputeStage}
        stage_rows = await self.db.execute(
            select(Dispute.stage, expired, func.count()).group_by(Dispute.stage, expired)
        )
        for stage, is_expired, count in stage_rows.all():
            effective = DisputeStage.ADMIN_REVIEW if is_expired else stage
            by_stage[effective.value] += count

        by_category = {
            category.value: count
            for category, count in (await self.db.execute(
                select(Dispute.category, func.count()).group_by(Dispute.category)
            )).all()
        }
        by_outcome = {
            outcome.value: count
            for outcome, count in (await self.db.execute(
                select(Dispute.resolution_outcome, func.count())
                .where(Dispute.resolution_outcome.is_not(None))
                .group_by(Dispute.resolution_outcome)
            )).all()
        }

        durations = (await self.db.execute(
            select(Dispute.created_at, Dispute.resolved_at).where(
                Dispute.stage == DisputeStage.RESOLVED, Dispute.resolved_at.is_not(None)
            )
        )).all()
        average_hours = None
        if durations:
            total_seconds = sum((resolved - created).total_seconds() for created, resolved in durations)
            average_hours = round(total_seconds / len(durations) / 3600, 2)

        open_count = by_status.get(DisputeStatus.OPEN, 0)
        closed_count = by_status.get(DisputeStatus.CLOSED, 0)
        return {
            "total": open_count + closed_count,
            "open": open_count,
            "closed": closed_count,
            "by_stage": by_stage,
            "by_category": by_category,
            "by_outcome": by_outcome,
            "average_resolution_hours": average_hours,
        }
