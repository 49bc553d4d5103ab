"""NegotiationWindow — the 48h party-to-party phase before admin review.

Deadlines are enforced lazily: every entry point loads the dispute through
:meth:`NegotiationWindow.load_current`, which persists the escalation to
admin review once the deadline has passed. No background timer is needed.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from src.exceptions import ForbiddenException, InsufficientEscrowException, StateConflictException
from src.models.enums import OfferDecision, ResolutionOutcome, SettlementAction
from src.modules.dispute.constants import (
    EVENT_DISPUTE_ESCALATED,
    EVENT_OFFER_PROPOSED,
    EVENT_OFFER_REJECTED,
    MUTUAL_NEGOTIATION_REASON,
    SYSTEM_ACTOR,
)
from src.modules.dispute.domain import (
    Clock,
    DisputeCase,
    Resolution,
    SettlementIntent,
    split_balance,
    utcnow,
)
from src.modules.dispute.events import DisputeEventPublisher
from src.modules.dispute.providers.base import EscrowLedger
from src.modules.dispute.repository import DisputeRepository
from src.modules.dispute.settlement import SettlementCoordinator

logger = logging.getLogger(__name__)


class NegotiationWindow:
    def __init__(
        self,
        db: AsyncSession,
        repository: DisputeRepository,
        ledger: EscrowLedger,
        publisher: DisputeEventPublisher,
        coordinator: SettlementCoordinator,
        clock: Clock = utcnow,
    ) -> None:
        self.db = db
        self.repository = repository
        self.ledger = ledger
        self.publisher = publisher
        self.coordinator = coordinator
        self.clock = clock

    # ------------------------------------------------------------------
    # Lazy deadline
    # ------------------------------------------------------------------

    async def advance(self, case: DisputeCase) -> DisputeCase:
        """Persist the escalation of an expired negotiation; otherwise a no-op."""
        now = self.clock()
        escalated = case.advance_if_expired(now)
        if escalated is case:
            return case

        try:
            await self.repository.save(escalated, expected_version=case.version)
        except StateConflictException:
            # Someone else advanced or acted on it first
            await self.db.rollback()
            return await self.repository.get(case.id)

        # Admin review has no offer slot; keep the last one in the audit trail
        last_offer = case.offer
        reason = "Negotiation deadline passed"
        if last_offer is not None:
            reason = f"{reason}; last offer {last_offer.describe()}"

        await self.repository.record_transition(
            escalated,
            from_stage=case.stage,
            actor=SYSTEM_ACTOR,
            reason=reason,
            at=now,
        )
        await self.publisher.publish(
            EVENT_DISPUTE_ESCALATED,
            escalated,
            actor=SYSTEM_ACTOR,
            occurred_at=now,
            data={
                "negotiation_deadline": case.negotiation_deadline.isoformat(),
                "last_offer": last_offer.to_dict() if last_offer else None,
            },
        )
        await self.db.commit()
        logger.info("Dispute %s escalated to admin review after deadline", case.id)
        return escalated

    async def load_current(self, dispute_id: uuid.UUID) -> DisputeCase:
        return await self.advance(await self.repository.get(dispute_id))

    # ------------------------------------------------------------------
    # Offers
    # ------------------------------------------------------------------

    async def _require_within_balance(self, case: DisputeCase, amount: Decimal) -> Decimal:
        balance = await self.ledger.get_balance(case.transaction)
        if amount > balance:
            raise InsufficientEscrowException(
                f"Refund amount {amount} exceeds the escrow balance {balance}",
                details=[{"field": "amount", "message": f"must not exceed {balance}"}],
            )
        return balance

    async def propose_partial_refund(
        self, dispute_id: uuid.UUID, amount: Decimal, proposed_by: str
    ) -> DisputeCase:
        case = await self.load_current(dispute_id)
        now = self.clock()
        updated = case.propose_offer(amount, proposed_by, now)
        await self._require_within_balance(case, amount)

        await self.repository.save(updated, expected_version=case.version)
        await self.publisher.publish(
            EVENT_OFFER_PROPOSED,
            updated,
            actor=proposed_by,
            occurred_at=now,
            data={"amount": str(amount)},
        )
        logger.info("Partial refund of %s proposed on dispute %s by %s", amount, case.id, proposed_by)
        return updated

    async def respond_to_offer(
        self, dispute_id: uuid.UUID, decision: OfferDecision, responded_by: str
    ) -> DisputeCase:
        case = await self.load_current(dispute_id)
        now = self.clock()

        if decision == OfferDecision.REJECT:
            updated = case.reject_offer(responded_by, now)
            await self.repository.save(updated, expected_version=case.version)
            await self.publisher.publish(
                EVENT_OFFER_REJECTED,
                updated,
                actor=responded_by,
                occurred_at=now,
                data={"amount": str(case.offer.amount)},
            )
            logger.info("Offer on dispute %s rejected by %s", case.id, responded_by)
            return updated

        pending = case.settlement
        if pending is not None and pending.action == SettlementAction.ACCEPT_OFFER:
            offer = case.offer
            if not case.is_party(responded_by) or responded_by == offer.proposed_by:
                raise ForbiddenException("Only the other party can accept this offer")
            logger.info("Resuming accepted offer on dispute %s", case.id)
            return await self.coordinator.resume(case)

        offer = case.pending_offer_for(responded_by)
        balance = await self._require_within_balance(case, offer.amount)
        intent = SettlementIntent(
            action=SettlementAction.ACCEPT_OFFER,
            resolution=Resolution(
                outcome=ResolutionOutcome.PARTIAL_REFUND,
                reason=MUTUAL_NEGOTIATION_REASON,
                resolved_by=responded_by,
                resolved_at=now,
                partial_refund_amount=offer.amount,
                issue_strike=False,
            ),
            allocations=split_balance(balance, offer.amount, case.filed_by, case.counterparty_id),
            requested_at=now,
        )
        return await self.coordinator.settle(case, intent)

    async def accept_dispute(self, dispute_id: uuid.UUID, accepted_by: str) -> DisputeCase:
        """The accused party concedes: the whole escrow goes back to the filer."""
        case = await self.load_current(dispute_id)
        case.require_acceptor(accepted_by)

        pending = case.settlement
        if pending is not None and pending.action == SettlementAction.ACCEPT_DISPUTE:
            logger.info("Resuming accepted dispute %s", case.id)
            return await self.coordinator.resume(case)

        balance = await self.ledger.get_balance(case.transaction)
        intent = case.accept_dispute(accepted_by, balance, self.clock())
        logger.info("Dispute %s accepted by %s; refunding %s", case.id, accepted_by, balance)
        return await self.coordinator.settle(case, intent)
