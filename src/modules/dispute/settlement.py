"""Two-phase settlement: claim the dispute, release escrow, then finalize.

1. claim    persist a ``SettlementIntent`` under a version check and commit.
            At most one terminal action can hold the claim.
2. release  ``EscrowLedger.release`` keyed by the dispute id, so re-issuing
            it after a timeout or a crash never moves funds twice.
3. finalize persist the resolution under a version check, record the
            transition, queue the events and commit.

If the ledger is unreachable the claim stays and the error propagates; the
same action retried later resumes at step 2. A definitive refusal
(insufficient escrow) clears the claim.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.exceptions import InsufficientEscrowException, LedgerException, StateConflictException
from src.models.enums import SettlementAction
from src.modules.dispute.constants import (
    EVENT_DISPUTE_ACCEPTED,
    EVENT_DISPUTE_RESOLVED,
    EVENT_OFFER_ACCEPTED,
)
from src.modules.dispute.domain import Clock, DisputeCase, SettlementIntent, utcnow
from src.modules.dispute.events import DisputeEventPublisher
from src.modules.dispute.providers.base import EscrowLedger
from src.modules.dispute.repository import DisputeRepository

logger = logging.getLogger(__name__)

_FINAL_EVENT = {
    SettlementAction.ACCEPT_OFFER: EVENT_OFFER_ACCEPTED,
    SettlementAction.ACCEPT_DISPUTE: EVENT_DISPUTE_ACCEPTED,
    SettlementAction.ADMIN_RESOLUTION: EVENT_DISPUTE_RESOLVED,
}


class SettlementCoordinator:
    def __init__(
        self,
        db: AsyncSession,
        repository: DisputeRepository,
        ledger: EscrowLedger,
        publisher: DisputeEventPublisher,
        clock: Clock = utcnow,
    ) -> None:
        self.db = db
        self.repository = repository
        self.ledger = ledger
        self.publisher = publisher
        self.clock = clock

    @staticmethod
    def in_flight(case: DisputeCase, candidate: SettlementIntent) -> bool:
        """True if *case* already holds a claim for *candidate*'s disposition.

        Raises StateConflictException if it holds a claim for a different one.
        """
        if case.settlement is None:
            return False
        if case.settlement.matches(candidate):
            return True
        raise StateConflictException(
            f"Dispute {case.id} is already settling as "
            f"'{case.settlement.resolution.outcome.value}'"
        )

    async def settle(self, case: DisputeCase, intent: SettlementIntent) -> DisputeCase:
        """Run all three phases for a new claim, or resume a matching one."""
        if self.in_flight(case, intent):
            logger.info("Resuming pending settlement for dispute %s", case.id)
            return await self.resume(case)

        claimed = case.claim_settlement(intent)
        await self.repository.save(claimed, expected_version=case.version)
        await self.db.commit()
        logger.info(
            "Claimed settlement for dispute %s (%s, v%d)",
            case.id, intent.resolution.outcome.value, claimed.version,
        )
        return await self.resume(claimed)

    async def resume(self, case: DisputeCase) -> DisputeCase:
        """Phases 2 and 3 for a dispute that already holds a claim."""
        intent = case.settlement
        if intent is None:
            raise StateConflictException(f"Dispute {case.id} has no settlement in progress")

        try:
            ack = await self.ledger.release(
                case.transaction, intent.allocations, idempotency_key=str(case.id)
            )
        except InsufficientEscrowException:
            released = case.release_settlement()
            await self.repository.save(released, expected_version=case.version)
            await self.db.commit()
            logger.warning("Ledger refused release for dispute %s; claim cleared", case.id)
            raise
        except LedgerException:
            logger.warning(
                "Ledger unavailable while settling dispute %s; claim kept for retry", case.id
            )
            raise

        return await self._finalize(case, intent, ack.reference)

    async def _finalize(self, case: DisputeCase, intent: SettlementIntent, reference: str) -> DisputeCase:
        resolution = intent.resolution
        resolved = case.finalize_settlement()
        await self.repository.save(resolved, expected_version=case.version)
        await self.repository.record_transition(
            resolved,
            from_stage=case.stage,
            actor=resolution.resolved_by,
            reason=resolution.reason,
            at=resolution.resolved_at,
        )
        await self.publisher.publish(
            _FINAL_EVENT[intent.action],
            resolved,
            actor=resolution.resolved_by,
            occurred_at=self.clock(),
            data={
                "outcome": resolution.outcome.value,
                "reason": resolution.reason,
                "partial_refund_amount": (
                    str(resolution.partial_refund_amount)
                    if resolution.partial_refund_amount is not None
                    else None
                ),
                "issue_strike": resolution.issue_strike,
                "allocations": [
                    {"party": a.party, "amount": str(a.amount)} for a in intent.allocations
                ],
                "ledger_reference": reference,
            },
            strike_reason=resolution.reason if resolution.issue_strike else None,
        )
        await self.db.commit()
        logger.info(
            "Dispute %s resolved as %s (v%d)", case.id, resolution.outcome.value, resolved.version
        )
        return resolved
