"""AdminResolutionEngine — terminal admin decisions and the escrow split they imply."""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from src.exceptions import (
    ForbiddenException,
    InsufficientEscrowException,
    StateConflictException,
    ValidationException,
)
from src.models.enums import DisputeStage, ResolutionOutcome, SettlementAction
from src.modules.dispute.constants import EVENT_DISPUTE_RESOLVED
from src.modules.dispute.domain import (
    Allocation,
    Clock,
    DisputeCase,
    Resolution,
    SettlementIntent,
    split_balance,
    utcnow,
)
from src.modules.dispute.events import DisputeEventPublisher
from src.modules.dispute.negotiation import NegotiationWindow
from src.modules.dispute.providers.base import EscrowLedger
from src.modules.dispute.repository import DisputeRepository
from src.modules.dispute.settlement import SettlementCoordinator

logger = logging.getLogger(__name__)

ADMIN_OUTCOMES = frozenset({
    ResolutionOutcome.REFUNDED,
    ResolutionOutcome.PARTIAL_REFUND,
    ResolutionOutcome.RELEASED,
    ResolutionOutcome.DISMISSED,
})


def compute_allocations(
    outcome: ResolutionOutcome,
    balance: Decimal,
    filer: str,
    counterparty: str,
    partial_refund_amount: Decimal | None = None,
) -> tuple[Allocation, ...]:
    """Escrow split for a money-moving outcome; always sums to *balance*."""
    if outcome == ResolutionOutcome.REFUNDED:
        return split_balance(balance, balance, filer, counterparty)
    if outcome == ResolutionOutcome.RELEASED:
        return split_balance(balance, Decimal("0"), filer, counterparty)
    if outcome == ResolutionOutcome.PARTIAL_REFUND:
        if partial_refund_amount is not None and partial_refund_amount > balance:
            raise InsufficientEscrowException(
                f"Refund amount {partial_refund_amount} exceeds the escrow balance {balance}",
                details=[{"field": "partial_refund_amount", "message": f"must not exceed {balance}"}],
            )
        return split_balance(balance, partial_refund_amount, filer, counterparty)
    raise ValidationException(f"Outcome '{outcome.value}' does not move escrow")


class AdminResolutionEngine:
    def __init__(
        self,
        db: AsyncSession,
        repository: DisputeRepository,
        ledger: EscrowLedger,
        publisher: DisputeEventPublisher,
        coordinator: SettlementCoordinator,
        window: NegotiationWindow,
        clock: Clock = utcnow,
    ) -> None:
        self.db = db
        self.repository = repository
        self.ledger = ledger
        self.publisher = publisher
        self.coordinator = coordinator
        self.window = window
        self.clock = clock

    @staticmethod
    def _validate(
        outcome: ResolutionOutcome, reason: str, partial_refund_amount: Decimal | None
    ) -> None:
        details = []
        if outcome not in ADMIN_OUTCOMES:
            details.append({"field": "outcome", "message": f"'{outcome.value}' is not an admin outcome"})
        if not (reason or "").strip():
            details.append({"field": "reason", "message": "a reason is required"})
        if outcome == ResolutionOutcome.PARTIAL_REFUND and (
            partial_refund_amount is None or partial_refund_amount <= 0
        ):
            details.append({"field": "partial_refund_amount", "message": "must be > 0 for a partial refund"})
        if details:
            raise ValidationException("Invalid resolution", details=details)

    async def resolve(
        self,
        dispute_id: uuid.UUID,
        *,
        outcome: ResolutionOutcome,
        reason: str,
        resolved_by: str,
        is_admin: bool,
        partial_refund_amount: Decimal | None = None,
        issue_strike: bool = False,
        admin_notes: str | None = None,
    ) -> DisputeCase:
        if not is_admin:
            raise ForbiddenException("Only admins can resolve disputes")

        case = await self.window.load_current(dispute_id)
        if case.stage != DisputeStage.ADMIN_REVIEW:
            raise StateConflictException(
                f"Dispute {case.id} is in '{case.stage.value}'; only disputes in admin review can be resolved"
            )

        self._validate(outcome, reason, partial_refund_amount)
        now = self.clock()
        resolution = Resolution(
            outcome=outcome,
            reason=reason.strip(),
            resolved_by=resolved_by,
            resolved_at=now,
            partial_refund_amount=(
                partial_refund_amount if outcome == ResolutionOutcome.PARTIAL_REFUND else None
            ),
            issue_strike=issue_strike,
            admin_notes=admin_notes,
        )

        if outcome == ResolutionOutcome.DISMISSED:
            return await self._dismiss(case, resolution)

        candidate = SettlementIntent(
            action=SettlementAction.ADMIN_RESOLUTION,
            resolution=resolution,
            allocations=(),
            requested_at=now,
        )
        if self.coordinator.in_flight(case, candidate):
            logger.info("Resuming pending admin resolution on dispute %s", case.id)
            return await self.coordinator.resume(case)

        balance = await self.ledger.get_balance(case.transaction)
        allocations = compute_allocations(
            outcome, balance, case.filed_by, case.counterparty_id, resolution.partial_refund_amount
        )
        intent = SettlementIntent(
            action=SettlementAction.ADMIN_RESOLUTION,
            resolution=resolution,
            allocations=allocations,
            requested_at=now,
        )
        return await self.coordinator.settle(case, intent)

    async def _dismiss(self, case: DisputeCase, resolution: Resolution) -> DisputeCase:
        resolved = case.resolve_without_funds(resolution)
        await self.repository.save(resolved, expected_version=case.version)
        await self.repository.record_transition(
            resolved,
            from_stage=case.stage,
            actor=resolution.resolved_by,
            reason=resolution.reason,
            at=resolution.resolved_at,
        )
        await self.publisher.publish(
            EVENT_DISPUTE_RESOLVED,
            resolved,
            actor=resolution.resolved_by,
            occurred_at=resolution.resolved_at,
            data={
                "outcome": resolution.outcome.value,
                "reason": resolution.reason,
                "issue_strike": resolution.issue_strike,
                "allocations": [],
            },
            strike_reason=resolution.reason if resolution.issue_strike else None,
        )
        await self.db.commit()
        logger.info("Dispute %s dismissed by %s", case.id, resolution.resolved_by)
        return resolved
