"""Dispute service — filing, negotiation, admin resolution and queries."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import timedelta
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.exceptions import EligibilityException, ForbiddenException, ValidationException
from src.models.dispute_transition import DisputeTransition
from src.models.enums import DisputeCategory, OfferDecision, ResolutionOutcome
from src.modules.dispute.constants import EVENT_DISPUTE_FILED, EVENT_DISPUTE_WITHDRAWN
from src.modules.dispute.domain import Clock, DisputeCase, EvidenceFile, TransactionRef, utcnow
from src.modules.dispute.eligibility import EligibilityGate, EligibilityResult
from src.modules.dispute.events import DisputeEventPublisher
from src.modules.dispute.evidence import UploadedEvidence, issue_receipt, redeem_receipts
from src.modules.dispute.negotiation import NegotiationWindow
from src.modules.dispute.providers.base import EscrowLedger, EvidenceStore, TransactionStore
from src.modules.dispute.repository import DisputeFilters, DisputeRepository
from src.modules.dispute.resolution import AdminResolutionEngine
from src.modules.dispute.settlement import SettlementCoordinator
from src.modules.dispute.validators import (
    split_evidence,
    validate_category,
    validate_description,
    validate_evidence_file,
)
from src.modules.events.outbox_service import OutboxService
from src.modules.identity.auth import AuthenticatedUser

logger = logging.getLogger(__name__)


class DisputeService:
    def __init__(
        self,
        db: AsyncSession,
        transaction_store: TransactionStore | None = None,
        ledger: EscrowLedger | None = None,
        evidence_store: EvidenceStore | None = None,
        clock: Clock = utcnow,
    ) -> None:
        if transaction_store is None or ledger is None or evidence_store is None:
            from src.modules.dispute.providers.factory import (
                get_escrow_ledger,
                get_evidence_store,
                get_transaction_store,
            )

            transaction_store = transaction_store or get_transaction_store()
            ledger = ledger or get_escrow_ledger()
            evidence_store = evidence_store or get_evidence_store()

        self.db = db
        self.clock = clock
        self.evidence_store = evidence_store
        self.repository = DisputeRepository(db)
        self.publisher = DisputeEventPublisher(OutboxService(db))
        self.gate = EligibilityGate(transaction_store, self.repository, clock=clock)
        self.coordinator = SettlementCoordinator(db, self.repository, ledger, self.publisher, clock=clock)
        self.window = NegotiationWindow(
            db, self.repository, ledger, self.publisher, self.coordinator, clock=clock
        )
        self.resolution = AdminResolutionEngine(
            db, self.repository, ledger, self.publisher, self.coordinator, self.window, clock=clock
        )

    # ------------------------------------------------------------------
    # Filing
    # ------------------------------------------------------------------

    async def check_eligibility(
        self,
        user: AuthenticatedUser,
        order_id: str | None = None,
        customization_request_id: str | None = None,
    ) -> EligibilityResult:
        transaction = TransactionRef.from_ids(order_id, customization_request_id)
        return await self.gate.check(transaction, filed_by=None if user.is_admin else user.id)

    async def upload_evidence(
        self, user: AuthenticatedUser, file_name: str, content_type: str, content: bytes
    ) -> UploadedEvidence:
        """Check and store one file; the receipt is what filing accepts as evidence."""
        errors = validate_evidence_file(content_type, len(content), field="file")
        if errors:
            raise ValidationException("Evidence file rejected", details=errors)
        url = await self.evidence_store.upload(content, file_name, content_type, owner_id=user.id)
        evidence = EvidenceFile(
            url=url, content_type=content_type, size_bytes=len(content), file_name=file_name
        )
        return UploadedEvidence(file=evidence, receipt=issue_receipt(evidence, user.id, self.clock()))

    async def file_dispute(
        self,
        user: AuthenticatedUser,
        *,
        category: DisputeCategory,
        description: str,
        evidence_receipts: Sequence[str] = (),
        order_id: str | None = None,
        customization_request_id: str | None = None,
    ) -> DisputeCase:
        """Open a dispute in negotiation with a 48h deadline."""
        transaction = TransactionRef.from_ids(order_id, customization_request_id)
        validate_category(category, transaction)
        description = validate_description(description)
        images, video = split_evidence(redeem_receipts(evidence_receipts, user.id, self.clock()))

        eligibility = await self.gate.check(transaction, filed_by=user.id)
        if not eligibility.can_file:
            raise EligibilityException(eligibility.reason)

        now = self.clock()
        case = DisputeCase.open(
            transaction=transaction,
            filed_by=user.id,
            counterparty_id=eligibility.snapshot.counterparty_id,
            category=category,
            description=description,
            evidence_images=images,
            evidence_video=video,
            now=now,
            negotiation_window=timedelta(hours=settings.dispute_negotiation_window_hours),
        )
        await self.repository.add(case)
        await self.repository.record_transition(
            case, from_stage=None, actor=user.id, reason="Dispute filed", at=now
        )
        await self.publisher.publish(
            EVENT_DISPUTE_FILED,
            case,
            actor=user.id,
            occurred_at=now,
            data={
                "category": category.value,
                "negotiation_deadline": case.negotiation_deadline.isoformat(),
            },
        )
        logger.info("Dispute %s filed by %s against %s", case.id, user.id, transaction)
        return case

    # ------------------------------------------------------------------
    # Negotiation
    # ------------------------------------------------------------------

    async def propose_partial_refund(
        self, dispute_id: uuid.UUID, amount: Decimal, user: AuthenticatedUser
    ) -> DisputeCase:
        return await self.window.propose_partial_refund(dispute_id, amount, proposed_by=user.id)

    async def respond_to_offer(
        self, dispute_id: uuid.UUID, decision: OfferDecision, user: AuthenticatedUser
    ) -> DisputeCase:
        return await self.window.respond_to_offer(dispute_id, decision, responded_by=user.id)

    async def accept_dispute(self, dispute_id: uuid.UUID, user: AuthenticatedUser) -> DisputeCase:
        """Accused party concedes; the filer is refunded in full."""
        return await self.window.accept_dispute(dispute_id, accepted_by=user.id)

    async def withdraw_dispute(
        self, dispute_id: uuid.UUID, user: AuthenticatedUser, reason: str | None = None
    ) -> DisputeCase:
        """Filer closes the dispute; escrow is left for the normal transaction flow."""
        case = await self.window.load_current(dispute_id)
        now = self.clock()
        withdrawn = case.withdraw(user.id, now, reason)
        await self.repository.save(withdrawn, expected_version=case.version)
        await self.repository.record_transition(
            withdrawn,
            from_stage=case.stage,
            actor=user.id,
            reason=withdrawn.resolution.reason,
            at=now,
        )
        await self.publisher.publish(
            EVENT_DISPUTE_WITHDRAWN,
            withdrawn,
            actor=user.id,
            occurred_at=now,
            data={"reason": withdrawn.resolution.reason},
        )
        logger.info("Dispute %s withdrawn by %s", case.id, user.id)
        return withdrawn

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    async def resolve_dispute(
        self,
        dispute_id: uuid.UUID,
        user: AuthenticatedUser,
        *,
        outcome: ResolutionOutcome,
        reason: str,
        partial_refund_amount: Decimal | None = None,
        issue_strike: bool = False,
        admin_notes: str | None = None,
    ) -> DisputeCase:
        return await self.resolution.resolve(
            dispute_id,
            outcome=outcome,
            reason=reason,
            resolved_by=user.id,
            is_admin=user.is_admin,
            partial_refund_amount=partial_refund_amount,
            issue_strike=issue_strike,
            admin_notes=admin_notes,
        )

    async def resume_settlement(self, dispute_id: uuid.UUID) -> DisputeCase:
        """Retry the ledger release for a dispute left holding a claim."""
        case = await self.repository.get(dispute_id)
        if case.settlement is None:
            return case
        return await self.coordinator.resume(case)

    async def get_stats(self, user: AuthenticatedUser) -> dict:
        if not user.is_admin:
            raise ForbiddenException("Dispute statistics require admin access")
        return await self.repository.stats(self.clock())

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _require_visible(self, case: DisputeCase, user: AuthenticatedUser) -> None:
        if not user.is_admin and not case.is_party(user.id):
            raise ForbiddenException("You are not a party to this dispute")

    async def get_dispute(self, dispute_id: uuid.UUID, user: AuthenticatedUser) -> DisputeCase:
        case = await self.window.load_current(dispute_id)
        self._require_visible(case, user)
        return case

    async def list_transitions(
        self, dispute_id: uuid.UUID, user: AuthenticatedUser
    ) -> list[DisputeTransition]:
        await self.get_dispute(dispute_id, user)
        return await self.repository.list_transitions(dispute_id)

    async def list_disputes(
        self,
        user: AuthenticatedUser,
        filters: DisputeFilters | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[DisputeCase], int]:
        """Page through disputes; non-admins only see their own."""
        filters = filters or DisputeFilters()
        if not user.is_admin:
            filters.party = user.id

        cases, total = await self.repository.find(filters, self.clock(), limit=limit, offset=offset)
        return [await self.window.advance(case) for case in cases], total
