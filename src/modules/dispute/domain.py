"""Dispute aggregate and its stage state machine.

Stage-specific data lives in one of three frozen records so that a dispute in
negotiation cannot carry a resolution and a resolved dispute cannot carry an
offer:

    Negotiation(offer?, settlement?)  ->  AdminReview(escalated_at, settlement?)
                                      ->  Resolved(resolution)

Every transition returns a new ``DisputeCase`` with ``version + 1``; the
repository persists it only if the stored version still equals the version the
transition started from. Authorization and stage rules are enforced here so
that the services only orchestrate I/O.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import ClassVar

from src.exceptions import (
    ForbiddenException,
    InsufficientEscrowException,
    StateConflictException,
    ValidationException,
)
from src.models.enums import (
    DisputeCategory,
    DisputeStage,
    DisputeStatus,
    OfferStatus,
    ResolutionOutcome,
    SettlementAction,
    TransactionKind,
)
from src.modules.dispute.constants import DISPUTE_ACCEPTED_REASON, STAGE_ORDER

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransactionRef:
    """The paid transaction a dispute is about: an order or a customization request."""

    kind: TransactionKind
    id: str

    @classmethod
    def from_ids(
        cls, order_id: str | None, customization_request_id: str | None
    ) -> TransactionRef:
        """Build a reference, requiring exactly one of the two ids."""
        if bool(order_id) == bool(customization_request_id):
            raise ValidationException(
                "Exactly one of order_id or customization_request_id is required",
                details=[
                    {"field": "order_id", "message": "set exactly one transaction reference"},
                    {"field": "customization_request_id", "message": "set exactly one transaction reference"},
                ],
            )
        if order_id:
            return cls(TransactionKind.ORDER, order_id)
        return cls(TransactionKind.CUSTOMIZATION_REQUEST, customization_request_id)

    @property
    def order_id(self) -> str | None:
        return self.id if self.kind == TransactionKind.ORDER else None

    @property
    def customization_request_id(self) -> str | None:
        return self.id if self.kind == TransactionKind.CUSTOMIZATION_REQUEST else None

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


@dataclass(frozen=True)
class EvidenceFile:
    url: str
    content_type: str
    size_bytes: int
    file_name: str | None = None

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "content_type": self.content_type,
            "size_bytes": self.size_bytes,
            "file_name": self.file_name,
        }

    @classmethod
    def from_dict(cls, data: dict) -> EvidenceFile:
        return cls(
            url=data["url"],
            content_type=data["content_type"],
            size_bytes=int(data["size_bytes"]),
            file_name=data.get("file_name"),
        )


@dataclass(frozen=True)
class PartialRefundOffer:
    amount: Decimal
    proposed_by: str
    proposed_at: datetime
    status: OfferStatus = OfferStatus.PENDING
    responded_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == OfferStatus.PENDING

    def describe(self) -> str:
        return f"{self.amount} proposed by {self.proposed_by} ({self.status.value})"

    def to_dict(self) -> dict:
        return {
            "amount": str(self.amount),
            "proposed_by": self.proposed_by,
            "proposed_at": self.proposed_at.isoformat(),
            "status": self.status.value,
            "responded_at": self.responded_at.isoformat() if self.responded_at else None,
        }


@dataclass(frozen=True)
class Resolution:
    outcome: ResolutionOutcome
    reason: str
    resolved_by: str
    resolved_at: datetime
    partial_refund_amount: Decimal | None = None
    issue_strike: bool = False
    admin_notes: str | None = None


@dataclass(frozen=True)
class Allocation:
    """One party's share of an escrow release."""

    party: str
    amount: Decimal


def split_balance(
    balance: Decimal, filer_share: Decimal, filer: str, counterparty: str
) -> tuple[Allocation, ...]:
    """Split *balance* into the filer's share and the counterparty's remainder.

    Zero shares are omitted; the allocations always sum to *balance*.
    """
    if filer_share < 0 or filer_share > balance:
        raise ValidationException(
            f"Refund share {filer_share} must be between 0 and the escrow balance {balance}"
        )
    allocations = []
    if filer_share > 0:
        allocations.append(Allocation(party=filer, amount=filer_share))
    remainder = balance - filer_share
    if remainder > 0:
        allocations.append(Allocation(party=counterparty, amount=remainder))
    return tuple(allocations)


@dataclass(frozen=True)
class SettlementIntent:
    """A claimed ledger disposition awaiting the ledger's acknowledgement.

    ``resolution`` is the candidate record; it becomes the dispute's resolution
    only once the release has been acknowledged.
    """

    action: SettlementAction
    resolution: Resolution
    allocations: tuple[Allocation, ...]
    requested_at: datetime

    def matches(self, other: SettlementIntent) -> bool:
        """True if *other* asks for the same disposition (a retry of this one)."""
        return (
            self.action == other.action
            and self.resolution.outcome == other.resolution.outcome
            and self.resolution.partial_refund_amount == other.resolution.partial_refund_amount
            and self.resolution.issue_strike == other.resolution.issue_strike
        )

    def to_dict(self) -> dict:
        r = self.resolution
        return {
            "action": self.action.value,
            "resolution": {
                "outcome": r.outcome.value,
                "reason": r.reason,
                "resolved_by": r.resolved_by,
                "resolved_at": r.resolved_at.isoformat(),
                "partial_refund_amount": (
                    str(r.partial_refund_amount) if r.partial_refund_amount is not None else None
                ),
                "issue_strike": r.issue_strike,
                "admin_notes": r.admin_notes,
            },
            "allocations": [{"party": a.party, "amount": str(a.amount)} for a in self.allocations],
            "requested_at": self.requested_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> SettlementIntent:
        r = data["resolution"]
        return cls(
            action=SettlementAction(data["action"]),
            resolution=Resolution(
                outcome=ResolutionOutcome(r["outcome"]),
                reason=r["reason"],
                resolved_by=r["resolved_by"],
                resolved_at=datetime.fromisoformat(r["resolved_at"]),
                partial_refund_amount=(
                    Decimal(r["partial_refund_amount"])
                    if r.get("partial_refund_amount") is not None
                    else None
                ),
                issue_strike=bool(r.get("issue_strike", False)),
                admin_notes=r.get("admin_notes"),
            ),
            allocations=tuple(
                Allocation(party=a["party"], amount=Decimal(a["amount"]))
                for a in data["allocations"]
            ),
            requested_at=datetime.fromisoformat(data["requested_at"]),
        )


# ---------------------------------------------------------------------------
# Stage records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Negotiation:
    stage: ClassVar[DisputeStage] = DisputeStage.NEGOTIATION

    offer: PartialRefundOffer | None = None
    settlement: SettlementIntent | None = None


@dataclass(frozen=True)
class AdminReview:
    stage: ClassVar[DisputeStage] = DisputeStage.ADMIN_REVIEW

    escalated_at: datetime
    settlement: SettlementIntent | None = None


@dataclass(frozen=True)
class Resolved:
    stage: ClassVar[DisputeStage] = DisputeStage.RESOLVED

    resolution: Resolution
    escalated_at: datetime | None = None


StageState = Negotiation | AdminReview | Resolved


# ---------------------------------------------------------------------------
# Aggregate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DisputeCase:
    id: uuid.UUID
    transaction: TransactionRef
    filed_by: str
    counterparty_id: str
    category: DisputeCategory
    description: str
    evidence_images: tuple[EvidenceFile, ...]
    evidence_video: EvidenceFile | None
    negotiation_deadline: datetime
    created_at: datetime
    state: StageState
    version: int = 1

    @classmethod
    def open(
        cls,
        *,
        transaction: TransactionRef,
        filed_by: str,
        counterparty_id: str,
        category: DisputeCategory,
        description: str,
        evidence_images: tuple[EvidenceFile, ...],
        evidence_video: EvidenceFile | None,
        now: datetime,
        negotiation_window: timedelta,
    ) -> DisputeCase:
        """A freshly filed dispute: negotiation stage, open, version 1."""
        return cls(
            id=uuid.uuid4(),
            transaction=transaction,
            filed_by=filed_by,
            counterparty_id=counterparty_id,
            category=category,
            description=description,
            evidence_images=evidence_images,
            evidence_video=evidence_video,
            negotiation_deadline=now + negotiation_window,
            created_at=now,
            state=Negotiation(),
            version=1,
        )

    # -- derived --------------------------------------------------------

    @property
    def stage(self) -> DisputeStage:
        return self.state.stage

    @property
    def status(self) -> DisputeStatus:
        return DisputeStatus.CLOSED if isinstance(self.state, Resolved) else DisputeStatus.OPEN

    @property
    def offer(self) -> PartialRefundOffer | None:
        return self.state.offer if isinstance(self.state, Negotiation) else None

    @property
    def resolution(self) -> Resolution | None:
        return self.state.resolution if isinstance(self.state, Resolved) else None

    @property
    def settlement(self) -> SettlementIntent | None:
        if isinstance(self.state, (Negotiation, AdminReview)):
            return self.state.settlement
        return None

    @property
    def escalated_at(self) -> datetime | None:
        if isinstance(self.state, (AdminReview, Resolved)):
            return self.state.escalated_at
        return None

    def is_party(self, user_id: str) -> bool:
        return user_id in (self.filed_by, self.counterparty_id)

    def deadline_passed(self, now: datetime) -> bool:
        return now > self.negotiation_deadline

    # -- transitions ----------------------------------------------------

    def _next(self, state: StageState) -> DisputeCase:
        if STAGE_ORDER[state.stage] < STAGE_ORDER[self.stage]:
            raise StateConflictException(
                f"Dispute {self.id} cannot move back from '{self.stage.value}' to '{state.stage.value}'"
            )
        return replace(self, state=state, version=self.version + 1)

    def _require_open(self, action: str) -> None:
        if isinstance(self.state, Resolved):
            raise StateConflictException(f"Cannot {action}: dispute {self.id} is already resolved")

    def _require_negotiation(self, action: str) -> Negotiation:
        if not isinstance(self.state, Negotiation):
            raise StateConflictException(
                f"Cannot {action}: dispute {self.id} is in '{self.stage.value}', not negotiation"
            )
        return self.state

    def _require_no_settlement(self, action: str) -> None:
        if self.settlement is not None:
            raise StateConflictException(
                f"Cannot {action}: a settlement is already in progress for dispute {self.id}"
            )

    def advance_if_expired(self, now: datetime) -> DisputeCase:
        """Escalate an expired negotiation to admin review; otherwise return self.

        A negotiation with a claimed settlement is left alone so the accepted
        offer can finish settling.
        """
        if not isinstance(self.state, Negotiation) or not self.deadline_passed(now):
            return self
        if self.state.settlement is not None:
            return self
        return self._next(AdminReview(escalated_at=now))

    def propose_offer(self, amount: Decimal, proposed_by: str, now: datetime) -> DisputeCase:
        state = self._require_negotiation("propose a partial refund")
        if not self.is_party(proposed_by):
            raise ForbiddenException("Only the parties to the dispute can propose a partial refund")
        self._require_no_settlement("propose a partial refund")
        if state.offer is not None and state.offer.is_pending:
            raise StateConflictException("A partial refund offer is already pending")
        if amount <= 0:
            raise ValidationException(
                "Partial refund amount must be greater than zero",
                details=[{"field": "amount", "message": "must be > 0"}],
            )
        offer = PartialRefundOffer(amount=amount, proposed_by=proposed_by, proposed_at=now)
        return self._next(replace(state, offer=offer))

    def pending_offer_for(self, responder: str) -> PartialRefundOffer:
        """The offer *responder* may answer; raises if there is none or they may not."""
        state = self._require_negotiation("respond to an offer")
        if state.offer is None or not state.offer.is_pending:
            raise StateConflictException("No pending partial refund offer found")
        if not self.is_party(responder):
            raise ForbiddenException("Only the parties to the dispute can respond to an offer")
        if responder == state.offer.proposed_by:
            raise ForbiddenException("The proposer cannot respond to their own offer")
        self._require_no_settlement("respond to an offer")
        return state.offer

    def reject_offer(self, responded_by: str, now: datetime) -> DisputeCase:
        offer = self.pending_offer_for(responded_by)
        rejected = replace(offer, status=OfferStatus.REJECTED, responded_at=now)
        return self._next(replace(self.state, offer=rejected))

    def require_acceptor(self, accepted_by: str) -> None:
        """Only the accused party may concede, and only during negotiation."""
        if accepted_by != self.counterparty_id:
            raise ForbiddenException("Only the accused party can accept a dispute")
        self._require_negotiation("accept the dispute")

    def accept_dispute(self, accepted_by: str, balance: Decimal, now: datetime) -> SettlementIntent:
        """The full-refund settlement the accused party asks for by conceding.

        Returns the intent to claim; the stage only changes once the ledger
        has released the whole balance to the filer.
        """
        self.require_acceptor(accepted_by)
        if balance <= 0:
            raise InsufficientEscrowException(
                f"No escrow balance is held for {self.transaction}; nothing to refund"
            )
        return SettlementIntent(
            action=SettlementAction.ACCEPT_DISPUTE,
            resolution=Resolution(
                outcome=ResolutionOutcome.REFUNDED,
                reason=DISPUTE_ACCEPTED_REASON,
                resolved_by=accepted_by,
                resolved_at=now,
            ),
            allocations=split_balance(balance, balance, self.filed_by, self.counterparty_id),
            requested_at=now,
        )

    def claim_settlement(self, intent: SettlementIntent) -> DisputeCase:
        """Record *intent* as the one terminal disposition in flight."""
        self._require_open("settle")
        self._require_no_settlement("settle")
        if intent.action in (SettlementAction.ACCEPT_OFFER, SettlementAction.ACCEPT_DISPUTE):
            state = self._require_negotiation("settle during negotiation")
            return self._next(replace(state, settlement=intent))
        if not isinstance(self.state, AdminReview):
            raise StateConflictException(
                f"Cannot resolve: dispute {self.id} is in '{self.stage.value}', not admin review"
            )
        return self._next(replace(self.state, settlement=intent))

    def release_settlement(self) -> DisputeCase:
        """Drop a claim the ledger definitively refused."""
        if self.settlement is None:
            raise StateConflictException(f"Dispute {self.id} has no settlement in progress")
        return self._next(replace(self.state, settlement=None))

    def finalize_settlement(self) -> DisputeCase:
        """Commit the claimed disposition once the ledger acknowledged it."""
        intent = self.settlement
        if intent is None:
            raise StateConflictException(f"Dispute {self.id} has no settlement in progress")
        return self._next(Resolved(resolution=intent.resolution, escalated_at=self.escalated_at))

    def resolve_without_funds(self, resolution: Resolution) -> DisputeCase:
        """Terminal admin decision that moves no money (dismissed)."""
        self._require_open("resolve")
        if not isinstance(self.state, AdminReview):
            raise StateConflictException(
                f"Cannot resolve: dispute {self.id} is in '{self.stage.value}', not admin review"
            )
        self._require_no_settlement("resolve")
        return self._next(Resolved(resolution=resolution, escalated_at=self.escalated_at))

    def withdraw(self, requested_by: str, now: datetime, reason: str | None = None) -> DisputeCase:
        self._require_open("withdraw")
        if requested_by != self.filed_by:
            raise ForbiddenException("Only the filer can withdraw a dispute")
        self._require_no_settlement("withdraw")
        resolution = Resolution(
            outcome=ResolutionOutcome.WITHDRAWN,
            reason=reason or "Withdrawn by filer",
            resolved_by=requested_by,
            resolved_at=now,
        )
        return self._next(Resolved(resolution=resolution, escalated_at=self.escalated_at))
