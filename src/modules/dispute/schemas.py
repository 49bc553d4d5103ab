"""Pydantic v2 schemas for the dispute API."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from src.models.enums import (
    DisputeCategory,
    DisputeStage,
    DisputeStatus,
    OfferDecision,
    OfferStatus,
    ResolutionOutcome,
)
from src.modules.dispute.domain import (
    AdminReview,
    DisputeCase,
    EvidenceFile,
    Negotiation,
    PartialRefundOffer,
    Resolution,
)
from src.modules.dispute.evidence import UploadedEvidence

# ---------------------------------------------------------------------------
# Eligibility / evidence
# ---------------------------------------------------------------------------


class EligibilityResponse(BaseModel):
    can_file: bool
    reason: str | None = None
    transaction_status: str | None = None
    status_changed_at: datetime | None = None


class EvidenceFileSchema(BaseModel):
    url: str = Field(..., min_length=1, max_length=2048)
    content_type: str = Field(..., max_length=100)
    size_bytes: int = Field(..., ge=0)
    file_name: str | None = Field(None, max_length=255)

    @classmethod
    def from_domain(cls, evidence: EvidenceFile) -> EvidenceFileSchema:
        return cls(**evidence.to_dict())


class EvidenceUploadResponse(EvidenceFileSchema):
    receipt: str

    @classmethod
    def from_upload(cls, uploaded: UploadedEvidence) -> EvidenceUploadResponse:
        return cls(**uploaded.file.to_dict(), receipt=uploaded.receipt)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class DisputeCreate(BaseModel):
    order_id: str | None = Field(None, max_length=255)
    customization_request_id: str | None = Field(None, max_length=255)
    category: DisputeCategory
    description: str = Field(..., max_length=5000)
    # Receipts returned by POST /disputes/evidence
    evidence_receipts: list[str] = Field(default_factory=list, max_length=10)


class OfferCreate(BaseModel):
    amount: Decimal = Field(..., max_digits=15, decimal_places=2)


class OfferRespond(BaseModel):
    decision: OfferDecision


class WithdrawRequest(BaseModel):
    reason: str | None = Field(None, max_length=2000)


class ResolveRequest(BaseModel):
    outcome: ResolutionOutcome
    reason: str = Field(..., max_length=2000)
    partial_refund_amount: Decimal | None = Field(None, max_digits=15, decimal_places=2)
    issue_strike: bool = False
    admin_notes: str | None = Field(None, max_length=5000)


# ---------------------------------------------------------------------------
# Stage-specific state
# ---------------------------------------------------------------------------


class OfferResponse(BaseModel):
    amount: Decimal
    proposed_by: str
    proposed_at: datetime
    status: OfferStatus
    responded_at: datetime | None = None

    @classmethod
    def from_domain(cls, offer: PartialRefundOffer) -> OfferResponse:
        return cls(
            amount=offer.amount,
            proposed_by=offer.proposed_by,
            proposed_at=offer.proposed_at,
            status=offer.status,
            responded_at=offer.responded_at,
        )


class ResolutionResponse(BaseModel):
    outcome: ResolutionOutcome
    reason: str
    resolved_by: str
    resolved_at: datetime
    partial_refund_amount: Decimal | None = None
    issue_strike: bool = False
    admin_notes: str | None = None

    @classmethod
    def from_domain(cls, resolution: Resolution) -> ResolutionResponse:
        return cls(
            outcome=resolution.outcome,
            reason=resolution.reason,
            resolved_by=resolution.resolved_by,
            resolved_at=resolution.resolved_at,
            partial_refund_amount=resolution.partial_refund_amount,
            issue_strike=resolution.issue_strike,
            admin_notes=resolution.admin_notes,
        )


class NegotiationState(BaseModel):
    stage: Literal["negotiation"] = "negotiation"
    negotiation_deadline: datetime
    offer: OfferResponse | None = None
    settlement_pending: bool = False


class AdminReviewState(BaseModel):
    stage: Literal["admin_review"] = "admin_review"
    escalated_at: datetime
    settlement_pending: bool = False


class ResolvedState(BaseModel):
    stage: Literal["resolved"] = "resolved"
    escalated_at: datetime | None = None
    resolution: ResolutionResponse


StageStateResponse = Annotated[
    NegotiationState | AdminReviewState | ResolvedState,
    Field(discriminator="stage"),
]


def _state_response(case: DisputeCase) -> NegotiationState | AdminReviewState | ResolvedState:
    state = case.state
    if isinstance(state, Negotiation):
        return NegotiationState(
            negotiation_deadline=case.negotiation_deadline,
            offer=OfferResponse.from_domain(state.offer) if state.offer else None,
            settlement_pending=state.settlement is not None,
        )
    if isinstance(state, AdminReview):
        return AdminReviewState(
            escalated_at=state.escalated_at,
            settlement_pending=state.settlement is not None,
        )
    return ResolvedState(
        escalated_at=state.escalated_at,
        resolution=ResolutionResponse.from_domain(state.resolution),
    )


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class DisputeResponse(BaseModel):
    id: uuid.UUID
    order_id: str | None = None
    customization_request_id: str | None = None
    filed_by: str
    counterparty_id: str
    category: DisputeCategory
    description: str
    evidence_images: list[EvidenceFileSchema] = Field(default_factory=list)
    evidence_video: EvidenceFileSchema | None = None
    stage: DisputeStage
    status: DisputeStatus
    version: int
    created_at: datetime
    state: StageStateResponse

    @classmethod
    def from_case(cls, case: DisputeCase) -> DisputeResponse:
        return cls(
            id=case.id,
            order_id=case.transaction.order_id,
            customization_request_id=case.transaction.customization_request_id,
            filed_by=case.filed_by,
            counterparty_id=case.counterparty_id,
            category=case.category,
            description=case.description,
            evidence_images=[EvidenceFileSchema.from_domain(e) for e in case.evidence_images],
            evidence_video=(
                EvidenceFileSchema.from_domain(case.evidence_video) if case.evidence_video else None
            ),
            stage=case.stage,
            status=case.status,
            version=case.version,
            created_at=case.created_at,
            state=_state_response(case),
        )


class DisputeListResponse(BaseModel):
    items: list[DisputeResponse]
    total: int
    limit: int
    offset: int


class DisputeTransitionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    dispute_id: uuid.UUID
    from_stage: DisputeStage | None = None
    to_stage: DisputeStage
    transitioned_by: str
    reason: str | None = None
    version: int
    created_at: datetime


class DisputeStatsResponse(BaseModel):
    total: int
    open: int
    closed: int
    by_stage: dict[str, int]
    by_category: dict[str, int]
    by_outcome: dict[str, int]
    average_resolution_hours: float | None = None
