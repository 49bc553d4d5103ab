"""Dispute API router."""

import uuid

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.session import get_db
from src.middleware.rate_limit import limiter
from src.models.enums import DisputeCategory, DisputeStage, DisputeStatus, ResolutionOutcome
from src.modules.dispute.repository import DisputeFilters
from src.modules.dispute.schemas import (
    DisputeCreate,
    DisputeListResponse,
    DisputeResponse,
    DisputeStatsResponse,
    DisputeTransitionResponse,
    EligibilityResponse,
    EvidenceUploadResponse,
    OfferCreate,
    OfferRespond,
    ResolveRequest,
    WithdrawRequest,
)
from src.modules.dispute.service import DisputeService
from src.modules.identity.auth import AuthenticatedUser, get_current_user, require_admin
from src.schemas.responses import ErrorResponse

router = APIRouter(
    prefix="/disputes",
    tags=["disputes"],
    responses={
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)


async def get_dispute_service(db: AsyncSession = Depends(get_db)) -> DisputeService:
    return DisputeService(db)


# ---------------------------------------------------------------------------
# Filing
# ---------------------------------------------------------------------------


@router.get("/eligibility", response_model=EligibilityResponse)
async def check_eligibility(
    order_id: str | None = Query(None),
    customization_request_id: str | None = Query(None),
    user: AuthenticatedUser = Depends(get_current_user),
    svc: DisputeService = Depends(get_dispute_service),
):
    """Can a dispute be filed against this order or customization request now?"""
    result = await svc.check_eligibility(
        user, order_id=order_id, customization_request_id=customization_request_id
    )
    return EligibilityResponse(
        can_file=result.can_file,
        reason=result.reason,
        transaction_status=result.snapshot.status if result.snapshot else None,
        status_changed_at=result.snapshot.last_status_change_at if result.snapshot else None,
    )


@router.post("/evidence", response_model=EvidenceUploadResponse, status_code=201)
@limiter.limit("30/minute")
async def upload_evidence(
    request: Request,
    file: UploadFile = File(...),
    user: AuthenticatedUser = Depends(get_current_user),
    svc: DisputeService = Depends(get_dispute_service),
):
    """Upload one evidence image or video; pass the returned receipt when filing."""
    content = await file.read()
    uploaded = await svc.upload_evidence(
        user,
        file_name=file.filename or "evidence",
        content_type=file.content_type or "application/octet-stream",
        content=content,
    )
    return EvidenceUploadResponse.from_upload(uploaded)


@router.post("/", response_model=DisputeResponse, status_code=201)
@limiter.limit("10/minute")
async def file_dispute(
    request: Request,
    body: DisputeCreate,
    user: AuthenticatedUser = Depends(get_current_user),
    svc: DisputeService = Depends(get_dispute_service),
):
    """File a dispute; it opens in negotiation with a 48h deadline."""
    case = await svc.file_dispute(
        user,
        category=body.category,
        description=body.description,
        evidence_receipts=body.evidence_receipts,
        order_id=body.order_id,
        customization_request_id=body.customization_request_id,
    )
    return DisputeResponse.from_case(case)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@router.get("/", response_model=DisputeListResponse)
async def list_disputes(
    stage: DisputeStage | None = Query(None),
    status: DisputeStatus | None = Query(None),
    category: DisputeCategory | None = Query(None),
    outcome: ResolutionOutcome | None = Query(None),
    filed_by: str | None = Query(None),
    counterparty_id: str | None = Query(None),
    order_id: str | None = Query(None),
    customization_request_id: str | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: AuthenticatedUser = Depends(get_current_user),
    svc: DisputeService = Depends(get_dispute_service),
):
    """List disputes; non-admins see only disputes they are a party to."""
    filters = DisputeFilters(
        filed_by=filed_by,
        counterparty_id=counterparty_id,
        stage=stage,
        status=status,
        category=category,
        order_id=order_id,
        customization_request_id=customization_request_id,
        outcome=outcome,
    )
    items, total = await svc.list_disputes(user, filters, limit=limit, offset=offset)
    return DisputeListResponse(
        items=[DisputeResponse.from_case(c) for c in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/stats", response_model=DisputeStatsResponse)
async def dispute_stats(
    user: AuthenticatedUser = Depends(require_admin),
    svc: DisputeService = Depends(get_dispute_service),
):
    return DisputeStatsResponse(**await svc.get_stats(user))


@router.get("/{dispute_id}", response_model=DisputeResponse)
async def get_dispute(
    dispute_id: uuid.UUID,
    user: AuthenticatedUser = Depends(get_current_user),
    svc: DisputeService = Depends(get_dispute_service),
):
    case = await svc.get_dispute(dispute_id, user)
    return DisputeResponse.from_case(case)


@router.get("/{dispute_id}/transitions", response_model=list[DisputeTransitionResponse])
async def list_transitions(
    dispute_id: uuid.UUID,
    user: AuthenticatedUser = Depends(get_current_user),
    svc: DisputeService = Depends(get_dispute_service),
):
    """Stage transition audit trail, oldest first."""
    transitions = await svc.list_transitions(dispute_id, user)
    return [DisputeTransitionResponse.model_validate(t) for t in transitions]


# ---------------------------------------------------------------------------
# Negotiation
# ---------------------------------------------------------------------------


@router.post("/{dispute_id}/offers", response_model=DisputeResponse)
@limiter.limit("30/minute")
async def propose_partial_refund(
    request: Request,
    dispute_id: uuid.UUID,
    body: OfferCreate,
    user: AuthenticatedUser = Depends(get_current_user),
    svc: DisputeService = Depends(get_dispute_service),
):
    case = await svc.propose_partial_refund(dispute_id, body.amount, user)
    return DisputeResponse.from_case(case)


@router.post("/{dispute_id}/offers/respond", response_model=DisputeResponse)
@limiter.limit("30/minute")
async def respond_to_offer(
    request: Request,
    dispute_id: uuid.UUID,
    body: OfferRespond,
    user: AuthenticatedUser = Depends(get_current_user),
    svc: DisputeService = Depends(get_dispute_service),
):
    """Accept (settles escrow and resolves) or reject the pending offer."""
    case = await svc.respond_to_offer(dispute_id, body.decision, user)
    return DisputeResponse.from_case(case)


@router.post("/{dispute_id}/accept", response_model=DisputeResponse)
@limiter.limit("30/minute")
async def accept_dispute(
    request: Request,
    dispute_id: uuid.UUID,
    user: AuthenticatedUser = Depends(get_current_user),
    svc: DisputeService = Depends(get_dispute_service),
):
    """Accused party accepts the dispute; the full escrow is refunded to the filer."""
    case = await svc.accept_dispute(dispute_id, user)
    return DisputeResponse.from_case(case)


@router.post("/{dispute_id}/withdraw", response_model=DisputeResponse)
async def withdraw_dispute(
    dispute_id: uuid.UUID,
    body: WithdrawRequest | None = None,
    user: AuthenticatedUser = Depends(get_current_user),
    svc: DisputeService = Depends(get_dispute_service),
):
    case = await svc.withdraw_dispute(dispute_id, user, reason=body.reason if body else None)
    return DisputeResponse.from_case(case)


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.post("/{dispute_id}/resolve", response_model=DisputeResponse)
@limiter.limit("30/minute")
async def resolve_dispute(
    request: Request,
    dispute_id: uuid.UUID,
    body: ResolveRequest,
    user: AuthenticatedUser = Depends(require_admin),
    svc: DisputeService = Depends(get_dispute_service),
):
    """Resolve a dispute in admin review with a financial outcome."""
    case = await svc.resolve_dispute(
        dispute_id,
        user,
        outcome=body.outcome,
        reason=body.reason,
        partial_refund_amount=body.partial_refund_amount,
        issue_strike=body.issue_strike,
        admin_notes=body.admin_notes,
    )
    return DisputeResponse.from_case(case)
