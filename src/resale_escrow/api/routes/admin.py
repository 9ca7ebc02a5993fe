"""Reviewer-only REST API routes.

Routes:
    POST   /admin/verify               — Approve, reject or flag a verification request
    GET    /admin/verification-queue   — Requests awaiting review
    POST   /admin/disputes             — Drive a dispute case
    GET    /admin/fraud-alerts         — Fraud signals raised by disputes
    POST   /admin/sweep                — Run one deadline sweep pass now

Every route requires a token with the reviewer role.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002

from resale_escrow.api.deps import (
    get_db_session,
    get_deadline_sweep,
    get_fraud_oracle,
    get_payment_service,
    get_reputation_provider,
    get_reviewer,
)
from resale_escrow.domain.actor import Actor  # noqa: TC001
from resale_escrow.domain.enums import VerificationStatus
from resale_escrow.domain.fraud_protocol import FraudOracle  # noqa: TC001
from resale_escrow.domain.seller import ReputationProvider  # noqa: TC001
from resale_escrow.logging_config import get_logger
from resale_escrow.orchestration.deadline_sweep import DeadlineSweep  # noqa: TC001
from resale_escrow.schemas.common import Page, SweepResponse
from resale_escrow.schemas.dispute import (
    AdminDisputeRequest,
    DisputeResponse,
    FraudAlertResponse,
)
from resale_escrow.schemas.verification import ReviewRequest, VerificationResponse
from resale_escrow.services.dispute_service import DisputeService
from resale_escrow.services.payment_service import PaymentService  # noqa: TC001
from resale_escrow.services.verification_service import VerificationService

router = APIRouter(prefix="/admin", tags=["Admin"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Verification review
# ---------------------------------------------------------------------------


@router.post(
    "/verify",
    response_model=VerificationResponse,
    summary="Review a verification request",
)
async def review_verification(
    request: ReviewRequest,
    reviewer: Actor = Depends(get_reviewer),
    session: AsyncSession = Depends(get_db_session),
    oracle: FraudOracle = Depends(get_fraud_oracle),
    reputation: ReputationProvider = Depends(get_reputation_provider),
) -> VerificationResponse:
    svc = VerificationService(session, oracle, reputation)
    verification = await svc.review(
        reviewer,
        request.request_id,
        request.action,
        level=request.level,
        reason=request.reason,
        notes=request.notes,
    )
    return VerificationResponse.model_validate(verification)


@router.get(
    "/verification-queue",
    response_model=Page[VerificationResponse],
    summary="List verification requests by status",
)
async def verification_queue(
    status: VerificationStatus | None = Query(
        default=None, description="Defaults to submitted requests"
    ),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=50),
    reviewer: Actor = Depends(get_reviewer),
    session: AsyncSession = Depends(get_db_session),
    oracle: FraudOracle = Depends(get_fraud_oracle),
    reputation: ReputationProvider = Depends(get_reputation_provider),
) -> Page[VerificationResponse]:
    svc = VerificationService(session, oracle, reputation)
    items, total = await svc.verification_queue(
        reviewer, status=status.value if status else None, page=page, limit=limit
    )
    return Page[VerificationResponse].build(
        [VerificationResponse.model_validate(v) for v in items], total, page, limit
    )


# ---------------------------------------------------------------------------
# Dispute handling
# ---------------------------------------------------------------------------


@router.post(
    "/disputes",
    response_model=DisputeResponse,
    summary="Review, escalate, resolve or close a dispute",
)
async def dispute_action(
    request: AdminDisputeRequest,
    reviewer: Actor = Depends(get_reviewer),
    session: AsyncSession = Depends(get_db_session),
    payments: PaymentService = Depends(get_payment_service),
) -> DisputeResponse:
    svc = DisputeService(session, payments)
    dispute_id = request.dispute_id
    if request.action == "begin_review":
        dispute = await svc.begin_review(reviewer, dispute_id)
    elif request.action == "request_response":
        dispute = await svc.request_response(
            reviewer, dispute_id, request.party, notes=request.notes
        )
    elif request.action == "escalate":
        dispute = await svc.escalate(reviewer, dispute_id, notes=request.notes)
    elif request.action == "resolve":
        dispute = await svc.resolve(
            reviewer,
            dispute_id,
            request.outcome,
            notes=request.notes,
            refund_amount=request.refund_amount,
            seller_payout_amount=request.seller_payout_amount,
            void_platform_fee=request.void_platform_fee,
        )
    else:
        dispute = await svc.close(reviewer, dispute_id, notes=request.notes)
    return DisputeResponse.model_validate(dispute)


@router.get(
    "/fraud-alerts",
    response_model=Page[FraudAlertResponse],
    summary="List fraud alerts, newest first",
)
async def fraud_alerts(
    user_id: str | None = Query(default=None, description="Only alerts against this user"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=50),
    reviewer: Actor = Depends(get_reviewer),
    session: AsyncSession = Depends(get_db_session),
    payments: PaymentService = Depends(get_payment_service),
) -> Page[FraudAlertResponse]:
    items, total = await DisputeService(session, payments).list_fraud_alerts(
        reviewer, user_id=user_id, page=page, limit=limit
    )
    return Page[FraudAlertResponse].build(
        [FraudAlertResponse.model_validate(a) for a in items], total, page, limit
    )


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


@router.post(
    "/sweep",
    response_model=SweepResponse,
    summary="Run the deadline sweep once",
)
async def run_sweep(
    reviewer: Actor = Depends(get_reviewer),
    sweep: DeadlineSweep = Depends(get_deadline_sweep),
) -> SweepResponse:
    summary = await sweep.run_once()
    logger.info("admin.sweep_triggered", reviewer=reviewer.id, actions=summary.total_actions)
    return SweepResponse(**summary.to_dict())
