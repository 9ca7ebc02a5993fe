"""Seller-side listing verification routes.

Routes:
    POST   /verify/upload        — Attach a proof document URL
    POST   /verify/fraud-check   — Score confirmation details with the fraud oracle
    POST   /verify/submit        — Queue the request for a reviewer
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002

from resale_escrow.api.deps import (
    get_current_actor,
    get_db_session,
    get_fraud_oracle,
    get_reputation_provider,
    rate_limit,
)
from resale_escrow.domain.actor import Actor  # noqa: TC001
from resale_escrow.domain.fraud_protocol import FraudOracle  # noqa: TC001
from resale_escrow.domain.seller import ReputationProvider  # noqa: TC001
from resale_escrow.schemas.verification import (
    FraudCheckRequestBody,
    FraudCheckResponse,
    FraudCheckResultResponse,
    SubmitForReviewRequest,
    UploadProofRequest,
    VerificationResponse,
)
from resale_escrow.services.verification_service import VerificationService

router = APIRouter(prefix="/verify", tags=["Verification"])


def _service(
    session: AsyncSession = Depends(get_db_session),
    oracle: FraudOracle = Depends(get_fraud_oracle),
    reputation: ReputationProvider = Depends(get_reputation_provider),
) -> VerificationService:
    return VerificationService(session, oracle, reputation)


@router.post(
    "/upload",
    response_model=VerificationResponse,
    status_code=201,
    summary="Upload a verification proof",
    dependencies=[Depends(rate_limit("upload_proof"))],
)
async def upload_proof(
    request: UploadProofRequest,
    actor: Actor = Depends(get_current_actor),
    svc: VerificationService = Depends(_service),
) -> VerificationResponse:
    verification = await svc.upload_proof(
        actor, request.listing_id, request.proof_type, request.url
    )
    return VerificationResponse.model_validate(verification)


@router.post(
    "/fraud-check",
    response_model=FraudCheckResponse,
    summary="Run the fraud check on confirmation details",
)
async def fraud_check(
    request: FraudCheckRequestBody,
    actor: Actor = Depends(get_current_actor),
    svc: VerificationService = Depends(_service),
) -> FraudCheckResponse:
    """A failing score is stored and returned; it blocks submission, not this call."""
    verification, result = await svc.run_fraud_check(
        actor, request.listing_id, request.confirmation_details
    )
    return FraudCheckResponse(
        request=VerificationResponse.model_validate(verification),
        result=FraudCheckResultResponse(**result.to_dict()),
    )


@router.post(
    "/submit",
    response_model=VerificationResponse,
    summary="Submit the listing for review",
)
async def submit_for_review(
    request: SubmitForReviewRequest,
    actor: Actor = Depends(get_current_actor),
    svc: VerificationService = Depends(_service),
) -> VerificationResponse:
    verification = await svc.submit_for_review(actor, request.listing_id)
    return VerificationResponse.model_validate(verification)
