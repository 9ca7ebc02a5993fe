"""Pydantic schemas for listing verification intake and review."""

from __future__ import annotations

import uuid  # noqa: TC003 - pydantic resolves field types at runtime
from datetime import datetime  # noqa: TC003
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from resale_escrow.domain.enums import ProofType, ReviewAction, VerificationLevel

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class UploadProofRequest(BaseModel):
    """Attach one proof URL of a given type to the listing's open request."""

    listing_id: uuid.UUID
    proof_type: ProofType
    url: str = Field(..., min_length=1, max_length=2048)


class FraudCheckRequestBody(BaseModel):
    """Confirmation details from the primary ticket purchase.

    Validated against the details JSON Schema by the service, so unknown
    platforms and malformed emails come back as 400 with field detail.
    """

    listing_id: uuid.UUID
    confirmation_details: dict[str, Any] = Field(
        ...,
        examples=[
            {
                "order_reference": "DICE-8F3K2L9Q",
                "purchaser_email": "sam@example.com",
                "platform": "dice",
                "transfer_code": None,
            }
        ],
    )


class SubmitForReviewRequest(BaseModel):
    listing_id: uuid.UUID


class ReviewRequest(BaseModel):
    """Reviewer decision on a submitted request."""

    request_id: uuid.UUID
    action: ReviewAction
    level: VerificationLevel | None = Field(default=None, description="Required to approve")
    reason: str | None = Field(
        default=None,
        max_length=500,
        description="Rejection reason code, or free text when flagging",
    )
    notes: str | None = Field(default=None, max_length=5000)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class FraudCheckResultResponse(BaseModel):
    passed: bool
    risk_score: int
    warnings: list[str]
    checks: dict[str, Any] = {}


class VerificationResponse(BaseModel):
    """Response schema for a verification request."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    listing_id: uuid.UUID
    seller_id: str
    proofs: dict[str, Any]
    confirmation_details: dict[str, Any] | None
    fraud_check_result: dict[str, Any] | None
    status: str
    submitted_at: datetime | None
    verification_level: str | None
    reject_reason: str | None
    flag_reason: str | None
    review_notes: str | None
    reviewed_by: str | None
    reviewed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class FraudCheckResponse(BaseModel):
    request: VerificationResponse
    result: FraudCheckResultResponse
