"""Pydantic schemas for party and reviewer dispute actions."""

from __future__ import annotations

import uuid  # noqa: TC003 - pydantic resolves field types at runtime
from datetime import datetime  # noqa: TC003
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from resale_escrow.domain.enums import PartyRole, ResolutionOutcome
from resale_escrow.schemas.common import OptionalMoney

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class DisputeActionRequest(BaseModel):
    """Request body for POST /disputes (buyer or seller)."""

    action: Literal["respond", "add_evidence", "withdraw"]
    dispute_id: uuid.UUID
    statement: str | None = Field(default=None, max_length=5000)
    evidence_urls: list[str] = Field(default_factory=list, max_length=20)

    @model_validator(mode="after")
    def _check_action_fields(self) -> DisputeActionRequest:
        if self.action == "respond" and not (self.statement or "").strip():
            raise ValueError("respond requires a statement")
        if self.action == "add_evidence" and not self.evidence_urls:
            raise ValueError("add_evidence requires at least one URL")
        return self


class AdminDisputeRequest(BaseModel):
    """Request body for POST /admin/disputes (reviewer only)."""

    action: Literal["begin_review", "request_response", "escalate", "resolve", "close"]
    dispute_id: uuid.UUID
    party: PartyRole | None = Field(
        default=None, description="Whose response to request (request_response)"
    )
    outcome: ResolutionOutcome | None = Field(default=None, description="Required for resolve")
    refund_amount: Decimal | None = Field(default=None, ge=0)
    seller_payout_amount: Decimal | None = Field(default=None, ge=0)
    void_platform_fee: bool = False
    notes: str | None = Field(default=None, max_length=5000)

    @model_validator(mode="after")
    def _check_action_fields(self) -> AdminDisputeRequest:
        if self.action == "request_response" and self.party is None:
            raise ValueError("request_response requires party")
        if self.action == "resolve" and self.outcome is None:
            raise ValueError("resolve requires outcome")
        return self


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class DisputeResponse(BaseModel):
    """Response schema for a dispute case."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    opened_by: str
    opened_by_role: str
    reason: str
    description: str | None
    status: str
    buyer_statement: str | None
    buyer_evidence: list[str]
    buyer_submitted_at: datetime | None
    seller_statement: str | None
    seller_evidence: list[str]
    seller_submitted_at: datetime | None
    awaiting_party: str | None
    response_deadline: datetime | None
    defaulted_party: str | None
    resolution: str | None
    resolution_notes: str | None
    refund_amount: OptionalMoney
    seller_payout_amount: OptionalMoney
    platform_fee_voided: bool
    resolved_by: str | None
    resolved_at: datetime | None
    closed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class FraudAlertResponse(BaseModel):
    """A fraud signal raised against a user."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: str
    entity_type: str
    entity_id: uuid.UUID
    alert_type: str
    description: str
    evidence: dict[str, Any]
    severity: str
    confidence_score: int
    created_at: datetime
