"""Pydantic schemas for purchase, payment callbacks, orders, transfers and messages."""

from __future__ import annotations

import uuid  # noqa: TC003 - pydantic resolves field types at runtime
from datetime import datetime  # noqa: TC003
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from resale_escrow.domain.enums import DisputeReason
from resale_escrow.schemas.common import Money, OptionalMoney

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class PurchaseRequest(BaseModel):
    """Request body for buying tickets from a listing."""

    listing_id: uuid.UUID
    quantity: int = Field(default=1, ge=1, le=10)


class PaymentCallbackRequest(BaseModel):
    """Body posted by the payment processor when a charge settles or fails."""

    order_id: uuid.UUID
    reason: str | None = Field(default=None, max_length=200)


class TransferActionRequest(BaseModel):
    """Request body for POST /transfer.

    submit_proof needs proof_urls; report_issue needs notes.
    """

    action: Literal["submit_proof", "confirm_receipt", "report_issue"]
    order_id: uuid.UUID
    proof_urls: list[str] = Field(default_factory=list, max_length=10)
    notes: str | None = Field(default=None, max_length=2000)
    transfer_reference: str | None = Field(default=None, max_length=128)
    reason: DisputeReason | None = None

    @model_validator(mode="after")
    def _check_action_fields(self) -> TransferActionRequest:
        if self.action == "submit_proof" and not self.proof_urls:
            raise ValueError("submit_proof requires at least one proof URL")
        if self.action == "report_issue" and not (self.notes or "").strip():
            raise ValueError("report_issue requires notes describing the problem")
        return self


class PostMessageRequest(BaseModel):
    body: str = Field(..., min_length=1, max_length=2000)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class TransferResponse(BaseModel):
    """Response schema for the transfer attached to an order."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    status: str
    seller_proof_urls: list[str]
    seller_notes: str | None
    transfer_reference: str | None
    proof_submitted_at: datetime | None
    buyer_notes: str | None
    buyer_action_at: datetime | None
    auto_confirmed: bool
    response_deadline: datetime


class OrderResponse(BaseModel):
    """Response schema for an escrow order."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    listing_id: uuid.UUID
    buyer_id: str
    seller_id: str
    quantity: int
    unit_price: Money
    subtotal: Money
    platform_fee: Money
    buyer_protection_fee: Money
    total: Money
    seller_payout: Money
    currency: str
    status: str
    payment_handle: str | None
    payout_status: str
    payout_amount: OptionalMoney
    refund_amount: OptionalMoney
    cancel_reason: str | None
    created_at: datetime
    updated_at: datetime
    paid_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    refunded_at: datetime | None


class TimelineEntry(BaseModel):
    """One row of the order timeline: an audit event or the running deadline."""

    kind: Literal["event", "deadline"]
    type: str
    at: datetime
    entity: str | None = None
    old_status: str | None = None
    new_status: str | None = None
    actor: str | None = None
    initiated_by: str | None = None


class OrderDetailResponse(OrderResponse):
    """An order with its transfer, dispute id and timeline."""

    event_name: str
    transfer: TransferResponse | None = None
    dispute_id: uuid.UUID | None = None
    timeline: list[TimelineEntry] = []

    @classmethod
    def from_order(cls, order: Any, timeline: list[dict[str, Any]]) -> OrderDetailResponse:
        base = OrderResponse.model_validate(order).model_dump()
        return cls(
            **base,
            event_name=order.listing.event_name,
            transfer=TransferResponse.model_validate(order.transfer) if order.transfer else None,
            dispute_id=order.dispute.id if order.dispute else None,
            timeline=[TimelineEntry(**entry) for entry in timeline],
        )


class MessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    sender_id: str
    body: str
    created_at: datetime
