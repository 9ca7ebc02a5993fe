"""Pydantic schemas for the listing registry endpoints."""

from __future__ import annotations

import uuid  # noqa: TC003 - pydantic resolves field types at runtime
from datetime import datetime  # noqa: TC003
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from resale_escrow.domain.enums import (
    TicketSource,
    TicketType,
    TransferMethod,
)
from resale_escrow.schemas.common import Money, OptionalMoney

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateListingRequest(BaseModel):
    """Request body for putting tickets up for resale."""

    event_name: str = Field(..., min_length=1, max_length=200, examples=["Boiler Room London"])
    event_venue: str = Field(..., min_length=1, max_length=200, examples=["Printworks"])
    event_city: str | None = Field(default=None, max_length=100, examples=["London"])
    event_date: datetime = Field(..., description="Event start, ISO-8601 (UTC if no offset)")
    ticket_type: TicketType
    ticket_source: TicketSource | None = None
    transfer_method: TransferMethod | None = None
    description: str | None = Field(default=None, max_length=2000)
    quantity: int = Field(default=1, ge=1, description="At most MAX_TICKETS_PER_LISTING")
    original_price: Decimal = Field(..., gt=0, description="Face value paid per ticket")
    asking_price: Decimal = Field(
        ...,
        gt=0,
        description="Resale price per ticket; at most 50% above face value",
    )


class UpdatePriceRequest(BaseModel):
    asking_price: Decimal = Field(..., gt=0)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class ListingResponse(BaseModel):
    """Response schema for a listing."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    seller_id: str
    event_name: str
    event_venue: str
    event_city: str | None
    event_date: datetime
    ticket_type: str
    ticket_source: str | None
    transfer_method: str | None
    description: str | None
    quantity: int
    quantity_available: int
    original_price: Money
    asking_price: Money
    verification_level: str
    is_active: bool
    view_count: int
    fraud_score: int
    expires_at: datetime | None
    created_at: datetime
    updated_at: datetime


class PriceChangeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    old_price: OptionalMoney
    new_price: Money
    changed_by: str
    created_at: datetime


class ListingDetailResponse(ListingResponse):
    """A listing with its price history."""

    price_changes: list[PriceChangeResponse] = []
