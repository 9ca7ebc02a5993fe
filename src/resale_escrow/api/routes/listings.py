"""Listing registry REST API routes.

Routes:
    POST   /listings               — Create a listing (seller)
    GET    /listings               — Search live listings (public)
    GET    /listings/{id}          — Listing detail with price history
    PATCH  /listings/{id}/price    — Reprice (owner)
    DELETE /listings/{id}          — Withdraw (owner)
"""

from __future__ import annotations

import uuid  # noqa: TC003 - FastAPI resolves parameter types at runtime
from datetime import datetime  # noqa: TC003
from decimal import Decimal  # noqa: TC003

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002

from resale_escrow.api.deps import (
    get_current_actor,
    get_db_session,
    get_reputation_provider,
    rate_limit,
)
from resale_escrow.domain.actor import Actor  # noqa: TC001
from resale_escrow.domain.enums import SortOrder, TicketType, VerificationLevel
from resale_escrow.domain.seller import ReputationProvider  # noqa: TC001
from resale_escrow.infrastructure.database.repositories import ListingSearch
from resale_escrow.logging_config import get_logger
from resale_escrow.schemas.common import Page
from resale_escrow.schemas.listing import (
    CreateListingRequest,
    ListingDetailResponse,
    ListingResponse,
    UpdatePriceRequest,
)
from resale_escrow.services.listing_service import ListingService

router = APIRouter(prefix="/listings", tags=["Listings"])
logger = get_logger(__name__)


@router.post(
    "",
    response_model=ListingResponse,
    status_code=201,
    summary="Create a listing",
    dependencies=[Depends(rate_limit("create_listing"))],
)
async def create_listing(
    request: CreateListingRequest,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    reputation: ReputationProvider = Depends(get_reputation_provider),
) -> ListingResponse:
    """Register tickets for resale. Markup is capped at 50% over face value."""
    svc = ListingService(session, reputation)
    listing = await svc.create_listing(
        actor,
        event_name=request.event_name,
        event_venue=request.event_venue,
        event_date=request.event_date,
        ticket_type=request.ticket_type,
        original_price=request.original_price,
        asking_price=request.asking_price,
        quantity=request.quantity,
        event_city=request.event_city,
        ticket_source=request.ticket_source,
        transfer_method=request.transfer_method,
        description=request.description,
    )
    return ListingResponse.model_validate(listing)


@router.get(
    "",
    response_model=Page[ListingResponse],
    summary="Search live listings",
)
async def search_listings(
    q: str | None = Query(default=None, max_length=200, description="Event or venue text"),
    city: str | None = Query(default=None, max_length=100),
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    min_price: Decimal | None = Query(default=None, ge=0),
    max_price: Decimal | None = Query(default=None, ge=0),
    ticket_type: TicketType | None = None,
    verification_level: VerificationLevel | None = None,
    sort: SortOrder = SortOrder.EVENT_DATE,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=50),
    session: AsyncSession = Depends(get_db_session),
    reputation: ReputationProvider = Depends(get_reputation_provider),
) -> Page[ListingResponse]:
    svc = ListingService(session, reputation)
    search = ListingSearch(
        query=q,
        city=city,
        date_from=date_from,
        date_to=date_to,
        min_price=min_price,
        max_price=max_price,
        ticket_type=ticket_type.value if ticket_type else None,
        verification_level=verification_level.value if verification_level else None,
        sort=sort,
        page=page,
        limit=limit,
    )
    items, total = await svc.search_listings(search)
    return Page[ListingResponse].build(
        [ListingResponse.model_validate(item) for item in items], total, page, limit
    )


@router.get(
    "/{listing_id}",
    response_model=ListingDetailResponse,
    summary="Get listing details",
)
async def get_listing(
    listing_id: uuid.UUID,
    session: AsyncSession = Depends(get_db_session),
    reputation: ReputationProvider = Depends(get_reputation_provider),
) -> ListingDetailResponse:
    listing = await ListingService(session, reputation).get_listing(listing_id)
    return ListingDetailResponse.model_validate(listing)


@router.patch(
    "/{listing_id}/price",
    response_model=ListingResponse,
    summary="Change the asking price",
)
async def update_price(
    listing_id: uuid.UUID,
    request: UpdatePriceRequest,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    reputation: ReputationProvider = Depends(get_reputation_provider),
) -> ListingResponse:
    svc = ListingService(session, reputation)
    listing = await svc.update_price(actor, listing_id, request.asking_price)
    return ListingResponse.model_validate(listing)


@router.delete(
    "/{listing_id}",
    response_model=ListingResponse,
    summary="Withdraw a listing",
)
async def withdraw_listing(
    listing_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    reputation: ReputationProvider = Depends(get_reputation_provider),
) -> ListingResponse:
    listing = await ListingService(session, reputation).withdraw_listing(actor, listing_id)
    return ListingResponse.model_validate(listing)
