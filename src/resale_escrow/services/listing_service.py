"""Listing Service — the listing registry.

Sellers create listings, adjust their price and withdraw them; buyers
search. Every price a listing carries passes the markup cap and the
seller's ticket-value ceiling, and is kept in the price history.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from resale_escrow.config import get_settings
from resale_escrow.domain.enums import (
    SortOrder,
    TicketSource,
    TicketType,
    TransferMethod,
    VerificationLevel,
)
from resale_escrow.domain.exceptions import (
    ConflictError,
    ListingNotFoundError,
    ListingQuotaExceededError,
    NotAPartyError,
    SellerCeilingExceededError,
    SellerSuspendedError,
    ValidationError,
)
from resale_escrow.domain.pricing import FeeRates, quote, to_money
from resale_escrow.infrastructure.database.orm_models import Listing
from resale_escrow.infrastructure.database.repositories import ListingRepository, ListingSearch
from resale_escrow.logging_config import get_logger
from resale_escrow.services.guards import clamp_page, utcnow

if TYPE_CHECKING:
    import uuid
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from resale_escrow.domain.actor import Actor
    from resale_escrow.domain.seller import ReputationProvider, SellerStanding

logger = get_logger(__name__)

LOW_PRICE_RATIO = Decimal("0.5")
SUSPICIOUS_SCORE = 50


def heuristic_fraud_score(
    standing: SellerStanding,
    original_price: Decimal,
    asking_price: Decimal,
    transfer_method: str | None,
    event_date: datetime,
    same_event_listings: int,
    now: datetime,
) -> int:
    """Listing-time risk score (0-100), stored on the listing.

    This is a cheap first pass; the fraud oracle runs later, against the
    seller's proofs, when the listing goes through verification.
    """
    score = 0
    if standing.completed_sales == 0:
        score += 15
    if standing.trust_score < 30:
        score += 20
    if asking_price < original_price * LOW_PRICE_RATIO:
        score += 20
    if transfer_method == TransferMethod.PHYSICAL_HANDOVER:
        score += 10
    if event_date - now < timedelta(hours=24):
        score += 10
    if same_event_listings > 3:
        score += 15
    return min(score, 100)


def _parse_enum(enum_cls: type, value: str | None, field: str, required: bool = False) -> Any:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required", code="MISSING_FIELD")
        return None
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise ValidationError(
            f"Invalid {field}: {value!r}",
            code="INVALID_FIELD",
            details={"field": field, "allowed": [m.value for m in enum_cls]},
        ) from exc


def _require_text(value: str | None, field: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field} is required", code="MISSING_FIELD")
    return value.strip()


class ListingService:
    """Creates, prices, searches and withdraws listings."""

    def __init__(
        self,
        session: AsyncSession,
        reputation: ReputationProvider,
        rates: FeeRates | None = None,
    ) -> None:
        self._session = session
        self._repo = ListingRepository(session)
        self._reputation = reputation
        self._rates = rates or FeeRates.from_settings()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_listing(
        self,
        seller: Actor,
        event_name: str,
        event_venue: str,
        event_date: datetime,
        ticket_type: str,
        original_price: Decimal | str,
        asking_price: Decimal | str,
        quantity: int = 1,
        event_city: str | None = None,
        ticket_source: str | None = None,
        transfer_method: str | None = None,
        description: str | None = None,
    ) -> Listing:
        """Validate and register a new listing for `seller`."""
        settings = get_settings()
        now = utcnow()

        event_name = _require_text(event_name, "event_name")
        event_venue = _require_text(event_venue, "event_venue")
        if event_date is None:
            raise ValidationError("event_date is required", code="MISSING_FIELD")
        if event_date.tzinfo is None:
            event_date = event_date.replace(tzinfo=UTC)
        ticket = _parse_enum(TicketType, ticket_type, "ticket_type", required=True)
        source = _parse_enum(TicketSource, ticket_source, "ticket_source")
        method = _parse_enum(TransferMethod, transfer_method, "transfer_method")
        quantity = int(quantity)
        if not 1 <= quantity <= settings.max_tickets_per_listing:
            raise ValidationError(
                f"quantity must be between 1 and {settings.max_tickets_per_listing}",
                code="INVALID_QUANTITY",
                details={"quantity": quantity, "max": settings.max_tickets_per_listing},
            )

        cutoff = now + timedelta(hours=settings.listing_cutoff_hours)
        if event_date <= now:
            raise ValidationError("Event has already taken place", code="EVENT_PASSED")
        if event_date <= cutoff:
            raise ValidationError(
                f"Listings close {settings.listing_cutoff_hours}h before the event starts",
                code="EVENT_TOO_SOON",
            )

        price = quote(original_price, asking_price, 1, self._rates).ensure_within_limit()

        standing = await self._reputation.get_standing(seller.id)
        self._check_ceiling(standing, price.asking_price)
        active = await self._repo.count_active_by_seller(seller.id)
        if active >= standing.max_active_listings:
            raise ListingQuotaExceededError(active, standing.max_active_listings)

        same_event = await self._repo.count_active_for_event(seller.id, event_name)
        fraud_score = heuristic_fraud_score(
            standing,
            price.original_price,
            price.asking_price,
            method,
            event_date,
            same_event,
            now,
        )

        listing = Listing(
            seller_id=seller.id,
            seller_email=seller.email,
            event_name=event_name,
            event_venue=event_venue,
            event_city=event_city.strip() if event_city else None,
            event_date=event_date,
            ticket_type=ticket.value,
            ticket_source=source.value if source else None,
            transfer_method=method.value if method else None,
            description=description,
            quantity=quantity,
            quantity_available=quantity,
            original_price=price.original_price,
            asking_price=price.asking_price,
            verification_level=VerificationLevel.UNVERIFIED.value,
            is_active=True,
            view_count=0,
            fraud_score=fraud_score,
            expires_at=event_date - timedelta(hours=settings.listing_cutoff_hours),
            price_changes=[],
        )
        listing = await self._repo.create(listing)
        await self._repo.record_price_change(listing, None, price.asking_price, seller.id)

        log = logger.warning if fraud_score >= SUSPICIOUS_SCORE else logger.info
        log(
            "listing.created",
            listing_id=str(listing.id),
            seller_id=seller.id,
            asking=str(price.asking_price),
            markup_pct=str(price.markup_pct),
            fraud_score=fraud_score,
        )
        return listing

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def search_listings(
        self, search: ListingSearch, now: datetime | None = None
    ) -> tuple[list[Listing], int]:
        """Search live listings; every listing returned counts one view."""
        page, limit = clamp_page(search.page, search.limit)
        search = replace(search, page=page, limit=limit, sort=SortOrder(search.sort))
        items, total = await self._repo.search(search, now or utcnow())
        await self._repo.increment_views([listing.id for listing in items])
        return items, total

    async def get_listing(self, listing_id: uuid.UUID) -> Listing:
        return await self._get_listing_or_raise(listing_id)

    # ------------------------------------------------------------------
    # Seller updates
    # ------------------------------------------------------------------

    async def update_price(
        self, seller: Actor, listing_id: uuid.UUID, asking_price: Decimal | str
    ) -> Listing:
        """Reprice a live listing, subject to the same checks as creation."""
        listing = await self._get_owned_listing(seller, listing_id)
        if not listing.is_active:
            raise ConflictError(
                "Withdrawn or expired listings cannot be repriced", code="LISTING_INACTIVE"
            )

        price = quote(listing.original_price, asking_price, 1, self._rates).ensure_within_limit()
        standing = await self._reputation.get_standing(seller.id)
        self._check_ceiling(standing, price.asking_price)

        old_price = listing.asking_price
        if to_money(old_price) == price.asking_price:
            return listing

        listing.asking_price = price.asking_price
        await self._repo.record_price_change(listing, old_price, price.asking_price, seller.id)
        await self._repo.save(listing)

        logger.info(
            "listing.repriced",
            listing_id=str(listing.id),
            old=str(old_price),
            new=str(price.asking_price),
        )
        return listing

    async def withdraw_listing(self, seller: Actor, listing_id: uuid.UUID) -> Listing:
        """Take a listing off sale. Orders already placed are unaffected."""
        listing = await self._get_owned_listing(seller, listing_id)
        if listing.is_active:
            listing.is_active = False
            await self._repo.save(listing)
            logger.info("listing.withdrawn", listing_id=str(listing.id), seller_id=seller.id)
        return listing

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_ceiling(standing: SellerStanding, asking_price: Decimal) -> None:
        if not standing.can_list:
            raise SellerSuspendedError(standing.seller_id)
        if asking_price > standing.max_ticket_value:
            raise SellerCeilingExceededError(
                asking_price=str(asking_price),
                max_ticket_value=str(to_money(standing.max_ticket_value)),
                tier=standing.tier.value,
            )

    async def _get_listing_or_raise(self, listing_id: uuid.UUID) -> Listing:
        listing = await self._repo.get_by_id(listing_id)
        if listing is None:
            raise ListingNotFoundError(str(listing_id))
        return listing

    async def _get_owned_listing(self, seller: Actor, listing_id: uuid.UUID) -> Listing:
        listing = await self._get_listing_or_raise(listing_id)
        if listing.seller_id != seller.id:
            raise NotAPartyError("listing", str(listing_id))
        return listing
