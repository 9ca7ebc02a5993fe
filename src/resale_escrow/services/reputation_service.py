"""Reputation Service — seller standing lookups.

Trust scores are owned by an external reputation service; this module only
reads them. StaticReputationProvider answers from a per-tier table plus
per-seller overrides and stands in for that service in development, the
simulation and tests. Unknown sellers get the unverified defaults.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

from resale_escrow.config import get_settings
from resale_escrow.domain.enums import SellerTier
from resale_escrow.domain.seller import SellerStanding
from resale_escrow.logging_config import get_logger

logger = get_logger(__name__)

# tier -> (max_active_listings, max_ticket_value, trust_score)
TIER_LIMITS: dict[SellerTier, tuple[int, Decimal, int]] = {
    SellerTier.VERIFIED: (10, Decimal("500.00"), 70),
    SellerTier.TRUSTED: (25, Decimal("1000.00"), 85),
    SellerTier.PREMIUM: (100, Decimal("5000.00"), 95),
}


def standing_for_tier(
    seller_id: str,
    tier: SellerTier,
    completed_sales: int = 0,
    account_age_days: int = 0,
    can_list: bool = True,
) -> SellerStanding:
    """Build the standing a seller of `tier` gets by default."""
    if tier is SellerTier.UNVERIFIED:
        settings = get_settings()
        max_active, max_value, trust = (
            settings.default_max_active_listings,
            settings.default_max_ticket_value,
            settings.default_trust_score,
        )
    else:
        max_active, max_value, trust = TIER_LIMITS[tier]
    return SellerStanding(
        seller_id=seller_id,
        tier=tier,
        can_list=can_list,
        max_active_listings=max_active,
        max_ticket_value=max_value,
        trust_score=trust,
        completed_sales=completed_sales,
        account_age_days=account_age_days,
    )


class StaticReputationProvider:
    """In-process ReputationProvider backed by a dictionary."""

    def __init__(
        self,
        standings: dict[str, SellerStanding] | None = None,
        suspended: set[str] | None = None,
    ) -> None:
        self._standings = dict(standings or {})
        self._suspended = set(suspended or ())

    def set_standing(self, standing: SellerStanding) -> None:
        self._standings[standing.seller_id] = standing

    def suspend(self, seller_id: str) -> None:
        self._suspended.add(seller_id)

    async def get_standing(self, seller_id: str) -> SellerStanding:
        standing = self._standings.get(seller_id) or standing_for_tier(
            seller_id, SellerTier.UNVERIFIED
        )
        if seller_id in self._suspended:
            standing = replace(standing, can_list=False)
        logger.debug("reputation.standing", seller_id=seller_id, tier=standing.tier.value)
        return standing
