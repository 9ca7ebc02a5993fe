"""Seller standing, as reported by the external reputation service.

Trust scores and tier ceilings are computed elsewhere; this core only reads
them. SellerStanding is the snapshot the listing and order services check
prices and quotas against.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol, runtime_checkable

from resale_escrow.domain.enums import SellerTier


@dataclass(frozen=True)
class SellerStanding:
    seller_id: str
    tier: SellerTier
    can_list: bool
    max_active_listings: int
    max_ticket_value: Decimal
    trust_score: int
    completed_sales: int = 0
    account_age_days: int = 0


@runtime_checkable
class ReputationProvider(Protocol):
    """Read-only view of the reputation service."""

    async def get_standing(self, seller_id: str) -> SellerStanding:
        """Return the seller's current standing.

        Raises:
            ReputationServiceError: If the service cannot answer.
        """
        ...
