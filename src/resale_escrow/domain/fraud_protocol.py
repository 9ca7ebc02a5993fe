"""Fraud Oracle Protocol.

Defines the interface every fraud-scoring oracle must implement.
This is a Protocol (structural subtyping) so concrete oracles don't need
to inherit from a base class; they just need to match the shape.

The domain layer has ZERO imports from HTTP clients or any external service.
Swapping the scoring implementation never touches the verification state
machine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class ConfirmationDetails:
    """What the seller copied from their primary-platform confirmation."""

    order_reference: str
    purchaser_email: str
    platform: str
    transfer_code: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConfirmationDetails:
        return cls(
            order_reference=str(data.get("order_reference", "")),
            purchaser_email=str(data.get("purchaser_email", "")),
            platform=str(data.get("platform", "")),
            transfer_code=data.get("transfer_code"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_reference": self.order_reference,
            "purchaser_email": self.purchaser_email,
            "platform": self.platform,
            "transfer_code": self.transfer_code,
        }


@dataclass(frozen=True)
class FraudCheckRequest:
    """Input to a fraud oracle.

    The verification service assembles everything the oracle needs; oracles
    never read the database themselves.

    Attributes:
        listing_id: UUID of the listing under review.
        seller_id: Seller's identity reference.
        original_price: Face value per ticket.
        asking_price: Seller's price per ticket.
        event_date: Event start (tz-aware UTC).
        details: Confirmation details supplied by the seller.
        proof_types: Proof types uploaded so far in this cycle.
        seller_trust_score: From the reputation service (0-100).
        seller_completed_sales: From the reputation service.
        seller_account_age_days: From the reputation service.
        reference_reuse_count: Other listings already using this order reference.
        listings_last_24h: Listings the seller created in the last 24 hours.
        blacklist: Lowercase patterns that fail a listing outright.
        now: Evaluation time, injected for deterministic checks.
    """

    listing_id: str
    seller_id: str
    original_price: Decimal
    asking_price: Decimal
    event_date: datetime
    details: ConfirmationDetails
    proof_types: frozenset[str]
    seller_trust_score: int
    seller_completed_sales: int
    seller_account_age_days: int
    reference_reuse_count: int
    listings_last_24h: int
    now: datetime
    blacklist: tuple[str, ...] = ()


@dataclass(frozen=True)
class FraudCheckResult:
    """Output from a fraud oracle.

    Attributes:
        passed: Whether the listing may be queued for human review.
        risk_score: 0 (clean) to 100 (certain fraud).
        warnings: Human-readable reasons, one per failed check.
        checks: Per-check detail keyed by check name.
    """

    passed: bool
    risk_score: int
    warnings: list[str] = field(default_factory=list)
    checks: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for storage in the fraud_check_result JSON column."""
        return {
            "passed": self.passed,
            "risk_score": self.risk_score,
            "warnings": list(self.warnings),
            "checks": dict(self.checks),
        }


@runtime_checkable
class FraudOracle(Protocol):
    """Protocol that all fraud oracle implementations must satisfy.

    Concrete implementations:
        - fraud/rules.py        (in-process rule scorer)
        - fraud/http_oracle.py  (remote scoring service over HTTP)
        - fraud/__init__.py     (MockFraudOracle for tests)
    """

    async def score(self, request: FraudCheckRequest) -> FraudCheckResult:
        """Score a listing for fraud risk.

        Args:
            request: Everything known about the listing and its seller.

        Returns:
            A FraudCheckResult with passed, risk_score and warnings.

        Raises:
            FraudOracleUnavailableError: If the oracle cannot be reached.
        """
        ...
