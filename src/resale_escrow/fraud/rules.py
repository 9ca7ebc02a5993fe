"""RuleBasedFraudOracle — in-process fraud scoring.

Nine independent checks, each adding a fixed weight to the risk score when
it fails. The score is capped at 100 and a listing passes below 50.

    check                 weight
    seller_history          20
    reference_reuse         40
    price_anomaly           15
    event_date              30
    proof_quality           25
    listing_velocity        20
    reference_format        10
    email_domain            10
    blacklist               50

A score between 30 and 49 passes but is marked `requires_manual_review` in
the check detail so reviewers look harder.

No external services required; everything the checks need arrives on the
FraudCheckRequest.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from resale_escrow.domain.enums import REQUIRED_PROOFS
from resale_escrow.domain.fraud_protocol import FraudCheckRequest, FraudCheckResult
from resale_escrow.logging_config import get_logger

logger = get_logger(__name__)

PASS_THRESHOLD = 50
REVIEW_THRESHOLD = 30
MAX_SCORE = 100

MIN_TRUST_SCORE = 60
MIN_ACCOUNT_AGE_DAYS = 7
MAX_MARKUP_PCT = Decimal("100")
MIN_PRICE_RATIO = Decimal("0.3")
MIN_HOURS_BEFORE_EVENT = 6
MAX_LISTINGS_PER_DAY = 10
ELEVATED_LISTINGS_PER_DAY = 5

REFERENCE_PATTERNS: dict[str, re.Pattern[str]] = {
    "resident_advisor": re.compile(r"^(RA-)?[A-Z0-9]{6,12}$", re.IGNORECASE),
    "dice": re.compile(r"^[A-Z0-9]{8,16}$", re.IGNORECASE),
    "eventbrite": re.compile(r"^[0-9]{10,14}$"),
    "skiddle": re.compile(r"^[A-Z0-9]{8,12}$", re.IGNORECASE),
    "ticketmaster": re.compile(r"^[0-9]{12,16}-[0-9]+$"),
}

DISPOSABLE_EMAIL_MARKERS = (
    "tempmail",
    "guerrillamail",
    "10minutemail",
    "mailinator",
    "throwaway",
    "fakeinbox",
    "temp-mail",
    "disposable",
)


@dataclass(frozen=True)
class CheckOutcome:
    name: str
    weight: int
    passed: bool
    details: str
    warning: str | None = None


class RuleBasedFraudOracle:
    """Scores a listing with the weighted rule set above."""

    async def score(self, request: FraudCheckRequest) -> FraudCheckResult:
        outcomes = [
            self._seller_history(request),
            self._reference_reuse(request),
            self._price_anomaly(request),
            self._event_date(request),
            self._proof_quality(request),
            self._listing_velocity(request),
            self._reference_format(request),
            self._email_domain(request),
            self._blacklist(request),
        ]

        risk_score = min(MAX_SCORE, sum(o.weight for o in outcomes if not o.passed))
        passed = risk_score < PASS_THRESHOLD
        # Failed checks always carry a warning; passing checks may add an advisory one
        warnings = [o.warning for o in outcomes if o.warning]

        checks = {
            o.name: {"passed": o.passed, "weight": o.weight, "details": o.details}
            for o in outcomes
        }
        checks["requires_manual_review"] = passed and risk_score >= REVIEW_THRESHOLD

        logger.info(
            "fraud.rules.scored",
            listing_id=request.listing_id,
            risk_score=risk_score,
            passed=passed,
            failed_checks=[o.name for o in outcomes if not o.passed],
        )
        return FraudCheckResult(
            passed=passed,
            risk_score=risk_score,
            warnings=warnings,
            checks=checks,
        )

    # ------------------------------------------------------------------
    # Individual checks
    # ------------------------------------------------------------------

    @staticmethod
    def _seller_history(request: FraudCheckRequest) -> CheckOutcome:
        details = (
            f"Trust: {request.seller_trust_score}, Sales: {request.seller_completed_sales}, "
            f"Account age: {request.seller_account_age_days}d"
        )
        if request.seller_account_age_days < MIN_ACCOUNT_AGE_DAYS:
            return CheckOutcome(
                "seller_history", 20, False, details, "Account less than 7 days old"
            )
        if request.seller_trust_score < MIN_TRUST_SCORE:
            return CheckOutcome(
                "seller_history", 20, False, details, "Low trust score or dispute history"
            )
        return CheckOutcome("seller_history", 20, True, details)

    @staticmethod
    def _reference_reuse(request: FraudCheckRequest) -> CheckOutcome:
        if request.reference_reuse_count > 0:
            return CheckOutcome(
                "reference_reuse",
                40,
                False,
                f"Order reference used in {request.reference_reuse_count} other listing(s)",
                "This order reference has been used before - possible duplicate",
            )
        return CheckOutcome("reference_reuse", 40, True, "No duplicates found")

    @staticmethod
    def _price_anomaly(request: FraudCheckRequest) -> CheckOutcome:
        original, asking = request.original_price, request.asking_price
        markup = (asking - original) / original * 100
        if markup > MAX_MARKUP_PCT:
            return CheckOutcome(
                "price_anomaly",
                15,
                False,
                f"{markup:.0f}% markup is excessive",
                "Price markup exceeds 100% - potential scalping",
            )
        if asking < original * MIN_PRICE_RATIO:
            return CheckOutcome(
                "price_anomaly",
                15,
                False,
                "Price suspiciously low",
                "Price is less than 30% of original - possible scam",
            )
        return CheckOutcome("price_anomaly", 15, True, f"{markup:.0f}% markup")

    @staticmethod
    def _event_date(request: FraudCheckRequest) -> CheckOutcome:
        until = request.event_date - request.now
        if until < timedelta(0):
            return CheckOutcome(
                "event_date",
                30,
                False,
                "Event has already passed",
                "Cannot sell tickets for past events",
            )
        if until < timedelta(hours=MIN_HOURS_BEFORE_EVENT):
            return CheckOutcome(
                "event_date",
                30,
                False,
                "Event is less than 6 hours away",
                "Too close to event time for safe transfer",
            )
        return CheckOutcome("event_date", 30, True, f"Event in {until.days} days")

    @staticmethod
    def _proof_quality(request: FraudCheckRequest) -> CheckOutcome:
        if not request.proof_types:
            return CheckOutcome(
                "proof_quality", 25, False, "No proofs uploaded", "No proof documents provided"
            )
        missing = sorted(REQUIRED_PROOFS - set(request.proof_types))
        if missing:
            return CheckOutcome(
                "proof_quality",
                25,
                False,
                f"Missing required proofs: {', '.join(missing)}",
                "Confirmation email and ticket screenshot are required",
            )
        return CheckOutcome(
            "proof_quality", 25, True, f"{len(request.proof_types)} proof documents uploaded"
        )

    @staticmethod
    def _listing_velocity(request: FraudCheckRequest) -> CheckOutcome:
        count = request.listings_last_24h
        if count > MAX_LISTINGS_PER_DAY:
            return CheckOutcome(
                "listing_velocity",
                20,
                False,
                f"{count} listings in last 24h",
                "Unusually high listing volume - potential bulk fraud",
            )
        if count > ELEVATED_LISTINGS_PER_DAY:
            return CheckOutcome(
                "listing_velocity",
                20,
                True,
                f"{count} listings in last 24h (elevated)",
                "Higher than average listing activity",
            )
        return CheckOutcome("listing_velocity", 20, True, f"{count} listings in last 24h")

    @staticmethod
    def _reference_format(request: FraudCheckRequest) -> CheckOutcome:
        reference = request.details.order_reference
        if not reference:
            return CheckOutcome(
                "reference_format",
                10,
                False,
                "No order reference provided",
                "Order reference is required for verification",
            )
        pattern = REFERENCE_PATTERNS.get(request.details.platform)
        if pattern is not None and not pattern.match(reference):
            return CheckOutcome(
                "reference_format",
                10,
                False,
                "Order reference format doesn't match platform",
                "Order reference format is suspicious for this platform",
            )
        return CheckOutcome("reference_format", 10, True, "Order reference format valid")

    @staticmethod
    def _email_domain(request: FraudCheckRequest) -> CheckOutcome:
        email = request.details.purchaser_email
        if not email:
            return CheckOutcome(
                "email_domain", 10, False, "No email provided", "Purchaser email is required"
            )
        domain = email.rpartition("@")[2].lower()
        if any(marker in domain for marker in DISPOSABLE_EMAIL_MARKERS):
            return CheckOutcome(
                "email_domain",
                10,
                False,
                "Disposable email detected",
                "Temporary/disposable email addresses are not allowed",
            )
        return CheckOutcome("email_domain", 10, True, "Email domain valid")

    @staticmethod
    def _blacklist(request: FraudCheckRequest) -> CheckOutcome:
        reference = request.details.order_reference.lower()
        email = request.details.purchaser_email.lower()
        for pattern in request.blacklist:
            if pattern and (pattern in reference or pattern in email):
                return CheckOutcome(
                    "blacklist",
                    50,
                    False,
                    "Matches known fraud pattern",
                    "This listing matches a known fraudulent pattern",
                )
        return CheckOutcome("blacklist", 50, True, "No known fraud patterns matched")
