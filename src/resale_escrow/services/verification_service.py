"""Verification Service — proof intake, fraud screening and human review.

Pipeline for one listing:
    1. upload_proof       seller attaches typed proof URLs (listing -> pending)
    2. run_fraud_check    confirmation details validated, then scored by the
                          configured FraudOracle
    3. submit_for_review  gate: required proofs, details, passing check
    4. review             reviewer approves with a level, rejects with a
                          reason code, or flags for a second look

A passing fraud check only ever queues a request; approval is always a
reviewer decision. A rejected request is terminal and the seller starts a
new cycle by uploading again.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any

from resale_escrow.config import get_settings
from resale_escrow.domain.enums import (
    APPROVABLE_LEVELS,
    REQUIRED_PROOFS,
    NotificationKind,
    ProofType,
    RejectionReason,
    ReviewAction,
    VerificationLevel,
    VerificationStatus,
)
from resale_escrow.domain.exceptions import (
    ConflictError,
    ListingNotFoundError,
    NotAPartyError,
    ValidationError,
    VerificationRequestNotFoundError,
)
from resale_escrow.domain.fraud_protocol import ConfirmationDetails, FraudCheckRequest
from resale_escrow.domain.state_machine import VerificationStateMachine
from resale_escrow.fraud.details_schema import validate_confirmation_details
from resale_escrow.infrastructure.database.orm_models import VerificationRequest
from resale_escrow.infrastructure.database.repositories import (
    ListingRepository,
    VerificationRepository,
)
from resale_escrow.logging_config import get_logger
from resale_escrow.services.guards import (
    check_urls,
    clamp_page,
    fire_transition,
    require_reviewer,
    utcnow,
)
from resale_escrow.services.notification_service import NotificationService

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from resale_escrow.domain.actor import Actor
    from resale_escrow.domain.fraud_protocol import FraudCheckResult, FraudOracle
    from resale_escrow.domain.seller import ReputationProvider
    from resale_escrow.infrastructure.database.orm_models import Listing

logger = get_logger(__name__)


class VerificationService:
    """Runs the verification pipeline for listings."""

    def __init__(
        self,
        session: AsyncSession,
        oracle: FraudOracle,
        reputation: ReputationProvider,
    ) -> None:
        self._session = session
        self._oracle = oracle
        self._reputation = reputation
        self._listing_repo = ListingRepository(session)
        self._request_repo = VerificationRepository(session)
        self._notifications = NotificationService(session)

    # ------------------------------------------------------------------
    # Seller intake
    # ------------------------------------------------------------------

    async def upload_proof(
        self,
        seller: Actor,
        listing_id: uuid.UUID,
        proof_type: ProofType | str,
        url: str,
    ) -> VerificationRequest:
        """Attach a proof to the listing's open request, opening one if needed.

        A second upload of the same type replaces the first while the
        request is still a draft.
        """
        listing = await self._get_owned_listing(seller, listing_id)
        try:
            proof_type = ProofType(proof_type)
        except ValueError as exc:
            raise ValidationError(
                f"Unknown proof type: {proof_type!r}",
                code="INVALID_PROOF_TYPE",
                details={"allowed": [p.value for p in ProofType]},
            ) from exc
        (url,) = check_urls([url], "proof", max_items=1)

        request = await self._get_draft_or_open(listing)
        now = utcnow()
        # JSON columns are reassigned so the change is tracked
        request.proofs = {
            **(request.proofs or {}),
            proof_type.value: {"url": url, "uploaded_at": now.isoformat()},
        }
        if listing.verification_level == VerificationLevel.UNVERIFIED:
            listing.verification_level = VerificationLevel.PENDING.value
        await self._request_repo.save(request)
        await self._listing_repo.save(listing)

        logger.info(
            "verification.proof_uploaded",
            listing_id=str(listing.id),
            request_id=str(request.id),
            proof_type=proof_type.value,
        )
        return request

    async def run_fraud_check(
        self,
        seller: Actor,
        listing_id: uuid.UUID,
        confirmation_details: dict[str, Any],
    ) -> tuple[VerificationRequest, FraudCheckResult]:
        """Score the listing with the fraud oracle and store the result.

        The oracle is called before anything is written, so an unavailable
        oracle leaves the request untouched.
        """
        listing = await self._get_owned_listing(seller, listing_id)
        details = ConfirmationDetails.from_dict(
            validate_confirmation_details(confirmation_details)
        )
        existing = await self._request_repo.get_open_for_listing(listing.id)
        if existing is not None and existing.submitted_at is not None:
            raise ConflictError(
                "Request already submitted for review", code="VERIFICATION_SUBMITTED"
            )

        settings = get_settings()
        now = utcnow()
        standing = await self._reputation.get_standing(seller.id)
        check = FraudCheckRequest(
            listing_id=str(listing.id),
            seller_id=seller.id,
            original_price=listing.original_price,
            asking_price=listing.asking_price,
            event_date=listing.event_date,
            details=details,
            proof_types=frozenset((existing.proofs or {}).keys() if existing else ()),
            seller_trust_score=standing.trust_score,
            seller_completed_sales=standing.completed_sales,
            seller_account_age_days=standing.account_age_days,
            reference_reuse_count=await self._request_repo.count_reference_reuse(
                details.order_reference, listing.id
            ),
            listings_last_24h=await self._listing_repo.count_created_since(
                seller.id, now - timedelta(hours=24)
            ),
            now=now,
            blacklist=tuple(settings.fraud_blacklist),
        )
        result = await self._oracle.score(check)

        request = existing or await self._get_draft_or_open(listing)
        request.confirmation_details = details.to_dict()
        request.order_reference = details.order_reference
        request.fraud_check_result = result.to_dict()
        await self._request_repo.save(request)

        log = logger.info if result.passed else logger.warning
        log(
            "verification.fraud_checked",
            listing_id=str(listing.id),
            risk_score=result.risk_score,
            passed=result.passed,
        )
        return request, result

    async def submit_for_review(
        self, seller: Actor, listing_id: uuid.UUID
    ) -> VerificationRequest:
        """Queue the open request for a reviewer once every gate is met."""
        listing = await self._get_owned_listing(seller, listing_id)
        request = await self._request_repo.get_open_for_listing(listing.id)
        if request is None:
            raise ValidationError("Upload proofs before submitting", code="NO_PROOFS")
        if request.submitted_at is not None:
            raise ConflictError(
                "Request already submitted for review", code="VERIFICATION_SUBMITTED"
            )

        missing = sorted(REQUIRED_PROOFS - set((request.proofs or {}).keys()))
        if missing:
            raise ValidationError(
                f"Missing required proofs: {', '.join(missing)}",
                code="MISSING_PROOFS",
                details={"missing": missing},
            )
        if not request.confirmation_details:
            raise ValidationError(
                "Confirmation details are required", code="MISSING_CONFIRMATION_DETAILS"
            )
        result = request.fraud_check_result
        if not result:
            raise ValidationError("Run the fraud check first", code="FRAUD_CHECK_REQUIRED")
        if not result.get("passed"):
            raise ValidationError(
                "The fraud check did not pass",
                code="FRAUD_CHECK_FAILED",
                details={
                    "risk_score": result.get("risk_score"),
                    "warnings": result.get("warnings", []),
                },
            )

        request.submitted_at = utcnow()
        await self._request_repo.save(request)

        logger.info(
            "verification.submitted",
            listing_id=str(listing.id),
            request_id=str(request.id),
            risk_score=result.get("risk_score"),
        )
        return request

    # ------------------------------------------------------------------
    # Reviewer
    # ------------------------------------------------------------------

    async def review(
        self,
        reviewer: Actor,
        request_id: uuid.UUID,
        action: ReviewAction | str,
        level: VerificationLevel | str | None = None,
        reason: str | None = None,
        notes: str | None = None,
    ) -> VerificationRequest:
        """Approve, reject or flag a submitted request."""
        require_reviewer(reviewer, "review verification requests")
        action = ReviewAction(action)
        request = await self._request_repo.get_by_id(request_id)
        if request is None:
            raise VerificationRequestNotFoundError(str(request_id))
        if request.submitted_at is None:
            raise ConflictError(
                "Request has not been submitted for review", code="VERIFICATION_NOT_SUBMITTED"
            )
        listing = request.listing
        old_status = request.status

        if action is ReviewAction.APPROVE:
            granted = self._parse_level(level)
            request.status = fire_transition(
                VerificationStateMachine, "verification request", old_status, "approve"
            )
            request.verification_level = granted.value
            listing.verification_level = granted.value
            await self._notifications.notify(
                listing.seller_id,
                NotificationKind.LISTING_APPROVED,
                "Listing verified",
                f"Your listing for {listing.event_name} is now {granted.value}.",
                link=f"/listings/{listing.id}",
            )
        elif action is ReviewAction.REJECT:
            code = self._parse_reason(reason)
            request.status = fire_transition(
                VerificationStateMachine, "verification request", old_status, "reject"
            )
            request.reject_reason = code.value
            listing.verification_level = VerificationLevel.UNVERIFIED.value
            await self._notifications.notify(
                listing.seller_id,
                NotificationKind.LISTING_REJECTED,
                "Verification rejected",
                f"Reason: {code.value}. Upload new proofs to try again.",
                link=f"/listings/{listing.id}",
            )
        else:
            if not reason or not reason.strip():
                raise ValidationError("A flag reason is required", code="MISSING_REASON")
            request.status = fire_transition(
                VerificationStateMachine, "verification request", old_status, "flag"
            )
            request.flag_reason = reason.strip()

        request.review_notes = notes
        request.reviewed_by = reviewer.id
        request.reviewed_at = utcnow()
        await self._request_repo.save(request)
        await self._listing_repo.save(listing)

        logger.info(
            "verification.reviewed",
            request_id=str(request.id),
            listing_id=str(listing.id),
            action=action.value,
            old_status=old_status,
            new_status=request.status,
            reviewer=reviewer.id,
        )
        return request

    async def verification_queue(
        self,
        reviewer: Actor,
        status: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[VerificationRequest], int]:
        require_reviewer(reviewer, "view the verification queue")
        page, limit = clamp_page(page, limit)
        if status is not None:
            status = VerificationStatus(status).value
        return await self._request_repo.queue(status, page, limit)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_owned_listing(self, seller: Actor, listing_id: uuid.UUID) -> Listing:
        listing = await self._listing_repo.get_by_id(listing_id)
        if listing is None:
            raise ListingNotFoundError(str(listing_id))
        if listing.seller_id != seller.id:
            raise NotAPartyError("listing", str(listing_id))
        return listing

    async def _get_draft_or_open(self, listing: Listing) -> VerificationRequest:
        """The listing's open request if it is still a draft, else a new one."""
        request = await self._request_repo.get_open_for_listing(listing.id)
        if request is not None:
            if request.submitted_at is not None:
                raise ConflictError(
                    "Request already submitted for review", code="VERIFICATION_SUBMITTED"
                )
            return request
        return await self._request_repo.create(
            VerificationRequest(
                listing=listing,
                seller_id=listing.seller_id,
                proofs={},
                status=VerificationStatus.PENDING.value,
            )
        )

    @staticmethod
    def _parse_level(level: VerificationLevel | str | None) -> VerificationLevel:
        try:
            granted = VerificationLevel(level) if level is not None else None
        except ValueError:
            granted = None
        if granted not in APPROVABLE_LEVELS:
            raise ValidationError(
                "Approval requires a level of basic, verified or premium",
                code="INVALID_VERIFICATION_LEVEL",
                details={"allowed": sorted(lvl.value for lvl in APPROVABLE_LEVELS)},
            )
        return granted

    @staticmethod
    def _parse_reason(reason: str | None) -> RejectionReason:
        try:
            return RejectionReason(reason)
        except ValueError as exc:
            raise ValidationError(
                f"Invalid rejection reason: {reason!r}",
                code="INVALID_REJECTION_REASON",
                details={"allowed": [r.value for r in RejectionReason]},
            ) from exc
