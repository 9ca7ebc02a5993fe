"""Tests for the listing verification pipeline."""

from __future__ import annotations

import pytest

from resale_escrow.domain.enums import VerificationLevel, VerificationStatus
from resale_escrow.domain.exceptions import (
    ConflictError,
    FraudOracleUnavailableError,
    NotAPartyError,
    ReviewerOnlyError,
    ValidationError,
)
from resale_escrow.fraud import MockFraudOracle
from resale_escrow.fraud.rules import RuleBasedFraudOracle
from resale_escrow.infrastructure.database.repositories import ListingRepository
from resale_escrow.services.verification_service import VerificationService

DETAILS = {
    "order_reference": "DICE12345678",
    "purchaser_email": "seller@example.com",
    "platform": "dice",
}


@pytest.fixture
def oracle() -> RuleBasedFraudOracle:
    return RuleBasedFraudOracle()


@pytest.fixture
def prepare(tx, seller, reputation, oracle, make_listing):
    """Create a listing and walk it up to (optionally through) submission."""

    async def _prepare(
        proofs=("confirmation_email", "ticket_screenshot"),
        check=True,
        submit=False,
        fraud_oracle=None,
    ):
        listing = await make_listing()
        async with tx() as session:
            svc = VerificationService(session, fraud_oracle or oracle, reputation)
            request = None
            for proof_type in proofs:
                request = await svc.upload_proof(
                    seller, listing.id, proof_type, f"https://files.example.com/{proof_type}.png"
                )
            if check:
                request, _ = await svc.run_fraud_check(seller, listing.id, DETAILS)
            if submit:
                request = await svc.submit_for_review(seller, listing.id)
        return listing, request

    return _prepare


class TestIntake:
    @pytest.mark.asyncio
    async def test_upload_marks_listing_pending(
        self, tx, seller, reputation, oracle, make_listing
    ) -> None:
        listing = await make_listing()
        async with tx() as session:
            svc = VerificationService(session, oracle, reputation)
            request = await svc.upload_proof(
                seller, listing.id, "qr_code", "https://files.example.com/qr.png"
            )
            assert set(request.proofs) == {"qr_code"}
            stored = await ListingRepository(session).get_by_id(listing.id)
            assert stored.verification_level == VerificationLevel.PENDING

    @pytest.mark.asyncio
    async def test_unknown_proof_type(self, tx, seller, reputation, oracle, make_listing) -> None:
        listing = await make_listing()
        with pytest.raises(ValidationError) as exc_info:
            async with tx() as session:
                await VerificationService(session, oracle, reputation).upload_proof(
                    seller, listing.id, "selfie", "https://files.example.com/me.png"
                )
        assert exc_info.value.code == "INVALID_PROOF_TYPE"

    @pytest.mark.asyncio
    async def test_only_owner_uploads(
        self, tx, stranger, reputation, oracle, make_listing
    ) -> None:
        listing = await make_listing()
        with pytest.raises(NotAPartyError):
            async with tx() as session:
                await VerificationService(session, oracle, reputation).upload_proof(
                    stranger, listing.id, "qr_code", "https://files.example.com/qr.png"
                )

    @pytest.mark.asyncio
    async def test_rules_oracle_passes_clean_listing(self, prepare) -> None:
        _, request = await prepare()
        assert request.fraud_check_result["passed"] is True
        assert request.fraud_check_result["risk_score"] == 0
        assert request.order_reference == "DICE12345678"

    @pytest.mark.asyncio
    async def test_reused_reference_adds_risk(self, prepare) -> None:
        await prepare()
        _, second = await prepare()
        assert second.fraud_check_result["risk_score"] == 40
        assert second.fraud_check_result["checks"]["requires_manual_review"] is True

    @pytest.mark.asyncio
    async def test_oracle_outage_writes_nothing(
        self, tx, seller, reputation, make_listing
    ) -> None:
        listing = await make_listing()
        with pytest.raises(FraudOracleUnavailableError):
            async with tx() as session:
                await VerificationService(
                    session, MockFraudOracle(unavailable=True), reputation
                ).run_fraud_check(seller, listing.id, DETAILS)


class TestSubmission:
    @pytest.mark.asyncio
    async def test_submit_queues_request(self, prepare) -> None:
        _, request = await prepare(submit=True)
        assert request.submitted_at is not None
        assert request.status == VerificationStatus.PENDING

    @pytest.mark.asyncio
    async def test_requires_both_proofs(self, prepare) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await prepare(proofs=("confirmation_email",), submit=True)
        assert exc_info.value.code == "MISSING_PROOFS"
        assert exc_info.value.details["missing"] == ["ticket_screenshot"]

    @pytest.mark.asyncio
    async def test_requires_fraud_check(self, prepare) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await prepare(check=False, submit=True)
        assert exc_info.value.code == "MISSING_CONFIRMATION_DETAILS"

    @pytest.mark.asyncio
    async def test_failed_check_blocks(self, prepare) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await prepare(submit=True, fraud_oracle=MockFraudOracle(passed=False))
        assert exc_info.value.code == "FRAUD_CHECK_FAILED"
        assert exc_info.value.details["risk_score"] == 80

    @pytest.mark.asyncio
    async def test_no_proofs(self, tx, seller, reputation, oracle, make_listing) -> None:
        listing = await make_listing()
        with pytest.raises(ValidationError) as exc_info:
            async with tx() as session:
                await VerificationService(session, oracle, reputation).submit_for_review(
                    seller, listing.id
                )
        assert exc_info.value.code == "NO_PROOFS"

    @pytest.mark.asyncio
    async def test_submitted_request_is_frozen(
        self, tx, seller, reputation, oracle, prepare
    ) -> None:
        listing, _ = await prepare(submit=True)
        with pytest.raises(ConflictError) as exc_info:
            async with tx() as session:
                await VerificationService(session, oracle, reputation).upload_proof(
                    seller, listing.id, "qr_code", "https://files.example.com/qr.png"
                )
        assert exc_info.value.code == "VERIFICATION_SUBMITTED"


class TestReview:
    @pytest.mark.asyncio
    async def test_approve_sets_listing_level(
        self, tx, reviewer, reputation, oracle, prepare
    ) -> None:
        listing, request = await prepare(submit=True)
        async with tx() as session:
            svc = VerificationService(session, oracle, reputation)
            approved = await svc.review(reviewer, request.id, "approve", level="verified")
            assert approved.status == VerificationStatus.APPROVED
            stored = await ListingRepository(session).get_by_id(listing.id)
            assert stored.verification_level == VerificationLevel.VERIFIED

    @pytest.mark.asyncio
    async def test_approve_needs_real_level(
        self, tx, reviewer, reputation, oracle, prepare
    ) -> None:
        _, request = await prepare(submit=True)
        with pytest.raises(ValidationError) as exc_info:
            async with tx() as session:
                await VerificationService(session, oracle, reputation).review(
                    reviewer, request.id, "approve", level="pending"
                )
        assert exc_info.value.code == "INVALID_VERIFICATION_LEVEL"

    @pytest.mark.asyncio
    async def test_reject_resets_listing(
        self, tx, reviewer, reputation, oracle, prepare
    ) -> None:
        listing, request = await prepare(submit=True)
        async with tx() as session:
            svc = VerificationService(session, oracle, reputation)
            rejected = await svc.review(
                reviewer, request.id, "reject", reason="mismatched_info", notes="Name differs"
            )
            assert rejected.reject_reason == "mismatched_info"
            stored = await ListingRepository(session).get_by_id(listing.id)
            assert stored.verification_level == VerificationLevel.UNVERIFIED

    @pytest.mark.asyncio
    async def test_flag_then_approve(self, tx, reviewer, reputation, oracle, prepare) -> None:
        _, request = await prepare(submit=True)
        async with tx() as session:
            svc = VerificationService(session, oracle, reputation)
            flagged = await svc.review(reviewer, request.id, "flag", reason="Blurry screenshot")
            assert flagged.status == VerificationStatus.FLAGGED
            items, total = await svc.verification_queue(reviewer, status="flagged")
            assert total == 1
            assert items[0].id == request.id
            approved = await svc.review(reviewer, request.id, "approve", level="basic")
            assert approved.status == VerificationStatus.APPROVED

    @pytest.mark.asyncio
    async def test_unsubmitted_cannot_be_reviewed(
        self, tx, reviewer, reputation, oracle, prepare
    ) -> None:
        _, request = await prepare()
        with pytest.raises(ConflictError) as exc_info:
            async with tx() as session:
                await VerificationService(session, oracle, reputation).review(
                    reviewer, request.id, "approve", level="basic"
                )
        assert exc_info.value.code == "VERIFICATION_NOT_SUBMITTED"

    @pytest.mark.asyncio
    async def test_sellers_cannot_review(
        self, tx, seller, reputation, oracle, prepare
    ) -> None:
        _, request = await prepare(submit=True)
        with pytest.raises(ReviewerOnlyError):
            async with tx() as session:
                await VerificationService(session, oracle, reputation).review(
                    seller, request.id, "approve", level="basic"
                )
