"""Tests for the dispute resolution engine."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio

from resale_escrow.config import get_settings
from resale_escrow.domain.actor import Actor
from resale_escrow.domain.enums import DisputeStatus, OrderStatus, PayoutStatus
from resale_escrow.domain.exceptions import (
    InvalidStateTransitionError,
    NotAPartyError,
    ResolutionAmountError,
    ReviewerOnlyError,
    StatementAlreadySubmittedError,
    ValidationError,
    WrongPartyError,
)
from resale_escrow.services.dispute_service import MAX_EVIDENCE_PER_PARTY, DisputeService
from resale_escrow.services.guards import utcnow
from resale_escrow.services.order_service import OrderService
from resale_escrow.services.transfer_service import TransferService

EVIDENCE = ["https://files.example.com/evidence/1.png"]


@pytest_asyncio.fixture
async def disputed(tx, buyer, payments, make_order):
    """An order (Scenario A prices) whose buyer reported the transfer."""
    order = await make_order(proof=True)
    async with tx() as session:
        _, dispute = await TransferService(session, payments).report_issue(
            buyer, order.id, "The ticket never arrived in my Dice app"
        )
    return order, dispute


class TestPartyActions:
    @pytest.mark.asyncio
    async def test_seller_response_starts_review(self, tx, seller, payments, disputed) -> None:
        _, dispute = disputed
        async with tx() as session:
            updated = await DisputeService(session, payments).respond(
                seller, dispute.id, "Transferred on the 3rd, see screenshot", evidence=EVIDENCE
            )
            assert updated.status == DisputeStatus.UNDER_REVIEW
            assert updated.awaiting_party is None
            assert updated.response_deadline is None
            assert updated.seller_evidence == EVIDENCE

    @pytest.mark.asyncio
    async def test_one_statement_per_party(self, tx, buyer, payments, disputed) -> None:
        _, dispute = disputed
        with pytest.raises(StatementAlreadySubmittedError):
            async with tx() as session:
                await DisputeService(session, payments).respond(buyer, dispute.id, "Again")

    @pytest.mark.asyncio
    async def test_stranger_cannot_respond(self, tx, stranger, payments, disputed) -> None:
        _, dispute = disputed
        with pytest.raises(NotAPartyError):
            async with tx() as session:
                await DisputeService(session, payments).respond(stranger, dispute.id, "Hi")

    @pytest.mark.asyncio
    async def test_evidence_appends(self, tx, buyer, payments, disputed) -> None:
        _, dispute = disputed
        async with tx() as session:
            svc = DisputeService(session, payments)
            await svc.add_evidence(buyer, dispute.id, EVIDENCE)
            updated = await svc.add_evidence(
                buyer, dispute.id, ["https://files.example.com/evidence/2.png"]
            )
            assert len(updated.buyer_evidence) == 2
            # the buyer opened the case, so the seller is still awaited
            assert updated.status == DisputeStatus.OPEN

    @pytest.mark.asyncio
    async def test_evidence_limit(self, tx, buyer, payments, disputed) -> None:
        _, dispute = disputed
        urls = [f"https://files.example.com/e/{i}.png" for i in range(MAX_EVIDENCE_PER_PARTY + 1)]
        with pytest.raises(ValidationError):
            async with tx() as session:
                await DisputeService(session, payments).add_evidence(buyer, dispute.id, urls)

    @pytest.mark.asyncio
    async def test_opener_withdraws(self, tx, buyer, payments, disputed) -> None:
        order, dispute = disputed
        async with tx() as session:
            withdrawn = await DisputeService(session, payments).withdraw(buyer, dispute.id)
            assert withdrawn.status == DisputeStatus.CLOSED

        async with tx() as session:
            done = await OrderService(session, payments).get_order_or_raise(order.id)
            assert done.status == OrderStatus.COMPLETED
            assert done.payout_status == PayoutStatus.RELEASED
            assert done.payout_amount == Decimal("25.20")

    @pytest.mark.asyncio
    async def test_only_opener_withdraws(self, tx, seller, payments, disputed) -> None:
        _, dispute = disputed
        with pytest.raises(WrongPartyError):
            async with tx() as session:
                await DisputeService(session, payments).withdraw(seller, dispute.id)


class TestReviewerActions:
    @pytest.mark.asyncio
    async def test_parties_cannot_resolve(self, tx, buyer, payments, disputed) -> None:
        _, dispute = disputed
        with pytest.raises(ReviewerOnlyError):
            async with tx() as session:
                await DisputeService(session, payments).resolve(buyer, dispute.id, "buyer")

    @pytest.mark.asyncio
    async def test_cannot_resolve_open_case(self, tx, reviewer, payments, disputed) -> None:
        _, dispute = disputed
        with pytest.raises(InvalidStateTransitionError):
            async with tx() as session:
                await DisputeService(session, payments).resolve(reviewer, dispute.id, "buyer")

    @pytest.mark.asyncio
    async def test_request_response_then_answer(
        self, tx, buyer, reviewer, payments, disputed
    ) -> None:
        _, dispute = disputed
        async with tx() as session:
            svc = DisputeService(session, payments)
            await svc.begin_review(reviewer, dispute.id)
            waiting = await svc.request_response(reviewer, dispute.id, "buyer", notes="Photo?")
            assert waiting.status == DisputeStatus.AWAITING_BUYER
            assert waiting.awaiting_party == "buyer"
            assert waiting.response_deadline is not None

            answered = await svc.add_evidence(buyer, dispute.id, EVIDENCE)
            assert answered.status == DisputeStatus.UNDER_REVIEW

    @pytest.mark.asyncio
    async def test_buyer_favor_refunds_total(self, tx, reviewer, payments, disputed) -> None:
        order, dispute = disputed
        async with tx() as session:
            svc = DisputeService(session, payments)
            await svc.begin_review(reviewer, dispute.id)
            resolved = await svc.resolve(reviewer, dispute.id, "buyer", notes="No transfer")
            assert resolved.status == DisputeStatus.RESOLVED_BUYER_FAVOR
            assert resolved.refund_amount == Decimal("31.50")
            assert resolved.platform_fee_voided is True

        async with tx() as session:
            refunded = await OrderService(session, payments).get_order_or_raise(order.id)
            assert refunded.status == OrderStatus.REFUNDED
            assert refunded.payout_status != PayoutStatus.RELEASED

    @pytest.mark.asyncio
    async def test_partial_split_scenario(self, tx, reviewer, payments, disputed) -> None:
        """Lapsed seller, escalation, then a 15.00 / 10.25 split and closure."""
        order, dispute = disputed
        async with tx() as session:
            svc = DisputeService(session, payments)
            assert await svc.lapse_deadline(dispute.id, utcnow() + timedelta(hours=49))
            resolved = await svc.resolve(
                reviewer,
                dispute.id,
                "partial",
                refund_amount="15.00",
                seller_payout_amount="10.25",
            )
            assert resolved.status == DisputeStatus.RESOLVED_PARTIAL
            assert resolved.defaulted_party == "seller"
            assert resolved.refund_amount == Decimal("15.00")
            assert resolved.seller_payout_amount == Decimal("10.25")

            closed = await svc.close(reviewer, dispute.id)
            assert closed.status == DisputeStatus.CLOSED

        async with tx() as session:
            settled = await OrderService(session, payments).get_order_or_raise(order.id)
            assert settled.status == OrderStatus.REFUNDED
            assert settled.refund_amount == Decimal("15.00")
            assert settled.payout_amount == Decimal("10.25")

        moved = {(r.operation, r.amount) for r in payments.ledger}
        assert ("refund", Decimal("15.00")) in moved
        assert ("release", Decimal("10.25")) in moved

    @pytest.mark.asyncio
    async def test_partial_over_total(self, tx, reviewer, payments, disputed) -> None:
        _, dispute = disputed
        with pytest.raises(ResolutionAmountError):
            async with tx() as session:
                svc = DisputeService(session, payments)
                await svc.begin_review(reviewer, dispute.id)
                await svc.resolve(
                    reviewer,
                    dispute.id,
                    "partial",
                    refund_amount="20.00",
                    seller_payout_amount="20.00",
                )

    @pytest.mark.asyncio
    async def test_empty_partial_leaves_money_in_escrow(
        self, tx, reviewer, payments, disputed
    ) -> None:
        order, dispute = disputed
        async with tx() as session:
            await DisputeService(session, payments).begin_review(reviewer, dispute.id)

        with pytest.raises(ResolutionAmountError):
            async with tx() as session:
                await DisputeService(session, payments).resolve(
                    reviewer,
                    dispute.id,
                    "partial",
                    refund_amount="0",
                    seller_payout_amount="0",
                )

        async with tx() as session:
            current = await DisputeService(session, payments).get_dispute(reviewer, dispute.id)
            assert current.status == DisputeStatus.UNDER_REVIEW
            held = await OrderService(session, payments).get_order_or_raise(order.id)
            assert held.status == OrderStatus.DISPUTED
            assert held.refund_amount is None
        assert not {r.operation for r in payments.ledger} & {"refund", "release"}

    @pytest.mark.asyncio
    async def test_seller_favor_completes_and_pays(
        self, tx, reviewer, payments, disputed
    ) -> None:
        order, dispute = disputed
        async with tx() as session:
            svc = DisputeService(session, payments)
            await svc.begin_review(reviewer, dispute.id)
            resolved = await svc.resolve(reviewer, dispute.id, "seller", notes="Proof holds up")
            assert resolved.status == DisputeStatus.RESOLVED_SELLER_FAVOR
            assert resolved.refund_amount == Decimal("0.00")
            assert resolved.seller_payout_amount == Decimal("25.20")

        async with tx() as session:
            done = await OrderService(session, payments).get_order_or_raise(order.id)
            assert done.status == OrderStatus.COMPLETED
            assert done.completed_at is not None
            assert done.payout_status == PayoutStatus.RELEASED
            assert done.payout_amount == Decimal("25.20")
            assert done.payout_reference is not None
            assert done.refund_amount is None

        moved = [(r.operation, r.amount) for r in payments.ledger]
        assert ("release", Decimal("25.20")) in moved
        assert all(op != "refund" for op, _ in moved)


class TestDeadlineAndReads:
    @pytest.mark.asyncio
    async def test_lapse_waits_for_deadline(self, tx, payments, disputed) -> None:
        _, dispute = disputed
        async with tx() as session:
            svc = DisputeService(session, payments)
            assert await svc.lapse_deadline(dispute.id, utcnow()) is False
            current = await svc.get_dispute(Actor(id="buyer-1"), dispute.id)
            assert current.status == DisputeStatus.OPEN

    @pytest.mark.asyncio
    async def test_listing_visibility(
        self, tx, buyer, stranger, reviewer, payments, disputed
    ) -> None:
        async with tx() as session:
            svc = DisputeService(session, payments)
            assert (await svc.list_disputes(buyer))[1] == 1
            assert (await svc.list_disputes(stranger))[1] == 0
            assert (await svc.list_disputes(reviewer, status="open"))[1] == 1


class TestFraudAlerts:
    @pytest.mark.asyncio
    async def test_transfer_dispute_flags_seller(
        self, tx, reviewer, payments, disputed
    ) -> None:
        order, dispute = disputed
        async with tx() as session:
            alerts, total = await DisputeService(session, payments).list_fraud_alerts(reviewer)
        assert total == 1
        alert = alerts[0]
        assert alert.user_id == "seller-1"
        assert alert.entity_id == order.id
        assert alert.alert_type == "disputed_transaction"
        assert alert.severity == "medium"
        assert alert.evidence == {
            "dispute_id": str(dispute.id),
            "reason": "ticket_not_received",
            "buyer_initiated": True,
        }

    @pytest.mark.asyncio
    async def test_filter_by_user(self, tx, reviewer, payments, disputed) -> None:
        async with tx() as session:
            svc = DisputeService(session, payments)
            assert (await svc.list_fraud_alerts(reviewer, user_id="seller-1"))[1] == 1
            assert (await svc.list_fraud_alerts(reviewer, user_id="buyer-1"))[1] == 0

    @pytest.mark.asyncio
    async def test_parties_cannot_list(self, tx, seller, payments, disputed) -> None:
        with pytest.raises(ReviewerOnlyError):
            async with tx() as session:
                await DisputeService(session, payments).list_fraud_alerts(seller)

    @pytest.mark.asyncio
    async def test_other_reason_is_not_flagged(
        self, tx, buyer, reviewer, payments, make_order
    ) -> None:
        order = await make_order(proof=True)
        async with tx() as session:
            await TransferService(session, payments).report_issue(
                buyer, order.id, "Venue moved the show", reason="other"
            )
        async with tx() as session:
            assert (await DisputeService(session, payments).list_fraud_alerts(reviewer))[1] == 0

    @pytest.mark.asyncio
    async def test_buyer_inaction_is_not_flagged(
        self, tx, reviewer, payments, make_order, monkeypatch
    ) -> None:
        monkeypatch.setattr(get_settings(), "auto_confirm_on_buyer_inaction", False)
        order = await make_order(proof=True)
        async with tx() as session:
            assert await TransferService(session, payments).handle_buyer_inaction(
                order.id, order.transfer.response_deadline + timedelta(seconds=1)
            )
        async with tx() as session:
            assert (await DisputeService(session, payments).list_fraud_alerts(reviewer))[1] == 0
