"""Tests for the transfer sub-workflow: proof, receipt, issues and deadlines."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from resale_escrow.config import get_settings
from resale_escrow.domain.enums import (
    DisputeStatus,
    NotificationKind,
    OrderStatus,
    TransferStatus,
)
from resale_escrow.domain.exceptions import (
    InvalidStateTransitionError,
    NotAPartyError,
    TransferNotFoundError,
    ValidationError,
    WrongPartyError,
)
from resale_escrow.infrastructure.database.orm_models import Notification
from resale_escrow.services.order_service import OrderService
from resale_escrow.services.transfer_service import TransferService

PROOF = ["https://files.example.com/proof/transfer.png"]


class TestSubmitProof:
    @pytest.mark.asyncio
    async def test_starts_buyer_window(self, tx, seller, payments, make_order) -> None:
        order = await make_order()
        async with tx() as session:
            transfer = await TransferService(session, payments).submit_proof(
                seller, order.id, PROOF, notes="Sent via Dice", transfer_reference="DICE-1"
            )
            assert transfer.status == TransferStatus.PROOF_SUBMITTED
            assert transfer.seller_proof_urls == PROOF
            assert transfer.response_deadline - transfer.proof_submitted_at == timedelta(
                hours=48
            )

    @pytest.mark.asyncio
    async def test_buyer_cannot_submit(self, tx, buyer, payments, make_order) -> None:
        order = await make_order()
        with pytest.raises(WrongPartyError):
            async with tx() as session:
                await TransferService(session, payments).submit_proof(buyer, order.id, PROOF)

    @pytest.mark.asyncio
    async def test_rejects_non_http_urls(self, tx, seller, payments, make_order) -> None:
        order = await make_order()
        with pytest.raises(ValidationError) as exc_info:
            async with tx() as session:
                await TransferService(session, payments).submit_proof(
                    seller, order.id, ["ftp://files.example.com/x.png"]
                )
        assert exc_info.value.code == "INVALID_URL"

    @pytest.mark.asyncio
    async def test_requires_paid_order(self, tx, seller, payments, make_order) -> None:
        order = await make_order(paid=False)
        with pytest.raises(TransferNotFoundError):
            async with tx() as session:
                await TransferService(session, payments).submit_proof(seller, order.id, PROOF)

    @pytest.mark.asyncio
    async def test_proof_only_once(self, tx, seller, payments, make_order) -> None:
        order = await make_order(proof=True)
        with pytest.raises(InvalidStateTransitionError):
            async with tx() as session:
                await TransferService(session, payments).submit_proof(seller, order.id, PROOF)


class TestBuyerActions:
    @pytest.mark.asyncio
    async def test_confirm_before_proof(self, tx, buyer, payments, make_order) -> None:
        order = await make_order()
        with pytest.raises(InvalidStateTransitionError):
            async with tx() as session:
                await TransferService(session, payments).confirm_receipt(buyer, order.id)

    @pytest.mark.asyncio
    async def test_report_issue_opens_dispute(self, tx, buyer, payments, make_order) -> None:
        order = await make_order(proof=True)
        async with tx() as session:
            transfer, dispute = await TransferService(session, payments).report_issue(
                buyer, order.id, "QR code was already scanned", reason="ticket_invalid"
            )
            assert transfer.status == TransferStatus.ISSUE_REPORTED
            assert dispute.status == DisputeStatus.OPEN
            assert dispute.awaiting_party == "seller"
            assert dispute.buyer_statement == "QR code was already scanned"

        async with tx() as session:
            disputed = await OrderService(session, payments).get_order_or_raise(order.id)
            assert disputed.status == OrderStatus.DISPUTED
            assert disputed.dispute.reason == "ticket_invalid"

    @pytest.mark.asyncio
    async def test_report_requires_notes(self, tx, buyer, payments, make_order) -> None:
        order = await make_order(proof=True)
        with pytest.raises(ValidationError):
            async with tx() as session:
                await TransferService(session, payments).report_issue(buyer, order.id, "  ")

    @pytest.mark.asyncio
    async def test_stranger_cannot_read(self, tx, stranger, reviewer, payments, make_order) -> None:
        order = await make_order()
        async with tx() as session:
            svc = TransferService(session, payments)
            assert (await svc.get_transfer(reviewer, order.id)).order_id == order.id
            with pytest.raises(NotAPartyError):
                await svc.get_transfer(stranger, order.id)


class TestDeadlines:
    @pytest.mark.asyncio
    async def test_seller_default_refunds_in_full(self, tx, payments, make_order) -> None:
        order = await make_order()
        deadline = order.transfer.response_deadline
        async with tx() as session:
            svc = TransferService(session, payments)
            assert await svc.default_seller(order.id, deadline - timedelta(minutes=1)) is False
            assert await svc.default_seller(order.id, deadline + timedelta(minutes=1)) is True

        async with tx() as session:
            cancelled = await OrderService(session, payments).get_order_or_raise(order.id)
            assert cancelled.status == OrderStatus.CANCELLED
            assert cancelled.refund_amount == Decimal("31.50")
            assert cancelled.cancel_reason == "seller_default"

    @pytest.mark.asyncio
    async def test_buyer_inaction_auto_confirms(self, tx, payments, make_order) -> None:
        order = await make_order(proof=True)
        late = order.transfer.response_deadline + timedelta(seconds=1)
        async with tx() as session:
            assert await TransferService(session, payments).handle_buyer_inaction(
                order.id, late
            )

        async with tx() as session:
            done = await OrderService(session, payments).get_order_or_raise(order.id)
            assert done.status == OrderStatus.COMPLETED
            assert done.transfer.auto_confirmed is True
            assert "RECEIPT_AUTO_CONFIRMED" in [e.event_type for e in done.events]

    @pytest.mark.asyncio
    async def test_buyer_inaction_can_dispute(
        self, tx, payments, make_order, monkeypatch
    ) -> None:
        monkeypatch.setattr(get_settings(), "auto_confirm_on_buyer_inaction", False)
        order = await make_order(proof=True)
        late = order.transfer.response_deadline + timedelta(seconds=1)
        async with tx() as session:
            assert await TransferService(session, payments).handle_buyer_inaction(
                order.id, late
            )

        async with tx() as session:
            disputed = await OrderService(session, payments).get_order_or_raise(order.id)
            assert disputed.status == OrderStatus.DISPUTED
            assert disputed.dispute.reason == "buyer_unresponsive"
            assert disputed.dispute.awaiting_party == "buyer"
            assert disputed.dispute.opened_by_role == "system"
            assert disputed.transfer.status == TransferStatus.ISSUE_REPORTED


async def _seller_notices(session, seller_id: str) -> list[str]:
    result = await session.execute(
        select(Notification.kind).where(Notification.recipient_id == seller_id)
    )
    return sorted(
        kind
        for kind in result.scalars().all()
        if kind in (NotificationKind.TRANSFER_REMINDER, NotificationKind.TRANSFER_URGENT)
    )


class TestSellerReminders:
    @pytest.mark.asyncio
    async def test_early_then_urgent_once_each(self, tx, seller, payments, make_order) -> None:
        order = await make_order()
        deadline = order.transfer.response_deadline
        async with tx() as session:
            svc = TransferService(session, payments)
            assert await svc.remind_seller(order.id, deadline - timedelta(hours=13)) is False
            assert await svc.remind_seller(order.id, deadline - timedelta(hours=11)) is True
            assert await svc.remind_seller(order.id, deadline - timedelta(hours=10)) is False
            assert await svc.remind_seller(order.id, deadline - timedelta(hours=1)) is True
            assert await svc.remind_seller(order.id, deadline - timedelta(minutes=30)) is False

        async with tx() as session:
            assert await _seller_notices(session, seller.id) == [
                NotificationKind.TRANSFER_REMINDER,
                NotificationKind.TRANSFER_URGENT,
            ]

    @pytest.mark.asyncio
    async def test_urgent_covers_missed_early(self, tx, seller, payments, make_order) -> None:
        order = await make_order()
        deadline = order.transfer.response_deadline
        async with tx() as session:
            svc = TransferService(session, payments)
            assert await svc.remind_seller(order.id, deadline - timedelta(hours=1)) is True
            assert await svc.remind_seller(order.id, deadline - timedelta(minutes=50)) is False

            transfer = await svc.get_transfer(seller, order.id)
            assert transfer.early_reminder_sent_at is not None
            assert transfer.urgent_reminder_sent_at is not None

        async with tx() as session:
            assert await _seller_notices(session, seller.id) == [NotificationKind.TRANSFER_URGENT]

    @pytest.mark.asyncio
    async def test_no_reminder_after_proof(self, tx, payments, make_order) -> None:
        order = await make_order(proof=True)
        async with tx() as session:
            assert not await TransferService(session, payments).remind_seller(
                order.id, order.created_at + timedelta(hours=23)
            )

    @pytest.mark.asyncio
    async def test_no_reminder_past_deadline(self, tx, payments, make_order) -> None:
        order = await make_order()
        late = order.transfer.response_deadline + timedelta(minutes=5)
        async with tx() as session:
            assert not await TransferService(session, payments).remind_seller(order.id, late)
