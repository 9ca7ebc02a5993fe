"""Tests for the deadline sweep."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from resale_escrow.domain.enums import (
    DisputeStatus,
    OrderStatus,
    PayoutStatus,
    TransferStatus,
)
from resale_escrow.infrastructure.database.repositories import ListingRepository
from resale_escrow.orchestration import DeadlineSweep
from resale_escrow.services.dispute_service import DisputeService
from resale_escrow.services.guards import utcnow
from resale_escrow.services.order_service import OrderService
from resale_escrow.services.transfer_service import TransferService


@pytest.fixture
def sweep(session_factory, payments) -> DeadlineSweep:
    return DeadlineSweep(session_factory=session_factory, payments=payments, batch_size=10)


async def _load(tx, payments, order_id):
    async with tx() as session:
        return await OrderService(session, payments).get_order_or_raise(order_id)


class TestSellerDefault:
    @pytest.mark.asyncio
    async def test_missed_transfer_is_refunded(self, tx, payments, sweep, make_order) -> None:
        order = await make_order()

        early = await sweep.run_once(utcnow() + timedelta(hours=23))
        assert early.sellers_defaulted == 0

        summary = await sweep.run_once(utcnow() + timedelta(hours=25))
        assert summary.sellers_defaulted == 1
        assert summary.errors == []

        cancelled = await _load(tx, payments, order.id)
        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.refund_amount == Decimal("31.50")
        assert cancelled.transfer.status == TransferStatus.AWAITING_PROOF
        assert "SELLER_DEFAULTED" in [e.event_type for e in cancelled.events]

    @pytest.mark.asyncio
    async def test_second_pass_changes_nothing(self, payments, sweep, make_order) -> None:
        await make_order()
        later = utcnow() + timedelta(hours=25)
        assert (await sweep.run_once(later)).sellers_defaulted == 1

        again = await sweep.run_once(later)
        assert again.total_actions == 0
        assert [r.operation for r in payments.ledger].count("refund") == 1

    @pytest.mark.asyncio
    async def test_failed_item_is_isolated(self, tx, payments, sweep, make_order) -> None:
        first = await make_order()
        second = await make_order()
        later = utcnow() + timedelta(hours=25)

        payments.fail_on.add("refund")
        failed = await sweep.run_once(later)
        assert failed.sellers_defaulted == 0
        assert {e["id"] for e in failed.errors} == {str(first.id), str(second.id)}
        assert (await _load(tx, payments, first.id)).status == OrderStatus.CONFIRMED

        payments.fail_on.clear()
        assert (await sweep.run_once(later)).sellers_defaulted == 2


class TestBuyerAndDisputeDeadlines:
    @pytest.mark.asyncio
    async def test_silent_buyer_is_auto_confirmed(self, tx, payments, sweep, make_order) -> None:
        order = await make_order(proof=True)

        summary = await sweep.run_once(utcnow() + timedelta(hours=49))
        assert summary.buyer_deadlines_handled == 1

        done = await _load(tx, payments, order.id)
        assert done.status == OrderStatus.COMPLETED
        assert done.payout_status == PayoutStatus.RELEASED
        assert done.transfer.auto_confirmed is True

    @pytest.mark.asyncio
    async def test_lapsed_dispute_is_escalated(
        self, tx, buyer, payments, sweep, make_order
    ) -> None:
        order = await make_order(proof=True)
        async with tx() as session:
            _, dispute = await TransferService(session, payments).report_issue(
                buyer, order.id, "Wrong ticket type"
            )

        summary = await sweep.run_once(utcnow() + timedelta(hours=49))
        assert summary.disputes_escalated == 1
        assert summary.buyer_deadlines_handled == 0

        async with tx() as session:
            escalated = await DisputeService(session, payments).get_dispute(buyer, dispute.id)
            assert escalated.status == DisputeStatus.ESCALATED
            assert escalated.defaulted_party == "seller"


class TestPaymentsAndListings:
    @pytest.mark.asyncio
    async def test_deferred_payout_is_retried(
        self, tx, buyer, payments, sweep, make_order
    ) -> None:
        order = await make_order(proof=True)
        payments.fail_on.add("release")
        async with tx() as session:
            await TransferService(session, payments).confirm_receipt(buyer, order.id)

        payments.fail_on.clear()
        summary = await sweep.run_once()
        assert summary.payouts_released == 1
        assert (await _load(tx, payments, order.id)).status == OrderStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_unpaid_order_expires(self, tx, payments, sweep, make_order) -> None:
        order = await make_order(paid=False)

        assert (await sweep.run_once(utcnow() + timedelta(minutes=20))).orders_expired == 0
        summary = await sweep.run_once(utcnow() + timedelta(minutes=31))
        assert summary.orders_expired == 1

        expired = await _load(tx, payments, order.id)
        assert expired.status == OrderStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_listing_taken_off_sale_near_event(
        self, tx, sweep, make_listing
    ) -> None:
        listing = await make_listing(event_date=utcnow() + timedelta(hours=3))

        summary = await sweep.run_once(utcnow() + timedelta(hours=2))
        assert summary.listings_deactivated == 1

        async with tx() as session:
            stored = await ListingRepository(session).get_by_id(listing.id)
            assert stored.is_active is False

    @pytest.mark.asyncio
    async def test_summary_serializes(self, sweep) -> None:
        summary = await sweep.run_once()
        data = summary.to_dict()
        assert data["total_actions"] == 0
        assert data["errors"] == []
        assert data["started_at"] == summary.started_at.isoformat()


class TestTransferReminders:
    @pytest.mark.asyncio
    async def test_each_reminder_sent_once(self, tx, seller, payments, sweep, make_order) -> None:
        order = await make_order()
        start = utcnow()

        assert (await sweep.run_once(start + timedelta(hours=6))).reminders_sent == 0

        early = start + timedelta(hours=13)
        assert (await sweep.run_once(early)).reminders_sent == 1
        assert (await sweep.run_once(early)).reminders_sent == 0

        urgent = start + timedelta(hours=23)
        summary = await sweep.run_once(urgent)
        assert summary.reminders_sent == 1
        assert summary.sellers_defaulted == 0
        assert (await sweep.run_once(urgent)).reminders_sent == 0

        async with tx() as session:
            transfer = await TransferService(session, payments).get_transfer(seller, order.id)
            assert transfer.early_reminder_sent_at is not None
            assert transfer.urgent_reminder_sent_at is not None

    @pytest.mark.asyncio
    async def test_no_reminder_once_proof_is_in(self, payments, sweep, make_order) -> None:
        await make_order(proof=True)
        summary = await sweep.run_once(utcnow() + timedelta(hours=23))
        assert summary.reminders_sent == 0
