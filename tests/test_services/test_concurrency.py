"""Concurrent writers against a file-backed database.

Each transaction below gets its own connection, so two of them really do
overlap; the in-memory database used elsewhere shares a single connection.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio

from resale_escrow.domain.actor import Actor
from resale_escrow.domain.enums import OrderStatus, TransferStatus
from resale_escrow.domain.exceptions import (
    InsufficientQuantityError,
    InvalidStateTransitionError,
)
from resale_escrow.infrastructure.database.engine import build_engine
from resale_escrow.infrastructure.database.orm_models import Base
from resale_escrow.services.listing_service import ListingService
from resale_escrow.services.order_service import OrderService
from resale_escrow.services.transfer_service import TransferService

PROOF = ["https://files.example.com/proof/transfer.png"]


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'escrow.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


def _split(results: list) -> tuple[list, list[BaseException]]:
    ok = [r for r in results if not isinstance(r, BaseException)]
    failed = [r for r in results if isinstance(r, BaseException)]
    return ok, failed


class TestSimultaneousPurchases:
    @pytest.mark.asyncio
    async def test_last_ticket_sells_once(self, tx, payments, reputation, make_listing) -> None:
        listing = await make_listing(quantity=1)

        async def buy(actor: Actor):
            async with tx() as session:
                return await OrderService(session, payments).purchase(actor, listing.id)

        results = await asyncio.gather(
            buy(Actor(id="buyer-a", email="a@example.com")),
            buy(Actor(id="buyer-b", email="b@example.com")),
            return_exceptions=True,
        )

        orders, failed = _split(results)
        assert len(orders) == 1
        assert len(failed) == 1
        assert isinstance(failed[0], InsufficientQuantityError)

        async with tx() as session:
            stored = await ListingService(session, reputation).get_listing(listing.id)
            assert stored.quantity_available == 0
        assert [r.operation for r in payments.ledger].count("hold") == 1

    @pytest.mark.asyncio
    async def test_two_left_both_sell(self, tx, payments, make_listing) -> None:
        listing = await make_listing(quantity=2)

        async def buy(actor: Actor):
            async with tx() as session:
                return await OrderService(session, payments).purchase(actor, listing.id)

        results = await asyncio.gather(
            buy(Actor(id="buyer-a")), buy(Actor(id="buyer-b")), return_exceptions=True
        )
        orders, failed = _split(results)
        assert failed == []
        assert {o.buyer_id for o in orders} == {"buyer-a", "buyer-b"}


class TestSweepAgainstSeller:
    @pytest.mark.asyncio
    async def test_default_and_proof_race(self, tx, seller, payments, make_order) -> None:
        order = await make_order()
        late = order.transfer.response_deadline + timedelta(minutes=1)

        async def sweep() -> bool:
            async with tx() as session:
                return await TransferService(session, payments).default_seller(order.id, late)

        async def prove():
            async with tx() as session:
                return await TransferService(session, payments).submit_proof(
                    seller, order.id, PROOF, transfer_reference="DICE-TX-9"
                )

        defaulted, proof = await asyncio.gather(sweep(), prove(), return_exceptions=True)

        async with tx() as session:
            final = await OrderService(session, payments).get_order_or_raise(order.id)
            refunds = [r for r in payments.ledger if r.operation == "refund"]

            if defaulted is True:
                assert isinstance(proof, InvalidStateTransitionError)
                assert final.status == OrderStatus.CANCELLED
                assert final.transfer.status == TransferStatus.AWAITING_PROOF
                assert [r.amount for r in refunds] == [Decimal("31.50")]
            else:
                assert defaulted is False
                assert proof.status == TransferStatus.PROOF_SUBMITTED
                assert final.status == OrderStatus.TRANSFER_PENDING
                assert refunds == []

    @pytest.mark.asyncio
    async def test_repeated_sweeps_refund_once(self, tx, payments, make_order) -> None:
        order = await make_order()
        late = order.transfer.response_deadline + timedelta(minutes=1)

        async def sweep() -> bool:
            async with tx() as session:
                return await TransferService(session, payments).default_seller(order.id, late)

        outcomes = await asyncio.gather(sweep(), sweep(), sweep())
        assert sorted(outcomes) == [False, False, True]
        assert [r.operation for r in payments.ledger].count("refund") == 1
