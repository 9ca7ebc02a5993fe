"""Shared test fixtures for the resale escrow test suite.

Provides:
    - A fresh in-memory SQLite database per test (aiosqlite)
    - An in-memory double for the handful of Redis commands the app issues
    - Actors, a simulated payment rail and a seeded reputation provider
    - Factory fixtures that walk an order through its lifecycle
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
import pytest_asyncio

from resale_escrow.domain.actor import Actor
from resale_escrow.domain.enums import ActorRole, SellerTier
from resale_escrow.infrastructure.database.engine import (
    build_engine,
    build_session_factory,
    session_scope,
)
from resale_escrow.infrastructure.database.orm_models import Base
from resale_escrow.services.listing_service import ListingService
from resale_escrow.services.order_service import OrderService
from resale_escrow.services.payment_service import PaymentService
from resale_escrow.services.reputation_service import StaticReputationProvider, standing_for_tier
from resale_escrow.services.transfer_service import TransferService

# ---------------------------------------------------------------------------
# Redis double
# ---------------------------------------------------------------------------


class FakeRedis:
    """Dict-backed stand-in for the redis.asyncio commands used by the app.

    TTLs are recorded but never enforced.
    """

    def __init__(self) -> None:
        self.store: dict[str, Any] = {}
        self.ttls: dict[str, int] = {}

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> Any:
        return self.store.get(key)

    async def set(self, key: str, value: Any, ex: int | None = None, nx: bool = False) -> Any:
        if nx and key in self.store:
            return None
        self.store[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def incr(self, key: str) -> int:
        self.store[key] = int(self.store.get(key, 0)) + 1
        return self.store[key]

    async def expire(self, key: str, seconds: int) -> bool:
        self.ttls[key] = seconds
        return key in self.store


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine():
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def tx(session_factory):
    """Open one committed unit of work: `async with tx() as session:`."""

    def _open():
        return session_scope(session_factory)

    return _open


# ---------------------------------------------------------------------------
# Domain Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def seller() -> Actor:
    return Actor(id="seller-1", email="seller@example.com")


@pytest.fixture
def buyer() -> Actor:
    return Actor(id="buyer-1", email="buyer@example.com")


@pytest.fixture
def stranger() -> Actor:
    return Actor(id="stranger-1", email="stranger@example.com")


@pytest.fixture
def reviewer() -> Actor:
    return Actor(id="reviewer-1", email="ops@example.com", role=ActorRole.REVIEWER)


@pytest.fixture
def payments() -> PaymentService:
    return PaymentService(simulate=True)


@pytest.fixture
def reputation(seller: Actor) -> StaticReputationProvider:
    """seller-1 is a trusted seller; everyone else gets the unverified defaults."""
    provider = StaticReputationProvider()
    provider.set_standing(
        standing_for_tier(
            seller.id, SellerTier.TRUSTED, completed_sales=40, account_age_days=400
        )
    )
    return provider


@pytest.fixture
def event_date() -> datetime:
    return datetime.now(UTC) + timedelta(days=30)


@pytest.fixture
def listing_fields(event_date: datetime) -> dict[str, Any]:
    """Valid create_listing keyword arguments (Scenario A prices)."""
    return {
        "event_name": "Fabric: Saturday Sessions",
        "event_venue": "Fabric",
        "event_date": event_date,
        "ticket_type": "general_admission",
        "original_price": "20.00",
        "asking_price": "28.00",
        "quantity": 1,
        "event_city": "London",
        "ticket_source": "dice",
        "transfer_method": "app_transfer",
    }


@pytest.fixture
def make_listing(tx, seller, reputation, listing_fields):
    async def _make(**overrides: Any):
        async with tx() as session:
            return await ListingService(session, reputation).create_listing(
                seller, **{**listing_fields, **overrides}
            )

    return _make


@pytest.fixture
def make_order(tx, buyer, payments, make_listing):
    """Create a listing and an order on it, optionally paid and transferred."""

    async def _make(quantity: int = 1, paid: bool = True, proof: bool = False, **listing):
        created = await make_listing(quantity=max(quantity, listing.pop("quantity", 1)), **listing)
        async with tx() as session:
            order = await OrderService(session, payments).purchase(buyer, created.id, quantity)
        if paid:
            async with tx() as session:
                order = await OrderService(session, payments).capture_payment(order.id)
        if proof:
            async with tx() as session:
                await TransferService(session, payments).submit_proof(
                    Actor(id=order.seller_id),
                    order.id,
                    ["https://files.example.com/proof/transfer.png"],
                    transfer_reference="DICE-TX-1",
                )
        async with tx() as session:
            return await OrderService(session, payments).get_order_or_raise(order.id)

    return _make


@pytest.fixture
def missing_id() -> uuid.UUID:
    return uuid.UUID("12345678-1234-5678-1234-567812345678")
