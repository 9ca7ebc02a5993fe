#!/usr/bin/env python3
"""Resale Escrow: End-to-End Simulation.

Simulates four scenarios with SellerBot, BuyerBot and ReviewerBot:

    Scenario A: Happy Path
        - Seller lists 1 ticket: face value 20.00, asking 28.00 (40% markup)
        - Buyer purchases -> payment captured -> seller submits proof
        - Buyer confirms receipt -> COMPLETED, seller paid 25.20

    Scenario B: Markup Cap
        - Seller tries to list at 31.00 on a 20.00 ticket (55% markup)
        - Listing rejected, max allowed price 30.00

    Scenario C: Seller Never Transfers
        - Order confirmed, seller never submits proof
        - Deadline sweep runs after the 24h window -> CANCELLED, buyer refunded

    Scenario D: Dispute Resolved Partially
        - Seller submits proof, buyer reports the ticket as invalid
        - Seller misses the 48h response deadline -> dispute ESCALATED
        - Reviewer resolves partial: refund 15.00, seller payout 10.25 -> REFUNDED

Usage:
    # Option A: With Docker (PostgreSQL):
    docker compose up -d
    uv run python simulation.py

    # Option B: Without Docker (SQLite in-memory):
    uv run python simulation.py --sqlite

    # Run a specific scenario:
    uv run python simulation.py --sqlite --scenario C
"""

from __future__ import annotations

import argparse
import asyncio
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from resale_escrow.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from resale_escrow.domain.actor import Actor  # noqa: E402
from resale_escrow.domain.enums import ActorRole  # noqa: E402
from resale_escrow.domain.exceptions import MarkupLimitExceededError  # noqa: E402
from resale_escrow.infrastructure.database.engine import session_scope  # noqa: E402
from resale_escrow.services.payment_service import PaymentService  # noqa: E402

# Module-level state
_sqlite_engine = None
_session_factory = None
_payments = PaymentService(simulate=True)


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database(use_sqlite: bool = False):
    """Initialize database engine and create tables."""
    global _sqlite_engine, _session_factory

    if use_sqlite:
        from resale_escrow.infrastructure.database.engine import (
            build_engine,
            build_session_factory,
        )
        from resale_escrow.infrastructure.database.orm_models import Base

        _sqlite_engine = build_engine("sqlite+aiosqlite:///:memory:")
        _session_factory = build_session_factory(_sqlite_engine)
        async with _sqlite_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database.sqlite_initialized")
    else:
        from resale_escrow.infrastructure.database.engine import get_session_factory, init_db

        await init_db()
        _session_factory = get_session_factory()


def transaction():
    """One committed unit of work, as a request handler would get."""
    return session_scope(_session_factory)


async def shutdown_database():
    """Close database connections."""
    global _sqlite_engine, _session_factory

    if _sqlite_engine is not None:
        await _sqlite_engine.dispose()
        _sqlite_engine = None
    else:
        from resale_escrow.infrastructure.database.engine import close_db

        await close_db()
    _session_factory = None


# ---------------------------------------------------------------------------
# Bots
# ---------------------------------------------------------------------------
@dataclass
class SellerBot:
    """Simulated seller who lists tickets and transfers them."""

    actor: Actor

    async def list_tickets(
        self, original_price: str, asking_price: str, quantity: int = 1
    ) -> str:
        from resale_escrow.services.listing_service import ListingService
        from resale_escrow.services.reputation_service import StaticReputationProvider

        async with transaction() as session:
            listing = await ListingService(session, StaticReputationProvider()).create_listing(
                self.actor,
                event_name="Warehouse Project: Closing Party",
                event_venue="Depot Mayfield",
                event_date=datetime.now(UTC) + timedelta(days=30),
                ticket_type="general_admission",
                original_price=original_price,
                asking_price=asking_price,
                quantity=quantity,
                event_city="Manchester",
                ticket_source="dice",
                transfer_method="app_transfer",
            )
        logger.info(
            "🟢 SELLER: Listing created",
            listing_id=str(listing.id),
            asking=str(listing.asking_price),
        )
        return str(listing.id)

    async def submit_proof(self, order_id: str) -> None:
        from resale_escrow.services.transfer_service import TransferService

        async with transaction() as session:
            await TransferService(session, _payments).submit_proof(
                self.actor,
                uuid.UUID(order_id),
                ["https://files.example.com/proof/dice-transfer.png"],
                notes="Sent through the DICE app",
                transfer_reference="DICE-TX-" + order_id[:8].upper(),
            )
        logger.info("🟢 SELLER: Transfer proof submitted", order_id=order_id)


@dataclass
class BuyerBot:
    """Simulated buyer who purchases, pays and confirms."""

    actor: Actor

    async def buy(self, listing_id: str, quantity: int = 1) -> str:
        from resale_escrow.services.order_service import OrderService

        async with transaction() as session:
            order = await OrderService(session, _payments).purchase(
                self.actor, uuid.UUID(listing_id), quantity
            )
        logger.info("🔵 BUYER: Order placed", order_id=str(order.id), total=str(order.total))
        return str(order.id)

    async def pay(self, order_id: str) -> None:
        """Stands in for the processor's capture callback."""
        from resale_escrow.services.order_service import OrderService

        async with transaction() as session:
            await OrderService(session, _payments).capture_payment(uuid.UUID(order_id))
        logger.info("🔵 BUYER: Payment captured", order_id=order_id)

    async def confirm(self, order_id: str) -> None:
        from resale_escrow.services.transfer_service import TransferService

        async with transaction() as session:
            await TransferService(session, _payments).confirm_receipt(
                self.actor, uuid.UUID(order_id), notes="Ticket is in my app, thanks"
            )
        logger.info("🔵 BUYER: Receipt confirmed", order_id=order_id)

    async def report_issue(self, order_id: str, notes: str) -> str:
        from resale_escrow.services.transfer_service import TransferService

        async with transaction() as session:
            _, dispute = await TransferService(session, _payments).report_issue(
                self.actor, uuid.UUID(order_id), notes, reason="ticket_invalid"
            )
        logger.info("🔵 BUYER: Issue reported", order_id=order_id, dispute_id=str(dispute.id))
        return str(dispute.id)


@dataclass
class ReviewerBot:
    """Simulated platform reviewer."""

    actor: Actor

    async def resolve_partial(self, dispute_id: str, refund: str, payout: str) -> None:
        from resale_escrow.services.dispute_service import DisputeService

        async with transaction() as session:
            await DisputeService(session, _payments).resolve(
                self.actor,
                uuid.UUID(dispute_id),
                "partial",
                notes="Entry was partially honoured at the door",
                refund_amount=refund,
                seller_payout_amount=payout,
            )
        logger.info("🟣 REVIEWER: Dispute resolved", dispute_id=dispute_id)


async def run_sweep(hours_ahead: int) -> dict[str, Any]:
    """Run one sweep pass as if `hours_ahead` hours had passed."""
    from resale_escrow.orchestration.deadline_sweep import DeadlineSweep

    sweep = DeadlineSweep(session_factory=_session_factory, payments=_payments)
    summary = await sweep.run_once(now=datetime.now(UTC) + timedelta(hours=hours_ahead))
    logger.info("⏱️  SWEEP: Pass complete", hours_ahead=hours_ahead, **summary.to_dict())
    return summary.to_dict()


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


async def load_order(order_id: str) -> Any:
    from resale_escrow.services.order_service import OrderService

    async with transaction() as session:
        return await OrderService(session, _payments).get_order_or_raise(uuid.UUID(order_id))


async def print_order(order_id: str) -> Any:
    """Print money fields and the audit trail for an order."""
    order = await load_order(order_id)
    print(f"  Status: {order.status}")
    print(f"  Total: {order.total}  Seller payout: {order.seller_payout}")
    if order.refund_amount is not None:
        print(f"  Refunded: {order.refund_amount}")
    if order.payout_amount is not None:
        print(f"  Paid out: {order.payout_amount} ({order.payout_status})")
    if order.transfer is not None:
        print(f"  Transfer: {order.transfer.status}")
    if order.dispute is not None:
        print(f"  Dispute: {order.dispute.status}")

    print("\n  📜 Audit Trail:")
    for i, evt in enumerate(sorted(order.events, key=lambda e: e.created_at), 1):
        old = evt.old_status or "-"
        print(f"    {i}. [{evt.event_type}] {old} -> {evt.new_status} (by {evt.actor})")
    print()
    return order


def _actors() -> tuple[SellerBot, BuyerBot, ReviewerBot]:
    suffix = uuid.uuid4().hex[:6]
    return (
        SellerBot(Actor(id=f"seller-{suffix}", email="seller@example.com")),
        BuyerBot(Actor(id=f"buyer-{suffix}", email="buyer@example.com")),
        ReviewerBot(Actor(id="reviewer-1", role=ActorRole.REVIEWER)),
    )


# ===========================================================================
# Scenario A: Happy Path
# ===========================================================================
async def scenario_a_happy_path() -> None:
    banner("SCENARIO A: Happy Path (20.00 face, 28.00 asking)")
    seller, buyer, _ = _actors()

    section("Step 1: Seller lists, buyer purchases and pays")
    listing_id = await seller.list_tickets("20.00", "28.00")
    order_id = await buyer.buy(listing_id)
    await buyer.pay(order_id)

    section("Step 2: Seller transfers, buyer confirms")
    await seller.submit_proof(order_id)
    await buyer.confirm(order_id)

    section("Final Status")
    order = await print_order(order_id)
    assert order.status == "completed", f"Expected completed, got {order.status}"
    assert order.total == Decimal("31.50")
    assert order.payout_amount == Decimal("25.20")


# ===========================================================================
# Scenario B: Markup Cap
# ===========================================================================
async def scenario_b_markup_cap() -> None:
    banner("SCENARIO B: Markup Cap (20.00 face, 31.00 asking)")
    seller, _, _ = _actors()

    try:
        await seller.list_tickets("20.00", "31.00")
    except MarkupLimitExceededError as exc:
        print(f"  🛡️  Rejected: {exc.message}")
        print(f"  🛡️  Max allowed price: {exc.details['max_allowed_price']}")
        assert exc.details["max_allowed_price"] == "30.00"
    else:
        raise AssertionError("Listing at 55% markup should have been rejected")


# ===========================================================================
# Scenario C: Seller Never Transfers
# ===========================================================================
async def scenario_c_seller_default() -> None:
    banner("SCENARIO C: Seller Misses the Transfer Deadline")
    seller, buyer, _ = _actors()

    section("Step 1: Order confirmed")
    listing_id = await seller.list_tickets("20.00", "28.00")
    order_id = await buyer.buy(listing_id)
    await buyer.pay(order_id)

    section("Step 2: 25 hours pass with no proof")
    await run_sweep(hours_ahead=25)

    section("Final Status")
    order = await print_order(order_id)
    assert order.status == "cancelled", f"Expected cancelled, got {order.status}"
    assert order.refund_amount == order.total
    assert order.transfer.status == "awaiting_proof"
    print("  🛡️  Buyer refunded in full.")


# ===========================================================================
# Scenario D: Dispute Resolved Partially
# ===========================================================================
async def scenario_d_partial_resolution() -> None:
    banner("SCENARIO D: Dispute, Seller Silent, Partial Resolution")
    seller, buyer, reviewer = _actors()

    section("Step 1: Order confirmed and proof submitted")
    listing_id = await seller.list_tickets("20.00", "28.00")
    order_id = await buyer.buy(listing_id)
    await buyer.pay(order_id)
    await seller.submit_proof(order_id)

    section("Step 2: Buyer reports the ticket as invalid")
    dispute_id = await buyer.report_issue(order_id, "QR code was rejected at the gate")

    section("Step 3: 49 hours pass without a seller response")
    await run_sweep(hours_ahead=49)
    order = await load_order(order_id)
    assert order.dispute.status == "escalated", f"Got {order.dispute.status}"

    section("Step 4: Reviewer splits the money")
    await reviewer.resolve_partial(dispute_id, refund="15.00", payout="10.25")

    section("Final Status")
    order = await print_order(order_id)
    assert order.status == "refunded", f"Expected refunded, got {order.status}"
    assert order.dispute.refund_amount == Decimal("15.00")
    assert order.dispute.seller_payout_amount == Decimal("10.25")


# ===========================================================================
# Main
# ===========================================================================
SCENARIOS = {
    "A": scenario_a_happy_path,
    "B": scenario_b_markup_cap,
    "C": scenario_c_seller_default,
    "D": scenario_d_partial_resolution,
}


async def run(scenarios: list[str], use_sqlite: bool = False) -> None:
    await init_database(use_sqlite=use_sqlite)
    try:
        print("\n" + "🎟️ " * 35)
        print("  RESALE ESCROW: SIMULATION")
        db_type = "SQLite (in-memory)" if use_sqlite else "PostgreSQL"
        print(f"  Database: {db_type}")
        print("🎟️ " * 35 + "\n")

        for name in scenarios:
            await SCENARIOS[name]()

        print("\n" + "=" * 70)
        print("  ✅ ALL SCENARIOS COMPLETED SUCCESSFULLY")
        print("=" * 70 + "\n")
    finally:
        await shutdown_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Resale Escrow Simulation")
    parser.add_argument(
        "--scenario",
        choices=sorted(SCENARIOS),
        default=None,
        help="Run a specific scenario (A, B, C or D). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use SQLite in-memory instead of PostgreSQL (no Docker needed).",
    )
    args = parser.parse_args()

    selected = [args.scenario] if args.scenario else sorted(SCENARIOS)
    asyncio.run(run(selected, use_sqlite=args.sqlite))
