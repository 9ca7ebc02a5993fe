"""Deadline Sweep — enforces every escrow deadline on the server side.

One pass runs these steps in order:

    1. seller_default    confirmed orders with no transfer proof by the
                         seller deadline -> cancelled, buyer refunded
    2. transfer_reminder confirmed orders whose seller deadline is 12 h or
                         2 h away -> seller reminded, once per window
    3. buyer_inaction    proof submitted, buyer silent past the confirmation
                         window -> auto-confirmed (or disputed, see settings)
    4. dispute_lapse     awaited party missed the response deadline
                         -> dispute escalated
    5. payout_retry      transferred orders whose payout was deferred
    6. payment_expiry    orders still unpaid after the payment window
                         -> cancelled, hold voided, tickets restocked
    7. listing_cutoff    listings whose event starts inside the cutoff
                         -> taken off sale

Candidate ids are read in one short transaction; every item is then
handled in its own transaction by the same service method a user action
would go through. Each method re-checks its precondition on the fresh row,
so a pass that races a user action, or runs twice, changes nothing twice.

Usage:
    from resale_escrow.orchestration import DeadlineSweep

    summary = await DeadlineSweep().run_once()
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from resale_escrow.config import get_settings
from resale_escrow.infrastructure.database.engine import get_session_factory, session_scope
from resale_escrow.infrastructure.database.repositories import (
    DisputeRepository,
    ListingRepository,
    OrderRepository,
)
from resale_escrow.logging_config import get_logger
from resale_escrow.services.dispute_service import DisputeService
from resale_escrow.services.guards import utcnow
from resale_escrow.services.order_service import OrderService
from resale_escrow.services.payment_service import PaymentService
from resale_escrow.services.transfer_service import TransferService

if TYPE_CHECKING:
    import uuid
    from collections.abc import Awaitable, Callable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    ItemAction = Callable[[AsyncSession, uuid.UUID, datetime], Awaitable[bool]]
    IdQuery = Callable[[AsyncSession, datetime, int], Awaitable[list[uuid.UUID]]]

logger = get_logger(__name__)


@dataclass
class SweepSummary:
    """Counts of items acted on in one pass, plus per-item failures."""

    started_at: datetime
    sellers_defaulted: int = 0
    reminders_sent: int = 0
    buyer_deadlines_handled: int = 0
    disputes_escalated: int = 0
    payouts_released: int = 0
    orders_expired: int = 0
    listings_deactivated: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    @property
    def total_actions(self) -> int:
        return (
            self.sellers_defaulted
            + self.reminders_sent
            + self.buyer_deadlines_handled
            + self.disputes_escalated
            + self.payouts_released
            + self.orders_expired
            + self.listings_deactivated
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["total_actions"] = self.total_actions
        return data


class DeadlineSweep:
    """Runs sweep passes, once or on a fixed interval."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        payments: PaymentService | None = None,
        batch_size: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._payments = payments or PaymentService()
        self._batch_size = batch_size or get_settings().sweep_batch_size
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    # ------------------------------------------------------------------
    # One pass
    # ------------------------------------------------------------------

    async def run_once(self, now: datetime | None = None) -> SweepSummary:
        """Run every step once and return what was done."""
        now = now or utcnow()
        settings = get_settings()
        summary = SweepSummary(started_at=now)
        logger.info("sweep.started", now=now.isoformat())

        summary.sellers_defaulted = await self._step(
            "seller_default",
            lambda s, at, n: OrderRepository(s).ids_with_seller_proof_overdue(at, n),
            lambda s, oid, at: TransferService(s, self._payments).default_seller(oid, at),
            now,
            summary,
        )
        early_by = now + timedelta(hours=settings.transfer_reminder_hours)
        urgent_by = now + timedelta(hours=settings.transfer_urgent_reminder_hours)
        summary.reminders_sent = await self._step(
            "transfer_reminder",
            lambda s, at, n: OrderRepository(s).ids_due_transfer_reminder(
                at, early_by, urgent_by, n
            ),
            lambda s, oid, at: TransferService(s, self._payments).remind_seller(oid, at),
            now,
            summary,
        )
        summary.buyer_deadlines_handled = await self._step(
            "buyer_inaction",
            lambda s, at, n: OrderRepository(s).ids_with_buyer_confirmation_overdue(at, n),
            lambda s, oid, at: TransferService(s, self._payments).handle_buyer_inaction(oid, at),
            now,
            summary,
        )
        summary.disputes_escalated = await self._step(
            "dispute_lapse",
            lambda s, at, n: DisputeRepository(s).ids_with_response_overdue(at, n),
            lambda s, did, at: DisputeService(s, self._payments).lapse_deadline(did, at),
            now,
            summary,
        )
        summary.payouts_released = await self._step(
            "payout_retry",
            lambda s, at, n: OrderRepository(s).ids_with_payout_pending_retry(n),
            lambda s, oid, at: OrderService(s, self._payments).retry_payout(oid),
            now,
            summary,
        )
        payment_cutoff = now - timedelta(minutes=settings.payment_window_minutes)
        summary.orders_expired = await self._step(
            "payment_expiry",
            lambda s, at, n: OrderRepository(s).ids_unpaid_since(payment_cutoff, n),
            lambda s, oid, at: OrderService(s, self._payments).expire_payment(oid, at),
            now,
            summary,
        )

        listing_cutoff = now + timedelta(hours=settings.listing_cutoff_hours)
        try:
            async with session_scope(self._factory()) as session:
                summary.listings_deactivated = await ListingRepository(
                    session
                ).deactivate_starting_before(listing_cutoff)
        except Exception as exc:
            logger.exception("sweep.step_failed", step="listing_cutoff")
            summary.errors.append({"step": "listing_cutoff", "id": "", "error": str(exc)})

        log = logger.warning if summary.errors else logger.info
        log(
            "sweep.completed",
            sellers_defaulted=summary.sellers_defaulted,
            reminders_sent=summary.reminders_sent,
            buyer_deadlines_handled=summary.buyer_deadlines_handled,
            disputes_escalated=summary.disputes_escalated,
            payouts_released=summary.payouts_released,
            orders_expired=summary.orders_expired,
            listings_deactivated=summary.listings_deactivated,
            errors=len(summary.errors),
        )
        return summary

    async def _step(
        self,
        name: str,
        find_ids: IdQuery,
        act: ItemAction,
        now: datetime,
        summary: SweepSummary,
    ) -> int:
        """Find candidates, then act on each in its own transaction.

        A failing item is rolled back and recorded; the rest still run.
        """
        try:
            async with session_scope(self._factory()) as session:
                ids = await find_ids(session, now, self._batch_size)
        except Exception as exc:
            logger.exception("sweep.step_failed", step=name)
            summary.errors.append({"step": name, "id": "", "error": str(exc)})
            return 0

        acted = 0
        for item_id in ids:
            try:
                async with session_scope(self._factory()) as session:
                    if await act(session, item_id, now):
                        acted += 1
            except Exception as exc:
                logger.warning("sweep.item_failed", step=name, item_id=str(item_id), error=str(exc))
                summary.errors.append({"step": name, "id": str(item_id), "error": str(exc)})

        if ids:
            logger.info("sweep.step_done", step=name, candidates=len(ids), acted=acted)
        return acted

    def _factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    async def run_forever(self, interval_seconds: int | None = None) -> None:
        """Sweep every `interval_seconds` until stop() is called."""
        interval = interval_seconds or get_settings().sweep_interval_seconds
        logger.info("sweep.loop_started", interval_seconds=interval)
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("sweep.pass_failed")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except TimeoutError:
                continue
        logger.info("sweep.loop_stopped")

    def start(self, interval_seconds: int | None = None) -> asyncio.Task[None]:
        """Schedule run_forever() on the running loop."""
        self._stopping.clear()
        self._task = asyncio.create_task(self.run_forever(interval_seconds))
        return self._task

    async def stop(self) -> None:
        self._stopping.set()
        if self._task is not None:
            await self._task
            self._task = None
