"""Payment Service — moves money through the payment rails.

Five operations, one per escrow side effect:
    hold     purchase intent: reserve the buyer's total, returns a handle
    charge   payment captured: convert the hold into a charge
    release  payout: send the seller's share out of escrow
    refund   return money to the buyer (seller default, dispute resolution)
    void     drop an uncaptured hold (payment failed or expired)

Every call carries an idempotency key derived from the order, so a retried
request or a re-run sweep can never move money twice.

In simulation mode the rails are an in-memory ledger that generates fake
references; `fail_on` makes chosen operations fail for tests. Live mode has
no provider wired in and refuses every call.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from resale_escrow.config import get_settings
from resale_escrow.domain.exceptions import PaymentError
from resale_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from decimal import Decimal

logger = get_logger(__name__)


class TransientPaymentError(Exception):
    """A rail hiccup worth retrying (timeouts, 5xx)."""


@dataclass(frozen=True)
class RailReceipt:
    operation: str
    reference: str
    amount: Decimal
    idempotency_key: str
    simulated: bool


class PaymentService:
    """Handles escrow holds, captures, payouts and refunds."""

    def __init__(
        self,
        simulate: bool | None = None,
        fail_on: set[str] | None = None,
        transient_failures: int = 0,
    ) -> None:
        """Initialize payment service.

        Args:
            simulate: If True, generate fake references instead of calling a provider.
                Defaults to PAYMENT_SIMULATE.
            fail_on: Simulated operations that fail permanently (tests).
            transient_failures: Simulated transient failures before each call succeeds.
        """
        settings = get_settings()
        self._simulate = settings.payment_simulate if simulate is None else simulate
        self._max_attempts = settings.payment_max_attempts
        self.fail_on = set(fail_on or ())
        self._transient_failures = transient_failures
        self._attempts: dict[str, int] = {}
        self._ledger: dict[str, RailReceipt] = {}

    @property
    def ledger(self) -> list[RailReceipt]:
        """Receipts issued so far (simulation only)."""
        return list(self._ledger.values())

    # ------------------------------------------------------------------
    # Rail operations
    # ------------------------------------------------------------------

    async def hold(self, order_id: uuid.UUID, amount: Decimal, buyer_id: str) -> RailReceipt:
        return await self._execute("hold", f"hold:{order_id}", amount, party=buyer_id)

    async def charge(self, order_id: uuid.UUID, handle: str, amount: Decimal) -> RailReceipt:
        return await self._execute("charge", f"charge:{order_id}", amount, source=handle)

    async def release(self, order_id: uuid.UUID, seller_id: str, amount: Decimal) -> RailReceipt:
        return await self._execute("release", f"release:{order_id}", amount, party=seller_id)

    async def refund(
        self, order_id: uuid.UUID, payment_reference: str | None, amount: Decimal
    ) -> RailReceipt:
        return await self._execute(
            "refund", f"refund:{order_id}", amount, source=payment_reference
        )

    async def void(self, order_id: uuid.UUID, handle: str | None, amount: Decimal) -> RailReceipt:
        return await self._execute("void", f"void:{order_id}", amount, source=handle)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _execute(
        self,
        operation: str,
        idempotency_key: str,
        amount: Decimal,
        party: str | None = None,
        source: str | None = None,
    ) -> RailReceipt:
        """Call the rail with retry logic.

        Uses tenacity for exponential backoff on transient failures.
        """
        if not self._simulate:
            raise PaymentError(
                "Live payment rails are not configured; set PAYMENT_SIMULATE=true",
                operation=operation,
            )

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_attempts),
                wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
                retry=retry_if_exception_type(TransientPaymentError),
                reraise=True,
            ):
                with attempt:
                    receipt = self._simulate_call(operation, idempotency_key, amount)
        except TransientPaymentError as exc:
            logger.error(
                "payment.retries_exhausted",
                operation=operation,
                idempotency_key=idempotency_key,
                error=str(exc),
            )
            raise PaymentError(
                f"Payment {operation} failed after retries: {exc}", operation=operation
            ) from exc

        logger.info(
            f"payment.{operation}",
            reference=receipt.reference,
            amount=str(amount),
            party=party,
            source=source,
            idempotency_key=idempotency_key,
            simulated=receipt.simulated,
        )
        return receipt

    def _simulate_call(self, operation: str, idempotency_key: str, amount: Decimal) -> RailReceipt:
        existing = self._ledger.get(idempotency_key)
        if existing is not None:
            return existing

        attempts = self._attempts.get(idempotency_key, 0) + 1
        self._attempts[idempotency_key] = attempts
        if attempts <= self._transient_failures:
            raise TransientPaymentError(f"simulated {operation} timeout (attempt {attempts})")

        if operation in self.fail_on:
            logger.warning("payment.simulated_failure", operation=operation, key=idempotency_key)
            raise PaymentError(f"Simulated {operation} failure", operation=operation)

        receipt = RailReceipt(
            operation=operation,
            reference=f"{operation}_{uuid.uuid4().hex[:24]}",
            amount=amount,
            idempotency_key=idempotency_key,
            simulated=True,
        )
        self._ledger[idempotency_key] = receipt
        return receipt
