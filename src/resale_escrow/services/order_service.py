"""Order Service — the escrow order lifecycle and settlement.

This is the application layer that coordinates between:
    - Domain state machine (transition guard)
    - Pricing engine (amounts fixed at purchase)
    - Payment rails (hold, charge, release, refund, void)
    - Repositories (data access) and the event log (audit trail)

Transfer and dispute services settle orders through release_payout() and
refund() here, so every money movement on an order goes through one place.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any

from resale_escrow.config import get_settings
from resale_escrow.domain.actor import SYSTEM_ACTOR
from resale_escrow.domain.enums import (
    EventType,
    Initiator,
    NotificationKind,
    OrderStatus,
    PartyRole,
    PayoutStatus,
    TransferStatus,
)
from resale_escrow.domain.exceptions import (
    ConflictError,
    InsufficientQuantityError,
    ListingNotFoundError,
    OrderNotFoundError,
    PaymentError,
    PermissionDeniedError,
    SellerCeilingExceededError,
    ValidationError,
)
from resale_escrow.domain.pricing import FeeRates, quote
from resale_escrow.domain.state_machine import OrderStateMachine
from resale_escrow.infrastructure.database.orm_models import Order, OrderMessage, Transfer
from resale_escrow.infrastructure.database.repositories import (
    EventRepository,
    ListingRepository,
    MessageRepository,
    OrderRepository,
)
from resale_escrow.logging_config import get_logger
from resale_escrow.services.guards import (
    clamp_page,
    fire_transition,
    require_party,
    utcnow,
)
from resale_escrow.services.notification_service import NotificationService
from resale_escrow.services.reputation_service import StaticReputationProvider

if TYPE_CHECKING:
    import uuid
    from datetime import datetime
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession

    from resale_escrow.domain.actor import Actor
    from resale_escrow.domain.seller import ReputationProvider
    from resale_escrow.infrastructure.redis_client import IdempotencyStore
    from resale_escrow.services.payment_service import PaymentService

logger = get_logger(__name__)

MAX_MESSAGE_LENGTH = 2000
PURCHASE_SCOPE = "purchase"


def build_timeline(order: Order) -> list[dict[str, Any]]:
    """Audit events in order, followed by whichever deadline is currently running."""
    settings = get_settings()
    timeline: list[dict[str, Any]] = [
        {
            "kind": "event",
            "at": evt.created_at,
            "type": evt.event_type,
            "entity": evt.entity,
            "old_status": evt.old_status,
            "new_status": evt.new_status,
            "actor": evt.actor,
            "initiated_by": evt.initiated_by,
        }
        for evt in order.events
    ]

    deadline: tuple[str, datetime] | None = None
    if order.status == OrderStatus.PENDING:
        deadline = (
            "payment_due",
            order.created_at + timedelta(minutes=settings.payment_window_minutes),
        )
    elif order.status == OrderStatus.CONFIRMED and order.transfer is not None:
        deadline = ("seller_proof_due", order.transfer.response_deadline)
    elif order.status == OrderStatus.TRANSFER_PENDING and order.transfer is not None:
        deadline = ("buyer_confirmation_due", order.transfer.response_deadline)
    elif (
        order.status == OrderStatus.DISPUTED
        and order.dispute is not None
        and order.dispute.response_deadline is not None
    ):
        deadline = ("dispute_response_due", order.dispute.response_deadline)

    if deadline is not None:
        timeline.append({"kind": "deadline", "type": deadline[0], "at": deadline[1]})
    return timeline


class OrderService:
    """Manages the escrow order lifecycle."""

    def __init__(
        self,
        session: AsyncSession,
        payments: PaymentService,
        reputation: ReputationProvider | None = None,
        idempotency: IdempotencyStore | None = None,
        rates: FeeRates | None = None,
    ) -> None:
        self._session = session
        self._payments = payments
        self._reputation = reputation or StaticReputationProvider()
        self._idempotency = idempotency
        self._rates = rates or FeeRates.from_settings()
        self._order_repo = OrderRepository(session)
        self._listing_repo = ListingRepository(session)
        self._message_repo = MessageRepository(session)
        self._event_repo = EventRepository(session)
        self._notifications = NotificationService(session)

    # ------------------------------------------------------------------
    # Purchase
    # ------------------------------------------------------------------

    async def purchase(
        self,
        buyer: Actor,
        listing_id: uuid.UUID,
        quantity: int = 1,
        idempotency_key: str | None = None,
    ) -> Order:
        """Reserve tickets, price the order and place a payment hold.

        With an idempotency key, a repeated request is refused with
        DuplicateOperationError instead of placing a second order.
        """
        claim_key = f"{buyer.id}:{idempotency_key}" if idempotency_key else None
        if claim_key and self._idempotency is not None:
            await self._idempotency.claim(PURCHASE_SCOPE, claim_key)

        try:
            order = await self._place_order(buyer, listing_id, quantity)
        except Exception:
            if claim_key and self._idempotency is not None:
                await self._idempotency.release(PURCHASE_SCOPE, claim_key)
            raise

        if claim_key and self._idempotency is not None:
            await self._idempotency.remember(PURCHASE_SCOPE, claim_key, str(order.id))
        return order

    async def _place_order(self, buyer: Actor, listing_id: uuid.UUID, quantity: int) -> Order:
        now = utcnow()
        listing = await self._listing_repo.get_by_id(listing_id)
        if listing is None:
            raise ListingNotFoundError(str(listing_id))
        if listing.seller_id == buyer.id:
            raise PermissionDeniedError(
                "Sellers cannot buy their own listing", code="OWN_LISTING"
            )
        if not listing.is_active:
            raise ConflictError("Listing is no longer on sale", code="LISTING_INACTIVE")
        if listing.event_date <= now:
            raise ValidationError("Event has already taken place", code="EVENT_PASSED")

        price = quote(
            listing.original_price, listing.asking_price, quantity, self._rates
        ).ensure_within_limit()
        standing = await self._reputation.get_standing(listing.seller_id)
        if price.asking_price > standing.max_ticket_value:
            raise SellerCeilingExceededError(
                asking_price=str(price.asking_price),
                max_ticket_value=str(standing.max_ticket_value),
                tier=standing.tier.value,
            )

        if not await self._listing_repo.reserve_quantity(listing.id, quantity):
            raise InsufficientQuantityError(str(listing.id), quantity)

        order = Order(
            listing=listing,
            buyer_id=buyer.id,
            buyer_email=buyer.email,
            seller_id=listing.seller_id,
            seller_email=listing.seller_email,
            quantity=quantity,
            unit_price=price.asking_price,
            subtotal=price.subtotal,
            platform_fee=price.platform_fee,
            buyer_protection_fee=price.buyer_protection_fee,
            total=price.buyer_total,
            seller_payout=price.seller_receives,
            currency=get_settings().currency,
            status=OrderStatus.PENDING.value,
            payout_status=PayoutStatus.NOT_DUE.value,
            transfer=None,
            dispute=None,
            events=[],
        )
        order = await self._order_repo.create(order)

        hold = await self._payments.hold(order.id, order.total, buyer.id)
        order.payment_handle = hold.reference
        await self._order_repo.save(order)

        await self._event_repo.record(
            order,
            EventType.ORDER_CREATED,
            old_status=None,
            new_status=OrderStatus.PENDING,
            actor=buyer.id,
            initiated_by=Initiator.USER,
            metadata={"quote": price.to_dict(), "payment_handle": hold.reference},
        )
        await self._notifications.notify(
            order.seller_id,
            NotificationKind.ORDER_PLACED,
            "New order",
            f"{quantity} ticket(s) for {listing.event_name} reserved; awaiting payment.",
            link=f"/orders/{order.id}",
        )

        logger.info(
            "order.created",
            order_id=str(order.id),
            listing_id=str(listing.id),
            quantity=quantity,
            total=str(order.total),
        )
        return order

    # ------------------------------------------------------------------
    # Payment callbacks
    # ------------------------------------------------------------------

    async def capture_payment(self, order_id: uuid.UUID) -> Order:
        """Charge the hold, confirm the order and open the transfer."""
        order = await self._get_order_or_raise(order_id)
        old_status = order.status
        new_status = fire_transition(OrderStateMachine, "order", old_status, "payment_captured")

        now = utcnow()
        charge = await self._payments.charge(order.id, order.payment_handle or "", order.total)
        order.payment_reference = charge.reference
        order.status = new_status
        order.paid_at = now
        order.transfer = Transfer(
            status=TransferStatus.AWAITING_PROOF.value,
            seller_proof_urls=[],
            auto_confirmed=False,
            response_deadline=now
            + timedelta(hours=get_settings().seller_transfer_window_hours),
        )
        await self._order_repo.save(order)

        await self._event_repo.record(
            order,
            EventType.PAYMENT_CAPTURED,
            old_status=old_status,
            new_status=new_status,
            actor="payments",
            initiated_by=Initiator.SYSTEM,
            metadata={"payment_reference": charge.reference},
        )
        await self._notifications.notify(
            order.buyer_id,
            NotificationKind.PAYMENT_CONFIRMED,
            "Payment confirmed",
            "Your payment is held in escrow until you confirm receipt.",
            link=f"/orders/{order.id}",
        )
        due = order.transfer.response_deadline
        await self._notifications.notify(
            order.seller_id,
            NotificationKind.TRANSFER_REQUIRED,
            "Transfer your ticket",
            f"Transfer the ticket and upload proof by {due:%Y-%m-%d %H:%M} UTC.",
            link=f"/orders/{order.id}",
        )

        logger.info("order.confirmed", order_id=str(order.id), reference=charge.reference)
        return order

    async def fail_payment(self, order_id: uuid.UUID, reason: str | None = None) -> Order:
        """Payment declined: void the hold, cancel and restock."""
        order = await self._get_order_or_raise(order_id)
        return await self._cancel_unpaid(
            order,
            event_name="payment_failed",
            event_type=EventType.PAYMENT_FAILED,
            reason=reason or "payment_failed",
        )

    async def expire_payment(self, order_id: uuid.UUID, now: datetime | None = None) -> bool:
        """Cancel an order left unpaid past the payment window. Sweep step.

        Returns False, changing nothing, if the order was paid or cancelled
        in the meantime.
        """
        now = now or utcnow()
        order = await self._get_order_or_raise(order_id)
        window = timedelta(minutes=get_settings().payment_window_minutes)
        if order.status != OrderStatus.PENDING or order.created_at + window > now:
            return False

        await self._cancel_unpaid(
            order,
            event_name="payment_expired",
            event_type=EventType.ORDER_EXPIRED,
            reason="payment_window_elapsed",
        )
        return True

    async def _cancel_unpaid(
        self, order: Order, event_name: str, event_type: EventType, reason: str
    ) -> Order:
        old_status = order.status
        new_status = fire_transition(OrderStateMachine, "order", old_status, event_name)

        void = await self._payments.void(order.id, order.payment_handle, order.total)
        order.status = new_status
        order.cancelled_at = utcnow()
        order.cancel_reason = reason
        await self._order_repo.save(order)
        await self._listing_repo.restock(order.listing_id, order.quantity)

        await self._event_repo.record(
            order,
            event_type,
            old_status=old_status,
            new_status=new_status,
            actor=SYSTEM_ACTOR,
            initiated_by=Initiator.SYSTEM,
            metadata={"reason": reason, "void_reference": void.reference},
        )
        await self._notifications.notify(
            order.buyer_id,
            NotificationKind.ORDER_CANCELLED,
            "Order cancelled",
            "Payment was not completed, so your order has been cancelled.",
            link=f"/orders/{order.id}",
        )

        logger.info("order.cancelled_unpaid", order_id=str(order.id), reason=reason)
        return order

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    async def release_payout(
        self,
        order: Order,
        actor: str = SYSTEM_ACTOR,
        initiated_by: Initiator = Initiator.SYSTEM,
    ) -> Order:
        """Pay the seller and complete a transferred order.

        A rail failure does not raise: the order stays transferred with
        payout_status pending_retry, and the deadline sweep tries again.
        """
        old_status = order.status
        new_status = fire_transition(OrderStateMachine, "order", old_status, "payout_released")

        try:
            receipt = await self._payments.release(order.id, order.seller_id, order.seller_payout)
        except PaymentError as exc:
            order.payout_status = PayoutStatus.PENDING_RETRY.value
            order.payout_attempts = (order.payout_attempts or 0) + 1
            await self._order_repo.save(order)
            await self._event_repo.record(
                order,
                EventType.PAYOUT_DEFERRED,
                old_status=old_status,
                new_status=old_status,
                actor=actor,
                initiated_by=initiated_by,
                metadata={"error": exc.message, "attempts": order.payout_attempts},
            )
            logger.warning(
                "order.payout_deferred",
                order_id=str(order.id),
                attempts=order.payout_attempts,
                error=exc.message,
            )
            return order

        order.payout_status = PayoutStatus.RELEASED.value
        order.payout_amount = order.seller_payout
        order.payout_reference = receipt.reference
        order.payout_attempts = (order.payout_attempts or 0) + 1
        order.status = new_status
        order.completed_at = utcnow()
        await self._order_repo.save(order)

        await self._event_repo.record(
            order,
            EventType.PAYOUT_RELEASED,
            old_status=old_status,
            new_status=new_status,
            actor=actor,
            initiated_by=initiated_by,
            metadata={"amount": str(order.seller_payout), "reference": receipt.reference},
        )
        logger.info(
            "order.completed",
            order_id=str(order.id),
            payout=str(order.seller_payout),
            reference=receipt.reference,
        )
        return order

    async def retry_payout(self, order_id: uuid.UUID) -> bool:
        """Sweep step: retry a deferred payout. False if nothing was owed."""
        order = await self._get_order_or_raise(order_id)
        if (
            order.status != OrderStatus.TRANSFERRED
            or order.payout_status != PayoutStatus.PENDING_RETRY
        ):
            return False
        order = await self.release_payout(order)
        return order.payout_status == PayoutStatus.RELEASED

    async def refund(
        self,
        order: Order,
        amount: Decimal,
        actor: str = SYSTEM_ACTOR,
        initiated_by: Initiator = Initiator.SYSTEM,
        reason: str | None = None,
    ) -> Order:
        """Return `amount` to the buyer. Raises PaymentError if the rail refuses."""
        if amount <= 0 or amount > order.total:
            raise ValidationError(
                f"Refund amount must be between 0.01 and {order.total}",
                code="INVALID_REFUND_AMOUNT",
            )
        receipt = await self._payments.refund(order.id, order.payment_reference, amount)
        order.refund_amount = amount
        order.refund_reference = receipt.reference
        order.refunded_at = utcnow()
        await self._order_repo.save(order)

        await self._event_repo.record(
            order,
            EventType.REFUND_ISSUED,
            old_status=order.status,
            new_status=order.status,
            actor=actor,
            initiated_by=initiated_by,
            metadata={"amount": str(amount), "reference": receipt.reference, "reason": reason},
        )
        logger.info(
            "order.refunded",
            order_id=str(order.id),
            amount=str(amount),
            reference=receipt.reference,
        )
        return order

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_orders(
        self,
        actor: Actor,
        role: PartyRole | None = None,
        status: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Order], int]:
        page, limit = clamp_page(page, limit)
        if status is not None:
            status = OrderStatus(status).value
        return await self._order_repo.list_for_actor(actor.id, role, status, page, limit)

    async def get_order(self, actor: Actor, order_id: uuid.UUID) -> Order:
        """Fetch an order the actor is party to (reviewers see every order)."""
        order = await self._get_order_or_raise(order_id)
        require_party(order, actor, allow_reviewer=True)
        return order

    async def get_order_or_raise(self, order_id: uuid.UUID) -> Order:
        return await self._get_order_or_raise(order_id)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def post_message(self, actor: Actor, order_id: uuid.UUID, body: str) -> OrderMessage:
        order = await self._get_order_or_raise(order_id)
        role = require_party(order, actor)
        body = (body or "").strip()
        if not body:
            raise ValidationError("Message body is required", code="EMPTY_MESSAGE")
        if len(body) > MAX_MESSAGE_LENGTH:
            raise ValidationError(
                f"Messages are limited to {MAX_MESSAGE_LENGTH} characters",
                code="MESSAGE_TOO_LONG",
            )

        message = await self._message_repo.create(
            OrderMessage(order_id=order.id, sender_id=actor.id, body=body)
        )
        await self._event_repo.record(
            order,
            EventType.MESSAGE_POSTED,
            old_status=order.status,
            new_status=order.status,
            actor=actor.id,
            initiated_by=actor.initiator,
            metadata={"message_id": str(message.id)},
        )
        recipient = order.seller_id if role is PartyRole.BUYER else order.buyer_id
        await self._notifications.notify(
            recipient,
            NotificationKind.NEW_MESSAGE,
            "New message",
            body[:140],
            link=f"/orders/{order.id}/messages",
        )
        logger.info("order.message_posted", order_id=str(order.id), sender=actor.id)
        return message

    async def list_messages(
        self, actor: Actor, order_id: uuid.UUID, page: int = 1, limit: int = 50
    ) -> tuple[list[OrderMessage], int]:
        order = await self._get_order_or_raise(order_id)
        require_party(order, actor, allow_reviewer=True)
        page, limit = clamp_page(page, limit)
        return await self._message_repo.list_by_order(order.id, page, limit)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_order_or_raise(self, order_id: uuid.UUID) -> Order:
        order = await self._order_repo.get_by_id(order_id)
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order

