"""Transfer Service — ticket hand-over between a paid order and its payout.

    seller  submits proof of transfer before the seller deadline
    buyer   confirms receipt (payout released) or reports an issue (dispute)
    sweep   reminds the seller as the deadline nears, cancels and refunds
            when it passes, and confirms on the buyer's behalf when the
            buyer goes quiet

Sweep steps re-check their preconditions on the freshly loaded rows, so a
user action that lands first wins and the sweep becomes a no-op.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from resale_escrow.config import get_settings
from resale_escrow.domain.actor import SYSTEM_ACTOR
from resale_escrow.domain.enums import (
    DisputeReason,
    EventType,
    Initiator,
    NotificationKind,
    OrderStatus,
    PartyRole,
    TransferStatus,
)
from resale_escrow.domain.exceptions import TransferNotFoundError, ValidationError
from resale_escrow.domain.state_machine import OrderStateMachine, TransferStateMachine
from resale_escrow.infrastructure.database.repositories import (
    EventRepository,
    OrderRepository,
    TransferRepository,
)
from resale_escrow.logging_config import get_logger
from resale_escrow.services.dispute_service import DisputeService
from resale_escrow.services.guards import (
    check_urls,
    fire_transition,
    require_party,
    require_role,
    utcnow,
)
from resale_escrow.services.notification_service import NotificationService
from resale_escrow.services.order_service import OrderService

if TYPE_CHECKING:
    import uuid
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from resale_escrow.domain.actor import Actor
    from resale_escrow.infrastructure.database.orm_models import Dispute, Order, Transfer
    from resale_escrow.services.payment_service import PaymentService

logger = get_logger(__name__)


class TransferService:
    """Drives the transfer sub-workflow of an order."""

    def __init__(self, session: AsyncSession, payments: PaymentService) -> None:
        self._session = session
        self._order_repo = OrderRepository(session)
        self._transfer_repo = TransferRepository(session)
        self._event_repo = EventRepository(session)
        self._orders = OrderService(session, payments)
        self._disputes = DisputeService(session, payments)
        self._notifications = NotificationService(session)

    # ------------------------------------------------------------------
    # Seller
    # ------------------------------------------------------------------

    async def submit_proof(
        self,
        seller: Actor,
        order_id: uuid.UUID,
        proof_urls: list[str],
        notes: str | None = None,
        transfer_reference: str | None = None,
    ) -> Transfer:
        """Record the seller's proof and start the buyer's confirmation window."""
        order = await self._orders.get_order_or_raise(order_id)
        require_role(order, seller, PartyRole.SELLER, "submit transfer proof")
        transfer = self._transfer_of(order)
        urls = check_urls(proof_urls, "proof")

        now = utcnow()
        old_transfer = transfer.status
        new_transfer = fire_transition(
            TransferStateMachine, "transfer", old_transfer, "submit_proof"
        )
        old_order = order.status
        new_order = fire_transition(OrderStateMachine, "order", old_order, "seller_submits_proof")

        transfer.status = new_transfer
        transfer.seller_proof_urls = urls
        transfer.seller_notes = notes
        transfer.transfer_reference = transfer_reference
        transfer.proof_submitted_at = now
        transfer.response_deadline = now + timedelta(
            hours=get_settings().buyer_confirmation_window_hours
        )
        order.status = new_order
        await self._transfer_repo.save(transfer)
        await self._order_repo.save(order)

        await self._event_repo.record(
            order,
            EventType.PROOF_SUBMITTED,
            old_status=old_order,
            new_status=new_order,
            actor=seller.id,
            initiated_by=Initiator.USER,
            metadata={"proof_count": len(urls), "transfer_reference": transfer_reference},
        )
        await self._notifications.notify(
            order.buyer_id,
            NotificationKind.PROOF_SUBMITTED,
            "Your ticket has been sent",
            f"Confirm receipt or report a problem by "
            f"{transfer.response_deadline:%Y-%m-%d %H:%M} UTC.",
            link=f"/orders/{order.id}",
        )

        logger.info("transfer.proof_submitted", order_id=str(order.id), proofs=len(urls))
        return transfer

    # ------------------------------------------------------------------
    # Buyer
    # ------------------------------------------------------------------

    async def confirm_receipt(
        self, buyer: Actor, order_id: uuid.UUID, notes: str | None = None
    ) -> Transfer:
        """Buyer confirms the ticket arrived; the seller is paid."""
        order = await self._orders.get_order_or_raise(order_id)
        require_role(order, buyer, PartyRole.BUYER, "confirm receipt")
        return await self._confirm(order, buyer.id, notes, auto=False)

    async def report_issue(
        self,
        buyer: Actor,
        order_id: uuid.UUID,
        notes: str,
        reason: DisputeReason | str | None = None,
    ) -> tuple[Transfer, Dispute]:
        """Buyer reports a problem; the order moves into dispute."""
        order = await self._orders.get_order_or_raise(order_id)
        require_role(order, buyer, PartyRole.BUYER, "report a transfer issue")
        transfer = self._transfer_of(order)
        notes = (notes or "").strip()
        if not notes:
            raise ValidationError("Describe the issue", code="MISSING_NOTES")
        reason = DisputeReason(reason or DisputeReason.TICKET_NOT_RECEIVED)

        now = utcnow()
        old_transfer = transfer.status
        new_transfer = fire_transition(
            TransferStateMachine, "transfer", old_transfer, "report_issue"
        )
        old_order = order.status
        new_order = fire_transition(OrderStateMachine, "order", old_order, "buyer_reports_issue")

        transfer.status = new_transfer
        transfer.buyer_notes = notes
        transfer.buyer_action_at = now
        order.status = new_order
        await self._transfer_repo.save(transfer)
        await self._order_repo.save(order)

        await self._event_repo.record(
            order,
            EventType.ISSUE_REPORTED,
            old_status=old_order,
            new_status=new_order,
            actor=buyer.id,
            initiated_by=Initiator.USER,
            metadata={"reason": reason.value},
        )
        dispute = await self._disputes.open_dispute(
            order,
            opened_by=buyer.id,
            opener_role=PartyRole.BUYER,
            reason=reason,
            description=notes,
            now=now,
        )

        logger.info(
            "transfer.issue_reported",
            order_id=str(order.id),
            dispute_id=str(dispute.id),
            reason=reason.value,
        )
        return transfer, dispute

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_transfer(self, actor: Actor, order_id: uuid.UUID) -> Transfer:
        order = await self._orders.get_order_or_raise(order_id)
        require_party(order, actor, allow_reviewer=True)
        return self._transfer_of(order)

    # ------------------------------------------------------------------
    # Deadline sweep
    # ------------------------------------------------------------------

    async def remind_seller(self, order_id: uuid.UUID, now: datetime | None = None) -> bool:
        """Nudge a seller whose transfer deadline is close.

        The early reminder goes out inside TRANSFER_REMINDER_HOURS of the
        deadline and the urgent one inside TRANSFER_URGENT_REMINDER_HOURS;
        each is sent at most once. An urgent reminder marks the early one as
        sent too. Returns False when nothing was due.
        """
        now = now or utcnow()
        settings = get_settings()
        order = await self._orders.get_order_or_raise(order_id)
        transfer = order.transfer
        if (
            order.status != OrderStatus.CONFIRMED
            or transfer is None
            or transfer.status != TransferStatus.AWAITING_PROOF
            or transfer.response_deadline <= now
        ):
            return False

        remaining = transfer.response_deadline - now
        if remaining <= timedelta(hours=settings.transfer_urgent_reminder_hours):
            if transfer.urgent_reminder_sent_at is not None:
                return False
            transfer.urgent_reminder_sent_at = now
            transfer.early_reminder_sent_at = transfer.early_reminder_sent_at or now
            kind = NotificationKind.TRANSFER_URGENT
            title = "URGENT: Transfer required"
            message = (
                f"Only {settings.transfer_urgent_reminder_hours} hours left to transfer the "
                "ticket. If it is not sent in time the buyer is refunded."
            )
        elif remaining <= timedelta(hours=settings.transfer_reminder_hours):
            if transfer.early_reminder_sent_at is not None:
                return False
            transfer.early_reminder_sent_at = now
            kind = NotificationKind.TRANSFER_REMINDER
            title = "Transfer reminder"
            message = (
                f"You have {settings.transfer_reminder_hours} hours left to transfer the "
                "ticket. Please complete the transfer soon."
            )
        else:
            return False

        await self._transfer_repo.save(transfer)
        await self._notifications.notify(
            order.seller_id, kind, title, message, link=f"/orders/{order.id}"
        )
        logger.info("sweep.transfer_reminder_sent", order_id=str(order.id), kind=kind.value)
        return True

    async def default_seller(self, order_id: uuid.UUID, now: datetime | None = None) -> bool:
        """Cancel and fully refund an order whose seller sent no proof in time.

        Returns False, changing nothing, if proof arrived or the order moved on.
        """
        now = now or utcnow()
        order = await self._orders.get_order_or_raise(order_id)
        transfer = order.transfer
        if (
            order.status != OrderStatus.CONFIRMED
            or transfer is None
            or transfer.status != TransferStatus.AWAITING_PROOF
            or transfer.response_deadline >= now
        ):
            return False

        old_status = order.status
        order.status = fire_transition(OrderStateMachine, "order", old_status, "seller_defaulted")
        order.cancelled_at = now
        order.cancel_reason = "seller_default"
        await self._order_repo.save(order)
        await self._event_repo.record(
            order,
            EventType.SELLER_DEFAULTED,
            old_status=old_status,
            new_status=order.status,
            actor=SYSTEM_ACTOR,
            initiated_by=Initiator.SYSTEM,
            metadata={"deadline": transfer.response_deadline.isoformat()},
        )
        await self._orders.refund(order, order.total, reason="seller_default")

        for recipient, message in (
            (order.buyer_id, "The seller did not transfer in time. You have been fully refunded."),
            (order.seller_id, "You missed the transfer deadline; the order was cancelled."),
        ):
            await self._notifications.notify(
                recipient,
                NotificationKind.ORDER_CANCELLED,
                "Order cancelled",
                message,
                link=f"/orders/{order.id}",
            )

        logger.warning(
            "sweep.seller_defaulted",
            order_id=str(order.id),
            refund=str(order.total),
        )
        return True

    async def handle_buyer_inaction(
        self, order_id: uuid.UUID, now: datetime | None = None
    ) -> bool:
        """Act for a buyer who neither confirmed nor reported before the deadline.

        Auto-confirms by default. With AUTO_CONFIRM_ON_BUYER_INACTION off, a
        buyer_unresponsive dispute is opened instead.
        """
        now = now or utcnow()
        order = await self._orders.get_order_or_raise(order_id)
        transfer = order.transfer
        if (
            order.status != OrderStatus.TRANSFER_PENDING
            or transfer is None
            or transfer.status != TransferStatus.PROOF_SUBMITTED
            or transfer.response_deadline >= now
        ):
            return False

        if get_settings().auto_confirm_on_buyer_inaction:
            await self._confirm(order, SYSTEM_ACTOR, None, auto=True)
            logger.warning("sweep.auto_confirmed", order_id=str(order.id))
            return True

        old_status = order.status
        new_transfer = fire_transition(
            TransferStateMachine, "transfer", transfer.status, "report_issue"
        )
        order.status = fire_transition(
            OrderStateMachine, "order", old_status, "buyer_reports_issue"
        )
        transfer.status = new_transfer
        await self._transfer_repo.save(transfer)
        await self._order_repo.save(order)
        await self._event_repo.record(
            order,
            EventType.ISSUE_REPORTED,
            old_status=old_status,
            new_status=order.status,
            actor=SYSTEM_ACTOR,
            initiated_by=Initiator.SYSTEM,
            metadata={"reason": DisputeReason.BUYER_UNRESPONSIVE.value},
        )
        await self._disputes.open_dispute(
            order,
            opened_by=SYSTEM_ACTOR,
            opener_role=None,
            reason=DisputeReason.BUYER_UNRESPONSIVE,
            description="Buyer did not confirm receipt before the deadline",
            initiated_by=Initiator.SYSTEM,
            now=now,
        )
        logger.warning("sweep.buyer_unresponsive_dispute", order_id=str(order.id))
        return True

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _transfer_of(order: Order) -> Transfer:
        if order.transfer is None:
            raise TransferNotFoundError(str(order.id))
        return order.transfer

    async def _confirm(
        self, order: Order, actor_id: str, notes: str | None, auto: bool
    ) -> Transfer:
        transfer = self._transfer_of(order)
        initiated_by = Initiator.SYSTEM if auto else Initiator.USER

        old_transfer = transfer.status
        new_transfer = fire_transition(
            TransferStateMachine, "transfer", old_transfer, "confirm_receipt"
        )
        old_order = order.status
        new_order = fire_transition(OrderStateMachine, "order", old_order, "buyer_confirms")

        transfer.status = new_transfer
        transfer.buyer_notes = notes
        transfer.buyer_action_at = utcnow()
        transfer.auto_confirmed = auto
        order.status = new_order
        await self._transfer_repo.save(transfer)
        await self._order_repo.save(order)

        await self._event_repo.record(
            order,
            EventType.RECEIPT_AUTO_CONFIRMED if auto else EventType.RECEIPT_CONFIRMED,
            old_status=old_order,
            new_status=new_order,
            actor=actor_id,
            initiated_by=initiated_by,
        )
        await self._notifications.notify(
            order.seller_id,
            NotificationKind.RECEIPT_CONFIRMED,
            "Ticket received",
            (
                "The confirmation window closed without a report; your payout is on its way."
                if auto
                else "The buyer confirmed receipt; your payout is on its way."
            ),
            link=f"/orders/{order.id}",
        )

        await self._orders.release_payout(order, actor=actor_id, initiated_by=initiated_by)
        logger.info("transfer.confirmed", order_id=str(order.id), auto=auto)
        return transfer
