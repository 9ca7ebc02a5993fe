"""Dispute Service — the dispute resolution engine.

A dispute opens when a buyer reports a problem with a transfer (or when the
deadline sweep gives up on an unresponsive buyer). From there:

    parties   submit one statement each, then add evidence
    reviewer  begins review, requests a response from one party, escalates,
              resolves with a money split, and finally closes the case
    sweep     escalates a case whose awaited party let the deadline lapse,
              recording that party as defaulted
    opener    may withdraw before resolution; the order then completes

A case opened as ticket_invalid, ticket_not_received or wrong_ticket also
writes a fraud alert against the seller for reviewers to follow up.

Resolution amounts are computed and checked by domain/resolution.py before
any money moves. Refunds and payouts run in the same transaction as the
status change, so a rail failure leaves the case unresolved.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from resale_escrow.config import get_settings
from resale_escrow.domain.actor import SYSTEM_ACTOR
from resale_escrow.domain.enums import (
    DisputeReason,
    DisputeStatus,
    EventType,
    FraudSeverity,
    Initiator,
    NotificationKind,
    OrderStatus,
    PartyRole,
    PayoutStatus,
    ResolutionOutcome,
)
from resale_escrow.domain.exceptions import (
    DisputeNotFoundError,
    InvalidStateTransitionError,
    StatementAlreadySubmittedError,
    ValidationError,
    WrongPartyError,
)
from resale_escrow.domain.resolution import OrderFinancials, allocate
from resale_escrow.domain.state_machine import DisputeStateMachine, OrderStateMachine
from resale_escrow.infrastructure.database.orm_models import Dispute, FraudAlert
from resale_escrow.infrastructure.database.repositories import (
    DisputeRepository,
    EventRepository,
    FraudAlertRepository,
    OrderRepository,
)
from resale_escrow.logging_config import get_logger
from resale_escrow.services.guards import (
    check_urls,
    clamp_page,
    counterparty,
    fire_transition,
    require_party,
    require_reviewer,
    utcnow,
)
from resale_escrow.services.notification_service import NotificationService
from resale_escrow.services.order_service import OrderService

if TYPE_CHECKING:
    import uuid
    from datetime import datetime
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession

    from resale_escrow.domain.actor import Actor
    from resale_escrow.infrastructure.database.orm_models import Order
    from resale_escrow.services.payment_service import PaymentService

logger = get_logger(__name__)

MAX_EVIDENCE_PER_PARTY = 20

_AWAITING = frozenset(
    {DisputeStatus.OPEN, DisputeStatus.AWAITING_SELLER, DisputeStatus.AWAITING_BUYER}
)
_SETTLED = frozenset(
    {
        DisputeStatus.RESOLVED_BUYER_FAVOR,
        DisputeStatus.RESOLVED_SELLER_FAVOR,
        DisputeStatus.RESOLVED_PARTIAL,
        DisputeStatus.CLOSED,
    }
)

# Reasons that point at the seller; opening on one raises a fraud alert
_SELLER_FRAUD_SIGNALS = frozenset(
    {DisputeReason.TICKET_INVALID, DisputeReason.TICKET_NOT_RECEIVED, DisputeReason.WRONG_TICKET}
)


class DisputeService:
    """Manages dispute cases from opening to closure."""

    def __init__(self, session: AsyncSession, payments: PaymentService) -> None:
        self._session = session
        self._payments = payments
        self._dispute_repo = DisputeRepository(session)
        self._order_repo = OrderRepository(session)
        self._event_repo = EventRepository(session)
        self._alert_repo = FraudAlertRepository(session)
        self._orders = OrderService(session, payments)
        self._notifications = NotificationService(session)

    # ------------------------------------------------------------------
    # Opening
    # ------------------------------------------------------------------

    async def open_dispute(
        self,
        order: Order,
        opened_by: str,
        opener_role: PartyRole | None,
        reason: DisputeReason | str,
        description: str | None = None,
        initiated_by: Initiator = Initiator.USER,
        now: datetime | None = None,
    ) -> Dispute:
        """Open a case on a disputed order.

        The caller has already moved the order to disputed. The opener's
        description becomes their statement; the other side is given the
        response window. A system-opened case (opener_role None) waits on
        the buyer.
        """
        now = now or utcnow()
        reason = DisputeReason(reason)
        awaited = counterparty(opener_role) if opener_role else PartyRole.BUYER

        dispute = Dispute(
            order_id=order.id,
            opened_by=opened_by,
            opened_by_role=opener_role.value if opener_role else Initiator.SYSTEM.value,
            reason=reason.value,
            description=description,
            status=DisputeStatus.OPEN.value,
            buyer_evidence=[],
            seller_evidence=[],
            awaiting_party=awaited.value,
            response_deadline=now
            + timedelta(hours=get_settings().dispute_response_window_hours),
        )
        if opener_role is not None and description:
            self._set_statement(dispute, opener_role, description.strip(), [], now)

        order.dispute = dispute
        dispute = await self._dispute_repo.create(dispute)

        await self._event_repo.record(
            order,
            EventType.DISPUTE_OPENED,
            old_status=None,
            new_status=DisputeStatus.OPEN,
            actor=opened_by,
            initiated_by=initiated_by,
            entity="dispute",
            metadata={"dispute_id": str(dispute.id), "reason": reason.value},
        )
        if reason in _SELLER_FRAUD_SIGNALS:
            await self._record_fraud_alert(order, dispute, reason, opener_role)
        await self._notify_party(
            order,
            awaited,
            NotificationKind.DISPUTE_OPENED,
            "A dispute has been opened",
            f"Respond by {dispute.response_deadline:%Y-%m-%d %H:%M} UTC.",
            dispute,
        )

        logger.info(
            "dispute.opened",
            dispute_id=str(dispute.id),
            order_id=str(order.id),
            reason=reason.value,
            initiated_by=initiated_by.value,
        )
        return dispute

    # ------------------------------------------------------------------
    # Party actions
    # ------------------------------------------------------------------

    async def respond(
        self,
        actor: Actor,
        dispute_id: uuid.UUID,
        statement: str,
        evidence: list[str] | None = None,
    ) -> Dispute:
        """Submit the actor's one statement on the case.

        An open case moves to review when the non-opening party answers;
        an awaiting case moves back to review when the awaited party does.
        """
        dispute = await self._get_dispute_or_raise(dispute_id)
        order = dispute.order
        role = require_party(order, actor)
        status = DisputeStatus(dispute.status)

        if status in _SETTLED:
            raise InvalidStateTransitionError("dispute", status, "respond")
        statement = (statement or "").strip()
        if not statement:
            raise ValidationError("A statement is required", code="MISSING_STATEMENT")
        if self._statement_of(dispute, role) is not None:
            raise StatementAlreadySubmittedError(role.value)
        urls = check_urls(evidence, "evidence") if evidence else []

        now = utcnow()
        self._set_statement(dispute, role, statement, urls, now)
        advanced = await self._advance_if_awaited(
            dispute, order, actor, role, EventType.DISPUTE_RESPONDED
        )
        if not advanced:
            await self._event_repo.record(
                order,
                EventType.DISPUTE_RESPONDED,
                old_status=dispute.status,
                new_status=dispute.status,
                actor=actor.id,
                initiated_by=Initiator.USER,
                entity="dispute",
                metadata={"party": role.value},
            )
        await self._dispute_repo.save(dispute)

        await self._notify_party(
            order,
            counterparty(role),
            NotificationKind.DISPUTE_UPDATED,
            "Dispute updated",
            f"The {role.value} has submitted their statement.",
            dispute,
        )
        logger.info("dispute.responded", dispute_id=str(dispute.id), party=role.value)
        return dispute

    async def add_evidence(
        self, actor: Actor, dispute_id: uuid.UUID, evidence: list[str]
    ) -> Dispute:
        """Append evidence URLs. Nothing already submitted can be removed."""
        dispute = await self._get_dispute_or_raise(dispute_id)
        order = dispute.order
        role = require_party(order, actor)
        status = DisputeStatus(dispute.status)
        if status in _SETTLED:
            raise InvalidStateTransitionError("dispute", status, "add_evidence")

        urls = check_urls(evidence, "evidence")
        existing = self._evidence_of(dispute, role)
        if len(existing) + len(urls) > MAX_EVIDENCE_PER_PARTY:
            raise ValidationError(
                f"At most {MAX_EVIDENCE_PER_PARTY} evidence items per party",
                code="TOO_MANY_EVIDENCE",
            )
        # JSON columns are reassigned so the change is tracked
        if role is PartyRole.BUYER:
            dispute.buyer_evidence = [*existing, *urls]
        else:
            dispute.seller_evidence = [*existing, *urls]

        advanced = await self._advance_if_awaited(
            dispute, order, actor, role, EventType.DISPUTE_RESPONDED
        )
        if not advanced:
            await self._event_repo.record(
                order,
                EventType.DISPUTE_EVIDENCE_ADDED,
                old_status=dispute.status,
                new_status=dispute.status,
                actor=actor.id,
                initiated_by=Initiator.USER,
                entity="dispute",
                metadata={"party": role.value, "count": len(urls)},
            )
        await self._dispute_repo.save(dispute)

        logger.info(
            "dispute.evidence_added", dispute_id=str(dispute.id), party=role.value, count=len(urls)
        )
        return dispute

    async def withdraw(self, actor: Actor, dispute_id: uuid.UUID) -> Dispute:
        """The opener drops the claim; the order completes with the full payout."""
        dispute = await self._get_dispute_or_raise(dispute_id)
        order = dispute.order
        require_party(order, actor)
        if dispute.opened_by != actor.id:
            raise WrongPartyError("withdraw this dispute", "party who opened it")

        now = utcnow()
        old_dispute = dispute.status
        dispute.status = fire_transition(DisputeStateMachine, "dispute", old_dispute, "withdraw")
        old_order = order.status
        new_order = fire_transition(OrderStateMachine, "order", old_order, "dispute_withdrawn")

        receipt = await self._payments.release(order.id, order.seller_id, order.seller_payout)
        order.payout_status = PayoutStatus.RELEASED.value
        order.payout_amount = order.seller_payout
        order.payout_reference = receipt.reference
        order.status = new_order
        order.completed_at = now
        dispute.closed_at = now
        dispute.awaiting_party = None
        dispute.response_deadline = None
        await self._dispute_repo.save(dispute)
        await self._order_repo.save(order)

        await self._event_repo.record(
            order,
            EventType.DISPUTE_WITHDRAWN,
            old_status=old_dispute,
            new_status=dispute.status,
            actor=actor.id,
            initiated_by=Initiator.USER,
            entity="dispute",
        )
        await self._event_repo.record(
            order,
            EventType.ORDER_COMPLETED,
            old_status=old_order,
            new_status=new_order,
            actor=actor.id,
            initiated_by=Initiator.USER,
            metadata={"payout_reference": receipt.reference},
        )
        await self._notify_both(
            order,
            NotificationKind.DISPUTE_RESOLVED,
            "Dispute withdrawn",
            "The dispute was withdrawn and the order is complete.",
            dispute,
        )
        logger.info("dispute.withdrawn", dispute_id=str(dispute.id), order_id=str(order.id))
        return dispute

    # ------------------------------------------------------------------
    # Reviewer actions
    # ------------------------------------------------------------------

    async def begin_review(self, reviewer: Actor, dispute_id: uuid.UUID) -> Dispute:
        require_reviewer(reviewer, "begin dispute review")
        dispute = await self._get_dispute_or_raise(dispute_id)
        await self._reviewer_transition(
            dispute, reviewer, "begin_review", EventType.DISPUTE_REVIEW_STARTED
        )
        logger.info("dispute.review_started", dispute_id=str(dispute.id), reviewer=reviewer.id)
        return dispute

    async def request_response(
        self,
        reviewer: Actor,
        dispute_id: uuid.UUID,
        party: PartyRole | str,
        notes: str | None = None,
    ) -> Dispute:
        """Ask one party for more information, with a fresh deadline."""
        require_reviewer(reviewer, "request a dispute response")
        party = PartyRole(party)
        dispute = await self._get_dispute_or_raise(dispute_id)
        event = (
            "request_seller_response" if party is PartyRole.SELLER else "request_buyer_response"
        )

        dispute.awaiting_party = party.value
        dispute.response_deadline = utcnow() + timedelta(
            hours=get_settings().dispute_response_window_hours
        )
        await self._reviewer_transition(
            dispute,
            reviewer,
            event,
            EventType.DISPUTE_RESPONSE_REQUESTED,
            metadata={"party": party.value, "notes": notes},
        )
        await self._notify_party(
            dispute.order,
            party,
            NotificationKind.DISPUTE_RESPONSE_REQUESTED,
            "Response requested",
            notes or "A reviewer has asked for more information on your dispute.",
            dispute,
        )
        logger.info("dispute.response_requested", dispute_id=str(dispute.id), party=party.value)
        return dispute

    async def escalate(
        self, reviewer: Actor, dispute_id: uuid.UUID, notes: str | None = None
    ) -> Dispute:
        require_reviewer(reviewer, "escalate a dispute")
        dispute = await self._get_dispute_or_raise(dispute_id)
        await self._reviewer_transition(
            dispute, reviewer, "escalate", EventType.DISPUTE_ESCALATED, metadata={"notes": notes}
        )
        logger.info("dispute.escalated", dispute_id=str(dispute.id), reviewer=reviewer.id)
        return dispute

    async def resolve(
        self,
        reviewer: Actor,
        dispute_id: uuid.UUID,
        outcome: ResolutionOutcome | str,
        notes: str | None = None,
        refund_amount: Decimal | str | None = None,
        seller_payout_amount: Decimal | str | None = None,
        void_platform_fee: bool = False,
    ) -> Dispute:
        """Decide the case and move the money."""
        require_reviewer(reviewer, "resolve a dispute")
        dispute = await self._get_dispute_or_raise(dispute_id)
        order = dispute.order

        allocation = allocate(
            outcome,
            OrderFinancials(
                total=order.total,
                seller_payout=order.seller_payout,
                platform_fee=order.platform_fee,
            ),
            refund_amount=refund_amount,
            seller_payout_amount=seller_payout_amount,
            void_platform_fee=void_platform_fee,
        )
        old_dispute = dispute.status
        new_dispute = fire_transition(
            DisputeStateMachine, "dispute", old_dispute, allocation.dispute_event
        )
        old_order = order.status
        new_order = fire_transition(OrderStateMachine, "order", old_order, allocation.order_event)

        now = utcnow()
        if allocation.refund_amount > 0:
            await self._orders.refund(
                order,
                allocation.refund_amount,
                actor=reviewer.id,
                initiated_by=Initiator.REVIEWER,
                reason=f"dispute_{allocation.outcome.value}",
            )
        payout_reference = None
        if allocation.seller_payout_amount > 0:
            receipt = await self._payments.release(
                order.id, order.seller_id, allocation.seller_payout_amount
            )
            payout_reference = receipt.reference
            order.payout_status = PayoutStatus.RELEASED.value
            order.payout_amount = allocation.seller_payout_amount
            order.payout_reference = receipt.reference

        order.status = new_order
        if allocation.order_status is OrderStatus.COMPLETED:
            order.completed_at = now

        dispute.status = new_dispute
        dispute.resolution = allocation.outcome.value
        dispute.resolution_notes = notes
        dispute.refund_amount = allocation.refund_amount
        dispute.seller_payout_amount = allocation.seller_payout_amount
        dispute.platform_fee_voided = allocation.platform_fee_voided
        dispute.resolved_by = reviewer.id
        dispute.resolved_at = now
        dispute.awaiting_party = None
        dispute.response_deadline = None
        await self._dispute_repo.save(dispute)
        await self._order_repo.save(order)

        await self._event_repo.record(
            order,
            EventType.DISPUTE_RESOLVED,
            old_status=old_dispute,
            new_status=new_dispute,
            actor=reviewer.id,
            initiated_by=Initiator.REVIEWER,
            entity="dispute",
            metadata={
                "outcome": allocation.outcome.value,
                "refund_amount": str(allocation.refund_amount),
                "seller_payout_amount": str(allocation.seller_payout_amount),
                "platform_fee_voided": allocation.platform_fee_voided,
                "defaulted_party": dispute.defaulted_party,
            },
        )
        await self._event_repo.record(
            order,
            (
                EventType.ORDER_COMPLETED
                if allocation.order_status is OrderStatus.COMPLETED
                else EventType.ORDER_REFUNDED
            ),
            old_status=old_order,
            new_status=new_order,
            actor=reviewer.id,
            initiated_by=Initiator.REVIEWER,
            metadata={"payout_reference": payout_reference},
        )
        await self._notify_both(
            order,
            NotificationKind.DISPUTE_RESOLVED,
            "Dispute resolved",
            f"Refund {allocation.refund_amount}, seller payout "
            f"{allocation.seller_payout_amount} {order.currency}.",
            dispute,
        )

        logger.info(
            "dispute.resolved",
            dispute_id=str(dispute.id),
            outcome=allocation.outcome.value,
            refund=str(allocation.refund_amount),
            payout=str(allocation.seller_payout_amount),
        )
        return dispute

    async def close(
        self, reviewer: Actor, dispute_id: uuid.UUID, notes: str | None = None
    ) -> Dispute:
        require_reviewer(reviewer, "close a dispute")
        dispute = await self._get_dispute_or_raise(dispute_id)
        dispute.closed_at = utcnow()
        await self._reviewer_transition(
            dispute, reviewer, "close", EventType.DISPUTE_CLOSED, metadata={"notes": notes}
        )
        logger.info("dispute.closed", dispute_id=str(dispute.id))
        return dispute

    # ------------------------------------------------------------------
    # Deadline sweep
    # ------------------------------------------------------------------

    async def lapse_deadline(self, dispute_id: uuid.UUID, now: datetime | None = None) -> bool:
        """Escalate a case whose awaited party missed the deadline.

        Returns False, changing nothing, if the party answered in time or
        the case moved on.
        """
        now = now or utcnow()
        dispute = await self._get_dispute_or_raise(dispute_id)
        if (
            DisputeStatus(dispute.status) not in _AWAITING
            or dispute.response_deadline is None
            or dispute.response_deadline >= now
        ):
            return False

        order = dispute.order
        old_status = dispute.status
        dispute.status = fire_transition(
            DisputeStateMachine, "dispute", old_status, "deadline_lapsed"
        )
        dispute.defaulted_party = dispute.awaiting_party
        dispute.awaiting_party = None
        dispute.response_deadline = None
        await self._dispute_repo.save(dispute)

        await self._event_repo.record(
            order,
            EventType.DISPUTE_ESCALATED,
            old_status=old_status,
            new_status=dispute.status,
            actor=SYSTEM_ACTOR,
            initiated_by=Initiator.SYSTEM,
            entity="dispute",
            metadata={"defaulted_party": dispute.defaulted_party},
        )
        logger.warning(
            "sweep.dispute_escalated",
            dispute_id=str(dispute.id),
            defaulted_party=dispute.defaulted_party,
        )
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_disputes(
        self,
        actor: Actor,
        role: PartyRole | None = None,
        status: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Dispute], int]:
        """Disputes on the actor's orders; reviewers see every case."""
        page, limit = clamp_page(page, limit)
        if status is not None:
            status = DisputeStatus(status).value
        actor_id = None if actor.is_reviewer else actor.id
        return await self._dispute_repo.list_for_actor(actor_id, role, status, page, limit)

    async def get_dispute(self, actor: Actor, dispute_id: uuid.UUID) -> Dispute:
        dispute = await self._get_dispute_or_raise(dispute_id)
        require_party(dispute.order, actor, allow_reviewer=True)
        return dispute

    async def list_fraud_alerts(
        self,
        reviewer: Actor,
        user_id: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[FraudAlert], int]:
        require_reviewer(reviewer, "list fraud alerts")
        page, limit = clamp_page(page, limit)
        return await self._alert_repo.list_alerts(user_id, page, limit)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_dispute_or_raise(self, dispute_id: uuid.UUID) -> Dispute:
        dispute = await self._dispute_repo.get_by_id(dispute_id)
        if dispute is None:
            raise DisputeNotFoundError(str(dispute_id))
        return dispute

    async def _record_fraud_alert(
        self,
        order: Order,
        dispute: Dispute,
        reason: DisputeReason,
        opener_role: PartyRole | None,
    ) -> None:
        await self._alert_repo.create(
            FraudAlert(
                user_id=order.seller_id,
                entity_type="order",
                entity_id=order.id,
                alert_type="disputed_transaction",
                description=f"Dispute opened: {reason.value}",
                evidence={
                    "dispute_id": str(dispute.id),
                    "reason": reason.value,
                    "buyer_initiated": opener_role is PartyRole.BUYER,
                },
                severity=FraudSeverity.MEDIUM.value,
                confidence_score=50,
            )
        )
        logger.warning(
            "fraud.alert_recorded",
            seller_id=order.seller_id,
            order_id=str(order.id),
            reason=reason.value,
        )

    async def _reviewer_transition(
        self,
        dispute: Dispute,
        reviewer: Actor,
        event_name: str,
        event_type: EventType,
        metadata: dict | None = None,
    ) -> None:
        old_status = dispute.status
        dispute.status = fire_transition(DisputeStateMachine, "dispute", old_status, event_name)
        if dispute.status in (DisputeStatus.UNDER_REVIEW, DisputeStatus.ESCALATED):
            dispute.awaiting_party = None
            dispute.response_deadline = None
        await self._dispute_repo.save(dispute)
        await self._event_repo.record(
            dispute.order,
            event_type,
            old_status=old_status,
            new_status=dispute.status,
            actor=reviewer.id,
            initiated_by=Initiator.REVIEWER,
            entity="dispute",
            metadata=metadata,
        )

    async def _advance_if_awaited(
        self,
        dispute: Dispute,
        order: Order,
        actor: Actor,
        role: PartyRole,
        event_type: EventType,
    ) -> bool:
        """Move the case to review if `role` is the party it was waiting on."""
        status = DisputeStatus(dispute.status)
        if status not in _AWAITING or dispute.awaiting_party != role.value:
            return False

        old_status = dispute.status
        dispute.status = fire_transition(DisputeStateMachine, "dispute", old_status, "respond")
        dispute.awaiting_party = None
        dispute.response_deadline = None
        await self._event_repo.record(
            order,
            event_type,
            old_status=old_status,
            new_status=dispute.status,
            actor=actor.id,
            initiated_by=Initiator.USER,
            entity="dispute",
            metadata={"party": role.value},
        )
        return True

    @staticmethod
    def _statement_of(dispute: Dispute, role: PartyRole) -> str | None:
        return dispute.buyer_statement if role is PartyRole.BUYER else dispute.seller_statement

    @staticmethod
    def _evidence_of(dispute: Dispute, role: PartyRole) -> list[str]:
        if role is PartyRole.BUYER:
            return list(dispute.buyer_evidence or [])
        return list(dispute.seller_evidence or [])

    @staticmethod
    def _set_statement(
        dispute: Dispute,
        role: PartyRole,
        statement: str,
        evidence: list[str],
        now: datetime,
    ) -> None:
        if role is PartyRole.BUYER:
            dispute.buyer_statement = statement
            dispute.buyer_evidence = [*(dispute.buyer_evidence or []), *evidence]
            dispute.buyer_submitted_at = now
        else:
            dispute.seller_statement = statement
            dispute.seller_evidence = [*(dispute.seller_evidence or []), *evidence]
            dispute.seller_submitted_at = now

    async def _notify_party(
        self,
        order: Order,
        party: PartyRole,
        kind: NotificationKind,
        title: str,
        message: str,
        dispute: Dispute,
    ) -> None:
        recipient = order.buyer_id if party is PartyRole.BUYER else order.seller_id
        await self._notifications.notify(
            recipient, kind, title, message, link=f"/disputes/{dispute.id}"
        )

    async def _notify_both(
        self,
        order: Order,
        kind: NotificationKind,
        title: str,
        message: str,
        dispute: Dispute,
    ) -> None:
        for party in (PartyRole.BUYER, PartyRole.SELLER):
            await self._notify_party(order, party, kind, title, message, dispute)

