"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).

Versioned rows (orders, transfers, disputes, verification requests) are
written through `save()`, which turns SQLAlchemy's StaleDataError into a
domain StaleStateError so the losing side of a race gets a 409.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.orm.exc import StaleDataError

from resale_escrow.domain.enums import (
    DisputeStatus,
    OrderStatus,
    PartyRole,
    PayoutStatus,
    SortOrder,
    TransferStatus,
    VerificationLevel,
    VerificationStatus,
)
from resale_escrow.domain.exceptions import StaleStateError
from resale_escrow.infrastructure.database.orm_models import (
    Dispute,
    FraudAlert,
    Listing,
    ListingPriceChange,
    Notification,
    Order,
    OrderEvent,
    OrderMessage,
    Transfer,
    VerificationRequest,
)

if TYPE_CHECKING:
    import uuid
    from decimal import Decimal

    from sqlalchemy import Select
    from sqlalchemy.ext.asyncio import AsyncSession

    from resale_escrow.domain.enums import EventType, Initiator


async def _flush_versioned(session: AsyncSession, entity: str, entity_id: Any) -> None:
    try:
        await session.flush()
    except StaleDataError as exc:
        raise StaleStateError(entity, str(entity_id)) from exc


async def _count(session: AsyncSession, stmt: Select) -> int:
    counted = select(func.count()).select_from(stmt.order_by(None).subquery())
    result = await session.execute(counted)
    return int(result.scalar_one())


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ListingSearch:
    """Filters and paging for the public listing search."""

    query: str | None = None
    city: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    min_price: Decimal | None = None
    max_price: Decimal | None = None
    ticket_type: str | None = None
    verification_level: str | None = None
    sort: SortOrder = SortOrder.EVENT_DATE
    page: int = 1
    limit: int = 20


_VERIFICATION_RANK = case(
    {level.value: level.rank for level in VerificationLevel},
    value=Listing.verification_level,
    else_=0,
)

_SORT_COLUMNS = {
    SortOrder.EVENT_DATE: (Listing.event_date.asc(),),
    SortOrder.PRICE: (Listing.asking_price.asc(), Listing.event_date.asc()),
    SortOrder.POPULARITY: (Listing.view_count.desc(), Listing.event_date.asc()),
    SortOrder.NEWEST: (Listing.created_at.desc(),),
    SortOrder.RECOMMENDED: (_VERIFICATION_RANK.desc(), Listing.event_date.asc()),
}


class ListingRepository:
    """Data access for listings and their price history."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, listing: Listing) -> Listing:
        """Insert a new listing."""
        self._session.add(listing)
        await self._session.flush()
        return listing

    async def get_by_id(self, listing_id: uuid.UUID) -> Listing | None:
        """Fetch a listing by its UUID."""
        result = await self._session.execute(select(Listing).where(Listing.id == listing_id))
        return result.scalar_one_or_none()

    async def count_active_by_seller(self, seller_id: str) -> int:
        stmt = select(Listing).where(
            Listing.seller_id == seller_id,
            Listing.is_active.is_(True),
            Listing.quantity_available > 0,
        )
        return await _count(self._session, stmt)

    async def count_active_for_event(self, seller_id: str, event_name: str) -> int:
        """The seller's live listings for the same event name (case-insensitive)."""
        stmt = select(Listing).where(
            Listing.seller_id == seller_id,
            Listing.is_active.is_(True),
            func.lower(Listing.event_name) == event_name.lower(),
        )
        return await _count(self._session, stmt)

    async def count_created_since(self, seller_id: str, since: datetime) -> int:
        """Listings a seller created after `since` (velocity check)."""
        stmt = select(Listing).where(Listing.seller_id == seller_id, Listing.created_at >= since)
        return await _count(self._session, stmt)

    async def search(self, search: ListingSearch, now: datetime) -> tuple[list[Listing], int]:
        """Active, in-stock listings for future events matching the filters."""
        stmt = select(Listing).where(
            Listing.is_active.is_(True),
            Listing.quantity_available > 0,
            Listing.event_date > now,
        )
        if search.query:
            pattern = f"%{search.query.lower()}%"
            stmt = stmt.where(func.lower(Listing.event_name).like(pattern))
        if search.city:
            stmt = stmt.where(func.lower(Listing.event_city) == search.city.lower())
        if search.date_from is not None:
            stmt = stmt.where(Listing.event_date >= search.date_from)
        if search.date_to is not None:
            stmt = stmt.where(Listing.event_date <= search.date_to)
        if search.min_price is not None:
            stmt = stmt.where(Listing.asking_price >= search.min_price)
        if search.max_price is not None:
            stmt = stmt.where(Listing.asking_price <= search.max_price)
        if search.ticket_type:
            stmt = stmt.where(Listing.ticket_type == search.ticket_type)
        if search.verification_level:
            stmt = stmt.where(Listing.verification_level == search.verification_level)

        total = await _count(self._session, stmt)
        result = await self._session.execute(
            stmt.order_by(*_SORT_COLUMNS[search.sort], Listing.id)
            .offset((search.page - 1) * search.limit)
            .limit(search.limit)
        )
        return list(result.scalars().all()), total

    async def reserve_quantity(self, listing_id: uuid.UUID, quantity: int) -> bool:
        """Atomically take `quantity` tickets out of stock.

        Returns False when fewer than `quantity` remain; concurrent callers
        can never drive quantity_available below zero.
        """
        result = await self._session.execute(
            update(Listing)
            .where(
                Listing.id == listing_id,
                Listing.is_active.is_(True),
                Listing.quantity_available >= quantity,
            )
            .values(quantity_available=Listing.quantity_available - quantity)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    async def restock(self, listing_id: uuid.UUID, quantity: int) -> None:
        """Return tickets from a cancelled order to stock."""
        await self._session.execute(
            update(Listing)
            .where(
                Listing.id == listing_id,
                Listing.quantity_available + quantity <= Listing.quantity,
            )
            .values(quantity_available=Listing.quantity_available + quantity)
            .execution_options(synchronize_session="fetch")
        )

    async def increment_views(self, listing_ids: list[uuid.UUID]) -> None:
        if not listing_ids:
            return
        await self._session.execute(
            update(Listing)
            .where(Listing.id.in_(listing_ids))
            .values(view_count=Listing.view_count + 1)
            .execution_options(synchronize_session="fetch")
        )

    async def deactivate_starting_before(self, cutoff: datetime) -> int:
        """Take listings off sale once their event is inside the cutoff window."""
        result = await self._session.execute(
            update(Listing)
            .where(Listing.is_active.is_(True), Listing.event_date <= cutoff)
            .values(is_active=False, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)

    async def save(self, listing: Listing) -> Listing:
        await self._session.flush()
        return listing

    async def record_price_change(
        self,
        listing: Listing,
        old_price: Decimal | None,
        new_price: Decimal,
        changed_by: str,
    ) -> ListingPriceChange:
        change = ListingPriceChange(
            old_price=old_price,
            new_price=new_price,
            changed_by=changed_by,
        )
        listing.price_changes.append(change)
        await self._session.flush()
        return change


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


class OrderRepository:
    """Data access for escrow orders."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, order: Order) -> Order:
        """Insert a new order."""
        self._session.add(order)
        await self._session.flush()
        return order

    async def get_by_id(self, order_id: uuid.UUID) -> Order | None:
        """Fetch an order by its UUID."""
        result = await self._session.execute(select(Order).where(Order.id == order_id))
        return result.scalar_one_or_none()

    async def save(self, order: Order) -> Order:
        """Flush changes; a concurrent writer surfaces as StaleStateError."""
        await _flush_versioned(self._session, "order", order.id)
        return order

    async def list_for_actor(
        self,
        actor_id: str,
        role: PartyRole | None,
        status: str | None,
        page: int,
        limit: int,
    ) -> tuple[list[Order], int]:
        """Orders where the actor is buyer or seller (or a specific side), newest first."""
        if role is PartyRole.BUYER:
            stmt = select(Order).where(Order.buyer_id == actor_id)
        elif role is PartyRole.SELLER:
            stmt = select(Order).where(Order.seller_id == actor_id)
        else:
            stmt = select(Order).where(or_(Order.buyer_id == actor_id, Order.seller_id == actor_id))
        if status:
            stmt = stmt.where(Order.status == status)

        total = await _count(self._session, stmt)
        result = await self._session.execute(
            stmt.order_by(Order.created_at.desc()).offset((page - 1) * limit).limit(limit)
        )
        return list(result.scalars().all()), total

    # --- Deadline sweep queries (return ids; each is reprocessed in its own transaction) ---

    async def ids_with_seller_proof_overdue(self, now: datetime, limit: int) -> list[uuid.UUID]:
        result = await self._session.execute(
            select(Order.id)
            .join(Transfer, Transfer.order_id == Order.id)
            .where(
                Order.status == OrderStatus.CONFIRMED.value,
                Transfer.status == TransferStatus.AWAITING_PROOF.value,
                Transfer.response_deadline < now,
            )
            .order_by(Transfer.response_deadline.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def ids_due_transfer_reminder(
        self, now: datetime, early_by: datetime, urgent_by: datetime, limit: int
    ) -> list[uuid.UUID]:
        """Confirmed orders whose transfer deadline entered a reminder window not yet sent."""
        result = await self._session.execute(
            select(Order.id)
            .join(Transfer, Transfer.order_id == Order.id)
            .where(
                Order.status == OrderStatus.CONFIRMED.value,
                Transfer.status == TransferStatus.AWAITING_PROOF.value,
                Transfer.response_deadline > now,
                or_(
                    and_(
                        Transfer.response_deadline <= early_by,
                        Transfer.early_reminder_sent_at.is_(None),
                    ),
                    and_(
                        Transfer.response_deadline <= urgent_by,
                        Transfer.urgent_reminder_sent_at.is_(None),
                    ),
                ),
            )
            .order_by(Transfer.response_deadline.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def ids_with_buyer_confirmation_overdue(
        self, now: datetime, limit: int
    ) -> list[uuid.UUID]:
        result = await self._session.execute(
            select(Order.id)
            .join(Transfer, Transfer.order_id == Order.id)
            .where(
                Order.status == OrderStatus.TRANSFER_PENDING.value,
                Transfer.status == TransferStatus.PROOF_SUBMITTED.value,
                Transfer.response_deadline < now,
            )
            .order_by(Transfer.response_deadline.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def ids_with_payout_pending_retry(self, limit: int) -> list[uuid.UUID]:
        result = await self._session.execute(
            select(Order.id)
            .where(
                Order.status == OrderStatus.TRANSFERRED.value,
                Order.payout_status == PayoutStatus.PENDING_RETRY.value,
            )
            .order_by(Order.updated_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def ids_unpaid_since(self, cutoff: datetime, limit: int) -> list[uuid.UUID]:
        result = await self._session.execute(
            select(Order.id)
            .where(Order.status == OrderStatus.PENDING.value, Order.created_at < cutoff)
            .order_by(Order.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())


class TransferRepository:
    """Data access for transfers."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def save(self, transfer: Transfer) -> Transfer:
        await _flush_versioned(self._session, "transfer", transfer.order_id)
        return transfer


# ---------------------------------------------------------------------------
# Disputes
# ---------------------------------------------------------------------------


_AWAITING_STATUSES = (
    DisputeStatus.OPEN.value,
    DisputeStatus.AWAITING_SELLER.value,
    DisputeStatus.AWAITING_BUYER.value,
)


class DisputeRepository:
    """Data access for dispute cases."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, dispute: Dispute) -> Dispute:
        self._session.add(dispute)
        await self._session.flush()
        return dispute

    async def get_by_id(self, dispute_id: uuid.UUID) -> Dispute | None:
        result = await self._session.execute(select(Dispute).where(Dispute.id == dispute_id))
        return result.scalar_one_or_none()

    async def save(self, dispute: Dispute) -> Dispute:
        await _flush_versioned(self._session, "dispute", dispute.id)
        return dispute

    async def list_for_actor(
        self,
        actor_id: str | None,
        role: PartyRole | None,
        status: str | None,
        page: int,
        limit: int,
    ) -> tuple[list[Dispute], int]:
        """Disputes on the actor's orders. actor_id=None lists every case (reviewers)."""
        stmt = select(Dispute).join(Order, Order.id == Dispute.order_id)
        if actor_id is not None:
            if role is PartyRole.BUYER:
                stmt = stmt.where(Order.buyer_id == actor_id)
            elif role is PartyRole.SELLER:
                stmt = stmt.where(Order.seller_id == actor_id)
            else:
                stmt = stmt.where(or_(Order.buyer_id == actor_id, Order.seller_id == actor_id))
        if status:
            stmt = stmt.where(Dispute.status == status)

        total = await _count(self._session, stmt)
        result = await self._session.execute(
            stmt.order_by(Dispute.created_at.desc()).offset((page - 1) * limit).limit(limit)
        )
        return list(result.scalars().all()), total

    async def ids_with_response_overdue(self, now: datetime, limit: int) -> list[uuid.UUID]:
        result = await self._session.execute(
            select(Dispute.id)
            .where(
                Dispute.status.in_(_AWAITING_STATUSES),
                Dispute.response_deadline.is_not(None),
                Dispute.response_deadline < now,
            )
            .order_by(Dispute.response_deadline.asc())
            .limit(limit)
        )
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


_OPEN_VERIFICATION = (VerificationStatus.PENDING.value, VerificationStatus.FLAGGED.value)


class VerificationRepository:
    """Data access for verification requests."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, request: VerificationRequest) -> VerificationRequest:
        self._session.add(request)
        await self._session.flush()
        return request

    async def get_by_id(self, request_id: uuid.UUID) -> VerificationRequest | None:
        result = await self._session.execute(
            select(VerificationRequest).where(VerificationRequest.id == request_id)
        )
        return result.scalar_one_or_none()

    async def get_open_for_listing(self, listing_id: uuid.UUID) -> VerificationRequest | None:
        """The listing's current cycle: pending or flagged, newest first."""
        result = await self._session.execute(
            select(VerificationRequest)
            .where(
                VerificationRequest.listing_id == listing_id,
                VerificationRequest.status.in_(_OPEN_VERIFICATION),
            )
            .order_by(VerificationRequest.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def save(self, request: VerificationRequest) -> VerificationRequest:
        await _flush_versioned(self._session, "verification request", request.id)
        return request

    async def count_reference_reuse(self, order_reference: str, listing_id: uuid.UUID) -> int:
        """Other listings that already presented the same primary order reference."""
        stmt = select(VerificationRequest.listing_id).where(
            func.upper(VerificationRequest.order_reference) == order_reference.upper(),
            VerificationRequest.listing_id != listing_id,
            VerificationRequest.status != VerificationStatus.REJECTED.value,
        ).distinct()
        return await _count(self._session, stmt)

    async def queue(
        self,
        status: str | None,
        page: int,
        limit: int,
    ) -> tuple[list[VerificationRequest], int]:
        """Submitted requests awaiting a reviewer, oldest submission first."""
        statuses = (status,) if status else _OPEN_VERIFICATION
        stmt = select(VerificationRequest).where(
            VerificationRequest.submitted_at.is_not(None),
            VerificationRequest.status.in_(statuses),
        )
        total = await _count(self._session, stmt)
        result = await self._session.execute(
            stmt.order_by(VerificationRequest.submitted_at.asc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total


# ---------------------------------------------------------------------------
# Messages, events, notifications (append-only)
# ---------------------------------------------------------------------------


class MessageRepository:
    """Data access for the append-only order message thread."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, message: OrderMessage) -> OrderMessage:
        self._session.add(message)
        await self._session.flush()
        return message

    async def list_by_order(
        self, order_id: uuid.UUID, page: int, limit: int
    ) -> tuple[list[OrderMessage], int]:
        stmt = select(OrderMessage).where(OrderMessage.order_id == order_id)
        total = await _count(self._session, stmt)
        result = await self._session.execute(
            stmt.order_by(OrderMessage.created_at.asc()).offset((page - 1) * limit).limit(limit)
        )
        return list(result.scalars().all()), total


class EventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        order: Order,
        event_type: EventType,
        old_status: str | None,
        new_status: str,
        actor: str,
        initiated_by: Initiator,
        entity: str = "order",
        metadata: dict | None = None,
    ) -> OrderEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = OrderEvent(
            event_type=event_type.value,
            entity=entity,
            old_status=old_status,
            new_status=new_status,
            actor=actor,
            initiated_by=initiated_by.value,
            metadata_json=metadata,
        )
        # Appending through the relationship keeps order.events current in-session
        order.events.append(evt)
        await self._session.flush()
        return evt


class NotificationRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, notification: Notification) -> Notification:
        self._session.add(notification)
        await self._session.flush()
        return notification


class FraudAlertRepository:
    """Data access for the append-only fraud alert log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, alert: FraudAlert) -> FraudAlert:
        self._session.add(alert)
        await self._session.flush()
        return alert

    async def list_alerts(
        self, user_id: str | None, page: int, limit: int
    ) -> tuple[list[FraudAlert], int]:
        stmt = select(FraudAlert)
        if user_id is not None:
            stmt = stmt.where(FraudAlert.user_id == user_id)
        total = await _count(self._session, stmt)
        result = await self._session.execute(
            stmt.order_by(FraudAlert.created_at.desc()).offset((page - 1) * limit).limit(limit)
        )
        return list(result.scalars().all()), total
