"""SQLAlchemy 2.0 ORM models for the resale escrow core.

Tables:
    1. listings                — Tickets offered for resale.
    2. listing_price_changes   — Append-only price history per listing.
    3. orders                  — Escrow orders between a buyer and a seller.
    4. transfers               — Ticket hand-over sub-workflow (1:1 with order).
    5. disputes                — Dispute case (0..1 per order).
    6. order_messages          — Append-only buyer/seller thread.
    7. order_events            — Append-only audit log of every transition.
    8. verification_requests   — Proof + fraud-check cycles for a listing.
    9. notifications           — Outbox of notices emitted to users.
   10. fraud_alerts            — Append-only fraud signals raised against users.

Design decisions:
    - UUIDs as primary keys (no sequential leakage).
    - Numeric(10, 2) for GBP amounts (no floating point rounding errors).
    - JSON columns (JSONB on PostgreSQL) for proofs, evidence and oracle output.
    - CHECK constraints on statuses and amounts at DB level.
    - `version` counters on orders, transfers, disputes and verification
      requests drive optimistic concurrency: a concurrent writer's flush
      fails with StaleDataError instead of silently overwriting.
    - Listing inventory is never read-modify-written; it changes through
      conditional UPDATE statements in ListingRepository.
    - order_events and order_messages are append-only.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    Uuid,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from resale_escrow.domain.enums import (
    DisputeReason,
    DisputeStatus,
    FraudSeverity,
    Initiator,
    OrderStatus,
    PayoutStatus,
    TicketType,
    TransferStatus,
    VerificationLevel,
    VerificationStatus,
)

JSONType = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(10, 2)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _in_list(column: str, enum_cls: type) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC timestamps on every backend.

    PostgreSQL returns aware values already; SQLite hands back naive ones,
    which are tagged as UTC on load.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# Helper: auto-set updated_at on flush
# ---------------------------------------------------------------------------
def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = _utcnow()


# ---------------------------------------------------------------------------
# 1. listings
# ---------------------------------------------------------------------------
class Listing(Base):
    """A ticket (or block of identical tickets) offered for resale."""

    __tablename__ = "listings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Seller ---
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False)
    seller_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # --- Event ---
    event_name: Mapped[str] = mapped_column(String(200), nullable=False)
    event_venue: Mapped[str] = mapped_column(String(200), nullable=False)
    event_city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    event_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    # --- Ticket ---
    ticket_type: Mapped[str] = mapped_column(String(32), nullable=False)
    ticket_source: Mapped[str | None] = mapped_column(String(32), nullable=True)
    transfer_method: Mapped[str | None] = mapped_column(String(32), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Tickets originally listed",
    )
    quantity_available: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Tickets not yet held by an order; decremented atomically",
    )

    # --- Pricing ---
    original_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    asking_price: Mapped[Decimal] = mapped_column(Money, nullable=False)

    # --- Trust / visibility ---
    verification_level: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=VerificationLevel.UNVERIFIED.value,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    fraud_score: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Heuristic risk score at creation (0-100)",
    )
    expires_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
        comment="Listing cutoff before the event starts",
    )

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow
    )

    # --- Relationships ---
    price_changes: Mapped[list[ListingPriceChange]] = relationship(
        "ListingPriceChange",
        back_populates="listing",
        cascade="all, delete-orphan",
        order_by="ListingPriceChange.created_at.asc()",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint(_in_list("ticket_type", TicketType), name="ck_listing_ticket_type"),
        CheckConstraint(
            _in_list("verification_level", VerificationLevel),
            name="ck_listing_verification_level",
        ),
        CheckConstraint("original_price > 0 AND asking_price > 0", name="ck_listing_prices"),
        CheckConstraint(
            "quantity_available >= 0 AND quantity_available <= quantity",
            name="ck_listing_quantity_bounds",
        ),
        Index("idx_listing_seller", "seller_id"),
        Index("idx_listing_event_date", "event_date"),
        Index("idx_listing_active", "is_active"),
        Index("idx_listing_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Listing id={self.id} event={self.event_name!r} "
            f"asking={self.asking_price} available={self.quantity_available}>"
        )


# ---------------------------------------------------------------------------
# 2. listing_price_changes
# ---------------------------------------------------------------------------
class ListingPriceChange(Base):
    """One asking-price value a listing has carried. Append-only."""

    __tablename__ = "listing_price_changes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    listing_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("listings.id", ondelete="CASCADE"), nullable=False
    )
    old_price: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    new_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    changed_by: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    listing: Mapped[Listing] = relationship("Listing", back_populates="price_changes")

    __table_args__ = (Index("idx_price_change_listing", "listing_id"),)


# ---------------------------------------------------------------------------
# 3. orders
# ---------------------------------------------------------------------------
class Order(Base):
    """An escrow order. Financial fields are fixed at creation."""

    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    listing_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("listings.id"), nullable=False
    )

    # --- Parties (seller denormalized from the listing at purchase time) ---
    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    buyer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False)
    seller_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # --- Financials ---
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Money, nullable=False)
    buyer_protection_fee: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total: Mapped[Decimal] = mapped_column(Money, nullable=False)
    seller_payout: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="GBP")

    # --- Status (guarded by OrderStateMachine) ---
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=OrderStatus.PENDING.value,
    )

    # --- Payment rail references ---
    payment_handle: Mapped[str | None] = mapped_column(
        String(64), nullable=True, comment="Hold reference returned at purchase"
    )
    payment_reference: Mapped[str | None] = mapped_column(
        String(64), nullable=True, comment="Charge reference after capture"
    )
    payout_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PayoutStatus.NOT_DUE.value
    )
    payout_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    payout_reference: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payout_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    refund_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    refund_reference: Mapped[str | None] = mapped_column(String(64), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # --- Optimistic concurrency ---
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow
    )
    paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # --- Relationships ---
    listing: Mapped[Listing] = relationship("Listing", lazy="selectin")
    transfer: Mapped[Transfer | None] = relationship(
        "Transfer",
        back_populates="order",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    dispute: Mapped[Dispute | None] = relationship(
        "Dispute",
        back_populates="order",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    events: Mapped[list[OrderEvent]] = relationship(
        "OrderEvent",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderEvent.created_at.asc()",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(_in_list("status", OrderStatus), name="ck_order_valid_status"),
        CheckConstraint(_in_list("payout_status", PayoutStatus), name="ck_order_payout_status"),
        CheckConstraint("quantity > 0", name="ck_order_positive_quantity"),
        CheckConstraint(
            "subtotal > 0 AND platform_fee >= 0 AND buyer_protection_fee >= 0 "
            "AND total > 0 AND seller_payout >= 0",
            name="ck_order_amounts",
        ),
        CheckConstraint(
            "refund_amount IS NULL OR (refund_amount >= 0 AND refund_amount <= total)",
            name="ck_order_refund_bounds",
        ),
        Index("idx_order_status", "status"),
        Index("idx_order_buyer", "buyer_id"),
        Index("idx_order_seller", "seller_id"),
        Index("idx_order_listing", "listing_id"),
        Index("idx_order_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status} total={self.total} {self.currency}>"


# ---------------------------------------------------------------------------
# 4. transfers
# ---------------------------------------------------------------------------
class Transfer(Base):
    """Ticket hand-over for one order, created when payment is captured."""

    __tablename__ = "transfers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True
    )

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransferStatus.AWAITING_PROOF.value
    )

    # --- Seller side ---
    seller_proof_urls: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    seller_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    transfer_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    proof_submitted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # --- Buyer side ---
    buyer_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    buyer_action_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    auto_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # --- Seller reminders (each sent at most once) ---
    early_reminder_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    urgent_reminder_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    response_deadline: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        comment="Seller proof deadline, then buyer confirmation deadline",
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow
    )

    order: Mapped[Order] = relationship("Order", back_populates="transfer")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(_in_list("status", TransferStatus), name="ck_transfer_valid_status"),
        Index("idx_transfer_status_deadline", "status", "response_deadline"),
    )

    def __repr__(self) -> str:
        return f"<Transfer order={self.order_id} status={self.status}>"


# ---------------------------------------------------------------------------
# 5. disputes
# ---------------------------------------------------------------------------
class Dispute(Base):
    """A dispute case on one order.

    Each party submits exactly one statement; evidence lists only grow.
    """

    __tablename__ = "disputes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True
    )

    opened_by: Mapped[str] = mapped_column(String(64), nullable=False)
    opened_by_role: Mapped[str] = mapped_column(String(10), nullable=False)
    reason: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=DisputeStatus.OPEN.value
    )

    # --- Statements ---
    buyer_statement: Mapped[str | None] = mapped_column(Text, nullable=True)
    buyer_evidence: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    buyer_submitted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    seller_statement: Mapped[str | None] = mapped_column(Text, nullable=True)
    seller_evidence: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    seller_submitted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # --- Deadlines ---
    awaiting_party: Mapped[str | None] = mapped_column(String(10), nullable=True)
    response_deadline: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    defaulted_party: Mapped[str | None] = mapped_column(
        String(10),
        nullable=True,
        comment="Party that let the response deadline lapse; their case carries less weight",
    )

    # --- Resolution ---
    resolution: Mapped[str | None] = mapped_column(String(10), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    refund_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    seller_payout_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    platform_fee_voided: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow
    )

    order: Mapped[Order] = relationship("Order", back_populates="dispute", lazy="selectin")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(_in_list("status", DisputeStatus), name="ck_dispute_valid_status"),
        CheckConstraint(_in_list("reason", DisputeReason), name="ck_dispute_valid_reason"),
        CheckConstraint(
            "(refund_amount IS NULL OR refund_amount >= 0) AND "
            "(seller_payout_amount IS NULL OR seller_payout_amount >= 0)",
            name="ck_dispute_amounts",
        ),
        Index("idx_dispute_status", "status"),
        Index("idx_dispute_status_deadline", "status", "response_deadline"),
    )

    def __repr__(self) -> str:
        return f"<Dispute id={self.id} order={self.order_id} status={self.status}>"


# ---------------------------------------------------------------------------
# 6. order_messages (Append-Only)
# ---------------------------------------------------------------------------
class OrderMessage(Base):
    """A message in the buyer/seller thread of an order."""

    __tablename__ = "order_messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[str] = mapped_column(String(64), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (Index("idx_message_order_created", "order_id", "created_at"),)


# ---------------------------------------------------------------------------
# 7. order_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class OrderEvent(Base):
    """Immutable audit record of every transition in an order's lifecycle.

    Covers the order itself, its transfer and its dispute. This table is
    APPEND-ONLY. `initiated_by` separates deadline-driven (system) events
    from user and reviewer actions.
    """

    __tablename__ = "order_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )

    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    entity: Mapped[str] = mapped_column(
        String(20), nullable=False, default="order", comment="order, transfer or dispute"
    )
    old_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    new_status: Mapped[str] = mapped_column(String(32), nullable=False)
    actor: Mapped[str] = mapped_column(String(64), nullable=False, default="system")
    initiated_by: Mapped[str] = mapped_column(
        String(10), nullable=False, default=Initiator.USER.value
    )
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        default=None,
        comment="Arbitrary context: rail references, amounts, notes",
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    order: Mapped[Order] = relationship("Order", back_populates="events")

    __table_args__ = (
        CheckConstraint(_in_list("initiated_by", Initiator), name="ck_event_initiator"),
        Index("idx_event_order", "order_id"),
        Index("idx_event_type", "event_type"),
        Index("idx_event_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<OrderEvent type={self.event_type} {self.entity} "
            f"{self.old_status}->{self.new_status} by={self.initiated_by}>"
        )


# ---------------------------------------------------------------------------
# 8. verification_requests
# ---------------------------------------------------------------------------
class VerificationRequest(Base):
    """One verification cycle for a listing.

    A rejected cycle is terminal; the seller starts a new one by uploading
    fresh proofs.
    """

    __tablename__ = "verification_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    listing_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("listings.id", ondelete="CASCADE"), nullable=False
    )
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False)

    proofs: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment='Proof URLs keyed by type, e.g. {"confirmation_email": {"url": ...}}',
    )
    confirmation_details: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    order_reference: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Copied from confirmation_details for the reuse check",
    )
    fraud_check_result: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=VerificationStatus.PENDING.value
    )
    submitted_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="Null while the seller is still collecting proofs"
    )
    verification_level: Mapped[str | None] = mapped_column(String(20), nullable=True)
    reject_reason: Mapped[str | None] = mapped_column(String(32), nullable=True)
    flag_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow
    )

    listing: Mapped[Listing] = relationship("Listing", lazy="selectin")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            _in_list("status", VerificationStatus), name="ck_verification_valid_status"
        ),
        Index("idx_verification_listing", "listing_id"),
        Index("idx_verification_order_reference", "order_reference"),
        Index("idx_verification_queue", "status", "submitted_at"),
    )

    def __repr__(self) -> str:
        return f"<VerificationRequest id={self.id} listing={self.listing_id} status={self.status}>"


# ---------------------------------------------------------------------------
# 9. notifications (Outbox)
# ---------------------------------------------------------------------------
class Notification(Base):
    """A notice queued for delivery to one user."""

    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    recipient_id: Mapped[str] = mapped_column(String(64), nullable=False)
    kind: Mapped[str] = mapped_column(String(40), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    link: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (Index("idx_notification_recipient", "recipient_id", "created_at"),)


# ---------------------------------------------------------------------------
# 10. fraud_alerts (Append-Only)
# ---------------------------------------------------------------------------
class FraudAlert(Base):
    """A fraud signal raised against a user for reviewers to investigate."""

    __tablename__ = "fraud_alerts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False, default="order")
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    alert_type: Mapped[str] = mapped_column(String(40), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    evidence: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    severity: Mapped[str] = mapped_column(
        String(10), nullable=False, default=FraudSeverity.MEDIUM.value
    )
    confidence_score: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint(_in_list("severity", FraudSeverity), name="ck_fraud_alert_severity"),
        CheckConstraint(
            "confidence_score >= 0 AND confidence_score <= 100",
            name="ck_fraud_alert_confidence",
        ),
        Index("idx_fraud_alert_user", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<FraudAlert user={self.user_id} type={self.alert_type} {self.severity}>"


# ---------------------------------------------------------------------------
# Register the auto-update listener for updated_at
# ---------------------------------------------------------------------------
for _model in (Listing, Order, Transfer, Dispute, VerificationRequest):
    event.listen(_model, "before_update", _set_updated_at)
