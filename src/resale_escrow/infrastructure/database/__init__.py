"""Database infrastructure — engine, ORM models, and repositories."""

from resale_escrow.infrastructure.database.engine import (
    close_db,
    get_async_session,
    get_session_factory,
    init_db,
    session_scope,
)
from resale_escrow.infrastructure.database.orm_models import (
    Base,
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
from resale_escrow.infrastructure.database.repositories import (
    DisputeRepository,
    EventRepository,
    FraudAlertRepository,
    ListingRepository,
    ListingSearch,
    MessageRepository,
    NotificationRepository,
    OrderRepository,
    TransferRepository,
    VerificationRepository,
)

__all__ = [
    "Base",
    "Dispute",
    "FraudAlert",
    "Listing",
    "ListingPriceChange",
    "Notification",
    "Order",
    "OrderEvent",
    "OrderMessage",
    "Transfer",
    "VerificationRequest",
    "DisputeRepository",
    "EventRepository",
    "FraudAlertRepository",
    "ListingRepository",
    "ListingSearch",
    "MessageRepository",
    "NotificationRepository",
    "OrderRepository",
    "TransferRepository",
    "VerificationRepository",
    "close_db",
    "get_async_session",
    "get_session_factory",
    "init_db",
    "session_scope",
]
