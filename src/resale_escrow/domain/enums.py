"""Domain enumerations for the resale escrow core.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).

Status values are lowercase because they double as python-statemachine
state identifiers and as wire values in API responses.
"""

import enum

# ---------------------------------------------------------------------------
# Lifecycle states
# ---------------------------------------------------------------------------


class OrderStatus(enum.StrEnum):
    """Lifecycle states of an escrow order.

    Transitions are enforced by OrderStateMachine.
    See domain/state_machine.py for the transition table.
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    TRANSFER_PENDING = "transfer_pending"
    TRANSFERRED = "transferred"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class TransferStatus(enum.StrEnum):
    """Lifecycle states of the ticket hand-over attached to an order."""

    AWAITING_PROOF = "awaiting_proof"
    PROOF_SUBMITTED = "proof_submitted"
    CONFIRMED = "confirmed"
    ISSUE_REPORTED = "issue_reported"


class DisputeStatus(enum.StrEnum):
    """Lifecycle states of a dispute case."""

    OPEN = "open"
    UNDER_REVIEW = "under_review"
    AWAITING_SELLER = "awaiting_seller"
    AWAITING_BUYER = "awaiting_buyer"
    ESCALATED = "escalated"
    RESOLVED_BUYER_FAVOR = "resolved_buyer_favor"
    RESOLVED_SELLER_FAVOR = "resolved_seller_favor"
    RESOLVED_PARTIAL = "resolved_partial"
    CLOSED = "closed"


class VerificationStatus(enum.StrEnum):
    """Review states of a listing verification request."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    FLAGGED = "flagged"


class PayoutStatus(enum.StrEnum):
    """Whether the seller's payout has left escrow.

    PENDING_RETRY is set when the rail refused a release; the deadline
    sweep picks these up on its next pass.
    """

    NOT_DUE = "not_due"
    PENDING_RETRY = "pending_retry"
    RELEASED = "released"


# ---------------------------------------------------------------------------
# Listing attributes
# ---------------------------------------------------------------------------


class VerificationLevel(enum.StrEnum):
    """Trust badge attached to a listing. Ordered from weakest to strongest."""

    UNVERIFIED = "unverified"
    PENDING = "pending"
    BASIC = "basic"
    VERIFIED = "verified"
    PREMIUM = "premium"

    @property
    def rank(self) -> int:
        """Sort rank used by the 'recommended' search order."""
        return _VERIFICATION_RANK[self]


_VERIFICATION_RANK = {
    VerificationLevel.UNVERIFIED: 0,
    VerificationLevel.PENDING: 0,
    VerificationLevel.BASIC: 1,
    VerificationLevel.VERIFIED: 2,
    VerificationLevel.PREMIUM: 3,
}

# Levels a reviewer may grant when approving.
APPROVABLE_LEVELS = frozenset(
    {VerificationLevel.BASIC, VerificationLevel.VERIFIED, VerificationLevel.PREMIUM}
)


class TicketType(enum.StrEnum):
    GENERAL_ADMISSION = "general_admission"
    VIP = "vip"
    EARLY_BIRD = "early_bird"
    TABLE = "table"
    BACKSTAGE = "backstage"
    PREMIUM = "premium"
    OTHER = "other"


class TicketSource(enum.StrEnum):
    """Primary ticketing platform the seller originally bought from."""

    RESIDENT_ADVISOR = "resident_advisor"
    DICE = "dice"
    EVENTBRITE = "eventbrite"
    SKIDDLE = "skiddle"
    TICKETMASTER = "ticketmaster"
    FATSOMA = "fatsoma"
    VENUE_DIRECT = "venue_direct"
    PROMOTER = "promoter"
    OTHER = "other"


class TransferMethod(enum.StrEnum):
    EMAIL_TRANSFER = "email_transfer"
    APP_TRANSFER = "app_transfer"
    NAME_CHANGE = "name_change"
    PDF_SEND = "pdf_send"
    PHYSICAL_HANDOVER = "physical_handover"


class SellerTier(enum.StrEnum):
    UNVERIFIED = "unverified"
    VERIFIED = "verified"
    TRUSTED = "trusted"
    PREMIUM = "premium"


class SortOrder(enum.StrEnum):
    """Search result orderings for the listing registry."""

    EVENT_DATE = "event_date"
    PRICE = "price"
    POPULARITY = "popularity"
    NEWEST = "newest"
    RECOMMENDED = "recommended"


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


class ProofType(enum.StrEnum):
    CONFIRMATION_EMAIL = "confirmation_email"
    TICKET_SCREENSHOT = "ticket_screenshot"
    QR_CODE = "qr_code"
    PURCHASE_RECEIPT = "purchase_receipt"


# Both must be present before a listing can be submitted for review.
REQUIRED_PROOFS = frozenset({ProofType.CONFIRMATION_EMAIL, ProofType.TICKET_SCREENSHOT})


class RejectionReason(enum.StrEnum):
    INVALID_PROOF = "invalid_proof"
    MISMATCHED_INFO = "mismatched_info"
    DUPLICATE_LISTING = "duplicate_listing"
    SUSPECTED_FRAUD = "suspected_fraud"
    INVALID_TICKET = "invalid_ticket"
    OTHER = "other"


class ReviewAction(enum.StrEnum):
    APPROVE = "approve"
    REJECT = "reject"
    FLAG = "flag"


# ---------------------------------------------------------------------------
# Disputes
# ---------------------------------------------------------------------------


class DisputeReason(enum.StrEnum):
    TICKET_NOT_RECEIVED = "ticket_not_received"
    TICKET_INVALID = "ticket_invalid"
    WRONG_TICKET = "wrong_ticket"
    EVENT_CANCELLED = "event_cancelled"
    SELLER_UNRESPONSIVE = "seller_unresponsive"
    BUYER_UNRESPONSIVE = "buyer_unresponsive"
    OTHER = "other"


class FraudSeverity(enum.StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ResolutionOutcome(enum.StrEnum):
    BUYER = "buyer"
    SELLER = "seller"
    PARTIAL = "partial"


class PartyRole(enum.StrEnum):
    """Which side of an order an actor is on."""

    BUYER = "buyer"
    SELLER = "seller"


# ---------------------------------------------------------------------------
# Actors and audit
# ---------------------------------------------------------------------------


class ActorRole(enum.StrEnum):
    """Role claim carried by the bearer token."""

    USER = "user"
    REVIEWER = "reviewer"


class Initiator(enum.StrEnum):
    """Who caused an audit event. SYSTEM is the deadline sweep."""

    USER = "user"
    REVIEWER = "reviewer"
    SYSTEM = "system"


class EventType(enum.StrEnum):
    """Types of audit events recorded in the order_events table.

    Every order, transfer and dispute transition produces exactly one event.
    This is the append-only trail reviewers read when resolving disputes.
    """

    # Order lifecycle
    ORDER_CREATED = "ORDER_CREATED"
    PAYMENT_CAPTURED = "PAYMENT_CAPTURED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    ORDER_EXPIRED = "ORDER_EXPIRED"
    SELLER_DEFAULTED = "SELLER_DEFAULTED"
    ORDER_COMPLETED = "ORDER_COMPLETED"
    ORDER_REFUNDED = "ORDER_REFUNDED"

    # Transfer
    PROOF_SUBMITTED = "PROOF_SUBMITTED"
    RECEIPT_CONFIRMED = "RECEIPT_CONFIRMED"
    RECEIPT_AUTO_CONFIRMED = "RECEIPT_AUTO_CONFIRMED"
    ISSUE_REPORTED = "ISSUE_REPORTED"

    # Settlement
    PAYOUT_RELEASED = "PAYOUT_RELEASED"
    PAYOUT_DEFERRED = "PAYOUT_DEFERRED"
    REFUND_ISSUED = "REFUND_ISSUED"

    # Disputes
    DISPUTE_OPENED = "DISPUTE_OPENED"
    DISPUTE_RESPONDED = "DISPUTE_RESPONDED"
    DISPUTE_EVIDENCE_ADDED = "DISPUTE_EVIDENCE_ADDED"
    DISPUTE_REVIEW_STARTED = "DISPUTE_REVIEW_STARTED"
    DISPUTE_RESPONSE_REQUESTED = "DISPUTE_RESPONSE_REQUESTED"
    DISPUTE_ESCALATED = "DISPUTE_ESCALATED"
    DISPUTE_RESOLVED = "DISPUTE_RESOLVED"
    DISPUTE_WITHDRAWN = "DISPUTE_WITHDRAWN"
    DISPUTE_CLOSED = "DISPUTE_CLOSED"

    # Messaging
    MESSAGE_POSTED = "MESSAGE_POSTED"


class NotificationKind(enum.StrEnum):
    """Outbound notices queued in the notification outbox."""

    ORDER_PLACED = "order_placed"
    PAYMENT_CONFIRMED = "payment_confirmed"
    TRANSFER_REQUIRED = "transfer_required"
    TRANSFER_REMINDER = "transfer_reminder"
    TRANSFER_URGENT = "transfer_urgent"
    PROOF_SUBMITTED = "proof_submitted"
    RECEIPT_CONFIRMED = "receipt_confirmed"
    ORDER_CANCELLED = "order_cancelled"
    DISPUTE_OPENED = "dispute_opened"
    DISPUTE_RESPONSE_REQUESTED = "dispute_response_requested"
    DISPUTE_UPDATED = "dispute_updated"
    DISPUTE_RESOLVED = "dispute_resolved"
    LISTING_APPROVED = "listing_approved"
    LISTING_REJECTED = "listing_rejected"
    NEW_MESSAGE = "new_message"
