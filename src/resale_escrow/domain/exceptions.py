"""Domain exceptions for the resale escrow core.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.

Families (each maps to one HTTP status in api/middleware.py):
    ValidationError         -> 400
    AuthenticationError     -> 401
    PermissionDeniedError   -> 403
    NotFoundError           -> 404
    ConflictError           -> 409
    RateLimitExceededError  -> 429
    ExternalServiceError    -> 502 / 503
"""

from __future__ import annotations

from typing import Any


class ResaleError(Exception):
    """Base exception for all domain errors."""

    def __init__(
        self,
        message: str,
        code: str = "RESALE_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Validation (400)
# ---------------------------------------------------------------------------


class ValidationError(ResaleError):
    """Input is malformed or breaks a business rule the caller can fix."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message=message, code=code, details=details)


class MarkupLimitExceededError(ValidationError):
    """Raised when the asking price is above original_price * (1 + max markup)."""

    def __init__(self, markup_pct: str, max_allowed_price: str) -> None:
        super().__init__(
            message=(
                f"Markup of {markup_pct}% exceeds the allowed limit; "
                f"maximum asking price is {max_allowed_price}"
            ),
            code="MARKUP_LIMIT_EXCEEDED",
            details={"markup_pct": markup_pct, "max_allowed_price": max_allowed_price},
        )
        self.max_allowed_price = max_allowed_price


class ResolutionAmountError(ValidationError):
    """Raised when dispute resolution amounts violate the allocation rules."""

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message=message, code="INVALID_RESOLUTION_AMOUNTS", details=details)


# ---------------------------------------------------------------------------
# Authentication (401)
# ---------------------------------------------------------------------------


class AuthenticationError(ResaleError):
    """Missing, malformed or expired bearer token."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message=message, code="UNAUTHENTICATED")


# ---------------------------------------------------------------------------
# Permission (403)
# ---------------------------------------------------------------------------


class PermissionDeniedError(ResaleError):
    """Actor is authenticated but may not perform this operation."""

    def __init__(
        self,
        message: str,
        code: str = "PERMISSION_DENIED",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message=message, code=code, details=details)


class NotAPartyError(PermissionDeniedError):
    """Raised when the actor is neither the buyer nor the seller of an order."""

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(
            message=f"Not a party to {resource}: {resource_id}",
            code="NOT_A_PARTY",
        )


class WrongPartyError(PermissionDeniedError):
    """Raised when the actor is a party but not the one allowed to act.

    Example: a buyer trying to submit the seller's transfer proof.
    """

    def __init__(self, action: str, required_role: str) -> None:
        super().__init__(
            message=f"Only the {required_role} may {action}",
            code="WRONG_PARTY",
            details={"required_role": required_role},
        )


class ReviewerOnlyError(PermissionDeniedError):
    def __init__(self, action: str) -> None:
        super().__init__(
            message=f"Reviewer role required to {action}",
            code="REVIEWER_ONLY",
        )


class SellerCeilingExceededError(PermissionDeniedError):
    """Raised when asking price is above the seller's tier ceiling."""

    def __init__(self, asking_price: str, max_ticket_value: str, tier: str) -> None:
        super().__init__(
            message=(
                f"Asking price {asking_price} exceeds the {tier} seller limit "
                f"of {max_ticket_value}"
            ),
            code="SELLER_CEILING_EXCEEDED",
            details={"max_ticket_value": max_ticket_value, "tier": tier},
        )


class ListingQuotaExceededError(PermissionDeniedError):
    def __init__(self, active: int, limit: int) -> None:
        super().__init__(
            message=f"Active listing limit reached ({active}/{limit})",
            code="LISTING_QUOTA_EXCEEDED",
            details={"active": active, "limit": limit},
        )


class SellerSuspendedError(PermissionDeniedError):
    def __init__(self, seller_id: str) -> None:
        super().__init__(
            message=f"Seller is not permitted to list: {seller_id}",
            code="SELLER_SUSPENDED",
        )


# ---------------------------------------------------------------------------
# Not found (404)
# ---------------------------------------------------------------------------


class NotFoundError(ResaleError):
    """Raised when an entity ID does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(
            message=f"{entity.capitalize()} not found: {entity_id}",
            code=f"{entity.upper().replace(' ', '_')}_NOT_FOUND",
        )
        self.entity = entity
        self.entity_id = entity_id


class ListingNotFoundError(NotFoundError):
    def __init__(self, listing_id: str) -> None:
        super().__init__("listing", listing_id)


class OrderNotFoundError(NotFoundError):
    def __init__(self, order_id: str) -> None:
        super().__init__("order", order_id)


class TransferNotFoundError(NotFoundError):
    def __init__(self, order_id: str) -> None:
        super().__init__("transfer", order_id)


class DisputeNotFoundError(NotFoundError):
    def __init__(self, dispute_id: str) -> None:
        super().__init__("dispute", dispute_id)


class VerificationRequestNotFoundError(NotFoundError):
    def __init__(self, request_id: str) -> None:
        super().__init__("verification request", request_id)


# ---------------------------------------------------------------------------
# Conflict (409)
# ---------------------------------------------------------------------------


class ConflictError(ResaleError):
    """The request is well-formed but clashes with current persisted state.

    Clients should re-read the resource and retry if still appropriate.
    """

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message=message, code=code, details=details)


class InvalidStateTransitionError(ConflictError):
    """Raised when an attempted state transition is not allowed.

    Example: pending -> completed (must go through confirmed, transferred, etc.)
    """

    def __init__(self, entity: str, current_state: str, event: str) -> None:
        super().__init__(
            message=f"Cannot {event} {entity} in status {current_state}",
            code="INVALID_STATE_TRANSITION",
            details={"entity": entity, "current_status": current_state, "event": event},
        )
        self.current_state = current_state
        self.event = event


class StaleStateError(ConflictError):
    """Raised when a concurrent writer changed the row since it was read."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(
            message=(
                f"{entity.capitalize()} {entity_id} was modified concurrently; reload and retry"
            ),
            code="STALE_STATE",
        )


class InsufficientQuantityError(ConflictError):
    def __init__(self, listing_id: str, requested: int) -> None:
        super().__init__(
            message=f"Listing {listing_id} has fewer than {requested} ticket(s) available",
            code="INSUFFICIENT_QUANTITY",
            details={"requested": requested},
        )


class StatementAlreadySubmittedError(ConflictError):
    def __init__(self, party: str) -> None:
        super().__init__(
            message=f"The {party} has already submitted a statement; add evidence instead",
            code="STATEMENT_ALREADY_SUBMITTED",
        )


class DuplicateOperationError(ConflictError):
    """Raised when a duplicate idempotency key is detected."""

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            message=f"Duplicate operation detected for key: {idempotency_key}",
            code="DUPLICATE_OPERATION",
        )


# ---------------------------------------------------------------------------
# Rate limiting (429)
# ---------------------------------------------------------------------------


class RateLimitExceededError(ResaleError):
    def __init__(self, action: str, retry_after: int) -> None:
        super().__init__(
            message=f"Too many {action} requests; retry in {retry_after}s",
            code="RATE_LIMITED",
            details={"retry_after": retry_after},
        )
        self.retry_after = retry_after


# ---------------------------------------------------------------------------
# External dependencies (502 / 503)
# ---------------------------------------------------------------------------


class ExternalServiceError(ResaleError):
    """Base for failures of collaborators outside this service."""

    def __init__(
        self,
        message: str,
        code: str = "EXTERNAL_SERVICE_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message=message, code=code, details=details)


class PaymentError(ExternalServiceError):
    """Raised when a payment rail operation fails."""

    def __init__(self, message: str, operation: str, reference: str | None = None) -> None:
        super().__init__(
            message=message,
            code="PAYMENT_ERROR",
            details={"operation": operation, "reference": reference},
        )
        self.operation = operation
        self.reference = reference


class FraudOracleUnavailableError(ExternalServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="FRAUD_ORACLE_UNAVAILABLE")


class ReputationServiceError(ExternalServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="REPUTATION_SERVICE_ERROR")
