"""Domain layer — pure business logic with zero framework dependencies."""

from resale_escrow.domain.enums import (
    DisputeStatus,
    EventType,
    OrderStatus,
    TransferStatus,
    VerificationLevel,
    VerificationStatus,
)
from resale_escrow.domain.exceptions import (
    ConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ResaleError,
    ValidationError,
)
from resale_escrow.domain.fraud_protocol import (
    FraudCheckRequest,
    FraudCheckResult,
    FraudOracle,
)
from resale_escrow.domain.pricing import PriceQuote, quote
from resale_escrow.domain.state_machine import (
    DisputeStateMachine,
    OrderStateMachine,
    TransferStateMachine,
    VerificationStateMachine,
)

__all__ = [
    "DisputeStatus",
    "EventType",
    "OrderStatus",
    "TransferStatus",
    "VerificationLevel",
    "VerificationStatus",
    "ConflictError",
    "InvalidStateTransitionError",
    "NotFoundError",
    "PermissionDeniedError",
    "ResaleError",
    "ValidationError",
    "FraudCheckRequest",
    "FraudCheckResult",
    "FraudOracle",
    "PriceQuote",
    "quote",
    "DisputeStateMachine",
    "OrderStateMachine",
    "TransferStateMachine",
    "VerificationStateMachine",
]
