"""Pydantic API schemas."""

from resale_escrow.schemas.common import ErrorResponse, HealthResponse, Page, SweepResponse
from resale_escrow.schemas.dispute import (
    AdminDisputeRequest,
    DisputeActionRequest,
    DisputeResponse,
)
from resale_escrow.schemas.listing import (
    CreateListingRequest,
    ListingDetailResponse,
    ListingResponse,
    UpdatePriceRequest,
)
from resale_escrow.schemas.order import (
    MessageResponse,
    OrderDetailResponse,
    OrderResponse,
    PaymentCallbackRequest,
    PostMessageRequest,
    PurchaseRequest,
    TransferActionRequest,
    TransferResponse,
)
from resale_escrow.schemas.verification import (
    FraudCheckRequestBody,
    FraudCheckResponse,
    ReviewRequest,
    SubmitForReviewRequest,
    UploadProofRequest,
    VerificationResponse,
)

__all__ = [
    "AdminDisputeRequest",
    "CreateListingRequest",
    "DisputeActionRequest",
    "DisputeResponse",
    "ErrorResponse",
    "FraudCheckRequestBody",
    "FraudCheckResponse",
    "HealthResponse",
    "ListingDetailResponse",
    "ListingResponse",
    "MessageResponse",
    "OrderDetailResponse",
    "OrderResponse",
    "Page",
    "PaymentCallbackRequest",
    "PostMessageRequest",
    "PurchaseRequest",
    "ReviewRequest",
    "SubmitForReviewRequest",
    "SweepResponse",
    "TransferActionRequest",
    "TransferResponse",
    "UpdatePriceRequest",
    "UploadProofRequest",
    "VerificationResponse",
]
