"""Application services — use case orchestration."""

from resale_escrow.services.dispute_service import DisputeService
from resale_escrow.services.listing_service import ListingService
from resale_escrow.services.notification_service import NotificationService
from resale_escrow.services.order_service import OrderService
from resale_escrow.services.payment_service import PaymentService
from resale_escrow.services.reputation_service import StaticReputationProvider
from resale_escrow.services.transfer_service import TransferService
from resale_escrow.services.verification_service import VerificationService

__all__ = [
    "DisputeService",
    "ListingService",
    "NotificationService",
    "OrderService",
    "PaymentService",
    "StaticReputationProvider",
    "TransferService",
    "VerificationService",
]
