"""Dispute resolution arithmetic.

Turns a reviewer's decision into a concrete money split and checks it
against the order's financials before any rail is called:

    0 <= refund <= total
    0 <= payout <= seller_payout
    refund > 0 and payout > 0           (partial only)
    refund + payout <= total - retained_platform_fee

The platform fee is retained unless the reviewer voids it. Buyer-favor is
the one shorthand that voids it implicitly, since it returns the full total.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from resale_escrow.domain.enums import DisputeStatus, OrderStatus, ResolutionOutcome
from resale_escrow.domain.exceptions import ResolutionAmountError
from resale_escrow.domain.pricing import to_money

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class OrderFinancials:
    """The immutable money fields of an order that resolution depends on."""

    total: Decimal
    seller_payout: Decimal
    platform_fee: Decimal


@dataclass(frozen=True)
class Allocation:
    """How a resolved dispute splits the escrowed total."""

    outcome: ResolutionOutcome
    refund_amount: Decimal
    seller_payout_amount: Decimal
    platform_fee_voided: bool

    @property
    def dispute_status(self) -> DisputeStatus:
        return _DISPUTE_STATUS[self.outcome]

    @property
    def dispute_event(self) -> str:
        return _DISPUTE_EVENT[self.outcome]

    @property
    def order_status(self) -> OrderStatus:
        """Seller-favor completes the order; any refund marks it refunded."""
        if self.outcome is ResolutionOutcome.SELLER:
            return OrderStatus.COMPLETED
        return OrderStatus.REFUNDED

    @property
    def order_event(self) -> str:
        return _ORDER_EVENT[self.outcome]


_DISPUTE_STATUS = {
    ResolutionOutcome.BUYER: DisputeStatus.RESOLVED_BUYER_FAVOR,
    ResolutionOutcome.SELLER: DisputeStatus.RESOLVED_SELLER_FAVOR,
    ResolutionOutcome.PARTIAL: DisputeStatus.RESOLVED_PARTIAL,
}

_DISPUTE_EVENT = {
    ResolutionOutcome.BUYER: "resolve_buyer_favor",
    ResolutionOutcome.SELLER: "resolve_seller_favor",
    ResolutionOutcome.PARTIAL: "resolve_partial",
}

_ORDER_EVENT = {
    ResolutionOutcome.BUYER: "resolved_for_buyer",
    ResolutionOutcome.SELLER: "resolved_for_seller",
    ResolutionOutcome.PARTIAL: "resolved_partially",
}


def allocate(
    outcome: ResolutionOutcome | str,
    order: OrderFinancials,
    refund_amount: Decimal | str | None = None,
    seller_payout_amount: Decimal | str | None = None,
    void_platform_fee: bool = False,
) -> Allocation:
    """Compute and validate the money split for a resolution.

    Args:
        outcome: buyer, seller or partial.
        order: The order's total, seller_payout and platform_fee.
        refund_amount: Required for partial; ignored for the shorthands.
        seller_payout_amount: Required for partial; ignored for the shorthands.
        void_platform_fee: Lift the retained-fee cap (partial only).

    Raises:
        ResolutionAmountError: If the amounts break any allocation rule.
    """
    outcome = ResolutionOutcome(outcome)

    if outcome is ResolutionOutcome.BUYER:
        return Allocation(
            outcome=outcome,
            refund_amount=order.total,
            seller_payout_amount=ZERO,
            platform_fee_voided=True,
        )

    if outcome is ResolutionOutcome.SELLER:
        return Allocation(
            outcome=outcome,
            refund_amount=ZERO,
            seller_payout_amount=order.seller_payout,
            platform_fee_voided=False,
        )

    if refund_amount is None or seller_payout_amount is None:
        raise ResolutionAmountError(
            "A partial resolution requires both refund_amount and seller_payout_amount",
        )

    refund = to_money(refund_amount)
    payout = to_money(seller_payout_amount)
    check_amounts(order, refund, payout, void_platform_fee)

    # a zero side is the buyer or seller shorthand, not a split
    if refund <= 0 or payout <= 0:
        raise ResolutionAmountError(
            "A partial resolution must pay both a refund and a seller payout",
            refund_amount=str(refund),
            seller_payout_amount=str(payout),
        )

    if refund + payout >= order.total:
        raise ResolutionAmountError(
            "A partial resolution must allocate less than the full order total",
            total=str(order.total),
            allocated=str(refund + payout),
        )

    return Allocation(
        outcome=outcome,
        refund_amount=refund,
        seller_payout_amount=payout,
        platform_fee_voided=void_platform_fee,
    )


def check_amounts(
    order: OrderFinancials,
    refund: Decimal,
    payout: Decimal,
    void_platform_fee: bool,
) -> None:
    """Enforce the bounds shared by every allocation."""
    if refund < 0 or payout < 0:
        raise ResolutionAmountError("Resolution amounts cannot be negative")
    if refund > order.total:
        raise ResolutionAmountError(
            f"refund_amount {refund} exceeds order total {order.total}",
            refund_amount=str(refund),
            total=str(order.total),
        )
    if payout > order.seller_payout:
        raise ResolutionAmountError(
            f"seller_payout_amount {payout} exceeds seller payout {order.seller_payout}",
            seller_payout_amount=str(payout),
            seller_payout=str(order.seller_payout),
        )

    retained = ZERO if void_platform_fee else order.platform_fee
    ceiling = order.total - retained
    if refund + payout > ceiling:
        raise ResolutionAmountError(
            f"refund_amount + seller_payout_amount must not exceed {ceiling}",
            allocated=str(refund + payout),
            ceiling=str(ceiling),
            platform_fee_retained=str(retained),
        )
