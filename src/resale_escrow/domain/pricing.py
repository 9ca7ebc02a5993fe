"""Pricing engine: markup cap and fee arithmetic.

Pure functions over Decimal. Every monetary value is rounded to the penny
with ROUND_HALF_UP, and fees are computed on the rounded subtotal so that
seller_receives + platform_fee == subtotal holds exactly.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from resale_escrow.domain.exceptions import MarkupLimitExceededError, ValidationError

PENNY = Decimal("0.01")
HUNDRED = Decimal("100")

DEFAULT_PLATFORM_FEE_RATE = Decimal("0.10")
DEFAULT_BUYER_PROTECTION_RATE = Decimal("0.025")
DEFAULT_MAX_MARKUP_RATE = Decimal("0.50")


def to_money(value: Decimal | int | float | str) -> Decimal:
    """Coerce to Decimal and round to the penny (half up)."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as exc:
        raise ValidationError(f"Not a monetary amount: {value!r}") from exc
    return amount.quantize(PENNY, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class FeeRates:
    """Rates applied by quote(). Loaded from settings by the services."""

    platform_fee_rate: Decimal = DEFAULT_PLATFORM_FEE_RATE
    buyer_protection_rate: Decimal = DEFAULT_BUYER_PROTECTION_RATE
    max_markup_rate: Decimal = DEFAULT_MAX_MARKUP_RATE

    @classmethod
    def from_settings(cls) -> FeeRates:
        from resale_escrow.config import get_settings

        settings = get_settings()
        return cls(
            platform_fee_rate=settings.platform_fee_rate,
            buyer_protection_rate=settings.buyer_protection_fee_rate,
            max_markup_rate=settings.max_markup_rate,
        )


@dataclass(frozen=True)
class PriceQuote:
    """Result of pricing one purchase of `quantity` tickets."""

    original_price: Decimal
    asking_price: Decimal
    quantity: int
    markup_pct: Decimal
    is_over_limit: bool
    max_allowed_price: Decimal
    subtotal: Decimal
    platform_fee: Decimal
    buyer_protection_fee: Decimal
    buyer_total: Decimal
    seller_receives: Decimal

    def ensure_within_limit(self) -> PriceQuote:
        """Raise MarkupLimitExceededError when the markup cap is broken."""
        if self.is_over_limit:
            raise MarkupLimitExceededError(
                markup_pct=str(self.markup_pct),
                max_allowed_price=str(self.max_allowed_price),
            )
        return self

    def to_dict(self) -> dict[str, str | bool | int]:
        return {
            "markup_pct": str(self.markup_pct),
            "is_over_limit": self.is_over_limit,
            "max_allowed_price": str(self.max_allowed_price),
            "quantity": self.quantity,
            "subtotal": str(self.subtotal),
            "platform_fee": str(self.platform_fee),
            "buyer_protection_fee": str(self.buyer_protection_fee),
            "buyer_total": str(self.buyer_total),
            "seller_receives": str(self.seller_receives),
        }


def quote(
    original_price: Decimal | int | float | str,
    asking_price: Decimal | int | float | str,
    quantity: int = 1,
    rates: FeeRates | None = None,
) -> PriceQuote:
    """Price a resale.

    Args:
        original_price: Face value the seller paid per ticket.
        asking_price: Seller's price per ticket.
        quantity: Number of tickets.
        rates: Fee and markup rates; defaults to the standard 10% / 2.5% / 50%.

    Returns:
        A PriceQuote. The quote is returned even when over the limit so the
        caller can report max_allowed_price; use ensure_within_limit() to reject.

    Raises:
        ValidationError: If any input is not strictly positive.
    """
    rates = rates or FeeRates()
    original = to_money(original_price)
    asking = to_money(asking_price)

    if original <= 0:
        raise ValidationError(
            "original_price must be greater than 0", details={"field": "original_price"}
        )
    if asking <= 0:
        raise ValidationError(
            "asking_price must be greater than 0", details={"field": "asking_price"}
        )
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError(
            "quantity must be a positive integer", details={"field": "quantity"}
        )

    markup = (asking - original) / original * HUNDRED
    markup_pct = markup.quantize(PENNY, rounding=ROUND_HALF_UP)
    max_allowed = to_money(original * (1 + rates.max_markup_rate))

    subtotal = to_money(asking * quantity)
    platform_fee = to_money(subtotal * rates.platform_fee_rate)
    protection_fee = to_money(subtotal * rates.buyer_protection_rate)

    return PriceQuote(
        original_price=original,
        asking_price=asking,
        quantity=quantity,
        markup_pct=markup_pct,
        is_over_limit=asking > max_allowed,
        max_allowed_price=max_allowed,
        subtotal=subtotal,
        platform_fee=platform_fee,
        buyer_protection_fee=protection_fee,
        buyer_total=subtotal + platform_fee + protection_fee,
        seller_receives=subtotal - platform_fee,
    )
