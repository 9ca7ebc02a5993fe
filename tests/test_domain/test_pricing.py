"""Tests for the pricing engine."""

from __future__ import annotations

from decimal import Decimal

import pytest

from resale_escrow.domain.exceptions import MarkupLimitExceededError, ValidationError
from resale_escrow.domain.pricing import FeeRates, quote, to_money


class TestQuote:
    def test_standard_resale(self) -> None:
        """Face value 20.00 resold at 28.00."""
        q = quote("20.00", "28.00")
        assert q.markup_pct == Decimal("40.00")
        assert q.is_over_limit is False
        assert q.max_allowed_price == Decimal("30.00")
        assert q.platform_fee == Decimal("2.80")
        assert q.buyer_protection_fee == Decimal("0.70")
        assert q.buyer_total == Decimal("31.50")
        assert q.seller_receives == Decimal("25.20")

    def test_over_markup_is_reported_not_raised(self) -> None:
        q = quote("20.00", "31.00")
        assert q.is_over_limit is True
        assert q.max_allowed_price == Decimal("30.00")
        assert q.markup_pct == Decimal("55.00")

    def test_ensure_within_limit_raises(self) -> None:
        with pytest.raises(MarkupLimitExceededError) as exc_info:
            quote("20.00", "31.00").ensure_within_limit()
        assert exc_info.value.details["max_allowed_price"] == "30.00"
        assert exc_info.value.code == "MARKUP_LIMIT_EXCEEDED"

    def test_exact_cap_is_allowed(self) -> None:
        assert quote("20.00", "30.00").ensure_within_limit().is_over_limit is False

    def test_selling_below_face_value(self) -> None:
        q = quote("50.00", "35.00")
        assert q.markup_pct == Decimal("-30.00")
        assert q.is_over_limit is False

    def test_quantity_scales_subtotal(self) -> None:
        q = quote("20.00", "28.00", quantity=3)
        assert q.subtotal == Decimal("84.00")
        assert q.platform_fee == Decimal("8.40")
        assert q.buyer_protection_fee == Decimal("2.10")
        assert q.buyer_total == Decimal("94.50")

    def test_fees_round_half_up(self) -> None:
        q = quote("10.00", "12.25")
        assert q.platform_fee == Decimal("1.23")
        assert q.buyer_protection_fee == Decimal("0.31")
        assert q.buyer_total == Decimal("13.79")
        assert q.seller_receives == Decimal("11.02")

    def test_seller_and_fee_sum_to_subtotal(self) -> None:
        q = quote("33.33", "41.17", quantity=7)
        assert q.seller_receives + q.platform_fee == q.subtotal

    def test_custom_rates(self) -> None:
        rates = FeeRates(
            platform_fee_rate=Decimal("0.05"),
            buyer_protection_rate=Decimal("0"),
            max_markup_rate=Decimal("0.20"),
        )
        q = quote("20.00", "24.00", rates=rates)
        assert q.max_allowed_price == Decimal("24.00")
        assert q.buyer_total == Decimal("25.20")

    def test_to_dict_uses_strings(self) -> None:
        data = quote("20.00", "28.00").to_dict()
        assert data["buyer_total"] == "31.50"
        assert data["quantity"] == 1


class TestQuoteValidation:
    @pytest.mark.parametrize(
        ("original", "asking", "field"),
        [("0", "10", "original_price"), ("10", "-1", "asking_price")],
    )
    def test_prices_must_be_positive(self, original: str, asking: str, field: str) -> None:
        with pytest.raises(ValidationError) as exc_info:
            quote(original, asking)
        assert exc_info.value.details["field"] == field

    @pytest.mark.parametrize("quantity", [0, -2, True])
    def test_quantity_must_be_positive_int(self, quantity: int) -> None:
        with pytest.raises(ValidationError):
            quote("10", "12", quantity=quantity)


class TestToMoney:
    def test_rounds_half_up(self) -> None:
        assert to_money("2.675") == Decimal("2.68")
        assert to_money(Decimal("0.125")) == Decimal("0.13")

    def test_accepts_int(self) -> None:
        assert to_money(5) == Decimal("5.00")

    def test_rejects_garbage(self) -> None:
        with pytest.raises(ValidationError):
            to_money("twelve")
