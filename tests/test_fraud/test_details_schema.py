"""Unit tests for confirmation-details validation."""

from __future__ import annotations

import pytest

from resale_escrow.domain.exceptions import ValidationError
from resale_escrow.fraud.details_schema import validate_confirmation_details


class TestValidDetails:
    def test_valid_payload_is_stripped(self) -> None:
        details = validate_confirmation_details(
            {
                "order_reference": " DICE12345678 ",
                "purchaser_email": "seller@example.com",
                "platform": "dice",
            }
        )
        assert details["order_reference"] == "DICE12345678"

    def test_transfer_code_may_be_null(self) -> None:
        details = validate_confirmation_details(
            {
                "order_reference": "RA-ABC123",
                "purchaser_email": "seller@example.com",
                "platform": "resident_advisor",
                "transfer_code": None,
            }
        )
        assert details["transfer_code"] is None


class TestInvalidDetails:
    def test_missing_fields(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            validate_confirmation_details({"platform": "dice"})
        assert exc_info.value.code == "INVALID_CONFIRMATION_DETAILS"
        assert len(exc_info.value.details["errors"]) == 2

    def test_unknown_platform(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            validate_confirmation_details(
                {
                    "order_reference": "ABCD1234",
                    "purchaser_email": "seller@example.com",
                    "platform": "myspace",
                }
            )
        assert exc_info.value.details["errors"][0]["path"] == ["platform"]

    def test_bad_email_and_extra_field(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            validate_confirmation_details(
                {
                    "order_reference": "ABCD1234",
                    "purchaser_email": "not-an-email",
                    "platform": "dice",
                    "seat": "A1",
                }
            )
        assert len(exc_info.value.details["errors"]) == 2

    def test_not_an_object(self) -> None:
        with pytest.raises(ValidationError):
            validate_confirmation_details(["DICE12345678"])
