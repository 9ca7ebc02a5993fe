"""Confirmation-details validation against a JSON Schema.

Sellers copy the order reference, purchaser email and platform from their
primary-platform confirmation. The payload is checked here before it is
stored or sent to any oracle.

No external services required; this is a pure local check.
"""

from __future__ import annotations

from typing import Any

from jsonschema import Draft7Validator

from resale_escrow.domain.enums import TicketSource
from resale_escrow.domain.exceptions import ValidationError
from resale_escrow.logging_config import get_logger

logger = get_logger(__name__)

CONFIRMATION_DETAILS_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["order_reference", "purchaser_email", "platform"],
    "properties": {
        "order_reference": {"type": "string", "minLength": 4, "maxLength": 64},
        "purchaser_email": {
            "type": "string",
            "pattern": r"^[^@\s]+@[^@\s]+\.[^@\s]+$",
            "maxLength": 255,
        },
        "platform": {"type": "string", "enum": [s.value for s in TicketSource]},
        "transfer_code": {"type": ["string", "null"], "maxLength": 128},
    },
    "additionalProperties": False,
}

_validator = Draft7Validator(CONFIRMATION_DETAILS_SCHEMA)


def validate_confirmation_details(details: Any) -> dict[str, Any]:
    """Validate the payload and return it with surrounding whitespace stripped.

    Raises:
        ValidationError: With one entry per schema violation in details["errors"].
    """
    errors = sorted(_validator.iter_errors(details), key=lambda e: list(e.path))
    if errors:
        error_details = [
            {
                "path": list(err.path),
                "message": err.message,
            }
            for err in errors
        ]
        logger.info("fraud.details_invalid", error_count=len(errors))
        raise ValidationError(
            f"confirmation_details failed validation with {len(errors)} error(s)",
            code="INVALID_CONFIRMATION_DETAILS",
            details={"errors": error_details},
        )

    return {
        key: value.strip() if isinstance(value, str) else value
        for key, value in details.items()
    }
