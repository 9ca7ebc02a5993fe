"""HttpFraudOracle — delegates scoring to a remote fraud service.

Request flow:
    1. Serialize the FraudCheckRequest as JSON.
    2. POST it to FRAUD_ORACLE_URL with httpx.
    3. Parse {passed, risk_score, warnings[], checks{}} from the response.

Transport errors and 5xx responses are retried with exponential backoff.
Anything still failing after the last attempt surfaces as
FraudOracleUnavailableError; the caller writes nothing in that case.
"""

from __future__ import annotations

from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from resale_escrow.config import get_settings
from resale_escrow.domain.exceptions import FraudOracleUnavailableError
from resale_escrow.domain.fraud_protocol import FraudCheckRequest, FraudCheckResult
from resale_escrow.logging_config import get_logger

logger = get_logger(__name__)


class _RetryableOracleError(Exception):
    """Server-side failure worth another attempt."""


class HttpFraudOracle:
    """Fraud oracle backed by an external HTTP scoring service."""

    def __init__(
        self,
        url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize with optional overrides (defaults come from config)."""
        settings = get_settings()
        self._url = url or settings.fraud_oracle_url
        self._timeout = timeout if timeout is not None else settings.fraud_oracle_timeout_seconds
        self._transport = transport

    @staticmethod
    def _serialize(request: FraudCheckRequest) -> dict[str, Any]:
        return {
            "listing_id": request.listing_id,
            "seller_id": request.seller_id,
            "original_price": str(request.original_price),
            "asking_price": str(request.asking_price),
            "event_date": request.event_date.isoformat(),
            "confirmation_details": request.details.to_dict(),
            "proof_types": sorted(request.proof_types),
            "seller": {
                "trust_score": request.seller_trust_score,
                "completed_sales": request.seller_completed_sales,
                "account_age_days": request.seller_account_age_days,
            },
            "reference_reuse_count": request.reference_reuse_count,
            "listings_last_24h": request.listings_last_24h,
            "checked_at": request.now.isoformat(),
        }

    async def score(self, request: FraudCheckRequest) -> FraudCheckResult:
        if not self._url:
            raise FraudOracleUnavailableError("FRAUD_ORACLE_URL is not configured")

        logger.info("fraud.http.start", listing_id=request.listing_id, url=self._url)
        try:
            body = await self._post(self._serialize(request))
        except (httpx.HTTPError, _RetryableOracleError, ValueError) as exc:
            logger.error("fraud.http.unavailable", listing_id=request.listing_id, error=str(exc))
            raise FraudOracleUnavailableError(f"Fraud oracle unavailable: {exc}") from exc

        try:
            risk_score = max(0, min(100, int(body["risk_score"])))
            result = FraudCheckResult(
                passed=bool(body["passed"]),
                risk_score=risk_score,
                warnings=[str(w) for w in body.get("warnings", []) if w],
                checks=dict(body.get("checks", {})),
            )
        except (KeyError, TypeError, ValueError) as exc:
            logger.error("fraud.http.bad_response", listing_id=request.listing_id, body=body)
            raise FraudOracleUnavailableError("Fraud oracle returned a malformed response") from exc

        logger.info(
            "fraud.http.result",
            listing_id=request.listing_id,
            risk_score=result.risk_score,
            passed=result.passed,
        )
        return result

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((httpx.TransportError, _RetryableOracleError)),
        reraise=True,
    )
    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST the payload with retry logic.

        Uses tenacity for exponential backoff on transient failures.
        """
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(self._url, json=payload)
        if response.status_code >= 500:
            raise _RetryableOracleError(f"oracle returned HTTP {response.status_code}")
        response.raise_for_status()
        return response.json()
