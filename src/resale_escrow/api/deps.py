"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
the authenticated actor, collaborators (payment rails, fraud oracle,
reputation lookups) and the Redis-backed idempotency store and rate limiter.

Collaborators are module-level singletons created on first use; tests
replace them through app.dependency_overrides.
"""

from __future__ import annotations

import hashlib
import hmac
from functools import lru_cache
from typing import TYPE_CHECKING

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from resale_escrow.config import Settings, get_settings
from resale_escrow.domain.actor import Actor
from resale_escrow.domain.enums import ActorRole
from resale_escrow.domain.exceptions import AuthenticationError
from resale_escrow.fraud import FraudOracleFactory
from resale_escrow.infrastructure.database.engine import get_async_session
from resale_escrow.infrastructure.redis_client import IdempotencyStore, RateLimiter, get_redis
from resale_escrow.logging_config import get_logger
from resale_escrow.orchestration.deadline_sweep import DeadlineSweep
from resale_escrow.services.guards import require_reviewer
from resale_escrow.services.payment_service import PaymentService
from resale_escrow.services.reputation_service import StaticReputationProvider

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable

    import redis.asyncio as aioredis
    from sqlalchemy.ext.asyncio import AsyncSession

    from resale_escrow.domain.fraud_protocol import FraudOracle
    from resale_escrow.domain.seller import ReputationProvider

logger = get_logger(__name__)

_bearer = HTTPBearer(auto_error=False)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


def decode_token(token: str, settings: Settings) -> Actor:
    """Turn a bearer token from the identity provider into an Actor."""
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise AuthenticationError(f"Invalid token: {exc}") from exc

    subject = claims.get("sub")
    if not subject:
        raise AuthenticationError("Token has no subject")
    try:
        role = ActorRole(claims.get("role", ActorRole.USER))
    except ValueError as exc:
        raise AuthenticationError(f"Unknown role claim: {claims.get('role')!r}") from exc
    return Actor(id=str(subject), email=claims.get("email"), role=role)


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    settings: Settings = Depends(get_app_settings),
) -> Actor:
    """Resolve the caller from the Authorization header."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationError()
    return decode_token(credentials.credentials, settings)


async def get_reviewer(actor: Actor = Depends(get_current_actor)) -> Actor:
    require_reviewer(actor, "use the admin API")
    return actor


def sign_payload(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


async def verify_payment_signature(
    request: Request,
    settings: Settings = Depends(get_app_settings),
) -> None:
    """Payment processor callbacks carry an HMAC of the raw body instead of a user token."""
    signature = request.headers.get("X-Payment-Signature", "")
    expected = sign_payload(await request.body(), settings.payment_webhook_secret)
    if not hmac.compare_digest(signature, expected):
        logger.warning("payments.bad_signature", path=request.url.path)
        raise AuthenticationError("Invalid payment callback signature")


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def get_payment_service() -> PaymentService:
    return PaymentService()


@lru_cache(maxsize=1)
def get_fraud_oracle() -> FraudOracle:
    return FraudOracleFactory.create()


@lru_cache(maxsize=1)
def get_reputation_provider() -> ReputationProvider:
    return StaticReputationProvider()


def _redis_or_none() -> aioredis.Redis | None:
    try:
        return get_redis()
    except RuntimeError:
        # Redis failed at startup (see app.redis_unavailable); run without it.
        return None


def get_idempotency_store() -> IdempotencyStore | None:
    redis = _redis_or_none()
    return IdempotencyStore(redis) if redis is not None else None


def get_rate_limiter() -> RateLimiter | None:
    if not get_settings().rate_limit_enabled:
        return None
    redis = _redis_or_none()
    return RateLimiter(redis) if redis is not None else None


def rate_limit(action: str) -> Callable[..., Awaitable[None]]:
    """Dependency factory: count one `action` request for the current actor."""

    async def _check(
        actor: Actor = Depends(get_current_actor),
        limiter: RateLimiter | None = Depends(get_rate_limiter),
    ) -> None:
        if limiter is not None:
            await limiter.hit(actor.id, action)

    return _check


def get_deadline_sweep(
    payments: PaymentService = Depends(get_payment_service),
) -> DeadlineSweep:
    """Sweep bound to the application's session factory, for manual runs."""
    return DeadlineSweep(payments=payments)
