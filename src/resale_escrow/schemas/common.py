"""Shared pieces of the API schemas: money, paging, errors, health."""

from __future__ import annotations

import math
from datetime import datetime  # noqa: TC003 - pydantic resolves field types at runtime
from decimal import Decimal
from typing import Annotated, Generic, TypeVar

from pydantic import BaseModel, Field, PlainSerializer

from resale_escrow.domain.pricing import to_money

T = TypeVar("T")

# Money leaves the API as a two-decimal string ("31.50"), never a float.
Money = Annotated[
    Decimal,
    PlainSerializer(lambda v: f"{to_money(v):.2f}", return_type=str, when_used="always"),
]
OptionalMoney = Annotated[
    Decimal | None,
    PlainSerializer(
        lambda v: None if v is None else f"{to_money(v):.2f}",
        return_type=str | None,
        when_used="always",
    ),
]


class Page(BaseModel, Generic[T]):
    """One page of a list endpoint."""

    items: list[T]
    page: int
    limit: int
    total: int
    total_pages: int = Field(serialization_alias="totalPages")

    @classmethod
    def build(cls, items: list[T], total: int, page: int, limit: int) -> Page[T]:
        return cls(
            items=items,
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit) if limit else 0,
        )


class ErrorResponse(BaseModel):
    """Body of every 4xx/5xx response produced by the error middleware."""

    error: str = Field(..., examples=["MARKUP_LIMIT_EXCEEDED"])
    message: str
    details: dict = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Response schema for the health check endpoint."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
    checked_at: datetime | None = None


class SweepResponse(BaseModel):
    """Result of one manually triggered deadline sweep."""

    started_at: datetime
    sellers_defaulted: int
    reminders_sent: int
    buyer_deadlines_handled: int
    disputes_escalated: int
    payouts_released: int
    orders_expired: int
    listings_deactivated: int
    total_actions: int
    errors: list[dict[str, str]]
