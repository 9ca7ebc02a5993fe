"""Purchase, payment callback and order REST API routes.

Routes:
    POST   /purchase                  — Reserve tickets and place a payment hold
    POST   /payments/capture          — Processor callback: charge settled
    POST   /payments/failed           — Processor callback: charge declined
    GET    /orders                    — Orders the caller bought or sold
    GET    /orders/{id}               — Order detail with timeline
    GET    /orders/{id}/messages      — Buyer/seller message thread
    POST   /orders/{id}/messages      — Post to the thread
"""

from __future__ import annotations

import uuid  # noqa: TC003 - FastAPI resolves parameter types at runtime

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002

from resale_escrow.api.deps import (
    get_current_actor,
    get_db_session,
    get_idempotency_store,
    get_payment_service,
    get_reputation_provider,
    rate_limit,
    verify_payment_signature,
)
from resale_escrow.domain.actor import Actor  # noqa: TC001
from resale_escrow.domain.enums import OrderStatus, PartyRole
from resale_escrow.domain.seller import ReputationProvider  # noqa: TC001
from resale_escrow.infrastructure.redis_client import IdempotencyStore  # noqa: TC001
from resale_escrow.logging_config import get_logger
from resale_escrow.schemas.common import Page
from resale_escrow.schemas.order import (
    MessageResponse,
    OrderDetailResponse,
    OrderResponse,
    PaymentCallbackRequest,
    PostMessageRequest,
    PurchaseRequest,
)
from resale_escrow.services.order_service import OrderService, build_timeline
from resale_escrow.services.payment_service import PaymentService  # noqa: TC001

router = APIRouter(tags=["Orders"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Purchase
# ---------------------------------------------------------------------------


@router.post(
    "/purchase",
    response_model=OrderResponse,
    status_code=201,
    summary="Buy tickets from a listing",
    dependencies=[Depends(rate_limit("purchase"))],
)
async def purchase(
    request: PurchaseRequest,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key", max_length=128),
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    payments: PaymentService = Depends(get_payment_service),
    reputation: ReputationProvider = Depends(get_reputation_provider),
    idempotency: IdempotencyStore | None = Depends(get_idempotency_store),
) -> OrderResponse:
    """Create a pending order. The response carries the payment handle."""
    svc = OrderService(session, payments, reputation=reputation, idempotency=idempotency)
    order = await svc.purchase(
        actor, request.listing_id, request.quantity, idempotency_key=idempotency_key
    )
    return OrderResponse.model_validate(order)


# ---------------------------------------------------------------------------
# Payment processor callbacks
# ---------------------------------------------------------------------------


@router.post(
    "/payments/capture",
    response_model=OrderResponse,
    summary="Payment settled",
    dependencies=[Depends(verify_payment_signature)],
)
async def capture_payment(
    request: PaymentCallbackRequest,
    session: AsyncSession = Depends(get_db_session),
    payments: PaymentService = Depends(get_payment_service),
) -> OrderResponse:
    order = await OrderService(session, payments).capture_payment(request.order_id)
    return OrderResponse.model_validate(order)


@router.post(
    "/payments/failed",
    response_model=OrderResponse,
    summary="Payment declined",
    dependencies=[Depends(verify_payment_signature)],
)
async def payment_failed(
    request: PaymentCallbackRequest,
    session: AsyncSession = Depends(get_db_session),
    payments: PaymentService = Depends(get_payment_service),
) -> OrderResponse:
    order = await OrderService(session, payments).fail_payment(request.order_id, request.reason)
    return OrderResponse.model_validate(order)


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


@router.get(
    "/orders",
    response_model=Page[OrderResponse],
    summary="List my orders",
)
async def list_orders(
    role: PartyRole | None = Query(default=None, description="Only orders as buyer or seller"),
    status: OrderStatus | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=50),
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    payments: PaymentService = Depends(get_payment_service),
) -> Page[OrderResponse]:
    svc = OrderService(session, payments)
    items, total = await svc.list_orders(
        actor, role=role, status=status.value if status else None, page=page, limit=limit
    )
    return Page[OrderResponse].build(
        [OrderResponse.model_validate(order) for order in items], total, page, limit
    )


@router.get(
    "/orders/{order_id}",
    response_model=OrderDetailResponse,
    summary="Get order details and timeline",
)
async def get_order(
    order_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    payments: PaymentService = Depends(get_payment_service),
) -> OrderDetailResponse:
    order = await OrderService(session, payments).get_order(actor, order_id)
    return OrderDetailResponse.from_order(order, build_timeline(order))


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@router.get(
    "/orders/{order_id}/messages",
    response_model=Page[MessageResponse],
    summary="Read the order's message thread",
)
async def list_messages(
    order_id: uuid.UUID,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=50),
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    payments: PaymentService = Depends(get_payment_service),
) -> Page[MessageResponse]:
    items, total = await OrderService(session, payments).list_messages(
        actor, order_id, page, limit
    )
    return Page[MessageResponse].build(
        [MessageResponse.model_validate(msg) for msg in items], total, page, limit
    )


@router.post(
    "/orders/{order_id}/messages",
    response_model=MessageResponse,
    status_code=201,
    summary="Post a message to the other party",
)
async def post_message(
    order_id: uuid.UUID,
    request: PostMessageRequest,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    payments: PaymentService = Depends(get_payment_service),
) -> MessageResponse:
    message = await OrderService(session, payments).post_message(actor, order_id, request.body)
    return MessageResponse.model_validate(message)
