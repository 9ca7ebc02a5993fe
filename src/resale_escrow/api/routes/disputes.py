"""Dispute REST API routes for buyers and sellers.

Routes:
    POST   /disputes             — action: respond | add_evidence | withdraw
    GET    /disputes             — Disputes on my orders
    GET    /disputes/{id}        — One dispute

Reviewer actions live in routes/admin.py.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - FastAPI resolves parameter types at runtime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002

from resale_escrow.api.deps import get_current_actor, get_db_session, get_payment_service
from resale_escrow.domain.actor import Actor  # noqa: TC001
from resale_escrow.domain.enums import DisputeStatus, PartyRole
from resale_escrow.logging_config import get_logger
from resale_escrow.schemas.common import Page
from resale_escrow.schemas.dispute import DisputeActionRequest, DisputeResponse
from resale_escrow.services.dispute_service import DisputeService
from resale_escrow.services.payment_service import PaymentService  # noqa: TC001

router = APIRouter(prefix="/disputes", tags=["Disputes"])
logger = get_logger(__name__)


@router.post(
    "",
    response_model=DisputeResponse,
    summary="Respond to, add evidence to, or withdraw a dispute",
)
async def dispute_action(
    request: DisputeActionRequest,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    payments: PaymentService = Depends(get_payment_service),
) -> DisputeResponse:
    svc = DisputeService(session, payments)
    if request.action == "respond":
        dispute = await svc.respond(
            actor, request.dispute_id, request.statement or "", request.evidence_urls
        )
    elif request.action == "add_evidence":
        dispute = await svc.add_evidence(actor, request.dispute_id, request.evidence_urls)
    else:
        dispute = await svc.withdraw(actor, request.dispute_id)
    return DisputeResponse.model_validate(dispute)


@router.get(
    "",
    response_model=Page[DisputeResponse],
    summary="List disputes on my orders",
)
async def list_disputes(
    role: PartyRole | None = None,
    status: DisputeStatus | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=50),
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    payments: PaymentService = Depends(get_payment_service),
) -> Page[DisputeResponse]:
    items, total = await DisputeService(session, payments).list_disputes(
        actor, role=role, status=status.value if status else None, page=page, limit=limit
    )
    return Page[DisputeResponse].build(
        [DisputeResponse.model_validate(d) for d in items], total, page, limit
    )


@router.get(
    "/{dispute_id}",
    response_model=DisputeResponse,
    summary="Get one dispute",
)
async def get_dispute(
    dispute_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    payments: PaymentService = Depends(get_payment_service),
) -> DisputeResponse:
    dispute = await DisputeService(session, payments).get_dispute(actor, dispute_id)
    return DisputeResponse.model_validate(dispute)
