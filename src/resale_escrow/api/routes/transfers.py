"""Ticket transfer REST API routes.

Routes:
    POST   /transfer             — action: submit_proof | confirm_receipt | report_issue
    GET    /transfer?order_id=   — Transfer state for one order
"""

from __future__ import annotations

import uuid  # noqa: TC003 - FastAPI resolves parameter types at runtime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002

from resale_escrow.api.deps import (
    get_current_actor,
    get_db_session,
    get_payment_service,
    rate_limit,
)
from resale_escrow.domain.actor import Actor  # noqa: TC001
from resale_escrow.logging_config import get_logger
from resale_escrow.schemas.order import TransferActionRequest, TransferResponse
from resale_escrow.services.payment_service import PaymentService  # noqa: TC001
from resale_escrow.services.transfer_service import TransferService

router = APIRouter(prefix="/transfer", tags=["Transfers"])
logger = get_logger(__name__)


@router.post(
    "",
    response_model=TransferResponse,
    summary="Act on a ticket transfer",
    dependencies=[Depends(rate_limit("upload_proof"))],
)
async def transfer_action(
    request: TransferActionRequest,
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    payments: PaymentService = Depends(get_payment_service),
) -> TransferResponse:
    """Seller submits proof; buyer confirms receipt or reports an issue."""
    svc = TransferService(session, payments)
    if request.action == "submit_proof":
        transfer = await svc.submit_proof(
            actor,
            request.order_id,
            request.proof_urls,
            notes=request.notes,
            transfer_reference=request.transfer_reference,
        )
    elif request.action == "confirm_receipt":
        transfer = await svc.confirm_receipt(actor, request.order_id, notes=request.notes)
    else:
        transfer, _dispute = await svc.report_issue(
            actor, request.order_id, request.notes or "", reason=request.reason
        )
    return TransferResponse.model_validate(transfer)


@router.get(
    "",
    response_model=TransferResponse,
    summary="Get the transfer for an order",
)
async def get_transfer(
    order_id: uuid.UUID = Query(...),
    actor: Actor = Depends(get_current_actor),
    session: AsyncSession = Depends(get_db_session),
    payments: PaymentService = Depends(get_payment_service),
) -> TransferResponse:
    transfer = await TransferService(session, payments).get_transfer(actor, order_id)
    return TransferResponse.model_validate(transfer)
