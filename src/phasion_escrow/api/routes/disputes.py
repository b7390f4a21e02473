"""Dispute REST API routes.

Routes:
    POST   /api/v1/disputes               — Customer opens a dispute on a shipped order
    GET    /api/v1/disputes?status=open   — Admin review queue
    GET    /api/v1/disputes/{id}          — Get dispute details
    POST   /api/v1/disputes/{id}/resolve  — Admin decision; triggers refund or release
"""

from __future__ import annotations

import uuid  # noqa: TC003 - FastAPI resolves path parameter types at runtime

from fastapi import APIRouter, Depends, Query

from phasion_escrow.api.deps import get_dispute_service
from phasion_escrow.domain.enums import DisputeStatus
from phasion_escrow.schemas.disputes import (
    CreateDisputeRequest,
    DisputeResponse,
    ResolveDisputeRequest,
)
from phasion_escrow.services.dispute_service import DisputeService

router = APIRouter(prefix="/api/v1/disputes", tags=["Disputes"])


@router.post("", response_model=DisputeResponse, status_code=201, summary="Open a dispute")
async def create_dispute(
    request: CreateDisputeRequest,
    svc: DisputeService = Depends(get_dispute_service),
) -> DisputeResponse:
    dispute = await svc.create_dispute(
        order_id=request.order_id,
        customer_id=request.customer_id,
        reason=request.reason,
        description=request.description,
    )
    return DisputeResponse.model_validate(dispute)


@router.get("", response_model=list[DisputeResponse], summary="List disputes by status")
async def list_disputes(
    status: DisputeStatus = Query(default=DisputeStatus.OPEN),
    svc: DisputeService = Depends(get_dispute_service),
) -> list[DisputeResponse]:
    return [DisputeResponse.model_validate(d) for d in await svc.list_disputes(status)]


@router.get("/{dispute_id}", response_model=DisputeResponse, summary="Get dispute details")
async def get_dispute(
    dispute_id: uuid.UUID,
    svc: DisputeService = Depends(get_dispute_service),
) -> DisputeResponse:
    return DisputeResponse.model_validate(await svc.get_dispute(dispute_id))


@router.post(
    "/{dispute_id}/resolve",
    response_model=DisputeResponse,
    summary="Resolve a dispute",
)
async def resolve_dispute(
    dispute_id: uuid.UUID,
    request: ResolveDisputeRequest,
    svc: DisputeService = Depends(get_dispute_service),
) -> DisputeResponse:
    """Refund the customer or release to the designer, then close the dispute.

    If the payout fails the dispute stays open and the error is returned.
    """
    dispute = await svc.resolve_dispute(
        dispute_id, request.decision, notes=request.notes, admin_id=request.admin_id
    )
    return DisputeResponse.model_validate(dispute)
