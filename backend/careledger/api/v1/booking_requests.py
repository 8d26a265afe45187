"""
Router FastAPI per le Richieste di Modifica delle Visite
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from careledger.core.database import get_db
from careledger.core.deps import AdminUser
from careledger.schemas.booking_request import (
    ApproveChangeRequest,
    ChangeRequestDecision,
    ChangeRequestRead,
    RejectChangeRequest,
)
from careledger.services.booking_request_service import booking_request_service

router = APIRouter(
    prefix="/booking-requests",
    tags=["Booking Requests"],
)


@router.get(
    "/pending",
    name="booking_requests_pending",
    summary="Pending change requests",
    response_model=List[ChangeRequestRead],
)
async def list_pending(
    admin: AdminUser,
    branch_id: Optional[uuid.UUID] = Query(None, description="Filtro per filiale"),
    db: AsyncSession = Depends(get_db),
) -> List[ChangeRequestRead]:
    requests = await booking_request_service.list_pending(db, branch_id)
    return [ChangeRequestRead.model_validate(request) for request in requests]


@router.post(
    "/{request_id}/approve",
    name="booking_request_approve",
    summary="Approve change request",
    description=(
        "Approves a pending cancellation or reschedule request, updates the booking "
        "and notifies the client."
    ),
    response_model=ChangeRequestDecision,
)
async def approve_request(
    data: ApproveChangeRequest,
    admin: AdminUser,
    request_id: uuid.UUID = Path(..., description="UUID della richiesta"),
    db: AsyncSession = Depends(get_db),
) -> ChangeRequestDecision:
    return await booking_request_service.approve(db, request_id, data, reviewer=admin)


@router.post(
    "/{request_id}/reject",
    name="booking_request_reject",
    summary="Reject change request",
    response_model=ChangeRequestDecision,
)
async def reject_request(
    data: RejectChangeRequest,
    admin: AdminUser,
    request_id: uuid.UUID = Path(..., description="UUID della richiesta"),
    db: AsyncSession = Depends(get_db),
) -> ChangeRequestDecision:
    return await booking_request_service.reject(db, request_id, data, reviewer=admin)


__all__ = ["router"]
