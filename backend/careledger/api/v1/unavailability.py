"""
Router FastAPI per le Indisponibilità degli Operatori
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from careledger.core.database import get_db
from careledger.core.deps import AdminUser, CarerUser
from careledger.schemas.unavailability import (
    ReassignRequest,
    ReassignResult,
    UnavailabilityRead,
    UnavailabilityReview,
    UnavailabilityReviewResult,
    UnavailabilitySubmit,
)
from careledger.services.unavailability_service import unavailability_service

router = APIRouter(
    prefix="/unavailability",
    tags=["Unavailability"],
)


@router.post(
    "/",
    name="unavailability_submit",
    summary="Report unavailability",
    description="A carer reports they cannot attend one of their assigned bookings.",
    response_model=UnavailabilityRead,
    status_code=status.HTTP_201_CREATED,
)
async def submit(
    data: UnavailabilitySubmit,
    carer: CarerUser,
    db: AsyncSession = Depends(get_db),
) -> UnavailabilityRead:
    return await unavailability_service.submit(db, data, carer)


@router.get(
    "/pending",
    name="unavailability_pending",
    summary="Pending unavailability requests",
    response_model=List[UnavailabilityRead],
)
async def list_pending(
    admin: AdminUser,
    branch_id: Optional[uuid.UUID] = Query(None, description="Filtro per filiale"),
    db: AsyncSession = Depends(get_db),
) -> List[UnavailabilityRead]:
    requests = await unavailability_service.list_pending(db, branch_id)
    return [UnavailabilityRead.model_validate(request) for request in requests]


@router.post(
    "/{request_id}/review",
    name="unavailability_review",
    summary="Approve or reject unavailability",
    description="When approved, requires_reassignment tells the caller to reassign the booking.",
    response_model=UnavailabilityReviewResult,
)
async def review(
    data: UnavailabilityReview,
    admin: AdminUser,
    request_id: uuid.UUID = Path(..., description="UUID della richiesta"),
    db: AsyncSession = Depends(get_db),
) -> UnavailabilityReviewResult:
    return await unavailability_service.review(db, request_id, data, reviewer=admin)


@router.post(
    "/{request_id}/reassign",
    name="unavailability_reassign",
    summary="Reassign booking",
    response_model=ReassignResult,
)
async def reassign(
    data: ReassignRequest,
    admin: AdminUser,
    request_id: uuid.UUID = Path(..., description="UUID della richiesta"),
    db: AsyncSession = Depends(get_db),
) -> ReassignResult:
    return await unavailability_service.reassign(db, request_id, data.new_staff_id)


__all__ = ["router"]
