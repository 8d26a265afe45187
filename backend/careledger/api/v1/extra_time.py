"""
Router FastAPI per l'Extra Time
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from careledger.core.database import get_db
from careledger.core.deps import AdminUser
from careledger.schemas.extra_time import (
    ExtraTimeCreate,
    ExtraTimeRead,
    MarkInvoicedRequest,
    MarkInvoicedResult,
    RemoveFromInvoiceResult,
)
from careledger.services.extra_time_service import extra_time_service

router = APIRouter(
    prefix="/extra-time",
    tags=["Extra Time"],
)


@router.post(
    "/",
    name="extra_time_create",
    summary="Record extra time",
    description="Records extra time for a carer; minutes and cost are computed and frozen.",
    response_model=ExtraTimeRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_record(
    data: ExtraTimeCreate,
    admin: AdminUser,
    db: AsyncSession = Depends(get_db),
) -> ExtraTimeRead:
    record = await extra_time_service.create_record(db, data)
    return ExtraTimeRead.model_validate(record)


@router.get(
    "/",
    name="extra_time_list",
    summary="List extra time records",
    response_model=List[ExtraTimeRead],
)
async def list_records(
    admin: AdminUser,
    branch_id: uuid.UUID = Query(..., description="UUID della filiale"),
    invoiced: Optional[bool] = Query(None, description="Filtro per stato di fatturazione"),
    db: AsyncSession = Depends(get_db),
) -> List[ExtraTimeRead]:
    records = await extra_time_service.list_records(db, branch_id, invoiced)
    return [ExtraTimeRead.model_validate(record) for record in records]


@router.post(
    "/mark-invoiced",
    name="extra_time_mark_invoiced",
    summary="Attach extra time to invoice",
    description=(
        "Marks the records as invoiced and adds their frozen cost to the invoice total. "
        "Records already invoiced are reported in skipped_ids."
    ),
    response_model=MarkInvoicedResult,
)
async def mark_as_invoiced(
    data: MarkInvoicedRequest,
    admin: AdminUser,
    db: AsyncSession = Depends(get_db),
) -> MarkInvoicedResult:
    return await extra_time_service.mark_as_invoiced(db, data.record_ids, data.invoice_id)


@router.delete(
    "/{record_id}/invoice/{invoice_id}",
    name="extra_time_remove_from_invoice",
    summary="Remove extra time from invoice",
    response_model=RemoveFromInvoiceResult,
)
async def remove_from_invoice(
    admin: AdminUser,
    record_id: uuid.UUID = Path(..., description="UUID del record"),
    invoice_id: uuid.UUID = Path(..., description="UUID della fattura"),
    db: AsyncSession = Depends(get_db),
) -> RemoveFromInvoiceResult:
    return await extra_time_service.remove_from_invoice(db, record_id, invoice_id)


__all__ = ["router"]
