"""
Router FastAPI per le Notifiche
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)

Le notifiche nascono dai workflow interni oppure dagli eventi
segnalati dagli admin (contratti firmati, moduli assegnati); qui si
leggono e si marcano come lette.
"""

import uuid
from typing import List

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from careledger.core.database import get_db
from careledger.core.deps import AdminUser, CurrentUser
from careledger.schemas.notification import (
    AgreementSignedEvent,
    EventDispatchResult,
    FormAssignedEvent,
    MarkAllReadResult,
    NotificationRead,
    OverdueAlertResult,
)
from careledger.services.notification_service import notification_service

router = APIRouter(
    prefix="/notifications",
    tags=["Notifications"],
)


@router.get(
    "/",
    name="notifications_list",
    summary="My notifications",
    response_model=List[NotificationRead],
)
async def list_notifications(
    user: CurrentUser,
    unread_only: bool = Query(False, description="Solo notifiche non lette"),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
) -> List[NotificationRead]:
    notifications = await notification_service.list_for_user(db, user.id, unread_only, limit)
    return [NotificationRead.model_validate(notification) for notification in notifications]


@router.post(
    "/{notification_id}/read",
    name="notification_mark_read",
    summary="Mark notification as read",
    response_model=NotificationRead,
)
async def mark_read(
    user: CurrentUser,
    notification_id: uuid.UUID = Path(..., description="UUID della notifica"),
    db: AsyncSession = Depends(get_db),
) -> NotificationRead:
    notification = await notification_service.mark_read(db, notification_id, user.id)
    return NotificationRead.model_validate(notification)


@router.post(
    "/read-all",
    name="notifications_mark_all_read",
    summary="Mark all notifications as read",
    response_model=MarkAllReadResult,
)
async def mark_all_read(
    user: CurrentUser,
    db: AsyncSession = Depends(get_db),
) -> MarkAllReadResult:
    updated = await notification_service.mark_all_read(db, user.id)
    return MarkAllReadResult(updated=updated)


@router.post(
    "/overdue-check",
    name="notifications_overdue_check",
    summary="Run the late/missed booking check now",
    response_model=OverdueAlertResult,
)
async def run_overdue_check(
    admin: AdminUser,
    db: AsyncSession = Depends(get_db),
) -> OverdueAlertResult:
    return await notification_service.generate_overdue_booking_alerts(db)


@router.post(
    "/events/agreement-signed",
    name="notifications_agreement_signed",
    summary="Notify branch admins of a signed agreement",
    response_model=EventDispatchResult,
    status_code=status.HTTP_201_CREATED,
)
async def agreement_signed(
    data: AgreementSignedEvent,
    admin: AdminUser,
    db: AsyncSession = Depends(get_db),
) -> EventDispatchResult:
    sent = await notification_service.notify_agreement_signed(
        db, data.branch_id, data.agreement_id, data.agreement_title, data.signer_name
    )
    return EventDispatchResult(notifications_sent=sent)


@router.post(
    "/events/form-assigned",
    name="notifications_form_assigned",
    summary="Notify carers and clients of an assigned form",
    response_model=EventDispatchResult,
    status_code=status.HTTP_201_CREATED,
)
async def form_assigned(
    data: FormAssignedEvent,
    admin: AdminUser,
    db: AsyncSession = Depends(get_db),
) -> EventDispatchResult:
    sent = await notification_service.notify_form_assigned(
        db,
        data.branch_id,
        data.form_id,
        data.form_title,
        staff_ids=data.staff_ids,
        client_ids=data.client_ids,
        all_branch_staff=data.all_branch_staff,
    )
    return EventDispatchResult(notifications_sent=sent)


__all__ = ["router"]
