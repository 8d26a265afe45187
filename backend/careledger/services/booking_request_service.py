"""
Service Layer per le Richieste di Modifica delle Visite
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)

Gestisce approvazione e rifiuto delle richieste di cancellazione o
spostamento inviate dai clienti.

Richiesta e visita vengono aggiornate nella stessa transazione: non
esiste uno stato in cui la richiesta risulta approvata e la visita no.
Notifica ed email partono solo dopo il commit e non possono bloccare
la transizione.
"""

import logging
import uuid
from datetime import date
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from careledger.core.exceptions import BusinessValidationError, ConflictError, NotFoundError
from careledger.models import (
    Booking,
    BookingChangeRequest,
    BookingStatus,
    ChangeRequestType,
    Client,
    RequestStatus,
    User,
)
from careledger.models.mixins import utcnow
from careledger.schemas.booking_request import (
    ApproveChangeRequest,
    BookingRead,
    ChangeRequestDecision,
    ChangeRequestRead,
    RejectChangeRequest,
)
from careledger.services.calculators import compose_start_time, shift_window
from careledger.services.email_dispatch import EmailDispatchClient
from careledger.services.notification_service import notification_service

logger = logging.getLogger(__name__)


class BookingRequestService:
    """
    Service per la revisione delle richieste dei clienti.

    Transizioni ammesse: pending → approved, pending → rejected.
    Ogni altra transizione solleva ConflictError.
    """

    def __init__(self, email_client: Optional[EmailDispatchClient] = None) -> None:
        self.email_client = email_client

    async def list_pending(
        self,
        db: AsyncSession,
        branch_id: Optional[uuid.UUID] = None,
    ) -> List[BookingChangeRequest]:
        stmt = select(BookingChangeRequest).where(
            BookingChangeRequest.status == RequestStatus.PENDING.value
        )
        if branch_id:
            stmt = stmt.where(BookingChangeRequest.branch_id == branch_id)
        stmt = stmt.order_by(BookingChangeRequest.created_at.asc())
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def approve(
        self,
        db: AsyncSession,
        request_id: uuid.UUID,
        data: ApproveChangeRequest,
        reviewer: Optional[User] = None,
    ) -> ChangeRequestDecision:
        """
        Approva una richiesta di cancellazione o spostamento.

        - cancellation: la visita passa a `cancelled`
        - reschedule: l'inizio della visita diventa new_date + new_time
          (UTC) e la fine viene spostata mantenendo la durata

        Raises:
            NotFoundError: richiesta o visita inesistente
            ConflictError: richiesta non più in attesa
            BusinessValidationError: spostamento senza nuova data/ora
        """
        request, booking = await self._load_pending(db, request_id)
        original_start = booking.start_time
        new_start = None

        if request.request_type == ChangeRequestType.CANCELLATION.value:
            booking.status = BookingStatus.CANCELLED.value
            booking.cancellation_request_status = RequestStatus.APPROVED.value
        else:
            new_date: Optional[date] = data.new_date or request.new_date
            new_time: Optional[str] = data.new_time or request.new_time
            if not new_date or not new_time:
                raise BusinessValidationError(
                    "A new date and time are required to approve a reschedule",
                    extra={"request_id": str(request_id)},
                )
            try:
                new_start = compose_start_time(new_date, new_time)
            except ValueError:
                raise BusinessValidationError(
                    "Invalid date or time for the reschedule",
                    extra={"new_date": str(new_date), "new_time": new_time},
                )
            booking.start_time, booking.end_time = shift_window(
                booking.start_time, booking.end_time, new_start
            )
            booking.reschedule_request_status = RequestStatus.APPROVED.value
            request.new_date = new_date
            request.new_time = new_time

        self._close_request(request, RequestStatus.APPROVED, data.admin_notes, reviewer)
        await self._commit(db, "approvazione richiesta")

        logger.info(
            "Richiesta %s (%s) approvata per la visita %s",
            request.id, request.request_type, booking.id,
        )
        response = self._decision(request, booking)

        response.notifications_sent = await notification_service.notify_change_request_decision(
            db, request, approved=True
        )
        await self._send_decision_email(
            db, response.request, approved=True, booking_start=original_start, new_start=new_start
        )
        return response

    async def reject(
        self,
        db: AsyncSession,
        request_id: uuid.UUID,
        data: RejectChangeRequest,
        reviewer: Optional[User] = None,
    ) -> ChangeRequestDecision:
        """
        Rifiuta una richiesta. La visita resta invariata, tranne il
        flag di esito della richiesta del tipo corrispondente.

        Raises:
            NotFoundError: richiesta o visita inesistente
            ConflictError: richiesta non più in attesa
        """
        request, booking = await self._load_pending(db, request_id)

        if request.request_type == ChangeRequestType.CANCELLATION.value:
            booking.cancellation_request_status = RequestStatus.REJECTED.value
        else:
            booking.reschedule_request_status = RequestStatus.REJECTED.value

        self._close_request(request, RequestStatus.REJECTED, data.admin_notes, reviewer)
        await self._commit(db, "rifiuto richiesta")

        logger.info("Richiesta %s (%s) rifiutata", request.id, request.request_type)
        response = self._decision(request, booking)

        response.notifications_sent = await notification_service.notify_change_request_decision(
            db, request, approved=False
        )
        await self._send_decision_email(
            db, response.request, approved=False, booking_start=response.booking.start_time
        )
        return response

    # ------------------------------------------------------------
    # Helper
    # ------------------------------------------------------------

    async def _load_pending(
        self,
        db: AsyncSession,
        request_id: uuid.UUID,
    ) -> tuple[BookingChangeRequest, Booking]:
        result = await db.execute(
            select(BookingChangeRequest)
            .where(BookingChangeRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        request = result.scalar_one_or_none()
        if not request:
            raise NotFoundError(f"Change request {request_id} not found")
        if request.status != RequestStatus.PENDING.value:
            raise ConflictError(
                f"Change request is already {request.status}",
                extra={"request_id": str(request_id), "status": request.status},
            )

        booking_result = await db.execute(
            select(Booking).where(Booking.id == request.booking_id).with_for_update()
        )
        booking = booking_result.scalar_one_or_none()
        if not booking:
            raise NotFoundError(f"Booking {request.booking_id} not found")
        return request, booking

    def _close_request(
        self,
        request: BookingChangeRequest,
        status: RequestStatus,
        admin_notes: Optional[str],
        reviewer: Optional[User],
    ) -> None:
        request.status = status.value
        request.admin_notes = admin_notes
        request.reviewed_at = utcnow()
        request.reviewed_by = reviewer.id if reviewer else None

    def _decision(self, request: BookingChangeRequest, booking: Booking) -> ChangeRequestDecision:
        return ChangeRequestDecision(
            request=ChangeRequestRead.model_validate(request),
            booking=BookingRead.model_validate(booking),
        )

    async def _commit(self, db: AsyncSession, operation: str) -> None:
        try:
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("Errore database durante %s", operation)
            raise

    async def _send_decision_email(
        self,
        db: AsyncSession,
        request: ChangeRequestRead,
        approved: bool,
        booking_start,
        new_start=None,
    ) -> bool:
        """Email di esito al cliente. Best-effort: non solleva mai."""
        try:
            client = await db.get(Client, request.client_id)
        except SQLAlchemyError as e:
            logger.warning("Lettura cliente per email di esito fallita: %s", e)
            return False
        if not client or not client.email:
            return False

        email_client = self.email_client or EmailDispatchClient()
        try:
            dispatch = await email_client.send(
                recipients=[client.email],
                subject="Request Approved" if approved else "Request Rejected",
                template_name="booking_request_decision.html",
                context={
                    "approved": approved,
                    "client_name": client.full_name,
                    "request_type": request.request_type.value,
                    "booking_start": f"{booking_start:%Y-%m-%d %H:%M}",
                    "new_start": f"{new_start:%Y-%m-%d %H:%M}" if new_start else None,
                    "admin_notes": request.admin_notes,
                },
            )
        except BusinessValidationError as e:
            logger.warning("Email di esito non inviata al cliente %s: %s", client.id, e.detail)
            return False
        return dispatch.success


booking_request_service = BookingRequestService()
