"""
Service Layer per le Indisponibilità degli Operatori
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)

Flusso:
1. l'operatore dichiara di non poter coprire una visita (submit)
2. l'admin approva o rifiuta (review)
3. se approvata, l'admin sceglie il sostituto in un passo separato (reassign)
"""

import logging
import uuid
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from careledger.core.exceptions import (
    AuthorizationError,
    BusinessValidationError,
    ConflictError,
    NotFoundError,
)
from careledger.models import (
    Booking,
    BookingStatus,
    BookingUnavailabilityRequest,
    RequestStatus,
    Staff,
    User,
)
from careledger.models.mixins import utcnow
from careledger.schemas.booking_request import BookingRead
from careledger.schemas.unavailability import (
    ReassignResult,
    ReviewDecision,
    UnavailabilityRead,
    UnavailabilityReview,
    UnavailabilityReviewResult,
    UnavailabilitySubmit,
)
from careledger.services.notification_service import notification_service

logger = logging.getLogger(__name__)


class UnavailabilityService:

    async def list_pending(
        self,
        db: AsyncSession,
        branch_id: Optional[uuid.UUID] = None,
    ) -> List[BookingUnavailabilityRequest]:
        stmt = select(BookingUnavailabilityRequest).where(
            BookingUnavailabilityRequest.status == RequestStatus.PENDING.value
        )
        if branch_id:
            stmt = stmt.where(BookingUnavailabilityRequest.branch_id == branch_id)
        stmt = stmt.order_by(BookingUnavailabilityRequest.created_at.asc())
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def submit(
        self,
        db: AsyncSession,
        data: UnavailabilitySubmit,
        user: User,
    ) -> UnavailabilityRead:
        """
        Registra l'indisponibilità dell'operatore collegato all'utente.

        Raises:
            AuthorizationError: l'utente non è un operatore o la visita non è sua
            NotFoundError: visita inesistente
            ConflictError: visita non più assegnata o richiesta già in attesa
        """
        staff_result = await db.execute(select(Staff).where(Staff.auth_user_id == user.id))
        staff = staff_result.scalar_one_or_none()
        if not staff:
            raise AuthorizationError("Only carers can report unavailability")

        booking = await db.get(Booking, data.booking_id)
        if not booking:
            raise NotFoundError(f"Booking {data.booking_id} not found")
        if booking.staff_id != staff.id:
            raise AuthorizationError("The booking is not assigned to you")
        if booking.status != BookingStatus.ASSIGNED.value:
            raise ConflictError(
                f"Booking is {booking.status}, unavailability cannot be reported",
                extra={"booking_id": str(booking.id)},
            )

        existing = await db.execute(
            select(BookingUnavailabilityRequest.id).where(
                BookingUnavailabilityRequest.booking_id == booking.id,
                BookingUnavailabilityRequest.staff_id == staff.id,
                BookingUnavailabilityRequest.status == RequestStatus.PENDING.value,
            )
        )
        if existing.first():
            raise ConflictError(
                "An unavailability request for this booking is already pending",
                extra={"booking_id": str(booking.id)},
            )

        request = BookingUnavailabilityRequest(
            booking_id=booking.id,
            staff_id=staff.id,
            branch_id=booking.branch_id,
            reason=data.reason,
            notes=data.notes,
            status=RequestStatus.PENDING.value,
        )
        db.add(request)
        await self._commit(db, "dichiarazione indisponibilità")

        logger.info("Indisponibilità %s dichiarata da %s per la visita %s", request.id, staff.id, booking.id)
        response = UnavailabilityRead.model_validate(request)
        await notification_service.notify_unavailability_submitted(db, request, staff, booking)
        return response

    async def review(
        self,
        db: AsyncSession,
        request_id: uuid.UUID,
        data: UnavailabilityReview,
        reviewer: Optional[User] = None,
    ) -> UnavailabilityReviewResult:
        """
        Approva o rifiuta un'indisponibilità.

        L'approvazione non sceglie il sostituto: requires_reassignment
        segnala al chiamante che deve avviare la riassegnazione.

        Raises:
            NotFoundError: richiesta inesistente
            ConflictError: richiesta non più in attesa
        """
        result = await db.execute(
            select(BookingUnavailabilityRequest)
            .where(BookingUnavailabilityRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        request = result.scalar_one_or_none()
        if not request:
            raise NotFoundError(f"Unavailability request {request_id} not found")
        if request.status != RequestStatus.PENDING.value:
            raise ConflictError(
                f"Unavailability request is already {request.status}",
                extra={"request_id": str(request_id), "status": request.status},
            )

        approved = data.decision == ReviewDecision.APPROVED
        request.status = RequestStatus.APPROVED.value if approved else RequestStatus.REJECTED.value
        request.admin_notes = data.admin_notes
        request.reviewed_at = utcnow()
        request.reviewed_by = reviewer.id if reviewer else None
        await self._commit(db, "revisione indisponibilità")

        logger.info("Indisponibilità %s: %s", request.id, request.status)
        response = UnavailabilityReviewResult(
            request=UnavailabilityRead.model_validate(request),
            requires_reassignment=approved,
        )
        await notification_service.notify_unavailability_reviewed(db, request)
        return response

    async def reassign(
        self,
        db: AsyncSession,
        request_id: uuid.UUID,
        new_staff_id: uuid.UUID,
    ) -> ReassignResult:
        """
        Assegna la visita a un altro operatore dopo un'indisponibilità approvata.

        Steps:
        1. Verifica che la richiesta sia `approved`
        2. Verifica che il sostituto sia attivo, della stessa filiale e
           diverso dall'operatore indisponibile
        3. Aggiorna visita e richiesta (`reassigned`) in un unico commit
        4. Notifica il nuovo operatore

        Raises:
            NotFoundError: richiesta, visita o operatore inesistente
            ConflictError: richiesta non approvata
            BusinessValidationError: sostituto non valido
        """
        result = await db.execute(
            select(BookingUnavailabilityRequest)
            .where(BookingUnavailabilityRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        request = result.scalar_one_or_none()
        if not request:
            raise NotFoundError(f"Unavailability request {request_id} not found")
        if request.status != RequestStatus.APPROVED.value:
            raise ConflictError(
                "Only approved unavailability requests can be reassigned",
                extra={"request_id": str(request_id), "status": request.status},
            )

        booking_result = await db.execute(
            select(Booking).where(Booking.id == request.booking_id).with_for_update()
        )
        booking = booking_result.scalar_one_or_none()
        if not booking:
            raise NotFoundError(f"Booking {request.booking_id} not found")

        new_staff = await db.get(Staff, new_staff_id)
        if not new_staff:
            raise NotFoundError(f"Staff {new_staff_id} not found")
        if not new_staff.is_active:
            raise BusinessValidationError("The replacement carer is not active")
        if new_staff.branch_id != booking.branch_id:
            raise BusinessValidationError("The replacement carer belongs to another branch")
        if new_staff.id in (request.staff_id, booking.staff_id):
            raise BusinessValidationError("The replacement carer must be a different carer")

        now = utcnow()
        booking.staff_id = new_staff.id
        request.status = RequestStatus.REASSIGNED.value
        request.reassigned_to_staff_id = new_staff.id
        request.reassigned_at = now
        await self._commit(db, "riassegnazione visita")

        logger.info("Visita %s riassegnata all'operatore %s", booking.id, new_staff.id)
        response = ReassignResult(
            request=UnavailabilityRead.model_validate(request),
            booking=BookingRead.model_validate(booking),
        )
        response.notifications_sent = await notification_service.notify_booking_reassigned(
            db, booking, new_staff, request_id=request.id
        )
        return response

    async def _commit(self, db: AsyncSession, operation: str) -> None:
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.error("Errore di integrità durante %s: %s", operation, e)
            raise ConflictError(f"Integrity error during {operation}")
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("Errore database durante %s", operation)
            raise


unavailability_service = UnavailabilityService()
