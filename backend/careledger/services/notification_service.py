"""
Service Layer per le Notifiche
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)

Distribuzione best-effort delle notifiche:
- Risoluzione dei destinatari (utente singolo, admin di filiale, operatori attivi)
- Verifica che ogni destinatario abbia un account valido
- Inserimento massivo di una riga per destinatario
- Helper per gli eventi di dominio
- Lato lettura: elenco, marcatura come lette
- Controllo periodico delle visite in ritardo o mancate

Un errore nell'inserimento non viene mai propagato al workflow che
ha generato l'evento: viene loggato e il conteggio restituito è zero.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Sequence

from sqlalchemy import insert, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from careledger.core.config import settings
from careledger.core.exceptions import NotFoundError
from careledger.models import (
    AdminBranch,
    Booking,
    BookingChangeRequest,
    BookingStatus,
    BookingUnavailabilityRequest,
    Client,
    Invoice,
    Notification,
    NotificationCategory,
    NotificationPriority,
    NotificationType,
    Staff,
    User,
    UserRole,
)
from careledger.models.mixins import utcnow
from careledger.schemas.notification import NotificationPayload, OverdueAlertResult

# Logger per questo modulo
logger = logging.getLogger(__name__)


class NotificationService:
    """
    Service per la creazione e la lettura delle notifiche.

    I metodi di creazione non fanno commit: lavorano in un SAVEPOINT
    e lasciano al chiamante la chiusura della transazione (vedi
    notify_after_commit).
    """

    # ------------------------------------------------------------
    # Risoluzione destinatari
    # ------------------------------------------------------------

    async def resolve_client_user(self, db: AsyncSession, client_id: uuid.UUID) -> Optional[uuid.UUID]:
        """Account di accesso del cliente, se esiste."""
        result = await db.execute(select(Client.auth_user_id).where(Client.id == client_id))
        return result.scalar_one_or_none()

    async def resolve_staff_user(self, db: AsyncSession, staff_id: uuid.UUID) -> Optional[uuid.UUID]:
        """Account di accesso dell'operatore, se esiste."""
        result = await db.execute(select(Staff.auth_user_id).where(Staff.id == staff_id))
        return result.scalar_one_or_none()

    async def resolve_branch_admins(self, db: AsyncSession, branch_id: uuid.UUID) -> List[uuid.UUID]:
        """
        Amministratori di una filiale.

        Comprende gli admin assegnati alla filiale e tutti i super admin.
        """
        branch_admins = await db.execute(
            select(AdminBranch.admin_id).where(AdminBranch.branch_id == branch_id)
        )
        super_admins = await db.execute(
            select(User.id).where(
                User.role == UserRole.SUPER_ADMIN.value,
                User.is_active.is_(True),
            )
        )
        return _unique([*branch_admins.scalars().all(), *super_admins.scalars().all()])

    async def resolve_branch_staff(self, db: AsyncSession, branch_id: uuid.UUID) -> List[uuid.UUID]:
        """Account di tutti gli operatori attivi della filiale."""
        result = await db.execute(
            select(Staff.auth_user_id).where(
                Staff.branch_id == branch_id,
                Staff.is_active.is_(True),
                Staff.auth_user_id.is_not(None),
            )
        )
        return _unique(result.scalars().all())

    async def _valid_recipients(
        self,
        db: AsyncSession,
        candidates: Iterable[Optional[uuid.UUID]],
    ) -> List[uuid.UUID]:
        """Scarta i candidati senza un record User corrispondente."""
        wanted = _unique(candidates)
        if not wanted:
            return []
        result = await db.execute(select(User.id).where(User.id.in_(wanted)))
        existing = set(result.scalars().all())
        dropped = [user_id for user_id in wanted if user_id not in existing]
        if dropped:
            logger.warning("Destinatari senza account ignorati: %s", dropped)
        return [user_id for user_id in wanted if user_id in existing]

    async def _resolve(
        self,
        db: AsyncSession,
        *lookups: Callable[[], Awaitable[Any]],
    ) -> List[uuid.UUID]:
        """
        Esegue le ricerche dei destinatari in un SAVEPOINT.

        Ogni lookup è una callable senza argomenti (di solito un partial)
        che restituisce un UUID, None o una lista di UUID. Le coroutine
        nascono solo dentro il ciclo: dopo un errore le successive non
        vengono create. Un errore viene loggato e produce una lista vuota.
        """
        recipients: List[Optional[uuid.UUID]] = []
        try:
            async with db.begin_nested():
                for lookup in lookups:
                    found = await lookup()
                    if isinstance(found, list):
                        recipients.extend(found)
                    else:
                        recipients.append(found)
        except SQLAlchemyError as e:
            logger.error("Risoluzione destinatari fallita: %s", e)
            return []
        return _unique(recipients)

    # ------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------

    async def fan_out(
        self,
        db: AsyncSession,
        recipients: Iterable[Optional[uuid.UUID]],
        payload: NotificationPayload,
    ) -> int:
        """
        Inserisce una notifica per ogni destinatario valido.

        Args:
            db: Sessione database
            recipients: UUID utente candidati (None e duplicati ammessi)
            payload: Contenuto della notifica

        Returns:
            int: Numero di notifiche inserite, 0 in caso di errore
        """
        try:
            async with db.begin_nested():
                valid = await self._valid_recipients(db, recipients)
                if not valid:
                    return 0
                await db.execute(
                    insert(Notification),
                    [
                        {
                            "user_id": user_id,
                            "branch_id": payload.branch_id,
                            "organization_id": payload.organization_id,
                            "type": payload.type.value,
                            "category": payload.category.value,
                            "priority": payload.priority.value,
                            "title": payload.title,
                            "message": payload.message,
                            "data": payload.data,
                            "expires_at": payload.expires_at,
                        }
                        for user_id in valid
                    ],
                )
        except SQLAlchemyError as e:
            logger.error("Errore inserimento notifiche '%s': %s", payload.title, e)
            return 0

        logger.info("Notifica '%s' inviata a %d destinatari", payload.title, len(valid))
        return len(valid)

    async def notify_after_commit(
        self,
        db: AsyncSession,
        recipients: Iterable[Optional[uuid.UUID]],
        payload: NotificationPayload,
    ) -> int:
        """
        Fan-out seguito da un commit dedicato.

        Da chiamare dopo il commit dell'operazione principale: un errore
        qui non può più annullarla.
        """
        sent = await self.fan_out(db, recipients, payload)
        if not sent:
            return 0
        try:
            await db.commit()
        except SQLAlchemyError as e:
            logger.error("Commit notifiche '%s' fallito: %s", payload.title, e)
            await db.rollback()
            return 0
        return sent

    # ------------------------------------------------------------
    # Eventi di dominio
    # ------------------------------------------------------------

    async def notify_change_request_decision(
        self,
        db: AsyncSession,
        request: BookingChangeRequest,
        approved: bool,
    ) -> int:
        """Avvisa il cliente dell'esito della sua richiesta di cancellazione/spostamento."""
        request_type = request.request_type
        if approved:
            payload = NotificationPayload(
                type=NotificationType.BOOKING,
                category=NotificationCategory.SUCCESS,
                priority=NotificationPriority.HIGH,
                title="Request Approved",
                message=f"Your {request_type} request has been approved by the admin.",
                branch_id=request.branch_id,
                organization_id=request.organization_id,
                data=_change_request_data(request),
            )
        else:
            reason = request.admin_notes or "No reason provided."
            payload = NotificationPayload(
                type=NotificationType.BOOKING,
                category=NotificationCategory.WARNING,
                priority=NotificationPriority.HIGH,
                title="Request Rejected",
                message=f"Your {request_type} request has been rejected. {reason}",
                branch_id=request.branch_id,
                organization_id=request.organization_id,
                data=_change_request_data(request),
            )
        recipients = await self._resolve(db, partial(self.resolve_client_user, db, request.client_id))
        return await self.notify_after_commit(db, recipients, payload)

    async def notify_unavailability_submitted(
        self,
        db: AsyncSession,
        request: BookingUnavailabilityRequest,
        staff: Staff,
        booking: Booking,
    ) -> int:
        admins = await self._resolve(db, partial(self.resolve_branch_admins, db, request.branch_id))
        payload = NotificationPayload(
            type=NotificationType.BOOKING,
            category=NotificationCategory.WARNING,
            priority=NotificationPriority.HIGH,
            title="Carer Unavailability Reported",
            message=(
                f"{staff.full_name} cannot attend the booking on "
                f"{booking.start_time:%Y-%m-%d %H:%M}: {request.reason}"
            ),
            branch_id=request.branch_id,
            data={
                "booking_id": str(request.booking_id),
                "request_id": str(request.id),
                "staff_id": str(request.staff_id),
            },
        )
        return await self.notify_after_commit(db, admins, payload)

    async def notify_unavailability_reviewed(
        self,
        db: AsyncSession,
        request: BookingUnavailabilityRequest,
    ) -> int:
        approved = request.status != "rejected"
        payload = NotificationPayload(
            type=NotificationType.BOOKING,
            category=NotificationCategory.SUCCESS if approved else NotificationCategory.WARNING,
            priority=NotificationPriority.MEDIUM,
            title="Unavailability Approved" if approved else "Unavailability Rejected",
            message=(
                "Your unavailability has been approved. The booking will be reassigned."
                if approved
                else f"Your unavailability has been rejected. {request.admin_notes or ''}".strip()
            ),
            branch_id=request.branch_id,
            data={"booking_id": str(request.booking_id), "request_id": str(request.id)},
        )
        recipients = await self._resolve(db, partial(self.resolve_staff_user, db, request.staff_id))
        return await self.notify_after_commit(db, recipients, payload)

    async def notify_booking_reassigned(
        self,
        db: AsyncSession,
        booking: Booking,
        new_staff: Staff,
        request_id: Optional[uuid.UUID] = None,
    ) -> int:
        payload = NotificationPayload(
            type=NotificationType.BOOKING,
            category=NotificationCategory.INFO,
            priority=NotificationPriority.HIGH,
            title="New Booking Assigned",
            message=f"You have been assigned a booking on {booking.start_time:%Y-%m-%d %H:%M}.",
            branch_id=booking.branch_id,
            data={
                "booking_id": str(booking.id),
                "request_id": str(request_id) if request_id else None,
            },
        )
        return await self.notify_after_commit(db, [new_staff.auth_user_id], payload)

    async def notify_agreement_signed(
        self,
        db: AsyncSession,
        branch_id: uuid.UUID,
        agreement_id: uuid.UUID,
        agreement_title: str,
        signer_name: str,
    ) -> int:
        admins = await self._resolve(db, partial(self.resolve_branch_admins, db, branch_id))
        payload = NotificationPayload(
            type=NotificationType.AGREEMENT,
            category=NotificationCategory.SUCCESS,
            priority=NotificationPriority.MEDIUM,
            title="Agreement Signed",
            message=f"{signer_name} has signed the agreement '{agreement_title}'.",
            branch_id=branch_id,
            data={"agreement_id": str(agreement_id)},
        )
        return await self.notify_after_commit(db, admins, payload)

    async def notify_form_assigned(
        self,
        db: AsyncSession,
        branch_id: uuid.UUID,
        form_id: uuid.UUID,
        form_title: str,
        staff_ids: Sequence[uuid.UUID] = (),
        client_ids: Sequence[uuid.UUID] = (),
        all_branch_staff: bool = False,
    ) -> int:
        """
        Avvisa operatori e clienti a cui è stato assegnato un modulo.

        Con all_branch_staff il modulo va a tutti gli operatori attivi
        della filiale, oltre a quelli indicati.
        """
        lookups = [partial(self.resolve_staff_user, db, staff_id) for staff_id in staff_ids]
        lookups += [partial(self.resolve_client_user, db, client_id) for client_id in client_ids]
        if all_branch_staff:
            lookups.append(partial(self.resolve_branch_staff, db, branch_id))
        recipients = await self._resolve(db, *lookups)
        payload = NotificationPayload(
            type=NotificationType.FORM,
            category=NotificationCategory.INFO,
            priority=NotificationPriority.MEDIUM,
            title="New Form Assigned",
            message=f"The form '{form_title}' has been assigned to you.",
            branch_id=branch_id,
            data={"form_id": str(form_id)},
        )
        return await self.notify_after_commit(db, recipients, payload)

    async def notify_invoice_created(
        self,
        db: AsyncSession,
        invoice: Invoice,
        client_name: str,
    ) -> int:
        admins = await self._resolve(db, partial(self.resolve_branch_admins, db, invoice.branch_id))
        amount = invoice.total if invoice.total is not None else invoice.amount or 0
        payload = NotificationPayload(
            type=NotificationType.INVOICE,
            category=NotificationCategory.INFO,
            priority=NotificationPriority.LOW,
            title="New Invoice Created",
            message=(
                f"Invoice #{invoice.invoice_number} created for {client_name} "
                f"({settings.currency_symbol}{amount:.2f})"
            ),
            branch_id=invoice.branch_id,
            organization_id=invoice.organization_id,
            data={"invoice_id": str(invoice.id), "notification_type": "invoice_created"},
        )
        return await self.notify_after_commit(db, admins, payload)

    # ------------------------------------------------------------
    # Lettura
    # ------------------------------------------------------------

    async def list_for_user(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        unread_only: bool = False,
        limit: int = 50,
    ) -> List[Notification]:
        """Notifiche non scadute dell'utente, dalla più recente."""
        now = utcnow()
        stmt = (
            select(Notification)
            .where(
                Notification.user_id == user_id,
                or_(Notification.expires_at.is_(None), Notification.expires_at > now),
            )
            .order_by(Notification.created_at.desc())
            .limit(limit)
        )
        if unread_only:
            stmt = stmt.where(Notification.read_at.is_(None))
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def mark_read(
        self,
        db: AsyncSession,
        notification_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> Notification:
        """
        Marca una notifica come letta.

        Raises:
            NotFoundError: notifica inesistente o di un altro utente
        """
        result = await db.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            )
        )
        notification = result.scalar_one_or_none()
        if not notification:
            raise NotFoundError(f"Notification {notification_id} not found")

        if notification.read_at is None:
            notification.read_at = utcnow()
            await db.commit()
        return notification

    async def mark_all_read(self, db: AsyncSession, user_id: uuid.UUID) -> int:
        result = await db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.read_at.is_(None))
            .values(read_at=utcnow())
        )
        await db.commit()
        return result.rowcount or 0

    # ------------------------------------------------------------
    # Controllo periodico
    # ------------------------------------------------------------

    async def generate_overdue_booking_alerts(
        self,
        db: AsyncSession,
        now: Optional[datetime] = None,
    ) -> OverdueAlertResult:
        """
        Segnala le visite iniziate in ritardo o mancate.

        - late start: visita ancora `assigned` oltre il periodo di tolleranza
          dall'inizio previsto
        - missed: visita ancora `assigned` dopo la fine prevista

        Ogni visita viene segnalata una sola volta per tipo: i flag
        is_late_start/is_missed fanno da guardia.
        """
        now = now or utcnow()
        grace = timedelta(minutes=settings.late_start_grace_minutes)

        missed_result = await db.execute(
            select(Booking).where(
                Booking.status == BookingStatus.ASSIGNED.value,
                Booking.end_time < now,
                Booking.is_missed.is_(False),
            )
        )
        missed = list(missed_result.scalars().all())

        late_result = await db.execute(
            select(Booking).where(
                Booking.status == BookingStatus.ASSIGNED.value,
                Booking.start_time <= now - grace,
                Booking.end_time >= now,
                Booking.is_late_start.is_(False),
            )
        )
        late = list(late_result.scalars().all())

        for booking in missed:
            booking.is_missed = True
        for booking in late:
            booking.is_late_start = True
        await db.commit()

        sent = 0
        for booking in late:
            sent += await self._notify_booking_alert(db, booking, missed=False)
        for booking in missed:
            sent += await self._notify_booking_alert(db, booking, missed=True)

        if late or missed:
            logger.info(
                "Controllo visite: %d in ritardo, %d mancate, %d notifiche",
                len(late), len(missed), sent,
            )
        return OverdueAlertResult(
            late_start_count=len(late),
            missed_count=len(missed),
            notifications_sent=sent,
        )

    async def _notify_booking_alert(self, db: AsyncSession, booking: Booking, missed: bool) -> int:
        admins = await self._resolve(db, partial(self.resolve_branch_admins, db, booking.branch_id))
        if missed:
            payload = NotificationPayload(
                type=NotificationType.BOOKING,
                category=NotificationCategory.ERROR,
                priority=NotificationPriority.URGENT,
                title="Missed Booking",
                message=f"The booking scheduled for {booking.start_time:%Y-%m-%d %H:%M} was not started.",
                branch_id=booking.branch_id,
                data={"booking_id": str(booking.id), "notification_type": "booking_missed"},
            )
        else:
            payload = NotificationPayload(
                type=NotificationType.BOOKING,
                category=NotificationCategory.WARNING,
                priority=NotificationPriority.HIGH,
                title="Late Start",
                message=f"The booking scheduled for {booking.start_time:%Y-%m-%d %H:%M} has not started yet.",
                branch_id=booking.branch_id,
                data={"booking_id": str(booking.id), "notification_type": "booking_late_start"},
            )
        return await self.notify_after_commit(db, admins, payload)


async def run_notification_poller(
    session_factory: async_sessionmaker,
    interval_minutes: int = 30,
) -> None:
    """
    Esegue il controllo delle visite ogni `interval_minutes`.

    Avviato come task dal lifespan dell'applicazione; termina solo
    con la cancellazione del task. Un giro fallito viene loggato e
    il ciclo prosegue.
    """
    service = NotificationService()
    logger.info("Controllo periodico visite avviato (ogni %d minuti)", interval_minutes)
    while True:
        # CancelledError non deriva da Exception e interrompe il ciclo
        try:
            async with session_factory() as db:
                await service.generate_overdue_booking_alerts(db)
        except Exception:
            logger.exception("Controllo periodico visite fallito")
        await asyncio.sleep(interval_minutes * 60)


def _unique(values: Iterable[Optional[uuid.UUID]]) -> List[uuid.UUID]:
    """Rimuove None e duplicati mantenendo l'ordine."""
    seen: dict[uuid.UUID, None] = {}
    for value in values:
        if value is not None:
            seen.setdefault(value, None)
    return list(seen)


def _change_request_data(request: BookingChangeRequest) -> dict:
    return {
        "booking_id": str(request.booking_id),
        "request_id": str(request.id),
        "admin_notes": request.admin_notes,
    }


notification_service = NotificationService()
