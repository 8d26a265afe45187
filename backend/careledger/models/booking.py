"""
Modelli SQLAlchemy per visite e richieste di modifica
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)

Contiene:
- Booking: Visita programmata
- BookingChangeRequest: Richiesta di cancellazione o spostamento
- BookingUnavailabilityRequest: Indisponibilità dichiarata dall'operatore
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from careledger.models import Base
from careledger.models.mixins import TimestampMixin, UUIDMixin


class BookingStatus(str, Enum):
    """Stati di una visita. Le visite non vengono mai cancellate fisicamente."""
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    CANCELLED = "cancelled"


class ChangeRequestType(str, Enum):
    CANCELLATION = "cancellation"
    RESCHEDULE = "reschedule"


class RequestStatus(str, Enum):
    """Stato di una richiesta. `reassigned` vale solo per le indisponibilità."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    REASSIGNED = "reassigned"


class Booking(Base, UUIDMixin, TimestampMixin):
    """
    Visita programmata presso un cliente.

    Attributes:
        start_time / end_time: Finestra della visita (UTC)
        staff_id: Operatore assegnato (nullable finché non assegnato)
        status: assigned, in_progress, done, cancelled
        is_late_start / is_missed: Flag impostati dal controllo periodico
        cancellation_request_status / reschedule_request_status:
            esito dell'ultima richiesta di quel tipo (pending/approved/rejected)
    """

    __tablename__ = "bookings"

    branch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("branches.id", ondelete="RESTRICT"),
        nullable=False,
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("clients.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    staff_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("staff.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=BookingStatus.ASSIGNED.value,
    )
    is_late_start: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_missed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cancellation_request_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    reschedule_request_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    __table_args__ = (
        Index("ix_bookings_branch_start", "branch_id", "start_time"),
        CheckConstraint("end_time >= start_time", name="ck_bookings_window"),
    )

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, start={self.start_time}, status={self.status})>"


class BookingChangeRequest(Base, UUIDMixin, TimestampMixin):
    """
    Richiesta del cliente di cancellare o spostare una visita.

    Transizioni ammesse: pending → approved, pending → rejected.
    """

    __tablename__ = "booking_change_requests"

    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False,
    )
    branch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("branches.id", ondelete="CASCADE"),
        nullable=False,
    )
    organization_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
    )
    requested_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    request_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=RequestStatus.PENDING.value,
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    new_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    new_time: Mapped[Optional[str]] = mapped_column(String(5), nullable=True, doc="HH:MM")
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    booking: Mapped["Booking"] = relationship("Booking")

    __table_args__ = (
        Index("ix_booking_change_requests_branch_status", "branch_id", "status"),
        CheckConstraint(
            "request_type IN ('cancellation', 'reschedule')",
            name="ck_booking_change_requests_type",
        ),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_booking_change_requests_status",
        ),
    )


class BookingUnavailabilityRequest(Base, UUIDMixin, TimestampMixin):
    """
    Indisponibilità dichiarata da un operatore per una visita assegnata.

    L'approvazione non sceglie il sostituto: la riassegnazione è un
    passo separato che porta lo stato a `reassigned`.
    """

    __tablename__ = "booking_unavailability_requests"

    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
    )
    staff_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("staff.id", ondelete="CASCADE"),
        nullable=False,
    )
    branch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("branches.id", ondelete="CASCADE"),
        nullable=False,
    )
    reason: Mapped[str] = mapped_column(String(100), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=RequestStatus.PENDING.value,
    )
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    reassigned_to_staff_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("staff.id", ondelete="SET NULL"),
        nullable=True,
    )
    reassigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    booking: Mapped["Booking"] = relationship("Booking")

    __table_args__ = (
        Index("ix_booking_unavailability_branch_status", "branch_id", "status"),
    )
