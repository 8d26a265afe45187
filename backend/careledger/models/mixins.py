"""
Mixin SQLAlchemy per modelli
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)

Mixin riutilizzabili per aggiungere funzionalità comuni ai modelli.
"""

import datetime
import uuid

from sqlalchemy import Boolean, DateTime, Uuid
from sqlalchemy import event
from sqlalchemy.orm import Mapped, mapped_column, Session
from sqlalchemy.sql import func


def utcnow() -> datetime.datetime:
    """Timestamp corrente con timezone UTC."""
    return datetime.datetime.now(datetime.timezone.utc)


class SoftDeleteMixin:
    """
    Mixin per implementare la disattivazione logica.

    Aggiunge il campo is_active che, se impostato a False,
    indica che il record non è più operativo ma resta nello storico.
    """

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        doc="False = disattivato, True = attivo",
    )


class TimestampMixin:
    """
    Mixin per gestione automatica timestamp creazione e aggiornamento.

    Aggiunge i campi:
    - created_at: data/ora di creazione record
    - updated_at: data/ora ultimo aggiornamento (aggiornato dal listener before_flush)
    """

    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        doc="Data/ora di creazione del record",
    )

    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
        doc="Data/ora ultimo aggiornamento del record",
    )


class UUIDMixin:
    """Mixin per ID UUID generato lato applicazione."""

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        doc="UUID primary key",
    )


# ------------------------------------------------------------
# Event Listeners
# ------------------------------------------------------------
@event.listens_for(Session, "before_flush")
def update_timestamp(session: Session, flush_context, instances) -> None:
    """
    Aggiorna automaticamente updated_at degli oggetti nuovi e modificati.

    Args:
        session: Sessione SQLAlchemy
        flush_context: Contesto del flush
        instances: Non usato
    """
    now = utcnow()

    for obj in session.dirty:
        if hasattr(obj, "updated_at") and session.is_modified(obj, include_collections=False):
            obj.updated_at = now

    for obj in session.new:
        if hasattr(obj, "updated_at"):
            obj.updated_at = now
