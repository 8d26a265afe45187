"""
Modello SQLAlchemy per le notifiche
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)

Le notifiche nascono solo come effetto collaterale di un'altra
operazione; l'unica modifica ammessa è la marcatura come lette.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from careledger.models import Base
from careledger.models.mixins import TimestampMixin, UUIDMixin


class NotificationType(str, Enum):
    BOOKING = "booking"
    DOCUMENT = "document"
    INVOICE = "invoice"
    STAFF = "staff"
    SYSTEM = "system"
    FORM = "form"
    AGREEMENT = "agreement"


class NotificationCategory(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class Notification(Base, UUIDMixin, TimestampMixin):
    """
    Messaggio indirizzato a un utente.

    Attributes:
        user_id: Account destinatario
        type / category / priority: Classificazione per la UI
        data: Payload JSON con i riferimenti all'entità che l'ha generata
        read_at: NULL finché non letta
    """

    __tablename__ = "notifications"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    branch_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("branches.id", ondelete="CASCADE"),
        nullable=True,
    )
    organization_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
    )
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    category: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=NotificationCategory.INFO.value,
    )
    priority: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=NotificationPriority.MEDIUM.value,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "read_at"),
    )
