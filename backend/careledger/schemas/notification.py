"""
Schemas Pydantic per le notifiche
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from careledger.models.notification import (
    NotificationCategory,
    NotificationPriority,
    NotificationType,
)


class NotificationPayload(BaseModel):
    """
    Contenuto di una notifica da distribuire a più destinatari.

    Attributes:
        data: Riferimenti JSON all'entità che ha generato l'evento
    """

    type: NotificationType
    category: NotificationCategory = NotificationCategory.INFO
    priority: NotificationPriority = NotificationPriority.MEDIUM
    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1)
    data: Dict[str, Any] = Field(default_factory=dict)
    branch_id: Optional[uuid.UUID] = None
    organization_id: Optional[uuid.UUID] = None
    expires_at: Optional[datetime] = None


class NotificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    branch_id: Optional[uuid.UUID] = None
    type: str
    category: str
    priority: str
    title: str
    message: str
    data: Optional[Dict[str, Any]] = None
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class MarkAllReadResult(BaseModel):
    updated: int


class AgreementSignedEvent(BaseModel):
    """Firma di un contratto di servizio: avvisa gli admin della filiale."""

    branch_id: uuid.UUID
    agreement_id: uuid.UUID
    agreement_title: str = Field(..., min_length=1, max_length=255)
    signer_name: str = Field(..., min_length=1, max_length=255)


class FormAssignedEvent(BaseModel):
    """
    Assegnazione di un modulo.

    Attributes:
        all_branch_staff: Include tutti gli operatori attivi della filiale
    """

    branch_id: uuid.UUID
    form_id: uuid.UUID
    form_title: str = Field(..., min_length=1, max_length=255)
    staff_ids: List[uuid.UUID] = Field(default_factory=list)
    client_ids: List[uuid.UUID] = Field(default_factory=list)
    all_branch_staff: bool = False

    @model_validator(mode="after")
    def check_audience(self) -> "FormAssignedEvent":
        if not (self.staff_ids or self.client_ids or self.all_branch_staff):
            raise ValueError("At least one recipient group is required")
        return self


class EventDispatchResult(BaseModel):
    notifications_sent: int


class OverdueAlertResult(BaseModel):
    """Esito di un giro del controllo periodico sulle visite."""

    late_start_count: int
    missed_count: int
    notifications_sent: int


__all__ = [
    "NotificationPayload",
    "NotificationRead",
    "MarkAllReadResult",
    "AgreementSignedEvent",
    "FormAssignedEvent",
    "EventDispatchResult",
    "OverdueAlertResult",
]
