"""
Schemas Pydantic per visite e richieste di modifica
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)
"""

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from careledger.models.booking import ChangeRequestType, RequestStatus


class BookingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    branch_id: uuid.UUID
    client_id: uuid.UUID
    staff_id: Optional[uuid.UUID] = None
    start_time: datetime
    end_time: datetime
    status: str
    is_late_start: bool
    is_missed: bool
    cancellation_request_status: Optional[str] = None
    reschedule_request_status: Optional[str] = None


class ChangeRequestRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    booking_id: uuid.UUID
    client_id: uuid.UUID
    branch_id: uuid.UUID
    request_type: ChangeRequestType
    status: RequestStatus
    reason: Optional[str] = None
    admin_notes: Optional[str] = None
    new_date: Optional[date] = None
    new_time: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ApproveChangeRequest(BaseModel):
    """
    Approvazione di una richiesta.

    new_date/new_time sono obbligatori solo per gli spostamenti;
    se assenti si usano quelli proposti dal cliente nella richiesta.
    """

    admin_notes: Optional[str] = Field(None, max_length=2000)
    new_date: Optional[date] = None
    new_time: Optional[str] = Field(
        None,
        pattern=r"^([01]\d|2[0-3]):[0-5]\d$",
        description="Nuovo orario HH:MM",
    )


class RejectChangeRequest(BaseModel):
    admin_notes: Optional[str] = Field(None, max_length=2000)


class ChangeRequestDecision(BaseModel):
    """Esito della revisione: richiesta e visita sono sempre coerenti."""

    request: ChangeRequestRead
    booking: BookingRead
    notifications_sent: int = 0


__all__ = [
    "BookingRead",
    "ChangeRequestRead",
    "ApproveChangeRequest",
    "RejectChangeRequest",
    "ChangeRequestDecision",
]
