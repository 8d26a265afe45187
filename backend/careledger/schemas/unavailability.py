"""
Schemas Pydantic per le indisponibilità degli operatori
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from careledger.schemas.booking_request import BookingRead


class ReviewDecision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class UnavailabilitySubmit(BaseModel):
    """Dichiarazione di indisponibilità dell'operatore per una visita."""

    booking_id: uuid.UUID
    reason: str = Field(..., min_length=1, max_length=100)
    notes: Optional[str] = Field(None, max_length=2000)


class UnavailabilityReview(BaseModel):
    decision: ReviewDecision
    admin_notes: Optional[str] = Field(None, max_length=2000)


class ReassignRequest(BaseModel):
    new_staff_id: uuid.UUID = Field(..., description="Operatore sostituto")


class UnavailabilityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    booking_id: uuid.UUID
    staff_id: uuid.UUID
    branch_id: uuid.UUID
    reason: str
    notes: Optional[str] = None
    status: str
    admin_notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    reassigned_to_staff_id: Optional[uuid.UUID] = None
    reassigned_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class UnavailabilityReviewResult(BaseModel):
    """
    Esito della revisione.

    requires_reassignment è True solo in caso di approvazione: il
    chiamante deve poi avviare la riassegnazione della visita.
    """

    request: UnavailabilityRead
    requires_reassignment: bool


class ReassignResult(BaseModel):
    request: UnavailabilityRead
    booking: BookingRead
    notifications_sent: int = 0


__all__ = [
    "ReviewDecision",
    "UnavailabilitySubmit",
    "UnavailabilityReview",
    "ReassignRequest",
    "UnavailabilityRead",
    "UnavailabilityReviewResult",
    "ReassignResult",
]
