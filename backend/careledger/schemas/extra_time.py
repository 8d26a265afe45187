"""
Schemas Pydantic per l'extra time degli operatori
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)
"""

import uuid
from datetime import date, time
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ExtraTimeCreate(BaseModel):
    """
    Registrazione di uno straordinario.

    Se gli orari effettivi non sono indicati si assume che la visita
    sia durata quanto previsto (nessun extra time).
    """

    branch_id: uuid.UUID
    staff_id: uuid.UUID
    client_id: Optional[uuid.UUID] = None
    booking_id: Optional[uuid.UUID] = None
    work_date: date
    scheduled_start_time: time
    scheduled_end_time: time
    actual_start_time: Optional[time] = None
    actual_end_time: Optional[time] = None
    hourly_rate: Decimal = Field(..., ge=0, description="Tariffa oraria base")
    extra_time_rate: Optional[Decimal] = Field(
        None,
        ge=0,
        description="Tariffa per lo straordinario; se assente vale hourly_rate",
    )
    reason: Optional[str] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def validate_times(self) -> "ExtraTimeCreate":
        if self.scheduled_end_time <= self.scheduled_start_time:
            raise ValueError("scheduled_end_time must be after scheduled_start_time")
        if (self.actual_start_time is None) != (self.actual_end_time is None):
            raise ValueError("actual_start_time and actual_end_time must be given together")
        if self.actual_start_time and self.actual_end_time <= self.actual_start_time:
            raise ValueError("actual_end_time must be after actual_start_time")
        return self


class ExtraTimeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    branch_id: uuid.UUID
    staff_id: uuid.UUID
    client_id: Optional[uuid.UUID] = None
    booking_id: Optional[uuid.UUID] = None
    work_date: date
    scheduled_start_time: time
    scheduled_end_time: time
    actual_start_time: Optional[time] = None
    actual_end_time: Optional[time] = None
    scheduled_duration_minutes: int
    actual_duration_minutes: Optional[int] = None
    extra_time_minutes: int
    hourly_rate: Decimal
    extra_time_rate: Optional[Decimal] = None
    total_cost: Decimal
    reason: Optional[str] = None
    status: str
    invoiced: bool
    invoice_id: Optional[uuid.UUID] = None


class MarkInvoicedRequest(BaseModel):
    """Lista vuota ammessa: l'operazione non modifica nulla."""

    invoice_id: uuid.UUID
    record_ids: List[uuid.UUID] = Field(default_factory=list)


class MarkInvoicedResult(BaseModel):
    """
    Esito di mark_as_invoiced.

    Attributes:
        affected_count: Record effettivamente attaccati alla fattura
        skipped_ids: Record già fatturati, ignorati senza ri-sommare il costo
        added_cost: Importo aggiunto al totale
    """

    invoice_id: uuid.UUID
    affected_count: int
    skipped_ids: List[uuid.UUID] = Field(default_factory=list)
    added_cost: Decimal
    total: Decimal


class RemoveFromInvoiceResult(BaseModel):
    record_id: uuid.UUID
    invoice_id: uuid.UUID
    removed_cost: Decimal
    total: Decimal


class ExtraTimeSummary(BaseModel):
    """Riepilogo derivato degli straordinari allegati a una fattura."""

    record_count: int
    total_minutes: int
    total_cost: Decimal
    duration_label: str = Field(..., description="Durata leggibile, es. '1h 30m'")


__all__ = [
    "ExtraTimeCreate",
    "ExtraTimeRead",
    "MarkInvoicedRequest",
    "MarkInvoicedResult",
    "RemoveFromInvoiceResult",
    "ExtraTimeSummary",
]
