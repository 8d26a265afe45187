"""
Schemas Pydantic per la Fatturazione
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)

Contiene:
- Enums: InvoiceStatus
- Schemas per le righe del ledger (InvoiceLineItem)
- Schemas per le spese allegate (InvoiceExpenseEntry)
- Schemas per Invoice e risultati delle operazioni sul ledger
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# -------------------------------------------------------------------
# Enum
# -------------------------------------------------------------------

class InvoiceStatus(str, Enum):
    """Stati amministrativi della fattura."""
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    CANCELLED = "cancelled"


# -------------------------------------------------------------------
# Schemas per InvoiceLineItem
# -------------------------------------------------------------------

class LineItemUpdate(BaseModel):
    """
    Modifica di una riga del ledger.

    Tutti i campi sono opzionali; `line_total` viene sempre ricalcolato.
    """

    description: Optional[str] = Field(None, min_length=1, max_length=500)
    quantity: Optional[Decimal] = Field(None, ge=0, description="Quantità")
    unit_price: Optional[Decimal] = Field(None, ge=0, description="Prezzo unitario")
    discount_amount: Optional[Decimal] = Field(None, ge=0, description="Sconto sulla riga")


class LineItemRead(BaseModel):
    """Schema per la lettura di una riga del ledger."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    invoice_id: uuid.UUID
    booking_id: Optional[uuid.UUID] = None
    description: str
    quantity: Decimal
    unit_price: Decimal
    discount_amount: Decimal
    line_total: Decimal


# -------------------------------------------------------------------
# Schemas per InvoiceExpenseEntry
# -------------------------------------------------------------------

class ExpenseEntryCreate(BaseModel):
    """
    Spesa da allegare alla fattura.

    Attributes:
        category: Categoria della spesa (es. travel, mileage)
        amount: Importo fatturato al cliente (può essere zero)
        pay_staff_amount: Quota da girare all'operatore
        admin_cost_percentage: Percentuale di costo amministrativo
    """

    category: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    amount: Decimal = Field(..., ge=0, description="Importo della spesa")
    pay_staff_amount: Optional[Decimal] = Field(None, ge=0)
    admin_cost_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    staff_id: Optional[uuid.UUID] = None
    source_expense_id: Optional[uuid.UUID] = Field(
        None,
        description="Spesa di filiale da cui è copiata la voce",
    )


class AttachExpenseEntries(BaseModel):
    """Richiesta di allegare una o più spese a una fattura."""

    organization_id: uuid.UUID = Field(..., description="Organizzazione della fattura")
    entries: List[ExpenseEntryCreate] = Field(..., min_length=1)
    source_expense_ids: Optional[List[uuid.UUID]] = Field(
        None,
        description="Spese di filiale da marcare come fatturate",
    )


class ExpenseEntryRead(BaseModel):
    """Schema per la lettura di una spesa allegata."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    invoice_id: uuid.UUID
    organization_id: uuid.UUID
    staff_id: Optional[uuid.UUID] = None
    source_expense_id: Optional[uuid.UUID] = None
    category: str
    description: Optional[str] = None
    amount: Decimal
    pay_staff_amount: Optional[Decimal] = None
    admin_cost_percentage: Optional[Decimal] = None


class ExpenseTotals(BaseModel):
    """Totali derivati delle spese allegate."""

    total_amount: Decimal
    total_pay_staff: Decimal
    total_admin_cost: Decimal


# -------------------------------------------------------------------
# Schemas per Invoice
# -------------------------------------------------------------------

class InvoiceCreate(BaseModel):
    """
    Creazione di una fattura vuota per un cliente e un periodo.

    Il ledger viene popolato in seguito con generate_ledger o
    allegando spese ed extra time.
    """

    organization_id: uuid.UUID
    branch_id: uuid.UUID
    client_id: uuid.UUID
    start_date: date
    end_date: date
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def validate_period(self) -> "InvoiceCreate":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        if self.due_date and self.invoice_date and self.due_date < self.invoice_date:
            raise ValueError("due_date must not be before invoice_date")
        return self


class InvoiceRead(BaseModel):
    """Fattura con il contenuto completo del ledger."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    organization_id: uuid.UUID
    branch_id: uuid.UUID
    client_id: uuid.UUID
    invoice_number: str
    invoice_date: date
    due_date: date
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    total: Optional[Decimal] = None
    amount: Optional[Decimal] = None
    status: InvoiceStatus
    is_locked: bool
    locked_at: Optional[datetime] = None
    notes: Optional[str] = None
    line_items: List[LineItemRead] = Field(default_factory=list)
    expense_entries: List[ExpenseEntryRead] = Field(default_factory=list)


class LedgerLockRequest(BaseModel):
    """Blocco o sblocco del ledger."""

    is_locked: bool = Field(..., description="True per bloccare, False per sbloccare")


class InvoiceTotal(BaseModel):
    """Totale corrente della fattura dopo un'operazione sul ledger."""

    invoice_id: uuid.UUID
    total: Decimal


class ExpenseAttachResult(BaseModel):
    """Esito di attach_expense_entries."""

    invoice_id: uuid.UUID
    entries: List[ExpenseEntryRead]
    total: Decimal
    flagged_expenses: int = Field(0, description="Spese di filiale marcate come fatturate")


class ExpenseDetachResult(BaseModel):
    """Esito di detach_expense_entry."""

    invoice_id: uuid.UUID
    entry_id: uuid.UUID
    removed_amount: Decimal
    total: Decimal


class LedgerGenerationResult(BaseModel):
    """Esito della generazione del ledger dalla procedura memorizzata."""

    invoice_id: uuid.UUID
    line_item_count: int
    total: Decimal


class InvoiceSendResult(BaseModel):
    """Esito dell'invio della fattura al cliente via email."""

    invoice_id: uuid.UUID
    sent: bool
    status: InvoiceStatus
    status_code: Optional[int] = None
    error: Optional[str] = None


__all__ = [
    "InvoiceStatus",
    "LineItemUpdate",
    "LineItemRead",
    "ExpenseEntryCreate",
    "AttachExpenseEntries",
    "ExpenseEntryRead",
    "ExpenseTotals",
    "InvoiceCreate",
    "InvoiceRead",
    "LedgerLockRequest",
    "InvoiceTotal",
    "ExpenseAttachResult",
    "ExpenseDetachResult",
    "LedgerGenerationResult",
    "InvoiceSendResult",
]
