"""
Router FastAPI per il Ledger delle Fatture
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)

Definisce gli endpoint API per fatture, righe del ledger,
spese allegate e riepilogo degli straordinari.
Tutte le operazioni richiedono un ruolo amministrativo.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from careledger.core.database import get_db
from careledger.core.deps import AdminUser
from careledger.schemas.extra_time import ExtraTimeSummary
from careledger.schemas.invoice import (
    AttachExpenseEntries,
    ExpenseAttachResult,
    ExpenseDetachResult,
    ExpenseTotals,
    InvoiceCreate,
    InvoiceRead,
    InvoiceSendResult,
    InvoiceTotal,
    LedgerGenerationResult,
    LedgerLockRequest,
    LineItemRead,
    LineItemUpdate,
)
from careledger.services.calculators import summarize_expense_entries
from careledger.services.extra_time_service import extra_time_service
from careledger.services.ledger_service import ledger_service

# Logger per questo modulo
logger = logging.getLogger(__name__)

# Router con prefix e tag
router = APIRouter(
    prefix="/invoices",
    tags=["Invoices"],
)

InvoiceId = Path(..., description="UUID della fattura")


# -------------------------------------------------------------------
# Endpoints per Fatture
# -------------------------------------------------------------------

@router.post(
    "/",
    name="invoice_create",
    summary="Create invoice",
    description="Creates an empty invoice for a client and a date range.",
    response_model=InvoiceRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_invoice(
    data: InvoiceCreate,
    admin: AdminUser,
    db: AsyncSession = Depends(get_db),
) -> InvoiceRead:
    return await ledger_service.create_invoice(db, data)


@router.get(
    "/{invoice_id}",
    name="invoice_detail",
    summary="Invoice detail",
    description="Returns the invoice with its line items and expense entries.",
    response_model=InvoiceRead,
)
async def get_invoice(
    admin: AdminUser,
    invoice_id: uuid.UUID = InvoiceId,
    db: AsyncSession = Depends(get_db),
) -> InvoiceRead:
    invoice = await ledger_service.get_invoice(db, invoice_id)
    return InvoiceRead.model_validate(invoice)


@router.post(
    "/{invoice_id}/generate",
    name="invoice_generate_ledger",
    summary="Generate ledger",
    description="Runs the ledger procedure for the invoice period and recalculates the total.",
    response_model=LedgerGenerationResult,
)
async def generate_ledger(
    admin: AdminUser,
    invoice_id: uuid.UUID = InvoiceId,
    db: AsyncSession = Depends(get_db),
) -> LedgerGenerationResult:
    return await ledger_service.generate_ledger(db, invoice_id)


@router.put(
    "/{invoice_id}/lock",
    name="invoice_lock",
    summary="Lock or unlock ledger",
    response_model=InvoiceRead,
)
async def lock_ledger(
    data: LedgerLockRequest,
    admin: AdminUser,
    invoice_id: uuid.UUID = InvoiceId,
    db: AsyncSession = Depends(get_db),
) -> InvoiceRead:
    invoice = await ledger_service.lock_ledger(db, invoice_id, data.is_locked, admin)
    return InvoiceRead.model_validate(invoice)


@router.post(
    "/{invoice_id}/recalculate",
    name="invoice_recalculate",
    summary="Recalculate total",
    description="Recomputes the total from line items, expense entries and invoiced extra time.",
    response_model=InvoiceTotal,
)
async def recalculate_total(
    admin: AdminUser,
    invoice_id: uuid.UUID = InvoiceId,
    db: AsyncSession = Depends(get_db),
) -> InvoiceTotal:
    total = await ledger_service.recalculate_total(db, invoice_id)
    return InvoiceTotal(invoice_id=invoice_id, total=total)


@router.post(
    "/{invoice_id}/send",
    name="invoice_send",
    summary="Email invoice to client",
    response_model=InvoiceSendResult,
)
async def send_invoice(
    admin: AdminUser,
    invoice_id: uuid.UUID = InvoiceId,
    db: AsyncSession = Depends(get_db),
) -> InvoiceSendResult:
    return await ledger_service.send_invoice(db, invoice_id)


# -------------------------------------------------------------------
# Endpoints per Spese allegate
# -------------------------------------------------------------------

@router.post(
    "/{invoice_id}/expenses",
    name="invoice_attach_expenses",
    summary="Attach expenses",
    description=(
        "Attaches one or more expense entries, flags the source branch expenses "
        "as invoiced and adds the amounts to the invoice total."
    ),
    response_model=ExpenseAttachResult,
    status_code=status.HTTP_201_CREATED,
)
async def attach_expenses(
    data: AttachExpenseEntries,
    admin: AdminUser,
    invoice_id: uuid.UUID = InvoiceId,
    db: AsyncSession = Depends(get_db),
) -> ExpenseAttachResult:
    return await ledger_service.attach_expense_entries(db, invoice_id, data)


@router.delete(
    "/{invoice_id}/expenses/{entry_id}",
    name="invoice_detach_expense",
    summary="Remove expense",
    response_model=ExpenseDetachResult,
)
async def detach_expense(
    admin: AdminUser,
    invoice_id: uuid.UUID = InvoiceId,
    entry_id: uuid.UUID = Path(..., description="UUID della spesa allegata"),
    db: AsyncSession = Depends(get_db),
) -> ExpenseDetachResult:
    return await ledger_service.detach_expense_entry(db, entry_id, invoice_id)


@router.get(
    "/{invoice_id}/expenses/totals",
    name="invoice_expense_totals",
    summary="Expense totals",
    response_model=ExpenseTotals,
)
async def expense_totals(
    admin: AdminUser,
    invoice_id: uuid.UUID = InvoiceId,
    db: AsyncSession = Depends(get_db),
) -> ExpenseTotals:
    invoice = await ledger_service.get_invoice(db, invoice_id)
    totals = summarize_expense_entries(invoice.expense_entries)
    return ExpenseTotals(
        total_amount=totals.total_amount,
        total_pay_staff=totals.total_pay_staff,
        total_admin_cost=totals.total_admin_cost,
    )


# -------------------------------------------------------------------
# Endpoints per Righe ed Extra time
# -------------------------------------------------------------------

@router.patch(
    "/line-items/{line_item_id}",
    name="invoice_update_line_item",
    summary="Update line item",
    description="Updates a ledger line, recalculates its total and shifts the invoice total.",
    response_model=LineItemRead,
)
async def update_line_item(
    data: LineItemUpdate,
    admin: AdminUser,
    line_item_id: uuid.UUID = Path(..., description="UUID della riga"),
    db: AsyncSession = Depends(get_db),
) -> LineItemRead:
    line_item = await ledger_service.update_line_item(db, line_item_id, data)
    return LineItemRead.model_validate(line_item)


@router.get(
    "/{invoice_id}/extra-time/summary",
    name="invoice_extra_time_summary",
    summary="Extra time summary",
    response_model=ExtraTimeSummary,
)
async def extra_time_summary(
    admin: AdminUser,
    invoice_id: uuid.UUID = InvoiceId,
    db: AsyncSession = Depends(get_db),
) -> ExtraTimeSummary:
    return await extra_time_service.summary_for_invoice(db, invoice_id)


__all__ = ["router"]
