"""
Service Layer per il Ledger delle Fatture
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)

Definisce la logica di business per il ledger di una fattura:
righe generate dalle visite, spese allegate ed extra time.

Ogni operazione che modifica il totale:
1. blocca la riga della fattura (SELECT ... FOR UPDATE)
2. verifica che il ledger non sia bloccato
3. scrive le righe e il nuovo totale nella stessa transazione
4. esegue un unico commit finale

I passi best-effort (marcatura delle spese di filiale) girano in un
SAVEPOINT: un loro errore viene loggato e non annulla il resto.
"""

import logging
import re
import uuid
from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import func, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from careledger.core.config import settings
from careledger.core.exceptions import (
    BusinessValidationError,
    ConflictError,
    LedgerLockedError,
    NotFoundError,
)
from careledger.models import (
    Client,
    Expense,
    ExtraTimeRecord,
    Invoice,
    InvoiceExpenseEntry,
    InvoiceLineItem,
    User,
)
from careledger.models.mixins import utcnow
from careledger.schemas.invoice import (
    AttachExpenseEntries,
    ExpenseAttachResult,
    ExpenseDetachResult,
    ExpenseEntryRead,
    InvoiceCreate,
    InvoiceRead,
    InvoiceSendResult,
    InvoiceStatus,
    LedgerGenerationResult,
    LineItemUpdate,
)
from careledger.services.calculators import (
    ZERO,
    apply_total_delta,
    calculate_line_total,
    invoice_base_total,
    to_money,
)
from careledger.services.email_dispatch import EmailDispatchClient
from careledger.services.notification_service import notification_service

# Logger per questo modulo
logger = logging.getLogger(__name__)

_PROCEDURE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


class LedgerService:
    """
    Service per la gestione del ledger delle fatture.

    Fornisce metodi asincroni per interagire con il database
    in modo centralizzato, senza dipendenze da FastAPI.

    Implementa:
    - Creazione fattura con numerazione progressiva annuale
    - Generazione del ledger dalla procedura memorizzata
    - Allegato/rimozione spese con aggiornamento del totale
    - Modifica righe con ricalcolo del totale riga
    - Blocco/sblocco del ledger
    - Ricalcolo autoritativo del totale
    """

    # ------------------------------------------------------------
    # Lettura
    # ------------------------------------------------------------

    async def get_invoice(self, db: AsyncSession, invoice_id: uuid.UUID) -> Invoice:
        """
        Recupera una fattura con righe e spese allegate.

        Raises:
            NotFoundError: fattura inesistente
        """
        stmt = (
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .options(
                selectinload(Invoice.line_items),
                selectinload(Invoice.expense_entries),
                selectinload(Invoice.extra_time_records),
            )
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return invoice

    async def lock_invoice_row(
        self,
        db: AsyncSession,
        invoice_id: uuid.UUID,
        require_unlocked: bool = True,
    ) -> Invoice:
        """
        Carica la fattura bloccandone la riga fino al commit.

        Args:
            require_unlocked: Se True solleva LedgerLockedError su ledger bloccato

        Raises:
            NotFoundError: fattura inesistente
            LedgerLockedError: ledger bloccato
        """
        result = await db.execute(
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        if require_unlocked and invoice.is_locked:
            raise LedgerLockedError(extra={"invoice_id": str(invoice_id)})
        return invoice

    # ------------------------------------------------------------
    # Creazione
    # ------------------------------------------------------------

    async def create_invoice(
        self,
        db: AsyncSession,
        data: InvoiceCreate,
        notify: bool = True,
    ) -> InvoiceRead:
        """
        Crea una fattura vuota per un cliente e un periodo.

        Raises:
            NotFoundError: cliente inesistente
            BusinessValidationError: il cliente non appartiene alla filiale
            ConflictError: numero fattura duplicato
        """
        client = await db.get(Client, data.client_id)
        if not client:
            raise NotFoundError(f"Client {data.client_id} not found")
        if client.branch_id != data.branch_id:
            raise BusinessValidationError(
                "The client does not belong to the invoicing branch",
                extra={"client_id": str(client.id), "branch_id": str(data.branch_id)},
            )

        invoice_date = data.invoice_date or date.today()
        due_date = data.due_date or invoice_date + timedelta(days=settings.invoice_payment_terms_days)
        invoice_number = await self._generate_invoice_number(db, invoice_date)

        invoice = Invoice(
            organization_id=data.organization_id,
            branch_id=data.branch_id,
            client_id=data.client_id,
            invoice_number=invoice_number,
            invoice_date=invoice_date,
            due_date=due_date,
            start_date=data.start_date,
            end_date=data.end_date,
            total=ZERO,
            status=InvoiceStatus.DRAFT.value,
            notes=data.notes,
        )
        db.add(invoice)

        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.error("Errore di integrità durante creazione fattura: %s", e)
            raise ConflictError(
                "Invoice number already in use, retry the operation",
                extra={"invoice_number": invoice_number},
            )

        logger.info("Fattura %s creata per il cliente %s", invoice_number, data.client_id)
        invoice = await self.get_invoice(db, invoice.id)
        response = InvoiceRead.model_validate(invoice)

        if notify:
            await notification_service.notify_invoice_created(db, invoice, client.full_name)
        return response

    async def _generate_invoice_number(self, db: AsyncSession, invoice_date: date) -> str:
        """
        Genera numero fattura progressivo annuale.

        Formato: INV-YYYY-NNNN (es. INV-2025-0001)

        Su PostgreSQL acquisisce un advisory lock sull'anno, perché
        SELECT FOR UPDATE non blocca nulla se l'anno non ha ancora fatture.

        Raises:
            ConflictError: Se si raggiunge il limite di 9999 fatture annue
        """
        year = invoice_date.year
        prefix = f"INV-{year}-"

        if db.get_bind().dialect.name == "postgresql":
            await db.execute(text("SELECT pg_advisory_xact_lock(:lock_key)"), {"lock_key": year})

        result = await db.execute(
            select(Invoice.invoice_number)
            .where(Invoice.invoice_number.like(f"{prefix}%"))
            .order_by(Invoice.invoice_number.desc())
            .limit(1)
        )
        last_number = result.scalar_one_or_none()
        next_number = int(last_number.rsplit("-", 1)[1]) + 1 if last_number else 1

        if next_number > 9999:
            raise ConflictError(f"Invoice numbering limit reached for year {year}")
        return f"{prefix}{next_number:04d}"

    # ------------------------------------------------------------
    # Spese allegate
    # ------------------------------------------------------------

    async def attach_expense_entries(
        self,
        db: AsyncSession,
        invoice_id: uuid.UUID,
        data: AttachExpenseEntries,
    ) -> ExpenseAttachResult:
        """
        Allega una o più spese alla fattura.

        Steps:
        1. Blocca la fattura e verifica che il ledger sia modificabile
        2. Inserisce una voce per ogni spesa, con organizzazione e fattura
        3. Marca come fatturate le spese di filiale di origine (best-effort)
        4. Se la somma degli importi è positiva la aggiunge al totale
           (letto con la regola total → amount)
        5. Commit unico

        Le spese a importo zero vengono inserite senza toccare il totale.

        Raises:
            NotFoundError: fattura inesistente
            LedgerLockedError: ledger bloccato
        """
        invoice = await self.lock_invoice_row(db, invoice_id)

        entries = [
            InvoiceExpenseEntry(
                invoice_id=invoice.id,
                organization_id=data.organization_id,
                staff_id=item.staff_id,
                source_expense_id=item.source_expense_id,
                category=item.category,
                description=item.description,
                amount=to_money(item.amount),
                pay_staff_amount=item.pay_staff_amount,
                admin_cost_percentage=item.admin_cost_percentage,
            )
            for item in data.entries
        ]
        db.add_all(entries)
        await db.flush()

        source_ids = _source_expense_ids(data)
        flagged = await self._set_expenses_invoiced(db, source_ids, invoiced=True)

        added = sum((to_money(item.amount) for item in data.entries), ZERO)
        if added > 0:
            invoice.total = apply_total_delta(invoice_base_total(invoice), added)

        await self._commit(db, "allegato spese")
        logger.info(
            "Allegate %d spese alla fattura %s (+%s)",
            len(entries), invoice.invoice_number, added,
        )
        return ExpenseAttachResult(
            invoice_id=invoice.id,
            entries=[ExpenseEntryRead.model_validate(entry) for entry in entries],
            total=invoice_base_total(invoice),
            flagged_expenses=flagged,
        )

    async def detach_expense_entry(
        self,
        db: AsyncSession,
        entry_id: uuid.UUID,
        invoice_id: uuid.UUID,
    ) -> ExpenseDetachResult:
        """
        Rimuove una spesa dalla fattura.

        Legge importo e spesa di origine, elimina la voce, toglie il flag
        di fatturazione dalla spesa di origine (best-effort) e sottrae
        l'importo dal totale senza scendere sotto zero.

        Raises:
            NotFoundError: fattura o voce inesistente
            LedgerLockedError: ledger bloccato
        """
        invoice = await self.lock_invoice_row(db, invoice_id)

        result = await db.execute(
            select(InvoiceExpenseEntry).where(
                InvoiceExpenseEntry.id == entry_id,
                InvoiceExpenseEntry.invoice_id == invoice_id,
            )
        )
        entry = result.scalar_one_or_none()
        if not entry:
            raise NotFoundError(f"Expense entry {entry_id} not found on invoice {invoice_id}")

        amount = to_money(entry.amount)
        source_id = entry.source_expense_id

        await db.delete(entry)
        await db.flush()

        if source_id:
            await self._set_expenses_invoiced(db, [source_id], invoiced=False)

        invoice.total = apply_total_delta(invoice_base_total(invoice), -amount)

        await self._commit(db, "rimozione spesa")
        logger.info("Rimossa spesa %s dalla fattura %s (-%s)", entry_id, invoice.invoice_number, amount)
        return ExpenseDetachResult(
            invoice_id=invoice.id,
            entry_id=entry_id,
            removed_amount=amount,
            total=invoice.total,
        )

    async def _set_expenses_invoiced(
        self,
        db: AsyncSession,
        expense_ids: Sequence[uuid.UUID],
        invoiced: bool,
    ) -> int:
        """
        Aggiorna il flag is_invoiced delle spese di filiale.

        Best-effort: gira in un SAVEPOINT, un errore viene loggato e
        restituisce 0 senza annullare l'operazione principale.
        """
        if not expense_ids:
            return 0
        try:
            async with db.begin_nested():
                result = await db.execute(
                    update(Expense)
                    .where(Expense.id.in_(list(expense_ids)))
                    .values(
                        is_invoiced=invoiced,
                        invoiced_at=utcnow() if invoiced else None,
                    )
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            logger.warning(
                "Aggiornamento flag fatturazione spese %s fallito: %s",
                list(expense_ids), e,
            )
            return 0
        return result.rowcount or 0

    # ------------------------------------------------------------
    # Righe
    # ------------------------------------------------------------

    async def update_line_item(
        self,
        db: AsyncSession,
        line_item_id: uuid.UUID,
        changes: LineItemUpdate,
    ) -> InvoiceLineItem:
        """
        Modifica una riga del ledger.

        Ricalcola line_total = quantità × prezzo − sconto e sposta il
        totale della fattura della differenza (minimo zero).

        Raises:
            NotFoundError: riga inesistente
            LedgerLockedError: ledger bloccato
        """
        line_item = await db.get(InvoiceLineItem, line_item_id)
        if not line_item:
            raise NotFoundError(f"Line item {line_item_id} not found")

        invoice = await self.lock_invoice_row(db, line_item.invoice_id)

        old_total = to_money(line_item.line_total)
        update_data = changes.model_dump(exclude_unset=True, exclude_none=True)
        for field, value in update_data.items():
            setattr(line_item, field, value)

        line_item.line_total = calculate_line_total(
            line_item.quantity,
            line_item.unit_price,
            line_item.discount_amount,
        )
        delta = line_item.line_total - old_total
        if delta:
            invoice.total = apply_total_delta(invoice_base_total(invoice), delta)

        await self._commit(db, "modifica riga")
        return line_item

    # ------------------------------------------------------------
    # Generazione, blocco, ricalcolo
    # ------------------------------------------------------------

    async def generate_ledger(self, db: AsyncSession, invoice_id: uuid.UUID) -> LedgerGenerationResult:
        """
        Genera le righe del ledger dalle visite del periodo.

        La logica è interamente nella procedura memorizzata, invocata per
        nome con (invoice_id, client_id, start_date, end_date). Al termine
        il totale viene ricalcolato dalle tabelle.

        Raises:
            NotFoundError: fattura inesistente
            LedgerLockedError: ledger bloccato
            BusinessValidationError: periodo mancante
        """
        invoice = await self.lock_invoice_row(db, invoice_id)
        if not invoice.start_date or not invoice.end_date:
            raise BusinessValidationError(
                "The invoice needs a start and end date to generate the ledger",
                extra={"invoice_id": str(invoice_id)},
            )

        await self._call_ledger_procedure(db, invoice)
        total = await self._recompute_total(db, invoice)

        count_result = await db.execute(
            select(func.count(InvoiceLineItem.id)).where(InvoiceLineItem.invoice_id == invoice.id)
        )
        line_item_count = count_result.scalar_one()

        await self._commit(db, "generazione ledger")
        logger.info(
            "Ledger della fattura %s generato: %d righe, totale %s",
            invoice.invoice_number, line_item_count, total,
        )
        return LedgerGenerationResult(invoice_id=invoice.id, line_item_count=line_item_count, total=total)

    async def _call_ledger_procedure(self, db: AsyncSession, invoice: Invoice) -> None:
        procedure = settings.ledger_procedure_name
        if not _PROCEDURE_NAME.match(procedure):
            raise BusinessValidationError(f"Invalid ledger procedure name: {procedure}")
        await db.execute(
            text(f"SELECT {procedure}(:invoice_id, :client_id, :start_date, :end_date)"),
            {
                "invoice_id": invoice.id,
                "client_id": invoice.client_id,
                "start_date": invoice.start_date,
                "end_date": invoice.end_date,
            },
        )

    async def lock_ledger(
        self,
        db: AsyncSession,
        invoice_id: uuid.UUID,
        is_locked: bool,
        user: Optional[User] = None,
    ) -> Invoice:
        """Blocca o sblocca il ledger registrando data/ora e autore del blocco."""
        invoice = await self.lock_invoice_row(db, invoice_id, require_unlocked=False)
        invoice.is_locked = is_locked
        invoice.locked_at = utcnow() if is_locked else None
        invoice.locked_by = user.id if (is_locked and user) else None

        await self._commit(db, "blocco ledger")
        logger.info(
            "Ledger della fattura %s %s",
            invoice.invoice_number, "bloccato" if is_locked else "sbloccato",
        )
        return await self.get_invoice(db, invoice_id)

    async def recalculate_total(self, db: AsyncSession, invoice_id: uuid.UUID) -> Decimal:
        """
        Ricalcola il totale sommando righe, spese ed extra time allegati.

        È la fonte autoritativa del totale: corregge eventuali scostamenti
        accumulati dagli aggiornamenti incrementali.
        """
        invoice = await self.lock_invoice_row(db, invoice_id, require_unlocked=False)
        previous = invoice.total
        total = await self._recompute_total(db, invoice)
        await self._commit(db, "ricalcolo totale")
        if previous is not None and to_money(previous) != total:
            logger.warning(
                "Totale della fattura %s corretto da %s a %s",
                invoice.invoice_number, previous, total,
            )
        return total

    async def _recompute_total(self, db: AsyncSession, invoice: Invoice) -> Decimal:
        lines = await db.execute(
            select(func.coalesce(func.sum(InvoiceLineItem.line_total), 0))
            .where(InvoiceLineItem.invoice_id == invoice.id)
        )
        expenses = await db.execute(
            select(func.coalesce(func.sum(InvoiceExpenseEntry.amount), 0))
            .where(InvoiceExpenseEntry.invoice_id == invoice.id)
        )
        extra_time = await db.execute(
            select(func.coalesce(func.sum(ExtraTimeRecord.total_cost), 0))
            .where(
                ExtraTimeRecord.invoice_id == invoice.id,
                ExtraTimeRecord.invoiced.is_(True),
            )
        )
        total = to_money(lines.scalar_one()) + to_money(expenses.scalar_one()) + to_money(extra_time.scalar_one())
        invoice.total = total
        return total

    # ------------------------------------------------------------
    # Invio
    # ------------------------------------------------------------

    async def send_invoice(
        self,
        db: AsyncSession,
        invoice_id: uuid.UUID,
        email_client: Optional[EmailDispatchClient] = None,
    ) -> InvoiceSendResult:
        """
        Invia la fattura al cliente via email.

        Se l'invio riesce una fattura in bozza passa a `sent`.

        Raises:
            NotFoundError: fattura inesistente
            BusinessValidationError: il cliente non ha un indirizzo email
        """
        invoice = await self.get_invoice(db, invoice_id)
        client = await db.get(Client, invoice.client_id)
        if not client or not client.email:
            raise BusinessValidationError(
                "The client has no email address",
                extra={"client_id": str(invoice.client_id)},
            )

        email_client = email_client or EmailDispatchClient()
        dispatch = await email_client.send(
            recipients=[client.email],
            subject=f"Invoice {invoice.invoice_number}",
            template_name="invoice_created.html",
            context={
                "client_name": client.full_name,
                "invoice_number": invoice.invoice_number,
                "start_date": invoice.start_date,
                "end_date": invoice.end_date,
                "due_date": invoice.due_date,
                "total": invoice_base_total(invoice),
            },
        )

        if dispatch.success and invoice.status == InvoiceStatus.DRAFT.value:
            invoice.status = InvoiceStatus.SENT.value
            await self._commit(db, "invio fattura")

        return InvoiceSendResult(
            invoice_id=invoice.id,
            sent=dispatch.success,
            status=invoice.status,
            status_code=dispatch.status_code,
            error=dispatch.error,
        )

    async def _commit(self, db: AsyncSession, operation: str) -> None:
        """Commit unico dell'operazione; in caso di errore annulla tutto e propaga."""
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.error("Errore di integrità durante %s: %s", operation, e)
            raise ConflictError(f"Integrity error during {operation}")
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("Errore database durante %s", operation)
            raise


def _source_expense_ids(data: AttachExpenseEntries) -> List[uuid.UUID]:
    """Spese di filiale da marcare: lista esplicita più quelle indicate sulle voci."""
    ids: dict[uuid.UUID, None] = {}
    for expense_id in data.source_expense_ids or []:
        ids.setdefault(expense_id, None)
    for item in data.entries:
        if item.source_expense_id:
            ids.setdefault(item.source_expense_id, None)
    return list(ids)


ledger_service = LedgerService()
