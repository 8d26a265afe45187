"""
Service Layer per l'Extra Time degli operatori
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)

Il costo di ogni record viene calcolato alla creazione e resta
congelato: allegare o rimuovere un record dalla fattura sposta il
totale esattamente di quel costo.
"""

import logging
import uuid
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from careledger.core.exceptions import ConflictError, NotFoundError
from careledger.models import ExtraTimeRecord
from careledger.schemas.extra_time import (
    ExtraTimeCreate,
    ExtraTimeSummary,
    MarkInvoicedResult,
    RemoveFromInvoiceResult,
)
from careledger.services.calculators import (
    ZERO,
    apply_total_delta,
    calculate_extra_time,
    invoice_base_total,
    summarize_extra_time,
    to_money,
)
from careledger.services.ledger_service import ledger_service

logger = logging.getLogger(__name__)


class ExtraTimeService:
    """Registrazione degli straordinari e loro fatturazione."""

    async def create_record(self, db: AsyncSession, data: ExtraTimeCreate) -> ExtraTimeRecord:
        """
        Registra uno straordinario con durata e costo calcolati.

        Il record nasce in stato `pending` e non fatturato.
        """
        calculation = calculate_extra_time(
            data.scheduled_start_time,
            data.scheduled_end_time,
            data.actual_start_time,
            data.actual_end_time,
            data.hourly_rate,
            data.extra_time_rate,
        )

        record = ExtraTimeRecord(
            **data.model_dump(),
            scheduled_duration_minutes=calculation.scheduled_minutes,
            actual_duration_minutes=calculation.actual_minutes,
            extra_time_minutes=calculation.extra_minutes,
            total_cost=calculation.total_cost,
            status="pending",
            invoiced=False,
        )
        db.add(record)
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.error("Errore di integrità durante creazione extra time: %s", e)
            raise ConflictError("Extra time record references missing data")

        logger.info(
            "Extra time registrato per l'operatore %s: %d minuti, costo %s",
            data.staff_id, calculation.extra_minutes, calculation.total_cost,
        )
        return record

    async def list_records(
        self,
        db: AsyncSession,
        branch_id: uuid.UUID,
        invoiced: Optional[bool] = None,
    ) -> List[ExtraTimeRecord]:
        stmt = select(ExtraTimeRecord).where(ExtraTimeRecord.branch_id == branch_id)
        if invoiced is not None:
            stmt = stmt.where(ExtraTimeRecord.invoiced.is_(invoiced))
        stmt = stmt.order_by(ExtraTimeRecord.work_date.desc(), ExtraTimeRecord.created_at.desc())
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def mark_as_invoiced(
        self,
        db: AsyncSession,
        record_ids: List[uuid.UUID],
        invoice_id: uuid.UUID,
    ) -> MarkInvoicedResult:
        """
        Allega uno o più record alla fattura.

        Steps:
        1. Lista vuota: nessuna modifica, affected_count = 0
        2. Blocca la fattura e verifica che il ledger sia modificabile
        3. Somma i costi congelati dei record non ancora fatturati
        4. Imposta invoiced/invoice_id e aggiunge la somma al totale
        5. Commit unico

        I record già fatturati vengono riportati in skipped_ids e il loro
        costo non viene sommato di nuovo.

        Raises:
            NotFoundError: fattura o record inesistenti
            LedgerLockedError: ledger bloccato
        """
        if not record_ids:
            invoice = await ledger_service.get_invoice(db, invoice_id)
            return MarkInvoicedResult(
                invoice_id=invoice_id,
                affected_count=0,
                added_cost=ZERO,
                total=invoice_base_total(invoice),
            )

        invoice = await ledger_service.lock_invoice_row(db, invoice_id)

        result = await db.execute(
            select(ExtraTimeRecord)
            .where(ExtraTimeRecord.id.in_(record_ids))
            .with_for_update()
        )
        records = list(result.scalars().all())
        missing = set(record_ids) - {record.id for record in records}
        if missing:
            raise NotFoundError(
                "Extra time records not found",
                extra={"record_ids": sorted(str(record_id) for record_id in missing)},
            )

        to_attach = [record for record in records if not record.invoiced]
        skipped = [record.id for record in records if record.invoiced]
        if skipped:
            logger.warning(
                "Extra time già fatturati ignorati per la fattura %s: %s",
                invoice.invoice_number, skipped,
            )

        added = sum((to_money(record.total_cost) for record in to_attach), ZERO)
        for record in to_attach:
            record.invoiced = True
            record.invoice_id = invoice.id

        if added > 0:
            invoice.total = apply_total_delta(invoice_base_total(invoice), added)

        await self._commit(db, "fatturazione extra time")
        logger.info(
            "Allegati %d extra time alla fattura %s (+%s)",
            len(to_attach), invoice.invoice_number, added,
        )
        return MarkInvoicedResult(
            invoice_id=invoice.id,
            affected_count=len(to_attach),
            skipped_ids=skipped,
            added_cost=added,
            total=invoice_base_total(invoice),
        )

    async def remove_from_invoice(
        self,
        db: AsyncSession,
        record_id: uuid.UUID,
        invoice_id: uuid.UUID,
    ) -> RemoveFromInvoiceResult:
        """
        Stacca un record dalla fattura sottraendone il costo (minimo zero).

        Raises:
            NotFoundError: record non allegato a questa fattura
            LedgerLockedError: ledger bloccato
        """
        invoice = await ledger_service.lock_invoice_row(db, invoice_id)

        result = await db.execute(
            select(ExtraTimeRecord).where(
                ExtraTimeRecord.id == record_id,
                ExtraTimeRecord.invoice_id == invoice_id,
            )
        )
        record = result.scalar_one_or_none()
        if not record:
            raise NotFoundError(f"Extra time record {record_id} not found on invoice {invoice_id}")

        cost = to_money(record.total_cost)
        record.invoiced = False
        record.invoice_id = None
        invoice.total = apply_total_delta(invoice_base_total(invoice), -cost)

        await self._commit(db, "rimozione extra time")
        return RemoveFromInvoiceResult(
            record_id=record_id,
            invoice_id=invoice_id,
            removed_cost=cost,
            total=invoice.total,
        )

    async def summary_for_invoice(self, db: AsyncSession, invoice_id: uuid.UUID) -> ExtraTimeSummary:
        """Riepilogo di minuti e costi degli straordinari allegati alla fattura."""
        result = await db.execute(
            select(ExtraTimeRecord).where(
                ExtraTimeRecord.invoice_id == invoice_id,
                ExtraTimeRecord.invoiced.is_(True),
            )
        )
        totals = summarize_extra_time(result.scalars().all())
        return ExtraTimeSummary(
            record_count=totals.record_count,
            total_minutes=totals.total_minutes,
            total_cost=totals.total_cost,
            duration_label=totals.duration_label,
        )

    async def _commit(self, db: AsyncSession, operation: str) -> None:
        try:
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("Errore database durante %s", operation)
            raise


extra_time_service = ExtraTimeService()
