"""
Modelli SQLAlchemy per la Fatturazione
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)

Contiene:
- Invoice: Fattura di un cliente per un periodo
- InvoiceLineItem: Righe del ledger generate dalle visite
- Expense: Spesa registrata a livello di filiale/operatore
- InvoiceExpenseEntry: Copia di una spesa allegata alla fattura
- ExtraTimeRecord: Straordinario di un operatore, fatturabile
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from careledger.models import Base
from careledger.models.mixins import TimestampMixin, UUIDMixin


class Invoice(Base, UUIDMixin, TimestampMixin):
    """
    Fattura per un cliente su un intervallo di date.

    Il totale è la somma di righe, spese allegate ed extra time allegati.
    `total` può essere NULL sulle fatture storiche: in quel caso fa fede
    il campo legacy `amount`.

    Attributes:
        organization_id: Organizzazione (tenant)
        branch_id: Filiale che emette la fattura
        client_id: Cliente fatturato
        invoice_number: Numero progressivo annuale (INV-YYYY-NNNN)
        start_date / end_date: Periodo fatturato
        total: Totale corrente del ledger
        amount: Totale legacy (fatture create prima del ledger)
        is_locked: Ledger bloccato, nessuna modifica ammessa
        locked_at: Data/ora del blocco
    """

    __tablename__ = "invoices"

    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="RESTRICT"),
        nullable=False,
    )
    branch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("branches.id", ondelete="RESTRICT"),
        nullable=False,
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("clients.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    invoice_number: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True,
        doc="Numero fattura progressivo annuale (formato: INV-YYYY-NNNN)",
    )
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    total: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        default=Decimal("0.00"),
        doc="Totale del ledger",
    )
    amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        doc="Totale legacy, usato solo se total è NULL",
    )
    vat_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="draft",
        doc="draft, sent, paid, cancelled",
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    is_locked: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        doc="Ledger bloccato",
    )
    locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    locked_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    line_items: Mapped[List["InvoiceLineItem"]] = relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineItem.created_at",
    )
    expense_entries: Mapped[List["InvoiceExpenseEntry"]] = relationship(
        "InvoiceExpenseEntry",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceExpenseEntry.created_at",
    )
    extra_time_records: Mapped[List["ExtraTimeRecord"]] = relationship(
        "ExtraTimeRecord",
        back_populates="invoice",
    )

    __table_args__ = (
        Index("ix_invoices_branch_date", "branch_id", "invoice_date"),
        CheckConstraint(
            "status IN ('draft', 'sent', 'paid', 'cancelled')",
            name="ck_invoices_status",
        ),
    )

    def __repr__(self) -> str:
        return f"<Invoice(id={self.id}, number={self.invoice_number}, total={self.total})>"


class InvoiceLineItem(Base, UUIDMixin, TimestampMixin):
    """Riga del ledger: una visita fatturata."""

    __tablename__ = "invoice_line_items"

    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("bookings.id", ondelete="SET NULL"),
        nullable=True,
        doc="Visita da cui è stata generata la riga",
    )
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("1"))
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0.00"),
    )
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="line_items")


class Expense(Base, UUIDMixin, TimestampMixin):
    """
    Spesa registrata a livello di filiale.

    Quando viene copiata in una fattura, `is_invoiced` impedisce
    una seconda fatturazione.
    """

    __tablename__ = "expenses"

    branch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("branches.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    staff_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("staff.id", ondelete="SET NULL"),
        nullable=True,
    )
    client_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("clients.id", ondelete="SET NULL"),
        nullable=True,
    )
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    expense_date: Mapped[date] = mapped_column(Date, nullable=False, default=date.today)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    is_invoiced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    invoiced_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class InvoiceExpenseEntry(Base, UUIDMixin, TimestampMixin):
    """
    Spesa allegata a una fattura.

    È una copia: la spesa originale resta di proprietà della filiale
    e viene solo referenziata tramite `source_expense_id`.
    """

    __tablename__ = "invoice_expense_entries"

    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="RESTRICT"),
        nullable=False,
    )
    staff_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("staff.id", ondelete="SET NULL"),
        nullable=True,
    )
    source_expense_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("expenses.id", ondelete="SET NULL"),
        nullable=True,
    )
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    pay_staff_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2),
        nullable=True,
        doc="Quota girata all'operatore",
    )
    admin_cost_percentage: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2),
        nullable=True,
        doc="Percentuale di costo amministrativo",
    )

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="expense_entries")


class ExtraTimeRecord(Base, UUIDMixin, TimestampMixin):
    """
    Straordinario di un operatore.

    `total_cost` è congelato al momento della registrazione: attaccare o
    staccare il record da una fattura sposta sempre lo stesso importo.
    """

    __tablename__ = "extra_time_records"

    branch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("branches.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    staff_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("staff.id", ondelete="RESTRICT"),
        nullable=False,
    )
    client_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("clients.id", ondelete="SET NULL"),
        nullable=True,
    )
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("bookings.id", ondelete="SET NULL"),
        nullable=True,
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    scheduled_start_time: Mapped[time] = mapped_column(Time, nullable=False)
    scheduled_end_time: Mapped[time] = mapped_column(Time, nullable=False)
    actual_start_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    actual_end_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    scheduled_duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    actual_duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    extra_time_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    hourly_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    extra_time_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    total_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    invoiced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    invoice_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("invoices.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    invoice: Mapped[Optional["Invoice"]] = relationship(
        "Invoice",
        back_populates="extra_time_records",
    )

    __table_args__ = (
        CheckConstraint("extra_time_minutes >= 0", name="ck_extra_time_minutes_positive"),
    )
