"""
Tests for LedgerService.

Eseguiti su SQLite in memoria: la procedura memorizzata del ledger
viene sostituita con monkeypatch.
"""

import uuid
from datetime import date, time
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest
from sqlalchemy import insert, select
from sqlalchemy.exc import OperationalError

from careledger.core.exceptions import (
    BusinessValidationError,
    LedgerLockedError,
    NotFoundError,
)
from careledger.models import (
    Branch,
    Expense,
    ExtraTimeRecord,
    Invoice,
    InvoiceExpenseEntry,
    InvoiceLineItem,
    Notification,
)
from careledger.schemas.invoice import (
    AttachExpenseEntries,
    ExpenseEntryCreate,
    InvoiceCreate,
    LineItemUpdate,
)
from careledger.services import ledger_service as ledger_module
from careledger.services.email_dispatch import EmailDispatchClient
from careledger.services.ledger_service import ledger_service

from conftest import make_invoice


def _entries(organization, *amounts, source_expense_id=None):
    return AttachExpenseEntries(
        organization_id=organization.id,
        entries=[
            ExpenseEntryCreate(
                category="travel",
                description="Bus fare",
                amount=Decimal(amount),
                source_expense_id=source_expense_id,
            )
            for amount in amounts
        ],
    )


async def _stored_total(db, invoice_id):
    result = await db.execute(select(Invoice.total).where(Invoice.id == invoice_id))
    return result.scalar_one()


async def _make_expense(db, branch, amount="25.50"):
    expense = Expense(
        branch_id=branch.id,
        description="Mileage",
        category="mileage",
        amount=Decimal(amount),
        expense_date=date(2025, 5, 10),
    )
    db.add(expense)
    await db.commit()
    return expense


# ============================================================
# Tests for expense entries
# ============================================================


class TestAttachExpenseEntries:

    async def test_attach_then_detach_restores_total(self, db_session, organization, invoice):
        """Test 100.00 + 25.50 = 125.50, poi rimozione → 100.00."""
        result = await ledger_service.attach_expense_entries(
            db_session, invoice.id, _entries(organization, "25.50")
        )
        assert result.total == Decimal("125.50")
        assert len(result.entries) == 1
        assert await _stored_total(db_session, invoice.id) == Decimal("125.50")

        detached = await ledger_service.detach_expense_entry(
            db_session, result.entries[0].id, invoice.id
        )
        assert detached.removed_amount == Decimal("25.50")
        assert detached.total == Decimal("100.00")
        assert await _stored_total(db_session, invoice.id) == Decimal("100.00")

    async def test_multiple_entries_summed(self, db_session, organization, invoice):
        result = await ledger_service.attach_expense_entries(
            db_session, invoice.id, _entries(organization, "10.00", "5.25")
        )
        assert len(result.entries) == 2
        assert result.total == Decimal("115.25")

    async def test_zero_amount_entry_leaves_total_unchanged(self, db_session, organization, invoice):
        result = await ledger_service.attach_expense_entries(
            db_session, invoice.id, _entries(organization, "0")
        )
        assert result.total == Decimal("100.00")

        count = await db_session.execute(
            select(InvoiceExpenseEntry).where(InvoiceExpenseEntry.invoice_id == invoice.id)
        )
        assert len(count.scalars().all()) == 1

    async def test_null_total_falls_back_to_amount(self, db_session, organization, branch, client):
        """Test fattura legacy: il totale parte dal campo amount."""
        legacy = await make_invoice(
            db_session, organization, branch, client,
            total=None, amount=Decimal("80.00"), invoice_number="INV-2024-0007",
        )
        assert await _stored_total(db_session, legacy.id) is None

        result = await ledger_service.attach_expense_entries(
            db_session, legacy.id, _entries(organization, "20.00")
        )
        assert result.total == Decimal("100.00")

    async def test_detach_clamps_at_zero(self, db_session, organization, branch, client):
        small = await make_invoice(
            db_session, organization, branch, client,
            total=Decimal("0.00"), invoice_number="INV-2025-0002",
        )
        result = await ledger_service.attach_expense_entries(
            db_session, small.id, _entries(organization, "25.50")
        )
        small.total = Decimal("10.00")
        await db_session.commit()

        detached = await ledger_service.detach_expense_entry(db_session, result.entries[0].id, small.id)
        assert detached.total == Decimal("0.00")

    async def test_locked_ledger_rejects_attach(self, db_session, organization, branch, client):
        locked = await make_invoice(
            db_session, organization, branch, client, is_locked=True, invoice_number="INV-2025-0003",
        )
        locked_id = locked.id
        with pytest.raises(LedgerLockedError) as exc_info:
            await ledger_service.attach_expense_entries(
                db_session, locked_id, _entries(organization, "25.50")
            )
        assert exc_info.value.status_code == 409

        await db_session.rollback()
        entries = await db_session.execute(
            select(InvoiceExpenseEntry).where(InvoiceExpenseEntry.invoice_id == locked_id)
        )
        assert entries.scalars().all() == []
        assert await _stored_total(db_session, locked_id) == Decimal("100.00")

    async def test_unknown_invoice(self, db_session, organization):
        with pytest.raises(NotFoundError):
            await ledger_service.attach_expense_entries(
                db_session, uuid.uuid4(), _entries(organization, "1.00")
            )

    async def test_detach_unknown_entry(self, db_session, invoice):
        with pytest.raises(NotFoundError):
            await ledger_service.detach_expense_entry(db_session, uuid.uuid4(), invoice.id)


class TestSourceExpenseFlag:

    async def test_source_expense_flagged_and_unflagged(self, db_session, organization, branch, invoice):
        expense = await _make_expense(db_session, branch)

        result = await ledger_service.attach_expense_entries(
            db_session, invoice.id, _entries(organization, "25.50", source_expense_id=expense.id)
        )
        assert result.flagged_expenses == 1
        await db_session.refresh(expense)
        assert expense.is_invoiced is True
        assert expense.invoiced_at is not None

        await ledger_service.detach_expense_entry(db_session, result.entries[0].id, invoice.id)
        await db_session.refresh(expense)
        assert expense.is_invoiced is False
        assert expense.invoiced_at is None

    async def test_explicit_source_ids(self, db_session, organization, branch, invoice):
        first = await _make_expense(db_session, branch, "10.00")
        second = await _make_expense(db_session, branch, "15.50")
        data = _entries(organization, "10.00", "15.50")
        data.source_expense_ids = [first.id, second.id]

        result = await ledger_service.attach_expense_entries(db_session, invoice.id, data)
        assert result.flagged_expenses == 2

    async def test_flag_failure_does_not_block_attach(
        self, db_session, organization, branch, invoice, monkeypatch
    ):
        """Test un errore nel flag delle spese non annulla l'allegato."""
        expense = await _make_expense(db_session, branch)

        def broken_update(*args, **kwargs):
            raise OperationalError("UPDATE expenses", {}, Exception("connection lost"))

        monkeypatch.setattr(ledger_module, "update", broken_update)

        result = await ledger_service.attach_expense_entries(
            db_session, invoice.id, _entries(organization, "25.50", source_expense_id=expense.id)
        )
        assert result.flagged_expenses == 0
        assert result.total == Decimal("125.50")
        assert await _stored_total(db_session, invoice.id) == Decimal("125.50")

    async def test_commit_failure_rolls_back_everything(
        self, db_session, organization, invoice, monkeypatch
    ):
        invoice_id = invoice.id
        monkeypatch.setattr(
            db_session,
            "commit",
            AsyncMock(side_effect=OperationalError("COMMIT", {}, Exception("disk full"))),
        )
        with pytest.raises(OperationalError):
            await ledger_service.attach_expense_entries(
                db_session, invoice_id, _entries(organization, "25.50")
            )

        entries = await db_session.execute(
            select(InvoiceExpenseEntry).where(InvoiceExpenseEntry.invoice_id == invoice_id)
        )
        assert entries.scalars().all() == []
        assert await _stored_total(db_session, invoice_id) == Decimal("100.00")


# ============================================================
# Tests for line items, generation, lock, recalculation
# ============================================================


async def _add_line(db, invoice, quantity="2", unit_price="17.50"):
    line = InvoiceLineItem(
        invoice_id=invoice.id,
        description="Personal care visit",
        quantity=Decimal(quantity),
        unit_price=Decimal(unit_price),
        discount_amount=Decimal("0.00"),
        line_total=Decimal(quantity) * Decimal(unit_price),
    )
    db.add(line)
    await db.commit()
    return line


class TestLineItems:

    async def test_update_line_item_shifts_total(self, db_session, organization, branch, client):
        invoice = await make_invoice(
            db_session, organization, branch, client, total=Decimal("35.00"), invoice_number="INV-2025-0004",
        )
        line = await _add_line(db_session, invoice)

        updated = await ledger_service.update_line_item(
            db_session, line.id, LineItemUpdate(quantity=Decimal("3"))
        )
        assert updated.line_total == Decimal("52.50")
        assert await _stored_total(db_session, invoice.id) == Decimal("52.50")

    async def test_discount_reduces_total(self, db_session, invoice):
        line = await _add_line(db_session, invoice, quantity="1", unit_price="20.00")

        await ledger_service.update_line_item(
            db_session, line.id, LineItemUpdate(discount_amount=Decimal("5.00"))
        )
        assert await _stored_total(db_session, invoice.id) == Decimal("95.00")

    async def test_locked_ledger_rejects_line_update(self, db_session, invoice):
        line = await _add_line(db_session, invoice)
        invoice.is_locked = True
        await db_session.commit()

        with pytest.raises(LedgerLockedError):
            await ledger_service.update_line_item(db_session, line.id, LineItemUpdate(quantity=Decimal("5")))


class TestGenerateLedger:

    async def test_generate_inserts_lines_and_recalculates(self, db_session, invoice, monkeypatch):
        async def fake_procedure(db, target):
            await db.execute(
                insert(InvoiceLineItem),
                [
                    {
                        "invoice_id": target.id,
                        "description": f"Visit {day}",
                        "quantity": Decimal("1"),
                        "unit_price": Decimal("20.00"),
                        "discount_amount": Decimal("0.00"),
                        "line_total": Decimal("20.00"),
                    }
                    for day in range(3)
                ],
            )

        monkeypatch.setattr(ledger_service, "_call_ledger_procedure", fake_procedure)

        result = await ledger_service.generate_ledger(db_session, invoice.id)
        assert result.line_item_count == 3
        assert result.total == Decimal("60.00")
        assert await _stored_total(db_session, invoice.id) == Decimal("60.00")

    async def test_generate_requires_date_range(self, db_session, invoice):
        invoice.start_date = None
        await db_session.commit()

        with pytest.raises(BusinessValidationError):
            await ledger_service.generate_ledger(db_session, invoice.id)

    async def test_generate_rejected_when_locked(self, db_session, invoice):
        invoice.is_locked = True
        await db_session.commit()

        with pytest.raises(LedgerLockedError):
            await ledger_service.generate_ledger(db_session, invoice.id)

    async def test_invalid_procedure_name(self, db_session, invoice, monkeypatch):
        monkeypatch.setattr(
            ledger_module, "settings", SimpleNamespace(ledger_procedure_name="drop table; --")
        )
        with pytest.raises(BusinessValidationError):
            await ledger_service._call_ledger_procedure(db_session, invoice)


class TestLockAndRecalculate:

    async def test_lock_and_unlock(self, db_session, invoice, admin_user):
        locked = await ledger_service.lock_ledger(db_session, invoice.id, True, admin_user)
        assert locked.is_locked is True
        assert locked.locked_at is not None
        assert locked.locked_by == admin_user.id

        unlocked = await ledger_service.lock_ledger(db_session, invoice.id, False, admin_user)
        assert unlocked.is_locked is False
        assert unlocked.locked_at is None
        assert unlocked.locked_by is None

    async def test_recalculate_from_constituents(self, db_session, organization, branch, staff, invoice):
        await _add_line(db_session, invoice, quantity="2", unit_price="17.50")
        await ledger_service.attach_expense_entries(db_session, invoice.id, _entries(organization, "10.00"))
        db_session.add(
            ExtraTimeRecord(
                branch_id=branch.id,
                staff_id=staff.id,
                work_date=date(2025, 5, 12),
                scheduled_start_time=time(9, 0),
                scheduled_end_time=time(10, 0),
                scheduled_duration_minutes=60,
                extra_time_minutes=30,
                hourly_rate=Decimal("15.00"),
                total_cost=Decimal("7.50"),
                invoiced=True,
                invoice_id=invoice.id,
            )
        )
        await db_session.commit()

        total = await ledger_service.recalculate_total(db_session, invoice.id)
        assert total == Decimal("52.50")
        assert await _stored_total(db_session, invoice.id) == Decimal("52.50")


# ============================================================
# Tests for invoice creation and sending
# ============================================================


class TestCreateInvoice:

    async def test_progressive_number_and_admin_notification(
        self, db_session, organization, branch, client, invoice, admin_user
    ):
        data = InvoiceCreate(
            organization_id=organization.id,
            branch_id=branch.id,
            client_id=client.id,
            start_date=date(2025, 6, 1),
            end_date=date(2025, 6, 30),
            invoice_date=date(2025, 7, 1),
        )
        created = await ledger_service.create_invoice(db_session, data)

        assert created.invoice_number == "INV-2025-0002"
        assert created.due_date == date(2025, 7, 31)
        assert created.total == Decimal("0.00")

        result = await db_session.execute(select(Notification).where(Notification.user_id == admin_user.id))
        notifications = result.scalars().all()
        assert len(notifications) == 1
        assert notifications[0].title == "New Invoice Created"
        assert notifications[0].priority == "low"
        assert notifications[0].message == "Invoice #INV-2025-0002 created for Mary Client (£0.00)"

    async def test_first_number_of_year(self, db_session, organization, branch, client):
        data = InvoiceCreate(
            organization_id=organization.id,
            branch_id=branch.id,
            client_id=client.id,
            start_date=date(2026, 1, 1),
            end_date=date(2026, 1, 31),
            invoice_date=date(2026, 2, 1),
        )
        created = await ledger_service.create_invoice(db_session, data, notify=False)
        assert created.invoice_number == "INV-2026-0001"

    async def test_client_of_another_branch(self, db_session, organization, branch, client):
        other = Branch(organization_id=organization.id, name="York")
        db_session.add(other)
        await db_session.commit()

        data = InvoiceCreate(
            organization_id=organization.id,
            branch_id=other.id,
            client_id=client.id,
            start_date=date(2025, 6, 1),
            end_date=date(2025, 6, 30),
        )
        with pytest.raises(BusinessValidationError):
            await ledger_service.create_invoice(db_session, data)


class TestSendInvoice:

    async def test_successful_send_marks_invoice_sent(self, db_session, invoice):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["body"] = request.read()
            return httpx.Response(200, json={"id": "msg-1"})

        email_client = EmailDispatchClient(
            base_url="https://functions.example.com",
            api_key="key",
            transport=httpx.MockTransport(handler),
        )
        result = await ledger_service.send_invoice(db_session, invoice.id, email_client)

        assert result.sent is True
        assert result.status == "sent"
        assert b"INV-2025-0001" in captured["body"]

    async def test_failed_send_keeps_draft(self, db_session, invoice):
        email_client = EmailDispatchClient(
            base_url="https://functions.example.com",
            transport=httpx.MockTransport(lambda request: httpx.Response(502, text="bad gateway")),
        )
        result = await ledger_service.send_invoice(db_session, invoice.id, email_client)

        assert result.sent is False
        assert result.status_code == 502
        assert result.status == "draft"

    async def test_client_without_email(self, db_session, invoice, client):
        client.email = None
        await db_session.commit()

        with pytest.raises(BusinessValidationError):
            await ledger_service.send_invoice(db_session, invoice.id, EmailDispatchClient(base_url=""))
