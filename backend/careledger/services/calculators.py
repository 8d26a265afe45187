"""
Calcolatori derivati
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)

Funzioni pure, senza I/O, usate dai service e dai report:
- Totale base della fattura (regola total → amount)
- Applicazione di un delta al totale con clamp a zero
- Totale riga, extra time, riepiloghi spese
- Trattenute e netto in busta paga
- Composizione data/ora per gli spostamenti di visita

Gli importi sono Decimal arrotondati al centesimo (ROUND_HALF_UP).
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, Optional, Union

Number = Union[Decimal, int, float, str]

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Optional[Number]) -> Decimal:
    """Converte un importo in Decimal a 2 decimali. None vale zero."""
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


# -------------------------------------------------------------------
# Totali fattura
# -------------------------------------------------------------------

def invoice_base_total(invoice: Any) -> Decimal:
    """
    Totale corrente di una fattura.

    Le fatture create prima del ledger hanno `total` NULL e il valore
    nel campo legacy `amount`; se mancano entrambi il totale è zero.
    """
    if invoice.total is not None:
        return to_money(invoice.total)
    if invoice.amount is not None:
        return to_money(invoice.amount)
    return ZERO


def apply_total_delta(current: Number, delta: Number) -> Decimal:
    """Somma il delta al totale senza mai scendere sotto zero."""
    result = to_money(current) + to_money(delta)
    return max(ZERO, result)


def calculate_line_total(
    quantity: Number,
    unit_price: Number,
    discount_amount: Optional[Number] = None,
) -> Decimal:
    """Totale riga = quantità × prezzo unitario − sconto (minimo zero)."""
    gross = Decimal(str(quantity)) * Decimal(str(unit_price))
    return max(ZERO, to_money(gross - to_money(discount_amount)))


# -------------------------------------------------------------------
# Extra time
# -------------------------------------------------------------------

@dataclass(frozen=True)
class ExtraTimeCalculation:
    scheduled_minutes: int
    actual_minutes: int
    extra_minutes: int
    total_cost: Decimal


def minutes_between(start: time, end: time) -> int:
    """Minuti tra due orari dello stesso giorno."""
    anchor = date(2000, 1, 1)
    delta = datetime.combine(anchor, end) - datetime.combine(anchor, start)
    return int(round(delta.total_seconds() / 60))


def calculate_extra_time(
    scheduled_start: time,
    scheduled_end: time,
    actual_start: Optional[time],
    actual_end: Optional[time],
    hourly_rate: Number,
    extra_time_rate: Optional[Number] = None,
) -> ExtraTimeCalculation:
    """
    Calcola durata prevista, effettiva, extra time e costo.

    Senza orari effettivi la durata effettiva coincide con quella
    prevista. Il costo usa extra_time_rate se valorizzata, altrimenti
    hourly_rate.

    Returns:
        ExtraTimeCalculation con minuti interi e costo arrotondato
    """
    scheduled_minutes = minutes_between(scheduled_start, scheduled_end)
    actual_minutes = scheduled_minutes
    if actual_start is not None and actual_end is not None:
        actual_minutes = minutes_between(actual_start, actual_end)

    extra_minutes = max(0, actual_minutes - scheduled_minutes)
    rate = Decimal(str(extra_time_rate or hourly_rate or 0))
    cost = to_money(Decimal(extra_minutes) / Decimal(60) * rate)

    return ExtraTimeCalculation(
        scheduled_minutes=scheduled_minutes,
        actual_minutes=actual_minutes,
        extra_minutes=extra_minutes,
        total_cost=cost,
    )


def format_hours_minutes(minutes: int) -> str:
    """Formatta i minuti come 'Hh Mm' (es. 90 → '1h 30m')."""
    hours, remainder = divmod(max(0, int(minutes)), 60)
    return f"{hours}h {remainder}m"


@dataclass(frozen=True)
class ExtraTimeTotals:
    record_count: int
    total_minutes: int
    total_cost: Decimal
    duration_label: str


def summarize_extra_time(records: Iterable[Any]) -> ExtraTimeTotals:
    """Somma minuti e costi congelati di un insieme di record."""
    count = 0
    minutes = 0
    cost = ZERO
    for record in records:
        count += 1
        minutes += record.extra_time_minutes or 0
        cost += to_money(record.total_cost)
    return ExtraTimeTotals(
        record_count=count,
        total_minutes=minutes,
        total_cost=to_money(cost),
        duration_label=format_hours_minutes(minutes),
    )


# -------------------------------------------------------------------
# Spese
# -------------------------------------------------------------------

@dataclass(frozen=True)
class ExpenseEntryTotals:
    total_amount: Decimal
    total_pay_staff: Decimal
    total_admin_cost: Decimal


def summarize_expense_entries(entries: Iterable[Any]) -> ExpenseEntryTotals:
    """
    Totali delle spese allegate.

    Il costo amministrativo di una spesa è amount × admin_cost_percentage / 100.
    """
    amount = ZERO
    pay_staff = ZERO
    admin_cost = Decimal("0")
    for entry in entries:
        amount += to_money(entry.amount)
        pay_staff += to_money(entry.pay_staff_amount)
        if entry.admin_cost_percentage:
            admin_cost += (
                Decimal(str(entry.amount)) * Decimal(str(entry.admin_cost_percentage)) / Decimal(100)
            )
    return ExpenseEntryTotals(
        total_amount=to_money(amount),
        total_pay_staff=to_money(pay_staff),
        total_admin_cost=to_money(admin_cost),
    )


# -------------------------------------------------------------------
# Busta paga
# -------------------------------------------------------------------

@dataclass(frozen=True)
class DeductionSettings:
    """
    Trattenute fisse configurate per un operatore.

    Ogni voce si applica solo se il relativo flag è attivo.
    """

    tax_amount: Decimal = ZERO
    tax_active: bool = True
    ni_amount: Decimal = ZERO
    ni_active: bool = True
    pension_amount: Decimal = ZERO
    pension_active: bool = True
    student_loan_amount: Decimal = ZERO
    student_loan_active: bool = False
    other_deductions_amount: Decimal = ZERO
    other_deductions_active: bool = True


@dataclass(frozen=True)
class NetPay:
    gross_pay: Decimal
    tax_deduction: Decimal
    ni_deduction: Decimal
    pension_deduction: Decimal
    student_loan_deduction: Decimal
    other_deductions: Decimal
    total_deductions: Decimal
    net_pay: Decimal


def calculate_net_pay(gross_pay: Number, deductions: Optional[DeductionSettings] = None) -> NetPay:
    """Netto = lordo − trattenute attive. Senza impostazioni non si trattiene nulla."""
    gross = to_money(gross_pay)
    if deductions is None:
        deductions = DeductionSettings()

    def _active(amount: Number, active: bool) -> Decimal:
        return to_money(amount) if active else ZERO

    tax = _active(deductions.tax_amount, deductions.tax_active)
    ni = _active(deductions.ni_amount, deductions.ni_active)
    pension = _active(deductions.pension_amount, deductions.pension_active)
    student_loan = _active(deductions.student_loan_amount, deductions.student_loan_active)
    other = _active(deductions.other_deductions_amount, deductions.other_deductions_active)
    total = tax + ni + pension + student_loan + other

    return NetPay(
        gross_pay=gross,
        tax_deduction=tax,
        ni_deduction=ni,
        pension_deduction=pension,
        student_loan_deduction=student_loan,
        other_deductions=other,
        total_deductions=total,
        net_pay=gross - total,
    )


# -------------------------------------------------------------------
# Date/ora visite
# -------------------------------------------------------------------

def compose_start_time(new_date: Union[date, str], new_time: Union[time, str]) -> datetime:
    """
    Compone l'istante UTC di inizio da data (YYYY-MM-DD) e ora (HH:MM).

    Raises:
        ValueError: formato data o ora non valido
    """
    if isinstance(new_date, str):
        new_date = date.fromisoformat(new_date)
    if isinstance(new_time, str):
        new_time = datetime.strptime(new_time, "%H:%M").time()
    return datetime.combine(new_date, new_time.replace(second=0, microsecond=0), tzinfo=timezone.utc)


def shift_window(start: datetime, end: datetime, new_start: datetime) -> tuple[datetime, datetime]:
    """Sposta la finestra [start, end] a new_start mantenendone la durata."""
    duration = end - start
    if duration < timedelta(0):
        duration = timedelta(0)
    return new_start, new_start + duration


__all__ = [
    "to_money",
    "invoice_base_total",
    "apply_total_delta",
    "calculate_line_total",
    "ExtraTimeCalculation",
    "minutes_between",
    "calculate_extra_time",
    "format_hours_minutes",
    "ExtraTimeTotals",
    "summarize_extra_time",
    "ExpenseEntryTotals",
    "summarize_expense_entries",
    "DeductionSettings",
    "NetPay",
    "calculate_net_pay",
    "compose_start_time",
    "shift_window",
]
