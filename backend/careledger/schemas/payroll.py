"""
Schemas Pydantic per il calcolo della busta paga
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)
"""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from careledger.services.calculators import DeductionSettings


class DeductionSettingsIn(BaseModel):
    """Trattenute fisse dell'operatore; i flag *_active le includono o escludono."""

    tax_amount: Decimal = Field(default=Decimal("0.00"), ge=0, decimal_places=2)
    tax_active: bool = True
    ni_amount: Decimal = Field(default=Decimal("0.00"), ge=0, decimal_places=2)
    ni_active: bool = True
    pension_amount: Decimal = Field(default=Decimal("0.00"), ge=0, decimal_places=2)
    pension_active: bool = True
    student_loan_amount: Decimal = Field(default=Decimal("0.00"), ge=0, decimal_places=2)
    student_loan_active: bool = False
    other_deductions_amount: Decimal = Field(default=Decimal("0.00"), ge=0, decimal_places=2)
    other_deductions_active: bool = True

    def to_settings(self) -> DeductionSettings:
        return DeductionSettings(**self.model_dump())


class NetPayRequest(BaseModel):
    gross_pay: Decimal = Field(..., ge=0, decimal_places=2, description="Lordo del periodo")
    deductions: DeductionSettingsIn = Field(default_factory=DeductionSettingsIn)


class NetPayRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    gross_pay: Decimal
    tax_deduction: Decimal
    ni_deduction: Decimal
    pension_deduction: Decimal
    student_loan_deduction: Decimal
    other_deductions: Decimal
    total_deductions: Decimal
    net_pay: Decimal


__all__ = [
    "DeductionSettingsIn",
    "NetPayRequest",
    "NetPayRead",
]
