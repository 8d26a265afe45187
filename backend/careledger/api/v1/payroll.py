"""
Router FastAPI per la busta paga
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)

Anteprima del netto: nessuna scrittura sul database.
"""

from fastapi import APIRouter

from careledger.core.deps import AdminUser
from careledger.schemas.payroll import NetPayRead, NetPayRequest
from careledger.services.calculators import calculate_net_pay

router = APIRouter(
    prefix="/payroll",
    tags=["Payroll"],
)


@router.post(
    "/net-pay",
    name="payroll_net_pay",
    summary="Preview net pay",
    description="Applies the active deductions to the gross pay.",
    response_model=NetPayRead,
)
async def preview_net_pay(
    data: NetPayRequest,
    admin: AdminUser,
) -> NetPayRead:
    result = calculate_net_pay(data.gross_pay, data.deductions.to_settings())
    return NetPayRead.model_validate(result)


__all__ = ["router"]
