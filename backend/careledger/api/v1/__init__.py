"""
API v1 Routes
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)

Router versione 1 dell'API.
"""

from fastapi import APIRouter

from careledger.api.v1 import (
    auth, booking_requests, extra_time, invoices, notifications, payroll, unavailability
)

# Router aggregato per v1
api_v1_router = APIRouter(prefix="/api/v1")

# Includi i router dei moduli
api_v1_router.include_router(auth.router)
api_v1_router.include_router(invoices.router)
api_v1_router.include_router(extra_time.router)
api_v1_router.include_router(booking_requests.router)
api_v1_router.include_router(unavailability.router)
api_v1_router.include_router(notifications.router)
api_v1_router.include_router(payroll.router)

# Esportazione
__all__ = ["api_v1_router"]
