"""
API Routes
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)

Modulo per l'aggregazione dei router versionati.
"""

from careledger.api.v1 import api_v1_router

# Esportazione router
__all__ = ["api_v1_router"]
