"""
Schemas Pydantic per i token di accesso
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)

Il payload porta l'UUID dell'utente e il suo ruolo nel dominio
assistenziale (super_admin, branch_admin, carer, client).
"""

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from careledger.models.user import ADMIN_ROLES, UserRole


class TokenType(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class TokenResponse(BaseModel):
    """
    Coppia di token restituita da login e refresh.

    Attributes:
        role: Ruolo dell'utente, usato dal frontend per scegliere il pannello
        expires_in: Validità del token di accesso in secondi
    """

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    role: UserRole
    expires_in: int = Field(..., gt=0)


class TokenRefresh(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class TokenPayload(BaseModel):
    """Claim del JWT dopo la decodifica."""

    sub: uuid.UUID = Field(..., description="UUID dell'utente")
    role: UserRole
    exp: datetime
    type: TokenType

    @property
    def is_admin(self) -> bool:
        return self.role.value in ADMIN_ROLES


__all__ = [
    "TokenType",
    "TokenResponse",
    "TokenRefresh",
    "TokenPayload",
]
