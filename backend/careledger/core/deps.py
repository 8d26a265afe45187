"""
Dependency Injection per autenticazione
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)

Funzioni di dependency injection per autenticazione e autorizzazione.
"""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from careledger.core.database import get_db
from careledger.core.security import decode_token
from careledger.models.user import ADMIN_ROLES, User, UserRole
from careledger.schemas.token import TokenType

# OAuth2 scheme - estrae il token dall'header Authorization
oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl="/api/v1/auth/login",
    auto_error=False,
)


async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Dependency per ottenere l'utente corrente dal token JWT.

    Args:
        token: Token JWT estratto dall'header Authorization
        db: Sessione database

    Returns:
        L'utente corrente

    Raises:
        HTTPException 401: Se il token è invalido, scaduto o l'utente non è attivo
    """
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication token not provided",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token_data = decode_token(token)

    # Il refresh token non vale come credenziale di accesso
    if token_data.type != TokenType.ACCESS:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token not valid for this operation",
            headers={"WWW-Authenticate": "Bearer"},
        )

    result = await db.execute(select(User).where(User.id == token_data.sub))
    user = result.scalar_one_or_none()

    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or disabled",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user


async def get_optional_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> Optional[User]:
    """Come get_current_user, ma restituisce None se il token manca."""
    if not token:
        return None
    return await get_current_user(token, db)


def require_role(*allowed_roles: str):
    """
    Factory function per creare una dependency che verifica il ruolo.

    Args:
        allowed_roles: Ruoli permessi per l'endpoint

    Returns:
        Dependency che verifica il ruolo dell'utente

    Example:
        @router.post("/{request_id}/approve")
        async def approve(admin: User = Depends(require_role("super_admin", "branch_admin"))):
            ...
    """
    async def role_checker(
        current_user: Annotated[User, Depends(get_current_user)]
    ) -> User:
        if current_user.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join(allowed_roles)}",
            )
        return current_user

    return role_checker


# Type aliases per uso comune
CurrentUser = Annotated[User, Depends(get_current_user)]
AdminUser = Annotated[User, Depends(require_role(*ADMIN_ROLES))]
CarerUser = Annotated[User, Depends(require_role(UserRole.CARER.value))]


# Export
__all__ = [
    "get_current_user",
    "get_optional_user",
    "require_role",
    "oauth2_scheme",
    "CurrentUser",
    "AdminUser",
    "CarerUser",
]
