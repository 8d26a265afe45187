"""
Servizio per l'autenticazione
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)

Business logic per registrazione, login e refresh token.
"""

import logging
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from careledger.core.config import settings
from careledger.core.exceptions import AuthorizationError, ConflictError
from careledger.core.security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_password,
    verify_password,
)
from careledger.models.user import User, UserRole
from careledger.schemas.token import TokenResponse, TokenType
from careledger.schemas.user import UserCreate, UserLogin

logger = logging.getLogger(__name__)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _token_response(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(str(user.id), user.role),
        refresh_token=create_refresh_token(str(user.id), user.role),
        role=UserRole(user.role),
        expires_in=settings.access_token_expire_minutes * 60,
    )


class AuthService:
    """Servizio per la gestione dell'autenticazione."""

    async def register(
        self,
        db: AsyncSession,
        data: UserCreate,
        current_user: Optional[User] = None,
    ) -> User:
        """
        Registra un nuovo utente nel sistema.

        Il primo utente registrato diventa super_admin. Dopo di lui
        solo un amministratore autenticato può registrare nuovi utenti.

        Args:
            db: Sessione database
            data: Dati per la creazione dell'utente
            current_user: Utente che esegue la registrazione, se autenticato

        Returns:
            L'utente creato

        Raises:
            AuthorizationError: Se esistono utenti e il chiamante non è admin
            ConflictError: Se l'email è già registrata
        """
        count_result = await db.execute(select(func.count(User.id)))
        user_count = count_result.scalar()

        role = data.role
        if user_count == 0:
            role = UserRole.SUPER_ADMIN
        elif current_user is None or not current_user.is_admin:
            raise AuthorizationError("Only administrators can register new users")

        result = await db.execute(select(User).where(User.email == data.email))
        if result.scalar_one_or_none():
            raise ConflictError(f"Email {data.email} is already registered")

        user = User(
            email=data.email,
            hashed_password=hash_password(data.password),
            full_name=data.full_name,
            role=role.value if isinstance(role, UserRole) else role,
        )
        db.add(user)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise ConflictError(f"Email {data.email} is already registered")

        logger.info("Utente %s registrato con ruolo %s", user.email, user.role)
        return user

    async def login(self, db: AsyncSession, data: UserLogin) -> TokenResponse:
        """
        Autentica un utente e restituisce i token JWT.

        Raises:
            HTTPException 401: Se le credenziali sono invalide o l'utente è disattivato
        """
        result = await db.execute(select(User).where(User.email == data.email))
        user = result.scalar_one_or_none()

        if not user or not verify_password(data.password, user.hashed_password):
            raise _unauthorized("Incorrect email or password")
        if not user.is_active:
            raise _unauthorized("User is disabled")

        return _token_response(user)

    async def refresh(self, db: AsyncSession, refresh_token: str) -> TokenResponse:
        """
        Aggiorna i token JWT usando un refresh token.

        Raises:
            HTTPException 401: Se il refresh token è invalido
        """
        token_data = decode_token(refresh_token)
        if token_data.type != TokenType.REFRESH:
            raise _unauthorized("Access token not valid for refresh")

        user = await db.get(User, token_data.sub)
        if not user or not user.is_active:
            raise _unauthorized("User not found or disabled")

        return _token_response(user)


def get_auth_service() -> AuthService:
    """Factory per ottenere un'istanza del servizio di autenticazione."""
    return AuthService()


__all__ = [
    "AuthService",
    "get_auth_service",
]
