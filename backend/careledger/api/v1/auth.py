"""
Router per l'autenticazione
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)

Endpoints per registrazione, login, refresh token e profilo utente.
"""

from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from careledger.core.database import get_db
from careledger.core.deps import CurrentUser, get_optional_user
from careledger.models.user import User
from careledger.schemas.token import TokenRefresh, TokenResponse
from careledger.schemas.user import UserCreate, UserLogin, UserResponse
from careledger.services.auth_service import AuthService, get_auth_service

router = APIRouter(
    prefix="/auth",
    tags=["Authentication"],
)


@router.post(
    "/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new user",
)
async def register(
    data: UserCreate,
    db: AsyncSession = Depends(get_db),
    service: AuthService = Depends(get_auth_service),
    current_user: Optional[User] = Depends(get_optional_user),
):
    """
    Registra un nuovo utente nel sistema.

    Se non esistono utenti la registrazione è libera e il ruolo viene
    forzato a super_admin; altrimenti serve il token di un admin.
    """
    return await service.register(db, data, current_user)


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Log in",
)
async def login(
    data: UserLogin,
    db: AsyncSession = Depends(get_db),
    service: AuthService = Depends(get_auth_service),
):
    return await service.login(db, data)


@router.post(
    "/refresh",
    response_model=TokenResponse,
    summary="Refresh tokens",
)
async def refresh(
    data: TokenRefresh,
    db: AsyncSession = Depends(get_db),
    service: AuthService = Depends(get_auth_service),
):
    return await service.refresh(db, data.refresh_token)


@router.get(
    "/me",
    response_model=UserResponse,
    summary="Current user profile",
)
async def get_me(current_user: CurrentUser):
    return current_user


# Export
__all__ = ["router"]
