"""
Modulo di sicurezza per autenticazione JWT
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)

Funzioni per hashing password e gestione token JWT.
"""

from datetime import datetime, timedelta, timezone

from fastapi import HTTPException, status
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import ValidationError

from careledger.core.config import settings
from careledger.schemas.token import TokenPayload, TokenType

# Context per hashing password
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    """Hasha una password in chiaro."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verifica una password in chiaro contro una hashata."""
    return pwd_context.verify(plain_password, hashed_password)


def _create_token(user_id: str, role: str, token_type: TokenType, expires_delta: timedelta) -> str:
    payload = {
        "sub": user_id,
        "role": role,
        "exp": datetime.now(timezone.utc) + expires_delta,
        "type": token_type.value,
    }
    return jwt.encode(
        payload,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )


def create_access_token(user_id: str, role: str) -> str:
    """
    Crea un token di accesso JWT.

    Args:
        user_id: ID dell'utente
        role: Ruolo dell'utente

    Returns:
        Token JWT codificato
    """
    return _create_token(
        user_id,
        role,
        TokenType.ACCESS,
        timedelta(minutes=settings.access_token_expire_minutes),
    )


def create_refresh_token(user_id: str, role: str) -> str:
    """Crea un token di refresh JWT."""
    return _create_token(
        user_id,
        role,
        TokenType.REFRESH,
        timedelta(days=settings.refresh_token_expire_days),
    )


def decode_token(token: str) -> TokenPayload:
    """
    Decodifica e valida un token JWT.

    Args:
        token: Token JWT da decodificare

    Returns:
        TokenPayload con i dati del token

    Raises:
        HTTPException: Se il token è invalido o scaduto
    """
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid or expired token: {e}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # sub deve essere un UUID, role e type valori noti
    try:
        return TokenPayload(
            sub=payload.get("sub"),
            role=payload.get("role"),
            exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            type=payload.get("type"),
        )
    except (KeyError, ValidationError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )


__all__ = [
    "hash_password",
    "verify_password",
    "create_access_token",
    "create_refresh_token",
    "decode_token",
]
