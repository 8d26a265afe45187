"""
Modello SQLAlchemy per l'entità User
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)

Account di accesso al sistema. Ogni destinatario di notifica
deve avere un record User valido.
"""

from __future__ import annotations

from enum import Enum

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from careledger.models import Base
from careledger.models.mixins import TimestampMixin, UUIDMixin


class UserRole(str, Enum):
    """Ruoli utente nel sistema."""
    SUPER_ADMIN = "super_admin"
    BRANCH_ADMIN = "branch_admin"
    CARER = "carer"
    CLIENT = "client"


ADMIN_ROLES = (UserRole.SUPER_ADMIN.value, UserRole.BRANCH_ADMIN.value)


class User(Base, UUIDMixin, TimestampMixin):
    """
    Modello per gli utenti del sistema.

    Attributes:
        id: UUID primary key
        email: Email univoca dell'utente
        hashed_password: Password hashata (bcrypt)
        full_name: Nome completo
        role: super_admin, branch_admin, carer, client
        is_active: Indica se l'utente può autenticarsi
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        doc="Email univoca dell'utente",
    )

    hashed_password: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        doc="Password hashata",
    )

    full_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        doc="Nome completo dell'utente",
    )

    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=UserRole.CLIENT.value,
        doc="Ruolo dell'utente",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        doc="Indica se l'utente è attivo",
    )

    __table_args__ = (
        Index("ix_users_role", "role"),
    )

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
