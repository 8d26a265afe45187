"""
Modelli SQLAlchemy per organizzazioni, filiali e anagrafiche
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)

Contiene:
- Organization: Tenant del sistema
- Branch: Filiale di un'organizzazione
- AdminBranch: Associazione amministratore ↔ filiale
- Client: Assistito (destinatario delle visite)
- Staff: Operatore/carer
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import ForeignKey, Index, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from careledger.models import Base
from careledger.models.mixins import SoftDeleteMixin, TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from careledger.models.user import User


class Organization(Base, UUIDMixin, TimestampMixin):
    """Tenant: ogni dato è filtrato per organizzazione e/o filiale."""

    __tablename__ = "organizations"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    branches: Mapped[List["Branch"]] = relationship(
        "Branch",
        back_populates="organization",
        cascade="all, delete-orphan",
    )


class Branch(Base, UUIDMixin, TimestampMixin):
    """Filiale operativa di un'organizzazione."""

    __tablename__ = "branches"

    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    organization: Mapped["Organization"] = relationship(
        "Organization",
        back_populates="branches",
    )


class AdminBranch(Base, UUIDMixin, TimestampMixin):
    """Amministratore assegnato a una filiale (destinatario delle notifiche di filiale)."""

    __tablename__ = "admin_branches"

    admin_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        doc="UUID dell'utente amministratore",
    )
    branch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("branches.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    __table_args__ = (
        UniqueConstraint("admin_id", "branch_id", name="uq_admin_branches_admin_branch"),
    )


class Client(Base, UUIDMixin, TimestampMixin):
    """
    Assistito.

    Attributes:
        branch_id: Filiale di appartenenza
        auth_user_id: Account di accesso (opzionale: non tutti i clienti hanno un login)
    """

    __tablename__ = "clients"

    branch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("branches.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    auth_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    auth_user: Mapped[Optional["User"]] = relationship("User", lazy="selectin")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Staff(Base, UUIDMixin, TimestampMixin, SoftDeleteMixin):
    """
    Operatore (carer).

    Attributes:
        branch_id: Filiale di appartenenza
        auth_user_id: Account di accesso
        hourly_rate: Tariffa oraria base usata per l'extra time
    """

    __tablename__ = "staff"

    branch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("branches.id", ondelete="RESTRICT"),
        nullable=False,
    )
    auth_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    hourly_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    __table_args__ = (
        Index("ix_staff_branch_active", "branch_id", "is_active"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
