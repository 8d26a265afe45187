"""
Modelli Database SQLAlchemy
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)

Import centralizzato di tutti i modelli per create_all e usage generico.
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class per tutti i modelli SQLAlchemy."""
    pass


from careledger.models.user import User, UserRole
from careledger.models.organization import AdminBranch, Branch, Client, Organization, Staff
from careledger.models.booking import (
    Booking,
    BookingChangeRequest,
    BookingStatus,
    BookingUnavailabilityRequest,
    ChangeRequestType,
    RequestStatus,
)
from careledger.models.invoice import (
    Expense,
    ExtraTimeRecord,
    Invoice,
    InvoiceExpenseEntry,
    InvoiceLineItem,
)
from careledger.models.notification import (
    Notification,
    NotificationCategory,
    NotificationPriority,
    NotificationType,
)

__all__ = [
    "Base",
    "User",
    "UserRole",
    "Organization",
    "Branch",
    "AdminBranch",
    "Client",
    "Staff",
    "Booking",
    "BookingStatus",
    "BookingChangeRequest",
    "BookingUnavailabilityRequest",
    "ChangeRequestType",
    "RequestStatus",
    "Invoice",
    "InvoiceLineItem",
    "Expense",
    "InvoiceExpenseEntry",
    "ExtraTimeRecord",
    "Notification",
    "NotificationCategory",
    "NotificationPriority",
    "NotificationType",
]
