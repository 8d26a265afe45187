"""
Pytest configuration and fixtures for Care Ledger tests.

Il database di test è SQLite in memoria (aiosqlite) con StaticPool,
ricreato per ogni test da Base.metadata.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("NOTIFICATION_POLL_ENABLED", "false")

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fastapi import HTTPException, status
from sqlalchemy import event, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from careledger.core.database import get_db
from careledger.core.deps import get_current_user
from careledger.core.security import hash_password
from careledger.main import app
from careledger.models import (
    AdminBranch,
    Base,
    Booking,
    BookingChangeRequest,
    BookingStatus,
    Branch,
    Client,
    Invoice,
    Organization,
    Staff,
    User,
    UserRole,
)


# ============================================================
# Database di test
# ============================================================

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False,
)


# pysqlite non gestisce da solo BEGIN/SAVEPOINT: serve per begin_nested().
# Dopo un rollback gli oggetti della sessione sono scaduti: i test che
# verificano lo stato dopo un errore leggono gli id prima dell'errore e
# ricaricano con query esplicite.
@event.listens_for(test_engine.sync_engine, "connect")
def _sqlite_connect(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(test_engine.sync_engine, "begin")
def _sqlite_begin(conn):
    conn.exec_driver_sql("BEGIN")


TestingSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Sessione su un database pulito per ogni test."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestingSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def mock_db():
    """Crea un mock di AsyncSession per i percorsi di errore."""
    db = AsyncMock(spec=AsyncSession)
    db.execute = AsyncMock()
    db.add = MagicMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.flush = AsyncMock()
    db.delete = AsyncMock()
    return db


# ============================================================
# Factory
# ============================================================

async def make_user(db: AsyncSession, role: UserRole, email: str = None, full_name: str = "Test User") -> User:
    user = User(
        email=email or f"{role.value}-{uuid.uuid4().hex[:8]}@example.com",
        hashed_password=hash_password("password123"),
        full_name=full_name,
        role=role.value,
    )
    db.add(user)
    await db.commit()
    return user


async def make_staff(
    db: AsyncSession,
    branch: Branch,
    user: User = None,
    first_name: str = "Anna",
    last_name: str = "Carer",
    is_active: bool = True,
) -> Staff:
    staff = Staff(
        branch_id=branch.id,
        auth_user_id=user.id if user else None,
        first_name=first_name,
        last_name=last_name,
        email=user.email if user else None,
        hourly_rate=Decimal("15.00"),
        is_active=is_active,
    )
    db.add(staff)
    await db.commit()
    return staff


async def make_booking(
    db: AsyncSession,
    branch: Branch,
    client: Client,
    staff: Staff = None,
    start_time: datetime = None,
    duration: timedelta = timedelta(hours=1),
    status: BookingStatus = BookingStatus.ASSIGNED,
) -> Booking:
    start_time = start_time or datetime(2025, 5, 20, 9, 0, tzinfo=timezone.utc)
    booking = Booking(
        branch_id=branch.id,
        client_id=client.id,
        staff_id=staff.id if staff else None,
        start_time=start_time,
        end_time=start_time + duration,
        status=status.value,
    )
    db.add(booking)
    await db.commit()
    return booking


async def make_change_request(
    db: AsyncSession,
    booking: Booking,
    request_type: str,
    new_date=None,
    new_time: str = None,
    status: str = "pending",
) -> BookingChangeRequest:
    request = BookingChangeRequest(
        booking_id=booking.id,
        client_id=booking.client_id,
        branch_id=booking.branch_id,
        request_type=request_type,
        status=status,
        reason="Family commitment",
        new_date=new_date,
        new_time=new_time,
    )
    db.add(request)
    await db.commit()
    return request


async def make_invoice(
    db: AsyncSession,
    organization: Organization,
    branch: Branch,
    client: Client,
    total=Decimal("100.00"),
    amount=None,
    is_locked: bool = False,
    invoice_number: str = "INV-2025-0001",
) -> Invoice:
    invoice = Invoice(
        organization_id=organization.id,
        branch_id=branch.id,
        client_id=client.id,
        invoice_number=invoice_number,
        invoice_date=datetime(2025, 6, 1).date(),
        due_date=datetime(2025, 7, 1).date(),
        start_date=datetime(2025, 5, 1).date(),
        end_date=datetime(2025, 5, 31).date(),
        total=total,
        amount=amount,
        is_locked=is_locked,
    )
    db.add(invoice)
    await db.commit()
    if total is None:
        # il default di colonna ha scritto 0.00: serve un NULL vero
        await db.execute(update(Invoice).where(Invoice.id == invoice.id).values(total=None))
        await db.commit()
        await db.refresh(invoice)
    return invoice


# ============================================================
# Fixture di dominio
# ============================================================

@pytest.fixture
async def organization(db_session) -> Organization:
    org = Organization(name="Sunrise Care")
    db_session.add(org)
    await db_session.commit()
    return org


@pytest.fixture
async def branch(db_session, organization) -> Branch:
    branch = Branch(organization_id=organization.id, name="Leeds")
    db_session.add(branch)
    await db_session.commit()
    return branch


@pytest.fixture
async def admin_user(db_session, branch) -> User:
    user = await make_user(db_session, UserRole.BRANCH_ADMIN, full_name="Branch Admin")
    db_session.add(AdminBranch(admin_id=user.id, branch_id=branch.id))
    await db_session.commit()
    return user


@pytest.fixture
async def client_user(db_session) -> User:
    return await make_user(db_session, UserRole.CLIENT, email="client@example.com", full_name="Mary Client")


@pytest.fixture
async def carer_user(db_session) -> User:
    return await make_user(db_session, UserRole.CARER, full_name="Anna Carer")


@pytest.fixture
async def client(db_session, branch, client_user) -> Client:
    client = Client(
        branch_id=branch.id,
        auth_user_id=client_user.id,
        first_name="Mary",
        last_name="Client",
        email=client_user.email,
    )
    db_session.add(client)
    await db_session.commit()
    return client


@pytest.fixture
async def staff(db_session, branch, carer_user) -> Staff:
    return await make_staff(db_session, branch, carer_user)


@pytest.fixture
async def booking(db_session, branch, client, staff) -> Booking:
    return await make_booking(db_session, branch, client, staff)


@pytest.fixture
async def invoice(db_session, organization, branch, client) -> Invoice:
    return await make_invoice(db_session, organization, branch, client)


# ============================================================
# Client HTTP
# ============================================================

@pytest.fixture
def current_user_holder():
    """Utente restituito da get_current_user nei test API."""
    return {"user": None}


@pytest.fixture
async def api_client(db_session, current_user_holder) -> AsyncGenerator[httpx.AsyncClient, None]:
    async def override_get_db():
        yield db_session

    async def override_get_current_user():
        if current_user_holder["user"] is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
        return current_user_holder["user"]

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
