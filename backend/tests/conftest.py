"""
Pytest fixtures for test database, client, and authentication.

Each test gets its own SQLite file so the booking core can open as many
sessions as it likes; concurrent submissions really do run in separate
transactions.
"""

import os

# Must be set before anything imports app.core.config
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./villa_booking_test.db")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("RESERVATION_LOCK_BACKEND", "local")

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.main import app
from app.api.deps import get_availability_ledger, get_booking_manager
from app.core.security import Actor, ROLE_ADMIN, ROLE_GUEST, ROLE_HOST, create_access_token
from app.db.base import Base
from app.db.session import get_db
from app.models.booking import Booking, STATUS_CONFIRMED
from app.models.user import User
from app.models.villa import Villa, VILLA_DRAFT, VILLA_PUBLISHED
from app.services.availability_ledger import AvailabilityLedger
from app.services.booking_service import BookingTransactionManager
from app.services.interfaces.local_lock import LocalReservationLock
from app.services.notification_service import InMemoryNotificationSink


@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Fresh schema in a per-test SQLite file."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'bookings.db'}", poolclass=NullPool
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


async def _persist(db: AsyncSession, *rows):
    db.add_all(rows)
    await db.commit()
    for row in rows:
        await db.refresh(row)
    return rows


@pytest_asyncio.fixture
async def guest(db_session: AsyncSession) -> User:
    (user,) = await _persist(db_session, User(email="guest@example.com", name="Gia Guest", role=ROLE_GUEST))
    return user


@pytest_asyncio.fixture
async def other_guest(db_session: AsyncSession) -> User:
    (user,) = await _persist(db_session, User(email="other@example.com", name="Omar Other", role=ROLE_GUEST))
    return user


@pytest_asyncio.fixture
async def host(db_session: AsyncSession) -> User:
    (user,) = await _persist(db_session, User(email="host@example.com", name="Hana Host", role=ROLE_HOST))
    return user


@pytest_asyncio.fixture
async def admin(db_session: AsyncSession) -> User:
    (user,) = await _persist(db_session, User(email="admin@example.com", name="Ada Admin", role=ROLE_ADMIN))
    return user


@pytest_asyncio.fixture
async def villa(db_session: AsyncSession, host: User) -> Villa:
    """Published villa: 200/night, 50 cleaning, 25 service, min 2 nights, sleeps 4."""
    (row,) = await _persist(
        db_session,
        Villa(
            host_user_id=host.id,
            name="Casa Azul",
            location="Tulum",
            price_per_night=Decimal("200.00"),
            cleaning_fee=Decimal("50.00"),
            service_fee=Decimal("25.00"),
            minimum_stay_nights=2,
            occupancy=4,
            cancellation_policy="flexible",
            status=VILLA_PUBLISHED,
        ),
    )
    return row


@pytest_asyncio.fixture
async def draft_villa(db_session: AsyncSession, host: User) -> Villa:
    (row,) = await _persist(
        db_session,
        Villa(
            host_user_id=host.id,
            name="Unfinished Loft",
            location="Lisbon",
            price_per_night=Decimal("120.00"),
            minimum_stay_nights=1,
            occupancy=2,
            status=VILLA_DRAFT,
        ),
    )
    return row


@pytest_asyncio.fixture
async def retreat_villa(db_session: AsyncSession, host: User) -> Villa:
    """Published group retreat that sleeps 80."""
    (row,) = await _persist(
        db_session,
        Villa(
            host_user_id=host.id,
            name="Hacienda Grande",
            location="Oaxaca",
            price_per_night=Decimal("1500.00"),
            minimum_stay_nights=1,
            occupancy=80,
            status=VILLA_PUBLISHED,
        ),
    )
    return row


@pytest_asyncio.fixture
async def confirmed_booking(db_session: AsyncSession, villa: Villa, other_guest: User) -> Booking:
    """Confirmed stay 2024-06-10 -> 2024-06-15 on the published villa."""
    (row,) = await _persist(
        db_session,
        Booking(
            villa_id=villa.id,
            guest_user_id=other_guest.id,
            host_user_id=villa.host_user_id,
            start_date=date(2024, 6, 10),
            end_date=date(2024, 6, 15),
            adults=2,
            nights=5,
            subtotal=Decimal("1000.00"),
            cleaning_fee=Decimal("50.00"),
            service_fee=Decimal("25.00"),
            total_price=Decimal("1075.00"),
            status=STATUS_CONFIRMED,
        ),
    )
    return row


@pytest.fixture
def reservation_lock() -> LocalReservationLock:
    return LocalReservationLock(wait_timeout=5.0)


@pytest.fixture
def notification_sink() -> InMemoryNotificationSink:
    return InMemoryNotificationSink()


@pytest.fixture
def ledger(session_factory, reservation_lock) -> AvailabilityLedger:
    return AvailabilityLedger(session_factory, reservation_lock)


@pytest.fixture
def manager(session_factory, ledger, reservation_lock, notification_sink) -> BookingTransactionManager:
    return BookingTransactionManager(session_factory, ledger, reservation_lock, notification_sink)


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, ledger, manager) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client wired to the per-test database and booking core."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_availability_ledger] = lambda: ledger
    app.dependency_overrides[get_booking_manager] = lambda: manager

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def actor_for():
    def build(user: User) -> Actor:
        return Actor(user_id=user.id, role=user.role)
    return build


@pytest.fixture
def auth_headers_for():
    """Authorization headers with a Bearer token for a given user."""
    def build(user: User) -> dict:
        token = create_access_token(data={"sub": str(user.id), "role": user.role})
        return {"Authorization": f"Bearer {token}"}
    return build
