"""
Pytest fixtures for test database, client, gateway and authentication.

Each test gets a fresh schema on its own engine. By default that is an
in-memory SQLite database; point TEST_DATABASE_URL at PostgreSQL to run the
suite against the production dialect.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["REDIS_ENABLED"] = "false"
os.environ["PAYMENT_GATEWAY"] = "sandbox"

from datetime import date, timedelta
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tablebook.core.config import get_settings
from tablebook.core.security import create_access_token
from tablebook.db.base import Base
from tablebook.db.session import get_db
from tablebook.domain.signatures import sign_payment
from tablebook.main import app
from tablebook.models.branch import Branch
from tablebook.models.table import Table
from tablebook.models.user import User
from tablebook.services.gateway_factory import get_gateway
from tablebook.services.interfaces.sandbox_gateway import SandboxGateway

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

settings = get_settings()

OPEN_DAY = {"open": "10:00", "close": "23:00", "is_open": True}
OPERATING_HOURS = {
    "monday": OPEN_DAY,
    "tuesday": OPEN_DAY,
    "wednesday": OPEN_DAY,
    "thursday": OPEN_DAY,
    "friday": OPEN_DAY,
    "saturday": {"open": "09:00", "close": "23:30", "is_open": True},
    "sunday": {"open": "10:00", "close": "22:00", "is_open": False},
}


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    return {}


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create tables, yield session, then drop tables for isolation."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, **_engine_kwargs(TEST_DATABASE_URL))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def gateway() -> SandboxGateway:
    return SandboxGateway()


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession, gateway: SandboxGateway) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client that overrides the DB and gateway dependencies."""

    async def override_get_db():
        try:
            yield db_session
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Users and tokens
# ---------------------------------------------------------------------------


async def _add_user(db: AsyncSession, email: str, name: str, role: str = "customer", tier: str = "Bronze") -> User:
    user = User(email=email, name=name, role=role, membership_tier=tier, loyalty_points=0)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


def _headers_for(user: User) -> dict:
    token = create_access_token(data={"sub": str(user.id), "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def customer(db_session: AsyncSession) -> User:
    return await _add_user(db_session, "guest@example.com", "Asha Guest")


@pytest_asyncio.fixture
async def other_customer(db_session: AsyncSession) -> User:
    return await _add_user(db_session, "other@example.com", "Ravi Other")


@pytest_asyncio.fixture
async def admin(db_session: AsyncSession) -> User:
    return await _add_user(db_session, "admin@example.com", "Meera Admin", role="admin")


@pytest.fixture
def auth_headers(customer: User) -> dict:
    return _headers_for(customer)


@pytest.fixture
def other_headers(other_customer: User) -> dict:
    return _headers_for(other_customer)


@pytest.fixture
def admin_headers(admin: User) -> dict:
    return _headers_for(admin)


# ---------------------------------------------------------------------------
# Branch and tables
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def branch(db_session: AsyncSession) -> Branch:
    branch = Branch(
        name="Indiranagar",
        timezone="UTC",
        operating_hours=OPERATING_HOURS,
        total_seats=40,
        max_party_size=12,
        free_cancellation_hours=24,
        cancellation_fee=Decimal("100.00"),
    )
    db_session.add(branch)
    await db_session.commit()
    await db_session.refresh(branch)
    return branch


@pytest_asyncio.fixture
async def tables(db_session: AsyncSession, branch: Branch) -> list[Table]:
    """T1: 4 seats Casual, T2: 8 seats Premium (x1.5), T3: 2 seats Casual."""
    rows = [
        Table(branch_id=branch.id, table_number="1", seats=4, theme="Casual", price_multiplier=1.0),
        Table(branch_id=branch.id, table_number="2", seats=8, theme="Premium", price_multiplier=1.5),
        Table(branch_id=branch.id, table_number="3", seats=2, theme="Casual", price_multiplier=1.0),
    ]
    db_session.add_all(rows)
    await db_session.commit()
    for row in rows:
        await db_session.refresh(row)
    return rows


@pytest_asyncio.fixture
async def table(tables: list[Table]) -> Table:
    return tables[0]


@pytest.fixture
def booking_day() -> date:
    """A Monday at least a week out, comfortably inside the free-cancellation window."""
    day = date.today() + timedelta(days=7)
    return day + timedelta(days=(7 - day.weekday()) % 7)


@pytest.fixture
def closed_day(booking_day: date) -> date:
    return booking_day + timedelta(days=6)  # Sunday


def booking_payload(branch_id: int, table_id: int, day: date, start="19:00", end="21:00", party_size=2, **extra) -> dict:
    payload = {
        "branch_id": branch_id,
        "table_id": table_id,
        "booking_date": day.isoformat(),
        "start_time": start,
        "end_time": end,
        "party_size": party_size,
        "items": [{"name": "Chef's tasting menu", "unit_price": "250.00", "quantity": 2}],
    }
    payload.update(extra)
    return payload


@pytest.fixture
def make_booking(client: AsyncClient, branch: Branch, table: Table, booking_day: date, auth_headers: dict):
    """Create a booking through the API and return the JSON body."""
    branch_id, default_table_id = branch.id, table.id

    async def _make(start="19:00", end="21:00", table_id=None, headers=None, day=None, **extra) -> dict:
        response = await client.post(
            "/api/v1/bookings/",
            json=booking_payload(
                branch_id, table_id or default_table_id, day or booking_day, start, end, **extra
            ),
            headers=headers or auth_headers,
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _make


@pytest.fixture
def pay_booking(client: AsyncClient, auth_headers: dict):
    """Run create-order + verify for a booking. Returns (order JSON, verify response)."""

    async def _pay(booking_id: int, gateway_payment_id: str = "pay_test0001", headers=None):
        headers = headers or auth_headers
        order = await client.post(
            "/api/v1/payments/create-order", json={"booking_id": booking_id}, headers=headers
        )
        assert order.status_code == 201, order.text
        order_id = order.json()["order_id"]
        verify = await client.post(
            "/api/v1/payments/verify",
            json={
                "order_id": order_id,
                "payment_id": gateway_payment_id,
                "signature": sign_payment(settings.RAZORPAY_KEY_SECRET, order_id, gateway_payment_id),
            },
            headers=headers,
        )
        return order.json(), verify

    return _pay
