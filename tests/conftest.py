"""Shared test fixtures — async DB, client, auth helpers, factories.

Reusable across all test modules (salary, tax, payroll, cycles, disbursements).
Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import hashlib
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from payroll_backend.common.constants import UserRole
from payroll_backend.config import settings
from payroll_backend.database import Base, get_db
from payroll_backend.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
# (e.g. Payroll → Employee, SalaryDisbursement → Payroll, etc.)
import payroll_backend.auth.models  # noqa: F401
import payroll_backend.core_hr.models  # noqa: F401
import payroll_backend.leave.models  # noqa: F401
import payroll_backend.attendance.models  # noqa: F401
import payroll_backend.notifications.models  # noqa: F401
import payroll_backend.common.audit  # noqa: F401
import payroll_backend.expenses.models  # noqa: F401
import payroll_backend.salary.models  # noqa: F401
import payroll_backend.tax.models  # noqa: F401
import payroll_backend.payroll.models  # noqa: F401
import payroll_backend.payroll_cycle.models  # noqa: F401
import payroll_backend.disbursement.models  # noqa: F401

# ── SQLite compat: compile PG-specific types to TEXT/BLOB ───────────

from sqlalchemy.dialects.postgresql import INET, JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(INET, "sqlite")
def _inet_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Register PG-compatible functions for SQLite
@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() and uuid_generate_v4() as SQLite custom functions."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )
    dbapi_conn.create_function(
        "uuid_generate_v4", 0, lambda: str(uuid.uuid4()),
    )
    dbapi_conn.create_function(
        "gen_random_uuid", 0, lambda: str(uuid.uuid4()),
    )

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from payroll_backend.common.rate_limit import limiter
    try:
        # Clear the in-memory storage used by slowapi/limits
        if hasattr(limiter, '_storage'):
            limiter._storage.reset()
    except Exception:
        pass
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Model factories ─────────────────────────────────────────────────

def _make_location(
    *,
    name: str = "Mumbai HQ",
    city: str = "Mumbai",
    state: str = "Maharashtra",
) -> dict:
    return dict(
        id=uuid.uuid4(),
        name=name,
        city=city,
        state=state,
        timezone="Asia/Kolkata",
        is_active=True,
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )


def _make_department(
    *,
    name: str = "Engineering",
    code: str = "ENG",
    location_id: uuid.UUID | None = None,
) -> dict:
    return dict(
        id=uuid.uuid4(),
        name=name,
        code=code,
        location_id=location_id,
        is_active=True,
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )


def _make_employee(
    *,
    email: str = "test.user@creativefuel.io",
    first_name: str = "Test",
    last_name: str = "User",
    department_id: uuid.UUID | None = None,
    location_id: uuid.UUID | None = None,
    date_of_joining: date = date(2024, 1, 15),
    bank_details: dict | None = None,
) -> dict:
    return dict(
        id=uuid.uuid4(),
        employee_code=f"CF-{uuid.uuid4().hex[:6].upper()}",
        first_name=first_name,
        last_name=last_name,
        email=email,
        date_of_joining=date_of_joining,
        employment_status="active",
        department_id=department_id,
        location_id=location_id,
        pan_number="ABCDE1234F",
        bank_details=bank_details if bank_details is not None else {
            "account_number": "50100012345678",
            "ifsc_code": "HDFC0001234",
            "bank_name": "HDFC Bank",
            "account_holder_name": f"{first_name} {last_name}",
        },
        is_active=True,
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )


@pytest.fixture
async def test_location(db) -> dict:
    """Insert a test location and return its data dict."""
    from payroll_backend.core_hr.models import Location

    data = _make_location()
    db.add(Location(**data))
    await db.flush()
    return data


@pytest.fixture
async def test_department(db, test_location) -> dict:
    """Insert a test department linked to test_location."""
    from payroll_backend.core_hr.models import Department

    data = _make_department(location_id=test_location["id"])
    db.add(Department(**data))
    await db.flush()
    return data


@pytest.fixture
async def test_employee(db, test_department, test_location) -> dict:
    """Insert an active employee with department + location."""
    from payroll_backend.core_hr.models import Employee

    data = _make_employee(
        department_id=test_department["id"],
        location_id=test_location["id"],
    )
    db.add(Employee(**data))
    await db.flush()
    return data


@pytest.fixture
async def hr_admin(db, test_department, test_location) -> dict:
    """Insert a second employee who acts as the HR approver."""
    from payroll_backend.core_hr.models import Employee

    data = _make_employee(
        email="hr.admin@creativefuel.io",
        first_name="Hema",
        last_name="Rao",
        department_id=test_department["id"],
        location_id=test_location["id"],
    )
    db.add(Employee(**data))
    await db.flush()
    return data


@pytest.fixture
async def finance_admin(db, test_department, test_location) -> dict:
    """Insert a third employee who acts as the finance approver."""
    from payroll_backend.core_hr.models import Employee

    data = _make_employee(
        email="finance.admin@creativefuel.io",
        first_name="Farhan",
        last_name="Iyer",
        department_id=test_department["id"],
        location_id=test_location["id"],
    )
    db.add(Employee(**data))
    await db.flush()
    return data


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    employee_id: uuid.UUID,
    role: UserRole = UserRole.employee,
    expired: bool = False,
) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRY_HOURS)
    payload = {
        "sub": str(employee_id),
        "role": role.value,
        "type": "access",
        "exp": exp,
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


async def make_auth_headers(
    db: AsyncSession,
    employee_id: uuid.UUID,
    role: UserRole = UserRole.employee,
) -> dict[str, str]:
    """Persist a session carrying *role* and return Bearer headers for it."""
    from payroll_backend.auth.models import UserSession

    token = create_access_token(employee_id, role=role)
    session = UserSession(
        id=uuid.uuid4(),
        employee_id=employee_id,
        token_hash=hashlib.sha256(token.encode()).hexdigest(),
        role=role.value,
        expires_at=datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRY_HOURS),
        is_revoked=False,
        created_at=datetime.now(timezone.utc),
    )
    db.add(session)
    await db.flush()
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def auth_headers(db, test_employee) -> dict[str, str]:
    """Return Bearer auth headers with a valid session persisted in the DB."""
    return await make_auth_headers(db, test_employee["id"])


# ── Payroll input helpers ───────────────────────────────────────────

async def create_approved_structure(
    db: AsyncSession,
    employee_id: uuid.UUID,
    *,
    ctc: int = 600000,
    basic_salary: int = 25000,
    special_allowance: int = 5150,
    effective_date: date = date(2024, 4, 1),
    approver_id: uuid.UUID | None = None,
    **fields,
):
    """Create and approve a salary structure (monthly gross 43,000 by default)."""
    from payroll_backend.salary.schemas import SalaryStructureCreate
    from payroll_backend.salary.service import SalaryStructureService

    structure = await SalaryStructureService.create_structure(
        db,
        SalaryStructureCreate(
            employee_id=employee_id,
            effective_date=effective_date,
            ctc=ctc,
            basic_salary=basic_salary,
            special_allowance=special_allowance,
            **fields,
        ),
    )
    return await SalaryStructureService.approve_structure(
        db, structure.id, approver_id or employee_id,
    )


async def seed_attendance(
    db: AsyncSession,
    employee_id: uuid.UUID,
    month: int,
    year: int,
    *,
    statuses: dict[int, str] | None = None,
    overtime_minutes: dict[int, int] | None = None,
) -> int:
    """Insert one attendance row per weekday of the month (present unless
    overridden by day-of-month in ``statuses``). Returns the row count."""
    import calendar

    from payroll_backend.attendance.models import AttendanceRecord

    statuses = statuses or {}
    overtime_minutes = overtime_minutes or {}
    count = 0
    for day in range(1, calendar.monthrange(year, month)[1] + 1):
        current = date(year, month, day)
        if current.weekday() >= 5:
            continue
        db.add(AttendanceRecord(
            id=uuid.uuid4(),
            employee_id=employee_id,
            date=current,
            status=statuses.get(day, "present"),
            overtime_minutes=overtime_minutes.get(day, 0),
        ))
        count += 1
    await db.flush()
    return count
