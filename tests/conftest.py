"""
Shared pytest fixtures for staffpay tests.

Uses SQLite in-memory with StaticPool so all sessions share one connection,
meaning data written in one session is visible to others (important for HTTP client tests).
"""
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

import staffpay.models  # noqa – registers all SQLAlchemy models with Base.metadata
from staffpay.core.database import Base, get_db
from staffpay.core.security import hash_password, create_access_token
from staffpay.main import app
from staffpay.models.user import User
from staffpay.models.work_contract import WorkContract
from staffpay.models.worker import Worker

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# ── Shared engine (function-scoped: fresh DB per test) ───────────────────────

@pytest_asyncio.fixture
async def engine():
    """Creates a fresh in-memory SQLite engine per test with a shared connection pool."""
    eng = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,          # single shared connection → all sessions see same data
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield eng

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await eng.dispose()


@pytest_asyncio.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncSession:
    """Async DB session for services and direct data inspection inside tests."""
    async with session_factory() as session:
        yield session


# ── HTTP client fixture ───────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def client(session_factory) -> AsyncClient:
    """
    FastAPI test client with get_db overridden to use the test engine.
    Each request gets its own session but shares the same
    underlying connection via StaticPool.
    """
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()


# ── User fixtures ─────────────────────────────────────────────────────────────

async def _make_user(db, email: str, role: str) -> User:
    u = User(
        id=uuid.uuid4(),
        email=email,
        hashed_password=hash_password("testpass123"),
        first_name="Test",
        last_name=role.title(),
        role=role,
        is_active=True,
        created_at=datetime.now(timezone.utc),
    )
    db.add(u)
    await db.commit()
    await db.refresh(u)
    return u


@pytest_asyncio.fixture
async def admin_user(db) -> User:
    return await _make_user(db, "admin@staffpay.ci", "admin")


@pytest_asyncio.fixture
async def viewer_user(db) -> User:
    return await _make_user(db, "viewer@staffpay.ci", "viewer")


@pytest_asyncio.fixture
def admin_token(admin_user) -> str:
    return create_access_token(admin_user.id, "admin")


@pytest_asyncio.fixture
def viewer_token(viewer_user) -> str:
    return create_access_token(viewer_user.id, "viewer")


# ── Worker + contract fixtures ────────────────────────────────────────────────

async def make_worker(db, matricule: str | None = None, **kwargs) -> Worker:
    w = Worker(
        id=uuid.uuid4(),
        matricule=matricule or f"AG-{uuid.uuid4().hex[:6]}",
        first_name=kwargs.pop("first_name", "Kouassi"),
        last_name=kwargs.pop("last_name", "Yao"),
        is_active=kwargs.pop("is_active", True),
        **kwargs,
    )
    db.add(w)
    await db.commit()
    return w


async def make_contract(
    db,
    worker: Worker,
    base_salary=Decimal("150000"),
    indemnities=Decimal("0"),
    start_date: date = date(2024, 1, 1),
    end_date: date | None = None,
    status: str = "active",
    **kwargs,
) -> WorkContract:
    c = WorkContract(
        id=uuid.uuid4(),
        worker_id=worker.id,
        contract_type=kwargs.pop("contract_type", "cdi"),
        position=kwargs.pop("position", "Agent de sécurité"),
        start_date=start_date,
        end_date=end_date,
        base_salary=base_salary,
        indemnities=indemnities,
        status=status,
        **kwargs,
    )
    db.add(c)
    await db.commit()
    return c


@pytest_asyncio.fixture
async def worker(db) -> Worker:
    return await make_worker(db, matricule="AG-0001")


@pytest_asyncio.fixture
async def contract(db, worker) -> WorkContract:
    return await make_contract(db, worker)


# ── Helper ────────────────────────────────────────────────────────────────────

def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
