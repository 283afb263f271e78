"""Shared test fixtures for the LuxBroker affiliate core test suite.

Uses an in-memory SQLite database with StaticPool so all sessions share the
same connection (committed data is visible across sessions). The protective
stores run on a fresh in-memory key-value store per test.
"""

import uuid
from decimal import Decimal

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from luxbroker.database import Base, get_db
from luxbroker.main import app
from luxbroker.models import *  # noqa: ensure all models are loaded for create_all


# ---------------------------------------------------------------------------
# In-memory SQLite test engine (shared via StaticPool)
# ---------------------------------------------------------------------------

test_engine = create_async_engine(
    "sqlite+aiosqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False,
)
TestSession = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@event.listens_for(test_engine.sync_engine, "connect")
def _set_sqlite_pragma(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Auto-use: create/drop tables for every test
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after. Also reset global state."""
    from luxbroker.core.async_tasks import drain_background_tasks
    from luxbroker.core.kv_store import InMemoryKVStore, set_kv_store
    from luxbroker.core.nonce_store import reset_nonce_store
    from luxbroker.core.rate_limiter import reset_rate_limiter
    from luxbroker.services.tier_service import DEFAULT_TIER_TABLE, configure_tier_table

    set_kv_store(InMemoryKVStore())
    reset_nonce_store()
    reset_rate_limiter()
    configure_tier_table(DEFAULT_TIER_TABLE)

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await drain_background_tasks()
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    set_kv_store(None)


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
async def db():
    """Yield a fresh AsyncSession for direct service-layer tests."""
    async with TestSession() as session:
        yield session


@pytest.fixture
async def client():
    """httpx AsyncClient wired to the FastAPI app with test DB override."""
    import httpx

    async def _override_get_db():
        async with TestSession() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Seeding helpers
# ---------------------------------------------------------------------------

def _new_id() -> str:
    return str(uuid.uuid4())


def new_wallet() -> str:
    """A syntactically valid ledger address (r + 32 alphanumerics)."""
    return "r" + uuid.uuid4().hex


@pytest.fixture
def wallet():
    return new_wallet()


@pytest.fixture
def auth_header():
    """Return a callable that builds an Authorization header from a JWT."""
    def _build(token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}
    return _build


@pytest.fixture
def wallet_token():
    """Return a callable that issues a wallet session JWT."""
    from luxbroker.core.auth import create_wallet_token
    return create_wallet_token


@pytest.fixture
def make_broker(db: AsyncSession):
    """Factory fixture: create a Broker row directly."""
    from luxbroker.models.broker import Broker

    async def _make(
        wallet_address: str = None,
        referral_code: str = None,
        status: str = "active",
        tier_id: int = 1,
        referred_sellers_count: int = 0,
        total_sales_volume=0,
        total_earnings=0,
    ):
        broker = Broker(
            id=_new_id(),
            wallet_address=wallet_address or new_wallet(),
            referral_code=referral_code or uuid.uuid4().hex[:8].upper(),
            status=status,
            tier_id=tier_id,
            referred_sellers_count=referred_sellers_count,
            total_sales_volume=Decimal(str(total_sales_volume)),
            total_earnings=Decimal(str(total_earnings)),
        )
        db.add(broker)
        await db.commit()
        await db.refresh(broker)
        return broker

    return _make


@pytest.fixture
def make_seller(db: AsyncSession):
    """Factory fixture: create a Seller row directly (no attribution side effects)."""
    from luxbroker.models.seller import Seller

    async def _make(wallet_address: str = None, referred_by_broker_id: str = None):
        seller = Seller(
            id=_new_id(),
            wallet_address=wallet_address or new_wallet(),
            referred_by_broker_id=referred_by_broker_id,
        )
        db.add(seller)
        await db.commit()
        await db.refresh(seller)
        return seller

    return _make


@pytest.fixture
def make_profile(db: AsyncSession):
    """Factory fixture: create a UserProfile and return (profile, user_jwt)."""
    from luxbroker.core.auth import create_user_token
    from luxbroker.models.profile import UserProfile

    async def _make(role: str = "user", wallet_address: str = None):
        profile = UserProfile(id=_new_id(), role=role, wallet_address=wallet_address)
        db.add(profile)
        await db.commit()
        await db.refresh(profile)
        return profile, create_user_token(profile.id)

    return _make


@pytest.fixture
async def admin_headers(make_profile, auth_header):
    _, token = await make_profile(role="admin")
    return auth_header(token)
