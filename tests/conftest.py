"""
Pytest configuration and fixtures.

Every test gets its own SQLite database file (aiosqlite), a fresh
in-memory event broker and a fresh table lock registry. The API is
exercised through httpx.ASGITransport, so no server is started.
"""

import itertools

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import tableside.models  # noqa: F401
from tableside.client.api import ApiClient
from tableside.client.cache import MemoryCache
from tableside.client.session import SessionHolder
from tableside.database import Base, get_db
from tableside.main import app, get_table_locks
from tableside.schemas import OrderItem, OrderSubmit
from tableside.services.events import InMemoryEventBroker, get_event_broker
from tableside.services.orders import OrderService, TableLockRegistry
from tests.menu import NOODLES, PANEER

_tokens = itertools.count(1)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tableside.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def broker():
    return InMemoryEventBroker()


@pytest.fixture
def locks():
    return TableLockRegistry()


@pytest.fixture
def order_service(db_session, broker, locks):
    return OrderService(db_session, broker, locks)


@pytest.fixture
def make_submission():
    """Build an OrderSubmit with a fresh token unless one is given."""

    def _make(table_key="7", lines=((PANEER, 2), (NOODLES, 1)), token=None, **extra):
        return OrderSubmit(
            submission_id=token or f"test-token-{next(_tokens):04d}",
            table_key=table_key,
            items=[OrderItem(**product, quantity=qty) for product, qty in lines],
            **extra,
        )

    return _make


@pytest_asyncio.fixture
async def app_client(session_maker, broker, locks):
    """HTTP client bound to the app, with database, broker and locks overridden."""

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_broker] = lambda: broker
    app.dependency_overrides[get_table_locks] = lambda: locks

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def api(app_client):
    """Client-side ApiClient talking to the same app."""
    client = ApiClient("http://test", session=SessionHolder(), transport=ASGITransport(app=app))
    yield client
    await client.aclose()


@pytest.fixture
def cache():
    return MemoryCache()
