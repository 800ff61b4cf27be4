"""Test fixtures for StockWatch tests."""

import os

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from fakes import FakeProber, FakeSessionFactory, RecordingNotifier, StubSite, build_checker
from stockwatch.core.dependencies import get_monitor
from stockwatch.database import Base, get_db
from stockwatch.main import app
from stockwatch.services.check_runner import CheckRunner
from stockwatch.services.monitor import Monitor
from stockwatch.services.priority_scheduler import PriorityScheduler
from stockwatch.services.repository import SqlTargetStore
from stockwatch.workers.dispatcher import DispatchCycle

# Use SQLite for tests by default (no external DB needed).
# Override with TEST_DATABASE_URL env var for PostgreSQL integration tests.
TEST_DATABASE_URL = os.getenv(
    "TEST_DATABASE_URL",
    "sqlite+aiosqlite:///./test.db",
)

_connect_args = {}
if "sqlite" in TEST_DATABASE_URL:
    _connect_args["check_same_thread"] = False

engine = create_async_engine(TEST_DATABASE_URL, echo=False, connect_args=_connect_args)
TestSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(autouse=True)
async def setup_db():
    """Create tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def db() -> AsyncSession:
    """Get a test database session."""
    async with TestSessionLocal() as session:
        yield session


@pytest.fixture
def site() -> StubSite:
    """The page every fake browser session renders."""
    return StubSite()


@pytest.fixture
def prober() -> FakeProber:
    return FakeProber()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
async def monitor(site: StubSite, prober: FakeProber, notifier: RecordingNotifier) -> Monitor:
    """A monitor wired to the test database and fake browser sessions (ticker not started)."""
    checker = build_checker(factory=FakeSessionFactory(site), prober=prober)
    scheduler = PriorityScheduler()
    store = SqlTargetStore(TestSessionLocal)
    runner = CheckRunner(checker=checker, scheduler=scheduler, store=store, notifier=notifier)
    dispatcher = DispatchCycle(store=store, scheduler=scheduler, runner=runner, worker_count=2)
    monitor = Monitor(
        pool=checker.pool,
        cache=checker.cache,
        checker=checker,
        scheduler=scheduler,
        store=store,
        runner=runner,
        dispatcher=dispatcher,
    )
    yield monitor
    await monitor.stop()


@pytest.fixture
async def client(db: AsyncSession, monitor: Monitor) -> AsyncClient:
    """Get an HTTP client with test DB and monitor injected."""

    async def override_get_db():
        yield db

    async def override_get_monitor():
        return monitor

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_monitor] = override_get_monitor
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def owner_headers() -> dict:
    return {"X-Owner-Id": "user-1"}
