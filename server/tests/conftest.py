"""Test configuration and fixtures."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("BEARER_TOKEN_SECRET", "test-secret")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("SWEEP_WORKER_ENABLED", "false")

from datetime import datetime, timedelta  # noqa: E402
from typing import List  # noqa: E402

import jwt  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool, StaticPool  # noqa: E402

from waitlist_engine import models  # noqa: E402,F401
from waitlist_engine.core.config import settings  # noqa: E402
from waitlist_engine.core.database import Base  # noqa: E402
from waitlist_engine.schemas.waitlist import WaitlistMessage  # noqa: E402
from waitlist_engine.services.booking_gateway import LocalBookingGateway  # noqa: E402
from waitlist_engine.services.notifier import NotificationDispatcher, Notifier  # noqa: E402
from waitlist_engine.services.waitlist_service import WaitlistService  # noqa: E402

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

START = datetime(2026, 3, 2, 9, 0, 0)
SLOT = datetime(2026, 3, 30, 10, 0, 0)
CONFIRMATION_BASE_URL = "https://book.example.com"


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now += timedelta(**delta)
        return self.now


class RecordingNotifier(Notifier):
    """Notifier double that remembers every message it was handed."""

    def __init__(self, fail: bool = False, explode: bool = False):
        self.fail = fail
        self.explode = explode
        self.messages: List[WaitlistMessage] = []

    async def notify(self, message: WaitlistMessage) -> bool:
        self.messages.append(message)
        if self.explode:
            raise ConnectionError("notifier unreachable")
        return not self.fail

    def for_entry(self, entry_id) -> List[WaitlistMessage]:
        return [m for m in self.messages if m.entry_id == str(entry_id)]


def make_token(user_id: str, role: str = "client", **claims) -> str:
    payload = {"sub": user_id, "role": role, **claims}
    return jwt.encode(payload, settings.bearer_token_secret, algorithm="HS256")


def auth_headers(user_id: str, role: str = "client") -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, role)}"}


async def create_schema(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_schema(engine)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_session(test_engine):
    """Create a test database session."""
    async_session = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def file_session_factory(tmp_path):
    """
    Session factory over a file-backed database.

    Every session gets its own connection, so concurrent sessions contend for
    the database lock the way separate server processes would.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'waitlist.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    await create_schema(engine)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    await engine.dispose()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def dispatcher(notifier):
    return NotificationDispatcher(
        notifier,
        confirmation_base_url=CONFIRMATION_BASE_URL,
        confirmation_window=timedelta(minutes=15),
    )


@pytest.fixture
def service(test_session, dispatcher, clock):
    return WaitlistService(
        test_session,
        dispatcher=dispatcher,
        booking_gateway=LocalBookingGateway(),
        clock=clock,
    )


@pytest.fixture
def enroll(service):
    """Enroll a client into the default slot group."""

    async def _enroll(client_id: str, **overrides):
        fields = {
            "client_id": client_id,
            "service_id": "svc-haircut",
            "employee_id": "emp-sam",
            "requested_date_time": SLOT,
            "duration": 45,
            "addon_ids": [],
            "total_price": 4500,
        }
        fields.update(overrides)
        return await service.enroll(**fields)

    return _enroll


@pytest_asyncio.fixture(scope="function")
async def test_app(test_session, dispatcher, clock):
    """Create a test FastAPI application without lifespan."""
    from waitlist_engine.core.dependencies import get_booking_gateway, get_clock, get_db, get_dispatcher
    from waitlist_engine.main import create_app

    app = create_app(use_lifespan=False)

    async def override_get_db():
        yield test_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_booking_gateway] = lambda: LocalBookingGateway()

    yield app

    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app):
    """Create a test HTTP client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def sample_enroll_data():
    """Sample enrollment payload."""
    return {
        "service_id": "svc-haircut",
        "employee_id": "emp-sam",
        "requested_date_time": "2026-03-30T10:00:00Z",
        "duration_minutes": 45,
        "selected_addon_ids": ["addon-wash", "addon-beard", "addon-wash"],
        "total_price": 5200,
    }
