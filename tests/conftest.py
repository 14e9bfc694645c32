"""
Test configuration and fixtures.

Provides:
- Fresh in-memory SQLite database per test (SAVEPOINT-capable engine)
- Recording realtime rooms and a dict-backed session resolver
- MessagingService wired with an adjustable clock
- HTTPX AsyncClient with dependency overrides
"""
import os
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Generator

# Before any erp_messaging import: disables HTTP rate limits, avoids a file DB
os.environ["TESTING"] = "1"
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session, sessionmaker

from erp_messaging.core.deps import get_db, get_session_resolver
from erp_messaging.core.errors import TransportError
from erp_messaging.core.presence import PresenceRegistry
from erp_messaging.core.rate_limit import SenderRateLimiter
from erp_messaging.db import models  # noqa: F401
from erp_messaging.db.base import Base
from erp_messaging.db.session import build_engine
from erp_messaging.main import app
from erp_messaging.services.messaging_service import MessagingService
from erp_messaging.services.messaging_store import MessagingStore


# =============================================================================
# Fakes
# =============================================================================

class RecordingRoom:
    def __init__(self, rooms: "RecordingRooms", company_id: int):
        self.rooms = rooms
        self.company_id = company_id

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        self.rooms.events.append((self.company_id, event, payload))


class RecordingRooms:
    """Realtime transport fake: keeps every emitted (company_id, event, payload)."""

    def __init__(self):
        self.events: list[tuple[int, str, dict[str, Any]]] = []

    def room(self, company_id: int) -> RecordingRoom:
        return RecordingRoom(self, company_id)

    def names(self, company_id: int | None = None) -> list[str]:
        return [event for cid, event, _ in self.events if company_id is None or cid == company_id]


class FailingRooms:
    def room(self, company_id: int):
        raise TransportError("socket layer down")


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


STAFF = {"messaging": True}

SESSIONS: dict[tuple[str, int], dict[str, Any]] = {
    ("E1", 1): {"role": "Staff", "permissions": STAFF},
    ("E2", 1): {"role": "Staff", "permissions": STAFF},
    ("E3", 1): {"role": "Staff", "permissions": STAFF},
    ("MGR", 1): {"role": "Manager", "permissions": STAFF},
    ("ADM", 1): {"role": "Admin", "permissions": STAFF},
    ("MOD", 1): {"role": "Staff", "permissions": {"messaging": True, "messaging_admin": True}},
    ("EXT", 1): {"role": "External", "permissions": STAFF},
    ("OFF", 1): {"role": "Staff", "permissions": {"messaging": False}},
    ("E1", 2): {"role": "Staff", "permissions": STAFF},
    ("ADM", 2): {"role": "Admin", "permissions": STAFF},
}


def dict_session_resolver(empid: str, company_id: int) -> dict[str, Any] | None:
    return SESSIONS.get((str(empid), int(company_id)))


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def engine():
    """Private in-memory database per test."""
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db(engine) -> Generator[Session, None, None]:
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def store(db: Session) -> MessagingStore:
    return MessagingStore(db)


# =============================================================================
# Service Fixtures
# =============================================================================

@pytest.fixture
def rooms() -> RecordingRooms:
    return RecordingRooms()


@pytest.fixture
def presence(rooms: RecordingRooms) -> PresenceRegistry:
    return PresenceRegistry(rooms)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def failing_rooms() -> FailingRooms:
    return FailingRooms()


@pytest.fixture
def make_service(store, rooms, presence, clock):
    """Factory: MessagingService with test defaults, any argument overridable."""
    def _make(**overrides) -> MessagingService:
        options = {
            "store": store,
            "get_session": dict_session_resolver,
            "rooms": rooms,
            "presence": presence,
            "sender_limiter": SenderRateLimiter(per_minute=1000),
            "clock": clock,
        }
        options.update(overrides)
        return MessagingService(**options)
    return _make


@pytest.fixture
def service(make_service) -> MessagingService:
    return make_service()


@pytest.fixture
def post(service):
    """Shortcut: post_message(empid, company_id=1, **payload) -> message dict."""
    def _post(empid: str, company_id: int = 1, idempotency_key: str | None = None, **payload):
        result = service.post_message({"empid": empid}, company_id, payload, idempotency_key=idempotency_key)
        return result["message"]
    return _post


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient against the app, bound to the test database and sessions."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_resolver] = lambda: dict_session_resolver
    original_limiter = app.state.sender_limiter
    app.state.sender_limiter = SenderRateLimiter(per_minute=1000)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.state.sender_limiter = original_limiter
    app.dependency_overrides.clear()
