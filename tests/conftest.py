"""
Test configuration and fixtures.

Provides:
- Fresh in-memory SQLite database per test
- Fake clocks and a manual scheduler for session lifecycle tests
- JWT token minting for authenticated tests
- HTTPX AsyncClient over the ASGI app
"""
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Callable, Generator

# Must be set before practice_core modules read configuration
os.environ["TESTING"] = "1"
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.pop("REDIS_URL", None)
os.environ["CHANNEL_DISPATCH_WORKERS"] = "0"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import sessionmaker

from practice_core.context import AppContext, build_app_context
from practice_core.core.deps import COOKIE_NAME
from practice_core.core.security import create_session_token
from practice_core.db.base import Base
import practice_core.db.models  # noqa: F401
from practice_core.db.enums import Channel, Role
from practice_core.db.session import create_db_engine, create_session_factory
from practice_core.main import create_app
from practice_core.schemas.notifications import NotificationRead


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def engine():
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine) -> sessionmaker:
    return create_session_factory(engine)


# =============================================================================
# Clocks and scheduling
# =============================================================================

class FakeClock:
    """Epoch-seconds clock advanced by hand."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class DateClock:
    """Aware-datetime clock; every read moves forward one millisecond."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(milliseconds=1)
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class _Timer:
    due: float
    callback: Callable[[], None]
    interval: float | None = None
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """
    Scheduler driven by a FakeClock. advance() moves the clock and fires
    every timer that came due, in order.
    """

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.timers: list[_Timer] = []
        self.spawned: list[Callable] = []

    def call_later(self, delay, callback):
        timer = _Timer(self.clock.now + max(0.0, delay), callback)
        self.timers.append(timer)
        return timer

    def call_every(self, interval, callback):
        timer = _Timer(self.clock.now + interval, callback, interval=interval)
        self.timers.append(timer)
        return timer

    def spawn(self, coro_factory):
        self.spawned.append(coro_factory)

    def pending(self) -> list[_Timer]:
        return [t for t in self.timers if not t.cancelled]

    def advance(self, seconds: float) -> None:
        target = self.clock.now + seconds
        while True:
            due = [t for t in self.pending() if t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.clock.now = max(self.clock.now, timer.due)
            if timer.interval is None:
                timer.cancelled = True
            else:
                timer.due += timer.interval
            timer.callback()
        self.clock.now = target


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler(clock: FakeClock) -> ManualScheduler:
    return ManualScheduler(clock)


@pytest.fixture
def date_clock() -> DateClock:
    return DateClock()


# =============================================================================
# Channel senders
# =============================================================================

@dataclass
class RecordingSender:
    channel: Channel
    ok: bool = True
    raises: bool = False
    sent: list[NotificationRead] = field(default_factory=list)

    def send(self, notification: NotificationRead) -> bool:
        if self.raises:
            raise ConnectionError(f"{self.channel.value} relay down")
        self.sent.append(notification)
        return self.ok


@pytest.fixture
def senders() -> dict[Channel, RecordingSender]:
    return {
        Channel.EMAIL: RecordingSender(Channel.EMAIL),
        Channel.SMS: RecordingSender(Channel.SMS),
        Channel.PUSH: RecordingSender(Channel.PUSH),
    }


# =============================================================================
# App Fixtures
# =============================================================================

@pytest.fixture
def app_context(session_factory, senders) -> Generator[AppContext, None, None]:
    ctx = build_app_context(session_factory, senders=senders)
    yield ctx
    ctx.close()


@pytest.fixture
def app(app_context):
    return create_app(app_context)


@dataclass
class TestAuth:
    """Test authentication context."""
    user_id: str
    tenant_id: str
    role: Role
    token: str
    cookie_name: str = COOKIE_NAME


def make_auth(role: Role, user_id: str = "user-1", tenant_id: str = "clinic-1") -> TestAuth:
    token = create_session_token(
        user_id=user_id,
        tenant_id=tenant_id,
        role=role.value,
        email=f"{user_id}@example.com",
        name=user_id.title(),
    )
    return TestAuth(user_id=user_id, tenant_id=tenant_id, role=role, token=token)


@pytest.fixture
def auth_factory() -> Callable[..., TestAuth]:
    return make_auth


@pytest.fixture
def front_desk_auth() -> TestAuth:
    return make_auth(Role.FRONT_DESK, user_id="desk-1")


@pytest.fixture
def patient_auth() -> TestAuth:
    return make_auth(Role.PATIENT, user_id="patient-1")


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture
async def patient_client(app, patient_auth: TestAuth) -> AsyncGenerator[AsyncClient, None]:
    """Client authenticated by session cookie."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies={patient_auth.cookie_name: patient_auth.token},
    ) as c:
        yield c


@pytest.fixture
async def staff_client(app, front_desk_auth: TestAuth) -> AsyncGenerator[AsyncClient, None]:
    """Client authenticated by bearer token."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"Authorization": f"Bearer {front_desk_auth.token}"},
    ) as c:
        yield c
