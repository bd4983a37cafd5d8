"""Shared fixtures: settings, in-memory SQLite store, fixed clock, fake provider HTTP."""

import inspect
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Union

import httpx
import pytest
from cryptography.fernet import Fernet
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from calendar_engine.config.database import create_tables
from calendar_engine.config.settings import Settings
from calendar_engine.schemas.calendar_events import CalendarProvider, OAuthTokens
from calendar_engine.services.calendar.calendar_service import CalendarService
from calendar_engine.services.calendar.oauth_state import InMemoryOAuthStateStore
from calendar_engine.services.calendar.store import SqlAlchemyCalendarStore
from calendar_engine.utils.encryption import TokenCipher

# Monday 2024-01-08, 09:00 in America/New_York
FIXED_NOW = datetime(2024, 1, 8, 14, 0, tzinfo=timezone.utc)

ORG_ID = "org-123"


# ─── Clock ────────────────────────────────────────────────────────────────────

class FakeClock:
    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ─── Fake provider HTTP ───────────────────────────────────────────────────────

Handler = Union[httpx.Response, Callable]


class FakeProviderApi:
    """httpx.MockTransport router keyed by (method, scheme://host/path)"""

    def __init__(self):
        self.routes = {}
        self.calls: List[httpx.Request] = []

    def add(self, method: str, url: str, handler: Handler) -> None:
        self.routes[(method.upper(), url)] = handler

    def calls_to(self, method: str, url: str) -> List[httpx.Request]:
        return [r for r in self.calls if r.method == method.upper() and self._key_url(r) == url]

    @staticmethod
    def _key_url(request: httpx.Request) -> str:
        return f"{request.url.scheme}://{request.url.host}{request.url.path}"

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        handler = self.routes.get((request.method, self._key_url(request)))
        if handler is None:
            return httpx.Response(404, json={"error": f"no fake route for {request.method} {request.url}"})
        if isinstance(handler, httpx.Response):
            return handler
        result = handler(request)
        if inspect.isawaitable(result):
            result = await result
        return result

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handle))


# ─── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite://",
        CALENDAR_ENCRYPTION_KEY=Fernet.generate_key().decode(),
        GOOGLE_CLIENT_ID="google-client-id",
        GOOGLE_CLIENT_SECRET="google-client-secret",
        MICROSOFT_CLIENT_ID="microsoft-client-id",
        MICROSOFT_CLIENT_SECRET="microsoft-client-secret",
        CALENDLY_CLIENT_ID="calendly-client-id",
        CALENDLY_CLIENT_SECRET="calendly-client-secret",
        PUBLIC_BASE_URL="https://api.example.com",
        FRONTEND_URL="https://app.example.com",
        DEFAULT_TIMEZONE="America/New_York",
    )


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_tables(engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def store(session_factory, settings) -> SqlAlchemyCalendarStore:
    return SqlAlchemyCalendarStore(session_factory, TokenCipher(settings.CALENDAR_ENCRYPTION_KEY))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_api() -> FakeProviderApi:
    return FakeProviderApi()


@pytest.fixture
def service(store, fake_api, settings, clock) -> CalendarService:
    return CalendarService(
        store=store,
        http_client=fake_api.client(),
        settings=settings,
        state_store=InMemoryOAuthStateStore(ttl_seconds=600, clock=clock),
        clock=clock,
    )


async def seed_integration(store, provider: CalendarProvider, organization_id: str = ORG_ID,
                           access_token: str = "access-1", refresh_token: Optional[str] = "refresh-1",
                           expires_at: Optional[datetime] = FIXED_NOW + timedelta(hours=1)):
    return await store.save_connection(
        organization_id,
        provider,
        OAuthTokens(access_token=access_token, refresh_token=refresh_token, expires_at=expires_at),
        connected_by_id="user-1",
    )
