# calendar_engine/services/calendar/base.py
import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

import httpx

from calendar_engine.config.settings import Settings
from calendar_engine.schemas.calendar_events import (
    AvailabilityResult,
    BusinessHours,
    CalendarProvider,
    CalendarSummary,
    EventResult,
    EventSpec,
    EventSummary,
    EventUpdate,
    OAuthTokens,
    ProviderCredentials,
    TimeSlot,
)
from calendar_engine.services.calendar.exceptions import TokenRefreshError
from calendar_engine.services.calendar.http import ProviderHttpClient
from calendar_engine.services.calendar.locks import SingleFlight
from calendar_engine.services.calendar.store import CalendarStore

logger = logging.getLogger(__name__)

SLOT_INTERVAL_MINUTES = 30

BusyInterval = Tuple[datetime, datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Slot generation
# ============================================================================

def format_time_slot(start: datetime, end: datetime) -> str:
    """'9:00 AM - 9:30 AM'"""
    def fmt(dt: datetime) -> str:
        return f"{dt.hour % 12 or 12}:{dt.minute:02d} {'AM' if dt.hour < 12 else 'PM'}"

    return f"{fmt(start)} - {fmt(end)}"


def day_bounds(day: date, tz: ZoneInfo) -> Tuple[datetime, datetime]:
    """Start of `day` and start of the following day, in `tz`"""
    start = datetime.combine(day, time(0), tzinfo=tz)
    return start, datetime.combine(day + timedelta(days=1), time(0), tzinfo=tz)


def to_local_day(value, tz: ZoneInfo) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(tz)
        return value.date()
    return value


def generate_time_slots(day: date, duration: int, busy: Sequence[BusyInterval],
                        business_hours: BusinessHours) -> List[TimeSlot]:
    """Business-hours window for `day` minus busy intervals, stepped every 30 minutes.

    A candidate [start, start + duration) is kept when it ends inside the window and
    does not overlap any busy interval (start < busy_end and end > busy_start).
    """
    if not business_hours.is_business_day(day):
        return []

    tz = business_hours.tz
    midnight = datetime.combine(day, time(0), tzinfo=tz)
    window_start = midnight + timedelta(hours=business_hours.start)
    window_end = midnight + timedelta(hours=business_hours.end)
    length = timedelta(minutes=duration)
    step = timedelta(minutes=SLOT_INTERVAL_MINUTES)

    slots = []
    current = window_start
    while current < window_end:
        slot_end = current + length
        overlaps = any(current < busy_end and slot_end > busy_start for busy_start, busy_end in busy)
        if not overlaps and slot_end <= window_end:
            slots.append(TimeSlot(start=current, end=slot_end, formatted=format_time_slot(current, slot_end)))
        current += step

    return slots


def parse_provider_datetime(value: str, tz=timezone.utc) -> datetime:
    """ISO string from a provider; naive values are interpreted in `tz`"""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


# ============================================================================
# OAuth connectors
# ============================================================================

class BaseOAuthConnector(ABC):
    """Builds the authorization URL and exchanges codes for one provider"""
    provider: CalendarProvider

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient,
                 clock: Callable[[], datetime] = utc_now):
        self.settings = settings
        self.http = ProviderHttpClient(http_client, self.provider.value)
        self.clock = clock

    @property
    @abstractmethod
    def configured(self) -> bool:
        ...

    @abstractmethod
    def get_auth_url(self, redirect_uri: str, state: str) -> str:
        ...

    @abstractmethod
    async def exchange_code(self, code: str, redirect_uri: str) -> OAuthTokens:
        ...

    def expires_at(self, expires_in: Optional[int]) -> Optional[datetime]:
        if expires_in is None:
            return None
        return self.clock() + timedelta(seconds=int(expires_in))


# ============================================================================
# Provider contract
# ============================================================================

class BaseCalendarProvider(ABC):
    """Capability set shared by every calendar backend.

    Instances are cheap and scoped to one organization; the refresh registry is
    shared across instances so only one refresh per (organization, provider) is
    ever in flight.
    """
    provider: CalendarProvider

    def __init__(self, organization_id: str, http_client: httpx.AsyncClient, store: CalendarStore,
                 settings: Settings, refresh_flights: Optional[SingleFlight] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.organization_id = organization_id
        self.http = ProviderHttpClient(http_client, self.provider.value)
        self.store = store
        self.settings = settings
        self.refresh_flights = refresh_flights if refresh_flights is not None else SingleFlight()
        self.clock = clock

        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None
        self.expires_at: Optional[datetime] = None
        self.calendar_id: Optional[str] = None
        self.business_hours = BusinessHours(
            start=settings.DEFAULT_BUSINESS_HOURS_START,
            end=settings.DEFAULT_BUSINESS_HOURS_END,
            days=settings.DEFAULT_BUSINESS_DAYS,
            timezone=settings.DEFAULT_TIMEZONE,
        )
        self.default_duration = settings.DEFAULT_APPOINTMENT_DURATION
        self.initialized = False

    # ========== INITIALIZATION ==========
    async def initialize(self, credentials: ProviderCredentials) -> None:
        self.access_token = credentials.access_token
        self.refresh_token = credentials.refresh_token
        self.expires_at = credentials.expires_at
        self.calendar_id = credentials.calendar_id
        self.business_hours = credentials.business_hours
        self.default_duration = credentials.default_duration
        self.initialized = True

        await self.ensure_fresh_token()

    # ========== TOKEN MANAGEMENT ==========
    def _expired(self, expires_at: Optional[datetime]) -> bool:
        if expires_at is None:
            return True
        buffer = timedelta(minutes=self.settings.TOKEN_REFRESH_BUFFER_MINUTES)
        return self.clock() > expires_at - buffer

    def is_token_expired(self) -> bool:
        return self._expired(self.expires_at)

    async def ensure_fresh_token(self) -> None:
        """Refresh once per integration even when many operations notice expiry together.

        Operations that find a refresh already running share its outcome, so a
        rejected refresh fails all of them without a second token request.
        """
        if not self.is_token_expired():
            return

        tokens = await self.refresh_flights.run((self.organization_id, self.provider), self._refresh_from_store)
        self.access_token = tokens.access_token
        self.refresh_token = tokens.refresh_token or self.refresh_token
        self.expires_at = tokens.expires_at

    async def _refresh_from_store(self) -> OAuthTokens:
        stored = await self.store.get_integration(self.organization_id, self.provider)
        if stored is not None:
            if stored.access_token and not self._expired(stored.token_expires_at):
                # Already refreshed by an earlier operation
                return OAuthTokens(access_token=stored.access_token, refresh_token=stored.refresh_token,
                                   expires_at=stored.token_expires_at)
            self.refresh_token = stored.refresh_token or self.refresh_token

        if not self.refresh_token:
            raise TokenRefreshError("No refresh token available", provider=self.provider.value)
        await self.refresh_access_token()
        return OAuthTokens(access_token=self.access_token, refresh_token=self.refresh_token,
                           expires_at=self.expires_at)

    async def save_tokens(self, access_token: str, refresh_token: Optional[str],
                          expires_at: Optional[datetime]) -> None:
        self.access_token = access_token
        self.refresh_token = refresh_token or self.refresh_token
        self.expires_at = expires_at

        await self.store.update_tokens(
            self.organization_id,
            self.provider,
            OAuthTokens(access_token=access_token, refresh_token=self.refresh_token, expires_at=expires_at),
        )

    def auth_headers(self) -> dict:
        return {"Authorization": f"Bearer {self.access_token}"}

    async def api_request(self, method: str, url: str, headers: Optional[dict] = None, **kwargs):
        await self.ensure_fresh_token()
        request_headers = self.auth_headers()
        if headers:
            request_headers.update(headers)
        return await self.http.request_json(method, url, headers=request_headers, **kwargs)

    # ========== CONTRACT ==========
    @abstractmethod
    async def refresh_access_token(self) -> None:
        """Provider token refresh; must persist through save_tokens"""

    @abstractmethod
    async def get_available_slots(self, day: date, duration: int) -> AvailabilityResult:
        ...

    @abstractmethod
    async def create_event(self, spec: EventSpec) -> EventResult:
        ...

    @abstractmethod
    async def update_event(self, event_id: str, updates: EventUpdate) -> EventResult:
        ...

    @abstractmethod
    async def delete_event(self, event_id: str, reason: Optional[str] = None) -> None:
        ...

    @abstractmethod
    async def get_events(self, start: datetime, end: datetime) -> List[EventSummary]:
        ...

    @abstractmethod
    async def list_calendars(self) -> List[CalendarSummary]:
        ...

    # ========== HELPERS ==========
    def availability(self, day: date, slots: List[TimeSlot], **extra) -> AvailabilityResult:
        return AvailabilityResult(available=bool(slots), slots=slots, date=day.isoformat(), **extra)
