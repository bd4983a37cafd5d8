# calendar_engine/services/calendar/calendly_service.py
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional
from urllib.parse import urlencode

from calendar_engine.schemas.calendar_events import (
    AvailabilityResult,
    CalendarProvider,
    CalendarSummary,
    EventResult,
    EventSpec,
    EventSummary,
    EventUpdate,
    OAuthTokens,
    TimeSlot,
)
from calendar_engine.services.calendar.base import (
    BaseCalendarProvider,
    BaseOAuthConnector,
    day_bounds,
    format_time_slot,
    parse_provider_datetime,
)
from calendar_engine.services.calendar.exceptions import (
    AuthExchangeError,
    CalendarError,
    ProviderRequestError,
    TokenRefreshError,
    UnsupportedOperation,
)

logger = logging.getLogger(__name__)

CALENDLY_AUTH_URI = "https://auth.calendly.com/oauth/authorize"
CALENDLY_TOKEN_URI = "https://auth.calendly.com/oauth/token"


def _utc_wire(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000000Z")


class CalendlyOAuthConnector(BaseOAuthConnector):
    provider = CalendarProvider.CALENDLY

    @property
    def configured(self) -> bool:
        return bool(self.settings.CALENDLY_CLIENT_ID and self.settings.CALENDLY_CLIENT_SECRET)

    def get_auth_url(self, redirect_uri: str, state: str) -> str:
        params = {
            "client_id": self.settings.CALENDLY_CLIENT_ID,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "state": state,
        }
        return f"{CALENDLY_AUTH_URI}?{urlencode(params)}"

    async def exchange_code(self, code: str, redirect_uri: str) -> OAuthTokens:
        response = await self.http.send(
            "POST",
            CALENDLY_TOKEN_URI,
            data={
                "client_id": self.settings.CALENDLY_CLIENT_ID,
                "client_secret": self.settings.CALENDLY_CLIENT_SECRET,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": redirect_uri,
            },
        )
        if not response.is_success:
            logger.error(f"Calendly token exchange failed ({response.status_code}): {response.text}")
            raise AuthExchangeError(self.provider.value, response.status_code, response.text)

        data = response.json()
        return OAuthTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=self.expires_at(data.get("expires_in")),
        )


class CalendlyProvider(BaseCalendarProvider):
    """Invitee-driven backend: bookings are single-use scheduling links, not confirmed events"""
    provider = CalendarProvider.CALENDLY
    BASE_URL = "https://api.calendly.com"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._user: Optional[Dict] = None
        self._event_types: Optional[List[Dict]] = None
        self.event_type: Optional[Dict] = None

    def _url(self, path_or_uri: str) -> str:
        return path_or_uri if path_or_uri.startswith("http") else f"{self.BASE_URL}{path_or_uri}"

    async def refresh_access_token(self) -> None:
        response = await self.http.send(
            "POST",
            CALENDLY_TOKEN_URI,
            data={
                "client_id": self.settings.CALENDLY_CLIENT_ID,
                "client_secret": self.settings.CALENDLY_CLIENT_SECRET,
                "refresh_token": self.refresh_token,
                "grant_type": "refresh_token",
            },
        )
        if not response.is_success:
            logger.error(f"Calendly token refresh failed for organization {self.organization_id}: {response.text}")
            raise TokenRefreshError("Failed to refresh Calendly token", provider=self.provider.value,
                                    detail=response.text)

        data = response.json()
        # Calendly rotates refresh tokens on every use
        await self.save_tokens(
            data["access_token"],
            data.get("refresh_token") or self.refresh_token,
            self.clock() + timedelta(seconds=int(data.get("expires_in", 7200))),
        )
        logger.info(f"Calendly token refreshed for organization {self.organization_id}")

    async def get_current_user(self) -> Dict:
        if self._user is None:
            response = await self.api_request("GET", self._url("/users/me"))
            self._user = response["resource"]
        return self._user

    async def get_event_types(self) -> List[Dict]:
        """Active event types owned by the connected user"""
        if self._event_types is None:
            user = await self.get_current_user()
            response = await self.api_request(
                "GET",
                self._url("/event_types"),
                params={"user": user["uri"], "active": "true"},
            ) or {}
            self._event_types = [
                {
                    "uri": et["uri"],
                    "name": et.get("name"),
                    "description": et.get("description_plain"),
                    "duration": et.get("duration"),
                    "slug": et.get("slug"),
                    "scheduling_url": et.get("scheduling_url"),
                }
                for et in response.get("collection", [])
            ]
        return self._event_types

    async def resolve_event_type(self, duration: int) -> Optional[Dict]:
        if self.event_type is None:
            event_types = await self.get_event_types()
            if not event_types:
                return None
            self.event_type = next((et for et in event_types if et["duration"] == duration), event_types[0])
        return self.event_type

    async def get_scheduling_url(self) -> Optional[str]:
        user = await self.get_current_user()
        return user.get("scheduling_url")

    async def get_available_slots(self, day: date, duration: int) -> AvailabilityResult:
        if not self.business_hours.is_business_day(day):
            return self.availability(day, [])

        event_type = await self.resolve_event_type(duration)
        if event_type is None:
            return AvailabilityResult(available=False, date=day.isoformat(), error="No event types configured")

        start_of_day, end_of_day = day_bounds(day, self.business_hours.tz)
        # Calendly rejects ranges that start in the past
        start = max(start_of_day, self.clock() + timedelta(minutes=1))
        scheduling_url = await self.get_scheduling_url()
        if start >= end_of_day:
            return self.availability(day, [], scheduling_url=scheduling_url)

        response = await self.api_request(
            "GET",
            self._url("/event_type_available_times"),
            params={
                "event_type": event_type["uri"],
                "start_time": _utc_wire(start),
                "end_time": _utc_wire(end_of_day),
            },
        ) or {}

        tz = self.business_hours.tz
        slots = []
        for item in response.get("collection", []):
            slot_start = parse_provider_datetime(item["start_time"]).astimezone(tz)
            slot_end = slot_start + timedelta(minutes=duration)
            slots.append(TimeSlot(
                start=slot_start,
                end=slot_end,
                formatted=format_time_slot(slot_start, slot_end),
                status=item.get("status"),
            ))

        return self.availability(day, slots, scheduling_url=scheduling_url)

    async def create_event(self, spec: EventSpec) -> EventResult:
        """Provision a single-use scheduling link; the invitee completes the booking.

        No time is confirmed until the invitee picks one, so confirmed_time stays unset.
        """
        duration = int((spec.end_time - spec.start_time).total_seconds() // 60)
        event_type = await self.resolve_event_type(duration)
        if event_type is None:
            raise CalendarError("No event types configured in Calendly", provider=self.provider.value)

        try:
            response = await self.api_request(
                "POST",
                self._url("/scheduling_links"),
                json={
                    "max_event_count": 1,
                    "owner": event_type["uri"],
                    "owner_type": "EventType",
                },
            )
        except ProviderRequestError as e:
            logger.warning(f"Calendly scheduling link rejected ({e.status_code}), using public event type link")
            return EventResult(
                event_link=event_type.get("scheduling_url"),
                needs_invitee_action=True,
                scheduling_url=event_type.get("scheduling_url"),
                message="Please use the scheduling link to book",
            )

        booking_url = response["resource"]["booking_url"]
        logger.info(f"Calendly scheduling link created for organization {self.organization_id}")

        return EventResult(
            event_link=booking_url,
            needs_invitee_action=True,
            scheduling_url=booking_url,
            message="Booking link generated - caller needs to confirm",
        )

    async def update_event(self, event_id: str, updates: EventUpdate) -> EventResult:
        raise UnsupportedOperation(
            "Calendly does not support event updates. Please cancel and rebook.",
            provider=self.provider.value,
        )

    async def delete_event(self, event_id: str, reason: Optional[str] = None) -> None:
        event_uri = event_id if event_id.startswith("http") else f"{self.BASE_URL}/scheduled_events/{event_id}"
        await self.api_request(
            "POST",
            f"{event_uri}/cancellation",
            json={"reason": reason or "Cancelled via AI receptionist"},
        )
        logger.info(f"Calendly event cancelled: {event_uri}")

    async def get_events(self, start: datetime, end: datetime) -> List[EventSummary]:
        user = await self.get_current_user()
        response = await self.api_request(
            "GET",
            self._url("/scheduled_events"),
            params={
                "user": user["uri"],
                "min_start_time": _utc_wire(start),
                "max_start_time": _utc_wire(end),
                "status": "active",
                "sort": "start_time:asc",
                "count": 100,
            },
        ) or {}

        events = []
        for item in response.get("collection", []):
            location = item.get("location") or {}
            events.append(EventSummary(
                id=item["uri"],
                title=item.get("name"),
                start=parse_provider_datetime(item["start_time"]),
                end=parse_provider_datetime(item["end_time"]),
                link=item["uri"],
                location=location.get("type"),
                meet_link=location.get("join_url"),
                status=item.get("status"),
                invitees_count=(item.get("invitees_counter") or {}).get("total", 0),
            ))
        return events

    async def get_event_invitees(self, event_uri: str) -> List[Dict]:
        response = await self.api_request("GET", f"{self._url(event_uri)}/invitees") or {}
        return [
            {
                "uri": invitee.get("uri"),
                "name": invitee.get("name"),
                "email": invitee.get("email"),
                "status": invitee.get("status"),
                "timezone": invitee.get("timezone"),
                "created_at": parse_provider_datetime(invitee["created_at"]) if invitee.get("created_at") else None,
                "questions": invitee.get("questions_and_answers", []),
            }
            for invitee in response.get("collection", [])
        ]

    async def list_calendars(self) -> List[CalendarSummary]:
        event_types = await self.get_event_types()
        return [
            CalendarSummary(id=et["uri"], name=et["name"], description=et["description"], primary=index == 0)
            for index, et in enumerate(event_types)
        ]
