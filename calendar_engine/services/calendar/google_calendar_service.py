# calendar_engine/services/calendar/google_calendar_service.py
import logging
import uuid
from datetime import date, datetime, timedelta
from typing import List, Optional
from urllib.parse import quote

from google_auth_oauthlib.flow import Flow

from calendar_engine.schemas.calendar_events import (
    AvailabilityResult,
    CalendarProvider,
    CalendarSummary,
    EventResult,
    EventSpec,
    EventSummary,
    EventUpdate,
    OAuthTokens,
)
from calendar_engine.services.calendar.base import (
    BaseCalendarProvider,
    BaseOAuthConnector,
    day_bounds,
    generate_time_slots,
    parse_provider_datetime,
)
from calendar_engine.services.calendar.exceptions import (
    AuthExchangeError,
    ProviderRequestError,
    TokenRefreshError,
)

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"


class GoogleOAuthConnector(BaseOAuthConnector):
    provider = CalendarProvider.GOOGLE
    SCOPES = [
        "https://www.googleapis.com/auth/calendar",
        "https://www.googleapis.com/auth/calendar.events",
    ]

    @property
    def configured(self) -> bool:
        return bool(self.settings.GOOGLE_CLIENT_ID and self.settings.GOOGLE_CLIENT_SECRET)

    def client_config(self, redirect_uri: str) -> dict:
        return {
            "web": {
                "client_id": self.settings.GOOGLE_CLIENT_ID,
                "client_secret": self.settings.GOOGLE_CLIENT_SECRET,
                "redirect_uris": [redirect_uri],
                "auth_uri": GOOGLE_AUTH_URI,
                "token_uri": GOOGLE_TOKEN_URI,
            }
        }

    def get_auth_url(self, redirect_uri: str, state: str) -> str:
        """Step 1: consent URL for the organization admin"""
        flow = Flow.from_client_config(
            self.client_config(redirect_uri),
            scopes=self.SCOPES,
            redirect_uri=redirect_uri,
            autogenerate_code_verifier=False,
        )
        authorization_url, _ = flow.authorization_url(
            access_type="offline",  # Gets refresh token
            include_granted_scopes="true",
            prompt="consent",  # Force consent screen so a refresh token is always issued
            state=state,
        )
        return authorization_url

    async def exchange_code(self, code: str, redirect_uri: str) -> OAuthTokens:
        """Step 2: exchange the authorization code for tokens"""
        response = await self.http.send(
            "POST",
            GOOGLE_TOKEN_URI,
            data={
                "client_id": self.settings.GOOGLE_CLIENT_ID,
                "client_secret": self.settings.GOOGLE_CLIENT_SECRET,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": redirect_uri,
            },
        )
        if not response.is_success:
            logger.error(f"Google token exchange failed ({response.status_code}): {response.text}")
            raise AuthExchangeError(self.provider.value, response.status_code, response.text)

        data = response.json()
        return OAuthTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=self.expires_at(data.get("expires_in")),
        )


class GoogleCalendarProvider(BaseCalendarProvider):
    provider = CalendarProvider.GOOGLE
    BASE_URL = "https://www.googleapis.com/calendar/v3"

    @property
    def selected_calendar(self) -> str:
        return self.calendar_id or "primary"

    def _events_url(self, event_id: Optional[str] = None) -> str:
        url = f"{self.BASE_URL}/calendars/{quote(self.selected_calendar, safe='')}/events"
        if event_id:
            url += f"/{quote(event_id, safe='')}"
        return url

    def _when(self, value: datetime) -> dict:
        return {"dateTime": value.isoformat(), "timeZone": self.business_hours.timezone}

    async def refresh_access_token(self) -> None:
        response = await self.http.send(
            "POST",
            GOOGLE_TOKEN_URI,
            data={
                "client_id": self.settings.GOOGLE_CLIENT_ID,
                "client_secret": self.settings.GOOGLE_CLIENT_SECRET,
                "refresh_token": self.refresh_token,
                "grant_type": "refresh_token",
            },
        )
        if not response.is_success:
            logger.error(f"Google token refresh failed for organization {self.organization_id}: {response.text}")
            raise TokenRefreshError("Failed to refresh Google token", provider=self.provider.value,
                                    detail=response.text)

        data = response.json()
        # Google usually omits refresh_token on refresh; keep the stored one
        await self.save_tokens(
            data["access_token"],
            data.get("refresh_token") or self.refresh_token,
            self.clock() + timedelta(seconds=int(data.get("expires_in", 3600))),
        )
        logger.info(f"Google Calendar token refreshed for organization {self.organization_id}")

    async def get_available_slots(self, day: date, duration: int) -> AvailabilityResult:
        if not self.business_hours.is_business_day(day):
            return self.availability(day, [])

        tz = self.business_hours.tz
        start_of_day, end_of_day = day_bounds(day, tz)

        freebusy = await self.api_request(
            "POST",
            f"{self.BASE_URL}/freeBusy",
            json={
                "timeMin": start_of_day.isoformat(),
                "timeMax": end_of_day.isoformat(),
                "timeZone": self.business_hours.timezone,
                "items": [{"id": self.selected_calendar}],
            },
        ) or {}

        busy_periods = freebusy.get("calendars", {}).get(self.selected_calendar, {}).get("busy", [])
        busy = [(parse_provider_datetime(b["start"]), parse_provider_datetime(b["end"])) for b in busy_periods]

        slots = generate_time_slots(day, duration, busy, self.business_hours)
        logger.info(f"Generated {len(slots)} available Google slots for {day.isoformat()}")
        return self.availability(day, slots)

    async def create_event(self, spec: EventSpec) -> EventResult:
        attendees = [{"email": email} for email in spec.attendees]
        if spec.caller_email:
            attendees.append({"email": spec.caller_email})

        event = {
            "summary": spec.title,
            "description": spec.description,
            "location": spec.location,
            "start": self._when(spec.start_time),
            "end": self._when(spec.end_time),
            "attendees": attendees,
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": 60},
                    {"method": "popup", "minutes": 15},
                ],
            },
            "extendedProperties": {
                "private": {
                    "bookedBy": self.settings.BOOKING_SOURCE_LABEL,
                    "callerPhone": spec.caller_phone or "",
                    "callerName": spec.caller_name or "",
                    "purpose": spec.purpose or "",
                }
            },
        }
        if spec.add_video_conference:
            event["conferenceData"] = {
                "createRequest": {
                    "requestId": f"{self.settings.BOOKING_SOURCE_LABEL}-{uuid.uuid4().hex}",
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                }
            }

        created = await self.api_request(
            "POST",
            self._events_url(),
            params={"conferenceDataVersion": 1, "sendUpdates": "all"},
            json=event,
        )
        logger.info(f"Google Calendar event created: {created['id']}")

        return EventResult(
            event_id=created["id"],
            event_link=created.get("htmlLink"),
            confirmed_time=spec.start_time,
            meet_link=self._meet_link(created),
        )

    async def update_event(self, event_id: str, updates: EventUpdate) -> EventResult:
        patch = {}
        if updates.start_time:
            end_time = updates.start_time + timedelta(minutes=updates.duration or self.default_duration)
            patch["start"] = self._when(updates.start_time)
            patch["end"] = self._when(end_time)
        if updates.title:
            patch["summary"] = updates.title
        if updates.description:
            patch["description"] = updates.description

        updated = await self.api_request(
            "PATCH",
            self._events_url(event_id),
            params={"sendUpdates": "all"},
            json=patch,
        )
        logger.info(f"Google Calendar event updated: {event_id}")

        start = updated.get("start", {})
        confirmed = start.get("dateTime")
        return EventResult(
            event_id=updated["id"],
            event_link=updated.get("htmlLink"),
            confirmed_time=parse_provider_datetime(confirmed) if confirmed else updates.start_time,
            meet_link=self._meet_link(updated),
        )

    async def delete_event(self, event_id: str, reason: Optional[str] = None) -> None:
        try:
            await self.api_request("DELETE", self._events_url(event_id), params={"sendUpdates": "all"})
        except ProviderRequestError as e:
            if e.status_code != 410:
                raise
            logger.info(f"Google Calendar event {event_id} was already deleted")
            return
        logger.info(f"Google Calendar event deleted: {event_id}" + (f" ({reason})" if reason else ""))

    async def get_events(self, start: datetime, end: datetime) -> List[EventSummary]:
        response = await self.api_request(
            "GET",
            self._events_url(),
            params={
                "timeMin": start.isoformat(),
                "timeMax": end.isoformat(),
                "singleEvents": "true",
                "orderBy": "startTime",
                "maxResults": 100,
            },
        ) or {}

        tz = self.business_hours.tz
        events = []
        for item in response.get("items", []):
            item_start = item.get("start", {})
            item_end = item.get("end", {})
            events.append(EventSummary(
                id=item["id"],
                title=item.get("summary"),
                description=item.get("description"),
                start=parse_provider_datetime(item_start.get("dateTime") or item_start["date"], tz),
                end=parse_provider_datetime(item_end.get("dateTime") or item_end["date"], tz),
                link=item.get("htmlLink"),
                attendees=[a["email"] for a in item.get("attendees", []) if a.get("email")],
                location=item.get("location"),
                meet_link=self._meet_link(item),
                is_all_day="dateTime" not in item_start,
                status=item.get("status"),
            ))
        return events

    async def list_calendars(self) -> List[CalendarSummary]:
        response = await self.api_request("GET", f"{self.BASE_URL}/users/me/calendarList") or {}
        return [
            CalendarSummary(
                id=cal["id"],
                name=cal.get("summary"),
                description=cal.get("description"),
                primary=cal.get("primary", False),
            )
            for cal in response.get("items", [])
        ]

    @staticmethod
    def _meet_link(event: dict) -> Optional[str]:
        if event.get("hangoutLink"):
            return event["hangoutLink"]
        entry_points = event.get("conferenceData", {}).get("entryPoints", [])
        return entry_points[0].get("uri") if entry_points else None
