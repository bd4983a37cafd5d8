# calendar_engine/services/calendar/outlook_service.py
import asyncio
import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional
from urllib.parse import quote, urlencode

import msal
import requests

from calendar_engine.config.settings import Settings
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
    ProviderUnavailable,
    TokenRefreshError,
)

logger = logging.getLogger(__name__)

# msal adds openid/profile/offline_access itself and rejects them if passed.
# The same list must be sent on every refresh or the refresh token is invalidated.
SCOPES = ["Calendars.ReadWrite", "User.Read"]
CONSENT_SCOPES = ["openid", "profile", "email", "offline_access"] + SCOPES


def build_msal_app(settings: Settings) -> msal.ConfidentialClientApplication:
    return msal.ConfidentialClientApplication(
        settings.MICROSOFT_CLIENT_ID,
        authority=settings.MICROSOFT_AUTHORITY,
        client_credential=settings.MICROSOFT_CLIENT_SECRET,
        timeout=settings.CALENDAR_HTTP_TIMEOUT_SECONDS,
    )


async def acquire_token(settings: Settings, method: str, *args, **kwargs) -> Dict:
    """Run a blocking msal token call off the event loop"""
    def call():
        app = build_msal_app(settings)
        return getattr(app, method)(*args, **kwargs)

    try:
        return await asyncio.to_thread(call)
    except requests.exceptions.RequestException as e:
        logger.warning(f"Microsoft identity platform unreachable: {e}")
        raise ProviderUnavailable("Microsoft identity platform is unreachable",
                                  provider=CalendarProvider.OUTLOOK.value) from e


class OutlookOAuthConnector(BaseOAuthConnector):
    provider = CalendarProvider.OUTLOOK

    @property
    def configured(self) -> bool:
        return bool(self.settings.MICROSOFT_CLIENT_ID and self.settings.MICROSOFT_CLIENT_SECRET)

    def get_auth_url(self, redirect_uri: str, state: str) -> str:
        """Microsoft consent URL; built directly so no authority discovery call is needed"""
        params = {
            "client_id": self.settings.MICROSOFT_CLIENT_ID,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(CONSENT_SCOPES),
            "response_mode": "query",
            "state": state,
        }
        return f"{self.settings.MICROSOFT_AUTHORITY.rstrip('/')}/oauth2/v2.0/authorize?{urlencode(params)}"

    async def exchange_code(self, code: str, redirect_uri: str) -> OAuthTokens:
        result = await acquire_token(
            self.settings,
            "acquire_token_by_authorization_code",
            code,
            scopes=SCOPES,
            redirect_uri=redirect_uri,
        )
        if "error" in result:
            logger.error(f"Outlook token exchange error: {result.get('error_description')}")
            raise AuthExchangeError(self.provider.value, None, result.get("error_description") or result["error"])

        return OAuthTokens(
            access_token=result["access_token"],
            refresh_token=result.get("refresh_token"),
            expires_at=self.expires_at(result.get("expires_in")),
        )


class OutlookCalendarProvider(BaseCalendarProvider):
    provider = CalendarProvider.OUTLOOK
    GRAPH_ENDPOINT = "https://graph.microsoft.com/v1.0"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._profile: Optional[Dict] = None

    def auth_headers(self) -> dict:
        headers = super().auth_headers()
        # Graph returns event times in this zone instead of UTC
        headers["Prefer"] = f'outlook.timezone="{self.business_hours.timezone}"'
        return headers

    def _local(self, value: datetime) -> str:
        """Graph wire format: local wall time without offset, paired with a timeZone field"""
        return value.astimezone(self.business_hours.tz).replace(tzinfo=None).isoformat(timespec="seconds")

    def _when(self, value: datetime) -> dict:
        return {"dateTime": self._local(value), "timeZone": self.business_hours.timezone}

    def _calendar_path(self) -> str:
        if self.calendar_id:
            return f"{self.GRAPH_ENDPOINT}/me/calendars/{quote(self.calendar_id, safe='')}"
        return f"{self.GRAPH_ENDPOINT}/me/calendar"

    def _parse(self, value: dict) -> datetime:
        return parse_provider_datetime(value["dateTime"], self.business_hours.tz)

    async def refresh_access_token(self) -> None:
        result = await acquire_token(
            self.settings,
            "acquire_token_by_refresh_token",
            self.refresh_token,
            scopes=SCOPES,
        )
        if "error" in result:
            logger.error(f"Outlook token refresh failed for organization {self.organization_id}: "
                         f"{result.get('error_description')}")
            raise TokenRefreshError("Failed to refresh Microsoft token", provider=self.provider.value,
                                    detail=result.get("error_description"))

        await self.save_tokens(
            result["access_token"],
            result.get("refresh_token") or self.refresh_token,
            self.clock() + timedelta(seconds=int(result.get("expires_in", 3600))),
        )
        logger.info(f"Outlook Calendar token refreshed for organization {self.organization_id}")

    async def get_user_profile(self) -> Dict:
        if self._profile is None:
            me = await self.api_request("GET", f"{self.GRAPH_ENDPOINT}/me")
            self._profile = {
                "id": me.get("id"),
                "name": me.get("displayName"),
                "email": me.get("mail") or me.get("userPrincipalName"),
                "job_title": me.get("jobTitle"),
            }
        return self._profile

    async def get_available_slots(self, day: date, duration: int) -> AvailabilityResult:
        if not self.business_hours.is_business_day(day):
            return self.availability(day, [])

        profile = await self.get_user_profile()
        start_of_day, end_of_day = day_bounds(day, self.business_hours.tz)

        schedule_response = await self.api_request(
            "POST",
            f"{self.GRAPH_ENDPOINT}/me/calendar/getSchedule",
            json={
                "schedules": [profile["email"]],
                "startTime": self._when(start_of_day),
                "endTime": self._when(end_of_day),
                "availabilityViewInterval": 30,
            },
        ) or {}

        busy = []
        schedules = schedule_response.get("value", [])
        if schedules:
            for item in schedules[0].get("scheduleItems", []):
                if item.get("status", "busy") == "free":
                    continue
                busy.append((self._parse(item["start"]), self._parse(item["end"])))

        slots = generate_time_slots(day, duration, busy, self.business_hours)
        logger.info(f"Generated {len(slots)} available Outlook slots for {day.isoformat()}")
        return self.availability(day, slots)

    async def create_event(self, spec: EventSpec) -> EventResult:
        attendees = []
        if spec.caller_email:
            attendees.append({
                "emailAddress": {"address": spec.caller_email, "name": spec.caller_name or spec.caller_email},
                "type": "required",
            })
        for email in spec.attendees:
            attendees.append({"emailAddress": {"address": email}, "type": "required"})

        event = {
            "subject": spec.title,
            "body": {"contentType": "text", "content": spec.description},
            "start": self._when(spec.start_time),
            "end": self._when(spec.end_time),
            "location": {"displayName": spec.location},
            "attendees": attendees,
            "isReminderOn": True,
            "reminderMinutesBeforeStart": 15,
        }
        if spec.add_video_conference:
            event["isOnlineMeeting"] = True
            event["onlineMeetingProvider"] = "teamsForBusiness"

        created = await self.api_request("POST", f"{self._calendar_path()}/events", json=event)
        logger.info(f"Outlook Calendar event created: {created['id']}")

        return EventResult(
            event_id=created["id"],
            event_link=created.get("webLink"),
            confirmed_time=spec.start_time,
            meet_link=(created.get("onlineMeeting") or {}).get("joinUrl"),
        )

    async def update_event(self, event_id: str, updates: EventUpdate) -> EventResult:
        patch = {}
        if updates.start_time:
            end_time = updates.start_time + timedelta(minutes=updates.duration or self.default_duration)
            patch["start"] = self._when(updates.start_time)
            patch["end"] = self._when(end_time)
        if updates.title:
            patch["subject"] = updates.title
        if updates.description:
            patch["body"] = {"contentType": "text", "content": updates.description}

        updated = await self.api_request(
            "PATCH",
            f"{self.GRAPH_ENDPOINT}/me/events/{quote(event_id, safe='')}",
            json=patch,
        )
        logger.info(f"Outlook Calendar event updated: {event_id}")

        return EventResult(
            event_id=updated["id"],
            event_link=updated.get("webLink"),
            confirmed_time=self._parse(updated["start"]) if updated.get("start") else updates.start_time,
            meet_link=(updated.get("onlineMeeting") or {}).get("joinUrl"),
        )

    async def delete_event(self, event_id: str, reason: Optional[str] = None) -> None:
        try:
            await self.api_request("DELETE", f"{self.GRAPH_ENDPOINT}/me/events/{quote(event_id, safe='')}")
        except ProviderRequestError as e:
            if e.status_code != 404:
                raise
            logger.info(f"Outlook Calendar event {event_id} was already deleted")
            return
        logger.info(f"Outlook Calendar event deleted: {event_id}" + (f" ({reason})" if reason else ""))

    async def get_events(self, start: datetime, end: datetime) -> List[EventSummary]:
        response = await self.api_request(
            "GET",
            f"{self._calendar_path()}/calendarView",
            params={
                "startDateTime": start.isoformat(),
                "endDateTime": end.isoformat(),
                "$orderby": "start/dateTime",
                "$top": 100,
            },
        ) or {}

        return [
            EventSummary(
                id=item["id"],
                title=item.get("subject"),
                description=item.get("bodyPreview"),
                start=self._parse(item["start"]),
                end=self._parse(item["end"]),
                link=item.get("webLink"),
                attendees=[
                    a["emailAddress"]["address"] for a in item.get("attendees", [])
                    if a.get("emailAddress", {}).get("address")
                ],
                location=(item.get("location") or {}).get("displayName"),
                meet_link=(item.get("onlineMeeting") or {}).get("joinUrl"),
                is_all_day=bool(item.get("isAllDay")),
                status=item.get("showAs"),
            )
            for item in response.get("value", [])
        ]

    async def list_calendars(self) -> List[CalendarSummary]:
        response = await self.api_request("GET", f"{self.GRAPH_ENDPOINT}/me/calendars") or {}
        return [
            CalendarSummary(
                id=cal["id"],
                name=cal.get("name"),
                primary=bool(cal.get("isDefaultCalendar")),
            )
            for cal in response.get("value", [])
        ]
