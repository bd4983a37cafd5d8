"""Calendly provider: invitee-driven booking via scheduling links."""

import json
from datetime import date, timedelta

import httpx
import pytest

from calendar_engine.schemas.calendar_events import (
    CalendarProvider,
    EventSpec,
    EventUpdate,
    ProviderCredentials,
)
from calendar_engine.services.calendar.calendly_service import CALENDLY_TOKEN_URI, CalendlyProvider
from calendar_engine.services.calendar.exceptions import UnsupportedOperation
from tests.conftest import FIXED_NOW, ORG_ID, seed_integration

API = "https://api.calendly.com"
USER_URI = f"{API}/users/U1"
SHORT_TYPE = f"{API}/event_types/ET15"
HALF_HOUR_TYPE = f"{API}/event_types/ET30"


def add_account(fake_api, event_types=None):
    fake_api.add("GET", f"{API}/users/me", httpx.Response(200, json={"resource": {
        "uri": USER_URI, "name": "Owner", "scheduling_url": "https://calendly.com/owner",
    }}))
    if event_types is None:
        event_types = [
            {"uri": SHORT_TYPE, "name": "Quick chat", "duration": 15,
             "scheduling_url": "https://calendly.com/owner/15min"},
            {"uri": HALF_HOUR_TYPE, "name": "Consultation", "duration": 30,
             "scheduling_url": "https://calendly.com/owner/30min"},
        ]
    fake_api.add("GET", f"{API}/event_types", httpx.Response(200, json={"collection": event_types}))


async def make_provider(fake_api, store, settings, clock, expires_at=FIXED_NOW + timedelta(hours=1)):
    await seed_integration(store, CalendarProvider.CALENDLY, expires_at=expires_at)
    provider = CalendlyProvider(ORG_ID, fake_api.client(), store, settings, clock=clock)
    await provider.initialize(ProviderCredentials(
        organization_id=ORG_ID,
        access_token="access-1",
        refresh_token="refresh-1",
        expires_at=expires_at,
    ))
    return provider


class TestCalendlyAvailability:
    @pytest.mark.asyncio
    async def test_slots_come_from_matching_event_type(self, settings, fake_api, store, clock):
        add_account(fake_api)
        fake_api.add("GET", f"{API}/event_type_available_times", httpx.Response(200, json={"collection": [
            {"start_time": "2024-01-09T15:00:00Z", "status": "available"},
            {"start_time": "2024-01-09T15:30:00Z", "status": "available"},
        ]}))
        provider = await make_provider(fake_api, store, settings, clock)

        result = await provider.get_available_slots(date(2024, 1, 9), 30)

        assert result.available
        assert result.scheduling_url == "https://calendly.com/owner"
        assert [s.formatted for s in result.slots] == ["10:00 AM - 10:30 AM", "10:30 AM - 11:00 AM"]
        request = fake_api.calls_to("GET", f"{API}/event_type_available_times")[0]
        assert request.url.params["event_type"] == HALF_HOUR_TYPE

    @pytest.mark.asyncio
    async def test_range_never_starts_in_the_past(self, settings, fake_api, store, clock):
        add_account(fake_api)
        fake_api.add("GET", f"{API}/event_type_available_times", httpx.Response(200, json={"collection": []}))
        provider = await make_provider(fake_api, store, settings, clock)

        result = await provider.get_available_slots(FIXED_NOW.date(), 30)

        assert result.available is False
        request = fake_api.calls_to("GET", f"{API}/event_type_available_times")[0]
        assert request.url.params["start_time"] == "2024-01-08T14:01:00.000000Z"

    @pytest.mark.asyncio
    async def test_weekend_makes_no_calls(self, settings, fake_api, store, clock):
        provider = await make_provider(fake_api, store, settings, clock)

        result = await provider.get_available_slots(date(2024, 1, 13), 30)

        assert result.available is False
        assert result.slots == []
        assert fake_api.calls == []

    @pytest.mark.asyncio
    async def test_no_event_types(self, settings, fake_api, store, clock):
        add_account(fake_api, event_types=[])
        provider = await make_provider(fake_api, store, settings, clock)

        result = await provider.get_available_slots(date(2024, 1, 9), 30)

        assert result.available is False
        assert result.error == "No event types configured"

    @pytest.mark.asyncio
    async def test_unmatched_duration_uses_first_type(self, settings, fake_api, store, clock):
        add_account(fake_api)
        provider = await make_provider(fake_api, store, settings, clock)

        event_type = await provider.resolve_event_type(45)

        assert event_type["uri"] == SHORT_TYPE


class TestCalendlyBooking:
    @pytest.mark.asyncio
    async def test_create_event_returns_single_use_link(self, settings, fake_api, store, clock):
        add_account(fake_api)
        fake_api.add("POST", f"{API}/scheduling_links", httpx.Response(201, json={"resource": {
            "booking_url": "https://calendly.com/d/abc-123", "owner": HALF_HOUR_TYPE, "owner_type": "EventType",
        }}))
        provider = await make_provider(fake_api, store, settings, clock)

        result = await provider.create_event(EventSpec(
            title="Consultation", start_time=FIXED_NOW, end_time=FIXED_NOW + timedelta(minutes=30),
        ))

        assert result.needs_invitee_action
        assert result.event_id is None
        assert result.confirmed_time is None
        assert result.scheduling_url == "https://calendly.com/d/abc-123"
        sent = json.loads(fake_api.calls_to("POST", f"{API}/scheduling_links")[0].content)
        assert sent == {"max_event_count": 1, "owner": HALF_HOUR_TYPE, "owner_type": "EventType"}

    @pytest.mark.asyncio
    async def test_rejected_link_falls_back_to_public_url(self, settings, fake_api, store, clock):
        add_account(fake_api)
        fake_api.add("POST", f"{API}/scheduling_links", httpx.Response(403, json={"title": "Permission Denied"}))
        provider = await make_provider(fake_api, store, settings, clock)

        result = await provider.create_event(EventSpec(
            title="Consultation", start_time=FIXED_NOW, end_time=FIXED_NOW + timedelta(minutes=30),
        ))

        assert result.needs_invitee_action
        assert result.scheduling_url == "https://calendly.com/owner/30min"
        assert result.confirmed_time is None
        assert result.message == "Please use the scheduling link to book"

    @pytest.mark.asyncio
    async def test_update_is_unsupported(self, settings, fake_api, store, clock):
        provider = await make_provider(fake_api, store, settings, clock)

        with pytest.raises(UnsupportedOperation):
            await provider.update_event("EV1", EventUpdate(start_time=FIXED_NOW))
        assert fake_api.calls == []

    @pytest.mark.asyncio
    async def test_delete_posts_cancellation(self, settings, fake_api, store, clock):
        cancellation = f"{API}/scheduled_events/EV1/cancellation"
        fake_api.add("POST", cancellation, httpx.Response(201, json={"resource": {"canceled_by": "Owner"}}))
        provider = await make_provider(fake_api, store, settings, clock)

        await provider.delete_event("EV1")

        sent = json.loads(fake_api.calls_to("POST", cancellation)[0].content)
        assert sent == {"reason": "Cancelled via AI receptionist"}

    @pytest.mark.asyncio
    async def test_get_events(self, settings, fake_api, store, clock):
        add_account(fake_api)
        fake_api.add("GET", f"{API}/scheduled_events", httpx.Response(200, json={"collection": [{
            "uri": f"{API}/scheduled_events/EV1",
            "name": "Consultation",
            "start_time": "2024-01-09T15:00:00.000000Z",
            "end_time": "2024-01-09T15:30:00.000000Z",
            "status": "active",
            "location": {"type": "zoom", "join_url": "https://zoom.us/j/1"},
            "invitees_counter": {"total": 1},
        }]}))
        provider = await make_provider(fake_api, store, settings, clock)

        events = await provider.get_events(FIXED_NOW, FIXED_NOW + timedelta(days=7))

        assert events[0].id == f"{API}/scheduled_events/EV1"
        assert events[0].meet_link == "https://zoom.us/j/1"
        assert events[0].invitees_count == 1
        assert fake_api.calls_to("GET", f"{API}/scheduled_events")[0].url.params["user"] == USER_URI


    @pytest.mark.asyncio
    async def test_event_invitees_are_normalized(self, settings, fake_api, store, clock):
        event_uri = f"{API}/scheduled_events/EV1"
        fake_api.add("GET", f"{event_uri}/invitees", httpx.Response(200, json={"collection": [{
            "uri": f"{event_uri}/invitees/INV1",
            "name": "Ada Lovelace",
            "email": "ada@example.com",
            "status": "active",
            "timezone": "America/New_York",
            "created_at": "2024-01-08T14:05:00.000000Z",
            "questions_and_answers": [{"question": "Topic", "answer": "Pricing"}],
        }, {
            "uri": f"{event_uri}/invitees/INV2",
            "name": "Charles Babbage",
            "email": "charles@example.com",
            "status": "canceled",
        }]}))
        provider = await make_provider(fake_api, store, settings, clock)

        invitees = await provider.get_event_invitees(event_uri)

        assert [i["email"] for i in invitees] == ["ada@example.com", "charles@example.com"]
        assert invitees[0]["created_at"] == FIXED_NOW + timedelta(minutes=5)
        assert invitees[0]["questions"] == [{"question": "Topic", "answer": "Pricing"}]
        assert invitees[1]["status"] == "canceled"
        assert invitees[1]["created_at"] is None
        assert invitees[1]["questions"] == []
        assert fake_api.calls_to("GET", f"{event_uri}/invitees")[0].headers["Authorization"] == "Bearer access-1"

class TestCalendlyTokens:
    @pytest.mark.asyncio
    async def test_refresh_token_rotates(self, settings, fake_api, store, clock):
        fake_api.add("POST", CALENDLY_TOKEN_URI, httpx.Response(200, json={
            "access_token": "access-2", "refresh_token": "refresh-2", "expires_in": 7200,
        }))

        provider = await make_provider(fake_api, store, settings, clock, expires_at=FIXED_NOW)

        assert provider.refresh_token == "refresh-2"
        stored = await store.get_integration(ORG_ID, CalendarProvider.CALENDLY)
        assert stored.refresh_token == "refresh-2"
        assert stored.token_expires_at == FIXED_NOW + timedelta(hours=2)
