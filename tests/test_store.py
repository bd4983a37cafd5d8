"""Tests for the SQLAlchemy credential/booking store."""

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import select

from calendar_engine.models import CalendarIntegration
from calendar_engine.schemas.calendar_events import (
    BookingStatus,
    BusinessHours,
    CalendarProvider,
    IntegrationSettingsUpdate,
    OAuthTokens,
)
from tests.conftest import FIXED_NOW, ORG_ID, seed_integration


class TestIntegrations:
    @pytest.mark.asyncio
    async def test_tokens_encrypted_at_rest(self, store, session_factory):
        await seed_integration(store, CalendarProvider.GOOGLE, access_token="secret-access")

        with session_factory() as db:
            row = db.execute(select(CalendarIntegration)).scalar_one()
            assert row.access_token_encrypted != b"secret-access"
            assert b"secret-access" not in row.access_token_encrypted

        record = await store.get_integration(ORG_ID, CalendarProvider.GOOGLE)
        assert record.access_token == "secret-access"
        assert record.refresh_token == "refresh-1"
        assert record.token_expires_at == FIXED_NOW + timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_only_latest_connection_is_enabled(self, store):
        await seed_integration(store, CalendarProvider.GOOGLE)
        await seed_integration(store, CalendarProvider.OUTLOOK)

        enabled = await store.get_enabled_integration(ORG_ID)
        integrations = await store.list_integrations(ORG_ID)

        assert enabled.provider == CalendarProvider.OUTLOOK
        assert sum(1 for i in integrations if i.enabled) == 1
        assert len(integrations) == 2

    @pytest.mark.asyncio
    async def test_reconnect_upserts_and_keeps_refresh_token(self, store):
        await seed_integration(store, CalendarProvider.GOOGLE, refresh_token="original-refresh")
        await store.save_connection(
            ORG_ID, CalendarProvider.GOOGLE, OAuthTokens(access_token="access-2", refresh_token=None)
        )

        integrations = await store.list_integrations(ORG_ID)
        assert len(integrations) == 1
        assert integrations[0].access_token == "access-2"
        assert integrations[0].refresh_token == "original-refresh"

    @pytest.mark.asyncio
    async def test_organizations_are_isolated(self, store):
        await seed_integration(store, CalendarProvider.GOOGLE, organization_id="org-a")
        await seed_integration(store, CalendarProvider.CALENDLY, organization_id="org-b")

        assert (await store.get_enabled_integration("org-a")).provider == CalendarProvider.GOOGLE
        assert (await store.get_enabled_integration("org-b")).provider == CalendarProvider.CALENDLY
        assert await store.get_enabled_integration("org-c") is None

    @pytest.mark.asyncio
    async def test_update_tokens(self, store):
        await seed_integration(store, CalendarProvider.OUTLOOK)
        new_expiry = FIXED_NOW + timedelta(hours=2)

        await store.update_tokens(
            ORG_ID, CalendarProvider.OUTLOOK, OAuthTokens(access_token="access-2", expires_at=new_expiry)
        )

        record = await store.get_integration(ORG_ID, CalendarProvider.OUTLOOK)
        assert record.access_token == "access-2"
        assert record.refresh_token == "refresh-1"
        assert record.token_expires_at == new_expiry

    @pytest.mark.asyncio
    async def test_enabling_one_disables_others(self, store):
        await seed_integration(store, CalendarProvider.GOOGLE)
        await seed_integration(store, CalendarProvider.OUTLOOK)

        updated = await store.update_settings(
            ORG_ID, CalendarProvider.GOOGLE, IntegrationSettingsUpdate(enabled=True, default_duration=45)
        )

        assert updated.enabled
        assert updated.default_duration == 45
        assert (await store.get_integration(ORG_ID, CalendarProvider.OUTLOOK)).enabled is False
        assert (await store.get_enabled_integration(ORG_ID)).provider == CalendarProvider.GOOGLE

    @pytest.mark.asyncio
    async def test_update_business_hours(self, store):
        await seed_integration(store, CalendarProvider.GOOGLE)

        updated = await store.update_settings(
            ORG_ID,
            CalendarProvider.GOOGLE,
            IntegrationSettingsUpdate(business_hours=BusinessHours(start=8, end=12, days=[5, 6], timezone="UTC")),
        )

        assert updated.business_hours == {"start": 8, "end": 12, "days": [5, 6], "timezone": "UTC"}

    @pytest.mark.asyncio
    async def test_update_settings_unknown_integration(self, store):
        assert await store.update_settings(ORG_ID, CalendarProvider.GOOGLE, IntegrationSettingsUpdate()) is None

    @pytest.mark.asyncio
    async def test_delete_integration(self, store):
        await seed_integration(store, CalendarProvider.CALENDLY)

        assert await store.delete_integration(ORG_ID, CalendarProvider.CALENDLY) is True
        assert await store.delete_integration(ORG_ID, CalendarProvider.CALENDLY) is False
        assert await store.get_enabled_integration(ORG_ID) is None


class TestBookings:
    @pytest.mark.asyncio
    async def test_create_and_find_by_event(self, store):
        booking = await store.create_booking(
            ORG_ID,
            event_id="evt-1",
            caller_name="Ada",
            scheduled_at=FIXED_NOW,
            duration=30,
            status=BookingStatus.CONFIRMED,
        )

        found = await store.find_booking_by_event(ORG_ID, "evt-1")

        assert found.id == booking.id
        assert found.status == BookingStatus.CONFIRMED
        assert found.scheduled_at == FIXED_NOW
        assert found.scheduled_at.tzinfo is not None
        assert await store.find_booking_by_event("other-org", "evt-1") is None

    @pytest.mark.asyncio
    async def test_update_booking(self, store):
        booking = await store.create_booking(
            ORG_ID, scheduled_at=FIXED_NOW, status=BookingStatus.CONFIRMED, event_id="evt-1"
        )
        cancelled_at = FIXED_NOW + timedelta(minutes=5)

        updated = await store.update_booking(
            ORG_ID, booking.id, status=BookingStatus.CANCELLED, cancel_reason="sick", cancelled_at=cancelled_at
        )

        assert updated.status == BookingStatus.CANCELLED
        assert updated.cancel_reason == "sick"
        assert updated.cancelled_at == cancelled_at

    @pytest.mark.asyncio
    async def test_get_booking_with_bad_id(self, store):
        assert await store.get_booking(ORG_ID, "not-a-uuid") is None
        assert await store.update_booking(ORG_ID, "not-a-uuid", status=BookingStatus.COMPLETED) is None

    @pytest.mark.asyncio
    async def test_list_bookings_filters(self, store):
        for offset, status in [(1, BookingStatus.CONFIRMED), (2, BookingStatus.PENDING), (30, BookingStatus.CONFIRMED)]:
            await store.create_booking(
                ORG_ID, scheduled_at=FIXED_NOW + timedelta(days=offset), status=status
            )
        await store.create_booking("other-org", scheduled_at=FIXED_NOW, status=BookingStatus.CONFIRMED)

        everything = await store.list_bookings(ORG_ID)
        confirmed = await store.list_bookings(ORG_ID, status=BookingStatus.CONFIRMED)
        this_week = await store.list_bookings(ORG_ID, start=FIXED_NOW, end=FIXED_NOW + timedelta(days=7))
        limited = await store.list_bookings(ORG_ID, limit=1)

        assert len(everything) == 3
        assert [b.scheduled_at for b in everything] == sorted(b.scheduled_at for b in everything)
        assert len(confirmed) == 2
        assert len(this_week) == 2
        assert len(limited) == 1

    @pytest.mark.asyncio
    async def test_non_utc_input_is_normalized(self, store):
        local = datetime(2024, 1, 8, 9, 0, tzinfo=ZoneInfo("America/New_York"))
        booking = await store.create_booking(ORG_ID, scheduled_at=local, status=BookingStatus.PENDING)

        assert booking.scheduled_at == datetime(2024, 1, 8, 14, 0, tzinfo=timezone.utc)
