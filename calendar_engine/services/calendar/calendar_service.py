# calendar_engine/services/calendar/calendar_service.py
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple, Type
from zoneinfo import ZoneInfo

import httpx

from calendar_engine.config.settings import Settings
from calendar_engine.schemas.calendar_events import (
    ALLOWED_BOOKING_TRANSITIONS,
    AppointmentDetails,
    AvailabilityResult,
    BookingRecord,
    BookingResult,
    BookingStatus,
    BusinessHours,
    CalendarProvider,
    CalendarSummary,
    CallbackResult,
    CancelResult,
    ConnectResult,
    EventResult,
    EventSpec,
    EventUpdate,
    IntegrationRecord,
    IntegrationSettingsUpdate,
    IntegrationSummary,
    ProviderCredentials,
    ProviderInfo,
    RescheduleResult,
    UpcomingAppointmentsResult,
)
from calendar_engine.services.calendar.base import (
    BaseCalendarProvider,
    BaseOAuthConnector,
    to_local_day,
    utc_now,
)
from calendar_engine.services.calendar.calendly_service import CalendlyOAuthConnector, CalendlyProvider
from calendar_engine.services.calendar.date_parser import parse_date_time
from calendar_engine.services.calendar.exceptions import (
    CalendarError,
    InvalidBookingTransition,
    OAuthNotConfigured,
)
from calendar_engine.services.calendar.google_calendar_service import GoogleCalendarProvider, GoogleOAuthConnector
from calendar_engine.services.calendar.locks import SingleFlight
from calendar_engine.services.calendar.oauth_state import OAuthStateStore
from calendar_engine.services.calendar.outlook_service import OutlookCalendarProvider, OutlookOAuthConnector
from calendar_engine.services.calendar.store import CalendarStore

logger = logging.getLogger(__name__)

NO_CALENDAR = "No calendar connected"

PROVIDER_CLASSES: Dict[CalendarProvider, Type[BaseCalendarProvider]] = {
    CalendarProvider.GOOGLE: GoogleCalendarProvider,
    CalendarProvider.OUTLOOK: OutlookCalendarProvider,
    CalendarProvider.CALENDLY: CalendlyProvider,
}

CONNECTOR_CLASSES: Dict[CalendarProvider, Type[BaseOAuthConnector]] = {
    CalendarProvider.GOOGLE: GoogleOAuthConnector,
    CalendarProvider.OUTLOOK: OutlookOAuthConnector,
    CalendarProvider.CALENDLY: CalendlyOAuthConnector,
}

PROVIDER_CATALOGUE = {
    CalendarProvider.GOOGLE: ("Google Calendar", "Sync with Google Calendar for appointment booking"),
    CalendarProvider.OUTLOOK: ("Microsoft Outlook", "Sync with Outlook/Microsoft 365 calendar"),
    CalendarProvider.CALENDLY: ("Calendly", "Send Calendly scheduling links for appointments"),
}

STATUS_TIMESTAMPS = {
    BookingStatus.CANCELLED: "cancelled_at",
    BookingStatus.COMPLETED: "completed_at",
    BookingStatus.NO_SHOW: "no_show_marked_at",
}


def _check_exhaustive(mapping: Dict, what: str) -> None:
    missing = set(CalendarProvider) - set(mapping)
    if missing:
        raise ValueError(f"No {what} registered for: {', '.join(sorted(p.value for p in missing))}")


def _failure(error: Exception, action: str, organization_id: str) -> Tuple[str, bool]:
    """Caller-safe message and retryable flag for a failed provider operation"""
    if isinstance(error, CalendarError):
        logger.error(f"Calendar {action} failed for organization {organization_id}: {error.message}")
        return error.message, error.retryable
    logger.exception(f"Unexpected calendar {action} error for organization {organization_id}")
    return f"Calendar {action} failed", False


class CalendarService:
    """Provider-agnostic entry point for availability, booking and OAuth connections.

    Every booking operation returns a result object instead of raising, so automated
    callers can fall back to manual booking without knowing which provider is active.
    """

    def __init__(
            self,
            store: CalendarStore,
            http_client: httpx.AsyncClient,
            settings: Settings,
            state_store: OAuthStateStore,
            refresh_flights: Optional[SingleFlight] = None,
            provider_classes: Optional[Dict[CalendarProvider, Type[BaseCalendarProvider]]] = None,
            connector_classes: Optional[Dict[CalendarProvider, Type[BaseOAuthConnector]]] = None,
            clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.http_client = http_client
        self.settings = settings
        self.state_store = state_store
        self.refresh_flights = refresh_flights if refresh_flights is not None else SingleFlight()
        self.provider_classes = provider_classes or PROVIDER_CLASSES
        self.connector_classes = connector_classes or CONNECTOR_CLASSES
        self.clock = clock

        _check_exhaustive(self.provider_classes, "calendar provider")
        _check_exhaustive(self.connector_classes, "OAuth connector")

    # ===========================================================================
    # PROVIDER RESOLUTION
    # ===========================================================================
    def business_hours_for(self, record: Optional[IntegrationRecord]) -> BusinessHours:
        hours = {
            "start": self.settings.DEFAULT_BUSINESS_HOURS_START,
            "end": self.settings.DEFAULT_BUSINESS_HOURS_END,
            "days": self.settings.DEFAULT_BUSINESS_DAYS,
            "timezone": self.settings.DEFAULT_TIMEZONE,
        }
        if record is not None and record.business_hours:
            hours.update(record.business_hours)
        return BusinessHours(**hours)

    def credentials_for(self, record: IntegrationRecord) -> ProviderCredentials:
        return ProviderCredentials(
            organization_id=record.organization_id,
            access_token=record.access_token,
            refresh_token=record.refresh_token,
            expires_at=record.token_expires_at,
            calendar_id=record.calendar_id,
            business_hours=self.business_hours_for(record),
            default_duration=record.default_duration or self.settings.DEFAULT_APPOINTMENT_DURATION,
        )

    async def get_provider(self, organization_id: str) -> Optional[BaseCalendarProvider]:
        """Hydrated provider for the organization's enabled integration, or None"""
        record = await self.store.get_enabled_integration(organization_id)
        if record is None:
            return None

        provider_class = self.provider_classes[record.provider]
        provider = provider_class(
            organization_id,
            self.http_client,
            self.store,
            self.settings,
            refresh_flights=self.refresh_flights,
            clock=self.clock,
        )
        await provider.initialize(self.credentials_for(record))
        return provider

    # ===========================================================================
    # AVAILABILITY
    # ===========================================================================
    async def check_availability(self, organization_id: str, day, duration: Optional[int] = None) -> AvailabilityResult:
        try:
            provider = await self.get_provider(organization_id)
            if provider is None:
                return AvailabilityResult(available=False, slots=[], error=NO_CALENDAR)

            local_day = to_local_day(day, provider.business_hours.tz)
            return await provider.get_available_slots(local_day, duration or provider.default_duration)
        except Exception as e:
            message, retryable = _failure(e, "availability", organization_id)
            return AvailabilityResult(available=False, slots=[], error=message, retryable=retryable)

    # ===========================================================================
    # BOOKING
    # ===========================================================================
    async def book_appointment(self, organization_id: str, details: AppointmentDetails) -> BookingResult:
        try:
            provider = await self.get_provider(organization_id)
            if provider is None:
                return BookingResult(success=False, error=NO_CALENDAR, needs_manual_booking=True)

            start_time = self._localize(details.start_time, provider.business_hours.tz)
            duration = details.duration or provider.default_duration
            end_time = (
                self._localize(details.end_time, provider.business_hours.tz)
                if details.end_time else start_time + timedelta(minutes=duration)
            )

            result = await provider.create_event(EventSpec(
                title=details.title or f"Call with {details.caller_name}",
                description=self.format_description(details),
                start_time=start_time,
                end_time=end_time,
                attendees=details.attendees,
                location=details.location or "Phone Call",
                caller_name=details.caller_name,
                caller_phone=details.caller_phone,
                caller_email=details.caller_email,
                purpose=details.purpose,
                add_video_conference=details.add_video_conference,
            ))
        except Exception as e:
            message, retryable = _failure(e, "booking", organization_id)
            return BookingResult(success=False, error=message, needs_manual_booking=True, retryable=retryable)

        booking = await self.log_booking(
            organization_id,
            details.model_copy(update={"start_time": start_time}),
            result,
            int((end_time - start_time).total_seconds() // 60),
        )

        return BookingResult(
            success=True,
            event_id=result.event_id,
            event_link=result.event_link,
            confirmed_time=result.confirmed_time,
            meet_link=result.meet_link,
            booking_id=booking.id if booking else None,
            needs_invitee_action=result.needs_invitee_action or None,
            scheduling_url=result.scheduling_url,
        )

    async def log_booking(self, organization_id: str, details: AppointmentDetails, result: EventResult,
                          duration: int) -> Optional[BookingRecord]:
        """Best effort; a failure here never changes the booking outcome"""
        status = BookingStatus.CONFIRMED if result.event_id else BookingStatus.PENDING
        try:
            return await self.store.create_booking(
                organization_id,
                event_id=result.event_id,
                event_link=result.event_link,
                caller_name=details.caller_name,
                caller_phone=details.caller_phone,
                caller_email=details.caller_email,
                purpose=details.purpose,
                scheduled_at=details.start_time,
                duration=duration,
                status=status,
                call_sid=details.call_sid,
            )
        except Exception as e:
            logger.warning(f"Failed to log booking for organization {organization_id}: {e}")
            return None

    async def cancel_appointment(self, organization_id: str, event_id: str,
                                 reason: Optional[str] = None) -> CancelResult:
        """Cancel at the provider; a known local booking is marked CANCELLED even if that call fails"""
        booking = await self._find_booking(organization_id, event_id)
        if booking is not None and booking.status == BookingStatus.CANCELLED:
            return CancelResult(success=True, booking_id=booking.id)
        if booking is not None and BookingStatus.CANCELLED not in ALLOWED_BOOKING_TRANSITIONS[booking.status]:
            return CancelResult(
                success=False,
                booking_id=booking.id,
                error=InvalidBookingTransition(booking.status.value, BookingStatus.CANCELLED.value).message,
            )

        try:
            provider = await self.get_provider(organization_id)
            if provider is None:
                return CancelResult(success=False, error=NO_CALENDAR)
            await provider.delete_event(event_id, reason)
        except Exception as e:
            message, retryable = _failure(e, "cancel", organization_id)
            if booking is None:
                return CancelResult(success=False, error=message, retryable=retryable)
            logger.warning(f"External cancel of {event_id} failed; recording local cancellation anyway")

        if booking is None:
            return CancelResult(success=True)

        try:
            await self.store.update_booking(
                organization_id,
                booking.id,
                status=BookingStatus.CANCELLED,
                cancel_reason=reason,
                cancelled_at=self.clock(),
            )
        except Exception:
            logger.exception(f"Failed to record cancellation of booking {booking.id}")
            return CancelResult(success=False, booking_id=booking.id, error="Failed to record cancellation")

        return CancelResult(success=True, booking_id=booking.id)

    async def reschedule_appointment(self, organization_id: str, event_id: str, new_time: datetime,
                                     duration: Optional[int] = None) -> RescheduleResult:
        try:
            provider = await self.get_provider(organization_id)
            if provider is None:
                return RescheduleResult(success=False, error=NO_CALENDAR)

            booking = await self._find_booking(organization_id, event_id)
            new_time = self._localize(new_time, provider.business_hours.tz)
            result = await provider.update_event(event_id, EventUpdate(
                start_time=new_time,
                duration=duration or (booking.duration if booking else provider.default_duration),
            ))
        except Exception as e:
            message, retryable = _failure(e, "reschedule", organization_id)
            return RescheduleResult(success=False, error=message, retryable=retryable)

        if booking is not None:
            try:
                await self.store.update_booking(
                    organization_id, booking.id, scheduled_at=result.confirmed_time or new_time
                )
            except Exception as e:
                logger.warning(f"Failed to update booking {booking.id} after reschedule: {e}")

        return RescheduleResult(success=True, new_time=result.confirmed_time, event_link=result.event_link)

    async def get_upcoming_appointments(self, organization_id: str, days: int = 7) -> UpcomingAppointmentsResult:
        try:
            provider = await self.get_provider(organization_id)
            if provider is None:
                return UpcomingAppointmentsResult(appointments=[], error=NO_CALENDAR)

            start = self.clock()
            events = await provider.get_events(start, start + timedelta(days=days))
            return UpcomingAppointmentsResult(appointments=events)
        except Exception as e:
            message, retryable = _failure(e, "fetch", organization_id)
            return UpcomingAppointmentsResult(appointments=[], error=message, retryable=retryable)

    def parse_date_time(self, date_expr: Optional[str], time_expr: Optional[str],
                        timezone_name: Optional[str] = None) -> datetime:
        now = self.clock().astimezone(ZoneInfo(timezone_name or self.settings.DEFAULT_TIMEZONE))
        return parse_date_time(date_expr, time_expr, now)

    def format_description(self, details: AppointmentDetails) -> str:
        lines = [
            "Phone Appointment",
            "",
            f"Caller: {details.caller_name or 'Unknown'}",
            f"Phone: {details.caller_phone or 'Not provided'}",
            f"Email: {details.caller_email or 'Not provided'}",
            "",
            f"Purpose: {details.purpose or 'Not specified'}",
            "",
            "---",
            f"Booked via {self.settings.APP_NAME} ({self.settings.BOOKING_SOURCE_LABEL})",
        ]
        return "\n".join(lines)

    # ===========================================================================
    # BOOKING RECORDS
    # ===========================================================================
    async def list_bookings(self, organization_id: str, status: Optional[BookingStatus] = None,
                            start: Optional[datetime] = None, end: Optional[datetime] = None,
                            limit: int = 50) -> List[BookingRecord]:
        return await self.store.list_bookings(organization_id, status=status, start=start, end=end, limit=limit)

    async def update_booking_status(self, organization_id: str, booking_id: str, status: BookingStatus,
                                    reason: Optional[str] = None) -> Optional[BookingRecord]:
        """Move a booking along PENDING -> CONFIRMED -> CANCELLED | COMPLETED | NO_SHOW"""
        booking = await self.store.get_booking(organization_id, booking_id)
        if booking is None:
            return None
        if booking.status == status:
            return booking
        if status not in ALLOWED_BOOKING_TRANSITIONS[booking.status]:
            raise InvalidBookingTransition(booking.status.value, status.value)

        changes = {"status": status}
        if status in STATUS_TIMESTAMPS:
            changes[STATUS_TIMESTAMPS[status]] = self.clock()
        if status == BookingStatus.CANCELLED:
            changes["cancel_reason"] = reason
            if booking.event_id:
                await self._cancel_external(organization_id, booking.event_id, reason)

        return await self.store.update_booking(organization_id, booking_id, **changes)

    async def _cancel_external(self, organization_id: str, event_id: str, reason: Optional[str]) -> bool:
        try:
            provider = await self.get_provider(organization_id)
            if provider is None:
                logger.warning(f"No calendar connected; {event_id} cancelled locally only")
                return False
            await provider.delete_event(event_id, reason)
            return True
        except Exception as e:
            logger.warning(f"External cancel of {event_id} failed for organization {organization_id}: {e}")
            return False

    async def _find_booking(self, organization_id: str, event_id: str) -> Optional[BookingRecord]:
        try:
            return await self.store.find_booking_by_event(organization_id, event_id)
        except Exception as e:
            logger.warning(f"Booking lookup for {event_id} failed: {e}")
            return None

    @staticmethod
    def _localize(value: datetime, tz: ZoneInfo) -> datetime:
        """Naive datetimes are wall time in the business timezone"""
        if value.tzinfo is None:
            return value.replace(tzinfo=tz)
        return value

    # ===========================================================================
    # OAUTH CONNECTIONS
    # ===========================================================================
    def connector(self, provider: CalendarProvider) -> BaseOAuthConnector:
        return self.connector_classes[provider](self.settings, self.http_client, clock=self.clock)

    def redirect_uri_for(self, provider: CalendarProvider) -> str:
        return f"{self.settings.PUBLIC_BASE_URL.rstrip('/')}/api/v1/calendar/callback/{provider.value}"

    async def connect(self, organization_id: str, user_id: Optional[str], provider: CalendarProvider,
                      redirect_uri: Optional[str] = None) -> ConnectResult:
        connector = self.connector(provider)
        if not connector.configured:
            raise OAuthNotConfigured(provider.value)

        state = await self.state_store.issue(organization_id, user_id, provider)
        auth_url = connector.get_auth_url(redirect_uri or self.redirect_uri_for(provider), state)
        logger.info(f"Started {provider.value} calendar connection for organization {organization_id}")
        return ConnectResult(auth_url=auth_url)

    async def handle_callback(self, provider: CalendarProvider, code: str, state: Optional[str],
                              redirect_uri: Optional[str] = None) -> CallbackResult:
        entry = await self.state_store.consume(state) if state else None
        if entry is None:
            logger.warning(f"Rejected {provider.value} calendar callback with unknown or expired state")
            return CallbackResult(success=False, provider=provider, error="invalid_state")

        if entry.provider != provider:
            logger.warning(f"Calendar callback for {provider.value} carried a {entry.provider.value} state")
            return CallbackResult(success=False, provider=provider, organization_id=entry.organization_id,
                                  error="provider_mismatch")

        try:
            tokens = await self.connector(provider).exchange_code(code, redirect_uri or self.redirect_uri_for(provider))
            record = await self.store.save_connection(
                entry.organization_id, provider, tokens, connected_by_id=entry.user_id
            )
        except Exception as e:
            _failure(e, "connection", entry.organization_id)
            return CallbackResult(success=False, provider=provider, organization_id=entry.organization_id,
                                  error="connection_failed")

        logger.info(f"Connected {provider.value} calendar for organization {entry.organization_id}")
        return CallbackResult(
            success=True,
            provider=provider,
            organization_id=entry.organization_id,
            integration=IntegrationSummary.from_record(record),
        )

    # ===========================================================================
    # INTEGRATION MANAGEMENT
    # ===========================================================================
    async def list_integrations(self, organization_id: str) -> List[IntegrationSummary]:
        records = await self.store.list_integrations(organization_id)
        return [IntegrationSummary.from_record(record) for record in records]

    async def update_integration_settings(self, organization_id: str, provider: CalendarProvider,
                                          changes: IntegrationSettingsUpdate) -> Optional[IntegrationSummary]:
        record = await self.store.update_settings(organization_id, provider, changes)
        return IntegrationSummary.from_record(record) if record else None

    async def disconnect(self, organization_id: str, provider: CalendarProvider) -> bool:
        return await self.store.delete_integration(organization_id, provider)

    async def list_providers(self, organization_id: str) -> List[ProviderInfo]:
        integrations = {record.provider: record for record in await self.store.list_integrations(organization_id)}
        catalogue = []
        for provider in CalendarProvider:
            name, description = PROVIDER_CATALOGUE[provider]
            record = integrations.get(provider)
            catalogue.append(ProviderInfo(
                id=provider,
                name=name,
                description=description,
                connected=record is not None,
                enabled=bool(record and record.enabled),
                configured=self.connector(provider).configured,
            ))
        return catalogue

    async def list_calendars(self, organization_id: str) -> List[CalendarSummary]:
        """Calendars (or Calendly event types) of the enabled integration; raises CalendarError"""
        provider = await self.get_provider(organization_id)
        if provider is None:
            return []
        return await provider.list_calendars()
