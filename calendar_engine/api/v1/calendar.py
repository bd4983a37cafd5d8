# ============================================================================
# FILE: calendar_engine/api/v1/calendar.py
# Thin HTTP layer over CalendarService
# IMPORTANT: Specific routes MUST come before parameterized routes
# ============================================================================
import logging
from datetime import datetime
from typing import List, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse

from calendar_engine.api.dependencies import get_calendar_service, get_organization_id, get_user_id
from calendar_engine.config.settings import get_settings
from calendar_engine.schemas.calendar_events import (
    AppointmentDetails,
    AvailabilityResult,
    BookingRecord,
    BookingResult,
    BookingStatus,
    CalendarProvider,
    CalendarSummary,
    CancelResult,
    ConnectResult,
    IntegrationSettingsUpdate,
    IntegrationSummary,
    ProviderInfo,
    RescheduleResult,
    UpcomingAppointmentsResult,
)
from calendar_engine.schemas.calendar_requests import (
    BookAppointmentRequest,
    BookingStatusUpdate,
    CancelAppointmentRequest,
    RescheduleAppointmentRequest,
)
from calendar_engine.services.calendar.calendar_service import CalendarService
from calendar_engine.services.calendar.exceptions import (
    CalendarError,
    InvalidBookingTransition,
    OAuthNotConfigured,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["calendar"])


def _frontend_redirect(**params) -> RedirectResponse:
    settings = get_settings()
    return RedirectResponse(
        url=f"{settings.FRONTEND_URL.rstrip('/')}/settings/integrations?{urlencode(params)}",
        status_code=status.HTTP_302_FOUND,
    )


def _provider_error(e: CalendarError) -> HTTPException:
    code = status.HTTP_503_SERVICE_UNAVAILABLE if e.retryable else status.HTTP_502_BAD_GATEWAY
    return HTTPException(status_code=code, detail=e.message)


# ========== PROVIDERS & INTEGRATIONS ==========

@router.get("/providers", response_model=List[ProviderInfo])
async def list_providers(
        organization_id: str = Depends(get_organization_id),
        service: CalendarService = Depends(get_calendar_service),
):
    """Available calendar providers with connection status"""
    return await service.list_providers(organization_id)


@router.get("/integrations", response_model=List[IntegrationSummary])
async def list_integrations(
        organization_id: str = Depends(get_organization_id),
        service: CalendarService = Depends(get_calendar_service),
):
    return await service.list_integrations(organization_id)


@router.patch("/integrations/{provider}", response_model=IntegrationSummary)
async def update_integration(
        provider: CalendarProvider,
        changes: IntegrationSettingsUpdate,
        organization_id: str = Depends(get_organization_id),
        service: CalendarService = Depends(get_calendar_service),
):
    """Update enabled flag, duration, business hours or selected calendar"""
    integration = await service.update_integration_settings(organization_id, provider, changes)
    if integration is None:
        raise HTTPException(status_code=404, detail=f"{provider.value} integration not found")
    return integration


@router.delete("/integrations/{provider}")
async def disconnect_integration(
        provider: CalendarProvider,
        organization_id: str = Depends(get_organization_id),
        service: CalendarService = Depends(get_calendar_service),
):
    if not await service.disconnect(organization_id, provider):
        raise HTTPException(status_code=404, detail=f"{provider.value} integration not found")
    return {"success": True}


# ========== OAUTH ==========

@router.get("/connect/{provider}", response_model=ConnectResult)
async def connect_provider(
        provider: CalendarProvider,
        organization_id: str = Depends(get_organization_id),
        user_id: Optional[str] = Depends(get_user_id),
        service: CalendarService = Depends(get_calendar_service),
):
    """Returns authorization URL for the organization admin to visit"""
    try:
        return await service.connect(organization_id, user_id, provider)
    except OAuthNotConfigured as e:
        raise HTTPException(
            status_code=400,
            detail={"code": "OAUTH_NOT_CONFIGURED", "message": e.message},
        )


@router.get("/callback/{provider}")
async def oauth_callback(
        provider: CalendarProvider,
        code: Optional[str] = None,
        state: Optional[str] = None,
        error: Optional[str] = None,
        service: CalendarService = Depends(get_calendar_service),
):
    """Provider redirects here after authorization"""
    if error or not code:
        logger.warning(f"{provider.value} authorization returned without a code: {error}")
        if state:
            await service.state_store.consume(state)
        return _frontend_redirect(error="connection_failed")

    result = await service.handle_callback(provider, code, state)
    if not result.success:
        return _frontend_redirect(error=result.error)
    return _frontend_redirect(success=provider.value)


@router.get("/calendars", response_model=List[CalendarSummary])
async def list_calendars(
        organization_id: str = Depends(get_organization_id),
        service: CalendarService = Depends(get_calendar_service),
):
    """Calendars (or Calendly event types) available on the enabled integration"""
    try:
        return await service.list_calendars(organization_id)
    except CalendarError as e:
        raise _provider_error(e)


# ========== BOOKING ==========

@router.get("/availability", response_model=AvailabilityResult)
async def check_availability(
        date: str = Query(..., description="yyyy-mm-dd or an expression such as 'tomorrow'"),
        duration: Optional[int] = Query(None, gt=0),
        organization_id: str = Depends(get_organization_id),
        service: CalendarService = Depends(get_calendar_service),
):
    day = service.parse_date_time(date, None).date()
    return await service.check_availability(organization_id, day, duration)


@router.post("/book", response_model=BookingResult, response_model_exclude_none=True)
async def book_appointment(
        request: BookAppointmentRequest,
        organization_id: str = Depends(get_organization_id),
        service: CalendarService = Depends(get_calendar_service),
):
    start_time = request.start_time or service.parse_date_time(request.date, request.time)
    details = AppointmentDetails(
        start_time=start_time,
        **request.model_dump(exclude={"start_time", "date", "time"}),
    )
    return await service.book_appointment(organization_id, details)


@router.post("/cancel", response_model=CancelResult, response_model_exclude_none=True)
async def cancel_appointment(
        request: CancelAppointmentRequest,
        organization_id: str = Depends(get_organization_id),
        service: CalendarService = Depends(get_calendar_service),
):
    return await service.cancel_appointment(organization_id, request.event_id, request.reason)


@router.post("/reschedule", response_model=RescheduleResult, response_model_exclude_none=True)
async def reschedule_appointment(
        request: RescheduleAppointmentRequest,
        organization_id: str = Depends(get_organization_id),
        service: CalendarService = Depends(get_calendar_service),
):
    new_time = request.new_time or service.parse_date_time(request.date, request.time)
    return await service.reschedule_appointment(organization_id, request.event_id, new_time, request.duration)


@router.get("/upcoming", response_model=UpcomingAppointmentsResult, response_model_exclude_none=True)
async def upcoming_appointments(
        days: int = Query(7, ge=1, le=90),
        organization_id: str = Depends(get_organization_id),
        service: CalendarService = Depends(get_calendar_service),
):
    return await service.get_upcoming_appointments(organization_id, days)


# ========== BOOKING RECORDS ==========

@router.get("/bookings", response_model=List[BookingRecord])
async def list_bookings(
        status_filter: Optional[BookingStatus] = Query(None, alias="status"),
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = Query(50, ge=1, le=200),
        organization_id: str = Depends(get_organization_id),
        service: CalendarService = Depends(get_calendar_service),
):
    return await service.list_bookings(organization_id, status=status_filter, start=start, end=end, limit=limit)


@router.patch("/bookings/{booking_id}", response_model=BookingRecord)
async def update_booking_status(
        booking_id: str,
        update: BookingStatusUpdate,
        organization_id: str = Depends(get_organization_id),
        service: CalendarService = Depends(get_calendar_service),
):
    """Mark a booking confirmed, cancelled, completed or no-show"""
    try:
        booking = await service.update_booking_status(organization_id, booking_id, update.status, update.reason)
    except InvalidBookingTransition as e:
        raise HTTPException(status_code=409, detail=e.message)
    if booking is None:
        raise HTTPException(status_code=404, detail="Booking not found")
    return booking
