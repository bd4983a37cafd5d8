# calendar_engine/schemas/__init__.py
from .calendar_events import (
    CalendarProvider,
    BookingStatus,
    BusinessHours,
    TimeSlot,
    AvailabilityResult,
    OAuthTokens,
    ProviderCredentials,
    EventSpec,
    EventUpdate,
    EventResult,
    EventSummary,
    CalendarSummary,
    AppointmentDetails,
    BookingResult,
    CancelResult,
    RescheduleResult,
    UpcomingAppointmentsResult,
    OAuthStateEntry,
    IntegrationRecord,
    IntegrationSummary,
    IntegrationSettingsUpdate,
    BookingRecord,
    ConnectResult,
    CallbackResult,
    ProviderInfo,
)

__all__ = [
    "CalendarProvider",
    "BookingStatus",
    "BusinessHours",
    "TimeSlot",
    "AvailabilityResult",
    "OAuthTokens",
    "ProviderCredentials",
    "EventSpec",
    "EventUpdate",
    "EventResult",
    "EventSummary",
    "CalendarSummary",
    "AppointmentDetails",
    "BookingResult",
    "CancelResult",
    "RescheduleResult",
    "UpcomingAppointmentsResult",
    "OAuthStateEntry",
    "IntegrationRecord",
    "IntegrationSummary",
    "IntegrationSettingsUpdate",
    "BookingRecord",
    "ConnectResult",
    "CallbackResult",
    "ProviderInfo",
]

from .calendar_requests import (
    BookAppointmentRequest,
    CancelAppointmentRequest,
    RescheduleAppointmentRequest,
    BookingStatusUpdate,
)

__all__ += [
    "BookAppointmentRequest",
    "CancelAppointmentRequest",
    "RescheduleAppointmentRequest",
    "BookingStatusUpdate",
]
