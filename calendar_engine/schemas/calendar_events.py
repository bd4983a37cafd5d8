# calendar_engine/schemas/calendar_events.py
from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional, Dict, Any, List
from datetime import date, datetime
from enum import Enum
from zoneinfo import ZoneInfo


class CalendarProvider(str, Enum):
    GOOGLE = "google"
    OUTLOOK = "outlook"
    CALENDLY = "calendly"


class BookingStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"


TERMINAL_BOOKING_STATUSES = frozenset(
    {BookingStatus.CANCELLED, BookingStatus.COMPLETED, BookingStatus.NO_SHOW}
)

ALLOWED_BOOKING_TRANSITIONS: Dict[BookingStatus, frozenset] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: TERMINAL_BOOKING_STATUSES,
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
}


class BusinessHours(BaseModel):
    """Bookable window: whole hours in `timezone`, weekdays as Python weekday() numbers (0=Monday)"""
    start: int = Field(9, ge=0, le=23, description="Opening hour")
    end: int = Field(17, ge=1, le=24, description="Closing hour")
    days: List[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4])
    timezone: str = Field("America/New_York", description="IANA timezone of the window")

    @field_validator("days")
    @classmethod
    def validate_days(cls, v: List[int]) -> List[int]:
        if any(d < 0 or d > 6 for d in v):
            raise ValueError("Business days must be between 0 (Monday) and 6 (Sunday)")
        return sorted(set(v))

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        ZoneInfo(v)
        return v

    @model_validator(mode="after")
    def end_after_start(self) -> "BusinessHours":
        if self.end <= self.start:
            raise ValueError("Closing hour must be after opening hour")
        return self

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def is_business_day(self, day: date) -> bool:
        return day.weekday() in self.days


class TimeSlot(BaseModel):
    """Available time slot"""
    start: datetime = Field(..., description="Slot start time")
    end: datetime = Field(..., description="Slot end time")
    formatted: str = Field("", description="Human readable label, e.g. '9:00 AM - 9:30 AM'")
    status: Optional[str] = Field(None, description="Provider-reported slot status")


class AvailabilityResult(BaseModel):
    available: bool
    slots: List[TimeSlot] = Field(default_factory=list)
    date: Optional[str] = None
    scheduling_url: Optional[str] = None
    error: Optional[str] = None
    retryable: Optional[bool] = None


class OAuthTokens(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None


class ProviderCredentials(BaseModel):
    """Everything a provider needs to hydrate itself from storage"""
    organization_id: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    calendar_id: Optional[str] = None
    business_hours: BusinessHours = Field(default_factory=BusinessHours)
    default_duration: int = 30


class EventSpec(BaseModel):
    """Provider-neutral description of an event to create"""
    title: str
    description: str = ""
    start_time: datetime
    end_time: datetime
    attendees: List[str] = Field(default_factory=list)
    location: str = "Phone Call"
    caller_name: Optional[str] = None
    caller_phone: Optional[str] = None
    caller_email: Optional[str] = None
    purpose: Optional[str] = None
    add_video_conference: bool = False


class EventUpdate(BaseModel):
    start_time: Optional[datetime] = None
    duration: Optional[int] = None
    title: Optional[str] = None
    description: Optional[str] = None


class EventResult(BaseModel):
    event_id: Optional[str] = None
    event_link: Optional[str] = None
    confirmed_time: Optional[datetime] = None
    meet_link: Optional[str] = None
    needs_invitee_action: bool = False
    scheduling_url: Optional[str] = None
    message: Optional[str] = None


class EventSummary(BaseModel):
    """Normalized event as returned by getEvents"""
    id: str
    title: Optional[str] = None
    description: Optional[str] = None
    start: datetime
    end: datetime
    link: Optional[str] = None
    attendees: List[str] = Field(default_factory=list)
    location: Optional[str] = None
    meet_link: Optional[str] = None
    is_all_day: bool = False
    status: Optional[str] = None
    invitees_count: Optional[int] = None


class CalendarSummary(BaseModel):
    id: str
    name: Optional[str] = None
    primary: bool = False
    description: Optional[str] = None


class AppointmentDetails(BaseModel):
    """Appointment booking request"""
    caller_name: str = Field(..., description="Caller name")
    caller_phone: Optional[str] = Field(None, description="Caller phone number")
    caller_email: Optional[str] = Field(None, description="Caller email")
    purpose: Optional[str] = Field(None, description="Reason for the appointment")
    start_time: datetime = Field(..., description="Requested appointment time")
    end_time: Optional[datetime] = None
    duration: Optional[int] = Field(None, gt=0, description="Appointment duration in minutes")
    title: Optional[str] = None
    attendees: List[str] = Field(default_factory=list)
    location: Optional[str] = None
    add_video_conference: bool = False
    call_sid: Optional[str] = None


class BookingResult(BaseModel):
    success: bool
    event_id: Optional[str] = None
    event_link: Optional[str] = None
    confirmed_time: Optional[datetime] = None
    meet_link: Optional[str] = None
    booking_id: Optional[str] = None
    needs_manual_booking: Optional[bool] = None
    needs_invitee_action: Optional[bool] = None
    scheduling_url: Optional[str] = None
    error: Optional[str] = None
    retryable: Optional[bool] = None


class CancelResult(BaseModel):
    success: bool
    booking_id: Optional[str] = None
    error: Optional[str] = None
    retryable: Optional[bool] = None


class RescheduleResult(BaseModel):
    success: bool
    new_time: Optional[datetime] = None
    event_link: Optional[str] = None
    error: Optional[str] = None
    retryable: Optional[bool] = None


class UpcomingAppointmentsResult(BaseModel):
    appointments: List[EventSummary] = Field(default_factory=list)
    error: Optional[str] = None
    retryable: Optional[bool] = None


class OAuthStateEntry(BaseModel):
    organization_id: str
    user_id: Optional[str] = None
    provider: CalendarProvider
    created_at: datetime


class IntegrationRecord(BaseModel):
    """Stored integration with decrypted tokens; never serialized to clients"""
    id: str
    organization_id: str
    provider: CalendarProvider
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    calendar_id: Optional[str] = None
    calendar_name: Optional[str] = None
    enabled: bool = True
    default_duration: int = 30
    business_hours: Optional[Dict[str, Any]] = None
    connected_by_id: Optional[str] = None
    provider_config: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class IntegrationSummary(BaseModel):
    id: str
    provider: CalendarProvider
    enabled: bool
    calendar_id: Optional[str] = None
    calendar_name: Optional[str] = None
    default_duration: int
    business_hours: Optional[Dict[str, Any]] = None
    connected_by_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: IntegrationRecord) -> "IntegrationSummary":
        return cls.model_validate(record.model_dump(exclude={"access_token", "refresh_token"}))


class IntegrationSettingsUpdate(BaseModel):
    enabled: Optional[bool] = None
    default_duration: Optional[int] = Field(None, gt=0)
    business_hours: Optional[BusinessHours] = None
    calendar_id: Optional[str] = None
    calendar_name: Optional[str] = None


class BookingRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    organization_id: str
    event_id: Optional[str] = None
    event_link: Optional[str] = None
    caller_name: Optional[str] = None
    caller_phone: Optional[str] = None
    caller_email: Optional[str] = None
    purpose: Optional[str] = None
    scheduled_at: datetime
    duration: int = 30
    status: BookingStatus
    cancel_reason: Optional[str] = None
    call_sid: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    no_show_marked_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("id", "organization_id", mode="before")
    @classmethod
    def stringify(cls, v: Any) -> Any:
        return str(v) if v is not None else v


class ConnectResult(BaseModel):
    auth_url: str


class CallbackResult(BaseModel):
    success: bool
    provider: CalendarProvider
    organization_id: Optional[str] = None
    integration: Optional[IntegrationSummary] = None
    error: Optional[str] = None


class ProviderInfo(BaseModel):
    id: CalendarProvider
    name: str
    description: str
    connected: bool
    enabled: bool
    configured: bool
