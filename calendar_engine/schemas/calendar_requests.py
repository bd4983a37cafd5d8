# calendar_engine/schemas/calendar_requests.py
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from calendar_engine.schemas.calendar_events import BookingStatus


class BookAppointmentRequest(BaseModel):
    """Booking request; either start_time or spoken date/time expressions"""
    caller_name: str
    caller_phone: Optional[str] = None
    caller_email: Optional[str] = None
    purpose: Optional[str] = None
    start_time: Optional[datetime] = None
    date: Optional[str] = Field(None, description="e.g. 'tomorrow', 'next friday', '2024-01-02'")
    time: Optional[str] = Field(None, description="e.g. '3pm', 'morning', '14:30'")
    duration: Optional[int] = Field(None, gt=0)
    title: Optional[str] = None
    attendees: List[str] = Field(default_factory=list)
    location: Optional[str] = None
    add_video_conference: bool = False
    call_sid: Optional[str] = None


class CancelAppointmentRequest(BaseModel):
    event_id: str
    reason: Optional[str] = None


class RescheduleAppointmentRequest(BaseModel):
    event_id: str
    new_time: Optional[datetime] = None
    date: Optional[str] = None
    time: Optional[str] = None
    duration: Optional[int] = Field(None, gt=0)


class BookingStatusUpdate(BaseModel):
    status: BookingStatus
    reason: Optional[str] = None
