# ===== calendar_engine/models/calendar_booking.py =====
from sqlalchemy import Column, String, Integer, Text, DateTime, Enum, Uuid
from sqlalchemy.sql import func
from calendar_engine.models.base import Base
from calendar_engine.schemas.calendar_events import BookingStatus
import uuid


class CalendarBooking(Base):
    __tablename__ = "calendar_bookings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(String(64), nullable=False, index=True)

    # External event
    event_id = Column(String, nullable=True, index=True)
    event_link = Column(String, nullable=True)

    # Caller info
    caller_name = Column(String, nullable=True)
    caller_phone = Column(String, nullable=True)
    caller_email = Column(String, nullable=True)
    purpose = Column(Text, nullable=True)

    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    duration = Column(Integer, nullable=False, default=30)

    status = Column(Enum(BookingStatus, name="booking_status"), nullable=False, default=BookingStatus.PENDING)
    cancel_reason = Column(Text, nullable=True)
    call_sid = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    no_show_marked_at = Column(DateTime(timezone=True), nullable=True)
