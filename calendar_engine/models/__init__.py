# calendar_engine/models/__init__.py
from .base import Base
from .calendar_integration import CalendarIntegration
from .calendar_booking import CalendarBooking

__all__ = [
    "Base",
    "CalendarIntegration",
    "CalendarBooking",
]
