# calendar_engine/services/calendar/__init__.py
from .calendar_service import CalendarService
from .exceptions import (
    CalendarError,
    AuthExchangeError,
    TokenRefreshError,
    ProviderUnavailable,
    ProviderRequestError,
    UnsupportedOperation,
    OAuthNotConfigured,
    InvalidBookingTransition,
)

__all__ = [
    "CalendarService",
    "CalendarError",
    "AuthExchangeError",
    "TokenRefreshError",
    "ProviderUnavailable",
    "ProviderRequestError",
    "UnsupportedOperation",
    "OAuthNotConfigured",
    "InvalidBookingTransition",
]
