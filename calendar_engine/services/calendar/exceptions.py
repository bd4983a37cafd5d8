# calendar_engine/services/calendar/exceptions.py
from typing import Optional


class CalendarError(Exception):
    """Base class for calendar engine failures"""
    retryable = False

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.provider = provider


class AuthExchangeError(CalendarError):
    """OAuth code exchange rejected by the provider.

    `detail` keeps the raw provider body for logs; it is never shown to end users.
    """

    def __init__(self, provider: str, status_code: Optional[int] = None, detail: Optional[str] = None):
        super().__init__(f"{provider} authorization code exchange failed", provider=provider)
        self.status_code = status_code
        self.detail = detail


class TokenRefreshError(CalendarError):
    """Access token could not be refreshed; the user may need to reconnect"""

    def __init__(self, message: str, provider: Optional[str] = None, detail: Optional[str] = None):
        super().__init__(message, provider=provider)
        self.detail = detail


class ProviderUnavailable(CalendarError):
    """Timeout, transport failure, throttling or 5xx from the provider"""
    retryable = True

    def __init__(self, message: str, provider: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, provider=provider)
        self.status_code = status_code


class ProviderRequestError(CalendarError):
    """Provider rejected the request (4xx other than throttling)"""

    def __init__(self, message: str, provider: Optional[str] = None,
                 status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message, provider=provider)
        self.status_code = status_code
        self.body = body


class UnsupportedOperation(CalendarError):
    """Active provider cannot perform the requested operation"""


class OAuthNotConfigured(CalendarError):
    """Client id/secret for the provider are not set"""

    def __init__(self, provider: str):
        super().__init__(f"{provider} OAuth is not configured", provider=provider)


class InvalidBookingTransition(CalendarError):
    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move booking from {current} to {requested}")
        self.current = current
        self.requested = requested
