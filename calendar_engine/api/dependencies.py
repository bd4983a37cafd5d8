# ============================================================================
# FILE: calendar_engine/api/dependencies.py
# Request-scoped dependencies for the calendar routes
# Authentication happens upstream; the gateway forwards tenant and user ids
# ============================================================================
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from calendar_engine.services.calendar.calendar_service import CalendarService


def get_calendar_service(request: Request) -> CalendarService:
    service = getattr(request.app.state, "calendar_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Calendar service is not ready",
        )
    return service


def get_organization_id(x_organization_id: Optional[str] = Header(None)) -> str:
    if not x_organization_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Organization-ID header is required",
        )
    return x_organization_id


def get_user_id(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    return x_user_id
