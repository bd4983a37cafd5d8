"""
API v1 router setup
"""
from fastapi import APIRouter

from calendar_engine.api.v1 import calendar

api_v1_router = APIRouter()

# ============================================================================
# CALENDAR ROUTES (tenant resolved from X-Organization-ID)
# ============================================================================
api_v1_router.include_router(
    calendar.router,
    prefix="/calendar",
    tags=["Calendar"]
)


# ============================================================================
# ROOT ENDPOINT - API Info
# ============================================================================
@api_v1_router.get("/", tags=["Info"])
async def api_info():
    """API information and available endpoints"""
    return {
        "version": "1.0",
        "calendar": "/api/v1/calendar",
        "providers": ["google", "outlook", "calendly"],
    }
