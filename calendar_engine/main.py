"""
FastAPI application for the calendar integration engine
"""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from calendar_engine.api.v1.router import api_v1_router
from calendar_engine.config.database import create_tables, get_session_factory
from calendar_engine.config.redis import build_redis_client, close_redis
from calendar_engine.config.settings import Settings, get_settings
from calendar_engine.services.calendar.calendar_service import CalendarService
from calendar_engine.services.calendar.http import build_http_client
from calendar_engine.services.calendar.locks import SingleFlight
from calendar_engine.services.calendar.oauth_state import InMemoryOAuthStateStore, RedisOAuthStateStore
from calendar_engine.services.calendar.store import SqlAlchemyCalendarStore
from calendar_engine.utils.encryption import TokenCipher
from calendar_engine.utils.my_logging import setup_logging

settings = get_settings()
logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def build_calendar_service(config: Settings, http_client, redis_client=None) -> CalendarService:
    """Wire the engine's collaborators; the redis client is only needed for the redis state backend"""
    if redis_client is not None:
        state_store = RedisOAuthStateStore(redis_client, ttl_seconds=config.OAUTH_STATE_TTL_SECONDS)
    else:
        state_store = InMemoryOAuthStateStore(ttl_seconds=config.OAUTH_STATE_TTL_SECONDS)

    return CalendarService(
        store=SqlAlchemyCalendarStore(get_session_factory(), TokenCipher(config.CALENDAR_ENCRYPTION_KEY)),
        http_client=http_client,
        settings=config,
        state_store=state_store,
        refresh_flights=SingleFlight(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(verbose=settings.DEBUG)

    # Tests and embedding applications may provide their own service
    if getattr(app.state, "calendar_service", None) is not None:
        yield
        return

    logger.info(f"{settings.APP_NAME} starting up (OAuth state backend: {settings.OAUTH_STATE_BACKEND})")
    create_tables()
    http_client = build_http_client(settings.CALENDAR_HTTP_TIMEOUT_SECONDS)
    redis_client = build_redis_client(settings) if settings.OAUTH_STATE_BACKEND == "redis" else None
    app.state.calendar_service = build_calendar_service(settings, http_client, redis_client)

    try:
        yield
    finally:
        await http_client.aclose()
        await close_redis(redis_client)
        logger.info(f"{settings.APP_NAME} shut down")


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title=settings.APP_NAME,
        description="Unified Google / Outlook / Calendly availability and booking",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url=None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["*"],
    )

    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/health", tags=["monitoring"])
    async def health_check():
        return {"status": "healthy", "service": settings.APP_NAME, "version": VERSION}

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("calendar_engine.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
