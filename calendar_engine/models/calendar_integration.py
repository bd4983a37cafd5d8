# ===== calendar_engine/models/calendar_integration.py =====
from sqlalchemy import (
    Column, String, Boolean, Integer, DateTime, LargeBinary, JSON, Enum,
    Index, UniqueConstraint, Uuid, text,
)
from sqlalchemy.sql import func
from calendar_engine.models.base import Base
from calendar_engine.schemas.calendar_events import CalendarProvider
import uuid


class CalendarIntegration(Base):
    __tablename__ = "calendar_integrations"
    __table_args__ = (
        UniqueConstraint("organization_id", "provider", name="uq_calendar_integration_org_provider"),
        # At most one enabled integration per organization
        Index(
            "uq_calendar_integration_org_enabled",
            "organization_id",
            unique=True,
            postgresql_where=text("enabled"),
            sqlite_where=text("enabled = 1"),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(String(64), nullable=False, index=True)

    provider = Column(Enum(CalendarProvider, name="calendar_provider"), nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)

    # OAuth tokens, Fernet-encrypted
    access_token_encrypted = Column(LargeBinary)
    refresh_token_encrypted = Column(LargeBinary)
    token_expires_at = Column(DateTime(timezone=True))

    calendar_id = Column(String)  # google/outlook calendar id, defaults to primary
    calendar_name = Column(String)
    default_duration = Column(Integer, nullable=False, default=30)
    business_hours = Column(JSON)  # {"start": 9, "end": 17, "days": [0..4], "timezone": "..."}

    # Provider-specific config (calendly user uri, outlook mailbox, ...)
    provider_config = Column(JSON, default=dict)

    connected_by_id = Column(String(64))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
