# calendar_engine/services/calendar/store.py
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from calendar_engine.models import CalendarBooking, CalendarIntegration
from calendar_engine.schemas.calendar_events import (
    BookingRecord,
    BookingStatus,
    CalendarProvider,
    IntegrationRecord,
    IntegrationSettingsUpdate,
    OAuthTokens,
)
from calendar_engine.utils.encryption import TokenCipher

logger = logging.getLogger(__name__)

BOOKING_DATETIME_FIELDS = (
    "scheduled_at", "cancelled_at", "completed_at", "no_show_marked_at", "created_at", "updated_at",
)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize to aware UTC; naive values (SQLite round trips) are taken as UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


class CalendarStore(Protocol):
    """Credential and booking persistence used by the calendar engine"""

    async def get_enabled_integration(self, organization_id: str) -> Optional[IntegrationRecord]: ...

    async def get_integration(self, organization_id: str, provider: CalendarProvider) -> Optional[IntegrationRecord]: ...

    async def list_integrations(self, organization_id: str) -> List[IntegrationRecord]: ...

    async def save_connection(self, organization_id: str, provider: CalendarProvider, tokens: OAuthTokens,
                              connected_by_id: Optional[str] = None,
                              provider_config: Optional[Dict[str, Any]] = None) -> IntegrationRecord: ...

    async def update_tokens(self, organization_id: str, provider: CalendarProvider, tokens: OAuthTokens) -> None: ...

    async def update_settings(self, organization_id: str, provider: CalendarProvider,
                              changes: IntegrationSettingsUpdate) -> Optional[IntegrationRecord]: ...

    async def delete_integration(self, organization_id: str, provider: CalendarProvider) -> bool: ...

    async def create_booking(self, organization_id: str, **fields) -> BookingRecord: ...

    async def get_booking(self, organization_id: str, booking_id: str) -> Optional[BookingRecord]: ...

    async def find_booking_by_event(self, organization_id: str, event_id: str) -> Optional[BookingRecord]: ...

    async def update_booking(self, organization_id: str, booking_id: str, **changes) -> Optional[BookingRecord]: ...

    async def list_bookings(self, organization_id: str, status: Optional[BookingStatus] = None,
                            start: Optional[datetime] = None, end: Optional[datetime] = None,
                            limit: int = 50) -> List[BookingRecord]: ...


class SqlAlchemyCalendarStore:
    """CalendarStore backed by the calendar_integrations / calendar_bookings tables"""

    def __init__(self, session_factory: sessionmaker, cipher: TokenCipher):
        self.session_factory = session_factory
        self.cipher = cipher

    # ========== INTEGRATIONS ==========
    def _to_record(self, row: CalendarIntegration) -> IntegrationRecord:
        return IntegrationRecord(
            id=str(row.id),
            organization_id=row.organization_id,
            provider=row.provider,
            access_token=self.cipher.decrypt(row.access_token_encrypted),
            refresh_token=self.cipher.decrypt(row.refresh_token_encrypted),
            token_expires_at=as_utc(row.token_expires_at),
            calendar_id=row.calendar_id,
            calendar_name=row.calendar_name,
            enabled=bool(row.enabled),
            default_duration=row.default_duration or 30,
            business_hours=row.business_hours,
            connected_by_id=row.connected_by_id,
            provider_config=row.provider_config or {},
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )

    @staticmethod
    def _find(db: Session, organization_id: str, provider: CalendarProvider) -> Optional[CalendarIntegration]:
        return db.execute(
            select(CalendarIntegration).where(
                CalendarIntegration.organization_id == organization_id,
                CalendarIntegration.provider == provider,
            )
        ).scalar_one_or_none()

    @staticmethod
    def _disable_others(db: Session, organization_id: str, provider: CalendarProvider) -> None:
        db.execute(
            update(CalendarIntegration)
            .where(
                CalendarIntegration.organization_id == organization_id,
                CalendarIntegration.provider != provider,
                CalendarIntegration.enabled.is_(True),
            )
            .values(enabled=False)
        )

    async def get_enabled_integration(self, organization_id: str) -> Optional[IntegrationRecord]:
        with self.session_factory() as db:
            row = db.execute(
                select(CalendarIntegration).where(
                    CalendarIntegration.organization_id == organization_id,
                    CalendarIntegration.enabled.is_(True),
                )
            ).scalar_one_or_none()
            return self._to_record(row) if row else None

    async def get_integration(self, organization_id: str, provider: CalendarProvider) -> Optional[IntegrationRecord]:
        with self.session_factory() as db:
            row = self._find(db, organization_id, provider)
            return self._to_record(row) if row else None

    async def list_integrations(self, organization_id: str) -> List[IntegrationRecord]:
        with self.session_factory() as db:
            rows = db.execute(
                select(CalendarIntegration)
                .where(CalendarIntegration.organization_id == organization_id)
                .order_by(CalendarIntegration.created_at)
            ).scalars().all()
            return [self._to_record(row) for row in rows]

    async def save_connection(self, organization_id: str, provider: CalendarProvider, tokens: OAuthTokens,
                              connected_by_id: Optional[str] = None,
                              provider_config: Optional[Dict[str, Any]] = None) -> IntegrationRecord:
        """Upsert the integration after an OAuth callback and make it the enabled one"""
        with self.session_factory() as db:
            self._disable_others(db, organization_id, provider)

            row = self._find(db, organization_id, provider)
            if row is None:
                row = CalendarIntegration(organization_id=organization_id, provider=provider)
                db.add(row)

            row.access_token_encrypted = self.cipher.encrypt(tokens.access_token)
            if tokens.refresh_token:
                row.refresh_token_encrypted = self.cipher.encrypt(tokens.refresh_token)
            row.token_expires_at = as_utc(tokens.expires_at)
            row.enabled = True
            row.connected_by_id = connected_by_id
            if provider_config is not None:
                row.provider_config = provider_config

            db.commit()
            db.refresh(row)
            logger.info(f"Saved {provider.value} calendar integration for organization {organization_id}")
            return self._to_record(row)

    async def update_tokens(self, organization_id: str, provider: CalendarProvider, tokens: OAuthTokens) -> None:
        values = {
            "access_token_encrypted": self.cipher.encrypt(tokens.access_token),
            "token_expires_at": as_utc(tokens.expires_at),
        }
        if tokens.refresh_token:
            values["refresh_token_encrypted"] = self.cipher.encrypt(tokens.refresh_token)

        with self.session_factory() as db:
            db.execute(
                update(CalendarIntegration)
                .where(
                    CalendarIntegration.organization_id == organization_id,
                    CalendarIntegration.provider == provider,
                )
                .values(**values)
            )
            db.commit()

    async def update_settings(self, organization_id: str, provider: CalendarProvider,
                              changes: IntegrationSettingsUpdate) -> Optional[IntegrationRecord]:
        with self.session_factory() as db:
            row = self._find(db, organization_id, provider)
            if row is None:
                return None

            if changes.enabled:
                self._disable_others(db, organization_id, provider)
            if changes.enabled is not None:
                row.enabled = changes.enabled
            if changes.default_duration is not None:
                row.default_duration = changes.default_duration
            if changes.business_hours is not None:
                row.business_hours = changes.business_hours.model_dump()
            if changes.calendar_id is not None:
                row.calendar_id = changes.calendar_id
            if changes.calendar_name is not None:
                row.calendar_name = changes.calendar_name

            db.commit()
            db.refresh(row)
            return self._to_record(row)

    async def delete_integration(self, organization_id: str, provider: CalendarProvider) -> bool:
        with self.session_factory() as db:
            row = self._find(db, organization_id, provider)
            if row is None:
                return False
            db.delete(row)
            db.commit()
            logger.info(f"Deleted {provider.value} calendar integration for organization {organization_id}")
            return True

    # ========== BOOKINGS ==========
    @staticmethod
    def _booking_record(row: CalendarBooking) -> BookingRecord:
        record = BookingRecord.model_validate(row)
        return record.model_copy(
            update={name: as_utc(getattr(record, name)) for name in BOOKING_DATETIME_FIELDS}
        )

    async def create_booking(self, organization_id: str, **fields) -> BookingRecord:
        for name in BOOKING_DATETIME_FIELDS:
            if name in fields:
                fields[name] = as_utc(fields[name])

        with self.session_factory() as db:
            row = CalendarBooking(organization_id=organization_id, **fields)
            db.add(row)
            db.commit()
            db.refresh(row)
            return self._booking_record(row)

    async def get_booking(self, organization_id: str, booking_id: str) -> Optional[BookingRecord]:
        booking_uuid = _parse_uuid(booking_id)
        if booking_uuid is None:
            return None
        with self.session_factory() as db:
            row = db.get(CalendarBooking, booking_uuid)
            if row is None or row.organization_id != organization_id:
                return None
            return self._booking_record(row)

    async def find_booking_by_event(self, organization_id: str, event_id: str) -> Optional[BookingRecord]:
        with self.session_factory() as db:
            row = db.execute(
                select(CalendarBooking)
                .where(
                    CalendarBooking.organization_id == organization_id,
                    CalendarBooking.event_id == event_id,
                )
                .order_by(CalendarBooking.created_at.desc())
                .limit(1)
            ).scalar_one_or_none()
            return self._booking_record(row) if row else None

    async def update_booking(self, organization_id: str, booking_id: str, **changes) -> Optional[BookingRecord]:
        booking_uuid = _parse_uuid(booking_id)
        if booking_uuid is None:
            return None
        for name in BOOKING_DATETIME_FIELDS:
            if name in changes:
                changes[name] = as_utc(changes[name])

        with self.session_factory() as db:
            row = db.get(CalendarBooking, booking_uuid)
            if row is None or row.organization_id != organization_id:
                return None
            for key, value in changes.items():
                setattr(row, key, value)
            db.commit()
            db.refresh(row)
            return self._booking_record(row)

    async def list_bookings(self, organization_id: str, status: Optional[BookingStatus] = None,
                            start: Optional[datetime] = None, end: Optional[datetime] = None,
                            limit: int = 50) -> List[BookingRecord]:
        query = select(CalendarBooking).where(CalendarBooking.organization_id == organization_id)
        if status is not None:
            query = query.where(CalendarBooking.status == status)
        if start is not None:
            query = query.where(CalendarBooking.scheduled_at >= as_utc(start))
        if end is not None:
            query = query.where(CalendarBooking.scheduled_at <= as_utc(end))
        query = query.order_by(CalendarBooking.scheduled_at).limit(limit)

        with self.session_factory() as db:
            rows = db.execute(query).scalars().all()
            return [self._booking_record(row) for row in rows]
