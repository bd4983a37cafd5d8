# calendar_engine/services/calendar/oauth_state.py
import json
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Protocol

from calendar_engine.config.redis import RedisKeys
from calendar_engine.schemas.calendar_events import CalendarProvider, OAuthStateEntry

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_state_token() -> str:
    return secrets.token_hex(32)


class OAuthStateStore(Protocol):
    async def issue(self, organization_id: str, user_id: Optional[str], provider: CalendarProvider) -> str:
        ...

    async def consume(self, token: str) -> Optional[OAuthStateEntry]:
        ...


class InMemoryOAuthStateStore:
    """Single-process state map. Entries are single use and expire after `ttl_seconds`."""

    def __init__(self, ttl_seconds: int = 600, clock: Callable[[], datetime] = utc_now):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self._entries: Dict[str, OAuthStateEntry] = {}

    def _expired(self, entry: OAuthStateEntry) -> bool:
        return self.clock() - entry.created_at > self.ttl

    async def issue(self, organization_id: str, user_id: Optional[str], provider: CalendarProvider) -> str:
        self.sweep()
        token = new_state_token()
        self._entries[token] = OAuthStateEntry(
            organization_id=organization_id,
            user_id=user_id,
            provider=provider,
            created_at=self.clock(),
        )
        return token

    async def consume(self, token: str) -> Optional[OAuthStateEntry]:
        entry = self._entries.pop(token, None)
        if entry is None:
            return None
        if self._expired(entry):
            logger.warning(f"OAuth state for organization {entry.organization_id} expired")
            return None
        return entry

    def sweep(self) -> int:
        expired = [token for token, entry in self._entries.items() if self._expired(entry)]
        for token in expired:
            del self._entries[token]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class RedisOAuthStateStore:
    """State map shared across instances; Redis expiry is backed by a created-at check on read"""

    def __init__(self, redis_client, ttl_seconds: int = 600, clock: Callable[[], datetime] = utc_now):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    async def issue(self, organization_id: str, user_id: Optional[str], provider: CalendarProvider) -> str:
        token = new_state_token()
        entry = OAuthStateEntry(
            organization_id=organization_id,
            user_id=user_id,
            provider=provider,
            created_at=self.clock(),
        )
        await self.redis.set(
            RedisKeys.OAUTH_STATE.format(token=token),
            entry.model_dump_json(),
            ex=self.ttl_seconds,
        )
        return token

    async def consume(self, token: str) -> Optional[OAuthStateEntry]:
        raw = await self.redis.getdel(RedisKeys.OAUTH_STATE.format(token=token))
        if not raw:
            return None
        entry = OAuthStateEntry.model_validate(json.loads(raw))
        if self.clock() - entry.created_at > timedelta(seconds=self.ttl_seconds):
            logger.warning(f"OAuth state for organization {entry.organization_id} expired")
            return None
        return entry
