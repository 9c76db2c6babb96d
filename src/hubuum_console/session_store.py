# src/hubuum_console/session_store.py

import abc
import logging
import time
from typing import Callable, Dict, Optional, Tuple

import redis.asyncio as redis
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from redis.exceptions import RedisError

from .config import Settings
from .errors import SessionStoreUnavailable

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class SessionRecord(BaseModel):
    """
    Represents the data stored server-side for a user session.
    Only the session id is stored in the browser cookie in distributed mode.
    """
    model_config = ConfigDict(populate_by_name=True)

    token: str
    username: Optional[str] = None
    created_at: int = Field(alias="createdAt")  # epoch milliseconds
    last_seen: int = Field(alias="lastSeen")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class SessionStore(abc.ABC):
    @abc.abstractmethod
    async def create(self, sid: str, record: SessionRecord) -> None: ...

    @abc.abstractmethod
    async def get(self, sid: str) -> Optional[SessionRecord]: ...

    @abc.abstractmethod
    async def touch(self, sid: str, record: SessionRecord) -> None: ...

    @abc.abstractmethod
    async def destroy(self, sid: str) -> None: ...

    async def aclose(self) -> None:
        return None


class InMemorySessionStore(SessionStore):
    """Process-local store. Expired entries are evicted when read, and swept on create."""

    def __init__(self, ttl_seconds: int, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[SessionRecord, float]] = {}

    def _expiry(self) -> float:
        return self._clock() + self.ttl_seconds

    def evict_expired(self) -> int:
        now = self._clock()
        expired = [sid for sid, (_, expires_at) in self._entries.items() if expires_at < now]
        for sid in expired:
            del self._entries[sid]
        return len(expired)

    async def create(self, sid: str, record: SessionRecord) -> None:
        self.evict_expired()
        self._entries[sid] = (record.model_copy(), self._expiry())

    async def get(self, sid: str) -> Optional[SessionRecord]:
        entry = self._entries.get(sid)
        if entry is None:
            return None
        record, expires_at = entry
        if expires_at < self._clock():
            del self._entries[sid]
            return None
        return record.model_copy()

    async def touch(self, sid: str, record: SessionRecord) -> None:
        self._entries[sid] = (record.model_copy(), self._expiry())

    async def destroy(self, sid: str) -> None:
        self._entries.pop(sid, None)

    def __len__(self) -> int:
        return len(self._entries)


class RedisSessionStore(SessionStore):
    def __init__(self, client: Optional[redis.Redis], ttl_seconds: int, prefix: str):
        self._client = client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def key(self, sid: str) -> str:
        return f"{self.prefix}{sid}"

    def _require_client(self) -> redis.Redis:
        if self._client is None:
            raise SessionStoreUnavailable("Valkey is not configured.")
        return self._client

    async def create(self, sid: str, record: SessionRecord) -> None:
        client = self._require_client()
        try:
            await client.set(self.key(sid), record.to_json(), ex=self.ttl_seconds)
        except RedisError as e:
            raise SessionStoreUnavailable(f"Could not store session: {e}") from e

    async def get(self, sid: str) -> Optional[SessionRecord]:
        client = self._require_client()
        try:
            raw = await client.get(self.key(sid))
        except RedisError as e:
            raise SessionStoreUnavailable(f"Could not read session: {e}") from e
        if not raw:
            return None
        try:
            return SessionRecord.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable session payload")
            return None

    async def touch(self, sid: str, record: SessionRecord) -> None:
        client = self._require_client()
        try:
            await client.set(self.key(sid), record.to_json(), ex=self.ttl_seconds)
        except RedisError as e:
            raise SessionStoreUnavailable(f"Could not refresh session: {e}") from e

    async def destroy(self, sid: str) -> None:
        client = self._require_client()
        try:
            await client.delete(self.key(sid))
        except RedisError as e:
            raise SessionStoreUnavailable(f"Could not delete session: {e}") from e

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


def build_session_store(settings: Settings, redis_client: Optional[redis.Redis] = None) -> SessionStore:
    if settings.uses_redis:
        if redis_client is None:
            redis_client = redis.from_url(settings.VALKEY_URL, decode_responses=True)
        return RedisSessionStore(redis_client, settings.SESSION_TTL_SECONDS, settings.SESSION_PREFIX)

    if settings.is_production:
        if settings.uses_distributed_sessions:
            logger.warning("Using in-memory sessions, which are not shared across instances.")
        else:
            logger.warning(
                "VALKEY_URL is not set. Sessions live in token cookies and have no server-side idle timeout."
            )
    return InMemorySessionStore(settings.SESSION_TTL_SECONDS)
