"""
Redis-backed session store.
"""

import json
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.errors import SessionStoreError
from shared.logging import get_logger
from ..models import Session

DEFAULT_SESSION_TTL = timedelta(hours=24)


def generate_session_id() -> str:
    """32 random bytes, URL-safe base64."""
    return secrets.token_urlsafe(32)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RedisSessionStore:
    """Sessions as JSON under ``session:<id>`` plus a ``session:sub:<subject>`` pointer.

    Both keys carry the store TTL, a hard upper bound on a session's life
    that is independent of its token expiry.
    """

    SESSION_PREFIX = "session:"
    SUBJECT_PREFIX = "session:sub:"

    def __init__(
        self,
        redis_url: str,
        ttl: timedelta = DEFAULT_SESSION_TTL,
        *,
        client: Optional[redis.Redis] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if ttl <= timedelta(0):
            ttl = DEFAULT_SESSION_TTL
        self.redis_url = redis_url
        self.ttl = ttl
        self.logger = get_logger("session.store.redis")
        self.redis: Optional[redis.Redis] = client
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return int(self.ttl.total_seconds())

    async def start(self):
        """Connect and verify the Redis connection."""
        if self.redis is None:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                health_check_interval=30
            )
        try:
            await self.redis.ping()
        except RedisError as e:
            self.logger.error("Failed to start Redis session store", error=str(e))
            raise SessionStoreError("failed to connect to redis", details={"error": str(e)}) from e
        self.logger.info("Redis session store started", ttl_seconds=self.ttl_seconds)

    async def close(self) -> None:
        if self.redis is not None:
            await self.redis.aclose()
            self.logger.info("Redis session store stopped")

    async def create(self, session: Session) -> None:
        if not session.session_id:
            session.session_id = generate_session_id()

        now = self._clock()
        session.created_at = now
        session.updated_at = now

        pipe = self._client().pipeline()
        pipe.set(self._session_key(session.session_id), json.dumps(session.to_dict()), ex=self.ttl_seconds)
        pipe.set(self._subject_key(session.subject), session.session_id, ex=self.ttl_seconds)
        try:
            await pipe.execute()
        except RedisError as e:
            raise SessionStoreError("failed to store session", details={"error": str(e)}) from e

    async def get(self, session_id: str) -> Optional[Session]:
        key = self._session_key(session_id)
        try:
            data = await self._client().get(key)
        except RedisError as e:
            raise SessionStoreError("failed to get session", details={"error": str(e)}) from e

        if not data:
            return None

        try:
            return Session.from_dict(json.loads(data))
        except (ValueError, KeyError, TypeError) as e:
            raise SessionStoreError("failed to decode session", details={"error": str(e)}) from e

    async def get_by_subject(self, subject: str) -> Optional[Session]:
        try:
            session_id = await self._client().get(self._subject_key(subject))
        except RedisError as e:
            raise SessionStoreError("failed to get session by subject", details={"error": str(e)}) from e

        if not session_id:
            return None
        return await self.get(session_id)

    async def update(self, session: Session) -> None:
        session.updated_at = self._clock()
        key = self._session_key(session.session_id)
        client = self._client()

        try:
            # XX never recreates a session deleted in the meantime
            written = await client.set(key, json.dumps(session.to_dict()), xx=True, keepttl=True)
            # -1: the key exists without an expiry
            if written and await client.ttl(key) == -1:
                await client.expire(key, self.ttl_seconds)
        except RedisError as e:
            raise SessionStoreError("failed to update session", details={"error": str(e)}) from e

        if not written:
            self.logger.info("Session no longer exists, update skipped", session_id=session.session_id)

    async def delete(self, session_id: str) -> None:
        session = await self.get(session_id)
        if session is None:
            return

        client = self._client()
        subject_key = self._subject_key(session.subject)
        try:
            pointer = await client.get(subject_key)
            pipe = client.pipeline()
            pipe.delete(self._session_key(session_id))
            # A newer login may have taken over the subject pointer
            if pointer is None or pointer == session_id:
                pipe.delete(subject_key)
            await pipe.execute()
        except RedisError as e:
            raise SessionStoreError("failed to delete session", details={"error": str(e)}) from e

    async def refresh(self, session_id: str) -> None:
        session = await self.get(session_id)
        if session is None:
            return

        client = self._client()
        subject_key = self._subject_key(session.subject)
        try:
            pointer = await client.get(subject_key)
            pipe = client.pipeline()
            pipe.expire(self._session_key(session_id), self.ttl_seconds)
            if pointer == session_id:
                pipe.expire(subject_key, self.ttl_seconds)
            await pipe.execute()
        except RedisError as e:
            raise SessionStoreError("failed to refresh session ttl", details={"error": str(e)}) from e

    async def health_check(self) -> bool:
        try:
            await self._client().ping()
            return True
        except (RedisError, SessionStoreError):
            return False

    def _client(self) -> redis.Redis:
        if self.redis is None:
            raise SessionStoreError("redis session store is not started")
        return self.redis

    def _session_key(self, session_id: str) -> str:
        return f"{self.SESSION_PREFIX}{session_id}"

    def _subject_key(self, subject: str) -> str:
        return f"{self.SUBJECT_PREFIX}{subject}"
