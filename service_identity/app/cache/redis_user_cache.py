"""
Redis-backed user cache.
"""

import json
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.errors import CacheError
from shared.logging import get_logger
from ..models import Identity

DEFAULT_USER_TTL = 86400  # 24 hours


class RedisUserCache:
    """Stores identities as JSON under ``user:<id>`` with a store-level TTL.

    The TTL only bounds how long an entry may linger; freshness is decided by
    the identity cache service from ``last_synced_at``.
    """

    KEY_PREFIX = "user:"

    def __init__(self, redis_url: str, ttl_seconds: int = DEFAULT_USER_TTL, client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.ttl_seconds = ttl_seconds
        self.logger = get_logger("identity.cache.redis")
        self.redis: Optional[redis.Redis] = client

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
            self.logger.error("Failed to start Redis user cache", error=str(e))
            raise CacheError("failed to connect to redis", details={"error": str(e)}) from e
        self.logger.info("Redis user cache started")

    async def stop(self):
        if self.redis is not None:
            await self.redis.aclose()
            self.logger.info("Redis user cache stopped")

    async def get_by_id(self, identity_id: str) -> Optional[Identity]:
        key = self._key(identity_id)
        try:
            data = await self._client().get(key)
        except RedisError as e:
            raise CacheError(f"redis get failed for {key}", details={"error": str(e)}) from e

        if not data:
            return None

        try:
            return Identity.from_dict(json.loads(data))
        except (ValueError, KeyError, TypeError) as e:
            raise CacheError(f"corrupt cache entry {key}", details={"error": str(e)}) from e

    async def save(self, identity: Identity) -> None:
        key = self._key(identity.id)
        payload = json.dumps(identity.to_dict())
        try:
            await self._client().set(key, payload, ex=self.ttl_seconds)
        except RedisError as e:
            raise CacheError(f"redis set failed for {key}", details={"error": str(e)}) from e
        self.logger.debug("Cached identity", key=key, ttl=self.ttl_seconds)

    async def health_check(self) -> bool:
        try:
            await self._client().ping()
            return True
        except (RedisError, CacheError):
            return False

    def _client(self) -> redis.Redis:
        if self.redis is None:
            raise CacheError("redis user cache is not started")
        return self.redis

    def _key(self, identity_id: str) -> str:
        return f"{self.KEY_PREFIX}{identity_id}"
