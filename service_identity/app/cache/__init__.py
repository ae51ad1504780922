"""
Cache package for the Identity service.

Provides the cache-aside IdentityCacheService plus the user cache
backends it reads from and writes to (Redis for production, a dictionary
for tests and local runs).
"""

from .identity_cache import IdentityCacheService
from .memory import InMemoryUserCache
from .redis_user_cache import RedisUserCache

__all__ = ["IdentityCacheService", "InMemoryUserCache", "RedisUserCache"]
