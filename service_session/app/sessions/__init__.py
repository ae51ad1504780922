"""
Session storage and lifecycle.
"""

from .memory import InMemorySessionStore
from .redis_store import DEFAULT_SESSION_TTL, RedisSessionStore, generate_session_id
from .service import SessionService

__all__ = [
    "DEFAULT_SESSION_TTL",
    "InMemorySessionStore",
    "RedisSessionStore",
    "SessionService",
    "generate_session_id",
]
