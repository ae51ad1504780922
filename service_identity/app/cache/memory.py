"""
In-memory user cache.
"""

import asyncio
from dataclasses import replace
from typing import Dict, Optional

from ..models import Identity


class InMemoryUserCache:
    """Dictionary-backed cache that hands out copies, never shared records."""

    def __init__(self):
        self._users: Dict[str, Identity] = {}
        self._lock = asyncio.Lock()
        self.get_calls = 0
        self.save_calls = 0

    async def get_by_id(self, identity_id: str) -> Optional[Identity]:
        async with self._lock:
            self.get_calls += 1
            identity = self._users.get(identity_id)
            return replace(identity) if identity else None

    async def save(self, identity: Identity) -> None:
        async with self._lock:
            self.save_calls += 1
            self._users[identity.id] = replace(identity)

    def peek(self, identity_id: str) -> Optional[Identity]:
        """Synchronous read for assertions."""
        identity = self._users.get(identity_id)
        return replace(identity) if identity else None
