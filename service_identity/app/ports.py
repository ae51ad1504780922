"""
Collaborator and repository contracts consumed by the identity cache.
"""

from typing import Optional, Protocol, runtime_checkable

from .models import Identity


@runtime_checkable
class IdentityProvider(Protocol):
    """Upstream source of truth for identities."""

    async def fetch_by_id(self, identity_id: str) -> Identity:
        """Return the canonical profile.

        Raises when the identity does not exist or the upstream cannot be
        reached; callers are not expected to tell the two apart.
        """
        ...


@runtime_checkable
class UserCache(Protocol):
    """Key/value store of cached identities."""

    async def get_by_id(self, identity_id: str) -> Optional[Identity]:
        """Return the cached record, or ``None`` on a miss."""
        ...

    async def save(self, identity: Identity) -> None:
        ...
