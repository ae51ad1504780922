"""
Collaborator and repository contracts consumed by the session service.
"""

from typing import Optional, Protocol, runtime_checkable

from service_identity.app.models import Identity, TokenClaims
from .models import OAuthTokens, Session


@runtime_checkable
class TokenValidator(Protocol):
    """Exchanges a bearer token for identity claims."""

    async def validate_token(self, bearer_token: str) -> TokenClaims:
        """Raise if the token is rejected."""
        ...


@runtime_checkable
class TokenRefresher(Protocol):
    """Exchanges a refresh token for a new token set."""

    async def refresh_token(self, refresh_token: str) -> OAuthTokens:
        ...


@runtime_checkable
class UserProvisioner(Protocol):
    """Materialises the identity behind validated claims."""

    async def ensure_from_claims(self, claims: TokenClaims) -> Identity:
        ...


@runtime_checkable
class SessionStore(Protocol):
    """TTL-bounded session storage with lookups by session id and by subject.

    "Not found" is ``None``; transport failures raise ``SessionStoreError``.
    """

    async def create(self, session: Session) -> None:
        """Assign ``session_id`` if absent, stamp timestamps, write both index entries."""
        ...

    async def get(self, session_id: str) -> Optional[Session]:
        ...

    async def get_by_subject(self, subject: str) -> Optional[Session]:
        ...

    async def update(self, session: Session) -> None:
        """Rewrite an existing record keeping its remaining TTL.

        A session that no longer exists is not recreated. The subject index
        is untouched.
        """
        ...

    async def delete(self, session_id: str) -> None:
        ...

    async def refresh(self, session_id: str) -> None:
        """Extend the store-level TTL without touching the record."""
        ...

    async def close(self) -> None:
        ...
