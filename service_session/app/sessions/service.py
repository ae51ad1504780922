"""
Session lifecycle management.
"""

from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Optional

from service_identity.app.models import Identity, TokenClaims
from shared.errors import (
    InvalidSession,
    NoSession,
    ProvisioningFailed,
    SessionServiceError,
    SessionStoreError,
    TokenRefreshFailed,
    ValidationFailed,
)
from shared.logging import get_logger, redact, set_user_context
from shared.metrics import MetricsCollector
from ..models import OAuthTokens, Session
from ..ports import SessionStore, TokenRefresher, TokenValidator, UserProvisioner


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionService:
    """Creates, loads, refreshes and deletes login sessions.

    A session is active until ``expires_at``. Loading an expired session
    triggers one synchronous refresh; if that fails the caller gets
    ``InvalidSession`` and the stored session is left as it was, so a later
    manual refresh or a fresh login can still recover it.
    """

    def __init__(
        self,
        store: SessionStore,
        token_validator: TokenValidator,
        token_refresher: Optional[TokenRefresher],
        users: UserProvisioner,
        *,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.token_validator = token_validator
        self.token_refresher = token_refresher
        self.users = users
        self.metrics = metrics
        self.logger = get_logger("session.service")
        self._clock = clock

    async def create_session(self, tokens: OAuthTokens) -> str:
        """Start a session from a completed OAuth exchange and return its id."""
        claims = await self._validate(tokens.access_token)
        await self._ensure_user(claims)

        session = Session(
            subject=claims.subject,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            id_token=tokens.id_token,
            expires_at=tokens.expires_at(self._clock()),
        )
        try:
            await self.store.create(session)
        except SessionStoreError as e:
            raise SessionServiceError("create session", str(e)) from e

        self.logger.info(
            "Created session",
            subject=claims.subject,
            session=redact(session.session_id)
        )
        self._record("created")
        return session.session_id

    async def get_session(self, session_id: str) -> Session:
        """Load a usable session, refreshing its tokens first if they expired."""
        session = await self._load(session_id)
        set_user_context(user_id=session.subject, session_id=session_id)

        if session.is_expired(self._clock()):
            try:
                session = await self._refresh_tokens(session)
            except (TokenRefreshFailed, SessionServiceError) as e:
                self.logger.warning(
                    "Failed to refresh expired session",
                    session=redact(session_id),
                    error=str(e)
                )
                self._record("invalid")
                raise InvalidSession(details={"session": redact(session_id)}) from e

        try:
            await self.store.refresh(session_id)
        except SessionStoreError as e:
            self.logger.warning("Failed to extend session TTL", session=redact(session_id), error=str(e))

        return session

    async def refresh_session(self, session_id: str) -> Session:
        """Refresh a session's tokens on request, whether or not they expired."""
        session = await self._load(session_id)
        return await self._refresh_tokens(session)

    async def get_user_from_session(self, session_id: str) -> Identity:
        """Resolve the identity behind a session."""
        session = await self.get_session(session_id)
        claims = await self._validate(session.access_token)
        return await self._ensure_user(claims)

    async def get_session_tokens(self, session_id: str) -> OAuthTokens:
        """Return the raw token set of a session without validating it."""
        session = await self._load(session_id)
        remaining = 0
        if session.expires_at is not None:
            remaining = max(0, int((session.expires_at - self._clock()).total_seconds()))
        return OAuthTokens(
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            id_token=session.id_token,
            expires_in=remaining,
        )

    async def delete_session(self, session_id: str) -> None:
        """Log out. Deleting an unknown session is a no-op."""
        try:
            session = await self.store.get(session_id)
        except SessionStoreError as e:
            raise SessionServiceError("get session", str(e)) from e

        if session is None:
            self.logger.debug("Session already gone", session=redact(session_id))
            return

        try:
            await self.store.delete(session_id)
        except SessionStoreError as e:
            raise SessionServiceError("delete session", str(e)) from e

        self.logger.info("Deleted session", subject=session.subject, session=redact(session_id))
        self._record("deleted")

    async def _load(self, session_id: str) -> Session:
        try:
            session = await self.store.get(session_id)
        except SessionStoreError as e:
            raise SessionServiceError("get session", str(e)) from e
        if session is None:
            raise NoSession(details={"session": redact(session_id)})
        return session

    async def _refresh_tokens(self, session: Session) -> Session:
        if self.token_refresher is None:
            raise TokenRefreshFailed("token refresher not configured")
        if not session.refresh_token:
            raise TokenRefreshFailed("no refresh token available")

        try:
            tokens = await self.token_refresher.refresh_token(session.refresh_token)
        except Exception as e:
            self._record("refresh_failed")
            raise TokenRefreshFailed(f"token refresh failed: {e}") from e

        now = self._clock()
        refreshed = replace(
            session,
            access_token=tokens.access_token,
            # Providers may skip refresh token rotation
            refresh_token=tokens.refresh_token or session.refresh_token,
            id_token=tokens.id_token or session.id_token,
            expires_at=tokens.expires_at(now),
            updated_at=now,
        )
        try:
            await self.store.update(refreshed)
        except SessionStoreError as e:
            raise SessionServiceError("update session", str(e)) from e

        self.logger.info("Refreshed session tokens", session=redact(session.session_id))
        self._record("refreshed")
        return refreshed

    async def _validate(self, access_token: str) -> TokenClaims:
        try:
            return await self.token_validator.validate_token(access_token)
        except Exception as e:
            self.logger.warning("Token validation failed", error=str(e))
            raise ValidationFailed(f"failed to validate token: {e}") from e

    async def _ensure_user(self, claims: TokenClaims) -> Identity:
        try:
            return await self.users.ensure_from_claims(claims)
        except ProvisioningFailed:
            raise
        except Exception as e:
            raise ProvisioningFailed(f"failed to ensure user {claims.subject}: {e}") from e

    def _record(self, event: str) -> None:
        if self.metrics:
            self.metrics.record_session_event(event)
