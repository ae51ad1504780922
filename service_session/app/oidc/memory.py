"""
In-memory token validator and refresher.
"""

from collections import Counter, deque
from typing import Deque, Dict, Optional, Union

from service_identity.app.models import TokenClaims
from shared.errors import TokenRefreshFailed, ValidationFailed
from ..models import OAuthTokens


class InMemoryTokenValidator:
    """Maps known access tokens to claims; anything else is rejected."""

    def __init__(self, tokens: Optional[Dict[str, TokenClaims]] = None):
        self._tokens: Dict[str, TokenClaims] = dict(tokens or {})
        self.calls: Counter = Counter()

    def register(self, access_token: str, claims: TokenClaims) -> None:
        self._tokens[access_token] = claims

    def revoke(self, access_token: str) -> None:
        self._tokens.pop(access_token, None)

    async def validate_token(self, bearer_token: str) -> TokenClaims:
        self.calls[bearer_token] += 1
        claims = self._tokens.get(bearer_token)
        if claims is None:
            raise ValidationFailed("unknown token")
        return claims.model_copy()


class InMemoryTokenRefresher:
    """Replays queued outcomes for each refresh call.

    Queue an ``OAuthTokens`` to succeed or an exception to fail. With an
    empty queue every call fails as an invalid refresh token.
    """

    def __init__(self, *outcomes: Union[OAuthTokens, Exception]):
        self._outcomes: Deque[Union[OAuthTokens, Exception]] = deque(outcomes)
        self.received: list = []

    @property
    def call_count(self) -> int:
        return len(self.received)

    def queue(self, outcome: Union[OAuthTokens, Exception]) -> None:
        self._outcomes.append(outcome)

    async def refresh_token(self, refresh_token: str) -> OAuthTokens:
        self.received.append(refresh_token)
        if not self._outcomes:
            raise TokenRefreshFailed("invalid refresh token")
        outcome = self._outcomes.popleft()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome.model_copy()
