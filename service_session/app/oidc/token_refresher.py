"""
OAuth refresh_token grant against Authentik's token endpoint.
"""

from typing import Optional

import httpx
from pydantic import ValidationError

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import ExternalServiceError, TokenRefreshFailed
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_on_exception
from ..models import OAuthTokens

TOKEN_PATH = "/application/o/token/"


class AuthentikTokenRefresher:
    """Exchanges refresh tokens for new token sets using client credentials."""

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        *,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.logger = get_logger("session.oidc.refresher")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=30.0,
            expected_exception=(httpx.HTTPError, RetryError),
            name="authentik-token"
        )

    async def refresh_token(self, refresh_token: str) -> OAuthTokens:
        if not refresh_token:
            raise TokenRefreshFailed("no refresh token available")

        try:
            response = await self.circuit_breaker.call(self._post_refresh, refresh_token)
        except (httpx.HTTPError, RetryError, CircuitBreakerOpenException) as e:
            self.logger.warning("Token endpoint request failed", error=str(e))
            raise ExternalServiceError("authentik", f"token refresh request failed: {e}") from e

        if response.status_code in (400, 401):
            self.logger.info("Refresh token rejected", status_code=response.status_code)
            raise TokenRefreshFailed(
                "invalid refresh token",
                details={"status_code": response.status_code}
            )
        if response.status_code != 200:
            raise ExternalServiceError(
                "authentik",
                f"token endpoint returned status {response.status_code}",
                details={"status_code": response.status_code}
            )

        try:
            return OAuthTokens.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ExternalServiceError("authentik", "token endpoint returned an invalid token set") from e

    async def aclose(self) -> None:
        await self._client.aclose()

    # The grant is not idempotent; only requests that never reached Authentik are resent
    @retry_on_exception(
        (httpx.ConnectError, httpx.ConnectTimeout),
        config=RetryConfig(max_attempts=2, base_delay=0.1)
    )
    async def _post_refresh(self, refresh_token: str) -> httpx.Response:
        return await self._client.post(
            f"{self.base_url}{TOKEN_PATH}",
            data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
            headers={"Accept": "application/json"}
        )
