"""
Bearer token validation against Authentik's OIDC userinfo endpoint.
"""

from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from service_identity.app.models import TokenClaims
from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import ExternalServiceError, ValidationFailed
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_on_exception

USERINFO_PATH = "/application/o/userinfo/"


class AuthentikTokenValidator:
    """Validates access tokens by asking Authentik who they belong to.

    The provider is the authority on revocation, so no local signature
    check is attempted.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.logger = get_logger("session.oidc.validator")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=30.0,
            expected_exception=(httpx.HTTPError, RetryError),
            name="authentik-userinfo"
        )

    async def validate_token(self, bearer_token: str) -> TokenClaims:
        if not bearer_token:
            raise ValidationFailed("empty bearer token")

        try:
            response = await self.circuit_breaker.call(self._userinfo, bearer_token)
        except (httpx.HTTPError, RetryError, CircuitBreakerOpenException) as e:
            self.logger.warning("Userinfo request failed", error=str(e))
            raise ExternalServiceError("authentik", f"userinfo request failed: {e}") from e

        if response.status_code in (401, 403):
            raise ValidationFailed("token rejected by identity provider")
        if response.status_code != 200:
            raise ExternalServiceError(
                "authentik",
                f"userinfo returned status {response.status_code}",
                details={"status_code": response.status_code}
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ExternalServiceError("authentik", "userinfo returned invalid JSON") from e

        return self._to_claims(payload)

    async def aclose(self) -> None:
        await self._client.aclose()

    @retry_on_exception((httpx.TransportError,), config=RetryConfig(max_attempts=2, base_delay=0.1))
    async def _userinfo(self, bearer_token: str) -> httpx.Response:
        # Status codes are interpreted by the caller; only transport errors trip the breaker
        return await self._client.get(
            f"{self.base_url}{USERINFO_PATH}",
            headers={
                "Authorization": f"Bearer {bearer_token}",
                "Accept": "application/json",
            }
        )

    @staticmethod
    def _to_claims(payload: Dict[str, Any]) -> TokenClaims:
        if not payload.get("sub"):
            raise ValidationFailed("userinfo response has no subject")
        try:
            return TokenClaims(
                subject=payload["sub"],
                email=payload.get("email") or "",
                email_verified=bool(payload.get("email_verified", False)),
                preferred_username=payload.get("preferred_username") or "",
            )
        except ValidationError as e:
            raise ValidationFailed(f"malformed userinfo claims: {e}") from e
