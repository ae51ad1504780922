"""
Authentik-backed identity provider.
"""

from typing import Any, Dict, Optional

import httpx

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import ExternalServiceError, NotFound
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_on_exception
from ..models import Identity

USERS_PATH = "/api/v3/core/users/"


def first_non_empty(*values: Optional[str]) -> str:
    for value in values:
        if value:
            return value
    return ""


class AuthentikIdentityProvider:
    """Looks identities up through Authentik's core users API."""

    def __init__(
        self,
        base_url: str,
        api_token: Optional[str] = None,
        *,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.logger = get_logger("identity.provider.authentik")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=30.0,
            expected_exception=(httpx.HTTPError, RetryError),
            name="authentik-users"
        )

    async def fetch_by_id(self, identity_id: str) -> Identity:
        try:
            payload = await self.circuit_breaker.call(self._list_users, {"uuid": identity_id})
        except (httpx.HTTPError, RetryError, CircuitBreakerOpenException, ValueError) as e:
            self.logger.warning("Authentik user lookup failed", identity_id=identity_id, error=str(e))
            raise ExternalServiceError("authentik", f"user lookup failed: {e}") from e

        results = payload.get("results") or []
        if not results:
            raise NotFound(identity_id)

        return self._to_identity(identity_id, results[0])

    async def aclose(self) -> None:
        await self._client.aclose()

    @retry_on_exception((httpx.TransportError,), config=RetryConfig(max_attempts=3, base_delay=0.2))
    async def _list_users(self, params: Dict[str, str]) -> Dict[str, Any]:
        response = await self._client.get(
            f"{self.base_url}{USERS_PATH}",
            params=params,
            headers=self._headers()
        )
        if response.status_code == 404:
            return {"results": []}
        response.raise_for_status()
        return response.json()

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    @staticmethod
    def _to_identity(identity_id: str, user: Dict[str, Any]) -> Identity:
        return Identity(
            id=identity_id,
            username=user.get("username", ""),
            display_name=first_non_empty(user.get("name"), user.get("username"), user.get("email")),
            email=user.get("email", ""),
            avatar_url=user.get("avatar") or None,
        )
