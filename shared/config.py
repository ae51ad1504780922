"""
Shared configuration management for the identity and session access layer.
"""

from enum import Enum
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FailurePolicy(str, Enum):
    """How the identity layer treats partial failures."""
    BEST_EFFORT = "best_effort"  # log and carry on
    STRICT = "strict"            # surface the first failure


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ACCESS_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")

    # Identity provider (Authentik)
    authentik_base_url: str = Field(default="http://authentik:9000")
    authentik_api_token: Optional[str] = Field(default=None)
    authentik_client_id: Optional[str] = Field(default=None)
    authentik_client_secret: Optional[str] = Field(default=None)
    authentik_timeout_seconds: float = Field(default=5.0)

    # Identity cache
    identity_freshness_seconds: int = Field(default=300)
    identity_cache_ttl_seconds: int = Field(default=86400)
    resolve_concurrency: int = Field(default=10)
    coalesce_identity_requests: bool = Field(default=False)
    failure_policy: FailurePolicy = Field(default=FailurePolicy.BEST_EFFORT)

    # Sessions
    session_ttl_hours: int = Field(default=24)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str

    def __init__(self, service_name: str, **kwargs):
        super().__init__(service_name=service_name, **kwargs)

    @property
    def sessions_enabled(self) -> bool:
        """Sessions need Redis plus OAuth client credentials."""
        return bool(
            self.redis_url
            and self.authentik_client_id
            and self.authentik_client_secret
        )


def get_config(service_name: str, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, **overrides)
