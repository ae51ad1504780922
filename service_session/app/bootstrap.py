"""
Wiring for the identity and session services.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable, List, Optional

from service_identity.app.cache import IdentityCacheService, InMemoryUserCache, RedisUserCache
from service_identity.app.providers import AuthentikIdentityProvider
from shared.config import ServiceConfig
from shared.logging import configure_logging, get_logger
from shared.metrics import MetricsCollector
from .oidc import AuthentikTokenRefresher, AuthentikTokenValidator
from .sessions import RedisSessionStore, SessionService

logger = get_logger("session.bootstrap")


@dataclass
class AccessServices:
    """Ready-to-use services plus the resources they hold open."""
    config: ServiceConfig
    metrics: MetricsCollector
    identity: IdentityCacheService
    sessions: Optional[SessionService] = None
    _closers: List[Callable[[], Awaitable[Any]]] = field(default_factory=list, repr=False)

    async def close(self) -> None:
        """Release connections in reverse order of creation."""
        while self._closers:
            closer = self._closers.pop()
            try:
                await closer()
            except Exception as e:
                logger.warning("Error while closing resource", error=str(e))


async def build_services(config: ServiceConfig, *, metrics: Optional[MetricsCollector] = None) -> AccessServices:
    """Connect the Redis and Authentik adapters and build both services.

    The session service is left out, with a warning, when Redis or the OAuth
    client credentials are not configured.
    """
    configure_logging(config.service_name, config.log_level)
    metrics = metrics or MetricsCollector(config.service_name)
    closers: List[Callable[[], Awaitable[Any]]] = []

    try:
        if config.redis_url:
            redis_cache = RedisUserCache(config.redis_url, ttl_seconds=config.identity_cache_ttl_seconds)
            await redis_cache.start()
            closers.append(redis_cache.stop)
            user_cache = redis_cache
        else:
            logger.warning("Redis not configured, identities are cached in process memory")
            user_cache = InMemoryUserCache()

        provider = AuthentikIdentityProvider(
            config.authentik_base_url,
            config.authentik_api_token,
            timeout=config.authentik_timeout_seconds
        )
        closers.append(provider.aclose)

        identity = IdentityCacheService(
            provider,
            user_cache,
            freshness_window=timedelta(seconds=config.identity_freshness_seconds),
            max_concurrency=config.resolve_concurrency,
            failure_policy=config.failure_policy,
            coalesce_requests=config.coalesce_identity_requests,
            metrics=metrics
        )

        sessions = None
        if config.sessions_enabled:
            store = RedisSessionStore(config.redis_url, ttl=timedelta(hours=config.session_ttl_hours))
            await store.start()
            closers.append(store.close)

            validator = AuthentikTokenValidator(
                config.authentik_base_url,
                timeout=config.authentik_timeout_seconds
            )
            closers.append(validator.aclose)
            refresher = AuthentikTokenRefresher(
                config.authentik_base_url,
                config.authentik_client_id,
                config.authentik_client_secret,
                timeout=config.authentik_timeout_seconds
            )
            closers.append(refresher.aclose)

            sessions = SessionService(store, validator, refresher, identity, metrics=metrics)
        else:
            logger.warning("Session service disabled: Redis or OAuth client credentials not configured")
    except Exception:
        await AccessServices(config, metrics, None, _closers=closers).close()
        raise

    logger.info(
        "Access services ready",
        sessions_enabled=sessions is not None,
        failure_policy=config.failure_policy.value
    )
    return AccessServices(
        config=config,
        metrics=metrics,
        identity=identity,
        sessions=sessions,
        _closers=closers
    )
