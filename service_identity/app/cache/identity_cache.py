"""
Read-through identity cache in front of the identity provider.
"""

import asyncio
import time
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, Optional, Set

from shared.config import FailurePolicy
from shared.errors import CacheError, NotFound, ProvisioningFailed
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..models import Identity, TokenClaims
from ..ports import IdentityProvider, UserCache
from ..provisioning import generate_display_name, generate_username, normalize_username

DEFAULT_FRESHNESS_WINDOW = timedelta(minutes=5)
DEFAULT_MAX_CONCURRENCY = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IdentityCacheService:
    """Cache-aside access to identities.

    The provider is the source of truth; this service only shadows it. Cached
    records younger than ``freshness_window`` are served without contacting
    the provider. Everything else goes upstream and is written back.

    Concurrent lookups of the same id each hit the provider unless
    ``coalesce_requests`` is enabled, in which case callers share a single
    in-flight fetch per id.
    """

    def __init__(
        self,
        provider: IdentityProvider,
        cache: UserCache,
        *,
        freshness_window: timedelta = DEFAULT_FRESHNESS_WINDOW,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        failure_policy: FailurePolicy = FailurePolicy.BEST_EFFORT,
        coalesce_requests: bool = False,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if freshness_window < timedelta(0):
            raise ValueError("freshness_window must not be negative")

        self.provider = provider
        self.cache = cache
        self.freshness_window = freshness_window
        self.max_concurrency = max_concurrency
        self.failure_policy = failure_policy
        self.coalesce_requests = coalesce_requests
        self.metrics = metrics
        self.logger = get_logger("identity.cache")
        self._clock = clock

        self._inflight: Dict[str, "asyncio.Future[Identity]"] = {}
        self._background: Set[asyncio.Task] = set()

    @property
    def strict(self) -> bool:
        return self.failure_policy == FailurePolicy.STRICT

    async def get(self, identity_id: str) -> Identity:
        """Return a fresh-enough identity, going upstream on a miss or stale hit."""
        cached = await self._read_cache(identity_id)
        if cached is not None:
            if self._is_fresh(cached):
                self._record_lookup("hit")
                return cached
            self._record_lookup("stale")
            self.logger.debug(
                "Cached identity is stale",
                identity_id=identity_id,
                last_synced_at=cached.last_synced_at.isoformat() if cached.last_synced_at else None
            )
        else:
            self._record_lookup("miss")

        return await self.refresh(identity_id)

    async def refresh(self, identity_id: str) -> Identity:
        """Fetch from the provider unconditionally and write through.

        Raises:
            NotFound: the provider does not know the id or could not be reached.
        """
        if not self.coalesce_requests:
            return await self._fetch_and_store(identity_id)

        pending = self._inflight.get(identity_id)
        if pending is None:
            pending = asyncio.ensure_future(self._fetch_and_store(identity_id))
            self._inflight[identity_id] = pending
            pending.add_done_callback(lambda fut: self._forget_inflight(identity_id, fut))
        else:
            self.logger.debug("Joining in-flight identity fetch", identity_id=identity_id)

        # A cancelled caller must not cancel the fetch other callers share
        return await asyncio.shield(pending)

    async def resolve_many(
        self,
        identity_ids: Iterable[str],
        *,
        timeout: Optional[float] = None,
    ) -> Dict[str, Identity]:
        """Resolve a batch of ids with bounded concurrency.

        Ids that fail to resolve are left out of the result (best-effort
        policy) or abort the batch with the first failure (strict policy).
        When ``timeout`` elapses, whatever has been collected is returned;
        fetches already running are left to finish in the background and
        queued ones are skipped.
        """
        unique_ids = list(dict.fromkeys(identity_ids))
        if not unique_ids:
            return {}

        results: Dict[str, Identity] = {}
        results_lock = asyncio.Lock()
        semaphore = asyncio.Semaphore(self.max_concurrency)
        abandoned = asyncio.Event()

        async def worker(identity_id: str) -> None:
            async with semaphore:
                if abandoned.is_set():
                    return
                try:
                    identity = await self.get(identity_id)
                except Exception as e:
                    self.logger.warning(
                        "Failed to resolve identity",
                        identity_id=identity_id,
                        error=str(e)
                    )
                    if self.strict:
                        raise
                    return
                async with results_lock:
                    results[identity_id] = identity

        tasks = [asyncio.create_task(worker(identity_id)) for identity_id in unique_ids]
        return_when = asyncio.FIRST_EXCEPTION if self.strict else asyncio.ALL_COMPLETED

        try:
            done, pending = await asyncio.wait(tasks, timeout=timeout, return_when=return_when)
        except asyncio.CancelledError:
            abandoned.set()
            self._detach([task for task in tasks if not task.done()])
            raise

        failures = [
            task.exception() for task in done
            if not task.cancelled() and task.exception() is not None
        ]
        if failures:
            abandoned.set()
            for other in pending:
                other.cancel()
            self._detach(pending)
            raise failures[0]

        if pending:
            abandoned.set()
            self._detach(pending)
            self.logger.warning(
                "Resolve deadline reached, returning partial results",
                requested=len(unique_ids),
                unfinished=len(pending)
            )

        async with results_lock:
            return dict(results)

    async def ensure_from_claims(self, claims: TokenClaims) -> Identity:
        """Make sure an identity exists for a validated token's subject.

        Known identities are reconciled with the claims (email, verification
        flag, username). When the provider lookup fails, a cached record is
        reconciled and kept as it is. Only subjects with no cached record are
        provisioned from the claims, unsynced so the next ``get`` goes upstream.

        Raises:
            ProvisioningFailed: the claims carry no subject, or the identity
                could not be stored.
        """
        if not claims.subject:
            raise ProvisioningFailed("token claims carry no subject")

        cached = await self._read_cache(claims.subject)
        if cached is not None and self._is_fresh(cached):
            self._record_lookup("hit")
            identity = cached
        else:
            self._record_lookup("stale" if cached is not None else "miss")
            try:
                identity = await self.refresh(claims.subject)
            except NotFound as e:
                if cached is None:
                    return await self._provision(claims)
                self.logger.warning(
                    "Identity provider lookup failed, keeping cached identity",
                    identity_id=claims.subject,
                    error=str(e)
                )
                identity = cached

        updated = self._reconcile(identity, claims)
        if updated is identity:
            return identity

        try:
            await self._write_cache(updated)
        except CacheError as e:
            raise ProvisioningFailed(
                f"failed to update identity {claims.subject}",
                details={"identity_id": claims.subject}
            ) from e

        self.logger.info("Updated identity from token claims", identity_id=updated.id)
        return updated

    async def _fetch_and_store(self, identity_id: str) -> Identity:
        start = time.time()
        try:
            fetched = await self.provider.fetch_by_id(identity_id)
        except Exception as e:
            self._record_fetch("failure", time.time() - start)
            self.logger.warning(
                "Identity provider lookup failed",
                identity_id=identity_id,
                error=str(e)
            )
            raise NotFound(identity_id, details={"reason": str(e)}) from e

        if fetched is None:
            self._record_fetch("not_found", time.time() - start)
            raise NotFound(identity_id)

        self._record_fetch("success", time.time() - start)
        identity = replace(fetched, last_synced_at=self._clock())
        await self._write_cache(identity)
        return identity

    async def _provision(self, claims: TokenClaims) -> Identity:
        identity = Identity(
            id=claims.subject,
            username=generate_username(claims),
            display_name=generate_display_name(claims),
            email=claims.email,
            email_verified=claims.email_verified,
        )
        try:
            await self.cache.save(identity)
        except Exception as e:
            self.logger.error(
                "Failed to store provisioned identity",
                identity_id=claims.subject,
                error=str(e)
            )
            raise ProvisioningFailed(
                f"failed to create identity {claims.subject}",
                details={"identity_id": claims.subject}
            ) from e

        self.logger.info(
            "Provisioned identity from token claims",
            identity_id=identity.id,
            username=identity.username
        )
        return identity

    def _reconcile(self, identity: Identity, claims: TokenClaims) -> Identity:
        changes = {}
        if claims.email and identity.email != claims.email:
            changes["email"] = claims.email
        if identity.email_verified != claims.email_verified:
            changes["email_verified"] = claims.email_verified
        username = normalize_username(claims.preferred_username)
        if username and identity.username != username:
            changes["username"] = username

        if not changes:
            return identity
        return replace(identity, **changes)

    async def _read_cache(self, identity_id: str) -> Optional[Identity]:
        try:
            return await self.cache.get_by_id(identity_id)
        except Exception as e:
            self._record_lookup("error")
            self.logger.warning(
                "Identity cache read failed, treating as miss",
                identity_id=identity_id,
                error=str(e)
            )
            return None

    async def _write_cache(self, identity: Identity) -> None:
        try:
            await self.cache.save(identity)
        except Exception as e:
            if self.metrics:
                self.metrics.record_error("identity_cache_write")
            if self.strict:
                raise CacheError(
                    f"failed to cache identity {identity.id}",
                    details={"identity_id": identity.id}
                ) from e
            self.logger.warning(
                "Identity cache write failed",
                identity_id=identity.id,
                error=str(e)
            )

    def _is_fresh(self, identity: Identity) -> bool:
        synced = identity.last_synced_at
        if synced is None:
            return False
        if synced.tzinfo is None:
            synced = synced.replace(tzinfo=timezone.utc)
        return self._clock() - synced < self.freshness_window

    def _forget_inflight(self, identity_id: str, fut: "asyncio.Future[Identity]") -> None:
        if self._inflight.get(identity_id) is fut:
            del self._inflight[identity_id]
        if not fut.cancelled():
            # Mark the exception retrieved when every waiter went away
            fut.exception()

    def _detach(self, tasks: Iterable[asyncio.Task]) -> None:
        for task in tasks:
            self._background.add(task)
            task.add_done_callback(self._reap)

    def _reap(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.debug("Detached resolve worker failed", error=str(task.exception()))

    def _record_lookup(self, result: str) -> None:
        if self.metrics:
            self.metrics.record_cache_lookup(result)

    def _record_fetch(self, outcome: str, duration: float) -> None:
        if self.metrics:
            self.metrics.record_provider_fetch(outcome)
            self.metrics.observe_histogram(
                "external_call_duration_seconds", duration, target="identity_provider"
            )
