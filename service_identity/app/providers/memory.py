"""
In-memory identity provider.
"""

import asyncio
from collections import Counter
from dataclasses import replace
from typing import Dict, Iterable, Optional, Set

from shared.errors import ExternalServiceError, NotFound
from ..models import Identity


class InMemoryIdentityProvider:
    """Serves identities from a dictionary and records how it was called.

    ``latency`` keeps each fetch in flight long enough for concurrency to be
    observed; ``peak_in_flight`` is the highest number of overlapping calls.
    Ids listed in ``failing_ids`` raise as if the upstream were unreachable.
    """

    def __init__(
        self,
        identities: Optional[Iterable[Identity]] = None,
        *,
        latency: float = 0.0,
        failing_ids: Optional[Set[str]] = None,
    ):
        self._identities: Dict[str, Identity] = {i.id: replace(i) for i in identities or []}
        self.latency = latency
        self.failing_ids = set(failing_ids or ())
        self.calls: Counter = Counter()
        self.in_flight = 0
        self.peak_in_flight = 0

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    def put(self, identity: Identity) -> None:
        self._identities[identity.id] = replace(identity)

    async def fetch_by_id(self, identity_id: str) -> Identity:
        self.calls[identity_id] += 1
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            if self.latency:
                await asyncio.sleep(self.latency)
            if identity_id in self.failing_ids:
                raise ExternalServiceError("identity-provider", f"lookup of {identity_id} failed")
            identity = self._identities.get(identity_id)
            if identity is None:
                raise NotFound(identity_id)
            return replace(identity, last_synced_at=None)
        finally:
            self.in_flight -= 1
