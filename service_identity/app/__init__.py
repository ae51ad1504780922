"""
Identity service package.

Shields the upstream identity provider from repeated lookups:

- app.cache: IdentityCacheService (cache-aside reads, forced refresh,
  bounded batch resolution, claims provisioning) and user cache backends.
- app.providers: IdentityProvider adapters (Authentik, in-memory).
- app.ports: Protocols the cache service depends on.

Module import must not perform network calls; connections are opened by
explicit ``start()`` hooks.
"""
