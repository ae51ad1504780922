"""
Session service package.

Owns the login session lifecycle on top of the identity layer:

- app.sessions: SessionService plus Redis and in-memory session stores.
- app.oidc: Authentik token validation (userinfo) and refresh adapters.
- app.bootstrap: wires configuration into ready-to-use services.
"""
