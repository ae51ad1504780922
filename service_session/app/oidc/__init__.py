"""
OIDC adapters for Authentik.
"""

from .memory import InMemoryTokenRefresher, InMemoryTokenValidator
from .token_refresher import AuthentikTokenRefresher
from .token_validator import AuthentikTokenValidator

__all__ = [
    "AuthentikTokenRefresher",
    "AuthentikTokenValidator",
    "InMemoryTokenRefresher",
    "InMemoryTokenValidator",
]
