"""
Identity provider adapters.
"""

from .authentik import AuthentikIdentityProvider
from .memory import InMemoryIdentityProvider

__all__ = ["AuthentikIdentityProvider", "InMemoryIdentityProvider"]
