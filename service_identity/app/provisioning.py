"""
Helpers that derive profile fields from token claims.

Used when a validated token names a subject the identity provider lookup
could not produce, and when reconciling cached profiles with fresher claims.
"""

import re
import uuid
from typing import Optional

from .models import TokenClaims

_INVALID_USERNAME_CHARS = re.compile(r"[^a-z0-9_-]")
_MIN_USERNAME_LENGTH = 2
_MAX_USERNAME_LENGTH = 63


def normalize_username(raw: Optional[str]) -> str:
    """Lowercase and strip to ``[a-z0-9_-]``; empty string if the result is unusable."""
    if not raw:
        return ""
    normalized = _INVALID_USERNAME_CHARS.sub("", raw.lower())
    if not _MIN_USERNAME_LENGTH <= len(normalized) <= _MAX_USERNAME_LENGTH:
        return ""
    return normalized


def email_local_part(email: Optional[str]) -> str:
    if not email:
        return ""
    return email.split("@", 1)[0]


def generate_username(claims: TokenClaims) -> str:
    """Pick a username: preferred_username, then the email local part, then a random handle."""
    for candidate in (claims.preferred_username, email_local_part(claims.email)):
        normalized = normalize_username(candidate)
        if normalized:
            return normalized
    return f"user_{uuid.uuid4().hex[:8]}"


def generate_display_name(claims: TokenClaims) -> str:
    if claims.preferred_username:
        return claims.preferred_username
    local = email_local_part(claims.email)
    if local:
        return local
    return "User"
