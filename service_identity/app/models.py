"""
Identity data models.
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Dict, Any, Optional

from pydantic import BaseModel, Field


@dataclass
class Identity:
    """A resolved external profile.

    ``last_synced_at`` is stamped by the identity cache service when it
    persists data obtained upstream; caches only store and return it.
    """
    id: str
    username: str = ""
    display_name: str = ""
    email: str = ""
    avatar_url: Optional[str] = None
    email_verified: bool = False
    last_synced_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["last_synced_at"] = self.last_synced_at.isoformat() if self.last_synced_at else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Identity":
        synced = data.get("last_synced_at")
        return cls(
            id=data["id"],
            username=data.get("username", ""),
            display_name=data.get("display_name", ""),
            email=data.get("email", ""),
            avatar_url=data.get("avatar_url"),
            email_verified=bool(data.get("email_verified", False)),
            last_synced_at=datetime.fromisoformat(synced) if synced else None,
        )


class TokenClaims(BaseModel):
    """Identity claims extracted from a validated bearer token."""
    subject: str = Field(..., description="Stable subject identifier (sub)")
    email: str = ""
    email_verified: bool = False
    preferred_username: str = ""

