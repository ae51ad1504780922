"""
Session data models.
"""

from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Dict, Any, Optional

from pydantic import BaseModel, Field


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class Session:
    """One authenticated browser/client session."""
    subject: str
    access_token: str
    refresh_token: str = ""
    id_token: str = ""
    expires_at: Optional[datetime] = None
    session_id: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        """A session without an expiry is treated as expired."""
        return self.expires_at is None or now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for name in ("expires_at", "created_at", "updated_at"):
            value = getattr(self, name)
            data[name] = value.isoformat() if value else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            session_id=data["session_id"],
            subject=data["subject"],
            access_token=data.get("access_token", ""),
            refresh_token=data.get("refresh_token", ""),
            id_token=data.get("id_token", ""),
            expires_at=_parse_timestamp(data.get("expires_at")),
            created_at=_parse_timestamp(data.get("created_at")),
            updated_at=_parse_timestamp(data.get("updated_at")),
        )


class OAuthTokens(BaseModel):
    """Token set returned by an OAuth code exchange or refresh grant."""
    access_token: str
    refresh_token: str = ""
    id_token: str = ""
    expires_in: int = Field(default=0, ge=0, description="Access token lifetime in seconds")
    token_type: str = "Bearer"

    def expires_at(self, now: datetime) -> datetime:
        return now + timedelta(seconds=self.expires_in)
