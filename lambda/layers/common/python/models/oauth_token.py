"""
OAuth Token Data Model
======================

Fortnox credentials stored per (company, user_id).
Maps to the fortnox_tokens database table.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional


@dataclass
class OAuthToken:
    """
    Stored Fortnox token set.

    version is bumped on every write and used for optimistic locking
    when a refresh rotates the refresh token.
    """

    company: str
    user_id: str
    access_token: str
    refresh_token: str
    expires_at: datetime
    updated_at: Optional[datetime] = None
    version: int = 0

    def expires_within(self, seconds: int, now: Optional[datetime] = None) -> bool:
        """True when the access token expires less than `seconds` from now."""
        now = now or datetime.now(timezone.utc)
        return self.expires_at <= now + timedelta(seconds=seconds)

    @property
    def auth_headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    @classmethod
    def from_dict(cls, data: dict) -> "OAuthToken":
        """Create OAuthToken from database row dictionary."""
        return cls(
            company=data.get("company", ""),
            user_id=data.get("user_id", ""),
            access_token=data.get("access_token", ""),
            refresh_token=data.get("refresh_token", ""),
            expires_at=cls._parse_datetime(data.get("expires_at")) or datetime.fromtimestamp(0, timezone.utc),
            updated_at=cls._parse_datetime(data.get("updated_at")),
            version=int(data.get("version") or 0),
        )

    def to_row(self) -> dict:
        return {
            "company": self.company,
            "user_id": self.user_id,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at.isoformat(),
            "updated_at": (self.updated_at or datetime.now(timezone.utc)).isoformat(),
            "version": self.version,
        }

    @staticmethod
    def _parse_datetime(value: Any) -> Optional[datetime]:
        if value is None:
            return None
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, str):
            try:
                parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError:
                return None
        else:
            return None
        # Naive timestamps from the database are UTC
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
