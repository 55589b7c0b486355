"""Credentials record stored per profile in the credentials file."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

# Refresh this many seconds before the access token actually expires
DEFAULT_EXPIRY_MARGIN = 300


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_instant(value: Any) -> datetime:
    if not isinstance(value, str):
        raise TypeError(f"expected an ISO-8601 string, got {type(value).__name__}")
    # fromisoformat() only accepts a trailing "Z" from Python 3.11 on
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class Credentials:
    """OAuth tokens for one profile.

    Attributes:
        access_token: Bearer token attached to outgoing requests.
        refresh_token: Token used to obtain a new access token.
        expires_at: Absolute UTC instant at which the access token expires.
        scope: Space separated scopes granted to the token.
    """

    access_token: str
    refresh_token: str
    expires_at: datetime
    scope: str = ""

    def __post_init__(self) -> None:
        if not self.access_token:
            raise ValueError("access_token must not be empty")
        if not self.refresh_token:
            raise ValueError("refresh_token must not be empty")
        if self.expires_at.tzinfo is None:
            raise ValueError("expires_at must be timezone-aware")

    def is_expired(self, margin: float = DEFAULT_EXPIRY_MARGIN, *, now: datetime | None = None) -> bool:
        """Check whether the access token is expired, or will be within ``margin`` seconds."""
        current = now or _utcnow()
        return current >= self.expires_at - timedelta(seconds=margin)

    def to_dict(self) -> dict[str, Any]:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "expiresAt": self.expires_at.isoformat(),
            "scope": self.scope,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Credentials:
        """Create Credentials from a credentials file record.

        Raises:
            KeyError: If a required field is missing.
            TypeError: If a token or ``expiresAt`` is not a string.
            ValueError: If a field is empty or ``expiresAt`` is not ISO-8601.
        """
        for key in ("accessToken", "refreshToken"):
            if not isinstance(data[key], str):
                raise TypeError(f"{key} must be a string")
        return cls(
            access_token=data["accessToken"],
            refresh_token=data["refreshToken"],
            expires_at=_parse_instant(data["expiresAt"]),
            scope=data.get("scope", ""),
        )

    @classmethod
    def from_token_response(
        cls,
        data: dict[str, Any],
        *,
        previous: Credentials | None = None,
        now: datetime | None = None,
    ) -> Credentials:
        """Parse a standard OAuth2 token endpoint response.

        When the endpoint does not rotate the refresh token (or omits the
        scope), the values from ``previous`` are carried over.
        """
        refresh_token = data.get("refresh_token") or (previous.refresh_token if previous else "")
        scope = data.get("scope") or (previous.scope if previous else "")
        expires_in = int(data["expires_in"])
        return cls(
            access_token=data["access_token"],
            refresh_token=refresh_token,
            expires_at=(now or _utcnow()) + timedelta(seconds=expires_in),
            scope=scope,
        )
