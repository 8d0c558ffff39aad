"""Session token state for authenticated API calls."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

#: Refresh token lifetime assumed when the server does not send one (30 days).
DEFAULT_REFRESH_TTL: float = 30 * 24 * 3600

#: Access tokens are treated as expired this many seconds early.
ACCESS_EXPIRY_SKEW: float = 30.0


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SessionTokens(BaseModel):
    """The access/refresh token pair held after a successful login.

    Parameters
    ----------
    access_token : str
        Short-lived bearer credential attached to API calls.
    refresh_token : str
        Longer-lived credential used to mint a new access token.
    access_expires_at : datetime or None
        When the access token expires, if the server told us.
    refresh_expires_at : datetime or None
        When the refresh token expires.
    saved_at : datetime
        When this pair was stored.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        str_strip_whitespace=True,
    )

    access_token: str
    refresh_token: str
    access_expires_at: datetime | None = None
    refresh_expires_at: datetime | None = None
    saved_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def from_response(
        cls,
        *,
        access_token: str,
        refresh_token: str,
        expires_in: float | None = None,
        refresh_expires_in: float | None = None,
    ) -> SessionTokens:
        """Build a token pair from login response fields (lifetimes in seconds)."""
        now = _utcnow()
        refresh_ttl = refresh_expires_in if refresh_expires_in is not None else DEFAULT_REFRESH_TTL
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            access_expires_at=now + timedelta(seconds=expires_in) if expires_in is not None else None,
            refresh_expires_at=now + timedelta(seconds=refresh_ttl),
            saved_at=now,
        )

    def with_access_token(
        self,
        access_token: str,
        *,
        expires_in: float | None = None,
        refresh_token: str | None = None,
    ) -> SessionTokens:
        """Rotate the access token, keeping the refresh token unless a new one is given."""
        now = _utcnow()
        return SessionTokens(
            access_token=access_token,
            refresh_token=refresh_token or self.refresh_token,
            access_expires_at=now + timedelta(seconds=expires_in) if expires_in is not None else None,
            refresh_expires_at=self.refresh_expires_at,
            saved_at=now,
        )

    @property
    def is_access_expired(self) -> bool:
        """Whether the access token is expired or about to expire."""
        if self.access_expires_at is None:
            return False
        return _utcnow() >= self.access_expires_at - timedelta(seconds=ACCESS_EXPIRY_SKEW)

    @property
    def is_refresh_expired(self) -> bool:
        if self.refresh_expires_at is None:
            return False
        return _utcnow() >= self.refresh_expires_at

    @property
    def has_valid_session(self) -> bool:
        """Access token still valid, or it can be refreshed."""
        return not self.is_access_expired or not self.is_refresh_expired

    def describe(self) -> dict[str, Any]:
        """Token state without the secrets, for diagnostics."""
        now = _utcnow()
        return {
            "has_tokens": True,
            "is_access_expired": self.is_access_expired,
            "is_refresh_expired": self.is_refresh_expired,
            "access_expires_in_seconds": (
                max(0.0, (self.access_expires_at - now).total_seconds()) if self.access_expires_at else None
            ),
            "refresh_expires_in_seconds": (
                max(0.0, (self.refresh_expires_at - now).total_seconds()) if self.refresh_expires_at else None
            ),
            "saved_at": self.saved_at.isoformat(),
        }
