"""
Domain models for provider OAuth state.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenPair(BaseModel):
    """Access/refresh token pair issued by the provider.

    Instances are immutable; a refresh produces a new pair which replaces the
    old one wholesale.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str = Field(..., min_length=1, repr=False)
    refresh_token: Optional[str] = Field(None, repr=False)
    expires_at: Optional[datetime] = None

    @classmethod
    def from_token_response(
        cls,
        payload: dict,
        *,
        previous_refresh_token: Optional[str] = None,
        issued_at: Optional[datetime] = None,
    ) -> "TokenPair":
        """Build a pair from a token endpoint JSON body.

        The provider omits ``refresh_token`` when it does not rotate it, in
        which case ``previous_refresh_token`` is carried over.
        """
        issued_at = issued_at or _utcnow()
        expires_in = payload.get("expires_in")
        expires_at = (
            issued_at + timedelta(seconds=int(expires_in)) if expires_in else None
        )
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token") or previous_refresh_token,
            expires_at=expires_at,
        )

    def is_expired(
        self, *, leeway: timedelta = timedelta(0), now: Optional[datetime] = None
    ) -> bool:
        """Best-effort expiry check; pairs without ``expires_at`` never expire here."""
        if self.expires_at is None:
            return False
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= (now or _utcnow()) + leeway


class AuthorizationRequest(BaseModel):
    """A pending PKCE authorization awaiting its redirect callback."""

    model_config = ConfigDict(frozen=True)

    state: str
    code_verifier: str = Field(..., repr=False)
    code_challenge: str
    authorization_url: str
    redirect_uri: str
    created_at: datetime = Field(default_factory=_utcnow)

    def is_expired(self, ttl_seconds: int, *, now: Optional[datetime] = None) -> bool:
        return (now or _utcnow()) - self.created_at > timedelta(seconds=ttl_seconds)


__all__ = ["AuthorizationRequest", "TokenPair"]
