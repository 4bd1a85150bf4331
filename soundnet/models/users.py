"""
Application account models.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, SecretStr

from soundnet.models.oauth import TokenPair


FAVORITE_SLOTS = 5


class FavoriteItem(BaseModel):
    """A track or album pinned to one of the profile's favourite slots."""

    id: str
    title: str
    artist: Optional[str] = None
    image_url: Optional[str] = None

    @classmethod
    def from_catalog(cls, item: Dict[str, Any]) -> "FavoriteItem":
        """Build from a Spotify track or album object."""
        images = item.get("images") or (item.get("album") or {}).get("images") or []
        artists = [a.get("name") for a in item.get("artists") or [] if a.get("name")]
        return cls(
            id=item["id"],
            title=item.get("name", ""),
            artist=", ".join(artists) or None,
            image_url=images[0].get("url") if images else None,
        )

    @classmethod
    def from_document(cls, data: Optional[Dict[str, Any]]) -> Optional["FavoriteItem"]:
        if not data or not data.get("id"):
            return None
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            artist=data.get("artist"),
            image_url=data.get("imageUrl"),
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "artist": self.artist,
            "imageUrl": self.image_url,
        }


def favorite_slots(raw: Any) -> List[Optional[FavoriteItem]]:
    """Normalise a stored slot list to exactly ``FAVORITE_SLOTS`` entries."""
    entries = list(raw or [])[:FAVORITE_SLOTS]
    entries += [None] * (FAVORITE_SLOTS - len(entries))
    return [FavoriteItem.from_document(entry) for entry in entries]


class AppUser(BaseModel):
    """Account record stored at ``users/{uid}``."""

    id: str
    email: str
    display_name: Optional[str] = None
    linked_provider_refresh_token: Optional[str] = Field(None, repr=False)
    created_at: Optional[datetime] = None
    favorite_tracks: List[Optional[FavoriteItem]] = Field(
        default_factory=lambda: [None] * FAVORITE_SLOTS
    )
    favorite_albums: List[Optional[FavoriteItem]] = Field(
        default_factory=lambda: [None] * FAVORITE_SLOTS
    )

    @classmethod
    def from_document(cls, uid: str, data: Dict[str, Any]) -> "AppUser":
        return cls(
            id=uid,
            email=data.get("email", ""),
            display_name=data.get("displayName") or data.get("username"),
            linked_provider_refresh_token=data.get("spotifyRefreshToken"),
            created_at=data.get("createdAt"),
            favorite_tracks=favorite_slots(data.get("favorites")),
            favorite_albums=favorite_slots(data.get("albums")),
        )

    def to_document(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {
            "email": self.email,
            "displayName": self.display_name,
            "spotifyRefreshToken": self.linked_provider_refresh_token,
        }
        if self.created_at is not None:
            document["createdAt"] = self.created_at.isoformat()
        return document


class Credentials(BaseModel):
    """Email/password credentials for the account backend."""

    email: str = Field(..., min_length=3)
    password: SecretStr


class SignInResult(BaseModel):
    """Outcome of an app-level sign in.

    ``needs_provider_link`` is independent of the account session: the user is
    signed in either way and may link the provider account later.
    """

    user: AppUser
    needs_provider_link: bool
    token_pair: Optional[TokenPair] = None


__all__ = [
    "AppUser",
    "Credentials",
    "FAVORITE_SLOTS",
    "FavoriteItem",
    "SignInResult",
    "favorite_slots",
]
