"""
Payloads for the profile and its favourite slots.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from soundnet.models.users import AppUser, FavoriteItem


class FavoriteRequest(BaseModel):
    item_id: str = Field(..., min_length=1, description="Spotify track or album id.")


class ProfileResponse(BaseModel):
    """Public profile view; never carries provider credentials."""

    user_id: str
    email: str
    display_name: Optional[str] = None
    favorite_tracks: List[Optional[FavoriteItem]]
    favorite_albums: List[Optional[FavoriteItem]]

    @classmethod
    def from_user(cls, user: AppUser) -> "ProfileResponse":
        return cls(
            user_id=user.id,
            email=user.email,
            display_name=user.display_name,
            favorite_tracks=user.favorite_tracks,
            favorite_albums=user.favorite_albums,
        )


__all__ = ["FavoriteRequest", "ProfileResponse"]
