"""
Request payloads for ratings and reviews.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class RatingSubmissionRequest(BaseModel):
    """Payload for rating a song as the signed-in user."""

    rating: float = Field(..., description="Half-step value between 1.0 and 5.0.")


class ReviewRequest(BaseModel):
    """Payload for creating or replacing the signed-in user's review."""

    rating: float = Field(..., description="Half-step value between 1.0 and 5.0.")
    text: str = Field(..., min_length=1, max_length=5000)


class UserRatingResponse(BaseModel):
    song_id: str
    rating: Optional[float] = None


__all__ = ["RatingSubmissionRequest", "ReviewRequest", "UserRatingResponse"]
