"""
Rating and review models plus the half-step rating scale.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from pydantic import BaseModel, Field

from soundnet.core.errors import RatingValidationError

MIN_RATING = 1.0
MAX_RATING = 5.0
RATING_VALUES: tuple[float, ...] = tuple(x / 2 for x in range(2, 11))
BUCKET_LABELS: tuple[str, ...] = tuple(f"{value:.1f}" for value in RATING_VALUES)


def validate_rating(value: Any) -> float:
    """Return ``value`` as a float or raise if it is not a half-step in [1, 5]."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise RatingValidationError(f"Rating must be a number, got {value!r}.")
    try:
        number = float(value)
    except OverflowError as exc:
        raise RatingValidationError(f"Rating {value!r} is out of range.") from exc
    if not math.isfinite(number):
        raise RatingValidationError(f"Rating must be finite, got {value!r}.")
    if number * 2 != int(number * 2):
        raise RatingValidationError(f"Rating {value!r} is not a half-step value.")
    if not MIN_RATING <= number <= MAX_RATING:
        raise RatingValidationError(
            f"Rating {value!r} is outside {MIN_RATING}-{MAX_RATING}."
        )
    return number


def bucket_label(value: float) -> str:
    """Map a raw value to its histogram label (half-up rounding to 0.5 steps)."""
    rounded = math.floor(value * 2 + 0.5) / 2
    rounded = min(max(rounded, MIN_RATING), MAX_RATING)
    return f"{rounded:.1f}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RatingEvent(BaseModel):
    """One rater's current value for a subject."""

    subject_id: str
    rater_id: str
    value: float
    created_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def from_document(
        cls, subject_id: str, rater_id: str, data: Dict[str, Any]
    ) -> Optional["RatingEvent"]:
        value = data.get("rating")
        if value is None:
            return None
        return cls(
            subject_id=subject_id,
            rater_id=data.get("userId") or rater_id,
            value=float(value),
            created_at=data.get("createdAt") or _utcnow(),
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "rating": self.value,
            "userId": self.rater_id,
            "createdAt": self.created_at.isoformat(),
        }


class AggregateRating(BaseModel):
    """Sum/count/average and half-step histogram for one subject."""

    subject_id: str
    sum: float = 0.0
    count: int = 0
    average: float = 0.0
    histogram: Dict[str, int] = Field(
        default_factory=lambda: {label: 0 for label in BUCKET_LABELS}
    )

    @classmethod
    def from_values(cls, subject_id: str, values: Iterable[float]) -> "AggregateRating":
        """Recompute the aggregate from the full current set of values."""
        histogram = {label: 0 for label in BUCKET_LABELS}
        total = 0.0
        count = 0
        for value in values:
            total += value
            count += 1
            histogram[bucket_label(value)] += 1
        return cls(
            subject_id=subject_id,
            sum=total,
            count=count,
            average=total / count if count else 0.0,
            histogram=histogram,
        )

    def display_average(self, digits: int = 1) -> str:
        """Rounded average for presentation only."""
        return f"{self.average:.{digits}f}"


class Review(BaseModel):
    """A single author's review of a subject."""

    subject_id: str
    author_id: str
    text: str
    rating: float
    display_name: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def from_document(
        cls, subject_id: str, author_id: str, data: Dict[str, Any]
    ) -> "Review":
        return cls(
            subject_id=data.get("songId") or subject_id,
            author_id=data.get("userId") or author_id,
            text=data.get("text", ""),
            rating=float(data.get("rating", 0.0)),
            display_name=data.get("displayName"),
            created_at=data["createdAt"],
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "songId": self.subject_id,
            "userId": self.author_id,
            "text": self.text,
            "rating": self.rating,
            "displayName": self.display_name,
            "createdAt": self.created_at.isoformat(),
        }


__all__ = [
    "AggregateRating",
    "BUCKET_LABELS",
    "RATING_VALUES",
    "RatingEvent",
    "Review",
    "bucket_label",
    "validate_rating",
]
