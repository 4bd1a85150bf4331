"""
Song reviews, one per author, kept consistent with the author's rating.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from soundnet.clients.document_store import DocumentStore
from soundnet.core.errors import NotFoundError
from soundnet.models.ratings import Review, validate_rating
from soundnet.services.rating_aggregator import RatingAggregator, require_document_id
from soundnet.utils.http import RetryConfig, call_with_retry

logger = logging.getLogger(__name__)


class ReviewStore:
    """Create, replace, delete and list song reviews.

    Each review is stored under the song and mirrored under its author so the
    profile view can list an author's recent reviews without a collection-group
    query.
    """

    REVIEWS_COLLECTION = "songReviews"
    USERS_COLLECTION = "users"

    def __init__(
        self,
        documents: DocumentStore,
        rating_aggregator: RatingAggregator,
        *,
        retry_config: Optional[RetryConfig] = None,
    ) -> None:
        self._documents = documents
        self._ratings = rating_aggregator
        self._retry = retry_config or RetryConfig()

    def _review_path(self, subject_id: str, author_id: str) -> str:
        return f"{self._subject_collection(subject_id)}/{author_id}"

    def _subject_collection(self, subject_id: str) -> str:
        require_document_id(subject_id, "subject id")
        return f"{self.REVIEWS_COLLECTION}/{subject_id}/reviews"

    def _author_collection(self, author_id: str) -> str:
        require_document_id(author_id, "author id")
        return f"{self.USERS_COLLECTION}/{author_id}/reviews"

    async def upsert(
        self,
        subject_id: str,
        author_id: str,
        rating: float,
        text: str,
        *,
        display_name: Optional[str] = None,
    ) -> Review:
        """Create or replace ``author_id``'s review and record the same rating."""
        rating = validate_rating(rating)
        require_document_id(author_id, "author id")
        # Rating first: a rating without a review is a valid state, the reverse is not.
        await self._ratings.submit(subject_id, author_id, rating)

        review = Review(
            subject_id=subject_id,
            author_id=author_id,
            text=text.strip(),
            rating=rating,
            display_name=display_name,
            created_at=datetime.now(timezone.utc),
        )
        document = review.to_document()
        await call_with_retry(
            self._documents.set_document,
            self._review_path(subject_id, author_id),
            document,
            retry_config=self._retry,
        )
        await call_with_retry(
            self._documents.set_document,
            f"{self._author_collection(author_id)}/{subject_id}",
            document,
            retry_config=self._retry,
        )
        logger.info("Review saved: %s by %s", subject_id, author_id)
        return review

    async def get(self, subject_id: str, author_id: str) -> Review:
        data = await call_with_retry(
            self._documents.get_document,
            self._review_path(subject_id, author_id),
            retry_config=self._retry,
        )
        if data is None:
            raise NotFoundError(f"No review of {subject_id} by {author_id}.")
        return Review.from_document(subject_id, author_id, data)

    async def remove(self, subject_id: str, author_id: str) -> None:
        """Delete the review; the author's rating stays in the aggregate."""
        deleted = await call_with_retry(
            self._documents.delete_document,
            self._review_path(subject_id, author_id),
            retry_config=self._retry,
        )
        if not deleted:
            raise NotFoundError(f"No review of {subject_id} by {author_id}.")
        await call_with_retry(
            self._documents.delete_document,
            f"{self._author_collection(author_id)}/{subject_id}",
            retry_config=self._retry,
        )
        logger.info("Review removed: %s by %s", subject_id, author_id)

    async def list(self, subject_id: str) -> List[Review]:
        """Current reviews of a song, newest first."""
        snapshots = await call_with_retry(
            self._documents.list_documents,
            self._subject_collection(subject_id),
            retry_config=self._retry,
        )
        reviews = [
            Review.from_document(subject_id, snapshot.id, snapshot.data)
            for snapshot in snapshots
        ]
        return sorted(reviews, key=lambda review: review.created_at, reverse=True)

    async def recent_for_author(self, author_id: str, limit: int = 10) -> List[Review]:
        snapshots = await call_with_retry(
            self._documents.list_documents,
            self._author_collection(author_id),
            retry_config=self._retry,
        )
        reviews = [
            Review.from_document(snapshot.id, author_id, snapshot.data)
            for snapshot in snapshots
        ]
        reviews.sort(key=lambda review: review.created_at, reverse=True)
        return reviews[:limit]


__all__ = ["ReviewStore"]
