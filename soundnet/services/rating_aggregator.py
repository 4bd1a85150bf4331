"""
Per-song rating aggregation over the ``songRatings`` collections.

Every aggregate is recomputed from the full set of stored ratings for the
song, so repeated or concurrent submissions can never drift the totals.
"""

from __future__ import annotations

import logging
from typing import Callable, FrozenSet, List, Optional, Tuple

from soundnet.clients.document_store import DocumentSnapshot, DocumentStore, Unsubscribe
from soundnet.clients.sqlite_store import SQLiteKeyValueStore
from soundnet.core.errors import PersistenceError
from soundnet.models.ratings import AggregateRating, RatingEvent, validate_rating
from soundnet.utils.http import RetryConfig, call_with_retry

logger = logging.getLogger(__name__)

AggregateListener = Callable[[AggregateRating], None]


def require_document_id(value: str, label: str) -> str:
    if not value or "/" in value:
        raise ValueError(f"Invalid {label}: {value!r}")
    return value


class Subscription:
    """Handle returned by ``RatingAggregator.subscribe``; call it to stop updates."""

    def __init__(self, subject_id: str) -> None:
        self.subject_id = subject_id
        self._active = True
        self._detach: Optional[Unsubscribe] = None

    @property
    def active(self) -> bool:
        return self._active

    def _bind(self, detach: Unsubscribe) -> None:
        self._detach = detach

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        if self._detach is not None:
            self._detach()
            self._detach = None

    __call__ = unsubscribe


class RatingAggregator:
    """Stores individual ratings and serves live aggregates per song."""

    RATINGS_COLLECTION = "songRatings"
    SNAPSHOT_KEY_PREFIX = "ratingSnapshot:"

    def __init__(
        self,
        documents: DocumentStore,
        *,
        local_storage: Optional[SQLiteKeyValueStore] = None,
        retry_config: Optional[RetryConfig] = None,
    ) -> None:
        self._documents = documents
        self._local = local_storage
        self._retry = retry_config or RetryConfig()

    def _collection(self, subject_id: str) -> str:
        require_document_id(subject_id, "subject id")
        return f"{self.RATINGS_COLLECTION}/{subject_id}/ratings"

    async def submit(self, subject_id: str, rater_id: str, value: float) -> AggregateRating:
        """Upsert ``rater_id``'s rating and return the recomputed aggregate."""
        rating = validate_rating(value)
        require_document_id(rater_id, "rater id")
        event = RatingEvent(subject_id=subject_id, rater_id=rater_id, value=rating)
        await call_with_retry(
            self._documents.set_document,
            f"{self._collection(subject_id)}/{rater_id}",
            event.to_document(),
            retry_config=self._retry,
        )
        logger.info("Rating saved: %s by %s - %.1f", subject_id, rater_id, rating)
        return await self.aggregate(subject_id)

    async def events(self, subject_id: str) -> List[RatingEvent]:
        snapshots = await call_with_retry(
            self._documents.list_documents,
            self._collection(subject_id),
            retry_config=self._retry,
        )
        return self._events_from(subject_id, snapshots)

    async def aggregate(self, subject_id: str) -> AggregateRating:
        events = await self.events(subject_id)
        aggregate = AggregateRating.from_values(subject_id, (e.value for e in events))
        self._cache(aggregate)
        return aggregate

    async def average(self, subject_id: str) -> float:
        """Full-precision mean; 0.0 when the song has no ratings."""
        return (await self.aggregate(subject_id)).average

    async def rating_for(self, subject_id: str, rater_id: str) -> Optional[float]:
        require_document_id(rater_id, "rater id")
        data = await call_with_retry(
            self._documents.get_document,
            f"{self._collection(subject_id)}/{rater_id}",
            retry_config=self._retry,
        )
        if not data or data.get("rating") is None:
            return None
        return float(data["rating"])

    def cached_aggregate(self, subject_id: str) -> Optional[AggregateRating]:
        """Last aggregate seen on this device, for offline display."""
        if self._local is None:
            return None
        payload = self._local.get_item(f"{self.SNAPSHOT_KEY_PREFIX}{subject_id}")
        return AggregateRating.model_validate(payload) if payload else None

    async def subscribe(
        self, subject_id: str, on_update: AggregateListener
    ) -> Subscription:
        """Emit the current aggregate now and again whenever the ratings change.

        A listener runs once per distinct set of ``(rater, value)`` events, even
        when two sets happen to produce the same aggregate. The initial read
        is dropped if the watcher has already delivered a newer snapshot.
        """
        collection = self._collection(subject_id)
        subscription = Subscription(subject_id)
        last_events: List[FrozenSet[Tuple[str, float]]] = []

        def deliver(events: List[RatingEvent]) -> None:
            if not subscription.active:
                return
            key = frozenset((e.rater_id, e.value) for e in events)
            if last_events and last_events[0] == key:
                return
            last_events[:] = [key]
            aggregate = AggregateRating.from_values(subject_id, (e.value for e in events))
            self._cache(aggregate)
            on_update(aggregate)

        def on_change(snapshots: List[DocumentSnapshot]) -> None:
            deliver(self._events_from(subject_id, snapshots))

        subscription._bind(self._documents.watch_collection(collection, on_change))
        try:
            initial = await self.events(subject_id)
        except BaseException:
            subscription.unsubscribe()
            raise
        if not last_events:
            deliver(initial)
        return subscription

    @staticmethod
    def _events_from(
        subject_id: str, snapshots: List[DocumentSnapshot]
    ) -> List[RatingEvent]:
        events = []
        for snapshot in snapshots:
            event = RatingEvent.from_document(subject_id, snapshot.id, snapshot.data)
            if event is not None:
                events.append(event)
        return events

    def _cache(self, aggregate: AggregateRating) -> None:
        if self._local is None:
            return
        try:
            self._local.set_item(
                f"{self.SNAPSHOT_KEY_PREFIX}{aggregate.subject_id}",
                aggregate.model_dump(),
            )
        except PersistenceError as exc:
            logger.warning("Could not cache rating snapshot for %s: %s", aggregate.subject_id, exc)


__all__ = ["AggregateListener", "RatingAggregator", "Subscription", "require_document_id"]
