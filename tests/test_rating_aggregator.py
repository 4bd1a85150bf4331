try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import asyncio

import pytest

from soundnet.clients import SQLiteDocumentStore, SQLiteKeyValueStore
from soundnet.clients.document_store import DocumentSnapshot
from soundnet.core.errors import BackendUnavailableError, PersistenceError, RatingValidationError
from soundnet.models.ratings import BUCKET_LABELS, AggregateRating, bucket_label
from soundnet.services.rating_aggregator import RatingAggregator
from soundnet.utils.http import RetryConfig


class FlakyDocumentStore:
    """Wraps a store and fails the first ``failures`` list calls."""

    def __init__(self, inner: SQLiteDocumentStore, failures: int) -> None:
        self._inner = inner
        self.failures = failures
        self.calls = 0

    def __getattr__(self, name):
        return getattr(self._inner, name)

    def list_documents(self, collection_path, **kwargs):
        self.calls += 1
        if self.calls <= self.failures:
            raise BackendUnavailableError("backend timed out")
        return self._inner.list_documents(collection_path, **kwargs)


@pytest.fixture
def aggregator(document_store: SQLiteDocumentStore, local_storage: SQLiteKeyValueStore):
    return RatingAggregator(
        document_store,
        local_storage=local_storage,
        retry_config=RetryConfig(attempts=3, backoff_seconds=0),
    )


@pytest.mark.asyncio
async def test_three_raters_aggregate(aggregator: RatingAggregator) -> None:
    await aggregator.submit("S1", "U1", 4.0)
    await aggregator.submit("S1", "U2", 5.0)
    result = await aggregator.submit("S1", "U3", 4.5)

    assert result.count == 3
    assert result.sum == 13.5
    assert result.average == 4.5
    expected = {label: 0 for label in BUCKET_LABELS}
    expected.update({"4.0": 1, "4.5": 1, "5.0": 1})
    assert result.histogram == expected


@pytest.mark.asyncio
async def test_resubmission_replaces_previous_value(aggregator: RatingAggregator) -> None:
    await aggregator.submit("S1", "U1", 3.0)
    result = await aggregator.submit("S1", "U1", 4.0)

    assert result.count == 1
    assert result.sum == 4.0
    assert result.histogram["3.0"] == 0
    assert await aggregator.rating_for("S1", "U1") == 4.0


@pytest.mark.asyncio
async def test_same_value_twice_does_not_double_count(aggregator: RatingAggregator) -> None:
    first = await aggregator.submit("S1", "U1", 2.5)
    second = await aggregator.submit("S1", "U1", 2.5)

    assert first.count == second.count == 1


@pytest.mark.asyncio
async def test_average_matches_sum_over_count(aggregator: RatingAggregator) -> None:
    values = [1.0, 3.5, 5.0, 2.0, 4.5, 4.5, 1.5]
    for index, value in enumerate(values):
        await aggregator.submit("S2", f"U{index}", value)

    result = await aggregator.aggregate("S2")

    assert result.average == result.sum / result.count
    assert result.sum == sum(values)
    assert sum(result.histogram.values()) == result.count
    assert await aggregator.average("S2") == result.average
    assert result.display_average() == f"{sum(values) / len(values):.1f}"


@pytest.mark.asyncio
async def test_unrated_song_has_empty_aggregate(aggregator: RatingAggregator) -> None:
    result = await aggregator.aggregate("never-rated")

    assert result == AggregateRating(subject_id="never-rated")
    assert await aggregator.average("never-rated") == 0.0
    assert await aggregator.rating_for("never-rated", "U1") is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "value", [0.5, 5.5, 3.3, float("nan"), float("inf"), float("-inf"), True, "4"]
)
async def test_invalid_values_are_rejected(aggregator: RatingAggregator, value) -> None:
    with pytest.raises(RatingValidationError):
        await aggregator.submit("S1", "U1", value)

    assert (await aggregator.aggregate("S1")).count == 0


@pytest.mark.asyncio
async def test_invalid_ids_are_rejected(aggregator: RatingAggregator) -> None:
    with pytest.raises(ValueError):
        await aggregator.submit("", "U1", 3.0)
    with pytest.raises(ValueError):
        await aggregator.submit("S1", "a/b", 3.0)


def test_bucket_label_rounds_half_up_and_clamps() -> None:
    assert bucket_label(4.25) == "4.5"
    assert bucket_label(4.2) == "4.0"
    assert bucket_label(0.2) == "1.0"
    assert bucket_label(7.0) == "5.0"


@pytest.mark.asyncio
async def test_subscribe_emits_initial_and_changed_aggregates(
    aggregator: RatingAggregator,
) -> None:
    await aggregator.submit("S1", "U1", 4.0)
    updates: list[AggregateRating] = []

    subscription = await aggregator.subscribe("S1", updates.append)
    await aggregator.submit("S1", "U2", 5.0)
    await aggregator.submit("S1", "U2", 5.0)

    assert [update.count for update in updates] == [1, 2]
    assert updates[-1].average == 4.5

    subscription.unsubscribe()
    subscription.unsubscribe()
    await aggregator.submit("S1", "U3", 1.0)

    assert len(updates) == 2
    assert subscription.active is False


@pytest.mark.asyncio
async def test_subscription_ignores_other_songs(aggregator: RatingAggregator) -> None:
    updates: list[AggregateRating] = []
    subscription = await aggregator.subscribe("S1", updates.append)

    await aggregator.submit("S2", "U1", 3.0)

    assert len(updates) == 1
    assert updates[0].count == 0
    subscription()


@pytest.mark.asyncio
async def test_transient_backend_failures_are_retried(
    document_store: SQLiteDocumentStore,
) -> None:
    flaky = FlakyDocumentStore(document_store, failures=2)
    aggregator = RatingAggregator(flaky, retry_config=RetryConfig(attempts=3, backoff_seconds=0))

    result = await aggregator.aggregate("S1")

    assert result.count == 0
    assert flaky.calls == 3


@pytest.mark.asyncio
async def test_exhausted_retries_raise_persistence_error(
    document_store: SQLiteDocumentStore, local_storage: SQLiteKeyValueStore
) -> None:
    warm = RatingAggregator(document_store, local_storage=local_storage)
    await warm.submit("S1", "U1", 3.5)

    flaky = FlakyDocumentStore(document_store, failures=10)
    offline = RatingAggregator(
        flaky,
        local_storage=local_storage,
        retry_config=RetryConfig(attempts=2, backoff_seconds=0),
    )

    with pytest.raises(PersistenceError):
        await offline.aggregate("S1")

    cached = offline.cached_aggregate("S1")
    assert cached is not None
    assert cached.count == 1
    assert cached.average == 3.5


class ScriptedWatchStore:
    """Captures the collection listener; ``list_documents`` yields to the loop.

    ``during_read`` runs while the initial read is suspended, standing in for a
    snapshot that arrives from the backend thread mid-read.
    """

    def __init__(self, initial: list[DocumentSnapshot]) -> None:
        self.initial = initial
        self.listener = None
        self.during_read = None

    def watch_collection(self, collection_path, callback):
        self.listener = callback
        return lambda: None

    async def list_documents(self, collection_path, **kwargs):
        await asyncio.sleep(0)
        if self.during_read is not None:
            self.during_read()
        return list(self.initial)


def _ratings(*pairs: tuple[str, float]) -> list[DocumentSnapshot]:
    return [DocumentSnapshot(id=rater, data={"rating": value}) for rater, value in pairs]


@pytest.mark.asyncio
async def test_subscriber_sees_every_event_set_change() -> None:
    store = ScriptedWatchStore(_ratings(("U1", 4.0), ("U2", 3.0)))
    aggregator = RatingAggregator(store, retry_config=RetryConfig(attempts=1))
    updates: list[AggregateRating] = []

    await aggregator.subscribe("S1", updates.append)
    store.listener(_ratings(("U1", 3.0), ("U2", 4.0)))
    store.listener(_ratings(("U1", 3.0), ("U2", 4.0)))

    assert len(updates) == 2
    assert updates[0] == updates[1]


@pytest.mark.asyncio
async def test_initial_read_never_overrides_newer_snapshot() -> None:
    store = ScriptedWatchStore(_ratings(("U1", 4.0)))
    store.during_read = lambda: store.listener(_ratings(("U1", 4.0), ("U2", 2.0)))
    aggregator = RatingAggregator(store, retry_config=RetryConfig(attempts=1))
    updates: list[AggregateRating] = []

    await aggregator.subscribe("S1", updates.append)

    assert [update.count for update in updates] == [2]
    assert updates[-1].sum == 6.0
