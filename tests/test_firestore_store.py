try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import asyncio
import time

import pytest
from google.api_core import exceptions as google_exceptions

from soundnet.clients.firestore import FirestoreDocumentStore
from soundnet.core.config import FirebaseSettings
from soundnet.core.errors import BackendUnavailableError, PersistenceError
from soundnet.utils.http import RetryConfig, call_with_retry


class FakeSnapshot:
    def __init__(self, doc_id: str, data: dict | None) -> None:
        self.id = doc_id
        self._data = data
        self.exists = data is not None

    def to_dict(self) -> dict | None:
        return self._data


class FakeDocumentRef:
    def __init__(self, db: "FakeFirestore", path: str) -> None:
        self._db = db
        self._path = path

    def get(self) -> FakeSnapshot:
        if self._db.error is not None:
            raise self._db.error
        return FakeSnapshot(self._path.rsplit("/", 1)[-1], self._db.docs.get(self._path))

    def set(self, data: dict, merge: bool = False) -> None:
        current = self._db.docs.get(self._path) if merge else None
        self._db.docs[self._path] = {**(current or {}), **data}

    def delete(self) -> None:
        self._db.docs.pop(self._path, None)


class FakeWatch:
    def __init__(self) -> None:
        self.unsubscribed = False

    def unsubscribe(self) -> None:
        self.unsubscribed = True


class FakeQuery:
    def __init__(self, db: "FakeFirestore", path: str) -> None:
        self._db = db
        self._path = path
        self.order = None
        self.max_items = None

    def order_by(self, field: str, direction: str) -> "FakeQuery":
        self.order = (field, direction)
        return self

    def limit(self, count: int) -> "FakeQuery":
        self.max_items = count
        return self

    def stream(self):
        self._db.queries.append(self)
        prefix = f"{self._path}/"
        for path, data in sorted(self._db.docs.items()):
            if path.startswith(prefix) and "/" not in path[len(prefix):]:
                yield FakeSnapshot(path[len(prefix):], data)

    def on_snapshot(self, callback) -> FakeWatch:
        self._db.listeners.append(callback)
        return self._db.watch


class FakeFirestore:
    def __init__(self) -> None:
        self.docs: dict[str, dict] = {}
        self.queries: list[FakeQuery] = []
        self.listeners: list = []
        self.watch = FakeWatch()
        self.error: Exception | None = None

    def document(self, path: str) -> FakeDocumentRef:
        return FakeDocumentRef(self, path)

    def collection(self, path: str) -> FakeQuery:
        return FakeQuery(self, path)


class SlowDocumentRef(FakeDocumentRef):
    def get(self) -> FakeSnapshot:
        time.sleep(0.3)
        return super().get()


class SlowFirestore(FakeFirestore):
    def document(self, path: str) -> FakeDocumentRef:
        return SlowDocumentRef(self, path)


def _store(db: FakeFirestore) -> FirestoreDocumentStore:
    return FirestoreDocumentStore(FirebaseSettings(FIREBASE_API_KEY="key"), client=db)


@pytest.mark.asyncio
async def test_document_operations_map_to_firestore_calls() -> None:
    db = FakeFirestore()
    store = _store(db)

    await store.set_document("users/U1", {"email": "ada@example.com"})
    await store.set_document("users/U1", {"spotifyRefreshToken": "R1"}, merge=True)
    await store.set_document("songRatings/S1/ratings/U1", {"rating": 4.0})

    assert await store.get_document("users/U1") == {
        "email": "ada@example.com",
        "spotifyRefreshToken": "R1",
    }
    assert await store.get_document("users/U9") is None
    snapshots = await store.list_documents(
        "songRatings/S1/ratings", order_by="rating", limit=5
    )
    assert [(s.id, s.data) for s in snapshots] == [("U1", {"rating": 4.0})]
    assert db.queries[-1].order[0] == "rating"
    assert db.queries[-1].max_items == 5
    assert await store.delete_document("songRatings/S1/ratings/U1") is True
    assert await store.delete_document("songRatings/S1/ratings/U1") is False


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (google_exceptions.ServiceUnavailable("down"), BackendUnavailableError),
        (google_exceptions.DeadlineExceeded("slow"), BackendUnavailableError),
        (google_exceptions.PermissionDenied("rules"), PersistenceError),
    ],
)
async def test_backend_errors_are_translated(error: Exception, expected: type) -> None:
    db = FakeFirestore()
    db.error = error

    with pytest.raises(expected):
        await _store(db).get_document("users/U1")


@pytest.mark.asyncio
async def test_paths_are_validated_before_calls() -> None:
    with pytest.raises(ValueError):
        await _store(FakeFirestore()).get_document("users")


@pytest.mark.asyncio
async def test_blocking_sdk_calls_leave_the_loop_free() -> None:
    db = SlowFirestore()
    db.docs["users/U1"] = {"email": "ada@example.com"}
    ticks: list[float] = []

    async def ticker() -> None:
        while True:
            ticks.append(time.monotonic())
            await asyncio.sleep(0.02)

    ticking = asyncio.ensure_future(ticker())
    try:
        data = await call_with_retry(
            _store(db).get_document, "users/U1", retry_config=RetryConfig(attempts=1)
        )
    finally:
        ticking.cancel()

    assert data == {"email": "ada@example.com"}
    assert len(ticks) >= 5
    assert max(b - a for a, b in zip(ticks, ticks[1:])) < 0.2


def test_watch_without_loop_calls_back_directly() -> None:
    db = FakeFirestore()
    seen: list[list[str]] = []

    unsubscribe = _store(db).watch_collection(
        "songRatings/S1/ratings", lambda snaps: seen.append([s.id for s in snaps])
    )
    db.listeners[0]([FakeSnapshot("U1", {"rating": 3.0})], [], None)
    unsubscribe()

    assert seen == [["U1"]]
    assert db.watch.unsubscribed is True


@pytest.mark.asyncio
async def test_watch_hands_snapshots_to_running_loop() -> None:
    db = FakeFirestore()
    delivered = asyncio.Event()
    seen: list[str] = []

    def on_change(snapshots) -> None:
        seen.extend(s.id for s in snapshots)
        delivered.set()

    _store(db).watch_collection("songRatings/S1/ratings", on_change)
    listener = db.listeners[0]
    await asyncio.to_thread(listener, [FakeSnapshot("U2", {"rating": 5.0})], [], None)
    await asyncio.wait_for(delivered.wait(), timeout=1)

    assert seen == ["U2"]
