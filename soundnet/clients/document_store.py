"""
Document backend contract plus a SQLite implementation.

Paths follow the Firestore convention: a collection path has an odd number of
segments (``songRatings/S1/ratings``) and a document path an even number
(``songRatings/S1/ratings/U1``).
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple, Union

from soundnet.core.errors import BackendUnavailableError, PersistenceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentSnapshot:
    """A document id and its data as read from a collection."""

    id: str
    data: Dict[str, Any] = field(default_factory=dict)


CollectionListener = Callable[[List[DocumentSnapshot]], None]
Unsubscribe = Callable[[], None]


class DocumentStore(Protocol):
    """Per-document upsert plus live collection queries.

    Reads and writes may complete synchronously or return an awaitable;
    services always go through ``call_with_retry``, which accepts both.
    """

    def get_document(
        self, path: str
    ) -> Union[Optional[Dict[str, Any]], Awaitable[Optional[Dict[str, Any]]]]: ...

    def set_document(
        self, path: str, data: Dict[str, Any], *, merge: bool = False
    ) -> Union[None, Awaitable[None]]: ...

    def delete_document(self, path: str) -> Union[bool, Awaitable[bool]]: ...

    def list_documents(
        self,
        collection_path: str,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> Union[List[DocumentSnapshot], Awaitable[List[DocumentSnapshot]]]: ...

    def watch_collection(
        self, collection_path: str, callback: CollectionListener
    ) -> Unsubscribe: ...


def split_document_path(path: str) -> Tuple[str, str]:
    """Return ``(collection_path, document_id)`` for a document path."""
    segments = [segment for segment in path.strip("/").split("/") if segment]
    if not segments or len(segments) % 2:
        raise ValueError(f"{path!r} is not a document path.")
    return "/".join(segments[:-1]), segments[-1]


def normalize_collection_path(path: str) -> str:
    segments = [segment for segment in path.strip("/").split("/") if segment]
    if len(segments) % 2 == 0:
        raise ValueError(f"{path!r} is not a collection path.")
    return "/".join(segments)


def sort_snapshots(
    snapshots: List[DocumentSnapshot],
    *,
    order_by: Optional[str],
    descending: bool,
    limit: Optional[int],
) -> List[DocumentSnapshot]:
    if order_by:
        # Documents missing the field sort last, as Firestore omits them.
        present = [s for s in snapshots if s.data.get(order_by) is not None]
        missing = [s for s in snapshots if s.data.get(order_by) is None]
        present.sort(key=lambda s: s.data[order_by], reverse=descending)
        snapshots = present + missing
    if limit is not None:
        snapshots = snapshots[:limit]
    return snapshots


class SQLiteDocumentStore:
    """Document store kept in a local SQLite file.

    Collection listeners are called synchronously, in commit order, after each
    write to the watched collection.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._listeners: Dict[str, List[CollectionListener]] = {}
        self._listeners_lock = threading.Lock()
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False, timeout=5.0)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    PRIMARY KEY (collection, doc_id)
                )
                """
            )

    def get_document(self, path: str) -> Optional[Dict[str, Any]]:
        collection, doc_id = split_document_path(path)
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT data FROM documents WHERE collection = ? AND doc_id = ?",
                    (collection, doc_id),
                ).fetchone()
        except sqlite3.OperationalError as exc:
            raise BackendUnavailableError(str(exc)) from exc
        if not row:
            return None
        return json.loads(row["data"])

    def set_document(
        self, path: str, data: Dict[str, Any], *, merge: bool = False
    ) -> None:
        collection, doc_id = split_document_path(path)
        try:
            with self._connect() as conn:
                payload = dict(data)
                if merge:
                    row = conn.execute(
                        "SELECT data FROM documents WHERE collection = ? AND doc_id = ?",
                        (collection, doc_id),
                    ).fetchone()
                    if row:
                        payload = {**json.loads(row["data"]), **data}
                conn.execute(
                    """
                    INSERT INTO documents (collection, doc_id, data)
                    VALUES (?, ?, ?)
                    ON CONFLICT(collection, doc_id) DO UPDATE SET data = excluded.data
                    """,
                    (collection, doc_id, json.dumps(payload)),
                )
        except sqlite3.OperationalError as exc:
            raise BackendUnavailableError(str(exc)) from exc
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc
        self._notify(collection)

    def delete_document(self, path: str) -> bool:
        collection, doc_id = split_document_path(path)
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    "DELETE FROM documents WHERE collection = ? AND doc_id = ?",
                    (collection, doc_id),
                )
                deleted = cursor.rowcount > 0
        except sqlite3.OperationalError as exc:
            raise BackendUnavailableError(str(exc)) from exc
        if deleted:
            self._notify(collection)
        return deleted

    def list_documents(
        self,
        collection_path: str,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[DocumentSnapshot]:
        collection = normalize_collection_path(collection_path)
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT doc_id, data FROM documents WHERE collection = ? ORDER BY doc_id",
                    (collection,),
                ).fetchall()
        except sqlite3.OperationalError as exc:
            raise BackendUnavailableError(str(exc)) from exc
        snapshots = [
            DocumentSnapshot(id=row["doc_id"], data=json.loads(row["data"]))
            for row in rows
        ]
        return sort_snapshots(
            snapshots, order_by=order_by, descending=descending, limit=limit
        )

    def watch_collection(
        self, collection_path: str, callback: CollectionListener
    ) -> Unsubscribe:
        collection = normalize_collection_path(collection_path)
        with self._listeners_lock:
            self._listeners.setdefault(collection, []).append(callback)

        def unsubscribe() -> None:
            with self._listeners_lock:
                listeners = self._listeners.get(collection, [])
                if callback in listeners:
                    listeners.remove(callback)
                if not listeners:
                    self._listeners.pop(collection, None)

        return unsubscribe

    def _notify(self, collection: str) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners.get(collection, ()))
        if not listeners:
            return
        snapshot = self.list_documents(collection)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:  # pylint: disable=broad-except
                logger.exception("Collection listener for %s failed", collection)


__all__ = [
    "CollectionListener",
    "DocumentSnapshot",
    "DocumentStore",
    "SQLiteDocumentStore",
    "Unsubscribe",
    "normalize_collection_path",
    "sort_snapshots",
    "split_document_path",
]
