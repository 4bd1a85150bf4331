"""
Firestore document backend built on firebase-admin.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions as google_exceptions

from soundnet.clients.document_store import (
    CollectionListener,
    DocumentSnapshot,
    Unsubscribe,
    normalize_collection_path,
    split_document_path,
)
from soundnet.core.config import FirebaseSettings
from soundnet.core.errors import BackendUnavailableError, PersistenceError

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.DeadlineExceeded,
    google_exceptions.Aborted,
    google_exceptions.TooManyRequests,
)


@contextmanager
def _translate_errors(path: str) -> Iterator[None]:
    try:
        yield
    except _TRANSIENT_ERRORS as exc:
        raise BackendUnavailableError(f"Firestore unavailable for {path}: {exc}") from exc
    except google_exceptions.GoogleAPICallError as exc:
        raise PersistenceError(f"Firestore call failed for {path}: {exc}") from exc


class FirestoreDocumentStore:
    """Document store backed by Cloud Firestore.

    The firebase-admin SDK blocks, so each call runs in a worker thread.
    """

    def __init__(self, settings: FirebaseSettings, *, client: Any = None) -> None:
        self._settings = settings
        self._db = client if client is not None else self._build_client(settings)

    @staticmethod
    def _build_client(settings: FirebaseSettings) -> Any:
        try:
            app = firebase_admin.get_app()
        except ValueError:
            if settings.credentials_file:
                cred = credentials.Certificate(settings.credentials_file)
            else:
                cred = credentials.ApplicationDefault()
            options = {"projectId": settings.project_id} if settings.project_id else None
            app = firebase_admin.initialize_app(cred, options)
        return firestore.client(app)

    async def get_document(self, path: str) -> Optional[Dict[str, Any]]:
        split_document_path(path)

        def _execute_get() -> Optional[Dict[str, Any]]:
            with _translate_errors(path):
                snapshot = self._db.document(path).get()
            if not snapshot.exists:
                return None
            return snapshot.to_dict() or {}

        return await asyncio.to_thread(_execute_get)

    async def set_document(
        self, path: str, data: Dict[str, Any], *, merge: bool = False
    ) -> None:
        split_document_path(path)

        def _execute_set() -> None:
            with _translate_errors(path):
                self._db.document(path).set(data, merge=merge)

        await asyncio.to_thread(_execute_set)

    async def delete_document(self, path: str) -> bool:
        split_document_path(path)

        def _execute_delete() -> bool:
            reference = self._db.document(path)
            with _translate_errors(path):
                existed = reference.get().exists
                if existed:
                    reference.delete()
            return existed

        return await asyncio.to_thread(_execute_delete)

    async def list_documents(
        self,
        collection_path: str,
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[DocumentSnapshot]:
        collection = normalize_collection_path(collection_path)

        def _execute_query() -> List[DocumentSnapshot]:
            query = self._db.collection(collection)
            if order_by:
                direction = (
                    firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
                )
                query = query.order_by(order_by, direction=direction)
            if limit is not None:
                query = query.limit(limit)
            with _translate_errors(collection):
                return [
                    DocumentSnapshot(id=doc.id, data=doc.to_dict() or {})
                    for doc in query.stream()
                ]

        return await asyncio.to_thread(_execute_query)

    def watch_collection(
        self, collection_path: str, callback: CollectionListener
    ) -> Unsubscribe:
        """Attach a snapshot listener.

        Firestore invokes listeners on its own thread; when a loop is running
        the callback is handed over to it so subscribers stay single-threaded.
        """
        collection = normalize_collection_path(collection_path)
        try:
            loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        def on_snapshot(docs: Any, changes: Any, read_time: Any) -> None:
            snapshot = [DocumentSnapshot(id=doc.id, data=doc.to_dict() or {}) for doc in docs]
            if loop is not None and not loop.is_closed():
                loop.call_soon_threadsafe(callback, snapshot)
            else:
                callback(snapshot)

        watch = self._db.collection(collection).on_snapshot(on_snapshot)
        logger.debug("Watching Firestore collection %s", collection)
        return watch.unsubscribe


__all__ = ["FirestoreDocumentStore"]
