"""
Profile favourites: five pinned tracks and five pinned albums per user.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from soundnet.clients.document_store import DocumentStore
from soundnet.core.errors import NotFoundError
from soundnet.models.users import FAVORITE_SLOTS, AppUser, FavoriteItem, favorite_slots
from soundnet.utils.http import RetryConfig, call_with_retry

logger = logging.getLogger(__name__)


class ProfileService:
    """Reads profiles and updates their favourite slots in ``users/{uid}``."""

    USERS_COLLECTION = "users"
    SLOT_FIELDS = {"track": "favorites", "album": "albums"}

    def __init__(
        self, documents: DocumentStore, *, retry_config: Optional[RetryConfig] = None
    ) -> None:
        self._documents = documents
        self._retry = retry_config or RetryConfig()

    def _user_path(self, uid: str) -> str:
        return f"{self.USERS_COLLECTION}/{uid}"

    async def get_profile(self, uid: str) -> AppUser:
        data = await call_with_retry(
            self._documents.get_document, self._user_path(uid), retry_config=self._retry
        )
        if data is None:
            raise NotFoundError(f"Profile for user {uid} not found.")
        return AppUser.from_document(uid, data)

    async def set_favorite(
        self, uid: str, kind: str, slot: int, item: Optional[FavoriteItem]
    ) -> AppUser:
        """Pin ``item`` to ``slot`` (``None`` empties it) and return the profile."""
        field = self.SLOT_FIELDS.get(kind)
        if field is None:
            raise ValueError(f"Favourites hold tracks or albums, not {kind!r}.")
        if not 0 <= slot < FAVORITE_SLOTS:
            raise ValueError(f"Slot must be between 0 and {FAVORITE_SLOTS - 1}.")

        path = self._user_path(uid)
        data = await call_with_retry(
            self._documents.get_document, path, retry_config=self._retry
        )
        if data is None:
            raise NotFoundError(f"Profile for user {uid} not found.")

        slots = favorite_slots(data.get(field))
        slots[slot] = item
        stored = [entry.to_document() if entry else None for entry in slots]
        await call_with_retry(
            self._documents.set_document,
            path,
            {field: stored, "lastUpdated": datetime.now(timezone.utc).isoformat()},
            merge=True,
            retry_config=self._retry,
        )
        logger.info("Favourite %s slot %s updated for user %s", kind, slot, uid)
        return AppUser.from_document(uid, {**data, field: stored})


__all__ = ["ProfileService"]
