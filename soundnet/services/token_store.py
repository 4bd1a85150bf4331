"""
Session-scoped holder of the provider token pair.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Dict, Optional

from soundnet.clients.sqlite_store import SQLiteKeyValueStore
from soundnet.core.errors import NotFoundError, PersistenceError
from soundnet.models.oauth import TokenPair
from soundnet.services.token_cipher import TokenCipherService

logger = logging.getLogger(__name__)


class TokenStore:
    """Single source of truth for the current access/refresh token pair.

    Reads are served from memory. Writes replace the in-memory pair first and
    then persist it; a failed persist leaves the session usable and raises
    ``PersistenceError``.
    """

    ACCESS_TOKEN_KEY = "spotifyToken"
    REFRESH_TOKEN_KEY = "spotifyRefreshToken"
    EXPIRES_AT_KEY = "spotifyTokenExpiresAt"
    KEYS = (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, EXPIRES_AT_KEY)

    def __init__(
        self, storage: SQLiteKeyValueStore, token_cipher: TokenCipherService
    ) -> None:
        self._storage = storage
        self._cipher = token_cipher
        self._pair: Optional[TokenPair] = None
        self._write_lock = threading.Lock()

    def load(self) -> Optional[TokenPair]:
        """Read the persisted pair into memory; call once at session start."""
        items = self._storage.get_items(self.KEYS)
        encrypted_access = items.get(self.ACCESS_TOKEN_KEY)
        if not encrypted_access:
            self._pair = None
            return None

        try:
            access_token = self._cipher.decrypt(encrypted_access)
            refresh_token = self._cipher.decrypt_optional(
                items.get(self.REFRESH_TOKEN_KEY)
            )
        except ValueError:
            logger.warning("Persisted provider token is unreadable; starting signed out.")
            self._pair = None
            return None

        self._rotate_persisted(items)
        expires_at_raw = items.get(self.EXPIRES_AT_KEY)
        self._pair = TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=datetime.fromisoformat(expires_at_raw) if expires_at_raw else None,
        )
        return self._pair

    def _rotate_persisted(self, items: Dict[str, Optional[str]]) -> None:
        """Re-encrypt tokens still stored under a retired secret."""
        stale = {
            key: value
            for key, value in items.items()
            if key in (self.ACCESS_TOKEN_KEY, self.REFRESH_TOKEN_KEY)
            and value
            and self._cipher.needs_rotation(value)
        }
        if not stale:
            return
        try:
            self._storage.set_items(
                {key: self._cipher.rotate(value) for key, value in stale.items()}
            )
        except PersistenceError as exc:
            logger.warning("Could not re-encrypt stored provider token: %s", exc)
            return
        logger.info("Re-encrypted %s stored token value(s) under the current secret", len(stale))

    def get(self) -> Optional[TokenPair]:
        """Return the last known pair without touching storage."""
        return self._pair

    def access_token(self) -> str:
        """Current access token, read immediately before each API request."""
        pair = self._pair
        if pair is None:
            raise NotFoundError("No provider access token in this session.")
        return pair.access_token

    def set(self, pair: TokenPair) -> None:
        with self._write_lock:
            self._pair = pair
            try:
                self._storage.set_items(
                    {
                        self.ACCESS_TOKEN_KEY: self._cipher.encrypt(pair.access_token),
                        self.REFRESH_TOKEN_KEY: self._cipher.encrypt_optional(
                            pair.refresh_token
                        ),
                        self.EXPIRES_AT_KEY: (
                            pair.expires_at.isoformat() if pair.expires_at else None
                        ),
                    }
                )
            except PersistenceError:
                logger.error("Provider token kept in memory only; durable write failed.")
                raise

    def clear(self) -> None:
        with self._write_lock:
            self._pair = None
            self._storage.remove_items(self.KEYS)


__all__ = ["TokenStore"]
