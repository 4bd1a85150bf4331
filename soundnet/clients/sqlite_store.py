"""SQLite-backed local key-value storage for session state."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

from soundnet.core.errors import PersistenceError


class SQLiteKeyValueStore:
    """Durable key-value store; multi-key writes commit in one transaction."""

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS local_storage (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )

    def get_item(self, key: str) -> Optional[Any]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM local_storage WHERE key = ?", (key,)
            ).fetchone()
        if not row:
            return None
        return json.loads(row["value"])

    def get_items(self, keys: Iterable[str]) -> Dict[str, Any]:
        keys = list(keys)
        if not keys:
            return {}
        placeholders = ", ".join("?" for _ in keys)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT key, value FROM local_storage WHERE key IN ({placeholders})",
                keys,
            ).fetchall()
        return {row["key"]: json.loads(row["value"]) for row in rows}

    def set_items(self, items: Mapping[str, Any]) -> None:
        """Write every pair or none of them; ``None`` values delete the key."""
        try:
            with self._connect() as conn:
                for key, value in items.items():
                    if value is None:
                        conn.execute("DELETE FROM local_storage WHERE key = ?", (key,))
                        continue
                    conn.execute(
                        """
                        INSERT INTO local_storage (key, value)
                        VALUES (?, ?)
                        ON CONFLICT(key) DO UPDATE SET value = excluded.value
                        """,
                        (key, json.dumps(value)),
                    )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Local storage write failed: {exc}") from exc

    def set_item(self, key: str, value: Any) -> None:
        self.set_items({key: value})

    def remove_items(self, keys: Iterable[str]) -> None:
        self.set_items({key: None for key in keys})


__all__ = ["SQLiteKeyValueStore"]
