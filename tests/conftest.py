"""Pytest configuration shared across the suite."""

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from pathlib import Path

import pytest

from soundnet.clients import SQLiteDocumentStore, SQLiteKeyValueStore
from soundnet.utils.http import RetryConfig


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


@pytest.fixture
def fast_retry() -> RetryConfig:
    return RetryConfig(attempts=3, backoff_seconds=0)


@pytest.fixture
def local_storage(tmp_path: Path) -> SQLiteKeyValueStore:
    return SQLiteKeyValueStore(str(tmp_path / "local.db"))


@pytest.fixture
def document_store(tmp_path: Path) -> SQLiteDocumentStore:
    return SQLiteDocumentStore(str(tmp_path / "documents.db"))
