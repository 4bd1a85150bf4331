"""Expose constructed client wrappers."""

from .document_store import DocumentSnapshot, DocumentStore, SQLiteDocumentStore
from .firebase_auth import FirebaseAccount, FirebaseAuthClient
from .spotify_auth import OAuthEndpointError, SpotifyOAuthClient
from .spotify_catalog import SpotifyCatalogClient
from .sqlite_store import SQLiteKeyValueStore

__all__ = [
    "DocumentSnapshot",
    "DocumentStore",
    "FirebaseAccount",
    "FirebaseAuthClient",
    "OAuthEndpointError",
    "SQLiteDocumentStore",
    "SQLiteKeyValueStore",
    "SpotifyCatalogClient",
    "SpotifyOAuthClient",
]
