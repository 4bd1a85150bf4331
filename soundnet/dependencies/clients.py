"""
Factory functions to provide shared clients and services as FastAPI dependencies.

The session services are process singletons: this process serves one user
session, and the token store must be the same instance for every caller.
"""

from functools import lru_cache

from soundnet.clients import (
    DocumentStore,
    FirebaseAuthClient,
    SpotifyCatalogClient,
    SpotifyOAuthClient,
    SQLiteDocumentStore,
    SQLiteKeyValueStore,
)
from soundnet.core.config import get_settings
from soundnet.services import (
    AuthFlow,
    ProfileService,
    RatingAggregator,
    ReviewStore,
    SessionLinker,
    TokenCipherService,
    TokenStore,
)
from soundnet.utils.http import RetryConfig


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_retry_config() -> RetryConfig:
    settings = _settings()
    return RetryConfig(
        attempts=settings.retry.attempts,
        backoff_seconds=settings.retry.backoff_seconds,
    )


@lru_cache()
def get_local_storage() -> SQLiteKeyValueStore:
    """Provide the device-local key-value store."""
    return SQLiteKeyValueStore(_settings().storage.local_db_path)


@lru_cache()
def get_document_store() -> DocumentStore:
    """Provide the account/ratings document backend."""
    settings = _settings()
    if settings.storage.document_backend == "firestore":
        from soundnet.clients.firestore import FirestoreDocumentStore

        return FirestoreDocumentStore(settings.firebase)
    return SQLiteDocumentStore(settings.storage.document_db_path)


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    settings = _settings()
    secret = settings.security.token_encryption_secret or settings.spotify.client_secret
    return TokenCipherService(
        secret=secret,
        previous_secrets=settings.security.previous_token_encryption_secrets,
    )


@lru_cache()
def get_token_store() -> TokenStore:
    """Provide the session token store, loaded from local storage."""
    store = TokenStore(get_local_storage(), get_token_cipher_service())
    store.load()
    return store


@lru_cache()
def get_spotify_oauth_client() -> SpotifyOAuthClient:
    settings = _settings()
    return SpotifyOAuthClient(settings.spotify, settings.oauth)


@lru_cache()
def get_auth_flow() -> AuthFlow:
    return AuthFlow(get_spotify_oauth_client(), _settings().oauth)


@lru_cache()
def get_firebase_auth_client() -> FirebaseAuthClient:
    return FirebaseAuthClient(_settings().firebase)


@lru_cache()
def get_session_linker() -> SessionLinker:
    return SessionLinker(
        account_client=get_firebase_auth_client(),
        documents=get_document_store(),
        auth_flow=get_auth_flow(),
        token_store=get_token_store(),
        local_storage=get_local_storage(),
        retry_config=get_retry_config(),
    )


@lru_cache()
def get_profile_service() -> ProfileService:
    return ProfileService(get_document_store(), retry_config=get_retry_config())


@lru_cache()
def get_rating_aggregator() -> RatingAggregator:
    return RatingAggregator(
        get_document_store(),
        local_storage=get_local_storage(),
        retry_config=get_retry_config(),
    )


@lru_cache()
def get_review_store() -> ReviewStore:
    return ReviewStore(
        get_document_store(),
        get_rating_aggregator(),
        retry_config=get_retry_config(),
    )


@lru_cache()
def get_catalog_client() -> SpotifyCatalogClient:
    return SpotifyCatalogClient(
        _settings().spotify,
        get_token_store(),
        get_session_linker().refresh_session,
        retry_config=get_retry_config(),
    )


__all__ = [
    "get_auth_flow",
    "get_catalog_client",
    "get_document_store",
    "get_firebase_auth_client",
    "get_local_storage",
    "get_profile_service",
    "get_rating_aggregator",
    "get_retry_config",
    "get_review_store",
    "get_session_linker",
    "get_spotify_oauth_client",
    "get_token_cipher_service",
    "get_token_store",
]
