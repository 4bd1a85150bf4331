"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_auth_flow,
    get_catalog_client,
    get_document_store,
    get_firebase_auth_client,
    get_local_storage,
    get_profile_service,
    get_rating_aggregator,
    get_retry_config,
    get_review_store,
    get_session_linker,
    get_spotify_oauth_client,
    get_token_cipher_service,
    get_token_store,
)
from .session import CurrentUser, get_app_settings, require_current_user

__all__ = [
    "CurrentUser",
    "get_app_settings",
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
    "require_current_user",
]
