"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI surface, the session services
and the maintenance scripts share a consistent configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

import os

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()

_SECTION_CONFIG = SettingsConfigDict(extra="ignore", populate_by_name=True)


class SpotifySettings(BaseSettings):
    """Client registration and discovery document for the Spotify accounts service."""

    model_config = _SECTION_CONFIG

    client_id: str = Field(..., validation_alias="SPOTIFY_CLIENT_ID")
    client_secret: str = Field(..., validation_alias="SPOTIFY_CLIENT_SECRET")
    redirect_uri: str = Field(
        ...,
        validation_alias="SPOTIFY_REDIRECT_URI",
        description="Registered redirect URI; app schemes such as soundnet:// are allowed.",
    )
    authorization_endpoint: str = Field(
        "https://accounts.spotify.com/authorize",
        validation_alias="SPOTIFY_AUTHORIZATION_ENDPOINT",
    )
    token_endpoint: str = Field(
        "https://accounts.spotify.com/api/token",
        validation_alias="SPOTIFY_TOKEN_ENDPOINT",
    )
    api_base_url: str = Field(
        "https://api.spotify.com/v1", validation_alias="SPOTIFY_API_BASE_URL"
    )


class OAuthSettings(BaseSettings):
    """OAuth flow configuration."""

    model_config = _SECTION_CONFIG

    state_ttl_seconds: int = Field(900, validation_alias="OAUTH_STATE_TTL")
    scopes_raw: str = Field(
        "user-read-email,user-read-private,user-top-read",
        validation_alias="OAUTH_SCOPES",
        description="Comma-separated list of scopes requested at consent time.",
    )
    show_dialog: bool = Field(True, validation_alias="OAUTH_SHOW_DIALOG")

    @field_validator("scopes_raw", mode="before")
    @classmethod
    def _join_scopes(cls, value: str | tuple[str, ...] | list[str]) -> str:
        """Support providing scopes as a sequence as well as a string."""
        if isinstance(value, (tuple, list)):
            return ",".join(value)
        return value

    @property
    def scopes(self) -> tuple[str, ...]:
        return tuple(
            scope.strip() for scope in self.scopes_raw.split(",") if scope.strip()
        )


class FirebaseSettings(BaseSettings):
    """Account backend configuration."""

    model_config = _SECTION_CONFIG

    api_key: str = Field(..., validation_alias="FIREBASE_API_KEY")
    project_id: Optional[str] = Field(None, validation_alias="FIREBASE_PROJECT_ID")
    credentials_file: Optional[str] = Field(
        None,
        validation_alias="FIREBASE_CREDENTIALS_FILE",
        description="Service account JSON used by the Firestore document backend.",
    )
    identity_toolkit_url: str = Field(
        "https://identitytoolkit.googleapis.com/v1",
        validation_alias="FIREBASE_IDENTITY_TOOLKIT_URL",
    )


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    model_config = _SECTION_CONFIG

    token_encryption_secret: Optional[str] = Field(
        None,
        validation_alias="TOKEN_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the symmetric key for encrypting stored tokens."
        ),
    )
    previous_token_encryption_secrets_raw: str = Field(
        "",
        validation_alias="TOKEN_ENCRYPTION_PREVIOUS_SECRETS",
        description="Comma-separated retired secrets still accepted for decryption.",
    )

    @property
    def previous_token_encryption_secrets(self) -> tuple[str, ...]:
        return tuple(
            secret.strip()
            for secret in self.previous_token_encryption_secrets_raw.split(",")
            if secret.strip()
        )


class StorageSettings(BaseSettings):
    """Where session state and documents are kept."""

    model_config = _SECTION_CONFIG

    local_db_path: str = Field(
        "var/soundnet-local.db", validation_alias="SOUNDNET_LOCAL_DB_PATH"
    )
    document_backend: Literal["sqlite", "firestore"] = Field(
        "sqlite", validation_alias="SOUNDNET_DOCUMENT_BACKEND"
    )
    document_db_path: str = Field(
        "var/soundnet-documents.db", validation_alias="SOUNDNET_DOCUMENT_DB_PATH"
    )


class RetrySettings(BaseSettings):
    """Retry policy applied at the I/O boundary."""

    model_config = _SECTION_CONFIG

    attempts: int = Field(3, validation_alias="SOUNDNET_RETRY_ATTEMPTS")
    backoff_seconds: float = Field(0.5, validation_alias="SOUNDNET_RETRY_BACKOFF")


class AppSettings(BaseSettings):
    """Root settings object for the SoundNet session services."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    frontend_base_url: Optional[HttpUrl] = Field(
        None,
        validation_alias="FRONTEND_BASE_URL",
        description="Optional URL for redirecting users back to the front-end.",
    )
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    spotify: SpotifySettings = Field(default_factory=SpotifySettings)
    firebase: FirebaseSettings = Field(default_factory=FirebaseSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "FirebaseSettings",
    "OAuthSettings",
    "RetrySettings",
    "SecuritySettings",
    "SpotifySettings",
    "StorageSettings",
    "get_settings",
]
