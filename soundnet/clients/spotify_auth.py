"""
Spotify accounts service utilities.

These helpers build PKCE authorization URLs and call the token endpoint for
authorization-code and refresh-token grants.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from soundnet.core.config import OAuthSettings, SpotifySettings
from soundnet.utils.http import RetryConfig, request_with_retry


class OAuthEndpointError(Exception):
    """Raised when the token endpoint answers with an error status."""

    def __init__(
        self, status_code: int, error: Optional[str], description: Optional[str]
    ) -> None:
        super().__init__(f"{status_code} {error or 'error'}: {description or ''}".strip())
        self.status_code = status_code
        self.error = error
        self.description = description


def generate_code_verifier() -> str:
    """Random PKCE verifier (43 URL-safe characters, no padding)."""
    return base64.urlsafe_b64encode(secrets.token_bytes(32)).decode("utf-8").rstrip("=")


def generate_code_challenge(code_verifier: str) -> str:
    """S256 challenge for ``code_verifier``."""
    digest = hashlib.sha256(code_verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8").rstrip("=")


class SpotifyOAuthClient:
    """Build Spotify authorization URLs and exchange codes and refresh tokens."""

    def __init__(
        self,
        spotify_settings: SpotifySettings,
        oauth_settings: OAuthSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_config: Optional[RetryConfig] = None,
    ) -> None:
        self._spotify = spotify_settings
        self._oauth = oauth_settings
        self._transport = transport
        self._retry = retry_config or RetryConfig(attempts=2, backoff_seconds=0.5)

    @property
    def redirect_uri(self) -> str:
        return self._spotify.redirect_uri

    def build_authorization_url(self, *, state: str, code_challenge: str) -> str:
        """Construct the Spotify consent URL for a PKCE code flow."""
        params = {
            "client_id": self._spotify.client_id,
            "response_type": "code",
            "redirect_uri": self._spotify.redirect_uri,
            "scope": " ".join(self._oauth.scopes),
            "state": state,
            "code_challenge_method": "S256",
            "code_challenge": code_challenge,
        }
        if self._oauth.show_dialog:
            params["show_dialog"] = "true"
        return f"{self._spotify.authorization_endpoint}?{urlencode(params)}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=10.0, transport=self._transport)

    async def exchange_authorization_code(
        self, code: str, code_verifier: str
    ) -> Dict[str, Any]:
        """
        Exchange an authorization code for tokens.

        Codes are single-use, so the request is sent exactly once.
        """
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._spotify.redirect_uri,
            "client_id": self._spotify.client_id,
            "code_verifier": code_verifier,
        }

        async with self._client() as client:
            response = await client.post(self._spotify.token_endpoint, data=payload)

        return self._parse(response)

    async def refresh_token(self, refresh_token: str) -> Dict[str, Any]:
        """Refresh the access token using client credentials in a Basic header."""
        payload = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }

        async with self._client() as client:
            response = await request_with_retry(
                client.post,
                self._spotify.token_endpoint,
                data=payload,
                auth=(self._spotify.client_id, self._spotify.client_secret),
                retry_config=self._retry,
                passthrough_statuses=(400, 401, 403),
            )

        return self._parse(response)

    @staticmethod
    def _parse(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code != httpx.codes.OK:
            raise OAuthEndpointError(
                response.status_code,
                body.get("error") if isinstance(body, dict) else None,
                body.get("error_description") if isinstance(body, dict) else None,
            )
        return body if isinstance(body, dict) else {}


__all__ = [
    "OAuthEndpointError",
    "SpotifyOAuthClient",
    "generate_code_challenge",
    "generate_code_verifier",
]
