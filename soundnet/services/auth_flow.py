"""
PKCE authorization-code and refresh-token flows against the Spotify accounts service.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple, Union

import httpx

from soundnet.clients.spotify_auth import (
    OAuthEndpointError,
    SpotifyOAuthClient,
    generate_code_challenge,
    generate_code_verifier,
)
from soundnet.core.config import OAuthSettings
from soundnet.core.errors import (
    AuthFlowBusy,
    AuthorizationDenied,
    TokenExchangeFailed,
    TokenRefreshFailed,
)
from soundnet.models.oauth import AuthorizationRequest, TokenPair

logger = logging.getLogger(__name__)

_ExchangeKey = Tuple[str, str]


class AuthFlow:
    """Drives the two-phase authorization and the refresh exchange for one session.

    At most one exchange is in flight. A concurrent call for the same grant and
    credential awaits the running exchange; any other call raises
    ``AuthFlowBusy``.
    """

    def __init__(
        self, oauth_client: SpotifyOAuthClient, oauth_settings: OAuthSettings
    ) -> None:
        self._oauth = oauth_client
        self._settings = oauth_settings
        self._pending: Dict[str, AuthorizationRequest] = {}
        self._redeemed_codes: Dict[str, datetime] = {}
        self._inflight: Optional[asyncio.Task] = None
        self._inflight_key: Optional[_ExchangeKey] = None

    async def begin_authorization(self) -> AuthorizationRequest:
        """Create a PKCE request and hold it until its callback arrives."""
        self.purge_expired()
        code_verifier = generate_code_verifier()
        code_challenge = generate_code_challenge(code_verifier)
        state = secrets.token_urlsafe(16)
        request = AuthorizationRequest(
            state=state,
            code_verifier=code_verifier,
            code_challenge=code_challenge,
            authorization_url=self._oauth.build_authorization_url(
                state=state, code_challenge=code_challenge
            ),
            redirect_uri=self._oauth.redirect_uri,
        )
        self._pending[state] = request
        return request

    def pending_request(self, state: str) -> Optional[AuthorizationRequest]:
        self.purge_expired()
        return self._pending.get(state)

    def cancel_authorization(self, state: str) -> bool:
        """Release a pending verifier; returns whether one was held."""
        return self._pending.pop(state, None) is not None

    def reset(self) -> None:
        """Drop every pending request (session teardown)."""
        self._pending.clear()

    def purge_expired(self) -> int:
        """Drop pending requests and redeemed codes older than the state TTL."""
        ttl = self._settings.state_ttl_seconds
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=ttl)
        for code in [c for c, at in self._redeemed_codes.items() if at < cutoff]:
            del self._redeemed_codes[code]

        expired = [
            state
            for state, request in self._pending.items()
            if request.is_expired(ttl)
        ]
        for state in expired:
            del self._pending[state]
        if expired:
            logger.info("Released %s abandoned authorization request(s)", len(expired))
        return len(expired)

    async def complete_authorization(
        self,
        callback_params: Mapping[str, Any],
        pending_request: Optional[AuthorizationRequest] = None,
    ) -> TokenPair:
        """Redeem the callback's authorization code with the held verifier."""
        self.purge_expired()
        state = callback_params.get("state")
        if pending_request is None and state:
            pending_request = self._pending.get(state)

        error = callback_params.get("error")
        if error:
            if pending_request is not None:
                self._pending.pop(pending_request.state, None)
            raise AuthorizationDenied(f"Authorization was not granted: {error}")

        if pending_request is None or pending_request.state not in self._pending:
            raise TokenExchangeFailed("No pending authorization request (expired or unknown).")
        if state is not None and state != pending_request.state:
            raise TokenExchangeFailed("Callback state does not match the pending request.")

        code = callback_params.get("code")
        if not code:
            raise TokenExchangeFailed("Callback did not include an authorization code.")

        return await self._run_exclusive(
            ("authorization_code", code),
            lambda: self._redeem_code(code, pending_request),
        )

    async def refresh(self, token: Union[TokenPair, str]) -> TokenPair:
        """Exchange a refresh token; the old one is kept unless the provider rotates it."""
        refresh_token = token if isinstance(token, str) else token.refresh_token
        if not refresh_token:
            raise TokenRefreshFailed("No refresh token available; re-authorization required.")
        return await self._run_exclusive(
            ("refresh_token", refresh_token),
            lambda: self._redeem_refresh_token(refresh_token),
        )

    async def _run_exclusive(
        self, key: _ExchangeKey, factory: Callable[[], Awaitable[TokenPair]]
    ) -> TokenPair:
        inflight = self._inflight
        if inflight is not None and not inflight.done():
            if key == self._inflight_key:
                return await asyncio.shield(inflight)
            raise AuthFlowBusy("Another token exchange is in progress.")

        task = asyncio.ensure_future(factory())
        self._inflight, self._inflight_key = task, key
        task.add_done_callback(self._clear_inflight)
        return await asyncio.shield(task)

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight, self._inflight_key = None, None

    async def _redeem_code(self, code: str, request: AuthorizationRequest) -> TokenPair:
        if code in self._redeemed_codes:
            raise TokenExchangeFailed("Authorization code was already redeemed.")
        self._redeemed_codes[code] = datetime.now(timezone.utc)
        self._pending.pop(request.state, None)

        try:
            payload = await self._oauth.exchange_authorization_code(
                code, request.code_verifier
            )
        except OAuthEndpointError as exc:
            raise TokenExchangeFailed(f"Token endpoint rejected the code: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TokenExchangeFailed(f"Token endpoint unreachable: {exc}") from exc

        if not payload.get("access_token"):
            raise TokenExchangeFailed("Token endpoint returned no access token.")
        logger.info("Provider authorization completed")
        return TokenPair.from_token_response(payload)

    async def _redeem_refresh_token(self, refresh_token: str) -> TokenPair:
        try:
            payload = await self._oauth.refresh_token(refresh_token)
        except OAuthEndpointError as exc:
            if exc.status_code in (400, 401, 403):
                raise TokenRefreshFailed(
                    f"Refresh token rejected; re-authorization required: {exc}"
                ) from exc
            raise TokenExchangeFailed(f"Token endpoint error during refresh: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TokenExchangeFailed(f"Token endpoint unreachable: {exc}") from exc

        if not payload.get("access_token"):
            raise TokenRefreshFailed("Refresh response contained no access token.")
        logger.info(
            "Provider token refreshed (refresh token %s)",
            "rotated" if payload.get("refresh_token") else "retained",
        )
        return TokenPair.from_token_response(
            payload, previous_refresh_token=refresh_token
        )


__all__ = ["AuthFlow"]
