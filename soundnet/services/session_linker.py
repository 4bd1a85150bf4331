"""
Binds the app account to provider credentials across sign-ins.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from soundnet.clients.document_store import DocumentStore
from soundnet.clients.firebase_auth import FirebaseAuthClient
from soundnet.clients.sqlite_store import SQLiteKeyValueStore
from soundnet.core.errors import (
    AuthFlowBusy,
    NotFoundError,
    PersistenceError,
    TokenExchangeFailed,
    TokenRefreshFailed,
)
from soundnet.models.oauth import TokenPair
from soundnet.models.users import AppUser, Credentials, SignInResult
from soundnet.services.auth_flow import AuthFlow
from soundnet.services.token_store import TokenStore
from soundnet.utils.http import RetryConfig, call_with_retry

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SessionLinker:
    """Signs users in and keeps their linked provider token usable.

    A dead provider token never fails app-level sign in; it only flags the
    result with ``needs_provider_link``.
    """

    USERS_COLLECTION = "users"
    CACHED_CREDENTIAL_KEYS = ("email", "userId")

    def __init__(
        self,
        *,
        account_client: FirebaseAuthClient,
        documents: DocumentStore,
        auth_flow: AuthFlow,
        token_store: TokenStore,
        local_storage: SQLiteKeyValueStore,
        retry_config: Optional[RetryConfig] = None,
    ) -> None:
        self._accounts = account_client
        self._documents = documents
        self._auth_flow = auth_flow
        self._token_store = token_store
        self._local = local_storage
        self._retry = retry_config or RetryConfig()
        self._current_user: Optional[AppUser] = None

    @property
    def current_user(self) -> Optional[AppUser]:
        return self._current_user

    def _user_path(self, uid: str) -> str:
        return f"{self.USERS_COLLECTION}/{uid}"

    async def get_user(self, uid: str) -> AppUser:
        data = await call_with_retry(
            self._documents.get_document, self._user_path(uid), retry_config=self._retry
        )
        if data is None:
            raise NotFoundError(f"Profile for user {uid} not found.")
        return AppUser.from_document(uid, data)

    async def sign_in(self, credentials: Credentials) -> SignInResult:
        account = await self._accounts.sign_in_with_password(
            credentials.email, credentials.password.get_secret_value()
        )
        user = await self.get_user(account.uid)
        self._current_user = user
        self._cache_credentials(user)

        if not user.linked_provider_refresh_token:
            return SignInResult(user=user, needs_provider_link=True)

        try:
            pair = await self._auth_flow.refresh(user.linked_provider_refresh_token)
        except TokenRefreshFailed:
            logger.info("Stored provider token for user %s was rejected; re-link required.", user.id)
            return SignInResult(user=user, needs_provider_link=True)
        except (TokenExchangeFailed, AuthFlowBusy) as exc:
            logger.warning("Provider token refresh deferred for user %s: %s", user.id, exc)
            return SignInResult(user=user, needs_provider_link=False)

        user = await self._store_pair(user, pair)
        return SignInResult(user=user, needs_provider_link=False, token_pair=pair)

    async def register(
        self, email: str, password: str, display_name: Optional[str] = None
    ) -> SignInResult:
        """Create the account and its profile; the provider is linked afterwards."""
        account = await self._accounts.sign_up(email, password, display_name)
        user = AppUser(
            id=account.uid,
            email=account.email or email,
            display_name=display_name,
            created_at=datetime.now(timezone.utc),
        )
        await call_with_retry(
            self._documents.set_document,
            self._user_path(user.id),
            {**user.to_document(), "lastUpdated": _now_iso()},
            retry_config=self._retry,
        )
        self._current_user = user
        self._cache_credentials(user)
        return SignInResult(user=user, needs_provider_link=True)

    async def link_provider(self, user: AppUser, token_pair: TokenPair) -> AppUser:
        """Make the pair current for this session and record it on the account."""
        linked = await self._store_pair(user, token_pair)
        logger.info("Provider account linked for user %s", linked.id)
        return linked

    async def refresh_session(self) -> TokenPair:
        """Refresh the current pair after the provider rejected an access token."""
        pair = self._token_store.get()
        refresh_token = pair.refresh_token if pair and pair.refresh_token else None
        if refresh_token is None and self._current_user is not None:
            refresh_token = self._current_user.linked_provider_refresh_token
        if not refresh_token:
            raise NotFoundError("No provider refresh token in this session.")

        new_pair = await self._auth_flow.refresh(refresh_token)
        if self._current_user is not None:
            await self._store_pair(self._current_user, new_pair)
        else:
            self._hold_pair(new_pair)
        return new_pair

    async def sign_out(self) -> None:
        """Forget the session locally; the account keeps its stored refresh token."""
        self._auth_flow.reset()
        self._current_user = None
        try:
            self._token_store.clear()
        finally:
            self._local.remove_items(self.CACHED_CREDENTIAL_KEYS)

    async def _store_pair(self, user: AppUser, pair: TokenPair) -> AppUser:
        """Make ``pair`` current, then record a new refresh token on the account.

        The token store always receives the pair before the account write.
        Failures on either side are logged and the pair stays in memory.
        """
        self._hold_pair(pair)

        if pair.refresh_token and pair.refresh_token != user.linked_provider_refresh_token:
            try:
                await call_with_retry(
                    self._documents.set_document,
                    self._user_path(user.id),
                    {"spotifyRefreshToken": pair.refresh_token, "lastUpdated": _now_iso()},
                    merge=True,
                    retry_config=self._retry,
                )
            except PersistenceError as exc:
                logger.warning(
                    "Could not record provider refresh token on account %s: %s", user.id, exc
                )
            else:
                user = user.model_copy(
                    update={"linked_provider_refresh_token": pair.refresh_token}
                )
        if self._current_user is not None and self._current_user.id == user.id:
            self._current_user = user
        return user

    def _hold_pair(self, pair: TokenPair) -> None:
        try:
            self._token_store.set(pair)
        except PersistenceError as exc:
            logger.warning("Provider token is held in memory only: %s", exc)

    def _cache_credentials(self, user: AppUser) -> None:
        try:
            self._local.set_items({"email": user.email, "userId": user.id})
        except PersistenceError as exc:
            logger.warning("Could not cache sign-in details locally: %s", exc)


__all__ = ["SessionLinker"]
