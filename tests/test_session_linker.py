try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import pytest
from pydantic import SecretStr

from soundnet.clients import FirebaseAccount, SQLiteDocumentStore, SQLiteKeyValueStore
from soundnet.core.errors import (
    AuthorizationDenied,
    BackendUnavailableError,
    NotFoundError,
    TokenExchangeFailed,
    TokenRefreshFailed,
)
from soundnet.models.oauth import TokenPair
from soundnet.models.users import Credentials
from soundnet.services.session_linker import SessionLinker
from soundnet.services.token_cipher import TokenCipherService
from soundnet.services.token_store import TokenStore
from soundnet.utils.http import RetryConfig


class FakeAccountClient:
    def __init__(self) -> None:
        self.accounts: dict[str, tuple[str, str]] = {"ada@example.com": ("pw", "U1")}

    async def sign_in_with_password(self, email: str, password: str) -> FirebaseAccount:
        stored = self.accounts.get(email)
        if stored is None or stored[0] != password:
            raise AuthorizationDenied("INVALID_LOGIN_CREDENTIALS")
        return FirebaseAccount(uid=stored[1], email=email, id_token="id", refresh_token="fb")

    async def sign_up(self, email: str, password: str, display_name=None) -> FirebaseAccount:
        uid = f"U{len(self.accounts) + 1}"
        self.accounts[email] = (password, uid)
        return FirebaseAccount(
            uid=uid, email=email, id_token="id", refresh_token="fb", display_name=display_name
        )


class ScriptedAuthFlow:
    """Stands in for AuthFlow.refresh with a fixed outcome."""

    def __init__(self, outcome) -> None:
        self.outcome = outcome
        self.refreshed: list[str] = []
        self.reset_calls = 0

    async def refresh(self, token) -> TokenPair:
        self.refreshed.append(token if isinstance(token, str) else token.refresh_token)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome

    def reset(self) -> None:
        self.reset_calls += 1


def _linker(
    document_store: SQLiteDocumentStore,
    local_storage: SQLiteKeyValueStore,
    auth_flow: ScriptedAuthFlow,
) -> tuple[SessionLinker, TokenStore]:
    token_store = TokenStore(local_storage, TokenCipherService(secret="secret"))
    linker = SessionLinker(
        account_client=FakeAccountClient(),
        documents=document_store,
        auth_flow=auth_flow,
        token_store=token_store,
        local_storage=local_storage,
        retry_config=RetryConfig(attempts=1, backoff_seconds=0),
    )
    return linker, token_store


def _credentials() -> Credentials:
    return Credentials(email="ada@example.com", password=SecretStr("pw"))


def _seed_user(document_store: SQLiteDocumentStore, refresh_token=None) -> None:
    document_store.set_document(
        "users/U1",
        {"email": "ada@example.com", "username": "ada", "spotifyRefreshToken": refresh_token},
    )


@pytest.mark.asyncio
async def test_rejected_provider_token_still_signs_in(document_store, local_storage) -> None:
    _seed_user(document_store, refresh_token="dead-refresh")
    flow = ScriptedAuthFlow(TokenRefreshFailed("invalid_grant"))
    linker, token_store = _linker(document_store, local_storage, flow)

    result = await linker.sign_in(_credentials())

    assert result.user.id == "U1"
    assert result.user.display_name == "ada"
    assert result.needs_provider_link is True
    assert result.token_pair is None
    assert token_store.get() is None
    assert linker.current_user == result.user


@pytest.mark.asyncio
async def test_sign_in_without_linked_account_needs_link(document_store, local_storage) -> None:
    _seed_user(document_store)
    flow = ScriptedAuthFlow(TokenPair(access_token="unused"))
    linker, _ = _linker(document_store, local_storage, flow)

    result = await linker.sign_in(_credentials())

    assert result.needs_provider_link is True
    assert flow.refreshed == []
    assert local_storage.get_item("userId") == "U1"


@pytest.mark.asyncio
async def test_sign_in_refreshes_and_records_rotated_token(document_store, local_storage) -> None:
    _seed_user(document_store, refresh_token="R1")
    flow = ScriptedAuthFlow(TokenPair(access_token="A2", refresh_token="R2"))
    linker, token_store = _linker(document_store, local_storage, flow)

    result = await linker.sign_in(_credentials())

    assert result.needs_provider_link is False
    assert result.token_pair == TokenPair(access_token="A2", refresh_token="R2")
    assert flow.refreshed == ["R1"]
    assert token_store.access_token() == "A2"
    stored = document_store.get_document("users/U1")
    assert stored["spotifyRefreshToken"] == "R2"
    assert stored["email"] == "ada@example.com"
    assert linker.current_user.linked_provider_refresh_token == "R2"


@pytest.mark.asyncio
async def test_transient_refresh_failure_does_not_force_relink(
    document_store, local_storage
) -> None:
    _seed_user(document_store, refresh_token="R1")
    flow = ScriptedAuthFlow(TokenExchangeFailed("unreachable"))
    linker, token_store = _linker(document_store, local_storage, flow)

    result = await linker.sign_in(_credentials())

    assert result.needs_provider_link is False
    assert result.token_pair is None
    assert token_store.get() is None


@pytest.mark.asyncio
async def test_bad_credentials_propagate(document_store, local_storage) -> None:
    linker, _ = _linker(document_store, local_storage, ScriptedAuthFlow(None))

    with pytest.raises(AuthorizationDenied):
        await linker.sign_in(Credentials(email="ada@example.com", password=SecretStr("nope")))
    assert linker.current_user is None


@pytest.mark.asyncio
async def test_missing_profile_is_not_found(document_store, local_storage) -> None:
    linker, _ = _linker(document_store, local_storage, ScriptedAuthFlow(None))

    with pytest.raises(NotFoundError):
        await linker.sign_in(_credentials())


@pytest.mark.asyncio
async def test_register_then_link_provider(document_store, local_storage) -> None:
    linker, token_store = _linker(document_store, local_storage, ScriptedAuthFlow(None))

    result = await linker.register("grace@example.com", "pw", "grace")
    assert result.needs_provider_link is True
    uid = result.user.id

    linked = await linker.link_provider(
        result.user, TokenPair(access_token="A1", refresh_token="R1")
    )

    assert linked.linked_provider_refresh_token == "R1"
    profile = document_store.get_document(f"users/{uid}")
    assert profile["displayName"] == "grace"
    assert profile["spotifyRefreshToken"] == "R1"
    assert token_store.access_token() == "A1"


@pytest.mark.asyncio
async def test_refresh_session_uses_current_refresh_token(document_store, local_storage) -> None:
    _seed_user(document_store)
    flow = ScriptedAuthFlow(TokenPair(access_token="A2", refresh_token="R1"))
    linker, token_store = _linker(document_store, local_storage, flow)
    await linker.sign_in(_credentials())
    token_store.set(TokenPair(access_token="A1", refresh_token="R1"))

    pair = await linker.refresh_session()

    assert pair.access_token == "A2"
    assert flow.refreshed == ["R1"]
    assert token_store.access_token() == "A2"


@pytest.mark.asyncio
async def test_refresh_session_without_token_is_not_found(document_store, local_storage) -> None:
    linker, _ = _linker(document_store, local_storage, ScriptedAuthFlow(None))

    with pytest.raises(NotFoundError):
        await linker.refresh_session()


@pytest.mark.asyncio
async def test_sign_out_clears_session_state(document_store, local_storage) -> None:
    _seed_user(document_store, refresh_token="R1")
    flow = ScriptedAuthFlow(TokenPair(access_token="A2", refresh_token="R1"))
    linker, token_store = _linker(document_store, local_storage, flow)
    await linker.sign_in(_credentials())

    await linker.sign_out()

    assert linker.current_user is None
    assert token_store.get() is None
    assert flow.reset_calls == 1
    assert local_storage.get_items(["email", "userId"]) == {}
    assert document_store.get_document("users/U1")["spotifyRefreshToken"] == "R1"


class AccountWriteFailingStore:
    """Serves reads normally but rejects every write under ``users/``."""

    def __init__(self, inner: SQLiteDocumentStore) -> None:
        self._inner = inner
        self.rejected: list[str] = []

    def __getattr__(self, name):
        return getattr(self._inner, name)

    def set_document(self, path, data, *, merge=False):
        if path.startswith("users/"):
            self.rejected.append(path)
            raise BackendUnavailableError("account backend offline")
        return self._inner.set_document(path, data, merge=merge)


@pytest.mark.asyncio
async def test_sign_in_keeps_refreshed_pair_when_account_write_fails(
    document_store, local_storage
) -> None:
    _seed_user(document_store, refresh_token="R1")
    flow = ScriptedAuthFlow(TokenPair(access_token="A2", refresh_token="R2"))
    failing = AccountWriteFailingStore(document_store)
    linker, token_store = _linker(failing, local_storage, flow)

    result = await linker.sign_in(_credentials())

    assert failing.rejected == ["users/U1"]
    assert result.needs_provider_link is False
    assert token_store.get() == TokenPair(access_token="A2", refresh_token="R2")
    assert local_storage.get_item("spotifyRefreshToken") is not None
    assert result.user.linked_provider_refresh_token == "R1"
    assert document_store.get_document("users/U1")["spotifyRefreshToken"] == "R1"


@pytest.mark.asyncio
async def test_refresh_and_link_keep_pair_when_account_write_fails(
    document_store, local_storage
) -> None:
    _seed_user(document_store)
    flow = ScriptedAuthFlow(TokenPair(access_token="A3", refresh_token="R3"))
    linker, token_store = _linker(
        AccountWriteFailingStore(document_store), local_storage, flow
    )
    await linker.sign_in(_credentials())

    linked = await linker.link_provider(
        linker.current_user, TokenPair(access_token="A1", refresh_token="R1")
    )
    assert linked.linked_provider_refresh_token is None
    assert token_store.access_token() == "A1"

    pair = await linker.refresh_session()

    assert flow.refreshed == ["R1"]
    assert pair.refresh_token == "R3"
    assert token_store.get() == pair
