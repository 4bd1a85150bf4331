"""
Firebase Authentication REST client for email/password accounts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from soundnet.core.config import FirebaseSettings
from soundnet.core.errors import AuthError, AuthorizationDenied

_REJECTED_CREDENTIALS = {
    "EMAIL_NOT_FOUND",
    "INVALID_PASSWORD",
    "INVALID_LOGIN_CREDENTIALS",
    "INVALID_EMAIL",
    "USER_DISABLED",
    "MISSING_PASSWORD",
}
_REJECTED_REGISTRATION = {"EMAIL_EXISTS", "WEAK_PASSWORD", "INVALID_EMAIL"}


@dataclass(frozen=True)
class FirebaseAccount:
    """Identity returned by a successful sign in or sign up."""

    uid: str
    email: str
    id_token: str
    refresh_token: str
    display_name: Optional[str] = None


class FirebaseAuthClient:
    """Thin wrapper over the Identity Toolkit ``accounts:*`` endpoints."""

    def __init__(
        self,
        settings: FirebaseSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._transport = transport

    async def sign_in_with_password(self, email: str, password: str) -> FirebaseAccount:
        body = await self._post(
            "signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
            rejected=_REJECTED_CREDENTIALS,
        )
        return self._account(body)

    async def sign_up(
        self, email: str, password: str, display_name: Optional[str] = None
    ) -> FirebaseAccount:
        payload: Dict[str, Any] = {
            "email": email,
            "password": password,
            "returnSecureToken": True,
        }
        if display_name:
            payload["displayName"] = display_name
        body = await self._post("signUp", payload, rejected=_REJECTED_REGISTRATION)
        return self._account(body)

    async def _post(
        self, endpoint: str, payload: Dict[str, Any], *, rejected: set[str]
    ) -> Dict[str, Any]:
        url = f"{self._settings.identity_toolkit_url}/accounts:{endpoint}"
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                response = await client.post(
                    url, params={"key": self._settings.api_key}, json=payload
                )
        except httpx.HTTPError as exc:
            raise AuthError(f"Account service unreachable: {exc}") from exc

        if response.status_code == httpx.codes.OK:
            return response.json()

        try:
            message = response.json().get("error", {}).get("message", "")
        except ValueError:
            message = response.text
        code = message.split(" ")[0] if message else "UNKNOWN"
        if code in rejected:
            raise AuthorizationDenied(code)
        raise AuthError(f"Account service error {response.status_code}: {code}")

    @staticmethod
    def _account(body: Dict[str, Any]) -> FirebaseAccount:
        return FirebaseAccount(
            uid=body["localId"],
            email=body.get("email", ""),
            id_token=body.get("idToken", ""),
            refresh_token=body.get("refreshToken", ""),
            display_name=body.get("displayName") or None,
        )


__all__ = ["FirebaseAccount", "FirebaseAuthClient"]
