"""Schemas related to account sessions and OAuth flows."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, SecretStr


class OAuthCallbackPayload(BaseModel):
    """Query parameters delivered to the provider redirect URI."""

    state: str = Field(..., description="Opaque state issued when starting OAuth.")
    code: Optional[str] = Field(None, description="Authorization code from Spotify.")
    error: Optional[str] = Field(
        None, description="Set by Spotify when the user declined consent."
    )


class SignInRequest(BaseModel):
    email: str = Field(..., min_length=3)
    password: SecretStr


class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=3)
    password: SecretStr
    display_name: str = Field(..., min_length=1, max_length=64)


class SessionResponse(BaseModel):
    """Result of signing in or registering."""

    user_id: str
    email: str
    display_name: Optional[str] = None
    needs_provider_link: bool
    provider_linked: bool


__all__ = [
    "OAuthCallbackPayload",
    "RegisterRequest",
    "SessionResponse",
    "SignInRequest",
]
