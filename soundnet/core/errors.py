"""
Exception hierarchy shared by the session, rating and review services.

Callers branch on the concrete type: a ``TokenRefreshFailed`` means the
provider account must be re-linked, while the app-level session stays valid.
"""

from __future__ import annotations


class SoundNetError(Exception):
    """Base class for every error raised by the core services."""


class AuthError(SoundNetError):
    """Raised when an authentication or token exchange step fails."""


class AuthorizationDenied(AuthError):
    """The user cancelled consent or the account credentials were rejected."""


class TokenExchangeFailed(AuthError):
    """The token endpoint did not produce an access token for the given code."""


class TokenRefreshFailed(AuthError):
    """The refresh token was rejected; the provider account must be re-linked."""


class AuthFlowBusy(AuthError):
    """Another token exchange is already in flight for this session."""


class PersistenceError(SoundNetError):
    """A durable write did not complete."""


class BackendUnavailableError(PersistenceError):
    """Transient document backend failure; safe to retry."""


class RatingValidationError(SoundNetError, ValueError):
    """Rating value is not one of the half-step values between 1.0 and 5.0."""


class NotFoundError(SoundNetError):
    """A subject, review, token or user record does not exist."""


__all__ = [
    "AuthError",
    "AuthFlowBusy",
    "AuthorizationDenied",
    "BackendUnavailableError",
    "NotFoundError",
    "PersistenceError",
    "RatingValidationError",
    "SoundNetError",
    "TokenExchangeFailed",
    "TokenRefreshFailed",
]
