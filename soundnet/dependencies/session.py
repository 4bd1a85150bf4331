"""
FastAPI dependencies for settings and the signed-in user.
"""

from http import HTTPStatus
from typing import Annotated

from fastapi import Depends, HTTPException

from soundnet.core.config import AppSettings, get_settings
from soundnet.dependencies.clients import get_session_linker
from soundnet.models.users import AppUser
from soundnet.services import SessionLinker


def get_app_settings() -> AppSettings:
    """FastAPI dependency returning application settings."""
    return get_settings()


def require_current_user(
    linker: Annotated[SessionLinker, Depends(get_session_linker)],
) -> AppUser:
    """Reject requests made before anyone signed in to this session."""
    user = linker.current_user
    if user is None:
        raise HTTPException(
            status_code=HTTPStatus.UNAUTHORIZED, detail="Sign in required."
        )
    return user


CurrentUser = Annotated[AppUser, Depends(require_current_user)]

__all__ = ["CurrentUser", "get_app_settings", "require_current_user"]
