"""
FastAPI application entrypoint for the SoundNet session services.
"""

from __future__ import annotations

from fastapi import FastAPI

from soundnet.api.routes import router as api_router
from soundnet.core.config import get_settings
from soundnet.core.logging import configure_logging


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="SoundNet",
        version="0.1.0",
        description="Account, Spotify session, rating and review services for SoundNet.",
    )
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app"]
