"""
Read-only Spotify Web API client for catalog and browse data.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional

import httpx

from soundnet.core.config import SpotifySettings
from soundnet.core.errors import NotFoundError
from soundnet.utils.http import RetryConfig, request_with_retry

if TYPE_CHECKING:
    from soundnet.services.token_store import TokenStore

logger = logging.getLogger(__name__)

SEARCH_TYPES = frozenset({"track", "album", "artist", "playlist"})
TIME_RANGES = frozenset({"short_term", "medium_term", "long_term"})
EXPIRY_LEEWAY = timedelta(seconds=30)


class SpotifyCatalogClient:
    """Bearer-authenticated GETs against the Spotify Web API.

    The access token is read from the token store right before each request.
    A pair known to be expired is refreshed up front. A 401 triggers one call
    to ``refresh_session`` and a single retry.
    """

    def __init__(
        self,
        settings: SpotifySettings,
        token_store: "TokenStore",
        refresh_session: Callable[[], Awaitable[Any]],
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_config: Optional[RetryConfig] = None,
    ) -> None:
        self._settings = settings
        self._tokens = token_store
        self._refresh_session = refresh_session
        self._transport = transport
        self._retry = retry_config or RetryConfig()

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self._settings.api_base_url}{path}"
        pair = self._tokens.get()
        if pair is None or pair.is_expired(leeway=EXPIRY_LEEWAY):
            await self._refresh_session()

        async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
            for attempt in range(2):
                response = await request_with_retry(
                    client.get,
                    url,
                    params=params,
                    headers={"Authorization": f"Bearer {self._tokens.access_token()}"},
                    retry_config=self._retry,
                    passthrough_statuses=(401, 404),
                )
                if response.status_code == httpx.codes.UNAUTHORIZED and attempt == 0:
                    logger.info("Access token rejected for %s; refreshing", path)
                    await self._refresh_session()
                    continue
                break

        if response.status_code == httpx.codes.NOT_FOUND:
            raise NotFoundError(f"Spotify resource {path} not found.")
        response.raise_for_status()
        return response.json()

    async def get_track(self, track_id: str) -> Dict[str, Any]:
        data = await self._get(f"/tracks/{track_id}")
        album = data.get("album") or {}
        data["album"] = {**album, "images": album.get("images") or []}
        data["artists"] = data.get("artists") or []
        return data

    async def get_album(self, album_id: str) -> Dict[str, Any]:
        return await self._get(f"/albums/{album_id}")

    async def get_artist(self, artist_id: str) -> Dict[str, Any]:
        return await self._get(f"/artists/{artist_id}")

    async def get_artist_top_tracks(self, artist_id: str, market: str = "US") -> list:
        data = await self._get(f"/artists/{artist_id}/top-tracks", {"market": market})
        return data.get("tracks", [])

    async def get_playlist(self, playlist_id: str) -> Dict[str, Any]:
        return await self._get(f"/playlists/{playlist_id}")

    async def get_playlist_tracks(self, playlist_id: str, limit: int = 100) -> list:
        """Playlist entries whose track has album artwork; local files are dropped."""
        data = await self._get(
            f"/playlists/{playlist_id}/tracks", {"limit": min(limit, 100)}
        )
        return [
            item
            for item in data.get("items") or []
            if (((item or {}).get("track") or {}).get("album") or {}).get("images")
        ]

    async def search(self, query: str, search_type: str = "track", limit: int = 20) -> list:
        """Return the items of one result type; blank queries return nothing."""
        if search_type not in SEARCH_TYPES:
            raise ValueError(f"Unsupported search type {search_type!r}.")
        if not query.strip():
            return []
        data = await self._get(
            "/search", {"q": query, "type": search_type, "limit": min(limit, 50)}
        )
        return [
            item
            for item in (data.get(f"{search_type}s") or {}).get("items") or []
            if item is not None
        ]

    async def get_categories(self, limit: int = 50) -> list:
        data = await self._get("/browse/categories", {"limit": min(limit, 50)})
        return (data.get("categories") or {}).get("items", [])

    async def get_category_playlists(
        self, category_id: str, category_name: Optional[str] = None, limit: int = 20
    ) -> list:
        """Playlists for a browse category.

        Spotify answers many category ids with an error or no ``playlists``;
        with ``category_name`` given, a playlist search by that name is used
        instead.
        """
        try:
            data = await self._get(
                f"/browse/categories/{category_id}/playlists", {"limit": min(limit, 50)}
            )
        except (NotFoundError, httpx.HTTPStatusError) as exc:
            if not category_name:
                raise
            logger.info("Category %s has no playlists (%s); searching by name", category_id, exc)
            data = {}
        playlists = data.get("playlists")
        if playlists is None and category_name:
            return await self.search(category_name, search_type="playlist", limit=limit)
        return [item for item in (playlists or {}).get("items") or [] if item is not None]

    async def get_new_releases(self, limit: int = 20) -> list:
        data = await self._get("/browse/new-releases", {"limit": min(limit, 50)})
        items = (data.get("albums") or {}).get("items") or []
        return [item for item in items if item and item.get("id")]

    async def get_my_top(
        self, kind: str, *, limit: int = 20, time_range: str = "short_term"
    ) -> list:
        """The signed-in listener's top ``tracks`` or ``artists``."""
        if kind not in ("tracks", "artists"):
            raise ValueError(f"Unsupported top item type {kind!r}.")
        if time_range not in TIME_RANGES:
            raise ValueError(f"Unsupported time range {time_range!r}.")
        data = await self._get(
            f"/me/top/{kind}", {"limit": min(limit, 50), "time_range": time_range}
        )
        return data.get("items", [])

    async def get_my_playlists(self, limit: int = 20) -> list:
        data = await self._get("/me/playlists", {"limit": min(limit, 50)})
        return [item for item in data.get("items") or [] if item is not None]

    async def home_feed(self, limit: int = 20) -> Dict[str, list]:
        """Everything the home screen shows, fetched concurrently."""
        results = await asyncio.gather(
            self.get_my_top("tracks", limit=limit),
            self.get_my_top("artists", limit=limit),
            self.get_new_releases(limit=limit),
            self.get_categories(),
            self.get_my_playlists(limit=limit),
        )
        return dict(
            zip(
                ("top_tracks", "top_artists", "new_releases", "categories", "playlists"),
                results,
            )
        )


__all__ = ["SEARCH_TYPES", "TIME_RANGES", "SpotifyCatalogClient"]
