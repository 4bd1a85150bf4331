"""
FastAPI routes exposing the SoundNet session, profile, rating, review and
catalog services.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any, Awaitable, List, Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from soundnet.core.errors import (
    AuthFlowBusy,
    AuthorizationDenied,
    NotFoundError,
    PersistenceError,
    SoundNetError,
    TokenExchangeFailed,
    TokenRefreshFailed,
)
from soundnet.dependencies import (
    CurrentUser,
    get_app_settings,
    get_auth_flow,
    get_catalog_client,
    get_profile_service,
    get_rating_aggregator,
    get_review_store,
    get_session_linker,
)
from soundnet.models.ratings import AggregateRating, Review
from soundnet.models.users import Credentials, FavoriteItem, SignInResult
from soundnet.schemas import (
    FavoriteRequest,
    OAuthCallbackPayload,
    ProfileResponse,
    RatingSubmissionRequest,
    RegisterRequest,
    ReviewRequest,
    SessionResponse,
    SignInRequest,
    UserRatingResponse,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _to_http_exception(exc: Exception) -> HTTPException:
    """Translate a core error into the status the clients expect."""
    if isinstance(exc, AuthorizationDenied):
        return HTTPException(status_code=HTTPStatus.UNAUTHORIZED, detail=str(exc))
    if isinstance(exc, TokenRefreshFailed):
        return HTTPException(
            status_code=HTTPStatus.CONFLICT,
            detail={"code": "relink_required", "message": str(exc)},
        )
    if isinstance(exc, AuthFlowBusy):
        return HTTPException(status_code=HTTPStatus.CONFLICT, detail=str(exc))
    if isinstance(exc, TokenExchangeFailed):
        return HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=HTTPStatus.NOT_FOUND, detail=str(exc))
    if isinstance(exc, PersistenceError):
        return HTTPException(status_code=HTTPStatus.SERVICE_UNAVAILABLE, detail=str(exc))
    if isinstance(exc, ValueError):
        return HTTPException(status_code=HTTPStatus.UNPROCESSABLE_ENTITY, detail=str(exc))
    return HTTPException(status_code=HTTPStatus.BAD_GATEWAY, detail=str(exc))


def _session_response(result: SignInResult) -> SessionResponse:
    return SessionResponse(
        user_id=result.user.id,
        email=result.user.email,
        display_name=result.user.display_name,
        needs_provider_link=result.needs_provider_link,
        provider_linked=result.token_pair is not None,
    )


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.post("/session/sign-in", response_model=SessionResponse)
async def sign_in(
    payload: SignInRequest,
    linker: Annotated[Any, Depends(get_session_linker)],
) -> SessionResponse:
    """Sign in to the app account and revive the linked Spotify session if possible."""
    try:
        result = await linker.sign_in(
            Credentials(email=payload.email, password=payload.password)
        )
    except SoundNetError as exc:
        raise _to_http_exception(exc) from exc
    return _session_response(result)


@router.post(
    "/session/register", response_model=SessionResponse, status_code=HTTPStatus.CREATED
)
async def register(
    payload: RegisterRequest,
    linker: Annotated[Any, Depends(get_session_linker)],
) -> SessionResponse:
    try:
        result = await linker.register(
            payload.email,
            payload.password.get_secret_value(),
            payload.display_name,
        )
    except SoundNetError as exc:
        raise _to_http_exception(exc) from exc
    return _session_response(result)


@router.post("/session/sign-out", status_code=HTTPStatus.OK)
async def sign_out(linker: Annotated[Any, Depends(get_session_linker)]) -> dict:
    try:
        await linker.sign_out()
    except PersistenceError as exc:
        raise _to_http_exception(exc) from exc
    return {"status": "signed_out"}


@router.get("/auth/spotify/authorize", status_code=HTTPStatus.OK)
async def start_spotify_authorization(
    request: Request,
    user: CurrentUser,
    auth_flow: Annotated[Any, Depends(get_auth_flow)],
    redirect: bool = Query(
        default=False,
        description="When true, respond with a redirect to the Spotify consent screen.",
    ),
) -> Any:
    """Kick off the PKCE flow for the signed-in user."""
    authorization = await auth_flow.begin_authorization()
    logger.info("Provider authorization started for user %s", user.id)

    accept_header = request.headers.get("accept", "")
    wants_html = "text/html" in accept_header.lower()
    if redirect or wants_html:
        return RedirectResponse(
            url=authorization.authorization_url,
            status_code=HTTPStatus.TEMPORARY_REDIRECT,
        )

    return {
        "authorization_url": authorization.authorization_url,
        "state": authorization.state,
    }


@router.get("/auth/spotify/callback", status_code=HTTPStatus.OK)
async def handle_spotify_callback(
    request: Request,
    user: CurrentUser,
    auth_flow: Annotated[Any, Depends(get_auth_flow)],
    linker: Annotated[Any, Depends(get_session_linker)],
    settings: Annotated[Any, Depends(get_app_settings)],
    state: str = Query(..., description="OAuth state issued by /authorize."),
    code: Optional[str] = Query(default=None, description="Authorization code."),
    error: Optional[str] = Query(default=None, description="Consent error, if any."),
    redirect: bool = Query(
        default=False,
        description="When true, redirect browser clients instead of returning JSON.",
    ),
) -> Response:
    """Complete the exchange and link the Spotify account to the signed-in user."""
    payload = OAuthCallbackPayload(state=state, code=code, error=error)
    try:
        token_pair = await auth_flow.complete_authorization(
            payload.model_dump(exclude_none=True)
        )
        await linker.link_provider(user, token_pair)
    except SoundNetError as exc:
        raise _to_http_exception(exc) from exc

    accept_header = request.headers.get("accept", "")
    wants_html = "text/html" in accept_header.lower()
    redirect_target = settings.frontend_base_url
    if redirect_target and (redirect or wants_html):
        return RedirectResponse(
            url=str(redirect_target), status_code=HTTPStatus.TEMPORARY_REDIRECT
        )

    return JSONResponse(content={"status": "connected"})


@router.delete("/auth/spotify/pending/{state}", status_code=HTTPStatus.NO_CONTENT)
async def cancel_spotify_authorization(
    state: str,
    auth_flow: Annotated[Any, Depends(get_auth_flow)],
) -> Response:
    if not auth_flow.cancel_authorization(state):
        raise HTTPException(
            status_code=HTTPStatus.NOT_FOUND, detail="No pending authorization."
        )
    return Response(status_code=HTTPStatus.NO_CONTENT)


@router.get("/songs/{song_id}/rating", response_model=AggregateRating)
async def get_song_rating(
    song_id: str,
    aggregator: Annotated[Any, Depends(get_rating_aggregator)],
) -> Any:
    """Aggregate rating, falling back to the last cached snapshot when offline."""
    try:
        return await aggregator.aggregate(song_id)
    except PersistenceError as exc:
        cached = aggregator.cached_aggregate(song_id)
        if cached is None:
            raise _to_http_exception(exc) from exc
        logger.warning("Serving cached rating for %s: %s", song_id, exc)
        return JSONResponse(
            content=cached.model_dump(), headers={"X-SoundNet-Cache": "offline"}
        )
    except ValueError as exc:
        raise _to_http_exception(exc) from exc


@router.put("/songs/{song_id}/rating", response_model=AggregateRating)
async def rate_song(
    song_id: str,
    payload: RatingSubmissionRequest,
    user: CurrentUser,
    aggregator: Annotated[Any, Depends(get_rating_aggregator)],
) -> AggregateRating:
    try:
        return await aggregator.submit(song_id, user.id, payload.rating)
    except (SoundNetError, ValueError) as exc:
        raise _to_http_exception(exc) from exc


@router.get("/songs/{song_id}/rating/me", response_model=UserRatingResponse)
async def get_my_song_rating(
    song_id: str,
    user: CurrentUser,
    aggregator: Annotated[Any, Depends(get_rating_aggregator)],
) -> UserRatingResponse:
    try:
        rating = await aggregator.rating_for(song_id, user.id)
    except (SoundNetError, ValueError) as exc:
        raise _to_http_exception(exc) from exc
    return UserRatingResponse(song_id=song_id, rating=rating)


@router.get("/songs/{song_id}/reviews", response_model=List[Review])
async def list_song_reviews(
    song_id: str,
    reviews: Annotated[Any, Depends(get_review_store)],
) -> List[Review]:
    try:
        return await reviews.list(song_id)
    except (SoundNetError, ValueError) as exc:
        raise _to_http_exception(exc) from exc


@router.put("/songs/{song_id}/reviews", response_model=Review)
async def write_song_review(
    song_id: str,
    payload: ReviewRequest,
    user: CurrentUser,
    reviews: Annotated[Any, Depends(get_review_store)],
) -> Review:
    try:
        return await reviews.upsert(
            song_id,
            user.id,
            payload.rating,
            payload.text,
            display_name=user.display_name,
        )
    except (SoundNetError, ValueError) as exc:
        raise _to_http_exception(exc) from exc


@router.delete(
    "/songs/{song_id}/reviews/{author_id}", status_code=HTTPStatus.NO_CONTENT
)
async def delete_song_review(
    song_id: str,
    author_id: str,
    user: CurrentUser,
    reviews: Annotated[Any, Depends(get_review_store)],
) -> Response:
    if author_id != user.id:
        raise HTTPException(
            status_code=HTTPStatus.FORBIDDEN, detail="Only the author can delete a review."
        )
    try:
        await reviews.remove(song_id, author_id)
    except (SoundNetError, ValueError) as exc:
        raise _to_http_exception(exc) from exc
    return Response(status_code=HTTPStatus.NO_CONTENT)


@router.get("/users/{user_id}/reviews", response_model=List[Review])
async def list_user_reviews(
    user_id: str,
    reviews: Annotated[Any, Depends(get_review_store)],
    limit: int = Query(default=10, ge=1, le=50),
) -> List[Review]:
    try:
        return await reviews.recent_for_author(user_id, limit=limit)
    except (SoundNetError, ValueError) as exc:
        raise _to_http_exception(exc) from exc


@router.get("/profile", response_model=ProfileResponse)
async def get_my_profile(
    user: CurrentUser,
    profiles: Annotated[Any, Depends(get_profile_service)],
) -> ProfileResponse:
    try:
        profile = await profiles.get_profile(user.id)
    except SoundNetError as exc:
        raise _to_http_exception(exc) from exc
    return ProfileResponse.from_user(profile)


@router.put("/profile/favorites/{kind}/{slot}", response_model=ProfileResponse)
async def pin_favorite(
    kind: str,
    slot: int,
    payload: FavoriteRequest,
    user: CurrentUser,
    profiles: Annotated[Any, Depends(get_profile_service)],
    catalog: Annotated[Any, Depends(get_catalog_client)],
) -> ProfileResponse:
    """Pin a Spotify track or album, looked up by id, to a favourite slot."""
    lookups = {"track": catalog.get_track, "album": catalog.get_album}
    if kind not in lookups:
        raise HTTPException(
            status_code=HTTPStatus.UNPROCESSABLE_ENTITY,
            detail="Favourites hold tracks or albums.",
        )
    item = await _from_catalog(lookups[kind](payload.item_id))
    try:
        profile = await profiles.set_favorite(
            user.id, kind, slot, FavoriteItem.from_catalog(item)
        )
    except (SoundNetError, ValueError) as exc:
        raise _to_http_exception(exc) from exc
    return ProfileResponse.from_user(profile)


@router.delete("/profile/favorites/{kind}/{slot}", response_model=ProfileResponse)
async def clear_favorite(
    kind: str,
    slot: int,
    user: CurrentUser,
    profiles: Annotated[Any, Depends(get_profile_service)],
) -> ProfileResponse:
    try:
        profile = await profiles.set_favorite(user.id, kind, slot, None)
    except (SoundNetError, ValueError) as exc:
        raise _to_http_exception(exc) from exc
    return ProfileResponse.from_user(profile)


async def _from_catalog(call: Awaitable[Any]) -> Any:
    try:
        return await call
    except (SoundNetError, ValueError, httpx.HTTPError) as exc:
        raise _to_http_exception(exc) from exc


@router.get("/catalog/home")
async def get_home_feed(
    catalog: Annotated[Any, Depends(get_catalog_client)],
    limit: int = Query(default=20, ge=1, le=50),
) -> dict:
    """Top tracks and artists, new releases, categories and the user's playlists."""
    return await _from_catalog(catalog.home_feed(limit=limit))


@router.get("/catalog/tracks/{track_id}")
async def get_catalog_track(
    track_id: str,
    catalog: Annotated[Any, Depends(get_catalog_client)],
) -> dict:
    return await _from_catalog(catalog.get_track(track_id))


@router.get("/catalog/albums/{album_id}")
async def get_catalog_album(
    album_id: str,
    catalog: Annotated[Any, Depends(get_catalog_client)],
) -> dict:
    return await _from_catalog(catalog.get_album(album_id))


@router.get("/catalog/artists/{artist_id}")
async def get_catalog_artist(
    artist_id: str,
    catalog: Annotated[Any, Depends(get_catalog_client)],
) -> dict:
    return await _from_catalog(catalog.get_artist(artist_id))


@router.get("/catalog/artists/{artist_id}/top-tracks")
async def get_catalog_artist_top_tracks(
    artist_id: str,
    catalog: Annotated[Any, Depends(get_catalog_client)],
    market: str = Query(default="US", min_length=2, max_length=2),
) -> dict:
    return {"items": await _from_catalog(catalog.get_artist_top_tracks(artist_id, market))}


@router.get("/catalog/playlists/{playlist_id}")
async def get_catalog_playlist(
    playlist_id: str,
    catalog: Annotated[Any, Depends(get_catalog_client)],
) -> dict:
    return await _from_catalog(catalog.get_playlist(playlist_id))


@router.get("/catalog/playlists/{playlist_id}/tracks")
async def get_catalog_playlist_tracks(
    playlist_id: str,
    catalog: Annotated[Any, Depends(get_catalog_client)],
) -> dict:
    return {"items": await _from_catalog(catalog.get_playlist_tracks(playlist_id))}


@router.get("/catalog/categories")
async def list_catalog_categories(
    catalog: Annotated[Any, Depends(get_catalog_client)],
    limit: int = Query(default=50, ge=1, le=50),
) -> dict:
    return {"items": await _from_catalog(catalog.get_categories(limit=limit))}


@router.get("/catalog/categories/{category_id}/playlists")
async def list_catalog_category_playlists(
    category_id: str,
    catalog: Annotated[Any, Depends(get_catalog_client)],
    name: Optional[str] = Query(
        default=None, description="Category name, searched when the category has no playlists."
    ),
    limit: int = Query(default=20, ge=1, le=50),
) -> dict:
    items = await _from_catalog(
        catalog.get_category_playlists(category_id, name, limit=limit)
    )
    return {"items": items}


@router.get("/catalog/new-releases")
async def list_catalog_new_releases(
    catalog: Annotated[Any, Depends(get_catalog_client)],
    limit: int = Query(default=20, ge=1, le=50),
) -> dict:
    return {"items": await _from_catalog(catalog.get_new_releases(limit=limit))}


@router.get("/catalog/search")
async def search_catalog(
    catalog: Annotated[Any, Depends(get_catalog_client)],
    q: str = Query(..., description="Free-text query."),
    type: str = Query(default="track", description="track, album, artist or playlist."),
    limit: int = Query(default=20, ge=1, le=50),
) -> dict:
    return {"items": await _from_catalog(catalog.search(q, search_type=type, limit=limit))}


__all__ = ["router"]
