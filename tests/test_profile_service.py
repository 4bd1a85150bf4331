try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import pytest

from soundnet.clients import SQLiteDocumentStore
from soundnet.core.errors import NotFoundError
from soundnet.models.users import FavoriteItem
from soundnet.services import ProfileService


@pytest.fixture
def profiles(document_store: SQLiteDocumentStore, fast_retry) -> ProfileService:
    document_store.set_document(
        "users/U1",
        {
            "email": "ada@example.com",
            "username": "ada",
            "albums": [{"id": "AL1", "title": "OK Computer", "artist": "Radiohead"}],
        },
    )
    return ProfileService(document_store, retry_config=fast_retry)


def test_favorite_item_from_album_and_track_objects() -> None:
    album = FavoriteItem.from_catalog(
        {"id": "AL1", "name": "Kid A", "images": [{"url": "a.jpg"}], "artists": []}
    )
    track = FavoriteItem.from_catalog(
        {
            "id": "T1",
            "name": "Idioteque",
            "artists": [{"name": "Radiohead"}, {"name": "Guest"}],
            "album": {"images": [{"url": "t.jpg"}]},
        }
    )

    assert (album.image_url, album.artist) == ("a.jpg", None)
    assert (track.image_url, track.artist) == ("t.jpg", "Radiohead, Guest")


@pytest.mark.asyncio
async def test_stored_slots_are_padded_to_five(profiles: ProfileService) -> None:
    profile = await profiles.get_profile("U1")

    assert profile.display_name == "ada"
    assert [item.id if item else None for item in profile.favorite_albums] == [
        "AL1", None, None, None, None,
    ]
    assert profile.favorite_tracks == [None] * 5


@pytest.mark.asyncio
async def test_set_favorite_replaces_one_slot_and_keeps_the_rest(
    profiles: ProfileService, document_store: SQLiteDocumentStore
) -> None:
    item = FavoriteItem(id="AL2", title="Kid A", artist="Radiohead")

    profile = await profiles.set_favorite("U1", "album", 3, item)

    assert profile.favorite_albums[0].id == "AL1"
    assert profile.favorite_albums[3] == item
    stored = document_store.get_document("users/U1")
    assert stored["albums"][3] == {
        "id": "AL2",
        "title": "Kid A",
        "artist": "Radiohead",
        "imageUrl": None,
    }
    assert stored["email"] == "ada@example.com"

    cleared = await profiles.set_favorite("U1", "album", 0, None)
    assert cleared.favorite_albums[0] is None
    assert document_store.get_document("users/U1")["albums"][0] is None


@pytest.mark.asyncio
@pytest.mark.parametrize(("kind", "slot"), [("artist", 0), ("track", -1), ("track", 5)])
async def test_invalid_kind_or_slot_is_rejected(
    profiles: ProfileService, kind: str, slot: int
) -> None:
    with pytest.raises(ValueError):
        await profiles.set_favorite("U1", kind, slot, None)


@pytest.mark.asyncio
async def test_unknown_user_is_not_found(profiles: ProfileService) -> None:
    with pytest.raises(NotFoundError):
        await profiles.set_favorite("U9", "track", 0, None)
    with pytest.raises(NotFoundError):
        await profiles.get_profile("U9")
