import threading
import time

from gallerycore.cache import AlbumCacheEntry, CacheController, CacheKind, Invalidation, MediaCacheEntry
from gallerycore.models import Album, MediaAsset


def _album_entry(album_id: int, parent_id: int | None = None, albums=(), media=()) -> AlbumCacheEntry:
    album = Album(id=album_id, parent_id=parent_id, title=f"album {album_id}")
    album.children = [Album(id=a) for a in albums] + [MediaAsset(id=m) for m in media]
    return AlbumCacheEntry.from_album(album, repo=None)


def _recording_cache() -> tuple[CacheController, list[Invalidation]]:
    seen: list[Invalidation] = []
    return CacheController(listener=seen.append), seen


def test_membership_edits_entry_in_place() -> None:
    cache = CacheController()
    entry = _album_entry(1, albums=[2], media=[10])
    cache.add_to_album_asset_cache(entry)

    cache.add_media_asset_id_to_album_cache_item(11, 1)
    cache.add_album_id_to_album_cache_item(3, 1)
    assert cache.get_album_asset(1) is entry
    assert entry.child_media_ids == {10, 11}
    assert entry.child_album_ids == {2, 3}

    cache.remove_media_asset_id_from_parent_album_cache_item(10, 1)
    cache.remove_album_id_from_parent_album_cache_item(2, 1)
    assert entry.child_media_ids == {11}
    assert entry.child_album_ids == {3}


def test_membership_on_uncached_parent_is_ignored() -> None:
    cache = CacheController()
    cache.add_media_asset_id_to_album_cache_item(5, 99)
    cache.remove_album_id_from_parent_album_cache_item(5, 99)
    assert cache.get_album_asset(99) is None


def test_concurrent_membership_adds_are_not_lost() -> None:
    cache = CacheController()
    entry = _album_entry(1)
    cache.add_to_album_asset_cache(entry)

    def _add(start: int) -> None:
        for media_id in range(start, start + 50):
            cache.add_media_asset_id_to_album_cache_item(media_id, 1)

    threads = [threading.Thread(target=_add, args=(n * 50,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert entry.child_media_ids == set(range(200))


def test_full_purge_empties_every_map_and_static_cache() -> None:
    cache, seen = _recording_cache()
    cleared: list[str] = []
    cache.register_static_cache("settings", lambda: cleared.append("settings"))
    cache.add_to_album_asset_cache(_album_entry(1))
    cache.add_to_media_asset_cache(MediaCacheEntry.from_media(MediaAsset(id=5, title="x")))
    cache.add_to_inflated_album_cache(Album(id=1))
    cache.add_tags(1, ["beach"])

    cache.purge_cache()

    assert cleared == ["settings"]
    assert all(count == 0 for count in cache.stats().values())
    assert {inv.kind for inv in seen if inv.op == "evict_all"} == set(CacheKind)


def test_purge_of_media_asset_invalidates_its_projection_and_shared_maps() -> None:
    cache, seen = _recording_cache()
    cache.add_to_album_asset_cache(_album_entry(1, media=[5]))
    cache.add_to_media_asset_cache(MediaCacheEntry.from_media(MediaAsset(id=5)))
    cache.add_to_media_asset_cache(MediaCacheEntry.from_media(MediaAsset(id=6)))

    cache.purge_cache(MediaAsset(id=5))

    assert seen == [
        Invalidation("evict", CacheKind.MEDIA_ASSETS, 5),
        Invalidation("evict_all", CacheKind.INFLATED_ALBUMS),
        Invalidation("evict_all", CacheKind.TAGS),
    ]
    assert cache.get_media_asset(5) is None
    assert cache.get_media_asset(6) is not None
    assert cache.get_album_asset(1) is not None


def test_purge_of_album_evicts_album_projection() -> None:
    cache, seen = _recording_cache()
    cache.add_to_album_asset_cache(_album_entry(1))
    cache.add_to_album_asset_cache(_album_entry(2, parent_id=1))

    cache.purge_cache(Album(id=2, parent_id=1))

    assert seen[0] == Invalidation("evict", CacheKind.ALBUM_ASSETS, 2)
    assert cache.get_album_asset(2) is None
    assert cache.get_album_asset(1) is not None


def test_try_add_never_overwrites() -> None:
    cache = CacheController()
    assert cache.try_add(CacheKind.TAGS, 1, ["a"]) is True
    assert cache.try_add(CacheKind.TAGS, 1, ["b"]) is False
    assert cache.get_tags(1) == ["a"]


def test_disabled_cache_stores_nothing() -> None:
    cache = CacheController(enabled=False)
    cache.add_to_album_asset_cache(_album_entry(1))
    cache.set_cache(CacheKind.TAGS, {1: ["a"]})

    assert cache.get_album_asset(1) is None
    assert cache.get_cache(CacheKind.TAGS) is None
    assert cache.stats() == {kind.value: 0 for kind in CacheKind}


def test_set_cache_replaces_map_and_expires() -> None:
    cache = CacheController()
    cache.add_tags(1, ["old"])
    cache.set_cache(CacheKind.TAGS, {2: ["new"]}, expiry_seconds=0.05)

    assert cache.get_cache(CacheKind.TAGS) == {2: ["new"]}
    time.sleep(0.1)
    assert cache.get_tags(2) is None


def test_set_cache_none_evicts_kind() -> None:
    cache = CacheController()
    cache.add_tags(1, ["a"])
    cache.set_cache(CacheKind.TAGS, None)
    assert cache.get_cache(CacheKind.TAGS) is None


def test_get_cache_returns_a_snapshot() -> None:
    cache = CacheController()
    cache.add_tags(1, ["a"])
    snapshot = cache.get_cache(CacheKind.TAGS)
    assert snapshot is not None
    snapshot[2] = ["b"]
    assert cache.get_tags(2) is None
