from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import logging
import threading
import time
from typing import TYPE_CHECKING, Any, Callable

from gallerycore.models import Album, Asset, AssetKind, DerivativeRecord, DerivativeType, MediaAsset, MimeCategory

if TYPE_CHECKING:
    from gallerycore.repository import Repository

logger = logging.getLogger(__name__)


class CacheKind(str, Enum):
    INFLATED_ALBUMS = "inflated_albums"
    ALBUM_ASSETS = "album_assets"
    MEDIA_ASSETS = "media_assets"
    TAGS = "tags"


@dataclass(slots=True, frozen=True)
class DisplayCacheEntry:
    dtype: DerivativeType
    width: int | None
    height: int | None
    file_name: str
    file_size_kb: int
    external_html_source: str = ""
    external_type: MimeCategory = MimeCategory.NOT_SET

    @classmethod
    def from_record(cls, record: DerivativeRecord) -> DisplayCacheEntry:
        return cls(
            dtype=record.dtype,
            width=record.width,
            height=record.height,
            file_name=record.file_name,
            file_size_kb=record.file_size_kb,
            external_html_source=record.external_html_source,
            external_type=record.external_type,
        )


@dataclass(slots=True, frozen=True)
class MetaCacheEntry:
    id: int | None
    name: str
    value: str
    raw_value: str | None
    media_id: int | None = None
    album_id: int | None = None


@dataclass(slots=True, frozen=True)
class MediaCacheEntry:
    id: int
    gallery_id: int
    parent_id: int | None
    kind: AssetKind
    sequence: int
    title: str
    is_private: bool
    created_by: str
    last_modified_by: str
    date_added: datetime | None
    date_modified: datetime | None
    display: tuple[DisplayCacheEntry, ...] = ()
    meta_items: tuple[MetaCacheEntry, ...] = ()

    @classmethod
    def from_media(cls, media: MediaAsset) -> MediaCacheEntry:
        if media.id is None:
            raise ValueError("cannot cache a media asset that has not been saved")
        return cls(
            id=media.id,
            gallery_id=media.gallery_id,
            parent_id=media.parent_id,
            kind=media.kind,
            sequence=media.sequence or 0,
            title=media.title,
            is_private=media.is_private,
            created_by=media.created_by,
            last_modified_by=media.last_modified_by,
            date_added=media.date_added,
            date_modified=media.date_modified,
            display=tuple(DisplayCacheEntry.from_record(r) for r in (media.thumbnail, media.optimized, media.original)),
            meta_items=tuple(
                MetaCacheEntry(id=m.id, name=m.name, value=m.value, raw_value=m.raw_value, media_id=media.id)
                for m in media.meta_items
            ),
        )


@dataclass(slots=True, frozen=True)
class AlbumCacheEntry:
    id: int
    gallery_id: int
    parent_id: int | None
    sequence: int
    title: str
    directory_name: str
    thumbnail_media_id: int
    is_private: bool
    sort_by_meta_name: str
    sort_ascending: bool
    owned_by: str
    owner_role_name: str
    created_by: str
    last_modified_by: str
    date_added: datetime | None
    date_modified: datetime | None
    meta_items: tuple[MetaCacheEntry, ...] = ()
    # Edited in place by membership operations; every other field is a snapshot.
    child_album_ids: set[int] = field(default_factory=set)
    child_media_ids: set[int] = field(default_factory=set)

    @property
    def kind(self) -> AssetKind:
        return AssetKind.ALBUM

    @classmethod
    def from_album(cls, album: Album, repo: Repository) -> AlbumCacheEntry:
        if album.id is None:
            raise ValueError("cannot cache an album that has not been saved")
        if album.children is not None:
            child_albums = {c.id for c in album.child_albums() if c.id is not None}
            child_media = {c.id for c in album.child_media() if c.id is not None}
        else:
            child_albums = set(repo.child_album_ids(album.id))
            child_media = set(repo.child_media_ids(album.id))
        return cls(
            id=album.id,
            gallery_id=album.gallery_id,
            parent_id=album.parent_id,
            sequence=album.sequence or 0,
            title=album.title,
            directory_name=album.directory_name,
            thumbnail_media_id=album.thumbnail_media_id,
            is_private=album.is_private,
            sort_by_meta_name=album.sort_by_meta_name,
            sort_ascending=album.sort_ascending,
            owned_by=album.owned_by,
            owner_role_name=album.owner_role_name,
            created_by=album.created_by,
            last_modified_by=album.last_modified_by,
            date_added=album.date_added,
            date_modified=album.date_modified,
            meta_items=tuple(
                MetaCacheEntry(id=m.id, name=m.name, value=m.value, raw_value=m.raw_value, album_id=album.id)
                for m in album.meta_items
            ),
            child_album_ids=child_albums,
            child_media_ids=child_media,
        )


@dataclass(slots=True, frozen=True)
class Invalidation:
    op: str
    kind: CacheKind | None = None
    key: Any = None
    parent_id: int | None = None


class _CacheMap:
    __slots__ = ("data", "expires_at", "lock")

    def __init__(self, expires_at: float | None = None):
        self.data: dict[Any, Any] = {}
        self.expires_at = expires_at
        self.lock = threading.Lock()

    def expired(self) -> bool:
        return self.expires_at is not None and time.monotonic() >= self.expires_at


class CacheController:
    """Process-wide projection cache with named, composable invalidations.

    One lazily created map per :class:`CacheKind`. Maps never expire unless a
    caller supplies an expiry. When caching is disabled every write is a no-op
    and every read misses.
    """

    def __init__(self, enabled: bool = True, listener: Callable[[Invalidation], None] | None = None):
        self.enabled = enabled
        self.listener = listener
        self._lock = threading.Lock()
        self._maps: dict[CacheKind, _CacheMap] = {}
        self._static: dict[str, Callable[[], None]] = {}
        self._membership_lock = threading.Lock()

    # -- primitives ---------------------------------------------------------

    def _map(self, kind: CacheKind, create: bool) -> _CacheMap | None:
        with self._lock:
            found = self._maps.get(kind)
            if found is not None and found.expired():
                del self._maps[kind]
                found = None
            if found is None and create and self.enabled:
                found = _CacheMap()
                self._maps[kind] = found
            return found

    def _emit(self, inv: Invalidation) -> None:
        if self.listener is not None:
            self.listener(inv)

    def register_static_cache(self, name: str, clear: Callable[[], None]) -> None:
        self._static[name] = clear

    def get_cache(self, kind: CacheKind) -> dict[Any, Any] | None:
        cache_map = self._map(kind, create=False)
        if cache_map is None:
            return None
        with cache_map.lock:
            return dict(cache_map.data)

    def set_cache(self, kind: CacheKind, values: dict[Any, Any] | None, expiry_seconds: float | None = None) -> None:
        if not self.enabled:
            return
        if values is None:
            self.evict_all(kind)
            return
        new_map = _CacheMap(time.monotonic() + expiry_seconds if expiry_seconds else None)
        new_map.data.update(values)
        with self._lock:
            self._maps[kind] = new_map

    def get(self, kind: CacheKind, key: Any) -> Any:
        cache_map = self._map(kind, create=False)
        if cache_map is None:
            return None
        with cache_map.lock:
            return cache_map.data.get(key)

    def try_add(self, kind: CacheKind, key: Any, value: Any) -> bool:
        """Insert without overwriting; returns False if the key was already cached."""
        cache_map = self._map(kind, create=True)
        if cache_map is None:
            return False
        with cache_map.lock:
            if key in cache_map.data:
                return False
            cache_map.data[key] = value
            return True

    def count(self, kind: CacheKind) -> int:
        cache_map = self._map(kind, create=False)
        if cache_map is None:
            return 0
        with cache_map.lock:
            return len(cache_map.data)

    def evict(self, kind: CacheKind, key: Any) -> None:
        cache_map = self._map(kind, create=False)
        if cache_map is not None:
            with cache_map.lock:
                cache_map.data.pop(key, None)
        self._emit(Invalidation("evict", kind, key))

    def evict_all(self, kind: CacheKind) -> None:
        with self._lock:
            self._maps.pop(kind, None)
        self._emit(Invalidation("evict_all", kind))

    def add_membership(self, parent_id: int, child_id: int, child_kind: AssetKind) -> None:
        entry = self.get(CacheKind.ALBUM_ASSETS, parent_id)
        if entry is None:
            return
        with self._membership_lock:
            self._members(entry, child_kind).add(child_id)

    def evict_membership(self, parent_id: int, child_id: int, child_kind: AssetKind) -> None:
        entry = self.get(CacheKind.ALBUM_ASSETS, parent_id)
        if entry is not None:
            with self._membership_lock:
                self._members(entry, child_kind).discard(child_id)
        self._emit(Invalidation("evict_membership", CacheKind.ALBUM_ASSETS, child_id, parent_id))

    @staticmethod
    def _members(entry: AlbumCacheEntry, child_kind: AssetKind) -> set[int]:
        return entry.child_album_ids if child_kind == AssetKind.ALBUM else entry.child_media_ids

    # -- named operations ---------------------------------------------------

    def get_album_asset(self, album_id: int) -> AlbumCacheEntry | None:
        return self.get(CacheKind.ALBUM_ASSETS, album_id)

    def get_media_asset(self, media_id: int) -> MediaCacheEntry | None:
        return self.get(CacheKind.MEDIA_ASSETS, media_id)

    def get_inflated_album(self, album_id: int) -> Album | None:
        return self.get(CacheKind.INFLATED_ALBUMS, album_id)

    def get_tags(self, gallery_id: int) -> list[str] | None:
        return self.get(CacheKind.TAGS, gallery_id)

    def add_to_album_asset_cache(self, entry: AlbumCacheEntry) -> None:
        self.try_add(CacheKind.ALBUM_ASSETS, entry.id, entry)

    def add_to_media_asset_cache(self, entry: MediaCacheEntry) -> None:
        self.try_add(CacheKind.MEDIA_ASSETS, entry.id, entry)

    def add_to_inflated_album_cache(self, album: Album) -> None:
        if album.id is not None:
            self.try_add(CacheKind.INFLATED_ALBUMS, album.id, album)

    def add_tags(self, gallery_id: int, tags: list[str]) -> None:
        self.try_add(CacheKind.TAGS, gallery_id, tags)

    def remove_album_from_cache(self, album_id: int) -> None:
        self.evict(CacheKind.ALBUM_ASSETS, album_id)

    def remove_media_asset_from_cache(self, media_id: int) -> None:
        self.evict(CacheKind.MEDIA_ASSETS, media_id)

    def remove_inflated_albums_from_cache(self) -> None:
        self.evict_all(CacheKind.INFLATED_ALBUMS)

    def remove_tags_from_cache(self) -> None:
        self.evict_all(CacheKind.TAGS)

    def add_album_id_to_album_cache_item(self, album_id: int, parent_id: int) -> None:
        self.add_membership(parent_id, album_id, AssetKind.ALBUM)

    def add_media_asset_id_to_album_cache_item(self, media_id: int, parent_id: int) -> None:
        self.add_membership(parent_id, media_id, AssetKind.IMAGE)

    def remove_album_id_from_parent_album_cache_item(self, album_id: int, parent_id: int) -> None:
        self.evict_membership(parent_id, album_id, AssetKind.ALBUM)

    def remove_media_asset_id_from_parent_album_cache_item(self, media_id: int, parent_id: int) -> None:
        self.evict_membership(parent_id, media_id, AssetKind.IMAGE)

    def purge_cache(self, asset: Asset | None = None) -> None:
        if asset is None:
            for name, clear in self._static.items():
                logger.debug("clearing static cache %s", name)
                clear()
            for kind in CacheKind:
                self.evict_all(kind)
            return

        if asset.id is not None:
            if isinstance(asset, Album):
                self.remove_album_from_cache(asset.id)
            else:
                self.remove_media_asset_from_cache(asset.id)
        self.remove_inflated_albums_from_cache()
        self.remove_tags_from_cache()

    def stats(self) -> dict[str, int]:
        return {kind.value: self.count(kind) for kind in CacheKind}
