from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from gallerycore.cache import CacheController
from gallerycore.config import AppConfig, GallerySettings, SettingsStore
from gallerycore.events import EventRecorder
from gallerycore.media.encoder import ExternalEncoderRunner
from gallerycore.models import Album, MediaAsset
from gallerycore.repository import Repository
from gallerycore.util.files import map_to_alternate_directory

if TYPE_CHECKING:
    from gallerycore.queue import MediaQueue


@dataclass(slots=True)
class GalleryContext:
    config: AppConfig
    repo: Repository
    cache: CacheController
    events: EventRecorder
    encoder: ExternalEncoderRunner
    settings_store: SettingsStore
    queue: MediaQueue | None = None

    def settings(self, gallery_id: int) -> GallerySettings:
        return self.settings_store.get(gallery_id)


def album_path(ctx: GalleryContext, album: Album) -> Path:
    """Physical directory an album should occupy, derived from its ancestry."""
    settings = ctx.settings(album.gallery_id)
    if album.is_root:
        return settings.media_root
    if album.parent is not None:
        return album_path(ctx, album.parent) / album.directory_name
    parent = ctx.repo.find_album(album.parent_id) if album.parent_id is not None else None
    if parent is None:
        return settings.media_root / album.directory_name
    return ctx.settings(parent.gallery_id).media_root / parent.rel_path / album.directory_name


def media_album_path(ctx: GalleryContext, media: MediaAsset) -> Path:
    if media.parent is not None:
        return album_path(ctx, media.parent)
    parent = ctx.repo.find_album(media.parent_id) if media.parent_id is not None else None
    if parent is None:
        return ctx.settings(media.gallery_id).media_root
    return ctx.settings(parent.gallery_id).media_root / parent.rel_path


def thumbnail_dir(settings: GallerySettings, album_dir: Path) -> Path:
    return map_to_alternate_directory(album_dir, settings.thumbnail_root, settings.media_root)


def optimized_dir(settings: GallerySettings, album_dir: Path) -> Path:
    return map_to_alternate_directory(album_dir, settings.optimized_root, settings.media_root)


def allowed_dirs(settings: GallerySettings, album_dir: Path) -> list[Path]:
    return [album_dir, optimized_dir(settings, album_dir), thumbnail_dir(settings, album_dir)]


def resolve_media_paths(ctx: GalleryContext, media: MediaAsset) -> None:
    """Fill in physical paths for the derivative records of a loaded media asset."""
    settings = ctx.settings(media.gallery_id)
    album_dir = media_album_path(ctx, media)
    if media.original.file_name:
        media.original.physical_path = album_dir / media.original.file_name
    if media.thumbnail.file_name:
        media.thumbnail.physical_path = thumbnail_dir(settings, album_dir) / media.thumbnail.file_name
    if media.optimized.file_name:
        if media.optimized.file_name == media.original.file_name:
            media.optimized.physical_path = media.original.physical_path
        else:
            media.optimized.physical_path = optimized_dir(settings, album_dir) / media.optimized.file_name
