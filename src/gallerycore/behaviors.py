from __future__ import annotations

import logging
import os
from pathlib import Path
import shutil
from typing import Protocol

from gallerycore.config import GallerySettings
from gallerycore.context import (
    GalleryContext,
    album_path,
    optimized_dir,
    resolve_media_paths,
    thumbnail_dir,
)
from gallerycore.derive.registry import FALLBACK_THUMBNAIL, generator_for
from gallerycore.errors import BusinessError, DirectoryCollisionError, UnsupportedSourceError
from gallerycore.models import (
    META_FILE_NAME,
    Album,
    Asset,
    AssetKind,
    DerivativeType,
    MediaAsset,
)
from gallerycore.util.files import (
    DEFAULT_DIRECTORY_NAME,
    delete_directory,
    delete_directory_contents,
    delete_file,
    is_same_path,
    move_file_safely,
    remove_invalid_characters,
    validate_directory_name,
    validate_file_name,
)

logger = logging.getLogger(__name__)


class SaveBehavior(Protocol):
    def save(self, ctx: GalleryContext, asset: Asset) -> None: ...


class DeleteBehavior(Protocol):
    def delete(self, ctx: GalleryContext, asset: Asset, delete_from_filesystem: bool) -> None: ...


def _rel_path(settings: GallerySettings, path: Path) -> str:
    rel = os.path.relpath(os.path.abspath(path), os.path.abspath(settings.media_root))
    return "" if rel == "." else rel.replace("\\", "/")


def _require_inside(settings: GallerySettings, path: Path) -> None:
    rel = os.path.relpath(os.path.abspath(path), os.path.abspath(settings.media_root))
    if rel == os.pardir or rel.startswith(os.pardir + os.sep) or os.path.isabs(rel):
        raise BusinessError(f"album directory {path} is outside the media root {settings.media_root}")


def _mirror_dirs(settings: GallerySettings, path: Path) -> list[Path]:
    """Mapped thumbnail and optimized directories that differ from *path* and from each other."""
    out: list[Path] = []
    for mirror in (thumbnail_dir(settings, path), optimized_dir(settings, path)):
        if is_same_path(mirror, path) or any(is_same_path(mirror, seen) for seen in out):
            continue
        out.append(mirror)
    return out


def _descendants(ctx: GalleryContext, album_id: int) -> tuple[list[int], list[int]]:
    album_ids: list[int] = []
    media_ids = list(ctx.repo.child_media_ids(album_id))
    for child_id in ctx.repo.child_album_ids(album_id):
        album_ids.append(child_id)
        sub_albums, sub_media = _descendants(ctx, child_id)
        album_ids.extend(sub_albums)
        media_ids.extend(sub_media)
    return album_ids, media_ids


def _retag_loaded_children(album: Album) -> None:
    for child in album.children or []:
        child.gallery_id = album.gallery_id
        if isinstance(child, Album):
            _retag_loaded_children(child)

class AlbumSaveBehavior:
    def save(self, ctx: GalleryContext, asset: Asset) -> None:
        assert isinstance(asset, Album)
        album = asset
        if album.is_virtual:
            return
        settings = ctx.settings(album.gallery_id)

        # Directories are created or moved before the record is written.
        if album.is_root:
            settings.media_root.mkdir(parents=True, exist_ok=True)
            album.rel_path = ""
            album.path_on_disk = settings.media_root
        elif album.is_new:
            self._create_directory(ctx, album, settings)
        else:
            self._move_directory(ctx, album, settings)

        ctx.repo.save_album(album)

        if album.gallery_id_changed:
            self._cascade_gallery_id(ctx, album)
            _retag_loaded_children(album)
            ctx.cache.remove_tags_from_cache()

    def _create_directory(self, ctx: GalleryContext, album: Album, settings: GallerySettings) -> None:
        existing = album.path_on_disk
        if existing is not None and existing.is_dir():
            # Discovered by a synchronization: adopt the directory as it is.
            path = existing
            album.directory_name = existing.name
        else:
            parent_dir = self._parent_dir(ctx, album)
            requested = album.directory_name or album.title or DEFAULT_DIRECTORY_NAME
            album.directory_name = validate_directory_name(
                parent_dir, requested, settings.album_directory_name_length
            )
            path = parent_dir / album.directory_name
            _require_inside(settings, path)
            path.mkdir(parents=True, exist_ok=True)
        for mirror in _mirror_dirs(settings, path):
            mirror.mkdir(parents=True, exist_ok=True)
        album.rel_path = _rel_path(settings, path)
        album.path_on_disk = path

    def _move_directory(self, ctx: GalleryContext, album: Album, settings: GallerySettings) -> None:
        assert album.id is not None
        stored = ctx.repo.find_album(album.id)
        old_settings = ctx.settings(stored.gallery_id) if stored is not None else settings
        old_rel = stored.rel_path if stored is not None else album.rel_path
        old_path = old_settings.media_root / old_rel
        parent_dir = self._parent_dir(ctx, album)
        new_path = parent_dir / album.directory_name
        _require_inside(settings, new_path)
        if is_same_path(old_path, new_path):
            album.rel_path = _rel_path(settings, new_path)
            album.path_on_disk = new_path
            return

        if new_path.exists():
            album.directory_name = validate_directory_name(
                parent_dir, album.directory_name, settings.album_directory_name_length
            )
            new_path = parent_dir / album.directory_name

        moves: list[tuple[Path, Path]] = []
        for mapper in (thumbnail_dir, optimized_dir):
            old_mirror = mapper(old_settings, old_path)
            new_mirror = mapper(settings, new_path)
            if is_same_path(old_mirror, old_path) or is_same_path(new_mirror, new_path):
                continue
            if not old_mirror.exists() or any(is_same_path(old_mirror, seen) for seen, _ in moves):
                continue
            if new_mirror.exists():
                raise DirectoryCollisionError(new_mirror)
            moves.append((old_mirror, new_mirror))

        logger.info("moving album directory %s -> %s", old_path, new_path)
        if old_path.exists():
            new_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(old_path), str(new_path))
        else:
            new_path.mkdir(parents=True, exist_ok=True)
        for old_mirror, new_mirror in moves:
            new_mirror.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(old_mirror), str(new_mirror))

        album.rel_path = _rel_path(settings, new_path)
        album.path_on_disk = new_path
        self._update_descendant_paths(ctx, album.id, album.rel_path)

    def _update_descendant_paths(self, ctx: GalleryContext, album_id: int, rel_path: str) -> None:
        for child_id in ctx.repo.child_album_ids(album_id):
            child = ctx.repo.find_album(child_id)
            if child is None:
                continue
            child.rel_path = f"{rel_path}/{child.directory_name}" if rel_path else child.directory_name
            ctx.repo.save_album(child)
            ctx.cache.remove_album_from_cache(child_id)
            self._update_descendant_paths(ctx, child_id, child.rel_path)

    def _parent_dir(self, ctx: GalleryContext, album: Album) -> Path:
        if album.parent is not None:
            return album_path(ctx, album.parent)
        parent = ctx.repo.find_album(album.parent_id) if album.parent_id is not None else None
        if parent is None:
            return ctx.settings(album.gallery_id).media_root
        return ctx.settings(parent.gallery_id).media_root / parent.rel_path

    def _cascade_gallery_id(self, ctx: GalleryContext, album: Album) -> None:
        # Media take their gallery from their album; only cached copies need evicting.
        assert album.id is not None
        for media_id in ctx.repo.child_media_ids(album.id):
            ctx.cache.remove_media_asset_from_cache(media_id)
        for child_id in ctx.repo.child_album_ids(album.id):
            child = ctx.repo.find_album(child_id)
            if child is None:
                continue
            child.change_gallery(album.gallery_id)
            ctx.repo.save_album(child)
            ctx.cache.remove_album_from_cache(child_id)
            self._cascade_gallery_id(ctx, child)


class AlbumDeleteBehavior:
    def delete(self, ctx: GalleryContext, asset: Asset, delete_from_filesystem: bool) -> None:
        assert isinstance(asset, Album)
        album = asset
        if album.id is None:
            return
        settings = ctx.settings(album.gallery_id)
        path = album_path(ctx, album)
        album_ids, media_ids = _descendants(ctx, album.id)

        if ctx.queue is not None and media_ids:
            ctx.queue.remove(media_ids)

        if delete_from_filesystem and not album.is_virtual:
            self._delete_files(settings, path, album.is_root)
        else:
            self._delete_derivatives(ctx, media_ids)
            for mirror in _mirror_dirs(settings, path):
                if album.is_root:
                    delete_directory_contents(mirror)
                else:
                    delete_directory(mirror)

        if album.is_root:
            # The root container and its record survive; only its contents go.
            for child_id in ctx.repo.child_album_ids(album.id):
                ctx.repo.delete_album(child_id)
            for media_id in ctx.repo.child_media_ids(album.id):
                ctx.repo.delete_media(media_id)
            album.thumbnail_media_id = 0
            album.children = [] if album.children is not None else None
            ctx.repo.save_album(album)
            ctx.cache.remove_album_from_cache(album.id)
        else:
            ctx.repo.delete_album(album.id)
            ctx.cache.remove_album_from_cache(album.id)
            if album.parent_id is not None:
                ctx.cache.remove_album_id_from_parent_album_cache_item(album.id, album.parent_id)

        for child_id in album_ids:
            ctx.cache.remove_album_from_cache(child_id)
        for media_id in media_ids:
            ctx.cache.remove_media_asset_from_cache(media_id)
        ctx.cache.remove_inflated_albums_from_cache()
        ctx.cache.remove_tags_from_cache()

    def _delete_files(self, settings: GallerySettings, path: Path, is_root: bool) -> None:
        mirrors = _mirror_dirs(settings, path)
        if is_root:
            delete_directory_contents(path, keep=set(mirrors))
            for mirror in mirrors:
                delete_directory_contents(mirror)
            return
        delete_directory(path)
        for mirror in mirrors:
            delete_directory(mirror)

    def _delete_derivatives(self, ctx: GalleryContext, media_ids: list[int]) -> None:
        for media_id in media_ids:
            media = ctx.repo.find_media(media_id)
            if media is None:
                continue
            resolve_media_paths(ctx, media)
            _delete_derivative_files(media)


def _delete_derivative_files(media: MediaAsset) -> None:
    delete_file(media.thumbnail.physical_path)
    if not is_same_path(media.optimized.physical_path, media.original.physical_path):
        delete_file(media.optimized.physical_path)


class MediaSaveBehavior:
    def save(self, ctx: GalleryContext, asset: Asset) -> None:
        assert isinstance(asset, MediaAsset)
        media = asset
        settings = ctx.settings(media.gallery_id)

        self._generate(ctx, media)
        for record in (media.thumbnail, media.optimized, media.original):
            delete_file(record.temp_path)
            record.temp_path = None

        self._sync_file_name(ctx, media, settings)
        ctx.repo.save_media(media)
        for item in media.meta_items:
            item.has_changes = False

    def _generate(self, ctx: GalleryContext, media: MediaAsset) -> None:
        generator_for(media.kind, DerivativeType.ORIGINAL).generate_and_save(ctx, media)
        try:
            generator_for(media.kind, DerivativeType.THUMBNAIL).generate_and_save(ctx, media)
            generator_for(media.kind, DerivativeType.OPTIMIZED).generate_and_save(ctx, media)
        except UnsupportedSourceError as exc:
            ctx.events.record(
                exc,
                context="derivative generation",
                data={"file": media.original.file_name},
                gallery_id=media.gallery_id,
            )
            media.regenerate_thumbnail = True
            FALLBACK_THUMBNAIL.generate_and_save(ctx, media)
            media.optimized.clear()

    def _sync_file_name(self, ctx: GalleryContext, media: MediaAsset, settings: GallerySettings) -> None:
        item = media.meta(META_FILE_NAME)
        if item is None or not item.has_changes or media.is_new or settings.media_read_only:
            return
        current = media.original.physical_path
        requested = remove_invalid_characters(item.value.strip())
        if current is None or not requested or requested == media.original.file_name:
            return
        if Path(requested).suffix.lower() != current.suffix.lower():
            requested = f"{Path(requested).stem}{current.suffix}"

        new_name = validate_file_name(current.parent, requested)
        new_path = current.parent / new_name
        move_file_safely(current, new_path)
        shares_original = is_same_path(media.optimized.physical_path, current)
        media.original.physical_path = new_path
        media.original.file_name = new_name
        if shares_original:
            media.optimized.physical_path = new_path
            media.optimized.file_name = new_name
        item.value = new_name
        logger.info("renamed %s -> %s", current.name, new_name)


class MediaDeleteBehavior:
    def delete(self, ctx: GalleryContext, asset: Asset, delete_from_filesystem: bool) -> None:
        assert isinstance(asset, MediaAsset)
        media = asset
        if media.id is None:
            return
        settings = ctx.settings(media.gallery_id)
        _delete_derivative_files(media)
        if delete_from_filesystem and not settings.media_read_only:
            delete_file(media.original.physical_path)

        ctx.repo.delete_media(media.id)
        ctx.cache.remove_media_asset_from_cache(media.id)
        if media.parent_id is not None:
            ctx.cache.remove_media_asset_id_from_parent_album_cache_item(media.id, media.parent_id)
        ctx.cache.remove_inflated_albums_from_cache()
        ctx.cache.remove_tags_from_cache()


_MEDIA_SAVE = MediaSaveBehavior()
_MEDIA_DELETE = MediaDeleteBehavior()

SAVE_BEHAVIORS: dict[AssetKind, SaveBehavior] = {
    AssetKind.ALBUM: AlbumSaveBehavior(),
    AssetKind.IMAGE: _MEDIA_SAVE,
    AssetKind.VIDEO: _MEDIA_SAVE,
    AssetKind.AUDIO: _MEDIA_SAVE,
    AssetKind.GENERIC: _MEDIA_SAVE,
    AssetKind.EXTERNAL: _MEDIA_SAVE,
}

DELETE_BEHAVIORS: dict[AssetKind, DeleteBehavior] = {
    AssetKind.ALBUM: AlbumDeleteBehavior(),
    AssetKind.IMAGE: _MEDIA_DELETE,
    AssetKind.VIDEO: _MEDIA_DELETE,
    AssetKind.AUDIO: _MEDIA_DELETE,
    AssetKind.GENERIC: _MEDIA_DELETE,
    AssetKind.EXTERNAL: _MEDIA_DELETE,
}


def save_behavior_for(kind: AssetKind) -> SaveBehavior:
    return SAVE_BEHAVIORS[kind]


def delete_behavior_for(kind: AssetKind) -> DeleteBehavior:
    return DELETE_BEHAVIORS[kind]
