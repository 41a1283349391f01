from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from pathlib import Path

from gallerycore.config import GallerySettings
from gallerycore.context import GalleryContext, album_path
from gallerycore.errors import SynchronizationTerminatedError, UnsupportedSourceError, ValidationError
from gallerycore.lifecycle import (
    SYSTEM_USER,
    create_media_asset,
    delete_from_gallery,
    ensure_inflated,
    load_children,
    save_asset,
)
from gallerycore.models import Album, MediaAsset
from gallerycore.sync import SyncState, SynchronizationStatus, get_sync_status
from gallerycore.util.files import is_same_path

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SyncStats:
    scanned: int = 0
    added_albums: int = 0
    added_media: int = 0
    removed: int = 0
    skipped: int = 0


@dataclass(slots=True)
class _Walk:
    ctx: GalleryContext
    settings: GallerySettings
    status: SynchronizationStatus
    stats: SyncStats
    user: str
    regenerate_thumbnails: bool
    regenerate_optimized: bool

    def is_derivative_root(self, path: Path) -> bool:
        return any(
            root is not None and not is_same_path(root, self.settings.media_root) and is_same_path(path, root)
            for root in (self.settings.thumbnail_root, self.settings.optimized_root)
        )

    def is_derivative_file(self, name: str) -> bool:
        return name.startswith((self.settings.thumbnail_prefix, self.settings.optimized_prefix))


def _count_files(walk: _Walk, root: Path) -> int:
    total = 0
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if not walk.is_derivative_root(Path(dirpath) / d)]
        total += sum(1 for f in filenames if not walk.is_derivative_file(f))
    return total


def _check_terminate(status: SynchronizationStatus) -> None:
    if status.should_terminate:
        raise SynchronizationTerminatedError(f"synchronization {status.sync_id} was cancelled")


def _sync_album(walk: _Walk, album: Album) -> None:
    ctx = walk.ctx
    directory = album_path(ctx, album)
    children = load_children(ctx, album)

    known_albums = {c.directory_name.lower(): c for c in album.child_albums()}
    known_media: dict[str, MediaAsset] = {}
    for media in album.child_media():
        if ensure_inflated(ctx, media).ok and media.original.file_name:
            known_media[media.original.file_name.lower()] = media
    logger.debug("synchronizing %s (%d known children)", directory, len(children))

    for entry in sorted(directory.iterdir()):
        _check_terminate(walk.status)
        if entry.is_dir():
            if walk.is_derivative_root(entry):
                continue
            child = known_albums.pop(entry.name.lower(), None)
            if child is None:
                child = Album(
                    gallery_id=album.gallery_id,
                    parent_id=album.id,
                    title=entry.name,
                    directory_name=entry.name,
                    path_on_disk=entry,
                    created_by=walk.user,
                    last_modified_by=walk.user,
                )
                child.parent = album
                save_asset(ctx, child)
                album.add_child(child)
                walk.stats.added_albums += 1
            _sync_album(walk, child)
            continue

        if not entry.is_file() or walk.is_derivative_file(entry.name):
            continue
        walk.stats.scanned += 1
        index = walk.stats.scanned - 1
        if walk.status.total_file_count:
            index = min(index, walk.status.total_file_count - 1)
        walk.status.update(
            SyncState.SYNCHRONIZING_FILES,
            current_file=str(entry.relative_to(walk.settings.media_root)),
            current_file_index=index,
        )

        media = known_media.pop(entry.name.lower(), None)
        if media is not None:
            if walk.regenerate_thumbnails or walk.regenerate_optimized:
                media.regenerate_thumbnail = walk.regenerate_thumbnails
                media.regenerate_optimized = walk.regenerate_optimized
                media.has_changes = True
                media.last_modified_by = walk.user
                save_asset(ctx, media)
            continue

        try:
            media = create_media_asset(ctx, album, entry, walk.user)
            save_asset(ctx, media)
        except (UnsupportedSourceError, ValidationError) as exc:
            walk.status.skip(str(entry), str(exc))
            walk.stats.skipped += 1
            logger.info("skipped %s: %s", entry, exc)
            continue
        walk.stats.added_media += 1

    # Whatever is left no longer exists on disk.
    for stale_album in known_albums.values():
        delete_from_gallery(ctx, stale_album)
        walk.stats.removed += 1
    for stale_media in known_media.values():
        delete_from_gallery(ctx, stale_media)
        walk.stats.removed += 1


def synchronize(
    ctx: GalleryContext,
    album: Album,
    sync_id: str,
    user: str = SYSTEM_USER,
    regenerate_thumbnails: bool = False,
    regenerate_optimized: bool = False,
) -> SyncStats:
    """Reconcile *album* and its descendants with the files on disk."""
    status = get_sync_status(album.gallery_id)
    status.begin(sync_id)
    settings = ctx.settings(album.gallery_id)
    walk = _Walk(
        ctx=ctx,
        settings=settings,
        status=status,
        stats=SyncStats(),
        user=user,
        regenerate_thumbnails=regenerate_thumbnails,
        regenerate_optimized=regenerate_optimized,
    )
    try:
        root = album_path(ctx, album)
        root.mkdir(parents=True, exist_ok=True)
        status.update(SyncState.SYNCHRONIZING_FILES, total_file_count=_count_files(walk, root))
        _sync_album(walk, album)
        status.update(SyncState.PERSISTING_TO_DATA_STORE)
        ctx.cache.purge_cache()
    except SynchronizationTerminatedError:
        status.finish(SyncState.ABORTED)
        ctx.cache.purge_cache()
        raise
    except Exception:
        status.finish(SyncState.ERROR)
        raise
    status.finish(SyncState.COMPLETE)
    logger.info(
        "synchronization %s finished: %d scanned, %d added, %d removed, %d skipped",
        sync_id,
        walk.stats.scanned,
        walk.stats.added_media + walk.stats.added_albums,
        walk.stats.removed,
        walk.stats.skipped,
    )
    return walk.stats
