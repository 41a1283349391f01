from __future__ import annotations

import getpass
from pathlib import Path
import shutil
from typing import Any
import uuid

from gallerycore.cache import CacheController, MediaCacheEntry
from gallerycore.config import AppConfig, SettingsStore
from gallerycore.context import GalleryContext, album_path
from gallerycore.db import Database
from gallerycore.errors import ValidationError
from gallerycore.events import EventRecorder
from gallerycore.lifecycle import (
    create_album,
    create_media_asset,
    delete_asset,
    get_album_entry,
    get_media_entry,
    get_tags,
    load_album,
    load_media,
    load_root_album,
    move,
    resolve_derivative_path,
    rotate,
    save_asset,
)
from gallerycore.media.encoder import ExternalEncoderRunner
from gallerycore.media.encoder_output import parse_dimensions, parse_duration, parse_rotation
from gallerycore.models import Album, DerivativeType, Flip, MediaAsset, Rotation
from gallerycore.output_models import (
    AssetOutput,
    CacheStatusOutput,
    DerivativeOutput,
    MetaOutput,
    QueueItemOutput,
    SkippedOutput,
    SyncOutput,
)
from gallerycore.queue import MediaQueue, QueueItem
from gallerycore.repository import SqliteRepository
from gallerycore.sync import get_sync_status
from gallerycore.synchronize import synchronize
from gallerycore.util.files import is_same_path, validate_file_name


def _iso(value: Any) -> str | None:
    return value.isoformat(timespec="seconds") if value is not None else None


def _album_output(album: Album, child_album_ids: list[int], child_media_ids: list[int]) -> dict[str, Any]:
    assert album.id is not None
    return AssetOutput(
        id=album.id,
        kind=album.kind.value,
        gallery_id=album.gallery_id,
        parent_id=album.parent_id,
        title=album.title,
        sequence=album.sequence or 0,
        path=str(album.path_on_disk) if album.path_on_disk else None,
        thumbnail_media_id=album.thumbnail_media_id,
        child_album_ids=child_album_ids,
        child_media_ids=child_media_ids,
        meta=[MetaOutput(name=m.name, value=m.value) for m in album.meta_items],
        date_added=_iso(album.date_added),
        date_modified=_iso(album.date_modified),
    ).model_dump()


def _media_output(media: MediaAsset) -> dict[str, Any]:
    assert media.id is not None
    return AssetOutput(
        id=media.id,
        kind=media.kind.value,
        gallery_id=media.gallery_id,
        parent_id=media.parent_id,
        title=media.title,
        sequence=media.sequence or 0,
        path=str(media.original.physical_path) if media.original.physical_path else None,
        derivatives=[
            DerivativeOutput(
                type=r.dtype.value,
                file_name=r.file_name,
                path=str(r.physical_path) if r.physical_path else None,
                width=r.width,
                height=r.height,
                size_kb=r.file_size_kb,
            )
            for r in (media.thumbnail, media.optimized, media.original)
        ],
        meta=[MetaOutput(name=m.name, value=m.value) for m in media.meta_items],
        date_added=_iso(media.date_added),
        date_modified=_iso(media.date_modified),
    ).model_dump()


def _entry_output(entry: MediaCacheEntry) -> dict[str, Any]:
    return AssetOutput(
        id=entry.id,
        kind=entry.kind.value,
        gallery_id=entry.gallery_id,
        parent_id=entry.parent_id,
        title=entry.title,
        sequence=entry.sequence,
        derivatives=[
            DerivativeOutput(
                type=d.dtype.value,
                file_name=d.file_name,
                width=d.width,
                height=d.height,
                size_kb=d.file_size_kb,
            )
            for d in entry.display
        ],
        meta=[MetaOutput(name=m.name, value=m.value) for m in entry.meta_items],
        date_added=_iso(entry.date_added),
        date_modified=_iso(entry.date_modified),
    ).model_dump()


def _queue_output(item: QueueItem) -> dict[str, Any]:
    return QueueItemOutput(
        id=item.id,
        media_id=item.media_id,
        conversion_type=item.conversion_type.value,
        status=item.status.value,
        status_detail=item.status_detail,
        date_added=item.date_added,
        date_completed=item.date_completed,
    ).model_dump()


class GalleryService:
    def __init__(self, config: AppConfig, user: str | None = None):
        self.config = config
        self.user = user or getpass.getuser()
        self.db = Database(config.db_path)
        self.db.initialize()
        events = EventRecorder(self.db)
        settings_store = SettingsStore(config)
        cache = CacheController(enabled=config.cache.enabled)
        cache.register_static_cache("gallery_settings", settings_store.clear)
        encoder = ExternalEncoderRunner(
            config.encoder.tool_path,
            events,
            resources_path=config.encoder.resources_path,
            probe_timeout_ms=config.encoder.probe_timeout_ms,
        )
        self.ctx = GalleryContext(
            config=config,
            repo=SqliteRepository(self.db),
            cache=cache,
            events=events,
            encoder=encoder,
            settings_store=settings_store,
        )
        self.ctx.queue = MediaQueue(self.db, events)

    def _album(self, album_id: int | None, gallery_id: int) -> Album:
        if album_id is None:
            return load_root_album(self.ctx, gallery_id, self.user)
        return load_album(self.ctx, album_id)

    def album_add(self, title: str, parent_id: int | None = None, gallery_id: int = 1) -> dict[str, Any]:
        parent = self._album(parent_id, gallery_id)
        album = create_album(self.ctx, parent, title, self.user)
        return _album_output(album, [], [])

    def album_list(self, album_id: int | None = None, gallery_id: int = 1) -> dict[str, Any]:
        album = self._album(album_id, gallery_id)
        assert album.id is not None
        entry = get_album_entry(self.ctx, album.id)
        return _album_output(album, sorted(entry.child_album_ids), sorted(entry.child_media_ids))

    def album_remove(self, album_id: int, keep_files: bool = False) -> dict[str, Any]:
        album = load_album(self.ctx, album_id)
        delete_asset(self.ctx, album, delete_from_filesystem=not keep_files)
        return {"removed": album_id, "kind": "album", "files_kept": keep_files}

    def album_move(self, album_id: int, dest_id: int) -> dict[str, Any]:
        album = load_album(self.ctx, album_id)
        dest = load_album(self.ctx, dest_id)
        move(self.ctx, album, dest, self.user)
        return _album_output(album, [], [])

    def media_add(
        self,
        file_path: str,
        album_id: int | None = None,
        title: str | None = None,
        gallery_id: int = 1,
    ) -> dict[str, Any]:
        album = self._album(album_id, gallery_id)
        source = Path(file_path).expanduser()
        if not source.is_file():
            raise ValidationError(f"file not found: {source}")
        album_dir = album_path(self.ctx, album)
        if is_same_path(source.parent, album_dir):
            target = source
        else:
            album_dir.mkdir(parents=True, exist_ok=True)
            target = album_dir / validate_file_name(album_dir, source.name)
            shutil.copy2(source, target)
        media = create_media_asset(self.ctx, album, target, self.user, title)
        save_asset(self.ctx, media)
        return _media_output(media)

    def media_get(self, media_id: int) -> dict[str, Any]:
        return _entry_output(get_media_entry(self.ctx, media_id))

    def media_set_meta(self, media_id: int, name: str, value: str) -> dict[str, Any]:
        """Set one metadata item; changing FileName renames the original on disk."""
        media = load_media(self.ctx, media_id)
        if not name.strip():
            raise ValidationError("a metadata name is required")
        media.set_meta(name.strip(), value)
        media.has_changes = True
        media.last_modified_by = self.user
        save_asset(self.ctx, media)
        return _media_output(media)

    def tags(self, gallery_id: int = 1) -> list[str]:
        return get_tags(self.ctx, gallery_id)

    def media_rotate(self, media_id: int, degrees: int, flip: str = "none") -> dict[str, Any]:
        media = load_media(self.ctx, media_id)
        try:
            rotation = Rotation(degrees % 360)
            flip_value = Flip(flip)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        rotate(self.ctx, media, rotation, flip_value, self.user)
        return _media_output(media)

    def media_remove(self, media_id: int, keep_original: bool = False) -> dict[str, Any]:
        media = load_media(self.ctx, media_id)
        delete_asset(self.ctx, media, delete_from_filesystem=not keep_original)
        return {"removed": media_id, "kind": media.kind.value, "files_kept": keep_original}

    def media_path(self, media_id: int, dtype: str = "optimized") -> dict[str, Any]:
        media = load_media(self.ctx, media_id)
        try:
            derivative = DerivativeType(dtype)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        path = resolve_derivative_path(self.ctx, media, derivative)
        return {"id": media_id, "type": derivative.value, "path": str(path) if path else None}

    def sync(
        self,
        album_id: int | None = None,
        gallery_id: int = 1,
        sync_id: str | None = None,
        regenerate_thumbnails: bool = False,
        regenerate_optimized: bool = False,
    ) -> dict[str, Any]:
        album = self._album(album_id, gallery_id)
        sid = sync_id or uuid.uuid4().hex
        stats = synchronize(
            self.ctx,
            album,
            sid,
            self.user,
            regenerate_thumbnails=regenerate_thumbnails,
            regenerate_optimized=regenerate_optimized,
        )
        status = get_sync_status(album.gallery_id)
        return SyncOutput(
            sync_id=sid,
            gallery_id=album.gallery_id,
            state=status.state.name.lower(),
            scanned=stats.scanned,
            added_albums=stats.added_albums,
            added_media=stats.added_media,
            removed=stats.removed,
            skipped=[SkippedOutput(path=s.path, reason=s.reason) for s in status.skipped],
        ).model_dump()

    def queue_run(self, max_items: int | None = None) -> list[dict[str, Any]]:
        assert self.ctx.queue is not None
        if max_items is None:
            return [_queue_output(item) for item in self.ctx.queue.process_all(self.ctx)]
        done: list[dict[str, Any]] = []
        while len(done) < max_items:
            item = self.ctx.queue.process_next(self.ctx)
            if item is None:
                break
            done.append(_queue_output(item))
        return done

    def queue_list(self) -> list[dict[str, Any]]:
        assert self.ctx.queue is not None
        return [_queue_output(item) for item in self.ctx.queue.items()]

    def cache_status(self) -> dict[str, Any]:
        return CacheStatusOutput(enabled=self.ctx.cache.enabled, counts=self.ctx.cache.stats()).model_dump()

    def cache_purge(self) -> dict[str, Any]:
        self.ctx.cache.purge_cache()
        return self.cache_status()

    def encoder_probe(self, file_path: str) -> dict[str, Any]:
        source = Path(file_path).expanduser()
        output = self.ctx.encoder.get_output(source)
        dims = parse_dimensions(output)
        rotation = parse_rotation(output)
        return {
            "tool_path": self.ctx.encoder.tool_path,
            "available": self.ctx.encoder.is_available,
            "width": dims.source_width,
            "height": dims.source_height,
            "duration_seconds": parse_duration(output),
            "rotation": int(rotation) if rotation is not None else None,
        }

    def recent_events(self, severity: str | None = None) -> list[dict[str, Any]]:
        return [
            {
                "severity": e.severity,
                "message": e.message,
                "type": e.exc_type,
                "context": e.context,
                "created_at": e.created_at,
            }
            for e in self.ctx.events.recent(severity)
        ]
