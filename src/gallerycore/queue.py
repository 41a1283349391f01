from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
import sqlite3
import threading
from typing import Iterable

from gallerycore.context import GalleryContext, media_album_path, optimized_dir, resolve_media_paths
from gallerycore.db import Database
from gallerycore.derive.base import major_type
from gallerycore.derive.registry import generator_for
from gallerycore.events import EventRecorder
from gallerycore.media.encoder import ROTATE_VIDEO_ARGS, EncoderInvocation
from gallerycore.media.encoder_output import parse_dimensions, parse_rotation
from gallerycore.models import ConversionType, DerivativeType, Flip, MediaAsset, QueueStatus, Rotation
from gallerycore.util.files import delete_file, file_size_kb, is_same_path, move_file_safely, validate_file_name
from gallerycore.util.time import now_iso

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class QueueItem:
    id: int
    media_id: int
    conversion_type: ConversionType
    status: QueueStatus = QueueStatus.WAITING
    rotation: Rotation = Rotation.NONE
    flip: Flip = Flip.NONE
    status_detail: str = ""
    date_added: str = ""
    date_started: str | None = None
    date_completed: str | None = None


def _item_from_row(row: sqlite3.Row) -> QueueItem:
    return QueueItem(
        id=int(row["id"]),
        media_id=int(row["media_id"]),
        conversion_type=ConversionType(row["conversion_type"]),
        status=QueueStatus(row["status"]),
        rotation=Rotation(int(row["rotation"])),
        flip=Flip(row["flip"]),
        status_detail=str(row["status_detail"]),
        date_added=str(row["date_added"]),
        date_started=row["date_started"],
        date_completed=row["date_completed"],
    )


class MediaQueue:
    """Video/audio conversions waiting for the external encoder, processed one at a time."""

    def __init__(self, db: Database | None, events: EventRecorder):
        self.db = db
        self.events = events
        self._lock = threading.Lock()
        self._items: dict[int, QueueItem] = {}
        self._next_id = 1
        self._current: QueueItem | None = None
        self._cancel = threading.Event()
        self._load()

    def _load(self) -> None:
        if self.db is None:
            return
        with self.db.connect() as conn:
            # Work interrupted by a previous process starts over.
            conn.execute(
                "UPDATE media_queue SET status = ?, date_started = NULL WHERE status = ?",
                (QueueStatus.WAITING.value, QueueStatus.PROCESSING.value),
            )
            rows = conn.execute("SELECT * FROM media_queue ORDER BY id").fetchall()
        for row in rows:
            item = _item_from_row(row)
            self._items[item.id] = item
            self._next_id = max(self._next_id, item.id + 1)

    def _persist(self, item: QueueItem) -> None:
        if self.db is None:
            return
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO media_queue(
                  id, media_id, conversion_type, rotation, flip, status, status_detail,
                  date_added, date_started, date_completed
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  status=excluded.status,
                  status_detail=excluded.status_detail,
                  date_started=excluded.date_started,
                  date_completed=excluded.date_completed
                """,
                (
                    item.id,
                    item.media_id,
                    item.conversion_type.value,
                    int(item.rotation),
                    item.flip.value,
                    item.status.value,
                    item.status_detail,
                    item.date_added,
                    item.date_started,
                    item.date_completed,
                ),
            )

    def _delete(self, item_ids: list[int]) -> None:
        if self.db is None or not item_ids:
            return
        placeholders = ",".join("?" for _ in item_ids)
        with self.db.connect() as conn:
            conn.execute(f"DELETE FROM media_queue WHERE id IN ({placeholders})", item_ids)

    def enqueue(
        self,
        media_id: int,
        conversion_type: ConversionType,
        rotation: Rotation = Rotation.NONE,
        flip: Flip = Flip.NONE,
    ) -> QueueItem:
        with self._lock:
            for item in self._items.values():
                if (
                    item.media_id == media_id
                    and item.conversion_type == conversion_type
                    and item.status == QueueStatus.WAITING
                ):
                    item.rotation, item.flip = rotation, flip
                    found = item
                    break
            else:
                found = QueueItem(
                    id=self._next_id,
                    media_id=media_id,
                    conversion_type=conversion_type,
                    rotation=rotation,
                    flip=flip,
                    date_added=now_iso(),
                )
                self._next_id += 1
                self._items[found.id] = found
        self._persist(found)
        logger.info("queued %s for media %s", conversion_type.value, media_id)
        return found

    def is_waiting(self, media_id: int, conversion_type: ConversionType | None = None) -> bool:
        with self._lock:
            return any(
                item.media_id == media_id
                and item.status in (QueueStatus.WAITING, QueueStatus.PROCESSING)
                and (conversion_type is None or item.conversion_type == conversion_type)
                for item in self._items.values()
            )

    def items(self, status: QueueStatus | None = None) -> list[QueueItem]:
        with self._lock:
            found = sorted(self._items.values(), key=lambda i: i.id)
        if status is None:
            return found
        return [i for i in found if i.status == status]

    def remove(self, media_ids: Iterable[int]) -> None:
        """Drop every queued item for *media_ids*, cancelling one that is running."""
        ids = set(media_ids)
        with self._lock:
            doomed = [i.id for i in self._items.values() if i.media_id in ids]
            for item_id in doomed:
                del self._items[item_id]
            if self._current is not None and self._current.media_id in ids:
                self._cancel.set()
        self._delete(doomed)

    def _next_waiting(self) -> QueueItem | None:
        with self._lock:
            waiting = [i for i in self._items.values() if i.status == QueueStatus.WAITING]
            if not waiting:
                return None
            item = min(waiting, key=lambda i: i.id)
            item.status = QueueStatus.PROCESSING
            item.date_started = now_iso()
            self._current = item
            self._cancel.clear()
            return item

    def process_next(self, ctx: GalleryContext) -> QueueItem | None:
        item = self._next_waiting()
        if item is None:
            return None
        self._persist(item)
        try:
            media = ctx.repo.find_media(item.media_id)
            if media is None:
                self._finish(item, QueueStatus.ERROR, "media asset no longer exists")
                return item
            resolve_media_paths(ctx, media)
            if item.conversion_type == ConversionType.ROTATE_VIDEO:
                ok, detail = self._rotate_video(ctx, media, item)
            else:
                ok, detail = self._create_optimized(ctx, media)
            if ok:
                ctx.repo.save_media(media)
            self._finish(item, QueueStatus.COMPLETE if ok else QueueStatus.ERROR, detail)
        finally:
            ctx.cache.remove_media_asset_from_cache(item.media_id)
            ctx.cache.remove_inflated_albums_from_cache()
            ctx.cache.remove_tags_from_cache()
            with self._lock:
                self._current = None
        return item

    def process_all(self, ctx: GalleryContext) -> list[QueueItem]:
        done: list[QueueItem] = []
        while True:
            item = self.process_next(ctx)
            if item is None:
                return done
            done.append(item)

    def _finish(self, item: QueueItem, status: QueueStatus, detail: str) -> None:
        item.status = status
        item.status_detail = detail
        item.date_completed = now_iso()
        if self._cancel.is_set():
            # Removed while running; nothing left to persist.
            return
        self._persist(item)
        if status == QueueStatus.ERROR:
            logger.warning("conversion %s for media %s failed: %s", item.conversion_type.value, item.media_id, detail)

    def _create_optimized(self, ctx: GalleryContext, media: MediaAsset) -> tuple[bool, str]:
        settings = ctx.settings(media.gallery_id)
        source = media.original.physical_path
        if source is None or not source.is_file():
            return False, "original file is missing"
        candidates = [
            s for s in settings.encoder_settings_for(source.suffix, major_type(media)) if s.args.strip()
        ]
        if not candidates:
            return False, f"no encoder setting applies to {source.suffix}"

        target_dir = optimized_dir(settings, media_album_path(ctx, media))
        current = media.optimized.physical_path
        if current is not None and not is_same_path(current, source):
            delete_file(current)
        rotation = parse_rotation(ctx.encoder.get_output(source, media.gallery_id)) or Rotation.NONE

        for setting in candidates:
            name = validate_file_name(target_dir, f"{settings.optimized_prefix}{source.stem}{setting.dest_ext}")
            dest = target_dir / name
            dest.parent.mkdir(parents=True, exist_ok=True)
            inv = EncoderInvocation(
                source_path=source,
                dest_path=dest,
                args_template=setting.args,
                timeout_ms=settings.encoder_timeout_ms,
                cancel=self._cancel,
                width=media.original.width,
                height=media.original.height,
                rotation=rotation,
                gallery_id=media.gallery_id,
            )
            output = ctx.encoder.execute(inv)
            if dest.is_file() and dest.stat().st_size > 0:
                dims = parse_dimensions(output)
                record = media.optimized
                record.physical_path = dest
                record.file_name = dest.name
                record.width = dims.output_width or media.original.width
                record.height = dims.output_height or media.original.height
                record.file_size_kb = file_size_kb(dest)
                return True, f"created {dest.name}"
            delete_file(dest)
            if self._cancel.is_set():
                return False, "cancelled"
        return False, "the encoder did not produce an output file"

    def _rotate_video(self, ctx: GalleryContext, media: MediaAsset, item: QueueItem) -> tuple[bool, str]:
        settings = ctx.settings(media.gallery_id)
        source = media.original.physical_path
        if source is None or not source.is_file():
            return False, "original file is missing"
        dest = source.parent / validate_file_name(source.parent, source.name)
        inv = EncoderInvocation(
            source_path=source,
            dest_path=dest,
            args_template=ROTATE_VIDEO_ARGS,
            timeout_ms=settings.encoder_timeout_ms,
            cancel=self._cancel,
            width=media.original.width,
            height=media.original.height,
            rotation=item.rotation,
            flip=item.flip,
            gallery_id=media.gallery_id,
        )
        output = ctx.encoder.execute(inv)
        if not dest.is_file() or dest.stat().st_size == 0:
            delete_file(dest)
            return False, "the encoder did not produce a rotated file"

        move_file_safely(dest, source)
        dims = parse_dimensions(output)
        original = media.original
        if dims.output_width and dims.output_height:
            original.width, original.height = dims.output_width, dims.output_height
        original.file_size_kb = file_size_kb(source)
        if is_same_path(media.optimized.physical_path, source):
            media.optimized.copy_from(original)
        media.regenerate_thumbnail = True
        generator_for(media.kind, DerivativeType.THUMBNAIL).generate_and_save(ctx, media)
        media.regenerate_thumbnail = False
        return True, f"rotated {Path(source).name}"
