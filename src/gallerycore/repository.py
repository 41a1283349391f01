from __future__ import annotations

from datetime import datetime
import sqlite3
from typing import Protocol

from gallerycore.db import Database
from gallerycore.models import (
    META_TAGS,
    Album,
    AssetKind,
    DerivativeRecord,
    InflationState,
    MediaAsset,
    MetaItem,
    MimeCategory,
)
from gallerycore.util.time import parse_iso, utcnow


class Repository(Protocol):
    """Narrow storage contract consumed by the asset lifecycle."""

    def find_album(self, album_id: int) -> Album | None: ...

    def find_root_album(self, gallery_id: int) -> Album | None: ...

    def find_media(self, media_id: int) -> MediaAsset | None: ...

    def child_album_ids(self, parent_id: int) -> list[int]: ...

    def child_media_ids(self, album_id: int) -> list[int]: ...

    def max_child_sequence(self, album_id: int) -> int: ...

    def save_album(self, album: Album) -> int: ...

    def save_media(self, media: MediaAsset) -> int: ...

    def delete_album(self, album_id: int) -> None: ...

    def delete_media(self, media_id: int) -> None: ...

    def tags(self, gallery_id: int) -> list[str]: ...


def _iso(value: datetime | None) -> str:
    return (value or utcnow()).isoformat(timespec="seconds")


def _record(row: sqlite3.Row, prefix: str, record: DerivativeRecord) -> None:
    record.file_name = str(row[f"{prefix}_file"] or "")
    record.width = row[f"{prefix}_width"]
    record.height = row[f"{prefix}_height"]
    record.file_size_kb = int(row[f"{prefix}_size_kb"] or 0)


def _album_from_row(row: sqlite3.Row) -> Album:
    return Album(
        id=int(row["id"]),
        gallery_id=int(row["gallery_id"]),
        parent_id=row["parent_id"],
        title=str(row["title"]),
        sequence=int(row["sequence"]),
        is_private=bool(row["is_private"]),
        created_by=str(row["created_by"]),
        date_added=parse_iso(row["date_added"]),
        last_modified_by=str(row["last_modified_by"]),
        date_modified=parse_iso(row["date_modified"]),
        directory_name=str(row["directory_name"]),
        rel_path=str(row["rel_path"]),
        thumbnail_media_id=int(row["thumbnail_media_id"]),
        is_virtual=bool(row["is_virtual"]),
        sort_by_meta_name=str(row["sort_by_meta_name"]),
        sort_ascending=bool(row["sort_ascending"]),
        owned_by=str(row["owned_by"]),
        owner_role_name=str(row["owner_role_name"]),
        inflation=InflationState.INFLATED,
    )


def _media_from_row(row: sqlite3.Row) -> MediaAsset:
    media = MediaAsset(
        id=int(row["id"]),
        gallery_id=int(row["gallery_id"]),
        parent_id=int(row["album_id"]),
        media_kind=AssetKind(row["kind"]),
        title=str(row["title"]),
        sequence=int(row["sequence"]),
        is_private=bool(row["is_private"]),
        created_by=str(row["created_by"]),
        date_added=parse_iso(row["date_added"]),
        last_modified_by=str(row["last_modified_by"]),
        date_modified=parse_iso(row["date_modified"]),
        duration_seconds=row["duration_seconds"],
        inflation=InflationState.INFLATED,
    )
    _record(row, "thumb", media.thumbnail)
    _record(row, "opt", media.optimized)
    _record(row, "orig", media.original)
    media.original.external_html_source = str(row["external_html_source"] or "")
    media.original.external_type = MimeCategory(row["external_type"] or MimeCategory.NOT_SET.value)
    return media


class SqliteRepository:
    def __init__(self, db: Database):
        self.db = db

    def _metadata(self, conn: sqlite3.Connection, column: str, owner_id: int) -> list[MetaItem]:
        rows = conn.execute(
            f"SELECT id, name, raw_value, value FROM metadata WHERE {column} = ? ORDER BY id",
            (owner_id,),
        ).fetchall()
        return [MetaItem(id=int(r["id"]), name=str(r["name"]), raw_value=r["raw_value"], value=str(r["value"])) for r in rows]

    def _save_metadata(self, conn: sqlite3.Connection, column: str, owner_id: int, items: list[MetaItem]) -> None:
        keep: list[int] = []
        for item in items:
            if item.id is None:
                cur = conn.execute(
                    f"INSERT INTO metadata({column}, name, raw_value, value) VALUES (?, ?, ?, ?)",
                    (owner_id, item.name, item.raw_value, item.value),
                )
                item.id = int(cur.lastrowid)
            elif item.has_changes:
                conn.execute(
                    "UPDATE metadata SET name = ?, raw_value = ?, value = ? WHERE id = ?",
                    (item.name, item.raw_value, item.value, item.id),
                )
            keep.append(item.id)
        if not keep:
            conn.execute(f"DELETE FROM metadata WHERE {column} = ?", (owner_id,))
            return
        placeholders = ",".join("?" for _ in keep)
        conn.execute(
            f"DELETE FROM metadata WHERE {column} = ? AND id NOT IN ({placeholders})",
            (owner_id, *keep),
        )

    def find_album(self, album_id: int) -> Album | None:
        with self.db.connect() as conn:
            row = conn.execute("SELECT * FROM albums WHERE id = ?", (album_id,)).fetchone()
            if row is None:
                return None
            album = _album_from_row(row)
            album.meta_items = self._metadata(conn, "album_id", album_id)
        return album

    def find_root_album(self, gallery_id: int) -> Album | None:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT id FROM albums WHERE gallery_id = ? AND parent_id IS NULL ORDER BY id LIMIT 1",
                (gallery_id,),
            ).fetchone()
        return self.find_album(int(row["id"])) if row else None

    def find_media(self, media_id: int) -> MediaAsset | None:
        with self.db.connect() as conn:
            row = conn.execute(
                """
                SELECT mo.*, a.gallery_id AS gallery_id FROM media_objects mo
                JOIN albums a ON a.id = mo.album_id
                WHERE mo.id = ?
                """,
                (media_id,),
            ).fetchone()
            if row is None:
                return None
            media = _media_from_row(row)
            media.meta_items = self._metadata(conn, "media_id", media_id)
        return media

    def child_album_ids(self, parent_id: int) -> list[int]:
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT id FROM albums WHERE parent_id = ? ORDER BY sequence, id", (parent_id,)
            ).fetchall()
        return [int(r["id"]) for r in rows]

    def child_media_ids(self, album_id: int) -> list[int]:
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT id FROM media_objects WHERE album_id = ? ORDER BY sequence, id", (album_id,)
            ).fetchall()
        return [int(r["id"]) for r in rows]

    def max_child_sequence(self, album_id: int) -> int:
        with self.db.connect() as conn:
            row = conn.execute(
                """
                SELECT MAX(seq) AS seq FROM (
                  SELECT MAX(sequence) AS seq FROM albums WHERE parent_id = ?
                  UNION ALL
                  SELECT MAX(sequence) AS seq FROM media_objects WHERE album_id = ?
                )
                """,
                (album_id, album_id),
            ).fetchone()
        return int(row["seq"]) if row and row["seq"] is not None else 0

    def save_album(self, album: Album) -> int:
        values = (
            album.gallery_id,
            album.parent_id,
            album.title,
            album.directory_name,
            album.rel_path,
            album.thumbnail_media_id,
            album.sequence or 0,
            int(album.is_private),
            int(album.is_virtual),
            album.sort_by_meta_name,
            int(album.sort_ascending),
            album.owned_by,
            album.owner_role_name,
            album.created_by,
            _iso(album.date_added),
            album.last_modified_by,
            _iso(album.date_modified),
        )
        with self.db.connect() as conn:
            if album.id is None:
                cur = conn.execute(
                    """
                    INSERT INTO albums(
                      gallery_id, parent_id, title, directory_name, rel_path, thumbnail_media_id,
                      sequence, is_private, is_virtual, sort_by_meta_name, sort_ascending,
                      owned_by, owner_role_name, created_by, date_added, last_modified_by, date_modified
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    values,
                )
                album.id = int(cur.lastrowid)
            else:
                conn.execute(
                    """
                    UPDATE albums SET
                      gallery_id = ?, parent_id = ?, title = ?, directory_name = ?, rel_path = ?,
                      thumbnail_media_id = ?, sequence = ?, is_private = ?, is_virtual = ?,
                      sort_by_meta_name = ?, sort_ascending = ?, owned_by = ?, owner_role_name = ?,
                      created_by = ?, date_added = ?, last_modified_by = ?, date_modified = ?
                    WHERE id = ?
                    """,
                    (*values, album.id),
                )
            self._save_metadata(conn, "album_id", album.id, album.meta_items)
        return album.id

    def save_media(self, media: MediaAsset) -> int:
        if media.parent_id is None:
            raise ValueError("media asset must belong to an album before it is saved")
        t, o, g = media.thumbnail, media.optimized, media.original
        values = (
            media.parent_id,
            media.kind.value,
            media.title,
            media.sequence or 0,
            int(media.is_private),
            media.created_by,
            _iso(media.date_added),
            media.last_modified_by,
            _iso(media.date_modified),
            t.file_name, t.width, t.height, t.file_size_kb,
            o.file_name, o.width, o.height, o.file_size_kb,
            g.file_name, g.width, g.height, g.file_size_kb,
            g.external_html_source,
            g.external_type.value,
            media.duration_seconds,
        )
        with self.db.connect() as conn:
            if media.id is None:
                cur = conn.execute(
                    """
                    INSERT INTO media_objects(
                      album_id, kind, title, sequence, is_private,
                      created_by, date_added, last_modified_by, date_modified,
                      thumb_file, thumb_width, thumb_height, thumb_size_kb,
                      opt_file, opt_width, opt_height, opt_size_kb,
                      orig_file, orig_width, orig_height, orig_size_kb,
                      external_html_source, external_type, duration_seconds
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    values,
                )
                media.id = int(cur.lastrowid)
            else:
                conn.execute(
                    """
                    UPDATE media_objects SET
                      album_id = ?, kind = ?, title = ?, sequence = ?, is_private = ?,
                      created_by = ?, date_added = ?, last_modified_by = ?, date_modified = ?,
                      thumb_file = ?, thumb_width = ?, thumb_height = ?, thumb_size_kb = ?,
                      opt_file = ?, opt_width = ?, opt_height = ?, opt_size_kb = ?,
                      orig_file = ?, orig_width = ?, orig_height = ?, orig_size_kb = ?,
                      external_html_source = ?, external_type = ?, duration_seconds = ?
                    WHERE id = ?
                    """,
                    (*values, media.id),
                )
            self._save_metadata(conn, "media_id", media.id, media.meta_items)
        return media.id

    def delete_album(self, album_id: int) -> None:
        with self.db.connect() as conn:
            conn.execute("DELETE FROM albums WHERE id = ?", (album_id,))

    def delete_media(self, media_id: int) -> None:
        with self.db.connect() as conn:
            conn.execute("DELETE FROM media_objects WHERE id = ?", (media_id,))

    def tags(self, gallery_id: int) -> list[str]:
        with self.db.connect() as conn:
            rows = conn.execute(
                """
                SELECT m.value FROM metadata m
                LEFT JOIN media_objects mo ON mo.id = m.media_id
                LEFT JOIN albums ma ON ma.id = mo.album_id
                LEFT JOIN albums a ON a.id = m.album_id
                WHERE m.name = ? AND COALESCE(ma.gallery_id, a.gallery_id) = ?
                """,
                (META_TAGS, gallery_id),
            ).fetchall()
        found: set[str] = set()
        for r in rows:
            for tag in str(r["value"]).split(","):
                tag = tag.strip()
                if tag:
                    found.add(tag)
        return sorted(found, key=str.lower)
