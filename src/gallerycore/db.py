from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
import sqlite3
from typing import Iterator

from gallerycore.util.time import now_iso

SCHEMA_VERSION = 1

SETUP_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
  id INTEGER PRIMARY KEY CHECK (id = 1),
  version INTEGER NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS albums (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  gallery_id INTEGER NOT NULL,
  parent_id INTEGER REFERENCES albums(id) ON DELETE CASCADE,
  title TEXT NOT NULL DEFAULT '',
  directory_name TEXT NOT NULL DEFAULT '',
  rel_path TEXT NOT NULL DEFAULT '',
  thumbnail_media_id INTEGER NOT NULL DEFAULT 0,
  sequence INTEGER NOT NULL DEFAULT 0,
  is_private INTEGER NOT NULL DEFAULT 0,
  is_virtual INTEGER NOT NULL DEFAULT 0,
  sort_by_meta_name TEXT NOT NULL DEFAULT '',
  sort_ascending INTEGER NOT NULL DEFAULT 1,
  owned_by TEXT NOT NULL DEFAULT '',
  owner_role_name TEXT NOT NULL DEFAULT '',
  created_by TEXT NOT NULL,
  date_added TEXT NOT NULL,
  last_modified_by TEXT NOT NULL,
  date_modified TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_albums_parent ON albums(parent_id);
CREATE INDEX IF NOT EXISTS idx_albums_gallery ON albums(gallery_id);

CREATE TABLE IF NOT EXISTS media_objects (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  album_id INTEGER NOT NULL REFERENCES albums(id) ON DELETE CASCADE,
  kind TEXT NOT NULL,
  title TEXT NOT NULL DEFAULT '',
  sequence INTEGER NOT NULL DEFAULT 0,
  is_private INTEGER NOT NULL DEFAULT 0,
  created_by TEXT NOT NULL,
  date_added TEXT NOT NULL,
  last_modified_by TEXT NOT NULL,
  date_modified TEXT NOT NULL,
  thumb_file TEXT NOT NULL DEFAULT '',
  thumb_width INTEGER,
  thumb_height INTEGER,
  thumb_size_kb INTEGER NOT NULL DEFAULT 0,
  opt_file TEXT NOT NULL DEFAULT '',
  opt_width INTEGER,
  opt_height INTEGER,
  opt_size_kb INTEGER NOT NULL DEFAULT 0,
  orig_file TEXT NOT NULL DEFAULT '',
  orig_width INTEGER,
  orig_height INTEGER,
  orig_size_kb INTEGER NOT NULL DEFAULT 0,
  external_html_source TEXT NOT NULL DEFAULT '',
  external_type TEXT NOT NULL DEFAULT 'not_set',
  duration_seconds REAL
);
CREATE INDEX IF NOT EXISTS idx_media_album ON media_objects(album_id);

CREATE TABLE IF NOT EXISTS metadata (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  album_id INTEGER REFERENCES albums(id) ON DELETE CASCADE,
  media_id INTEGER REFERENCES media_objects(id) ON DELETE CASCADE,
  name TEXT NOT NULL,
  raw_value TEXT,
  value TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_metadata_media ON metadata(media_id);
CREATE INDEX IF NOT EXISTS idx_metadata_album ON metadata(album_id);
CREATE INDEX IF NOT EXISTS idx_metadata_name ON metadata(name);

CREATE TABLE IF NOT EXISTS media_queue (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  media_id INTEGER NOT NULL,
  conversion_type TEXT NOT NULL,
  rotation INTEGER NOT NULL DEFAULT 0,
  flip TEXT NOT NULL DEFAULT 'none',
  status TEXT NOT NULL,
  status_detail TEXT NOT NULL DEFAULT '',
  date_added TEXT NOT NULL,
  date_started TEXT,
  date_completed TEXT
);

CREATE TABLE IF NOT EXISTS events (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  severity TEXT NOT NULL,
  message TEXT NOT NULL,
  exc_type TEXT NOT NULL DEFAULT '',
  context TEXT NOT NULL DEFAULT '',
  data_json TEXT NOT NULL DEFAULT '{}',
  gallery_id INTEGER,
  created_at TEXT NOT NULL
);
"""


def _table_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type IN ('table','view') AND name = ?",
        (name,),
    ).fetchone()
    return row is not None


def _schema_version(conn: sqlite3.Connection) -> int:
    if not _table_exists(conn, "schema_version"):
        return 0
    row = conn.execute("SELECT version FROM schema_version WHERE id = 1").fetchone()
    return int(row["version"]) if row else 0


def _set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    conn.execute(
        """
        INSERT INTO schema_version(id, version, updated_at)
        VALUES(1, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
          version=excluded.version,
          updated_at=excluded.updated_at
        """,
        (version, now_iso()),
    )


class Database:
    def __init__(self, path: Path):
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        with self.connect() as conn:
            conn.executescript(SETUP_SQL)
            if _schema_version(conn) < SCHEMA_VERSION:
                _set_schema_version(conn, SCHEMA_VERSION)
