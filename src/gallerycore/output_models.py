from __future__ import annotations

from pydantic import BaseModel


class DerivativeOutput(BaseModel):
    type: str
    file_name: str = ""
    path: str | None = None
    width: int | None = None
    height: int | None = None
    size_kb: int = 0


class MetaOutput(BaseModel):
    name: str
    value: str


class AssetOutput(BaseModel):
    id: int
    kind: str
    gallery_id: int
    parent_id: int | None = None
    title: str = ""
    sequence: int = 0
    path: str | None = None
    thumbnail_media_id: int | None = None
    child_album_ids: list[int] = []
    child_media_ids: list[int] = []
    derivatives: list[DerivativeOutput] = []
    meta: list[MetaOutput] = []
    date_added: str | None = None
    date_modified: str | None = None


class CacheStatusOutput(BaseModel):
    enabled: bool
    counts: dict[str, int] = {}


class SkippedOutput(BaseModel):
    path: str
    reason: str


class SyncOutput(BaseModel):
    sync_id: str
    gallery_id: int
    state: str
    scanned: int = 0
    added_albums: int = 0
    added_media: int = 0
    removed: int = 0
    skipped: list[SkippedOutput] = []


class QueueItemOutput(BaseModel):
    id: int
    media_id: int
    conversion_type: str
    status: str
    status_detail: str = ""
    date_added: str = ""
    date_completed: str | None = None
