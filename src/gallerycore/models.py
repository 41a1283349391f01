from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from pathlib import Path

from gallerycore.errors import InvalidMediaObjectError
from gallerycore.util.files import is_same_path


class AssetKind(str, Enum):
    ALBUM = "album"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    GENERIC = "generic"
    EXTERNAL = "external"


class DerivativeType(str, Enum):
    THUMBNAIL = "thumbnail"
    OPTIMIZED = "optimized"
    ORIGINAL = "original"


class InflationState(str, Enum):
    NEW = "new"
    UNINFLATED = "uninflated"
    INFLATED = "inflated"


class MimeCategory(str, Enum):
    NOT_SET = "not_set"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    OTHER = "other"


class Rotation(IntEnum):
    NONE = 0
    ROTATE_90 = 90
    ROTATE_180 = 180
    ROTATE_270 = 270


class Flip(str, Enum):
    NONE = "none"
    # Mirror across the horizontal (x) axis: top and bottom swap.
    X = "x"
    # Mirror across the vertical (y) axis: left and right swap.
    Y = "y"


class ConversionType(str, Enum):
    CREATE_OPTIMIZED = "create_optimized"
    ROTATE_VIDEO = "rotate_video"


class QueueStatus(str, Enum):
    WAITING = "waiting"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


META_FILE_NAME = "FileName"
META_FILE_SIZE = "FileSizeKb"
META_DIMENSIONS = "Dimensions"
META_DATE_TAKEN = "DateTaken"
META_CAMERA_MODEL = "CameraModel"
META_LENS = "Lens"
META_TAGS = "Tags"
META_TITLE = "Title"


@dataclass(slots=True)
class MetaItem:
    name: str
    value: str
    raw_value: str | None = None
    id: int | None = None
    has_changes: bool = False

    def set_value(self, value: str) -> None:
        if value != self.value:
            self.value = value
            self.has_changes = True


@dataclass(slots=True)
class DerivativeRecord:
    dtype: DerivativeType
    width: int | None = None
    height: int | None = None
    file_name: str = ""
    physical_path: Path | None = None
    file_size_kb: int = 0
    mime_category: MimeCategory = MimeCategory.NOT_SET
    external_html_source: str = ""
    external_type: MimeCategory = MimeCategory.NOT_SET
    temp_path: Path | None = None

    def exists(self) -> bool:
        return self.physical_path is not None and self.physical_path.is_file()

    def assign_file(self, path: Path, allowed_dirs: list[Path], album_id: int | None = None) -> None:
        if not any(is_same_path(path.parent, d) for d in allowed_dirs):
            raise InvalidMediaObjectError(path, album_id, allowed_dirs)
        self.physical_path = path
        self.file_name = path.name

    def copy_from(self, other: DerivativeRecord) -> None:
        self.file_name = other.file_name
        self.physical_path = other.physical_path
        self.width = other.width
        self.height = other.height
        self.file_size_kb = other.file_size_kb

    def clear(self) -> None:
        self.file_name = ""
        self.physical_path = None
        self.width = None
        self.height = None
        self.file_size_kb = 0


@dataclass(slots=True, eq=False)
class Asset(ABC):
    """Common state of albums and media assets; only the two subclasses are instantiated."""

    id: int | None = None
    gallery_id: int = 1
    parent_id: int | None = None
    title: str = ""
    sequence: int | None = None
    is_private: bool = False
    is_writable: bool = True
    created_by: str = ""
    date_added: datetime | None = None
    last_modified_by: str = ""
    date_modified: datetime | None = None
    inflation: InflationState = InflationState.NEW
    has_changes: bool = False
    gallery_id_changed: bool = False
    regenerate_thumbnail: bool = False
    regenerate_optimized: bool = False
    meta_items: list[MetaItem] = field(default_factory=list)
    parent: Album | None = field(default=None, repr=False)

    @property
    @abstractmethod
    def kind(self) -> AssetKind: ...

    @property
    def is_new(self) -> bool:
        return self.id is None

    @property
    def is_inflated(self) -> bool:
        return self.inflation == InflationState.INFLATED

    def change_gallery(self, gallery_id: int) -> None:
        if gallery_id != self.gallery_id:
            self.gallery_id = gallery_id
            self.gallery_id_changed = True
            self.has_changes = True

    def meta(self, name: str) -> MetaItem | None:
        for item in self.meta_items:
            if item.name == name:
                return item
        return None

    def set_meta(self, name: str, value: str, raw_value: str | None = None) -> MetaItem:
        item = self.meta(name)
        if item is None:
            item = MetaItem(name=name, value=value, raw_value=raw_value, has_changes=True)
            self.meta_items.append(item)
        else:
            item.set_value(value)
        return item


@dataclass(slots=True, eq=False)
class Album(Asset):
    directory_name: str = ""
    thumbnail_media_id: int = 0
    is_virtual: bool = False
    sort_by_meta_name: str = ""
    sort_ascending: bool = True
    owned_by: str = ""
    owner_role_name: str = ""
    rel_path: str = ""
    path_on_disk: Path | None = None
    # None until the children have been loaded from storage.
    children: list[Asset] | None = field(default=None, repr=False)

    @property
    def kind(self) -> AssetKind:
        return AssetKind.ALBUM

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def child_albums(self) -> list[Album]:
        return [c for c in (self.children or []) if isinstance(c, Album)]

    def child_media(self) -> list[MediaAsset]:
        return [c for c in (self.children or []) if isinstance(c, MediaAsset)]

    def add_child(self, child: Asset) -> None:
        if self.children is None:
            self.children = []
        if child not in self.children:
            self.children.append(child)
        child.parent = self
        if self.id is not None:
            child.parent_id = self.id

    def remove_child(self, child: Asset) -> None:
        if self.children and child in self.children:
            self.children.remove(child)


@dataclass(slots=True, eq=False)
class MediaAsset(Asset):
    media_kind: AssetKind = AssetKind.IMAGE
    thumbnail: DerivativeRecord = field(default_factory=lambda: DerivativeRecord(DerivativeType.THUMBNAIL))
    optimized: DerivativeRecord = field(default_factory=lambda: DerivativeRecord(DerivativeType.OPTIMIZED))
    original: DerivativeRecord = field(default_factory=lambda: DerivativeRecord(DerivativeType.ORIGINAL))
    rotation: Rotation = Rotation.NONE
    flip: Flip = Flip.NONE
    duration_seconds: float | None = None

    @property
    def kind(self) -> AssetKind:
        return self.media_kind

    @property
    def rotate_requested(self) -> bool:
        return self.rotation != Rotation.NONE or self.flip != Flip.NONE

    def record(self, dtype: DerivativeType) -> DerivativeRecord:
        if dtype == DerivativeType.THUMBNAIL:
            return self.thumbnail
        if dtype == DerivativeType.OPTIMIZED:
            return self.optimized
        return self.original

    def request_rotation(self, rotation: Rotation, flip: Flip = Flip.NONE) -> None:
        self.rotation = rotation
        self.flip = flip
        if self.rotate_requested:
            self.has_changes = True

    def clear_rotation(self) -> None:
        self.rotation = Rotation.NONE
        self.flip = Flip.NONE
