from __future__ import annotations

import mimetypes
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from gallerycore.errors import UnsupportedSourceError
from gallerycore.models import AssetKind, MimeCategory

JPEG_EXTENSIONS = {".jpg", ".jpeg"}

# Formats the stdlib table misses or maps inconsistently across platforms.
_EXTRA_TYPES = {
    ".heic": "image/heic",
    ".webp": "image/webp",
    ".m4a": "audio/mp4",
    ".flv": "video/x-flv",
    ".mkv": "video/x-matroska",
    ".mts": "video/mp2t",
    ".wmv": "video/x-ms-wmv",
}


def mime_type_for(path: Path | str) -> str:
    ext = Path(path).suffix.lower()
    if ext in _EXTRA_TYPES:
        return _EXTRA_TYPES[ext]
    guessed, _ = mimetypes.guess_type(f"file{ext}")
    return guessed or "application/octet-stream"


def mime_category_for(path: Path | str) -> MimeCategory:
    major = mime_type_for(path).split("/", 1)[0]
    if major == "image":
        return MimeCategory.IMAGE
    if major == "video":
        return MimeCategory.VIDEO
    if major == "audio":
        return MimeCategory.AUDIO
    return MimeCategory.OTHER


def kind_for_path(path: Path | str) -> AssetKind:
    category = mime_category_for(path)
    if category == MimeCategory.IMAGE:
        return AssetKind.IMAGE
    if category == MimeCategory.VIDEO:
        return AssetKind.VIDEO
    if category == MimeCategory.AUDIO:
        return AssetKind.AUDIO
    return AssetKind.GENERIC


def is_jpeg(path: Path | str) -> bool:
    return Path(path).suffix.lower() in JPEG_EXTENSIONS


def read_image_size(path: Path) -> tuple[int, int]:
    """Read width/height from the image header without decoding pixels."""
    try:
        with Image.open(path) as img:
            return img.size
    except (UnidentifiedImageError, Image.DecompressionBombError) as exc:
        raise UnsupportedSourceError(path, str(exc), exc) from exc
    except MemoryError as exc:
        raise UnsupportedSourceError(path, "out of memory", exc) from exc
