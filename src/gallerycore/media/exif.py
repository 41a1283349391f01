from __future__ import annotations

import logging
from pathlib import Path

from PIL import ExifTags, Image, UnidentifiedImageError

from gallerycore.models import (
    META_CAMERA_MODEL,
    META_DATE_TAKEN,
    META_DIMENSIONS,
    META_FILE_NAME,
    META_FILE_SIZE,
    META_LENS,
    META_TITLE,
    MediaAsset,
    MetaItem,
    MimeCategory,
)

logger = logging.getLogger(__name__)

EXIF_TAGS = {v: k for k, v in ExifTags.TAGS.items()}


def extract_exif(path: Path) -> dict[str, str]:
    out: dict[str, str] = {}
    try:
        with Image.open(path) as img:
            exif = img.getexif()
    except (OSError, UnidentifiedImageError) as exc:
        logger.debug("no exif for %s: %s", path, exc)
        return out

    if not exif:
        return out

    # DateTimeOriginal and LensModel live in the Exif IFD; DateTime and Model in IFD0.
    ifd = exif.get_ifd(ExifTags.IFD.Exif)
    dt = ifd.get(EXIF_TAGS["DateTimeOriginal"]) or exif.get(EXIF_TAGS["DateTime"])
    model = exif.get(EXIF_TAGS["Model"])
    lens = ifd.get(EXIF_TAGS["LensModel"])
    title = exif.get(EXIF_TAGS["ImageDescription"])

    if dt:
        out[META_DATE_TAKEN] = str(dt)
    if model:
        out[META_CAMERA_MODEL] = str(model).strip("\x00 ")
    if lens:
        out[META_LENS] = str(lens).strip("\x00 ")
    if title:
        out[META_TITLE] = str(title).strip("\x00 ")
    return out


def extract_metadata(asset: MediaAsset) -> list[MetaItem]:
    """Build the metadata items for *asset* from its original file."""
    original = asset.original
    items: dict[str, str] = {}
    if original.file_name:
        items[META_FILE_NAME] = original.file_name
    if original.file_size_kb:
        items[META_FILE_SIZE] = f"{original.file_size_kb:,} KB"
    if original.width and original.height:
        items[META_DIMENSIONS] = f"{original.width} x {original.height}"
    path = original.physical_path
    if path is not None and path.is_file() and original.mime_category == MimeCategory.IMAGE:
        items.update(extract_exif(path))
    return [MetaItem(name=k, value=v, raw_value=v) for k, v in items.items()]
