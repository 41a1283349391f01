from __future__ import annotations

from pathlib import Path
from typing import Protocol

from gallerycore.config import GallerySettings
from gallerycore.context import GalleryContext, media_album_path, optimized_dir, thumbnail_dir
from gallerycore.media.image_io import mime_type_for
from gallerycore.models import MediaAsset
from gallerycore.util.files import validate_file_name


class DerivativeGenerator(Protocol):
    def generate_and_save(self, ctx: GalleryContext, media: MediaAsset) -> bool:
        """Create the derivative if required and record it on *media*; True when a file was written."""
        ...


class NullGenerator:
    def generate_and_save(self, ctx: GalleryContext, media: MediaAsset) -> bool:
        return False


def jpeg_file_name(dir_path: Path, prefix: str, original_name: str) -> str:
    path = Path(original_name)
    ext = ".jpeg" if path.suffix.lower() == ".jpeg" else ".jpg"
    return validate_file_name(dir_path, f"{prefix}{path.stem}{ext}")


def thumbnail_target(ctx: GalleryContext, media: MediaAsset, settings: GallerySettings, base_name: str) -> Path:
    if media.thumbnail.physical_path is not None:
        return media.thumbnail.physical_path
    target_dir = thumbnail_dir(settings, media_album_path(ctx, media))
    return target_dir / jpeg_file_name(target_dir, settings.thumbnail_prefix, base_name)


def optimized_target(ctx: GalleryContext, media: MediaAsset, settings: GallerySettings) -> Path:
    current = media.optimized.physical_path
    # A record copied from the original shares its path; writing there would clobber the source.
    if current is not None and current != media.original.physical_path:
        return current
    target_dir = optimized_dir(settings, media_album_path(ctx, media))
    return target_dir / jpeg_file_name(target_dir, settings.optimized_prefix, media.original.file_name)


def major_type(media: MediaAsset) -> str:
    return mime_type_for(media.original.file_name).split("/", 1)[0]


def has_encoder_args(settings: GallerySettings, media: MediaAsset) -> bool:
    found = settings.encoder_settings_for(Path(media.original.file_name).suffix, major_type(media))
    return bool(found) and bool(found[0].args.strip())
