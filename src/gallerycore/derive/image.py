from __future__ import annotations

import logging

from gallerycore.context import GalleryContext
from gallerycore.derive.base import optimized_target, thumbnail_target
from gallerycore.errors import BusinessError
from gallerycore.media.image_io import is_jpeg
from gallerycore.media.resize import resize_to_jpeg, rotate_file
from gallerycore.models import MediaAsset
from gallerycore.util.files import file_size_kb

logger = logging.getLogger(__name__)


class ImageThumbnailGenerator:
    def is_required(self, media: MediaAsset) -> bool:
        return not media.thumbnail.exists() or media.regenerate_thumbnail or media.rotate_requested

    def generate_and_save(self, ctx: GalleryContext, media: MediaAsset) -> bool:
        if not self.is_required(media):
            return False
        settings = ctx.settings(media.gallery_id)
        source = media.original.physical_path
        if source is None:
            return False
        dest = thumbnail_target(ctx, media, settings, media.original.file_name)
        width, height = resize_to_jpeg(source, dest, settings.max_thumbnail_length, settings.thumbnail_jpeg_quality)
        record = media.thumbnail
        record.physical_path = dest
        record.file_name = dest.name
        record.width, record.height = width, height
        record.file_size_kb = file_size_kb(dest)
        logger.debug("thumbnail %s written for %s", dest.name, source.name)
        return True


class ImageOptimizedGenerator:
    def exceeds_trigger(self, ctx: GalleryContext, media: MediaAsset) -> bool:
        settings = ctx.settings(media.gallery_id)
        original = media.original
        return (
            original.file_size_kb > settings.optimized_trigger_size_kb
            or (original.width or 0) > settings.max_optimized_length
            or (original.height or 0) > settings.max_optimized_length
        )

    def is_required(self, ctx: GalleryContext, media: MediaAsset) -> bool:
        wanted = not media.optimized.exists() or media.regenerate_optimized or media.rotate_requested
        wrong_format = not is_jpeg(media.original.file_name)
        return wanted and (self.exceeds_trigger(ctx, media) or wrong_format)

    def generate_and_save(self, ctx: GalleryContext, media: MediaAsset) -> bool:
        if not self.is_required(ctx, media):
            if media.rotate_requested or (media.is_new and not media.optimized.file_name):
                # Small JPEGs are served as-is; the optimized record points at the original.
                media.optimized.copy_from(media.original)
            return False

        settings = ctx.settings(media.gallery_id)
        source = media.original.physical_path
        if source is None:
            return False
        dest = optimized_target(ctx, media, settings)
        width, height = resize_to_jpeg(source, dest, settings.max_optimized_length, settings.optimized_jpeg_quality)
        record = media.optimized
        record.physical_path = dest
        record.file_name = dest.name
        record.width, record.height = width, height
        record.file_size_kb = file_size_kb(dest)
        return True


class ImageOriginalGenerator:
    def generate_and_save(self, ctx: GalleryContext, media: MediaAsset) -> bool:
        if media.is_new or not media.rotate_requested:
            return False
        original = media.original
        path = original.physical_path
        if path is None or not path.is_file():
            raise BusinessError(f"Cannot rotate image because no file exists at {path}")
        settings = ctx.settings(media.gallery_id)
        width, height = rotate_file(path, media.rotation, media.flip, settings.original_jpeg_quality)
        original.width, original.height = width, height
        original.file_size_kb = file_size_kb(path)
        return True
