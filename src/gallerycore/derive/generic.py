from __future__ import annotations

from gallerycore.context import GalleryContext, media_album_path, thumbnail_dir
from gallerycore.derive.base import jpeg_file_name, thumbnail_target
from gallerycore.derive.placeholder import placeholder_label, render_placeholder
from gallerycore.media.image_io import mime_category_for
from gallerycore.models import MediaAsset
from gallerycore.util.files import file_size_kb

EXTERNAL_FILE_NAME = "external"


class GenericThumbnailGenerator:
    """Placeholder thumbnail labelled with the file type; also the fallback for unreadable sources."""

    def is_required(self, media: MediaAsset) -> bool:
        return not media.thumbnail.exists() or media.regenerate_thumbnail

    def generate_and_save(self, ctx: GalleryContext, media: MediaAsset) -> bool:
        if not self.is_required(media):
            return False
        settings = ctx.settings(media.gallery_id)
        dest = thumbnail_target(ctx, media, settings, media.original.file_name or f"{EXTERNAL_FILE_NAME}.jpg")
        category = mime_category_for(media.original.file_name) if media.original.file_name else media.original.external_type
        width, height = render_placeholder(
            dest,
            placeholder_label(media.original.file_name, category),
            category,
            settings.max_thumbnail_length,
            settings.thumbnail_jpeg_quality,
        )
        record = media.thumbnail
        record.physical_path = dest
        record.file_name = dest.name
        record.width, record.height = width, height
        record.file_size_kb = file_size_kb(dest)
        return True


class ExternalThumbnailGenerator(GenericThumbnailGenerator):
    def generate_and_save(self, ctx: GalleryContext, media: MediaAsset) -> bool:
        if not self.is_required(media):
            return False
        if media.thumbnail.physical_path is None:
            settings = ctx.settings(media.gallery_id)
            target_dir = thumbnail_dir(settings, media_album_path(ctx, media))
            name = jpeg_file_name(target_dir, settings.thumbnail_prefix, f"{EXTERNAL_FILE_NAME}.jpg")
            media.thumbnail.physical_path = target_dir / name
        return super().generate_and_save(ctx, media)
