from __future__ import annotations

import logging
from pathlib import Path
import tempfile
import uuid

from gallerycore.context import GalleryContext
from gallerycore.derive.base import has_encoder_args, thumbnail_target
from gallerycore.derive.placeholder import placeholder_label, render_placeholder
from gallerycore.media.encoder_output import parse_duration
from gallerycore.media.resize import resize_to_jpeg
from gallerycore.models import ConversionType, MediaAsset, MimeCategory
from gallerycore.util.files import delete_file, file_size_kb

logger = logging.getLogger(__name__)

# Fallback frame position when the configured one lies past the end of a short clip.
SHORT_VIDEO_POSITION = 1.0


class VideoThumbnailGenerator:
    def is_required(self, media: MediaAsset) -> bool:
        return not media.thumbnail.exists() or media.regenerate_thumbnail or media.rotate_requested

    def generate_and_save(self, ctx: GalleryContext, media: MediaAsset) -> bool:
        if not self.is_required(media):
            return False
        settings = ctx.settings(media.gallery_id)
        dest = thumbnail_target(ctx, media, settings, media.original.file_name)
        record = media.thumbnail

        frame = self._grab_frame(ctx, media)
        if frame is not None:
            record.temp_path = frame
            try:
                width, height = resize_to_jpeg(
                    frame, dest, settings.max_thumbnail_length, settings.thumbnail_jpeg_quality, auto_enlarge=False
                )
            finally:
                delete_file(frame)
                record.temp_path = None
        else:
            label = placeholder_label(media.original.file_name, MimeCategory.VIDEO)
            width, height = render_placeholder(
                dest, label, MimeCategory.VIDEO, settings.max_thumbnail_length, settings.thumbnail_jpeg_quality
            )

        record.physical_path = dest
        record.file_name = dest.name
        record.width, record.height = width, height
        record.file_size_kb = file_size_kb(dest)
        return True

    def _grab_frame(self, ctx: GalleryContext, media: MediaAsset) -> Path | None:
        source = media.original.physical_path
        if not ctx.encoder.is_available or source is None or not source.is_file():
            return None
        settings = ctx.settings(media.gallery_id)
        frame = Path(tempfile.gettempdir()) / f"{uuid.uuid4()}.jpg"
        position = settings.video_thumbnail_position
        ctx.encoder.generate_thumbnail(source, frame, position, settings.encoder_timeout_ms, media.gallery_id)
        if _usable(frame):
            return frame

        duration = media.duration_seconds
        if duration is None:
            duration = parse_duration(ctx.encoder.get_output(source, media.gallery_id))
        if duration is not None and duration < position:
            logger.debug("video %s is %.1fs long, retrying frame grab at %.0fs", source.name, duration, SHORT_VIDEO_POSITION)
            ctx.encoder.generate_thumbnail(
                source, frame, SHORT_VIDEO_POSITION, settings.encoder_timeout_ms, media.gallery_id
            )
            if _usable(frame):
                return frame
        delete_file(frame)
        return None


def _usable(path: Path) -> bool:
    return path.is_file() and path.stat().st_size > 0


class ConvertedOptimizedGenerator:
    """Optimized derivative for video and audio; the work is handed to the conversion queue."""

    def is_required(self, ctx: GalleryContext, media: MediaAsset) -> bool:
        if media.is_new or media.id is None:
            return False
        if ctx.queue is not None and ctx.queue.is_waiting(media.id, ConversionType.CREATE_OPTIMIZED):
            return False
        optimized = media.optimized
        missing = not optimized.exists() or optimized.file_name == media.original.file_name
        return missing or media.regenerate_optimized

    def generate_and_save(self, ctx: GalleryContext, media: MediaAsset) -> bool:
        if not media.optimized.file_name and media.original.file_name:
            # Until a converted file exists the original is served.
            media.optimized.copy_from(media.original)
        if not self.is_required(ctx, media):
            return False
        if ctx.queue is None or media.id is None:
            return False
        if has_encoder_args(ctx.settings(media.gallery_id), media):
            ctx.queue.enqueue(media.id, ConversionType.CREATE_OPTIMIZED)
        return False


class VideoOriginalGenerator:
    def generate_and_save(self, ctx: GalleryContext, media: MediaAsset) -> bool:
        if media.is_new or media.id is None or not media.rotate_requested:
            return False
        if not media.original.exists() or ctx.queue is None:
            return False
        ctx.queue.enqueue(media.id, ConversionType.ROTATE_VIDEO, media.rotation, media.flip)
        return False
