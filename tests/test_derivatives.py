from pathlib import Path

from PIL import Image

from gallerycore.config import AppConfig, EncoderConfig, GallerySettings
from gallerycore.context import GalleryContext, album_path
from gallerycore.derive.registry import generator_for
from gallerycore.lifecycle import (
    create_album,
    create_external_asset,
    create_media_asset,
    load_root_album,
    rotate,
    save_asset,
)
from gallerycore.models import Album, AssetKind, DerivativeType, Flip, MediaAsset, MimeCategory, Rotation
from gallerycore.service import GalleryService

USER = "tester"


def _cfg(tmp_path: Path, **gallery) -> AppConfig:
    return AppConfig(
        db_path=tmp_path / "gallery.sqlite3",
        encoder=EncoderConfig(tool_path=""),
        gallery=GallerySettings(media_root=tmp_path / "media", **gallery),
    )


def _ctx(tmp_path: Path, **gallery) -> GalleryContext:
    return GalleryService(_cfg(tmp_path, **gallery), user=USER).ctx


def _add_image(ctx: GalleryContext, album: Album, name: str, size=(320, 240), fmt="JPEG") -> MediaAsset:
    path = album_path(ctx, album) / name
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, (200, 40, 40)).save(path, fmt)
    media = create_media_asset(ctx, album, path, USER)
    save_asset(ctx, media)
    return media


def test_small_jpeg_is_served_as_its_own_optimized_copy(tmp_path: Path) -> None:
    ctx = _ctx(tmp_path)
    root = load_root_album(ctx, 1, USER)

    media = _add_image(ctx, root, "small.jpg")

    assert media.id is not None
    assert media.optimized.file_name == "small.jpg"
    assert media.optimized.physical_path == media.original.physical_path
    assert media.thumbnail.file_name == "zThumb_small.jpg"
    assert media.thumbnail.exists()
    assert media.thumbnail.width == 115
    assert (media.original.width, media.original.height) == (320, 240)
    assert root.thumbnail_media_id == 0


def test_generate_and_save_is_idempotent(tmp_path: Path) -> None:
    ctx = _ctx(tmp_path)
    root = load_root_album(ctx, 1, USER)
    media = _add_image(ctx, root, "small.jpg")
    thumb_mtime = media.thumbnail.physical_path.stat().st_mtime_ns

    assert generator_for(AssetKind.IMAGE, DerivativeType.THUMBNAIL).generate_and_save(ctx, media) is False
    assert generator_for(AssetKind.IMAGE, DerivativeType.OPTIMIZED).generate_and_save(ctx, media) is False
    assert generator_for(AssetKind.IMAGE, DerivativeType.ORIGINAL).generate_and_save(ctx, media) is False
    assert media.thumbnail.physical_path.stat().st_mtime_ns == thumb_mtime
    assert media.optimized.file_name == "small.jpg"


def test_large_png_gets_jpeg_optimized_copy(tmp_path: Path) -> None:
    ctx = _ctx(tmp_path)
    root = load_root_album(ctx, 1, USER)

    media = _add_image(ctx, root, "big.png", size=(1600, 1200), fmt="PNG")

    assert media.optimized.file_name == "zOpt_big.jpg"
    assert abs(media.optimized.width - 640) <= 1
    assert media.thumbnail.file_name == "zThumb_big.jpg"
    with Image.open(media.optimized.physical_path) as img:
        assert img.format == "JPEG"
    assert media.original.physical_path.is_file()


def test_jpeg_extension_is_preserved(tmp_path: Path) -> None:
    ctx = _ctx(tmp_path)
    root = load_root_album(ctx, 1, USER)

    media = _add_image(ctx, root, "wide.jpeg", size=(1600, 1200))

    assert media.optimized.file_name == "zOpt_wide.jpeg"
    assert media.thumbnail.file_name == "zThumb_wide.jpeg"


def test_derivatives_go_to_alternate_roots(tmp_path: Path) -> None:
    thumbs = tmp_path / "thumbs"
    optimized = tmp_path / "opt"
    ctx = _ctx(tmp_path, thumbnail_root=thumbs, optimized_root=optimized)
    root = load_root_album(ctx, 1, USER)
    trip = create_album(ctx, root, "Trip", USER)

    media = _add_image(ctx, trip, "big.png", size=(1600, 1200), fmt="PNG")

    assert (thumbs / "Trip").is_dir()
    assert media.thumbnail.physical_path == thumbs / "Trip" / "zThumb_big.jpg"
    assert media.optimized.physical_path == optimized / "Trip" / "zOpt_big.jpg"
    assert media.thumbnail.exists()
    assert media.optimized.exists()


def test_rotate_rewrites_original_and_derivatives(tmp_path: Path) -> None:
    ctx = _ctx(tmp_path)
    root = load_root_album(ctx, 1, USER)
    media = _add_image(ctx, root, "big.png", size=(1600, 1200), fmt="PNG")
    optimized_path = media.optimized.physical_path

    rotate(ctx, media, Rotation.ROTATE_90, Flip.NONE, USER)

    assert (media.original.width, media.original.height) == (1200, 1600)
    with Image.open(media.original.physical_path) as img:
        assert img.size == (1200, 1600)
        assert img.format == "PNG"
    assert media.optimized.physical_path == optimized_path
    assert abs(media.optimized.height - 640) <= 1
    assert abs(media.thumbnail.height - 115) <= 1
    assert media.rotation == Rotation.NONE
    assert media.has_changes is False


def test_unreadable_source_falls_back_to_placeholder_thumbnail(tmp_path: Path) -> None:
    ctx = _ctx(tmp_path)
    root = load_root_album(ctx, 1, USER)
    path = album_path(ctx, root) / "broken.jpg"
    Image.new("RGB", (50, 50)).save(path, "JPEG")
    media = create_media_asset(ctx, root, path, USER)
    path.write_bytes(b"no longer an image")

    save_asset(ctx, media)

    assert media.id is not None
    assert media.thumbnail.file_name == "zThumb_broken.jpg"
    assert media.thumbnail.exists()
    assert media.optimized.file_name == ""
    assert ctx.events.recent("error")[-1].exc_type == "UnsupportedSourceError"


def test_generic_file_gets_placeholder_and_no_optimized(tmp_path: Path) -> None:
    ctx = _ctx(tmp_path)
    root = load_root_album(ctx, 1, USER)
    path = album_path(ctx, root) / "notes.txt"
    path.write_text("hello")

    media = create_media_asset(ctx, root, path, USER)
    save_asset(ctx, media)

    assert media.kind == AssetKind.GENERIC
    assert media.thumbnail.file_name == "zThumb_notes.jpg"
    assert media.thumbnail.exists()
    assert media.optimized.file_name == ""


def test_external_asset_gets_placeholder_thumbnail(tmp_path: Path) -> None:
    ctx = _ctx(tmp_path)
    root = load_root_album(ctx, 1, USER)

    media = create_external_asset(ctx, root, "<iframe src='x'></iframe>", MimeCategory.VIDEO, USER, "clip")

    assert media.kind == AssetKind.EXTERNAL
    assert media.thumbnail.file_name == "zThumb_external.jpg"
    assert media.thumbnail.exists()
    assert media.original.external_html_source.startswith("<iframe")
