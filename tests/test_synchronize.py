from pathlib import Path

from PIL import Image
import pytest

from gallerycore import synchronize as sync_module
from gallerycore.config import AppConfig, EncoderConfig, GallerySettings
from gallerycore.context import GalleryContext
from gallerycore.errors import SynchronizationInProgressError, SynchronizationTerminatedError
from gallerycore.lifecycle import create_media_asset, load_album, load_children, load_root_album
from gallerycore.models import Album, MediaAsset
from gallerycore.service import GalleryService
from gallerycore.sync import SyncState, get_sync_status
from gallerycore.synchronize import synchronize

USER = "tester"


def _ctx(tmp_path: Path) -> GalleryContext:
    cfg = AppConfig(
        db_path=tmp_path / "gallery.sqlite3",
        encoder=EncoderConfig(tool_path=""),
        gallery=GallerySettings(media_root=tmp_path / "media"),
    )
    return GalleryService(cfg, user=USER).ctx


def _populate(media: Path) -> None:
    (media / "Trip").mkdir(parents=True)
    Image.new("RGB", (320, 240), (10, 120, 10)).save(media / "a.jpg", "JPEG")
    Image.new("RGB", (800, 600), (10, 10, 120)).save(media / "Trip" / "b.png", "PNG")
    (media / "Trip" / "notes.txt").write_text("packing list")
    # Left behind by an earlier install; never imported as media.
    Image.new("RGB", (10, 10)).save(media / "Trip" / "zThumb_old.jpg", "JPEG")


def _run(ctx: GalleryContext, sync_id: str, **kwargs) -> sync_module.SyncStats:
    return synchronize(ctx, load_root_album(ctx, 1, USER), sync_id, USER, **kwargs)


def test_first_run_imports_directories_and_files(tmp_path: Path) -> None:
    ctx = _ctx(tmp_path)
    load_root_album(ctx, 1, USER)
    _populate(tmp_path / "media")

    stats = _run(ctx, "first")

    assert (stats.added_albums, stats.added_media, stats.scanned, stats.skipped) == (1, 3, 3, 0)
    status = get_sync_status(1)
    assert status.state == SyncState.COMPLETE
    assert status.total_file_count == 3

    root = load_root_album(ctx, 1, USER)
    children = load_children(ctx, root)
    trip = next(c for c in children if isinstance(c, Album))
    assert trip.directory_name == "Trip"
    assert trip.rel_path == "Trip"
    trip_media = [c for c in load_children(ctx, load_album(ctx, trip.id)) if isinstance(c, MediaAsset)]
    assert len(trip_media) == 2
    assert (tmp_path / "media" / "Trip" / "zThumb_b.jpg").is_file()


def test_second_run_adds_nothing(tmp_path: Path) -> None:
    ctx = _ctx(tmp_path)
    load_root_album(ctx, 1, USER)
    _populate(tmp_path / "media")
    _run(ctx, "first")

    stats = _run(ctx, "second")

    assert (stats.added_albums, stats.added_media, stats.removed) == (0, 0, 0)
    assert stats.scanned == 3


def test_files_gone_from_disk_are_removed(tmp_path: Path) -> None:
    ctx = _ctx(tmp_path)
    load_root_album(ctx, 1, USER)
    _populate(tmp_path / "media")
    _run(ctx, "first")
    (tmp_path / "media" / "Trip" / "b.png").unlink()

    stats = _run(ctx, "second")

    assert stats.removed == 1
    assert not (tmp_path / "media" / "Trip" / "zThumb_b.jpg").exists()
    assert (tmp_path / "media" / "Trip" / "notes.txt").is_file()


def test_regenerate_recreates_missing_thumbnails(tmp_path: Path) -> None:
    ctx = _ctx(tmp_path)
    load_root_album(ctx, 1, USER)
    _populate(tmp_path / "media")
    _run(ctx, "first")
    thumb = tmp_path / "media" / "zThumb_a.jpg"
    thumb.unlink()

    _run(ctx, "second", regenerate_thumbnails=True)

    assert thumb.is_file()


def test_corrupt_file_is_skipped(tmp_path: Path) -> None:
    ctx = _ctx(tmp_path)
    load_root_album(ctx, 1, USER)
    media = tmp_path / "media"
    Image.new("RGB", (64, 64)).save(media / "good.jpg", "JPEG")
    (media / "bad.jpg").write_bytes(b"not a jpeg at all")

    stats = _run(ctx, "first")

    assert stats.skipped == 1
    assert stats.added_media == 1
    skipped = get_sync_status(1).skipped
    assert len(skipped) == 1
    assert skipped[0].path.endswith("bad.jpg")
    assert get_sync_status(1).state == SyncState.COMPLETE


def test_cancel_aborts_the_run(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    ctx = _ctx(tmp_path)
    load_root_album(ctx, 1, USER)
    media = tmp_path / "media"
    for name in ("a.jpg", "b.jpg", "c.jpg"):
        Image.new("RGB", (32, 32)).save(media / name, "JPEG")

    def _cancel_then_create(*args, **kwargs):
        get_sync_status(1).cancel("cancelled-run")
        return create_media_asset(*args, **kwargs)

    monkeypatch.setattr(sync_module, "create_media_asset", _cancel_then_create)

    with pytest.raises(SynchronizationTerminatedError):
        _run(ctx, "cancelled-run")

    status = get_sync_status(1)
    assert status.state == SyncState.ABORTED
    assert status.should_terminate is False
    assert len(ctx.repo.child_media_ids(load_root_album(ctx, 1, USER).id)) == 1


def test_concurrent_synchronization_is_rejected(tmp_path: Path) -> None:
    ctx = _ctx(tmp_path)
    load_root_album(ctx, 1, USER)
    get_sync_status(1).begin("someone-else")

    with pytest.raises(SynchronizationInProgressError):
        _run(ctx, "mine")

    assert get_sync_status(1).sync_id == "someone-else"
