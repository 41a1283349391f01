import json
from pathlib import Path

from PIL import Image
import pytest
from typer.testing import CliRunner
import yaml

from gallerycore.cli import app
from gallerycore.config import AppConfig, EncoderConfig, GallerySettings
from gallerycore.errors import ValidationError
from gallerycore.service import GalleryService


def _service(tmp_path: Path) -> GalleryService:
    cfg = AppConfig(
        db_path=tmp_path / "gallery.sqlite3",
        encoder=EncoderConfig(tool_path=""),
        gallery=GallerySettings(media_root=tmp_path / "media"),
    )
    return GalleryService(cfg, user="tester")


def _image(path: Path, size=(400, 300)) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, (90, 90, 200)).save(path, "JPEG")
    return path


def test_album_and_media_flow(tmp_path: Path) -> None:
    svc = _service(tmp_path)
    pets = svc.album_add("Pets")
    assert pets["title"] == "Pets"
    assert (tmp_path / "media" / "Pets").is_dir()

    added = svc.media_add(str(_image(tmp_path / "outside" / "cat.jpg")), album_id=pets["id"])

    assert (tmp_path / "media" / "Pets" / "cat.jpg").is_file()
    assert (tmp_path / "outside" / "cat.jpg").is_file()
    listing = svc.album_list(pets["id"])
    assert listing["child_media_ids"] == [added["id"]]
    assert listing["thumbnail_media_id"] == added["id"]
    types = {d["type"]: d for d in added["derivatives"]}
    assert types["thumbnail"]["file_name"] == "zThumb_cat.jpg"
    assert types["original"]["width"] == 400


def test_media_path_regenerates_missing_thumbnail(tmp_path: Path) -> None:
    svc = _service(tmp_path)
    added = svc.media_add(str(_image(tmp_path / "outside" / "cat.jpg")))
    first = svc.media_path(added["id"], "thumbnail")
    assert first["path"].endswith("zThumb_cat.jpg")
    Path(first["path"]).unlink()

    again = svc.media_path(added["id"], "thumbnail")

    assert again["path"] == first["path"]
    assert Path(again["path"]).is_file()


def test_bad_derivative_type_is_rejected(tmp_path: Path) -> None:
    svc = _service(tmp_path)
    added = svc.media_add(str(_image(tmp_path / "outside" / "cat.jpg")))

    with pytest.raises(ValidationError):
        svc.media_path(added["id"], "poster")
    with pytest.raises(ValidationError):
        svc.media_rotate(added["id"], 45)


def test_cache_purge_empties_every_projection(tmp_path: Path) -> None:
    svc = _service(tmp_path)
    added = svc.media_add(str(_image(tmp_path / "outside" / "cat.jpg")))
    svc.album_list()
    svc.media_get(added["id"])

    status = svc.cache_purge()

    assert status["enabled"] is True
    assert set(status["counts"].values()) == {0}


def test_media_remove_deletes_files(tmp_path: Path) -> None:
    svc = _service(tmp_path)
    added = svc.media_add(str(_image(tmp_path / "outside" / "cat.jpg")))

    result = svc.media_remove(added["id"])

    assert result["removed"] == added["id"]
    assert not (tmp_path / "media" / "cat.jpg").exists()
    assert not (tmp_path / "media" / "zThumb_cat.jpg").exists()
    assert svc.album_list()["child_media_ids"] == []


def test_sync_reports_counts(tmp_path: Path) -> None:
    svc = _service(tmp_path)
    svc.album_list()
    _image(tmp_path / "media" / "Dogs" / "rex.jpg")

    result = svc.sync(sync_id="nightly")

    assert result["state"] == "complete"
    assert (result["added_albums"], result["added_media"], result["scanned"]) == (1, 1, 1)
    assert result["skipped"] == []


def _write_config(tmp_path: Path) -> Path:
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        yaml.safe_dump(
            {
                "db_path": str(tmp_path / "cli.sqlite3"),
                "encoder": {"tool_path": ""},
                "gallery": {"media_root": str(tmp_path / "media")},
            }
        )
    )
    return cfg


def test_cli_album_add_emits_json(tmp_path: Path) -> None:
    cfg = _write_config(tmp_path)
    runner = CliRunner()

    result = runner.invoke(app, ["--config", str(cfg), "album", "add", "Trips", "--json"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["title"] == "Trips"
    assert (tmp_path / "media" / "Trips").is_dir()


def test_cli_reports_gallery_errors(tmp_path: Path) -> None:
    cfg = _write_config(tmp_path)
    runner = CliRunner()

    result = runner.invoke(app, ["--config", str(cfg), "album", "rm", "999"])

    assert result.exit_code == 1
    assert "does not exist" in result.output


def test_media_get_is_served_from_projection_cache(tmp_path: Path) -> None:
    svc = _service(tmp_path)
    added = svc.media_add(str(_image(tmp_path / "outside" / "cat.jpg")))

    first = svc.media_get(added["id"])

    assert svc.cache_status()["counts"]["media_assets"] == 1
    assert svc.media_get(added["id"]) == first
    assert [d["file_name"] for d in first["derivatives"]] == ["zThumb_cat.jpg", "cat.jpg", "cat.jpg"]


def test_tags_follow_metadata_edits(tmp_path: Path) -> None:
    svc = _service(tmp_path)
    cat = svc.media_add(str(_image(tmp_path / "outside" / "cat.jpg")))
    dog = svc.media_add(str(_image(tmp_path / "outside" / "dog.jpg")))
    assert svc.tags() == []

    svc.media_set_meta(cat["id"], "Tags", "pet, cat")
    svc.media_set_meta(dog["id"], "Tags", "pet,dog")

    assert svc.tags() == ["cat", "dog", "pet"]
    meta = {m["name"]: m["value"] for m in svc.media_get(cat["id"])["meta"]}
    assert meta["Tags"] == "pet, cat"


def test_file_name_metadata_renames_original(tmp_path: Path) -> None:
    svc = _service(tmp_path)
    added = svc.media_add(str(_image(tmp_path / "outside" / "cat.jpg")))

    row = svc.media_set_meta(added["id"], "FileName", "kitten.png")

    assert not (tmp_path / "media" / "cat.jpg").exists()
    assert (tmp_path / "media" / "kitten.jpg").is_file()
    original = next(d for d in row["derivatives"] if d["type"] == "original")
    assert original["file_name"] == "kitten.jpg"
    assert svc.media_path(added["id"], "original")["path"].endswith("kitten.jpg")


def test_queue_run_with_nothing_waiting(tmp_path: Path) -> None:
    svc = _service(tmp_path)

    assert svc.queue_run() == []
    assert svc.queue_list() == []


def test_cli_lists_recorded_events(tmp_path: Path) -> None:
    cfg = _write_config(tmp_path)
    runner = CliRunner()

    result = runner.invoke(app, ["--config", str(cfg), "encoder", "probe", str(tmp_path / "clip.mp4"), "--json"])
    assert result.exit_code == 0, result.output

    result = runner.invoke(app, ["--config", str(cfg), "events", "--severity", "error", "--json"])

    assert result.exit_code == 0, result.output
    rows = json.loads(result.stdout)
    assert rows[-1]["type"] == "ExternalToolError"
