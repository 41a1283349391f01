from pathlib import Path

import pytest

from gallerycore.errors import BusinessError, ValidationError
from gallerycore.util.files import (
    DEFAULT_DIRECTORY_NAME,
    delete_directory_contents,
    file_size_kb,
    map_to_alternate_directory,
    move_file_safely,
    validate_directory_name,
    validate_file_name,
)


def test_file_name_collisions_get_counter_suffix(tmp_path: Path) -> None:
    assert validate_file_name(tmp_path, "photo.jpg") == "photo.jpg"
    (tmp_path / "photo.jpg").write_bytes(b"x")
    assert validate_file_name(tmp_path, "photo.jpg") == "photo(1).jpg"
    (tmp_path / "photo(1).jpg").write_bytes(b"x")
    assert validate_file_name(tmp_path, "photo.jpg") == "photo(2).jpg"


def test_file_name_strips_invalid_characters(tmp_path: Path) -> None:
    assert validate_file_name(tmp_path, 'a<b>:c?.jpg') == "abc.jpg"


def test_file_name_requires_extension(tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        validate_file_name(tmp_path, "README")
    with pytest.raises(ValidationError):
        validate_file_name(tmp_path, "")


def test_long_file_name_keeps_extension(tmp_path: Path) -> None:
    name = validate_file_name(tmp_path, "abcdefghijklmnop.jpg", max_length=10)
    assert name == "abcdef.jpg"


def test_directory_name_trims_trailing_dots_and_dedupes(tmp_path: Path) -> None:
    assert validate_directory_name(tmp_path, "Trip...", 25) == "Trip"
    (tmp_path / "Trip").mkdir()
    assert validate_directory_name(tmp_path, "Trip", 25) == "Trip(1)"


def test_directory_name_suffix_respects_max_length(tmp_path: Path) -> None:
    (tmp_path / "abcdefghij").mkdir()
    assert validate_directory_name(tmp_path, "abcdefghijkl", 10) == "abcdefg(1)"


def test_directory_name_of_only_invalid_characters(tmp_path: Path) -> None:
    assert validate_directory_name(tmp_path, "???", 25) == DEFAULT_DIRECTORY_NAME
    with pytest.raises(ValidationError):
        validate_directory_name(tmp_path, "", 25)


def test_map_to_alternate_directory(tmp_path: Path) -> None:
    media = tmp_path / "media"
    thumbs = tmp_path / "thumbs"
    album = media / "2024" / "Beach"

    assert map_to_alternate_directory(album, None, media) == album
    assert map_to_alternate_directory(album, media, media) == album
    assert map_to_alternate_directory(album, thumbs, media) == thumbs / "2024" / "Beach"
    assert map_to_alternate_directory(media, thumbs, media) == thumbs


def test_map_outside_media_root_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(BusinessError):
        map_to_alternate_directory(tmp_path / "elsewhere", tmp_path / "thumbs", tmp_path / "media")


def test_move_file_safely_replaces_destination(tmp_path: Path) -> None:
    src = tmp_path / "new.txt"
    dest = tmp_path / "sub" / "old.txt"
    src.write_text("new")
    dest.parent.mkdir()
    dest.write_text("old")

    move_file_safely(src, dest)

    assert dest.read_text() == "new"
    assert not src.exists()


def test_move_file_safely_missing_source(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        move_file_safely(tmp_path / "missing.txt", tmp_path / "dest.txt")


def test_file_size_kb_never_reports_zero(tmp_path: Path) -> None:
    small = tmp_path / "small.bin"
    small.write_bytes(b"0123456789")
    big = tmp_path / "big.bin"
    big.write_bytes(b"0" * 4096)
    assert file_size_kb(small) == 1
    assert file_size_kb(big) == 4


def test_delete_directory_contents_keeps_listed_children(tmp_path: Path) -> None:
    (tmp_path / "keep").mkdir()
    (tmp_path / "drop").mkdir()
    (tmp_path / "drop" / "a.txt").write_text("a")
    (tmp_path / "b.txt").write_text("b")

    delete_directory_contents(tmp_path, keep={tmp_path / "keep"})

    assert sorted(p.name for p in tmp_path.iterdir()) == ["keep"]
