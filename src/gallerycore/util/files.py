from __future__ import annotations

import logging
import os
from pathlib import Path
import re
import shutil
import tempfile
import uuid

from gallerycore.errors import BusinessError, ValidationError

logger = logging.getLogger(__name__)

MAX_FILE_NAME_LENGTH = 255
DEFAULT_DIRECTORY_NAME = "Album"
DEFAULT_FILE_NAME = "DefaultFilename"

_INVALID_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def remove_invalid_characters(name: str) -> str:
    return _INVALID_CHARS.sub("", name)


def file_size_kb(path: Path) -> int:
    # Very small files count as 1 KB, never 0.
    return max(1, path.stat().st_size // 1024)


def is_same_path(a: Path | None, b: Path | None) -> bool:
    if a is None or b is None:
        return a is None and b is None
    return os.path.normcase(os.path.abspath(a)) == os.path.normcase(os.path.abspath(b))


def map_to_alternate_directory(album_path: Path, alternate_root: Path | None, media_root: Path) -> Path:
    """Mirror *album_path* (under *media_root*) onto *alternate_root*.

    With no alternate root the album path is returned unchanged, so thumbnails
    and optimized files sit beside the originals.
    """
    if alternate_root is None or str(alternate_root) == "":
        return album_path
    if is_same_path(alternate_root, media_root):
        return album_path
    album_abs = Path(os.path.abspath(album_path))
    media_abs = Path(os.path.abspath(media_root))
    try:
        rel = album_abs.relative_to(media_abs)
    except ValueError as exc:
        raise BusinessError(
            f"expected album path {album_path} to be inside the media root {media_root}"
        ) from exc
    return Path(alternate_root) / rel


def validate_file_name(dir_path: Path, file_name: str, max_length: int = MAX_FILE_NAME_LENGTH) -> str:
    """Return a file name unique within *dir_path*, e.g. ``photo(1).jpg``."""
    if not file_name:
        raise ValidationError(f"file name is required (directory {dir_path})")
    if not Path(file_name).suffix:
        raise ValidationError(f"file name must have an extension: {file_name}")

    name = remove_invalid_characters(file_name) or DEFAULT_FILE_NAME
    if len(name) > max_length:
        stem, ext = os.path.splitext(name)
        name = stem[: max(1, max_length - len(ext))] + ext

    suffix = ""
    counter = 1
    while (dir_path / name).exists():
        stem, ext = os.path.splitext(name)
        if suffix:
            stem = stem[: len(stem) - len(suffix)]
        suffix = f"({counter})"
        overflow = len(stem) + len(ext) + len(suffix) - max_length
        if overflow > 0:
            stem = stem[: len(stem) - overflow]
        name = f"{stem}{suffix}{ext}"
        counter += 1
    return name


def validate_directory_name(parent: Path, dir_name: str, max_length: int) -> str:
    """Return a directory name unique within *parent*, e.g. ``Vacation(1)``."""
    if not dir_name:
        raise ValidationError(f"directory name is required (parent {parent})")

    name = remove_invalid_characters(dir_name) or DEFAULT_DIRECTORY_NAME
    if len(name) > max_length:
        name = name[:max_length]
    # Windows drops trailing dots and spaces silently.
    name = name.rstrip(". ") or DEFAULT_DIRECTORY_NAME

    suffix = ""
    counter = 1
    while (parent / name).exists():
        if suffix:
            name = name[: len(name) - len(suffix)]
        suffix = f"({counter})"
        overflow = len(name) + len(suffix) - max_length
        if overflow > 0:
            name = name[: len(name) - overflow]
        name = f"{name}{suffix}"
        counter += 1
    return name


def move_file_safely(source: Path, dest: Path) -> None:
    """Move *source* over *dest*, restoring *dest* if the move fails."""
    if not source.exists():
        raise FileNotFoundError(f"file not found: {source}")

    backup: Path | None = None
    if dest.exists():
        backup = Path(tempfile.gettempdir()) / f"{uuid.uuid4()}.tmp"
        shutil.move(str(dest), str(backup))

    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(source), str(dest))
    except OSError:
        if backup is not None and backup.exists():
            shutil.move(str(backup), str(dest))
        raise

    if backup is not None:
        backup.unlink(missing_ok=True)


def delete_file(path: Path | None) -> None:
    if path is None:
        return
    try:
        path.unlink(missing_ok=True)
    except IsADirectoryError:
        logger.warning("refusing to delete directory %s as a file", path)


def delete_directory(path: Path | None) -> None:
    if path is None or not path.exists():
        return
    shutil.rmtree(path)


def delete_directory_contents(path: Path, keep: set[Path] | None = None) -> None:
    """Remove the children of *path*, leaving the directory itself in place."""
    if not path.exists():
        return
    keep = keep or set()
    for child in path.iterdir():
        if any(is_same_path(child, k) for k in keep):
            continue
        if child.is_dir():
            shutil.rmtree(child)
        else:
            child.unlink(missing_ok=True)
