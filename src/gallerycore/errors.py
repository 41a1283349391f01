from __future__ import annotations

from pathlib import Path


class GalleryError(Exception):
    """Base class for every error raised by gallerycore."""


class ValidationError(GalleryError, ValueError):
    """Bad arguments. Raised immediately and never retried."""


class InvalidMediaObjectError(ValidationError):
    def __init__(self, path: Path | str, album_id: int | None, allowed: list[Path]):
        self.path = Path(path)
        self.album_id = album_id
        self.allowed = allowed
        dirs = ", ".join(str(p) for p in allowed)
        super().__init__(
            f"file {self.path.name} must be located in one of the directories of album {album_id}: {dirs}"
        )


class BusinessError(GalleryError):
    pass


class DirectoryCollisionError(BusinessError):
    def __init__(self, directory: Path | str):
        self.directory = Path(directory)
        super().__init__(
            f"The cache directory {self.directory} already exists, so it is not possible to rename "
            "the directory to it. You can try to manually delete this directory or perform a "
            "synchronization on the parent album, which will remove unused cache directories."
        )


class UnsupportedSourceError(GalleryError):
    """Source media is corrupt or too large to process."""

    def __init__(self, path: Path | str | None, reason: str = "", cause: BaseException | None = None):
        self.path = Path(path) if path is not None else None
        self.cause = cause
        msg = f"unsupported or oversized source: {self.path}" if self.path else "unsupported or oversized source"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class ExternalToolError(GalleryError):
    """External encoder failure. Recorded by the runner, not raised to callers."""


class InflationError(GalleryError, RuntimeError):
    pass


class SynchronizationInProgressError(GalleryError):
    def __init__(self, gallery_id: int):
        self.gallery_id = gallery_id
        super().__init__(f"a synchronization is already in progress for gallery {gallery_id}")


class SynchronizationTerminatedError(GalleryError):
    pass
