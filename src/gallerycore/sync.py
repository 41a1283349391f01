from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
import logging
import threading

from gallerycore.errors import SynchronizationInProgressError, ValidationError

logger = logging.getLogger(__name__)


class SyncState(IntEnum):
    NOT_SET = 0
    COMPLETE = 1
    SYNCHRONIZING_FILES = 2
    PERSISTING_TO_DATA_STORE = 3
    ERROR = 4
    ANOTHER_SYNCHRONIZATION_IN_PROGRESS = 5
    ABORTED = 6
    INTERRUPTED_BY_APP_RECYCLE = 7


_IN_PROGRESS = (SyncState.SYNCHRONIZING_FILES, SyncState.PERSISTING_TO_DATA_STORE)


@dataclass(slots=True)
class SkippedFile:
    path: str
    reason: str


@dataclass
class SynchronizationStatus:
    """Progress of the one synchronization allowed per gallery at a time."""

    gallery_id: int
    sync_id: str = ""
    state: SyncState = SyncState.NOT_SET
    total_file_count: int = 0
    current_file_index: int = 0
    current_file: str = ""
    should_terminate: bool = False
    skipped: list[SkippedFile] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def is_in_progress(self) -> bool:
        return self.state in _IN_PROGRESS

    def begin(self, sync_id: str, total_file_count: int = 0) -> None:
        if not sync_id:
            raise ValidationError("a synchronization id is required")
        with self._lock:
            if self.is_in_progress and self.sync_id != sync_id:
                raise SynchronizationInProgressError(self.gallery_id)
            self.sync_id = sync_id
            self.state = SyncState.SYNCHRONIZING_FILES
            self.total_file_count = total_file_count
            self.current_file_index = 0
            self.current_file = ""
            self.should_terminate = False
            self.skipped = []
        logger.info("synchronization %s started for gallery %s", sync_id, self.gallery_id)

    def update(
        self,
        state: SyncState,
        total_file_count: int | None = None,
        current_file: str | None = None,
        current_file_index: int | None = None,
    ) -> None:
        with self._lock:
            total = self.total_file_count if total_file_count is None else total_file_count
            if total < 0:
                raise ValidationError(f"total file count must be zero or greater, got {total}")
            if current_file_index is not None and total > 0 and not 0 <= current_file_index < total:
                raise ValidationError(
                    f"current file index {current_file_index} is outside the range 0..{total - 1}"
                )
            self.state = state
            self.total_file_count = total
            if current_file is not None:
                self.current_file = current_file
            if current_file_index is not None:
                self.current_file_index = current_file_index

    def skip(self, path: str, reason: str) -> None:
        with self._lock:
            self.skipped.append(SkippedFile(path=path, reason=reason))

    def cancel(self, sync_id: str) -> bool:
        with self._lock:
            if self.sync_id != sync_id or not self.is_in_progress:
                return False
            self.should_terminate = True
        logger.info("cancellation requested for synchronization %s", sync_id)
        return True

    def finish(self, state: SyncState = SyncState.COMPLETE) -> None:
        with self._lock:
            self.state = state
            self.current_file = ""
            self.should_terminate = False

    @property
    def percent_complete(self) -> int:
        if self.total_file_count <= 0:
            return 100 if self.state == SyncState.COMPLETE else 0
        return int(self.current_file_index * 100 / self.total_file_count)


_registry_lock = threading.Lock()
_registry: dict[int, SynchronizationStatus] = {}


def get_sync_status(gallery_id: int) -> SynchronizationStatus:
    with _registry_lock:
        status = _registry.get(gallery_id)
        if status is None:
            status = SynchronizationStatus(gallery_id=gallery_id)
            _registry[gallery_id] = status
        return status


def reset_sync_statuses() -> None:
    with _registry_lock:
        _registry.clear()
