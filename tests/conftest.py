from __future__ import annotations

import os
from pathlib import Path
import tempfile

import pytest

# Keep config, cache and data directories out of the real home directory.
_HOME = Path(tempfile.mkdtemp(prefix="gallerycore-tests-"))
os.environ.setdefault("XDG_CONFIG_HOME", str(_HOME / "config"))
os.environ.setdefault("XDG_CACHE_HOME", str(_HOME / "cache"))
os.environ.setdefault("XDG_DATA_HOME", str(_HOME / "data"))

from gallerycore.sync import reset_sync_statuses  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_sync_statuses():
    reset_sync_statuses()
    yield
    reset_sync_statuses()
