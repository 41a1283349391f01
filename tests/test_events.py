import json
from pathlib import Path

from gallerycore.db import Database
from gallerycore.errors import ExternalToolError
from gallerycore.events import EventRecorder


def test_record_persists_to_events_table(tmp_path: Path) -> None:
    db = Database(tmp_path / "gallery.sqlite3")
    db.initialize()
    events = EventRecorder(db)

    events.record(ExternalToolError("boom"), context="media encoder", data={"args": "-i x"}, gallery_id=3)

    with db.connect() as conn:
        row = conn.execute("SELECT * FROM events").fetchone()
    assert row["severity"] == "error"
    assert row["exc_type"] == "ExternalToolError"
    assert row["gallery_id"] == 3
    assert json.loads(row["data_json"]) == {"args": "-i x"}


def test_record_never_raises_when_store_is_broken(tmp_path: Path) -> None:
    # No schema: every insert fails.
    events = EventRecorder(Database(tmp_path / "empty.sqlite3"))

    event = events.record(RuntimeError("disk on fire"))

    assert event.message == "disk on fire"
    assert events.recent("error") == [event]


def test_recent_filters_by_severity() -> None:
    events = EventRecorder(max_events=2)
    events.info("first")
    events.record(ValueError(""))
    events.info("third")

    recent = events.recent()
    assert [e.message for e in recent] == ["ValueError", "third"]
    assert [e.severity for e in events.recent("info")] == ["info"]


def test_recent_events_survive_restart(tmp_path: Path) -> None:
    db = Database(tmp_path / "gallery.sqlite3")
    db.initialize()
    EventRecorder(db).record(ExternalToolError("timed out"), context="media encoder")

    reloaded = EventRecorder(db).recent("error")

    assert [e.message for e in reloaded] == ["timed out"]
    assert reloaded[0].context == "media encoder"
