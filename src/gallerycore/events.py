from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
import json
import logging
import sqlite3
import threading

from gallerycore.db import Database
from gallerycore.util.time import now_iso

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AppEvent:
    severity: str
    message: str
    exc_type: str = ""
    context: str = ""
    data: dict[str, str] = field(default_factory=dict)
    gallery_id: int | None = None
    created_at: str = field(default_factory=now_iso)


class EventRecorder:
    """Fire-and-forget sink for errors and notable events.

    ``record`` never raises: a failure to persist an event is logged and dropped.
    """

    def __init__(self, db: Database | None = None, max_events: int = 200):
        self.db = db
        self._lock = threading.Lock()
        self._recent: deque[AppEvent] = deque(maxlen=max_events)
        self._load(max_events)

    def _load(self, limit: int) -> None:
        if self.db is None:
            return
        try:
            with self.db.connect() as conn:
                rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        except sqlite3.Error as exc:
            logger.warning("could not load recent events: %s", exc)
            return
        for r in reversed(rows):
            self._recent.append(
                AppEvent(
                    severity=str(r["severity"]),
                    message=str(r["message"]),
                    exc_type=str(r["exc_type"]),
                    context=str(r["context"]),
                    data=json.loads(r["data_json"] or "{}"),
                    gallery_id=r["gallery_id"],
                    created_at=str(r["created_at"]),
                )
            )

    def record(
        self,
        exc: BaseException,
        context: str = "",
        data: dict[str, str] | None = None,
        gallery_id: int | None = None,
    ) -> AppEvent:
        event = AppEvent(
            severity="error",
            message=str(exc) or type(exc).__name__,
            exc_type=type(exc).__name__,
            context=context,
            data=dict(data or {}),
            gallery_id=gallery_id,
        )
        logger.error("%s: %s (%s)", context or "error", event.message, event.exc_type)
        self._store(event)
        return event

    def info(self, message: str, context: str = "", data: dict[str, str] | None = None, gallery_id: int | None = None) -> AppEvent:
        event = AppEvent(severity="info", message=message, context=context, data=dict(data or {}), gallery_id=gallery_id)
        logger.info("%s: %s", context or "event", message)
        self._store(event)
        return event

    def recent(self, severity: str | None = None) -> list[AppEvent]:
        with self._lock:
            items = list(self._recent)
        if severity is None:
            return items
        return [e for e in items if e.severity == severity]

    def _store(self, event: AppEvent) -> None:
        with self._lock:
            self._recent.append(event)
        if self.db is None:
            return
        try:
            with self.db.connect() as conn:
                conn.execute(
                    """
                    INSERT INTO events(severity, message, exc_type, context, data_json, gallery_id, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        event.severity,
                        event.message,
                        event.exc_type,
                        event.context,
                        json.dumps(event.data),
                        event.gallery_id,
                        event.created_at,
                    ),
                )
        except sqlite3.Error as exc:
            logger.warning("could not persist event %r: %s", event.message, exc)
