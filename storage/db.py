"""
storage/db.py

SQLite audit store for the counseling platform's public events.

Schema
------
events: append-only log of public signals (registration, session start /
         completion, plan creation, emergency alerts)

Only the public fields of a :class:`storage.models.PlatformEvent` are ever
written: identity, timestamp and session id.  Ciphertext handles and clinical
values are never persisted here.

Usage
-----
    from storage.db import AuditStore
    store = AuditStore(Path("data/counseling_audit.db"))
    store.init_db()            # call once at startup
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from storage.models import PlatformEvent

logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_DB_PATH: Path = _PROJECT_ROOT / "data" / "counseling_audit.db"

_DDL = """
CREATE TABLE IF NOT EXISTS events (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    kind       TEXT    NOT NULL CHECK(kind IN (
                   'patient_registered', 'session_started', 'session_completed',
                   'therapy_plan_created', 'emergency_alert')),
    patient    TEXT    NOT NULL,
    session_id INTEGER,
    timestamp  INTEGER NOT NULL            -- epoch seconds
);

CREATE INDEX IF NOT EXISTS idx_events_patient ON events(patient);
"""


class AuditStore:
    """Append-only event table in a SQLite file."""

    def __init__(self, path: Path = DEFAULT_DB_PATH):
        self.path = Path(path)

    def _connect(self) -> sqlite3.Connection:
        """
        Open (or create) the SQLite database and return a connection.

        :class:`sqlite3.Row` is set as the row_factory so rows behave like
        dicts.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        return conn

    def init_db(self) -> None:
        """Create the events table if it does not already exist.  Idempotent."""
        with self._connect() as conn:
            conn.executescript(_DDL)
        logger.info("Audit database initialised at %s", self.path)

    def append_event(self, event: PlatformEvent) -> int:
        """Insert *event* and return its row id."""
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO events (kind, patient, session_id, timestamp)
                VALUES (?, ?, ?, ?)
                """,
                (event.kind, event.patient, event.session_id, event.timestamp),
            )
            row_id = cur.lastrowid
        logger.debug("Audit: kind=%s patient=%s session=%s", event.kind, event.patient, event.session_id)
        return row_id

    def list_events(self, patient: str | None = None) -> list[PlatformEvent]:
        """
        Return stored events in insertion order, optionally for one patient.
        """
        with self._connect() as conn:
            if patient is None:
                rows = conn.execute("SELECT * FROM events ORDER BY id").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM events WHERE patient = ? ORDER BY id",
                    (patient,),
                ).fetchall()
        return [
            PlatformEvent(
                kind=r["kind"],
                patient=r["patient"],
                session_id=r["session_id"],
                timestamp=r["timestamp"],
            )
            for r in rows
        ]
