"""SQLite-backed persistence of coherence samples.

Implements the ``HistoryStore`` contract used by the engine: one row per
emitted feedback sample, queried per user most-recent-first.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from threading import RLock

from .constants import HISTORY_QUERY_LIMIT
from .domain_models import CoherenceRecord, HarmonicSample, utc_now_iso
from .json_utils import sanitize_value

LOGGER = logging.getLogger(__name__)

_SCHEMA_VERSION = 1

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS schema_meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS coherence_history (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id          TEXT NOT NULL,
    session_id       TEXT NOT NULL,
    frequency_hz     REAL,
    coherence_index  REAL,
    amplitude        REAL,
    timestamp_utc    TEXT NOT NULL,
    created_at       TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_coherence_history_user_time
    ON coherence_history(user_id, timestamp_utc);
"""


class HistoryDB:
    """Thin wrapper around a SQLite database for coherence history."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._lock = RLock()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._ensure_schema()
        LOGGER.info("Coherence history DB ready at %s", db_path)

    # -- lifecycle ------------------------------------------------------------

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def _cursor(self, *, commit: bool = True) -> Iterator[sqlite3.Cursor]:
        with self._lock:
            cur = self._conn.cursor()
            try:
                yield cur
                if commit:
                    self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
            finally:
                cur.close()

    def _ensure_schema(self) -> None:
        with self._cursor() as cur:
            cur.executescript(_SCHEMA_SQL)
        with self._cursor() as cur:
            cur.execute("SELECT value FROM schema_meta WHERE key = ?", ("version",))
            row = cur.fetchone()
            if row is None:
                cur.execute(
                    "INSERT INTO schema_meta (key, value) VALUES (?, ?)",
                    ("version", str(_SCHEMA_VERSION)),
                )
                return
            version = int(str(row[0]))
            if version != _SCHEMA_VERSION:
                raise RuntimeError(
                    f"Unsupported history DB schema version {version}; "
                    f"expected {_SCHEMA_VERSION}. Delete the database file to recreate."
                )

    # -- write ----------------------------------------------------------------

    def append(
        self,
        user_id: str,
        session_id: str,
        sample: HarmonicSample,
        coherence_index: float,
    ) -> None:
        record = CoherenceRecord.from_sample(user_id, session_id, sample, coherence_index)
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO coherence_history (user_id, session_id, frequency_hz, "
                "coherence_index, amplitude, timestamp_utc, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    record.user_id,
                    record.session_id,
                    sanitize_value(record.frequency_hz),
                    sanitize_value(record.coherence_index),
                    sanitize_value(record.amplitude),
                    record.timestamp_utc,
                    utc_now_iso(),
                ),
            )

    def delete_user(self, user_id: str) -> int:
        with self._cursor() as cur:
            cur.execute("DELETE FROM coherence_history WHERE user_id = ?", (user_id,))
            return int(cur.rowcount)

    # -- read -----------------------------------------------------------------

    def query(self, user_id: str, limit: int = HISTORY_QUERY_LIMIT) -> list[CoherenceRecord]:
        """Return *user_id*'s persisted samples, most recent first."""
        with self._cursor(commit=False) as cur:
            cur.execute(
                "SELECT id, user_id, session_id, frequency_hz, coherence_index, "
                "amplitude, timestamp_utc FROM coherence_history "
                "WHERE user_id = ? ORDER BY timestamp_utc DESC, id DESC LIMIT ?",
                (user_id, max(1, int(limit))),
            )
            rows = cur.fetchall()
        return [
            CoherenceRecord(
                record_id=int(rid),
                user_id=str(uid),
                session_id=str(sid),
                frequency_hz=float(freq) if freq is not None else float("nan"),
                coherence_index=float(coh) if coh is not None else float("nan"),
                amplitude=float(amp) if amp is not None else float("nan"),
                timestamp_utc=str(ts),
            )
            for rid, uid, sid, freq, coh, amp, ts in rows
        ]

    def count(self, user_id: str | None = None) -> int:
        with self._cursor(commit=False) as cur:
            if user_id is None:
                cur.execute("SELECT COUNT(*) FROM coherence_history")
            else:
                cur.execute(
                    "SELECT COUNT(*) FROM coherence_history WHERE user_id = ?", (user_id,)
                )
            row = cur.fetchone()
        return int(row[0]) if row else 0
