# history.py
"""
Per-device watch history backed by sqlite.

One connection is shared by the app and guarded by an RLock, so the store
can be used from FastAPI's threadpool.
"""
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    deviceId TEXT NOT NULL,
    animeSlug TEXT,
    episodeSlug TEXT NOT NULL,
    lastPosition INTEGER DEFAULT 0,
    updatedAt TEXT NOT NULL,
    UNIQUE (deviceId, episodeSlug)
);
CREATE INDEX IF NOT EXISTS idx_device ON history (deviceId);
CREATE INDEX IF NOT EXISTS idx_episode ON history (episodeSlug);
"""

def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")

class HistoryStore:
    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> sqlite3.Connection:
        with self._lock:
            if self._conn:
                return self._conn

            existed = self.db_path != ":memory:" and Path(self.db_path).exists()
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(SCHEMA)
            self._conn.commit()
            logger.info(f"{'Using existing' if existed else 'Created'} history database at {self.db_path}")
            return self._conn

    def close(self) -> None:
        with self._lock:
            if self._conn:
                try:
                    self._conn.close()
                finally:
                    self._conn = None

    def save(self, device_id: str, anime_slug: Optional[str], episode_slug: str, last_position: int = 0) -> None:
        """Insert a history row or update the position of an existing one"""
        with self._lock:
            conn = self.open()
            conn.execute(
                """
                INSERT INTO history (deviceId, animeSlug, episodeSlug, lastPosition, updatedAt)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (deviceId, episodeSlug) DO UPDATE SET
                    animeSlug = COALESCE(excluded.animeSlug, history.animeSlug),
                    lastPosition = excluded.lastPosition,
                    updatedAt = excluded.updatedAt
                """,
                (device_id, anime_slug, episode_slug, last_position or 0, utc_now()),
            )
            conn.commit()

    def list_for_device(self, device_id: str) -> List[dict]:
        with self._lock:
            rows = self.open().execute(
                "SELECT * FROM history WHERE deviceId = ? ORDER BY updatedAt DESC, id DESC",
                (device_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    def get(self, device_id: str, episode_slug: str) -> Optional[dict]:
        with self._lock:
            row = self.open().execute(
                "SELECT * FROM history WHERE deviceId = ? AND episodeSlug = ?",
                (device_id, episode_slug),
            ).fetchone()
        return dict(row) if row else None

    def delete(self, device_id: str, episode_slug: str) -> int:
        """Delete one entry; returns the number of rows removed"""
        with self._lock:
            conn = self.open()
            cursor = conn.execute(
                "DELETE FROM history WHERE deviceId = ? AND episodeSlug = ?",
                (device_id, episode_slug),
            )
            conn.commit()
            return cursor.rowcount

    def clear_device(self, device_id: str) -> int:
        with self._lock:
            conn = self.open()
            cursor = conn.execute("DELETE FROM history WHERE deviceId = ?", (device_id,))
            conn.commit()
            return cursor.rowcount
