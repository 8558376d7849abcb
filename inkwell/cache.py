"""
Local cache of collection snapshots using SQLite.

Each row holds the full JSON snapshot of one collection for one user
together with the time it was written. The cache is a freshness cache:
nothing is evicted except by explicit invalidation, and a stale snapshot
is still served while a refresh happens elsewhere.
"""

import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Optional

from .types import format_timestamp, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

# Collection names shared by the cache, the fallback store and the remote store
ENTRIES = "entries"
ENTRY_SUMMARIES = "entry_summaries"
WEEKLY_SUMMARIES = "summaries"
HOLD_STATUSES = "hold_statuses"

COLLECTIONS = (ENTRIES, ENTRY_SUMMARIES, WEEKLY_SUMMARIES, HOLD_STATUSES)

DEFAULT_STALENESS = {
    ENTRIES: timedelta(minutes=30),
    ENTRY_SUMMARIES: timedelta(minutes=30),
    WEEKLY_SUMMARIES: timedelta(minutes=10),
    HOLD_STATUSES: timedelta(minutes=30),
}


def check_collection(collection: str) -> None:
    if collection not in COLLECTIONS:
        raise ValueError(f"Unknown collection: {collection!r}")


@dataclass(frozen=True)
class CacheHit:
    """A cached snapshot and how old it is."""
    payload: Any
    written_at: datetime
    age: timedelta


class LocalCacheStore:
    """
    SQLite-backed snapshot cache keyed by (collection, user_id).

    Reads are synchronous and happen before any network call. Single
    writer per user session; concurrent sessions may race.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        staleness: Optional[dict[str, timedelta]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            db_path: Path to SQLite database file
            staleness: Per-collection overrides of DEFAULT_STALENESS
            clock: Source of "now"; injected for tests
        """
        self._db_path = db_path
        self._clock = clock
        self._staleness = dict(DEFAULT_STALENESS)
        if staleness:
            for collection, threshold in staleness.items():
                check_collection(collection)
                self._staleness[collection] = threshold
        self._conn: Optional[sqlite3.Connection] = None
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS cache_snapshots (
                collection TEXT NOT NULL,
                user_id TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                written_at TEXT NOT NULL,
                PRIMARY KEY (collection, user_id)
            )
        """)
        self._conn.commit()

    def staleness(self, collection: str) -> timedelta:
        """Maximum age before a snapshot of this collection needs a refresh."""
        check_collection(collection)
        return self._staleness[collection]

    def read(self, collection: str, user_id: str) -> Optional[CacheHit]:
        """
        Read a snapshot.

        Returns:
            CacheHit with payload and age, or None if absent or unreadable
        """
        check_collection(collection)
        cursor = self._conn.execute("""
            SELECT payload_json, written_at FROM cache_snapshots
            WHERE collection = ? AND user_id = ?
        """, (collection, user_id))
        row = cursor.fetchone()
        if row is None:
            return None
        try:
            payload = json.loads(row["payload_json"])
            written_at = parse_timestamp(row["written_at"])
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning("Ignoring corrupt %s cache for %s: %s", collection, user_id, e)
            return None
        return CacheHit(
            payload=payload,
            written_at=written_at,
            age=self._clock() - written_at,
        )

    def write(self, collection: str, user_id: str, payload: Any) -> None:
        """Overwrite the snapshot for (collection, user_id)."""
        check_collection(collection)
        payload_json = json.dumps(payload, ensure_ascii=False)
        self._conn.execute("""
            INSERT OR REPLACE INTO cache_snapshots
            (collection, user_id, payload_json, written_at)
            VALUES (?, ?, ?, ?)
        """, (collection, user_id, payload_json, format_timestamp(self._clock())))
        self._conn.commit()
        logger.debug("Cached %s snapshot for %s", collection, user_id)

    def invalidate(self, collection: str, user_id: str) -> bool:
        """Delete a snapshot. Returns True if one existed."""
        check_collection(collection)
        cursor = self._conn.execute("""
            DELETE FROM cache_snapshots
            WHERE collection = ? AND user_id = ?
        """, (collection, user_id))
        self._conn.commit()
        return cursor.rowcount > 0

    def is_stale(self, hit: CacheHit, collection: str) -> bool:
        """True when the snapshot is older than the collection's threshold."""
        return hit.age > self.staleness(collection)

    def clear_user(self, user_id: str) -> int:
        """Remove every snapshot for a user. Returns count removed."""
        cursor = self._conn.execute(
            "DELETE FROM cache_snapshots WHERE user_id = ?", (user_id,)
        )
        self._conn.commit()
        return cursor.rowcount

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        self.close()
