"""
Lower-tier local persistence using SQLite.

Written by mutations when the remote store is unreachable and read as
the last resort when a load cannot reach the remote store. Unlike the
cache it is keyed per record, not per snapshot, so partial offline work
survives until the next successful sync.
"""

import json
import sqlite3
from pathlib import Path
from typing import Optional

from .cache import check_collection
from .errors import LocalStoreError


class LocalStore:
    """
    SQLite-backed key-value store of records per (user, collection).

    Records are the ``to_dict()`` form of the data types. Every method
    raises LocalStoreError on database failure.
    """

    def __init__(self, db_path: Path, user_id: str):
        """
        Args:
            db_path: Path to SQLite database file
            user_id: Owner namespace for every record written
        """
        self._db_path = db_path
        self._user_id = user_id
        self._conn: Optional[sqlite3.Connection] = None
        self._init_db()

    def _init_db(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS local_records (
                user_id TEXT NOT NULL,
                collection TEXT NOT NULL,
                id TEXT NOT NULL,
                entry_id TEXT,
                record_json TEXT NOT NULL,
                PRIMARY KEY (user_id, collection, id)
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_local_entry
            ON local_records(user_id, collection, entry_id)
        """)
        self._conn.commit()

    @property
    def user_id(self) -> str:
        return self._user_id

    def save(self, collection: str, record: dict) -> None:
        """Insert or replace a record by its ``id``."""
        check_collection(collection)
        try:
            self._conn.execute("""
                INSERT OR REPLACE INTO local_records
                (user_id, collection, id, entry_id, record_json)
                VALUES (?, ?, ?, ?, ?)
            """, (
                self._user_id, collection, record["id"], record.get("entryId"),
                json.dumps(record, ensure_ascii=False),
            ))
            self._conn.commit()
        except sqlite3.Error as e:
            raise LocalStoreError(f"Failed to save {collection}/{record.get('id')}: {e}") from e

    def delete(self, collection: str, id: str) -> bool:
        """Delete one record. Returns True if it existed."""
        check_collection(collection)
        try:
            cursor = self._conn.execute("""
                DELETE FROM local_records
                WHERE user_id = ? AND collection = ? AND id = ?
            """, (self._user_id, collection, id))
            self._conn.commit()
        except sqlite3.Error as e:
            raise LocalStoreError(f"Failed to delete {collection}/{id}: {e}") from e
        return cursor.rowcount > 0

    def delete_where(self, collection: str, entry_id: str) -> int:
        """Delete every record in a collection that belongs to an entry."""
        check_collection(collection)
        try:
            cursor = self._conn.execute("""
                DELETE FROM local_records
                WHERE user_id = ? AND collection = ? AND entry_id = ?
            """, (self._user_id, collection, entry_id))
            self._conn.commit()
        except sqlite3.Error as e:
            raise LocalStoreError(f"Failed to delete {collection} for {entry_id}: {e}") from e
        return cursor.rowcount

    def list_records(self, collection: str) -> list[dict]:
        """All records in a collection, in insertion order."""
        check_collection(collection)
        try:
            cursor = self._conn.execute("""
                SELECT record_json FROM local_records
                WHERE user_id = ? AND collection = ?
                ORDER BY rowid
            """, (self._user_id, collection))
            return [json.loads(row["record_json"]) for row in cursor]
        except (sqlite3.Error, json.JSONDecodeError) as e:
            raise LocalStoreError(f"Failed to read {collection}: {e}") from e

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
