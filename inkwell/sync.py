"""
Synchronization between in-memory state, the local cache and the remote store.

Every load hydrates from the cache first and only then goes to the
network. Every mutation goes to the remote store first and falls back to
the local store when the remote is unreachable, so a transient outage
never leaves the in-memory state behind what the user just did.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, tzinfo
from typing import Any, Callable, Optional

from .cache import (
    ENTRIES,
    ENTRY_SUMMARIES,
    HOLD_STATUSES,
    WEEKLY_SUMMARIES,
    COLLECTIONS,
    LocalCacheStore,
    check_collection,
)
from .errors import LocalStoreError, SyncError
from .local_store import LocalStore
from .remote import RemoteDocumentStore
from .streaks import entry_day, local_day, resolve_timezone, week_range
from .types import (
    EntryHoldStatus,
    EntrySummary,
    JournalEntry,
    Mood,
    WeeklySummary,
    default_title,
    generate_id,
    merge_tags,
    utc_now,
)

logger = logging.getLogger(__name__)


@dataclass
class JournalState:
    """Observable state of one user's journal session."""
    entries: list[JournalEntry] = field(default_factory=list)
    summaries: list[WeeklySummary] = field(default_factory=list)
    entry_summaries: list[EntrySummary] = field(default_factory=list)
    hold_statuses: list[EntryHoldStatus] = field(default_factory=list)
    current_entry: Optional[JournalEntry] = None
    is_loading: bool = False
    is_loading_in_background: bool = False
    error: Optional[SyncError] = None

    def entry(self, entry_id: str) -> Optional[JournalEntry]:
        return next((e for e in self.entries if e.id == entry_id), None)

    def summary_for(self, entry_id: str) -> Optional[EntrySummary]:
        return next((s for s in self.entry_summaries if s.entry_id == entry_id), None)

    def hold_for(self, entry_id: str) -> Optional[EntryHoldStatus]:
        return next((h for h in self.hold_statuses if h.entry_id == entry_id), None)


@dataclass(frozen=True)
class _Collection:
    attr: str           # JournalState attribute
    record: type        # dataclass with to_dict/from_dict
    fetch: str          # RemoteDocumentStore list method
    newest: Callable[[Any], datetime]


_COLLECTIONS = {
    ENTRIES: _Collection("entries", JournalEntry, "get_entries", lambda e: e.created_at),
    WEEKLY_SUMMARIES: _Collection("summaries", WeeklySummary, "get_summaries", lambda s: s.week_end),
    ENTRY_SUMMARIES: _Collection(
        "entry_summaries", EntrySummary, "get_entry_summaries", lambda s: s.created_at,
    ),
    HOLD_STATUSES: _Collection(
        "hold_statuses", EntryHoldStatus, "get_hold_statuses", lambda h: h.last_attempt,
    ),
}


class SyncOrchestrator:
    """
    Owns the JournalState for one user and keeps it in sync.

    Loads never raise: remote failures fall back to the local store, and
    when that fails too the error is recorded on ``state.error``.
    Mutations raise SyncError only when both the remote and the local
    store fail.
    """

    def __init__(
        self,
        user_id: str,
        remote: RemoteDocumentStore,
        cache: LocalCacheStore,
        local: LocalStore,
        clock: Callable[[], datetime] = utc_now,
        *,
        tz: Optional[tzinfo] = None,
    ):
        """
        Args:
            user_id: Owner of every record handled here
            remote: Remote document store for this user
            cache: Snapshot cache
            local: Fallback store used while the remote is unreachable
            clock: Source of "now"; injected for tests
            tz: Viewer's time zone for entry dates (system local if None)
        """
        self.user_id = user_id
        self.state = JournalState()
        self._remote = remote
        self._cache = cache
        self._local = local
        self._clock = clock
        self._tz = tz or resolve_timezone()
        self._subscribers: list[Callable[[JournalState], None]] = []
        self._refreshes: dict[str, asyncio.Task] = {}
        self._foreground_loads = 0
        # Collections whose state reflects a full snapshot; only these may
        # be written back to the cache
        self._hydrated: set[str] = set()

    @property
    def tz(self) -> tzinfo:
        return self._tz

    @property
    def clock(self) -> Callable[[], datetime]:
        return self._clock

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def subscribe(self, callback: Callable[[JournalState], None]) -> Callable[[], None]:
        """
        Call ``callback(state)`` after every state change.

        Returns:
            A function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self) -> None:
        for callback in list(self._subscribers):
            callback(self.state)

    # -------------------------------------------------------------------------
    # Snapshot helpers
    # -------------------------------------------------------------------------

    def _records(self, collection: str) -> list:
        return getattr(self.state, _COLLECTIONS[collection].attr)

    def _set_records(self, collection: str, records: list) -> None:
        spec = _COLLECTIONS[collection]
        setattr(self.state, spec.attr, sorted(records, key=spec.newest, reverse=True))
        self._hydrated.add(collection)

    def _decode(self, collection: str, payload: Any) -> Optional[list]:
        """Records from a cache payload, or None if the payload is unusable."""
        record_type = _COLLECTIONS[collection].record
        if not isinstance(payload, list):
            return None
        try:
            return [record_type.from_dict(item) for item in payload]
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Discarding unreadable %s cache: %s", collection, e)
            return None

    def _commit(self, collection: str) -> None:
        """Write the collection's current state to the cache as a full snapshot."""
        if collection in self._hydrated:
            payload = [record.to_dict() for record in self._records(collection)]
            self._cache.write(collection, self.user_id, payload)
        else:
            # State holds only what this session touched; a partial
            # snapshot would hide records, so force a refetch instead
            self._cache.invalidate(collection, self.user_id)

    def _put(self, collection: str, record: Any, match: Callable[[Any], bool]) -> None:
        """Insert ``record``, replacing any record for which ``match`` is true."""
        spec = _COLLECTIONS[collection]
        records = [r for r in self._records(collection) if not match(r)]
        records.append(record)
        setattr(self.state, spec.attr, sorted(records, key=spec.newest, reverse=True))

    def _drop(self, collection: str, match: Callable[[Any], bool]) -> list:
        """Remove matching records from state. Returns the removed ones."""
        records = self._records(collection)
        removed = [r for r in records if match(r)]
        if removed:
            setattr(
                self.state,
                _COLLECTIONS[collection].attr,
                [r for r in records if not match(r)],
            )
        return removed

    def save_local(self, collection: str, record: Any) -> None:
        try:
            self._local.save(collection, record.to_dict())
        except LocalStoreError as e:
            raise SyncError(f"Could not save {collection} locally: {e}") from e

    def purge_local(self, collection: str, entry_id: str) -> None:
        """Best-effort removal of an entry's records from the local store."""
        try:
            self._local.delete_where(collection, entry_id)
        except LocalStoreError as e:
            logger.warning("Could not delete local %s of %s: %s", collection, entry_id, e)

    # -------------------------------------------------------------------------
    # Loads
    # -------------------------------------------------------------------------

    async def load_entries(self) -> None:
        await self._load(ENTRIES)

    async def load_summaries(self) -> None:
        await self._load(WEEKLY_SUMMARIES)

    async def load_entry_summaries(self) -> None:
        await self._load(ENTRY_SUMMARIES)

    async def load_hold_statuses(self) -> None:
        await self._load(HOLD_STATUSES)

    async def load_all(self) -> None:
        """Load every collection concurrently."""
        await asyncio.gather(*(self._load(c) for c in COLLECTIONS))

    async def _load(self, collection: str) -> None:
        """
        Cache first, then the network.

        A cached snapshot is published immediately. A fresh one ends the
        load; a stale one schedules a single background refresh. Without
        a snapshot the remote fetch is awaited under ``is_loading``.
        """
        check_collection(collection)
        hit = self._cache.read(collection, self.user_id)
        records = self._decode(collection, hit.payload) if hit is not None else None

        if hit is not None and records is not None:
            self._set_records(collection, records)
            self._publish()
            if self._cache.is_stale(hit, collection):
                logger.debug("%s cache is %s old, refreshing", collection, hit.age)
                self._schedule_refresh(collection)
            return

        self._foreground_loads += 1
        self.state.is_loading = True
        self._publish()
        try:
            await self._refresh(collection)
        finally:
            self._foreground_loads -= 1
            self.state.is_loading = self._foreground_loads > 0
            self._publish()

    def _schedule_refresh(self, collection: str) -> None:
        task = self._refreshes.get(collection)
        if task is not None and not task.done():
            return
        task = asyncio.create_task(self._refresh(collection))
        self._refreshes[collection] = task
        self.state.is_loading_in_background = True
        task.add_done_callback(lambda t: self._refresh_done(collection, t))

    def _refresh_done(self, collection: str, task: asyncio.Task) -> None:
        if self._refreshes.get(collection) is task:
            del self._refreshes[collection]
        self.state.is_loading_in_background = bool(self._refreshes)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background refresh of %s failed: %s", collection, task.exception())
        self._publish()

    async def _refresh(self, collection: str) -> None:
        """Fetch from the remote store; fall back to the local store."""
        spec = _COLLECTIONS[collection]
        try:
            records = await getattr(self._remote, spec.fetch)()
        except Exception as e:
            logger.warning("Remote fetch of %s failed, using local copy: %s", collection, e)
            self._load_local(collection)
            return
        self._set_records(collection, records)
        self._cache.write(
            collection, self.user_id, [r.to_dict() for r in self._records(collection)],
        )
        self.state.error = None
        self._publish()

    def _load_local(self, collection: str) -> None:
        record_type = _COLLECTIONS[collection].record
        try:
            rows = self._local.list_records(collection)
        except LocalStoreError as e:
            logger.error("Local fallback for %s failed: %s", collection, e)
            self.state.error = SyncError(f"Could not load {collection}: {e}")
            self._publish()
            return
        records = []
        for row in rows:
            try:
                records.append(record_type.from_dict(row))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping unreadable local %s record: %s", collection, e)
        if collection in self._hydrated:
            # Layer unsynced local writes over the cached snapshot
            local_ids = {r.id for r in records}
            records += [r for r in self._records(collection) if r.id not in local_ids]
        # Local records are not a full snapshot; never cache them
        self._hydrated.discard(collection)
        spec = _COLLECTIONS[collection]
        setattr(self.state, spec.attr, sorted(records, key=spec.newest, reverse=True))
        self._publish()

    async def wait_for_background(self) -> None:
        """Wait until every background refresh has finished."""
        while self._refreshes:
            await asyncio.gather(*list(self._refreshes.values()), return_exceptions=True)

    # -------------------------------------------------------------------------
    # Entry mutations
    # -------------------------------------------------------------------------

    async def create_entry(
        self,
        title: str,
        content: str,
        mood: Optional[Mood] = None,
        tags: Optional[list[str]] = None,
    ) -> JournalEntry:
        """
        Create and persist a new entry dated today in the viewer's zone.

        Raises:
            SyncError: If neither the remote nor the local store accepted it
        """
        now = self._clock()
        today = local_day(now, self._tz)
        entry = JournalEntry(
            id=generate_id(),
            title=title.strip() or default_title(today),
            content=content,
            date=today.isoformat(),
            created_at=now,
            updated_at=now,
            mood=mood,
            tags=merge_tags(content, tags),
        )
        try:
            saved = await self._remote.create_entry(entry)
        except Exception as e:
            logger.warning("Remote create failed, saving entry locally: %s", e)
            self.save_local(ENTRIES, entry)
            self._put(ENTRIES, entry, lambda r: r.id == entry.id)
            self._publish()
            return entry

        self._put(ENTRIES, saved, lambda r: r.id == saved.id)
        self._commit(ENTRIES)
        self._publish()
        logger.info("Created entry %s", saved.id)
        return saved

    async def update_entry(self, entry: JournalEntry) -> JournalEntry:
        """
        Persist an edited entry and invalidate its AI summary.

        Raises:
            SyncError: If neither the remote nor the local store accepted it
        """
        updated = self._touch(entry)
        remote_ok = await self._persist_update(updated)
        self._put(ENTRIES, updated, lambda r: r.id == updated.id)
        if remote_ok:
            self._commit(ENTRIES)
        self._sync_current(updated)
        self._publish()
        await self._invalidate_summary(updated.id)
        return updated

    async def auto_save(self, entry: JournalEntry) -> JournalEntry:
        """
        Optimistic save used while editing.

        State is updated before persisting. The summary is kept.

        Raises:
            SyncError: If neither the remote nor the local store accepted it
        """
        updated = self._touch(entry)
        self._put(ENTRIES, updated, lambda r: r.id == updated.id)
        self._sync_current(updated)
        self._publish()
        if await self._persist_update(updated):
            self._commit(ENTRIES)
        return updated

    def _touch(self, entry: JournalEntry) -> JournalEntry:
        return replace(
            entry,
            updated_at=self._clock(),
            tags=merge_tags(entry.content, entry.tags),
        )

    def _sync_current(self, entry: JournalEntry) -> None:
        if self.state.current_entry is not None and self.state.current_entry.id == entry.id:
            self.state.current_entry = entry

    async def _persist_update(self, entry: JournalEntry) -> bool:
        """Remote update, else local save. Returns True if the remote took it."""
        try:
            await self._remote.update_entry(entry)
        except Exception as e:
            logger.warning("Remote update of %s failed, saving locally: %s", entry.id, e)
            self.save_local(ENTRIES, entry)
            return False
        return True

    async def _invalidate_summary(self, entry_id: str) -> None:
        try:
            await self._remote.delete_entry_summary(entry_id)
        except Exception as e:
            logger.warning("Could not delete remote summary of %s: %s", entry_id, e)
        self.purge_local(ENTRY_SUMMARIES, entry_id)
        if self._drop(ENTRY_SUMMARIES, lambda s: s.entry_id == entry_id):
            logger.info("Invalidated summary of edited entry %s", entry_id)
        self._commit(ENTRY_SUMMARIES)
        self._publish()

    async def delete_entry(self, entry_id: str) -> None:
        """
        Delete an entry together with its summary and hold status.

        The summary and hold deletes are best effort. On remote failure
        the entry is deleted locally and the affected cache snapshots are
        invalidated so a later load cannot resurrect it.

        Raises:
            SyncError: If neither the remote nor the local store deleted it
        """
        remote_ok = True
        try:
            await self._remote.delete_entry(entry_id)
        except Exception as e:
            remote_ok = False
            logger.warning("Remote delete of %s failed, deleting locally: %s", entry_id, e)
            try:
                self._local.delete(ENTRIES, entry_id)
            except LocalStoreError as le:
                raise SyncError(f"Could not delete entry {entry_id}: {le}") from le

        for name, op in (
            ("summary", self._remote.delete_entry_summary),
            ("hold status", self._remote.remove_hold_status),
        ):
            try:
                await op(entry_id)
            except Exception as e:
                logger.warning("Could not delete remote %s of %s: %s", name, entry_id, e)

        try:
            if remote_ok:
                self._local.delete(ENTRIES, entry_id)
            self._local.delete_where(ENTRY_SUMMARIES, entry_id)
            self._local.delete_where(HOLD_STATUSES, entry_id)
        except LocalStoreError as e:
            logger.warning("Could not purge local records of %s: %s", entry_id, e)

        self._drop(ENTRIES, lambda e: e.id == entry_id)
        self._drop(ENTRY_SUMMARIES, lambda s: s.entry_id == entry_id)
        self._drop(HOLD_STATUSES, lambda h: h.entry_id == entry_id)
        if self.state.current_entry is not None and self.state.current_entry.id == entry_id:
            self.state.current_entry = None

        for collection in (ENTRIES, ENTRY_SUMMARIES, HOLD_STATUSES):
            if remote_ok:
                self._commit(collection)
            else:
                self._cache.invalidate(collection, self.user_id)
        self._publish()
        logger.info("Deleted entry %s", entry_id)

    def set_current_entry(self, entry: Optional[JournalEntry]) -> None:
        self.state.current_entry = entry
        self._publish()

    # -------------------------------------------------------------------------
    # Summary-side mutations (state and cache only; callers persist)
    # -------------------------------------------------------------------------

    def add_entry_summary(self, summary: EntrySummary) -> None:
        self._put(ENTRY_SUMMARIES, summary, lambda s: s.entry_id == summary.entry_id)
        self._commit(ENTRY_SUMMARIES)
        self._publish()

    def remove_entry_summary(self, entry_id: str) -> Optional[EntrySummary]:
        removed = self._drop(ENTRY_SUMMARIES, lambda s: s.entry_id == entry_id)
        self._commit(ENTRY_SUMMARIES)
        self._publish()
        return removed[0] if removed else None

    def put_hold_status(self, hold: EntryHoldStatus) -> None:
        self._put(HOLD_STATUSES, hold, lambda h: h.entry_id == hold.entry_id)
        self._commit(HOLD_STATUSES)
        self._publish()

    def remove_hold_status(self, entry_id: str) -> Optional[EntryHoldStatus]:
        removed = self._drop(HOLD_STATUSES, lambda h: h.entry_id == entry_id)
        self._commit(HOLD_STATUSES)
        self._publish()
        return removed[0] if removed else None

    def add_weekly_summary(self, summary: WeeklySummary) -> None:
        self._put(WEEKLY_SUMMARIES, summary, lambda s: s.id == summary.id)
        self._commit(WEEKLY_SUMMARIES)
        self._publish()

    # -------------------------------------------------------------------------
    # Queries and session
    # -------------------------------------------------------------------------

    def entries_for_week(self, day: date) -> list[JournalEntry]:
        """Entries dated within the Monday-Sunday week containing ``day``."""
        monday, sunday = week_range(day)
        return [e for e in self.state.entries if monday <= entry_day(e, self._tz) <= sunday]

    def reset(self) -> None:
        """Forget everything for this user (sign-out)."""
        for task in self._refreshes.values():
            task.cancel()
        self._refreshes.clear()
        self._hydrated.clear()
        self._foreground_loads = 0
        self.state = JournalState()
        removed = self._cache.clear_user(self.user_id)
        logger.debug("Cleared %d cached snapshots for %s", removed, self.user_id)
        self._publish()
