"""
Core API for a synchronized journal.

``Journal`` wires the configured stores and analysis provider into the
sync orchestrator, the entry summary state machine and the weekly
trigger, and exposes the operations a client needs:

- load(): hydrate every collection (cache first, then network)
- create_entry() / update_entry() / delete_entry()
- summarize() / retry() / process_pending(): per-entry AI insight
- streaks() / eligibility() / maybe_generate_weekly()
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from .cache import COLLECTIONS, LocalCacheStore
from .config import JournalConfig, load_or_create_config
from .local_store import LocalStore
from .providers import AnalysisProvider, get_analysis_provider
from .remote import HttpRemoteStore, RemoteDocumentStore
from .streaks import compute_streaks, resolve_timezone
from .summaries import EntrySummaryMachine
from .sync import JournalState, SyncOrchestrator
from .types import (
    EntrySummaryState,
    JournalEntry,
    Mood,
    StreakData,
    WeeklyEligibility,
    WeeklySummary,
    utc_now,
)
from .weekly import WeeklySummaryTrigger

logger = logging.getLogger(__name__)

CACHE_FILENAME = "cache.db"
LOCAL_FILENAME = "local.db"

# Distinguishes "not given" from an explicit analyzer=None
_FROM_CONFIG = object()


class Journal:
    """
    One user's journal: state, sync and AI insight.

    Example:
        async with Journal() as journal:
            await journal.load()
            entry = await journal.create_entry("", "Walked by the river #outside")
            await journal.summarize(entry.id)
    """

    def __init__(
        self,
        data_dir: Optional[str | Path] = None,
        *,
        config: Optional[JournalConfig] = None,
        remote: Optional[RemoteDocumentStore] = None,
        analyzer=_FROM_CONFIG,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """
        Open a journal.

        Args:
            data_dir: Directory for config, cache and logs. Uses
                INKWELL_DATA_DIR or ~/.inkwell if not specified.
            config: Pre-loaded JournalConfig (skips filesystem config discovery).
            remote: Injected remote store (skips HttpRemoteStore creation).
            analyzer: Injected analysis provider; None disables AI insight.
                Built from the [analysis] config section if not given.
            clock: Source of "now"; injected for tests.

        Raises:
            ValueError: No remote store is configured, or the configured
                time zone or analysis provider is unknown
        """
        # --- Config resolution ---
        if config is not None:
            self._config = config
        else:
            self._config = load_or_create_config(Path(data_dir) if data_dir else None)
        self._data_dir = self._config.path
        self._tz = resolve_timezone(self._config.timezone or None)

        if remote is None and not self._config.remote.configured:
            raise ValueError(
                f"No remote store configured. Set [remote] api_url in {self._config.config_path}"
            )

        # --- Analysis provider ---
        if analyzer is _FROM_CONFIG:
            analyzer = get_analysis_provider(
                self._config.analysis.name, self._config.analysis.params,
            )
        self._analyzer: Optional[AnalysisProvider] = analyzer

        # --- Remote store ---
        if remote is None:
            remote = HttpRemoteStore(
                self._config.remote.api_url,
                self._config.api_key,
                self._config.user_id,
            )
        self._remote = remote

        # --- Persistent operations log ---
        from .logging_config import configure_ops_log
        self._ops_log_handler = configure_ops_log(self._data_dir)

        # --- Local storage ---
        self._cache = LocalCacheStore(
            self._data_dir / CACHE_FILENAME,
            staleness=self._config.staleness,
            clock=clock,
        )
        self._local = LocalStore(self._data_dir / LOCAL_FILENAME, self._config.user_id)

        # --- Orchestration ---
        self.sync = SyncOrchestrator(
            self._config.user_id, self._remote, self._cache, self._local, clock, tz=self._tz,
        )
        self.summaries = EntrySummaryMachine(self.sync, self._analyzer, self._remote, clock)
        self.weekly = WeeklySummaryTrigger(self.sync, self._analyzer, self._remote, clock, tz=self._tz)
        self._clock = clock
        logger.debug("Opened journal for %s in %s", self._config.user_id, self._data_dir)

    @property
    def config(self) -> JournalConfig:
        return self._config

    @property
    def state(self) -> JournalState:
        return self.sync.state

    @property
    def has_analyzer(self) -> bool:
        return self._analyzer is not None

    # -------------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------------

    async def load(self, *, wait: bool = False, force: bool = False) -> JournalState:
        """
        Load every collection.

        Args:
            wait: Also wait for background refreshes of stale snapshots
            force: Drop cached snapshots first so everything is refetched
        """
        if force:
            for collection in COLLECTIONS:
                self._cache.invalidate(collection, self._config.user_id)
        await self.sync.load_all()
        if wait:
            await self.sync.wait_for_background()
        return self.sync.state

    async def create_entry(
        self,
        title: str,
        content: str,
        mood: Optional[Mood] = None,
        tags: Optional[list[str]] = None,
    ) -> JournalEntry:
        return await self.sync.create_entry(title, content, mood, tags)

    async def update_entry(self, entry: JournalEntry) -> JournalEntry:
        return await self.sync.update_entry(entry)

    async def delete_entry(self, entry_id: str) -> None:
        await self.sync.delete_entry(entry_id)

    # -------------------------------------------------------------------------
    # Insight
    # -------------------------------------------------------------------------

    async def summarize(self, entry_id: str) -> EntrySummaryState:
        """Generate an entry's summary, waiting at most the configured timeout."""
        return await self.summaries.generate_with_timeout(
            entry_id, self._config.timeout_seconds,
        )

    async def retry(self, entry_id: str) -> EntrySummaryState:
        """
        Retry a held entry, waiting at most the configured timeout.

        The hold keeps its id; a further failure increments retry_count.
        """
        return await self.summarize(entry_id)

    async def process_pending(self, limit: Optional[int] = None) -> dict[str, int]:
        return await self.summaries.process_pending(limit or self._config.pending_batch)

    async def maybe_generate_weekly(self) -> Optional[WeeklySummary]:
        return await self.weekly.maybe_generate_weekly(self._clock())

    def streaks(self) -> StreakData:
        return compute_streaks(self.sync.state.entries, self._tz, self._clock())

    def eligibility(self) -> WeeklyEligibility:
        return self.weekly.eligibility()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def _remove_ops_log(self) -> None:
        if self._ops_log_handler is not None:
            logging.getLogger("inkwell").removeHandler(self._ops_log_handler)
            self._ops_log_handler.close()
            self._ops_log_handler = None

    def close(self) -> None:
        """Close local resources (cache, local store, ops log)."""
        if getattr(self, "_cache", None) is not None:
            self._cache.close()
            self._local.close()
        self._remove_ops_log()

    async def aclose(self) -> None:
        """Finish background work, then close every resource."""
        await self.sync.wait_for_background()
        await self.summaries.wait_for_inflight()
        aclose = getattr(self._remote, "aclose", None)
        if aclose is not None:
            await aclose()
        self.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False
