"""
Per-entry AI summary lifecycle.

    NONE ──generate──▶ GENERATING ──ok──▶ SUMMARIZED
    HELD ──retry─────▶ GENERATING ──err─▶ HELD (retry_count + 1)

An entry has a summary, a hold, or neither; never both. AI failures are
recorded as holds, never raised.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from .cache import ENTRY_SUMMARIES, HOLD_STATUSES
from .errors import AnalysisUnavailableError, EntryNotFoundError
from .holds import build_hold_status
from .providers.base import AnalysisProvider, EntryAnalysisResult
from .remote import RemoteDocumentStore
from .sync import SyncOrchestrator
from .types import EntrySummary, EntrySummaryState, JournalEntry, generate_id

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 45.0
DEFAULT_PENDING_BATCH = 3


class EntrySummaryMachine:
    """
    Generates, holds and retries entry summaries.

    At most one generation runs per entry. A generation abandoned by
    ``generate_with_timeout`` keeps running and applies its result when
    it completes.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        analyzer: Optional[AnalysisProvider],
        remote: RemoteDocumentStore,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._sync = orchestrator
        self._analyzer = analyzer
        self._remote = remote
        self._clock = clock or orchestrator.clock
        self._inflight: dict[str, asyncio.Task] = {}

    def state(self, entry_id: str) -> EntrySummaryState:
        """Current state of an entry's summary."""
        if entry_id in self._inflight:
            return EntrySummaryState.GENERATING
        if self._sync.state.summary_for(entry_id) is not None:
            return EntrySummaryState.SUMMARIZED
        if self._sync.state.hold_for(entry_id) is not None:
            return EntrySummaryState.HELD
        return EntrySummaryState.NONE

    def is_generating(self, entry_id: str) -> bool:
        return entry_id in self._inflight

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    async def generate(self, entry_id: str) -> EntrySummaryState:
        """
        Summarize an entry unless it already has a summary.

        Returns:
            The resulting state. GENERATING means another generation for
            this entry is already running and nothing new was started.

        Raises:
            AnalysisUnavailableError: No analysis provider is configured
            EntryNotFoundError: The entry is not loaded
            SyncError: The result could not be stored anywhere
        """
        if entry_id in self._inflight:
            logger.debug("Summary for %s already generating", entry_id)
            return EntrySummaryState.GENERATING
        task = self._start(entry_id)
        if task is None:
            return EntrySummaryState.SUMMARIZED
        return await task

    async def retry(self, entry_id: str) -> EntrySummaryState:
        """Try a held entry again. The hold keeps its id and counts the attempt."""
        return await self.generate(entry_id)

    async def generate_with_timeout(
        self, entry_id: str, timeout: float = DEFAULT_TIMEOUT,
    ) -> EntrySummaryState:
        """
        Like ``generate`` but waits at most ``timeout`` seconds.

        On timeout the generation is not cancelled; it finishes in the
        background and GENERATING is returned. An already running
        generation for the entry is waited on rather than restarted.
        """
        task = self._inflight.get(entry_id) or self._start(entry_id)
        if task is None:
            return EntrySummaryState.SUMMARIZED
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Summary for %s not ready after %.0fs; it will be applied when it arrives",
                entry_id, timeout,
            )
            return EntrySummaryState.GENERATING

    async def process_pending(self, limit: int = DEFAULT_PENDING_BATCH) -> dict[str, int]:
        """
        Summarize up to ``limit`` of the newest entries that have neither a
        summary nor a hold, one at a time.

        Held entries are left alone; they need an explicit ``retry``.

        Returns:
            Counts: {"summarized": n, "held": m}
        """
        if self._analyzer is None:
            raise AnalysisUnavailableError("No analysis provider configured")
        counts = {"summarized": 0, "held": 0}
        pending = [
            e for e in self._sync.state.entries
            if self.state(e.id) is EntrySummaryState.NONE
        ][:limit]
        for entry in pending:
            result = await self.generate(entry.id)
            if result is EntrySummaryState.SUMMARIZED:
                counts["summarized"] += 1
            elif result is EntrySummaryState.HELD:
                counts["held"] += 1
        if pending:
            logger.info(
                "Processed %d pending entries: %d summarized, %d held",
                len(pending), counts["summarized"], counts["held"],
            )
        return counts

    async def wait_for_inflight(self) -> None:
        """Wait until every running generation, abandoned ones included, is done."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight.values()), return_exceptions=True)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _start(self, entry_id: str) -> Optional[asyncio.Task]:
        """Start a generation task, or return None if already summarized."""
        if self._sync.state.summary_for(entry_id) is not None:
            return None
        if self._analyzer is None:
            raise AnalysisUnavailableError("No analysis provider configured")
        entry = self._sync.state.entry(entry_id)
        if entry is None:
            raise EntryNotFoundError(f"Entry not found: {entry_id}")

        task = asyncio.create_task(self._run(entry))
        self._inflight[entry_id] = task
        task.add_done_callback(lambda t: self._finished(entry_id, t))
        return task

    def _finished(self, entry_id: str, task: asyncio.Task) -> None:
        if self._inflight.get(entry_id) is task:
            del self._inflight[entry_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error("Summary generation for %s failed: %s", entry_id, task.exception())

    async def _run(self, entry: JournalEntry) -> EntrySummaryState:
        logger.debug("Generating summary for %s", entry.id)
        try:
            result = await self._analyzer.analyze_individual_entry(entry)
        except Exception as e:
            if not self._still_exists(entry.id):
                return EntrySummaryState.NONE
            return await self._hold(entry.id, e)
        if not self._still_exists(entry.id):
            return EntrySummaryState.NONE
        return await self._summarize(entry.id, result)

    def _still_exists(self, entry_id: str) -> bool:
        if self._sync.state.entry(entry_id) is None:
            logger.info("Entry %s was deleted during generation; discarding result", entry_id)
            return False
        return True

    async def _summarize(self, entry_id: str, result: EntryAnalysisResult) -> EntrySummaryState:
        summary = EntrySummary(
            id=generate_id(),
            entry_id=entry_id,
            created_at=self._clock(),
            key_themes=result.key_themes,
            emotional_insights=result.emotional_insights,
            personal_growth=result.personal_growth,
            patterns=result.patterns,
            suggestions=result.suggestions,
            motivational_note=result.motivational_note,
            reflection=result.reflection,
        )

        if self._sync.state.hold_for(entry_id) is not None:
            try:
                await self._remote.remove_hold_status(entry_id)
            except Exception as e:
                logger.warning("Could not clear remote hold of %s: %s", entry_id, e)

        try:
            summary = await self._remote.create_entry_summary(summary)
        except Exception as e:
            logger.warning("Remote save of summary for %s failed, saving locally: %s", entry_id, e)
            self._sync.save_local(ENTRY_SUMMARIES, summary)

        # A hold saved while offline would come back on the next local fallback
        self._sync.purge_local(HOLD_STATUSES, entry_id)
        self._sync.remove_hold_status(entry_id)
        self._sync.add_entry_summary(summary)
        logger.info("Summarized entry %s", entry_id)
        return EntrySummaryState.SUMMARIZED

    async def _hold(self, entry_id: str, error: Exception) -> EntrySummaryState:
        previous = self._sync.state.hold_for(entry_id)
        hold = build_hold_status(
            entry_id,
            error,
            previous,
            self._clock(),
            last_error=getattr(self._analyzer, "last_error", None),
        )
        logger.warning(
            "Summary for %s on hold (%s, attempt %d): %s",
            entry_id, hold.reason.value, hold.retry_count, hold.error_message,
        )
        try:
            await self._remote.put_hold_status(hold)
        except Exception as e:
            logger.warning("Remote save of hold for %s failed, saving locally: %s", entry_id, e)
            self._sync.save_local(HOLD_STATUSES, hold)
        self._sync.purge_local(ENTRY_SUMMARIES, entry_id)
        self._sync.put_hold_status(hold)
        return EntrySummaryState.HELD
