"""
Weekly insight generation.

A weekly summary covers the entries written since the previous one, and
only once they span seven distinct days. Scheduling is the caller's job:
call ``maybe_generate_weekly`` as often as convenient.
"""

import asyncio
import logging
from datetime import date, datetime, tzinfo
from typing import Callable, Optional

from .cache import WEEKLY_SUMMARIES
from .errors import AnalysisUnavailableError, WeeklySummaryError
from .holds import classify_failure
from .providers.base import AnalysisProvider
from .remote import RemoteDocumentStore
from .streaks import compute_weekly_eligibility, local_day
from .sync import SyncOrchestrator
from .types import WeeklyEligibility, WeeklySummary, generate_id

logger = logging.getLogger(__name__)


class WeeklySummaryTrigger:
    """Creates a WeeklySummary when the eligibility window is complete."""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        analyzer: Optional[AnalysisProvider],
        remote: RemoteDocumentStore,
        clock: Optional[Callable[[], datetime]] = None,
        *,
        tz: Optional[tzinfo] = None,
    ):
        self._sync = orchestrator
        self._analyzer = analyzer
        self._remote = remote
        self._clock = clock or orchestrator.clock
        self._tz = tz or orchestrator.tz
        self._lock = asyncio.Lock()

    def eligibility(self) -> WeeklyEligibility:
        state = self._sync.state
        return compute_weekly_eligibility(state.entries, state.summaries, self._tz)

    def _window_days(self, start: datetime, end: datetime) -> tuple[date, date]:
        return local_day(start, self._tz), local_day(end, self._tz)

    def _exists(self, start: datetime, end: datetime) -> bool:
        candidate = self._window_days(start, end)
        return any(
            self._window_days(s.week_start, s.week_end) == candidate
            for s in self._sync.state.summaries
        )

    async def maybe_generate_weekly(self, now: Optional[datetime] = None) -> Optional[WeeklySummary]:
        """
        Generate and store a weekly summary if one is due.

        Returns:
            The new WeeklySummary, or None when the window is not yet
            eligible or a summary for the same days already exists

        Raises:
            AnalysisUnavailableError: Eligible, but no provider is configured
            WeeklySummaryError: The provider failed; nothing was stored
            SyncError: The summary could not be stored anywhere
        """
        async with self._lock:
            eligibility = self.eligibility()
            if not eligibility.eligible:
                logger.debug(
                    "Weekly insight not due (%d of 7 days)", eligibility.days_in_window,
                )
                return None

            window = sorted(eligibility.entries_in_window, key=lambda e: e.created_at)
            week_start = window[0].created_at
            week_end = window[-1].created_at
            if self._exists(week_start, week_end):
                logger.info(
                    "Weekly summary for %s..%s already exists",
                    *self._window_days(week_start, week_end),
                )
                return None

            if self._analyzer is None:
                raise AnalysisUnavailableError("No analysis provider configured")

            try:
                result = await self._analyzer.analyze_weekly_entries(window)
            except Exception as e:
                last_error = getattr(self._analyzer, "last_error", None)
                reason, code = classify_failure(e, last_error)
                message = str(e) or last_error or type(e).__name__
                logger.warning("Weekly insight failed (%s): %s", reason.value, message)
                raise WeeklySummaryError(
                    f"Weekly insight failed: {message}", reason.value, code,
                ) from e

            summary = WeeklySummary(
                id=generate_id(),
                week_start=week_start,
                week_end=week_end,
                entries_analyzed=len(window),
                created_at=now or self._clock(),
                themes=result.themes,
                emotional_patterns=result.emotional_patterns,
                achievements=result.achievements,
                improvements=result.improvements,
                suggestions=result.suggestions,
                motivational_insight=result.motivational_insight,
                action_steps=result.action_steps,
            )
            try:
                summary = await self._remote.create_summary(summary)
            except Exception as e:
                logger.warning("Remote save of weekly summary failed, saving locally: %s", e)
                self._sync.save_local(WEEKLY_SUMMARIES, summary)

            self._sync.add_weekly_summary(summary)
            logger.info(
                "Created weekly summary over %d entries (%s..%s)",
                summary.entries_analyzed, *self._window_days(week_start, week_end),
            )
            return summary
