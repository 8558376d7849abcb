"""
inkwell: a personal journal's sync and AI insight core.

Cache-first loading with per-collection staleness, optimistic mutations
with local fallback, per-entry AI summaries with typed holds, and a
time-zone aware streak and weekly-insight calculator.
"""

__version__ = "0.1.0"

from .api import Journal
from .errors import (
    AnalysisError,
    AnalysisUnavailableError,
    EntryNotFoundError,
    InkwellError,
    LocalStoreError,
    RemoteStoreError,
    SyncError,
    WeeklySummaryError,
)
from .streaks import compute_streaks, compute_weekly_eligibility
from .types import (
    EmotionalPattern,
    EntryHoldStatus,
    EntrySummary,
    EntrySummaryState,
    HoldReason,
    JournalEntry,
    Mood,
    StreakData,
    WeeklyEligibility,
    WeeklySummary,
)

__all__ = [
    "Journal",
    "InkwellError",
    "RemoteStoreError",
    "LocalStoreError",
    "SyncError",
    "AnalysisError",
    "AnalysisUnavailableError",
    "EntryNotFoundError",
    "WeeklySummaryError",
    "compute_streaks",
    "compute_weekly_eligibility",
    "EmotionalPattern",
    "EntryHoldStatus",
    "EntrySummary",
    "EntrySummaryState",
    "HoldReason",
    "JournalEntry",
    "Mood",
    "StreakData",
    "WeeklyEligibility",
    "WeeklySummary",
]
