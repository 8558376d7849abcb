"""
Shared pytest fixtures for inkwell tests.

Provides an in-memory remote store, a scripted analysis provider and a
manual clock so sync and generation can be tested without a network.
"""

import asyncio
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from typing import Optional

import pytest

from inkwell.cache import LocalCacheStore
from inkwell.errors import RemoteStoreError
from inkwell.local_store import LocalStore
from inkwell.providers.base import EntryAnalysisResult, WeeklyAnalysisResult
from inkwell.summaries import EntrySummaryMachine
from inkwell.sync import SyncOrchestrator
from inkwell.types import (
    EntryHoldStatus,
    EntrySummary,
    JournalEntry,
    WeeklySummary,
    generate_id,
)
from inkwell.weekly import WeeklySummaryTrigger

USER_ID = "user-1"
UTC = timezone.utc


class ManualClock:
    """A clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeRemote:
    """
    In-memory RemoteDocumentStore.

    ``fail`` makes every call raise; ``fail_ops`` fails only the named
    methods. ``gate`` (an asyncio.Event) holds list calls until set.
    """

    def __init__(self):
        self.entries: dict[str, JournalEntry] = {}
        self.summaries: dict[str, WeeklySummary] = {}
        self.entry_summaries: dict[str, EntrySummary] = {}
        self.holds: dict[str, EntryHoldStatus] = {}  # by entry_id
        self.fail = False
        self.fail_ops: set[str] = set()
        self.calls: Counter = Counter()
        self.gate: Optional[asyncio.Event] = None

    def _check(self, op: str) -> None:
        self.calls[op] += 1
        if self.fail or op in self.fail_ops:
            raise RemoteStoreError(f"{op} failed: connection refused")

    async def _wait(self) -> None:
        if self.gate is not None:
            await self.gate.wait()

    async def get_entries(self):
        self._check("get_entries")
        await self._wait()
        return [JournalEntry.from_dict(e.to_dict()) for e in self.entries.values()]

    async def create_entry(self, entry):
        self._check("create_entry")
        self.entries[entry.id] = JournalEntry.from_dict(entry.to_dict())
        return entry

    async def update_entry(self, entry):
        self._check("update_entry")
        self.entries[entry.id] = JournalEntry.from_dict(entry.to_dict())

    async def delete_entry(self, entry_id):
        self._check("delete_entry")
        self.entries.pop(entry_id, None)

    async def get_summaries(self):
        self._check("get_summaries")
        await self._wait()
        return [WeeklySummary.from_dict(s.to_dict()) for s in self.summaries.values()]

    async def create_summary(self, summary):
        self._check("create_summary")
        self.summaries[summary.id] = WeeklySummary.from_dict(summary.to_dict())
        return summary

    async def get_entry_summaries(self):
        self._check("get_entry_summaries")
        await self._wait()
        return [EntrySummary.from_dict(s.to_dict()) for s in self.entry_summaries.values()]

    async def create_entry_summary(self, summary):
        self._check("create_entry_summary")
        self.entry_summaries[summary.id] = EntrySummary.from_dict(summary.to_dict())
        return summary

    async def delete_entry_summary(self, entry_id):
        self._check("delete_entry_summary")
        for key in [k for k, s in self.entry_summaries.items() if s.entry_id == entry_id]:
            del self.entry_summaries[key]

    async def get_hold_statuses(self):
        self._check("get_hold_statuses")
        await self._wait()
        return [EntryHoldStatus.from_dict(h.to_dict()) for h in self.holds.values()]

    async def put_hold_status(self, hold):
        self._check("put_hold_status")
        self.holds[hold.entry_id] = EntryHoldStatus.from_dict(hold.to_dict())

    async def remove_hold_status(self, entry_id):
        self._check("remove_hold_status")
        self.holds.pop(entry_id, None)

    def summaries_for(self, entry_id: str) -> list[EntrySummary]:
        return [s for s in self.entry_summaries.values() if s.entry_id == entry_id]


class ScriptedAnalyzer:
    """
    Analysis provider that replays scripted outcomes.

    Each outcome is a result to return or an exception to raise. With the
    script exhausted it returns a default result. ``gate`` holds calls
    until set.
    """

    def __init__(self, *entry_outcomes, weekly_outcomes=()):
        self.entry_outcomes = list(entry_outcomes)
        self.weekly_outcomes = list(weekly_outcomes)
        self.last_error: Optional[str] = None
        self.calls: list[str] = []
        self.weekly_calls: list[list[str]] = []
        self.gate: Optional[asyncio.Event] = None

    async def _next(self, outcomes, default):
        if self.gate is not None:
            await self.gate.wait()
        outcome = outcomes.pop(0) if outcomes else default
        if isinstance(outcome, BaseException):
            self.last_error = str(outcome)
            raise outcome
        self.last_error = None
        return outcome

    async def analyze_individual_entry(self, entry):
        self.calls.append(entry.id)
        return await self._next(
            self.entry_outcomes,
            EntryAnalysisResult(key_themes=["reflection"], motivational_note="Keep going"),
        )

    async def analyze_weekly_entries(self, entries):
        self.weekly_calls.append([e.id for e in entries])
        return await self._next(
            self.weekly_outcomes,
            WeeklyAnalysisResult(themes=["consistency"], action_steps=["Write again"]),
        )


def build_entry(
    day: date,
    content: str = "Today I wrote something",
    *,
    hour: int = 12,
    tz=UTC,
    entry_id: Optional[str] = None,
) -> JournalEntry:
    created = datetime(day.year, day.month, day.day, hour, 0, tzinfo=tz)
    return JournalEntry(
        id=entry_id or generate_id(),
        title=f"Entry {day.isoformat()}",
        content=content,
        date=day.isoformat(),
        created_at=created,
        updated_at=created,
    )


@pytest.fixture
def make_entry():
    """Factory for JournalEntry records on a given day."""
    return build_entry


@pytest.fixture
def clock():
    """Manual clock at noon UTC on 2026-01-07."""
    return ManualClock(datetime(2026, 1, 7, 12, 0, tzinfo=UTC))


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def analyzer():
    return ScriptedAnalyzer()


@pytest.fixture
def cache(tmp_path, clock):
    store = LocalCacheStore(tmp_path / "cache.db", clock=clock)
    yield store
    store.close()


@pytest.fixture
def local(tmp_path):
    store = LocalStore(tmp_path / "local.db", USER_ID)
    yield store
    store.close()


@pytest.fixture
def orchestrator(remote, cache, local, clock):
    return SyncOrchestrator(USER_ID, remote, cache, local, clock, tz=UTC)


@pytest.fixture
def machine(orchestrator, analyzer, remote, clock):
    return EntrySummaryMachine(orchestrator, analyzer, remote, clock)


@pytest.fixture
def trigger(orchestrator, analyzer, remote, clock):
    return WeeklySummaryTrigger(orchestrator, analyzer, remote, clock, tz=UTC)
