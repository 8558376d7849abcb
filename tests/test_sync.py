"""Tests for the sync orchestrator: hydration, refresh, fallbacks and mutations."""

import asyncio
from dataclasses import replace
from datetime import date, datetime, timezone
from unittest.mock import MagicMock

import pytest

from inkwell.cache import ENTRIES, ENTRY_SUMMARIES, HOLD_STATUSES
from inkwell.errors import LocalStoreError, SyncError
from inkwell.local_store import LocalStore
from inkwell.sync import SyncOrchestrator
from inkwell.types import EntryHoldStatus, EntrySummary, HoldReason, Mood

UTC = timezone.utc


def _summary(entry_id: str, summary_id: str = "s1") -> EntrySummary:
    return EntrySummary(
        id=summary_id,
        entry_id=entry_id,
        created_at=datetime(2026, 1, 7, 13, 0, tzinfo=UTC),
        key_themes=["rest"],
    )


def _hold(entry_id: str) -> EntryHoldStatus:
    at = datetime(2026, 1, 7, 13, 0, tzinfo=UTC)
    return EntryHoldStatus(
        id="h1", entry_id=entry_id, reason=HoldReason.RATE_LIMIT,
        error_message="429", retry_count=1, last_attempt=at, created_at=at,
    )


def _failing_local(**side_effects) -> MagicMock:
    local = MagicMock(spec=LocalStore)
    for name, exc in side_effects.items():
        getattr(local, name).side_effect = exc
    return local


class TestHydration:
    @pytest.mark.asyncio
    async def test_fresh_cache_skips_network(self, orchestrator, cache, remote, make_entry):
        entry = make_entry(date(2026, 1, 6))
        cache.write(ENTRIES, "user-1", [entry.to_dict()])

        await orchestrator.load_entries()

        assert [e.id for e in orchestrator.state.entries] == [entry.id]
        assert remote.calls["get_entries"] == 0
        assert orchestrator.state.is_loading_in_background is False

    @pytest.mark.asyncio
    async def test_stale_cache_publishes_then_refreshes_once(
        self, orchestrator, cache, remote, clock, make_entry,
    ):
        cached = make_entry(date(2026, 1, 5))
        cache.write(ENTRIES, "user-1", [cached.to_dict()])
        clock.advance(minutes=40)
        fresh = [make_entry(date(2026, 1, 6)), make_entry(date(2026, 1, 7))]
        for e in fresh:
            remote.entries[e.id] = e
        remote.gate = asyncio.Event()

        await orchestrator.load_entries()
        await orchestrator.load_entries()

        # Published from cache without waiting on the network
        assert [e.id for e in orchestrator.state.entries] == [cached.id]
        assert orchestrator.state.is_loading_in_background is True

        remote.gate.set()
        await orchestrator.wait_for_background()

        assert remote.calls["get_entries"] == 1
        assert {e.id for e in orchestrator.state.entries} == {e.id for e in fresh}
        assert orchestrator.state.is_loading_in_background is False
        hit = cache.read(ENTRIES, "user-1")
        assert {d["id"] for d in hit.payload} == {e.id for e in fresh}
        assert not cache.is_stale(hit, ENTRIES)

    @pytest.mark.asyncio
    async def test_no_cache_fetches_under_loading_flag(self, orchestrator, cache, remote, make_entry):
        entry = make_entry(date(2026, 1, 7))
        remote.entries[entry.id] = entry
        seen = []
        orchestrator.subscribe(lambda state: seen.append(state.is_loading))

        await orchestrator.load_entries()

        assert True in seen
        assert seen[-1] is False
        assert orchestrator.state.entries[0].id == entry.id
        assert cache.read(ENTRIES, "user-1").payload[0]["id"] == entry.id

    @pytest.mark.asyncio
    async def test_entries_sorted_newest_first(self, orchestrator, remote, make_entry):
        for d in (date(2026, 1, 2), date(2026, 1, 7), date(2026, 1, 4)):
            e = make_entry(d)
            remote.entries[e.id] = e

        await orchestrator.load_entries()

        assert [e.date for e in orchestrator.state.entries] == [
            "2026-01-07", "2026-01-04", "2026-01-02",
        ]

    @pytest.mark.asyncio
    async def test_load_all(self, orchestrator, remote, make_entry):
        entry = make_entry(date(2026, 1, 7))
        remote.entries[entry.id] = entry
        remote.entry_summaries["s1"] = _summary(entry.id)

        await orchestrator.load_all()

        state = orchestrator.state
        assert len(state.entries) == 1
        assert state.summary_for(entry.id).id == "s1"
        assert state.hold_statuses == []
        assert state.summaries == []
        assert state.is_loading is False


class TestLoadFallback:
    @pytest.mark.asyncio
    async def test_remote_failure_uses_local_store(self, orchestrator, local, remote, make_entry):
        entry = make_entry(date(2026, 1, 7))
        local.save(ENTRIES, entry.to_dict())
        remote.fail = True

        await orchestrator.load_entries()

        assert [e.id for e in orchestrator.state.entries] == [entry.id]
        assert orchestrator.state.error is None

    @pytest.mark.asyncio
    async def test_local_failure_recorded_not_raised(self, remote, cache, clock):
        remote.fail = True
        orchestrator = SyncOrchestrator(
            "user-1", remote, cache,
            _failing_local(list_records=LocalStoreError("disk gone")),
            clock, tz=UTC,
        )

        await orchestrator.load_entries()

        assert isinstance(orchestrator.state.error, SyncError)
        assert orchestrator.state.is_loading is False

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_cached_records(
        self, orchestrator, cache, local, remote, clock, make_entry,
    ):
        cached = make_entry(date(2026, 1, 5))
        offline = make_entry(date(2026, 1, 6))
        cache.write(ENTRIES, "user-1", [cached.to_dict()])
        local.save(ENTRIES, offline.to_dict())
        clock.advance(minutes=40)
        remote.fail = True

        await orchestrator.load_entries()
        await orchestrator.wait_for_background()

        assert {e.id for e in orchestrator.state.entries} == {cached.id, offline.id}
        # Merged local view is not written back as a snapshot
        assert [d["id"] for d in cache.read(ENTRIES, "user-1").payload] == [cached.id]


class TestCreateEntry:
    @pytest.mark.asyncio
    async def test_creates_canonical_entry(self, orchestrator, remote, cache):
        await orchestrator.load_entries()

        entry = await orchestrator.create_entry(
            "", "Long walk #Nature then tea #calm #nature", mood=Mood.PEACEFUL,
        )

        assert entry.title == "Journal Entry - Jan 7, 2026"
        assert entry.date == "2026-01-07"
        assert entry.tags == ["calm", "nature"]
        assert entry.mood is Mood.PEACEFUL
        assert entry.created_at == entry.updated_at == datetime(2026, 1, 7, 12, 0, tzinfo=UTC)
        assert entry.id in remote.entries
        assert orchestrator.state.entries[0].id == entry.id
        assert cache.read(ENTRIES, "user-1").payload[0]["id"] == entry.id

    @pytest.mark.asyncio
    async def test_explicit_tags_merged(self, orchestrator):
        entry = await orchestrator.create_entry("Title", "Plain #text", tags=["Work", "#home"])
        assert entry.tags == ["home", "text", "work"]
        assert entry.title == "Title"

    @pytest.mark.asyncio
    async def test_remote_failure_saves_locally(self, orchestrator, remote, local, cache):
        await orchestrator.load_entries()
        remote.fail = True

        entry = await orchestrator.create_entry("Offline", "No network today")

        assert [r["id"] for r in local.list_records(ENTRIES)] == [entry.id]
        assert orchestrator.state.entries[0].id == entry.id
        # Snapshot waits for the next successful load
        assert cache.read(ENTRIES, "user-1").payload == []

    @pytest.mark.asyncio
    async def test_both_stores_failing_raises(self, remote, cache, clock):
        remote.fail = True
        orchestrator = SyncOrchestrator(
            "user-1", remote, cache,
            _failing_local(save=LocalStoreError("disk full")),
            clock, tz=UTC,
        )

        with pytest.raises(SyncError):
            await orchestrator.create_entry("Lost", "Nowhere to go")
        assert orchestrator.state.entries == []


class TestUpdateEntry:
    @pytest.mark.asyncio
    async def test_update_invalidates_summary(self, orchestrator, remote, cache, clock, make_entry):
        entry = make_entry(date(2026, 1, 7))
        remote.entries[entry.id] = entry
        remote.entry_summaries["s1"] = _summary(entry.id)
        await orchestrator.load_all()
        clock.advance(minutes=3)

        updated = await orchestrator.update_entry(replace(entry, content="New words #fresh"))

        assert updated.updated_at == clock()
        assert updated.tags == ["fresh"]
        assert remote.entries[entry.id].content == "New words #fresh"
        assert orchestrator.state.summary_for(entry.id) is None
        assert remote.summaries_for(entry.id) == []
        assert cache.read(ENTRY_SUMMARIES, "user-1").payload == []

    @pytest.mark.asyncio
    async def test_title_only_update_also_invalidates(self, orchestrator, remote, make_entry):
        entry = make_entry(date(2026, 1, 7))
        remote.entries[entry.id] = entry
        remote.entry_summaries["s1"] = _summary(entry.id)
        await orchestrator.load_all()

        await orchestrator.update_entry(replace(entry, title="Renamed"))

        assert orchestrator.state.summary_for(entry.id) is None

    @pytest.mark.asyncio
    async def test_update_falls_back_to_local(self, orchestrator, remote, local, make_entry):
        entry = make_entry(date(2026, 1, 7))
        remote.entries[entry.id] = entry
        await orchestrator.load_all()
        remote.fail_ops = {"update_entry"}

        await orchestrator.update_entry(replace(entry, content="edited offline"))

        assert local.list_records(ENTRIES)[0]["content"] == "edited offline"
        assert orchestrator.state.entry(entry.id).content == "edited offline"
        assert remote.entries[entry.id].content != "edited offline"

    @pytest.mark.asyncio
    async def test_auto_save_keeps_summary(self, orchestrator, remote, make_entry):
        entry = make_entry(date(2026, 1, 7))
        remote.entries[entry.id] = entry
        remote.entry_summaries["s1"] = _summary(entry.id)
        await orchestrator.load_all()

        await orchestrator.auto_save(replace(entry, content="draft"))

        assert orchestrator.state.entry(entry.id).content == "draft"
        assert remote.entries[entry.id].content == "draft"
        assert orchestrator.state.summary_for(entry.id) is not None

    @pytest.mark.asyncio
    async def test_auto_save_applies_state_before_persisting(self, orchestrator, remote, make_entry):
        entry = make_entry(date(2026, 1, 7))
        remote.entries[entry.id] = entry
        await orchestrator.load_all()
        seen = []
        orchestrator.subscribe(
            lambda state: seen.append(
                (state.entry(entry.id).content, remote.calls["update_entry"])
            )
        )

        await orchestrator.auto_save(replace(entry, content="draft"))

        assert seen[0] == ("draft", 0)

    @pytest.mark.asyncio
    async def test_update_refreshes_current_entry(self, orchestrator, remote, make_entry):
        entry = make_entry(date(2026, 1, 7))
        remote.entries[entry.id] = entry
        await orchestrator.load_all()
        orchestrator.set_current_entry(entry)

        await orchestrator.update_entry(replace(entry, content="changed"))

        assert orchestrator.state.current_entry.content == "changed"


class TestDeleteEntry:
    @pytest.mark.asyncio
    async def test_delete_purges_summary_and_hold(self, orchestrator, remote, cache, make_entry):
        entry = make_entry(date(2026, 1, 7))
        other = make_entry(date(2026, 1, 6))
        remote.entries.update({entry.id: entry, other.id: other})
        remote.entry_summaries["s1"] = _summary(entry.id)
        remote.holds[other.id] = _hold(other.id)
        await orchestrator.load_all()
        orchestrator.set_current_entry(entry)

        await orchestrator.delete_entry(entry.id)
        await orchestrator.delete_entry(other.id)

        state = orchestrator.state
        assert state.entries == []
        assert state.entry_summaries == []
        assert state.hold_statuses == []
        assert state.current_entry is None
        assert remote.entries == {}
        assert remote.entry_summaries == {}
        assert remote.holds == {}
        for collection in (ENTRIES, ENTRY_SUMMARIES, HOLD_STATUSES):
            assert cache.read(collection, "user-1").payload == []

    @pytest.mark.asyncio
    async def test_recreated_entry_has_no_old_summary(self, orchestrator, remote, make_entry):
        entry = make_entry(date(2026, 1, 7), content="Same words")
        remote.entries[entry.id] = entry
        remote.entry_summaries["s1"] = _summary(entry.id)
        await orchestrator.load_all()

        await orchestrator.delete_entry(entry.id)
        again = await orchestrator.create_entry(entry.title, "Same words")

        assert again.id != entry.id
        assert orchestrator.state.summary_for(again.id) is None
        assert remote.summaries_for(again.id) == []
        assert remote.entry_summaries == {}

    @pytest.mark.asyncio
    async def test_summary_delete_failure_does_not_fail_delete(self, orchestrator, remote, make_entry):
        entry = make_entry(date(2026, 1, 7))
        remote.entries[entry.id] = entry
        remote.entry_summaries["s1"] = _summary(entry.id)
        await orchestrator.load_all()
        remote.fail_ops = {"delete_entry_summary", "remove_hold_status"}

        await orchestrator.delete_entry(entry.id)

        assert entry.id not in remote.entries
        assert orchestrator.state.entries == []
        assert orchestrator.state.entry_summaries == []

    @pytest.mark.asyncio
    async def test_remote_failure_deletes_locally_and_invalidates(
        self, orchestrator, remote, local, cache, make_entry,
    ):
        entry = make_entry(date(2026, 1, 7))
        remote.entries[entry.id] = entry
        await orchestrator.load_all()
        local.save(ENTRIES, entry.to_dict())
        remote.fail = True

        await orchestrator.delete_entry(entry.id)

        assert local.list_records(ENTRIES) == []
        assert orchestrator.state.entries == []
        assert cache.read(ENTRIES, "user-1") is None

    @pytest.mark.asyncio
    async def test_both_stores_failing_raises(self, remote, cache, clock):
        remote.fail = True
        orchestrator = SyncOrchestrator(
            "user-1", remote, cache,
            _failing_local(delete=LocalStoreError("locked")),
            clock, tz=UTC,
        )

        with pytest.raises(SyncError):
            await orchestrator.delete_entry("e1")


class TestSessionHelpers:
    @pytest.mark.asyncio
    async def test_entries_for_week(self, orchestrator, remote, make_entry):
        # Week of Mon 2026-01-05 .. Sun 2026-01-11
        for d in (date(2026, 1, 4), date(2026, 1, 5), date(2026, 1, 9), date(2026, 1, 12)):
            e = make_entry(d)
            remote.entries[e.id] = e
        await orchestrator.load_entries()

        week = orchestrator.entries_for_week(date(2026, 1, 7))

        assert sorted(e.date for e in week) == ["2026-01-05", "2026-01-09"]

    @pytest.mark.asyncio
    async def test_reset_clears_state_and_cache(self, orchestrator, remote, cache, make_entry):
        entry = make_entry(date(2026, 1, 7))
        remote.entries[entry.id] = entry
        await orchestrator.load_all()

        orchestrator.reset()

        assert orchestrator.state.entries == []
        assert cache.read(ENTRIES, "user-1") is None

    def test_unsubscribe(self, orchestrator):
        calls = []
        unsubscribe = orchestrator.subscribe(calls.append)

        orchestrator.set_current_entry(None)
        unsubscribe()
        orchestrator.set_current_entry(None)

        assert len(calls) == 1

    def test_summary_helpers_keep_one_per_entry(self, orchestrator):
        orchestrator.add_entry_summary(_summary("e1", "s1"))
        orchestrator.add_entry_summary(_summary("e1", "s2"))
        orchestrator.put_hold_status(_hold("e2"))
        orchestrator.put_hold_status(replace(_hold("e2"), retry_count=2))

        assert [s.id for s in orchestrator.state.entry_summaries] == ["s2"]
        assert [h.retry_count for h in orchestrator.state.hold_statuses] == [2]
        assert orchestrator.remove_hold_status("e2").retry_count == 2
        assert orchestrator.remove_hold_status("e2") is None
