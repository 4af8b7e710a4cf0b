"""Tests for session state, the location tracker and the navigation adapters."""

from __future__ import annotations

import asyncio
from typing import List

import pytest

from bulk_downloader.artifacts.ledger import LedgerStore
from bulk_downloader.navigation import (
    HistoryAdapter,
    LocationChannel,
    PollingWatcher,
    PopStateAdapter,
    dispatch_history_event,
)
from bulk_downloader.session_state import (
    FileEntry,
    SessionState,
    SessionStateTracker,
    Transition,
    collection_id_for,
)

from conftest import COURSE_A, COURSE_B


def entry(n: int, collection_id: str = "Q291cnNlQQ") -> FileEntry:
    return FileEntry(id=f"file_{n}", url=f"https://drive.google.com/file/d/F{n}/view", name=f"F{n}.pdf",
                     collection_id=collection_id)


@pytest.fixture
async def tracker(ledger_store: LedgerStore) -> SessionStateTracker:
    tracker = SessionStateTracker(SessionState(), ledger_store)
    await tracker.start(COURSE_A)
    tracker.state.replace_candidates([entry(1), entry(2), entry(3)])
    tracker.state.select(["file_1", "file_3"])
    return tracker


class TestCollectionId:
    @pytest.mark.parametrize(
        "location, expected",
        [
            (COURSE_A, "Q291cnNlQQ"),
            ("https://classroom.google.com/u/0/c/Q291cnNlQQ/a/OTk/details", "Q291cnNlQQ"),
            ("https://classroom.google.com/w/Q291cnNlQQ/t/all", "/w/Q291cnNlQQ/t/all"),
            ("https://classroom.google.com", "https://classroom.google.com"),
        ],
    )
    def test_collection_id_for(self, location: str, expected: str) -> None:
        assert collection_id_for(location) == expected


class TestSessionState:
    def test_selection_only_holds_live_candidates(self) -> None:
        state = SessionState()
        state.replace_candidates([entry(1), entry(2)])
        state.select(["file_1", "file_9"])
        assert state.selection == {"file_1"}

        state.replace_candidates([entry(2)])
        assert state.selection == set()

    def test_select_all_and_selected_order(self) -> None:
        state = SessionState()
        state.replace_candidates([entry(3), entry(1), entry(2)])
        state.select_all()
        assert [e.id for e in state.selected_entries()] == ["file_3", "file_1", "file_2"]
        state.deselect(["file_1"])
        assert [e.id for e in state.selected_entries()] == ["file_3", "file_2"]

    def test_snapshot_uses_message_field_names(self) -> None:
        state = SessionState(location=COURSE_A, collection_id="Q291cnNlQQ")
        state.replace_candidates([entry(1)])
        snap = state.snapshot()
        assert snap["collectionId"] == "Q291cnNlQQ"
        assert snap["files"][0]["collectionId"] == "Q291cnNlQQ"
        assert snap["selected"] == []


class TestSessionStateTracker:
    async def test_collection_change_clears_candidates_and_selection(self, tracker: SessionStateTracker) -> None:
        seen: List[Transition] = []
        tracker.subscribe(lambda transition, state: seen.append(transition))

        transition = await tracker.handle_location_change(COURSE_B)

        assert transition is Transition.COLLECTION_CHANGED
        assert seen == [Transition.COLLECTION_CHANGED]
        assert tracker.state.collection_id == "Q291cnNlQg"
        assert tracker.state.candidates == []
        assert tracker.state.selection == set()

    async def test_collection_change_keeps_entries_of_other_collections(self, tracker: SessionStateTracker) -> None:
        foreign = entry(7, collection_id="elsewhere")
        tracker.state.candidates.append(foreign)
        await tracker.handle_location_change(COURSE_B)
        assert all(e.collection_id != "Q291cnNlQQ" for e in tracker.state.candidates)

    async def test_section_change_retains_candidates_and_selection(self, tracker: SessionStateTracker) -> None:
        before = (list(tracker.state.candidates), set(tracker.state.selection))

        transition = await tracker.handle_location_change(f"{COURSE_A}/a/OTk/details")

        assert transition is Transition.SECTION_CHANGED
        assert (tracker.state.candidates, tracker.state.selection) == before
        assert tracker.state.location == f"{COURSE_A}/a/OTk/details"

    async def test_same_location_fires_nothing(self, tracker: SessionStateTracker) -> None:
        seen: List[Transition] = []
        tracker.subscribe(lambda transition, state: seen.append(transition))
        assert await tracker.handle_location_change(COURSE_A) is Transition.UNCHANGED
        assert seen == []

    async def test_collection_change_reloads_ledger(
        self, tracker: SessionStateTracker, ledger_store: LedgerStore
    ) -> None:
        await ledger_store.record("Q291cnNlQg", ["https://a.example/x"])
        await tracker.handle_location_change(COURSE_B)
        assert tracker.state.ledger.has("Q291cnNlQg", "https://a.example/x")

    async def test_failing_observer_does_not_stop_others(self, tracker: SessionStateTracker) -> None:
        seen: List[str] = []

        def broken(transition, state):
            raise ValueError("observer bug")

        async def recorder(transition, state):
            seen.append(state.collection_id)

        tracker.subscribe(broken)
        tracker.subscribe(recorder)
        await tracker.handle_location_change(COURSE_B)
        assert seen == ["Q291cnNlQg"]


class TestNavigation:
    async def test_history_and_popstate_feed_one_channel(self, tracker: SessionStateTracker) -> None:
        channel = LocationChannel(tracker)
        history, popstate = HistoryAdapter(channel), PopStateAdapter(channel)

        assert await history.push_state(f"{COURSE_A}/t/all") is Transition.SECTION_CHANGED
        assert channel.last_trigger == "pushState"
        assert await popstate.on_popstate(COURSE_B) is Transition.COLLECTION_CHANGED
        assert channel.last_trigger == "popstate"
        assert await history.replace_state(COURSE_B) is Transition.UNCHANGED
        assert channel.last_trigger == "popstate"

    async def test_dispatch_history_event_routes_by_trigger(self, tracker: SessionStateTracker) -> None:
        channel = LocationChannel(tracker)
        history, popstate = HistoryAdapter(channel), PopStateAdapter(channel)

        await dispatch_history_event(history, popstate, "replaceState", f"{COURSE_A}/t/all")
        assert channel.last_trigger == "replaceState"
        await dispatch_history_event(history, popstate, "hashchange", COURSE_B)
        assert channel.last_trigger == "hashchange"

    async def test_poll_emits_only_on_difference(self, tracker: SessionStateTracker) -> None:
        current = {"location": COURSE_A}
        watcher = PollingWatcher(LocationChannel(tracker), lambda: current["location"], interval_s=0.01)

        assert await watcher.poll_once() is Transition.UNCHANGED
        current["location"] = COURSE_B
        assert await watcher.poll_once() is Transition.COLLECTION_CHANGED
        assert tracker.state.collection_id == "Q291cnNlQg"

    async def test_polling_task_picks_up_location_changes(self, tracker: SessionStateTracker) -> None:
        current = {"location": COURSE_A}
        watcher = PollingWatcher(LocationChannel(tracker), lambda: current["location"], interval_s=0.01)
        watcher.start()
        try:
            current["location"] = COURSE_B
            for _ in range(100):
                if tracker.state.collection_id == "Q291cnNlQg":
                    break
                await asyncio.sleep(0.01)
        finally:
            await watcher.stop()
        assert tracker.state.collection_id == "Q291cnNlQg"
