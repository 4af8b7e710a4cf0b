"""
Session State: Current Collection, Candidates and Selection

Classroom is a single-page app: moving between Stream, Classwork and a
material's detail page changes the location without reloading. Files found
in one course must never leak into another, while switching tabs inside the
same course keeps what was already discovered.

- SessionState: explicit state object (collection id, location, candidates,
  selection, ledger view) shared by the scanner and the tracker
- SessionStateTracker: decides "collection changed" vs "section changed"
  when the location moves
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Set, Union
from urllib.parse import urlsplit
import inspect
import logging
import re
import uuid

from .artifacts.ledger import DedupLedger, LedgerStore

logger = logging.getLogger(__name__)

_COLLECTION_SEGMENT = re.compile(r"/c/([^/]+)")


def collection_id_for(location: str) -> str:
    """
    Derive the CollectionId from a location.

    ``https://classroom.google.com/u/0/c/NjQ2/a/OTk/details`` -> ``NjQ2``.
    Without a ``/c/<id>`` segment the path is used; an unparseable location
    is used as-is.
    """
    try:
        path = urlsplit(location).path
    except (ValueError, TypeError, AttributeError):
        return location
    match = _COLLECTION_SEGMENT.search(path)
    if match:
        return match.group(1)
    return path or location


def new_entry_id() -> str:
    return f"file_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class FileEntry:
    """
    One detected file reference.

    Attributes:
        id: Opaque unique token used by the selection
        url: Source URL as found in the page
        name: Display / candidate filename
        collection_id: Collection the entry was found in
        node: Backing page element (not part of equality)
    """
    id: str
    url: str
    name: str
    collection_id: str
    node: Any = field(default=None, compare=False, repr=False)

    def to_dict(self) -> dict:
        return {"id": self.id, "url": self.url, "name": self.name, "collectionId": self.collection_id}

    def to_message(self) -> dict:
        return {"url": self.url, "name": self.name}


class Transition(str, Enum):
    UNCHANGED = "unchanged"
    SECTION_CHANGED = "section_changed"
    COLLECTION_CHANGED = "collection_changed"


@dataclass
class SessionState:
    """
    Mutable session for one foreground context.

    Invariants kept by the mutators:
    - every candidate belongs to ``collection_id`` once a scan completes
    - candidates are unique by url
    - ``selection`` only holds ids of current candidates
    """
    location: str = ""
    collection_id: Optional[str] = None
    candidates: List[FileEntry] = field(default_factory=list)
    selection: Set[str] = field(default_factory=set)
    ledger: DedupLedger = field(default_factory=DedupLedger)

    def replace_candidates(self, entries: Iterable[FileEntry]) -> None:
        self.candidates = list(entries)
        self._prune_selection()

    def _prune_selection(self) -> None:
        live = {entry.id for entry in self.candidates}
        self.selection &= live

    def select(self, ids: Iterable[str]) -> None:
        live = {entry.id for entry in self.candidates}
        self.selection.update(i for i in ids if i in live)

    def deselect(self, ids: Iterable[str]) -> None:
        self.selection.difference_update(ids)

    def select_all(self) -> None:
        self.selection = {entry.id for entry in self.candidates}

    def clear_selection(self) -> None:
        self.selection.clear()

    def selected_entries(self) -> List[FileEntry]:
        """Selected candidates in candidate order."""
        return [entry for entry in self.candidates if entry.id in self.selection]

    def snapshot(self) -> dict:
        return {
            "location": self.location,
            "collectionId": self.collection_id,
            "files": [entry.to_dict() for entry in self.candidates],
            "selected": [entry.id for entry in self.selected_entries()],
        }


Observer = Callable[[Transition, SessionState], Union[None, Awaitable[None]]]


class SessionStateTracker:
    """
    Reacts to location changes.

    Usage:
        tracker = SessionStateTracker(state, ledger_store)
        await tracker.start("https://classroom.google.com/c/ABC")
        transition = await tracker.handle_location_change("https://classroom.google.com/c/XYZ")
    """

    def __init__(self, state: SessionState, ledger_store: LedgerStore):
        self.state = state
        self.ledger_store = ledger_store
        self._observers: List[Observer] = []

    def subscribe(self, observer: Observer) -> None:
        self._observers.append(observer)

    async def _notify(self, transition: Transition) -> None:
        for observer in list(self._observers):
            try:
                result = observer(transition, self.state)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"[SESSION] Observer failed on {transition.value}: {e}")

    async def start(self, location: str) -> None:
        """Initialize from the first location seen (no observers fire)."""
        self.state.ledger = await self.ledger_store.load()
        self.state.location = location
        self.state.collection_id = collection_id_for(location)
        self.state.replace_candidates(
            e for e in self.state.candidates if e.collection_id == self.state.collection_id
        )
        logger.info(f"[SESSION] Current collection: {self.state.collection_id}")

    async def handle_location_change(self, location: str) -> Transition:
        state = self.state
        if location == state.location:
            return Transition.UNCHANGED

        new_collection = collection_id_for(location)
        old_collection = state.collection_id

        if new_collection != old_collection:
            logger.info(f"[SESSION] New collection detected: {old_collection} -> {new_collection}")
            state.ledger = await self.ledger_store.load()
            state.candidates = [e for e in state.candidates if e.collection_id != old_collection]
            state.clear_selection()
            state.collection_id = new_collection
            state.location = location
            transition = Transition.COLLECTION_CHANGED
        else:
            logger.info("[SESSION] Different section in same collection, keeping files")
            state.location = location
            transition = Transition.SECTION_CHANGED

        await self._notify(transition)
        return transition
