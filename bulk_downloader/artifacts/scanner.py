"""
Scanner: Build the Candidate Set from the Live Page

Workflow:
1. Reload the ledger (another context may have recorded downloads) and make
   sure the session follows the page's current location
2. Narrow the scope to the clicked section, if a trigger element is given
3. Run the document sources in order (attachment containers, then links)
4. Drop anything already downloaded from this collection or already found
5. Replace the candidate set, keeping entries from this collection that are
   still on the page (rebound by url when the snapshot was replaced)

Only one scan runs at a time. A scan requested while another is pending is
ignored rather than queued.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Callable, List, Optional, Sequence
import logging

from bs4 import Tag

from ..session_state import FileEntry, SessionState, SessionStateTracker, new_entry_id
from .document_source import DEFAULT_SOURCES, DocumentSource, FileReference, PageDocument, Scope
from .ledger import LedgerStore

logger = logging.getLogger(__name__)

SourceFactory = Callable[[Scope], DocumentSource]


class Scanner:
    """
    Detects file attachments in a page snapshot.

    Usage:
        scanner = Scanner(state, tracker, ledger_store)
        entries = await scanner.scan(PageDocument(html, location))
        if entries is None:
            ...  # another scan was already running
    """

    def __init__(
        self,
        state: SessionState,
        tracker: SessionStateTracker,
        ledger_store: LedgerStore,
        sources: Sequence[SourceFactory] = DEFAULT_SOURCES,
    ):
        self.state = state
        self.tracker = tracker
        self.ledger_store = ledger_store
        self.sources = list(sources)
        self._scanning = False
        self.completed_scans = 0

    @property
    def is_scanning(self) -> bool:
        return self._scanning

    async def scan(self, document: PageDocument, trigger: Optional[Tag] = None) -> Optional[List[FileEntry]]:
        """
        Run one scan pass.

        Args:
            document: Current page snapshot
            trigger: Element that prompted the scan (narrows the scope)

        Returns:
            The new candidate set, or None when a scan was already in progress
        """
        if self._scanning:
            logger.info("[SCAN] Scan already in progress, skipping")
            return None
        self._scanning = True
        try:
            return await self._scan(document, trigger)
        finally:
            self._scanning = False

    async def _scan(self, document: PageDocument, trigger: Optional[Tag]) -> List[FileEntry]:
        state = self.state
        state.ledger = await self.ledger_store.load()
        if document.location:
            await self.tracker.handle_location_change(document.location)
        collection_id = state.collection_id or ""

        scope = document.scope_for(trigger)
        logger.info(
            f"[SCAN] Scanning {'section' if scope is not document.soup else 'entire document'} "
            f"for collection {collection_id} "
            f"({len(state.ledger.urls_for(collection_id))} ledger entries)"
        )

        found: List[FileEntry] = []
        for factory in self.sources:
            source = factory(scope)
            for ref in source.find_outbound_file_references():
                entry = self._admit(ref, found, collection_id)
                if entry is not None:
                    found.append(entry)

        retained = self._retain(document, found, collection_id)
        retained_urls = {e.url for e in retained}
        added = [e for e in found if e.url not in retained_urls]
        state.replace_candidates(retained + added)

        self.completed_scans += 1
        logger.info(
            f"[SCAN] Total files: {len(state.candidates)} ({len(added)} new) "
            f"in collection {collection_id}"
        )
        return list(state.candidates)

    def _admit(self, ref: FileReference, found: List[FileEntry], collection_id: str) -> Optional[FileEntry]:
        if any(e.url == ref.url for e in found):
            return None
        if self.state.ledger.has(collection_id, ref.url):
            logger.debug(f"[SCAN] Skipping already downloaded file: {ref.url[:60]}")
            return None
        logger.debug(f"[SCAN] Found file ({ref.source}): {ref.name}")
        return FileEntry(
            id=new_entry_id(),
            url=ref.url,
            name=ref.name,
            collection_id=collection_id,
            node=ref.node,
        )

    def _retain(self, document: PageDocument, found: List[FileEntry], collection_id: str) -> List[FileEntry]:
        """
        Keep current candidates that are still on the page.

        An entry whose element is not in this snapshot is rebound by url to
        the element now showing the same file, keeping its id (and therefore
        the selection). It is dropped only when the url is gone from the page.
        """
        state = self.state
        nodes = {e.url: e.node for e in found}
        page_nodes: Optional[dict] = None
        retained: List[FileEntry] = []
        for entry in state.candidates:
            if entry.collection_id != collection_id or state.ledger.has(collection_id, entry.url):
                continue
            if document.contains(entry.node):
                retained.append(entry)
                continue
            node = nodes.get(entry.url)
            if node is None:
                if page_nodes is None:
                    page_nodes = self._page_nodes(document)
                node = page_nodes.get(entry.url)
            if node is None:
                logger.debug(f"[SCAN] Dropping entry no longer on the page: {entry.url[:60]}")
                continue
            retained.append(replace(entry, node=node))
        return retained

    def _page_nodes(self, document: PageDocument) -> dict:
        nodes: dict = {}
        for factory in self.sources:
            for ref in factory(document.soup).find_outbound_file_references():
                nodes.setdefault(ref.url, ref.node)
        return nodes
