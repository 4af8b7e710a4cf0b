"""
Dedup Ledger: Per-Collection History of Retrieved Files

Once a file has been downloaded from a collection it must never show up
again in that collection's candidate list. The ledger records, per
CollectionId, every URL that was retrieved, both as found in the page and in
normalized form (origin + path). Query strings in Drive links change between
renders (``usp=sharing``, ``authuser=0`` ...); the path carries the file id,
so normalized comparison survives those differences.

Persistence goes through the shared key-value storage under
``downloadedFilesByClassroom``. Entries are only ever added.

Consistency is best-effort: every mutation reloads before modifying, which
narrows but does not close the window for lost updates between contexts.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List, Optional, Set
from urllib.parse import urlsplit
import logging

from ..storage import LEDGER_KEY, JsonFileStorage

logger = logging.getLogger(__name__)


def normalize_url(url: str) -> str:
    """
    Reduce a URL to origin + path.

    URLs without a scheme and host (relative or malformed) are returned
    unchanged, so the function is total and idempotent.
    """
    try:
        parts = urlsplit(url)
    except (ValueError, TypeError, AttributeError):
        return url
    if not parts.scheme or not parts.netloc:
        return url
    return f"{parts.scheme}://{parts.netloc}{parts.path}"


class DedupLedger:
    """
    In-memory view of the ledger.

    Usage:
        ledger = DedupLedger()
        ledger.add("abc123", ["https://drive.google.com/file/d/X/view?usp=sharing"])
        ledger.has("abc123", "https://drive.google.com/file/d/X/view")  # True
    """

    def __init__(self, entries: Optional[Dict[str, Iterable[str]]] = None):
        self._entries: Dict[str, Set[str]] = {}
        for collection_id, urls in (entries or {}).items():
            if isinstance(urls, (list, tuple, set)):
                self._entries[str(collection_id)] = {u for u in urls if isinstance(u, str)}

    def has(self, collection_id: Optional[str], url: str) -> bool:
        """True when ``url`` or its normalized form was recorded for the collection."""
        if not collection_id:
            return False
        seen = self._entries.get(collection_id)
        if not seen:
            return False
        return url in seen or normalize_url(url) in seen

    def add(self, collection_id: str, urls: Iterable[str]) -> int:
        """
        Record URLs for a collection (original and normalized forms).

        Returns:
            Number of strings newly added
        """
        seen = self._entries.setdefault(collection_id, set())
        before = len(seen)
        for url in urls:
            seen.add(normalize_url(url))
            seen.add(url)
        return len(seen) - before

    def urls_for(self, collection_id: str) -> Set[str]:
        return set(self._entries.get(collection_id, set()))

    def collections(self) -> List[str]:
        return list(self._entries)

    def to_storage(self) -> Dict[str, List[str]]:
        return {key: sorted(urls) for key, urls in self._entries.items()}

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        total = sum(len(v) for v in self._entries.values())
        return f"DedupLedger(collections={len(self._entries)}, urls={total})"


def has(ledger: DedupLedger, collection_id: Optional[str], url: str) -> bool:
    return ledger.has(collection_id, url)


class LedgerStore:
    """Loads and saves the ledger through the shared key-value storage."""

    def __init__(self, storage: JsonFileStorage):
        self.storage = storage

    async def load(self) -> DedupLedger:
        data = await self.storage.get([LEDGER_KEY])
        raw = data.get(LEDGER_KEY)
        if not isinstance(raw, dict):
            logger.debug("[LEDGER] No downloaded files history found in storage")
            return DedupLedger()
        ledger = DedupLedger(raw)
        logger.debug(f"[LEDGER] Loaded {ledger!r}")
        return ledger

    async def save(self, ledger: DedupLedger) -> None:
        await self.storage.set({LEDGER_KEY: ledger.to_storage()})
        logger.info(f"[LEDGER] Saved {ledger!r}")

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[DedupLedger]:
        """Load the ledger for modification; it is saved when the block exits, even on error."""
        ledger = await self.load()
        try:
            yield ledger
        finally:
            await self.save(ledger)

    async def record(self, collection_id: str, urls: Iterable[str]) -> DedupLedger:
        """Reload, add ``urls`` under ``collection_id`` and persist. Returns the saved ledger."""
        urls = list(urls)
        async with self.acquire() as ledger:
            added = ledger.add(collection_id, urls)
        logger.info(
            f"[LEDGER] Marked {len(urls)} file(s) as downloaded for collection {collection_id} "
            f"({added} new entries)"
        )
        return ledger
