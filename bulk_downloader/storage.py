"""Key-value storage shared by every context (ledger history, panel toggle)."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

logger = logging.getLogger(__name__)

LEDGER_KEY = "downloadedFilesByClassroom"
PANEL_ENABLED_KEY = "panelEnabled"


class JsonFileStorage:
    """Process-independent key-value store backed by a single JSON file.

    Reads tolerate a missing, empty or corrupt file (treated as empty).
    Writes merge the given keys into what is on disk and replace the file
    atomically. Concurrent writers in other processes can still lose
    updates; every caller reloads before it modifies.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _read_all(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            logger.error(f"[STORAGE] Could not read {self.path}: {e}")
            return {}
        if not text.strip():
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning(f"[STORAGE] Ignoring corrupt store {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self.path)

    async def get(self, keys: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        """Return the requested keys that exist (all keys when ``keys`` is None)."""
        async with self._lock:
            data = await asyncio.to_thread(self._read_all)
        if keys is None:
            return data
        return {k: data[k] for k in keys if k in data}

    async def set(self, items: Dict[str, Any]) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read_all)
            data.update(items)
            await asyncio.to_thread(self._write_all, data)
        logger.debug(f"[STORAGE] Saved keys: {sorted(items)}")
