"""
Transfer Facility: Saving Files to the Download Directory

This is the platform download capability the orchestrator submits to.
``submit`` validates the request, assigns a transfer id and returns at once;
the bytes are written in the background and a ``complete`` or
``interrupted`` state event is emitted when done. Listeners may log those
events, nothing depends on them for correctness.

Accepted URLs:
- http(s): fetched with the captured session cookies
- data: (base64), used for the bundled archive

Directory structure:
download_dir/
    {filename}
    {stem} (1){suffix}    (name collisions)
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol
from urllib.parse import urlsplit
import asyncio
import base64
import binascii
import logging

from ..errors import PlatformTransferError
from .http_fetcher import fetch_bytes
from .session_context import SessionContext, get_session_context

logger = logging.getLogger(__name__)

STATE_IN_PROGRESS = "in_progress"
STATE_COMPLETE = "complete"
STATE_INTERRUPTED = "interrupted"


@dataclass(frozen=True)
class TransferRecord:
    """
    State of one submitted transfer.

    Attributes:
        transfer_id: Id returned by submit()
        url: Source URL (data: URLs are abbreviated)
        filename: Requested filename
        state: in_progress, complete or interrupted
        path: Where the file was written, once complete
        size_bytes: Bytes written
        error: Why the transfer was interrupted
        started_at: ISO 8601 submission time
    """
    transfer_id: int
    url: str
    filename: str
    state: str = STATE_IN_PROGRESS
    path: Optional[str] = None
    size_bytes: int = 0
    error: Optional[str] = None
    started_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "transfer_id": self.transfer_id,
            "url": self.url,
            "filename": self.filename,
            "state": self.state,
            "path": self.path,
            "size_bytes": self.size_bytes,
            "error": self.error,
            "started_at": self.started_at,
        }


TransferListener = Callable[[TransferRecord], None]


class TransferFacility(Protocol):
    async def submit(self, url: str, filename: str, save_as_dialog: bool = False) -> int:
        """Start a transfer and return its id. Raises PlatformTransferError when rejected."""
        ...


def decode_data_url(url: str) -> bytes:
    """Decode a base64 ``data:`` URL."""
    header, sep, payload = url.partition(",")
    if not sep or ";base64" not in header:
        raise PlatformTransferError("Invalid data URL: only base64 payloads are supported")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise PlatformTransferError(f"Invalid data URL: {e}") from e


def to_data_url(data: bytes, mime_type: str = "application/zip") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


class DiskTransferFacility:
    """
    Writes transfers into a local directory.

    Usage:
        facility = DiskTransferFacility("~/Downloads/classroom")
        transfer_id = await facility.submit(url, "Essay.docx")
        await facility.wait_all()
    """

    def __init__(
        self,
        download_dir: Path | str,
        *,
        session_provider: Callable[[], Optional[SessionContext]] = get_session_context,
        timeout_s: int = 30,
        http_session=None,
        keep_records: int = 256,
    ):
        self.download_dir = Path(download_dir).expanduser()
        self.session_provider = session_provider
        self.timeout_s = timeout_s
        self.http_session = http_session
        self.keep_records = keep_records
        self._next_id = 1
        self._records: Dict[int, TransferRecord] = {}
        self._tasks: Dict[int, asyncio.Task] = {}
        self._listeners: List[TransferListener] = []
        self._reserved: set = set()

    def add_listener(self, listener: TransferListener) -> None:
        self._listeners.append(listener)

    def _sanitize_filename(self, filename: str) -> str:
        safe = filename.replace("/", "_").replace("\\", "_").replace("\x00", "").strip()
        if len(safe) > 200:
            ext = Path(safe).suffix
            safe = safe[:200 - len(ext)] + ext
        return safe or "download"

    def _unique_path(self, filename: str) -> Path:
        path = self.download_dir / filename
        n = 1
        while path.exists() or path in self._reserved:
            path = self.download_dir / f"{Path(filename).stem} ({n}){Path(filename).suffix}"
            n += 1
        self._reserved.add(path)
        return path

    async def submit(self, url: str, filename: str, save_as_dialog: bool = False) -> int:
        scheme = urlsplit(url).scheme.lower() if isinstance(url, str) else ""
        if scheme not in ("http", "https", "data"):
            raise PlatformTransferError(f"Invalid URL: {str(url)[:80]}")

        payload: Optional[bytes] = decode_data_url(url) if scheme == "data" else None
        try:
            self.download_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PlatformTransferError(f"Download directory not writable: {e}") from e
        if save_as_dialog:
            logger.debug("[TRANSFER] save-as dialog not available, saving to download directory")

        transfer_id = self._next_id
        self._next_id += 1
        record = TransferRecord(
            transfer_id=transfer_id,
            url=url if payload is None else url[:40] + "...",
            filename=self._sanitize_filename(filename),
            started_at=datetime.now(timezone.utc).isoformat(),
        )
        self._records[transfer_id] = record
        task = asyncio.create_task(self._run(record, url, payload))
        self._tasks[transfer_id] = task
        task.add_done_callback(lambda _t, tid=transfer_id: self._tasks.pop(tid, None))
        logger.info(f"[TRANSFER] Submitted #{transfer_id}: {record.filename}")
        return transfer_id

    async def _run(self, record: TransferRecord, url: str, payload: Optional[bytes]) -> None:
        path: Optional[Path] = None
        try:
            if payload is None:
                result = await asyncio.to_thread(
                    fetch_bytes, self.session_provider(), url, self.timeout_s, self.http_session
                )
                if not result.ok:
                    raise PlatformTransferError(result.error or "Download failed")
                payload = result.content
            path = self._unique_path(record.filename)
            await asyncio.to_thread(path.write_bytes, payload)
            done = replace(record, state=STATE_COMPLETE, path=str(path), size_bytes=len(payload))
        except Exception as e:
            done = replace(record, state=STATE_INTERRUPTED, error=str(e))
        finally:
            if path is not None:
                self._reserved.discard(path)
        self._records[record.transfer_id] = done
        self._prune_records()
        self._emit(done)

    def _prune_records(self) -> None:
        """Forget the oldest finished transfers beyond ``keep_records``."""
        finished = [k for k in sorted(self._records) if self._records[k].state != STATE_IN_PROGRESS]
        for transfer_id in finished[:max(0, len(finished) - self.keep_records)]:
            del self._records[transfer_id]

    def _emit(self, record: TransferRecord) -> None:
        for listener in list(self._listeners):
            try:
                listener(record)
            except Exception as e:
                logger.error(f"[TRANSFER] Listener failed: {e}")

    async def wait_all(self) -> List[TransferRecord]:
        """Wait for every submitted transfer to finish and return their records."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)
        return self.list_all()

    def get(self, transfer_id: int) -> Optional[TransferRecord]:
        return self._records.get(transfer_id)

    def list_all(self) -> List[TransferRecord]:
        return [self._records[k] for k in sorted(self._records)]


def log_transfer_state(record: TransferRecord) -> None:
    """Default listener: log completion and interruption."""
    if record.state == STATE_COMPLETE:
        logger.info(f"[TRANSFER] Download completed: #{record.transfer_id} -> {record.path}")
    elif record.state == STATE_INTERRUPTED:
        logger.error(f"[TRANSFER] Download interrupted: #{record.transfer_id} ({record.error})")
