"""
Download Manager: Individual Transfers or One Bundled Archive

This module orchestrates retrieval of the user's selection using one of two
strategies:

1. INDIVIDUAL
   - One transfer submission per file, in selection order
   - A fixed delay between items keeps the platform from throttling
   - A failed item is logged and skipped, the batch carries on

2. BUNDLED (falls back to INDIVIDUAL)
   - Raw bytes are requested from the foreground context, which can fetch
     with the user's session; the archive builder cannot authenticate
   - Files that fetched are packed into one ZIP, submitted as one transfer
   - Falls back to INDIVIDUAL for the whole batch when there is no archive
     builder, no fetch target, or nothing could be fetched

After a successful batch the retrieved URLs are recorded in the dedup ledger
for the collection: the transferred ones in INDIVIDUAL mode, every requested
one in BUNDLED mode (the archive is delivered as a unit).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence
import logging

from ..artifacts.ledger import LedgerStore
from ..errors import NoActiveFetchTargetError, PlatformTransferError, ZeroItemsBundledError
from .archive import ArchiveFactory, ZipArchiveBuilder, archive_name
from .naming import repair_name
from .resolver import Resolver, resolve
from .transfer import TransferFacility, to_data_url

logger = logging.getLogger(__name__)


class RetrievalMode(str, Enum):
    INDIVIDUAL = "individual"
    BUNDLED = "bundled"


class RetrievalItem(Protocol):
    url: str
    name: str


@dataclass(frozen=True)
class RequestedFile:
    url: str
    name: str


@dataclass(frozen=True)
class TransferredFile:
    """
    One successful transfer submission.

    Attributes:
        id: Transfer id returned by the facility
        name: Requested display name (or the archive name)
        url: Source URL, for individual transfers
    """
    id: Any
    name: str
    url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id, "name": self.name}
        if self.url is not None:
            data["url"] = self.url
        return data


@dataclass(frozen=True)
class RetrievalReport:
    """
    Outcome of a retrieval batch.

    Attributes:
        success: False only on total failure or a rejected bundle submission
        mode: Strategy that produced the result (after any fallback)
        files: Successful transfer submissions
        message: Summary for the user
        error: Error message when success is False
        requested: Number of files asked for
        fallback_reason: Why BUNDLED fell back to INDIVIDUAL, if it did
        committed_urls: URLs recorded in the ledger
    """
    success: bool
    mode: RetrievalMode
    files: List[TransferredFile] = field(default_factory=list)
    message: str = ""
    error: Optional[str] = None
    requested: int = 0
    fallback_reason: Optional[str] = None
    committed_urls: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return len(self.files)

    def to_response(self) -> Dict[str, Any]:
        """``downloadFiles`` response body."""
        if not self.success:
            return {"success": False, "error": self.error or "Download failed"}
        return {
            "success": True,
            "files": [f.to_dict() for f in self.files],
            "message": self.message,
        }


class BlobFetchTarget(Protocol):
    """A context able to fetch file bytes with the user's session."""

    async def fetch_file_blob(self, url: str) -> bytes:
        ...


FetchTargetProvider = Callable[[], Awaitable[Optional[BlobFetchTarget]]]
Sleep = Callable[[float], Awaitable[None]]


class RetrievalOrchestrator:
    """
    Retrieves a selection of files.

    Usage:
        orchestrator = RetrievalOrchestrator(
            transfer=DiskTransferFacility(settings.download_dir),
            fetch_target=foreground_port,
            ledger_store=LedgerStore(storage),
        )
        report = await orchestrator.retrieve(entries, RetrievalMode.BUNDLED, collection_id="NjQ2")
    """

    def __init__(
        self,
        *,
        transfer: TransferFacility,
        fetch_target: Optional[FetchTargetProvider] = None,
        archive_factory: Optional[ArchiveFactory] = ZipArchiveBuilder,
        ledger_store: Optional[LedgerStore] = None,
        item_delay_s: float = 0.3,
        archive_prefix: str = "Classroom_Files",
        resolver: Resolver = resolve,
        sleep: Sleep = asyncio.sleep,
        today: Callable[[], date] = date.today,
    ):
        self.transfer = transfer
        self.fetch_target = fetch_target
        self.archive_factory = archive_factory
        self.ledger_store = ledger_store
        self.item_delay_s = item_delay_s
        self.archive_prefix = archive_prefix
        self.resolver = resolver
        self._sleep = sleep
        self._today = today

    async def retrieve(
        self,
        selection: Sequence[RetrievalItem],
        mode: RetrievalMode,
        collection_id: Optional[str] = None,
    ) -> RetrievalReport:
        """
        Retrieve ``selection`` and record what was retrieved.

        Args:
            selection: FileEntry objects (or anything with ``url`` and ``name``)
            mode: INDIVIDUAL or BUNDLED
            collection_id: Collection to record the retrieved URLs under

        Returns:
            RetrievalReport
        """
        items = list(selection)
        logger.info(f"[RETRIEVE] Starting download of {len(items)} file(s), mode: {mode.value}")
        if not items:
            return RetrievalReport(success=False, mode=mode, error="No files selected")

        if mode is RetrievalMode.BUNDLED:
            report = await self._bundled(items)
        else:
            report = await self._individual(items)

        if report.success and collection_id and self.ledger_store is not None:
            if report.mode is RetrievalMode.BUNDLED:
                urls = [item.url for item in items]
            else:
                urls = [f.url for f in report.files if f.url]
            if urls:
                await self.ledger_store.record(collection_id, urls)
            report = RetrievalReport(
                success=report.success,
                mode=report.mode,
                files=report.files,
                message=report.message,
                error=report.error,
                requested=report.requested,
                fallback_reason=report.fallback_reason,
                committed_urls=urls,
            )
        return report

    async def _individual(self, items: List[RetrievalItem], fallback_reason: Optional[str] = None) -> RetrievalReport:
        transferred: List[TransferredFile] = []

        for i, item in enumerate(items):
            if i > 0:
                await self._sleep(self.item_delay_s)
            try:
                logger.info(f"[RETRIEVE] Downloading {i + 1}/{len(items)}: {item.name}")
                direct_url = self.resolver(item.url, item.name)
                filename = repair_name(item.name, direct_url)
                logger.debug(f"[RETRIEVE] Original URL: {item.url}")
                logger.debug(f"[RETRIEVE] Direct download URL: {direct_url}")
                transfer_id = await self.transfer.submit(direct_url, filename, save_as_dialog=False)
                transferred.append(TransferredFile(id=transfer_id, name=item.name, url=item.url))
            except Exception as e:
                logger.error(f"[RETRIEVE] Failed to download {item.name}: {e}")

        if not transferred:
            return RetrievalReport(
                success=False,
                mode=RetrievalMode.INDIVIDUAL,
                error=f"None of the {len(items)} file(s) could be downloaded",
                requested=len(items),
                fallback_reason=fallback_reason,
            )
        return RetrievalReport(
            success=True,
            mode=RetrievalMode.INDIVIDUAL,
            files=transferred,
            message=f"Downloaded {len(transferred)} file(s)",
            requested=len(items),
            fallback_reason=fallback_reason,
        )

    async def _resolve_fetch_target(self) -> BlobFetchTarget:
        if self.fetch_target is None:
            raise NoActiveFetchTargetError("No fetch target configured")
        target = await self.fetch_target()
        if target is None:
            raise NoActiveFetchTargetError("No active Classroom page to fetch through")
        return target

    async def _bundled(self, items: List[RetrievalItem]) -> RetrievalReport:
        if self.archive_factory is None:
            logger.info("[RETRIEVE] Archive builder not available, downloading individually")
            return await self._individual(items, fallback_reason="archive builder unavailable")

        try:
            target = await self._resolve_fetch_target()
            archive = self.archive_factory()
            for i, item in enumerate(items):
                if i > 0:
                    await self._sleep(self.item_delay_s)
                try:
                    logger.info(f"[RETRIEVE] Requesting fetch for {i + 1}/{len(items)}: {item.name}")
                    direct_url = self.resolver(item.url, item.name)
                    data = await target.fetch_file_blob(direct_url)
                    member = archive.add(repair_name(item.name, direct_url), data)
                    logger.info(f"[RETRIEVE] Added {member} to ZIP")
                except NoActiveFetchTargetError:
                    raise
                except Exception as e:
                    logger.error(f"[RETRIEVE] Failed to fetch {item.name}: {e}")

            if len(archive) == 0:
                raise ZeroItemsBundledError("No files could be fetched for ZIP")
            logger.info(f"[RETRIEVE] Added {len(archive)}/{len(items)} files to ZIP, generating...")
            payload = await asyncio.to_thread(archive.build)
        except (NoActiveFetchTargetError, ZeroItemsBundledError) as e:
            logger.warning(f"[RETRIEVE] {e}, falling back to individual downloads")
            return await self._individual(items, fallback_reason=str(e))
        except Exception as e:
            logger.error(f"[RETRIEVE] ZIP creation failed, downloading individually: {e}")
            return await self._individual(items, fallback_reason=f"archive build failed: {e}")

        zip_name = archive_name(self.archive_prefix, self._today())
        try:
            transfer_id = await self.transfer.submit(to_data_url(payload), zip_name, save_as_dialog=False)
        except PlatformTransferError as e:
            logger.error(f"[RETRIEVE] ZIP download rejected: {e}")
            return RetrievalReport(success=False, mode=RetrievalMode.BUNDLED, error=str(e), requested=len(items))

        return RetrievalReport(
            success=True,
            mode=RetrievalMode.BUNDLED,
            files=[TransferredFile(id=transfer_id, name=zip_name)],
            message=f"Created ZIP with {len(archive)} file(s)",
            requested=len(items),
        )
