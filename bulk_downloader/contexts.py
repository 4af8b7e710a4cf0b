"""
Contexts: Foreground (Page) and Background (Retrieval)

The browser extension runs in separate execution contexts that only talk by
request/response messages. This module models the two that matter here:

ForegroundContext
    Owns the page snapshot, session state, scanner and navigation adapters,
    and the authenticated fetch capability (it acts with the user's session).
    Handles: fetchFileBlob, refresh, togglePanel, getSelectedFiles

BackgroundContext
    Owns the retrieval orchestrator, the transfer facility and the archive
    builder. It reaches the foreground's fetch capability through a
    ForegroundPort, which speaks the fetchFileBlob contract.
    Handles: downloadFiles

``connect()`` wires the two routers together. The service module builds one
pair per process.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Callable, List, Optional, Set
from urllib.parse import urlsplit

from .artifacts.document_source import PageDocument
from .artifacts.ledger import LedgerStore
from .artifacts.scanner import Scanner
from .config import Settings
from .errors import BulkDownloaderError, EmptyPayloadError, FetchError, NoActiveFetchTargetError
from .files import http_fetcher
from .files.archive import ZipArchiveBuilder
from .files.download_manager import BlobFetchTarget, RequestedFile, RetrievalMode, RetrievalOrchestrator
from .files.session_context import SessionContext, get_session_context
from .files.transfer import DiskTransferFacility, TransferFacility, log_transfer_state
from .messaging import Message, MessageRouter, Send
from .navigation import (
    HistoryAdapter,
    LocationChannel,
    PollingWatcher,
    PopStateAdapter,
    dispatch_history_event,
)
from .schemas import Action, DownloadFilesMessage, FetchFileBlobMessage, TogglePanelMessage
from .session_state import FileEntry, SessionState, SessionStateTracker, Transition
from .storage import PANEL_ENABLED_KEY, JsonFileStorage

logger = logging.getLogger(__name__)


class ForegroundContext:
    """
    The page-side context.

    Usage:
        fg = ForegroundContext(settings, storage)
        await fg.initialize(html, "https://classroom.google.com/c/NjQ2")
        await fg.scan()
        fg.state.select_all()
        response = await fg.download_selected(zip=True)
    """

    def __init__(
        self,
        settings: Settings,
        storage: JsonFileStorage,
        *,
        session_provider: Callable[[], Optional[SessionContext]] = get_session_context,
        http_session=None,
    ):
        self.settings = settings
        self.storage = storage
        self.session_provider = session_provider
        self.http_session = http_session

        self.ledger_store = LedgerStore(storage)
        self.state = SessionState()
        self.tracker = SessionStateTracker(self.state, self.ledger_store)
        self.scanner = Scanner(self.state, self.tracker, self.ledger_store)

        self.channel = LocationChannel(self.tracker)
        self.history = HistoryAdapter(self.channel)
        self.popstate = PopStateAdapter(self.channel)
        self.watcher = PollingWatcher(self.channel, self.current_location, settings.poll_interval_s)

        self.document: Optional[PageDocument] = None
        self.panel_enabled = False
        self.send_to_background: Optional[Send] = None
        self._pending: Set[asyncio.Task] = set()

        self.router = MessageRouter("foreground")
        self.router.register(Action.FETCH_FILE_BLOB.value, self._on_fetch_file_blob)
        self.router.register(Action.REFRESH.value, self._on_refresh)
        self.router.register(Action.TOGGLE_PANEL.value, self._on_toggle_panel)
        self.router.register(Action.GET_SELECTED_FILES.value, self._on_get_selected_files)

    # -- lifecycle ---------------------------------------------------------

    async def initialize(self, html: Optional[str] = None, location: Optional[str] = None) -> None:
        """Load the panel toggle, adopt the first page and start the location poll."""
        stored = await self.storage.get([PANEL_ENABLED_KEY])
        self.panel_enabled = bool(stored.get(PANEL_ENABLED_KEY, False))
        logger.info(f"[FG] Panel enabled: {self.panel_enabled}")

        if location is not None:
            await self.load_page(html or "", location)
        self.watcher.start()

    async def shutdown(self) -> None:
        await self.watcher.stop()
        for task in list(self._pending):
            task.cancel()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        self._pending.clear()

    def current_location(self) -> Optional[str]:
        return self.document.location if self.document else None

    # -- page --------------------------------------------------------------

    async def load_page(self, html: str, location: str) -> Transition:
        """
        Replace the page snapshot; the location change goes through the channel.

        The first page starts the tracker and, with the panel enabled,
        schedules the initial scan.
        """
        self.document = PageDocument(html, location)
        if not self.state.location:
            await self.tracker.start(location)
            if self.panel_enabled:
                self.schedule_scan(self.settings.initial_scan_delay_s)
            return Transition.COLLECTION_CHANGED
        return await self.channel.emit(location, "load")

    async def navigate(self, location: str, trigger: str) -> Transition:
        """A history event from the page (pushState, replaceState, popstate)."""
        if self.document is not None:
            self.document.location = location
        if not self.state.location:
            await self.tracker.start(location)
            return Transition.COLLECTION_CHANGED
        return await dispatch_history_event(self.history, self.popstate, trigger, location)

    async def scan(self, trigger=None) -> Optional[List[FileEntry]]:
        if self.document is None:
            logger.info("[FG] No page loaded, nothing to scan")
            return []
        return await self.scanner.scan(self.document, trigger)

    def schedule_scan(self, delay_s: float, trigger=None) -> asyncio.Task:
        task = asyncio.create_task(self._delayed_scan(delay_s, trigger))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _delayed_scan(self, delay_s: float, trigger) -> None:
        await asyncio.sleep(delay_s)
        try:
            await self.scan(trigger)
        except Exception as e:
            logger.error(f"[FG] Scheduled scan failed: {e}", exc_info=True)

    def on_click(self, selector: str) -> Optional[asyncio.Task]:
        """
        A click inside the page: scan the clicked element's section once the
        page has had time to render whatever the click opened.
        """
        if self.document is None or not self.panel_enabled:
            return None
        trigger = self.document.select_one(selector)
        if trigger is None:
            logger.debug(f"[FG] Clicked element not in snapshot: {selector}")
        return self.schedule_scan(self.settings.click_scan_delay_s, trigger)

    def active_collection(self) -> Optional[str]:
        """The page's CollectionId, else the one captured with the session context."""
        if self.state.collection_id:
            return self.state.collection_id
        ctx = self.session_provider()
        return ctx.collection_hint if ctx is not None else None

    # -- fetch target ------------------------------------------------------

    def is_active_fetch_target(self) -> bool:
        location = self.current_location()
        if not location:
            return False
        return urlsplit(location).hostname == self.settings.collection_host

    async def fetch_file_blob(self, url: str) -> bytes:
        if not self.is_active_fetch_target():
            raise NoActiveFetchTargetError(
                f"No page on {self.settings.collection_host} is open to fetch through"
            )
        return await asyncio.to_thread(
            http_fetcher.fetch_file_blob,
            self.session_provider(),
            url,
            self.settings.fetch_timeout_s,
            self.http_session,
        )

    # -- retrieval ---------------------------------------------------------

    async def download_selected(self, zip: bool = False) -> Message:
        """Send the selection to the background; on success clear it and drop retrieved entries."""
        entries = self.state.selected_entries()
        if not entries:
            return {"success": False, "error": "No files selected"}
        if self.send_to_background is None:
            return {"success": False, "error": "Background context not connected"}

        collection_id = self.active_collection()
        response = await self.send_to_background({
            "action": Action.DOWNLOAD_FILES.value,
            "files": [entry.to_message() for entry in entries],
            "zip": zip,
            "collectionId": collection_id,
        })
        if response.get("success"):
            self.state.clear_selection()
            self.state.ledger = await self.ledger_store.load()
            self.state.replace_candidates(
                e for e in self.state.candidates if not self.state.ledger.has(collection_id, e.url)
            )
            logger.info(f"[FG] {response.get('message', 'Download finished')}")
        else:
            logger.error(f"[FG] Download failed: {response.get('error')}")
        return response

    # -- handlers ----------------------------------------------------------

    async def _on_fetch_file_blob(self, message: Message) -> Message:
        request = FetchFileBlobMessage.model_validate(message)
        try:
            data = await self.fetch_file_blob(request.url)
        except BulkDownloaderError as e:
            logger.error(f"[FG] Fetch failed: {e}")
            return {"error": str(e)}
        return {"blobData": base64.b64encode(data).decode("ascii")}

    async def _on_refresh(self, message: Message) -> Message:
        await self.scan()
        return {"success": True}

    async def _on_toggle_panel(self, message: Message) -> Message:
        request = TogglePanelMessage.model_validate(message)
        self.panel_enabled = request.enabled
        await self.storage.set({PANEL_ENABLED_KEY: request.enabled})
        if request.enabled:
            self.schedule_scan(self.settings.click_scan_delay_s)
        return {"success": True, "enabled": request.enabled}

    async def _on_get_selected_files(self, message: Message) -> Message:
        return {"files": [entry.to_message() for entry in self.state.selected_entries()]}


class ForegroundPort:
    """Background-side handle on the foreground's fetch capability."""

    def __init__(
        self,
        send: Send,
        is_active: Callable[[], bool],
        active_collection: Callable[[], Optional[str]] = lambda: None,
    ):
        self.send = send
        self.is_active = is_active
        self.active_collection = active_collection

    async def fetch_file_blob(self, url: str) -> bytes:
        response = await self.send({"action": Action.FETCH_FILE_BLOB.value, "url": url})
        if response.get("error"):
            raise FetchError(response["error"])
        blob = response.get("blobData")
        if not blob:
            raise EmptyPayloadError("Received empty file")
        return base64.b64decode(blob)


class BackgroundContext:
    """
    The retrieval context.

    Usage:
        bg = BackgroundContext(settings, storage)
        response = await bg.router.dispatch({"action": "downloadFiles", "files": [...], "zip": False})
    """

    def __init__(
        self,
        settings: Settings,
        storage: JsonFileStorage,
        *,
        transfer: Optional[TransferFacility] = None,
    ):
        self.settings = settings
        self.storage = storage
        if transfer is None:
            transfer = DiskTransferFacility(settings.download_dir, timeout_s=settings.fetch_timeout_s)
        self.transfer = transfer
        if hasattr(transfer, "add_listener"):
            transfer.add_listener(log_transfer_state)

        self._foreground: Optional[ForegroundPort] = None
        self.orchestrator = RetrievalOrchestrator(
            transfer=transfer,
            fetch_target=self.active_fetch_target,
            archive_factory=ZipArchiveBuilder if settings.archive_enabled else None,
            ledger_store=LedgerStore(storage),
            item_delay_s=settings.item_delay_s,
            archive_prefix=settings.archive_prefix,
        )

        self.router = MessageRouter("background")
        self.router.register(Action.DOWNLOAD_FILES.value, self._on_download_files)

    def attach_foreground(self, port: ForegroundPort) -> None:
        self._foreground = port

    def detach_foreground(self) -> None:
        self._foreground = None

    async def active_fetch_target(self) -> Optional[BlobFetchTarget]:
        port = self._foreground
        if port is None or not port.is_active():
            return None
        return port

    async def _on_download_files(self, message: Message) -> Message:
        request = DownloadFilesMessage.model_validate(message)
        files = [RequestedFile(url=f.url, name=f.name) for f in request.files]
        mode = RetrievalMode.BUNDLED if request.zip else RetrievalMode.INDIVIDUAL
        collection_id = request.collectionId
        if collection_id is None and self._foreground is not None:
            collection_id = self._foreground.active_collection()
        report = await self.orchestrator.retrieve(files, mode, collection_id=collection_id)
        if report.fallback_reason:
            logger.info(f"[BG] Bundled download fell back to individual: {report.fallback_reason}")
        return report.to_response()


def connect(foreground: ForegroundContext, background: BackgroundContext) -> None:
    """Route foreground -> background requests and give the background a fetch port."""
    foreground.send_to_background = background.router.dispatch
    background.attach_foreground(ForegroundPort(
        foreground.router.dispatch,
        foreground.is_active_fetch_target,
        foreground.active_collection,
    ))


class ExtensionRuntime:
    """
    One foreground/background pair sharing a storage file.

    Usage:
        runtime = ExtensionRuntime(Settings.from_env())
        await runtime.start()
        response = await runtime.route({"action": "getSelectedFiles"})
        await runtime.stop()
    """

    def __init__(
        self,
        settings: Settings,
        *,
        transfer: Optional[TransferFacility] = None,
        session_provider: Callable[[], Optional[SessionContext]] = get_session_context,
        http_session=None,
    ):
        self.settings = settings
        self.storage = JsonFileStorage(settings.storage_path)
        self.foreground = ForegroundContext(
            settings, self.storage, session_provider=session_provider, http_session=http_session
        )
        self.background = BackgroundContext(settings, self.storage, transfer=transfer)
        connect(self.foreground, self.background)

    async def start(self) -> None:
        await self.foreground.initialize()
        logger.info(f"[RUNTIME] Storage: {self.settings.storage_path}")
        logger.info(f"[RUNTIME] Downloads: {self.settings.download_dir}")

    async def stop(self) -> None:
        await self.foreground.shutdown()

    async def route(self, message: Message) -> Message:
        """Deliver a message to whichever context handles its action."""
        action = message.get("action") if isinstance(message, dict) else None
        if self.background.router.handles(action):
            return await self.background.router.dispatch(message)
        return await self.foreground.router.dispatch(message)
