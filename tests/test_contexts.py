"""Tests for the foreground/background contexts and the messages between them."""

from __future__ import annotations

import asyncio
import base64

import pytest

from bulk_downloader.artifacts.ledger import LedgerStore
from bulk_downloader.config import Settings
from bulk_downloader.contexts import ExtensionRuntime, ForegroundContext
from bulk_downloader.files.session_context import SessionContext
from bulk_downloader.session_state import Transition
from bulk_downloader.storage import PANEL_ENABLED_KEY

from conftest import CLASSWORK_HTML, COURSE_A, COURSE_B, DRIVE_PDF, FakeResponse, FakeSession, FakeTransfer


async def settle(fg: ForegroundContext) -> None:
    """Wait for every scheduled scan."""
    while fg._pending:
        await asyncio.gather(*list(fg._pending))


@pytest.fixture
def http_session() -> FakeSession:
    return FakeSession({}, default=FakeResponse("https://drive.google.com/uc", content=b"%PDF-1.7"))


@pytest.fixture
async def runtime(settings: Settings, fake_transfer: FakeTransfer, http_session: FakeSession):
    rt = ExtensionRuntime(settings, transfer=fake_transfer, session_provider=lambda: None, http_session=http_session)
    yield rt
    await rt.stop()


class TestForegroundContext:
    async def test_first_page_starts_the_session(self, runtime: ExtensionRuntime) -> None:
        fg = runtime.foreground
        transition = await fg.load_page(CLASSWORK_HTML, COURSE_A)
        assert transition is Transition.COLLECTION_CHANGED
        assert fg.state.collection_id == "Q291cnNlQQ"

    async def test_initial_scan_runs_only_when_panel_enabled(self, runtime: ExtensionRuntime) -> None:
        fg = runtime.foreground
        await fg.initialize(CLASSWORK_HTML, COURSE_A)
        await settle(fg)
        assert fg.state.candidates == []

    async def test_initial_scan_with_panel_enabled(self, runtime: ExtensionRuntime) -> None:
        await runtime.storage.set({PANEL_ENABLED_KEY: True})
        fg = runtime.foreground
        await fg.initialize(CLASSWORK_HTML, COURSE_A)
        await settle(fg)
        assert len(fg.state.candidates) == 3

    async def test_toggle_panel_persists_and_scans(self, runtime: ExtensionRuntime) -> None:
        fg = runtime.foreground
        await fg.load_page(CLASSWORK_HTML, COURSE_A)

        response = await runtime.route({"action": "togglePanel", "enabled": True})
        await settle(fg)

        assert response == {"success": True, "enabled": True}
        assert (await runtime.storage.get([PANEL_ENABLED_KEY])) == {PANEL_ENABLED_KEY: True}
        assert fg.scanner.completed_scans == 1

        response = await runtime.route({"action": "togglePanel", "enabled": False})
        assert response == {"success": True, "enabled": False}
        assert (await runtime.storage.get([PANEL_ENABLED_KEY])) == {PANEL_ENABLED_KEY: False}

    async def test_click_schedules_scan_when_panel_enabled(self, runtime: ExtensionRuntime) -> None:
        fg = runtime.foreground
        await fg.load_page(CLASSWORK_HTML, COURSE_A)
        assert fg.on_click("div.attachment-card a") is None

        fg.panel_enabled = True
        task = fg.on_click("div.attachment-card a")
        await task
        assert len(fg.state.candidates) == 3

    async def test_refresh_and_get_selected_files(self, runtime: ExtensionRuntime) -> None:
        fg = runtime.foreground
        await fg.load_page(CLASSWORK_HTML, COURSE_A)

        assert await runtime.route({"action": "refresh"}) == {"success": True}
        fg.state.select([fg.state.candidates[0].id])

        response = await runtime.route({"action": "getSelectedFiles"})
        assert response == {"files": [{"url": DRIVE_PDF, "name": "Syllabus.pdf"}]}

    async def test_navigation_to_other_collection_clears_selection(self, runtime: ExtensionRuntime) -> None:
        fg = runtime.foreground
        await fg.load_page(CLASSWORK_HTML, COURSE_A)
        await fg.scan()
        fg.state.select_all()

        transition = await fg.navigate(COURSE_B, "pushState")

        assert transition is Transition.COLLECTION_CHANGED
        assert fg.state.selection == set()
        assert fg.current_location() == COURSE_B

    async def test_fetch_file_blob_requires_collection_host(self, runtime: ExtensionRuntime) -> None:
        await runtime.foreground.load_page("<p></p>", "https://example.com/c/abc")
        response = await runtime.route({"action": "fetchFileBlob", "url": DRIVE_PDF})
        assert "classroom.google.com" in response["error"]

    async def test_fetch_file_blob_returns_base64(self, runtime: ExtensionRuntime) -> None:
        await runtime.foreground.load_page(CLASSWORK_HTML, COURSE_A)
        response = await runtime.route({"action": "fetchFileBlob", "url": DRIVE_PDF})
        assert base64.b64decode(response["blobData"]) == b"%PDF-1.7"

    async def test_unknown_action(self, runtime: ExtensionRuntime) -> None:
        assert await runtime.route({"action": "nope"}) == {"success": False, "error": "Unknown action: nope"}


class TestDownloadSelected:
    async def test_nothing_selected(self, runtime: ExtensionRuntime) -> None:
        await runtime.foreground.load_page(CLASSWORK_HTML, COURSE_A)
        response = await runtime.foreground.download_selected(zip=False)
        assert response == {"success": False, "error": "No files selected"}

    async def test_individual_download_clears_selection_and_hides_files(
        self, runtime: ExtensionRuntime, fake_transfer: FakeTransfer
    ) -> None:
        fg = runtime.foreground
        await fg.load_page(CLASSWORK_HTML, COURSE_A)
        await fg.scan()
        fg.state.select([fg.state.candidates[0].id])

        response = await fg.download_selected(zip=False)

        assert response["success"]
        assert response["message"] == "Downloaded 1 file(s)"
        assert len(fake_transfer.submissions) == 1
        assert fg.state.selection == set()
        assert DRIVE_PDF not in [e.url for e in fg.state.candidates]
        assert DRIVE_PDF not in [e.url for e in await fg.scan()]

    async def test_bundled_download_fetches_through_foreground(
        self, runtime: ExtensionRuntime, fake_transfer: FakeTransfer, http_session: FakeSession
    ) -> None:
        fg = runtime.foreground
        await fg.load_page(CLASSWORK_HTML, COURSE_A)
        await fg.scan()
        fg.state.select_all()

        response = await fg.download_selected(zip=True)

        assert response["message"] == "Created ZIP with 3 file(s)"
        assert len(http_session.calls) == 3
        [(url, name)] = fake_transfer.submissions
        assert url.startswith("data:application/zip;base64,")
        assert name.startswith("Classroom_Files_")
        assert fg.state.candidates == []

    async def test_bundled_download_off_host_falls_back(
        self, runtime: ExtensionRuntime, fake_transfer: FakeTransfer, http_session: FakeSession
    ) -> None:
        fg = runtime.foreground
        await fg.load_page(CLASSWORK_HTML, "https://example.com/c/Q291cnNlQQ")
        await fg.scan()
        fg.state.select_all()

        response = await fg.download_selected(zip=True)

        assert response["message"] == "Downloaded 3 file(s)"
        assert http_session.calls == []
        assert len(fake_transfer.submissions) == 3

    async def test_failed_download_keeps_selection(self, settings: Settings) -> None:
        runtime = ExtensionRuntime(settings, transfer=FakeTransfer(reject=("google.com",)))
        fg = runtime.foreground
        await fg.load_page(CLASSWORK_HTML, COURSE_A)
        await fg.scan()
        fg.state.select_all()

        response = await fg.download_selected(zip=False)

        assert response["success"] is False
        assert len(fg.state.selection) == 3
        await runtime.stop()


class TestDownloadFilesMessage:
    async def test_commit_uses_active_collection(self, runtime: ExtensionRuntime) -> None:
        fg = runtime.foreground
        await fg.load_page(CLASSWORK_HTML, COURSE_A)
        await fg.scan()

        response = await runtime.route({
            "action": "downloadFiles",
            "files": [{"url": DRIVE_PDF, "name": "Syllabus.pdf"}],
            "zip": False,
        })

        assert response["success"] is True
        assert DRIVE_PDF not in [e.url for e in await fg.scan()]

    async def test_commit_falls_back_to_session_collection_hint(
        self, settings: Settings, fake_transfer: FakeTransfer, ledger_store: LedgerStore
    ) -> None:
        ctx = SessionContext(base_url="https://classroom.google.com", collection_hint="Q291cnNlQQ")
        runtime = ExtensionRuntime(settings, transfer=fake_transfer, session_provider=lambda: ctx)

        await runtime.route({
            "action": "downloadFiles",
            "files": [{"url": DRIVE_PDF, "name": "Syllabus.pdf"}],
            "zip": False,
        })

        assert (await ledger_store.load()).has("Q291cnNlQQ", DRIVE_PDF)
        await runtime.stop()


async def test_runtime_start_and_stop(settings: Settings) -> None:
    runtime = ExtensionRuntime(settings, transfer=FakeTransfer())
    await runtime.start()
    assert runtime.foreground.watcher._task is not None
    await runtime.stop()
    assert runtime.foreground.watcher._task is None
