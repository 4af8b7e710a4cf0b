"""
Shared fixtures: temporary storage, fake transfer facility, fake fetch target
and a small Classroom page.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import pytest

from bulk_downloader.artifacts.ledger import LedgerStore
from bulk_downloader.config import Settings
from bulk_downloader.errors import PlatformTransferError
from bulk_downloader.storage import JsonFileStorage

COURSE_A = "https://classroom.google.com/u/0/c/Q291cnNlQQ"
COURSE_B = "https://classroom.google.com/u/0/c/Q291cnNlQg"

DRIVE_PDF = "https://drive.google.com/file/d/1AbCdEf/view?usp=sharing"
DOC_LINK = "https://docs.google.com/document/d/9ZyXwV/edit?usp=drive_web"
SHEET_LINK = "https://docs.google.com/spreadsheets/d/5SheEt/edit"

CLASSWORK_HTML = f"""
<html><body>
  <div role="main">
    <div data-attachment-id="att-1">
      <a href="{DRIVE_PDF}">Syllabus.pdf</a>
    </div>
    <div class="attachment-card">
      <a href="{DOC_LINK}"><span>Essay prompt</span></a>
    </div>
    <div class="post-body">
      <p>Read <a href="https://drive.google.com/drive/folders/xyz">this folder</a> first.</p>
      <a href="{SHEET_LINK}">Grades</a>
    </div>
  </div>
</body></html>
"""


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at a temporary directory, with no delays."""
    return Settings(
        storage_path=tmp_path / "storage.json",
        download_dir=tmp_path / "downloads",
        item_delay_s=0,
        poll_interval_s=0.01,
        click_scan_delay_s=0,
        initial_scan_delay_s=0,
        log_file=str(tmp_path / "test.log"),
    )


@pytest.fixture
def storage(settings: Settings) -> JsonFileStorage:
    return JsonFileStorage(settings.storage_path)


@pytest.fixture
def ledger_store(storage: JsonFileStorage) -> LedgerStore:
    return LedgerStore(storage)


class FakeTransfer:
    """Transfer facility that records submissions instead of writing files."""

    def __init__(self, reject: Tuple[str, ...] = (), events: Optional[list] = None):
        self.reject = reject
        self.events = events if events is not None else []
        self.submissions: List[Tuple[str, str]] = []
        self._next_id = 100

    async def submit(self, url: str, filename: str, save_as_dialog: bool = False) -> int:
        if any(marker in url for marker in self.reject):
            raise PlatformTransferError(f"Invalid URL: {url[:40]}")
        self.submissions.append((url, filename))
        self.events.append(("submit", filename))
        self._next_id += 1
        return self._next_id


class FakeFetchTarget:
    """Answers fetch_file_blob from a url -> bytes (or exception) table."""

    def __init__(self, blobs: Optional[Dict[str, Union[bytes, Exception]]] = None, default=None):
        self.blobs = blobs or {}
        self.default = default
        self.requested: List[str] = []

    async def fetch_file_blob(self, url: str) -> bytes:
        self.requested.append(url)
        value = self.blobs.get(url, self.default)
        if isinstance(value, Exception):
            raise value
        if value is None:
            raise RuntimeError(f"no blob for {url}")
        return value


class RecordingSleep:
    def __init__(self, events: Optional[list] = None):
        self.calls: List[float] = []
        self.events = events if events is not None else []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.events.append(("sleep", seconds))


@pytest.fixture
def fake_transfer() -> FakeTransfer:
    return FakeTransfer()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


class FakeResponse:
    """The parts of requests.Response the fetcher reads."""

    def __init__(self, url: str, status: int = 200, content: bytes = b"", content_type: str = "application/pdf",
                 reason: str = "OK"):
        self.url = url
        self.status_code = status
        self.ok = 200 <= status < 300
        self.content = content
        self.reason = reason
        self.headers = {"Content-Type": content_type}


class FakeSession:
    """Stands in for requests.Session: answers from a url -> response table."""

    def __init__(self, responses: Dict[str, Union[FakeResponse, Exception]], default=None):
        self.responses = responses
        self.default = default
        self.calls: List[dict] = []

    def get(self, url, headers=None, cookies=None, timeout=None, allow_redirects=True):
        self.calls.append({"url": url, "headers": headers, "cookies": cookies, "timeout": timeout})
        answer = self.responses.get(url, self.default)
        if answer is None:
            raise KeyError(url)
        if isinstance(answer, Exception):
            raise answer
        return answer
