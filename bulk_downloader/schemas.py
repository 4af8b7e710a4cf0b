"""
Pydantic schemas for data validation.
Defines the message contracts between contexts and the request bodies of the
service endpoints.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Optional
from enum import Enum


class Action(str, Enum):
    DOWNLOAD_FILES = "downloadFiles"
    FETCH_FILE_BLOB = "fetchFileBlob"
    REFRESH = "refresh"
    TOGGLE_PANEL = "togglePanel"
    GET_SELECTED_FILES = "getSelectedFiles"


class RequestedFileModel(BaseModel):
    """A file in a downloadFiles request."""
    url: str
    name: str


class DownloadFilesMessage(BaseModel):
    """downloadFiles(files, zip, collectionId?)"""
    action: str = Action.DOWNLOAD_FILES.value
    files: List[RequestedFileModel] = []
    zip: bool = False
    collectionId: Optional[str] = None


class FetchFileBlobMessage(BaseModel):
    action: str = Action.FETCH_FILE_BLOB.value
    url: str


class TogglePanelMessage(BaseModel):
    action: str = Action.TOGGLE_PANEL.value
    enabled: bool = False


class PageSnapshot(BaseModel):
    """Rendered page pushed by the extension's content script."""
    location: str
    html: str = ""
    scan: bool = False


class ClickSignal(BaseModel):
    """CSS selector of the clicked element within the last snapshot."""
    selector: str


class NavigationEvent(BaseModel):
    location: str
    trigger: str = "pushState"


class SessionContextPayload(BaseModel):
    """Auth context captured from the Classroom tab."""
    baseUrl: str
    cookies: Dict[str, str] = {}
    headers: Dict[str, str] = {}
    userAgent: Optional[str] = None
    collectionId: Optional[str] = None


class SelectionUpdate(BaseModel):
    """Either toggle ``ids`` or select/clear everything with ``all``."""
    model_config = ConfigDict(populate_by_name=True)

    ids: List[str] = []
    selected: bool = True
    select_all: Optional[bool] = Field(default=None, alias="all")


class DownloadRequest(BaseModel):
    zip: bool = False
