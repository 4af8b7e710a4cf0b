"""
Files Module: Resolving, Fetching and Saving Classroom Attachments

This module provides the retrieval side of the downloader: turning viewer
links into direct downloads, fetching bytes with the user's session, and
handing files (or one ZIP of them) to the transfer facility.

Components:
- resolve: Viewer URL -> direct download / export URL
- sanitize / repair_name: Safe filenames with a sensible extension
- SessionContext: Captures browser session auth (cookies, headers)
- fetch_file_blob: Authenticated fetch with one-shot interstitial recovery
- ZipArchiveBuilder: In-memory archive for bundled downloads
- DiskTransferFacility: Saves transfers into the download directory
- RetrievalOrchestrator: Individual or bundled retrieval, with fallback

Design Philosophy:
1. Direct URLs first: resolve every link before it is fetched or submitted
2. Bundling needs authentication: bytes come from the foreground context
3. Partial success is success: per-item failures are logged, not fatal
"""

from .resolver import resolve, resolve_with_format
from .naming import sanitize, extension_of, infer_extension, repair_name
from .session_context import SessionContext, get_session_context, set_session_context, clear_session_context
from .http_fetcher import fetch_bytes, fetch_file_blob, HttpFetchResult
from .archive import ZipArchiveBuilder, archive_name
from .transfer import DiskTransferFacility, TransferRecord, log_transfer_state
from .download_manager import RetrievalMode, RetrievalOrchestrator, RetrievalReport, RequestedFile

__all__ = [
    "resolve",
    "resolve_with_format",
    "sanitize",
    "extension_of",
    "infer_extension",
    "repair_name",
    "SessionContext",
    "get_session_context",
    "set_session_context",
    "clear_session_context",
    "fetch_bytes",
    "fetch_file_blob",
    "HttpFetchResult",
    "ZipArchiveBuilder",
    "archive_name",
    "DiskTransferFacility",
    "TransferRecord",
    "log_transfer_state",
    "RetrievalMode",
    "RetrievalOrchestrator",
    "RetrievalReport",
    "RequestedFile",
]
