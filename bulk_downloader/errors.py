"""
Errors: Failure Kinds Raised by the Fetch and Retrieval Paths

Per-item errors (fetch, content type, empty payload, transfer rejection) are
caught by the orchestrator and logged. Mode-level errors (no fetch target,
nothing bundled) trigger the Bundled -> Individual fallback.

A scan that finds nothing recognizable is not an error; it simply yields an
empty candidate list.
"""

from __future__ import annotations

from typing import Optional


class BulkDownloaderError(Exception):
    """Base class for all engine errors."""


class FetchError(BulkDownloaderError):
    """An authenticated fetch returned a non-success status."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NetworkError(FetchError):
    """The fetch never produced a response (DNS, connection, timeout)."""


class WrongContentTypeError(FetchError):
    """The fetch returned an HTML page instead of file content."""


class EmptyPayloadError(FetchError):
    """The fetch succeeded but produced zero bytes."""


class NoActiveFetchTargetError(BulkDownloaderError):
    """Bundled mode needs a foreground context able to fetch with the user's session."""


class ZeroItemsBundledError(BulkDownloaderError):
    """Every item failed to fetch for the archive."""


class PlatformTransferError(BulkDownloaderError):
    """The transfer facility rejected a submission."""
