"""
HTTP Fetcher: Authenticated Fetch Using Session Credentials

Bundling files into one archive needs their raw bytes, and only the signed-in
user can read them. This module fetches with the cookies and headers captured
from the user's Classroom session.

Two layers:
- fetch_bytes: one GET, never raises, returns an HttpFetchResult
- fetch_file_blob: the foreground's ``fetchFileBlob`` capability; turns a
  result into bytes or a typed error, and recovers once from Drive's
  "can't scan this file for viruses" interstitial by following the
  ``uc?...export=download`` link embedded in it
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import urljoin
import html
import logging
import re

import requests

from ..errors import EmptyPayloadError, FetchError, NetworkError, WrongContentTypeError
from .session_context import SessionContext

logger = logging.getLogger(__name__)

ALTERNATE_DOWNLOAD_LINK = re.compile(r'href="([^"]*uc[^"]*export=download[^"]*)"')
NETWORK_ERROR_MESSAGE = (
    "Network error: Unable to fetch file. "
    "The file may require authentication or the URL may be invalid."
)


@dataclass(frozen=True)
class HttpFetchResult:
    """
    Result of an HTTP fetch operation.

    Attributes:
        ok: True if the request succeeded (2xx status)
        status: HTTP status code (0 when no response was received)
        headers: Response headers
        content: Response body as bytes
        error: Error message if request failed
        final_url: Final URL after redirects
        reason: HTTP reason phrase
    """
    ok: bool
    status: int
    headers: Dict[str, str]
    content: bytes
    error: Optional[str] = None
    final_url: Optional[str] = None
    reason: str = ""

    @property
    def content_type(self) -> str:
        return self.headers.get("Content-Type") or self.headers.get("content-type") or ""

    @property
    def content_length(self) -> int:
        return len(self.content)

    @property
    def is_html(self) -> bool:
        return "text/html" in self.content_type.lower()


def fetch_bytes(
    ctx: Optional[SessionContext],
    url: str,
    timeout_s: int = 30,
    session: Optional[requests.Session] = None,
) -> HttpFetchResult:
    """
    GET ``url`` with the session's cookies and headers.

    Args:
        ctx: SessionContext captured from the browser (None for an anonymous fetch)
        url: URL to fetch
        timeout_s: Request timeout in seconds
        session: Optional requests session to send through

    Returns:
        HttpFetchResult with response data or error information
    """
    hdrs = ctx.request_headers() if ctx else {}
    cookies = (ctx.cookies if ctx else None) or {}
    getter = session.get if session is not None else requests.get

    logger.info(f"[HTTP] Fetching: {url}")
    logger.debug(f"[HTTP] Cookies: {len(cookies)} items, headers: {list(hdrs.keys())}")

    try:
        r = getter(
            url,
            headers=hdrs,
            cookies=cookies,
            timeout=timeout_s,
            allow_redirects=True,
        )
    except requests.exceptions.Timeout:
        logger.error(f"[HTTP] Timeout after {timeout_s}s: {url}")
        return HttpFetchResult(ok=False, status=0, headers={}, content=b"", error=f"Timeout after {timeout_s}s")
    except requests.exceptions.ConnectionError as e:
        logger.error(f"[HTTP] Connection Error: {e}")
        return HttpFetchResult(ok=False, status=0, headers={}, content=b"", error=f"Connection Error: {e}")
    except requests.exceptions.RequestException as e:
        logger.error(f"[HTTP] Request failed: {e}")
        return HttpFetchResult(ok=False, status=0, headers={}, content=b"", error=str(e))

    result = HttpFetchResult(
        ok=bool(r.ok),
        status=int(r.status_code),
        headers={k: v for k, v in r.headers.items()},
        content=r.content or b"",
        error=None if r.ok else f"HTTP {r.status_code}",
        final_url=r.url if r.url != url else None,
        reason=getattr(r, "reason", "") or "",
    )
    if result.ok:
        logger.info(f"[HTTP] Success: {result.status}, {result.content_length} bytes")
    else:
        logger.warning(f"[HTTP] Failed: {result.status} - {url}")
    return result


def find_alternate_download_url(page: str, base_url: str) -> Optional[str]:
    """Extract the direct-download link from a Drive interstitial page, if any."""
    match = ALTERNATE_DOWNLOAD_LINK.search(page)
    if not match:
        return None
    return urljoin(base_url, html.unescape(match.group(1)))


def fetch_file_blob(
    ctx: Optional[SessionContext],
    url: str,
    timeout_s: int = 30,
    session: Optional[requests.Session] = None,
    allow_recovery: bool = True,
) -> bytes:
    """
    Fetch a file's bytes for bundling.

    Raises:
        NetworkError: No response at all
        FetchError: Non-2xx status
        WrongContentTypeError: An HTML page came back and no alternate link
            could be followed
        EmptyPayloadError: Zero bytes
    """
    result = fetch_bytes(ctx, url, timeout_s=timeout_s, session=session)

    if result.status == 0:
        raise NetworkError(NETWORK_ERROR_MESSAGE)
    if not result.ok:
        raise FetchError(f"HTTP {result.status}: {result.reason}".rstrip(": "), status=result.status)

    if result.is_html:
        logger.warning("[HTTP] Received HTML instead of file")
        page = result.content.decode("utf-8", errors="replace")
        alternate = find_alternate_download_url(page, result.final_url or url)
        if alternate and allow_recovery:
            logger.info(f"[HTTP] Found alternative download URL: {alternate}")
            return fetch_file_blob(ctx, alternate, timeout_s=timeout_s, session=session, allow_recovery=False)
        raise WrongContentTypeError("Received HTML page instead of file", status=result.status)

    if not result.content:
        raise EmptyPayloadError("Received empty file", status=result.status)

    logger.info(f"[HTTP] Fetched file, size: {result.content_length}")
    return result.content
