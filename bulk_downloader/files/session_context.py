"""
Session Context: Browser-Captured Authentication State

Drive and Docs only hand out file bytes to the signed-in user. The browser
side captures the cookies and headers of the active Classroom session and
sends them here so that foreground fetches and disk transfers run as that
user.

SECURITY NOTES:
- Do NOT persist this
- The extension should whitelist the Google auth cookies it sends
- The context goes stale when the browser session expires
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Any
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionContext:
    """
    Short-lived auth context captured from the user's Classroom tab.

    Attributes:
        base_url: Origin of the page the context came from
        cookies: Session cookies (Google auth cookies)
        headers: Extra request headers
        user_agent: Browser User-Agent string
        collection_hint: CollectionId of the page when captured, if known
    """
    base_url: str
    cookies: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    user_agent: Optional[str] = None

    collection_hint: Optional[str] = None

    def cookie_header(self) -> str:
        """Format cookies as a Cookie header string ("k1=v1; k2=v2")."""
        return "; ".join([f"{k}={v}" for k, v in self.cookies.items() if v is not None])

    def request_headers(self) -> Dict[str, str]:
        """Headers for an outgoing request: extra headers, User-Agent and Cookie."""
        hdrs = dict(self.headers or {})
        lowered = {k.lower() for k in hdrs}
        if self.user_agent and "user-agent" not in lowered:
            hdrs["User-Agent"] = self.user_agent
        if self.cookies and "cookie" not in lowered:
            hdrs["Cookie"] = self.cookie_header()
        return hdrs

    @staticmethod
    def from_extension_message(msg: Dict[str, Any]) -> "SessionContext":
        """
        Create SessionContext from an extension message.

        Expected message format:
        {
            "baseUrl": "https://classroom.google.com",
            "cookies": {"SID": "...", ...},
            "headers": {"Header-Name": "value", ...},
            "userAgent": "Mozilla/...",
            "collectionId": "NjQ2..."
        }
        """
        return SessionContext(
            base_url=msg.get("baseUrl", msg.get("base_url", "")),
            cookies=msg.get("cookies") or {},
            headers=msg.get("headers") or {},
            user_agent=msg.get("userAgent", msg.get("user_agent")),
            collection_hint=msg.get("collectionId", msg.get("collection_id")),
        )

    def __repr__(self) -> str:
        return (
            f"SessionContext(base_url='{self.base_url}', "
            f"cookies={len(self.cookies)}, headers={len(self.headers)}, "
            f"collection={self.collection_hint})"
        )


# Global session context storage (in-memory, short-lived)
_current_session: Optional[SessionContext] = None


def set_session_context(ctx: SessionContext) -> None:
    """Set the current session context (called when the extension sends session data)."""
    global _current_session
    _current_session = ctx
    logger.info(f"[SESSION] Updated: {ctx}")


def get_session_context() -> Optional[SessionContext]:
    return _current_session


def clear_session_context() -> None:
    global _current_session
    _current_session = None
    logger.info("[SESSION] Cleared")
