"""
Document Sources: Finding File Attachments in a Classroom Page

The page is a read-only snapshot of the rendered Classroom DOM, parsed with
BeautifulSoup. Two strategies look for file references in it:

1. AttachmentContainerSource (high confidence)
   - Explicit attachment containers (``[data-attachment-id]``)
   - One Drive/Docs link per container

2. HeuristicLinkSource
   - Every Drive/Docs link in scope
   - Kept when it sits in an attachment-style container or its URL carries
     a file identifier segment (``/file/d/``, ``/document/d/`` ...)
   - Plain hyperlinks inside announcement text are dropped

Both expose the same two operations so the scanner can run them in order and
tests can feed them synthetic pages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence, Union
import logging
import re

from bs4 import BeautifulSoup, Tag

logger = logging.getLogger(__name__)

FILE_LINK_SELECTOR = (
    'a[href*="drive.google.com"], a[href*="docs.google.com"], a[href*="drive/userdata"]'
)
ATTACHMENT_CONTAINER_SELECTOR = "[data-attachment-id]"
ATTACHMENT_STYLE_SELECTOR = (
    '[data-attachment-id], [class*="attachment"], [class*="file-attachment"], '
    '[aria-label*="attachment"], [aria-label*="file"]'
)
ANNOUNCEMENT_TEXT_SELECTOR = '[class*="post"]'
SECTION_SELECTOR = (
    '[role="tabpanel"], [role="main"], section, [class*="content"], [class*="panel"]'
)

FILE_ID_SEGMENTS = ("/file/d/", "/document/d/", "/spreadsheets/d/", "/presentation/d/", "drive/userdata")
FILENAME_IN_URL = re.compile(
    r"([^/]+\.(pdf|doc|docx|ppt|pptx|xls|xlsx|zip|rar|txt|jpg|jpeg|png|gif|mp4|mp3))",
    re.IGNORECASE,
)
MIN_NAME_LENGTH = 3

Scope = Union[BeautifulSoup, Tag]


def _text(node: Optional[Tag]) -> str:
    if node is None:
        return ""
    return " ".join(node.get_text(" ").split())


def closest(node: Tag, selector: str) -> Optional[Tag]:
    """Nearest ancestor-or-self matching ``selector`` (DOM ``Element.closest``)."""
    return node.css.closest(selector)


def has_file_id(href: str) -> bool:
    return any(segment in href for segment in FILE_ID_SEGMENTS)


def name_from_url(href: str) -> Optional[str]:
    match = FILENAME_IN_URL.search(href)
    return match.group(1) if match else None


@dataclass(frozen=True)
class FileReference:
    """
    A file link found in the page.

    Attributes:
        url: The link's href as written in the page
        name: Display name extracted for it
        node: The anchor element (identity used for liveness checks)
        source: Name of the strategy that produced it
    """
    url: str
    name: str
    node: Tag = field(compare=False, repr=False)
    source: str = ""


class PageDocument:
    """A parsed snapshot of the page plus the location it was rendered at."""

    def __init__(self, html: str, location: str = ""):
        self.location = location
        self.soup = BeautifulSoup(html or "", "html.parser")

    def contains(self, node: Optional[Tag]) -> bool:
        """True when ``node`` belongs to this snapshot (``document.contains``)."""
        if node is None:
            return False
        if node is self.soup:
            return True
        return any(parent is self.soup for parent in node.parents)

    def select_one(self, selector: str) -> Optional[Tag]:
        return self.soup.select_one(selector)

    def scope_for(self, trigger: Optional[Tag] = None) -> Scope:
        """Narrow to the section enclosing ``trigger``, else the whole page."""
        if trigger is None or trigger is self.soup or not self.contains(trigger):
            return self.soup
        section = closest(trigger, SECTION_SELECTOR)
        if section is None:
            logger.debug("[SCAN] No enclosing section for trigger, scanning entire document")
            return self.soup
        return section


class DocumentSource(Protocol):
    """A strategy for locating file references within a scope."""

    name: str

    def find_candidate_containers(self) -> List[Tag]:
        ...

    def find_outbound_file_references(self) -> List[FileReference]:
        ...


class AttachmentContainerSource:
    """Pass A: explicit attachment containers, one file link each."""

    name = "attachment_container"
    placeholder = "Attachment"

    def __init__(self, scope: Scope):
        self.scope = scope

    def find_candidate_containers(self) -> List[Tag]:
        return list(self.scope.select(ATTACHMENT_CONTAINER_SELECTOR))

    def find_outbound_file_references(self) -> List[FileReference]:
        refs: List[FileReference] = []
        containers = self.find_candidate_containers()
        logger.debug(f"[SCAN] Found {len(containers)} attachment containers")

        for idx, container in enumerate(containers):
            link = container.select_one(FILE_LINK_SELECTOR)
            if link is None:
                logger.debug(f"[SCAN] Container {idx} has no file link")
                continue
            href = link.get("href")
            if not href:
                continue
            name = (
                _text(link)
                or (link.get("aria-label") or "").strip()
                or _text(container)
                or _text(link.find("span"))
            )
            if len(name) < MIN_NAME_LENGTH:
                name = name_from_url(href) or self.placeholder
            refs.append(FileReference(url=href, name=name, node=link, source=self.name))
        return refs


class HeuristicLinkSource:
    """Pass B: any file-hosting link that looks like an attachment rather than a hyperlink."""

    name = "heuristic_link"

    def __init__(self, scope: Scope):
        self.scope = scope

    def find_candidate_containers(self) -> List[Tag]:
        # The heuristic pass searches the whole scope as a single region.
        return [self.scope]

    @staticmethod
    def is_attachment_like(link: Tag, href: str) -> bool:
        in_attachment = closest(link, ATTACHMENT_STYLE_SELECTOR) is not None
        file_id = has_file_id(href)

        in_announcement_text = (
            closest(link, ANNOUNCEMENT_TEXT_SELECTOR) is not None
            and closest(link, '[data-attachment-id], [class*="attachment"]') is None
            and not file_id
        )
        if in_announcement_text:
            logger.debug(f"[SCAN] Skipping hyperlink in announcement text: {href}")
            return False
        if not in_attachment and not file_id:
            logger.debug(f"[SCAN] Skipping non-file link: {href}")
            return False
        return True

    def find_outbound_file_references(self) -> List[FileReference]:
        refs: List[FileReference] = []
        for index, link in enumerate(self.scope.select(FILE_LINK_SELECTOR)):
            href = link.get("href")
            if not href or not self.is_attachment_like(link, href):
                continue
            name = (
                _text(link)
                or (link.get("aria-label") or "").strip()
                or _text(link.find("span"))
                or f"File {index + 1}"
            )
            if len(name) < MIN_NAME_LENGTH:
                name = name_from_url(href) or f"File_{index + 1}"
            refs.append(FileReference(url=href, name=name, node=link, source=self.name))
        return refs


DEFAULT_SOURCES: Sequence[type] = (AttachmentContainerSource, HeuristicLinkSource)
