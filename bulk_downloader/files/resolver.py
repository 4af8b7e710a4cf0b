"""
URL Resolver: Provider Links to Directly Fetchable URLs

Classroom attachments point at viewer pages (``/view``, ``/edit``). This module
rewrites them into URLs that return the file content itself:

- Drive files      -> ``uc?export=download`` (``confirm=t`` skips the virus-scan page)
- Docs documents   -> ``/export?format=<fmt>``
- Sheets           -> ``/export?format=<fmt>``
- Slides           -> ``/export/<fmt>``

For the three document shapes the export format follows the extension of the
desired filename, falling back to a per-shape default. Unknown shapes come
back unchanged, which also makes resolving an already-direct URL a no-op.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Optional, Pattern, Tuple
import logging
import re

from .naming import extension_of

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExportShape:
    """
    A structured-document URL shape and the formats it can export.

    Attributes:
        kind: Short name of the shape (document, spreadsheet, presentation)
        pattern: Regex capturing the stable identifier
        formats: Extension -> export format allow-list
        default_format: Format used when the extension is not allowed
        template: Output URL template with ``{id}`` and ``{fmt}`` fields
    """
    kind: str
    pattern: Pattern[str]
    formats: Dict[str, str]
    default_format: str
    template: str

    def export_format(self, desired_name: str) -> str:
        ext = extension_of(desired_name).lower()
        return self.formats.get(ext, self.default_format)


DRIVE_FILE_PATTERN = re.compile(r"drive\.google\.com/file/d/([a-zA-Z0-9_-]+)")
DRIVE_DOWNLOAD_TEMPLATE = "https://drive.google.com/uc?export=download&id={id}&confirm=t"

EXPORT_SHAPES: Tuple[ExportShape, ...] = (
    ExportShape(
        kind="document",
        pattern=re.compile(r"docs\.google\.com/document/d/([a-zA-Z0-9_-]+)"),
        formats={"docx": "docx", "doc": "docx", "txt": "txt", "rtf": "rtf", "odt": "odt"},
        default_format="pdf",
        template="https://docs.google.com/document/d/{id}/export?format={fmt}",
    ),
    ExportShape(
        kind="spreadsheet",
        pattern=re.compile(r"docs\.google\.com/spreadsheets/d/([a-zA-Z0-9_-]+)"),
        formats={"csv": "csv", "ods": "ods", "pdf": "pdf"},
        default_format="xlsx",
        template="https://docs.google.com/spreadsheets/d/{id}/export?format={fmt}",
    ),
    ExportShape(
        kind="presentation",
        pattern=re.compile(r"docs\.google\.com/presentation/d/([a-zA-Z0-9_-]+)"),
        formats={"pdf": "pdf", "odp": "odp"},
        default_format="pptx",
        template="https://docs.google.com/presentation/d/{id}/export/{fmt}",
    ),
)


def resolve_with_format(source_url: str, desired_name: str) -> Tuple[str, Optional[str]]:
    """
    Resolve a provider URL and report the export format chosen.

    Args:
        source_url: URL found in the page
        desired_name: Candidate filename (its extension picks the export format)

    Returns:
        Tuple of (direct_url, format). Format is None for Drive files and for
        URLs no shape recognizes.
    """
    try:
        match = DRIVE_FILE_PATTERN.search(source_url)
        if match:
            return DRIVE_DOWNLOAD_TEMPLATE.format(id=match.group(1)), None

        for shape in EXPORT_SHAPES:
            match = shape.pattern.search(source_url)
            if match:
                fmt = shape.export_format(desired_name or "")
                return shape.template.format(id=match.group(1), fmt=fmt), fmt
    except TypeError:
        # Non-string input; fall through to the identity result.
        pass

    logger.debug(f"[RESOLVE] No provider shape matched, using original: {source_url}")
    return source_url, None


def resolve(source_url: str, desired_name: str) -> str:
    """Return a directly fetchable URL for ``source_url`` (the input when nothing matches)."""
    return resolve_with_format(source_url, desired_name)[0]


Resolver = Callable[[str, str], str]
