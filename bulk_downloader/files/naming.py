"""Filename helpers: filesystem-safe names and extension repair."""

from __future__ import annotations

import re

_ILLEGAL_CHARS = re.compile(r'[<>:"/\\|?*]')
_WHITESPACE = re.compile(r"\s+")
_FORMAT_MARKER = re.compile(r"(?:[?&]format=|/export/)(docx|pdf|xlsx|pptx|csv)\b")

FALLBACK_NAME = "download"


def sanitize(name: str) -> str:
    """Replace characters illegal in filenames with ``_``, collapse whitespace, trim."""
    text = name if isinstance(name, str) else str(name)
    return _WHITESPACE.sub(" ", _ILLEGAL_CHARS.sub("_", text)).strip()


def extension_of(name: str) -> str:
    """Return the text after the last dot, or ``""`` when there is none (or the dot is last)."""
    if not isinstance(name, str):
        return ""
    dot = name.rfind(".")
    if dot == -1 or dot == len(name) - 1:
        return ""
    return name[dot + 1:]


def infer_extension(direct_url: str) -> str:
    """Pick an extension from an explicit export-format marker in a resolved URL."""
    if not isinstance(direct_url, str):
        return ""
    match = _FORMAT_MARKER.search(direct_url)
    return match.group(1) if match else ""


def repair_name(name: str, direct_url: str) -> str:
    """
    Sanitize ``name`` and append an extension inferred from ``direct_url``
    when the name has none.
    """
    safe = sanitize(name) or FALLBACK_NAME
    if not extension_of(safe):
        ext = infer_extension(direct_url)
        if ext:
            safe = f"{safe}.{ext}"
    return safe
