"""
Artifacts Module: Attachment Detection and Download History

This module provides:
- PageDocument: Parsed snapshot of the rendered Classroom page
- AttachmentContainerSource / HeuristicLinkSource: Strategies that find file links
- DedupLedger / LedgerStore: Per-collection record of files already downloaded

The Scanner lives in ``bulk_downloader.artifacts.scanner``; it depends on the
session state, which in turn depends on the ledger exported here.
"""

from .document_source import (
    AttachmentContainerSource,
    DocumentSource,
    FileReference,
    HeuristicLinkSource,
    PageDocument,
)
from .ledger import DedupLedger, LedgerStore, has, normalize_url

__all__ = [
    "AttachmentContainerSource",
    "DocumentSource",
    "FileReference",
    "HeuristicLinkSource",
    "PageDocument",
    "DedupLedger",
    "LedgerStore",
    "has",
    "normalize_url",
]
