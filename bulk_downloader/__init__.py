"""Classroom bulk downloader: attachment detection, dedup history and batch retrieval."""

__version__ = "0.3.0"
