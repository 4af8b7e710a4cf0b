"""
Configuration for the bulk downloader service.

Values come from environment variables (``.env`` is loaded by the app module
before anything reads them). Durations are configured in milliseconds, the
way the browser side expresses them, and exposed in seconds.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional


def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_ms(env: Mapping[str, str], key: str, default_ms: int) -> float:
    raw = env.get(key)
    try:
        return int(raw) / 1000.0 if raw else default_ms / 1000.0
    except ValueError:
        return default_ms / 1000.0


@dataclass(frozen=True)
class Settings:
    """
    Runtime settings.

    Attributes:
        storage_path: JSON key-value store holding the ledger and panel state
        download_dir: Directory the transfer facility writes into
        item_delay_s: Delay between consecutive items of one batch
        archive_prefix: Prefix of the bundled archive filename
        poll_interval_s: Location polling interval (backup navigation trigger)
        click_scan_delay_s: Delay between a click and the scoped scan
        initial_scan_delay_s: Delay before the first scan after start-up
        fetch_timeout_s: HTTP timeout for authenticated fetches and transfers
        collection_host: Host a page must be on to act as fetch target
        log_file: JSON log file path
        archive_enabled: Whether the archive builder is available
    """
    storage_path: Path
    download_dir: Path
    item_delay_s: float = 0.3
    archive_prefix: str = "Classroom_Files"
    poll_interval_s: float = 0.5
    click_scan_delay_s: float = 0.5
    initial_scan_delay_s: float = 1.0
    fetch_timeout_s: int = 30
    collection_host: str = "classroom.google.com"
    log_file: str = "bulk_downloader.log"
    archive_enabled: bool = True

    @staticmethod
    def from_env(env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from ``os.environ`` (or the given mapping)."""
        env = os.environ if env is None else env
        home = Path.home()
        try:
            timeout = int(env.get("BULK_DL_FETCH_TIMEOUT_S", "30"))
        except ValueError:
            timeout = 30
        return Settings(
            storage_path=Path(env.get("BULK_DL_STORAGE_PATH") or home / ".bulk_downloader" / "storage.json"),
            download_dir=Path(env.get("BULK_DL_DOWNLOAD_DIR") or home / "Downloads" / "bulk_downloader"),
            item_delay_s=_env_ms(env, "BULK_DL_ITEM_DELAY_MS", 300),
            archive_prefix=env.get("BULK_DL_ARCHIVE_PREFIX") or "Classroom_Files",
            poll_interval_s=_env_ms(env, "BULK_DL_POLL_INTERVAL_MS", 500),
            click_scan_delay_s=_env_ms(env, "BULK_DL_CLICK_SCAN_DELAY_MS", 500),
            initial_scan_delay_s=_env_ms(env, "BULK_DL_INITIAL_SCAN_DELAY_MS", 1000),
            fetch_timeout_s=timeout,
            collection_host=env.get("BULK_DL_COLLECTION_HOST") or "classroom.google.com",
            log_file=env.get("BULK_DL_LOG_FILE") or "bulk_downloader.log",
            archive_enabled=_env_bool(env.get("BULK_DL_ARCHIVE_ENABLED"), True),
        )
