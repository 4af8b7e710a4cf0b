"""Archive builder: named byte payloads in, one ZIP payload out."""

from __future__ import annotations

import io
import zipfile
from datetime import date
from pathlib import PurePosixPath
from typing import Callable, List, Optional, Protocol, Tuple


def archive_name(prefix: str, day: Optional[date] = None) -> str:
    """``<prefix>_<YYYY-MM-DD>.zip`` for the retrieval date."""
    return f"{prefix}_{(day or date.today()).isoformat()}.zip"


class ArchiveBuilder(Protocol):
    def add(self, name: str, data: bytes) -> str:
        ...

    def build(self) -> bytes:
        ...

    def __len__(self) -> int:
        ...


class ZipArchiveBuilder:
    """In-memory ZIP archive. Repeated names become ``name (2).ext``, ``name (3).ext`` ..."""

    def __init__(self, compression: int = zipfile.ZIP_DEFLATED):
        self.compression = compression
        self._members: List[Tuple[str, bytes]] = []
        self._names: set = set()

    def _unique(self, name: str) -> str:
        if name not in self._names:
            return name
        path = PurePosixPath(name)
        stem, suffix = path.stem, path.suffix
        n = 2
        while f"{stem} ({n}){suffix}" in self._names:
            n += 1
        return f"{stem} ({n}){suffix}"

    def add(self, name: str, data: bytes) -> str:
        member = self._unique(name)
        self._names.add(member)
        self._members.append((member, data))
        return member

    def build(self) -> bytes:
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w", compression=self.compression) as zf:
            for member, data in self._members:
                zf.writestr(member, data)
        return buf.getvalue()

    def __len__(self) -> int:
        return len(self._members)


ArchiveFactory = Callable[[], ArchiveBuilder]
