from __future__ import annotations

import asyncio
import datetime as dt
import logging
import os
import re
from collections.abc import Iterable
from dataclasses import dataclass, replace
from pathlib import Path, PurePath
from typing import Any

logger = logging.getLogger(__name__)

VIRTUAL_KEY_PREFIX = "virtual:"

# Buffer names that do not name a file on disk.
_VIRTUAL_PATH_PATTERNS = (
    re.compile(r"^[a-z][a-z0-9+.-]*://"),
    re.compile(r"^\[.*\]$"),
    re.compile(r"^scratch:"),
    re.compile(r"^NvimTree_"),
    re.compile(r"^NERD_tree"),
)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


@dataclass
class ContentEntry:
    path: str
    name: str
    content: str
    last_modified: dt.datetime
    bufnr: int | None = None
    is_virtual: bool = False

    @property
    def size(self) -> int:
        return len(self.content.encode("utf-8"))

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "path": self.path,
            "name": self.name,
            "content": self.content,
            "lastModified": self.last_modified.isoformat(),
            "isVirtual": self.is_virtual,
        }
        if self.bufnr is not None:
            payload["bufnr"] = self.bufnr
        return payload

    def to_list_payload(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "name": self.name,
            "lastModified": self.last_modified.isoformat(),
            "isVirtual": self.is_virtual,
        }


@dataclass(frozen=True)
class IndexStats:
    total: int
    addressable: int
    virtual: int
    total_size: int
    average_size: int
    extensions: dict[str, int]
    last_update: dt.datetime | None

    def to_payload(self) -> dict[str, Any]:
        return {
            "totalFiles": self.total,
            "realFiles": self.addressable,
            "virtualFiles": self.virtual,
            "totalSize": self.total_size,
            "averageSize": self.average_size,
            "extensions": dict(self.extensions),
            "lastUpdate": self.last_update.isoformat() if self.last_update else None,
        }


def is_virtual_path(buffer_path: str) -> bool:
    return any(pattern.search(buffer_path) for pattern in _VIRTUAL_PATH_PATTERNS)


def virtual_key(name: str, bufnr: int | None) -> str:
    return f"{VIRTUAL_KEY_PREFIX}{name}:{bufnr if bufnr is not None else 0}"


def relative_key(root: Path, full_path: str | Path) -> str:
    """Return the index key for an on-disk path.

    Keys are root-relative POSIX paths. A key that would collide with the
    synthesized ``virtual:`` namespace is prefixed with ``./``.
    """

    full = Path(full_path).expanduser()
    if not full.is_absolute():
        full = root / full
    rel = os.path.relpath(os.path.abspath(full), root)
    key = PurePath(rel).as_posix()
    if key.startswith(VIRTUAL_KEY_PREFIX):
        key = f"./{key}"
    return key


def buffer_entry(root: Path, buffer_path: str, content: str, bufnr: int | None) -> ContentEntry:
    name = PurePath(buffer_path).name or buffer_path
    if is_virtual_path(buffer_path):
        return ContentEntry(
            path=virtual_key(name, bufnr),
            name=name,
            content=content,
            last_modified=_utcnow(),
            bufnr=bufnr,
            is_virtual=True,
        )
    return ContentEntry(
        path=relative_key(root, buffer_path),
        name=name,
        content=content,
        last_modified=_utcnow(),
        bufnr=bufnr,
        is_virtual=False,
    )


def _write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


class ContentIndex:
    """In-memory mirror of editor buffers or scanned files, keyed by path."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).expanduser().resolve()
        self._entries: dict[str, ContentEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def upsert(self, entry: ContentEntry) -> ContentEntry:
        previous = self._entries.get(entry.path)
        now = _utcnow()
        if previous is not None and previous.last_modified > now:
            now = previous.last_modified
        entry.last_modified = now
        self._entries[entry.path] = entry
        return entry

    def get(self, key: str) -> ContentEntry | None:
        return self._entries.get(key)

    def list(self) -> list[ContentEntry]:
        return [replace(entry) for entry in self._entries.values()]

    def list_payload(self) -> list[dict[str, Any]]:
        return [entry.to_list_payload() for entry in self._entries.values()]

    def clear(self) -> None:
        self._entries = {}
        logger.debug("content index cleared")

    def replace_all(self, entries: Iterable[ContentEntry]) -> int:
        """Swap in a freshly built mapping; readers never see a partial scan."""

        fresh: dict[str, ContentEntry] = {}
        for entry in entries:
            fresh[entry.path] = entry
        self._entries = fresh
        return len(fresh)

    def full_path(self, key: str) -> Path | None:
        entry = self._entries.get(key)
        if entry is None or entry.is_virtual:
            return None
        return (self.root / key).resolve()

    async def persist(self, key: str, content: str) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            logger.warning("persist: unknown entry %s", key)
            return False
        if entry.is_virtual:
            # Virtual buffers have no backing file; keep the edit in memory.
            entry.content = content
            self.upsert(entry)
            return True
        target = (self.root / key).resolve()
        try:
            await asyncio.to_thread(_write_text, target, content)
        except OSError as exc:
            logger.error("persist: failed to write %s", target, exc_info=exc)
            return False
        entry.content = content
        self.upsert(entry)
        logger.info("persisted %s", key)
        return True

    def stats(self) -> IndexStats:
        entries = list(self._entries.values())
        total_size = sum(entry.size for entry in entries)
        extensions: dict[str, int] = {}
        for entry in entries:
            ext = PurePath(entry.name).suffix.lower()
            extensions[ext] = extensions.get(ext, 0) + 1
        virtual = sum(1 for entry in entries if entry.is_virtual)
        return IndexStats(
            total=len(entries),
            addressable=len(entries) - virtual,
            virtual=virtual,
            total_size=total_size,
            average_size=round(total_size / len(entries)) if entries else 0,
            extensions=extensions,
            last_update=max((entry.last_modified for entry in entries), default=None),
        )
