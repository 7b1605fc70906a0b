from __future__ import annotations

import datetime as dt
import fnmatch
import logging
import os
from collections.abc import Sequence
from pathlib import Path

from .config import DEFAULT_SCAN_EXCLUDE_DIRS, DEFAULT_SCAN_PATTERNS
from .content_index import ContentEntry, relative_key

logger = logging.getLogger(__name__)


def matches_patterns(name: str, patterns: Sequence[str]) -> bool:
    return any(fnmatch.fnmatch(name, pattern) for pattern in patterns)


def is_excluded(root: Path, path: Path, exclude_dirs: Sequence[str]) -> bool:
    try:
        rel = path.resolve().relative_to(root)
    except ValueError:
        return True
    for part in rel.parts[:-1]:
        if part in exclude_dirs or part.startswith("."):
            return True
    return rel.name.startswith(".")


def file_entry(root: Path, full_path: str | Path) -> ContentEntry | None:
    path = Path(full_path)
    try:
        content = path.read_text(encoding="utf-8")
        mtime = path.stat().st_mtime
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("skipping unreadable file %s: %s", path, exc)
        return None
    return ContentEntry(
        path=relative_key(root, path),
        name=path.name,
        content=content,
        last_modified=dt.datetime.fromtimestamp(mtime, dt.UTC),
        is_virtual=False,
    )


def iter_matching_paths(
    root: Path,
    patterns: Sequence[str] = DEFAULT_SCAN_PATTERNS,
    exclude_dirs: Sequence[str] = DEFAULT_SCAN_EXCLUDE_DIRS,
) -> list[Path]:
    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        dirnames[:] = sorted(
            d for d in dirnames if d not in exclude_dirs and not d.startswith(".")
        )
        for filename in sorted(filenames):
            if filename.startswith("."):
                continue
            if matches_patterns(filename, patterns):
                found.append(Path(dirpath) / filename)
    return found


def scan_files(
    root: Path,
    patterns: Sequence[str] = DEFAULT_SCAN_PATTERNS,
    exclude_dirs: Sequence[str] = DEFAULT_SCAN_EXCLUDE_DIRS,
) -> list[ContentEntry]:
    """Read every matching file below root into fresh entries."""

    entries: list[ContentEntry] = []
    for path in iter_matching_paths(root, patterns, exclude_dirs):
        entry = file_entry(root, path)
        if entry is not None:
            entries.append(entry)
    logger.info("scanned %d local files under %s", len(entries), root)
    return entries
