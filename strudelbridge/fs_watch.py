from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from collections.abc import Awaitable, Callable, Iterable, Sequence
from pathlib import Path
from typing import Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .config import DEFAULT_SCAN_EXCLUDE_DIRS, DEFAULT_SCAN_PATTERNS
from .content_index import ContentEntry, ContentIndex, relative_key
from .fs_scan import file_entry, is_excluded, matches_patterns

logger = logging.getLogger(__name__)

_HANDLED_EVENTS = {"modified", "created", "moved"}

ApplyChange = Callable[[ContentEntry], Awaitable[bool]]


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, notify: Callable[[str], None]) -> None:
        super().__init__()
        self._notify = notify

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in _HANDLED_EVENTS:
            return
        raw = getattr(event, "dest_path", "") or event.src_path
        if isinstance(raw, bytes):
            raw = os.fsdecode(raw)
        if raw:
            self._notify(str(raw))


class FileWatcher:
    """Feeds on-disk changes into the content index from the event loop.

    Observer threads only enqueue paths. The consumer task on the loop reads
    each file off-thread and hands the entry to ``apply``, which defaults to
    a plain upsert. An owner that serializes index writes passes its own.
    """

    def __init__(
        self,
        index: ContentIndex,
        *,
        patterns: Sequence[str] = DEFAULT_SCAN_PATTERNS,
        exclude_dirs: Sequence[str] = DEFAULT_SCAN_EXCLUDE_DIRS,
        observer_factory: Callable[[], Any] = Observer,
        apply: ApplyChange | None = None,
    ) -> None:
        self.index = index
        self._apply = apply or self._upsert
        self.patterns = tuple(patterns)
        self.exclude_dirs = tuple(exclude_dirs)
        self._observer_factory = observer_factory
        self._observer: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[str] | None = None
        self._consumer: asyncio.Task[None] | None = None
        self._watched_dirs: set[str] = set()

    @property
    def running(self) -> bool:
        return self._observer is not None

    async def start(self) -> None:
        if self._observer is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        observer = self._observer_factory()
        observer.daemon = True
        root = str(self.index.root)
        observer.schedule(_ChangeHandler(self.notify), root, recursive=True)
        self._watched_dirs = {root}
        observer.start()
        self._observer = observer
        self._consumer = asyncio.create_task(self._consume())
        logger.info("watching %s for changes", root)

    def track(self, paths: Iterable[str | Path]) -> None:
        """Watch the directories of files that live outside the root."""

        if self._observer is None:
            return
        root = self.index.root
        for raw in paths:
            parent = Path(raw).resolve().parent
            if parent == root or root in parent.parents:
                continue
            key = str(parent)
            if key in self._watched_dirs or not parent.is_dir():
                continue
            try:
                self._observer.schedule(_ChangeHandler(self.notify), key, recursive=False)
            except OSError as exc:
                logger.warning("cannot watch %s: %s", key, exc)
                continue
            self._watched_dirs.add(key)

    def notify(self, path: str) -> None:
        loop = self._loop
        queue = self._queue
        if loop is None or queue is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(queue.put_nowait, path)

    def _should_handle(self, path: Path) -> bool:
        root = self.index.root
        if relative_key(root, path) in self.index:
            return True
        if not matches_patterns(path.name, self.patterns):
            return False
        return not is_excluded(root, path, self.exclude_dirs)

    async def handle_change(self, raw_path: str) -> bool:
        path = Path(raw_path)
        if not self._should_handle(path):
            return False
        entry = await asyncio.to_thread(file_entry, self.index.root, path)
        if entry is None:
            return False
        return await self._apply(entry)

    async def _upsert(self, entry: ContentEntry) -> bool:
        existing = self.index.get(entry.path)
        if existing is not None:
            entry.bufnr = existing.bufnr
        self.index.upsert(entry)
        logger.info("file changed: %s", entry.path)
        return True

    async def _consume(self) -> None:
        assert self._queue is not None
        while True:
            path = await self._queue.get()
            try:
                await self.handle_change(path)
            except Exception as exc:
                logger.exception("file watch update failed for %s", path, exc_info=exc)
            finally:
                self._queue.task_done()

    async def stop(self) -> None:
        observer = self._observer
        self._observer = None
        if observer is not None:
            with contextlib.suppress(Exception):
                observer.stop()
            with contextlib.suppress(Exception):
                observer.join(timeout=2.0)
        consumer = self._consumer
        self._consumer = None
        if consumer is not None:
            consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await consumer
        self._watched_dirs = set()
        logger.info("file watcher stopped")
