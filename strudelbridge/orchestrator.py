from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from .config import BridgeConfig
from .content_index import ContentEntry, ContentIndex, _utcnow
from .fs_scan import scan_files
from .fs_watch import FileWatcher
from .peer_discovery import candidate_addresses
from .peer_session import PeerError, PeerSession
from .remote_session import RemoteSession

logger = logging.getLogger(__name__)

REPL_PATH = "/strudel"

Discover = Callable[[Sequence[str] | None], list[str]]


@dataclass(frozen=True)
class OrchestratorStatus:
    peer_connected: bool
    remote_ready: bool
    content_count: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "peerConnected": self.peer_connected,
            "remoteReady": self.remote_ready,
            "contentCount": self.content_count,
        }


class SessionOrchestrator:
    """Owns the content index, the editor channel and the browser page.

    All methods must run on the event loop that created the orchestrator.
    Refreshes, editor connects and browser init are each serialized by their
    own lock; delivery is not, since it only touches the browser page.
    """

    def __init__(
        self,
        config: BridgeConfig,
        *,
        index: ContentIndex | None = None,
        peer: PeerSession | None = None,
        remote: RemoteSession | None = None,
        watcher: FileWatcher | None = None,
        discover: Discover | None = None,
    ) -> None:
        self.config = config
        self.index = index or ContentIndex(config.root_path)
        self.peer = peer or PeerSession(self.index.root)
        self.remote = remote or RemoteSession(
            f"{config.base_url}{REPL_PATH}",
            headless=config.headless,
            nav_attempts=config.nav_attempts,
            ready_timeout_ms=config.ready_timeout_ms,
        )
        self.watcher = watcher
        self._discover = discover or self._default_discover
        self._locks = {name: asyncio.Lock() for name in ("peer", "scan", "remote")}

    def _default_discover(self, explicit: Sequence[str] | None) -> list[str]:
        return candidate_addresses(explicit, configured=self.config.nvim_socket)

    async def start(self) -> None:
        await self.refresh_content()
        if not self.config.watch:
            return
        if self.watcher is None:
            self.watcher = FileWatcher(
                self.index,
                patterns=self.config.scan_patterns,
                exclude_dirs=self.config.scan_exclude_dirs,
                apply=self.apply_file_change,
            )
        try:
            await self.watcher.start()
        except OSError as exc:
            logger.warning("file watching disabled: %s", exc)
            self.watcher = None

    async def connect_peer(self, candidates: Sequence[str] | None = None) -> bool:
        async with self._locks["peer"]:
            addresses = await asyncio.to_thread(self._discover, candidates)
            logger.info("trying %d editor socket candidates", len(addresses))
            connected = await self.peer.connect(
                addresses, probe_timeout_s=self.config.probe_timeout_ms / 1000
            )
        if not connected:
            return False
        await self.refresh_content()
        return True

    async def refresh_content(self) -> None:
        async with self._locks["scan"]:
            if self.peer.connected:
                try:
                    entries = await self.peer.scan_buffers()
                except PeerError as exc:
                    logger.warning("editor scan failed, scanning files instead: %s", exc)
                    await self.peer.close()
                else:
                    self.index.replace_all(entries)
                    self._track_entries()
                    return
            entries = await asyncio.to_thread(
                scan_files,
                self.index.root,
                self.config.scan_patterns,
                self.config.scan_exclude_dirs,
            )
            self.index.replace_all(entries)
            logger.info("indexed %d files under %s", len(entries), self.index.root)

    async def apply_file_change(self, entry: ContentEntry) -> bool:
        """Fold one on-disk change into the index.

        While an editor is attached the index mirrors its buffers, so only
        files already indexed are refreshed; new files wait for a rescan.
        """

        async with self._locks["scan"]:
            existing = self.index.get(entry.path)
            if existing is None and self.peer.connected:
                logger.debug("ignoring change to unindexed file %s", entry.path)
                return False
            if existing is not None:
                entry.bufnr = existing.bufnr
            self.index.upsert(entry)
        logger.info("file changed: %s", entry.path)
        return True

    def _track_entries(self) -> None:
        if self.watcher is None:
            return
        paths = []
        for entry in self.index.list():
            full = self.index.full_path(entry.path)
            if full is not None:
                paths.append(full)
        self.watcher.track(paths)

    async def init_remote(self) -> bool:
        async with self._locks["remote"]:
            if self.remote.is_ready:
                return True
            return await self.remote.initialize()

    async def deliver(self, code: str) -> bool:
        if not code or not code.strip():
            logger.warning("refusing to deliver empty code")
            return False
        if not await self.init_remote():
            return False
        return await self.remote.deliver(code)

    async def deliver_current_buffer(self) -> bool:
        if not self.peer.connected:
            logger.warning("no editor connected")
            return False
        snapshot = await self.peer.current_buffer()
        if snapshot is None:
            return False
        return await self.deliver(snapshot.text)

    async def stop(self) -> bool:
        if not self.remote.is_ready:
            # Nothing can be playing without a ready page.
            return True
        return await self.remote.stop()

    async def evaluate(self) -> bool:
        if not await self.init_remote():
            return False
        return await self.remote.evaluate()

    async def persist(self, key: str, content: str) -> bool:
        async with self._locks["scan"]:
            return await self.index.persist(key, content)

    async def list_files(self) -> list[dict[str, Any]]:
        return self.index.list_payload()

    async def get_file(self, key: str) -> dict[str, Any] | None:
        entry = self.index.get(key)
        return entry.to_payload() if entry is not None else None

    def status(self) -> OrchestratorStatus:
        return OrchestratorStatus(
            peer_connected=self.peer.connected,
            remote_ready=self.remote.is_ready,
            content_count=len(self.index),
        )

    async def peer_status(self) -> dict[str, Any]:
        return self.peer.connection.to_payload()

    async def remote_status(self) -> dict[str, Any]:
        return self.remote.status()

    async def index_stats(self) -> dict[str, Any]:
        return self.index.stats().to_payload()

    async def health(self) -> dict[str, Any]:
        stats = self.index.stats()
        return {
            "status": "ok",
            "timestamp": _utcnow().isoformat(),
            "neovim": self.peer.connected,
            "browser": self.remote.is_ready,
            "files": {
                "count": stats.total,
                "totalSize": stats.total_size,
                "extensions": stats.extensions,
            },
            "config": {
                "port": self.config.port,
                "workingDir": str(self.index.root),
            },
        }

    async def shutdown(self) -> None:
        if self.watcher is not None:
            with contextlib.suppress(Exception):
                await self.watcher.stop()
        try:
            await self.remote.cleanup()
        except Exception as exc:
            logger.warning("browser cleanup failed: %s", exc)
        try:
            await self.peer.close()
        except Exception as exc:
            logger.warning("editor disconnect failed: %s", exc)
        logger.info("session shut down")
