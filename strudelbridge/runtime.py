from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import threading
from collections.abc import Callable
from http.server import ThreadingHTTPServer

from .config import BridgeConfig
from .orchestrator import REPL_PATH, SessionOrchestrator
from .peer_discovery import WELL_KNOWN_SOCKET
from .server import LoopBridge, build_handler, make_server

logger = logging.getLogger(__name__)

OrchestratorFactory = Callable[[BridgeConfig], SessionOrchestrator]


class BridgeRuntime:
    """Event loop side of ``strudelbridge serve``.

    The orchestrator lives on the loop. The HTTP server runs on its own
    thread and reaches the orchestrator through a LoopBridge.
    """

    def __init__(
        self,
        config: BridgeConfig,
        *,
        orchestrator_factory: OrchestratorFactory = SessionOrchestrator,
    ) -> None:
        self.config = config
        self._orchestrator_factory = orchestrator_factory
        self.orchestrator: SessionOrchestrator | None = None
        self.server: ThreadingHTTPServer | None = None
        self._stop: asyncio.Event | None = None

    def request_stop(self) -> None:
        if self._stop is not None:
            self._stop.set()

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        self._stop = asyncio.Event()
        orchestrator = self._orchestrator_factory(self.config)
        self.orchestrator = orchestrator
        await orchestrator.start()

        try:
            server = make_server(
                self.config.host,
                self.config.port,
                build_handler(orchestrator, LoopBridge(loop)),
            )
        except OSError:
            await orchestrator.shutdown()
            raise
        self.server = server
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        logger.info("serving on http://%s:%d", self.config.host, self.config.port)
        logger.info("open %s%s for the REPL", self.config.base_url, REPL_PATH)
        logger.info("serving files from %s", orchestrator.index.root)

        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(sig, self._stop.set)

        startup = asyncio.create_task(self._startup(orchestrator))
        try:
            await self._stop.wait()
        finally:
            logger.info("shutting down")
            if not startup.done():
                startup.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await startup
            for sig in (signal.SIGINT, signal.SIGTERM):
                with contextlib.suppress(NotImplementedError, RuntimeError):
                    loop.remove_signal_handler(sig)
            await asyncio.to_thread(server.shutdown)
            server.server_close()
            await orchestrator.shutdown()

    async def _startup(self, orchestrator: SessionOrchestrator) -> None:
        if self.config.connect_on_start:
            if await orchestrator.connect_peer():
                logger.info("editor connected; %d buffers indexed", len(orchestrator.index))
            else:
                logger.warning(
                    "no editor found; start nvim with `nvim --listen %s`", WELL_KNOWN_SOCKET
                )
        if self.config.browser_autostart:
            if not await orchestrator.init_remote():
                logger.warning("browser failed to start; POST /api/browser/init to retry")


def serve(config: BridgeConfig) -> None:
    """Run until interrupted. A listener bind failure raises OSError."""

    asyncio.run(BridgeRuntime(config).run())
