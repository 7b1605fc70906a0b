from __future__ import annotations

import asyncio
import concurrent.futures
import contextlib
import logging
import os
import socket
from collections.abc import Coroutine
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import urlparse

from . import server_assets
from .orchestrator import SessionOrchestrator
from .server_http import (
    read_json_body,
    read_text_body,
    send_bytes_response,
    send_empty_response,
    send_json_response,
    send_text_response,
)
from .server_routes import browser as server_routes_browser
from .server_routes import files as server_routes_files
from .server_routes import health as server_routes_health
from .server_routes import neovim as server_routes_neovim

logger = logging.getLogger(__name__)

# Browser init alone may take several navigation attempts plus the ready wait.
DEFAULT_CALL_TIMEOUT_S = 180.0


class LoopBridge:
    """Runs orchestrator coroutines on the event loop from handler threads."""

    def __init__(
        self, loop: asyncio.AbstractEventLoop, timeout_s: float = DEFAULT_CALL_TIMEOUT_S
    ) -> None:
        self.loop = loop
        self.timeout_s = timeout_s

    def call(self, coro: Coroutine[Any, Any, Any], timeout_s: float | None = None) -> Any:
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        try:
            return future.result(timeout=timeout_s or self.timeout_s)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise


def build_handler(orchestrator: SessionOrchestrator, bridge: LoopBridge):
    root = orchestrator.index.root

    class BridgeHandler(BaseHTTPRequestHandler):
        server_version = "strudelbridge"

        def log_message(self, format: str, *args: object) -> None:  # noqa: A003
            if os.environ.get("STRUDELBRIDGE_HTTP_LOGS") == "1":
                super().log_message(format, *args)

        def _send_json(self, payload: Any, status: int = 200) -> None:
            send_json_response(self, payload, status=status)

        def _send_text(self, text: str, status: int = 200) -> None:
            send_text_response(self, text, status=status)

        def _read_json(self) -> dict[str, Any] | None:
            return read_json_body(self)

        def _read_text(self) -> str:
            return read_text_body(self)

        def _call(self, coro: Coroutine[Any, Any, Any]) -> Any:
            return bridge.call(coro)

        def _send_repl_page(self) -> None:
            send_bytes_response(
                self,
                server_assets.get_repl_html_bytes(),
                content_type="text/html; charset=utf-8",
            )

        def _send_root_file(self, request_path: str) -> None:
            try:
                body, content_type = server_assets.get_root_file_bytes(root, request_path)
            except ValueError:
                self._send_text("Forbidden\n", status=403)
                return
            except FileNotFoundError:
                self._send_text("File not found\n", status=404)
                return
            send_bytes_response(
                self, body, content_type=content_type, cache_control="public, max-age=3600"
            )

        def _not_found(self) -> None:
            self._send_json({"error": "Not found"}, status=404)

        def _dispatch(self, method: str) -> None:
            path = urlparse(self.path).path
            try:
                if method == "GET":
                    if path in ("/", "/strudel"):
                        self._send_repl_page()
                        return
                    if not path.startswith("/api/") and server_assets.is_root_file_request(path):
                        self._send_root_file(path)
                        return
                    if server_routes_health.handle_get(self, orchestrator, path):
                        return
                    if server_routes_files.handle_get(self, orchestrator, path):
                        return
                    if server_routes_neovim.handle_get(self, orchestrator, path):
                        return
                    if server_routes_browser.handle_get(self, orchestrator, path):
                        return
                elif method == "POST":
                    if server_routes_files.handle_post(self, orchestrator, path):
                        return
                    if server_routes_neovim.handle_post(self, orchestrator, path):
                        return
                    if server_routes_browser.handle_post(self, orchestrator, path):
                        return
                elif method == "PUT":
                    if server_routes_files.handle_put(self, orchestrator, path):
                        return
                self._not_found()
            except concurrent.futures.TimeoutError:
                logger.warning("%s %s timed out", method, path)
                self._send_json({"error": "timed out"}, status=504)
            except Exception as exc:
                logger.exception("%s %s failed", method, path, exc_info=exc)
                payload: dict[str, Any] = {"error": "internal server error"}
                if os.environ.get("STRUDELBRIDGE_DEBUG") == "1":
                    payload["detail"] = str(exc)
                self._send_json(payload, status=500)

        def do_OPTIONS(self) -> None:  # noqa: N802
            send_empty_response(self, 204)

        def do_GET(self) -> None:  # noqa: N802
            self._dispatch("GET")

        def do_POST(self) -> None:  # noqa: N802
            self._dispatch("POST")

        def do_PUT(self) -> None:  # noqa: N802
            self._dispatch("PUT")

        def do_DELETE(self) -> None:  # noqa: N802
            self._dispatch("DELETE")

    return BridgeHandler


def make_server(
    host: str, port: int, handler: type[BaseHTTPRequestHandler]
) -> ThreadingHTTPServer:
    """Bind the listener. A bind failure raises OSError to the caller."""

    class Server(ThreadingHTTPServer):
        address_family = socket.AF_INET6 if ":" in host else socket.AF_INET
        daemon_threads = True

        def server_bind(self) -> None:
            if self.address_family == socket.AF_INET6:
                with contextlib.suppress(OSError):
                    self.socket.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
            super().server_bind()

    return Server((host, port), handler)
