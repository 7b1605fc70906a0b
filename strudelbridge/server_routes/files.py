from __future__ import annotations

from typing import Any, Protocol
from urllib.parse import unquote

from ..orchestrator import SessionOrchestrator

FILE_PREFIX = "/api/file/"


class _BridgeHandler(Protocol):
    def _send_json(self, payload: Any, status: int = 200) -> None: ...

    def _read_json(self) -> dict[str, Any] | None: ...

    def _call(self, coro: Any) -> Any: ...


def _file_key(path: str) -> str | None:
    if not path.startswith(FILE_PREFIX):
        return None
    key = unquote(path[len(FILE_PREFIX) :])
    return key or None


def handle_get(handler: _BridgeHandler, orchestrator: SessionOrchestrator, path: str) -> bool:
    if path == "/api/files":
        handler._send_json(handler._call(orchestrator.list_files()))
        return True

    key = _file_key(path)
    if key is None:
        return False
    entry = handler._call(orchestrator.get_file(key))
    if entry is None:
        handler._send_json({"error": "File not found"}, status=404)
        return True
    handler._send_json(entry)
    return True


def handle_post(handler: _BridgeHandler, orchestrator: SessionOrchestrator, path: str) -> bool:
    if path != "/api/files":
        return False
    handler._call(orchestrator.refresh_content())
    handler._send_json({"success": True})
    return True


def handle_put(handler: _BridgeHandler, orchestrator: SessionOrchestrator, path: str) -> bool:
    key = _file_key(path)
    if key is None:
        return False
    payload = handler._read_json()
    content = payload.get("content") if payload else None
    if not isinstance(content, str):
        handler._send_json({"success": False, "error": "content is required"}, status=400)
        return True
    ok = bool(handler._call(orchestrator.persist(key, content)))
    handler._send_json({"success": ok}, status=200 if ok else 500)
    return True
