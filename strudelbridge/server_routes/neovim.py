from __future__ import annotations

from typing import Any, Protocol

from ..orchestrator import SessionOrchestrator


class _BridgeHandler(Protocol):
    def _send_json(self, payload: Any, status: int = 200) -> None: ...

    def _read_json(self) -> dict[str, Any] | None: ...

    def _call(self, coro: Any) -> Any: ...


def handle_get(handler: _BridgeHandler, orchestrator: SessionOrchestrator, path: str) -> bool:
    if path == "/api/neovim/status":
        handler._send_json(handler._call(orchestrator.peer_status()))
        return True
    return False


def handle_post(handler: _BridgeHandler, orchestrator: SessionOrchestrator, path: str) -> bool:
    if path == "/api/neovim/connect":
        payload = handler._read_json() or {}
        socket = payload.get("socket")
        candidates = [socket] if isinstance(socket, str) and socket.strip() else None
        ok = bool(handler._call(orchestrator.connect_peer(candidates)))
        handler._send_json(
            {
                "success": ok,
                "message": "Connected to Neovim" if ok else "Failed to connect to Neovim",
            }
        )
        return True

    if path == "/api/neovim/send-current":
        ok = bool(handler._call(orchestrator.deliver_current_buffer()))
        handler._send_json(
            {
                "success": ok,
                "message": "Current buffer sent to Strudel" if ok else "Failed to send buffer",
            }
        )
        return True

    return False
