from __future__ import annotations

from typing import Any, Protocol

from ..orchestrator import SessionOrchestrator


class _BridgeHandler(Protocol):
    def _send_json(self, payload: Any, status: int = 200) -> None: ...

    def _call(self, coro: Any) -> Any: ...


def handle_get(handler: _BridgeHandler, orchestrator: SessionOrchestrator, path: str) -> bool:
    if path == "/health":
        handler._send_json(handler._call(orchestrator.health()))
        return True
    if path == "/api/stats":
        handler._send_json(handler._call(orchestrator.index_stats()))
        return True
    return False
