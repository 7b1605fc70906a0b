from __future__ import annotations

from typing import Any, Protocol

from ..orchestrator import SessionOrchestrator

# Plain-text endpoints for curl and the editor plugin.
TEXT_DELIVERY_PATHS = {"/api/send-current-buffer", "/api/send-selection"}


class _BridgeHandler(Protocol):
    def _send_json(self, payload: Any, status: int = 200) -> None: ...

    def _send_text(self, text: str, status: int = 200) -> None: ...

    def _read_json(self) -> dict[str, Any] | None: ...

    def _read_text(self) -> str: ...

    def _call(self, coro: Any) -> Any: ...


def _result(ok: bool, success: str, failure: str) -> dict[str, Any]:
    return {"success": ok, "message": success if ok else failure}


def handle_get(handler: _BridgeHandler, orchestrator: SessionOrchestrator, path: str) -> bool:
    if path == "/api/browser/status":
        handler._send_json(handler._call(orchestrator.remote_status()))
        return True
    return False


def handle_post(handler: _BridgeHandler, orchestrator: SessionOrchestrator, path: str) -> bool:
    if path == "/api/browser/init":
        ok = bool(handler._call(orchestrator.init_remote()))
        handler._send_json(_result(ok, "Browser initialized", "Failed to initialize browser"))
        return True

    if path == "/api/browser/send-code":
        payload = handler._read_json()
        code = payload.get("code") if payload else None
        if not isinstance(code, str) or not code:
            handler._send_json({"success": False, "error": "No code provided"}, status=400)
            return True
        ok = bool(handler._call(orchestrator.deliver(code)))
        handler._send_json(_result(ok, "Code sent to Strudel", "Failed to send code"))
        return True

    if path == "/api/browser/stop":
        ok = bool(handler._call(orchestrator.stop()))
        handler._send_json(_result(ok, "Stopped Strudel playback", "Failed to stop playback"))
        return True

    if path == "/api/browser/evaluate":
        ok = bool(handler._call(orchestrator.evaluate()))
        handler._send_json(_result(ok, "Pattern evaluated", "Failed to evaluate pattern"))
        return True

    if path in TEXT_DELIVERY_PATHS:
        ok = bool(handler._call(orchestrator.deliver(handler._read_text())))
        if ok:
            handler._send_text("Code sent to Strudel\n")
        else:
            handler._send_text("Failed to send code\n", status=500)
        return True

    if path == "/api/hush":
        ok = bool(handler._call(orchestrator.stop()))
        if ok:
            handler._send_text("Stopped Strudel\n")
        else:
            handler._send_text("Failed to stop\n", status=500)
        return True

    return False
