from __future__ import annotations

import asyncio
import http.client
import json
import threading
from collections.abc import Iterator
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest
from fakes import FakeLauncher, FakeNvim, FakePage, always_live, buffer_specs

from strudelbridge.config import BridgeConfig
from strudelbridge.orchestrator import SessionOrchestrator
from strudelbridge.peer_session import PeerSession
from strudelbridge.remote_session import RemoteSession
from strudelbridge.server import LoopBridge, build_handler, make_server


@pytest.fixture
def bridge(tmp_path: Path) -> Iterator[SimpleNamespace]:
    root = tmp_path.resolve()
    (root / "a.strdl").write_text("s('bd')")
    (root / "theme.css").write_text("body {}")
    (tmp_path.parent / "secret.json").write_text("{}")
    page = FakePage(probe_results={"deliver:strudel-editor": True, "stop:hush": True})
    launcher = FakeLauncher(page)
    nvim = FakeNvim(buffer_specs([{"name": "buf.strdl", "lines": ["note(3)"]}]))
    config = BridgeConfig(root=str(root), watch=False)
    orchestrator = SessionOrchestrator(
        config,
        peer=PeerSession(root, attacher=lambda address: nvim, prober=always_live),
        remote=RemoteSession(config.base_url, launcher=launcher, nav_backoff_s=0),
        discover=lambda explicit: list(explicit or ["/tmp/fake.sock"]),
    )

    loop = asyncio.new_event_loop()
    loop_thread = threading.Thread(target=loop.run_forever, daemon=True)
    loop_thread.start()
    asyncio.run_coroutine_threadsafe(orchestrator.refresh_content(), loop).result(5)

    server = make_server("127.0.0.1", 0, build_handler(orchestrator, LoopBridge(loop, 5.0)))
    server_thread = threading.Thread(target=server.serve_forever, daemon=True)
    server_thread.start()
    try:
        yield SimpleNamespace(
            port=int(server.server_address[1]),
            orchestrator=orchestrator,
            page=page,
            launcher=launcher,
            root=root,
        )
    finally:
        server.shutdown()
        server.server_close()
        asyncio.run_coroutine_threadsafe(orchestrator.shutdown(), loop).result(5)
        loop.call_soon_threadsafe(loop.stop)
        loop_thread.join(timeout=2)
        loop.close()


def _request(
    port: int,
    method: str,
    path: str,
    *,
    body: Any = None,
    text: str | None = None,
) -> tuple[int, dict[str, str], bytes]:
    conn = http.client.HTTPConnection("127.0.0.1", port, timeout=5)
    headers: dict[str, str] = {}
    raw: bytes | None = None
    if body is not None:
        raw = json.dumps(body).encode("utf-8")
        headers["Content-Type"] = "application/json"
    elif text is not None:
        raw = text.encode("utf-8")
        headers["Content-Type"] = "text/plain"
    try:
        conn.request(method, path, body=raw, headers=headers)
        resp = conn.getresponse()
        return resp.status, dict(resp.getheaders()), resp.read()
    finally:
        conn.close()


def _json(port: int, method: str, path: str, body: Any = None) -> tuple[int, Any]:
    status, _headers, raw = _request(port, method, path, body=body)
    return status, json.loads(raw) if raw else None


def test_options_preflight(bridge: SimpleNamespace) -> None:
    status, headers, raw = _request(bridge.port, "OPTIONS", "/api/files")
    assert status == 204
    assert headers["Access-Control-Allow-Origin"] == "*"
    assert "PUT" in headers["Access-Control-Allow-Methods"]
    assert raw == b""


def test_list_and_get_files(bridge: SimpleNamespace) -> None:
    status, files = _json(bridge.port, "GET", "/api/files")
    assert status == 200
    assert [item["path"] for item in files] == ["a.strdl"]

    status, entry = _json(bridge.port, "GET", "/api/file/a.strdl")
    assert status == 200
    assert entry["content"] == "s('bd')"

    status, missing = _json(bridge.port, "GET", "/api/file/nope.strdl")
    assert status == 404
    assert missing == {"error": "File not found"}


def test_put_file_and_refresh(bridge: SimpleNamespace) -> None:
    status, payload = _json(bridge.port, "PUT", "/api/file/a.strdl", {"content": "s('hh')"})
    assert status == 200 and payload == {"success": True}
    assert (bridge.root / "a.strdl").read_text() == "s('hh')"

    status, payload = _json(bridge.port, "PUT", "/api/file/a.strdl", {})
    assert status == 400

    (bridge.root / "b.strdl").write_text("x")
    status, payload = _json(bridge.port, "POST", "/api/files")
    assert status == 200 and payload == {"success": True}
    _status, files = _json(bridge.port, "GET", "/api/files")
    assert sorted(item["path"] for item in files) == ["a.strdl", "b.strdl"]


def test_send_code_requires_code(bridge: SimpleNamespace) -> None:
    status, payload = _json(bridge.port, "POST", "/api/browser/send-code", {})
    assert status == 400
    assert payload["success"] is False
    assert bridge.launcher.calls == 0


def test_send_code_initializes_browser_and_delivers(bridge: SimpleNamespace) -> None:
    status, payload = _json(bridge.port, "POST", "/api/browser/send-code", {"code": "note(1)"})
    assert status == 200
    assert payload == {"success": True, "message": "Code sent to Strudel"}
    assert ("deliver:strudel-editor", "note(1)") in bridge.page.probe_calls

    status, remote = _json(bridge.port, "GET", "/api/browser/status")
    assert status == 200 and remote["ready"] is True


def test_browser_init_and_stop(bridge: SimpleNamespace) -> None:
    status, payload = _json(bridge.port, "POST", "/api/browser/init")
    assert payload == {"success": True, "message": "Browser initialized"}
    status, payload = _json(bridge.port, "POST", "/api/browser/stop")
    assert payload["success"] is True


def test_plain_text_endpoints(bridge: SimpleNamespace) -> None:
    status, headers, raw = _request(
        bridge.port, "POST", "/api/send-current-buffer", text="s('bd*2')"
    )
    assert status == 200
    assert headers["Content-Type"].startswith("text/plain")
    assert raw.decode() == "Code sent to Strudel\n"

    status, _headers, raw = _request(bridge.port, "POST", "/api/send-selection", text="   ")
    assert status == 500
    assert raw.decode() == "Failed to send code\n"

    status, _headers, raw = _request(bridge.port, "POST", "/api/hush")
    assert status == 200
    assert raw.decode() == "Stopped Strudel\n"


def test_neovim_connect_status_and_send_current(bridge: SimpleNamespace) -> None:
    status, payload = _json(bridge.port, "GET", "/api/neovim/status")
    assert payload == {"connected": False}

    status, payload = _json(bridge.port, "POST", "/api/neovim/connect")
    assert payload == {"success": True, "message": "Connected to Neovim"}

    status, payload = _json(bridge.port, "GET", "/api/neovim/status")
    assert payload["connected"] is True and payload["pid"] == 4242

    _status, files = _json(bridge.port, "GET", "/api/files")
    assert [item["path"] for item in files] == ["buf.strdl"]

    status, payload = _json(bridge.port, "POST", "/api/neovim/send-current")
    assert payload["success"] is True
    assert ("deliver:strudel-editor", "note(3)") in bridge.page.probe_calls


def test_health(bridge: SimpleNamespace) -> None:
    status, payload = _json(bridge.port, "GET", "/health")
    assert status == 200
    assert payload["status"] == "ok"
    assert payload["files"]["count"] == 1
    assert payload["config"]["workingDir"] == str(bridge.root)


def test_repl_page_and_root_files(bridge: SimpleNamespace) -> None:
    for path in ("/", "/strudel"):
        status, headers, raw = _request(bridge.port, "GET", path)
        assert status == 200
        assert headers["Content-Type"].startswith("text/html")
        assert b"strudel-editor" in raw

    status, headers, raw = _request(bridge.port, "GET", "/a.strdl")
    assert status == 200 and raw == b"s('bd')"
    status, headers, raw = _request(bridge.port, "GET", "/theme.css")
    assert status == 200 and headers["Content-Type"].startswith("text/css")

    status, _headers, _raw = _request(bridge.port, "GET", "/missing.json")
    assert status == 404
    status, _headers, _raw = _request(bridge.port, "GET", "/%2e%2e/secret.json")
    assert status == 403


def test_unknown_route(bridge: SimpleNamespace) -> None:
    status, payload = _json(bridge.port, "GET", "/api/nothing")
    assert status == 404
    assert payload == {"error": "Not found"}


def test_stats(bridge: SimpleNamespace) -> None:
    status, payload = _json(bridge.port, "GET", "/api/stats")
    assert status == 200
    assert payload["totalFiles"] == 1
    assert payload["realFiles"] == 1
    assert payload["virtualFiles"] == 0
    assert payload["extensions"] == {".strdl": 1}
