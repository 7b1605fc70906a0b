from __future__ import annotations

import asyncio
import json
import socket
from pathlib import Path

import pytest
from fakes import FakeLauncher, FakeNvim, FakePage, always_live, buffer_specs

from strudelbridge.config import BridgeConfig
from strudelbridge.http_client import request_raw
from strudelbridge.orchestrator import SessionOrchestrator
from strudelbridge.peer_session import PeerSession
from strudelbridge.remote_session import RemoteSession
from strudelbridge.runtime import BridgeRuntime


def _factory(launcher: FakeLauncher, nvim: FakeNvim):
    def build(config: BridgeConfig) -> SessionOrchestrator:
        return SessionOrchestrator(
            config,
            peer=PeerSession(config.root_path, attacher=lambda address: nvim, prober=always_live),
            remote=RemoteSession(config.base_url, launcher=launcher, nav_backoff_s=0),
            discover=lambda explicit: ["/tmp/fake.sock"],
        )

    return build


async def _wait_for(predicate, timeout_s: float = 5.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout_s
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


def test_runtime_serves_and_runs_startup_actions(tmp_path: Path) -> None:
    launcher = FakeLauncher(FakePage())
    nvim = FakeNvim(buffer_specs([{"name": "live.strdl", "lines": ["s('bd')"]}]))
    config = BridgeConfig(host="127.0.0.1", port=0, root=str(tmp_path), watch=False)
    runtime = BridgeRuntime(config, orchestrator_factory=_factory(launcher, nvim))

    async def scenario() -> tuple[int, dict]:
        task = asyncio.create_task(runtime.run())
        await _wait_for(lambda: runtime.server is not None)
        await _wait_for(lambda: runtime.orchestrator.status().remote_ready)
        port = runtime.server.server_address[1]
        status, raw = await asyncio.to_thread(
            request_raw, "GET", f"http://127.0.0.1:{port}/health", timeout_s=5
        )
        runtime.request_stop()
        await task
        return status, json.loads(raw)

    status, health = asyncio.run(scenario())

    assert status == 200
    assert health["neovim"] is True
    assert health["browser"] is True
    assert health["files"]["count"] == 1
    assert launcher.calls == 1
    assert nvim.closed is True
    assert launcher.browser.closed is True


def test_runtime_skips_startup_actions_when_disabled(tmp_path: Path) -> None:
    launcher = FakeLauncher(FakePage())
    config = BridgeConfig(
        host="127.0.0.1",
        port=0,
        root=str(tmp_path),
        watch=False,
        browser_autostart=False,
        connect_on_start=False,
    )
    runtime = BridgeRuntime(config, orchestrator_factory=_factory(launcher, FakeNvim([])))

    async def scenario() -> None:
        task = asyncio.create_task(runtime.run())
        await _wait_for(lambda: runtime.server is not None)
        await asyncio.sleep(0.05)
        runtime.request_stop()
        await task

    asyncio.run(scenario())

    assert launcher.calls == 0
    assert runtime.orchestrator.status().peer_connected is False


def test_runtime_bind_failure_raises(tmp_path: Path) -> None:
    blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    blocker.bind(("127.0.0.1", 0))
    blocker.listen(1)
    port = blocker.getsockname()[1]
    launcher = FakeLauncher(FakePage())
    config = BridgeConfig(host="127.0.0.1", port=port, root=str(tmp_path), watch=False)
    runtime = BridgeRuntime(config, orchestrator_factory=_factory(launcher, FakeNvim([])))
    try:
        with pytest.raises(OSError):
            asyncio.run(runtime.run())
    finally:
        blocker.close()

    assert runtime.server is None
    assert launcher.calls == 0
