from __future__ import annotations

import asyncio

from fakes import FakeClosable, FakeLauncher, FakePage

from strudelbridge.remote_session import RemoteSession, RemoteState

URL = "http://localhost:3001/strudel"


def _session(launcher: FakeLauncher, **kwargs) -> RemoteSession:
    return RemoteSession(URL, launcher=launcher, nav_backoff_s=0, **kwargs)


def test_initialize_retries_navigation_until_success() -> None:
    page = FakePage(goto_failures=2)
    session = _session(FakeLauncher(page))

    assert asyncio.run(session.initialize()) is True

    assert page.goto_calls == 3
    assert session.navigation_count == 3
    assert session.state is RemoteState.READY
    assert session.initialized and session.ready


def test_initialize_gives_up_after_all_attempts_and_cleans_up() -> None:
    page = FakePage(goto_failures=10)
    launcher = FakeLauncher(page)
    session = _session(launcher)

    assert asyncio.run(session.initialize()) is False

    assert page.goto_calls == 4
    assert session.state is RemoteState.FAILED
    assert not session.initialized and not session.ready
    assert page.closed and launcher.context.closed and launcher.browser.closed
    assert launcher.driver.closed


def test_initialize_fails_when_editor_never_ready() -> None:
    page = FakePage(ready=False)
    session = _session(FakeLauncher(page))

    assert asyncio.run(session.initialize()) is False
    assert session.status()["state"] == "failed"
    assert page.closed is True


def test_initialize_launch_failure_returns_false() -> None:
    launcher = FakeLauncher(FakePage(), fail=RuntimeError("no chromium"))
    session = _session(launcher)

    assert asyncio.run(session.initialize()) is False
    assert session.state is RemoteState.FAILED


def test_initialize_is_reentrant_when_ready() -> None:
    launcher = FakeLauncher(FakePage())
    session = _session(launcher)

    async def scenario() -> None:
        assert await session.initialize() is True
        assert await session.initialize() is True

    asyncio.run(scenario())
    assert launcher.calls == 1


def test_deliver_falls_through_to_legacy_global() -> None:
    page = FakePage(probe_results={"deliver:legacy-send": True})
    session = _session(FakeLauncher(page))

    async def scenario() -> bool:
        await session.initialize()
        return await session.deliver("note(1)")

    assert asyncio.run(scenario()) is True
    legacy_calls = [call for call in page.probe_calls if call[0] == "deliver:legacy-send"]
    assert legacy_calls == [("deliver:legacy-send", "note(1)")]


def test_deliver_prefers_component_api() -> None:
    page = FakePage(
        probe_results={"deliver:strudel-editor": True, "deliver:legacy-send": True}
    )
    session = _session(FakeLauncher(page))

    async def scenario() -> bool:
        await session.initialize()
        return await session.deliver("s('bd')")

    assert asyncio.run(scenario()) is True
    assert [call[0] for call in page.probe_calls] == ["deliver:strudel-editor"]


def test_deliver_skips_probe_that_raises() -> None:
    page = FakePage(
        probe_results={
            "deliver:strudel-editor": RuntimeError("page crashed"),
            "deliver:codemirror5": True,
        }
    )
    session = _session(FakeLauncher(page))

    async def scenario() -> bool:
        await session.initialize()
        return await session.deliver("s('bd')")

    assert asyncio.run(scenario()) is True


def test_deliver_without_integration_point() -> None:
    page = FakePage()
    session = _session(FakeLauncher(page))

    async def scenario() -> bool:
        await session.initialize()
        return await session.deliver("s('bd')")

    assert asyncio.run(scenario()) is False
    assert len(page.probe_calls) == 5


def test_deliver_before_ready_makes_no_page_calls() -> None:
    page = FakePage()
    session = _session(FakeLauncher(page))
    assert asyncio.run(session.deliver("s('bd')")) is False
    assert page.probe_calls == []


def test_stop_is_idempotent_even_without_stop_method() -> None:
    page = FakePage()
    session = _session(FakeLauncher(page))

    async def scenario() -> tuple[bool, bool]:
        await session.initialize()
        return await session.stop(), await session.stop()

    assert asyncio.run(scenario()) == (True, True)


def test_stop_uses_hush_when_component_missing() -> None:
    page = FakePage(probe_results={"stop:hush": True})
    session = _session(FakeLauncher(page))

    async def scenario() -> bool:
        await session.initialize()
        return await session.stop()

    assert asyncio.run(scenario()) is True
    assert [call[0] for call in page.probe_calls] == [
        "stop:strudel-editor",
        "stop:repl-global",
        "stop:hush",
    ]


def test_evaluate() -> None:
    page = FakePage(probe_results={"evaluate:strudel-editor": True})
    session = _session(FakeLauncher(page))

    async def scenario() -> bool:
        await session.initialize()
        return await session.evaluate()

    assert asyncio.run(scenario()) is True


def test_cleanup_continues_past_failures_and_resets_flags() -> None:
    page = FakePage()
    launcher = FakeLauncher(page)
    launcher.context = FakeClosable(fail=True)
    session = _session(launcher)

    async def scenario() -> None:
        await session.initialize()
        await session.cleanup()

    asyncio.run(scenario())

    assert page.closed and launcher.context.closed
    assert launcher.browser.closed and launcher.driver.closed
    assert not session.initialized and not session.ready
    assert session.state is RemoteState.STOPPED
    assert session.status()["browserConnected"] is False


def test_status_payload() -> None:
    session = _session(FakeLauncher(FakePage()))
    asyncio.run(session.initialize())
    status = session.status()
    assert status == {
        "initialized": True,
        "ready": True,
        "state": "ready",
        "browserConnected": True,
        "pageReady": True,
        "targetUrl": URL,
    }
