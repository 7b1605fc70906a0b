from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from playwright.async_api import async_playwright

from .page_probes import (
    DELIVERY_PROBES,
    EVALUATE_PROBES,
    READY_FUNCTION,
    READY_SELECTOR,
    STOP_PROBES,
    PageProbe,
)

logger = logging.getLogger(__name__)

DEFAULT_NAV_ATTEMPTS = 4
DEFAULT_NAV_TIMEOUT_MS = 30_000
DEFAULT_NAV_BACKOFF_S = 0.5
DEFAULT_READY_TIMEOUT_MS = 30_000
DEFAULT_PAGE_TIMEOUT_MS = 60_000
VIEWPORT = {"width": 1280, "height": 720}
LAUNCH_ARGS = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--autoplay-policy=no-user-gesture-required",
)


class RemoteState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LAUNCHING = "launching"
    NAVIGATING = "navigating"
    WAITING_READY = "waiting_ready"
    READY = "ready"
    STOPPED = "stopped"
    FAILED = "failed"


class RemoteSessionError(RuntimeError):
    pass


@dataclass
class BrowserHandles:
    page: Any
    context: Any = None
    browser: Any = None
    driver: Any = None


Launcher = Callable[[], Awaitable[BrowserHandles]]


async def launch_chromium(*, headless: bool = False) -> BrowserHandles:
    driver = await async_playwright().start()
    browser = None
    try:
        browser = await driver.chromium.launch(headless=headless, args=list(LAUNCH_ARGS))
        context = await browser.new_context(viewport=VIEWPORT)
        page = await context.new_page()
    except BaseException:
        if browser is not None:
            try:
                await browser.close()
            except Exception as exc:
                logger.warning("browser close after failed launch: %s", exc)
        await driver.stop()
        raise
    page.set_default_timeout(DEFAULT_PAGE_TIMEOUT_MS)
    return BrowserHandles(page=page, context=context, browser=browser, driver=driver)


class RemoteSession:
    """Drives the browser page that hosts the Strudel REPL.

    States: uninitialized -> launching -> navigating -> waiting_ready ->
    ready -> (stopped | failed). Code can only be delivered while ready.
    """

    def __init__(
        self,
        target_url: str,
        *,
        launcher: Launcher | None = None,
        headless: bool = False,
        nav_attempts: int = DEFAULT_NAV_ATTEMPTS,
        nav_timeout_ms: int = DEFAULT_NAV_TIMEOUT_MS,
        nav_backoff_s: float = DEFAULT_NAV_BACKOFF_S,
        ready_timeout_ms: int = DEFAULT_READY_TIMEOUT_MS,
    ) -> None:
        self.target_url = target_url
        self.headless = headless
        self._launcher = launcher or self._default_launcher
        self.nav_attempts = max(1, nav_attempts)
        self.nav_timeout_ms = nav_timeout_ms
        self.nav_backoff_s = nav_backoff_s
        self.ready_timeout_ms = ready_timeout_ms
        self.initialized = False
        self.ready = False
        self.state = RemoteState.UNINITIALIZED
        self.navigation_count = 0
        self._handles: BrowserHandles | None = None

    async def _default_launcher(self) -> BrowserHandles:
        return await launch_chromium(headless=self.headless)

    @property
    def is_ready(self) -> bool:
        return self.initialized and self.ready and self._handles is not None

    async def initialize(self) -> bool:
        if self.is_ready:
            return True
        if self._handles is not None:
            await self.cleanup()
        self.navigation_count = 0
        try:
            self.state = RemoteState.LAUNCHING
            logger.info("launching browser for %s", self.target_url)
            self._handles = await self._launcher()
            self._watch_handles(self._handles)
            self.state = RemoteState.NAVIGATING
            await self._navigate_with_retry()
            self.state = RemoteState.WAITING_READY
            await self._wait_for_ready()
        except Exception as exc:
            logger.error("browser initialization failed in %s: %s", self.state.value, exc)
            await self.cleanup()
            self.state = RemoteState.FAILED
            return False
        self.initialized = True
        self.ready = True
        self.state = RemoteState.READY
        logger.info("browser ready at %s", self.target_url)
        return True

    def _watch_handles(self, handles: BrowserHandles) -> None:
        for target, event in ((handles.page, "close"), (handles.browser, "disconnected")):
            on = getattr(target, "on", None)
            if callable(on):
                on(event, self._on_lost)

    def _on_lost(self, *_args: object) -> None:
        if not self.initialized:
            return
        logger.warning("browser page went away; it will be relaunched on next use")
        self.initialized = False
        self.ready = False
        self.state = RemoteState.FAILED

    def _page(self) -> Any:
        if self._handles is None:
            raise RemoteSessionError("page not initialized")
        return self._handles.page

    async def _navigate_with_retry(self) -> None:
        page = self._page()
        for attempt in range(1, self.nav_attempts + 1):
            self.navigation_count += 1
            try:
                await page.goto(
                    self.target_url,
                    wait_until="domcontentloaded",
                    timeout=self.nav_timeout_ms,
                )
                return
            except Exception as exc:
                if attempt == self.nav_attempts:
                    raise
                backoff = self.nav_backoff_s * attempt
                logger.warning(
                    "navigation attempt %d/%d failed (%s); retrying in %.1fs",
                    attempt,
                    self.nav_attempts,
                    exc,
                    backoff,
                )
                await asyncio.sleep(backoff)

    async def _wait_for_ready(self) -> None:
        page = self._page()
        loop = asyncio.get_running_loop()
        started = loop.time()
        # The element can attach before its editor object finishes constructing.
        await page.wait_for_selector(
            READY_SELECTOR, state="attached", timeout=self.ready_timeout_ms
        )
        elapsed_ms = int((loop.time() - started) * 1000)
        remaining_ms = max(1, self.ready_timeout_ms - elapsed_ms)
        await page.wait_for_function(READY_FUNCTION, timeout=remaining_ms, polling=100)

    async def _run_probes(
        self, probes: Sequence[PageProbe], arg: Any = None
    ) -> tuple[str, bool] | None:
        page = self._page()
        for probe in probes:
            try:
                if arg is None:
                    result = await page.evaluate(probe.script)
                else:
                    result = await page.evaluate(probe.script, arg)
            except Exception as exc:
                logger.warning("page probe %s raised: %s", probe.name, exc)
                continue
            if result is None:
                continue
            return probe.name, bool(result)
        return None

    async def deliver(self, code: str) -> bool:
        if not self.is_ready:
            logger.error("cannot deliver code: browser not ready")
            return False
        logger.info("sending %d characters to the REPL", len(code))
        outcome = await self._run_probes(DELIVERY_PROBES, code)
        if outcome is None:
            logger.error("no REPL integration point found on the page")
            return False
        name, ok = outcome
        if ok:
            logger.info("code delivered via %s", name)
        else:
            logger.error("code delivery via %s failed", name)
        return ok

    async def stop(self) -> bool:
        if not self.is_ready:
            logger.error("cannot stop playback: browser not ready")
            return False
        outcome = await self._run_probes(STOP_PROBES)
        if outcome is None:
            logger.info("no stop method found; nothing is playing")
            return True
        logger.info("playback stopped via %s", outcome[0])
        return True

    async def evaluate(self) -> bool:
        if not self.is_ready:
            return False
        outcome = await self._run_probes(EVALUATE_PROBES)
        return bool(outcome and outcome[1])

    async def cleanup(self) -> None:
        handles = self._handles
        self._handles = None
        if handles is not None:
            steps = (
                ("page", handles.page, "close"),
                ("context", handles.context, "close"),
                ("browser", handles.browser, "close"),
                ("driver", handles.driver, "stop"),
            )
            for label, target, method in steps:
                if target is None:
                    continue
                try:
                    await getattr(target, method)()
                except Exception as exc:
                    logger.warning("error closing %s: %s", label, exc)
        self.initialized = False
        self.ready = False
        if self.state is not RemoteState.UNINITIALIZED:
            self.state = RemoteState.STOPPED

    def status(self) -> dict[str, Any]:
        return {
            "initialized": self.initialized,
            "ready": self.ready,
            "state": self.state.value,
            "browserConnected": bool(self._handles and self._handles.browser is not None),
            "pageReady": self.is_ready,
            "targetUrl": self.target_url,
        }
