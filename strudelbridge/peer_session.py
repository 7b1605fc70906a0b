from __future__ import annotations

import asyncio
import contextlib
import logging
import queue
import threading
from collections.abc import Awaitable, Callable, Sequence
from concurrent.futures import Future
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar

import pynvim

from .content_index import ContentEntry, buffer_entry
from .peer_discovery import DEFAULT_PROBE_TIMEOUT_S, PeerAddress, parse_address, probe_address

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTACH_ATTEMPTS = 2
DEFAULT_ATTACH_BACKOFF_S = 1.0
DEFAULT_CALL_TIMEOUT_S = 5.0

ATTACH_PROBE_COMMAND = 'echo "Connected to strudelbridge"'

# Buffer names that never map to deliverable content.
SKIP_BUFFER_PREFIXES = ("term://",)
SKIP_BUFFER_PLACEHOLDERS = ("[No Name]",)

Attacher = Callable[[PeerAddress], Any]
Prober = Callable[[str, float], Awaitable[bool]]


class PeerError(RuntimeError):
    pass


@dataclass
class PeerConnection:
    connected: bool = False
    address: str | None = None
    pid: int | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"connected": self.connected}
        if self.address:
            payload["address"] = self.address
        if self.pid is not None:
            payload["pid"] = self.pid
        return payload


@dataclass
class BufferSnapshot:
    number: int
    name: str
    loaded: bool
    lines: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(self.lines)


def should_skip_buffer(name: str, loaded: bool = True) -> bool:
    if not name or not name.strip():
        return True
    if name.startswith(SKIP_BUFFER_PREFIXES):
        return True
    if any(placeholder in name for placeholder in SKIP_BUFFER_PLACEHOLDERS):
        return True
    return not loaded


def attach_nvim(address: PeerAddress) -> Any:
    if address.is_tcp:
        return pynvim.attach("tcp", address=address.host, port=address.port)
    return pynvim.attach("socket", path=address.path)


def _read_buffers(nvim: Any) -> list[BufferSnapshot]:
    snapshots: list[BufferSnapshot] = []
    for buffer in nvim.buffers:
        name = buffer.name or ""
        if should_skip_buffer(name):
            continue
        loaded = bool(nvim.api.buf_is_loaded(buffer))
        if not loaded:
            logger.debug("skipping unloaded buffer %s", name)
            continue
        snapshots.append(
            BufferSnapshot(
                number=int(buffer.number), name=name, loaded=loaded, lines=list(buffer[:])
            )
        )
    return snapshots


def _read_current_buffer(nvim: Any) -> BufferSnapshot:
    buffer = nvim.current.buffer
    return BufferSnapshot(
        number=int(buffer.number), name=buffer.name or "", loaded=True, lines=list(buffer[:])
    )


class _RpcWorker:
    """Single daemon thread that owns one pynvim channel.

    pynvim handles are bound to the thread that created them. A call stuck on
    a silent socket must not keep the interpreter alive, so the thread is a
    daemon and shutdown never joins it.
    """

    _STOP = object()

    def __init__(self) -> None:
        self._jobs: queue.SimpleQueue[Any] = queue.SimpleQueue()
        self._thread = threading.Thread(target=self._loop, name="strudelbridge-nvim", daemon=True)
        self._thread.start()

    def _loop(self) -> None:
        while True:
            job = self._jobs.get()
            if job is self._STOP:
                return
            future, fn, args = job
            if not future.set_running_or_notify_cancel():
                continue
            try:
                result = fn(*args)
            except BaseException as exc:
                future.set_exception(exc)
            else:
                future.set_result(result)

    def submit(self, fn: Callable[..., T], *args: Any) -> Future[T]:
        future: Future[T] = Future()
        self._jobs.put((future, fn, args))
        return future

    def shutdown(self) -> None:
        self._jobs.put(self._STOP)


class PeerSession:
    """One msgpack-RPC channel to a running Neovim."""

    def __init__(
        self,
        root: str | Path,
        *,
        attacher: Attacher = attach_nvim,
        prober: Prober = probe_address,
        call_timeout_s: float = DEFAULT_CALL_TIMEOUT_S,
        attach_attempts: int = DEFAULT_ATTACH_ATTEMPTS,
        attach_backoff_s: float = DEFAULT_ATTACH_BACKOFF_S,
    ) -> None:
        self.root = Path(root).expanduser().resolve()
        self.connection = PeerConnection()
        self._attacher = attacher
        self._prober = prober
        self.call_timeout_s = call_timeout_s
        self.attach_attempts = max(1, attach_attempts)
        self.attach_backoff_s = attach_backoff_s
        self._nvim: Any = None
        self._worker: _RpcWorker | None = None

    @property
    def connected(self) -> bool:
        return self.connection.connected and self._nvim is not None

    async def _run(
        self,
        worker: _RpcWorker,
        fn: Callable[..., T],
        *args: Any,
        timeout_s: float | None = None,
    ) -> T:
        return await asyncio.wait_for(
            asyncio.wrap_future(worker.submit(fn, *args)),
            timeout=timeout_s or self.call_timeout_s,
        )

    async def _call(self, fn: Callable[..., T], *args: Any) -> T:
        if not self.connected or self._worker is None:
            raise PeerError("editor not connected")
        try:
            return await self._run(self._worker, fn, *args)
        except asyncio.TimeoutError as exc:
            raise PeerError("editor call timed out") from exc
        except PeerError:
            raise
        except Exception as exc:
            raise PeerError(str(exc) or type(exc).__name__) from exc

    async def _attach_once(
        self, address: str, worker: _RpcWorker
    ) -> tuple[Any, int | None]:
        target = parse_address(address)
        nvim = await self._run(worker, self._attacher, target)
        try:
            await self._run(worker, nvim.command, ATTACH_PROBE_COMMAND)
            pid: int | None = None
            with contextlib.suppress(Exception):
                pid = int(await self._run(worker, nvim.eval, "getpid()"))
        except BaseException:
            with contextlib.suppress(Exception):
                await self._run(worker, nvim.close, timeout_s=1.0)
            raise
        return nvim, pid

    async def attach(self, address: str) -> bool:
        """Open a channel to address, retrying with linear back-off.

        On success the previous channel (if any) is closed and replaced. On
        failure the current state is left as it was.
        """

        for attempt in range(1, self.attach_attempts + 1):
            worker = _RpcWorker()
            try:
                nvim, pid = await self._attach_once(address, worker)
            except Exception as exc:
                worker.shutdown()
                logger.info(
                    "rpc attach %d/%d to %s failed: %s",
                    attempt,
                    self.attach_attempts,
                    address,
                    exc or type(exc).__name__,
                )
                if attempt < self.attach_attempts:
                    await asyncio.sleep(self.attach_backoff_s * attempt)
                continue
            await self.close()
            self._nvim = nvim
            self._worker = worker
            self.connection = PeerConnection(connected=True, address=address, pid=pid)
            logger.info("connected to editor at %s (pid %s)", address, pid)
            return True
        return False

    async def connect(
        self, candidates: Sequence[str], *, probe_timeout_s: float = DEFAULT_PROBE_TIMEOUT_S
    ) -> bool:
        if not candidates:
            logger.info("no editor socket candidates found")
            return False
        for address in candidates:
            if not await self._prober(address, probe_timeout_s):
                logger.debug("candidate not responsive: %s", address)
                continue
            if await self.attach(address):
                return True
        logger.info("could not attach to any of %d editor candidates", len(candidates))
        return False

    async def scan_buffers(self) -> list[ContentEntry]:
        """Read every loaded, named buffer. Raises PeerError on any RPC failure."""

        snapshots = await self._call(_read_buffers, self._nvim)
        entries = [
            buffer_entry(self.root, snapshot.name, snapshot.text, snapshot.number)
            for snapshot in snapshots
        ]
        logger.info("loaded %d buffers from editor", len(entries))
        return entries

    async def current_buffer(self) -> BufferSnapshot | None:
        try:
            return await self._call(_read_current_buffer, self._nvim)
        except PeerError as exc:
            logger.warning("cannot read current buffer: %s", exc)
            return None

    async def command(self, command: str) -> bool:
        try:
            await self._call(self._nvim.command, command)
        except PeerError as exc:
            logger.warning("editor command failed %r: %s", command, exc)
            return False
        return True

    async def close(self) -> None:
        nvim = self._nvim
        worker = self._worker
        self._nvim = None
        self._worker = None
        self.connection = PeerConnection()
        if worker is None:
            return
        if nvim is not None:
            # Detach only; the editor keeps running.
            with contextlib.suppress(Exception):
                await self._run(worker, nvim.close, timeout_s=1.0)
        worker.shutdown()
