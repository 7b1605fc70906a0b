from __future__ import annotations

import asyncio
import contextlib
import getpass
import logging
import os
import re
import stat
import subprocess
import tempfile
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

WELL_KNOWN_SOCKET = "/tmp/strudel-nvim-socket"
ENV_ADDRESS_VARS = ("NVIM_LISTEN_ADDRESS", "NVIM")
DEFAULT_PROBE_TIMEOUT_S = 2.0

_NVIM_EXECUTABLE_RE = re.compile(r"^nvim(\.appimage|\.exe)?$", re.IGNORECASE)
_TCP_ADDRESS_RE = re.compile(r"^(?P<host>\[[^\]]+\]|[^/:\s]+):(?P<port>\d{1,5})$")


@dataclass(frozen=True)
class PeerAddress:
    raw: str
    kind: str
    path: str | None = None
    host: str | None = None
    port: int | None = None

    @property
    def is_tcp(self) -> bool:
        return self.kind == "tcp"


@dataclass(frozen=True)
class NvimProcess:
    pid: int
    args: tuple[str, ...]

    @property
    def listen_address(self) -> str | None:
        for index, token in enumerate(self.args):
            if token == "--listen" and index + 1 < len(self.args):
                return self.args[index + 1]
            if token.startswith("--listen="):
                return token.split("=", 1)[1]
        return None

    @property
    def is_embedded(self) -> bool:
        return "--embed" in self.args or "--headless" in self.args


def parse_address(address: str) -> PeerAddress:
    value = address.strip()
    match = _TCP_ADDRESS_RE.match(value)
    if match and not value.startswith("/"):
        host = match.group("host").strip("[]")
        return PeerAddress(raw=value, kind="tcp", host=host, port=int(match.group("port")))
    return PeerAddress(raw=value, kind="socket", path=value)


def normalize_address(address: str) -> str:
    value = address.strip()
    if not value:
        return ""
    if value.startswith("~"):
        value = os.path.expanduser(value)
    if parse_address(value).is_tcp:
        return value
    return os.path.normpath(value)


def merge_addresses(*groups: Iterable[str | None]) -> list[str]:
    merged: list[str] = []
    seen: set[str] = set()
    for group in groups:
        for address in group:
            cleaned = normalize_address(address or "")
            if not cleaned or cleaned in seen:
                continue
            seen.add(cleaned)
            merged.append(cleaned)
    return merged


def _is_socket(path: Path) -> bool:
    try:
        return stat.S_ISSOCK(path.stat().st_mode)
    except OSError:
        return False


def _current_user() -> str:
    try:
        return getpass.getuser()
    except Exception:
        return str(os.getuid()) if hasattr(os, "getuid") else "user"


def env_addresses(environ: Mapping[str, str] | None = None) -> list[str]:
    env = os.environ if environ is None else environ
    return [env[name] for name in ENV_ADDRESS_VARS if env.get(name)]


def _ps_output() -> str:
    try:
        result = subprocess.run(
            ["ps", "-eo", "pid=,args="],
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError:
        return ""
    if result.returncode != 0:
        return ""
    return result.stdout or ""


def parse_nvim_processes(output: str) -> list[NvimProcess]:
    processes: list[NvimProcess] = []
    for raw in output.splitlines():
        parts = raw.strip().split()
        if len(parts) < 2:
            continue
        try:
            pid = int(parts[0])
        except ValueError:
            continue
        executable = os.path.basename(parts[1])
        if not _NVIM_EXECUTABLE_RE.match(executable):
            continue
        processes.append(NvimProcess(pid=pid, args=tuple(parts[1:])))
    return processes


def _user_socket_dir(tmp_dir: Path, user: str) -> Path:
    return tmp_dir / f"nvim.{user}"


def process_addresses(
    processes: Sequence[NvimProcess],
    *,
    tmp_dir: Path,
    user: str,
    runtime_dir: str | None = None,
) -> list[str]:
    """Addresses a running nvim is likely listening on, one process at a time."""

    addresses: list[str] = []
    for process in processes:
        listen = process.listen_address
        if listen:
            addresses.append(listen)
            continue
        if process.is_embedded:
            continue
        default_name = f"nvim.{process.pid}.0"
        if runtime_dir:
            candidate = Path(runtime_dir) / default_name
            if _is_socket(candidate):
                addresses.append(str(candidate))
        user_dir = _user_socket_dir(tmp_dir, user)
        if user_dir.is_dir():
            for candidate in sorted(user_dir.glob(f"*/{default_name}")):
                if _is_socket(candidate):
                    addresses.append(str(candidate))
    return addresses


def tmp_socket_addresses(tmp_dir: Path, user: str) -> list[str]:
    addresses: list[str] = []
    try:
        entries = sorted(tmp_dir.iterdir())
    except OSError as exc:
        logger.warning("cannot scan %s for sockets: %s", tmp_dir, exc)
        return addresses
    for entry in entries:
        if entry.name.startswith("nvim") and "." not in entry.name and _is_socket(entry):
            addresses.append(str(entry))
    user_dir = _user_socket_dir(tmp_dir, user)
    if user_dir.is_dir():
        for candidate in sorted(user_dir.glob("*/nvim.*")):
            if _is_socket(candidate):
                addresses.append(str(candidate))
    return addresses


def candidate_addresses(
    explicit: Iterable[str] | None = None,
    *,
    configured: str | None = None,
    environ: Mapping[str, str] | None = None,
    ps_output: str | None = None,
    tmp_dir: Path | None = None,
    user: str | None = None,
) -> list[str]:
    """Ordered, de-duplicated list of places an editor may be listening.

    Precedence: explicit, the well-known path, environment, running
    processes, then the temp-directory scan.
    """

    env = os.environ if environ is None else environ
    tmp = tmp_dir or Path(tempfile.gettempdir())
    who = user or _current_user()
    processes = parse_nvim_processes(_ps_output() if ps_output is None else ps_output)
    return merge_addresses(
        list(explicit or []),
        [configured],
        [WELL_KNOWN_SOCKET],
        env_addresses(env),
        process_addresses(
            processes,
            tmp_dir=tmp,
            user=who,
            runtime_dir=env.get("XDG_RUNTIME_DIR"),
        ),
        tmp_socket_addresses(tmp, who),
    )


async def probe_address(address: str, timeout_s: float = DEFAULT_PROBE_TIMEOUT_S) -> bool:
    """Return True when something accepts a connection at address in time."""

    target = parse_address(address)
    try:
        if target.is_tcp:
            connect = asyncio.open_connection(target.host, target.port)
        else:
            if not target.path or not _is_socket(Path(target.path)):
                return False
            connect = asyncio.open_unix_connection(target.path)
        _reader, writer = await asyncio.wait_for(connect, timeout=timeout_s)
    except (OSError, asyncio.TimeoutError, ValueError) as exc:
        logger.debug("probe failed for %s: %s", address, exc)
        return False
    writer.close()
    with contextlib.suppress(Exception):
        await writer.wait_closed()
    return True


async def probe_candidates(
    candidates: Sequence[str], timeout_s: float = DEFAULT_PROBE_TIMEOUT_S
) -> list[tuple[str, bool]]:
    results: list[tuple[str, bool]] = []
    for address in candidates:
        results.append((address, await probe_address(address, timeout_s)))
    return results
