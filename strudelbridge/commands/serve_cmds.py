from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer
from rich import print
from rich.logging import RichHandler

from strudelbridge.commands.common import load_config_or_exit
from strudelbridge.config import BridgeConfig
from strudelbridge.peer_discovery import candidate_addresses, probe_candidates
from strudelbridge.runtime import serve as run_server


def configure_logging(level: str) -> None:
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        print(f"[yellow]Unknown log level {level!r}; using INFO[/yellow]")
        resolved = logging.INFO
    logging.basicConfig(
        level=resolved,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


def build_serve_config(
    *,
    port: int | None,
    root: Path | None,
    socket: str | None,
    headless: bool | None,
    browser: bool | None,
    connect: bool | None,
    log_level: str | None,
) -> BridgeConfig:
    config = load_config_or_exit()
    if port is not None:
        config.port = port
    if root is not None:
        resolved = root.expanduser()
        if not resolved.is_dir():
            print(f"[red]Root directory not found: {resolved}[/red]")
            raise typer.Exit(code=1)
        config.root = str(resolved)
    if socket:
        config.nvim_socket = socket
    if headless is not None:
        config.headless = headless
    if browser is not None:
        config.browser_autostart = browser
    if connect is not None:
        config.connect_on_start = connect
    if log_level:
        config.log_level = log_level
    return config


def serve_cmd(
    *,
    port: int | None,
    root: Path | None,
    socket: str | None,
    headless: bool | None,
    browser: bool | None,
    connect: bool | None,
    log_level: str | None,
) -> None:
    """Run the bridge server in the foreground until interrupted."""

    config = build_serve_config(
        port=port,
        root=root,
        socket=socket,
        headless=headless,
        browser=browser,
        connect=connect,
        log_level=log_level,
    )
    configure_logging(config.log_level)
    try:
        run_server(config)
    except OSError as exc:
        print(f"[red]Failed to start server on {config.host}:{config.port}: {exc}[/red]")
        print("[yellow]Hint: another process may be using the port; try --port[/yellow]")
        raise typer.Exit(code=1) from exc
    except KeyboardInterrupt:
        return


def candidates_cmd(*, socket: str | None, probe: bool, timeout_ms: int | None) -> None:
    """Print the places a running Neovim may be listening."""

    config = load_config_or_exit()
    addresses = candidate_addresses([socket] if socket else None, configured=config.nvim_socket)
    if not addresses:
        print("[yellow]No editor socket candidates found[/yellow]")
        return
    if not probe:
        for address in addresses:
            print(f"  {address}")
        return
    timeout_s = (timeout_ms if timeout_ms is not None else config.probe_timeout_ms) / 1000
    results = asyncio.run(probe_candidates(addresses, timeout_s))
    for address, alive in results:
        marker = "[green]live[/green]" if alive else "[dim]dead[/dim]"
        print(f"  {marker} {address}")
