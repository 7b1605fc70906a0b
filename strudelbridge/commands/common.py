from __future__ import annotations

import socket
from collections.abc import Callable
from http.client import HTTPException
from typing import Any, TypeVar

import typer
from rich import print

from strudelbridge.config import BridgeConfig, load_config, read_config_file
from strudelbridge.http_client import build_base_url

T = TypeVar("T")

SERVE_HINT = "Make sure the server is running: strudelbridge serve"
TIMEOUT_HINT = "Check that the server is responsive, or raise the limit with --timeout"


def read_config_or_exit() -> dict[str, Any]:
    try:
        return read_config_file()
    except ValueError as exc:
        print(f"[red]Invalid config file: {exc}[/red]")
        raise typer.Exit(code=1) from exc


def load_config_or_exit() -> BridgeConfig:
    read_config_or_exit()
    return load_config()


def server_url(url: str | None) -> str:
    if url:
        return build_base_url(url)
    return load_config_or_exit().base_url


def call_server_or_exit(fn: Callable[[], T], *, base_url: str, timeout_s: float) -> T:
    """Run one HTTP call against the server, mapping failures to exit code 1."""

    try:
        return fn()
    except (TimeoutError, socket.timeout) as exc:
        print(f"[red]Request timed out after {timeout_s:g} seconds[/red]")
        print(f"[yellow]Hint: {TIMEOUT_HINT}[/yellow]")
        raise typer.Exit(code=1) from exc
    except (OSError, HTTPException, ValueError) as exc:
        print(f"[red]Failed to connect to server at {base_url}: {exc}[/red]")
        print(f"[yellow]Hint: {SERVE_HINT}[/yellow]")
        raise typer.Exit(code=1) from exc
