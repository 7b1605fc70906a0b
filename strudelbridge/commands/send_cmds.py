from __future__ import annotations

import json
import sys
from pathlib import Path

import typer
from rich import print

from strudelbridge.commands.common import call_server_or_exit, server_url
from strudelbridge.http_client import request_json, request_text
from strudelbridge.peer_discovery import WELL_KNOWN_SOCKET


def _read_input(file: Path | None) -> str:
    if file is not None:
        path = file.expanduser()
        if not path.is_file():
            print(f"[red]File not found: {path}[/red]")
            raise typer.Exit(code=1)
        return path.read_text(encoding="utf-8")
    if sys.stdin is None or sys.stdin.isatty():
        print("[red]No input provided. Pass a file or pipe code on stdin.[/red]")
        raise typer.Exit(code=1)
    return sys.stdin.read()


def hush_cmd(*, url: str | None, timeout: float) -> None:
    """Stop playback in the browser."""

    base = server_url(url)
    status, text = call_server_or_exit(
        lambda: request_text("POST", f"{base}/api/hush", timeout_s=timeout),
        base_url=base,
        timeout_s=timeout,
    )
    if status != 200:
        print(f"[red]Failed to send stop command: {text.strip() or status}[/red]")
        raise typer.Exit(code=1)
    print("[green]Stop command sent[/green]")


def init_cmd(*, url: str | None, timeout: float) -> None:
    """Launch the browser and wait for the REPL."""

    base = server_url(url)
    status, payload = call_server_or_exit(
        lambda: request_json("POST", f"{base}/api/browser/init", timeout_s=timeout),
        base_url=base,
        timeout_s=timeout,
    )
    if status != 200 or not payload or not payload.get("success"):
        message = (payload or {}).get("message") or "Failed to initialize browser"
        print(f"[red]{message}[/red]")
        raise typer.Exit(code=1)
    print("[green]Browser initialized[/green]")


def status_cmd(*, url: str | None, timeout: float) -> None:
    """Print the server health report."""

    base = server_url(url)
    status, payload = call_server_or_exit(
        lambda: request_json("GET", f"{base}/health", timeout_s=timeout),
        base_url=base,
        timeout_s=timeout,
    )
    if status != 200 or payload is None:
        print(f"[red]Server not responding (status {status})[/red]")
        raise typer.Exit(code=1)
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def connect_cmd(*, url: str | None, socket: str | None, timeout: float) -> None:
    """Ask the server to attach to a running Neovim."""

    base = server_url(url)
    body = {"socket": socket} if socket else {}
    status, payload = call_server_or_exit(
        lambda: request_json("POST", f"{base}/api/neovim/connect", body=body, timeout_s=timeout),
        base_url=base,
        timeout_s=timeout,
    )
    if status != 200 or not payload or not payload.get("success"):
        print("[red]Failed to connect to Neovim[/red]")
        print(f"[yellow]Hint: start the editor with `nvim --listen {WELL_KNOWN_SOCKET}`[/yellow]")
        raise typer.Exit(code=1)
    print("[green]Connected to Neovim[/green]")


def send_cmd(
    *,
    file: Path | None,
    stop: bool,
    init: bool,
    status: bool,
    timeout: float,
    url: str | None,
) -> None:
    """Send a file (or stdin) to the REPL, or run one of the control actions."""

    if timeout <= 0:
        print(f"[red]Invalid timeout value: {timeout}[/red]")
        raise typer.Exit(code=1)
    if sum(1 for flag in (stop, init, status) if flag) > 1:
        print("[red]Use only one of --stop, --init or --status[/red]")
        raise typer.Exit(code=1)
    if stop:
        hush_cmd(url=url, timeout=timeout)
        return
    if init:
        init_cmd(url=url, timeout=timeout)
        return
    if status:
        status_cmd(url=url, timeout=timeout)
        return

    code = _read_input(file)
    if not code.strip():
        print("[red]No data to send[/red]")
        raise typer.Exit(code=1)
    base = server_url(url)
    print(f"Sending to Strudel (timeout: {timeout:g}s)...")
    response_status, text = call_server_or_exit(
        lambda: request_text(
            "POST", f"{base}/api/send-current-buffer", text=code, timeout_s=timeout
        ),
        base_url=base,
        timeout_s=timeout,
    )
    if response_status != 200:
        print(f"[red]{text.strip() or 'Failed to send code'}[/red]")
        raise typer.Exit(code=1)
    print(f"[green]{text.strip() or 'Code sent to Strudel'}[/green]")
