from __future__ import annotations

from pathlib import Path

import typer
from rich import print

from . import __version__
from .commands.send_cmds import connect_cmd, hush_cmd, send_cmd, status_cmd
from .commands.serve_cmds import candidates_cmd, serve_cmd

DEFAULT_TIMEOUT_S = 10.0
TIMEOUT_HELP = "Request timeout in seconds"

app = typer.Typer(help="strudelbridge: send Neovim buffers to a Strudel REPL")


@app.command()
def send(
    file: Path = typer.Argument(None, help="File to send; reads stdin when omitted"),
    stop: bool = typer.Option(False, "--stop", "-s", help="Stop playback (hush)"),
    init: bool = typer.Option(False, "--init", "-i", help="Initialize the browser"),
    status: bool = typer.Option(False, "--status", help="Show server status"),
    timeout: float = typer.Option(DEFAULT_TIMEOUT_S, "--timeout", "-t", help=TIMEOUT_HELP),
    url: str = typer.Option(None, help="Server URL (default: http://localhost:<port>)"),
) -> None:
    """Send code to the Strudel REPL through the running server."""

    send_cmd(file=file, stop=stop, init=init, status=status, timeout=timeout, url=url)


@app.command()
def serve(
    port: int = typer.Option(None, help="Port to bind"),
    root: Path = typer.Option(None, help="Working directory for file scans"),
    socket: str = typer.Option(None, help="Neovim socket path or host:port"),
    headless: bool = typer.Option(
        None, "--headless/--no-headless", help="Run the browser headless"
    ),
    browser: bool = typer.Option(
        None, "--browser/--no-browser", help="Launch the browser on start"
    ),
    connect: bool = typer.Option(
        None, "--connect/--no-connect", help="Attach to Neovim on start"
    ),
    log_level: str = typer.Option(None, help="Log level (DEBUG, INFO, WARNING)"),
) -> None:
    """Run the bridge server."""

    serve_cmd(
        port=port,
        root=root,
        socket=socket,
        headless=headless,
        browser=browser,
        connect=connect,
        log_level=log_level,
    )


@app.command()
def connect(
    socket: str = typer.Option(None, help="Neovim socket path or host:port"),
    timeout: float = typer.Option(DEFAULT_TIMEOUT_S, "--timeout", "-t", help=TIMEOUT_HELP),
    url: str = typer.Option(None, help="Server URL"),
) -> None:
    """Attach the running server to Neovim."""

    connect_cmd(url=url, socket=socket, timeout=timeout)


@app.command()
def status(
    timeout: float = typer.Option(DEFAULT_TIMEOUT_S, "--timeout", "-t", help=TIMEOUT_HELP),
    url: str = typer.Option(None, help="Server URL"),
) -> None:
    """Show server health."""

    status_cmd(url=url, timeout=timeout)


@app.command()
def hush(
    timeout: float = typer.Option(DEFAULT_TIMEOUT_S, "--timeout", "-t", help=TIMEOUT_HELP),
    url: str = typer.Option(None, help="Server URL"),
) -> None:
    """Stop playback."""

    hush_cmd(url=url, timeout=timeout)


@app.command()
def candidates(
    socket: str = typer.Option(None, help="Extra socket to try first"),
    probe: bool = typer.Option(
        True, "--probe/--no-probe", help="Check which candidates accept connections"
    ),
    timeout_ms: int = typer.Option(None, help="Per-candidate probe timeout in milliseconds"),
) -> None:
    """List Neovim socket candidates in the order they are tried."""

    candidates_cmd(socket=socket, probe=probe, timeout_ms=timeout_ms)


@app.command("version")
def version() -> None:
    """Print version."""

    print(__version__)


def main() -> None:
    app()
