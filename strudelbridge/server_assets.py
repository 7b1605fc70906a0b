from __future__ import annotations

import os
from importlib import resources
from pathlib import Path, PurePosixPath
from urllib.parse import unquote

_REPL_HTML: bytes | None = None

ROOT_FILE_TYPES = {
    ".strdl": "text/plain; charset=utf-8",
    ".strudel": "text/plain; charset=utf-8",
    ".json": "application/json; charset=utf-8",
    ".css": "text/css; charset=utf-8",
}


def _no_cache_enabled() -> bool:
    return os.environ.get("STRUDELBRIDGE_NO_CACHE") == "1"


def _read_repl_html() -> bytes:
    return resources.files(__package__).joinpath("server_static/strudel.html").read_bytes()


def get_repl_html_bytes() -> bytes:
    global _REPL_HTML
    if _no_cache_enabled():
        return _read_repl_html()
    if _REPL_HTML is None:
        _REPL_HTML = _read_repl_html()
    return _REPL_HTML


def is_root_file_request(request_path: str) -> bool:
    return PurePosixPath(request_path).suffix.lower() in ROOT_FILE_TYPES


def get_root_file_bytes(root: Path, request_path: str) -> tuple[bytes, str]:
    """Return bytes + content-type for a file served from the working root."""

    clean = unquote(request_path).strip().lstrip("/")
    path = PurePosixPath(clean)
    if not clean or ".." in path.parts:
        raise ValueError("invalid file path")
    content_type = ROOT_FILE_TYPES.get(path.suffix.lower())
    if content_type is None:
        raise ValueError("unsupported file type")
    base = root.resolve()
    target = (base / Path(*path.parts)).resolve()
    if target != base and base not in target.parents:
        raise ValueError("path escapes root")
    if not target.is_file():
        raise FileNotFoundError(str(target))
    return target.read_bytes(), content_type
