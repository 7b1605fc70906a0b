from __future__ import annotations

import json
from http.client import HTTPConnection, HTTPSConnection
from typing import Any
from urllib.parse import urlparse


def build_base_url(address: str) -> str:
    trimmed = address.strip().rstrip("/")
    if not trimmed:
        return ""
    parsed = urlparse(trimmed)
    if parsed.scheme:
        return trimmed
    return f"http://{trimmed}"


def _connection(url: str, timeout_s: float) -> tuple[HTTPConnection, str]:
    parsed = urlparse(url)
    if not parsed.hostname:
        raise ValueError("missing hostname")
    if parsed.scheme == "https":
        conn: HTTPConnection = HTTPSConnection(
            parsed.hostname, parsed.port or 443, timeout=timeout_s
        )
    else:
        conn = HTTPConnection(parsed.hostname, parsed.port or 80, timeout=timeout_s)
    path = parsed.path or "/"
    if parsed.query:
        path = f"{path}?{parsed.query}"
    return conn, path


def request_raw(
    method: str,
    url: str,
    *,
    body: bytes | None = None,
    headers: dict[str, str] | None = None,
    timeout_s: float = 10.0,
) -> tuple[int, bytes]:
    """Send one request. Socket timeouts and connection errors propagate."""

    conn, path = _connection(url, timeout_s)
    request_headers: dict[str, str] = {}
    if body is not None:
        request_headers["Content-Length"] = str(len(body))
    if headers:
        request_headers.update(headers)
    try:
        conn.request(method, path, body=body, headers=request_headers)
        resp = conn.getresponse()
        return int(resp.status), resp.read()
    finally:
        conn.close()


def request_json(
    method: str,
    url: str,
    *,
    body: dict[str, Any] | None = None,
    timeout_s: float = 10.0,
) -> tuple[int, dict[str, Any] | None]:
    body_bytes = None
    headers = {"Accept": "application/json"}
    if body is not None:
        body_bytes = json.dumps(body, ensure_ascii=False).encode("utf-8")
        headers["Content-Type"] = "application/json"
    status, raw = request_raw(method, url, body=body_bytes, headers=headers, timeout_s=timeout_s)
    if not raw:
        return status, None
    try:
        payload = json.loads(raw.decode("utf-8"))
    except json.JSONDecodeError:
        snippet = raw[:240].decode("utf-8", errors="replace").strip()
        error = f"non_json_response: {snippet}" if snippet else "non_json_response"
        return status, {"error": error}
    if isinstance(payload, dict):
        return status, payload
    return status, {"error": f"unexpected_json_type: {type(payload).__name__}"}


def request_text(
    method: str,
    url: str,
    *,
    text: str | None = None,
    timeout_s: float = 10.0,
) -> tuple[int, str]:
    body = text.encode("utf-8") if text is not None else None
    headers = {"Accept": "text/plain"}
    if body is not None:
        headers["Content-Type"] = "text/plain; charset=utf-8"
    status, raw = request_raw(method, url, body=body, headers=headers, timeout_s=timeout_s)
    return status, raw.decode("utf-8", errors="replace")
