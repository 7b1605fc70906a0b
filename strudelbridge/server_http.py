from __future__ import annotations

import json
from http.server import BaseHTTPRequestHandler
from typing import Any

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}


def send_cors_headers(handler: BaseHTTPRequestHandler) -> None:
    for name, value in CORS_HEADERS.items():
        handler.send_header(name, value)


def send_bytes_response(
    handler: BaseHTTPRequestHandler,
    body: bytes,
    *,
    content_type: str,
    status: int = 200,
    cache_control: str | None = None,
) -> None:
    handler.send_response(status)
    handler.send_header("Content-Type", content_type)
    if cache_control:
        handler.send_header("Cache-Control", cache_control)
    send_cors_headers(handler)
    handler.send_header("Content-Length", str(len(body)))
    handler.end_headers()
    handler.wfile.write(body)


def send_json_response(
    handler: BaseHTTPRequestHandler,
    payload: dict[str, Any] | list[Any],
    status: int = 200,
) -> None:
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    send_bytes_response(
        handler, body, content_type="application/json; charset=utf-8", status=status
    )


def send_text_response(handler: BaseHTTPRequestHandler, text: str, status: int = 200) -> None:
    send_bytes_response(
        handler,
        text.encode("utf-8"),
        content_type="text/plain; charset=utf-8",
        status=status,
    )


def send_empty_response(handler: BaseHTTPRequestHandler, status: int = 204) -> None:
    handler.send_response(status)
    send_cors_headers(handler)
    handler.send_header("Content-Length", "0")
    handler.end_headers()


def read_text_body(handler: BaseHTTPRequestHandler) -> str:
    length = int(handler.headers.get("Content-Length", "0") or 0)
    if not length:
        return ""
    return handler.rfile.read(length).decode("utf-8", errors="replace")


def read_json_body(handler: BaseHTTPRequestHandler) -> dict[str, Any] | None:
    raw = read_text_body(handler)
    if not raw:
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None
