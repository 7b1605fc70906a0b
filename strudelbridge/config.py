from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/strudelbridge/config.json").expanduser()

DEFAULT_PORT = 3001
DEFAULT_HOST = "127.0.0.1"
DEFAULT_SCAN_PATTERNS = ("*.strudel", "*.strdl")
DEFAULT_SCAN_EXCLUDE_DIRS = ("node_modules", ".git", "dist", "build")

CONFIG_ENV_OVERRIDES = {
    "host": "STRUDELBRIDGE_HOST",
    "port": "STRUDELBRIDGE_PORT",
    "root": "STRUDELBRIDGE_ROOT",
    "nvim_socket": "STRUDELBRIDGE_NVIM_SOCKET",
    "headless": "STRUDELBRIDGE_HEADLESS",
    "browser_autostart": "STRUDELBRIDGE_BROWSER_AUTOSTART",
    "connect_on_start": "STRUDELBRIDGE_CONNECT_ON_START",
    "probe_timeout_ms": "STRUDELBRIDGE_PROBE_TIMEOUT_MS",
    "nav_attempts": "STRUDELBRIDGE_NAV_ATTEMPTS",
    "ready_timeout_ms": "STRUDELBRIDGE_READY_TIMEOUT_MS",
    "scan_patterns": "STRUDELBRIDGE_SCAN_PATTERNS",
    "scan_exclude_dirs": "STRUDELBRIDGE_SCAN_EXCLUDE_DIRS",
    "watch": "STRUDELBRIDGE_WATCH",
    "log_level": "STRUDELBRIDGE_LOG_LEVEL",
}

_INT_KEYS = {"port", "probe_timeout_ms", "nav_attempts", "ready_timeout_ms"}
_BOOL_KEYS = {"headless", "browser_autostart", "connect_on_start", "watch"}
_LIST_KEYS = {"scan_patterns", "scan_exclude_dirs"}
_TRUE_WORDS = frozenset({"1", "true", "yes", "on"})
_FALSE_WORDS = frozenset({"0", "false", "off", "no"})


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("STRUDELBRIDGE_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
    return config_path


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class BridgeConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    root: str = field(default_factory=os.getcwd)
    nvim_socket: str | None = None
    headless: bool = False
    browser_autostart: bool = True
    connect_on_start: bool = True
    probe_timeout_ms: int = 2000
    nav_attempts: int = 4
    ready_timeout_ms: int = 30000
    watch: bool = True
    log_level: str = "INFO"

    # Matched against file names anywhere below root.
    scan_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_SCAN_PATTERNS))
    scan_exclude_dirs: list[str] = field(
        default_factory=lambda: list(DEFAULT_SCAN_EXCLUDE_DIRS)
    )

    @property
    def root_path(self) -> Path:
        return Path(self.root).expanduser().resolve()

    @property
    def base_url(self) -> str:
        return f"http://localhost:{self.port}"


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _coerce_bool(value: object, default: bool, *, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return default


def _coerce_str_list(value: object, *, key: str) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, list):
        items: list[str] = []
        for item in value:
            if isinstance(item, str) and item.strip():
                items.append(item.strip())
        return items
    if isinstance(value, str):
        return [p.strip() for p in value.split(",") if p.strip()]
    warnings.warn(f"Invalid list for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return None


def load_config(path: Path | None = None) -> BridgeConfig:
    cfg = BridgeConfig()
    config_path = get_config_path(path)
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
        except json.JSONDecodeError:
            data = {}
        if isinstance(data, dict):
            cfg = _apply_dict(cfg, data)
    cfg = _apply_dict(cfg, get_env_overrides())
    return cfg


def _apply_dict(cfg: BridgeConfig, data: dict[str, Any]) -> BridgeConfig:
    for key, value in data.items():
        if not hasattr(cfg, key) or key in {"root_path", "base_url"}:
            continue
        if key in _INT_KEYS:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key in _BOOL_KEYS:
            setattr(cfg, key, _coerce_bool(value, getattr(cfg, key), key=key))
            continue
        if key in _LIST_KEYS:
            parsed = _coerce_str_list(value, key=key)
            if parsed is not None:
                setattr(cfg, key, parsed)
            continue
        if key == "nvim_socket":
            cleaned = str(value).strip() if value is not None else ""
            cfg.nvim_socket = cleaned or None
            continue
        setattr(cfg, key, value)
    return cfg
