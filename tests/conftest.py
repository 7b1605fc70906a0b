from __future__ import annotations

import os
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def _isolate_bridge_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in list(os.environ):
        if name.startswith("STRUDELBRIDGE_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("NVIM_LISTEN_ADDRESS", raising=False)
    monkeypatch.delenv("NVIM", raising=False)
    monkeypatch.setenv("STRUDELBRIDGE_CONFIG", str(tmp_path / "config" / "config.json"))
