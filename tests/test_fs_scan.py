from __future__ import annotations

from pathlib import Path

from strudelbridge.fs_scan import file_entry, is_excluded, matches_patterns, scan_files


def _write(path: Path, text: str = "s('bd')") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


def test_scan_files_matches_patterns_and_prunes(tmp_path: Path) -> None:
    root = tmp_path.resolve()
    _write(root / "a.strdl")
    _write(root / "songs" / "b.strudel")
    _write(root / "notes.txt")
    _write(root / "node_modules" / "pkg" / "c.strdl")
    _write(root / ".git" / "d.strdl")
    _write(root / ".hidden.strdl")

    entries = scan_files(root)

    assert [entry.path for entry in entries] == ["a.strdl", "songs/b.strudel"]
    assert all(not entry.is_virtual for entry in entries)
    assert entries[0].content == "s('bd')"


def test_scan_files_custom_patterns(tmp_path: Path) -> None:
    root = tmp_path.resolve()
    _write(root / "a.strdl")
    _write(root / "b.js")

    entries = scan_files(root, patterns=["*.js"], exclude_dirs=[])

    assert [entry.path for entry in entries] == ["b.js"]


def test_scan_files_skips_undecodable(tmp_path: Path) -> None:
    root = tmp_path.resolve()
    (root / "bad.strdl").write_bytes(b"\xff\xfe\xfa")
    _write(root / "good.strdl")

    assert [entry.path for entry in scan_files(root)] == ["good.strdl"]


def test_file_entry_missing_returns_none(tmp_path: Path) -> None:
    assert file_entry(tmp_path.resolve(), tmp_path / "gone.strdl") is None


def test_is_excluded(tmp_path: Path) -> None:
    root = tmp_path.resolve()
    assert is_excluded(root, root / "build" / "x.strdl", ["build"])
    assert is_excluded(root, root / ".cache" / "x.strdl", [])
    assert is_excluded(root, root / ".x.strdl", [])
    assert is_excluded(root, tmp_path.parent / "x.strdl", [])
    assert not is_excluded(root, root / "songs" / "x.strdl", ["build"])


def test_matches_patterns() -> None:
    assert matches_patterns("a.strdl", ["*.strudel", "*.strdl"])
    assert not matches_patterns("a.strdl.bak", ["*.strdl"])
