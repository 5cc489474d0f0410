from __future__ import annotations

import json
from pathlib import Path

from relpipe.core.result import Ok
from relpipe.platform.files import atomic_write_json, atomic_write_text, remove_tree


def test_creates_parent_dirs(tmp_path: Path) -> None:
    target = tmp_path / "runs" / "run-1" / "artifacts" / "X.TXT"
    atomic_write_text(target, "value")
    assert target.read_text(encoding="utf-8") == "value"


def test_replaces_and_leaves_no_temp_files(tmp_path: Path) -> None:
    target = tmp_path / "run.json"
    atomic_write_text(target, "one")
    atomic_write_text(target, "two")

    assert target.read_text(encoding="utf-8") == "two"
    assert [p.name for p in tmp_path.iterdir()] == ["run.json"]


def test_json_is_indented_with_trailing_newline(tmp_path: Path) -> None:
    target = tmp_path / "run.json"
    atomic_write_json(target, {"schema": 1, "stages": []})

    text = target.read_text(encoding="utf-8")
    assert text.endswith("}\n")
    assert json.loads(text) == {"schema": 1, "stages": []}


def test_remove_tree(tmp_path: Path) -> None:
    root = tmp_path / "runs" / "run-1"
    atomic_write_text(root / "artifacts" / "A.TXT", "a")

    assert isinstance(remove_tree(root), Ok)
    assert not root.exists()
    assert isinstance(remove_tree(root), Ok)
