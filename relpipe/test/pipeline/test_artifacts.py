from __future__ import annotations

from pathlib import Path

from relpipe.core.result import Err, Ok
from relpipe.output.console import MockConsole
from relpipe.pipeline.artifacts import PACKAGE_VERSION_ID, ArtifactStore
from relpipe.pipeline.errors import ArtifactNotFound, ArtifactWriteFailed


def _store(tmp_path: Path, console: MockConsole) -> ArtifactStore:
    return ArtifactStore(root=tmp_path / "artifacts", console=console)


def test_put_then_get_returns_value(tmp_path: Path, console: MockConsole) -> None:
    store = _store(tmp_path, console)
    assert isinstance(store.put("x", "42"), Ok)

    got = store.get("x")
    assert isinstance(got, Ok)
    assert got.value == "42"
    assert (tmp_path / "artifacts" / "x").read_text(encoding="utf-8") == "42"


def test_get_missing_is_not_found(tmp_path: Path, console: MockConsole) -> None:
    got = _store(tmp_path, console).get(PACKAGE_VERSION_ID)
    assert isinstance(got, Err)
    assert isinstance(got.error, ArtifactNotFound)
    assert got.error.name == PACKAGE_VERSION_ID


def test_second_write_warns_and_keeps_last(tmp_path: Path, console: MockConsole) -> None:
    store = _store(tmp_path, console)
    store.put("x", "first")
    store.put("x", "second")

    got = store.get("x")
    assert isinstance(got, Ok)
    assert got.value == "second"
    assert console.has_warning()
    assert console.find("written twice")


def test_trailing_newline_is_stripped(tmp_path: Path, console: MockConsole) -> None:
    root = tmp_path / "artifacts"
    root.mkdir()
    (root / "SCRATCH_ORG_USERNAME.TXT").write_text("test-1@example.com\n", encoding="utf-8")

    got = _store(tmp_path, console).get("SCRATCH_ORG_USERNAME.TXT")
    assert isinstance(got, Ok)
    assert got.value == "test-1@example.com"


def test_path_like_names_are_rejected(tmp_path: Path, console: MockConsole) -> None:
    store = _store(tmp_path, console)
    put = store.put("../escape", "x")
    assert isinstance(put, Err)
    assert isinstance(put.error, ArtifactWriteFailed)
    assert not (tmp_path / "escape").exists()
    assert isinstance(store.get(".."), Err)


def test_names_and_clear(tmp_path: Path, console: MockConsole) -> None:
    store = _store(tmp_path, console)
    assert store.names() == ()

    store.put("b", "2")
    store.put("a", "1")
    assert store.names() == ("a", "b")
    assert store.exists("a")

    assert isinstance(store.clear(), Ok)
    assert not store.root.exists()
    assert isinstance(store.clear(), Ok)
