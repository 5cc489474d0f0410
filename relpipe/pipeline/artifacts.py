"""Run-scoped handoff of small named values between stages.

Each artifact is one UTF-8 file holding the raw value and nothing else, so a
later stage (or a shell script) can read it with ``cat``. Files live in the
run's own directory; a later run never sees them.
"""

from __future__ import annotations

from pathlib import Path

from relpipe.core.result import Err, Ok, Result
from relpipe.output.console import ConsoleProtocol
from relpipe.platform.files import atomic_write_text, remove_tree
from relpipe.pipeline.errors import ArtifactNotFound, ArtifactWriteFailed

PACKAGE_VERSION_ID = "PACKAGE_VERSION_ID.TXT"
ENVIRONMENT_USERNAME = "SCRATCH_ORG_USERNAME.TXT"


def _valid_name(name: str) -> bool:
    if not name or name in {".", ".."}:
        return False
    return "/" not in name and "\\" not in name


class ArtifactStore:
    def __init__(self, *, root: Path, console: ConsoleProtocol) -> None:
        self._root = root
        self._console = console

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, name: str) -> Path:
        return self._root / name

    def put(self, name: str, value: str) -> Result[None, ArtifactWriteFailed]:
        """Write an artifact. A second write of the same name replaces the first."""
        if not _valid_name(name):
            return Err(ArtifactWriteFailed(name=name, hint="artifact names are plain file names"))

        path = self._path(name)
        if path.is_file():
            self._console.warning(f"artifact {name} written twice in this run; keeping last value")

        try:
            atomic_write_text(path, value, encoding="utf-8")
        except OSError as e:
            return Err(ArtifactWriteFailed(name=name, hint=str(e)))
        return Ok(None)

    def get(self, name: str) -> Result[str, ArtifactNotFound]:
        if not _valid_name(name):
            return Err(ArtifactNotFound(name=name))

        path = self._path(name)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return Err(ArtifactNotFound(name=name, hint=str(self._root)))
        except (OSError, UnicodeDecodeError) as e:
            return Err(ArtifactNotFound(name=name, hint=f"unreadable: {e}"))

        # Shell-written handoff files end with the newline `echo` adds.
        return Ok(text.removesuffix("\n").removesuffix("\r"))

    def exists(self, name: str) -> bool:
        return _valid_name(name) and self._path(name).is_file()

    def names(self) -> tuple[str, ...]:
        if not self._root.is_dir():
            return ()
        return tuple(
            sorted(
                p.name for p in self._root.iterdir() if p.is_file() and not p.name.startswith(".")
            )
        )

    def clear(self) -> Result[None, ArtifactWriteFailed]:
        """Drop every artifact of the run (called when the run is archived)."""
        removed = remove_tree(self._root)
        if isinstance(removed, Err):
            return Err(ArtifactWriteFailed(name=str(self._root), hint=str(removed.error)))
        return Ok(None)
