"""Filesystem helpers for run state and artifacts.

Artifacts and run records are read by a later stage, possibly in another
process, so writes go through a temp file in the same directory and
``os.replace``: a reader sees the old content or the new, never a mix.
"""

from __future__ import annotations

import json
import os
import shutil
import tempfile
from pathlib import Path

from relpipe.core.result import Err, Ok, Result

__all__ = ["atomic_write_json", "atomic_write_text", "remove_tree"]


def atomic_write_text(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    """Replace ``path`` with ``content``. Raises OSError on failure."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def atomic_write_json(path: Path, data: object) -> None:
    """Write ``data`` as indented JSON with a trailing newline."""
    atomic_write_text(path, json.dumps(data, indent=2) + "\n")


def remove_tree(path: Path) -> Result[None, OSError]:
    """Delete a directory tree. A missing directory is not an error."""
    if not path.exists():
        return Ok(None)
    try:
        shutil.rmtree(path)
    except OSError as e:
        return Err(e)
    return Ok(None)
