"""Workspace detection and paths.

The workspace is the project checkout the pipeline runs against. It is
identified by the presence of a ``relpipe.toml`` file; run state and
artifacts live in ``.relpipe/`` beside it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .result import Err, Ok, Result

__all__ = [
    "Workspace",
    "WorkspaceError",
    "WORKSPACE_ENV_VAR",
    "detect_workspace",
    "find_workspace_upward",
    "is_workspace_root",
]

WORKSPACE_ENV_VAR = "RELPIPE_WORKSPACE"
CONFIG_FILE_NAME = "relpipe.toml"


@dataclass(frozen=True)
class WorkspaceError:
    """Error when workspace cannot be detected."""

    message: str
    searched_from: Path | None = None


@dataclass(frozen=True, slots=True)
class Workspace:
    """A detected pipeline workspace.

    The workspace root contains:
    - relpipe.toml (required)
    - .relpipe/ run state (created on first run, gitignored)
    """

    root: Path

    @property
    def config_path(self) -> Path:
        return self.root / CONFIG_FILE_NAME

    @property
    def state_dir(self) -> Path:
        """Path to pipeline state directory (.relpipe/)."""
        return self.root / ".relpipe"

    @property
    def run_state_path(self) -> Path:
        """Path to the active run record (.relpipe/run.json)."""
        return self.state_dir / "run.json"

    @property
    def archive_dir(self) -> Path:
        """Path to archived terminal runs (.relpipe/archive/)."""
        return self.state_dir / "archive"

    def artifacts_dir(self, run_id: str) -> Path:
        """Path to the artifact files of one run."""
        return self.state_dir / "runs" / run_id / "artifacts"

    def __str__(self) -> str:
        return str(self.root)


def is_workspace_root(path: Path) -> bool:
    return (path / CONFIG_FILE_NAME).is_file()


def find_workspace_upward(start: Path) -> Path | None:
    """Search upward from start directory for a workspace root."""
    for parent in (start, *start.parents):
        if is_workspace_root(parent):
            return parent
    return None


def detect_workspace(
    *,
    start_dir: Path | None = None,
    env_var: str = WORKSPACE_ENV_VAR,
) -> Result[Workspace, WorkspaceError]:
    """Detect the workspace root directory.

    Detection order:
    1. RELPIPE_WORKSPACE environment variable (if set it must be valid)
    2. Search upward from start_dir (or cwd) for relpipe.toml
    """
    env_value = os.environ.get(env_var)
    if env_value:
        env_path = Path(env_value).expanduser().resolve()
        if env_path.is_dir() and is_workspace_root(env_path):
            return Ok(Workspace(root=env_path))
        return Err(
            WorkspaceError(
                message=f"${env_var} is set to '{env_value}' but it is not a valid workspace",
                searched_from=env_path if env_path.is_dir() else None,
            )
        )

    search_start = (start_dir or Path.cwd()).resolve()
    found = find_workspace_upward(search_start)
    if found:
        return Ok(Workspace(root=found))

    return Err(
        WorkspaceError(
            message=f"Could not find workspace ({CONFIG_FILE_NAME} not found)",
            searched_from=search_start,
        )
    )
