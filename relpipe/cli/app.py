from __future__ import annotations

import os
from pathlib import Path

import typer

from relpipe import __version__
from relpipe.cli.commands.pipeline_cmd import approve, cancel, run, status
from relpipe.cli.commands.version_cmd import next_version
from relpipe.core.errors import ErrorCode
from relpipe.core.workspace import WORKSPACE_ENV_VAR, is_workspace_root


app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)


app.command()(run)
app.command()(approve)
app.command()(cancel)
app.command()(status)
app.command("next-version")(next_version)


@app.callback(invoke_without_command=True)
def _main(  # pyright: ignore[reportUnusedFunction]
    version: bool = typer.Option(False, "--version", help="Show version and exit."),
    workspace: Path | None = typer.Option(
        None,
        "--workspace",
        help="Workspace root (overrides auto detection)",
    ),
) -> None:
    if version:
        typer.echo(__version__)
        raise typer.Exit(code=0)

    if workspace is not None:
        try:
            root = workspace.expanduser().resolve()
        except OSError as e:
            typer.echo(f"error: invalid --workspace: {e}", err=True)
            raise typer.Exit(code=int(ErrorCode.USER_ERROR))

        if not root.is_dir() or not is_workspace_root(root):
            typer.echo(
                f"error: --workspace '{root}' is not a valid workspace (missing relpipe.toml)",
                err=True,
            )
            raise typer.Exit(code=int(ErrorCode.ENV_ERROR))

        os.environ[WORKSPACE_ENV_VAR] = str(root)


def main() -> None:
    app()
