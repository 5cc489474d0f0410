"""next-version command: what integration-testing would create right now."""

from __future__ import annotations

import typer

from relpipe.cli.commands._helpers import exit_on_error
from relpipe.cli.context import build_context, execution_context
from relpipe.output.console import Style
from relpipe.pipeline.errors import AuthenticationFailed, PlatformCallFailed
from relpipe.pipeline.sfdx import SfdxPlatform
from relpipe.pipeline.version import resolve_next_version, select_latest_release


def next_version(
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Print only the version number."),
) -> None:
    """Print the next package version number."""
    ctx = build_context()
    exec_ctx = execution_context(ctx)
    platform = SfdxPlatform(
        workspace_root=ctx.workspace.root,
        devhub_username=exec_ctx.devhub.username,
    )

    account = exec_ctx.devhub.username
    exit_on_error(
        platform.authenticate(exec_ctx.devhub).map_err(
            lambda f: AuthenticationFailed(account=account, hint=f.detail)
        ),
        ctx,
    )
    records = exit_on_error(
        platform.list_released_versions(exec_ctx.package_name).map_err(
            lambda f: PlatformCallFailed(operation=f.operation, hint=f.detail)
        ),
        ctx,
    )

    latest = select_latest_release(records)
    version = exit_on_error(resolve_next_version(latest), ctx)

    if quiet:
        typer.echo(str(version))
        return

    if latest is None:
        ctx.console.print(f"{exec_ctx.package_name}: no released version yet", Style.DIM)
    else:
        released = ".".join(str(latest.get(k, "?")) for k in ("major", "minor", "patch", "build"))
        ctx.console.print(f"{exec_ctx.package_name}: latest released {released}", Style.DIM)
    ctx.console.print(str(version), Style.BOLD)
