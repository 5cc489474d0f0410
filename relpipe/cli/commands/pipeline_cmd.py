"""Pipeline commands: run, approve, cancel, status."""

from __future__ import annotations

from dataclasses import replace

import typer

from relpipe.cli.commands._helpers import exit_on_error, exit_with_message
from relpipe.cli.context import CLIContext, Pipeline, build_context, build_pipeline
from relpipe.core.errors import ErrorCode
from relpipe.core.result import Err, Ok
from relpipe.output.console import Style
from relpipe.output.errors import (
    pipeline_error_exit_code,
    print_pipeline_error,
    print_pipeline_result,
)
from relpipe.pipeline.artifacts import ENVIRONMENT_USERNAME, ArtifactStore
from relpipe.pipeline.controller import archive_run
from relpipe.pipeline.model import PipelineResult, PipelineRun
from relpipe.pipeline.run_state import new_run_id

_INTERRUPTED_HINT = (
    "if no relpipe process is still driving it, end it with: relpipe cancel --force"
)


def _load_active(ctx: CLIContext) -> PipelineRun | None:
    loaded = ctx.run_store().load()
    return exit_on_error(loaded, ctx)


def _require_parked(ctx: CLIContext, action: str) -> PipelineRun:
    run = _load_active(ctx)
    if run is not None and run.status == "running":
        exit_with_message(
            ctx,
            f"run {run.run_id} is running, not awaiting approval",
            ErrorCode.USER_ERROR,
            hint=_INTERRUPTED_HINT,
        )
    if run is None or run.status != "awaiting_approval":
        exit_with_message(
            ctx,
            f"no run awaiting approval to {action}",
            ErrorCode.USER_ERROR,
            hint="start one with: relpipe run",
        )
    return run


def _leaked_environments(pipeline: Pipeline) -> dict[str, str | None]:
    """Environments this run leaves allocated, mapped to their expiry date when known.

    Covers environments created in this process and the one handed over to
    app-deploy, which a cancelled or expired approval never tears down.
    """
    leaked: dict[str, str | None] = {
        env.username: f"{env.expires_at:%Y-%m-%d}" for env in pipeline.provisioner.alive()
    }
    destroyed = {env.username for env in pipeline.provisioner.tracked() if not env.alive}
    handed_off = pipeline.artifacts.get(ENVIRONMENT_USERNAME)
    if isinstance(handed_off, Ok) and handed_off.value not in destroyed:
        leaked.setdefault(handed_off.value, None)
    return leaked


def _finish(ctx: CLIContext, pipeline: Pipeline, result: PipelineResult) -> None:
    console = ctx.console
    print_pipeline_result(result, console)

    if result.error is not None:
        console.newline()
        if result.failed_stage:
            console.error(f"stage {result.failed_stage} failed")
        print_pipeline_error(result.error, console)

    if result.status == "awaiting_approval":
        gated = next(s.name for s in result.stages if s.status == "pending")
        console.newline()
        console.info(f"{gated} is waiting for approval")
        console.print("approve with: relpipe approve", Style.DIM)
        console.print("cancel with:  relpipe cancel", Style.DIM)
        return

    leaked = _leaked_environments(pipeline)
    for username, expires in leaked.items():
        until = f" (expires {expires})" if expires else ""
        console.warning(f"environment {username} is still allocated{until}")

    run = pipeline.controller.run
    if run is not None and run.is_terminal:
        run = replace(run, leaked_environments=tuple(leaked))
        archived = archive_run(store=pipeline.store, artifacts=pipeline.artifacts, run=run)
        if isinstance(archived, Err):
            console.warning(archived.error.message)

    match result.status:
        case "succeeded":
            console.success(f"run {result.run_id} succeeded")
        case "cancelled":
            raise typer.Exit(code=int(ErrorCode.PIPELINE_ERROR))
        case _:
            if result.error is not None:
                raise typer.Exit(code=pipeline_error_exit_code(result.error))
            raise typer.Exit(code=int(ErrorCode.PIPELINE_ERROR))


def run() -> None:
    """Run code-testing and integration-testing, then stop at the app-deploy gate."""
    ctx = build_context()
    active = _load_active(ctx)
    if active is not None and not active.is_terminal:
        exit_with_message(
            ctx,
            f"run {active.run_id} is {active.status}",
            ErrorCode.USER_ERROR,
            hint=(
                _INTERRUPTED_HINT
                if active.status == "running"
                else "approve or cancel it first: relpipe approve | relpipe cancel"
            ),
        )

    run_id = new_run_id()
    pipeline = build_pipeline(ctx, run_id=run_id)
    result = pipeline.controller.execute(pipeline.stages, run_id=run_id)
    _finish(ctx, pipeline, result)


def approve() -> None:
    """Approve the parked run and deploy."""
    ctx = build_context()
    parked = _require_parked(ctx, "approve")
    pipeline = build_pipeline(ctx, run_id=parked.run_id)
    exit_on_error(pipeline.controller.attach(parked, pipeline.stages), ctx)
    result = exit_on_error(pipeline.controller.approve(), ctx)
    _finish(ctx, pipeline, result)


def cancel(
    force: bool = typer.Option(
        False,
        "--force",
        help="Also end a run left running by an interrupted relpipe process.",
    ),
) -> None:
    """Cancel the parked run without deploying."""
    ctx = build_context()
    if force:
        active = _load_active(ctx)
        if active is not None and active.status == "running":
            pipeline = build_pipeline(ctx, run_id=active.run_id, decrypt=False)
            exit_on_error(pipeline.controller.attach(active, pipeline.stages), ctx)
            result = exit_on_error(pipeline.controller.abandon(), ctx)
            _finish(ctx, pipeline, result)
            return

    parked = _require_parked(ctx, "cancel")
    pipeline = build_pipeline(ctx, run_id=parked.run_id, decrypt=False)
    exit_on_error(pipeline.controller.attach(parked, pipeline.stages), ctx)
    result = exit_on_error(pipeline.controller.cancel(), ctx)
    _finish(ctx, pipeline, result)


def status() -> None:
    """Show the active run, or the last archived one."""
    ctx = build_context()
    last = exit_on_error(ctx.run_store().load_last(), ctx)
    if last is None:
        ctx.console.print("no runs yet", Style.DIM)
        return

    print_pipeline_result(
        PipelineResult(run_id=last.run_id, status=last.status, stages=last.stages),
        ctx.console,
    )
    for username in last.leaked_environments:
        ctx.console.warning(f"environment {username} was left allocated by this run")
    if last.awaiting_since:
        ctx.console.print(f"awaiting approval since {last.awaiting_since}", Style.DIM)
    if not last.is_terminal:
        store = ArtifactStore(root=ctx.workspace.artifacts_dir(last.run_id), console=ctx.console)
        names = store.names()
        if names:
            ctx.console.print(f"artifacts: {', '.join(names)}", Style.DIM)
