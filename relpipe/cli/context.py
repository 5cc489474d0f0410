from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta

import typer

from relpipe.core.config import Config, OrgConfig, apply_env_overrides, load_config
from relpipe.core.errors import ErrorCode
from relpipe.core.result import Err
from relpipe.core.workspace import Workspace, detect_workspace
from relpipe.output.console import ConsoleProtocol, RichConsole, Style
from relpipe.pipeline.artifacts import ArtifactStore
from relpipe.pipeline.controller import PipelineController
from relpipe.pipeline.executor import StageExecutor
from relpipe.pipeline.model import Credentials, ExecutionContext, Stage
from relpipe.pipeline.provisioner import EnvironmentProvisioner
from relpipe.pipeline.run_state import RunStore
from relpipe.pipeline.secrets import load_credentials
from relpipe.pipeline.sfdx import SfdxPlatform
from relpipe.pipeline.stages import ReleaseStages


@dataclass(frozen=True, slots=True)
class CLIContext:
    workspace: Workspace
    config: Config
    console: ConsoleProtocol

    def run_store(self) -> RunStore:
        return RunStore(
            run_path=self.workspace.run_state_path,
            archive_dir=self.workspace.archive_dir,
        )


@dataclass(frozen=True, slots=True)
class Pipeline:
    """Everything wired for one run: the stages and the objects they share."""

    controller: PipelineController
    stages: tuple[Stage, ...]
    provisioner: EnvironmentProvisioner
    artifacts: ArtifactStore
    store: RunStore


def build_context() -> CLIContext:
    console = RichConsole()

    workspace_result = detect_workspace()
    if isinstance(workspace_result, Err):
        typer.echo(f"error: {workspace_result.error.message}", err=True)
        raise typer.Exit(code=int(ErrorCode.ENV_ERROR))
    workspace = workspace_result.value

    config_result = load_config(workspace.config_path)
    if isinstance(config_result, Err):
        typer.echo(f"error: {config_result.error.message}", err=True)
        raise typer.Exit(code=int(ErrorCode.ENV_ERROR))

    validated = apply_env_overrides(config_result.value, os.environ).validate()
    if isinstance(validated, Err):
        typer.echo(f"error: {validated.error.message}", err=True)
        typer.echo(f"hint: edit {workspace.config_path}", err=True)
        raise typer.Exit(code=int(ErrorCode.ENV_ERROR))

    return CLIContext(workspace=workspace, config=validated.value, console=console)


def _credentials(ctx: CLIContext, org: OrgConfig, *, decrypt: bool) -> Credentials:
    if not decrypt:
        # Enough to describe the org; cancel/status never log in.
        return Credentials(
            username=org.username,
            client_id=org.client_id,
            key_file=ctx.workspace.root / org.key_file,
        )

    result = load_credentials(workspace_root=ctx.workspace.root, org=org)
    if isinstance(result, Err):
        ctx.console.error(result.error.message)
        if result.error.hint:
            ctx.console.print(f"hint: {result.error.hint}", Style.DIM)
        raise typer.Exit(code=int(ErrorCode.ENV_ERROR))
    return result.value


def execution_context(ctx: CLIContext, *, decrypt: bool = True) -> ExecutionContext:
    config = ctx.config
    root = ctx.workspace.root
    devhub = _credentials(ctx, config.devhub, decrypt=decrypt)
    if config.target.key_file == config.devhub.key_file:
        target = Credentials(
            username=config.target.username,
            client_id=config.target.client_id,
            key_file=devhub.key_file,
        )
    else:
        target = _credentials(ctx, config.target, decrypt=decrypt)

    return ExecutionContext(
        workspace_root=root,
        package_name=config.package.name,
        devhub=devhub,
        target=target,
        definition_file=root / config.package.definition_file,
        permission_set=config.package.permission_set,
        data_plan=root / config.package.data_plan,
        environment_ttl_days=config.environment.duration_days,
        environment_wait_minutes=config.environment.wait_minutes,
        show_review_password=config.environment.show_password,
    )


def build_pipeline(ctx: CLIContext, *, run_id: str, decrypt: bool = True) -> Pipeline:
    console = ctx.console
    platform = SfdxPlatform(
        workspace_root=ctx.workspace.root,
        devhub_username=ctx.config.devhub.username,
    )
    provisioner = EnvironmentProvisioner(
        platform=platform,
        console=console,
        poll_seconds=float(ctx.config.environment.poll_seconds),
    )
    artifacts = ArtifactStore(root=ctx.workspace.artifacts_dir(run_id), console=console)
    stages = ReleaseStages(
        platform=platform,
        provisioner=provisioner,
        artifacts=artifacts,
        console=console,
    ).all()

    timeout_hours = ctx.config.approval.timeout_hours
    store = ctx.run_store()
    controller = PipelineController(
        executor=StageExecutor(console=console, artifacts=artifacts),
        context=execution_context(ctx, decrypt=decrypt),
        console=console,
        store=store,
        approval_timeout=timedelta(hours=timeout_hours) if timeout_hours else None,
    )
    return Pipeline(
        controller=controller,
        stages=stages,
        provisioner=provisioner,
        artifacts=artifacts,
        store=store,
    )
