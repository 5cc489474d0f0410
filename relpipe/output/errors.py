"""Error presentation utilities.

Centralized pipeline error formatting and exit code mapping for consistent UX.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from relpipe.core.errors import ErrorCode
from relpipe.output.console import Style
from relpipe.pipeline.errors import (
    ApprovalTimeout,
    ArtifactNotFound,
    ArtifactWriteFailed,
    AuthenticationFailed,
    InvalidRunState,
    MalformedVersionRecord,
    PipelineError,
    PlatformCallFailed,
    ProvisionFailed,
    ProvisionTimeout,
    RunInterrupted,
    RunStateError,
    StepFailed,
    TestsFailed,
)
from relpipe.pipeline.model import PipelineResult

if TYPE_CHECKING:
    from relpipe.output.console import ConsoleProtocol

__all__ = ["print_pipeline_error", "pipeline_error_exit_code", "print_pipeline_result"]


def print_pipeline_error(error: PipelineError, console: ConsoleProtocol) -> None:
    """Print a pipeline error with its captured detail, never masking it."""
    match error:
        case StepFailed(step_index=index, step_name=name, cause=cause):
            console.error(f"step {index} ({name}) failed")
            print_pipeline_error(cause, console)
            return
        case _:
            console.error(error.message)
    if error.hint:
        console.print(f"hint: {error.hint}", Style.DIM)


def pipeline_error_exit_code(error: PipelineError) -> int:
    """Get exit code for a pipeline error."""
    match error:
        case StepFailed(cause=cause):
            return pipeline_error_exit_code(cause)
        case InvalidRunState():
            return int(ErrorCode.USER_ERROR)
        case AuthenticationFailed():
            return int(ErrorCode.ENV_ERROR)
        case TestsFailed() | MalformedVersionRecord() | ApprovalTimeout() | RunInterrupted():
            return int(ErrorCode.PIPELINE_ERROR)
        case ProvisionTimeout() | ProvisionFailed() | PlatformCallFailed():
            return int(ErrorCode.PLATFORM_ERROR)
        case ArtifactNotFound() | ArtifactWriteFailed() | RunStateError():
            return int(ErrorCode.IO_ERROR)
    return int(ErrorCode.PIPELINE_ERROR)


def print_pipeline_result(result: PipelineResult, console: ConsoleProtocol) -> None:
    """Print the per-stage summary of a run."""
    console.header(f"run {result.run_id}: {result.status}")
    for stage in result.stages:
        line = f"{stage.name:<22} {stage.status}"
        if stage.trigger == "manual":
            line += " (manual)"
        if stage.failed_step_index is not None:
            line += f" at step {stage.failed_step_index}"
        style = {
            "succeeded": Style.SUCCESS,
            "failed": Style.ERROR,
            "running": Style.INFO,
        }.get(stage.status, Style.DIM)
        console.print(line, style)
        if stage.error_message:
            console.print(f"  {stage.error_message}", Style.DIM)
        if stage.error_hint:
            console.print(f"  hint: {stage.error_hint}", Style.DIM)
