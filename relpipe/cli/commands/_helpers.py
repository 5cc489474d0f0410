"""Shared helpers for CLI commands."""

from __future__ import annotations

from typing import TYPE_CHECKING, NoReturn

import typer

from relpipe.core.errors import ErrorCode
from relpipe.core.result import Err, Result
from relpipe.output.console import Style
from relpipe.output.errors import pipeline_error_exit_code, print_pipeline_error
from relpipe.pipeline.errors import PipelineError

if TYPE_CHECKING:
    from relpipe.cli.context import CLIContext


def exit_on_error[T](result: Result[T, PipelineError], ctx: CLIContext) -> T:
    """Return the Ok value, or print the error and exit with its mapped code."""
    if isinstance(result, Err):
        print_pipeline_error(result.error, ctx.console)
        raise typer.Exit(code=pipeline_error_exit_code(result.error))
    return result.value


def exit_with_message(ctx: CLIContext, message: str, code: ErrorCode, hint: str | None = None) -> NoReturn:
    ctx.console.error(message)
    if hint:
        ctx.console.print(f"hint: {hint}", Style.DIM)
    raise typer.Exit(code=int(code))
