from __future__ import annotations

from relpipe.core.result import Err
from relpipe.output.console import ConsoleProtocol, Style
from relpipe.pipeline.artifacts import ArtifactStore
from relpipe.pipeline.errors import ArtifactNotFound, StepFailed
from relpipe.pipeline.model import ExecutionContext, Stage, StageResult


class StageExecutor:
    """Runs the steps of one stage in order, stopping at the first failure.

    Nothing is rolled back: if a step fails after an environment was
    created, the environment stays up unless the stage itself has an
    explicit teardown step that runs before the failure.
    """

    def __init__(self, *, console: ConsoleProtocol, artifacts: ArtifactStore | None = None) -> None:
        self._console = console
        self._artifacts = artifacts

    def run(self, stage: Stage, context: ExecutionContext) -> StageResult:
        self._console.header(stage.name)
        total = len(stage.steps)

        for index, step in enumerate(stage.steps):
            self._console.print(f"[{index + 1}/{total}] {step.name}", Style.DIM)
            outcome = step.action(context)
            if isinstance(outcome, Err):
                error = StepFailed(step_index=index, step_name=step.name, cause=outcome.error)
                self._console.error(f"{stage.name}: {error.message}")
                if error.hint:
                    self._console.print(f"hint: {error.hint}", Style.DIM)
                return StageResult(status="failed", failed_step_index=index, error=error)

        missing = self._missing_outputs(stage)
        if missing:
            error = ArtifactNotFound(
                name=missing[0], hint=f"declared output of {stage.name} was never written"
            )
            self._console.error(f"{stage.name}: {error.message}")
            return StageResult(status="failed", error=error)

        self._console.success(stage.name)
        return StageResult(status="succeeded")

    def _missing_outputs(self, stage: Stage) -> list[str]:
        if not stage.outputs:
            return []
        if self._artifacts is None:
            return list(stage.outputs)
        return [name for name in stage.outputs if not self._artifacts.exists(name)]
