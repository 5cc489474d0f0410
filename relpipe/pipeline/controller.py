"""Pipeline orchestration: stage order, the manual gate, halting on failure.

Stages run one at a time in declared order. A ``manual`` stage parks the run
in ``awaiting_approval`` until ``approve()`` or ``cancel()`` is called,
possibly from another process that re-attaches to the persisted run.

A failed stage halts the run. Environments created by earlier stages are not
torn down implicitly; the pipeline definition decides where teardown steps
go.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from datetime import UTC, datetime, timedelta

from relpipe.core.result import Err, Ok, Result
from relpipe.output.console import ConsoleProtocol, Style
from relpipe.pipeline.artifacts import ArtifactStore
from relpipe.pipeline.errors import (
    ApprovalTimeout,
    InvalidRunState,
    PipelineError,
    RunInterrupted,
    RunStateError,
)
from relpipe.pipeline.executor import StageExecutor
from relpipe.pipeline.model import (
    ExecutionContext,
    PipelineResult,
    PipelineRun,
    Stage,
    StageRecord,
)
from relpipe.pipeline.run_state import RunStore, new_run


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class PipelineController:
    def __init__(
        self,
        *,
        executor: StageExecutor,
        context: ExecutionContext,
        console: ConsoleProtocol,
        store: RunStore | None = None,
        approval_timeout: timedelta | None = None,
    ) -> None:
        self._executor = executor
        self._context = context
        self._console = console
        self._store = store
        self._approval_timeout = approval_timeout
        self._run: PipelineRun | None = None
        self._stages: tuple[Stage, ...] = ()
        self._cancel_requested = False

    @property
    def run(self) -> PipelineRun | None:
        return self._run

    def execute(self, stages: Sequence[Stage], *, run_id: str | None = None) -> PipelineResult:
        """Start a new run over ``stages`` and drive it as far as it can go."""
        if self._run is not None and not self._run.is_terminal:
            raise RuntimeError(f"run {self._run.run_id} is still {self._run.status}")

        names = [s.name for s in stages]
        if len(set(names)) != len(names):
            raise ValueError(f"stage names must be unique: {names}")

        self._stages = tuple(stages)
        self._cancel_requested = False
        run = new_run(self._stages, run_id=run_id)
        self._console.print(f"run {run.run_id}: {' -> '.join(names) or '(no stages)'}", Style.DIM)

        error = self._commit(run)
        if error is not None:
            return self._fail_run(run, error)
        return self._advance(approved_index=None)

    def attach(self, run: PipelineRun, stages: Sequence[Stage]) -> Result[None, InvalidRunState]:
        """Bind a persisted run so it can be approved or cancelled here."""
        expected = run.stage_names
        actual = tuple(s.name for s in stages)
        if expected != actual:
            return Err(
                InvalidRunState(
                    detail=f"run {run.run_id} was started with different stages",
                    hint=f"run: {', '.join(expected)}; now: {', '.join(actual)}",
                )
            )

        self._run = run
        self._stages = tuple(stages)
        self._cancel_requested = False
        return Ok(None)

    def approve(self) -> Result[PipelineResult, PipelineError]:
        """Release the manual gate and run the gated stage and everything after it."""
        run = self._run
        if run is None:
            return Err(InvalidRunState(detail="no run to approve"))
        if run.status != "awaiting_approval":
            return Err(
                InvalidRunState(detail=f"run {run.run_id} is {run.status}, not awaiting approval")
            )

        index = run.next_stage_index
        gated = run.stages[index]

        if self._approval_timeout is not None and run.awaiting_since is not None:
            waited = _utcnow() - datetime.fromisoformat(run.awaiting_since)
            if waited > self._approval_timeout:
                error = ApprovalTimeout(
                    stage=gated.name,
                    waited_hours=waited.total_seconds() / 3600,
                    hint=f"approvals expire after {self._approval_timeout}",
                )
                self._console.error(error.message)
                return Ok(self._fail_run(run, error, failed_stage=gated.name))

        self._console.info(f"approved: {gated.name}")
        return Ok(self._advance(approved_index=index))

    def cancel(self) -> Result[PipelineResult, PipelineError]:
        """Cancel the run.

        At the approval gate the run ends as ``cancelled`` and the gated stage
        never starts. While a stage is running, the request only prevents
        later stages from starting.
        """
        run = self._run
        if run is None:
            return Err(InvalidRunState(detail="no run to cancel"))

        match run.status:
            case "awaiting_approval":
                gated = run.stages[run.next_stage_index]
                self._console.warning(f"cancelled before {gated.name}")
                cancelled = replace(run, status="cancelled")
                error = self._commit(cancelled)
                if error is not None:
                    return Ok(self._fail_run(cancelled, error))
                return Ok(self._result(cancelled))
            case "running":
                self._cancel_requested = True
                self._console.warning("cancellation requested; the current stage will finish")
                return Ok(self._result(run))
            case _:
                return Err(InvalidRunState(detail=f"run {run.run_id} already {run.status}"))

    def abandon(self) -> Result[PipelineResult, PipelineError]:
        """Fail a run left ``running`` by a process that stopped mid-stage.

        The stage recorded as running is marked failed and later stages never
        start. Only call this when no other process is driving the run.
        """
        run = self._run
        if run is None:
            return Err(InvalidRunState(detail="no run to abandon"))
        if run.status != "running":
            return Err(InvalidRunState(detail=f"run {run.run_id} is {run.status}, not running"))

        index = next((i for i, s in enumerate(run.stages) if s.status == "running"), None)
        stage = run.stages[index] if index is not None else None
        error = RunInterrupted(
            stage=stage.name if stage is not None else None,
            hint="the process driving the run stopped before the run finished",
        )
        self._console.warning(error.message)
        if index is not None and stage is not None:
            run = self._with_stage(
                run, index, replace(stage, status="failed", error_message=error.message)
            )
        return Ok(self._fail_run(run, error, failed_stage=stage.name if stage else None))

    def _advance(self, *, approved_index: int | None) -> PipelineResult:
        run = self._require_run()

        while run.next_stage_index < len(self._stages):
            index = run.next_stage_index
            stage = self._stages[index]

            if self._cancel_requested:
                self._console.warning(f"run cancelled before {stage.name}")
                return self._settle(replace(run, status="cancelled"))

            if stage.trigger == "manual" and approved_index != index:
                parked = replace(run, status="awaiting_approval", awaiting_since=_utcnow().isoformat())
                self._console.info(f"{stage.name} waits for manual approval")
                return self._settle(parked)

            run = self._with_stage(
                replace(run, status="running", awaiting_since=None),
                index,
                StageRecord(name=stage.name, trigger=stage.trigger, status="running"),
            )
            error = self._commit(run)
            if error is not None:
                return self._fail_run(run, error, failed_stage=stage.name)

            outcome = self._executor.run(stage, self._context)

            if not outcome.succeeded:
                record = StageRecord(
                    name=stage.name,
                    trigger=stage.trigger,
                    status="failed",
                    failed_step_index=outcome.failed_step_index,
                    error_message=outcome.error.message if outcome.error else None,
                    error_hint=outcome.error.hint if outcome.error else None,
                )
                failed = self._with_stage(replace(run, status="failed"), index, record)
                settled = self._settle(failed)
                return replace(settled, failed_stage=stage.name, error=outcome.error or settled.error)

            run = self._with_stage(
                replace(run, next_stage_index=index + 1),
                index,
                StageRecord(name=stage.name, trigger=stage.trigger, status="succeeded"),
            )
            error = self._commit(run)
            if error is not None:
                return self._fail_run(run, error, failed_stage=stage.name)

        return self._settle(replace(run, status="succeeded"))

    def _settle(self, run: PipelineRun) -> PipelineResult:
        error = self._commit(run)
        if error is not None:
            return self._fail_run(run, error)
        return self._result(run)

    def _commit(self, run: PipelineRun) -> RunStateError | None:
        self._run = run
        if self._store is None:
            return None
        saved = self._store.save(run)
        if isinstance(saved, Err):
            return saved.error
        return None

    def _fail_run(
        self,
        run: PipelineRun,
        error: PipelineError,
        *,
        failed_stage: str | None = None,
    ) -> PipelineResult:
        failed = replace(run, status="failed")
        self._run = failed
        if self._store is not None and not isinstance(error, RunStateError):
            saved = self._store.save(failed)
            if isinstance(saved, Err):
                error = saved.error
        return self._result(failed, failed_stage=failed_stage, error=error)

    def _require_run(self) -> PipelineRun:
        if self._run is None:
            raise RuntimeError("no active run")
        return self._run

    @staticmethod
    def _with_stage(run: PipelineRun, index: int, record: StageRecord) -> PipelineRun:
        stages = list(run.stages)
        stages[index] = record
        return replace(run, stages=tuple(stages))

    @staticmethod
    def _result(
        run: PipelineRun,
        *,
        failed_stage: str | None = None,
        error: PipelineError | None = None,
    ) -> PipelineResult:
        if failed_stage is None:
            failed_stage = next((s.name for s in run.stages if s.status == "failed"), None)
        return PipelineResult(
            run_id=run.run_id,
            status=run.status,
            stages=run.stages,
            failed_stage=failed_stage,
            error=error,
        )


def archive_run(
    *, store: RunStore, artifacts: ArtifactStore, run: PipelineRun
) -> Result[None, RunStateError]:
    """Archive a terminal run and drop its artifacts."""
    archived = store.archive(run)
    if isinstance(archived, Err):
        return archived
    cleared = artifacts.clear()
    if isinstance(cleared, Err):
        return Err(RunStateError(detail=cleared.error.message, hint=cleared.error.hint))
    return Ok(None)

