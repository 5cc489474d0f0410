from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Literal

from relpipe.core.result import Result
from relpipe.pipeline.errors import PipelineError, StepCause


TriggerMode = Literal["automatic", "manual"]
StageStatus = Literal["pending", "running", "succeeded", "failed"]
RunStatus = Literal["running", "succeeded", "failed", "awaiting_approval", "cancelled"]
EnvironmentState = Literal["provisioning", "ready", "in_use", "destroyed"]

TERMINAL_RUN_STATUSES: frozenset[RunStatus] = frozenset({"succeeded", "failed", "cancelled"})


@dataclass(frozen=True, slots=True)
class Credentials:
    """Login for one org: JWT bearer flow with a connected app."""

    username: str
    client_id: str
    key_file: Path


@dataclass(frozen=True, slots=True)
class ExecutionContext:
    """Everything a stage needs, passed explicitly to each step.

    No step reads a default org or session from global state; the dev hub
    and the promotion target are named here.
    """

    workspace_root: Path
    package_name: str
    devhub: Credentials
    target: Credentials
    definition_file: Path
    permission_set: str
    data_plan: Path
    environment_ttl_days: int
    environment_wait_minutes: int
    show_review_password: bool = False


StepAction = Callable[[ExecutionContext], Result[None, StepCause]]


@dataclass(frozen=True, slots=True)
class Step:
    name: str
    action: StepAction


@dataclass(frozen=True, slots=True)
class Stage:
    name: str
    steps: tuple[Step, ...]
    trigger: TriggerMode = "automatic"
    # Artifact names this stage must leave behind for later stages.
    outputs: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class StageResult:
    status: StageStatus
    failed_step_index: int | None = None
    error: PipelineError | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


@dataclass(frozen=True, slots=True)
class StageRecord:
    """Persisted view of one stage inside a run."""

    name: str
    trigger: TriggerMode
    status: StageStatus = "pending"
    failed_step_index: int | None = None
    error_message: str | None = None
    error_hint: str | None = None


@dataclass(frozen=True, slots=True)
class PipelineRun:
    """Aggregate root of one pipeline invocation."""

    run_id: str
    created_at: str
    status: RunStatus
    stages: tuple[StageRecord, ...]
    next_stage_index: int = 0
    awaiting_since: str | None = None
    # Environments still allocated when the run ended.
    leaked_environments: tuple[str, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    @property
    def stage_names(self) -> tuple[str, ...]:
        return tuple(s.name for s in self.stages)

    @property
    def gated_stage(self) -> StageRecord | None:
        if self.status != "awaiting_approval":
            return None
        return self.stages[self.next_stage_index]


@dataclass(frozen=True, slots=True)
class PipelineResult:
    run_id: str
    status: RunStatus
    stages: tuple[StageRecord, ...]
    failed_stage: str | None = None
    error: PipelineError | None = None


@dataclass(frozen=True, slots=True)
class Environment:
    """An ephemeral scratch environment, identified by its username."""

    username: str
    definition: str
    created_at: datetime
    expires_at: datetime
    state: EnvironmentState

    @property
    def alive(self) -> bool:
        return self.state != "destroyed"
