"""Error taxonomy for the release pipeline.

Each error is a frozen value. Components return them inside ``Err`` and the
CLI renders them (see ``relpipe.output.errors``). ``hint`` carries the
captured detail from the external tool, when there is one.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ProvisionTimeout:
    definition: str
    waited_seconds: float
    hint: str | None = None

    @property
    def message(self) -> str:
        return f"environment from {self.definition} not ready after {self.waited_seconds:.0f}s"


@dataclass(frozen=True, slots=True)
class ProvisionFailed:
    definition: str
    hint: str | None = None

    @property
    def message(self) -> str:
        return f"failed to create environment from {self.definition}"


@dataclass(frozen=True, slots=True)
class ArtifactNotFound:
    name: str
    hint: str | None = None

    @property
    def message(self) -> str:
        return f"artifact not found in this run: {self.name}"


@dataclass(frozen=True, slots=True)
class ArtifactWriteFailed:
    name: str
    hint: str | None = None

    @property
    def message(self) -> str:
        return f"failed to write artifact: {self.name}"


@dataclass(frozen=True, slots=True)
class MalformedVersionRecord:
    field: str
    value: object
    hint: str | None = None

    @property
    def message(self) -> str:
        return f"released version field {self.field!r} is not a number: {self.value!r}"


@dataclass(frozen=True, slots=True)
class AuthenticationFailed:
    account: str
    hint: str | None = None

    @property
    def message(self) -> str:
        return f"authentication failed for {self.account or '(no account)'}"


@dataclass(frozen=True, slots=True)
class PlatformCallFailed:
    operation: str
    hint: str | None = None

    @property
    def message(self) -> str:
        return f"platform call failed: {self.operation}"


@dataclass(frozen=True, slots=True)
class TestsFailed:
    environment: str
    coverage: str | None = None
    hint: str | None = None

    @property
    def message(self) -> str:
        suffix = f" (coverage {self.coverage})" if self.coverage else ""
        return f"tests failed in {self.environment}{suffix}"


@dataclass(frozen=True, slots=True)
class ApprovalTimeout:
    stage: str
    waited_hours: float
    hint: str | None = None

    @property
    def message(self) -> str:
        return f"approval for {self.stage} arrived after {self.waited_hours:.1f}h"


@dataclass(frozen=True, slots=True)
class RunInterrupted:
    """The process driving a run stopped before the run reached an end state."""

    stage: str | None
    hint: str | None = None

    @property
    def message(self) -> str:
        if self.stage is None:
            return "run interrupted"
        return f"run interrupted during {self.stage}"


@dataclass(frozen=True, slots=True)
class InvalidRunState:
    detail: str
    hint: str | None = None

    @property
    def message(self) -> str:
        return self.detail


@dataclass(frozen=True, slots=True)
class RunStateError:
    detail: str
    hint: str | None = None

    @property
    def message(self) -> str:
        return f"run state: {self.detail}"


@dataclass(frozen=True, slots=True)
class StepFailed:
    """A step of a stage failed; ``cause`` is what the step returned."""

    step_index: int
    step_name: str
    cause: StepCause

    @property
    def message(self) -> str:
        return f"step {self.step_index} ({self.step_name}) failed: {self.cause.message}"

    @property
    def hint(self) -> str | None:
        return self.cause.hint


StepCause = (
    ProvisionTimeout
    | ProvisionFailed
    | ArtifactNotFound
    | ArtifactWriteFailed
    | MalformedVersionRecord
    | AuthenticationFailed
    | PlatformCallFailed
    | TestsFailed
)

PipelineError = (
    StepCause | StepFailed | ApprovalTimeout | RunInterrupted | InvalidRunState | RunStateError
)
