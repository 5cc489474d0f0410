from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from relpipe.core.result import Ok
from relpipe.output.console import MockConsole
from relpipe.pipeline import capabilities, errors
from relpipe.pipeline.artifacts import ENVIRONMENT_USERNAME, PACKAGE_VERSION_ID, ArtifactStore
from relpipe.pipeline.controller import PipelineController
from relpipe.pipeline.executor import StageExecutor
from relpipe.pipeline.model import ExecutionContext
from relpipe.pipeline.provisioner import EnvironmentProvisioner
from relpipe.pipeline.stages import APP_DEPLOY, CODE_TESTING, INTEGRATION_TESTING, ReleaseStages


class _Wired:
    def __init__(self, platform, console: MockConsole, tmp_path: Path) -> None:
        self.provisioner = EnvironmentProvisioner(platform=platform, console=console)
        self.artifacts = ArtifactStore(root=tmp_path / "artifacts", console=console)
        self.stages = ReleaseStages(
            platform=platform,
            provisioner=self.provisioner,
            artifacts=self.artifacts,
            console=console,
        ).all()
        self.executor = StageExecutor(console=console, artifacts=self.artifacts)

    def controller(self, context: ExecutionContext, console: MockConsole) -> PipelineController:
        return PipelineController(executor=self.executor, context=context, console=console)


def test_stage_order_and_gate(platform, console: MockConsole, tmp_path: Path) -> None:
    wired = _Wired(platform, console, tmp_path)
    assert [s.name for s in wired.stages] == [CODE_TESTING, INTEGRATION_TESTING, APP_DEPLOY]
    assert [s.trigger for s in wired.stages] == ["automatic", "automatic", "manual"]


def test_release_pipeline_end_to_end(
    platform, console: MockConsole, context: ExecutionContext, tmp_path: Path
) -> None:
    platform.released = [
        {"major": 2, "minor": 3, "patch": 1, "build": 4, "is_released": True},
        {"major": 2, "minor": 2, "patch": 0, "build": 9, "is_released": True},
    ]
    wired = _Wired(platform, console, tmp_path)
    ctrl = wired.controller(context, console)

    parked = ctrl.execute(wired.stages)

    assert parked.status == "awaiting_approval"
    assert ("create_package_version", "DreamHouse", "2.4.1.NEXT") in platform.calls
    assert platform.deleted == {"test-1@example.com"}
    review = wired.artifacts.get(ENVIRONMENT_USERNAME)
    assert isinstance(review, Ok) and review.value == "test-2@example.com"
    version_id = wired.artifacts.get(PACKAGE_VERSION_ID)
    assert isinstance(version_id, Ok) and version_id.value == platform.version_id
    assert "promote_package_version" not in platform.ops()

    approved = ctrl.approve()

    assert isinstance(approved, Ok)
    assert approved.value.status == "succeeded"
    deploy_ops = platform.ops()[platform.ops().index("promote_package_version") :]
    assert deploy_ops == ["promote_package_version", "install_package", "destroy_environment"]
    assert ("install_package", platform.version_id, "uat@example.com") in platform.calls
    assert ("authenticate", "uat@example.com") in platform.calls
    assert platform.deleted == {"test-1@example.com", "test-2@example.com"}
    assert wired.provisioner.alive() == ()


def test_first_release_uses_default_version(
    platform, console: MockConsole, context: ExecutionContext, tmp_path: Path
) -> None:
    wired = _Wired(platform, console, tmp_path)

    wired.controller(context, console).execute(wired.stages)

    assert ("create_package_version", "DreamHouse", "1.0.0.NEXT") in platform.calls


def test_failing_tests_halt_and_leave_environment(
    platform, console: MockConsole, context: ExecutionContext, tmp_path: Path
) -> None:
    platform.report = capabilities.TestReport(passed=False, coverage="61%", summary="Failed")
    wired = _Wired(platform, console, tmp_path)

    result = wired.controller(context, console).execute(wired.stages)

    assert result.status == "failed"
    assert result.failed_stage == CODE_TESTING
    assert result.stages[0].failed_step_index == 4
    assert isinstance(result.error, errors.StepFailed)
    assert isinstance(result.error.cause, errors.TestsFailed)
    assert [e.username for e in wired.provisioner.alive()] == ["test-1@example.com"]
    assert "create_package_version" not in platform.ops()


def test_authentication_failure_maps_to_auth_error(
    platform, console: MockConsole, context: ExecutionContext, tmp_path: Path
) -> None:
    platform.fail("authenticate", "invalid_grant")
    wired = _Wired(platform, console, tmp_path)

    result = wired.controller(context, console).execute(wired.stages)

    assert result.failed_stage == CODE_TESTING
    assert isinstance(result.error, errors.StepFailed)
    assert isinstance(result.error.cause, errors.AuthenticationFailed)
    assert result.error.cause.account == "hub@example.com"
    assert "create_environment" not in platform.ops()


def test_deploy_without_handoff_fails_on_first_step(
    platform, console: MockConsole, context: ExecutionContext, tmp_path: Path
) -> None:
    wired = _Wired(platform, console, tmp_path)
    deploy = wired.stages[2]

    result = wired.executor.run(deploy, context)

    assert result.status == "failed"
    assert result.failed_step_index == 0
    assert isinstance(result.error, errors.StepFailed)
    assert isinstance(result.error.cause, errors.ArtifactNotFound)
    assert platform.calls == []


def test_deploy_with_handoff_from_earlier_process(
    platform, console: MockConsole, context: ExecutionContext, tmp_path: Path
) -> None:
    wired = _Wired(platform, console, tmp_path)
    wired.artifacts.put(PACKAGE_VERSION_ID, "04tXYZ")
    wired.artifacts.put(ENVIRONMENT_USERNAME, "review@example.com")

    result = wired.executor.run(wired.stages[2], context)

    assert result.succeeded
    assert ("promote_package_version", "04tXYZ") in platform.calls
    assert platform.deleted == {"review@example.com"}


def test_review_login_is_shared_without_password(
    platform, console: MockConsole, context: ExecutionContext, tmp_path: Path
) -> None:
    wired = _Wired(platform, console, tmp_path)

    wired.controller(context, console).execute(wired.stages)

    ops = platform.ops()
    assert ops.index("reset_password") < ops.index("display_user")
    assert ("reset_password", "test-2@example.com") in platform.calls
    assert "review login: test-2@example.com at https://review.example.com" in console.messages
    assert platform.password not in console.text


def test_review_password_printed_when_enabled(
    platform, console: MockConsole, context: ExecutionContext, tmp_path: Path
) -> None:
    wired = _Wired(platform, console, tmp_path)

    result = wired.executor.run(wired.stages[1], replace(context, show_review_password=True))

    assert result.succeeded
    assert f"review password: {platform.password}" in console.messages


def test_password_reset_failure_keeps_handoff(
    platform, console: MockConsole, context: ExecutionContext, tmp_path: Path
) -> None:
    platform.fail("reset_password", "INSUFFICIENT_ACCESS")
    wired = _Wired(platform, console, tmp_path)

    result = wired.executor.run(wired.stages[1], context)

    assert result.status == "failed"
    assert isinstance(result.error, errors.StepFailed)
    assert isinstance(result.error.cause, errors.PlatformCallFailed)
    assert result.error.cause.operation == "reset_password"
    assert wired.artifacts.exists(ENVIRONMENT_USERNAME)


def test_stage_rerun_starts_with_empty_scope(
    platform, console: MockConsole, context: ExecutionContext, tmp_path: Path
) -> None:
    wired = _Wired(platform, console, tmp_path)
    code_testing = wired.stages[0]
    assert wired.executor.run(code_testing, context).succeeded

    authenticate, _, push_source = code_testing.steps[:3]
    assert isinstance(authenticate.action(context), Ok)
    with pytest.raises(RuntimeError):
        push_source.action(context)


def test_rerun_uses_fresh_environment(
    platform, console: MockConsole, context: ExecutionContext, tmp_path: Path
) -> None:
    wired = _Wired(platform, console, tmp_path)
    code_testing = wired.stages[0]

    assert wired.executor.run(code_testing, context).succeeded
    assert wired.executor.run(code_testing, context).succeeded

    assert ("push_source", "test-2@example.com") in platform.calls
    assert platform.deleted == {"test-1@example.com", "test-2@example.com"}
