"""The release pipeline's three stages.

- ``code-testing``: test the source in a throwaway environment, then delete it.
- ``integration-testing``: compute the next version, build the package
  version, install and test it in a fresh environment. The version id and
  the environment username are left behind as artifacts; the environment is
  kept alive for manual QA, with a fresh password for the reviewer.
- ``app-deploy`` (manual): promote the version, install it in the target
  org, delete the environment handed over by the previous stage.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from relpipe.core.result import Err, Ok, Result
from relpipe.output.console import ConsoleProtocol, Style
from relpipe.pipeline.artifacts import ENVIRONMENT_USERNAME, PACKAGE_VERSION_ID, ArtifactStore
from relpipe.pipeline.capabilities import PlatformFailure, ReleasePlatform
from relpipe.pipeline.errors import (
    AuthenticationFailed,
    PlatformCallFailed,
    StepCause,
    TestsFailed,
)
from relpipe.pipeline.model import (
    Credentials,
    Environment,
    ExecutionContext,
    Stage,
    Step,
    StepAction,
)
from relpipe.pipeline.provisioner import EnvironmentProvisioner
from relpipe.pipeline.version import VersionNumber, resolve_next_version, select_latest_release

CODE_TESTING = "code-testing"
INTEGRATION_TESTING = "integration-testing"
APP_DEPLOY = "app-deploy"

StepResult = Result[None, StepCause]


@dataclass
class _Scope:
    """Values passed between the steps of a single stage."""

    environment: Environment | None = None
    version: VersionNumber | None = None
    version_id: str | None = None

    def clear(self) -> None:
        self.environment = None
        self.version = None
        self.version_id = None


def _opens(scope: _Scope, action: StepAction) -> StepAction:
    """Wrap the first step of a stage so each execution starts from an empty scope."""

    def run(ctx: ExecutionContext) -> StepResult:
        scope.clear()
        return action(ctx)

    return run


def _failed(failure: PlatformFailure) -> Err[PlatformCallFailed]:
    return Err(PlatformCallFailed(operation=failure.operation, hint=failure.detail))


class ReleaseStages:
    def __init__(
        self,
        *,
        platform: ReleasePlatform,
        provisioner: EnvironmentProvisioner,
        artifacts: ArtifactStore,
        console: ConsoleProtocol,
    ) -> None:
        self._platform = platform
        self._provisioner = provisioner
        self._artifacts = artifacts
        self._console = console

    def all(self) -> tuple[Stage, ...]:
        return (self.code_testing(), self.integration_testing(), self.app_deploy())

    # -- shared steps ---------------------------------------------------------

    def _authenticate(self, credentials: Credentials) -> StepResult:
        result = self._platform.authenticate(credentials)
        if isinstance(result, Err):
            return Err(AuthenticationFailed(account=credentials.username, hint=result.error.detail))
        self._console.print(f"authenticated as {credentials.username}", Style.DIM)
        return Ok(None)

    def _create_environment(self, scope: _Scope, ctx: ExecutionContext) -> StepResult:
        created = self._provisioner.create(
            ctx.definition_file,
            timedelta(days=ctx.environment_ttl_days),
            wait=timedelta(minutes=ctx.environment_wait_minutes),
        )
        if isinstance(created, Err):
            return created
        scope.environment = created.value
        return Ok(None)

    def _populate(self, scope: _Scope, ctx: ExecutionContext) -> StepResult:
        env = _require_environment(scope)
        populated = self._provisioner.populate(env, ctx.permission_set, ctx.data_plan)
        if isinstance(populated, Err):
            return populated
        scope.environment = populated.value
        return Ok(None)

    def _run_tests(self, scope: _Scope) -> StepResult:
        env = _require_environment(scope)
        report = self._platform.run_tests(env.username)
        if isinstance(report, Err):
            return _failed(report.error)
        if not report.value.passed:
            return Err(
                TestsFailed(
                    environment=env.username,
                    coverage=report.value.coverage,
                    hint=report.value.summary,
                )
            )
        coverage = f", coverage {report.value.coverage}" if report.value.coverage else ""
        self._console.print(f"tests passed{coverage}", Style.DIM)
        return Ok(None)

    # -- stages ---------------------------------------------------------------

    def code_testing(self) -> Stage:
        scope = _Scope()

        def push_source(ctx: ExecutionContext) -> StepResult:
            env = _require_environment(scope)
            result = self._platform.push_source(env.username)
            if isinstance(result, Err):
                return _failed(result.error)
            return Ok(None)

        def delete_environment(ctx: ExecutionContext) -> StepResult:
            destroyed = self._provisioner.destroy(_require_environment(scope))
            if isinstance(destroyed, Err):
                return destroyed
            scope.environment = destroyed.value
            return Ok(None)

        return Stage(
            name=CODE_TESTING,
            steps=(
                Step(
                    "authenticate dev hub",
                    _opens(scope, lambda ctx: self._authenticate(ctx.devhub)),
                ),
                Step("create environment", lambda ctx: self._create_environment(scope, ctx)),
                Step("push source", push_source),
                Step("apply fixtures", lambda ctx: self._populate(scope, ctx)),
                Step("run tests", lambda ctx: self._run_tests(scope)),
                Step("delete environment", delete_environment),
            ),
        )

    def integration_testing(self) -> Stage:
        scope = _Scope()

        def resolve_version(ctx: ExecutionContext) -> StepResult:
            listed = self._platform.list_released_versions(ctx.package_name)
            if isinstance(listed, Err):
                return _failed(listed.error)
            resolved = resolve_next_version(select_latest_release(listed.value))
            if isinstance(resolved, Err):
                return resolved
            scope.version = resolved.value
            self._console.print(f"{ctx.package_name} next version: {resolved.value}", Style.DIM)
            return Ok(None)

        def create_package_version(ctx: ExecutionContext) -> StepResult:
            if scope.version is None:
                raise RuntimeError("version must be resolved before the package version is created")
            created = self._platform.create_package_version(ctx.package_name, scope.version)
            if isinstance(created, Err):
                return _failed(created.error)
            scope.version_id = created.value
            self._console.print(f"package version id: {created.value}", Style.DIM)
            return self._artifacts.put(PACKAGE_VERSION_ID, created.value)

        def install_package(ctx: ExecutionContext) -> StepResult:
            env = _require_environment(scope)
            if scope.version_id is None:
                raise RuntimeError("package version must be created before it is installed")
            result = self._platform.install_package(scope.version_id, env.username)
            if isinstance(result, Err):
                return _failed(result.error)
            return Ok(None)

        def hand_off_environment(ctx: ExecutionContext) -> StepResult:
            env = _require_environment(scope)
            self._console.print(f"environment {env.username} kept for review", Style.DIM)
            return self._artifacts.put(ENVIRONMENT_USERNAME, env.username)

        def share_review_login(ctx: ExecutionContext) -> StepResult:
            env = _require_environment(scope)
            reset = self._platform.reset_password(env.username)
            if isinstance(reset, Err):
                return _failed(reset.error)
            shown = self._platform.display_user(env.username)
            if isinstance(shown, Err):
                return _failed(shown.error)

            login = shown.value
            where = f" at {login.instance_url}" if login.instance_url else ""
            self._console.print(f"review login: {login.username}{where}")
            if login.password and ctx.show_review_password:
                self._console.print(f"review password: {login.password}")
            elif login.password:
                self._console.print(
                    "password not shown; read it with: sfdx force:user:display "
                    f"--targetusername {login.username}",
                    Style.DIM,
                )
            return Ok(None)

        return Stage(
            name=INTEGRATION_TESTING,
            steps=(
                Step(
                    "authenticate dev hub",
                    _opens(scope, lambda ctx: self._authenticate(ctx.devhub)),
                ),
                Step("resolve next version", resolve_version),
                Step("create environment", lambda ctx: self._create_environment(scope, ctx)),
                Step("create package version", create_package_version),
                Step("install package", install_package),
                Step("apply fixtures", lambda ctx: self._populate(scope, ctx)),
                Step("run tests", lambda ctx: self._run_tests(scope)),
                Step("hand off environment", hand_off_environment),
                Step("share review login", share_review_login),
            ),
            outputs=(PACKAGE_VERSION_ID, ENVIRONMENT_USERNAME),
        )

    def app_deploy(self) -> Stage:
        scope = _Scope()

        def read_handoff(ctx: ExecutionContext) -> StepResult:
            version_id = self._artifacts.get(PACKAGE_VERSION_ID)
            if isinstance(version_id, Err):
                return version_id
            username = self._artifacts.get(ENVIRONMENT_USERNAME)
            if isinstance(username, Err):
                return username
            scope.version_id = version_id.value
            scope.environment = self._provisioner.resolve(username.value)
            self._console.print(
                f"package version {version_id.value}, environment {username.value}", Style.DIM
            )
            return Ok(None)

        def promote(ctx: ExecutionContext) -> StepResult:
            result = self._platform.promote_package_version(_require_version_id(scope))
            if isinstance(result, Err):
                return _failed(result.error)
            return Ok(None)

        def install_in_target(ctx: ExecutionContext) -> StepResult:
            result = self._platform.install_package(_require_version_id(scope), ctx.target.username)
            if isinstance(result, Err):
                return _failed(result.error)
            return Ok(None)

        def delete_review_environment(ctx: ExecutionContext) -> StepResult:
            env = _require_environment(scope)
            destroyed = self._provisioner.destroy(env)
            if isinstance(destroyed, Err):
                return destroyed
            scope.environment = destroyed.value
            return Ok(None)

        return Stage(
            name=APP_DEPLOY,
            trigger="manual",
            steps=(
                Step("read handoff artifacts", _opens(scope, read_handoff)),
                Step("authenticate dev hub", lambda ctx: self._authenticate(ctx.devhub)),
                Step("authenticate target", lambda ctx: self._authenticate(ctx.target)),
                Step("promote package version", promote),
                Step("install package in target", install_in_target),
                Step("delete review environment", delete_review_environment),
            ),
        )


def _require_environment(scope: _Scope) -> Environment:
    if scope.environment is None:
        raise RuntimeError("step needs an environment created earlier in the stage")
    return scope.environment


def _require_version_id(scope: _Scope) -> str:
    if scope.version_id is None:
        raise RuntimeError("step needs the package version id read earlier in the stage")
    return scope.version_id
