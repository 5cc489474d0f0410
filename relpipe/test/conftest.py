from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

import pytest

from relpipe.core.result import Err, Ok, Result
from relpipe.output.console import MockConsole
from relpipe.pipeline.capabilities import (
    EnvironmentStatus,
    PlatformFailure,
    ReviewLogin,
    TestReport,
)
from relpipe.pipeline.model import Credentials, ExecutionContext
from relpipe.pipeline.version import VersionNumber, VersionRecord


def _no_calls() -> list[tuple[str, ...]]:
    return []


@dataclass
class FakePlatform:
    """In-memory ReleasePlatform that records every call."""

    statuses: list[EnvironmentStatus] = field(default_factory=lambda: ["ready"])
    released: list[VersionRecord] = field(default_factory=list)
    failures: dict[str, PlatformFailure] = field(default_factory=dict)
    report: TestReport = field(default_factory=lambda: TestReport(passed=True, coverage="87%"))
    version_id: str = "04t000000000001"
    password: str = "Sup3r-s3cret"
    calls: list[tuple[str, ...]] = field(default_factory=_no_calls)
    created: list[str] = field(default_factory=list)
    deleted: set[str] = field(default_factory=set)

    def fail(self, operation: str, detail: str = "boom", **kwargs: bool) -> None:
        self.failures[operation] = PlatformFailure(operation=operation, detail=detail, **kwargs)

    def _failure(self, operation: str) -> Err[PlatformFailure] | None:
        failure = self.failures.get(operation)
        return Err(failure) if failure is not None else None

    def ops(self) -> list[str]:
        return [c[0] for c in self.calls]

    def authenticate(self, credentials: Credentials) -> Result[None, PlatformFailure]:
        self.calls.append(("authenticate", credentials.username))
        return self._failure("authenticate") or Ok(None)

    def create_environment(
        self, definition: Path, ttl: timedelta, wait: timedelta
    ) -> Result[str, PlatformFailure]:
        self.calls.append(("create_environment", str(definition)))
        failed = self._failure("create_environment")
        if failed is not None:
            return failed
        username = f"test-{len(self.created) + 1}@example.com"
        self.created.append(username)
        return Ok(username)

    def environment_status(self, handle: str) -> Result[EnvironmentStatus, PlatformFailure]:
        self.calls.append(("environment_status", handle))
        failed = self._failure("environment_status")
        if failed is not None:
            return failed
        if len(self.statuses) > 1:
            return Ok(self.statuses.pop(0))
        return Ok(self.statuses[0])

    def destroy_environment(self, handle: str) -> Result[None, PlatformFailure]:
        self.calls.append(("destroy_environment", handle))
        failed = self._failure("destroy_environment")
        if failed is not None:
            return failed
        if handle in self.deleted:
            return Err(
                PlatformFailure(
                    operation="destroy_environment",
                    detail="ENTITY_IS_DELETED: entity is deleted",
                    not_found=True,
                )
            )
        self.deleted.add(handle)
        return Ok(None)

    def push_source(self, handle: str) -> Result[None, PlatformFailure]:
        self.calls.append(("push_source", handle))
        return self._failure("push_source") or Ok(None)

    def reset_password(self, handle: str) -> Result[None, PlatformFailure]:
        self.calls.append(("reset_password", handle))
        return self._failure("reset_password") or Ok(None)

    def display_user(self, handle: str) -> Result[ReviewLogin, PlatformFailure]:
        self.calls.append(("display_user", handle))
        failed = self._failure("display_user")
        if failed is not None:
            return failed
        return Ok(
            ReviewLogin(
                username=handle, instance_url="https://review.example.com", password=self.password
            )
        )

    def apply_fixtures(
        self, handle: str, permission_set: str, data_plan: Path
    ) -> Result[None, PlatformFailure]:
        self.calls.append(("apply_fixtures", handle, permission_set))
        return self._failure("apply_fixtures") or Ok(None)

    def run_tests(self, handle: str) -> Result[TestReport, PlatformFailure]:
        self.calls.append(("run_tests", handle))
        return self._failure("run_tests") or Ok(self.report)

    def list_released_versions(
        self, package_name: str
    ) -> Result[list[VersionRecord], PlatformFailure]:
        self.calls.append(("list_released_versions", package_name))
        return self._failure("list_released_versions") or Ok(list(self.released))

    def create_package_version(
        self, package_name: str, version: VersionNumber
    ) -> Result[str, PlatformFailure]:
        self.calls.append(("create_package_version", package_name, str(version)))
        return self._failure("create_package_version") or Ok(self.version_id)

    def install_package(self, version_id: str, handle: str) -> Result[None, PlatformFailure]:
        self.calls.append(("install_package", version_id, handle))
        return self._failure("install_package") or Ok(None)

    def promote_package_version(self, version_id: str) -> Result[None, PlatformFailure]:
        self.calls.append(("promote_package_version", version_id))
        return self._failure("promote_package_version") or Ok(None)


@pytest.fixture
def console() -> MockConsole:
    return MockConsole()


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def context(tmp_path: Path) -> ExecutionContext:
    key = tmp_path / "assets" / "server.key"
    return ExecutionContext(
        workspace_root=tmp_path,
        package_name="DreamHouse",
        devhub=Credentials(username="hub@example.com", client_id="cid", key_file=key),
        target=Credentials(username="uat@example.com", client_id="cid", key_file=key),
        definition_file=tmp_path / "config" / "project-scratch-def.json",
        permission_set="DreamHouse",
        data_plan=tmp_path / "data" / "sample-data-plan.json",
        environment_ttl_days=7,
        environment_wait_minutes=10,
    )
