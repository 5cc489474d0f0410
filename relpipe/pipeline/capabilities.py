# SPDX-License-Identifier: MIT
"""External platform capability consumed by the pipeline.

The pipeline never talks to the vendor CLI directly; stages call a
``ReleasePlatform``. ``relpipe.pipeline.sfdx.SfdxPlatform`` is the production
implementation, tests pass fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Literal, Protocol

from relpipe.core.result import Result
from relpipe.pipeline.model import Credentials
from relpipe.pipeline.version import VersionNumber, VersionRecord

EnvironmentStatus = Literal["pending", "ready", "failed", "missing"]


@dataclass(frozen=True, slots=True)
class PlatformFailure:
    """A failed platform call.

    Attributes:
        operation: Short name of the call (e.g. "create_environment").
        detail: Error text captured from the platform.
        timed_out: The call gave up waiting rather than failing outright.
        not_found: The addressed environment or version does not exist.
    """

    operation: str
    detail: str
    timed_out: bool = False
    not_found: bool = False


@dataclass(frozen=True, slots=True)
class TestReport:
    passed: bool
    coverage: str | None = None
    summary: str | None = None


@dataclass(frozen=True, slots=True)
class ReviewLogin:
    """How a reviewer signs in to an environment kept for manual QA."""

    username: str
    instance_url: str | None = None
    password: str | None = None


class ReleasePlatform(Protocol):
    """Protocol for the environment and packaging platform."""

    def authenticate(self, credentials: Credentials) -> Result[None, PlatformFailure]: ...

    def create_environment(
        self, definition: Path, ttl: timedelta, wait: timedelta
    ) -> Result[str, PlatformFailure]:
        """Request a new environment.

        Returns:
            Ok with the environment username (its handle).
        """
        ...

    def environment_status(self, handle: str) -> Result[EnvironmentStatus, PlatformFailure]: ...

    def destroy_environment(self, handle: str) -> Result[None, PlatformFailure]: ...

    def push_source(self, handle: str) -> Result[None, PlatformFailure]: ...

    def reset_password(self, handle: str) -> Result[None, PlatformFailure]:
        """Generate a password for the environment's admin user."""
        ...

    def display_user(self, handle: str) -> Result[ReviewLogin, PlatformFailure]: ...

    def apply_fixtures(
        self, handle: str, permission_set: str, data_plan: Path
    ) -> Result[None, PlatformFailure]: ...

    def run_tests(self, handle: str) -> Result[TestReport, PlatformFailure]: ...

    def list_released_versions(
        self, package_name: str
    ) -> Result[list[VersionRecord], PlatformFailure]:
        """List released versions as records with major/minor/patch/build/is_released keys."""
        ...

    def create_package_version(
        self, package_name: str, version: VersionNumber
    ) -> Result[str, PlatformFailure]:
        """Create a package version and return its installable id."""
        ...

    def install_package(self, version_id: str, handle: str) -> Result[None, PlatformFailure]: ...

    def promote_package_version(self, version_id: str) -> Result[None, PlatformFailure]: ...
