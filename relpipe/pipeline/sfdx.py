# SPDX-License-Identifier: MIT
"""Salesforce DX CLI implementation of ``ReleasePlatform``.

Every command runs with ``--json`` and names its org explicitly
(``--targetusername`` / ``--targetdevhubusername``); nothing relies on the
CLI's global default org.
"""

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path
from time import sleep

from relpipe.core.result import Err, Ok, Result
from relpipe.core.structured import as_obj_list, as_str_dict, get_bool, get_int, get_str, get_table
from relpipe.platform.process import ProcessError
from relpipe.platform.process import run as run_process
from relpipe.pipeline.capabilities import (
    EnvironmentStatus,
    PlatformFailure,
    ReviewLogin,
    TestReport,
)
from relpipe.pipeline.model import Credentials
from relpipe.pipeline.timeouts import (
    INSTALL_WAIT_MINUTES,
    PACKAGE_VERSION_WAIT_MINUTES,
    PLATFORM_READ_RETRY_ATTEMPTS,
    PLATFORM_READ_RETRY_DELAY_SECONDS,
    PLATFORM_TIMEOUT_SECONDS,
    TEST_RUN_WAIT_MINUTES,
    wait_timeout_seconds,
)
from relpipe.pipeline.version import VersionNumber, VersionRecord

_TRANSIENT_MARKERS = (
    "timed out",
    "econnreset",
    "etimedout",
    "socket hang up",
    "connection reset",
    "service unavailable",
    "server_unavailable",
    "request_limit_exceeded",
    "unable_to_lock_row",
)

_NOT_FOUND_MARKERS = (
    "no matching record",
    "no record found",
    "invalid_cross_reference_key",
    "entity is deleted",
)

_TIMEOUT_MARKERS = (
    "timed out",
    "timeout",
    "pollingclienttimeout",
)

_ORG_STATUS: dict[str, EnvironmentStatus] = {
    "active": "ready",
    "creating": "pending",
    "new": "pending",
    "error": "failed",
    "deleted": "missing",
    "expired": "missing",
}


def _error_text(error: ProcessError) -> str:
    """Best human-readable error: the JSON ``message`` sfdx prints on stdout, else stderr."""
    data = _parse_json(error.stdout)
    if data is not None:
        name = get_str(data, "name")
        message = get_str(data, "message")
        if message:
            return f"{name}: {message}" if name else message
    return error.stderr.strip() or error.stdout.strip() or str(error)


def _parse_json(text: str) -> dict[str, object] | None:
    try:
        obj: object = json.loads(text)
    except json.JSONDecodeError:
        return None
    return as_str_dict(obj)


def _matches(text: str, markers: tuple[str, ...]) -> bool:
    low = text.lower()
    return any(marker in low for marker in markers)


def _is_transient(error: ProcessError) -> bool:
    if error.timed_out:
        return True
    return _matches(_error_text(error), _TRANSIENT_MARKERS)


class SfdxPlatform:
    def __init__(
        self,
        *,
        workspace_root: Path,
        devhub_username: str,
        executable: str = "sfdx",
    ) -> None:
        self._root = workspace_root
        self._devhub = devhub_username
        self._exe = executable

    def _call(
        self,
        operation: str,
        args: list[str],
        *,
        timeout: float = PLATFORM_TIMEOUT_SECONDS,
        retry: bool = False,
    ) -> Result[object, PlatformFailure]:
        """Run one sfdx command and return the ``result`` member of its JSON output."""
        cmd = [self._exe, *args, "--json"]
        attempts = PLATFORM_READ_RETRY_ATTEMPTS if retry else 1

        for attempt in range(attempts):
            result = run_process(cmd, cwd=self._root, timeout=timeout)
            if isinstance(result, Ok):
                data = _parse_json(result.value)
                if data is None:
                    return Err(PlatformFailure(operation=operation, detail="sfdx returned invalid JSON"))
                return Ok(data.get("result"))

            error = result.error
            if attempt < attempts - 1 and _is_transient(error):
                sleep(PLATFORM_READ_RETRY_DELAY_SECONDS * (attempt + 1))
                continue

            text = _error_text(error)
            return Err(
                PlatformFailure(
                    operation=operation,
                    detail=text,
                    timed_out=error.timed_out or _matches(text, _TIMEOUT_MARKERS),
                    not_found=_matches(text, _NOT_FOUND_MARKERS),
                )
            )

        return Err(PlatformFailure(operation=operation, detail="no attempt made"))

    def authenticate(self, credentials: Credentials) -> Result[None, PlatformFailure]:
        result = self._call(
            "authenticate",
            [
                "force:auth:jwt:grant",
                "--clientid",
                credentials.client_id,
                "--jwtkeyfile",
                str(credentials.key_file),
                "--username",
                credentials.username,
            ],
        )
        if isinstance(result, Err):
            return result
        return Ok(None)

    def create_environment(
        self, definition: Path, ttl: timedelta, wait: timedelta
    ) -> Result[str, PlatformFailure]:
        wait_minutes = max(1, int(wait.total_seconds() // 60))
        result = self._call(
            "create_environment",
            [
                "force:org:create",
                "--definitionfile",
                str(definition),
                "--durationdays",
                str(max(1, ttl.days)),
                "--wait",
                str(wait_minutes),
                "--targetdevhubusername",
                self._devhub,
            ],
            timeout=wait_timeout_seconds(wait_minutes),
        )
        if isinstance(result, Err):
            return result

        data = as_str_dict(result.value)
        username = get_str(data, "username") if data is not None else None
        if username is None:
            return Err(
                PlatformFailure(operation="create_environment", detail="no username in org:create result")
            )
        return Ok(username)

    def environment_status(self, handle: str) -> Result[EnvironmentStatus, PlatformFailure]:
        result = self._call(
            "environment_status",
            ["force:org:display", "--targetusername", handle],
            retry=True,
        )
        if isinstance(result, Err):
            if result.error.not_found:
                return Ok("missing")
            return result

        data = as_str_dict(result.value) or {}
        status = (get_str(data, "status") or get_str(data, "connectedStatus") or "").lower()
        if status == "connected":
            return Ok("ready")
        return Ok(_ORG_STATUS.get(status, "pending"))

    def destroy_environment(self, handle: str) -> Result[None, PlatformFailure]:
        # Deleted on the dev hub by signup username; no auth for the environment is needed.
        result = self._call(
            "destroy_environment",
            [
                "force:data:record:delete",
                "--sobjecttype",
                "ScratchOrgInfo",
                "--where",
                f"SignupUsername='{handle}'",
                "--targetusername",
                self._devhub,
            ],
        )
        if isinstance(result, Err):
            return result
        return Ok(None)

    def push_source(self, handle: str) -> Result[None, PlatformFailure]:
        result = self._call(
            "push_source",
            ["force:source:push", "--targetusername", handle],
            timeout=wait_timeout_seconds(INSTALL_WAIT_MINUTES),
        )
        if isinstance(result, Err):
            return result
        return Ok(None)

    def reset_password(self, handle: str) -> Result[None, PlatformFailure]:
        result = self._call(
            "reset_password",
            ["force:user:password:generate", "--targetusername", handle],
        )
        if isinstance(result, Err):
            return result
        return Ok(None)

    def display_user(self, handle: str) -> Result[ReviewLogin, PlatformFailure]:
        result = self._call(
            "display_user",
            ["force:user:display", "--targetusername", handle],
            retry=True,
        )
        if isinstance(result, Err):
            return result

        data = as_str_dict(result.value) or {}
        return Ok(
            ReviewLogin(
                username=get_str(data, "username") or handle,
                instance_url=get_str(data, "instanceUrl"),
                password=get_str(data, "password"),
            )
        )

    def apply_fixtures(
        self, handle: str, permission_set: str, data_plan: Path
    ) -> Result[None, PlatformFailure]:
        if permission_set:
            assigned = self._call(
                "assign_permission_set",
                [
                    "force:user:permset:assign",
                    "--permsetname",
                    permission_set,
                    "--targetusername",
                    handle,
                ],
            )
            if isinstance(assigned, Err):
                return assigned

        imported = self._call(
            "import_sample_data",
            ["force:data:tree:import", "--plan", str(data_plan), "--targetusername", handle],
        )
        if isinstance(imported, Err):
            return imported
        return Ok(None)

    def run_tests(self, handle: str) -> Result[TestReport, PlatformFailure]:
        cmd = [
            self._exe,
            "force:apex:test:run",
            "--wait",
            str(TEST_RUN_WAIT_MINUTES),
            "--resultformat",
            "json",
            "--codecoverage",
            "--testlevel",
            "RunLocalTests",
            "--targetusername",
            handle,
            "--json",
        ]
        result = run_process(
            cmd, cwd=self._root, timeout=wait_timeout_seconds(TEST_RUN_WAIT_MINUTES)
        )
        # Failing tests exit non-zero but still print the full JSON report.
        stdout = result.value if isinstance(result, Ok) else result.error.stdout
        data = _parse_json(stdout)
        report = as_str_dict(data.get("result")) if data is not None else None
        summary = get_table(report, "summary") if report is not None else None
        if summary is None:
            if isinstance(result, Err):
                e = result.error
                return Err(
                    PlatformFailure(operation="run_tests", detail=_error_text(e), timed_out=e.timed_out)
                )
            return Err(PlatformFailure(operation="run_tests", detail="no test summary in result"))

        outcome = get_str(summary, "outcome") or ""
        failing = get_int(summary, "failing")
        return Ok(
            TestReport(
                passed=outcome.lower() == "passed" and not failing,
                coverage=get_str(summary, "testRunCoverage"),
                summary=f"{outcome} ({get_int(summary, 'passing') or 0} passing, {failing or 0} failing)",
            )
        )

    def list_released_versions(
        self, package_name: str
    ) -> Result[list[VersionRecord], PlatformFailure]:
        result = self._call(
            "list_released_versions",
            [
                "force:package:version:list",
                "--concise",
                "--released",
                "--packages",
                package_name,
                "--targetdevhubusername",
                self._devhub,
            ],
            retry=True,
        )
        if isinstance(result, Err):
            return result

        rows = as_obj_list(result.value)
        if rows is None:
            return Ok([])

        records: list[VersionRecord] = []
        for row_obj in rows:
            row = as_str_dict(row_obj)
            if row is None:
                continue
            records.append(
                {
                    "major": row.get("MajorVersion"),
                    "minor": row.get("MinorVersion"),
                    "patch": row.get("PatchVersion"),
                    "build": row.get("BuildNumber"),
                    "is_released": get_bool(row, "IsReleased") is True,
                }
            )
        return Ok(records)

    def create_package_version(
        self, package_name: str, version: VersionNumber
    ) -> Result[str, PlatformFailure]:
        result = self._call(
            "create_package_version",
            [
                "force:package:version:create",
                "--package",
                package_name,
                "--versionnumber",
                str(version),
                "--installationkeybypass",
                "--wait",
                str(PACKAGE_VERSION_WAIT_MINUTES),
                "--targetdevhubusername",
                self._devhub,
            ],
            timeout=wait_timeout_seconds(PACKAGE_VERSION_WAIT_MINUTES),
        )
        if isinstance(result, Err):
            return result

        data = as_str_dict(result.value)
        version_id = get_str(data, "SubscriberPackageVersionId") if data is not None else None
        if version_id is None:
            return Err(
                PlatformFailure(
                    operation="create_package_version",
                    detail="no SubscriberPackageVersionId in result",
                )
            )
        return Ok(version_id)

    def install_package(self, version_id: str, handle: str) -> Result[None, PlatformFailure]:
        result = self._call(
            "install_package",
            [
                "force:package:install",
                "--package",
                version_id,
                "--wait",
                str(INSTALL_WAIT_MINUTES),
                "--publishwait",
                str(INSTALL_WAIT_MINUTES),
                "--noprompt",
                "--targetusername",
                handle,
            ],
            timeout=wait_timeout_seconds(2 * INSTALL_WAIT_MINUTES),
        )
        if isinstance(result, Err):
            return result
        return Ok(None)

    def promote_package_version(self, version_id: str) -> Result[None, PlatformFailure]:
        result = self._call(
            "promote_package_version",
            [
                "force:package:version:promote",
                "--package",
                version_id,
                "--noprompt",
                "--targetdevhubusername",
                self._devhub,
            ],
        )
        if isinstance(result, Err):
            return result
        return Ok(None)
