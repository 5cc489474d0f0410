"""Ephemeral environment lifecycle: create, populate, destroy.

Environments are identified by their username. That identity is what gets
handed to a later stage (through an artifact), never a live object, so
``resolve`` can rebuild an Environment in another process for teardown.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime, timedelta
from pathlib import Path
from time import monotonic, sleep

from relpipe.core.result import Err, Ok, Result
from relpipe.output.console import ConsoleProtocol, Style
from relpipe.pipeline.capabilities import PlatformFailure, ReleasePlatform
from relpipe.pipeline.errors import PlatformCallFailed, ProvisionFailed, ProvisionTimeout
from relpipe.pipeline.model import Environment
from relpipe.pipeline.timeouts import ENVIRONMENT_POLL_SECONDS

ProvisionError = ProvisionTimeout | ProvisionFailed


class EnvironmentProvisioner:
    def __init__(
        self,
        *,
        platform: ReleasePlatform,
        console: ConsoleProtocol,
        poll_seconds: float = ENVIRONMENT_POLL_SECONDS,
    ) -> None:
        self._platform = platform
        self._console = console
        self._poll_seconds = poll_seconds
        self._tracked: dict[str, Environment] = {}

    def tracked(self) -> tuple[Environment, ...]:
        return tuple(self._tracked.values())

    def alive(self) -> tuple[Environment, ...]:
        return tuple(e for e in self._tracked.values() if e.alive)

    def _track(self, env: Environment) -> Environment:
        self._tracked[env.username] = env
        return env

    def create(
        self, definition: Path, ttl: timedelta, *, wait: timedelta
    ) -> Result[Environment, ProvisionError]:
        """Create an environment and wait (bounded) until it is ready.

        Blocks for as long as the platform needs, up to ``wait``. On failure a
        single best-effort destroy is attempted for anything partially created.
        """
        started = monotonic()
        deadline = started + wait.total_seconds()

        created = self._platform.create_environment(definition, ttl, wait)
        if isinstance(created, Err):
            return Err(self._creation_error(definition, created.error, waited=monotonic() - started))

        now = datetime.now(tz=UTC)
        env = self._track(
            Environment(
                username=created.value,
                definition=str(definition),
                created_at=now,
                expires_at=now + ttl,
                state="provisioning",
            )
        )
        self._console.print(f"environment {env.username}: provisioning", Style.DIM)

        while True:
            status = self._platform.environment_status(env.username)
            if isinstance(status, Err):
                self._cleanup_partial(env)
                return Err(ProvisionFailed(definition=str(definition), hint=status.error.detail))

            match status.value:
                case "ready":
                    env = self._track(replace(env, state="ready"))
                    self._console.print(
                        f"environment {env.username}: ready (expires {env.expires_at:%Y-%m-%d})",
                        Style.DIM,
                    )
                    return Ok(env)
                case "failed" | "missing":
                    self._cleanup_partial(env)
                    return Err(
                        ProvisionFailed(
                            definition=str(definition),
                            hint=f"{env.username} reported {status.value}",
                        )
                    )
                case "pending":
                    pass

            remaining = deadline - monotonic()
            if remaining <= 0:
                self._cleanup_partial(env)
                return Err(
                    ProvisionTimeout(
                        definition=str(definition),
                        waited_seconds=monotonic() - started,
                        hint=env.username,
                    )
                )
            sleep(min(self._poll_seconds, remaining))

    def _creation_error(
        self, definition: Path, failure: PlatformFailure, *, waited: float
    ) -> ProvisionError:
        if failure.timed_out:
            return ProvisionTimeout(
                definition=str(definition), waited_seconds=waited, hint=failure.detail
            )
        return ProvisionFailed(definition=str(definition), hint=failure.detail)

    def _cleanup_partial(self, env: Environment) -> None:
        result = self.destroy(env)
        if isinstance(result, Err):
            self._console.warning(
                f"could not clean up partially created environment {env.username}: "
                f"{result.error.hint or result.error.message}"
            )

    def populate(
        self, env: Environment, permission_set: str, data_plan: Path
    ) -> Result[Environment, PlatformCallFailed]:
        """Apply the baseline permission set and sample data; the environment is then in use."""
        if not env.alive:
            return Err(
                PlatformCallFailed(
                    operation="apply_fixtures", hint=f"{env.username} is already destroyed"
                )
            )

        result = self._platform.apply_fixtures(env.username, permission_set, data_plan)
        if isinstance(result, Err):
            return Err(PlatformCallFailed(operation="apply_fixtures", hint=result.error.detail))
        return Ok(self._track(replace(env, state="in_use")))

    def destroy(self, env: Environment) -> Result[Environment, PlatformCallFailed]:
        """Destroy an environment. Destroying twice, or destroying nothing, is a no-op."""
        current = self._tracked.get(env.username, env)
        if not current.username or not current.alive:
            return Ok(replace(current, state="destroyed"))

        result = self._platform.destroy_environment(current.username)
        if isinstance(result, Err) and not result.error.not_found:
            return Err(PlatformCallFailed(operation="destroy_environment", hint=result.error.detail))

        self._console.print(f"environment {current.username}: destroyed", Style.DIM)
        return Ok(self._track(replace(current, state="destroyed")))

    def resolve(self, username: str, *, ttl: timedelta | None = None) -> Environment:
        """Rebuild an environment handle from its persisted username.

        The creation time is unknown across a process boundary; the time of
        resolution is used instead.
        """
        known = self._tracked.get(username)
        if known is not None:
            return known

        now = datetime.now(tz=UTC)
        return self._track(
            Environment(
                username=username,
                definition="",
                created_at=now,
                expires_at=now + (ttl or timedelta(0)),
                state="in_use",
            )
        )
