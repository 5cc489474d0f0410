"""Typed configuration loading and access.

This module provides dataclasses for the relpipe.toml structure, plus the
CI environment variable overrides (PACKAGE_NAME, SF_USERNAME,
SF_CONSUMER_KEY) the pipeline has always honored.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path

from .result import Err, Ok, Result
from .structured import StrDict, as_str_dict, get_bool, get_int, get_str, get_table

__all__ = [
    "Config",
    "ConfigError",
    "PackageConfig",
    "EnvironmentConfig",
    "OrgConfig",
    "ApprovalConfig",
    "apply_env_overrides",
    "load_config",
    # Defaults
    "DEFAULT_DURATION_DAYS",
    "DEFAULT_WAIT_MINUTES",
    "DEFAULT_POLL_SECONDS",
    "DEFAULT_KEY_PASSWORD_ENV",
]

# -----------------------------------------------------------------------------
# Defaults
# -----------------------------------------------------------------------------

DEFAULT_DURATION_DAYS = 7
DEFAULT_WAIT_MINUTES = 10
DEFAULT_POLL_SECONDS = 15
DEFAULT_DEFINITION_FILE = "config/project-scratch-def.json"
DEFAULT_DATA_PLAN = "data/sample-data-plan.json"
DEFAULT_KEY_FILE = "assets/server.key"
DEFAULT_ENCRYPTED_KEY_FILE = "assets/server.key.enc"
DEFAULT_KEY_PASSWORD_ENV = "SERVER_KEY_PASSWORD"


@dataclass(frozen=True, slots=True)
class ConfigError:
    """Error when config cannot be loaded or parsed."""

    message: str
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class PackageConfig:
    """The package being released and the fixtures used to test it."""

    name: str = ""
    definition_file: str = DEFAULT_DEFINITION_FILE
    permission_set: str = ""
    data_plan: str = DEFAULT_DATA_PLAN


@dataclass(frozen=True, slots=True)
class EnvironmentConfig:
    """Scratch environment lifetime and readiness wait."""

    duration_days: int = DEFAULT_DURATION_DAYS
    wait_minutes: int = DEFAULT_WAIT_MINUTES
    poll_seconds: int = DEFAULT_POLL_SECONDS
    # Print the review environment password in the run output.
    show_password: bool = False


@dataclass(frozen=True, slots=True)
class OrgConfig:
    """An org the pipeline authenticates against (dev hub or promotion target).

    The key file is produced by decrypting ``encrypted_key_file`` with the
    password found in the ``key_password_env`` environment variable.
    """

    username: str = ""
    client_id: str = ""
    key_file: str = DEFAULT_KEY_FILE
    encrypted_key_file: str = DEFAULT_ENCRYPTED_KEY_FILE
    key_password_env: str = DEFAULT_KEY_PASSWORD_ENV


@dataclass(frozen=True, slots=True)
class ApprovalConfig:
    # None: an approval may arrive at any time.
    timeout_hours: int | None = None


@dataclass(frozen=True, slots=True)
class Config:
    """Main configuration container."""

    package: PackageConfig = field(default_factory=PackageConfig)
    environment: EnvironmentConfig = field(default_factory=EnvironmentConfig)
    devhub: OrgConfig = field(default_factory=OrgConfig)
    target: OrgConfig = field(default_factory=OrgConfig)
    approval: ApprovalConfig = field(default_factory=ApprovalConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Config:
        """Create Config from a mapping (parsed TOML)."""
        package: StrDict = get_table(data, "package") or {}
        environment: StrDict = get_table(data, "environment") or {}
        devhub: StrDict = get_table(data, "devhub") or {}
        target: StrDict = get_table(data, "target") or {}
        approval: StrDict = get_table(data, "approval") or {}

        devhub_config = _org_from_table(devhub, fallback=OrgConfig())
        return cls(
            package=PackageConfig(
                name=get_str(package, "name") or "",
                definition_file=get_str(package, "definition_file") or DEFAULT_DEFINITION_FILE,
                permission_set=get_str(package, "permission_set") or "",
                data_plan=get_str(package, "data_plan") or DEFAULT_DATA_PLAN,
            ),
            environment=EnvironmentConfig(
                duration_days=_positive(environment, "duration_days", DEFAULT_DURATION_DAYS),
                wait_minutes=_positive(environment, "wait_minutes", DEFAULT_WAIT_MINUTES),
                poll_seconds=_positive(environment, "poll_seconds", DEFAULT_POLL_SECONDS),
                show_password=get_bool(environment, "show_password") is True,
            ),
            devhub=devhub_config,
            # The target shares the dev hub's connected app and key unless overridden.
            target=_org_from_table(target, fallback=devhub_config),
            approval=ApprovalConfig(timeout_hours=get_int(approval, "timeout_hours")),
        )

    def validate(self) -> Result[Config, ConfigError]:
        """Check the fields a pipeline run cannot do without."""
        missing: list[str] = []
        if not self.package.name:
            missing.append("package.name")
        if not self.devhub.username:
            missing.append("devhub.username")
        if not self.devhub.client_id:
            missing.append("devhub.client_id")
        if not self.target.username:
            missing.append("target.username")
        if missing:
            return Err(ConfigError(f"Missing required config: {', '.join(missing)}"))
        if self.approval.timeout_hours is not None and self.approval.timeout_hours <= 0:
            return Err(ConfigError("approval.timeout_hours must be positive"))
        return Ok(self)


def _positive(table: Mapping[str, object], key: str, default: int) -> int:
    value = get_int(table, key)
    if value is None:
        return default
    if value <= 0:
        raise ValueError(f"{key} must be positive, got {value}")
    return value


def _org_from_table(table: Mapping[str, object], *, fallback: OrgConfig) -> OrgConfig:
    return OrgConfig(
        username=get_str(table, "username") or "",
        client_id=get_str(table, "client_id") or fallback.client_id,
        key_file=get_str(table, "key_file") or fallback.key_file,
        encrypted_key_file=get_str(table, "encrypted_key_file") or fallback.encrypted_key_file,
        key_password_env=get_str(table, "key_password_env") or fallback.key_password_env,
    )


def apply_env_overrides(config: Config, env: Mapping[str, str]) -> Config:
    """Overlay the CI variables on top of the file configuration.

    PACKAGE_NAME sets the package, SF_USERNAME and SF_CONSUMER_KEY set the
    dev hub login. Empty values are ignored.
    """
    package_name = env.get("PACKAGE_NAME", "").strip()
    username = env.get("SF_USERNAME", "").strip()
    client_id = env.get("SF_CONSUMER_KEY", "").strip()

    out = config
    if package_name:
        out = replace(out, package=replace(out.package, name=package_name))
    if username or client_id:
        devhub = replace(
            out.devhub,
            username=username or out.devhub.username,
            client_id=client_id or out.devhub.client_id,
        )
        target = out.target
        if client_id and target.client_id == out.devhub.client_id:
            # Inherited from the dev hub, so it follows the override.
            target = replace(target, client_id=client_id)
        out = replace(out, devhub=devhub, target=target)
    return out


def _parse_toml(path: Path) -> Result[StrDict, ConfigError]:
    """Parse a TOML file, handling read and parse errors."""
    import tomllib

    try:
        content = path.read_bytes()
        data_obj: object = tomllib.loads(content.decode("utf-8"))
        data = as_str_dict(data_obj)
        if data is None:
            return Err(ConfigError("Config root must be a TOML table", path=path))
        return Ok(data)
    except FileNotFoundError:
        return Err(ConfigError(f"Config file not found: {path}", path=path))
    except PermissionError:
        return Err(ConfigError(f"Permission denied reading: {path}", path=path))
    except tomllib.TOMLDecodeError as e:
        return Err(ConfigError(f"Invalid TOML syntax: {e}", path=path))
    except UnicodeDecodeError as e:
        return Err(ConfigError(f"Error reading config: {e}", path=path))


def load_config(path: Path) -> Result[Config, ConfigError]:
    """Load and parse configuration from a TOML file.

    Args:
        path: Path to relpipe.toml

    Returns:
        Ok(Config) on success, Err(ConfigError) on failure
    """
    result = _parse_toml(path)
    if isinstance(result, Err):
        return result

    try:
        config = Config.from_dict(result.value)
        return Ok(config)
    except (KeyError, TypeError, ValueError) as e:
        return Err(ConfigError(f"Invalid config structure: {e}", path=path))
