"""Next package version derivation.

Rules, kept exactly as the release process has always applied them:

- no released version yet: ``1.0.0.NEXT``
- a missing field falls back to its own default (major 1, minor 0, patch 0)
- the latest version is released: bump minor
- patch is carried through as-is; it is never bumped nor reset here
  (hotfix releases set it by hand)
- the build segment is always the ``NEXT`` keyword, the platform assigns
  the real build number when the version is created
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from relpipe.core.result import Err, Ok, Result
from relpipe.pipeline.errors import MalformedVersionRecord

NEXT_BUILD = "NEXT"

DEFAULT_MAJOR = 1
DEFAULT_MINOR = 0
DEFAULT_PATCH = 0

_DIGITS_RE = re.compile(r"^\d+$")

# Keys of a released version record.
MAJOR = "major"
MINOR = "minor"
PATCH = "patch"
BUILD = "build"
IS_RELEASED = "is_released"

VersionRecord = Mapping[str, object]


@dataclass(frozen=True, slots=True)
class VersionNumber:
    major: int
    minor: int
    patch: int
    build: str = NEXT_BUILD

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}.{self.build}"


def _field(
    record: VersionRecord, key: str, default: int
) -> Result[int, MalformedVersionRecord]:
    value = record.get(key)
    if value is None:
        return Ok(default)
    if isinstance(value, bool):
        return Err(MalformedVersionRecord(field=key, value=value))
    if isinstance(value, int):
        if value < 0:
            return Err(MalformedVersionRecord(field=key, value=value))
        return Ok(value)
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return Ok(default)
        if _DIGITS_RE.match(s):
            return Ok(int(s))
    return Err(MalformedVersionRecord(field=key, value=value))


def _is_released(record: VersionRecord) -> bool:
    value = record.get(IS_RELEASED)
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


def resolve_next_version(
    latest: VersionRecord | None,
) -> Result[VersionNumber, MalformedVersionRecord]:
    """Compute the version number to create from the latest released record."""
    if latest is None:
        return Ok(VersionNumber(DEFAULT_MAJOR, DEFAULT_MINOR, DEFAULT_PATCH))

    major = _field(latest, MAJOR, DEFAULT_MAJOR)
    if isinstance(major, Err):
        return major
    minor = _field(latest, MINOR, DEFAULT_MINOR)
    if isinstance(minor, Err):
        return minor
    patch = _field(latest, PATCH, DEFAULT_PATCH)
    if isinstance(patch, Err):
        return patch

    next_minor = minor.value + 1 if _is_released(latest) else minor.value
    return Ok(VersionNumber(major.value, next_minor, patch.value))


def _sort_key(record: VersionRecord) -> tuple[int, int, int, int]:
    def num(key: str) -> int:
        value = record.get(key)
        if isinstance(value, bool):
            return -1
        if isinstance(value, int):
            return value
        if isinstance(value, str) and _DIGITS_RE.match(value.strip()):
            return int(value.strip())
        return -1

    return (num(MAJOR), num(MINOR), num(PATCH), num(BUILD))


def select_latest_release(records: Sequence[VersionRecord]) -> VersionRecord | None:
    """Pick the highest released record by (major, minor, patch, build).

    Missing or non-numeric fields sort lowest. An empty listing means the
    package was never released.
    """
    if not records:
        return None
    return max(records, key=_sort_key)
