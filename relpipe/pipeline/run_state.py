from __future__ import annotations

import json
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path
from typing import cast
from uuid import uuid4

from relpipe.core.result import Err, Ok, Result
from relpipe.core.structured import as_str_dict, get_int, get_list, get_str
from relpipe.platform.files import atomic_write_json
from relpipe.pipeline.errors import RunStateError
from relpipe.pipeline.model import (
    PipelineRun,
    RunStatus,
    Stage,
    StageRecord,
    StageStatus,
    TriggerMode,
)

RUN_SCHEMA = 1

_RUN_STATUSES: frozenset[str] = frozenset(
    {"running", "succeeded", "failed", "awaiting_approval", "cancelled"}
)
_STAGE_STATUSES: frozenset[str] = frozenset({"pending", "running", "succeeded", "failed"})
_TRIGGERS: frozenset[str] = frozenset({"automatic", "manual"})


def new_run_id() -> str:
    return f"run-{uuid4().hex[:12]}"


def new_run(
    stages: tuple[Stage, ...] | list[Stage], *, run_id: str | None = None
) -> PipelineRun:
    return PipelineRun(
        run_id=run_id or new_run_id(),
        created_at=datetime.now(tz=UTC).isoformat(),
        status="running",
        stages=tuple(StageRecord(name=s.name, trigger=s.trigger) for s in stages),
    )


def _record_to_dict(record: StageRecord) -> dict[str, object]:
    return {
        "name": record.name,
        "trigger": record.trigger,
        "status": record.status,
        "failed_step_index": record.failed_step_index,
        "error_message": record.error_message,
        "error_hint": record.error_hint,
    }


def run_to_dict(run: PipelineRun) -> dict[str, object]:
    return {
        "schema": RUN_SCHEMA,
        "run_id": run.run_id,
        "created_at": run.created_at,
        "status": run.status,
        "next_stage_index": run.next_stage_index,
        "awaiting_since": run.awaiting_since,
        "stages": [_record_to_dict(s) for s in run.stages],
        "leaked_environments": list(run.leaked_environments),
    }


def _parse_record(obj: object) -> StageRecord | None:
    data = as_str_dict(obj)
    if data is None:
        return None
    name = get_str(data, "name")
    trigger = get_str(data, "trigger")
    status = get_str(data, "status")
    if name is None or trigger not in _TRIGGERS or status not in _STAGE_STATUSES:
        return None
    return StageRecord(
        name=name,
        trigger=cast(TriggerMode, trigger),
        status=cast(StageStatus, status),
        failed_step_index=get_int(data, "failed_step_index"),
        error_message=get_str(data, "error_message"),
        error_hint=get_str(data, "error_hint"),
    )


def run_from_dict(data: dict[str, object]) -> Result[PipelineRun, RunStateError]:
    schema = get_int(data, "schema")
    if schema != RUN_SCHEMA:
        return Err(RunStateError(detail=f"unsupported run schema: {schema}"))

    run_id = get_str(data, "run_id")
    created_at = get_str(data, "created_at")
    status = get_str(data, "status")
    if run_id is None or created_at is None or status not in _RUN_STATUSES:
        return Err(RunStateError(detail="run record is missing run_id, created_at or status"))

    stages_obj = get_list(data, "stages")
    if stages_obj is None:
        return Err(RunStateError(detail="run record has no stages"))

    records: list[StageRecord] = []
    for item in stages_obj:
        record = _parse_record(item)
        if record is None:
            return Err(RunStateError(detail=f"invalid stage record: {item!r}"))
        records.append(record)

    next_index = get_int(data, "next_stage_index") or 0
    if not 0 <= next_index <= len(records):
        return Err(RunStateError(detail=f"next_stage_index out of range: {next_index}"))

    return Ok(
        PipelineRun(
            run_id=run_id,
            created_at=created_at,
            status=cast(RunStatus, status),
            stages=tuple(records),
            next_stage_index=next_index,
            awaiting_since=get_str(data, "awaiting_since"),
            leaked_environments=tuple(
                u for u in get_list(data, "leaked_environments") or [] if isinstance(u, str)
            ),
        )
    )


class RunStore:
    """Keeps the active run in ``run.json`` and moves terminal runs to the archive."""

    def __init__(self, *, run_path: Path, archive_dir: Path) -> None:
        self._run_path = run_path
        self._archive_dir = archive_dir

    def save(self, run: PipelineRun) -> Result[PipelineRun, RunStateError]:
        try:
            atomic_write_json(self._run_path, run_to_dict(run))
        except OSError as e:
            return Err(RunStateError(detail=f"failed to write run state: {e}", hint=str(self._run_path)))
        return Ok(run)

    def load(self) -> Result[PipelineRun | None, RunStateError]:
        """Load the active run, or None when there is none."""
        return self._read(self._run_path)

    def load_last(self) -> Result[PipelineRun | None, RunStateError]:
        """Load the active run, falling back to the most recently archived one."""
        active = self.load()
        if isinstance(active, Err) or active.value is not None:
            return active

        if not self._archive_dir.is_dir():
            return Ok(None)
        archived = sorted(self._archive_dir.glob("*.json"), key=lambda p: p.stat().st_mtime)
        if not archived:
            return Ok(None)
        return self._read(archived[-1])

    def archive(self, run: PipelineRun) -> Result[Path, RunStateError]:
        """Move a terminal run out of the active slot."""
        if not run.is_terminal:
            return Err(RunStateError(detail=f"cannot archive a {run.status} run: {run.run_id}"))

        dest = self._archive_dir / f"{run.run_id}.json"
        try:
            atomic_write_json(dest, run_to_dict(run))
            self._run_path.unlink(missing_ok=True)
        except OSError as e:
            return Err(RunStateError(detail=f"failed to archive run: {e}", hint=str(dest)))
        return Ok(dest)

    def _read(self, path: Path) -> Result[PipelineRun | None, RunStateError]:
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return Ok(None)
        except OSError as e:
            return Err(RunStateError(detail=f"failed to read run state: {e}", hint=str(path)))

        try:
            obj: object = json.loads(text)
        except json.JSONDecodeError as e:
            return Err(RunStateError(detail=f"invalid JSON in run state: {e}", hint=str(path)))

        data = as_str_dict(obj)
        if data is None:
            return Err(RunStateError(detail="run state root must be a JSON object", hint=str(path)))

        parsed = run_from_dict(data)
        if isinstance(parsed, Err):
            return Err(replace(parsed.error, hint=str(path)))
        return Ok(parsed.value)
