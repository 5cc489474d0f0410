from __future__ import annotations

import json
import os
from dataclasses import replace
from pathlib import Path

from relpipe.core.result import Err, Ok
from relpipe.pipeline.errors import RunStateError
from relpipe.pipeline.model import Stage, StageRecord
from relpipe.pipeline.run_state import RunStore, new_run, new_run_id, run_from_dict, run_to_dict


def _store(tmp_path: Path) -> RunStore:
    return RunStore(run_path=tmp_path / "run.json", archive_dir=tmp_path / "archive")


def _run(run_id: str = "run-abc"):
    stages = (Stage(name="a", steps=()), Stage(name="b", steps=(), trigger="manual"))
    return new_run(stages, run_id=run_id)


def test_new_run_id_shape() -> None:
    run_id = new_run_id()
    assert run_id.startswith("run-")
    assert len(run_id) == len("run-") + 12
    assert new_run_id() != run_id


def test_new_run_has_pending_stages() -> None:
    run = _run()
    assert run.status == "running"
    assert run.stage_names == ("a", "b")
    assert [s.trigger for s in run.stages] == ["automatic", "manual"]
    assert all(s.status == "pending" for s in run.stages)


def test_dict_round_trip_keeps_failure_detail() -> None:
    run = replace(
        _run(),
        status="failed",
        stages=(
            StageRecord(
                name="a",
                trigger="automatic",
                status="failed",
                failed_step_index=3,
                error_message="tests failed",
                error_hint="2 failing",
            ),
            StageRecord(name="b", trigger="manual"),
        ),
    )

    parsed = run_from_dict(json.loads(json.dumps(run_to_dict(run))))

    assert isinstance(parsed, Ok)
    assert parsed.value == run


def test_unknown_schema_is_rejected() -> None:
    data = run_to_dict(_run())
    data["schema"] = 99
    assert isinstance(run_from_dict(data), Err)


def test_unknown_status_is_rejected() -> None:
    data = run_to_dict(_run())
    data["status"] = "paused"
    assert isinstance(run_from_dict(data), Err)


def test_next_index_out_of_range_is_rejected() -> None:
    data = run_to_dict(_run())
    data["next_stage_index"] = 5
    assert isinstance(run_from_dict(data), Err)


def test_load_without_file_is_none(tmp_path: Path) -> None:
    loaded = _store(tmp_path).load()
    assert isinstance(loaded, Ok)
    assert loaded.value is None


def test_save_then_load(tmp_path: Path) -> None:
    store = _store(tmp_path)
    run = _run()
    assert isinstance(store.save(run), Ok)

    loaded = store.load()
    assert isinstance(loaded, Ok)
    assert loaded.value == run


def test_corrupt_file_is_an_error(tmp_path: Path) -> None:
    (tmp_path / "run.json").write_text("{not json", encoding="utf-8")

    loaded = _store(tmp_path).load()

    assert isinstance(loaded, Err)
    assert isinstance(loaded.error, RunStateError)
    assert loaded.error.hint == str(tmp_path / "run.json")


def test_archive_refuses_active_run(tmp_path: Path) -> None:
    assert isinstance(_store(tmp_path).archive(_run()), Err)


def test_archive_moves_run_and_load_last_finds_it(tmp_path: Path) -> None:
    store = _store(tmp_path)
    old = replace(_run("run-old"), status="succeeded")
    new = replace(_run("run-new"), status="cancelled")
    store.save(old)
    assert isinstance(store.archive(old), Ok)
    store.save(new)
    archived = store.archive(new)
    assert isinstance(archived, Ok)
    os.utime(tmp_path / "archive" / "run-old.json", (1_000_000, 1_000_000))

    assert not (tmp_path / "run.json").exists()
    active = store.load()
    assert isinstance(active, Ok) and active.value is None
    last = store.load_last()
    assert isinstance(last, Ok) and last.value is not None
    assert last.value.run_id == "run-new"


def test_load_last_prefers_active_run(tmp_path: Path) -> None:
    store = _store(tmp_path)
    done = replace(_run("run-done"), status="failed")
    store.save(done)
    store.archive(done)
    store.save(_run("run-live"))

    last = store.load_last()

    assert isinstance(last, Ok) and last.value is not None
    assert last.value.run_id == "run-live"


def test_archived_run_keeps_leaked_environments(tmp_path: Path) -> None:
    store = _store(tmp_path)
    run = replace(
        _run("run-leak"), status="cancelled", leaked_environments=("review@example.com",)
    )

    assert isinstance(store.archive(run), Ok)
    last = store.load_last()

    assert isinstance(last, Ok) and last.value is not None
    assert last.value.leaked_environments == ("review@example.com",)


def test_record_without_leaked_environments_loads() -> None:
    data = run_to_dict(_run())
    del data["leaked_environments"]

    parsed = run_from_dict(data)

    assert isinstance(parsed, Ok)
    assert parsed.value.leaked_environments == ()
