"""Failure-mode tests for the structured logging subsystem."""
from __future__ import annotations

import json
from pathlib import Path

import pytest
import typer

from ec2efs.logging import StructuredLogger


def _records(logger: StructuredLogger) -> list[dict[str, object]]:
    lines = logger.operations_log_path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_structured_logger_disables_when_directory_unavailable(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Logger gracefully disables itself when log directory cannot be created."""
    log_dir = tmp_path / "logs"

    original_mkdir = Path.mkdir

    def fail_mkdir(self: Path, *args: object, **kwargs: object) -> None:
        if self == log_dir:
            raise PermissionError("no access")
        original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", fail_mkdir)

    logger = StructuredLogger(log_dir)
    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("synth", args={"format": "json"}) as op:
        op.success("done", changed=0)


def test_structured_logger_disables_after_write_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Write failures mark the logger disabled so subsequent writes are skipped."""
    logger = StructuredLogger(tmp_path / "logs")
    operations_path = logger._operations_log_path  # type: ignore[attr-defined]

    original_open = Path.open

    def fail_once(self: Path, *args: object, **kwargs: object) -> object:
        if self == operations_path:
            raise OSError("disk full")
        return original_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", fail_once)

    with logger.operation("plan") as op:
        op.success("done", changed=0)

    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("plan-2") as op:
        op.success("done", changed=0)


def test_operation_record_contains_steps_and_result(tmp_path: Path) -> None:
    """A completed operation is written as one JSON line."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation(
        "deploy", args={"yes": True}, target={"stack": "ec2-efs-kate"}
    ) as op:
        op.add_step("stack.NetworkResolved", detail={"vpc": "vpc-0a1b2c3d"})
        op.success("Deployed.", changed=1)

    (record,) = _records(logger)
    assert record["command"] == "deploy"
    assert record["args"] == {"yes": True}
    assert record["target"] == {"stack": "ec2-efs-kate"}
    assert record["steps"][0]["name"] == "stack.NetworkResolved"
    assert record["steps"][0]["detail"] == {"vpc": "vpc-0a1b2c3d"}
    assert record["result"] == {"status": "success", "message": "Deployed.", "rc": 0, "changed": 1}
    assert isinstance(record["duration_ms"], int)


def test_operation_without_result_defaults_to_success(tmp_path: Path) -> None:
    """Scopes that never set a result are recorded as completed."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("outputs"):
        pass

    (record,) = _records(logger)
    assert record["result"]["status"] == "success"
    assert record["result"]["message"] == "Completed."


def test_operation_records_unhandled_exception(tmp_path: Path) -> None:
    """Exceptions are recorded as errors and re-raised."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(ValueError):
        with logger.operation("synth"):
            raise ValueError("boom")

    (record,) = _records(logger)
    assert record["result"]["status"] == "error"
    assert "boom" in record["result"]["message"]


def test_operation_records_failing_exit(tmp_path: Path) -> None:
    """A non-zero typer.Exit without an explicit result is logged as an error."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(typer.Exit):
        with logger.operation("destroy"):
            raise typer.Exit(code=3)

    (record,) = _records(logger)
    assert record["result"]["status"] == "error"
    assert record["result"]["rc"] == 3


def test_explicit_error_result_is_preserved(tmp_path: Path) -> None:
    """An error set by the command is not replaced on exit."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(typer.Exit):
        with logger.operation("plan") as op:
            op.error("Network missing.", rc=3, errors=["vpc-sandpit1"])
            raise typer.Exit(code=3)

    (record,) = _records(logger)
    assert record["result"]["message"] == "Network missing."
    assert record["result"]["errors"] == ["vpc-sandpit1"]
