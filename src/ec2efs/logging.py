"""Structured operation logging for ec2efs.

Every CLI command runs inside :meth:`StructuredLogger.operation`. The scope
collects the steps a command performed and its final outcome, and a single
JSON line is appended to ``operations.jsonl`` when the scope closes.

Logging must never take a command down: when the log directory cannot be
created or a write fails, the logger disables itself and carries on silently.
"""
from __future__ import annotations

import json
import logging
import secrets
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

import typer

_stdlib_logger = logging.getLogger("ec2efs")


@dataclass(slots=True)
class OperationScope:
    """Mutable record for a single in-flight operation."""

    op_id: str
    command: str
    args: Mapping[str, object]
    target: Mapping[str, object] | None
    started_at: str
    steps: list[dict[str, object]] = field(default_factory=list)
    result: dict[str, object] | None = None

    def add_step(
        self,
        name: str,
        *,
        status: str = "success",
        detail: Mapping[str, object] | None = None,
    ) -> None:
        """Record a named step within the operation."""
        step: dict[str, object] = {
            "name": name,
            "status": status,
            "at": _now(),
        }
        if detail:
            step["detail"] = _jsonable(detail)
        self.steps.append(step)
        _stdlib_logger.debug("%s: %s (%s)", self.command, name, status)

    def success(
        self,
        message: str,
        *,
        changed: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self.result = {"status": "success", "message": message, "rc": 0}
        if changed is not None:
            self.result["changed"] = changed
        if context:
            self.result["context"] = _jsonable(context)

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self.result = {
            "status": "warning",
            "message": message,
            "rc": 0,
            "warnings": list(warnings or [message]),
        }
        if context:
            self.result["context"] = _jsonable(context)

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        rc: int = 1,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self.result = {
            "status": "error",
            "message": message,
            "rc": rc,
            "errors": list(errors or [message]),
        }
        if context:
            self.result["context"] = _jsonable(context)


class StructuredLogger:
    """Append operation records as JSON lines under *log_dir*."""

    def __init__(self, log_dir: Path) -> None:
        self._log_dir = Path(log_dir)
        self._operations_log_path = self._log_dir / "operations.jsonl"
        self._enabled = True
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            _stdlib_logger.warning("Structured logging disabled: %s", exc)
            self._enabled = False

    @property
    def operations_log_path(self) -> Path:
        """Return the path of the JSON lines operations log."""
        return self._operations_log_path

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and persist it on exit."""
        scope = OperationScope(
            op_id=secrets.token_hex(8),
            command=command,
            args=dict(args or {}),
            target=dict(target) if target else None,
            started_at=_now(),
        )
        started = time.monotonic()
        try:
            yield scope
        except typer.Exit as exc:
            if scope.result is None:
                code = exc.exit_code or 0
                if code:
                    scope.error("Command exited with a failure code.", rc=code)
                else:
                    scope.success("Command exited.")
            raise
        except Exception as exc:
            if scope.result is None or scope.result.get("status") != "error":
                scope.error(f"Unhandled error: {exc}", errors=[repr(exc)])
            raise
        finally:
            if scope.result is None:
                scope.success("Completed.")
            duration_ms = int((time.monotonic() - started) * 1000)
            self._write(scope, duration_ms)

    # ------------------------------------------------------------------
    def _write(self, scope: OperationScope, duration_ms: int) -> None:
        if not self._enabled:
            return
        record = {
            "op_id": scope.op_id,
            "command": scope.command,
            "args": _jsonable(scope.args),
            "target": _jsonable(scope.target) if scope.target else None,
            "started_at": scope.started_at,
            "finished_at": _now(),
            "duration_ms": duration_ms,
            "steps": scope.steps,
            "result": scope.result,
        }
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
        except OSError as exc:
            _stdlib_logger.warning("Structured logging disabled after write failure: %s", exc)
            self._enabled = False


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _jsonable(value: object) -> object:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
        return [_jsonable(item) for item in value]
    return str(value)


__all__ = ["OperationScope", "StructuredLogger"]
