"""Structured operation logging.

Every CLI command runs inside :meth:`StructuredLogger.operation`, which appends
one JSON document per invocation to ``<logs_dir>/operations.jsonl``::

    {"op_id": "...", "command": "deploy", "args": {...}, "target": {...},
     "started_at": "...", "finished_at": "...", "duration_ms": 12,
     "steps": [{"name": "unit:n8n", "status": "applied", ...}],
     "result": {"status": "success", "message": "...", ...}}

Logging must never break a command: when the directory cannot be created or a
write fails the logger disables itself and later operations become no-ops.
Human-facing diagnostics go through the standard library ``logging`` module,
configured by :func:`setup_cli_logging`.
"""
from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

OPERATIONS_LOG = "operations.jsonl"


def _iso_now() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds")


def sanitize(value: object) -> object:
    """Convert *value* into JSON-safe types (paths and unknown objects become strings)."""
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): sanitize(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [sanitize(item) for item in value]
    return str(value)


class OperationScope:
    """Collects steps and the final result for one logged operation."""

    def __init__(self, command: str) -> None:
        """Start an empty scope for *command*."""
        self.command = command
        self.op_id = uuid.uuid4().hex
        self.steps: list[dict[str, object]] = []
        self.result: dict[str, object] | None = None

    def add_step(self, name: str, *, status: str, detail: object | None = None) -> None:
        """Record an intermediate step."""
        step: dict[str, object] = {"name": name, "status": status, "at": _iso_now()}
        if detail is not None:
            step["detail"] = sanitize(detail)
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int | None = None,
        warnings: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation successful."""
        self._finish("success", message, changed=changed, warnings=warnings, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        changed: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._finish(
            "warning",
            message,
            warnings=warnings,
            errors=errors,
            changed=changed,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        warnings: Sequence[str] | None = None,
        rc: int | None = None,
        changed: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation failed; *errors* defaults to ``[message]``."""
        self._finish(
            "error",
            message,
            errors=list(errors) if errors else [message],
            warnings=warnings,
            rc=rc,
            changed=changed,
            context=context,
        )

    def _finish(
        self,
        status: str,
        message: str,
        *,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        changed: int | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {"status": status, "message": message}
        if warnings:
            result["warnings"] = list(warnings)
        if errors:
            result["errors"] = list(errors)
        if changed is not None:
            result["changed"] = changed
        if rc is not None:
            result["rc"] = rc
        if context:
            result["context"] = sanitize(context)
        self.result = result


class StructuredLogger:
    """Append JSON operation records to the operations log."""

    def __init__(self, logs_dir: Path) -> None:
        """Prepare *logs_dir*, disabling the logger if it is unusable."""
        self._logs_dir = logs_dir
        self._operations_log_path = logs_dir / OPERATIONS_LOG
        self._enabled = True
        try:
            logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False

    @property
    def operations_log_path(self) -> Path:
        """Return the path of the JSONL operations log."""
        return self._operations_log_path

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Run a block as a logged operation and write its record on exit."""
        scope = OperationScope(command)
        started_at = _iso_now()
        start = time.perf_counter()
        try:
            yield scope
        except Exception as exc:
            if scope.result is None:
                scope.error(f"Unhandled error: {exc}")
            raise
        finally:
            if scope.result is None:
                scope.success("Completed.")
            record: dict[str, Any] = {
                "op_id": scope.op_id,
                "command": command,
                "args": sanitize(dict(args or {})),
                "target": sanitize(dict(target or {})),
                "started_at": started_at,
                "finished_at": _iso_now(),
                "duration_ms": int((time.perf_counter() - start) * 1000),
                "steps": scope.steps,
                "result": scope.result,
            }
            self._write(record)

    def _write(self, record: Mapping[str, Any]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
        except OSError:
            self._enabled = False


def setup_cli_logging(*, verbose: bool = False, console: Console | None = None) -> None:
    """Route library log records through rich on stderr."""
    root = logging.getLogger("hoststack")
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)
    root.handlers.clear()
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_time=False,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    root.propagate = False


__all__ = ["OperationScope", "StructuredLogger", "sanitize", "setup_cli_logging"]
