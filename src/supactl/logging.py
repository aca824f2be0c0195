"""Structured operation logging for supactl.

Each CLI command runs inside :meth:`StructuredLogger.operation`. When the scope
closes, one JSON object is appended to ``operations.jsonl`` and a one-line
summary to ``supactl.log``. The logger never raises on I/O problems: if the
log directory cannot be created or a write fails it disables itself and the
command carries on.
"""
from __future__ import annotations

import getpass
import json
import logging
import os
import time
import uuid
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

from . import __version__

OPERATIONS_LOG = "operations.jsonl"
HUMAN_LOG = "supactl.log"

LOGGER = logging.getLogger(__name__)


def _sanitize(value: object) -> Any:
    """Return a JSON-safe representation of *value*."""
    if value is None or isinstance(value, bool | int | float | str):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [_sanitize(item) for item in value]
    return str(value)


def _timestamp() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


class OperationScope:
    """Collect steps and the final result of one operation."""

    def __init__(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        self.command = command
        self.args = dict(args or {})
        self.target = dict(target or {})
        self.op_id = uuid.uuid4().hex
        self.started_at = _timestamp()
        self.steps: list[dict[str, Any]] = []
        self.result: dict[str, Any] | None = None
        self._started = time.monotonic()

    def add_step(self, name: str, *, status: str = "success", detail: object = None) -> None:
        """Record an intermediate step."""
        step: dict[str, Any] = {"name": name, "status": status}
        if detail is not None:
            step["detail"] = _sanitize(detail)
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._set_result("success", message, changed=changed, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[str] = (),
        errors: Iterable[str] = (),
        changed: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._set_result(
            "warning",
            message,
            changed=changed,
            context=context,
            warnings=list(warnings) or [message],
            errors=list(errors),
        )

    def error(
        self,
        message: str,
        *,
        errors: Iterable[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._set_result(
            "error",
            message,
            context=context,
            errors=list(errors) if errors is not None else [message],
            rc=rc,
        )

    def to_record(self) -> dict[str, Any]:
        """Return the JSON record for ``operations.jsonl``."""
        return {
            "ts": self.started_at,
            "op_id": self.op_id,
            "user": _current_user(),
            "tool_version": __version__,
            "command": self.command,
            "args": _sanitize(self.args),
            "target": _sanitize(self.target),
            "steps": self.steps,
            "result": self.result,
            "duration_ms": int((time.monotonic() - self._started) * 1000),
        }

    def _set_result(self, status: str, message: str, **fields: object) -> None:
        result: dict[str, Any] = {"status": status, "message": message}
        for key, value in fields.items():
            if value is not None:
                result[key] = _sanitize(value)
        self.result = result


class StructuredLogger:
    """Append operation records under *logs_dir*."""

    def __init__(self, logs_dir: Path) -> None:
        self.logs_dir = Path(logs_dir)
        self._operations_log_path = self.logs_dir / OPERATIONS_LOG
        self._human_log_path = self.logs_dir / HUMAN_LOG
        self._enabled = True
        try:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.debug("Structured logging disabled: %s", exc)
            self._enabled = False

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and persist it on exit."""
        scope = OperationScope(command, args=args, target=target)
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(str(exc) or type(exc).__name__)
            raise
        finally:
            if scope.result is None:
                scope.success("Completed.")
            self._write(scope)

    def _write(self, scope: OperationScope) -> None:
        if not self._enabled:
            return
        record = scope.to_record()
        result = record["result"] or {}
        summary = (
            f"{record['ts']} {record['op_id'][:8]} {scope.command} "
            f"{result.get('status', 'unknown')}: {result.get('message', '')}"
        )
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
            with self._human_log_path.open("a", encoding="utf-8") as handle:
                handle.write(summary + "\n")
        except OSError as exc:
            LOGGER.debug("Structured logging disabled after write failure: %s", exc)
            self._enabled = False


def configure_console_logging(console: Console, *, verbose: bool = False) -> None:
    """Route library log records to *console* through rich."""
    handler = RichHandler(console=console, show_path=False, show_time=verbose)
    root = logging.getLogger("supactl")
    root.handlers = [handler]
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)
    root.propagate = False


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return str(os.getuid()) if hasattr(os, "getuid") else "unknown"


__all__ = ["OperationScope", "StructuredLogger", "configure_console_logging"]
