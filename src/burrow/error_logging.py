"""Error telemetry for the burrow CLI.

Failed commands are appended to {data_dir}/errors.jsonl so recurring problems
(a remote that keeps corrupting, a hook that keeps failing) show up in
`burrow errors`.

Entry schema:
{
    "timestamp": "2026-03-02T10:42:00Z",
    "command": "burrow recycle k3x9qa",
    "subcommand": "recycle",
    "error_type": "CORRUPTED_REPOSITORY",
    "message": "session k3x9qa: /repos/app-1a2b3c is not a valid git repository",
    "context": {"session_id": "k3x9qa"},
    "stack_trace": "...",  // unexpected errors only
    "duration_ms": 45
}
"""

import json
from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from burrow.errors import (
    CommandError,
    ConfigError,
    CorruptedRepositoryError,
    InvalidInputError,
    InvalidStateError,
    NoRecyclableSessionError,
    OperationCancelled,
    SessionNotFoundError,
    TemplateError,
    WorkspaceError,
)


class ErrorType(Enum):
    """Error taxonomy for burrow CLI errors."""

    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_STATE = "INVALID_STATE"
    CORRUPTED_REPOSITORY = "CORRUPTED_REPOSITORY"
    COMMAND_FAILED = "COMMAND_FAILED"
    WORKSPACE_ERROR = "WORKSPACE_ERROR"
    CONFIG_ERROR = "CONFIG_ERROR"
    CANCELLED = "CANCELLED"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


_TYPE_BY_EXCEPTION = [
    (SessionNotFoundError, ErrorType.SESSION_NOT_FOUND),
    (NoRecyclableSessionError, ErrorType.SESSION_NOT_FOUND),
    (InvalidInputError, ErrorType.INVALID_INPUT),
    (TemplateError, ErrorType.INVALID_INPUT),
    (InvalidStateError, ErrorType.INVALID_STATE),
    (CorruptedRepositoryError, ErrorType.CORRUPTED_REPOSITORY),
    (CommandError, ErrorType.COMMAND_FAILED),
    (WorkspaceError, ErrorType.WORKSPACE_ERROR),
    (ConfigError, ErrorType.CONFIG_ERROR),
    (OperationCancelled, ErrorType.CANCELLED),
]


def classify_error(exc: BaseException) -> ErrorType:
    """Map an exception to its ErrorType."""
    for exc_type, error_type in _TYPE_BY_EXCEPTION:
        if isinstance(exc, exc_type):
            return error_type
    return ErrorType.UNEXPECTED_ERROR


@dataclass
class ErrorEntry:
    """A single errors.jsonl record."""

    timestamp: str
    command: str
    subcommand: str
    error_type: ErrorType
    message: str
    context: Optional[dict[str, Any]] = None
    stack_trace: Optional[str] = None
    duration_ms: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "timestamp": self.timestamp,
            "command": self.command,
            "subcommand": self.subcommand,
            "error_type": self.error_type.value,
            "message": self.message,
        }
        for key in ("context", "stack_trace", "duration_ms"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        return result


class ErrorLogger:
    """Appends error entries to a JSONL file, keeping at most max_entries."""

    DEFAULT_MAX_ENTRIES = 10000

    def __init__(self, error_file: Optional[Path] = None, max_entries: int = DEFAULT_MAX_ENTRIES):
        if error_file is None:
            error_file = Path.home() / ".burrow" / "errors.jsonl"
        self.error_file = Path(error_file)
        self.max_entries = max_entries
        self.error_file.parent.mkdir(parents=True, exist_ok=True)

    def log_error(
        self,
        command: str,
        subcommand: str,
        error_type: ErrorType,
        message: str,
        context: Optional[dict[str, Any]] = None,
        stack_trace: Optional[str] = None,
        duration_ms: Optional[int] = None,
    ) -> None:
        entry = ErrorEntry(
            timestamp=datetime.now().isoformat() + "Z",
            command=command,
            subcommand=subcommand,
            error_type=error_type,
            message=message,
            context=context,
            stack_trace=stack_trace,
            duration_ms=duration_ms,
        )
        with open(self.error_file, "a") as f:
            f.write(json.dumps(entry.to_dict(), default=str) + "\n")

        self._rotate_if_needed()

    def _rotate_if_needed(self) -> None:
        with open(self.error_file) as f:
            lines = f.readlines()
        if len(lines) > self.max_entries:
            kept = deque(lines, maxlen=self.max_entries)
            self.error_file.write_text("".join(kept))

    def _read_entries(self, cutoff: Optional[datetime] = None) -> list[dict[str, Any]]:
        """Parsed entries in file order; malformed lines and entries before cutoff are skipped."""
        if not self.error_file.exists():
            return []

        entries = []
        for line in self.error_file.read_text().splitlines():
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                continue

            if cutoff is not None:
                try:
                    ts = datetime.fromisoformat(entry.get("timestamp", "").rstrip("Z"))
                except ValueError:
                    continue
                if ts < cutoff:
                    continue

            entries.append(entry)
        return entries

    def get_error_stats(self, days: int = 7) -> dict[str, Any]:
        """Totals by error type and by subcommand over the last `days` days."""
        entries = self._read_entries(cutoff=datetime.now() - timedelta(days=days))
        by_type = Counter(e.get("error_type", "UNKNOWN") for e in entries)
        by_command = Counter(e.get("subcommand", "unknown") for e in entries)
        return {
            "total": len(entries),
            "by_type": dict(by_type),
            "by_command": dict(by_command),
        }

    def get_recent_errors(self, limit: int = 10) -> list[dict[str, Any]]:
        """Most recent entries first."""
        entries = self._read_entries()
        return list(reversed(entries[-limit:])) if limit > 0 else []
