"""Lifecycle log for burrow with hybrid format.

Logs are written in hybrid format:
    YYYY-MM-DD HH:MM:SS LEVEL [command] Human message | {"json": "data"}

This provides both human readability (left side) and machine parseability (right side).
Lifecycle events from the event bus are recorded here via attach_event_log().
"""
import json
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, Optional


class BurrowLogger:
    """Logger for burrow lifecycle events with hybrid format output.

    Logs are written to monthly files: burrow-YYYY-MM.log
    Default location: ~/.burrow/logs/
    """

    def __init__(self, log_dir: Optional[Path] = None):
        """Initialize logger with log directory.

        Args:
            log_dir: Directory for log files. Defaults to ~/.burrow/logs/
        """
        if log_dir is None:
            log_dir = Path.home() / ".burrow" / "logs"

        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def _get_log_file(self) -> Path:
        """Get current month's log file path."""
        month_str = datetime.now().strftime("%Y-%m")
        return self.log_dir / f"burrow-{month_str}.log"

    def _format_log_line(
        self,
        level: str,
        command: str,
        message: str,
        data: Dict[str, Any]
    ) -> str:
        """Format log line in hybrid format.

        Args:
            level: Log level (DEBUG, INFO, WARNING, ERROR)
            command: Command or event name (new, recycle, session.created, ...)
            message: Human-readable message
            data: Structured data as dict

        Returns:
            Formatted log line with newline
        """
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        level_padded = level.ljust(5)
        json_str = json.dumps(data, ensure_ascii=False, default=str)
        return f"{timestamp} {level_padded} [{command}] {message} | {json_str}\n"

    def log_event(
        self,
        command: str,
        message: str,
        data: Dict[str, Any],
        level: str = "INFO"
    ) -> None:
        """Log an event with hybrid format."""
        log_line = self._format_log_line(level, command, message, data)
        with open(self._get_log_file(), "a") as f:
            f.write(log_line)

    def get_log_files(self, months_back: int = 6) -> list[Path]:
        """Get list of available log files (most recent first)."""
        log_files = list(self.log_dir.glob("burrow-*.log"))
        # Filenames embed YYYY-MM so lexical order is chronological
        return sorted(log_files, reverse=True)[:months_back]

    def read_logs(
        self,
        limit: int = 50,
        command_filter: Optional[str] = None,
        level_filter: Optional[str] = None
    ) -> list[dict]:
        """Read and parse log entries with optional filtering.

        Args:
            limit: Maximum number of entries to return
            command_filter: Only return entries for this command
            level_filter: Only return entries with this log level

        Returns:
            List of parsed log entries (dicts with timestamp, level, command, message, data),
            newest first
        """
        entries = []

        for log_file in self.get_log_files():
            if not log_file.exists():
                continue

            with open(log_file, 'r') as f:
                lines = f.readlines()

            for line in reversed(lines):
                entry = self._parse_log_line(line)
                if not entry:
                    continue

                if command_filter and entry['command'] != command_filter:
                    continue
                if level_filter and entry['level'] != level_filter:
                    continue

                entries.append(entry)
                if len(entries) >= limit:
                    return entries

        return entries

    def _parse_log_line(self, line: str) -> dict | None:
        """Parse a log line into structured format, or None if malformed."""
        try:
            parts = line.split(' | ', 1)
            if len(parts) != 2:
                return None

            left_part = parts[0]
            json_part = parts[1].strip()

            tokens = left_part.split(None, 3)
            if len(tokens) < 4:
                return None

            timestamp = f"{tokens[0]} {tokens[1]}"
            level = tokens[2].strip()
            command_and_message = tokens[3]
            if not command_and_message.startswith('['):
                return None

            bracket_end = command_and_message.index(']')
            command = command_and_message[1:bracket_end]
            message = command_and_message[bracket_end + 2:].strip()

            data = json.loads(json_part)

            return {
                'timestamp': timestamp,
                'level': level,
                'command': command,
                'message': message,
                'data': data
            }
        except (ValueError, IndexError, json.JSONDecodeError):
            return None


def attach_event_log(bus, logger: BurrowLogger) -> None:
    """Record every session lifecycle event published on bus into logger."""
    from burrow.events import (
        SESSION_CORRUPTED,
        SESSION_CREATED,
        SESSION_DELETED,
        SESSION_RECYCLED,
        SESSION_RENAMED,
    )

    def _session_data(payload) -> Dict[str, Any]:
        sess = payload.session
        return {
            "session_id": sess.id,
            "name": sess.name,
            "remote": sess.remote,
            "path": sess.path,
            "state": sess.state.value,
        }

    def on_created(payload):
        logger.log_event(SESSION_CREATED, f"Session created: {payload.session.id}",
                         _session_data(payload))

    def on_recycled(payload):
        logger.log_event(SESSION_RECYCLED, f"Session recycled: {payload.session.id}",
                         _session_data(payload))

    def on_renamed(payload):
        data = _session_data(payload)
        data["old_name"] = payload.old_name
        logger.log_event(SESSION_RENAMED, f"Session renamed: {payload.session.id}", data)

    def on_corrupted(payload):
        logger.log_event(SESSION_CORRUPTED, f"Session corrupted: {payload.session.id}",
                         _session_data(payload), level="WARNING")

    def on_deleted(payload):
        logger.log_event(SESSION_DELETED, f"Session deleted: {payload.session_id}",
                         {"session_id": payload.session_id})

    bus.subscribe(SESSION_CREATED, on_created)
    bus.subscribe(SESSION_RECYCLED, on_recycled)
    bus.subscribe(SESSION_RENAMED, on_renamed)
    bus.subscribe(SESSION_CORRUPTED, on_corrupted)
    bus.subscribe(SESSION_DELETED, on_deleted)
