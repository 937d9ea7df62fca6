"""
Audit Logger module for the subledger system.

Provides structured logging with dual-format output (JSON and human-readable
text), level filtering, an optional daily log file, and sensitive data masking.
A single logger is constructed per process and handed to each component.
"""

import io
import json
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, TextIO

from subledger.enums import LogLevel


LEVEL_ORDER = {
    LogLevel.DEBUG: 10,
    LogLevel.INFO: 20,
    LogLevel.WARN: 30,
    LogLevel.ERROR: 40,
}


@dataclass
class LogEntry:
    """Represents a single log entry with all metadata."""

    timestamp: str
    level: LogLevel
    component: str
    message: str
    data: dict = field(default_factory=dict)


class AuditLogger:
    """
    Structured logger with dual-format output.

    Supports:
    - JSON and human-readable text output formats
    - Minimum level filtering
    - Mirroring entries into a daily log file
    - Automatic masking of sensitive data (tokens, secrets, auth headers)
    """

    # Keys that should be masked in log output
    SENSITIVE_KEYS = frozenset({
        'token', 'secret', 'password', 'api_key', 'auth', 'authorization',
        'credential', 'credentials', 'private_key', 'access_token',
        'cookie',
    })

    MASK_VALUE = "***MASKED***"

    def __init__(
        self,
        output_format: str = "text",
        output_stream: Optional[TextIO] = None,
        level: LogLevel = LogLevel.INFO,
        log_dir: Optional[Path] = None,
    ):
        """
        Initialize the audit logger.

        Args:
            output_format: Output format - 'json', 'text', or 'both'
            output_stream: Output stream for log entries (defaults to sys.stderr)
            level: Minimum level that is emitted
            log_dir: If set, entries are also appended as JSON to a daily file
        """
        if output_format not in ("json", "text", "both"):
            raise ValueError(f"Invalid output_format: {output_format}")

        self._output_format = output_format
        self._output_stream = output_stream or sys.stderr
        self._level = level
        self._log_dir = log_dir
        self._entries: list[LogEntry] = []

    @classmethod
    def from_config(cls, logging_config, log_dir: Optional[Path] = None) -> "AuditLogger":
        """Build a logger from a LoggingConfig."""
        try:
            level = LogLevel(logging_config.level.lower())
        except ValueError:
            level = LogLevel.INFO
        return cls(
            output_format=logging_config.output_format,
            level=level,
            log_dir=log_dir if logging_config.log_to_file else None,
        )

    @property
    def output_format(self) -> str:
        """Get the current output format."""
        return self._output_format

    @property
    def level(self) -> LogLevel:
        return self._level

    @property
    def entries(self) -> list[LogEntry]:
        """Get all emitted entries."""
        return self._entries.copy()

    def is_enabled_for(self, level: LogLevel) -> bool:
        return LEVEL_ORDER[level] >= LEVEL_ORDER[self._level]

    def for_component(self, component: str) -> "ComponentLogger":
        """Return a view of this logger bound to one component name."""
        return ComponentLogger(self, component)

    def log(
        self,
        level: LogLevel,
        component: str,
        message: str,
        data: Optional[dict] = None,
    ) -> Optional[LogEntry]:
        """
        Log an entry in the configured format(s).

        Args:
            level: Log severity level
            component: Component name generating the log
            message: Human-readable log message
            data: Optional additional data to include

        Returns:
            The created LogEntry, or None if the level is filtered out
        """
        if not self.is_enabled_for(level):
            return None

        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=level,
            component=component,
            message=message,
            data=self.mask_sensitive_data(data or {}),
        )

        self._entries.append(entry)
        self._output_entry(entry)

        return entry

    def log_error(
        self,
        component: str,
        message: str,
        error: Optional[Exception] = None,
        request_url: Optional[str] = None,
        additional_data: Optional[dict] = None,
    ) -> Optional[LogEntry]:
        """
        Log an error with full context.

        Args:
            component: Component name generating the log
            message: Human-readable error message
            error: Optional exception object
            request_url: Optional URL of the failed request
            additional_data: Optional additional context data
        """
        data = additional_data.copy() if additional_data else {}

        if error is not None:
            data["error_message"] = str(error)
            data["error_type"] = type(error).__name__
            code = getattr(error, "code", None)
            if code is not None:
                data["error_code"] = code

        if request_url is not None:
            data["request_url"] = request_url

        return self.log(LogLevel.ERROR, component, message, data)

    def mask_sensitive_data(self, data: dict) -> dict:
        """
        Recursively mask sensitive data in a dictionary.

        Args:
            data: Dictionary potentially containing sensitive data

        Returns:
            New dictionary with sensitive values masked
        """
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            key_lower = str(key).lower()

            is_sensitive = any(
                sensitive_key in key_lower
                for sensitive_key in self.SENSITIVE_KEYS
            )

            if is_sensitive:
                masked[key] = self.MASK_VALUE
            elif isinstance(value, dict):
                masked[key] = self.mask_sensitive_data(value)
            elif isinstance(value, list):
                masked[key] = [
                    self.mask_sensitive_data(item) if isinstance(item, dict) else item
                    for item in value
                ]
            else:
                masked[key] = value

        return masked

    def _output_entry(self, entry: LogEntry) -> None:
        if self._output_format in ("json", "both"):
            self._output_stream.write(self.format_json(entry) + "\n")

        if self._output_format in ("text", "both"):
            self._output_stream.write(self.format_text(entry) + "\n")

        self._output_stream.flush()

        if self._log_dir is not None:
            self._append_to_file(entry)

    def _append_to_file(self, entry: LogEntry) -> None:
        # A broken log file must not take the caller down; fall back to the stream only.
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
            day = entry.timestamp[:10]
            path = self._log_dir / f"subledger-{day}.log"
            with open(path, "a", encoding="utf-8") as f:
                f.write(self.format_json(entry) + "\n")
        except OSError as e:
            self._output_stream.write(f"log file unavailable: {e}\n")
            self._log_dir = None

    def format_json(self, entry: LogEntry) -> str:
        """Format a log entry as a single JSON line."""
        obj = {
            "timestamp": entry.timestamp,
            "level": entry.level.value,
            "component": entry.component,
            "message": entry.message,
            "data": entry.data,
        }
        return json.dumps(obj, ensure_ascii=False, default=str)

    def format_text(self, entry: LogEntry) -> str:
        """Format a log entry as ``[TIMESTAMP] LEVEL [COMPONENT] MESSAGE {data}``."""
        parts = [
            f"[{entry.timestamp}]",
            entry.level.value.upper(),
            f"[{entry.component}]",
            entry.message,
        ]

        if entry.data:
            parts.append(json.dumps(entry.data, ensure_ascii=False, default=str))

        return " ".join(parts)


class ComponentLogger:
    """An AuditLogger bound to a fixed component name."""

    def __init__(self, logger: AuditLogger, component: str) -> None:
        self._logger = logger
        self._component = component

    @property
    def component(self) -> str:
        return self._component

    def debug(self, message: str, data: Optional[dict] = None) -> None:
        self._logger.log(LogLevel.DEBUG, self._component, message, data)

    def info(self, message: str, data: Optional[dict] = None) -> None:
        self._logger.log(LogLevel.INFO, self._component, message, data)

    def warn(self, message: str, data: Optional[dict] = None) -> None:
        self._logger.log(LogLevel.WARN, self._component, message, data)

    def error(
        self,
        message: str,
        error: Optional[Exception] = None,
        data: Optional[dict] = None,
        request_url: Optional[str] = None,
    ) -> None:
        self._logger.log_error(
            self._component,
            message,
            error=error,
            request_url=request_url,
            additional_data=data,
        )


def null_logger() -> AuditLogger:
    """Logger that only keeps ERROR entries and writes nowhere visible."""
    return AuditLogger(output_format="text", output_stream=io.StringIO(), level=LogLevel.ERROR)
