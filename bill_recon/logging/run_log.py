from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from ..models.log_entry import LogEntry
from .init import SUCCESS_LEVEL

"""Run log: the pipeline's (message, severity) log sink.

Pipeline services report progress as ``sink(message, severity)`` with
severity one of info / success / warning / error. ``RunLog`` forwards every
message to the application logger and buffers it as a ``LogEntry``; flush
appends the buffer as JSON Lines to ``logs/run-YYYYMMDD-HHMMSS.log`` (UTC).
"""

__all__ = [
    "LogSink",
    "RunLog",
    "logger_sink",
]

LogSink = Callable[[str, str], None]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"

_SEVERITY_LEVELS = {
    "info": logging.INFO,
    "success": SUCCESS_LEVEL,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def logger_sink(logger: logging.Logger) -> LogSink:
    """Log sink writing straight to ``logger`` (no buffering).

    Args:
        logger: Logger receiving every message

    Returns:
        A ``sink(message, severity)`` callable; unknown severities log at INFO
    """
    def sink(message: str, severity: str = "info") -> None:
        logger.log(_SEVERITY_LEVELS.get(severity, logging.INFO), message)
    return sink


class RunLog:
    """Buffered log sink. Flush writes JSON Lines.

    - flush() appends the buffered entries to the run log file (created on
      first access) and clears the buffer
    - not thread safe; the worker thread never writes to it directly
    """
    def __init__(self, logger: logging.Logger | None = None, logs_dir: Path | None = None) -> None:
        """Initialize an empty run log.

        Args:
            logger: Logger every message is forwarded to, None to only buffer
            logs_dir: Directory of the run log file, ./logs by default
        """
        self._entries: list[LogEntry] = []
        self._file_path: Path | None = None
        self._logs_dir = logs_dir if logs_dir is not None else LOGS_DIR
        self._forward = logger_sink(logger) if logger is not None else None

    @property
    def file_path(self) -> Path:
        """Path of this run's log file.

        Returns:
            logs/run-YYYYMMDD-HHMMSS.log; the directory is created on first
            access and the name is fixed from then on
        """
        if self._file_path is None:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._logs_dir / f"run-{stamp}.log"
        return self._file_path

    @property
    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    def __call__(self, message: str, severity: str = "info") -> None:
        """Record one message.

        Args:
            message: Log message
            severity: info, success, warning or error
        """
        entry = LogEntry.create(message, severity)
        self._entries.append(entry)
        if self._forward is not None:
            self._forward(message, entry.severity)

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def flush(self) -> Path:
        """Append buffered entries to the log file as JSON Lines.

        Returns:
            Path of the log file (written only when entries were buffered)
        """
        fp = self.file_path
        if not self._entries:
            return fp
        with fp.open("a", encoding="utf-8") as f:
            for entry in self._entries:
                f.write(entry.to_json_line() + "\n")
        self._entries.clear()
        return fp
