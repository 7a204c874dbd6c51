from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""LogEntry model for the run log.

One entry per message reported to the pipeline log sink. Serialized as JSON
Lines with a fixed key set: timestamp, severity, message.
"""

__all__ = [
    "LogEntry",
    "SEVERITIES",
]

SEVERITIES = ("info", "success", "warning", "error")


@dataclass(frozen=True)
class LogEntry:
    """Structured run log record.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        severity: one of info / success / warning / error
        message: human readable message
    """
    timestamp: str
    severity: str
    message: str

    @staticmethod
    def create(message: str, severity: str = "info") -> LogEntry:
        """Create a new LogEntry stamped with the current UTC time.

        Unknown severities are recorded as ``info``.
        """
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        if severity not in SEVERITIES:
            severity = "info"
        return LogEntry(timestamp=ts, severity=severity, message=message)

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)
