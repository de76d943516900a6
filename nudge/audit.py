"""Audit trail of scheduler decisions (queue builds, outcomes, disables)."""

import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

_LINE_RE = re.compile(r"^(?P<ts>\S+) \[(?P<op>[A-Z_]+)\](?: (?P<rest>.*))?$")
_PAIR_RE = re.compile(r'(\w+)=("[^"]*"|\S+)')


@dataclass
class AuditEntry:
    """One parsed audit line."""

    timestamp: str
    operation: str
    fields: dict[str, str] = field(default_factory=dict)


class AuditLogger:
    """Appends scheduler operations to a human-readable audit file.

    Log format: ISO8601_TIMESTAMP [OPERATION] key1=value1 key2=value2
    Example: 2026-02-01T10:00:00Z [CANCEL] fn=mood dismissals=2

    Operations: QUEUE, RUN, SUCCESS, CANCEL, SKIP, TIMEOUT, DISABLE, KEEP,
    IDLE_RETURN, SNAPSHOT, RECOVER, PURGE
    """

    def __init__(self, log_path: Path) -> None:
        self.log_path = Path(log_path)
        self._lock = threading.Lock()

    def log(self, operation: str, **kwargs: str | int | float | bool | None) -> None:
        """Append an audit log entry.

        Args:
            operation: The operation name (e.g., CANCEL, DISABLE, IDLE_RETURN)
            **kwargs: Key-value pairs for the entry. None values are dropped,
                      values with spaces are quoted, newlines become spaces.
        """
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

        pairs = []
        for key, value in kwargs.items():
            if value is None:
                continue
            text = str(value).replace("\r", " ").replace("\n", " ").replace('"', "'")
            if " " in text or not text:
                text = f'"{text}"'
            pairs.append(f"{key}={text}")

        line = f"{timestamp} [{operation}]"
        if pairs:
            line += " " + " ".join(pairs)

        with self._lock:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a") as f:
                f.write(line + "\n")

    def tail(self, n: int = 20, operation: str | None = None) -> list[AuditEntry]:
        """Return the last n entries, optionally only those of one operation."""
        if not self.log_path.exists():
            return []
        entries = []
        for raw in self.log_path.read_text().splitlines():
            entry = parse_line(raw)
            if entry is None:
                continue
            if operation is not None and entry.operation != operation:
                continue
            entries.append(entry)
        return entries[-n:] if n > 0 else []


def parse_line(line: str) -> AuditEntry | None:
    """Parse one audit line; None for lines not in the audit format."""
    match = _LINE_RE.match(line.strip())
    if match is None:
        return None
    fields = {}
    for key, value in _PAIR_RE.findall(match.group("rest") or ""):
        if value.startswith('"') and value.endswith('"'):
            value = value[1:-1]
        fields[key] = value
    return AuditEntry(match.group("ts"), match.group("op"), fields)
