"""MemoryStore - persist named variables through an append-only variable log.

Each row is (posted, name, json_value). A name may appear many times; the
newest row shadows every older one. Snapshots only append a row when the
value changed, so unchanged variables do not grow the log.

Snapshots may come from the idle thread and the session thread; one lock
serializes every read-compare-append cycle on the log.
"""

import json
import threading
import warnings
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from . import event_log
from .audit import AuditLogger
from .errors import ConfigurationError, CorruptLogError
from .observability import get_logger

log = get_logger(__name__)

FIELDS_PER_ROW = 3


@dataclass
class Variable:
    """A named piece of volatile state and how to read and restore it."""

    name: str
    getter: Callable[[], Any]
    setter: Callable[[Any], None] | None = None
    timestamp: bool = False


class MemoryStore:
    """Snapshots registered variables and reconstructs them at startup."""

    def __init__(self, log_path: Path, audit: AuditLogger | None = None) -> None:
        self.log_path = Path(log_path)
        self.audit = audit
        self._variables: dict[str, Variable] = {}
        self._lock = threading.RLock()
        self.recovered = False

    def register(
        self,
        name: str,
        getter: Callable[[], Any],
        setter: Callable[[Any], None] | None = None,
        timestamp: bool = False,
    ) -> None:
        """Declare a variable. Timestamp variables are stored as unix seconds."""
        self._variables[name] = Variable(name, getter, setter, timestamp)

    @property
    def names(self) -> list[str]:
        return list(self._variables)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def _serialize(self, name: str, value: Any) -> str:
        variable = self._variables.get(name)
        if isinstance(value, datetime) and (variable is None or variable.timestamp):
            value = value.timestamp()
        return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)

    def _deserialize(self, name: str, raw: str) -> Any:
        value = json.loads(raw)
        variable = self._variables.get(name)
        if variable is not None and variable.timestamp and isinstance(value, (int, float)):
            return datetime.fromtimestamp(value)
        return value

    def _rows(self) -> list[list[str]]:
        if not self.log_path.exists():
            return []
        return event_log.read_all(self.log_path)

    # ------------------------------------------------------------------
    # Save path
    # ------------------------------------------------------------------

    def check_log(self) -> None:
        """Raise CorruptLogError unless every row is (posted, name, value)."""
        bad_rows = [
            line_no
            for line_no, row in enumerate(self._rows(), start=1)
            if len(row) != FIELDS_PER_ROW
        ]
        if bad_rows:
            raise CorruptLogError(self.log_path, bad_rows)

    def _latest_raw(self) -> dict[str, str]:
        latest: dict[str, str] = {}
        for row in reversed(self._rows()):
            if len(row) == FIELDS_PER_ROW and row[1] not in latest:
                latest[row[1]] = row[2]
        return latest

    def snapshot(
        self,
        names: Iterable[str] | Mapping[str, Any] | None = None,
        now: float | None = None,
    ) -> list[str]:
        """Append the variables whose value differs from the last stored one.

        Args:
            names: Registered names to save (default: all registered), or a
                mapping of name to value to save directly.
            now: Override for the posted time.

        Returns:
            The names that were written.

        Raises:
            CorruptLogError: If the existing log has malformed rows.
            ConfigurationError: If a name is not registered.
        """
        with self._lock:
            self.check_log()

            if isinstance(names, Mapping):
                values = dict(names)
            else:
                values = {}
                for name in self._variables if names is None else names:
                    variable = self._variables.get(name)
                    if variable is None:
                        raise ConfigurationError(f"Variable not registered: {name}")
                    values[name] = variable.getter()

            latest = self._latest_raw()
            written: list[str] = []
            for name, value in values.items():
                raw = self._serialize(name, value)
                if latest.get(name) == raw:
                    continue
                if event_log.append(self.log_path, name, raw, now=now):
                    written.append(name)

        if written:
            log.debug("memory.snapshot", written=written)
            if self.audit:
                self.audit.log("SNAPSHOT", names=",".join(written))
        return written

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def recover(self) -> dict[str, Any]:
        """Rebuild the newest value of every variable and apply the setters.

        Malformed rows and values a setter rejects are skipped with a
        warning; reads never fail on them.
        """
        values: dict[str, Any] = {}
        with self._lock:
            rows = self._rows()
        for row in reversed(rows):
            if len(row) != FIELDS_PER_ROW:
                warnings.warn(f"Skipping malformed row in {self.log_path}: {row!r}", stacklevel=2)
                continue
            name, raw = row[1], row[2]
            if name in values:
                continue
            try:
                values[name] = self._deserialize(name, raw)
            except (json.JSONDecodeError, ValueError, OverflowError, OSError) as e:
                warnings.warn(f"Cannot decode {name} in {self.log_path}: {e}", stacklevel=2)
                log.warning("memory.undecodable", name=name, error=str(e))

        for name, variable in self._variables.items():
            if variable.setter is None or name not in values:
                continue
            try:
                variable.setter(values[name])
            except (TypeError, ValueError, AttributeError) as e:
                warnings.warn(f"Cannot restore {name} from {self.log_path}: {e}", stacklevel=2)
                log.warning("memory.unrestorable", name=name, error=str(e))

        self.recovered = True
        log.info("memory.recovered", names=sorted(values))
        if self.audit:
            self.audit.log("RECOVER", count=len(values))
        return values

    def last_value_of(self, name: str) -> Any | None:
        """Newest stored value of a variable, or None if never stored."""
        for row in reversed(self._rows()):
            if len(row) == FIELDS_PER_ROW and row[1] == name:
                return self._deserialize(name, row[2])
        return None

    def forget(self, name: str) -> int:
        """Purge every stored row of a variable. Returns rows removed."""
        with self._lock:
            if not self.log_path.exists():
                return 0
            removed = event_log.purge(
                self.log_path, lambda row: len(row) > 1 and row[1] == name
            )
        if removed and self.audit:
            self.audit.log("PURGE", name=name, removed=removed)
        return removed
