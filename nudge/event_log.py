"""EventLog - append-only, tab-delimited record files.

Record format: POSTED<TAB>FIELD1<TAB>FIELD2...\\n
Example:       1760600000\tmood\t7

POSTED is unix time in integer seconds, or a float with 7 fractional digits
when a precise stamp is requested. Files have no header and are never
rewritten, except by ``purge`` for administrative cleanup.

Records whose fields contain a tab or a newline would break column
alignment for every later reader, so they are diverted verbatim to a
sibling ``<path>_errors`` file and the primary file is left untouched.
"""

import os
import warnings
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from pathlib import Path

from .errors import MalformedRecordError
from .observability import get_logger
from .timeutil import (
    DATESTAMP_PATTERN,
    DEFAULT_DAY_BOUNDARY_HOUR,
    format_posted,
    logical_today,
    now_ts,
)

log = get_logger(__name__)

SEPARATOR = "\t"


@dataclass
class Anomaly:
    """A row whose posted time breaks the non-decreasing order of the file."""

    line_no: int
    posted: str
    reason: str  # out_of_order | future | unparseable


def errors_path_for(path: Path) -> Path:
    """Return the sibling file that receives malformed records."""
    path = Path(path)
    return path.with_name(path.name + "_errors")


def _needs_leading_newline(path: Path) -> bool:
    if not path.exists() or path.stat().st_size == 0:
        return False
    with open(path, "rb") as f:
        f.seek(-1, os.SEEK_END)
        return f.read(1) != b"\n"


def _write_line(path: Path, line: str) -> None:
    # mkdir failure is the one fatal case for appends
    path.parent.mkdir(parents=True, exist_ok=True)
    prefix = "\n" if _needs_leading_newline(path) else ""
    with open(path, "a", encoding="utf-8") as f:
        f.write(f"{prefix}{line}\n")


def append(
    path: Path,
    *fields: object,
    precise: bool = False,
    now: float | None = None,
    strict: bool = False,
) -> bool:
    """Append one record, stamping it with the posted time as field 0.

    Args:
        path: Log file; it and its parent directories are created if absent.
        *fields: Values for fields 1..n. None becomes an empty field.
        precise: Stamp with 7 fractional digits instead of whole seconds.
        now: Override for the posted time (unix seconds).
        strict: Raise MalformedRecordError after diverting a bad record.

    Returns:
        True if the record went to the primary file, False if it was
        diverted to the ``_errors`` sibling.
    """
    path = Path(path)
    posted = format_posted(now_ts() if now is None else now, precise)
    values = ["" if value is None else str(value) for value in fields]
    line = SEPARATOR.join([posted, *values])

    if any(SEPARATOR in value for value in values) or "\n" in line or "\r" in line:
        target = errors_path_for(path)
        _write_line(target, line)
        log.warning("event_log.malformed_record", path=str(path), diverted_to=str(target))
        if strict:
            raise MalformedRecordError(f"Record for {path} contains a tab or newline")
        return False

    _write_line(path, line)
    return True


def _read_lines(path: Path) -> list[str]:
    path = Path(path)
    if not path.exists():
        warnings.warn(f"Log file not found: {path}", stacklevel=3)
        log.debug("event_log.missing", path=str(path))
        return []
    text = path.read_text(encoding="utf-8")
    return [line for line in text.split("\n") if line.strip()]


def read_all(path: Path) -> list[list[str]]:
    """Read every non-blank row, split on tabs."""
    return [line.split(SEPARATOR) for line in _read_lines(path)]


def entries_matching_date(
    path: Path,
    day: date | None = None,
    now: float | None = None,
    boundary_hour: int = DEFAULT_DAY_BOUNDARY_HOUR,
) -> list[list[str]]:
    """Rows whose text contains the literal datestamp of ``day``.

    ``day`` defaults to the logical today, which starts at the day boundary
    hour rather than midnight.
    """
    if day is None:
        day = logical_today(now, boundary_hour)
    stamp = day.isoformat()
    return [line.split(SEPARATOR) for line in _read_lines(path) if stamp in line]


def last_row(path: Path) -> list[str]:
    """The last non-blank row, split on tabs ([] if none)."""
    lines = _read_lines(path)
    if not lines:
        return []
    return lines[-1].split(SEPARATOR)


def last_value(path: Path) -> str | None:
    row = last_row(path)
    return row[-1] if row else None


def last_posted(path: Path) -> float | None:
    """Posted time (field 0) of the last row, or None."""
    row = last_row(path)
    if not row:
        return None
    try:
        return float(row[0])
    except ValueError:
        log.warning("event_log.bad_posted_time", path=str(path), value=row[0])
        return None


def last_datestamp(path: Path) -> date | None:
    """The last YYYY-MM-DD in the file, scanning backward from the end."""
    for line in reversed(_read_lines(path)):
        matches = DATESTAMP_PATTERN.findall(line)
        for match in reversed(matches):
            try:
                return date.fromisoformat(match)
            except ValueError:
                continue
    return None


def check_monotonic(path: Path, now: float | None = None) -> list[Anomaly]:
    """Flag rows whose posted time goes backwards or lies in the future.

    The file is only reported on; nothing is rejected or rewritten.
    """
    if now is None:
        now = now_ts()
    anomalies: list[Anomaly] = []
    previous: float | None = None
    for line_no, line in enumerate(_read_lines(path), start=1):
        posted = line.split(SEPARATOR, 1)[0]
        try:
            value = float(posted)
        except ValueError:
            anomalies.append(Anomaly(line_no, posted, "unparseable"))
            continue
        if previous is not None and value < previous:
            anomalies.append(Anomaly(line_no, posted, "out_of_order"))
        if value > now:
            anomalies.append(Anomaly(line_no, posted, "future"))
        previous = value if previous is None else max(previous, value)
    if anomalies:
        log.warning("event_log.anomalous", path=str(path), count=len(anomalies))
    return anomalies


def purge(path: Path, predicate: Callable[[list[str]], bool]) -> int:
    """Rewrite the file without the rows matching ``predicate``.

    Maintenance only. Returns the number of rows removed.
    """
    path = Path(path)
    lines = _read_lines(path)
    kept = [line for line in lines if not predicate(line.split(SEPARATOR))]
    removed = len(lines) - len(kept)
    if removed == 0:
        return 0

    tmp_path = path.with_name(path.name + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        f.writelines(f"{line}\n" for line in kept)
    os.replace(tmp_path, path)
    log.info("event_log.purged", path=str(path), removed=removed)
    return removed
