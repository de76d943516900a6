"""Exception hierarchy for nudge.

Configuration errors also subclass ValueError so callers that already
catch ValueError at the CLI boundary keep working.

    NudgeError
    ├── ConfigurationError (ValueError)
    │   ├── UnknownItemError
    │   ├── DuplicateItemError
    │   ├── CorruptLogError
    │   └── StateNotRecoveredError
    ├── MalformedRecordError
    └── SchedulerError
        └── QueueBusyError
"""


class NudgeError(Exception):
    """Base class for all nudge exceptions."""


class ConfigurationError(NudgeError, ValueError):
    """Structural problem with settings, items or persisted state."""


class UnknownItemError(ConfigurationError):
    """An item id was used that is not in the registry."""

    def __init__(self, fn: str) -> None:
        super().__init__(f"Item not registered: {fn}")
        self.fn = fn


class DuplicateItemError(ConfigurationError):
    """An item id was registered twice."""

    def __init__(self, fn: str) -> None:
        super().__init__(f"Item already registered: {fn}")
        self.fn = fn


class CorruptLogError(ConfigurationError):
    """The variable log contains rows that are not (posted, name, value)."""

    def __init__(self, path, bad_rows: list[int]) -> None:
        shown = ", ".join(str(n) for n in bad_rows[:5])
        super().__init__(f"Corrupt variable log {path}: bad rows at line(s) {shown}")
        self.path = path
        self.bad_rows = bad_rows


class StateNotRecoveredError(ConfigurationError):
    """Scheduling was attempted before persisted state was recovered."""


class MalformedRecordError(NudgeError):
    """A record could not be appended because a field holds a tab or newline."""


class SchedulerError(NudgeError):
    """Base for queue and run errors."""


class QueueBusyError(SchedulerError):
    """A queue run is already in progress."""
