"""Item data models."""

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ExecutionKind(str, Enum):
    """How an item body completes."""

    QUERY = "query"  # prompt/answer, done when the body returns
    EXCURSION = "excursion"  # done when every auxiliary resource is closed


class Item(BaseModel):
    """
    A registered recurring reminder.

    Items are defined once at startup and never destroyed; only their
    runtime state (ItemState) and disabled membership change.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)
    fn: str = Field(..., pattern=r"^[a-z][a-z0-9_-]*$")
    description: str = ""
    kind: ExecutionKind = ExecutionKind.QUERY
    min_hours_wait: float = Field(default=3, ge=0)
    max_calls_per_day: int | None = Field(default=None, ge=1)
    max_entries_per_day: int | None = Field(default=None, ge=1)
    max_successes_per_day: int | None = Field(default=None, ge=1)
    lookup_posted_time: bool = False
    dataset: Path | None = None

    @field_validator("dataset")
    @classmethod
    def expand_dataset(cls, v: Path | None) -> Path | None:
        return v.expanduser() if v is not None else None

    @property
    def daily_cap(self) -> int | None:
        """Effective entries/successes cap; max_entries_per_day wins."""
        if self.max_entries_per_day is not None:
            return self.max_entries_per_day
        return self.max_successes_per_day


class ItemState(BaseModel):
    """Mutable runtime state of one item."""

    last_called: float | None = None
    dismissals: int = Field(default=0, ge=0)
