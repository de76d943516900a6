"""Queue and run data models."""

from enum import Enum

from pydantic import BaseModel, Field


class Outcome(str, Enum):
    """Result of one item execution, as reported by the prompt boundary."""

    SUCCESS = "success"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"
    TIMED_OUT = "timed_out"


class RunPhase(str, Enum):
    IDLE_NO_QUEUE = "idle_no_queue"
    QUEUED = "queued"
    RUNNING_ITEM = "running_item"


class ItemRun(BaseModel):
    """One execution of an item within a run."""

    fn: str
    outcome: Outcome
    started_at: float
    error: str | None = None


class RunSummary(BaseModel):
    """What a run_queue call did."""

    runs: list[ItemRun] = Field(default_factory=list)
    disabled: list[str] = Field(default_factory=list)
    kept: list[str] = Field(default_factory=list)
    remaining: list[str] = Field(default_factory=list)
    stopped_by_cancel: bool = False

    def count(self, outcome: Outcome) -> int:
        return sum(1 for run in self.runs if run.outcome == outcome)
