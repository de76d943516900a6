"""Data models for items and queue runs."""

from .item import ExecutionKind, Item, ItemState
from .queue import ItemRun, Outcome, RunPhase, RunSummary

__all__ = [
    "ExecutionKind",
    "Item",
    "ItemState",
    "ItemRun",
    "Outcome",
    "RunPhase",
    "RunSummary",
]
