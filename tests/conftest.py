"""Pytest fixtures for nudge tests."""

import json
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

import pytest

from nudge.config import Settings
from nudge.models.item import Item
from nudge.models.queue import Outcome
from nudge.registry import ItemRegistry


@pytest.fixture
def at() -> Callable[..., float]:
    """Build a local-time unix timestamp: at(2026, 3, 10, 12, 30)."""

    def _at(year: int, month: int, day: int, hour: int = 12, minute: int = 0) -> float:
        return datetime(year, month, day, hour, minute).timestamp()

    return _at


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings rooted in a temp cache directory."""
    return Settings(cache_dir=tmp_path / "cache")


@pytest.fixture
def registry(settings: Settings) -> ItemRegistry:
    return ItemRegistry(settings)


class RecordingBody:
    """Query body that returns scripted outcomes and counts its calls."""

    def __init__(self, *outcomes: Outcome | None) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0

    def __call__(self) -> Outcome | None:
        self.calls += 1
        if self.outcomes:
            return self.outcomes.pop(0)
        return Outcome.SUCCESS


@pytest.fixture
def recording_body() -> type[RecordingBody]:
    return RecordingBody


@pytest.fixture
def make_item() -> Callable[..., Item]:
    def _make(fn: str = "mood", **kwargs) -> Item:
        return Item(fn=fn, **kwargs)

    return _make


@pytest.fixture
def items_file(tmp_path: Path) -> Path:
    """An items.json with one query item and one dataset-backed item."""
    path = tmp_path / "items.json"
    document = {
        "items": [
            {"fn": "stretch", "min_hours_wait": 2, "command": "true"},
            {
                "fn": "mood",
                "dataset": str(tmp_path / "mood.tsv"),
                "max_entries_per_day": 3,
                "lookup_posted_time": True,
                "command": "true",
            },
        ]
    }
    path.write_text(json.dumps(document, indent=2))
    return path
