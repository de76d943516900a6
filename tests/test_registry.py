"""Tests for the item registry."""

import json
from pathlib import Path

import pytest

from nudge import event_log
from nudge.errors import ConfigurationError, DuplicateItemError, UnknownItemError
from nudge.models.item import ExecutionKind
from nudge.registry import ItemRegistry, load_item_file


class TestRegistration:
    """Test cases for registering and looking up items."""

    def test_register_and_lookup(self, registry: ItemRegistry, make_item) -> None:
        item = registry.register(make_item("mood"), lambda: None)

        assert registry.by_id("mood") is item
        assert registry.require("mood") is item
        assert registry.ids() == ["mood"]

    def test_duplicate_fn_rejected(self, registry: ItemRegistry, make_item) -> None:
        registry.register(make_item("mood"))

        with pytest.raises(DuplicateItemError, match="mood"):
            registry.register(make_item("mood"))

    def test_unknown_item(self, registry: ItemRegistry) -> None:
        assert registry.by_id("ghost") is None
        with pytest.raises(UnknownItemError):
            registry.require("ghost")
        with pytest.raises(UnknownItemError):
            registry.state("ghost")

    def test_unknown_item_error_is_a_value_error(self, registry: ItemRegistry) -> None:
        """Test that configuration errors can be caught as ValueError."""
        with pytest.raises(ValueError):
            registry.require("ghost")


class TestDisabledSet:
    """Test cases for enabling and disabling items."""

    def test_enabled_ids_keeps_registration_order(self, registry, make_item) -> None:
        for fn in ("c", "a", "b"):
            registry.register(make_item(fn))

        registry.disable("a")

        assert registry.enabled_ids() == ["c", "b"]
        assert registry.is_disabled("a")
        assert registry.disabled_ids() == ["a"]

    def test_enable_restores(self, registry, make_item) -> None:
        registry.register(make_item("a"))
        registry.disable("a")
        registry.enable("a")

        assert registry.enabled_ids() == ["a"]

    def test_disable_unknown_item_raises(self, registry) -> None:
        with pytest.raises(UnknownItemError):
            registry.disable("ghost")


class TestRuntimeState:
    """Test cases for calls, successes and dismissals."""

    def test_record_call_stamps_last_called(self, registry, settings, make_item, at) -> None:
        registry.register(make_item("mood"))

        registry.record_call("mood", now=at(2026, 3, 10, 9))

        assert registry.state("mood").last_called == at(2026, 3, 10, 9)
        assert len(event_log.read_all(settings.calls_log_path("mood"))) == 1

    def test_record_success_resets_dismissals(self, registry, settings, make_item) -> None:
        registry.register(make_item("mood"))
        registry.record_dismissal("mood")
        assert registry.record_dismissal("mood") == 2

        registry.record_success("mood", now=100)

        assert registry.state("mood").dismissals == 0
        assert event_log.read_all(settings.successes_log_path("mood")) == [["100"]]

    def test_dataset_items_get_no_success_record(
        self, registry, settings, make_item, tmp_path
    ) -> None:
        registry.register(make_item("mood", dataset=tmp_path / "mood.tsv"))

        registry.record_success("mood", now=100)

        assert not settings.successes_log_path("mood").exists()

    def test_count_successes_today_from_success_log(self, registry, make_item, at) -> None:
        registry.register(make_item("stretch"))
        registry.record_success("stretch", now=at(2026, 3, 9, 22))
        registry.record_success("stretch", now=at(2026, 3, 10, 1))
        registry.record_success("stretch", now=at(2026, 3, 10, 9))

        # 01:00 still belongs to March 9
        assert registry.count_successes_today("stretch", now=at(2026, 3, 10, 12)) == 1
        assert registry.count_successes_today("stretch", now=at(2026, 3, 10, 4)) == 2

    def test_count_successes_today_from_dataset(
        self, registry, make_item, tmp_path, at
    ) -> None:
        dataset = tmp_path / "mood.tsv"
        dataset.write_text("1\t2026-03-10\t5\n2\t2026-03-10\t6\n3\t2026-03-09\t4\n")
        registry.register(make_item("mood", dataset=dataset))

        assert registry.count_successes_today("mood", now=at(2026, 3, 10, 12)) == 2

    def test_posted_time_dataset_counts_by_posted_time(
        self, registry, make_item, tmp_path, at
    ) -> None:
        dataset = tmp_path / "mood.tsv"
        dataset.write_text(
            f"{at(2026, 3, 9, 20):.0f}\t4\n"
            f"{at(2026, 3, 10, 8):.0f}\t5\n"
            f"{at(2026, 3, 10, 9):.0f}\t6\n"
        )
        registry.register(make_item("mood", dataset=dataset, lookup_posted_time=True))

        assert registry.count_dataset_entries_today("mood", now=at(2026, 3, 10, 12)) == 2
        assert registry.count_successes_today("mood", now=at(2026, 3, 10, 12)) == 2

    def test_count_calls_today(self, registry, make_item, at) -> None:
        registry.register(make_item("mood"))
        registry.record_call("mood", now=at(2026, 3, 10, 8))
        registry.record_call("mood", now=at(2026, 3, 10, 9))

        assert registry.count_calls_today("mood", now=at(2026, 3, 10, 12)) == 2
        assert registry.count_calls_today("mood", now=at(2026, 3, 11, 12)) == 0


class TestStateExport:
    """Test cases for the MemoryStore round trip helpers."""

    def test_export_and_load_state(self, settings, make_item) -> None:
        first = ItemRegistry(settings)
        first.register(make_item("mood"))
        first.record_dismissal("mood")
        first.state("mood").last_called = 1234.0

        second = ItemRegistry(settings)
        second.register(make_item("mood"))
        second.load_state(first.export_state())

        assert second.state("mood").dismissals == 1
        assert second.state("mood").last_called == 1234.0

    def test_load_state_ignores_unregistered_items(self, registry, make_item) -> None:
        registry.register(make_item("mood"))

        registry.load_state({"retired": {"dismissals": 4, "last_called": None}})

        assert registry.ids() == ["mood"]

    def test_load_disabled_filters_unknown_ids(self, registry, make_item) -> None:
        registry.register(make_item("mood"))

        registry.load_disabled(["mood", "retired"])

        assert registry.disabled_ids() == ["mood"]

    def test_invalid_stored_state_keeps_default(self, registry, make_item) -> None:
        registry.register(make_item("mood"))
        registry.register(make_item("water"))

        with pytest.warns(UserWarning, match="Ignoring stored state for mood"):
            registry.load_state(
                {"mood": {"dismissals": -2}, "water": {"dismissals": 1, "last_called": 5.0}}
            )

        assert registry.state("mood").dismissals == 0
        assert registry.state("water").dismissals == 1

    def test_stored_state_of_wrong_type_is_ignored(self, registry, make_item) -> None:
        registry.register(make_item("mood"))

        with pytest.warns(UserWarning, match="item state"):
            registry.load_state(["mood"])

        assert registry.state("mood").dismissals == 0

    def test_disabled_set_of_wrong_type_is_ignored(self, registry, make_item) -> None:
        registry.register(make_item("mood"))
        registry.disable("mood")

        with pytest.warns(UserWarning, match="disabled set"):
            registry.load_disabled(5)

        assert registry.disabled_ids() == ["mood"]


class TestLoadItemFile:
    """Test cases for loading item definitions from JSON."""

    def test_loads_items_and_commands(self, items_file: Path) -> None:
        definitions = load_item_file(items_file)

        assert [item.fn for item, _ in definitions] == ["stretch", "mood"]
        stretch, command = definitions[0]
        assert stretch.min_hours_wait == 2
        assert stretch.kind is ExecutionKind.QUERY
        assert command == "true"
        mood, _ = definitions[1]
        assert mood.lookup_posted_time is True
        assert mood.daily_cap == 3

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            load_item_file(tmp_path / "absent.json")

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "items.json"
        path.write_text("{not json")

        with pytest.raises(ConfigurationError, match="not valid JSON"):
            load_item_file(path)

    def test_schema_violation(self, tmp_path: Path) -> None:
        path = tmp_path / "items.json"
        path.write_text(json.dumps({"items": [{"fn": "Bad Name"}]}))

        with pytest.raises(ConfigurationError, match="Invalid items file"):
            load_item_file(path)
