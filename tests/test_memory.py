"""Tests for variable persistence through the variable log."""

import threading
import time
from datetime import datetime
from pathlib import Path

import pytest

from nudge.audit import AuditLogger
from nudge.errors import ConfigurationError, CorruptLogError
from nudge.memory import MemoryStore


class Box:
    """Mutable holder standing in for engine state."""

    def __init__(self, value=None) -> None:
        self.value = value

    def get(self):
        return self.value

    def set(self, value) -> None:
        self.value = value


@pytest.fixture
def log_path(tmp_path: Path) -> Path:
    return tmp_path / "variables.tsv"


def store_with(log_path: Path, **boxes: Box) -> MemoryStore:
    store = MemoryStore(log_path)
    for name, box in boxes.items():
        store.register(name, box.get, box.set)
    return store


class TestSnapshot:
    """Test cases for MemoryStore.snapshot."""

    def test_writes_one_row_per_variable(self, log_path: Path) -> None:
        store = store_with(log_path, counter=Box(3), names=Box(["a", "b"]))

        written = store.snapshot(now=10)

        assert written == ["counter", "names"]
        assert log_path.read_text() == '10\tcounter\t3\n10\tnames\t["a","b"]\n'

    def test_unchanged_values_are_not_rewritten(self, log_path: Path) -> None:
        box = Box({"b": 1, "a": 2})
        store = store_with(log_path, state=box)

        store.snapshot(now=1)
        assert store.snapshot(now=2) == []

        box.value = {"a": 2, "b": 3}
        assert store.snapshot(now=3) == ["state"]
        assert len(log_path.read_text().splitlines()) == 2

    def test_subset_of_names(self, log_path: Path) -> None:
        store = store_with(log_path, a=Box(1), b=Box(2))

        assert store.snapshot(["b"], now=1) == ["b"]
        assert store.last_value_of("a") is None

    def test_explicit_mapping(self, log_path: Path) -> None:
        store = MemoryStore(log_path)

        store.snapshot({"ad_hoc": "value"}, now=1)

        assert store.last_value_of("ad_hoc") == "value"

    def test_unregistered_name_raises(self, log_path: Path) -> None:
        store = MemoryStore(log_path)

        with pytest.raises(ConfigurationError, match="not registered"):
            store.snapshot(["ghost"])

    def test_corrupt_log_refuses_to_write(self, log_path: Path) -> None:
        log_path.write_text("1\tcounter\t3\n2\tbroken\n")
        store = store_with(log_path, counter=Box(4))

        with pytest.raises(CorruptLogError) as excinfo:
            store.snapshot(now=3)

        assert excinfo.value.bad_rows == [2]
        assert log_path.read_text() == "1\tcounter\t3\n2\tbroken\n"

    def test_datetime_is_stored_as_unix_seconds(self, log_path: Path) -> None:
        moment = datetime(2026, 3, 10, 9, 30)
        store = MemoryStore(log_path)
        store.register("seen", lambda: moment, timestamp=True)

        store.snapshot(now=1)

        assert log_path.read_text().split("\t")[2].strip() == str(moment.timestamp())

    def test_snapshot_is_audited(self, log_path: Path, tmp_path: Path) -> None:
        audit = AuditLogger(tmp_path / "audit.log")
        store = MemoryStore(log_path, audit=audit)
        store.register("counter", lambda: 1)

        store.snapshot(now=1)
        store.snapshot(now=2)

        entries = audit.tail()
        assert [e.operation for e in entries] == ["SNAPSHOT"]
        assert entries[0].fields["names"] == "counter"


class TestRecover:
    """Test cases for MemoryStore.recover."""

    def test_newest_row_wins(self, log_path: Path) -> None:
        log_path.write_text("1\tcounter\t1\n2\tother\t\"x\"\n3\tcounter\t5\n")
        box = Box()
        store = store_with(log_path, counter=box)

        values = store.recover()

        assert values == {"counter": 5, "other": "x"}
        assert box.value == 5
        assert store.recovered is True

    def test_round_trip_through_restart(self, log_path: Path) -> None:
        """Test that a fresh store sees what a previous one saved."""
        store_with(log_path, state=Box({"mood": {"dismissals": 2}})).snapshot(now=1)

        restored = Box()
        store_with(log_path, state=restored).recover()

        assert restored.value == {"mood": {"dismissals": 2}}

    def test_missing_log_recovers_nothing(self, log_path: Path) -> None:
        box = Box("default")
        store = store_with(log_path, counter=box)

        assert store.recover() == {}
        assert box.value == "default"
        assert store.recovered is True

    def test_malformed_rows_are_skipped_with_warning(self, log_path: Path) -> None:
        log_path.write_text("1\tcounter\t1\n2\tcounter\n")
        box = Box()
        store = store_with(log_path, counter=box)

        with pytest.warns(UserWarning, match="malformed"):
            store.recover()

        assert box.value == 1

    def test_undecodable_value_is_skipped(self, log_path: Path) -> None:
        log_path.write_text("1\tcounter\t{oops\n")
        box = Box("kept")
        store = store_with(log_path, counter=box)

        with pytest.warns(UserWarning, match="Cannot decode"):
            store.recover()

        assert box.value == "kept"

    def test_value_rejected_by_setter_is_skipped(self, log_path: Path) -> None:
        log_path.write_text("1\tcounter\t\"many\"\n1\tother\t2\n")

        def strict(value) -> None:
            if not isinstance(value, int):
                raise TypeError("counter must be an int")

        other = Box()
        store = MemoryStore(log_path)
        store.register("counter", lambda: 0, strict)
        store.register("other", other.get, other.set)

        with pytest.warns(UserWarning, match="Cannot restore counter"):
            store.recover()

        assert other.value == 2
        assert store.recovered is True

    def test_timestamp_variable_comes_back_as_datetime(self, log_path: Path) -> None:
        moment = datetime(2026, 3, 10, 9, 30)
        log_path.write_text(f"1\tseen\t{moment.timestamp()}\n")
        box = Box()
        store = MemoryStore(log_path)
        store.register("seen", box.get, box.set, timestamp=True)

        store.recover()

        assert box.value == moment


class TestForget:
    """Test cases for MemoryStore.forget."""

    def test_forget_purges_every_row(self, log_path: Path) -> None:
        log_path.write_text("1\ta\t1\n2\tb\t2\n3\ta\t3\n")
        store = MemoryStore(log_path)

        assert store.forget("a") == 2
        assert store.last_value_of("a") is None
        assert store.last_value_of("b") == 2

    def test_forget_without_log(self, log_path: Path) -> None:
        assert MemoryStore(log_path).forget("a") == 0


class TestConcurrentSnapshots:
    """Snapshots from two threads must not both write the same change."""

    def test_changed_value_is_written_once(self, log_path: Path) -> None:
        start = threading.Barrier(2)

        def slow_value() -> int:
            time.sleep(0.05)
            return 7

        store = MemoryStore(log_path)
        store.register("counter", slow_value)
        results: list[list[str]] = []

        def worker() -> None:
            start.wait(timeout=5)
            results.append(store.snapshot(now=1))

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert sorted(results) == [[], ["counter"]]
        assert log_path.read_text() == "1\tcounter\t7\n"
