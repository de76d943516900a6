"""Tests for idle probes and probe selection."""

import shutil
import subprocess

import pytest

from nudge import probes
from nudge.probes import ActivityProbe, XprintidleProbe, select_probe


@pytest.fixture
def no_xprintidle(monkeypatch):
    monkeypatch.setattr(shutil, "which", lambda name: None)


@pytest.fixture
def with_xprintidle(monkeypatch):
    monkeypatch.setattr(shutil, "which", lambda name: f"/usr/bin/{name}")


class TestXprintidleProbe:
    def test_milliseconds_become_seconds(self, monkeypatch) -> None:
        calls = []

        def fake_run(args, **kwargs):
            calls.append((args, kwargs))
            return subprocess.CompletedProcess(args, 0, stdout="1500\n", stderr="")

        monkeypatch.setattr(subprocess, "run", fake_run)

        assert XprintidleProbe()() == 1.5
        args, kwargs = calls[0]
        assert args == ["xprintidle"]
        assert kwargs["check"] is True
        assert kwargs["timeout"] == 5

    def test_failure_propagates(self, monkeypatch) -> None:
        def failing(args, **kwargs):
            raise subprocess.CalledProcessError(1, args)

        monkeypatch.setattr(subprocess, "run", failing)

        with pytest.raises(subprocess.CalledProcessError):
            XprintidleProbe()()

    def test_available_follows_path(self, with_xprintidle) -> None:
        assert XprintidleProbe.available() is True


class TestActivityProbe:
    def test_idle_since_last_touch(self, monkeypatch) -> None:
        clock = [1000.0]
        monkeypatch.setattr(probes, "now_ts", lambda: clock[0])
        probe = ActivityProbe()

        clock[0] = 1030.0
        assert probe() == 30.0

        probe.touch()
        clock[0] = 1035.0
        assert probe() == 5.0

    def test_touch_in_the_future_reads_zero(self, monkeypatch) -> None:
        monkeypatch.setattr(probes, "now_ts", lambda: 100.0)
        probe = ActivityProbe()

        probe.touch(now=200.0)

        assert probe() == 0.0


class TestSelectProbe:
    """Preference: xprintidle, then the opted-in activity probe, else none."""

    def test_prefers_xprintidle(self, with_xprintidle) -> None:
        assert isinstance(select_probe(internal_idle=True), XprintidleProbe)

    def test_activity_probe_when_opted_in(self, no_xprintidle) -> None:
        activity = ActivityProbe()

        assert select_probe(internal_idle=True, activity=activity) is activity
        assert isinstance(select_probe(internal_idle=True), ActivityProbe)

    def test_none_without_opt_in(self, no_xprintidle) -> None:
        assert select_probe() is None
