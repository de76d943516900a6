"""Item bodies backed by external commands.

The command owns the interaction (prompting, writing the dataset row); its
exit status is mapped onto an Outcome:

    0          -> SUCCESS
    3          -> SKIPPED
    130 / ^C   -> CANCELLED (user interrupt)
    anything else -> CANCELLED
"""

import os
import subprocess
import threading

from .models.item import ExecutionKind, Item
from .models.queue import Outcome
from .observability import get_logger

log = get_logger(__name__)

EXIT_SKIP = 3
EXIT_INTERRUPTED = 130


def command_env(item: Item) -> dict[str, str]:
    """Environment for an item command: NUDGE_ITEM and NUDGE_DATASET."""
    env = dict(os.environ)
    env["NUDGE_ITEM"] = item.fn
    if item.dataset is not None:
        env["NUDGE_DATASET"] = str(item.dataset)
    return env


def outcome_for_returncode(fn: str, returncode: int) -> Outcome:
    if returncode == 0:
        return Outcome.SUCCESS
    if returncode == EXIT_SKIP:
        return Outcome.SKIPPED
    if returncode != EXIT_INTERRUPTED:
        log.warning("bodies.command_failed", fn=fn, returncode=returncode)
    return Outcome.CANCELLED


class CommandBody:
    """Run a shell command for a query item and await its completion."""

    def __init__(self, item: Item, command: str, timeout: float | None = None) -> None:
        self.item = item
        self.command = command
        self.timeout = timeout

    def __call__(self) -> Outcome:
        try:
            result = subprocess.run(
                self.command,
                shell=True,
                env=command_env(self.item),
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            log.warning("bodies.command_timeout", fn=self.item.fn, timeout=self.timeout)
            return Outcome.TIMED_OUT
        return outcome_for_returncode(self.item.fn, result.returncode)


class ExcursionCommandBody:
    """Launch a command as the single auxiliary resource of an excursion.

    A watcher thread closes the resource when the process exits cleanly and
    cancels (or skips) the excursion otherwise.
    """

    def __init__(self, item: Item, command: str) -> None:
        self.item = item
        self.command = command

    def __call__(self, excursion) -> None:
        process = subprocess.Popen(self.command, shell=True, env=command_env(self.item))
        resource = f"pid:{process.pid}"
        excursion.open(resource)

        def watch() -> None:
            outcome = outcome_for_returncode(self.item.fn, process.wait())
            if outcome is Outcome.SUCCESS:
                excursion.close(resource)
            elif outcome is Outcome.SKIPPED:
                excursion.skip()
            else:
                excursion.cancel()

        threading.Thread(target=watch, daemon=True, name=f"nudge-{self.item.fn}").start()
        return None


def body_for(item: Item, command: str):
    """Pick the command body matching the item's execution kind."""
    if item.kind is ExecutionKind.EXCURSION:
        return ExcursionCommandBody(item, command)
    return CommandBody(item, command)
