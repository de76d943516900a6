"""Ordered handler lists for engine events (present tick, idle return, startup)."""

from collections.abc import Callable
from typing import Any, Generic, TypeVar

from .observability import get_logger

log = get_logger(__name__)

T = TypeVar("T")


class HookList(Generic[T]):
    """Handlers run in registration order; a raising handler does not stop the rest."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._handlers: list[Callable[[T], Any]] = []

    def add(self, handler: Callable[[T], Any]) -> None:
        self._handlers.append(handler)

    def remove(self, handler: Callable[[T], Any]) -> None:
        self._handlers.remove(handler)

    def __len__(self) -> int:
        return len(self._handlers)

    def run(self, payload: T) -> list[Exception]:
        """Invoke every handler with payload. Returns the errors raised."""
        errors: list[Exception] = []
        for handler in self._handlers:
            try:
                handler(payload)
            except Exception as e:
                log.error(
                    "hooks.handler_failed",
                    hook=self.name,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(e),
                    exc_info=True,
                )
                errors.append(e)
        return errors
