"""
Progress reporting hooks for the sync engine.
"""

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class ProgressReporter(Protocol):
    def on_calendar_start(self, calendar_name: str) -> None: ...

    def on_calendar_done(self, calendar_name: str, added: int, updated: int, deleted: int) -> None: ...

    def on_event(self, event_summary: str) -> None: ...


class NullProgress:
    """Reporter that ignores every callback."""

    def on_calendar_start(self, calendar_name: str) -> None:
        pass

    def on_calendar_done(self, calendar_name: str, added: int, updated: int, deleted: int) -> None:
        pass

    def on_event(self, event_summary: str) -> None:
        pass


def notify(progress: ProgressReporter, method: str, *args) -> None:
    """Invoke a reporter callback; a failing reporter never affects the sync."""
    try:
        getattr(progress, method)(*args)
    except Exception:
        logger.debug("Progress callback %s failed", method, exc_info=True)
