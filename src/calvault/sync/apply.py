"""
Per-event writes shared by full and incremental sync.
"""

import logging
import sqlite3
import threading
from dataclasses import dataclass
from dataclasses import field
from typing import Any

from ..db import Store
from ..models import SyncCancelledError
from ..models import SyncStats
from .progress import NullProgress
from .progress import ProgressReporter
from .progress import notify
from .utils import attendees_from_event
from .utils import event_to_record

logger = logging.getLogger(__name__)


@dataclass
class CalendarContext:
    """Everything one calendar sync needs, threaded through the strategy functions."""

    store: Store
    client: Any
    account_id: int
    calendar_id: int
    provider_calendar_id: str
    name: str
    progress: ProgressReporter = field(default_factory=NullProgress)
    cancel_event: threading.Event | None = None

    def check_cancelled(self):
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise SyncCancelledError()


def apply_event(ctx: CalendarContext, item: dict[str, Any], stats: SyncStats):
    """Upsert one event and replace its attendees in a single transaction.

    A storage failure is logged and counted; the event is skipped.
    """
    ctx.check_cancelled()

    if not item.get("id"):
        logger.warning(f"Skipping event without id in calendar {ctx.name}")
        stats.errors += 1
        return

    record = event_to_record(item)
    attendees = attendees_from_event(item)

    try:
        with ctx.store.transaction():
            event_id, inserted = ctx.store.upsert_event(ctx.account_id, ctx.calendar_id, record)
            ctx.store.replace_attendees(event_id, attendees)
    except (sqlite3.Error, ValueError, OverflowError) as e:
        logger.error(f"Failed to store event {record.provider_event_id}: {e}")
        stats.errors += 1
        return

    if inserted:
        stats.added += 1
    else:
        stats.updated += 1

    if record.summary:
        notify(ctx.progress, "on_event", record.summary)


def apply_deletion(ctx: CalendarContext, item: dict[str, Any], stats: SyncStats):
    """Remove a cancelled event. An event that was never stored is a no-op."""
    ctx.check_cancelled()

    provider_event_id = item.get("id", "")
    try:
        deleted = ctx.store.delete_event(ctx.account_id, provider_event_id)
    except sqlite3.Error as e:
        logger.error(f"Failed to delete event {provider_event_id}: {e}")
        stats.errors += 1
        return

    if deleted:
        stats.deleted += 1
        logger.debug(f"Deleted event {provider_event_id}")
    else:
        logger.debug(f"Cancelled event {provider_event_id} not stored locally, nothing to delete")
