"""
CalendarSynchronizer: per-account orchestrator that delegates to sync submodules.
"""

import logging
import threading
import time
from dataclasses import dataclass
from dataclasses import field

from calvault.db import Store
from calvault.models import Account
from calvault.models import Calendar
from calvault.models import CalendarEntry
from calvault.models import CalendarFailure
from calvault.models import FeedError
from calvault.models import Summary
from calvault.models import SyncCancelledError
from calvault.models import SyncMode
from calvault.models import SyncStats
from calvault.models import SyncTokenExpiredError
from calvault.models import TokenState
from calvault.sync.apply import CalendarContext
from calvault.sync.full import run_full_sync
from calvault.sync.incremental import run_incremental_sync
from calvault.sync.progress import NullProgress
from calvault.sync.progress import ProgressReporter
from calvault.sync.progress import notify

__all__ = ["CalendarSynchronizer", "SyncOptions", "select_strategy"]


@dataclass
class SyncOptions:
    """Engine configuration fixed at construction time."""

    progress: ProgressReporter = field(default_factory=NullProgress)
    cancel_event: threading.Event | None = None


def select_strategy(mode: SyncMode, state: TokenState) -> SyncMode:
    """Incremental only when requested and a token is held; full otherwise."""
    if mode is SyncMode.INCREMENTAL and state is TokenState.HAS_TOKEN:
        return SyncMode.INCREMENTAL
    return SyncMode.FULL


class CalendarSynchronizer:
    """Main synchronization engine for one account's feed client."""

    def __init__(self, client, store: Store, options: SyncOptions | None = None):
        self.client = client
        self.store = store
        self.options = options or SyncOptions()
        self.logger = logging.getLogger(__name__)

    def _cancelled(self) -> bool:
        event = self.options.cancel_event
        return event is not None and event.is_set()

    def sync_account(self, email: str, mode: SyncMode = SyncMode.FULL) -> Summary:
        """Sync every calendar of ``email``.

        Per-calendar failures are logged and listed on the returned Summary
        (see ``Summary.error``). A failure to list calendars aborts the
        account and propagates. Cancellation returns the partial Summary
        with ``cancelled`` set.
        """
        started = time.monotonic()
        summary = Summary(account=email)

        account = self.store.get_or_create_account(email)
        run_id = self.store.start_sync_run(account.id)

        try:
            entries = self.client.list_calendars()
        except SyncCancelledError:
            summary.cancelled = True
            summary.duration = time.monotonic() - started
            self.store.finish_sync_run(run_id, "cancelled")
            return summary
        except Exception as e:
            self.store.finish_sync_run(run_id, "failed", error=f"list calendars: {e}")
            raise

        self.logger.info(f"Found {len(entries)} calendars for {email} ({mode.value} sync)")

        for entry in entries:
            if self._cancelled():
                self.logger.info("Sync cancelled, not starting further calendars")
                summary.cancelled = True
                break

            stats = SyncStats()
            try:
                self._sync_calendar(account, entry, mode, stats)
            except SyncCancelledError:
                self.logger.info(f"Sync cancelled during calendar {entry.summary or entry.id}")
                summary.cancelled = True
                break
            except Exception as e:
                name = entry.summary or entry.id
                self.logger.error(
                    f"Failed to sync calendar {name}: {e}",
                    exc_info=not isinstance(e, FeedError),
                )
                summary.failures.append(
                    CalendarFailure(
                        calendar_id=entry.id,
                        calendar_name=name,
                        error=str(e) or type(e).__name__,
                    )
                )
                continue
            finally:
                summary.add(stats)

            summary.calendars_synced += 1

        summary.duration = time.monotonic() - started
        totals = SyncStats(
            added=summary.events_added,
            updated=summary.events_updated,
            deleted=summary.events_deleted,
        )
        if summary.cancelled:
            self.store.finish_sync_run(run_id, "cancelled", totals)
        elif summary.failures:
            self.store.finish_sync_run(run_id, "failed", totals, error=str(summary.error))
        else:
            self.store.finish_sync_run(run_id, "completed", totals)

        return summary

    def _sync_calendar(self, account: Account, entry: CalendarEntry, mode: SyncMode, stats: SyncStats):
        calendar_id = self.store.upsert_calendar(account.id, entry)
        calendar = self.store.get_calendar(calendar_id)
        name = entry.summary or entry.id

        ctx = CalendarContext(
            store=self.store,
            client=self.client,
            account_id=account.id,
            calendar_id=calendar_id,
            provider_calendar_id=entry.id,
            name=name,
            progress=self.options.progress,
            cancel_event=self.options.cancel_event,
        )

        notify(self.options.progress, "on_calendar_start", name)
        run_id = self.store.start_sync_run(account.id, calendar_id)
        try:
            self._run_strategy(ctx, calendar, mode, stats)
        except SyncCancelledError:
            self.store.finish_sync_run(run_id, "cancelled", stats)
            raise
        except Exception as e:
            self.store.finish_sync_run(run_id, "failed", stats, error=str(e) or type(e).__name__)
            raise

        self.store.finish_sync_run(run_id, "completed", stats)
        notify(self.options.progress, "on_calendar_done", name, stats.added, stats.updated, stats.deleted)

    def _run_strategy(self, ctx: CalendarContext, calendar: Calendar, mode: SyncMode, stats: SyncStats):
        """Run incremental or full sync, falling back to full on an expired token."""
        state = calendar.token_state

        if select_strategy(mode, state) is SyncMode.INCREMENTAL:
            try:
                run_incremental_sync(ctx, calendar.sync_token, stats)
                return
            except SyncTokenExpiredError:
                self.logger.info(f"Sync token expired for {ctx.name}, falling back to full sync")

            self.store.clear_calendar_token(calendar.id)
            state = TokenState.NO_TOKEN
            # Counts describe the fallback full sync only.
            stats.reset()

        self.logger.debug(f"Running full sync of {ctx.name} (token state: {state.value})")
        run_full_sync(ctx, stats)
